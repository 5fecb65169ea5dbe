"""Delimited-text export of derived views."""

from __future__ import annotations

import csv
from dataclasses import dataclass
from typing import Mapping, Sequence, Union

import pandas as pd

Records = Union[pd.DataFrame, Sequence[Mapping[str, object]]]


@dataclass(frozen=True)
class ExportArtifact:
    filename: str
    content: str
    media_type: str = "text/csv"

    def to_bytes(self) -> bytes:
        return self.content.encode("utf-8")


def to_delimited(records: Records, delimiter: str = ",") -> str:
    """Header from the first record's fields, then one row per record.

    Values containing the delimiter, a quote or a newline are quoted with
    embedded quotes doubled.
    """
    if isinstance(records, pd.DataFrame):
        df = records
    else:
        if not records:
            return ""
        df = pd.DataFrame(list(records), columns=list(records[0].keys()))

    if df.columns.empty:
        return ""
    return df.to_csv(
        index=False,
        sep=delimiter,
        quoting=csv.QUOTE_MINIMAL,
        quotechar='"',
        doublequote=True,
        lineterminator="\n",
    )


def export_records(records: Records, filename: str, delimiter: str = ",") -> ExportArtifact:
    return ExportArtifact(filename=filename, content=to_delimited(records, delimiter))
