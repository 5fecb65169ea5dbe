"""
Derived, presentation-ready views over a snapshot.

Everything here is a pure function of its arguments: the country table
(filter, sort, cap), the per-day chart rows, the status breakdown and the KPI
cards. Sort state is a small immutable value owned by the caller.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Iterable, List, Literal

import pandas as pd

from .models import CountryRecord, GlobalSnapshot, HistoricalSeries
from .utils import format_date, format_number

SortOrder = Literal["asc", "desc"]

SORT_KEYS = ("cases", "deaths", "recovered", "active", "population")
TABLE_COLUMNS = [
    "name",
    "iso2",
    "iso3",
    "flag_url",
    "cases",
    "deaths",
    "recovered",
    "active",
    "population",
    "continent",
]
DEFAULT_TABLE_LIMIT = 100


@dataclass(frozen=True)
class SortState:
    key: str = "cases"
    order: SortOrder = "desc"

    def __post_init__(self) -> None:
        _check_sort(self.key, self.order)

    def toggle(self, key: str) -> "SortState":
        """Same key flips the order; a new key starts descending."""
        if key == self.key:
            return SortState(key, "asc" if self.order == "desc" else "desc")
        return SortState(key, "desc")


def _check_sort(key: str, order: str) -> None:
    if key not in SORT_KEYS:
        raise ValueError(f"cannot sort by {key!r}; choose one of {', '.join(SORT_KEYS)}")
    if order not in ("asc", "desc"):
        raise ValueError(f"sort order must be 'asc' or 'desc', got {order!r}")


def country_frame(countries: Iterable[CountryRecord]) -> pd.DataFrame:
    records = [c.model_dump() for c in countries]
    return pd.DataFrame(records, columns=TABLE_COLUMNS)


def table_view(
    countries: Iterable[CountryRecord],
    filter_text: str = "",
    sort_key: str = "cases",
    sort_order: SortOrder = "desc",
    limit: int = DEFAULT_TABLE_LIMIT,
) -> pd.DataFrame:
    """Filter by name (case-insensitive substring), stable-sort, then cap at ``limit`` rows."""
    _check_sort(sort_key, sort_order)
    df = country_frame(countries)

    needle = filter_text.strip()
    if needle:
        mask = df["name"].str.contains(needle, case=False, regex=False, na=False)
        df = df[mask]

    df = df.sort_values(sort_key, ascending=sort_order == "asc", kind="stable")
    return df.head(limit).reset_index(drop=True)


def chart_rows(historical: HistoricalSeries | None) -> List[Dict[str, object]]:
    """One row per day for the trend chart."""
    if historical is None:
        return []
    return [
        {
            "date": format_date(date),
            "cases": historical.cases[date],
            "deaths": historical.deaths.get(date),
            "recovered": historical.recovered.get(date),
        }
        for date in historical.dates
    ]


def status_breakdown(stats: GlobalSnapshot) -> List[Dict[str, object]]:
    return [
        {"name": "Active", "value": stats.active},
        {"name": "Recovered", "value": stats.recovered},
        {"name": "Deaths", "value": stats.deaths},
    ]


def kpi_cards(stats: GlobalSnapshot) -> List[Dict[str, object]]:
    return [
        {
            "title": "Total Cases",
            "value": stats.cases,
            "display": format_number(stats.cases),
            "change": f"+{format_number(stats.today_cases)}",
        },
        {
            "title": "Recovered",
            "value": stats.recovered,
            "display": format_number(stats.recovered),
            "change": f"+{format_number(stats.today_recovered)}",
        },
        {
            "title": "Fatalities",
            "value": stats.deaths,
            "display": format_number(stats.deaths),
            "change": f"+{format_number(stats.today_deaths)}",
        },
        {
            "title": "Active Cases",
            "value": stats.active,
            "display": format_number(stats.active),
            "change": None,
        },
    ]
