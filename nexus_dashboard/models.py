"""Data models for the dashboard core."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel
from typing_extensions import TypedDict

Role = Literal["user", "assistant"]
Level = Literal["info", "error"]


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


class _RemoteModel(BaseModel):
    """Immutable value parsed from the remote camelCase payloads."""

    model_config = ConfigDict(
        frozen=True,
        populate_by_name=True,
        alias_generator=to_camel,
        extra="ignore",
    )


class GlobalSnapshot(_RemoteModel):
    cases: int = 0
    deaths: int = 0
    recovered: int = 0
    active: int = 0
    today_cases: int = 0
    today_deaths: int = 0
    today_recovered: int = 0
    population: int = 0
    # Remote sends epoch milliseconds; pydantic detects the unit.
    updated_at: datetime = Field(default_factory=_now, alias="updated")


class CountryRecord(_RemoteModel):
    name: str = Field(alias="country")
    iso2: str | None = None
    iso3: str | None = None
    flag_url: str | None = None
    cases: int = 0
    deaths: int = 0
    recovered: int = 0
    active: int = 0
    population: int = 0
    continent: str = ""

    @model_validator(mode="before")
    @classmethod
    def _flatten_country_info(cls, data: Any) -> Any:
        if isinstance(data, dict) and "countryInfo" in data:
            info = data.get("countryInfo") or {}
            data = {
                **data,
                "iso2": info.get("iso2"),
                "iso3": info.get("iso3"),
                "flagUrl": info.get("flag"),
            }
        return data


class HistoricalSeries(_RemoteModel):
    """Date-keyed series; all three maps share one chronologically ordered key set."""

    cases: dict[str, int] = Field(default_factory=dict)
    deaths: dict[str, int] = Field(default_factory=dict)
    recovered: dict[str, int] = Field(default_factory=dict)

    @model_validator(mode="after")
    def _check_shared_dates(self) -> "HistoricalSeries":
        dates = list(self.cases)
        if list(self.deaths) != dates or list(self.recovered) != dates:
            raise ValueError("historical series do not share the same dates")
        return self

    @property
    def dates(self) -> list[str]:
        return list(self.cases)


class Snapshot(BaseModel):
    """One consistent triple of remote data, replaced as a whole."""

    model_config = ConfigDict(frozen=True)

    global_stats: GlobalSnapshot
    countries: tuple[CountryRecord, ...] = ()
    historical: HistoricalSeries = Field(default_factory=HistoricalSeries)
    fetched_at: datetime = Field(default_factory=_now)

    @classmethod
    def from_payloads(
        cls, global_payload: Any, countries_payload: Any, historical_payload: Any
    ) -> "Snapshot":
        """Validate the three raw payloads together; any invalid part fails the lot."""
        if not isinstance(countries_payload, list):
            raise ValueError("country payload is not a list")
        return cls(
            global_stats=GlobalSnapshot.model_validate(global_payload),
            countries=tuple(
                CountryRecord.model_validate(item) for item in countries_payload
            ),
            historical=HistoricalSeries.model_validate(historical_payload),
        )


@dataclass(frozen=True)
class ChatMessage:
    """One entry of the conversation log.

    Only the session replaces the last entry, and only while ``streaming`` is set.
    ``failed`` marks an assistant reply that was replaced by the fallback text.
    """

    role: Role
    text: str
    created_at: datetime = field(default_factory=_now)
    streaming: bool = False
    failed: bool = False


@dataclass(frozen=True)
class Notification:
    id: str
    text: str
    created_at: datetime
    ttl: float
    level: Level = "info"


class ChatMessagePayload(TypedDict):
    """Format of chat messages sent to HTTP clients."""

    role: Role
    timestamp: str
    content: str
    streaming: bool
