"""Remote data source and the store holding the latest consistent snapshot."""

from __future__ import annotations

import asyncio
from typing import Any, Protocol

import httpx
import logfire
from pydantic import ValidationError

from .config import DEFAULT_API_BASE
from .errors import BusyError, FetchTimeout, RefreshFailed, StoreClosed
from .models import Snapshot
from .notifications import NotificationQueue

HistoryDays = int | str


class Source(Protocol):
    async def fetch_global(self) -> Any: ...

    async def fetch_countries(self) -> Any: ...

    async def fetch_historical(self, days: HistoryDays) -> Any: ...

    async def aclose(self) -> None: ...


class DataSource:
    """Read-only client for the three public endpoints."""

    def __init__(
        self,
        base_url: str = DEFAULT_API_BASE,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.client = httpx.AsyncClient(base_url=base_url, timeout=timeout, transport=transport)
        logfire.instrument_httpx(client=self.client)

    async def _get_json(self, path: str, **params: Any) -> Any:
        response = await self.client.get(path, params=params or None)
        response.raise_for_status()
        return response.json()

    async def fetch_global(self) -> Any:
        return await self._get_json("/all")

    async def fetch_countries(self) -> Any:
        return await self._get_json("/countries")

    async def fetch_historical(self, days: HistoryDays) -> Any:
        return await self._get_json("/historical/all", lastdays=days)

    async def aclose(self) -> None:
        await self.client.aclose()


def validate_history_days(days: HistoryDays) -> HistoryDays:
    if days == "all":
        return days
    if isinstance(days, str) and days.isdigit():
        days = int(days)
    if isinstance(days, int) and not isinstance(days, bool) and days > 0:
        return days
    raise ValueError(f"history window must be a positive number of days or 'all', got {days!r}")


class DataStore:
    """Holds one snapshot and replaces it only when a whole refresh succeeds.

    ``refresh`` is rejected with ``BusyError`` while another one is outstanding,
    so two fetches can never interleave their results.
    """

    def __init__(
        self,
        source: Source,
        *,
        history_days: HistoryDays = 30,
        timeout: float = 10.0,
        notifications: NotificationQueue | None = None,
    ):
        self.source = source
        self.history_days = validate_history_days(history_days)
        self.timeout = timeout
        self.notifications = notifications
        self._snapshot: Snapshot | None = None
        self._busy = False
        self._closed = False
        self._inflight: asyncio.Task | None = None

    @property
    def snapshot(self) -> Snapshot | None:
        return self._snapshot

    @property
    def busy(self) -> bool:
        return self._busy

    @property
    def closed(self) -> bool:
        return self._closed

    async def refresh(self) -> Snapshot:
        if self._closed:
            raise StoreClosed("data store is closed")
        if self._busy:
            raise BusyError("a refresh is already in progress")

        self._busy = True
        task = asyncio.create_task(self._fetch(self.history_days))
        self._inflight = task
        try:
            with logfire.span("refresh dashboard data", history_days=self.history_days):
                try:
                    snapshot = await task
                except asyncio.CancelledError:
                    if self._closed:
                        raise StoreClosed("data store closed during refresh") from None
                    raise
                except (asyncio.TimeoutError, httpx.TimeoutException) as exc:
                    self._report_failure("Data refresh timed out")
                    raise FetchTimeout(f"remote data did not arrive within {self.timeout}s") from exc
                except (httpx.HTTPError, ValidationError, ValueError) as exc:
                    self._report_failure(f"Data refresh failed: {exc}")
                    raise RefreshFailed(str(exc)) from exc
                except Exception as exc:
                    logfire.exception("Unexpected error while fetching dashboard data")
                    self._report_failure(f"Data refresh failed: {exc}")
                    raise RefreshFailed(str(exc) or type(exc).__name__) from exc

                if self._closed:
                    raise StoreClosed("data store closed during refresh")
                self._snapshot = snapshot
                logfire.info(
                    "Snapshot replaced with {countries} countries",
                    countries=len(snapshot.countries),
                )
                if self.notifications is not None:
                    self.notifications.push("Dashboard data refreshed")
                return snapshot
        finally:
            self._busy = False
            self._inflight = None

    async def _fetch(self, days: HistoryDays) -> Snapshot:
        results = await asyncio.wait_for(
            asyncio.gather(
                self.source.fetch_global(),
                self.source.fetch_countries(),
                self.source.fetch_historical(days),
                return_exceptions=True,
            ),
            self.timeout,
        )
        for result in results:
            if isinstance(result, BaseException):
                raise result
        return Snapshot.from_payloads(*results)

    def _report_failure(self, text: str) -> None:
        logfire.warn(text)
        if self.notifications is not None and not self._closed:
            self.notifications.push(text, level="error")

    async def close(self) -> None:
        """Tear down: abandon any in-flight refresh and release the HTTP client."""
        self._closed = True
        if self._inflight is not None:
            self._inflight.cancel()
            await asyncio.gather(self._inflight, return_exceptions=True)
        await self.source.aclose()
