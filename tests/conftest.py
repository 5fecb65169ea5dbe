import asyncio
import os

os.environ.setdefault("LOGFIRE_CONSOLE", "false")
os.environ.setdefault("LOGFIRE_SEND_TO_LOGFIRE", "false")

import logfire
import pytest

from nexus_dashboard.config import Settings

logfire.configure(send_to_logfire=False, console=False)

# Import logfire's httpx integration at collection time. pytest rewrites
# modules of installed plugin packages, and compiling this one from deep inside
# a running test trips a CPython 3.11.7 AST recursion-depth bug.
import logfire._internal.integrations.httpx  # noqa: E402,F401


def global_payload(cases=1000, **overrides):
    payload = {
        "updated": 1700000000000,
        "cases": cases,
        "todayCases": 10,
        "deaths": 50,
        "todayDeaths": 1,
        "recovered": 900,
        "todayRecovered": 5,
        "active": 50,
        "critical": 3,
        "population": 8000000000,
        "affectedCountries": 3,
    }
    payload.update(overrides)
    return payload


def country_payload(name, cases, deaths=0, recovered=0, active=0, population=0):
    return {
        "country": name,
        "countryInfo": {"iso2": name[:2].upper(), "iso3": name[:3].upper(), "flag": f"https://flags/{name}.png"},
        "cases": cases,
        "deaths": deaths,
        "recovered": recovered,
        "active": active,
        "population": population,
        "continent": "Europe",
    }


def historical_payload(dates=("1/22/20", "1/23/20"), base=1):
    return {
        "cases": {d: base * (i + 1) for i, d in enumerate(dates)},
        "deaths": {d: i for i, d in enumerate(dates)},
        "recovered": {d: i * 2 for i, d in enumerate(dates)},
    }


class FakeSource:
    """In-memory stand-in for the remote data source."""

    def __init__(self):
        self.global_payload = global_payload()
        self.countries_payload = [
            country_payload("France", 300, deaths=3),
            country_payload("Germany", 500, deaths=5),
            country_payload("Francistan", 100, deaths=1),
        ]
        self.historical_payload = historical_payload()
        self.fail_on = None
        self.error = None
        self.gate = None
        self.calls = 0
        self.history_requests = []
        self.closed = False

    async def _serve(self, name, payload):
        if self.gate is not None:
            await self.gate.wait()
        if self.fail_on == name:
            raise self.error
        return payload

    async def fetch_global(self):
        self.calls += 1
        return await self._serve("global", self.global_payload)

    async def fetch_countries(self):
        return await self._serve("countries", self.countries_payload)

    async def fetch_historical(self, days):
        self.history_requests.append(days)
        return await self._serve("historical", self.historical_payload)

    async def aclose(self):
        self.closed = True


class FakeTransport:
    """Scripted assistant stream."""

    def __init__(self, system_prompt, chunks=("Hel", "lo"), error=None, gate=None):
        self.system_prompt = system_prompt
        self.chunks = list(chunks)
        self.error = error
        self.gate = gate
        self.requests = []
        self.closed = False

    async def stream(self, history, text):
        self.requests.append((tuple(history), text))
        for chunk in self.chunks:
            if self.gate is not None:
                await self.gate.wait()
            yield chunk
        if self.error is not None:
            raise self.error

    async def aclose(self):
        self.closed = True


class TransportFactory:
    """Builds FakeTransports and remembers them."""

    def __init__(self, **options):
        self.options = options
        self.created = []

    def __call__(self, system_prompt):
        transport = FakeTransport(system_prompt, **self.options)
        self.created.append(transport)
        return transport


@pytest.fixture
def source():
    return FakeSource()


@pytest.fixture
def settings(tmp_path):
    return Settings(
        refresh_seconds=0,
        fetch_timeout=1.0,
        stream_timeout=1.0,
        notification_ttl=5.0,
        notification_limit=5,
        identity_path=tmp_path / "identity.json",
    )


@pytest.fixture
def gate():
    """Holds fake calls open until the test sets it."""
    return asyncio.Event()
