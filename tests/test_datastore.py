import asyncio

import httpx
import pytest

from conftest import country_payload, global_payload, historical_payload
from nexus_dashboard.datastore import DataSource, DataStore, validate_history_days
from nexus_dashboard.errors import BusyError, FetchTimeout, RefreshFailed, StoreClosed
from nexus_dashboard.notifications import NotificationQueue


@pytest.mark.asyncio
async def test_refresh_replaces_snapshot(source):
    notes = NotificationQueue()
    store = DataStore(source, notifications=notes)

    snapshot = await store.refresh()

    assert store.snapshot is snapshot
    assert snapshot.global_stats.cases == 1000
    assert snapshot.global_stats.today_cases == 10
    assert [c.name for c in snapshot.countries] == ["France", "Germany", "Francistan"]
    assert snapshot.countries[0].iso2 == "FR"
    assert snapshot.historical.dates == ["1/22/20", "1/23/20"]
    assert [n.level for n in notes.items] == ["info"]
    assert not store.busy
    notes.close()


@pytest.mark.asyncio
@pytest.mark.parametrize("failing", ["global", "countries", "historical"])
@pytest.mark.parametrize(
    "error",
    [httpx.ConnectError("connection refused"), ConnectionError("reset by peer"), RuntimeError()],
)
async def test_any_failed_fetch_keeps_previous_snapshot(source, failing, error):
    notes = NotificationQueue()
    store = DataStore(source, notifications=notes)
    previous = await store.refresh()

    source.global_payload = global_payload(cases=2000)
    source.countries_payload = [country_payload("Spain", 10)]
    source.fail_on = failing
    source.error = error

    with pytest.raises(RefreshFailed):
        await store.refresh()

    assert store.snapshot is previous
    assert store.snapshot.global_stats.cases == 1000
    assert notes.items[-1].level == "error"
    assert not store.busy
    notes.close()


@pytest.mark.asyncio
async def test_connection_error_is_reported_as_refresh_failure(source):
    notes = NotificationQueue()
    store = DataStore(source, notifications=notes)
    source.fail_on = "countries"
    source.error = ConnectionError("reset by peer")

    with pytest.raises(RefreshFailed) as excinfo:
        await store.refresh()

    assert isinstance(excinfo.value.__cause__, ConnectionError)
    assert store.snapshot is None
    assert [(n.level, n.text) for n in notes.items] == [
        ("error", "Data refresh failed: reset by peer")
    ]
    notes.close()


@pytest.mark.asyncio
async def test_snapshot_is_never_a_mix_of_refreshes(source):
    store = DataStore(source)
    await store.refresh()

    for round_ in range(1, 4):
        source.global_payload = global_payload(cases=round_)
        source.countries_payload = [country_payload(f"Country{round_}", round_)]
        source.historical_payload = historical_payload(base=round_)
        source.fail_on = "historical" if round_ == 2 else None
        source.error = httpx.ReadError("reset")
        try:
            await store.refresh()
        except RefreshFailed:
            pass

        snapshot = store.snapshot
        expected = snapshot.global_stats.cases
        if expected != 1000:
            assert snapshot.countries[0].name == f"Country{expected}"
            assert snapshot.historical.cases["1/22/20"] == expected


@pytest.mark.asyncio
async def test_invalid_payload_is_rejected(source):
    store = DataStore(source)
    source.historical_payload = {"cases": {"1/22/20": 1}, "deaths": {}, "recovered": {}}

    with pytest.raises(RefreshFailed):
        await store.refresh()
    assert store.snapshot is None


@pytest.mark.asyncio
async def test_refresh_while_busy_is_rejected(source, gate):
    store = DataStore(source)
    source.gate = gate
    first = asyncio.create_task(store.refresh())
    await asyncio.sleep(0.01)
    assert store.busy

    with pytest.raises(BusyError):
        await store.refresh()
    assert source.calls == 1

    gate.set()
    await first
    assert not store.busy


@pytest.mark.asyncio
async def test_timeout_clears_busy_flag(source, gate):
    notes = NotificationQueue()
    store = DataStore(source, timeout=0.05, notifications=notes)
    source.gate = gate

    with pytest.raises(FetchTimeout):
        await store.refresh()

    assert not store.busy
    assert notes.items[-1].text == "Data refresh timed out"

    source.gate = None
    await store.refresh()
    assert store.snapshot is not None
    notes.close()


@pytest.mark.asyncio
async def test_close_abandons_inflight_refresh(source, gate):
    store = DataStore(source)
    source.gate = gate
    pending = asyncio.create_task(store.refresh())
    await asyncio.sleep(0.01)

    await store.close()
    gate.set()

    with pytest.raises(StoreClosed):
        await pending
    assert store.snapshot is None
    assert source.closed

    with pytest.raises(StoreClosed):
        await store.refresh()


@pytest.mark.asyncio
async def test_history_window_is_passed_to_source(source):
    store = DataStore(source, history_days="all")
    await store.refresh()
    store.history_days = 90
    await store.refresh()

    assert source.history_requests == ["all", 90]


def test_validate_history_days():
    assert validate_history_days("all") == "all"
    assert validate_history_days("90") == 90
    assert validate_history_days(30) == 30
    for bad in (0, -3, "week", True):
        with pytest.raises(ValueError):
            validate_history_days(bad)


@pytest.mark.asyncio
async def test_data_source_reads_remote_endpoints():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append((request.url.path, dict(request.url.params)))
        if request.url.path.endswith("/all") and "historical" not in request.url.path:
            return httpx.Response(200, json=global_payload())
        if request.url.path.endswith("/countries"):
            return httpx.Response(200, json=[country_payload("France", 1)])
        return httpx.Response(200, json=historical_payload())

    source = DataSource("https://example.test/v3/covid-19", transport=httpx.MockTransport(handler))
    store = DataStore(source, history_days=30)
    snapshot = await store.refresh()
    await store.close()

    assert snapshot.countries[0].name == "France"
    assert ("/v3/covid-19/historical/all", {"lastdays": "30"}) in seen
    assert {path for path, _ in seen} == {
        "/v3/covid-19/all",
        "/v3/covid-19/countries",
        "/v3/covid-19/historical/all",
    }


@pytest.mark.asyncio
async def test_http_error_status_fails_refresh():
    source = DataSource(
        "https://example.test", transport=httpx.MockTransport(lambda r: httpx.Response(503))
    )
    store = DataStore(source)

    with pytest.raises(RefreshFailed):
        await store.refresh()
    await store.close()
