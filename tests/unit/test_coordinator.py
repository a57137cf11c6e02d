"""Tests for FetchCoordinator: memory → disk → network ordering and failure budgets."""

import asyncio
import json

import pytest

from annocache.exceptions import NetworkError, ParseError
from annocache.models import Empty, Failure, FailureKind, Interval, Success
from annocache.services.coordinator import FetchCoordinator, widen
from annocache.services.failure_ledger import FailureLedger
from annocache.services.keyed_store import KeyedStore


class ListCodec:
    data_type = "things"

    def to_document(self, value):
        return {"items": value}

    def from_document(self, document):
        return list(document["items"])

    def is_empty(self, value):
        return not value


class Spy:
    """Counts calls; returns (or raises) the queued outcomes in order."""

    def __init__(self, *outcomes):
        self.outcomes = list(outcomes)
        self.calls = []

    async def __call__(self, *args):
        self.calls.append(args)
        outcome = self.outcomes.pop(0) if len(self.outcomes) > 1 else self.outcomes[0]
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


@pytest.fixture
def store(cache_dir):
    return KeyedStore(cache_dir)


@pytest.fixture
def coordinator(store):
    return FetchCoordinator(store, FailureLedger(max_failures=2))


@pytest.fixture
def codec():
    return ListCodec()


REGION = Interval(12_345, 18_000)


class TestWiden:
    def test_buffer_limited_by_request_length(self):
        assert widen(Interval(100, 200), 10_000, 100_000) == Interval(1, 300)

    def test_full_buffer(self):
        assert widen(Interval(50_000, 70_000), 10_000) == Interval(40_000, 80_000)

    def test_capped_at_max_span_from_start(self):
        assert widen(Interval(50_000, 60_000), 10_000, 15_000) == Interval(40_000, 65_000)

    def test_never_shrinks_request(self):
        assert widen(Interval(10, 500), 100, 50) == Interval(1, 500)


class TestCacheBeforeNetwork:
    @pytest.mark.asyncio
    async def test_second_lookup_hits_memory(self, coordinator, codec):
        fetch = Spy(["a", "b"])
        first = await coordinator.fetch(codec, "1", REGION, fetch)
        second = await coordinator.fetch(codec, "chr1", REGION, fetch)
        assert first == Success(["a", "b"], from_cache=False)
        assert second == Success(["a", "b"], from_cache=True)
        assert len(fetch.calls) == 1

    @pytest.mark.asyncio
    async def test_disk_tier_survives_new_coordinator(self, store, coordinator, codec):
        await coordinator.fetch(codec, "1", REGION, Spy(["a"]), variant="v1")
        fresh = FetchCoordinator(store, FailureLedger())
        fetch = Spy(["other"])
        result = await fresh.fetch(codec, "1", REGION, fetch, variant="v1")
        assert result == Success(["a"], from_cache=True)
        assert fetch.calls == []

    @pytest.mark.asyncio
    async def test_writes_cache_key_layout(self, coordinator, codec, cache_dir):
        await coordinator.fetch(codec, "1", REGION, Spy(["a"]), variant="v1")
        path = cache_dir / "things" / "chr1_12345_18000_v1.json"
        document = json.loads(path.read_text(encoding="utf-8"))
        assert document["items"] == ["a"]
        assert "cachedAt" in document

    @pytest.mark.asyncio
    async def test_variant_is_part_of_the_key(self, coordinator, codec):
        fetch = Spy(["a"])
        await coordinator.fetch(codec, "1", REGION, fetch, variant="v1")
        await coordinator.fetch(codec, "1", REGION, fetch, variant="v2")
        assert len(fetch.calls) == 2

    @pytest.mark.asyncio
    async def test_malformed_disk_entry_is_a_miss(self, coordinator, codec, cache_dir):
        (cache_dir / "things").mkdir(parents=True)
        (cache_dir / "things" / "chr1_12345_18000.json").write_text(
            json.dumps({"cachedAt": 10**15, "wrong": 1}), encoding="utf-8"
        )
        fetch = Spy(["a"])
        result = await coordinator.fetch(codec, "1", REGION, fetch)
        assert result == Success(["a"], from_cache=False)

    @pytest.mark.asyncio
    async def test_force_refresh_goes_to_network(self, coordinator, codec):
        fetch = Spy(["a"])
        await coordinator.fetch(codec, "1", REGION, fetch)
        await coordinator.fetch(codec, "1", REGION, fetch, force_refresh=True)
        assert len(fetch.calls) == 2


class TestEmptyResults:
    @pytest.mark.asyncio
    async def test_empty_is_cached(self, coordinator, codec):
        fetch = Spy([])
        assert await coordinator.fetch(codec, "1", REGION, fetch) == Empty(from_cache=False)
        assert await coordinator.fetch(codec, "1", REGION, fetch) == Empty(from_cache=True)
        assert len(fetch.calls) == 1


class TestFailures:
    @pytest.mark.asyncio
    async def test_network_error_becomes_failure(self, coordinator, codec):
        fetch = Spy(NetworkError("Network offline", FailureKind.NETWORK_OFFLINE))
        result = await coordinator.fetch(codec, "1", REGION, fetch)
        assert result == Failure(FailureKind.NETWORK_OFFLINE, "Network offline")

    @pytest.mark.asyncio
    async def test_parse_error_becomes_malformed_response(self, coordinator, codec):
        fetch = Spy(ParseError("bad shape", reason="API: boom"))
        result = await coordinator.fetch(codec, "1", REGION, fetch)
        assert result == Failure(FailureKind.MALFORMED_RESPONSE, "API: boom")

    @pytest.mark.asyncio
    async def test_unexpected_error_is_contained(self, coordinator, codec):
        fetch = Spy(RuntimeError("kaboom"))
        result = await coordinator.fetch(codec, "1", REGION, fetch)
        assert result == Failure(FailureKind.REMOTE_ERROR, "Connection error")

    @pytest.mark.asyncio
    async def test_failures_are_not_cached(self, coordinator, codec):
        fetch = Spy(NetworkError("API error: 503"), ["a"])
        assert isinstance(await coordinator.fetch(codec, "1", REGION, fetch), Failure)
        assert await coordinator.fetch(codec, "1", REGION, fetch) == Success(["a"])

    @pytest.mark.asyncio
    async def test_retry_cap_stops_network_calls(self, coordinator, codec):
        fetch = Spy(NetworkError("API error: 500"))
        await coordinator.fetch(codec, "1", REGION, fetch)
        await coordinator.fetch(codec, "1", REGION, fetch)
        result = await coordinator.fetch(codec, "1", REGION, fetch)
        assert result == Failure(FailureKind.UNAVAILABLE, "Region unavailable")
        assert len(fetch.calls) == 2

    @pytest.mark.asyncio
    async def test_budget_is_shared_by_rounded_region(self, coordinator, codec):
        fetch = Spy(NetworkError("API error: 500"))
        await coordinator.fetch(codec, "1", Interval(12_345, 18_000), fetch)
        await coordinator.fetch(codec, "1", Interval(15_000, 16_000), fetch)
        nearby = await coordinator.fetch(codec, "1", Interval(10_001, 19_999), fetch)
        assert nearby.kind == FailureKind.UNAVAILABLE
        assert len(fetch.calls) == 2

        elsewhere = Spy(["a"])
        assert isinstance(
            await coordinator.fetch(codec, "1", Interval(50_000, 51_000), elsewhere), Success
        )

    @pytest.mark.asyncio
    async def test_success_resets_budget(self, coordinator, codec):
        fetch = Spy(NetworkError("API error: 500"), ["a"], NetworkError("API error: 500"))
        await coordinator.fetch(codec, "1", Interval(100, 200), fetch)
        await coordinator.fetch(codec, "1", Interval(300, 400), fetch)
        result = await coordinator.fetch(codec, "1", Interval(500, 600), fetch)
        assert result.kind == FailureKind.REMOTE_ERROR

    @pytest.mark.asyncio
    async def test_exhausted_cached_entry_still_fails_fast(self, coordinator, codec):
        # The ledger is consulted before either tier
        await coordinator.fetch(codec, "1", Interval(100, 200), Spy(["a"]))
        failing = Spy(NetworkError("API error: 500"))
        await coordinator.fetch(codec, "1", Interval(300, 400), failing)
        await coordinator.fetch(codec, "1", Interval(500, 600), failing)
        result = await coordinator.fetch(codec, "1", Interval(100, 200), Spy(["b"]))
        assert result.kind == FailureKind.UNAVAILABLE


class TestSingleFlight:
    @pytest.mark.asyncio
    async def test_concurrent_lookups_share_one_fetch(self, coordinator, codec):
        gate = asyncio.Event()
        calls = 0

        async def slow():
            nonlocal calls
            calls += 1
            await gate.wait()
            return ["a"]

        first = asyncio.create_task(coordinator.fetch(codec, "1", REGION, slow))
        second = asyncio.create_task(coordinator.fetch(codec, "1", REGION, slow))
        while calls == 0:
            await asyncio.sleep(0.01)
        await asyncio.sleep(0.2)
        gate.set()
        results = await asyncio.gather(first, second)
        assert calls == 1
        assert all(r == Success(["a"], from_cache=False) for r in results)


class TestFetchEntity:
    @pytest.mark.asyncio
    async def test_identifier_keyed(self, coordinator, codec, cache_dir):
        fetch = Spy(["P38398"])
        assert await coordinator.fetch_entity(codec, "BRCA1", fetch) == Success(["P38398"])
        assert (cache_dir / "things" / "BRCA1.json").is_file()
        assert (await coordinator.fetch_entity(codec, "BRCA1", fetch)).from_cache

    @pytest.mark.asyncio
    async def test_unsafe_characters_are_replaced(self, coordinator, codec, cache_dir):
        await coordinator.fetch_entity(codec, "a/b c", Spy(["x"]))
        assert (cache_dir / "things" / "a_b_c.json").is_file()

    @pytest.mark.asyncio
    async def test_budget_is_per_identifier(self, coordinator, codec):
        failing = Spy(NetworkError("Request timed out", FailureKind.TIMEOUT))
        await coordinator.fetch_entity(codec, "P1", failing)
        await coordinator.fetch_entity(codec, "P1", failing)
        assert (await coordinator.fetch_entity(codec, "P1", failing)) == Failure(
            FailureKind.UNAVAILABLE, "Entry unavailable"
        )
        assert isinstance(await coordinator.fetch_entity(codec, "P2", Spy(["x"])), Success)


def _ramp(window: Interval) -> dict[int, float]:
    return {pos: float(pos) for pos in range(window.start, window.end)}


class TestFetchRange:
    @pytest.mark.asyncio
    async def test_fetches_widened_window(self, coordinator):
        calls = []

        async def fetch_fn(window):
            calls.append(window)
            return _ramp(window)

        result = await coordinator.fetch_range(
            "scores", "1", Interval(100, 200), fetch_fn, buffer=10_000, max_span=100_000
        )
        assert calls == [Interval(1, 300)]
        assert isinstance(result, Success)
        assert result.value.start == 100 and result.value.end == 200
        assert result.value.value_at(150) == 150.0

    @pytest.mark.asyncio
    async def test_query_inside_window_needs_no_fetch(self, coordinator):
        calls = []

        async def fetch_fn(window):
            calls.append(window)
            return _ramp(window)

        await coordinator.fetch_range("scores", "1", Interval(100, 200), fetch_fn, buffer=10_000)
        result = await coordinator.fetch_range("scores", "chr1", Interval(220, 290), fetch_fn)
        assert len(calls) == 1
        assert result.from_cache
        assert result.value.value_at(220) == 220.0

    @pytest.mark.asyncio
    async def test_disk_entry_covering_request_is_reused(self, store, coordinator):
        async def fetch_fn(window):
            return _ramp(window)

        await coordinator.fetch_range(
            "scores", "1", Interval(100, 200), fetch_fn, variant="base", buffer=10_000
        )
        fresh = FetchCoordinator(store, FailureLedger())
        calls = []

        async def never(window):
            calls.append(window)
            return {}

        result = await fresh.fetch_range("scores", "1", Interval(120, 180), never, variant="base")
        assert calls == []
        assert result.from_cache
        assert result.value.value_at(179) == 179.0

    @pytest.mark.asyncio
    async def test_no_samples_is_empty(self, coordinator):
        async def fetch_fn(window):
            return {}

        result = await coordinator.fetch_range("scores", "1", Interval(100, 200), fetch_fn)
        assert result == Empty(from_cache=False)

    @pytest.mark.asyncio
    async def test_failure_charges_budget(self, coordinator):
        calls = []

        async def fetch_fn(window):
            calls.append(window)
            raise NetworkError("Network offline", FailureKind.NETWORK_OFFLINE)

        for _ in range(3):
            result = await coordinator.fetch_range("scores", "1", Interval(100, 200), fetch_fn)
        assert result == Failure(FailureKind.UNAVAILABLE, "Region unavailable")
        assert len(calls) == 2


class TestClear:
    @pytest.mark.asyncio
    async def test_clear_drops_both_tiers(self, coordinator, codec):
        fetch = Spy(["a"])
        await coordinator.fetch(codec, "1", REGION, fetch)
        assert coordinator.clear("things") == 1
        result = await coordinator.fetch(codec, "1", REGION, fetch)
        assert not result.from_cache
        assert len(fetch.calls) == 2

    @pytest.mark.asyncio
    async def test_memory_stats(self, coordinator, codec):
        await coordinator.fetch(codec, "1", REGION, Spy(["a"]))
        stats = coordinator.memory_stats()
        assert stats["entries"] == {"things": 1}
        assert stats["exhausted"] == []
