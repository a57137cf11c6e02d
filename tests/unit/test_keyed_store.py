"""Tests for KeyedStore: file-per-entry JSON cache with TTL expiry."""

import json
import logging
from datetime import timedelta

import pytest

from annocache.models import Interval
from annocache.services.keyed_store import CACHED_AT_FIELD, KeyedStore
from annocache.services.keys import cache_key

TTL = timedelta(days=7)


class FakeClock:
    def __init__(self, now: float = 1_700_000_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, delta: timedelta) -> None:
        self.now += delta.total_seconds()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(cache_dir, clock):
    return KeyedStore(cache_dir, clock=clock)


class TestPutGet:
    def test_round_trip_preserves_payload(self, store):
        store.put("gnomad", "chr1_100_200_gnomad_r3", {"start": 100, "extra": [1, 2]})
        doc = store.get("gnomad", "chr1_100_200_gnomad_r3", TTL)
        assert doc["start"] == 100
        assert doc["extra"] == [1, 2]

    def test_stamps_cached_at_in_millis(self, store, clock):
        store.put("gnomad", "k", {"a": 1})
        doc = store.get("gnomad", "k", TTL)
        assert doc[CACHED_AT_FIELD] == int(clock.now * 1000)

    def test_layout_is_one_dir_per_data_type(self, store, cache_dir):
        store.put("conservation", "chr2_1_10_base", {"a": 1})
        assert (cache_dir / "conservation" / "chr2_1_10_base.json").is_file()

    def test_missing_key(self, store):
        assert store.get("gnomad", "nope", TTL) is None

    def test_overwrite_replaces(self, store):
        store.put("gnomad", "k", {"v": 1})
        store.put("gnomad", "k", {"v": 2})
        assert store.get("gnomad", "k", TTL)["v"] == 2

    def test_no_temp_files_left_behind(self, store, cache_dir):
        store.put("gnomad", "k", {"v": 1})
        assert [p.name for p in (cache_dir / "gnomad").iterdir()] == ["k.json"]

    def test_unserializable_payload_is_swallowed(self, store, caplog):
        with caplog.at_level(logging.WARNING, logger="annocache"):
            store.put("gnomad", "k", {"v": object()})
        assert store.get("gnomad", "k", TTL) is None
        assert "Cache write failed" in caplog.text


class TestExpiry:
    def test_fresh_within_ttl(self, store, clock):
        store.put("gnomad", "k", {"v": 1})
        clock.advance(timedelta(days=6, hours=23))
        assert store.get("gnomad", "k", TTL) is not None

    def test_expired_entry_is_deleted(self, store, clock, cache_dir):
        store.put("gnomad", "k", {"v": 1})
        clock.advance(timedelta(days=7, seconds=1))
        assert store.get("gnomad", "k", TTL) is None
        assert not (cache_dir / "gnomad" / "k.json").exists()


class TestMalformedDocuments:
    @pytest.mark.parametrize(
        "content",
        ["{not json", "[1, 2, 3]", json.dumps({"v": 1}), json.dumps({CACHED_AT_FIELD: "x"})],
    )
    def test_reads_as_absent(self, store, cache_dir, content):
        (cache_dir / "gnomad").mkdir(parents=True)
        (cache_dir / "gnomad" / "k.json").write_text(content, encoding="utf-8")
        assert store.get("gnomad", "k", TTL) is None


class TestFindContaining:
    def test_finds_enclosing_entry(self, store):
        store.put("conservation", "chr1_1000_5000_base", {"start": 1000})
        found = store.find_containing("conservation", "1", Interval(1200, 1300), TTL, suffix="base")
        assert found is not None
        bounds, payload = found
        assert bounds == Interval(1000, 5000)
        assert payload["start"] == 1000

    def test_alt_contig_with_underscores(self, store):
        store.put("conservation", cache_key("chr1_KI270706v1_random", 1, 900, "base"), {"start": 1})
        store.put("conservation", "chr1_1_900_base", {"start": 2})
        found = store.find_containing(
            "conservation", "chr1_KI270706v1_random", Interval(10, 20), TTL, suffix="base"
        )
        assert found is not None
        assert found[1]["start"] == 1

    def test_ignores_other_chromosomes(self, store):
        store.put("conservation", "chr10_1000_5000_base", {"start": 1000})
        assert store.find_containing("conservation", "chr1", Interval(1200, 1300), TTL, suffix="base") is None

    def test_requires_identical_suffix(self, store):
        store.put("conservation", "chr1_1000_5000_binned_500", {"start": 1000})
        assert store.find_containing("conservation", "chr1", Interval(1200, 1300), TTL, suffix="base") is None

    def test_partial_overlap_does_not_match(self, store):
        store.put("conservation", "chr1_1000_5000_base", {"start": 1000})
        assert store.find_containing("conservation", "chr1", Interval(4000, 6000), TTL, suffix="base") is None

    def test_skips_expired_entries(self, store, clock):
        store.put("conservation", "chr1_1000_5000_base", {"start": 1000})
        clock.advance(timedelta(days=8))
        assert store.find_containing("conservation", "chr1", Interval(1200, 1300), TTL, suffix="base") is None


class TestClearAndStats:
    def test_clear_one_type(self, store):
        store.put("gnomad", "a", {"v": 1})
        store.put("gnomad", "b", {"v": 1})
        store.put("alphafold", "P38398", {"v": 1})
        assert store.clear("gnomad") == 2
        assert store.get("gnomad", "a", TTL) is None
        assert store.get("alphafold", "P38398", TTL) is not None

    def test_clear_unknown_type(self, store):
        assert store.clear("nothing") == 0

    def test_clear_all(self, store):
        store.put("gnomad", "a", {"v": 1})
        store.put("alphafold", "P38398", {"v": 1})
        assert store.clear_all() == 2

    def test_stats(self, store):
        store.put("gnomad", "a", {"v": 1})
        store.put("gnomad", "b", {"v": 1})
        stats = store.stats()
        assert stats["files"] == 2
        assert stats["bytes"] > 0
        assert stats["data_types"]["gnomad"]["files"] == 2

    def test_stats_on_missing_root(self, tmp_path):
        stats = KeyedStore(tmp_path / "never").stats()
        assert stats["files"] == 0
        assert stats["data_types"] == {}
