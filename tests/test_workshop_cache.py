from __future__ import annotations

import threading
import time

import pytest

from backend.app.addons.workshop.cache import (
    CACHE_KEY,
    CACHE_TTL_SECONDS,
    WorkshopMetadataCache,
    chunked,
    extract_workshop_id,
)
from backend.app.addons.workshop.client import SteamWorkshopClient

from conftest import FakeSteamSession


class Clock:
    def __init__(self, now: float = 1_700_000_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


def _details(*ids: str) -> dict:
    return {i: {"title": f"Title {i}", "description": f"About {i}"} for i in ids}


@pytest.fixture
def clock() -> Clock:
    return Clock()


@pytest.fixture
def cache(state, steam_session: FakeSteamSession, clock: Clock) -> WorkshopMetadataCache:
    client = SteamWorkshopClient("https://steam.invalid/details", session=steam_session)
    return WorkshopMetadataCache(state, client, clock=clock)


# ----------------------------
# Id extraction
# ----------------------------

@pytest.mark.parametrize(
    "filename, expected",
    [
        ("workshop_123456.vpk", "123456"),
        ("123456.vpk", "123456"),
        ("my_custom_mod_42.vpk", "42"),
        ("custom_map.vpk", None),
        ("workshop_123.jpg", None),
        ("workshop_12a.vpk", None),
    ],
)
def test_extract_workshop_id(filename, expected) -> None:
    assert extract_workshop_id(filename) == expected


def test_extract_ids_dedupes_in_first_seen_order(cache) -> None:
    assert cache.extract_ids(["b_2.vpk", "a_1.vpk", "2.vpk", "x.vpk"]) == ["2", "1"]


def test_chunked() -> None:
    assert chunked(["a", "b", "c"], 2) == [["a", "b"], ["c"]]
    assert chunked([], 2) == []


# ----------------------------
# Batch lookup
# ----------------------------

def test_misses_are_fetched_in_chunks_of_100(cache, steam_session) -> None:
    ids = [str(i) for i in range(1, 251)]
    steam_session.details = _details(*ids)

    result = cache.get_titles_batch([f"workshop_{i}.vpk" for i in ids])

    assert [len(call) for call in steam_session.calls] == [100, 100, 50]
    assert len(result) == 250
    assert result["250"].title == "Title 250"
    assert cache.stats().total == 250


def test_cached_records_skip_the_network(cache, steam_session) -> None:
    steam_session.details = _details("1", "2")
    cache.get_titles_batch(["workshop_1.vpk"])

    result = cache.get_titles_batch(["workshop_1.vpk", "workshop_2.vpk"])

    assert steam_session.calls == [["1"], ["2"]]
    assert result["1"].description == "About 1"


def test_failed_chunk_falls_back_to_ids_without_caching(cache, steam_session) -> None:
    ids = [str(i) for i in range(1, 151)]
    steam_session.details = _details(*ids)
    steam_session.fail_when = lambda chunk: "150" in chunk

    result = cache.get_titles_batch([f"workshop_{i}.vpk" for i in ids])

    assert result["1"].title == "Title 1"
    assert result["150"].title == "150"
    assert result["101"].description == ""
    assert cache.stats().total == 100

    steam_session.fail_when = None
    assert cache.get_titles_batch(["workshop_150.vpk"])["150"].title == "Title 150"


def test_unknown_items_get_fallback_records(cache, steam_session, state) -> None:
    steam_session.details = _details("1")

    result = cache.get_titles_batch(["workshop_1.vpk", "workshop_2.vpk"])

    assert result["2"].title == "2"
    assert set(state.get(CACHE_KEY)) == {"1"}


def test_whole_response_error_falls_back(cache, steam_session) -> None:
    steam_session.details = _details("1")
    steam_session.top_result = 2

    assert cache.get_titles(["workshop_1.vpk"]) == {"1": "1"}


def test_filenames_without_ids_are_ignored(cache, steam_session) -> None:
    assert cache.get_titles_batch(["custom.vpk"]) == {}
    assert steam_session.calls == []


def test_expired_records_are_refetched(cache, steam_session, clock) -> None:
    steam_session.details = _details("1")
    cache.get_titles_batch(["workshop_1.vpk"])

    clock.now += CACHE_TTL_SECONDS - 1
    cache.get_titles_batch(["workshop_1.vpk"])
    assert len(steam_session.calls) == 1

    clock.now += 2
    steam_session.details = {"1": {"title": "Renamed"}}
    assert cache.get_title("workshop_1.vpk") == "Renamed"
    assert len(steam_session.calls) == 2


def test_concurrent_lookups_share_one_request(cache, steam_session) -> None:
    steam_session.details = _details("7")
    entered = threading.Event()
    release = threading.Event()

    def block(ids):
        entered.set()
        assert release.wait(5)

    steam_session.before_reply = block
    results = {}

    def lookup(key):
        results[key] = cache.get_titles_batch(["workshop_7.vpk"])

    first = threading.Thread(target=lookup, args=("first",))
    first.start()
    assert entered.wait(5)

    second = threading.Thread(target=lookup, args=("second",))
    second.start()
    time.sleep(0.05)
    release.set()
    first.join(5)
    second.join(5)

    assert len(steam_session.calls) == 1
    assert results["first"]["7"].title == "Title 7"
    assert results["second"]["7"].title == "Title 7"


# ----------------------------
# Convenience lookups
# ----------------------------

def test_get_title_and_description(cache, steam_session) -> None:
    steam_session.details = _details("5")

    assert cache.get_title("custom.vpk") == "custom.vpk"
    assert cache.get_title("workshop_5.vpk") == "Title 5"
    assert cache.get_description("workshop_5.vpk") == "About 5"
    assert cache.get_description("custom.vpk") == ""
    assert cache.get_info("custom.vpk") is None


def test_get_info_by_id_uses_cache(cache, steam_session) -> None:
    steam_session.details = _details("9")

    assert cache.get_info_by_id("9").title == "Title 9"
    assert cache.get_info_by_id("9").title == "Title 9"
    assert len(steam_session.calls) == 1


def test_get_details_returns_full_record(cache, steam_session) -> None:
    steam_session.details = {"3": {"title": "Three", "time_updated": 1234, "views": 10}}

    detail = cache.get_details("3")

    assert detail.title == "Three"
    assert detail.time_updated == 1234
    assert cache.get_details("4") is None


def test_refresh_titles_refetches(cache, steam_session) -> None:
    steam_session.details = _details("1")
    cache.get_titles_batch(["workshop_1.vpk"])
    steam_session.details = {"1": {"title": "New"}}

    result = cache.refresh_titles(["workshop_1.vpk"])

    assert result["1"].title == "New"
    assert len(steam_session.calls) == 2


# ----------------------------
# Maintenance
# ----------------------------

def test_cleanup_expired_and_stats(cache, steam_session, clock) -> None:
    steam_session.details = _details("1", "2")
    cache.get_titles_batch(["workshop_1.vpk"])
    clock.now += CACHE_TTL_SECONDS
    cache.get_titles_batch(["workshop_2.vpk"])

    assert cache.stats().model_dump() == {"total": 2, "valid": 1}
    assert cache.cleanup_expired() == 1
    assert cache.stats().model_dump() == {"total": 1, "valid": 1}
    assert cache.cleanup_expired() == 0


def test_clear(cache, steam_session, state) -> None:
    steam_session.details = _details("1")
    cache.get_titles_batch(["workshop_1.vpk"])

    cache.clear()

    assert state.get(CACHE_KEY) is None
    assert cache.stats().total == 0


def test_malformed_cache_records_are_skipped(cache, state, steam_session) -> None:
    state.set(CACHE_KEY, {"1": "junk", "2": {"title": "Two", "lastUpdated": "soon"}})
    steam_session.details = _details("1", "2")

    result = cache.get_titles_batch(["workshop_1.vpk", "workshop_2.vpk"])

    assert result["2"].title == "Title 2"
