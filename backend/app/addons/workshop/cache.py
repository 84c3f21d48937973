from __future__ import annotations

import logging
import re
import threading
import time
from concurrent.futures import Future
from typing import Callable, Dict, Iterable, List, Optional, Sequence

from pydantic import ValidationError

from ..state_store import StateStore
from .client import RemoteFetchError, SteamWorkshopClient
from .models import CacheStats, CatalogEntry, PublishedFileDetail

logger = logging.getLogger("addonmgr.workshop.cache")

CACHE_KEY = "steam-workshop-cache"
CACHE_TTL_SECONDS = 7 * 24 * 60 * 60
MAX_IDS_PER_REQUEST = 100

# "<prefix>_<digits>.vpk" or "<digits>.vpk"
_WORKSHOP_ID_PATTERN = re.compile(r"^(?:.*_)?(\d+)\.vpk$")


def extract_workshop_id(filename: str) -> Optional[str]:
    match = _WORKSHOP_ID_PATTERN.match(filename)
    return match.group(1) if match else None


def chunked(items: Sequence[str], size: int) -> List[List[str]]:
    return [list(items[i:i + size]) for i in range(0, len(items), size)]


class WorkshopMetadataCache:
    """
    Workshop titles/descriptions keyed by workshop id.

    - Records live in the state store under CACHE_KEY and expire after
      `ttl_seconds`.
    - Misses are fetched in chunks of `batch_size`; a failed chunk resolves
      each of its ids to a fallback record (title = id) that is not stored.
    - An id already being fetched by another caller is awaited instead of
      fetched twice.
    """

    def __init__(
        self,
        state: StateStore,
        client: Optional[SteamWorkshopClient] = None,
        *,
        ttl_seconds: int = CACHE_TTL_SECONDS,
        batch_size: int = MAX_IDS_PER_REQUEST,
        clock: Callable[[], float] = time.time,
    ):
        self.state = state
        self.client = client or SteamWorkshopClient()
        self.ttl_ms = ttl_seconds * 1000
        self.batch_size = batch_size
        self._clock = clock
        self._lock = threading.Lock()
        self._inflight: Dict[str, Future] = {}

    # ----------------------------
    # Id extraction
    # ----------------------------

    def extract_id(self, filename: str) -> Optional[str]:
        return extract_workshop_id(filename)

    def extract_ids(self, filenames: Iterable[str]) -> List[str]:
        ids: List[str] = []
        seen = set()
        for filename in filenames:
            workshop_id = extract_workshop_id(filename)
            if workshop_id and workshop_id not in seen:
                ids.append(workshop_id)
                seen.add(workshop_id)
        return ids

    # ----------------------------
    # Persisted cache
    # ----------------------------

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    def _is_valid(self, entry: CatalogEntry, now_ms: int) -> bool:
        return now_ms - entry.lastUpdated < self.ttl_ms

    def _load(self) -> Dict[str, CatalogEntry]:
        raw = self.state.get(CACHE_KEY)
        if not isinstance(raw, dict):
            if raw is not None:
                logger.warning("Workshop cache is not a mapping; ignoring it")
            return {}

        cache: Dict[str, CatalogEntry] = {}
        for workshop_id, record in raw.items():
            if not isinstance(record, dict):
                continue
            try:
                cache[workshop_id] = CatalogEntry.model_validate({"workshopId": workshop_id, **record})
            except ValidationError as e:
                logger.debug(f"Skipping invalid cache record {workshop_id}: {e}")
        return cache

    def _save(self, cache: Dict[str, CatalogEntry]) -> None:
        try:
            self.state.set(CACHE_KEY, {k: v.model_dump() for k, v in cache.items()})
        except OSError as e:
            logger.error(f"Failed to save workshop cache: {e}")

    # ----------------------------
    # Batch lookup
    # ----------------------------

    def get_titles_batch(self, filenames: Iterable[str]) -> Dict[str, CatalogEntry]:
        """
        Resolve every workshop id found in `filenames`.

        Fresh cached records are returned as-is; the rest are fetched (or
        awaited if another caller is already fetching them). Never raises for
        remote failures.
        """
        workshop_ids = self.extract_ids(filenames)
        if not workshop_ids:
            return {}

        results: Dict[str, CatalogEntry] = {}
        now_ms = self._now_ms()

        with self._lock:
            cache = self._load()
            for workshop_id in workshop_ids:
                cached = cache.get(workshop_id)
                if cached is not None and self._is_valid(cached, now_ms):
                    results[workshop_id] = cached

            pending = [i for i in workshop_ids if i not in results]
            waiting = {i: self._inflight[i] for i in pending if i in self._inflight}
            to_fetch = [i for i in pending if i not in waiting]

            owned: Dict[str, Future] = {}
            for workshop_id in to_fetch:
                future: Future = Future()
                self._inflight[workshop_id] = future
                owned[workshop_id] = future

        logger.debug(
            f"Title lookup: {len(workshop_ids)} id(s), {len(results)} cached, "
            f"{len(to_fetch)} to fetch, {len(waiting)} in flight elsewhere"
        )

        try:
            for chunk in chunked(to_fetch, self.batch_size):
                fetched = self._fetch_chunk(chunk)
                results.update(fetched)
                with self._lock:
                    for workshop_id in chunk:
                        owned[workshop_id].set_result(fetched[workshop_id])
                        self._inflight.pop(workshop_id, None)
        except BaseException as e:
            with self._lock:
                for workshop_id, future in owned.items():
                    if not future.done():
                        future.set_exception(e)
                        self._inflight.pop(workshop_id, None)
            raise

        for workshop_id, future in waiting.items():
            results[workshop_id] = future.result()

        return results

    def _fallback(self, workshop_id: str) -> CatalogEntry:
        return CatalogEntry(workshopId=workshop_id, title=workshop_id, description="", lastUpdated=self._now_ms())

    def _fetch_chunk(self, chunk: List[str]) -> Dict[str, CatalogEntry]:
        try:
            details = self.client.fetch_details(chunk)
        except RemoteFetchError as e:
            logger.warning(f"Failed to fetch batch details for {len(chunk)} id(s): {e}")
            return {workshop_id: self._fallback(workshop_id) for workshop_id in chunk}

        stamp = self._now_ms()
        fresh: Dict[str, CatalogEntry] = {}
        for detail in details:
            fresh[detail.publishedfileid] = CatalogEntry(
                workshopId=detail.publishedfileid,
                title=detail.title or detail.publishedfileid,
                description=detail.description or "",
                lastUpdated=stamp,
            )

        if fresh:
            with self._lock:
                cache = self._load()
                cache.update(fresh)
                self._save(cache)
            logger.info(f"Cached {len(fresh)} workshop record(s)")

        resolved = dict(fresh)
        for workshop_id in chunk:
            if workshop_id not in resolved:
                logger.debug(f"Steam returned nothing usable for {workshop_id}; using fallback")
                resolved[workshop_id] = self._fallback(workshop_id)
        return resolved

    # ----------------------------
    # Convenience lookups
    # ----------------------------

    def get_titles(self, filenames: Iterable[str]) -> Dict[str, str]:
        return {k: v.title for k, v in self.get_titles_batch(filenames).items()}

    def get_info(self, filename: str) -> Optional[CatalogEntry]:
        workshop_id = extract_workshop_id(filename)
        if not workshop_id:
            return None
        return self.get_titles_batch([filename]).get(workshop_id)

    def get_title(self, filename: str) -> str:
        workshop_id = extract_workshop_id(filename)
        if not workshop_id:
            return filename
        info = self.get_info(filename)
        return info.title if info and info.title else workshop_id

    def get_description(self, filename: str) -> str:
        info = self.get_info(filename)
        return info.description if info else ""

    def get_info_by_id(self, workshop_id: str) -> Optional[CatalogEntry]:
        cached = self._load().get(workshop_id)
        if cached is not None and self._is_valid(cached, self._now_ms()):
            return cached
        return self.get_titles_batch([f"workshop_{workshop_id}.vpk"]).get(workshop_id)

    def get_details(self, workshop_id: str) -> Optional[PublishedFileDetail]:
        """Full Steam record for one item, bypassing the cache. None on failure."""
        try:
            details = self.client.fetch_details([workshop_id])
        except RemoteFetchError as e:
            logger.warning(f"Failed to fetch details for {workshop_id}: {e}")
            return None
        return details[0] if details else None

    def refresh_titles(self, filenames: Iterable[str]) -> Dict[str, CatalogEntry]:
        filenames = list(filenames)
        ids = set(self.extract_ids(filenames))
        with self._lock:
            cache = self._load()
            evicted = [i for i in ids if cache.pop(i, None) is not None]
            if evicted:
                self._save(cache)
        logger.info(f"Refreshing {len(ids)} workshop title(s), {len(evicted)} evicted from cache")
        return self.get_titles_batch(filenames)

    # ----------------------------
    # Maintenance
    # ----------------------------

    def cleanup_expired(self) -> int:
        """Evict every record older than the TTL. Returns how many went."""
        now_ms = self._now_ms()
        with self._lock:
            cache = self._load()
            expired = [k for k, v in cache.items() if not self._is_valid(v, now_ms)]
            for workshop_id in expired:
                del cache[workshop_id]
            if expired:
                self._save(cache)
        if expired:
            logger.info(f"Evicted {len(expired)} expired workshop record(s)")
        return len(expired)

    def stats(self) -> CacheStats:
        now_ms = self._now_ms()
        cache = self._load()
        valid = sum(1 for v in cache.values() if self._is_valid(v, now_ms))
        return CacheStats(total=len(cache), valid=valid)

    def clear(self) -> None:
        with self._lock:
            self.state.delete(CACHE_KEY)
        logger.info("Workshop cache cleared")
