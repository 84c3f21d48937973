from __future__ import annotations

import logging
import threading
from typing import Iterable, List, Optional, Sequence, Tuple

from pydantic import ValidationError

from ..domain.models import AddonEntry, GameLayout, MoveDirection, RecreateReport
from ..state_store import StateStore
from . import gameinfo
from .fs import LocalFileSystem

logger = logging.getLogger("addonmgr.addons.activation")

ORDER_KEY = "addonOrder"


class MirrorError(RuntimeError):
    pass


class PersistedStateCorrupt(ValueError):
    pass


class AddonNotFoundError(KeyError):
    pass


class GamePathNotSetError(RuntimeError):
    pass


class StateWriteError(RuntimeError):
    pass


# ----------------------------
# Pure helpers
# ----------------------------

def next_addon_id(entries: Iterable[AddonEntry]) -> str:
    """
    Lowest `addon<N>` (N >= 1) not used by `entries`.

    Linear scan per allocation; addon lists stay in the tens to hundreds.
    """
    return _lowest_free_id({e.addonId for e in entries})


def _lowest_free_id(used: set) -> str:
    counter = 1
    while f"addon{counter}" in used:
        counter += 1
    return f"addon{counter}"


def reconcile_order(
    current: Sequence[AddonEntry], discovered: Sequence[str]
) -> Tuple[List[AddonEntry], List[AddonEntry]]:
    """
    Merge a discovery pass into an activation order.

    Returns (new_order, dropped):
      - entries whose file is gone are dropped
      - survivors keep order / enabled / addonId and their relative position
      - new names are appended disabled, in discovery order, with order
        counting up from the current maximum and the lowest free addonId
    """
    names = list(dict.fromkeys(discovered))
    present = set(names)

    kept = [e.model_copy() for e in current if e.name in present]
    dropped = [e.model_copy() for e in current if e.name not in present]

    known = {e.name for e in kept}
    result = list(kept)
    tail = max((e.order for e in kept), default=0)

    for name in names:
        if name in known:
            continue
        tail += 1
        result.append(
            AddonEntry(name=name, order=tail, enabled=False, addonId=next_addon_id(result))
        )
        known.add(name)

    return result, dropped


def selected_ids(entries: Sequence[AddonEntry]) -> List[str]:
    """Enabled addon ids by ascending order; ties keep list position."""
    enabled = [e for e in entries if e.enabled]
    enabled.sort(key=lambda e: e.order)
    return [e.addonId for e in enabled]


def parse_persisted_order(raw: object) -> List[AddonEntry]:
    """
    Validate the persisted order and repair identifiers.

    Raises PersistedStateCorrupt if `raw` is not a list of records.
    Missing or duplicated addonIds get the lowest free id; repeated names
    keep the first occurrence.
    """
    if not isinstance(raw, list):
        raise PersistedStateCorrupt(f"Expected a list of addon records, got {type(raw).__name__}")

    try:
        records = [AddonEntry.model_validate(item) for item in raw]
    except ValidationError as e:
        raise PersistedStateCorrupt(str(e)) from e

    unique: List[AddonEntry] = []
    names = set()
    for record in records:
        if record.name in names:
            logger.warning(f"Dropping duplicate persisted entry for {record.name}")
            continue
        names.add(record.name)
        unique.append(record)

    # first holder of a valid id keeps it; everyone else is re-allocated
    used = set()
    needs_id = []
    for i, record in enumerate(unique):
        if record.addonId and record.addonId not in used:
            used.add(record.addonId)
        else:
            needs_id.append(i)

    for i in needs_id:
        new_id = _lowest_free_id(used)
        logger.info(f"Assigned {new_id} to {unique[i].name} (was {unique[i].addonId!r})")
        unique[i] = unique[i].model_copy(update={"addonId": new_id})
        used.add(new_id)

    return unique


# ----------------------------
# Store
# ----------------------------

class AddonOrderStore:
    """
    Sole owner of the activation order, the staging directories and
    gameinfo.txt.

    Lifecycle: load() from the state store, mutate through reconcile /
    toggle / move / recreate_active, flush() back. One re-entrant lock
    serializes every operation including its filesystem side effects.
    """

    def __init__(
        self,
        state: StateStore,
        fs: Optional[LocalFileSystem] = None,
        layout: Optional[GameLayout] = None,
    ):
        self.state = state
        self.fs = fs or LocalFileSystem()
        self._layout = layout
        self._lock = threading.RLock()
        self._entries: List[AddonEntry] = []
        self._running = False

    # ----------------------------
    # Persistence
    # ----------------------------

    def load(self) -> List[AddonEntry]:
        with self._lock:
            raw = self.state.get(ORDER_KEY)
            if raw is None:
                self._entries = []
                return self.entries

            try:
                self._entries = parse_persisted_order(raw)
            except PersistedStateCorrupt as e:
                logger.error(f"Discarding corrupt persisted addon order: {e}")
                self.state.delete(ORDER_KEY)
                self._entries = []

            logger.info(f"Loaded {len(self._entries)} addon order entries")
            return self.entries

    def flush(self) -> None:
        with self._lock:
            self.state.set(ORDER_KEY, [e.model_dump() for e in self._entries])

    def _commit(self, layout: Optional[GameLayout]) -> None:
        """
        Persist the order, then regenerate gameinfo.txt for `layout`.

        The config is written even when persisting fails; the failure is
        raised afterwards as StateWriteError. ConfigWriteError wins if both fail.
        """
        persist_error = None
        try:
            self.flush()
        except OSError as e:
            logger.error(f"Failed to persist addon order: {e}")
            persist_error = e

        self._regenerate(layout)

        if persist_error is not None:
            raise StateWriteError(f"Failed to persist addon order: {persist_error}") from persist_error

    def clear(self) -> None:
        with self._lock:
            self._entries = []
            self.state.delete(ORDER_KEY)
            logger.info("Cleared addon order")

    # ----------------------------
    # Layout
    # ----------------------------

    @property
    def lock(self) -> threading.RLock:
        """Held by every operation; callers switching roots take it around set_layout + reconcile."""
        return self._lock

    @property
    def layout(self) -> Optional[GameLayout]:
        return self._layout

    def set_layout(self, layout: Optional[GameLayout]) -> None:
        with self._lock:
            self._layout = layout
            logger.info(f"Game layout set to {layout.root if layout else None}")

    def _require_layout(self) -> GameLayout:
        layout = self._layout
        if layout is None:
            raise GamePathNotSetError("Game path is not set")
        return layout

    # ----------------------------
    # Views
    # ----------------------------

    @property
    def entries(self) -> List[AddonEntry]:
        with self._lock:
            return [e.model_copy() for e in self._entries]

    @property
    def running(self) -> bool:
        return self._running

    def selected_ids(self) -> List[str]:
        with self._lock:
            return selected_ids(self._entries)

    def get(self, name: str) -> AddonEntry:
        with self._lock:
            return self._entries[self._index_of(name)].model_copy()

    def _index_of(self, name: str) -> int:
        for i, entry in enumerate(self._entries):
            if entry.name == name:
                return i
        raise AddonNotFoundError(name)

    # ----------------------------
    # Reconciliation
    # ----------------------------

    def reconcile(self, discovered: Sequence[str], *, prune_orphans: bool = True) -> List[AddonEntry]:
        """
        Merge a discovery pass into the order, persist it and regenerate
        gameinfo.txt.

        With a layout set, enabled entries whose staged package is missing
        are flipped to disabled, and (if prune_orphans) staging directories
        of dropped enabled entries are removed. Both are best-effort.
        """
        with self._lock:
            layout = self._layout
            new_order, dropped = reconcile_order(self._entries, discovered)

            added = len(new_order) - (len(self._entries) - len(dropped))
            logger.info(
                f"Reconciled addon order: {len(new_order)} entries, {added} new, {len(dropped)} dropped"
            )

            if layout is not None:
                if prune_orphans:
                    for entry in dropped:
                        if entry.enabled:
                            self._remove_staging_quietly(layout, entry, reason="source package vanished")
                new_order = self._verify_mirrors(layout, new_order)

            self._entries = new_order
            self._commit(layout)
            return self.entries

    def _verify_mirrors(self, layout: GameLayout, entries: List[AddonEntry]) -> List[AddonEntry]:
        verified = []
        for entry in entries:
            if entry.enabled and not self._is_mirrored(layout, entry):
                logger.warning(f"Addon {entry.name} ({entry.addonId}) is not fully mirrored; marking disabled")
                self._remove_staging_quietly(layout, entry, reason="incomplete mirror")
                entry = entry.model_copy(update={"enabled": False})
            verified.append(entry)
        return verified

    def _is_mirrored(self, layout: GameLayout, entry: AddonEntry) -> bool:
        try:
            return self.fs.is_file(layout.staged_package(entry.addonId))
        except OSError as e:
            logger.warning(f"Cannot inspect staging directory for {entry.addonId}: {e}")
            return False

    def _remove_staging_quietly(self, layout: GameLayout, entry: AddonEntry, *, reason: str) -> None:
        staging = layout.staging_dir(entry.addonId)
        try:
            self.fs.remove_tree(staging)
            logger.info(f"Removed staging directory {staging} ({reason})")
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.error(f"Failed to remove staging directory {staging} ({reason}): {e}")

    # ----------------------------
    # User actions
    # ----------------------------

    def toggle(self, name: str) -> List[AddonEntry]:
        """
        Enable or disable one addon.

        Enabling creates <root>/<addonId>/ and copies the package in as
        pak01_dir.vpk; disabling removes that directory. A filesystem
        failure raises MirrorError and leaves `enabled` unchanged. On
        success the order is persisted and gameinfo.txt regenerated;
        StateWriteError / ConfigWriteError propagate with the new state kept.
        """
        with self._lock:
            layout = self._require_layout()
            index = self._index_of(name)
            entry = self._entries[index]
            staging = layout.staging_dir(entry.addonId)

            if entry.enabled:
                try:
                    self.fs.remove_tree(staging)
                except FileNotFoundError:
                    logger.warning(f"Staging directory {staging} already absent while disabling {name}")
                except OSError as e:
                    logger.error(f"Error disabling addon {name}: {e}")
                    raise MirrorError(f"Error disabling addon {name}: {e}") from e
            else:
                try:
                    self.fs.make_dirs(staging)
                    self.fs.copy_file(layout.source_package(name), layout.staged_package(entry.addonId))
                except OSError as e:
                    logger.error(f"Error enabling addon {name}: {e}")
                    self._remove_staging_quietly(layout, entry, reason="enable failed")
                    raise MirrorError(f"Error enabling addon {name}: {e}") from e

            updated = entry.model_copy(update={"enabled": not entry.enabled})
            self._entries[index] = updated
            logger.info(f"Addon {name} ({updated.addonId}) {'enabled' if updated.enabled else 'disabled'}")

            self._commit(layout)
            return self.entries

    def move(self, name: str, direction: MoveDirection) -> List[AddonEntry]:
        """
        Swap an addon with its neighbour, then renumber every `order` to its
        list index. Moving past either end only renumbers.
        """
        with self._lock:
            layout = self._require_layout()
            index = self._index_of(name)

            if direction == "up" and index > 0:
                target = index - 1
            elif direction == "down" and index < len(self._entries) - 1:
                target = index + 1
            else:
                target = index

            entries = list(self._entries)
            entries[index], entries[target] = entries[target], entries[index]
            self._entries = [e.model_copy(update={"order": i}) for i, e in enumerate(entries)]
            logger.info(f"Moved addon {name} {direction}: position {index} -> {target}")

            self._commit(layout)
            return self.entries

    def set_running_state(self, running: bool) -> None:
        """Record whether the game is running and regenerate gameinfo.txt."""
        with self._lock:
            self._running = running
            logger.info(f"Game running state set to {running}")
            self._regenerate(self._layout)

    def recreate_active(self) -> RecreateReport:
        """
        Re-mirror every enabled addon from its source package.

        Best-effort: a failing addon is reported and the rest continue.
        """
        with self._lock:
            layout = self._require_layout()
            report = RecreateReport()

            for entry in self._entries:
                if not entry.enabled:
                    continue

                staging = layout.staging_dir(entry.addonId)
                try:
                    try:
                        self.fs.remove_tree(staging)
                    except FileNotFoundError:
                        pass
                    self.fs.make_dirs(staging)
                    self.fs.copy_file(layout.source_package(entry.name), layout.staged_package(entry.addonId))
                except OSError as e:
                    logger.error(f"Error recreating addon {entry.name}: {e}")
                    report.errors[entry.name] = str(MirrorError(f"Error recreating addon {entry.name}: {e}"))
                    continue

                report.recreated.append(entry.name)

            logger.info(f"Recreated {len(report.recreated)} addon(s), {len(report.errors)} failed")
            return report

    # ----------------------------
    # Config
    # ----------------------------

    def _regenerate(self, layout: Optional[GameLayout]) -> None:
        if layout is None:
            logger.debug("No game path set; skipping gameinfo.txt regeneration")
            return

        ids = selected_ids(self._entries)
        text = gameinfo.render(ids, self._running)
        gameinfo.write(layout.gameinfo_path, text, fs=self.fs)
        logger.info(f"gameinfo.txt updated: running={self._running} selected={len(ids)}")
