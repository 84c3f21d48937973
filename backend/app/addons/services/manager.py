from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import Dict, List, Optional

from ..domain.models import (
    AddonEntry,
    AddonsResponse,
    AddonView,
    DiscoveryResult,
    GameLayout,
    MoveDirection,
    RecreateReport,
)
from ..state_store import StateStore
from ..workshop.cache import WorkshopMetadataCache, extract_workshop_id
from .activation import AddonOrderStore, GamePathNotSetError, StateWriteError
from .discovery import DiscoveryError, discover
from .fs import LocalFileSystem
from .gameinfo import ConfigWriteError

logger = logging.getLogger("addonmgr.addons.manager")

GAME_PATH_KEY = "l4d2Path"


class AddonManager:
    """
    Session facade over discovery, the order store and the workshop cache.

    Owns the chosen game root (persisted under GAME_PATH_KEY) and the
    preview images found by the last discovery pass.
    """

    def __init__(
        self,
        state: StateStore,
        *,
        fs: Optional[LocalFileSystem] = None,
        workshop: Optional[WorkshopMetadataCache] = None,
        game_subdir: str = "left4dead2",
    ):
        self.state = state
        self.fs = fs or LocalFileSystem()
        self.workshop = workshop
        self.game_subdir = game_subdir
        self.orders = AddonOrderStore(state, self.fs)
        self.preview_images: Dict[str, Path] = {}
        self.last_error: Optional[str] = None
        self._lock = threading.RLock()

    # ----------------------------
    # Game path
    # ----------------------------

    @property
    def game_path(self) -> Optional[Path]:
        layout = self.orders.layout
        return layout.root if layout else None

    def _layout_for(self, path: Path) -> GameLayout:
        return GameLayout(root=path, game_subdir=self.game_subdir)

    def startup(self) -> None:
        """Load persisted path + order and reconcile against the disk. Failures end up in last_error."""
        with self._lock, self.orders.lock:
            self.orders.load()
            saved = self.state.get(GAME_PATH_KEY)
            if not saved:
                logger.info("No game path saved yet")
                return

            self.orders.set_layout(self._layout_for(Path(saved)))
            try:
                self.reload()
            except DiscoveryError as e:
                logger.error(f"Startup discovery failed for {saved}: {e}")
            except (ConfigWriteError, StateWriteError) as e:
                logger.error(f"Startup reconcile could not write its results: {e}")
                self.last_error = str(e)

    def set_game_path(self, path: Path) -> List[AddonEntry]:
        """
        Switch to a new game root.

        Discovery runs first; if it fails nothing changes and DiscoveryError
        propagates. The switch and its reconcile hold the order store lock, so
        no toggle or move straddles two roots.
        """
        with self._lock, self.orders.lock:
            layout = self._layout_for(Path(path))
            result = self._discover(layout)

            current = self.orders.layout
            same_root = current is not None and current.root == layout.root
            self.state.set(GAME_PATH_KEY, str(layout.root))
            self.orders.set_layout(layout)
            logger.info(f"Game path set to {layout.root}")
            return self._apply(result, prune_orphans=same_root)

    def clear_game_path(self) -> None:
        with self._lock, self.orders.lock:
            self.state.delete(GAME_PATH_KEY)
            self.orders.clear()
            self.orders.set_layout(None)
            self.preview_images = {}
            self.last_error = None
            logger.info("Game path cleared")

    # ----------------------------
    # Discovery
    # ----------------------------

    def _discover(self, layout: GameLayout) -> DiscoveryResult:
        try:
            return discover(layout.workshop_dir, fs=self.fs)
        except DiscoveryError as e:
            self.last_error = str(e)
            raise

    def _apply(self, result: DiscoveryResult, *, prune_orphans: bool = True) -> List[AddonEntry]:
        self.preview_images = dict(result.preview_images)
        self.last_error = None
        return self.orders.reconcile(result.names, prune_orphans=prune_orphans)

    def reload(self) -> List[AddonEntry]:
        """Re-scan the workshop directory and reconcile. Prior order survives a DiscoveryError."""
        with self._lock, self.orders.lock:
            layout = self._require_layout()
            try:
                result = self._discover(layout)
            except DiscoveryError:
                self.preview_images = {}
                raise
            return self._apply(result)

    def _require_layout(self) -> GameLayout:
        layout = self.orders.layout
        if layout is None:
            raise GamePathNotSetError("Game path is not set")
        return layout

    # ----------------------------
    # Activation (delegated)
    # ----------------------------

    def toggle(self, name: str) -> List[AddonEntry]:
        return self.orders.toggle(name)

    def move(self, name: str, direction: MoveDirection) -> List[AddonEntry]:
        return self.orders.move(name, direction)

    def set_running(self, running: bool) -> None:
        self.orders.set_running_state(running)

    def recreate_active(self) -> RecreateReport:
        return self.orders.recreate_active()

    # ----------------------------
    # Views
    # ----------------------------

    def preview_path(self, name: str) -> Optional[Path]:
        return self.preview_images.get(name)

    def snapshot(self, include_titles: bool = False) -> AddonsResponse:
        entries = self.orders.entries
        titles: Dict[str, str] = {}
        if include_titles and self.workshop is not None and entries:
            titles = self.workshop.get_titles([e.name for e in entries])

        rows = []
        for entry in entries:
            workshop_id = extract_workshop_id(entry.name)
            rows.append(
                AddonView(
                    name=entry.name,
                    order=entry.order,
                    enabled=entry.enabled,
                    addonId=entry.addonId,
                    workshopId=workshop_id,
                    title=titles.get(workshop_id) if workshop_id else None,
                    hasPreview=entry.name in self.preview_images,
                )
            )

        game_path = self.game_path
        return AddonsResponse(
            gamePath=str(game_path) if game_path else None,
            running=self.orders.running,
            selectedCount=sum(1 for e in entries if e.enabled),
            addons=rows,
            error=self.last_error,
        )
