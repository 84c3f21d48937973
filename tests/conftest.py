from __future__ import annotations

import json
from pathlib import Path
from typing import Callable, Dict, List, Optional, Set

import pytest
import requests

from backend.app.addons.domain.models import GameLayout
from backend.app.addons.services.activation import AddonOrderStore
from backend.app.addons.services.fs import LocalFileSystem
from backend.app.addons.state_store import StateStore


class FlakyFileSystem(LocalFileSystem):
    """
    LocalFileSystem that raises PermissionError for chosen operations/paths.

    `hooks[op]` runs (with the path) before the operation, so a test can
    pause an operation midway or start a competing one.
    """

    def __init__(self) -> None:
        self.fail_ops: Set[str] = set()
        self.fail_paths: Set[Path] = set()
        self.hooks: Dict[str, Callable[[Path], None]] = {}

    def _check(self, op: str, path: Path) -> None:
        hook = self.hooks.get(op)
        if hook is not None:
            hook(path)
        if op in self.fail_ops or path in self.fail_paths:
            raise PermissionError(13, "Permission denied", str(path))

    def list_dir(self, path):
        self._check("list_dir", path)
        return super().list_dir(path)

    def make_dirs(self, path):
        self._check("make_dirs", path)
        super().make_dirs(path)

    def remove_tree(self, path):
        self._check("remove_tree", path)
        super().remove_tree(path)

    def copy_file(self, src, dest):
        self._check("copy_file", dest)
        super().copy_file(src, dest)

    def write_text(self, path, text):
        self._check("write_text", path)
        super().write_text(path, text)


class FakeSteamSession:
    """Stands in for requests.Session; answers from a details table."""

    def __init__(self, details: Optional[Dict[str, dict]] = None) -> None:
        self.details = details or {}
        self.calls: List[List[str]] = []
        self.fail_when: Optional[Callable[[List[str]], bool]] = None
        self.status_code = 200
        self.top_result = 1
        self.before_reply: Optional[Callable[[List[str]], None]] = None

    def post(self, url, data=None, timeout=None):
        count = int(data["itemcount"])
        ids = [data[f"publishedfileids[{i}]"] for i in range(count)]
        self.calls.append(ids)

        if self.before_reply is not None:
            self.before_reply(ids)
        if self.fail_when is not None and self.fail_when(ids):
            raise requests.ConnectionError("steam unreachable")

        items = []
        for workshop_id in ids:
            if workshop_id in self.details:
                items.append({"publishedfileid": workshop_id, "result": 1, **self.details[workshop_id]})
            else:
                items.append({"publishedfileid": workshop_id, "result": 9})

        resp = requests.Response()
        resp.status_code = self.status_code
        resp._content = json.dumps(
            {"response": {"result": self.top_result, "resultcount": len(items), "publishedfiledetails": items}}
        ).encode("utf-8")
        return resp


def make_game_root(root: Path, packages=(), previews=(), subdir: str = "left4dead2") -> GameLayout:
    layout = GameLayout(root=root, game_subdir=subdir)
    layout.workshop_dir.mkdir(parents=True, exist_ok=True)
    for name in packages:
        (layout.workshop_dir / name).write_bytes(f"VPK:{name}".encode("utf-8"))
    for name in previews:
        (layout.workshop_dir / name).write_bytes(b"\xff\xd8\xff")
    return layout


def snapshot_tree(root: Path) -> Dict[str, bytes]:
    return {
        str(p.relative_to(root)): p.read_bytes()
        for p in sorted(root.rglob("*"))
        if p.is_file()
    }


@pytest.fixture
def state(tmp_path: Path) -> StateStore:
    return StateStore(tmp_path / "data" / "state.json")


@pytest.fixture
def flaky_fs() -> FlakyFileSystem:
    return FlakyFileSystem()


@pytest.fixture
def game(tmp_path: Path) -> GameLayout:
    return make_game_root(
        tmp_path / "L4D2",
        packages=["workshop_111.vpk", "workshop_222.vpk", "333.vpk"],
        previews=["workshop_111.jpg"],
    )


@pytest.fixture
def order_store(state: StateStore, flaky_fs: FlakyFileSystem, game: GameLayout) -> AddonOrderStore:
    store = AddonOrderStore(state, flaky_fs, layout=game)
    store.load()
    return store


@pytest.fixture
def steam_session() -> FakeSteamSession:
    return FakeSteamSession()
