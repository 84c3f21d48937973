from __future__ import annotations

import shutil
from pathlib import Path
from typing import List


class LocalFileSystem:
    """
    Thin wrapper over the host filesystem.

    All methods raise OSError subclasses on failure. `remove_tree` raises
    FileNotFoundError when the target is missing; callers decide whether
    that matters.
    """

    def list_dir(self, path: Path) -> List[Path]:
        return sorted(path.iterdir(), key=lambda p: p.name)

    def is_file(self, path: Path) -> bool:
        return path.is_file()

    def make_dirs(self, path: Path) -> None:
        path.mkdir(parents=True, exist_ok=True)

    def remove_tree(self, path: Path) -> None:
        if path.is_symlink():
            path.unlink()
            return
        shutil.rmtree(path)

    def copy_file(self, src: Path, dest: Path) -> None:
        if not src.is_file():
            raise FileNotFoundError(f"Source package not found: {src}")
        shutil.copyfile(src, dest)

    def write_text(self, path: Path, text: str) -> None:
        # newline="" keeps the caller's line endings byte-exact
        with open(path, "w", encoding="utf-8", newline="") as fh:
            fh.write(text)
