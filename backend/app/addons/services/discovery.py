from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

from ..domain.models import PACKAGE_EXTENSION, PREVIEW_EXTENSION, DiscoveryResult
from .fs import LocalFileSystem

logger = logging.getLogger("addonmgr.addons.discovery")


class DiscoveryError(RuntimeError):
    pass


def preview_name_for(package_name: str) -> str:
    return package_name[: -len(PACKAGE_EXTENSION)] + PREVIEW_EXTENSION


def discover(source_dir: Path, fs: Optional[LocalFileSystem] = None) -> DiscoveryResult:
    """
    List the package files in `source_dir` and pair each with its preview image.

    - Only regular files ending in .vpk count as packages.
    - `<stem>.jpg` next to `<stem>.vpk` is recorded as its preview.
    - Names come back sorted, which fixes the discovery order.

    Raises DiscoveryError if the directory cannot be listed.
    """
    fs = fs or LocalFileSystem()
    logger.debug(f"Discovering packages in {source_dir}")

    try:
        entries = fs.list_dir(source_dir)
    except OSError as e:
        logger.error(f"Cannot list addon directory {source_dir}: {e}")
        raise DiscoveryError(f"Cannot list addons in {source_dir}, check path or permissions: {e}") from e

    files = {}
    for entry in entries:
        try:
            if fs.is_file(entry):
                files[entry.name] = entry
        except OSError as e:
            logger.warning(f"Skipping unreadable entry {entry}: {e}")

    names = sorted(n for n in files if n.endswith(PACKAGE_EXTENSION))

    previews = {}
    for name in names:
        image = preview_name_for(name)
        if image in files:
            previews[name] = files[image]

    logger.info(f"Discovered {len(names)} package(s), {len(previews)} with preview, in {source_dir}")
    return DiscoveryResult(names=names, preview_images=previews)
