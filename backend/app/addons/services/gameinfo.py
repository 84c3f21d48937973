from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Optional, Sequence

from .fs import LocalFileSystem

logger = logging.getLogger("addonmgr.addons.gameinfo")


class ConfigWriteError(RuntimeError):
    pass


ADDON_LINE_INDENT = "\t\t\t"
_SEARCH_PATHS_MARKER = "{addon_search_paths}"

# Left 4 Dead 2 gameinfo.txt. The loader is picky: tabs, comments and
# backslashes are reproduced as shipped.
GAMEINFO_TEMPLATE = (
    '"GameInfo"\n'
    "{\n"
    '\tgame\t"Left 4 Dead 2"\t// Window title\n'
    "\ttype multiplayer_only\n"
    "\tnomodels 1\n"
    "\tnohimodel 1\n"
    "\tl4dcrosshair 1\n"
    "\thidden_maps\n"
    "\t{\n"
    '\t\t"test_speakers"\t\t\t1\n'
    '\t\t"test_hardware"\t\t\t1\n'
    "\t}\n"
    "\tnodegraph 0\n"
    "\tperfwizard 0\n"
    "\tSupportsXbox360 1\n"
    "\tSupportsDX8\t0\n"
    '\tGameData\t"left4dead2.fgd"\n'
    "\n"
    "\tFileSystem\n"
    "\t{\n"
    "\t\tSteamAppId\t\t\t\t550\t\t// This will mount all the GCFs we need (240=CS:S, 220=HL2).\n"
    "\t\tToolsAppId\t\t\t\t563\t\t// Tools will load this (ie: source SDK caches) to get things like "
    "materials\\debug, materials\\editor, etc.\n"
    "\t\t\n"
    "\t\t//\n"
    "\t\t// The code that loads this file automatically does a few things here:\n"
    "\t\t//\n"
    '\t\t// 1. For each "Game" search path, it adds a "GameBin" path, in <dir>\\bin\n'
    '\t\t// 2. For each "Game" search path, it adds another "Game" path in front of it with _<langage> at the end.\n'
    "\t\t//    For example: c:\\hl2\\cstrike on a french machine would get a c:\\hl2\\cstrike_french path added to it.\n"
    '\t\t// 3. For the first "Game" search path, it adds a search path called "MOD".\n'
    '\t\t// 4. For the first "Game" search path, it adds a search path called "DEFAULT_WRITE_PATH".\n'
    "\t\t//\n"
    "\n"
    "\t\t//\n"
    "\t\t// Search paths are relative to the base directory, which is where hl2.exe is found.\n"
    "\t\t//\n"
    "\t\t// |gameinfo_path| points at the directory where gameinfo.txt is.\n"
    "\t\t// We always want to mount that directory relative to gameinfo.txt, so\n"
    "\t\t// people can mount stuff in c:\\mymod, and the main game resources are in\n"
    "\t\t// someplace like c:\\program files\\valve\\steam\\steamapps\\<username>\\half-life 2.\n"
    "\t\t//\n"
    "\t\tSearchPaths\n"
    "\t\t{" + _SEARCH_PATHS_MARKER + "\n"
    "\t\t\tGame\t\t\t\tupdate\n"
    "\t\t\tGame\t\t\t\tleft4dead2_dlc3\n"
    "\t\t\tGame\t\t\t\tleft4dead2_dlc2\n"
    "\t\t\tGame\t\t\t\tleft4dead2_dlc1\n"
    "\t\t\tGame\t\t\t\t|gameinfo_path|.\n"
    "\t\t\tGame\t\t\t\thl2\n"
    "\t\t}\n"
    "\t}\n"
    "}\n"
)

_BARE_LF = re.compile(r"(?<!\r)\n")


def convert_lf_to_crlf(text: str) -> str:
    """Turn every LF not already preceded by CR into CRLF."""
    return _BARE_LF.sub("\r\n", text)


def addon_line(addon_id: str) -> str:
    return f"{ADDON_LINE_INDENT}Game\t\t\t\t{addon_id}"


def render(enabled_ids: Sequence[str], running: bool) -> str:
    """
    Render gameinfo.txt for the given addon ids (highest priority first).

    While the game is running the addon block is left out, so the file is
    back to the stock search paths for the next cold start.
    """
    block = ""
    if not running and enabled_ids:
        block = "\n" + "\n".join(addon_line(addon_id) for addon_id in enabled_ids)

    text = GAMEINFO_TEMPLATE.replace(_SEARCH_PATHS_MARKER, block)
    return convert_lf_to_crlf(text)


def write(path: Path, text: str, fs: Optional[LocalFileSystem] = None) -> None:
    """Overwrite `path` with `text`. Raises ConfigWriteError on failure."""
    fs = fs or LocalFileSystem()
    try:
        fs.write_text(path, text)
    except OSError as e:
        logger.error(f"Failed to write {path}: {e}")
        raise ConfigWriteError(f"Error updating gameinfo.txt at {path}: {e}") from e
    logger.debug(f"Wrote {path} ({len(text)} chars)")
