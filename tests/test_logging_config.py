from __future__ import annotations

import logging
from pathlib import Path

import pytest

from backend.app import logging_config
from backend.app.logging_config import CHANNELS, setup_logging


@pytest.fixture
def log_dir(tmp_path: Path):
    directory = tmp_path / "logs"
    setup_logging(directory, "info")
    yield directory

    for filename, names, _ in CHANNELS:
        handler = logging_config._handlers.pop(str((directory / filename).resolve()), None)
        if handler is None:
            continue
        for name in names:
            logging.getLogger(name).removeHandler(handler)
        handler.close()


def test_each_subsystem_gets_its_own_file(log_dir: Path) -> None:
    logging.getLogger("addonmgr.addons.activation").info("toggled addon1")
    logging.getLogger("addonmgr.workshop.cache").debug("chunk of 100")
    logging.getLogger("addonmgr.core").info("starting")

    assert "toggled addon1" in (log_dir / "addons.log").read_text(encoding="utf-8")
    assert "chunk of 100" in (log_dir / "workshop.log").read_text(encoding="utf-8")
    assert "starting" in (log_dir / "core.log").read_text(encoding="utf-8")
    assert "toggled addon1" not in (log_dir / "core.log").read_text(encoding="utf-8")


def test_configured_level_filters_debug(log_dir: Path) -> None:
    logging.getLogger("addonmgr.addons.discovery").debug("listing entries")

    assert "listing entries" not in (log_dir / "addons.log").read_text(encoding="utf-8")


def test_setup_twice_does_not_duplicate_lines(log_dir: Path) -> None:
    setup_logging(log_dir, "info")

    logging.getLogger("addonmgr.addons.manager").info("only once")

    assert (log_dir / "addons.log").read_text(encoding="utf-8").count("only once") == 1
