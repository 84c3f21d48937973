from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, Field

PACKAGE_EXTENSION = ".vpk"
PREVIEW_EXTENSION = ".jpg"

# File name the game loader expects inside every staging directory
STAGED_PACKAGE_NAME = "pak01_dir.vpk"

MoveDirection = Literal["up", "down"]


# -----------------------------
# Activation order
# -----------------------------

class AddonEntry(BaseModel):
    """
    One discovered package and its activation state.

    - name: source file name inside the workshop directory (unique key).
    - order: sort position; lower loads earlier. Not necessarily contiguous
      until a move renumbers the whole list.
    - enabled: package is mirrored into its staging directory and listed in
      gameinfo.txt.
    - addonId: stable `addon<N>` identifier, also the staging directory name.
    """

    name: str
    order: int = 0
    enabled: bool = False
    addonId: Optional[str] = None


# -----------------------------
# Game layout
# -----------------------------

@dataclass(frozen=True)
class GameLayout:
    """Paths derived from the chosen game root."""

    root: Path
    game_subdir: str = "left4dead2"

    @property
    def game_dir(self) -> Path:
        return self.root / self.game_subdir

    @property
    def workshop_dir(self) -> Path:
        return self.game_dir / "addons" / "workshop"

    @property
    def gameinfo_path(self) -> Path:
        return self.game_dir / "gameinfo.txt"

    def staging_dir(self, addon_id: str) -> Path:
        return self.root / addon_id

    def staged_package(self, addon_id: str) -> Path:
        return self.staging_dir(addon_id) / STAGED_PACKAGE_NAME

    def source_package(self, name: str) -> Path:
        return self.workshop_dir / name


@dataclass
class DiscoveryResult:
    names: List[str] = field(default_factory=list)
    preview_images: Dict[str, Path] = field(default_factory=dict)


@dataclass
class RecreateReport:
    recreated: List[str] = field(default_factory=list)
    errors: Dict[str, str] = field(default_factory=dict)


# -----------------------------
# API DTOs
# -----------------------------

class AddonView(BaseModel):
    """One row of the addon list as the frontend shows it."""

    name: str
    order: int
    enabled: bool
    addonId: str
    workshopId: Optional[str] = None
    title: Optional[str] = None
    hasPreview: bool = False


class AddonsResponse(BaseModel):
    gamePath: Optional[str] = None
    running: bool = False
    selectedCount: int = 0
    addons: List[AddonView] = Field(default_factory=list)
    error: Optional[str] = None


class OperationResult(BaseModel):
    """
    Outcome of a toggle / move / running-state change.

    partial: the activation state changed but gameinfo.txt could not be
    written.
    """

    status: Literal["ok", "partial", "failed"]
    addons: List[AddonEntry] = Field(default_factory=list)
    errors: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)


class RecreateResult(BaseModel):
    status: Literal["ok", "failed"]
    recreated: List[str] = Field(default_factory=list)
    errors: Dict[str, str] = Field(default_factory=dict)


class SetGamePathRequest(BaseModel):
    path: str


class MoveRequest(BaseModel):
    direction: MoveDirection


class RunningStateRequest(BaseModel):
    running: bool
