"""Presets (source image + assignment) and a directory-backed store."""

from __future__ import annotations

import json
import logging
import shutil
import time
import uuid
from dataclasses import dataclass
from pathlib import Path

import numpy as np
from PIL import Image

logger = logging.getLogger(__name__)

_SOURCE_FILE = "source.png"
_ASSIGNMENTS_FILE = "assignments.json"
_META_FILE = "meta.json"


@dataclass(frozen=True)
class UnprocessedPreset:
    """A named source picture that has not been solved yet."""

    name: str
    image: np.ndarray  # (H, W, 3) uint8

    @property
    def width(self) -> int:
        return int(self.image.shape[1])

    @property
    def height(self) -> int:
        return int(self.image.shape[0])


@dataclass(frozen=True)
class Preset:
    """A solved source: ``assignments[slot]`` is the source pixel placed there."""

    inner: UnprocessedPreset
    assignments: list[int]

    @property
    def name(self) -> str:
        return self.inner.name


@dataclass(frozen=True)
class StoredPresetMeta:
    id: str
    name: str
    created_at: float


def save_preset(root: str | Path, preset: Preset) -> StoredPresetMeta:
    """Write ``preset`` under ``root/<new id>/`` and return its metadata."""
    meta = StoredPresetMeta(id=uuid.uuid4().hex, name=preset.name, created_at=time.time())
    folder = Path(root) / meta.id
    folder.mkdir(parents=True)

    Image.fromarray(preset.inner.image.astype(np.uint8)).save(folder / _SOURCE_FILE)
    (folder / _ASSIGNMENTS_FILE).write_text(json.dumps([int(a) for a in preset.assignments]))
    (folder / _META_FILE).write_text(
        json.dumps({"name": meta.name, "created_at": meta.created_at}),
    )
    logger.info("Preset '%s' stored as %s", meta.name, meta.id)
    return meta


def load_preset(root: str | Path, preset_id: str) -> Preset:
    """Read a stored preset.

    Raises:
        FileNotFoundError: if no preset with that id exists.
    """
    folder = Path(root) / preset_id
    if not folder.is_dir():
        msg = f"No stored preset {preset_id!r} in {root}"
        raise FileNotFoundError(msg)

    meta = json.loads((folder / _META_FILE).read_text())
    assignments = json.loads((folder / _ASSIGNMENTS_FILE).read_text())
    image = np.array(Image.open(folder / _SOURCE_FILE).convert("RGB"), dtype=np.uint8)
    return Preset(
        inner=UnprocessedPreset(name=meta["name"], image=image),
        assignments=[int(a) for a in assignments],
    )


def list_presets(root: str | Path) -> list[StoredPresetMeta]:
    """All stored presets, newest first."""
    root = Path(root)
    if not root.exists():
        return []
    found = []
    for meta_path in root.glob(f"*/{_META_FILE}"):
        meta = json.loads(meta_path.read_text())
        found.append(StoredPresetMeta(
            id=meta_path.parent.name,
            name=meta["name"],
            created_at=float(meta["created_at"]),
        ))
    return sorted(found, key=lambda m: m.created_at, reverse=True)


def delete_preset(root: str | Path, preset_id: str) -> None:
    folder = Path(root) / preset_id
    if folder.is_dir():
        shutil.rmtree(folder)
