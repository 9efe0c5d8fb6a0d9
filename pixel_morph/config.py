"""Centralised generation settings via frozen dataclasses."""

from __future__ import annotations

import math
import re
import uuid
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any

import numpy as np
from PIL import Image


class Algorithm(str, Enum):
    """Which assignment solver a run uses."""

    OPTIMAL = "optimal"
    GENETIC = "genetic"


def _new_id() -> str:
    return uuid.uuid4().hex


@dataclass(frozen=True)
class CropScale:
    """Square crop window plus zoom applied before scaling to ``sidelen``.

    Attributes:
        x:     Horizontal window position in [-1, 1] (-1 = left edge).
        y:     Vertical window position in [-1, 1] (-1 = top edge).
        scale: Zoom factor; values below 1 are treated as 1.
    """

    x: float = 0.0
    y: float = 0.0
    scale: float = 1.0

    @classmethod
    def identity(cls) -> CropScale:
        return cls()

    def window(self, width: int, height: int) -> tuple[int, int, int]:
        """Return ``(x0, y0, side)`` of the crop square inside a w x h image."""
        base_side = min(width, height)
        scale = max(1.0, self.scale)
        side = min(max(1, math.floor(base_side / scale)), width, height)

        xn = (min(max(self.x, -1.0), 1.0) + 1.0) * 0.5
        yn = (min(max(self.y, -1.0), 1.0) + 1.0) * 0.5
        x0 = math.floor(xn * max(0, width - side))
        y0 = math.floor(yn * max(0, height - side))
        return x0, y0, side

    def apply(self, image: np.ndarray, sidelen: int) -> np.ndarray:
        """Crop and resize an (H, W, C) uint8 array to (sidelen, sidelen, C)."""
        h, w = image.shape[:2]
        x0, y0, side = self.window(w, h)
        crop = image[y0:y0 + side, x0:x0 + side]
        if side == sidelen:
            return np.ascontiguousarray(crop)
        img = Image.fromarray(crop)
        img = img.resize((sidelen, sidelen), Image.LANCZOS)
        return np.array(img, dtype=np.uint8)

    def to_dict(self) -> dict[str, float]:
        return {"x": self.x, "y": self.y, "scale": self.scale}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> CropScale:
        return cls(float(data["x"]), float(data["y"]), float(data["scale"]))


_VERSION_RE = re.compile(r"^(.*) v(\d+)$")


@dataclass(frozen=True)
class GenerationSettings:
    """All tuneable parameters for one solver run.

    Attributes:
        id:                   Opaque identifier (random hex by default).
        name:                 Human readable label, used for presets.
        proximity_importance: Weight of the spatial term in the cost model.
        algorithm:            Exact ("optimal") or local search ("genetic").
        sidelen:              Side of the square grid; pixel count is sidelen**2.
        source_crop_scale:    Crop/zoom applied to the source image.
        target_crop_scale:    Crop/zoom applied to the target image and weights.
    """

    id: str = field(default_factory=_new_id)
    name: str = "untitled"
    proximity_importance: float = 13.0
    algorithm: Algorithm = Algorithm.GENETIC
    sidelen: int = 64
    source_crop_scale: CropScale = field(default_factory=CropScale.identity)
    target_crop_scale: CropScale = field(default_factory=CropScale.identity)

    def __post_init__(self) -> None:
        if self.sidelen < 1:
            msg = f"sidelen must be positive, got {self.sidelen}"
            raise ValueError(msg)
        if self.proximity_importance < 0:
            msg = "proximity_importance must be non-negative"
            raise ValueError(msg)
        # Accept plain strings, e.g. straight from the CLI or JSON
        object.__setattr__(self, "algorithm", Algorithm(self.algorithm))

    @property
    def pixel_count(self) -> int:
        return self.sidelen * self.sidelen

    def clone_with_new_id(self) -> GenerationSettings:
        return replace(self, id=_new_id(), name=self._next_version_name())

    def _next_version_name(self) -> str:
        match = _VERSION_RE.match(self.name)
        if match:
            base, version = match.groups()
            return f"{base} v{int(version) + 1}"
        return f"{self.name} v2"

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "proximity_importance": self.proximity_importance,
            "algorithm": self.algorithm.value,
            "sidelen": self.sidelen,
            "source_crop_scale": self.source_crop_scale.to_dict(),
            "target_crop_scale": self.target_crop_scale.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> GenerationSettings:
        return cls(
            id=data["id"],
            name=data["name"],
            proximity_importance=float(data["proximity_importance"]),
            algorithm=Algorithm(data["algorithm"]),
            sidelen=int(data["sidelen"]),
            source_crop_scale=CropScale.from_dict(data["source_crop_scale"]),
            target_crop_scale=CropScale.from_dict(data["target_crop_scale"]),
        )
