"""Image loading, preparation for the solvers, and preview rendering."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

import numpy as np
from PIL import Image

from pixel_morph.config import GenerationSettings
from pixel_morph.errors import InvalidDimensions


@dataclass(frozen=True)
class TargetImage:
    """The picture the source pixels are rearranged into.

    Attributes:
        image:   (H, W, 3) uint8 target.
        weights: Optional (H, W) importance map; ``None`` means uniform.
    """

    image: np.ndarray
    weights: np.ndarray | None = None


@dataclass(frozen=True)
class PreparedImages:
    """Parallel colour and weight arrays for one solver run."""

    source_pixels: np.ndarray  # (N, 3) uint8
    target_pixels: np.ndarray  # (N, 3) uint8
    weights: np.ndarray  # (N,) float64
    sidelen: int
    source_image: np.ndarray  # (sidelen, sidelen, 3) uint8
    target_image: np.ndarray  # (sidelen, sidelen, 3) uint8


def load_image(path: str | Path) -> np.ndarray:
    """Load any Pillow-readable image as an (H, W, 3) uint8 array."""
    img = Image.open(path).convert("RGB")
    return np.array(img, dtype=np.uint8)


def load_weights(source: str | Path | np.ndarray) -> np.ndarray:
    """Importance map from the red channel of an image.

    Returns:
        (H, W) uint8 array.
    """
    if isinstance(source, np.ndarray):
        arr = source
    else:
        arr = np.array(Image.open(source).convert("RGB"), dtype=np.uint8)
    if arr.ndim == 3:
        arr = arr[..., 0]
    return np.ascontiguousarray(arr, dtype=np.uint8)


def uniform_weights(length: int, value: float = 255.0) -> np.ndarray:
    return np.full(length, value, dtype=np.float64)


def prepare_images(
    source: np.ndarray,
    target: TargetImage,
    settings: GenerationSettings,
    sidelen: int | None = None,
) -> PreparedImages:
    """Crop/scale source and target to a common square grid.

    Args:
        source:   (H, W, 3) uint8 source picture.
        target:   Target picture and optional weight map.
        settings: Supplies crop/scale transforms and the default side length.
        sidelen:  Override for ``settings.sidelen`` (fixed-size canvases).

    Raises:
        InvalidDimensions: if source, target and weights disagree in size.
    """
    side = settings.sidelen if sidelen is None else sidelen
    src_img = settings.source_crop_scale.apply(source[..., :3], side)
    tgt_img = settings.target_crop_scale.apply(target.image[..., :3], side)

    source_pixels = src_img.reshape(-1, 3)
    target_pixels = tgt_img.reshape(-1, 3)
    if len(source_pixels) != len(target_pixels):
        msg = (
            f"Source and target pixel counts differ: "
            f"{len(source_pixels)} != {len(target_pixels)}"
        )
        raise InvalidDimensions(msg)

    if target.weights is None:
        weights = uniform_weights(len(target_pixels))
    else:
        w_img = settings.target_crop_scale.apply(load_weights(target.weights), side)
        weights = w_img.reshape(-1).astype(np.float64)
        if len(weights) != len(target_pixels):
            msg = f"Weight map has {len(weights)} entries, expected {len(target_pixels)}"
            raise InvalidDimensions(msg)

    return PreparedImages(
        source_pixels=source_pixels,
        target_pixels=target_pixels,
        weights=weights,
        sidelen=side,
        source_image=src_img,
        target_image=tgt_img,
    )


def assignments_to_image(
    pixels: np.ndarray,
    assignments: np.ndarray | list[int],
    sidelen: int,
) -> np.ndarray:
    """Render an assignment as an opaque (sidelen, sidelen, 4) RGBA image."""
    rgba = np.full((sidelen * sidelen, 4), 255, dtype=np.uint8)
    rgba[:, :3] = pixels[np.asarray(assignments, dtype=np.int64)]
    return rgba.reshape(sidelen, sidelen, 4)


def save_upscaled(
    array: np.ndarray,
    path: str | Path,
    pixel_upscale: int = 8,
) -> None:
    """Save a small array as a nearest-neighbour-upscaled image."""
    img = Image.fromarray(array.astype(np.uint8))
    h, w = array.shape[:2]
    img = img.resize((w * pixel_upscale, h * pixel_upscale), Image.NEAREST)
    img.save(path)
