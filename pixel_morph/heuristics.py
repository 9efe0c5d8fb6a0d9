"""Cost of placing a source pixel on a target slot."""

from __future__ import annotations

import numpy as np

SWAPS_PER_GENERATION_PER_PIXEL = 128


def heuristic(
    apos: tuple[int, int],
    bpos: tuple[int, int],
    a: tuple[int, int, int],
    b: tuple[int, int, int],
    color_weight: float,
    spatial_weight: float,
) -> float:
    """Combined colour and spatial cost for one (source, slot) pair.

    The spatial term is the squared grid distance, weighted and then squared
    again, so it grows with the fourth power of the raw distance.
    """
    dx = apos[0] - bpos[0]
    dy = apos[1] - bpos[1]
    spatial = dx * dx + dy * dy
    dr = a[0] - b[0]
    dg = a[1] - b[1]
    db = a[2] - b[2]
    color = dr * dr + dg * dg + db * db
    return color * color_weight + (spatial * spatial_weight) ** 2


def grid_coords(sidelen: int) -> np.ndarray:
    """(N, 2) int64 array of ``(x, y)`` for every row-major index."""
    idx = np.arange(sidelen * sidelen)
    return np.stack([idx % sidelen, idx // sidelen], axis=1)


def heuristic_row(
    slot: int,
    target_color: np.ndarray,
    weight: float,
    source_pixels: np.ndarray,
    coords: np.ndarray,
    spatial_weight: float,
) -> np.ndarray:
    """Cost of placing every source pixel on one target slot.

    Args:
        slot:           Row-major index of the target slot.
        target_color:   (3,) colour of that slot.
        weight:         Colour weight of that slot.
        source_pixels:  (N, 3) source colours.
        coords:         (N, 2) grid coordinates, see :func:`grid_coords`.
        spatial_weight: Proximity importance.

    Returns:
        (N,) float64 costs, entry ``i`` being source pixel ``i`` on ``slot``.
    """
    d = coords - coords[slot]
    spatial = np.sum(d * d, axis=1).astype(np.float64)
    c = source_pixels.astype(np.float64) - np.asarray(target_color, dtype=np.float64)
    color = np.sum(c * c, axis=1)
    return color * weight + (spatial * spatial_weight) ** 2


def assignment_cost(
    assignments: np.ndarray | list[int],
    source_pixels: np.ndarray,
    target_pixels: np.ndarray,
    weights: np.ndarray,
    sidelen: int,
    spatial_weight: float,
) -> float:
    """Total cost of an assignment (``assignments[slot] = source index``)."""
    src = np.asarray(assignments)
    coords = grid_coords(sidelen)
    d = coords[src] - coords
    spatial = np.sum(d * d, axis=1).astype(np.float64)
    c = source_pixels[src].astype(np.float64) - target_pixels.astype(np.float64)
    color = np.sum(c * c, axis=1)
    return float(np.sum(color * np.asarray(weights, dtype=np.float64)
                        + (spatial * spatial_weight) ** 2))
