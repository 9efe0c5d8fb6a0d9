"""Flocking particle simulation that animates pixels to their assigned slots.

Every source pixel is a cell. Each tick the cells feel four forces (walls,
destination pull, neighbour repulsion/alignment and same-stroke cohesion)
and are integrated with drag and a speed limit. Cell state is kept in flat
numpy arrays indexed by source pixel; positions belong to the caller and
are updated in place.
"""

from __future__ import annotations

import logging
import math

import numpy as np

from pixel_morph.drawing import DRAWING_CANVAS_SIZE
from pixel_morph.errors import InvalidDimensions
from pixel_morph.presets import Preset, UnprocessedPreset

logger = logging.getLogger(__name__)

PERSONAL_SPACE = 0.95  # in pixel cells
MAX_VELOCITY = 6.0
ALIGNMENT_FACTOR = 0.8
STROKE_ATTRACTION = 0.8
DRAG = 0.97
DST_FORCE = 0.13
TICKS_PER_SECOND = 60
FACTOR_CAP = 1000.0


def factor_curve(x: np.ndarray) -> np.ndarray:
    return np.minimum(x * x * x, FACTOR_CAP)


def pseudo_random(seed: np.ndarray) -> np.ndarray:
    x = np.sin(seed) * 10000
    return x - np.floor(x)


class Sim:
    """State of every cell in one morph.

    Attributes:
        src, dst:  (N, 2) home and destination coordinates.
        vel, acc:  (N, 2) velocity and accumulated acceleration.
        dst_force: (N,) destination pull strength.
        age:       (N,) ticks since the cell was last (re)started.
        stroke_id: (N,) cohesion group.
        reversed:  True while src/dst are swapped relative to the assignment.
    """

    def __init__(self, name: str, count: int, dst_force: float = DST_FORCE) -> None:
        self.name = name
        self.src = np.zeros((count, 2), dtype=np.float64)
        self.dst = np.zeros((count, 2), dtype=np.float64)
        self.vel = np.zeros((count, 2), dtype=np.float64)
        self.acc = np.zeros((count, 2), dtype=np.float64)
        self.dst_force = np.full(count, dst_force, dtype=np.float64)
        self.age = np.zeros(count, dtype=np.int64)
        self.stroke_id = np.zeros(count, dtype=np.int64)
        self.reversed = False

    def __len__(self) -> int:
        return len(self.src)

    @property
    def grid_side(self) -> int:
        return max(1, round(math.sqrt(len(self))))

    # -- retargeting ---------------------------------------------------

    def set_assignments(self, assignments: list[int] | np.ndarray, sidelen: float) -> None:
        """Rebind every cell to a new assignment (``assignments[slot] = cell``).

        Positions are not touched; velocity, age, pull strength and stroke
        survive so motion stays continuous. The orientation is reset to
        forward (src = source layout, dst = assigned slot).
        """
        width = self.grid_side
        pixel_size = sidelen / width
        cells = np.asarray(assignments, dtype=np.int64)
        slots = np.arange(len(cells))

        self.src[cells, 0] = (cells % width + 0.5) * pixel_size
        self.src[cells, 1] = (cells // width + 0.5) * pixel_size
        self.dst[cells, 0] = (slots % width + 0.5) * pixel_size
        self.dst[cells, 1] = (slots // width + 0.5) * pixel_size
        self.reversed = False

    def set_stroke_ids(self, stroke_ids: list[int] | np.ndarray) -> None:
        self.stroke_id[:] = np.asarray(stroke_ids, dtype=np.int64)

    def switch(self) -> None:
        """Swap home and destination of every cell and restart their ages."""
        self.src, self.dst = self.dst, self.src
        self.age[:] = 0
        self.reversed = not self.reversed

    def prepare_play(self, positions: np.ndarray, reverse: bool) -> None:
        """Set up playback in the requested direction.

        If the requested direction is the current orientation, rewind every
        cell to its home. Otherwise jump to the destinations and switch
        roles, so the next ticks play the morph backwards.
        """
        if self.reversed == reverse:
            positions[:] = self.src
            self.age[:] = 0
        else:
            positions[:] = self.dst
            self.switch()

    # -- forces --------------------------------------------------------

    def _apply_wall_force(self, positions: np.ndarray, sidelen: float, pixel_size: float) -> None:
        space = pixel_size * PERSONAL_SPACE * 0.5
        low = positions < space
        high = positions > sidelen - space
        self.acc += np.where(low, (space - positions) / space, 0.0)
        self.acc -= np.where(high & ~low, (positions - (sidelen - space)) / space, 0.0)

    def _apply_dst_force(self, positions: np.ndarray, sidelen: float) -> None:
        elapsed = self.age / TICKS_PER_SECOND
        factor = np.where(self.dst_force == 0, 0.1, factor_curve(elapsed * self.dst_force))
        d = self.dst - positions
        dist = np.hypot(d[:, 0], d[:, 1])
        self.acc += d * (dist * factor / sidelen)[:, None]

    def _neighbour_pairs(
        self, positions: np.ndarray, pixel_size: float,
    ) -> tuple[np.ndarray, np.ndarray]:
        """All ``(i, j)`` with ``j`` bucketed in one of the 3x3 grid cells around ``i``."""
        side = self.grid_side
        cell = np.floor(positions / pixel_size).astype(np.int64)
        np.clip(cell, 0, side - 1, out=cell)
        bucket = cell[:, 1] * side + cell[:, 0]

        order = np.argsort(bucket, kind="stable")
        counts = np.bincount(bucket, minlength=side * side)
        starts = np.cumsum(counts) - counts

        all_i, all_j = [], []
        for dy in (-1, 0, 1):
            for dx in (-1, 0, 1):
                col = cell[:, 0] + dx
                row = cell[:, 1] + dy
                ok = np.nonzero((col >= 0) & (col < side) & (row >= 0) & (row < side))[0]
                nb = row[ok] * side + col[ok]
                c = counts[nb]
                total = int(c.sum())
                if total == 0:
                    continue
                offsets = np.arange(total) - np.repeat(np.cumsum(c) - c, c)
                all_i.append(np.repeat(ok, c))
                all_j.append(order[np.repeat(starts[nb], c) + offsets])

        if not all_i:
            empty = np.empty(0, dtype=np.int64)
            return empty, empty
        i = np.concatenate(all_i)
        j = np.concatenate(all_j)
        keep = i != j
        return i[keep], j[keep]

    def _apply_neighbour_forces(self, positions: np.ndarray, pixel_size: float) -> None:
        n = len(positions)
        i, j = self._neighbour_pairs(positions, pixel_size)
        if len(i) == 0:
            return

        d = positions[j] - positions[i]
        dist = np.hypot(d[:, 0], d[:, 1])
        space = pixel_size * PERSONAL_SPACE
        weight = (1.0 / np.maximum(dist, 1e-5)) * (space - dist) / space

        push = np.where((dist > 0) & (dist < space), weight, 0.0)
        fx = -d[:, 0] * push
        fy = -d[:, 1] * push

        # Stacked cells get a deterministic nudge so they can separate
        stacked = np.abs(dist) < np.finfo(np.float64).eps
        if stacked.any():
            seed = positions[i, 0] + positions[i, 1] * 9973
            fx += np.where(stacked, (pseudo_random(seed) - 0.5) * 0.1, 0.0)
            fy += np.where(stacked, (pseudo_random(seed * 3.123) - 0.5) * 0.1, 0.0)

        w = np.maximum(0.0, weight)
        same = self.stroke_id[i] == self.stroke_id[j]
        fx += np.where(same, d[:, 0] * w * STROKE_ATTRACTION, 0.0)
        fy += np.where(same, d[:, 1] * w * STROKE_ATTRACTION, 0.0)

        self.acc[:, 0] += np.bincount(i, weights=fx, minlength=n)
        self.acc[:, 1] += np.bincount(i, weights=fy, minlength=n)

        count = np.bincount(i, weights=w, minlength=n)
        avg_x = np.bincount(i, weights=self.vel[j, 0] * w, minlength=n)
        avg_y = np.bincount(i, weights=self.vel[j, 1] * w, minlength=n)
        has = count > 0
        avg = np.stack([avg_x[has], avg_y[has]], axis=1) / count[has, None]
        self.acc[has] += (avg - self.vel[has]) * ALIGNMENT_FACTOR

    # -- integration ---------------------------------------------------

    def update(self, positions: np.ndarray, sidelen: float) -> None:
        """Advance the simulation by one tick, moving ``positions`` in place."""
        if len(self) == 0:
            return
        pixel_size = sidelen / self.grid_side

        self._apply_wall_force(positions, sidelen, pixel_size)
        self._apply_dst_force(positions, sidelen)
        self._apply_neighbour_forces(positions, pixel_size)

        self.vel += self.acc
        self.acc[:] = 0.0
        self.vel *= DRAG
        positions += np.clip(self.vel, -MAX_VELOCITY, MAX_VELOCITY)
        self.age += 1


def init_colors(sidelen: float, image: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
    """Seed positions at pixel centres and RGBA seed colours in [0, 1].

    Raises:
        InvalidDimensions: if the image is not square.
    """
    height, width = image.shape[:2]
    if width != height:
        msg = f"Source image must be square, got {width}x{height}"
        raise InvalidDimensions(msg)
    pixel_size = sidelen / width

    ys, xs = np.divmod(np.arange(width * height), width)
    seeds = np.stack([(xs + 0.5) * pixel_size, (ys + 0.5) * pixel_size], axis=1)
    colors = np.ones((width * height, 4), dtype=np.float64)
    colors[:, :3] = image.reshape(-1, image.shape[2])[:, :3] / 255.0
    return seeds, colors


def init_image(sidelen: float, preset: Preset) -> tuple[np.ndarray, np.ndarray, Sim]:
    """Seeds, colours and a simulation bound to a solved preset."""
    seeds, colors = init_colors(sidelen, preset.inner.image)
    sim = Sim(preset.name, len(seeds))
    sim.set_assignments(preset.assignments, sidelen)
    logger.debug("Simulation '%s' ready with %d cells", sim.name, len(sim))
    return seeds, colors, sim


def init_canvas(
    sidelen: float,
    source: UnprocessedPreset,
    canvas_size: int = DRAWING_CANVAS_SIZE,
) -> tuple[np.ndarray, np.ndarray, Sim]:
    """Seeds, colours and an identity-bound simulation for a drawing canvas.

    Raises:
        InvalidDimensions: if the source is not a ``canvas_size`` square.
    """
    if source.width != canvas_size or source.height != canvas_size:
        msg = f"Canvas must be {canvas_size}x{canvas_size}, got {source.width}x{source.height}"
        raise InvalidDimensions(msg)
    seeds, colors = init_colors(sidelen, source.image)
    sim = Sim(source.name, len(seeds))
    sim.set_assignments(np.arange(canvas_size * canvas_size), sidelen)
    return seeds, colors, sim
