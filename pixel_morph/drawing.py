"""Live refinement of a hand-drawn canvas towards the target image.

Same swap trials as the local search, but on a fixed canvas, with a
per-pixel search radius that depends on how long ago the pixel was drawn,
and a large bonus for keeping a pixel next to others of its stroke. The
loop never finishes by itself; it streams assignments until cancelled.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass

import numpy as np

from pixel_morph.config import GenerationSettings
from pixel_morph.events import AssignmentsUpdate, CancelToken, Cancelled, Sink
from pixel_morph.heuristics import SWAPS_PER_GENERATION_PER_PIXEL, heuristic
from pixel_morph.image_io import PreparedImages, TargetImage, prepare_images
from pixel_morph.presets import UnprocessedPreset
from pixel_morph.rng import RNG

logger = logging.getLogger(__name__)

DRAWING_CANVAS_SIZE = 128
STROKE_REWARD = -10_000_000_000.0
AGE_STEP = 30  # frames per radius decay step

_NEIGHBOURS = ((0, -1), (-1, 0), (1, 0), (0, 1))


@dataclass(frozen=True)
class PixelData:
    stroke_id: int = 0
    last_edited: int = 0


def init_pixel_data(frame_count: int, canvas_size: int = DRAWING_CANVAS_SIZE) -> list[PixelData]:
    return [PixelData(0, frame_count) for _ in range(canvas_size * canvas_size)]


def compute_max_dist(age: int, canvas_size: int = DRAWING_CANVAS_SIZE) -> int:
    """Search radius for a pixel last edited ``age`` frames ago."""
    base = canvas_size / 4
    return int(math.floor(base * 0.99 ** (age // AGE_STEP) + 0.5))


def colors_to_rgb(colors: np.ndarray) -> list[tuple[int, int, int]]:
    """Seed colours in [0, 1] back to 8-bit RGB tuples."""
    rgb = np.minimum(255, np.floor(np.asarray(colors)[:, :3] * 256 + 0.5)).astype(np.int64)
    return [tuple(c) for c in rgb.tolist()]


class DrawingSolver:
    """Swap-trial state over a ``canvas_size`` x ``canvas_size`` canvas."""

    def __init__(
        self,
        images: PreparedImages,
        proximity_importance: float,
        colors: np.ndarray,
        pixel_data: list[PixelData],
        frame_count: int,
        seed: int = 12345,
    ) -> None:
        self.size = images.sidelen
        self.proximity = proximity_importance
        self.target = [tuple(p) for p in images.target_pixels.tolist()]
        self.weights = [float(w) for w in images.weights]
        self.frame_count = frame_count
        self.rng = RNG(seed)

        n = self.size * self.size
        self.swaps_per_generation = SWAPS_PER_GENERATION_PER_PIXEL * n
        self._rgb = colors_to_rgb(colors)
        self._pixel_data = list(pixel_data)
        self.slots = list(range(n))
        self.costs = [self._cost(i, i) + STROKE_REWARD for i in range(n)]

    def _cost(self, src: int, slot: int) -> float:
        side = self.size
        return heuristic(
            (src % side, src // side),
            (slot % side, slot // side),
            self._rgb[src],
            self.target[slot],
            self.weights[slot],
            self.proximity,
        )

    def _age(self, pos: int) -> int:
        return max(0, self.frame_count - self._pixel_data[pos].last_edited)

    def stroke_reward(self, new_pos: int, old_pos: int) -> float:
        """Bonus when the pixel at ``old_pos`` would land next to its own stroke."""
        stroke = self._pixel_data[self.slots[old_pos]].stroke_id
        side = self.size
        x, y = new_pos % side, new_pos // side
        for dx, dy in _NEIGHBOURS:
            nx, ny = x + dx, y + dy
            if 0 <= nx < side and 0 <= ny < side:
                if self._pixel_data[self.slots[ny * side + nx]].stroke_id == stroke:
                    return STROKE_REWARD
        return 0.0

    def run_generation(self, colors: np.ndarray, pixel_data: list[PixelData]) -> int:
        """One generation against a snapshot of the canvas; returns swaps kept."""
        self._rgb = colors_to_rgb(colors)
        self._pixel_data = list(pixel_data)

        side = self.size
        n = len(self.slots)
        hi = side - 1
        rng = self.rng
        slots = self.slots
        costs = self.costs
        swaps = 0

        for _ in range(self.swaps_per_generation):
            apos = rng.int(n)
            ax, ay = apos % side, apos // side
            dist_a = max(1, compute_max_dist(self._age(apos), side))
            bx = min(max(ax + rng.range(-dist_a, dist_a + 1), 0), hi)
            by = min(max(ay + rng.range(-dist_a, dist_a + 1), 0), hi)
            bpos = by * side + bx

            dist_b = max(1, compute_max_dist(self._age(bpos), side))
            if abs(bx - ax) > dist_b or abs(by - ay) > dist_b:
                continue

            a_on_b = self._cost(slots[apos], bpos) + self.stroke_reward(bpos, apos)
            b_on_a = self._cost(slots[bpos], apos) + self.stroke_reward(apos, bpos)
            improvement = (costs[apos] - b_on_a) + (costs[bpos] - a_on_b)
            if improvement > 0:
                slots[apos], slots[bpos] = slots[bpos], slots[apos]
                costs[apos] = b_on_a
                costs[bpos] = a_on_b
                swaps += 1
        return swaps


def drawing_process_genetic(
    source: UnprocessedPreset,
    target: TargetImage,
    settings: GenerationSettings,
    sink: Sink,
    colors: np.ndarray,
    pixel_data: list[PixelData],
    frame_count: int,
    cancel: CancelToken,
    canvas_size: int = DRAWING_CANVAS_SIZE,
) -> None:
    """Stream :class:`AssignmentsUpdate` s for a drawing until cancelled.

    ``colors`` and ``pixel_data`` may be edited by the caller while this
    runs; each generation works on a copy taken when it starts.
    """
    images = prepare_images(source.image, target, settings, sidelen=canvas_size)
    solver = DrawingSolver(
        images, settings.proximity_importance,
        np.array(colors, copy=True), pixel_data, frame_count,
    )
    logger.info("Drawing refinement start | %dx%d canvas", canvas_size, canvas_size)

    while True:
        swaps = solver.run_generation(np.array(colors, copy=True), list(pixel_data))

        if cancel.cancelled:
            logger.info("Drawing refinement cancelled")
            sink(Cancelled())
            return

        if swaps > 0:
            sink(AssignmentsUpdate(list(solver.slots)))
