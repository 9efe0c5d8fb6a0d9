"""Randomised pairwise-swap local search with a shrinking search radius."""

from __future__ import annotations

import logging
import time

from pixel_morph.config import Algorithm, GenerationSettings
from pixel_morph.events import CancelToken, Cancelled, Done, Preview, Progress, Sink, discard
from pixel_morph.heuristics import SWAPS_PER_GENERATION_PER_PIXEL, heuristic
from pixel_morph.image_io import PreparedImages, TargetImage, assignments_to_image, prepare_images
from pixel_morph.presets import Preset, UnprocessedPreset
from pixel_morph.rng import RNG
from pixel_morph.solver_optimal import process_optimal

logger = logging.getLogger(__name__)

DEFAULT_SEED = 12345
RADIUS_DECAY = 0.99
MIN_RADIUS = 2
SETTLE_RADIUS = 4  # done once the radius is below this ...
SETTLE_SWAPS = 10  # ... and a generation accepts fewer swaps than this


def _clamp(value: int, lo: int, hi: int) -> int:
    return min(max(value, lo), hi)


class GeneticSolver:
    """State of one local-search run.

    ``slots[p]`` is the source pixel currently placed on slot ``p`` and
    ``costs[p]`` its cached cost there. A swap exchanges two entries of each
    list, nothing else moves.
    """

    def __init__(
        self,
        images: PreparedImages,
        proximity_importance: float,
        seed: int = DEFAULT_SEED,
        swaps_per_pixel: int = SWAPS_PER_GENERATION_PER_PIXEL,
    ) -> None:
        self.sidelen = images.sidelen
        self.proximity = proximity_importance
        self.source = [tuple(p) for p in images.source_pixels.tolist()]
        self.target = [tuple(p) for p in images.target_pixels.tolist()]
        self.weights = [float(w) for w in images.weights]
        self.rng = RNG(seed)
        self.swaps_per_generation = swaps_per_pixel * len(self.source)
        self.max_dist = self.sidelen
        self.initial_max_dist = self.sidelen
        self.generation = 0

        n = len(self.source)
        self.slots = list(range(n))
        self.costs = [self._cost(i, i) for i in range(n)]

    def _cost(self, src: int, slot: int) -> float:
        side = self.sidelen
        return heuristic(
            (src % side, src // side),
            (slot % side, slot // side),
            self.source[src],
            self.target[slot],
            self.weights[slot],
            self.proximity,
        )

    @property
    def assignments(self) -> list[int]:
        return list(self.slots)

    @property
    def total_cost(self) -> float:
        return float(sum(self.costs))

    @property
    def progress(self) -> float:
        return 1 - self.max_dist / self.initial_max_dist

    def run_generation(self) -> int:
        """Try one generation of random swaps and return how many were kept."""
        side = self.sidelen
        n = len(self.slots)
        hi = max(0, side - 1)
        max_dist = self.max_dist
        rng = self.rng
        slots = self.slots
        costs = self.costs
        swaps = 0

        for _ in range(self.swaps_per_generation):
            apos = rng.int(n)
            ax, ay = apos % side, apos // side
            bx = _clamp(ax + rng.range(-max_dist, max_dist + 1), 0, hi)
            by = _clamp(ay + rng.range(-max_dist, max_dist + 1), 0, hi)
            bpos = by * side + bx

            a_on_b = self._cost(slots[apos], bpos)
            b_on_a = self._cost(slots[bpos], apos)
            improvement = (costs[apos] - b_on_a) + (costs[bpos] - a_on_b)
            if improvement > 0:
                slots[apos], slots[bpos] = slots[bpos], slots[apos]
                costs[apos] = b_on_a
                costs[bpos] = a_on_b
                swaps += 1

        self.generation += 1
        return swaps

    def settled(self, swaps: int) -> bool:
        return self.max_dist < SETTLE_RADIUS and swaps < SETTLE_SWAPS

    def shrink(self) -> None:
        self.max_dist = max(MIN_RADIUS, int(self.max_dist * RADIUS_DECAY))


def process_genetic(
    source: UnprocessedPreset,
    target: TargetImage,
    settings: GenerationSettings,
    sink: Sink = discard,
    cancel: CancelToken | None = None,
    seed: int = DEFAULT_SEED,
) -> Preset | None:
    """Approximate the optimal assignment by greedy local search.

    Each generation tries ``128 * N`` swaps of a random pixel with a partner
    at most ``max_dist`` cells away, keeping only strict improvements. The
    radius decays by 1 % per generation (never below 2). Once it is below 4
    and a generation keeps fewer than 10 swaps the run is done.

    Returns:
        The solved :class:`Preset` (also sent as :class:`Done`), or ``None``
        when the run was cancelled.
    """
    images = prepare_images(source.image, target, settings)
    solver = GeneticSolver(images, settings.proximity_importance, seed=seed)

    logger.info(
        "Local search start | %d px  swaps/gen=%s  radius=%d",
        len(solver.slots), f"{solver.swaps_per_generation:,}", solver.max_dist,
    )
    t0 = time.perf_counter()

    while True:
        swaps = solver.run_generation()

        if cancel is not None and cancel.cancelled:
            logger.info("Local search cancelled after %d generations", solver.generation)
            sink(Cancelled())
            return None

        assignments = solver.assignments
        if solver.settled(swaps):
            break

        logger.debug(
            "  gen %4d  radius=%3d  swaps=%s  cost=%.0f",
            solver.generation, solver.max_dist, f"{swaps:,}", solver.total_cost,
        )
        sink(Preview(
            images.sidelen, images.sidelen,
            assignments_to_image(images.source_pixels, assignments, images.sidelen),
        ))
        sink(Progress(solver.progress))
        solver.shrink()

    logger.info(
        "Local search done | %d generations  cost=%.0f  (%.1f s)",
        solver.generation, solver.total_cost, time.perf_counter() - t0,
    )
    preset = Preset(
        inner=UnprocessedPreset(name=source.name, image=images.source_image),
        assignments=assignments,
    )
    sink(Done(preset))
    return preset


def process_preset(
    source: UnprocessedPreset,
    target: TargetImage,
    settings: GenerationSettings,
    sink: Sink = discard,
    cancel: CancelToken | None = None,
) -> Preset | None:
    """Run whichever solver ``settings.algorithm`` names."""
    if settings.algorithm is Algorithm.OPTIMAL:
        return process_optimal(source, target, settings, sink, cancel)
    return process_genetic(source, target, settings, sink, cancel)
