"""Optimal assignment via the Kuhn-Munkres (Hungarian) algorithm."""

from __future__ import annotations

import logging
import time
from typing import Protocol

import numpy as np

from pixel_morph.config import GenerationSettings
from pixel_morph.errors import InvalidDimensions, SizeConstraintViolated
from pixel_morph.events import CancelToken, Cancelled, Done, Preview, Progress, Sink, discard
from pixel_morph.heuristics import grid_coords, heuristic_row
from pixel_morph.image_io import TargetImage, assignments_to_image, prepare_images
from pixel_morph.presets import Preset, UnprocessedPreset

logger = logging.getLogger(__name__)

CHECKPOINT_INTERVAL = 100


class Weights(Protocol):
    """Profit matrix the solver maximises over."""

    def rows(self) -> int: ...

    def columns(self) -> int: ...

    def at(self, row: int, col: int) -> float: ...

    def row(self, row: int) -> np.ndarray: ...


class CostMatrix:
    """Dense (n, n) cost array exposed as profits (negated costs)."""

    def __init__(self, cost: np.ndarray) -> None:
        self._profit = -np.asarray(cost, dtype=np.float64)

    def rows(self) -> int:
        return self._profit.shape[0]

    def columns(self) -> int:
        return self._profit.shape[1]

    def at(self, row: int, col: int) -> float:
        return float(self._profit[row, col])

    def row(self, row: int) -> np.ndarray:
        return self._profit[row]


class ImageWeights:
    """Profits computed on demand from the cost model.

    Rows are target slots, columns are source pixels. Nothing N x N is ever
    materialised; each row costs O(N).
    """

    def __init__(
        self,
        source: np.ndarray,
        target: np.ndarray,
        weights: np.ndarray,
        sidelen: int,
        proximity_importance: float,
    ) -> None:
        self._source = source.astype(np.float64)
        self._target = target.astype(np.float64)
        self._weights = np.asarray(weights, dtype=np.float64)
        self._coords = grid_coords(sidelen)
        self._proximity = proximity_importance

    def rows(self) -> int:
        return len(self._target)

    def columns(self) -> int:
        return len(self._source)

    def at(self, row: int, col: int) -> float:
        return float(self.row(row)[col])

    def row(self, row: int) -> np.ndarray:
        return -heuristic_row(
            row, self._target[row], self._weights[row],
            self._source, self._coords, self._proximity,
        )


def execute_hungarian(
    weights: Weights,
    sink: Sink = discard,
    cancel: CancelToken | None = None,
    preview_pixels: np.ndarray | None = None,
    sidelen: int | None = None,
) -> list[int] | None:
    """Maximum-profit perfect matching of rows onto columns.

    Standard O(n^3) augmenting-path algorithm with vertex labels and slack
    arrays. Every ``CHECKPOINT_INTERVAL`` roots the cancel token is polled,
    progress is reported and, when ``preview_pixels`` is given, a preview of
    the rows matched so far (unmatched rows shown as column 0).

    Args:
        weights:        Square profit matrix.
        sink:           Receives :class:`Progress`, :class:`Preview` and
                        :class:`Cancelled` updates.
        cancel:         Cooperative cancellation flag.
        preview_pixels: (N, 3) column colours used to render previews.
        sidelen:        Side of the preview image.

    Returns:
        ``xy`` with ``xy[row] = column``, or ``None`` when cancelled.

    Raises:
        SizeConstraintViolated: more rows than columns.
        InvalidDimensions:      fewer rows than columns.
    """
    nx = weights.rows()
    ny = weights.columns()
    if nx > ny:
        msg = f"Number of rows ({nx}) must not exceed number of columns ({ny})"
        raise SizeConstraintViolated(msg)
    if nx < ny:
        msg = f"Cost matrix must be square, got {nx}x{ny}"
        raise InvalidDimensions(msg)

    xy = np.full(nx, -1, dtype=np.int64)
    yx = np.full(ny, -1, dtype=np.int64)
    lx = np.array([weights.row(r).max() for r in range(nx)], dtype=np.float64)
    ly = np.zeros(ny, dtype=np.float64)
    # alternating[y] = tree parent x of y, -1 while y is outside the tree
    alternating = np.full(ny, -1, dtype=np.int64)
    in_tree = np.zeros(nx, dtype=bool)
    slack = np.empty(ny, dtype=np.float64)
    slackx = np.empty(ny, dtype=np.int64)

    for root in range(nx):
        alternating.fill(-1)
        in_tree.fill(False)
        in_tree[root] = True
        slack[:] = lx[root] + ly - weights.row(root)
        slackx.fill(root)

        target_y = -1
        while True:
            outside = alternating < 0
            candidates = np.where(outside, slack, np.inf)
            sel_y = int(np.argmin(candidates))  # lowest index wins ties
            delta = candidates[sel_y]
            if not np.isfinite(delta):
                break
            sel_x = int(slackx[sel_y])

            if delta > 0:
                lx[in_tree] -= delta
                ly[~outside] += delta
                slack[outside] -= delta

            alternating[sel_y] = sel_x
            if yx[sel_y] < 0:
                target_y = sel_y
                break

            matched_x = int(yx[sel_y])
            in_tree[matched_x] = True
            alt = lx[matched_x] + ly - weights.row(matched_x)
            better = (alternating < 0) & (slack > alt)
            slack[better] = alt[better]
            slackx[better] = matched_x

        # Flip the augmenting path back to the root
        while target_y >= 0:
            x = int(alternating[target_y])
            prev = int(xy[x])
            xy[x] = target_y
            yx[target_y] = x
            target_y = prev

        if root % CHECKPOINT_INTERVAL == 0:
            if cancel is not None and cancel.cancelled:
                logger.info("Hungarian cancelled at row %d/%d", root, nx)
                sink(Cancelled())
                return None

            sink(Progress(root / nx))
            logger.debug("Hungarian row %d/%d", root, nx)
            if preview_pixels is not None and sidelen is not None:
                interim = np.where(xy < 0, 0, xy)
                sink(Preview(sidelen, sidelen, assignments_to_image(preview_pixels, interim, sidelen)))

    return [max(int(y), 0) for y in xy]


def process_optimal(
    source: UnprocessedPreset,
    target: TargetImage,
    settings: GenerationSettings,
    sink: Sink = discard,
    cancel: CancelToken | None = None,
) -> Preset | None:
    """Solve a preset exactly.

    Returns:
        The solved :class:`Preset` (also sent as :class:`Done`), or ``None``
        when the run was cancelled.
    """
    images = prepare_images(source.image, target, settings)
    n = len(images.source_pixels)

    logger.info("Running Hungarian on %dx%d profits (%d px side) …", n, n, images.sidelen)
    t0 = time.perf_counter()
    matrix = ImageWeights(
        images.source_pixels,
        images.target_pixels,
        images.weights,
        images.sidelen,
        settings.proximity_importance,
    )
    assignments = execute_hungarian(
        matrix, sink, cancel,
        preview_pixels=images.source_pixels, sidelen=images.sidelen,
    )
    if assignments is None:
        return None
    logger.info("Assignment solved  (%.1f s)", time.perf_counter() - t0)

    preset = Preset(
        inner=UnprocessedPreset(name=source.name, image=images.source_image),
        assignments=assignments,
    )
    sink(Done(preset))
    return preset
