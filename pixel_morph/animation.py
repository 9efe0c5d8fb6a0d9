"""Rasterise simulation ticks and encode them as an animated GIF."""

from __future__ import annotations

import io
import logging
from dataclasses import dataclass
from pathlib import Path

import numpy as np
from PIL import Image

from pixel_morph.morph_sim import Sim

logger = logging.getLogger(__name__)

GIF_FRAMERATE = 8
GIF_RESOLUTION = 400
GIF_MAX_FRAMES = 140
GIF_MIN_FRAMES = 100
GIF_MAX_SIZE = 10 * 1024 * 1024
GIF_SPEED = 1.5


def render_frame(
    positions: np.ndarray,
    colors: np.ndarray,
    sidelen: float,
    resolution: int = GIF_RESOLUTION,
    background: tuple[int, int, int] = (0, 0, 0),
) -> np.ndarray:
    """Draw every seed as a filled square one pixel cell wide.

    Args:
        positions:  (N, 2) seed centres in simulation units.
        colors:     (N, 4) RGBA seed colours in [0, 1].
        sidelen:    Simulation canvas side.
        resolution: Output side in pixels.

    Returns:
        (resolution, resolution, 3) uint8 frame.
    """
    frame = np.empty((resolution, resolution, 3), dtype=np.uint8)
    frame[:] = background
    n = len(positions)
    if n == 0:
        return frame

    scale = resolution / sidelen
    grid_side = max(1, round(np.sqrt(n)))
    size = max(1, int(np.ceil(resolution / grid_side)))
    rgb = np.clip(np.round(colors[:, :3] * 255), 0, 255).astype(np.uint8)

    corner = np.floor(positions * scale - size / 2).astype(np.int64)
    for oy in range(size):
        ys = corner[:, 1] + oy
        for ox in range(size):
            xs = corner[:, 0] + ox
            ok = (xs >= 0) & (xs < resolution) & (ys >= 0) & (ys < resolution)
            frame[ys[ok], xs[ok]] = rgb[ok]
    return frame


@dataclass(frozen=True)
class GifStatus:
    state: str  # "idle" | "recording" | "complete" | "error"
    message: str = ""


class GifRecorder:
    """Collect frames and encode them once enough have been captured.

    Recording stops by itself after ``max_frames``. The result is only
    accepted with at least ``min_frames`` frames and under ``GIF_MAX_SIZE``.
    """

    def __init__(
        self,
        resolution: int = GIF_RESOLUTION,
        framerate: int = GIF_FRAMERATE,
        speed: float = GIF_SPEED,
        max_frames: int = GIF_MAX_FRAMES,
        min_frames: int = GIF_MIN_FRAMES,
    ) -> None:
        self.resolution = resolution
        self.framerate = framerate
        self.speed = speed
        self.max_frames = max_frames
        self.min_frames = min_frames
        self._frames: list[Image.Image] = []
        self._data: bytes | None = None
        self.status = GifStatus("idle")

    @property
    def frame_count(self) -> int:
        return len(self._frames)

    @property
    def data(self) -> bytes | None:
        return self._data

    def start(self) -> None:
        self._frames = []
        self._data = None
        self.status = GifStatus("recording")

    def add_frame(self, frame: np.ndarray) -> None:
        if self.status.state != "recording":
            msg = "Recorder is not active."
            raise RuntimeError(msg)
        self._frames.append(Image.fromarray(frame[..., :3].astype(np.uint8)))
        if self.frame_count >= self.max_frames:
            self.finish()

    def finish(self) -> None:
        if self.status.state != "recording":
            return
        if self.frame_count < self.min_frames:
            self.status = GifStatus("error", "Not enough frames to build a smooth GIF.")
            return

        buffer = io.BytesIO()
        duration = round(1000 / self.framerate / self.speed)
        self._frames[0].save(
            buffer,
            format="GIF",
            save_all=True,
            append_images=self._frames[1:],
            duration=duration,
            loop=0,
        )
        data = buffer.getvalue()
        if len(data) > GIF_MAX_SIZE:
            self.status = GifStatus("error", "GIF exceeded maximum size.")
            return
        self._data = data
        self.status = GifStatus("complete")
        logger.info("GIF encoded: %d frames, %.1f KiB", self.frame_count, len(data) / 1024)

    def stop(self) -> None:
        self._frames = []
        self._data = None
        self.status = GifStatus("idle")


def record_morph(
    sim: Sim,
    positions: np.ndarray,
    colors: np.ndarray,
    sidelen: float,
    path: str | Path,
    ticks_per_frame: int = 4,
    recorder: GifRecorder | None = None,
    reverse: bool = False,
) -> GifStatus:
    """Play the morph from the start and save it as a GIF at ``path``."""
    recorder = recorder or GifRecorder()
    sim.prepare_play(positions, reverse)
    recorder.start()
    while recorder.status.state == "recording":
        recorder.add_frame(render_frame(positions, colors, sidelen, recorder.resolution))
        for _ in range(ticks_per_frame):
            sim.update(positions, sidelen)

    if recorder.data is not None:
        Path(path).write_bytes(recorder.data)
        logger.info("Morph animation saved: %s", path)
    else:
        logger.warning("Morph animation not saved: %s", recorder.status.message)
    return recorder.status
