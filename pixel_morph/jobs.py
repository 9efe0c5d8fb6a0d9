"""Run solvers on a background thread and stream their updates as events.

A :class:`JobWorker` accepts ``start`` and ``cancel`` commands keyed by job
id and publishes an ordered stream of :class:`~pixel_morph.events.JobEvent`.
Progress and previews are best-effort and dropped once ``max_queued_events``
of them are waiting to be read; ``Done``, ``Failed`` and ``Cancelled`` are
never dropped or blocked and are delivered exactly once per job.
"""

from __future__ import annotations

import logging
import queue
import threading
from collections.abc import Callable, Iterator
from concurrent.futures import Future, ThreadPoolExecutor

import numpy as np

from pixel_morph.config import GenerationSettings
from pixel_morph.drawing import DRAWING_CANVAS_SIZE, PixelData, drawing_process_genetic
from pixel_morph.events import (
    TERMINAL_UPDATES,
    CancelToken,
    Failed,
    JobEvent,
    Update,
)
from pixel_morph.image_io import TargetImage
from pixel_morph.presets import UnprocessedPreset
from pixel_morph.solver_genetic import process_preset

logger = logging.getLogger(__name__)

DEFAULT_QUEUE_SIZE = 256


class JobWorker:
    """Single background context executing one solver run at a time."""

    def __init__(self, max_queued_events: int = DEFAULT_QUEUE_SIZE) -> None:
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="pixel-morph")
        self._events: queue.Queue[JobEvent] = queue.Queue()
        self._max_pending = max_queued_events
        self._pending = 0  # best-effort events queued and not yet read
        self._tokens: dict[str, CancelToken] = {}
        self._lock = threading.Lock()

    def __enter__(self) -> JobWorker:
        return self

    def __exit__(self, *exc: object) -> None:
        self.shutdown()

    # -- commands ------------------------------------------------------

    def start(
        self,
        job_id: str,
        source: UnprocessedPreset,
        target: TargetImage,
        settings: GenerationSettings,
    ) -> Future[None]:
        """Queue a batch solve; ``settings.algorithm`` picks the solver."""
        token = self._register(job_id)
        return self._executor.submit(
            self._run, job_id, token,
            lambda sink: process_preset(source, target, settings, sink, token),
        )

    def start_drawing(
        self,
        job_id: str,
        source: UnprocessedPreset,
        target: TargetImage,
        settings: GenerationSettings,
        colors: np.ndarray,
        pixel_data: list[PixelData],
        frame_count: int,
        canvas_size: int = DRAWING_CANVAS_SIZE,
    ) -> Future[None]:
        """Queue an open-ended drawing refinement; it only ends on cancel."""
        token = self._register(job_id)
        return self._executor.submit(
            self._run, job_id, token,
            lambda sink: drawing_process_genetic(
                source, target, settings, sink,
                colors, pixel_data, frame_count, token, canvas_size,
            ),
        )

    def cancel(self, job_id: str) -> bool:
        """Ask a running job to stop; returns False if it is not running."""
        with self._lock:
            token = self._tokens.get(job_id)
        if token is None:
            return False
        token.cancel()
        logger.debug("Cancel requested for job %s", job_id)
        return True

    def is_running(self, job_id: str) -> bool:
        with self._lock:
            return job_id in self._tokens

    def shutdown(self) -> None:
        with self._lock:
            tokens = list(self._tokens.values())
        for token in tokens:
            token.cancel()
        self._executor.shutdown(wait=True)

    # -- event stream --------------------------------------------------

    def next_event(self, timeout: float | None = None) -> JobEvent:
        """Block for the next event; raises :class:`queue.Empty` on timeout."""
        event = self._events.get(timeout=timeout)
        if not event.terminal:
            with self._lock:
                self._pending -= 1
        return event

    def events(self, job_id: str, timeout: float | None = None) -> Iterator[JobEvent]:
        """Yield events of ``job_id`` up to and including its terminal one.

        Events of other jobs seen meanwhile are discarded.
        """
        while True:
            event = self.next_event(timeout)
            if event.job_id != job_id:
                continue
            yield event
            if event.terminal:
                return

    # -- internals -----------------------------------------------------

    def _register(self, job_id: str) -> CancelToken:
        with self._lock:
            if job_id in self._tokens:
                msg = f"Job {job_id!r} is already running"
                raise ValueError(msg)
            token = CancelToken()
            self._tokens[job_id] = token
        return token

    def _publish(self, job_id: str, update: Update) -> None:
        event = JobEvent(job_id, update)
        if not event.terminal:
            with self._lock:
                if self._pending >= self._max_pending:
                    logger.debug("Dropped %s for job %s", type(update).__name__, job_id)
                    return
                self._pending += 1
        self._events.put(event)

    def _run(
        self,
        job_id: str,
        token: CancelToken,
        job: Callable[[Callable[[Update], None]], object],
    ) -> None:
        finished = False

        def sink(update: Update) -> None:
            nonlocal finished
            if finished:
                return
            if isinstance(update, TERMINAL_UPDATES):
                finished = True
                self._release(job_id)
            self._publish(job_id, update)

        logger.info("Job %s started", job_id)
        try:
            job(sink)
        except Exception as exc:
            logger.exception("Job %s failed", job_id)
            sink(Failed(str(exc) or type(exc).__name__))
        finally:
            self._release(job_id)

    def _release(self, job_id: str) -> None:
        with self._lock:
            self._tokens.pop(job_id, None)
