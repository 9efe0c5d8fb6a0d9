"""Updates streamed by long-running solvers, plus the cancellation token."""

from __future__ import annotations

import threading
from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Union

import numpy as np

if TYPE_CHECKING:
    from pixel_morph.presets import Preset


@dataclass(frozen=True)
class Progress:
    value: float  # in [0, 1]


@dataclass(frozen=True)
class Preview:
    """Interim rendering of the current assignment (RGBA, row-major)."""

    width: int
    height: int
    data: np.ndarray


@dataclass(frozen=True)
class AssignmentsUpdate:
    assignments: list[int]


@dataclass(frozen=True)
class Done:
    preset: Preset


@dataclass(frozen=True)
class Failed:
    message: str


@dataclass(frozen=True)
class Cancelled:
    pass


Update = Union[Progress, Preview, AssignmentsUpdate, Done, Failed, Cancelled]
Sink = Callable[[Update], None]

TERMINAL_UPDATES = (Done, Failed, Cancelled)


@dataclass(frozen=True)
class JobEvent:
    """An update tagged with the job that produced it."""

    job_id: str
    update: Update

    @property
    def terminal(self) -> bool:
        return isinstance(self.update, TERMINAL_UPDATES)


class CancelToken:
    """Shared flag a caller sets and a solver polls at its checkpoints."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


def discard(update: Update) -> None:
    """Sink that ignores every update."""
