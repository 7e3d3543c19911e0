"""Progress accounting and cooperative cancellation."""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Callable, Iterator

from confluence_xml_filter.errors import TraversalCanceled

logger = logging.getLogger(__name__)

ProgressListener = Callable[[float], None]


@dataclass
class ProgressFrame:
    """One scope of work.

    ``weight`` is the number of steps of the parent scope this scope stands for.
    """

    total: int
    weight: int = 1
    done: int = 0

    @property
    def fraction(self) -> float:
        if self.total <= 0:
            return 1.0
        return min(1.0, self.done / self.total)


class ProgressTracker:
    """Stack of nested progress scopes.

    Purely observational: nothing it does may change the outcome of a run, so
    unbalanced calls and listener failures are logged instead of raised.
    """

    def __init__(self, listeners: list[ProgressListener] | None = None):
        self.listeners: list[ProgressListener] = list(listeners or [])
        self.frames: list[ProgressFrame] = []

    @property
    def depth(self) -> int:
        return len(self.frames)

    @property
    def fraction(self) -> float:
        """Overall completion of the outermost scope, between 0 and 1."""
        inner = 0.0
        inner_weight = 0
        for frame in reversed(self.frames):
            if frame.total <= 0:
                inner = 1.0
            else:
                inner = min(1.0, (frame.done + inner * inner_weight) / frame.total)
            inner_weight = frame.weight
        return inner

    def push_level(self, steps: int, weight: int = 1) -> None:
        self.frames.append(ProgressFrame(total=max(steps, 0), weight=max(weight, 0)))

    def pop_level(self) -> None:
        if not self.frames:
            logger.error("Could not pop level progress: no level is open")
            return
        frame = self.frames.pop()
        if self.frames:
            self.frames[-1].done += frame.weight
            self._notify()
        else:
            self._notify(1.0)

    @contextmanager
    def level(self, steps: int, weight: int = 1) -> Iterator[None]:
        self.push_level(steps, weight)
        try:
            yield
        finally:
            self.pop_level()

    def start_step(self) -> None:
        if not self.frames:
            logger.debug("Progress step started outside of any level")

    def end_step(self) -> None:
        if not self.frames:
            logger.debug("Progress step ended outside of any level")
            return
        self.frames[-1].done += 1
        self._notify()

    def empty_step(self) -> None:
        """Account for an item that was skipped."""
        self.start_step()
        self.end_step()

    def _notify(self, fraction: float | None = None) -> None:
        if fraction is None:
            fraction = self.fraction
        for listener in self.listeners:
            try:
                listener(fraction)
            except Exception as e:
                logger.error(f"Progress listener failed: {e}", exc_info=True)


class CancellationToken:
    """Thread-safe cancellation flag, typically set from a signal handler."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def canceled(self) -> bool:
        return self._event.is_set()

    def check(self) -> None:
        """Raise TraversalCanceled if cancellation was requested."""
        if self._event.is_set():
            raise TraversalCanceled()
