"""Object id range selection.

Objects are visited in traversal order, which has nothing to do with the numeric
order of their ids. A range therefore does not mean "ids between a and b" but
"every object visited from the moment object a is seen until object b is seen".
Ancestors of the first object of a range must still be sent so that the
hierarchy is preserved, which is what ``ObjectIdFilter`` takes care of.
"""

from __future__ import annotations

import logging
import re
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Iterable

logger = logging.getLogger(__name__)

_RANGE_PATTERN = re.compile(r"\s*([\[(])\s*(\d*)\s*,\s*(\d*)\s*([\])])\s*(,|$)")


@dataclass(frozen=True)
class IdRange:
    """A single range; a None bound is unbounded."""

    start: int | None
    end: int | None
    start_inclusive: bool = True
    end_inclusive: bool = True


class IdRangeList:
    """Ordered ranges consumed while object ids are pushed."""

    def __init__(self, ranges: Iterable[IdRange]):
        self.ranges = list(ranges)
        self._index = 0
        self._open = False

    @classmethod
    def parse(cls, text: str) -> "IdRangeList":
        """Parse an expression like ``[100,200],(300,]``.

        Raises:
            ValueError: If the expression is malformed.
        """
        ranges = []
        position = 0
        text = text.strip()
        while position < len(text):
            match = _RANGE_PATTERN.match(text, position)
            if match is None:
                raise ValueError(f"Invalid object id range at position {position}: {text!r}")
            opening, start, end, closing, _ = match.groups()
            ranges.append(
                IdRange(
                    start=int(start) if start else None,
                    end=int(end) if end else None,
                    start_inclusive=opening == "[",
                    end_inclusive=closing == "]",
                )
            )
            position = match.end()

        if not ranges:
            raise ValueError("Empty object id range expression")
        return cls(ranges)

    @property
    def exhausted(self) -> bool:
        return self._index >= len(self.ranges)

    def push_id(self, object_id: int) -> bool:
        """Record that an object is visited and tell whether it is selected."""
        while not self.exhausted:
            current = self.ranges[self._index]
            if not self._open:
                if current.start is not None and current.start != object_id:
                    return False
                self._open = True
                if current.start is not None and not current.start_inclusive:
                    return False

            if current.end is not None and current.end == object_id:
                self._index += 1
                self._open = False
                if current.end_inclusive:
                    return True
                # The id closing this range may open the next one
                continue

            return True

        return False

    def next_id(self) -> int | None:
        """Start id of the range waiting to be opened, if any."""
        if self.exhausted or self._open:
            return None
        return self.ranges[self._index].start


class FilterState(Enum):
    IDLE = "idle"
    AWAITING_RANGE = "awaiting_range"
    FORCED_QUEUE = "forced_queue"


class ObjectIdFilter:
    """Decides whether each visited object is sent.

    Each id must be asked about exactly once: asking pushes it into the ranges.
    """

    def __init__(
        self,
        ranges: IdRangeList | None,
        ancestors: Callable[[int], list[int]],
    ):
        self.ranges = ranges
        self._ancestors = ancestors
        self.state = FilterState.IDLE
        self._forced: deque[int] = deque()

    @property
    def active(self) -> bool:
        return self.ranges is not None

    @property
    def forced_ids(self) -> list[int]:
        return list(self._forced)

    def prepare(self) -> None:
        """Queue the ancestors of the first range start before the traversal."""
        if self.ranges is not None:
            self._queue_next_ancestors()

    def should_admit(self, object_id: int | None) -> bool:
        if object_id is None or self.ranges is None:
            return True

        if self.state is FilterState.FORCED_QUEUE:
            if object_id == self._forced[0]:
                self._forced.popleft()
                if not self._forced:
                    self.state = FilterState.AWAITING_RANGE
                return True
            if self.ranges.push_id(object_id):
                self._reset()
                return True
            return False

        if self.ranges.push_id(object_id):
            self._reset()
            return True

        if self.state is FilterState.IDLE:
            # Only look for the next range start once
            self._queue_next_ancestors()
        return False

    def _reset(self) -> None:
        self._forced.clear()
        self.state = FilterState.IDLE

    def _queue_next_ancestors(self) -> None:
        next_id = self.ranges.next_id()
        if next_id is None:
            return

        try:
            ancestors = list(self._ancestors(next_id))
        except LookupError as e:
            logger.warning(f"Could not resolve the ancestors of object [{next_id}]: {e}")
            ancestors = []

        if ancestors:
            self._forced = deque(ancestors)
            self.state = FilterState.FORCED_QUEUE
        else:
            self.state = FilterState.AWAITING_RANGE
