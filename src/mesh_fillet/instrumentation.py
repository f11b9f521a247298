"""Stage timing: a decorator and a context manager, both explicit at call sites."""

from __future__ import annotations

import functools
import logging
import time
from typing import Callable, Dict, Optional

logger = logging.getLogger(__name__)


class StageTimer:
    """Context manager that logs a stage's wall time and optionally records it.

    ``timings`` accumulates seconds per stage name so repeated stages (one per
    edge, say) add up.
    """

    def __init__(self, stage: str, timings: Optional[Dict[str, float]] = None):
        self.stage = stage
        self.timings = timings
        self.elapsed = 0.0
        self._start = 0.0

    def __enter__(self) -> "StageTimer":
        self._start = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.elapsed = time.perf_counter() - self._start
        if self.timings is not None:
            self.timings[self.stage] = self.timings.get(self.stage, 0.0) + self.elapsed
        status = "failed" if exc_type is not None else "done"
        logger.debug("%s %s in %.2f ms", self.stage, status, self.elapsed * 1000.0)


def timed(stage: str) -> Callable:
    """Decorator form of :class:`StageTimer`.

    A ``timings`` keyword argument, if the caller passes one, is consumed here
    and receives the elapsed time.
    """

    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        def wrapper(*args, timings: Optional[Dict[str, float]] = None, **kwargs):
            with StageTimer(stage, timings):
                return func(*args, **kwargs)

        return wrapper

    return decorator
