"""Explicit timing spans collected into processing results."""

from __future__ import annotations

import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Iterator


@dataclass(slots=True)
class Span:
    """A named wall-clock measurement in milliseconds."""

    name: str
    started: float = field(default_factory=time.perf_counter)
    elapsed_ms: float = 0.0

    def stop(self) -> float:
        self.elapsed_ms = (time.perf_counter() - self.started) * 1000
        return self.elapsed_ms


class SpanRecorder:
    """Collects spans for one unit of work, keyed by name."""

    def __init__(self) -> None:
        self._spans: dict[str, float] = {}

    @contextmanager
    def measure(self, name: str) -> Iterator[None]:
        span = Span(name)
        try:
            yield
        finally:
            self._spans[name] = self._spans.get(name, 0.0) + span.stop()

    @property
    def spans(self) -> dict[str, float]:
        return dict(self._spans)
