"""Quality search that fits an encoded image under a byte budget."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable

from imgbatch.imgproc.fit import TargetSpec

logger = logging.getLogger(__name__)

EncodeFn = Callable[[int, bool], bytes]
"""Encoder callback: ``(quality, force_subsampling) -> jpeg bytes``."""


class SearchState(str, Enum):
    """States of the quality search."""

    INITIAL = "initial"
    REDUCING = "reducing"
    EXHAUSTED = "exhausted"
    UNDER_BUDGET = "under_budget"
    DONE = "done"

    @property
    def is_terminal(self) -> bool:
        return self in (SearchState.UNDER_BUDGET, SearchState.DONE)


@dataclass(frozen=True, slots=True)
class EncodeAttempt:
    """One encoder invocation."""

    quality: int
    subsampling_forced: bool
    size: int
    elapsed_ms: float


@dataclass(slots=True)
class SearchResult:
    """Outcome of a finished search."""

    data: bytes
    quality: int
    subsampling_forced: bool
    within_budget: bool
    attempts: list[EncodeAttempt] = field(default_factory=list)

    @property
    def attempt_count(self) -> int:
        return len(self.attempts)


class QualitySearch:
    """
    Finite state machine driving repeated encodes.

    ``INITIAL`` encodes at the start quality. ``REDUCING`` lowers the quality
    by a fixed step while the output is over budget and the next step would
    not drop below the floor. ``EXHAUSTED`` performs one last encode at the
    floor with 4:2:0 chroma subsampling forced and accepts the result whatever
    its size. ``UNDER_BUDGET`` and ``DONE`` are terminal.

    Every call to :meth:`step` performs exactly one encode, so the number of
    attempts never exceeds ``(start - floor) // step + 2``.
    """

    def __init__(
        self,
        encode: EncodeFn,
        *,
        max_bytes: int,
        start_quality: int,
        quality_floor: int,
        quality_step: int,
    ) -> None:
        if quality_step <= 0:
            raise ValueError("quality_step must be positive.")
        if not 1 <= quality_floor <= start_quality <= 100:
            raise ValueError("Expected 1 <= quality_floor <= start_quality <= 100.")
        self._encode = encode
        self._max_bytes = max_bytes
        self._start = start_quality
        self._floor = quality_floor
        self._step = quality_step

        self._state = SearchState.INITIAL
        self._quality = start_quality
        self._forced = False
        self._data = b""
        self._attempts: list[EncodeAttempt] = []

    @classmethod
    def for_spec(cls, encode: EncodeFn, spec: TargetSpec) -> QualitySearch:
        return cls(
            encode,
            max_bytes=spec.max_bytes,
            start_quality=spec.start_quality,
            quality_floor=spec.quality_floor,
            quality_step=spec.quality_step,
        )

    @property
    def state(self) -> SearchState:
        return self._state

    @property
    def quality(self) -> int:
        return self._quality

    @property
    def attempts(self) -> list[EncodeAttempt]:
        return list(self._attempts)

    @property
    def max_attempts(self) -> int:
        return (self._start - self._floor) // self._step + 2

    def _attempt(self, quality: int, force_subsampling: bool) -> bool:
        started = time.perf_counter()
        data = self._encode(quality, force_subsampling)
        elapsed_ms = (time.perf_counter() - started) * 1000

        self._quality = quality
        self._forced = force_subsampling
        self._data = data
        self._attempts.append(EncodeAttempt(quality, force_subsampling, len(data), elapsed_ms))
        logger.debug(
            "Encoded at quality %d%s: %d bytes (budget %d)",
            quality,
            " with forced 4:2:0" if force_subsampling else "",
            len(data),
            self._max_bytes,
        )
        return len(data) <= self._max_bytes

    def _after_reduction_step(self, fits: bool) -> SearchState:
        if fits:
            return SearchState.UNDER_BUDGET
        if self._quality - self._step >= self._floor:
            return SearchState.REDUCING
        return SearchState.EXHAUSTED

    def step(self) -> SearchState:
        """Perform one transition and return the new state."""

        if self._state is SearchState.INITIAL:
            self._state = self._after_reduction_step(self._attempt(self._start, False))
        elif self._state is SearchState.REDUCING:
            self._state = self._after_reduction_step(self._attempt(self._quality - self._step, False))
        elif self._state is SearchState.EXHAUSTED:
            self._attempt(self._floor, True)
            self._state = SearchState.DONE
        else:
            raise RuntimeError(f"Quality search already finished in state {self._state.value}.")
        return self._state

    def run(self) -> SearchResult:
        """Step until a terminal state is reached."""

        while not self._state.is_terminal:
            self.step()
        return self.result()

    def result(self) -> SearchResult:
        if not self._state.is_terminal:
            raise RuntimeError("Quality search has not finished yet.")
        return SearchResult(
            data=self._data,
            quality=self._quality,
            subsampling_forced=self._forced,
            within_budget=len(self._data) <= self._max_bytes,
            attempts=list(self._attempts),
        )
