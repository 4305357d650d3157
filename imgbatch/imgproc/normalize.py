"""Image normalisation: probe, plan, render and size-constrained encode."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum

from imgbatch.imgproc.encode import encode_jpeg, render
from imgbatch.imgproc.fit import FitPlan, FitStrategy, TargetSpec, plan_fit
from imgbatch.imgproc.probe import ImageInfo, SourceImage
from imgbatch.imgproc.search import EncodeAttempt, QualitySearch
from imgbatch.monitoring.timing import SpanRecorder

logger = logging.getLogger(__name__)


class Outcome(str, Enum):
    """Per-image result tags reported to clients."""

    KEPT_ORIGINAL = "kept_original"
    CROPPED_ONLY = "cropped_only"
    DOWNSCALED = "downscaled"
    ERROR = "error"


@dataclass(slots=True)
class NormalizedImage:
    """Final bytes for one image together with how they were produced."""

    data: bytes
    outcome: Outcome
    info: ImageInfo
    plan: FitPlan
    quality: int | None = None
    subsampling_forced: bool = False
    within_budget: bool = True
    attempts: list[EncodeAttempt] = field(default_factory=list)
    spans: dict[str, float] = field(default_factory=dict)

    @property
    def attempt_count(self) -> int:
        return len(self.attempts)

    @property
    def output_size(self) -> tuple[int, int]:
        return self.plan.output_size


class ImageNormalizer:
    """Ensures consistent dimensions and a bounded file size for every image."""

    def __init__(self, spec: TargetSpec) -> None:
        self._spec = spec

    @property
    def spec(self) -> TargetSpec:
        return self._spec

    def normalize(self, source: SourceImage) -> NormalizedImage:
        """
        Return processed JPEG bytes ready for the archive.

        Raises ``DecodeError``, ``InvalidGeometryError`` or ``EncodeError``;
        all three are confined to this image.
        """

        spec = self._spec
        recorder = SpanRecorder()

        with recorder.measure("probe"):
            info = source.probe()
        with recorder.measure("plan"):
            plan = plan_fit(info.width, info.height, spec, original_size=source.size)

        logger.debug(
            "%s: %s %dx%d, aspect %.3f (target %.3f, diff %.3f) -> %s",
            source.filename,
            info.format,
            info.width,
            info.height,
            info.aspect,
            spec.aspect,
            plan.aspect_diff,
            plan.strategy.value,
        )

        if plan.strategy is FitStrategy.KEEP_ORIGINAL:
            return NormalizedImage(
                data=source.data,
                outcome=Outcome.KEPT_ORIGINAL,
                info=info,
                plan=plan,
                spans=recorder.spans,
            )

        with recorder.measure("render"):
            pixels = render(source.data, plan, sharpen=spec.sharpen)
        try:
            search = QualitySearch.for_spec(
                lambda quality, forced: encode_jpeg(pixels, quality, force_subsampling=forced),
                spec,
            )
            with recorder.measure("search"):
                result = search.run()
        finally:
            pixels.close()

        if not result.within_budget:
            logger.info(
                "%s: still %d bytes over budget after forced subsampling at quality %d",
                source.filename,
                len(result.data) - spec.max_bytes,
                result.quality,
            )

        outcome = Outcome.CROPPED_ONLY if plan.strategy is FitStrategy.CROP_TO_ASPECT else Outcome.DOWNSCALED
        return NormalizedImage(
            data=result.data,
            outcome=outcome,
            info=info,
            plan=plan,
            quality=result.quality,
            subsampling_forced=result.subsampling_forced,
            within_budget=result.within_budget,
            attempts=result.attempts,
            spans=recorder.spans,
        )
