"""Geometry planning: how a source image is fitted onto the output canvas."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from imgbatch.errors import InvalidGeometryError

WHITE = (255, 255, 255)
RESAMPLE_KERNELS = ("nearest", "bilinear", "bicubic", "lanczos")


@dataclass(frozen=True, slots=True)
class TargetSpec:
    """Output canvas, byte budget and the knobs of the fit and quality search."""

    width: int = 1260
    height: int = 1726
    max_bytes: int = 500_000
    start_quality: int = 95
    quality_floor: int = 10
    quality_step: int = 5
    aspect_similarity_threshold: float = 0.10
    allow_upscale: bool = False
    letterbox: bool = True
    keep_original: bool = True
    sharpen: bool = True
    background: tuple[int, int, int] = WHITE
    resample: str = "lanczos"

    def __post_init__(self) -> None:
        if self.width <= 0 or self.height <= 0:
            raise ValueError(f"Target canvas must be positive, got {self.width}x{self.height}.")
        if self.max_bytes <= 0:
            raise ValueError("max_bytes must be positive.")
        if not 1 <= self.quality_floor <= self.start_quality <= 100:
            raise ValueError(
                f"Expected 1 <= quality_floor <= start_quality <= 100, "
                f"got floor={self.quality_floor} start={self.start_quality}.",
            )
        if self.quality_step <= 0:
            raise ValueError("quality_step must be a positive integer.")
        if self.aspect_similarity_threshold < 0:
            raise ValueError("aspect_similarity_threshold cannot be negative.")
        if self.resample not in RESAMPLE_KERNELS:
            raise ValueError(f"Unknown resample kernel {self.resample!r}.")

    @property
    def aspect(self) -> float:
        return self.width / self.height

    @property
    def max_attempts(self) -> int:
        """Upper bound on encoder invocations for one image."""

        return (self.start_quality - self.quality_floor) // self.quality_step + 2


class FitStrategy(str, Enum):
    """How the source is mapped onto the canvas."""

    KEEP_ORIGINAL = "keep_original"
    CROP_TO_ASPECT = "crop-to-aspect"
    COVER = "cover"
    CONTAIN = "contain"


@dataclass(frozen=True, slots=True)
class FitPlan:
    """
    Fully resolved geometry for one image.

    ``crop`` is ``(x, y, width, height)`` in source pixels. The cropped region
    is resampled to ``scaled_size`` and pasted at ``offset`` on a canvas of
    ``output_size`` filled with ``background``.
    """

    strategy: FitStrategy
    source_size: tuple[int, int]
    crop: tuple[int, int, int, int]
    scaled_size: tuple[int, int]
    output_size: tuple[int, int]
    offset: tuple[int, int] = (0, 0)
    background: tuple[int, int, int] = WHITE
    resample: str = "lanczos"
    aspect_diff: float = 0.0

    @property
    def needs_resize(self) -> bool:
        return self.scaled_size != (self.crop[2], self.crop[3])

    @property
    def is_padded(self) -> bool:
        return self.scaled_size != self.output_size


def _centered_aspect_crop(width: int, height: int, aspect: float) -> tuple[int, int, int, int]:
    if width / height > aspect:
        crop_w = min(width, max(1, round(height * aspect)))
        crop_h = height
    else:
        crop_w = width
        crop_h = min(height, max(1, round(width / aspect)))
    return (width - crop_w) // 2, (height - crop_h) // 2, crop_w, crop_h


def plan_fit(
    source_width: int,
    source_height: int,
    spec: TargetSpec,
    *,
    original_size: int | None = None,
) -> FitPlan:
    """Choose the fit strategy for a source image and resolve its geometry."""

    if source_width <= 0 or source_height <= 0:
        raise InvalidGeometryError(
            f"Source dimensions must be positive, got {source_width}x{source_height}.",
        )

    source = (source_width, source_height)
    target = (spec.width, spec.height)
    full_frame = (0, 0, source_width, source_height)
    aspect_diff = abs(source_width / source_height - spec.aspect)
    common = {
        "source_size": source,
        "background": spec.background,
        "resample": spec.resample,
        "aspect_diff": aspect_diff,
    }

    if (
        spec.keep_original
        and source == target
        and original_size is not None
        and original_size <= spec.max_bytes
    ):
        return FitPlan(
            strategy=FitStrategy.KEEP_ORIGINAL,
            crop=full_frame,
            scaled_size=source,
            output_size=source,
            **common,
        )

    if not spec.allow_upscale and (source_width < spec.width or source_height < spec.height):
        crop = _centered_aspect_crop(source_width, source_height, spec.aspect)
        return FitPlan(
            strategy=FitStrategy.CROP_TO_ASPECT,
            crop=crop,
            scaled_size=(crop[2], crop[3]),
            output_size=(crop[2], crop[3]),
            **common,
        )

    if not spec.letterbox or aspect_diff < spec.aspect_similarity_threshold:
        return FitPlan(
            strategy=FitStrategy.COVER,
            crop=_centered_aspect_crop(source_width, source_height, spec.aspect),
            scaled_size=target,
            output_size=target,
            **common,
        )

    scale = min(spec.width / source_width, spec.height / source_height)
    scaled_w = min(spec.width, max(1, round(source_width * scale)))
    scaled_h = min(spec.height, max(1, round(source_height * scale)))
    return FitPlan(
        strategy=FitStrategy.CONTAIN,
        crop=full_frame,
        scaled_size=(scaled_w, scaled_h),
        output_size=target,
        offset=((spec.width - scaled_w) // 2, (spec.height - scaled_h) // 2),
        **common,
    )
