"""Image probing, fit planning and size-constrained JPEG encoding."""

from .fit import FitPlan, FitStrategy, TargetSpec, plan_fit
from .normalize import ImageNormalizer, NormalizedImage, Outcome
from .probe import ImageInfo, SourceImage
from .search import EncodeAttempt, QualitySearch, SearchResult, SearchState

__all__ = [
    "EncodeAttempt",
    "FitPlan",
    "FitStrategy",
    "ImageInfo",
    "ImageNormalizer",
    "NormalizedImage",
    "Outcome",
    "QualitySearch",
    "SearchResult",
    "SearchState",
    "SourceImage",
    "TargetSpec",
    "plan_fit",
]
