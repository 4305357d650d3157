"""Batch orchestration: normalise images in order and stream them into an archive."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Sequence

from imgbatch.errors import BatchCancelledError, ItemError, PreconditionError
from imgbatch.imgproc import ImageNormalizer, NormalizedImage, Outcome, SourceImage
from imgbatch.metrics.prometheus_exporter import batches_total, encode_attempts, images_processed_total
from imgbatch.services.archive import ZipArchiveEmitter, archive_name
from imgbatch.services.progress import NullNotifier, ProgressEvent, ProgressNotifier
from imgbatch.services.stages import ProgressEventType

logger = logging.getLogger(__name__)


def _kb(size: int) -> str:
    return f"{size / 1024:.2f} KB"


def _mb(size: int) -> str:
    return f"{size / 1024 / 1024:.2f} MB"


@dataclass(slots=True)
class BatchItemResult:
    """What happened to one uploaded image."""

    index: int
    filename: str
    original_size: int
    outcome: Outcome
    data: bytes | None = None
    quality: int | None = None
    attempts: int = 0
    elapsed_ms: float = 0.0
    spans: dict[str, float] = field(default_factory=dict)
    strategy: str | None = None
    output_size: tuple[int, int] | None = None
    subsampling_forced: bool = False
    within_budget: bool = True
    error: str | None = None
    archive_name: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.outcome is not Outcome.ERROR

    @property
    def final_size(self) -> int:
        return len(self.data) if self.data is not None else 0

    @property
    def compression_ratio(self) -> float:
        """Size reduction in percent, one decimal."""

        if not self.original_size or self.data is None:
            return 0.0
        return round((1 - self.final_size / self.original_size) * 100, 1)

    @classmethod
    def from_normalized(
        cls,
        index: int,
        source: SourceImage,
        normalized: NormalizedImage,
        elapsed_ms: float,
    ) -> BatchItemResult:
        return cls(
            index=index,
            filename=source.filename,
            original_size=source.size,
            outcome=normalized.outcome,
            data=normalized.data,
            quality=normalized.quality,
            attempts=normalized.attempt_count,
            elapsed_ms=elapsed_ms,
            spans=normalized.spans,
            strategy=normalized.plan.strategy.value,
            output_size=normalized.output_size,
            subsampling_forced=normalized.subsampling_forced,
            within_budget=normalized.within_budget,
        )


@dataclass(slots=True)
class BatchSummary:
    """Aggregate outcome of a batch."""

    results: list[BatchItemResult]
    total_files: int
    total_time_ms: float = 0.0
    zip_size: int = 0
    cancelled: bool = False

    @property
    def processed_count(self) -> int:
        return sum(1 for result in self.results if result.succeeded)

    @property
    def failed(self) -> list[BatchItemResult]:
        return [result for result in self.results if not result.succeeded]

    @property
    def complete(self) -> bool:
        return not self.cancelled and self.processed_count == self.total_files


class BatchOrchestrator:
    """Runs images through the normaliser one at a time and archives them in input order."""

    def __init__(self, normalizer: ImageNormalizer, *, session_id: str = "local") -> None:
        self._normalizer = normalizer
        self.session_id = session_id

    @staticmethod
    def check_batch(images: Sequence[SourceImage]) -> None:
        """Reject a batch that cannot be processed at all."""

        if not images:
            raise PreconditionError("No images uploaded")

    async def run(
        self,
        images: Sequence[SourceImage],
        archive: ZipArchiveEmitter,
        notifier: ProgressNotifier | None = None,
        *,
        cancel_event: asyncio.Event | None = None,
    ) -> BatchSummary:
        """
        Process ``images`` sequentially and write every success to ``archive``.

        Per-image failures are reported and skipped. Anything else (a broken
        archive sink, an unexpected bug) is reported as a fatal ``error`` event
        and re-raised. A set ``cancel_event`` stops the batch between images
        without finalising the archive.
        """

        self.check_batch(images)
        notifier = notifier or NullNotifier()
        sid = self.session_id
        total = len(images)
        summary = BatchSummary(results=[], total_files=total)
        started = time.perf_counter()

        notifier.notify(
            ProgressEvent.create(
                ProgressEventType.PROCESSING_STARTED,
                "Starting image processing...",
                totalFiles=total,
            ),
        )

        try:
            for index, source in enumerate(images):
                if cancel_event is not None and cancel_event.is_set():
                    raise BatchCancelledError(f"Batch cancelled before item {index + 1}/{total}.")

                result = await self._process_item(index, source, total, notifier)
                if result.succeeded and result.data is not None:
                    result.archive_name = await asyncio.to_thread(
                        archive.append, archive_name(source.filename), result.data,
                    )
                    self._report_completed(result, summary.processed_count + 1, total, notifier)
                summary.results.append(result)

            summary.total_time_ms = (time.perf_counter() - started) * 1000
            processed = summary.processed_count
            average = summary.total_time_ms / processed if processed else 0.0
            logger.info(
                "[%s] All processing complete: %d/%d files in %.2fs (avg %.0fms/file)",
                sid,
                processed,
                total,
                summary.total_time_ms / 1000,
                average,
            )
            notifier.notify(
                ProgressEvent.create(
                    ProgressEventType.CREATING_ZIP,
                    "Creating zip file...",
                    processedCount=processed,
                    totalTime=round(summary.total_time_ms),
                ),
            )

            summary.zip_size = await asyncio.to_thread(archive.finalize)
            logger.info("[%s] Zip finalized: %s", sid, _mb(summary.zip_size))
        except BatchCancelledError as exc:
            summary.cancelled = True
            summary.total_time_ms = (time.perf_counter() - started) * 1000
            batches_total.labels(status="cancelled").inc()
            logger.warning("[%s] %s", sid, exc)
            return summary
        except Exception as exc:
            batches_total.labels(status="failed").inc()
            logger.exception("[%s] Fatal error processing images", sid)
            notifier.notify(
                ProgressEvent.create(
                    ProgressEventType.ERROR,
                    "Fatal error occurred",
                    error=str(exc),
                    processedCount=summary.processed_count,
                    totalFiles=total,
                ),
            )
            raise

        batches_total.labels(status="complete" if summary.complete else "partial").inc()
        message = (
            "All images processed successfully!"
            if summary.complete
            else f"Processed {summary.processed_count} of {total} images."
        )
        notifier.notify(
            ProgressEvent.create(
                ProgressEventType.COMPLETE,
                message,
                processedCount=summary.processed_count,
                totalFiles=total,
                totalTime=round(summary.total_time_ms),
                zipSize=summary.zip_size,
            ),
        )
        return summary

    async def _process_item(
        self,
        index: int,
        source: SourceImage,
        total: int,
        notifier: ProgressNotifier,
    ) -> BatchItemResult:
        sid = self.session_id
        logger.info(
            "[%s] Processing %d/%d: %s (%s)",
            sid,
            index + 1,
            total,
            source.filename,
            _kb(source.size),
        )
        notifier.notify(
            ProgressEvent.create(
                ProgressEventType.PROCESSING_FILE,
                f"Processing: {source.filename}",
                current=index + 1,
                total=total,
                filename=source.filename,
            ),
        )

        started = time.perf_counter()
        try:
            normalized = await asyncio.to_thread(self._normalizer.normalize, source)
        except ItemError as exc:
            elapsed_ms = (time.perf_counter() - started) * 1000
            images_processed_total.labels(outcome=Outcome.ERROR.value).inc()
            logger.error("[%s] Error processing %s: %s", sid, source.filename, exc)
            notifier.notify(
                ProgressEvent.create(
                    ProgressEventType.FILE_ERROR,
                    f"Failed: {source.filename}",
                    current=index + 1,
                    total=total,
                    filename=source.filename,
                    error=str(exc),
                ),
            )
            return BatchItemResult(
                index=index,
                filename=source.filename,
                original_size=source.size,
                outcome=Outcome.ERROR,
                elapsed_ms=elapsed_ms,
                error=str(exc),
            )

        elapsed_ms = (time.perf_counter() - started) * 1000
        images_processed_total.labels(outcome=normalized.outcome.value).inc()
        encode_attempts.observe(normalized.attempt_count)
        return BatchItemResult.from_normalized(index, source, normalized, elapsed_ms)

    def _report_completed(
        self,
        result: BatchItemResult,
        processed: int,
        total: int,
        notifier: ProgressNotifier,
    ) -> None:
        sid = self.session_id
        logger.info("[%s] Completed %d/%d: %s", sid, processed, total, result.archive_name)
        logger.info(
            "[%s]    %s, original %s -> final %s (%.1f%% reduction), quality %s, attempts %d, time %.0fms",
            sid,
            result.strategy,
            _kb(result.original_size),
            _kb(result.final_size),
            result.compression_ratio,
            result.quality if result.quality is not None else "original",
            result.attempts,
            result.elapsed_ms,
        )
        notifier.notify(
            ProgressEvent.create(
                ProgressEventType.FILE_COMPLETED,
                f"Completed: {result.filename}",
                current=result.index + 1,
                total=total,
                processedCount=processed,
                filename=result.filename,
                originalSize=result.original_size,
                finalSize=result.final_size,
                quality=result.quality,
                compressionRatio=result.compression_ratio,
                processingTime=round(result.elapsed_ms),
                attempts=result.attempts,
                outcome=result.outcome.value,
                strategy=result.strategy,
            ),
        )
