"""Tests for batch orchestration."""

from __future__ import annotations

import asyncio
import zipfile
from io import BytesIO

import pytest

from conftest import RecordingNotifier, encode_image, gradient_image
from imgbatch.errors import ArchiveWriteError, PreconditionError
from imgbatch.imgproc import ImageNormalizer, Outcome, SourceImage, TargetSpec
from imgbatch.services.archive import ZipArchiveEmitter
from imgbatch.services.batch import BatchOrchestrator
from imgbatch.services.stages import ProgressEventType

SPEC = TargetSpec(width=120, height=160, max_bytes=15_000)


class BufferSink:
    def __init__(self) -> None:
        self.buffer = BytesIO()

    def write(self, data: bytes) -> int:
        return self.buffer.write(data)

    def flush(self) -> None:
        pass


class FailingSink(BufferSink):
    def write(self, data: bytes) -> int:
        raise OSError("broken pipe")


def _orchestrator() -> BatchOrchestrator:
    return BatchOrchestrator(ImageNormalizer(SPEC), session_id="test")


def _five_with_one_corrupt(make_source) -> list[SourceImage]:
    images = [make_source(300 + 10 * i, 400, name=f"img{i}.png") for i in range(5)]
    images[2] = SourceImage("broken.jpg", b"definitely not a jpeg")
    return images


@pytest.mark.asyncio
async def test_corrupt_file_does_not_abort_batch(make_source, notifier: RecordingNotifier) -> None:
    sink = BufferSink()
    archive = ZipArchiveEmitter(sink)

    summary = await _orchestrator().run(_five_with_one_corrupt(make_source), archive, notifier)

    assert summary.processed_count == 4
    assert summary.total_files == 5
    assert not summary.complete
    assert [result.outcome for result in summary.results].count(Outcome.ERROR) == 1
    assert summary.failed[0].filename == "broken.jpg"
    assert summary.failed[0].data is None
    assert len(notifier.of_type("file_error")) == 1
    assert notifier.of_type("file_error")[0].fields["filename"] == "broken.jpg"
    complete = notifier.of_type("complete")[0]
    assert complete.fields["processedCount"] == 4
    assert complete.fields["totalFiles"] == 5
    with zipfile.ZipFile(BytesIO(sink.buffer.getvalue())) as zipped:
        assert zipped.namelist() == ["img0.jpg", "img1.jpg", "img3.jpg", "img4.jpg"]
    assert summary.zip_size == len(sink.buffer.getvalue())


@pytest.mark.asyncio
async def test_event_sequence(make_source, notifier: RecordingNotifier) -> None:
    images = [make_source(300, 400, name="ok.png"), SourceImage("bad.png", b"??")]

    await _orchestrator().run(images, ZipArchiveEmitter(BufferSink()), notifier)

    assert notifier.types == [
        "processing_started",
        "processing_file",
        "file_completed",
        "processing_file",
        "file_error",
        "creating_zip",
        "complete",
    ]
    completed = notifier.of_type("file_completed")[0].fields
    assert completed["current"] == 1
    assert completed["total"] == 2
    assert completed["finalSize"] <= 15_000
    assert completed["outcome"] == "downscaled"
    assert completed["attempts"] >= 1


@pytest.mark.asyncio
async def test_each_entry_is_written_before_next_item_starts(make_source, mocker) -> None:
    archive = ZipArchiveEmitter(BufferSink())
    orchestrator = _orchestrator()
    images = [make_source(300, 400, name=f"{i}.png") for i in range(3)]
    seen_entries: list[int] = []
    original = ImageNormalizer.normalize

    def _normalize(self, source):
        seen_entries.append(len(archive.entries))
        return original(self, source)

    mocker.patch.object(ImageNormalizer, "normalize", _normalize)

    await orchestrator.run(images, archive)

    assert seen_entries == [0, 1, 2]


@pytest.mark.asyncio
async def test_empty_batch_is_rejected_before_processing(notifier: RecordingNotifier) -> None:
    sink = BufferSink()

    with pytest.raises(PreconditionError):
        await _orchestrator().run([], ZipArchiveEmitter(sink), notifier)

    assert notifier.events == []
    assert sink.buffer.getvalue() == b""


@pytest.mark.asyncio
async def test_all_failures_still_produce_empty_archive(notifier: RecordingNotifier) -> None:
    sink = BufferSink()
    images = [SourceImage("a.jpg", b"x"), SourceImage("b.jpg", b"y")]

    summary = await _orchestrator().run(images, ZipArchiveEmitter(sink), notifier)

    assert summary.processed_count == 0
    assert notifier.types[-1] == "complete"
    with zipfile.ZipFile(BytesIO(sink.buffer.getvalue())) as zipped:
        assert zipped.namelist() == []


@pytest.mark.asyncio
async def test_archive_failure_is_fatal(make_source, notifier: RecordingNotifier) -> None:
    images = [make_source(300, 400, name="a.png"), make_source(300, 400, name="b.png")]

    with pytest.raises(ArchiveWriteError):
        await _orchestrator().run(images, ZipArchiveEmitter(FailingSink()), notifier)

    assert notifier.types[-1] == "error"
    assert "broken pipe" in notifier.events[-1].fields["error"]
    assert notifier.types.count("processing_file") == 1


@pytest.mark.asyncio
async def test_cancellation_stops_between_items(make_source) -> None:
    cancel = asyncio.Event()

    class CancelAfterFirst(RecordingNotifier):
        def notify(self, event) -> None:
            super().notify(event)
            if event.type is ProgressEventType.FILE_COMPLETED:
                cancel.set()

    recorder = CancelAfterFirst()
    archive = ZipArchiveEmitter(BufferSink())
    images = [make_source(300, 400, name=f"{i}.png") for i in range(3)]

    summary = await _orchestrator().run(images, archive, recorder, cancel_event=cancel)

    assert summary.cancelled
    assert len(summary.results) == 1
    assert recorder.types.count("processing_file") == 1
    assert "complete" not in recorder.types
    assert not archive.finalized


@pytest.mark.asyncio
async def test_kept_original_passes_through_batch(notifier: RecordingNotifier) -> None:
    data = encode_image(gradient_image(120, 160), "JPEG", quality=70)
    sink = BufferSink()

    summary = await _orchestrator().run([SourceImage("exact.jpeg", data)], ZipArchiveEmitter(sink), notifier)

    assert summary.results[0].outcome is Outcome.KEPT_ORIGINAL
    with zipfile.ZipFile(BytesIO(sink.buffer.getvalue())) as zipped:
        assert zipped.read("exact.jpg") == data
