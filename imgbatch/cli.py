"""Command-line entry point: run the HTTP service or normalise a local folder."""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from dataclasses import replace
from pathlib import Path
from typing import Sequence

import uvicorn

from imgbatch.config.settings import get_settings
from imgbatch.errors import ImageBatchError
from imgbatch.imgproc import ImageNormalizer, SourceImage
from imgbatch.monitoring.logging import configure_logging
from imgbatch.services.archive import ZipArchiveEmitter
from imgbatch.services.batch import BatchOrchestrator, BatchSummary
from imgbatch.services.progress import ProgressEvent

logger = logging.getLogger("imgbatch.cli")

IMAGE_SUFFIXES = {".jpg", ".jpeg", ".png", ".webp", ".gif", ".bmp", ".tif", ".tiff"}


class LogNotifier:
    """Writes progress events to the log instead of a client."""

    def notify(self, event: ProgressEvent) -> None:
        logger.info("%s: %s", event.type.value, event.message)


def collect_images(folder: Path) -> list[SourceImage]:
    """Load every image-looking file in ``folder`` in name order."""

    paths = sorted(
        path for path in folder.iterdir() if path.is_file() and path.suffix.lower() in IMAGE_SUFFIXES
    )
    return [SourceImage(filename=path.name, data=path.read_bytes()) for path in paths]


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    settings = get_settings()
    parser = argparse.ArgumentParser(description="Normalise image batches into size-capped JPEGs.")
    subparsers = parser.add_subparsers(dest="command", required=True)

    serve = subparsers.add_parser("serve", help="Run the HTTP API")
    serve.add_argument("--host", default=settings.host, help="Interface to bind")
    serve.add_argument("--port", type=int, default=settings.port, help="Port to listen on")

    normalize = subparsers.add_parser("normalize", help="Normalise the images of a local folder")
    normalize.add_argument("folder", type=Path, help="Folder containing source images")
    normalize.add_argument(
        "-o",
        "--output",
        type=Path,
        default=Path(settings.archive_filename),
        help="Zip archive to write",
    )
    normalize.add_argument("--width", type=int, default=settings.target_width, help="Output width in pixels")
    normalize.add_argument("--height", type=int, default=settings.target_height, help="Output height in pixels")
    normalize.add_argument(
        "--max-bytes",
        type=int,
        default=settings.max_file_size,
        help="Soft per-image size ceiling",
    )
    normalize.add_argument(
        "--quality-floor",
        type=int,
        default=settings.quality_floor,
        help="Lowest quality tried before forced chroma subsampling",
    )
    normalize.add_argument(
        "--no-letterbox",
        action="store_true",
        help="Always crop to fill instead of padding very different aspect ratios",
    )

    for sub in (serve, normalize):
        sub.add_argument("--verbose", action="store_true", help="Enable verbose logging")
    return parser.parse_args(argv)


async def _normalize_folder(args: argparse.Namespace) -> BatchSummary:
    settings = get_settings()
    base = settings.target_spec()
    spec = replace(
        base,
        width=args.width,
        height=args.height,
        max_bytes=args.max_bytes,
        quality_floor=args.quality_floor,
        letterbox=base.letterbox and not args.no_letterbox,
    )
    images = collect_images(args.folder)
    orchestrator = BatchOrchestrator(ImageNormalizer(spec), session_id="cli")
    orchestrator.check_batch(images)

    with args.output.open("wb") as handle:
        archive = ZipArchiveEmitter(handle, compression_level=settings.zip_compression_level)
        return await orchestrator.run(images, archive, LogNotifier())


def main(argv: Sequence[str] | None = None) -> int:
    args = parse_args(argv)
    configure_logging("DEBUG" if args.verbose else None)

    if args.command == "serve":
        uvicorn.run("imgbatch.api.main:app", host=args.host, port=args.port)
        return 0

    if not args.folder.is_dir():
        logger.error("Not a directory: %s", args.folder)
        return 2
    try:
        summary = asyncio.run(_normalize_folder(args))
    except ImageBatchError as exc:
        logger.error("%s", exc)
        return 1

    logger.info(
        "Wrote %s: %d/%d images, %d bytes",
        args.output,
        summary.processed_count,
        summary.total_files,
        summary.zip_size,
    )
    return 0 if summary.complete else 1


if __name__ == "__main__":
    sys.exit(main())
