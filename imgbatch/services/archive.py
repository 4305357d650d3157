"""Streaming zip archive writer for processed images."""

from __future__ import annotations

import logging
import time
import zipfile
from pathlib import PurePosixPath
from typing import Protocol

from imgbatch.errors import ArchiveWriteError

logger = logging.getLogger(__name__)


class WritableSink(Protocol):
    def write(self, data: bytes) -> int | None:
        ...

    def flush(self) -> None:
        ...


class _CountingWriter:
    """Forwards writes to the sink and counts bytes. Deliberately not seekable."""

    def __init__(self, sink: WritableSink) -> None:
        self._sink = sink
        self.written = 0

    def write(self, data: bytes) -> int:
        chunk = bytes(data)
        self._sink.write(chunk)
        self.written += len(chunk)
        return len(chunk)

    def flush(self) -> None:
        self._sink.flush()


def archive_name(filename: str, extension: str = ".jpg") -> str:
    """Entry name for an upload: its basename with the extension normalised."""

    stem = PurePosixPath(filename.replace("\\", "/")).stem.strip()
    return f"{stem or 'image'}{extension}"


class ZipArchiveEmitter:
    """
    Appends (name, bytes) entries to a zip written straight into ``sink``.

    The sink only needs ``write`` and ``flush``; nothing is seeked, so the
    archive can be streamed to a client while it is being built.
    """

    def __init__(self, sink: WritableSink, *, compression_level: int = 9) -> None:
        self._writer = _CountingWriter(sink)
        self._names: set[str] = set()
        self._entries: list[str] = []
        self._finalized = False
        self._level = compression_level
        try:
            self._zip = zipfile.ZipFile(
                self._writer,
                mode="w",
                compression=zipfile.ZIP_DEFLATED,
                compresslevel=compression_level,
            )
        except (OSError, ValueError) as exc:
            raise ArchiveWriteError(f"Unable to open archive stream: {exc}") from exc

    @property
    def entries(self) -> list[str]:
        return list(self._entries)

    @property
    def bytes_written(self) -> int:
        return self._writer.written

    @property
    def finalized(self) -> bool:
        return self._finalized

    def _unique(self, name: str) -> str:
        if name not in self._names:
            return name
        path = PurePosixPath(name)
        counter = 2
        while f"{path.stem}-{counter}{path.suffix}" in self._names:
            counter += 1
        return f"{path.stem}-{counter}{path.suffix}"

    def append(self, name: str, data: bytes) -> str:
        """Write one entry and return the name it was stored under."""

        if self._finalized:
            raise ArchiveWriteError("Archive already finalised.")
        entry_name = self._unique(name)
        info = zipfile.ZipInfo(entry_name, date_time=time.localtime()[:6])
        info.compress_type = zipfile.ZIP_DEFLATED
        try:
            self._zip.writestr(info, data, compresslevel=self._level)
            self._writer.flush()
        except (OSError, ValueError, zipfile.LargeZipFile) as exc:
            raise ArchiveWriteError(f"Failed to write {entry_name!r} to archive: {exc}") from exc
        self._names.add(entry_name)
        self._entries.append(entry_name)
        return entry_name

    def finalize(self) -> int:
        """Write the central directory; returns total archive size in bytes."""

        if not self._finalized:
            try:
                self._zip.close()
                self._writer.flush()
            except (OSError, ValueError) as exc:
                raise ArchiveWriteError(f"Failed to finalise archive: {exc}") from exc
            self._finalized = True
            logger.debug("Archive finalised: %d entries, %d bytes", len(self._entries), self.bytes_written)
        return self.bytes_written
