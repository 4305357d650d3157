"""Exception hierarchy shared by the image pipeline and the batch service."""

from __future__ import annotations


class ImageBatchError(RuntimeError):
    """Base class for every error raised by imgbatch."""


class PreconditionError(ImageBatchError):
    """Raised when a batch is rejected before any processing starts."""


class ItemError(ImageBatchError):
    """Failure confined to a single image; the batch keeps going."""


class DecodeError(ItemError):
    """Raised when the buffer is not a readable image."""


class InvalidGeometryError(ItemError):
    """Raised for non-positive or inconsistent dimensions."""


class EncodeError(ItemError):
    """Raised when the JPEG encoder fails at any quality."""


class ArchiveWriteError(ImageBatchError):
    """Raised when the output archive can no longer be written."""


class SessionChannelUnavailable(ImageBatchError):
    """Raised when no progress client is connected for a session."""

    def __init__(self, session_id: str) -> None:
        self.session_id = session_id
        super().__init__(f"No progress channel registered for session {session_id!r}.")


class BatchCancelledError(ImageBatchError):
    """Raised when the consumer went away and the batch stopped early."""
