"""Enumerations describing batch progress stages."""

from enum import Enum


class ProgressEventType(str, Enum):
    """Event tags sent over the progress channel, in the order a batch emits them."""

    CONNECTED = "connected"
    UPLOAD_COMPLETE = "upload_complete"
    PROCESSING_STARTED = "processing_started"
    PROCESSING_FILE = "processing_file"
    FILE_COMPLETED = "file_completed"
    FILE_ERROR = "file_error"
    CREATING_ZIP = "creating_zip"
    COMPLETE = "complete"
    ERROR = "error"
