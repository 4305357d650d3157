"""Header-only image probing."""

from __future__ import annotations

from dataclasses import dataclass, field
from io import BytesIO

from PIL import Image, UnidentifiedImageError

from imgbatch.errors import DecodeError


@dataclass(frozen=True, slots=True)
class ImageInfo:
    """Dimensions and container format reported by the decoder."""

    width: int
    height: int
    format: str

    @property
    def aspect(self) -> float:
        return self.width / self.height if self.height else 0.0


def probe(data: bytes) -> ImageInfo:
    """
    Read width, height and format from an encoded image.

    Pillow's ``Image.open`` only parses the header; pixel data is not decoded
    until ``load()`` is called, so this is cheap even for large uploads.
    """

    if not data:
        raise DecodeError("Empty image buffer.")
    try:
        with Image.open(BytesIO(data)) as image:
            width, height = image.size
            image_format = image.format or "UNKNOWN"
    except UnidentifiedImageError as exc:
        raise DecodeError("Input buffer is not a recognised image format.") from exc
    except Image.DecompressionBombError as exc:
        raise DecodeError(f"Image is too large to process safely: {exc}") from exc
    except (OSError, ValueError, SyntaxError) as exc:
        raise DecodeError(f"Unable to read image header: {exc}") from exc
    return ImageInfo(width=width, height=height, format=image_format)


@dataclass(slots=True)
class SourceImage:
    """An uploaded image as received from the client."""

    filename: str
    data: bytes
    declared_size: int | None = None
    _info: ImageInfo | None = field(default=None, init=False, repr=False, compare=False)

    @property
    def size(self) -> int:
        """Byte length of the upload; the declared length wins when given."""

        return self.declared_size if self.declared_size is not None else len(self.data)

    def probe(self) -> ImageInfo:
        """Probe the buffer once and cache the result."""

        if self._info is None:
            self._info = probe(self.data)
        return self._info
