"""Shared fixtures: in-memory images and a notifier that records events."""

from __future__ import annotations

from io import BytesIO
from typing import Callable

import pytest
from PIL import Image

from imgbatch.imgproc import SourceImage
from imgbatch.services.progress import ProgressEvent


def encode_image(image: Image.Image, fmt: str = "JPEG", **params: object) -> bytes:
    buffer = BytesIO()
    image.save(buffer, format=fmt, **params)
    return buffer.getvalue()


def noisy_image(width: int, height: int) -> Image.Image:
    """Colour noise; compresses badly, so it exercises the quality search."""

    channels = [Image.effect_noise((width, height), sigma) for sigma in (60, 80, 100)]
    return Image.merge("RGB", channels)


def gradient_image(width: int, height: int) -> Image.Image:
    horizontal = Image.linear_gradient("L").resize((width, height))
    vertical = Image.linear_gradient("L").rotate(90).resize((width, height))
    return Image.merge("RGB", (horizontal, vertical, Image.new("L", (width, height), 128)))


class RecordingNotifier:
    """Keeps every event it receives."""

    def __init__(self) -> None:
        self.events: list[ProgressEvent] = []

    def notify(self, event: ProgressEvent) -> None:
        self.events.append(event)

    @property
    def types(self) -> list[str]:
        return [event.type.value for event in self.events]

    def of_type(self, event_type: str) -> list[ProgressEvent]:
        return [event for event in self.events if event.type.value == event_type]


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def make_source() -> Callable[..., SourceImage]:
    def _make(
        width: int,
        height: int,
        *,
        name: str = "photo.png",
        fmt: str = "PNG",
        noisy: bool = False,
        **params: object,
    ) -> SourceImage:
        image = noisy_image(width, height) if noisy else gradient_image(width, height)
        return SourceImage(filename=name, data=encode_image(image, fmt, **params))

    return _make
