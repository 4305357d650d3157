"""Pixel rendering for a fit plan and JPEG encoding."""

from __future__ import annotations

from io import BytesIO

from PIL import Image, ImageFilter, UnidentifiedImageError

from imgbatch.errors import DecodeError, EncodeError
from imgbatch.imgproc.fit import FitPlan

KERNELS = {
    "nearest": Image.Resampling.NEAREST,
    "bilinear": Image.Resampling.BILINEAR,
    "bicubic": Image.Resampling.BICUBIC,
    "lanczos": Image.Resampling.LANCZOS,
}

# Mild unsharp mask, roughly what a default post-resize sharpen does.
SHARPEN_FILTER = ImageFilter.UnsharpMask(radius=1, percent=60, threshold=2)

HIGH_QUALITY_THRESHOLD = 90


def _decode(data: bytes) -> Image.Image:
    try:
        image = Image.open(BytesIO(data))
        image.load()
    except UnidentifiedImageError as exc:
        raise DecodeError("Input buffer is not a recognised image format.") from exc
    except Image.DecompressionBombError as exc:
        raise DecodeError(f"Image is too large to process safely: {exc}") from exc
    except (OSError, ValueError, SyntaxError) as exc:
        raise DecodeError(f"Unable to decode image: {exc}") from exc
    return image


def _to_8bit(image: Image.Image) -> Image.Image:
    """Scale 16-bit integer and float greyscale down to 8-bit ``L``."""

    if image.mode == "F":
        _, high = image.getextrema()
        if high <= 1.0:
            factor = 255.0
        elif high > 255:
            factor = 255.0 / high
        else:
            factor = 1.0
        return image.point(lambda v: v * factor).convert("L")

    # Older Pillow decodes 16-bit PNG as plain "I", so check the range there.
    sixteen_bit = image.mode.startswith("I;16") or image.getextrema()[1] > 255
    wide = image if image.mode == "I" else image.convert("I")
    if sixteen_bit:
        wide = wide.point(lambda v: v * (1 / 256))
    return wide.convert("L")


def _flatten(image: Image.Image, background: tuple[int, int, int]) -> Image.Image:
    """Return an RGB image, compositing any transparency onto ``background``."""

    has_alpha = image.mode in ("RGBA", "LA", "PA") or (
        image.mode == "P" and "transparency" in image.info
    )
    try:
        if image.mode in ("I", "F") or image.mode.startswith("I;16"):
            image = _to_8bit(image)
        if not has_alpha:
            return image if image.mode == "RGB" else image.convert("RGB")
        rgba = image.convert("RGBA")
    except (OSError, ValueError) as exc:
        raise DecodeError(f"Unsupported pixel mode {image.mode}: {exc}") from exc

    canvas = Image.new("RGB", rgba.size, background)
    canvas.paste(rgba, mask=rgba.getchannel("A"))
    return canvas


def render(data: bytes, plan: FitPlan, *, sharpen: bool = True) -> Image.Image:
    """
    Decode ``data`` and apply the plan's crop, resample and padding.

    Sharpening runs once, right after resampling, so every later encode works
    from the same pixels. Images that are only cropped are left untouched.
    """

    image = _flatten(_decode(data), plan.background)
    if image.size != plan.source_size:
        raise DecodeError(
            f"Decoded size {image.size[0]}x{image.size[1]} does not match probed size "
            f"{plan.source_size[0]}x{plan.source_size[1]}.",
        )

    x, y, width, height = plan.crop
    if (x, y, width, height) != (0, 0, *plan.source_size):
        image = image.crop((x, y, x + width, y + height))

    if plan.needs_resize:
        image = image.resize(plan.scaled_size, resample=KERNELS[plan.resample])
        if sharpen:
            image = image.filter(SHARPEN_FILTER)

    if plan.is_padded:
        canvas = Image.new("RGB", plan.output_size, plan.background)
        canvas.paste(image, plan.offset)
        image = canvas

    return image


def chroma_subsampling(quality: int, force: bool = False) -> str:
    """Subsampling mode used for an encode at ``quality``."""

    if force or quality < HIGH_QUALITY_THRESHOLD:
        return "4:2:0"
    return "4:4:4"


def encode_jpeg(pixels: Image.Image, quality: int, *, force_subsampling: bool = False) -> bytes:
    """Encode RGB pixels to a baseline-optimised JPEG."""

    if not 1 <= quality <= 100:
        raise EncodeError(f"JPEG quality must be within 1..100, got {quality}.")

    buffer = BytesIO()
    try:
        pixels.save(
            buffer,
            format="JPEG",
            quality=quality,
            subsampling=chroma_subsampling(quality, force_subsampling),
            optimize=True,
        )
    except (OSError, ValueError) as exc:
        raise EncodeError(f"JPEG encoder failed at quality {quality}: {exc}") from exc
    return buffer.getvalue()
