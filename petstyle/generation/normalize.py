"""Output normalization with Pillow."""

import io

from PIL import Image, UnidentifiedImageError

from petstyle.pipeline.errors import PipelineError
from petstyle.pipeline.state import JobType

OUTPUT_CONTENT_TYPE = "image/png"
DEFAULT_MAX_SIZE = 1024


class NormalizationError(PipelineError):
    """Provider output could not be decoded as an image."""


def open_image(data: bytes) -> Image.Image:
    try:
        img = Image.open(io.BytesIO(data))
        img.load()
    except (UnidentifiedImageError, OSError) as e:
        raise NormalizationError(f"Cannot decode image data: {e}") from e
    return img


def detect_mime_type(data: bytes) -> str:
    """MIME type of encoded image bytes, e.g. ``image/jpeg``."""
    img = open_image(data)
    return Image.MIME.get(img.format or "", "application/octet-stream")


def encode_png_bytes(img: Image.Image) -> bytes:
    buf = io.BytesIO()
    img.save(buf, format="PNG", optimize=True)
    return buf.getvalue()


def normalize_output(
    data: bytes,
    job_type: JobType | str,
    max_size: int = DEFAULT_MAX_SIZE,
) -> bytes:
    """Resize generated bytes to fit inside ``max_size`` and encode as PNG.

    Stickers are forced to RGBA so transparency survives; other images keep
    RGB or RGBA. Images are never upscaled.

    Raises:
        NormalizationError: If ``data`` is not a decodable image.
    """
    img = open_image(data)

    if JobType(job_type) == JobType.STICKER:
        img = img.convert("RGBA")
    elif img.mode not in ("RGB", "RGBA"):
        img = img.convert("RGB")

    img.thumbnail((max_size, max_size), Image.Resampling.LANCZOS)
    return encode_png_bytes(img)
