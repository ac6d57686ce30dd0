import base64
import binascii
import io
import logging
import re
import warnings
from typing import Optional, Tuple, Union

from PIL import Image, ImageOps, UnidentifiedImageError

logger = logging.getLogger(__name__)

DATA_URL_RE = re.compile(r"^data:([^;]+);base64,(.*)$", re.DOTALL)
DEFAULT_MIME_TYPE = "image/png"


class InvalidImageError(ValueError):
    pass


# ----------------------------
# Data URL helpers
# ----------------------------
def parse_data_url(value) -> Optional[Tuple[str, str]]:
    """Split a ``data:<mime>;base64,<payload>`` URL into (mime, payload)."""
    if not isinstance(value, str):
        return None
    match = DATA_URL_RE.match(value)
    if not match:
        return None
    return match.group(1), match.group(2)


def to_data_url(mime_type: Optional[str], data: Union[bytes, str]) -> str:
    if isinstance(data, bytes):
        data = base64.b64encode(data).decode()
    return f"data:{mime_type or DEFAULT_MIME_TYPE};base64,{data}"


def decode_payload(payload: str) -> bytes:
    try:
        return base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError) as e:
        raise InvalidImageError(f"Invalid base64 image data: {e}")


# ----------------------------
# Utility: image → data URL
# ----------------------------
def pil_to_data_url(image: Image.Image) -> str:
    buf = io.BytesIO()
    if image.mode in ("RGBA", "LA", "P"):
        image.convert("RGBA").save(buf, format="PNG")
        mime_type = "image/png"
    else:
        image.convert("RGB").save(buf, format="JPEG", quality=90)
        mime_type = "image/jpeg"
    return to_data_url(mime_type, buf.getvalue())


def open_image(raw: bytes) -> Image.Image:
    try:
        # oversized images fail here instead of only warning
        with warnings.catch_warnings():
            warnings.simplefilter("error", Image.DecompressionBombWarning)
            img = Image.open(io.BytesIO(raw))
            img.load()
    except (Image.DecompressionBombError, Image.DecompressionBombWarning) as e:
        raise InvalidImageError(f"Image too large: {e}")
    except (UnidentifiedImageError, OSError) as e:
        raise InvalidImageError(f"Unreadable image: {e}")
    return ImageOps.exif_transpose(img)


def prepare_image(raw: bytes, max_side: int = 1024) -> str:
    """
    Normalize an uploaded image for editing.

    Applies the EXIF orientation, downscales so the longest side is at most
    ``max_side`` and re-encodes as PNG (images with transparency) or JPEG.
    Returns a data URL.
    """
    img = open_image(raw)
    width, height = img.size
    if max(width, height) > max_side:
        img.thumbnail((max_side, max_side), Image.LANCZOS)
        logger.debug(f"Downscaled image from {width}x{height} to {img.size[0]}x{img.size[1]}")
    return pil_to_data_url(img)


def fit_data_url(value: str, max_side: int = 1024) -> str:
    """
    Return ``value`` unchanged when it is not a data URL or already fits
    within ``max_side``; otherwise the downscaled re-encoding.
    """
    parsed = parse_data_url(value)
    if parsed is None:
        return value
    img = open_image(decode_payload(parsed[1]))
    if max(img.size) <= max_side:
        return value
    img.thumbnail((max_side, max_side), Image.LANCZOS)
    return pil_to_data_url(img)
