"""Artwork loading from paths, data URIs and URLs, plus PNG data-URI encoding."""
import asyncio
import base64
import binascii
import logging
from io import BytesIO
from pathlib import Path
from typing import Union

import numpy as np
import requests
from PIL import Image, ImageOps, UnidentifiedImageError

from garmentprint.types import ImageArray, ImageLoadError

logger = logging.getLogger(__name__)

DATA_URI_PREFIX = "data:"
REQUEST_TIMEOUT = 30


def _decode_bytes(payload: bytes, source: str) -> ImageArray:
    try:
        with Image.open(BytesIO(payload)) as img:
            # Apply EXIF orientation transformation to handle rotation
            img = ImageOps.exif_transpose(img)
            img = img.convert("RGBA")
            return np.array(img, dtype=np.uint8)
    except (UnidentifiedImageError, OSError) as e:
        raise ImageLoadError(f"Failed to decode image {source}: {e}") from e


def _read_data_uri(uri: str) -> bytes:
    header, sep, data = uri.partition(",")
    if not sep:
        raise ImageLoadError("Malformed data URI: missing ','")
    try:
        if header.endswith(";base64"):
            return base64.b64decode(data, validate=True)
        return data.encode("latin-1")
    except (binascii.Error, ValueError) as e:
        raise ImageLoadError(f"Malformed data URI payload: {e}") from e


def _fetch_url(url: str) -> bytes:
    try:
        response = requests.get(url, timeout=REQUEST_TIMEOUT)
        response.raise_for_status()
    except requests.RequestException as e:
        raise ImageLoadError(f"Failed to fetch image {url}: {e}") from e
    return response.content


def load_image(source: Union[str, Path, bytes]) -> ImageArray:
    """
    Load artwork as an RGBA array.

    Args:
        source: Filesystem path, `data:image/...;base64,` URI, http(s) URL
            or raw encoded bytes

    Returns:
        (H, W, 4) uint8 RGBA array

    Raises:
        ImageLoadError: If the source cannot be read or decoded
    """
    if isinstance(source, (bytes, bytearray)):
        return _decode_bytes(bytes(source), "<bytes>")

    text = str(source)
    if text.startswith(DATA_URI_PREFIX):
        return _decode_bytes(_read_data_uri(text), "<data uri>")
    if text.startswith(("http://", "https://")):
        logger.debug(f"Fetching artwork from {text}")
        return _decode_bytes(_fetch_url(text), text)

    path = Path(text)
    if not path.is_file():
        raise ImageLoadError(f"Image file not found: {path}")
    return _decode_bytes(path.read_bytes(), str(path))


async def load_image_async(source: Union[str, Path, bytes]) -> ImageArray:
    """Run load_image in a worker thread so decoding never blocks the event loop."""
    return await asyncio.to_thread(load_image, source)


def to_pil(pixels: ImageArray) -> Image.Image:
    """Wrap an RGBA (or RGB) uint8 array as a PIL image."""
    return Image.fromarray(np.ascontiguousarray(pixels, dtype=np.uint8))


def encode_png(pixels: ImageArray) -> bytes:
    buffer = BytesIO()
    to_pil(pixels).save(buffer, format="PNG")
    return buffer.getvalue()


def encode_data_uri(pixels: ImageArray) -> str:
    """Encode an image as a `data:image/png;base64,...` URI."""
    b64 = base64.b64encode(encode_png(pixels)).decode("utf-8")
    return f"data:image/png;base64,{b64}"


def save_image(pixels: ImageArray, path: Union[str, Path]) -> Path:
    """Write an image to disk, creating parent directories as needed."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    to_pil(pixels).save(path)
    return path


def crop_to_ratio(pixels: ImageArray, wh_ratio: float) -> ImageArray:
    """
    Centre-crop an image to a width/height ratio.

    Args:
        pixels: (H, W, C) image
        wh_ratio: Target width / height, must be positive

    Returns:
        Cropped view of the input
    """
    if wh_ratio <= 0:
        raise ValueError(f"wh_ratio must be positive, got {wh_ratio}")
    height, width = pixels.shape[:2]
    if width / height > wh_ratio:
        new_width = max(1, int(round(height * wh_ratio)))
        left = (width - new_width) // 2
        return pixels[:, left:left + new_width]
    new_height = max(1, int(round(width / wh_ratio)))
    top = (height - new_height) // 2
    return pixels[top:top + new_height, :]
