import io
import base64
import binascii
from typing import Union

from PIL import Image, UnidentifiedImageError

from ..storage.images import decode_data_url, is_data_url

JPEG_QUALITY = 80


def read_image_input(image: Union[str, bytes]) -> bytes:
    """Accept raw bytes, a data: URL or bare base64 and return the raw bytes"""
    if isinstance(image, (bytes, bytearray)):
        return bytes(image)
    if is_data_url(image):
        return decode_data_url(image)[1]
    payload = image.split(",", 1)[1] if "," in image else image
    try:
        return base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError) as e:
        raise ValueError(f"Image is neither a data URL nor valid base64: {e}") from e


def normalize_jpeg(data: bytes, max_side: int = 1024) -> bytes:
    """Re-encode any Pillow-readable image as an RGB JPEG no larger than max_side"""
    try:
        with Image.open(io.BytesIO(data)) as img:
            img = img.convert("RGB")
            if max_side and max(img.size) > max_side:
                img.thumbnail((max_side, max_side))
            out = io.BytesIO()
            img.save(out, format="JPEG", quality=JPEG_QUALITY)
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError) as e:
        raise ValueError(f"Unreadable image: {e}") from e
    return out.getvalue()


def pil_to_jpeg(img: Image.Image, max_side: int = 0) -> bytes:
    """Encode a captured PIL image the way the camera widget does (JPEG, quality 80)"""
    img = img.convert("RGB")
    if max_side and max(img.size) > max_side:
        img = img.copy()
        img.thumbnail((max_side, max_side))
    out = io.BytesIO()
    img.save(out, format="JPEG", quality=JPEG_QUALITY)
    return out.getvalue()
