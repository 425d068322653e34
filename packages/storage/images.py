import re
import uuid
import base64
import binascii
import logging
from pathlib import Path
from typing import Optional, Tuple, Union

from ..settings import Settings, get_settings
from .db import StorageError

logger = logging.getLogger(__name__)

ALLOWED_MIME_TYPES = ["image/jpeg", "image/png"]
FILE_SIZE_LIMIT = 5 * 1024 * 1024  # 5MB

_DATA_URL = re.compile(r"^data:(?P<mime>[\w/+.-]+)?(?:;[\w=-]+)*?;base64,(?P<data>.*)$", re.DOTALL)


def is_data_url(value: str) -> bool:
    return isinstance(value, str) and value.startswith("data:")


def decode_data_url(value: str) -> Tuple[str, bytes]:
    """Split a data: URL into (mime type, raw bytes)"""
    match = _DATA_URL.match(value.strip())
    if not match:
        raise ValueError("Not a base64 data URL")
    try:
        data = base64.b64decode(match.group("data"), validate=False)
    except (binascii.Error, ValueError) as e:
        raise ValueError(f"Invalid base64 payload: {e}") from e
    return match.group("mime") or "application/octet-stream", data


def to_data_url(data: bytes, mime_type: str = "image/jpeg") -> str:
    return f"data:{mime_type};base64,{base64.b64encode(data).decode('ascii')}"


def sanitize_folder(part_number: str) -> str:
    folder = re.sub(r"[^a-z0-9]", "_", (part_number or "").lower())
    return folder or "unnamed_part"


def _as_bytes(image: Union[str, bytes]) -> bytes:
    if isinstance(image, bytes):
        return image
    if is_data_url(image):
        return decode_data_url(image)[1]
    raise ValueError("Expected raw bytes or a data: URL")


class ImageStore:
    """Object storage for part photos. Uploads are JPEG, one folder per part number."""

    bucket: str

    def initialize(self) -> None:
        pass

    def upload(self, image: Union[str, bytes], part_number: str) -> str:
        try:
            data = _as_bytes(image)
        except ValueError as e:
            raise StorageError(f"Image upload failed: {e}") from e
        if len(data) > FILE_SIZE_LIMIT:
            raise StorageError(f"Image upload failed: file exceeds {FILE_SIZE_LIMIT} bytes")
        path = f"{sanitize_folder(part_number)}/{uuid.uuid4()}.jpg"
        try:
            return self._put(path, data)
        except StorageError:
            raise
        except Exception as e:
            logger.error(f"Upload of {path} failed: {e}")
            raise StorageError(f"Image upload failed: {e}") from e

    def read(self, url: str) -> Optional[bytes]:
        """Bytes for a URL this store issued, None for foreign URLs"""
        return None

    def _put(self, path: str, data: bytes) -> str:
        raise NotImplementedError


class LocalImageStore(ImageStore):
    def __init__(self, root: str, base_url: str, bucket: str = "parts-images"):
        self.bucket = bucket
        self.root = Path(root) / bucket
        self.base_url = f"{base_url.rstrip('/')}/{bucket}"

    def initialize(self) -> None:
        try:
            self.root.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            logger.warning(f"Could not create media directory {self.root}: {e}")

    def _put(self, path: str, data: bytes) -> str:
        target = self.root / path
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(data)
        return f"{self.base_url}/{path}"

    def _local_path(self, url: str) -> Optional[Path]:
        prefix = self.base_url + "/"
        if not url.startswith(prefix):
            return None
        relative = url[len(prefix):].split("?", 1)[0]
        target = (self.root / relative).resolve()
        if self.root.resolve() not in target.parents:
            return None
        return target

    def read(self, url: str) -> Optional[bytes]:
        target = self._local_path(url)
        if target is None or not target.is_file():
            return None
        return target.read_bytes()


class SupabaseImageStore(ImageStore):
    def __init__(self, url: str, key: str, bucket: str = "parts-images", client=None):
        self.bucket = bucket
        self.public_prefix = f"{url.rstrip('/')}/storage/v1/object/public/{bucket}/"
        if client is None:
            from supabase import create_client
            client = create_client(url, key)
        self.client = client

    def initialize(self) -> None:
        try:
            buckets = self.client.storage.list_buckets() or []
            if any(getattr(b, "id", None) == self.bucket for b in buckets):
                return
            self.client.storage.create_bucket(
                self.bucket,
                options={
                    "public": True,
                    "allowed_mime_types": ALLOWED_MIME_TYPES,
                    "file_size_limit": FILE_SIZE_LIMIT,
                },
            )
            logger.info(f"Created storage bucket '{self.bucket}'")
        except Exception as e:
            logger.warning(f"Bucket '{self.bucket}' must be created manually in the Supabase dashboard: {e}")

    def _put(self, path: str, data: bytes) -> str:
        bucket = self.client.storage.from_(self.bucket)
        bucket.upload(
            path,
            data,
            {"content-type": "image/jpeg", "cache-control": "3600", "upsert": "true"},
        )
        return bucket.get_public_url(path)

    def read(self, url: str) -> Optional[bytes]:
        if not url.startswith(self.public_prefix):
            return None
        path = url[len(self.public_prefix):].split("?", 1)[0]
        try:
            return self.client.storage.from_(self.bucket).download(path)
        except Exception as e:
            logger.warning(f"Download of {path} failed: {e}")
            return None


def create_image_store(settings: Optional[Settings] = None) -> ImageStore:
    settings = settings or get_settings()
    if settings.supabase_configured:
        return SupabaseImageStore(settings.supabase_url, settings.supabase_key, bucket=settings.image_bucket)
    return LocalImageStore(settings.media_root, settings.media_base_url, bucket=settings.image_bucket)
