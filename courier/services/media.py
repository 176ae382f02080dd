import logging
import uuid
from pathlib import Path
from typing import Optional, Protocol

from fastapi.concurrency import run_in_threadpool

from courier.core.errors import MediaUploadError
from courier.core.settings import settings
from courier.schemas.message import UploadedMedia


logger = logging.getLogger(__name__)

IMAGE_TRANSFORMATION = "tr=q-auto,f-webp,w-1280"


class MediaStore(Protocol):

    async def upload(self, data: bytes, filename: str, content_type: Optional[str]) -> UploadedMedia:
        ...


def media_kind(content_type: Optional[str]) -> str:
    major = (content_type or "").split("/", 1)[0]
    if major not in ("image", "video"):
        raise MediaUploadError(f"Unsupported media type: {content_type or 'unknown'}")
    return major


class LocalMediaStore:
    """Writes uploads under a directory served as static files at ``base_url``."""

    def __init__(self, root: str, base_url: str, max_bytes: int) -> None:
        self._root = Path(root)
        self._base_url = base_url.rstrip("/")
        self._max_bytes = max_bytes

    async def upload(self, data: bytes, filename: str, content_type: Optional[str]) -> UploadedMedia:
        kind = media_kind(content_type)
        if not data:
            raise MediaUploadError("Uploaded file is empty")
        if len(data) > self._max_bytes:
            raise MediaUploadError(f"File exceeds the {self._max_bytes} byte limit")
        suffix = Path(filename or "").suffix.lower()
        name = f"{uuid.uuid4().hex}{suffix}"
        try:
            await run_in_threadpool(self._write, name, data)
        except OSError as err:
            logger.exception("Failed to store upload %s", filename)
            raise MediaUploadError(str(err)) from err
        url = f"{self._base_url}/{name}"
        variant = f"{url}?{IMAGE_TRANSFORMATION}" if kind == "image" else None
        return UploadedMedia(kind=kind, url=url, variant_url=variant)

    def _write(self, name: str, data: bytes) -> None:
        self._root.mkdir(parents=True, exist_ok=True)
        (self._root / name).write_bytes(data)


_store: Optional[MediaStore] = None


def get_media_store() -> MediaStore:
    global _store
    if _store is None:
        _store = LocalMediaStore(settings.media_root, settings.media_base_url, settings.max_upload_bytes)
    return _store
