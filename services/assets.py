"""Item image/icon storage and public URL resolution.

Assets live in a directory tree (one sub-directory per asset kind) that a
static file server or CDN exposes under ``ASSET_PUBLIC_BASE_URL``.
"""

from __future__ import annotations

import asyncio
import base64
import binascii
import logging
import re
from functools import lru_cache
from pathlib import Path
from typing import Callable, Dict, Tuple, TypeVar

from config import settings
from services.errors import AssetNotFoundError, CatalogValidationError, DependencyFailureError

logger = logging.getLogger(__name__)

T = TypeVar("T")

ASSET_IMAGE = "image"
ASSET_ICON = "icon"
ASSET_NEWS_IMAGE = "news_image"

# kind -> (directory, file extension, media type)
ASSET_KINDS: Dict[str, Tuple[str, str, str]] = {
    ASSET_IMAGE: ("images", ".webp", "image/webp"),
    ASSET_ICON: ("favicons", ".png", "image/png"),
    ASSET_NEWS_IMAGE: ("news_images", ".png", "image/png"),
}

_SAFE_ID = re.compile(r"^[A-Za-z0-9_-]{1,128}$")


def decode_data_url(value: str, *, max_bytes: int | None = None) -> bytes:
    """Decode a ``data:image/png;base64,...`` string (or bare base64)."""
    text = str(value or "").strip()
    if not text:
        raise CatalogValidationError("image payload is empty")
    encoded = text.split(";base64,")[-1]
    try:
        data = base64.b64decode(encoded, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise CatalogValidationError("image payload is not valid base64") from exc
    if not data:
        raise CatalogValidationError("image payload is empty")
    limit = int(max_bytes if max_bytes is not None else settings.MAX_SUBMISSION_IMAGE_BYTES)
    if len(data) > limit:
        raise CatalogValidationError(f"image payload too large. Max {limit} bytes.")
    return data


class AssetStore:
    """Filesystem-backed asset store with bounded-time operations."""

    def __init__(self, root: str | Path, public_base_url: str, timeout_seconds: float = 5.0):
        self.root = Path(root)
        self.public_base_url = public_base_url.rstrip("/")
        self.timeout_seconds = float(timeout_seconds)

    def _relative_name(self, item_id: str, kind: str) -> str:
        if kind not in ASSET_KINDS:
            raise CatalogValidationError(f"Unknown asset kind: {kind}")
        directory, extension, _ = ASSET_KINDS[kind]
        return f"{directory}/{item_id}{extension}"

    def path_for(self, item_id: str, kind: str) -> Path:
        if not _SAFE_ID.match(str(item_id or "")):
            raise AssetNotFoundError(str(item_id), kind)
        return self.root / self._relative_name(item_id, kind)

    def media_type(self, kind: str) -> str:
        return ASSET_KINDS[kind][2]

    async def _run(self, operation: str, func: Callable[[], T]) -> T:
        try:
            return await asyncio.wait_for(asyncio.to_thread(func), timeout=self.timeout_seconds)
        except asyncio.TimeoutError as exc:
            logger.error("asset_store_timeout op=%s timeout=%ss", operation, self.timeout_seconds)
            raise DependencyFailureError(f"asset store {operation} timed out") from exc
        except OSError as exc:
            logger.error("asset_store_error op=%s error=%s", operation, exc)
            raise DependencyFailureError(f"asset store {operation} failed: {exc}") from exc

    async def resolve(self, item_id: str, kind: str) -> str:
        """Return the public URL of a stored asset or raise ``AssetNotFoundError``."""
        path = self.path_for(item_id, kind)
        exists = await self._run("resolve", path.is_file)
        if not exists:
            raise AssetNotFoundError(item_id, kind)
        return f"{self.public_base_url}/{self._relative_name(item_id, kind)}"

    async def save(self, item_id: str, kind: str, data: bytes) -> str:
        path = self.path_for(item_id, kind)

        def _write() -> None:
            path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path = path.with_suffix(path.suffix + ".part")
            tmp_path.write_bytes(data)
            tmp_path.replace(path)

        await self._run("save", _write)
        logger.info("asset_saved item=%s kind=%s bytes=%s", item_id, kind, len(data))
        return f"{self.public_base_url}/{self._relative_name(item_id, kind)}"

    async def delete(self, item_id: str, kind: str) -> None:
        path = self.path_for(item_id, kind)
        await self._run("delete", lambda: path.unlink(missing_ok=True))


@lru_cache(maxsize=1)
def _default_asset_store() -> AssetStore:
    return AssetStore(
        root=settings.ASSET_DIR,
        public_base_url=settings.ASSET_PUBLIC_BASE_URL,
        timeout_seconds=settings.ASSET_TIMEOUT_SECONDS,
    )


def get_asset_store() -> AssetStore:
    """FastAPI dependency returning the configured asset store."""
    return _default_asset_store()
