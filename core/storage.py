"""
Local persistence: a JSON key-value store and a content-addressed blob store.

Layout under the state directory:
    state/<key>.json       serialized application state
    blobs/<sha256>.<ext>   binary media (images, videos, narration audio)

Blobs are never loaded eagerly; callers keep blob ids and resolve them to a
file:// URL (or bytes) when the media is actually needed.
"""

import asyncio
import hashlib
import json
import logging
import mimetypes
import re
import shutil
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)

_KEY_RE = re.compile(r"^[A-Za-z0-9_.-]+$")
_BLOB_ID_RE = re.compile(r"^[0-9a-f]{64}$")

EXTENSIONS = {
    "image/png": ".png",
    "image/jpeg": ".jpg",
    "image/webp": ".webp",
    "image/gif": ".gif",
    "video/mp4": ".mp4",
    "audio/wav": ".wav",
    "audio/mpeg": ".mp3",
}


class StorageError(Exception):
    """Raised for invalid keys or unreadable state files"""


class StateStore:
    """
    Key-value store of JSON documents.

    Writes go through a temp file and rename. One asyncio lock per key.
    """

    def __init__(self, base_path: Path):
        self.base_path = Path(base_path) / "state"
        self.base_path.mkdir(parents=True, exist_ok=True)
        self._locks: Dict[str, asyncio.Lock] = {}

    def _get_lock(self, key: str) -> asyncio.Lock:
        if key not in self._locks:
            self._locks[key] = asyncio.Lock()
        return self._locks[key]

    def _path(self, key: str) -> Path:
        if not _KEY_RE.match(key):
            raise StorageError(f"Invalid state key: {key!r}")
        return self.base_path / f"{key}.json"

    async def save(self, key: str, value: Any) -> None:
        path = self._path(key)
        document = {
            "key": key,
            "updated_at": datetime.now(timezone.utc).isoformat(),
            "value": value,
        }
        async with self._get_lock(key):
            tmp = path.with_suffix(".json.tmp")
            with open(tmp, "w", encoding="utf-8") as f:
                json.dump(document, f, indent=2, ensure_ascii=False, default=str)
            tmp.replace(path)
        logger.debug(f"Saved state {key}")

    async def load(self, key: str) -> Optional[Any]:
        path = self._path(key)
        if not path.exists():
            return None
        async with self._get_lock(key):
            try:
                with open(path, "r", encoding="utf-8") as f:
                    document = json.load(f)
            except json.JSONDecodeError as e:
                raise StorageError(f"Corrupt state file {path}: {e}") from e
        return document.get("value")

    async def clear(self, key: Optional[str] = None) -> None:
        """Remove one key, or every key when none is given"""
        if key is not None:
            self._path(key).unlink(missing_ok=True)
            return
        for path in self.base_path.glob("*.json"):
            path.unlink()


class BlobStore:
    """Content-addressed binary store (sha256 ids)"""

    def __init__(self, base_path: Path):
        self.base_path = Path(base_path) / "blobs"
        self.base_path.mkdir(parents=True, exist_ok=True)

    def _find(self, blob_id: str) -> Optional[Path]:
        if not _BLOB_ID_RE.match(blob_id or ""):
            return None
        matches = list(self.base_path.glob(f"{blob_id}.*"))
        return matches[0] if matches else None

    async def save_bytes(self, data: bytes, mime_type: str = "application/octet-stream") -> str:
        blob_id = hashlib.sha256(data).hexdigest()
        if self._find(blob_id) is None:
            ext = EXTENSIONS.get(mime_type) or mimetypes.guess_extension(mime_type) or ".bin"
            (self.base_path / f"{blob_id}{ext}").write_bytes(data)
            logger.debug(f"Stored blob {blob_id[:12]} ({len(data)} bytes, {mime_type})")
        return blob_id

    async def exists(self, blob_id: str) -> bool:
        return self._find(blob_id) is not None

    async def load_bytes(self, blob_id: str) -> Optional[bytes]:
        path = self._find(blob_id)
        return path.read_bytes() if path else None

    async def load_url(self, blob_id: str) -> Optional[str]:
        """Dereferenceable file:// URL for a blob"""
        path = self._find(blob_id)
        return path.resolve().as_uri() if path else None

    def mime_type(self, blob_id: str) -> Optional[str]:
        path = self._find(blob_id)
        if path is None:
            return None
        return mimetypes.guess_type(path.name)[0] or "application/octet-stream"

    async def clear(self) -> None:
        shutil.rmtree(self.base_path, ignore_errors=True)
        self.base_path.mkdir(parents=True, exist_ok=True)
