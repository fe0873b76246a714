"""Local image storage for product photos.

`PhotoService` validates uploads with Pillow, crops them to a square of
`settings.PHOTO_SIZE` pixels, writes them below the storage root and
returns a result object carrying either the public URL and id of the
stored file or an error. Callers report `result.error` to clients
instead of catching exceptions.
"""

from __future__ import annotations

import io
import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Optional
from uuid import uuid4

from PIL import Image, ImageOps, UnidentifiedImageError

_LOGGER = logging.getLogger("storefront.photos")
_PUBLIC_ID_RE = re.compile(r"^products/[0-9a-f]{32}$")


@dataclass
class PhotoError:
    message: str


@dataclass
class PhotoUploadResult:
    public_id: Optional[str] = None
    secure_url: Optional[str] = None
    error: Optional[PhotoError] = None


@dataclass
class PhotoDeletionResult:
    result: str = "ok"
    error: Optional[PhotoError] = None


class PhotoService:
    def __init__(self, storage_root: Path, base_url: str = "/photos", size: int = 500):
        self.storage_root = Path(storage_root)
        self.base_url = base_url.rstrip("/")
        self.size = size

    def _path_for(self, public_id: str) -> Path:
        return self.storage_root / f"{public_id}.jpg"

    def url_for(self, public_id: str) -> str:
        return f"{self.base_url}/{public_id}.jpg"

    def add_photo(self, payload: bytes, filename: str) -> PhotoUploadResult:
        """Store an uploaded image and return its public id and URL."""
        if not payload:
            return PhotoUploadResult(error=PhotoError("empty file"))
        try:
            Image.open(io.BytesIO(payload)).verify()
            # verify() leaves the image unusable, so reopen before transforming
            img = Image.open(io.BytesIO(payload))
            img = ImageOps.exif_transpose(img)
            img = ImageOps.fit(img.convert("RGB"), (self.size, self.size), method=Image.Resampling.LANCZOS)
        except (UnidentifiedImageError, OSError, SyntaxError, ValueError) as exc:
            _LOGGER.info("photo_rejected filename=%s reason=%s", filename, exc)
            return PhotoUploadResult(error=PhotoError("unsupported file content; expected an image"))

        public_id = f"products/{uuid4().hex}"
        target = self._path_for(public_id)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            img.save(target, format="JPEG", quality=90)
        except OSError as exc:
            _LOGGER.exception("photo_store_failed filename=%s", filename)
            return PhotoUploadResult(error=PhotoError(f"could not store photo: {exc}"))
        _LOGGER.info("photo_stored public_id=%s filename=%s", public_id, filename)
        return PhotoUploadResult(public_id=public_id, secure_url=self.url_for(public_id))

    def delete_photo(self, public_id: str) -> PhotoDeletionResult:
        """Remove a stored image. A file that is already gone counts as deleted."""
        if not _PUBLIC_ID_RE.match(public_id or ""):
            return PhotoDeletionResult(result="invalid", error=PhotoError(f"invalid photo id: {public_id}"))
        target = self._path_for(public_id)
        try:
            target.unlink()
        except FileNotFoundError:
            return PhotoDeletionResult(result="not found")
        except OSError as exc:
            _LOGGER.exception("photo_delete_failed public_id=%s", public_id)
            return PhotoDeletionResult(result="error", error=PhotoError(f"could not delete photo: {exc}"))
        _LOGGER.info("photo_deleted public_id=%s", public_id)
        return PhotoDeletionResult()
