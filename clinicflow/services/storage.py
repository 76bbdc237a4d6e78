"""
File storage collaborator.

Core services only see ``store(content, suggested_name, folder)`` returning a
``StoredFile``; the default backend writes to the local upload directory that
``main.py`` serves under ``/uploads``.
"""
import logging
import os
import uuid
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Optional

import magic
from PIL import Image

from clinicflow.config import settings
from clinicflow.errors import StorageError, ValidationError

logger = logging.getLogger(__name__)

ALLOWED_EXTENSIONS = {".jpg", ".jpeg", ".png", ".gif", ".webp", ".pdf"}
IMAGE_EXTENSIONS = {".jpg", ".jpeg", ".png", ".gif"}
ALLOWED_MIME_TYPES = {"image/jpeg", "image/png", "image/gif", "image/webp", "application/pdf"}

FILE_SIGNATURES = {
    ".jpg": [b"\xFF\xD8\xFF"],
    ".jpeg": [b"\xFF\xD8\xFF"],
    ".png": [b"\x89\x50\x4E\x47\x0D\x0A\x1A\x0A"],
    ".pdf": [b"%PDF"],
    ".gif": [b"GIF87a", b"GIF89a"],
    ".webp": [b"RIFF"],
}


@dataclass
class UploadPayload:
    content: bytes
    filename: str
    content_type: Optional[str] = None


@dataclass
class StoredFile:
    url: str
    storage_id: str
    size: int
    thumbnail_url: Optional[str] = None


def is_valid_signature(content: bytes, extension: str) -> bool:
    """
    Validate file signature vs extension
    Prevents fake extensions
    """
    if extension in FILE_SIGNATURES:
        return any(content.startswith(sig) for sig in FILE_SIGNATURES[extension])
    return True


def validate_upload(payload: UploadPayload, max_bytes: int) -> str:
    """Check size, extension, sniffed MIME type, signature and name; returns the safe filename"""
    if not payload.content:
        raise ValidationError("No file uploaded")

    filename = Path(payload.filename or "").name
    if not filename or ".." in filename:
        raise ValidationError("Invalid filename")

    if len(payload.content) > max_bytes:
        raise ValidationError(
            f"File size {len(payload.content)/1024/1024:.1f}MB exceeds maximum {max_bytes/1024/1024:.1f}MB"
        )

    extension = Path(filename).suffix.lower()
    if extension not in ALLOWED_EXTENSIONS:
        raise ValidationError("Only images and PDFs are allowed")
    detected_mime = magic.Magic(mime=True).from_buffer(payload.content[:2048])
    if detected_mime not in ALLOWED_MIME_TYPES:
        raise ValidationError(f"MIME type {detected_mime} not allowed")
    if not is_valid_signature(payload.content, extension):
        raise ValidationError(f"File signature doesn't match extension {extension}")

    return filename


def create_thumbnail(image_path: Path, folder: Path, url_folder: str) -> Optional[str]:
    """Create a 300px thumbnail next to an uploaded image"""
    try:
        with Image.open(image_path) as img:
            if img.mode in ("RGBA", "P"):
                img = img.convert("RGB")
            img.thumbnail((300, 300))
            thumb_name = f"thumb_{image_path.stem}.jpg"
            img.save(folder / thumb_name, "JPEG", quality=85)
            return f"{url_folder}/{thumb_name}"
    except Exception as e:
        # no thumbnail; the upload itself stands
        logger.warning(f"Thumbnail creation failed: {str(e)}")
        return None


class LocalFileStorage:
    """Stores files under ``base_dir/<folder>/<year>/<month>/``"""

    def __init__(self, base_dir: str, url_prefix: str):
        self.base_dir = Path(base_dir)
        self.url_prefix = url_prefix.rstrip("/")

    def store(self, content: bytes, suggested_name: str, folder: str) -> StoredFile:
        now = datetime.now()
        relative = Path(folder.strip("/")) / str(now.year) / f"{now.month:02d}"
        target_dir = self.base_dir / relative

        original = Path(suggested_name)
        storage_id = uuid.uuid4().hex
        stored_name = f"{original.stem}_{storage_id[:8]}{original.suffix.lower()}"
        url_folder = f"{self.url_prefix}/{relative.as_posix()}"

        try:
            target_dir.mkdir(parents=True, exist_ok=True)
            filepath = target_dir / stored_name
            with open(filepath, "wb") as f:
                f.write(content)
            if os.name != "nt":
                os.chmod(filepath, 0o644)
        except OSError as e:
            logger.error(f"File save error: {str(e)}")
            raise StorageError(f"File save failed: {str(e)}") from e

        thumbnail_url = None
        if original.suffix.lower() in IMAGE_EXTENSIONS:
            thumbnail_url = create_thumbnail(filepath, target_dir, url_folder)

        logger.info(f"Stored {suggested_name} as {relative.as_posix()}/{stored_name}")
        return StoredFile(
            url=f"{url_folder}/{stored_name}",
            storage_id=storage_id,
            size=len(content),
            thumbnail_url=thumbnail_url,
        )


_storage = LocalFileStorage(settings.UPLOAD_DIR, settings.UPLOAD_URL_PREFIX)


def get_file_storage() -> LocalFileStorage:
    """FastAPI dependency; tests override it"""
    return _storage
