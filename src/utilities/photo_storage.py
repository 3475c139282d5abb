import logging
import mimetypes
from pathlib import Path
from uuid import uuid4

import aiofiles
from fastapi import UploadFile

from settings import settings
from utilities.exceptions import FieldValidationError


logger = logging.getLogger(__name__)

URL_PREFIX = "/uploads/"
ALLOWED_EXT = {".jpg", ".jpeg", ".png", ".gif"}
CHUNK_SIZE = 1024 * 1024  # 1MB

# Leading bytes of the accepted image formats
_SIGNATURES = (
    b"\xff\xd8\xff",  # JPEG
    b"\x89PNG\r\n\x1a\n",  # PNG
    b"GIF87a",
    b"GIF89a",
)


def upload_dir() -> Path:
    path = Path(settings.upload_dir)
    path.mkdir(parents=True, exist_ok=True)
    return path


def _guess_extension(filename: str | None, content_type: str | None) -> str:
    """Try to determine the file extension from filename or content-type."""
    ext = Path(filename or "").suffix.lower()
    if ext:
        return ext
    guessed = mimetypes.guess_extension(content_type or "")
    return (guessed or "").lower()


def _looks_like_image(path: Path) -> bool:
    with path.open("rb") as fh:
        head = fh.read(8)
    return any(head.startswith(sig) for sig in _SIGNATURES)


async def save_photo(file: UploadFile) -> str:
    """
    Store an uploaded ticket photo and return its public URL path
    (``/uploads/ticket-<hex>.<ext>``).

    Raises FieldValidationError for non-images, disallowed extensions and
    files larger than `settings.max_upload_size`.
    """
    if not file.content_type or not file.content_type.startswith("image/"):
        raise FieldValidationError.single("photo", "Only image files are allowed")

    ext = _guess_extension(file.filename, file.content_type)
    if ext not in ALLOWED_EXT:
        raise FieldValidationError.single(
            "photo", f"File extension not allowed. Allowed: {', '.join(sorted(ALLOWED_EXT))}"
        )

    unique_name = f"ticket-{uuid4().hex}{ext}"
    dest_path = upload_dir() / unique_name

    size = 0
    try:
        async with aiofiles.open(dest_path, "wb") as out_file:
            while True:
                chunk = await file.read(CHUNK_SIZE)
                if not chunk:
                    break
                size += len(chunk)
                if size > settings.max_upload_size:
                    break
                await out_file.write(chunk)
    finally:
        await file.close()

    if size > settings.max_upload_size:
        dest_path.unlink(missing_ok=True)
        raise FieldValidationError.single("photo", "File too large")

    if not _looks_like_image(dest_path):
        dest_path.unlink(missing_ok=True)
        raise FieldValidationError.single("photo", "Uploaded file is not a valid image")

    return f"{URL_PREFIX}{unique_name}"


def photo_path(photo_url: str) -> Path | None:
    """Resolve a stored photo URL to its file, or None if it is not one of ours."""
    if not photo_url or not photo_url.startswith(URL_PREFIX):
        return None
    name = Path(photo_url[len(URL_PREFIX):]).name
    if not name:
        return None
    return upload_dir() / name


def remove_photo(photo_url: str | None) -> None:
    """Delete a stored photo. Best effort: a missing file or OS error is only logged."""
    if not photo_url:
        return
    path = photo_path(photo_url)
    if path is None:
        logger.warning("Not removing photo outside the upload directory: %s", photo_url)
        return
    try:
        path.unlink(missing_ok=True)
    except OSError:
        logger.warning("Could not remove photo %s", path, exc_info=True)
