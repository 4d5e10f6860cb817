import logging
import time
import uuid
from pathlib import Path, PurePosixPath

from confreg import config
from confreg.errors import BadRequest, NotFound, PayloadTooLarge

logger = logging.getLogger(__name__)

PHOTO_SUBDIR = "presenters"
ALLOWED_MIME = {"image/jpeg": "jpg", "image/png": "png", "image/webp": "webp"}


def upload_root() -> Path:
    return Path(config.UPLOAD_DIR).resolve()


def format_bytes(size: int) -> str:
    if size < 1024:
        return f"{size} B"
    if size < 1024 * 1024:
        return f"{size / 1024:.1f} KB"
    return f"{size / (1024 * 1024):.1f} MB"


def has_expected_signature(data: bytes, mime: str) -> bool:
    if mime == "image/jpeg":
        return len(data) > 3 and data[:3] == b"\xff\xd8\xff"
    if mime == "image/png":
        return len(data) > 8 and data[:8] == b"\x89PNG\r\n\x1a\n"
    if mime == "image/webp":
        return len(data) > 12 and data[:4] == b"RIFF" and data[8:12] == b"WEBP"
    return False


def store_photo(content_type: str | None, data: bytes | None) -> dict:
    """Validate and save a presenter photo; returns its path relative to the upload root."""
    max_bytes = config.PRESENTER_MAX_BYTES
    mime = (content_type or "").split(";")[0].strip().lower()

    if data is None:
        raise BadRequest("No photo provided")
    if mime not in ALLOWED_MIME:
        raise BadRequest("Unsupported photo format", allowed=sorted(ALLOWED_MIME))
    if len(data) == 0:
        raise BadRequest("Photo is empty")
    if len(data) > max_bytes:
        raise PayloadTooLarge("Photo is too large", maxBytes=max_bytes, maxReadable=format_bytes(max_bytes))
    if not has_expected_signature(data, mime):
        logger.warning("Presenter photo failed signature check", extra={"context": {"mime": mime}})
        raise BadRequest("Photo appears to be invalid or unsafe")

    relative = f"{PHOTO_SUBDIR}/{int(time.time() * 1000)}-{uuid.uuid4()}.{ALLOWED_MIME[mime]}"
    absolute = upload_root() / relative
    absolute.parent.mkdir(parents=True, exist_ok=True)
    absolute.write_bytes(data)

    logger.info("Presenter photo stored", extra={"context": {"path": relative, "size": len(data)}})
    return {"presenterPicUrl": relative, "bytes": len(data)}


def resolve_photo(registration_id: int, stored: str | None) -> Path:
    """Map a stored photo pointer to a file inside the upload root."""
    stored = (stored or "").strip()
    if not stored:
        raise NotFound("No presenter photo", id=registration_id)

    pure = PurePosixPath(stored)
    if stored.startswith(("/", "\\")) or pure.is_absolute() or ".." in pure.parts or ".." in stored:
        logger.warning("Unsafe presenterPicUrl detected", extra={"context": {"id": registration_id, "stored": stored}})
        raise BadRequest("Invalid photo path")

    root = upload_root()
    path = (root / stored).resolve()
    if root not in path.parents:
        raise BadRequest("Invalid photo path")
    if not path.is_file():
        raise NotFound("No presenter photo", id=registration_id)
    return path
