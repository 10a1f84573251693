from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass
from pathlib import Path
from uuid import UUID, uuid4

from fastapi import UploadFile


# Magic byte signatures for known binary file types.
# Used to cross-check that uploaded file content matches the claimed extension.
_MAGIC_SIGNATURES: dict[str, list[bytes]] = {
    ".pdf": [b"%PDF"],
    ".png": [b"\x89PNG\r\n\x1a\n"],
    ".jpg": [b"\xff\xd8\xff"],
    ".jpeg": [b"\xff\xd8\xff"],
    ".gif": [b"GIF87a", b"GIF89a"],
    ".tif": [b"II*\x00", b"MM\x00*"],
    ".tiff": [b"II*\x00", b"MM\x00*"],
    ".docx": [b"PK\x03\x04", b"PK\x05\x06"],
    ".xlsx": [b"PK\x03\x04", b"PK\x05\x06"],
    ".doc": [b"\xd0\xcf\x11\xe0\xa1\xb1\x1a\xe1"],
    ".xls": [b"\xd0\xcf\x11\xe0\xa1\xb1\x1a\xe1"],
}

# Extensions whose content can execute scripts when rendered in a browser.
_DANGEROUS_EXTENSIONS = {".html", ".htm", ".svg", ".xhtml", ".js", ".mjs", ".xml", ".exe", ".sh", ".bat"}

_CHUNK_SIZE = 1024 * 1024

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class StoredUpload:
    relative_path: str
    original_name: str
    size: int
    checksum: str


def _validate_content_type(header_bytes: bytes, ext: str) -> None:
    """Validate that file content matches claimed extension via magic bytes.

    Raises ValueError if the content does not match or the extension is dangerous.
    """
    if ext in _DANGEROUS_EXTENSIONS:
        raise ValueError(
            f"File type '{ext}' is not allowed because it may contain executable content"
        )
    signatures = _MAGIC_SIGNATURES.get(ext)
    if signatures is None:
        return  # text-based types have no signature
    if not any(header_bytes.startswith(sig) for sig in signatures):
        raise ValueError(f"File content does not match the expected format for '{ext}'")


def _safe_filename(filename: str | None, fallback: str) -> str:
    if not filename:
        return fallback
    return Path(filename).name or fallback


def normalize_extensions(allowed_extensions: set[str] | list[str]) -> set[str]:
    normalized = {
        (e if e.startswith(".") else f".{e}").lower() for e in allowed_extensions if e
    }
    if ".jpeg" in normalized:
        normalized.add(".jpg")
    if ".jpg" in normalized:
        normalized.add(".jpeg")
    return normalized


async def save_upload(
    file: UploadFile,
    base_dir: Path,
    subdir: Path,
    allowed_extensions: set[str] | list[str] | None = None,
    max_size_bytes: int = 0,
) -> StoredUpload:
    base_dir = base_dir.resolve()
    dest_dir = (base_dir / subdir).resolve()
    if base_dir not in dest_dir.parents and base_dir != dest_dir:
        raise ValueError("Invalid upload path")

    original_name = _safe_filename(file.filename, "upload.bin")
    ext = Path(original_name).suffix.lower()

    if ext in _DANGEROUS_EXTENSIONS:
        raise ValueError(
            f"File type '{ext}' is not allowed because it may contain executable content"
        )
    if allowed_extensions:
        normalized_allowed = normalize_extensions(allowed_extensions)
        if ext not in normalized_allowed:
            raise ValueError(
                f"File type not allowed. Allowed extensions: {', '.join(sorted(normalized_allowed))}"
            )

    dest_dir.mkdir(parents=True, exist_ok=True)
    dest_path = dest_dir / f"{uuid4().hex}{ext}"
    bytes_written = 0
    digest = hashlib.sha256()

    try:
        with dest_path.open("wb") as handle:
            first = True
            while True:
                chunk = await file.read(_CHUNK_SIZE)
                if not chunk:
                    break
                if first:
                    _validate_content_type(chunk, ext)
                    first = False
                bytes_written += len(chunk)
                if max_size_bytes and bytes_written > max_size_bytes:
                    raise ValueError(
                        f"File exceeds maximum allowed size of {max_size_bytes // (1024 * 1024)} MB"
                    )
                digest.update(chunk)
                handle.write(chunk)
        if bytes_written == 0:
            raise ValueError("Uploaded file is empty")
    except ValueError:
        # Clean up partial file on validation/size failure
        dest_path.unlink(missing_ok=True)
        raise
    finally:
        await file.close()

    return StoredUpload(
        relative_path=dest_path.relative_to(base_dir).as_posix(),
        original_name=original_name,
        size=bytes_written,
        checksum=digest.hexdigest(),
    )


def resolve_local_path(base_dir: Path, relative_path: str) -> Path:
    base_dir = base_dir.resolve()
    candidate = (base_dir / relative_path).resolve()
    if base_dir not in candidate.parents and candidate != base_dir:
        raise ValueError("Invalid document path")
    return candidate


def loan_documents_subdir(loan_id: UUID) -> Path:
    return Path("loans") / str(loan_id) / "documents"


def discard_upload(base_dir: Path, relative_path: str | None) -> bool:
    """Remove a stored file; failures are logged so callers can carry on."""
    if not relative_path:
        return False
    try:
        resolve_local_path(base_dir, relative_path).unlink(missing_ok=True)
    except (OSError, ValueError):
        logger.warning("Could not remove stored file %s", relative_path, exc_info=True)
        return False
    return True
