from __future__ import annotations

from pathlib import Path
from uuid import uuid4

from fastapi import UploadFile

from app.core.errors import ValidationError

# Magic byte signatures for accepted identity images.
_MAGIC_SIGNATURES: dict[str, list[bytes]] = {
    ".pdf": [b"%PDF"],
    ".png": [b"\x89PNG\r\n\x1a\n"],
    ".jpg": [b"\xff\xd8\xff"],
    ".jpeg": [b"\xff\xd8\xff"],
    ".gif": [b"GIF87a", b"GIF89a"],
    ".webp": [b"RIFF"],
}

IMAGE_EXTENSIONS = {".png", ".jpg", ".jpeg", ".webp", ".gif"}

_DANGEROUS_EXTENSIONS = {".html", ".htm", ".svg", ".xhtml", ".js", ".mjs", ".xml"}

_CHUNK_SIZE = 1024 * 1024


def _validate_content_type(header_bytes: bytes, ext: str) -> None:
    """Raise ValueError if the content does not match the extension or the extension is dangerous."""
    if ext in _DANGEROUS_EXTENSIONS:
        raise ValueError(f"File type '{ext}' is not allowed because it may contain executable content")
    signatures = _MAGIC_SIGNATURES.get(ext)
    if signatures is None:
        return
    if not any(header_bytes.startswith(sig) for sig in signatures):
        raise ValueError(f"File content does not match the expected format for '{ext}'")


def _safe_filename(filename: str | None, fallback: str) -> str:
    if not filename:
        return fallback
    return Path(filename).name or fallback


def _normalize_extensions(allowed: set[str]) -> set[str]:
    normalized = {e.lower() if e.startswith(".") else f".{e.lower()}" for e in allowed}
    if ".jpeg" in normalized or ".jpg" in normalized:
        normalized.update({".jpg", ".jpeg"})
    return normalized


async def save_upload(
    file: UploadFile,
    base_dir: Path,
    subdir: Path,
    allowed_extensions: set[str] | None = None,
    max_size_bytes: int = 0,
) -> tuple[str, str]:
    base_dir = base_dir.resolve()
    dest_dir = (base_dir / subdir).resolve()
    if base_dir not in dest_dir.parents and base_dir != dest_dir:
        raise ValueError("Invalid upload path")

    original_name = _safe_filename(file.filename, "upload.bin")
    ext = Path(original_name).suffix.lower()
    if allowed_extensions:
        normalized_allowed = _normalize_extensions(allowed_extensions)
        if ext not in normalized_allowed:
            raise ValueError(
                f"File type not allowed. Allowed extensions: {', '.join(sorted(normalized_allowed))}"
            )

    dest_dir.mkdir(parents=True, exist_ok=True)
    dest_path = dest_dir / f"{uuid4().hex}{ext}"
    bytes_written = 0
    first = True
    try:
        with dest_path.open("wb") as handle:
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
                handle.write(chunk)
        if first:
            raise ValueError("Uploaded file is empty")
    except ValueError:
        dest_path.unlink(missing_ok=True)
        raise
    finally:
        await file.close()

    return dest_path.relative_to(base_dir).as_posix(), original_name


def user_documents_subdir() -> Path:
    """Registration happens before a user id exists, so files are grouped by a random folder."""
    return Path("users") / uuid4().hex


async def save_identity_image(
    file: UploadFile,
    *,
    field: str,
    base_dir: Path,
    subdir: Path,
    max_size_mb: int,
) -> str:
    try:
        relative_path, _ = await save_upload(
            file,
            base_dir=base_dir,
            subdir=subdir,
            allowed_extensions=IMAGE_EXTENSIONS,
            max_size_bytes=max_size_mb * 1024 * 1024,
        )
    except ValueError as exc:
        raise ValidationError.single(field, str(exc)) from exc
    return relative_path


def resolve_local_path(base_dir: Path, relative_path: str) -> Path:
    base_dir = base_dir.resolve()
    candidate = (base_dir / relative_path).resolve()
    if base_dir not in candidate.parents and candidate != base_dir:
        raise ValueError("Invalid document path")
    return candidate
