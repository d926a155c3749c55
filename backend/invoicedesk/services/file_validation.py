"""Upload validation: size, filename, extension, declared MIME and magic bytes.

The three-way cross-check (extension vs declared MIME vs leading bytes) is
what stops a PDF or script being smuggled in under an image name. All checks
run for every upload; the first failure is returned with a reason that is
safe to show the user.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Dict, Optional, Tuple, Union

MAX_FILENAME_LENGTH = 255

ALLOWED_EXTENSIONS = ("jpg", "jpeg", "png", "gif", "webp", "pdf")

EXTENSION_MIME_TYPES: Dict[str, str] = {
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "png": "image/png",
    "gif": "image/gif",
    "webp": "image/webp",
    "pdf": "application/pdf",
}

FILE_SIGNATURES: Dict[str, Tuple[bytes, ...]] = {
    "image/jpeg": (b"\xff\xd8\xff",),
    "image/png": (b"\x89PNG\r\n\x1a\n",),
    "image/gif": (b"GIF87a", b"GIF89a"),
    "image/webp": (b"RIFF",),
    "application/pdf": (b"%PDF",),
}

_PATH_SEPARATORS = re.compile(r"[/\\]")


class RejectReason:
    EMPTY = "empty"
    TOO_LARGE = "too_large"
    BAD_FILENAME = "bad_filename"
    EXTENSION = "extension_not_allowed"
    MIME_MISMATCH = "mime_mismatch"
    SIGNATURE = "signature_mismatch"


@dataclass(frozen=True)
class AcceptedFile:
    filename: str
    mime_type: str
    extension: str
    size: int


@dataclass(frozen=True)
class RejectedFile:
    reason: str
    message: str


ValidationOutcome = Union[AcceptedFile, RejectedFile]


def sanitize_filename(filename: Optional[str]) -> str:
    """Strip path separators, NUL bytes and ``..`` runs, then cap the length."""
    cleaned = _PATH_SEPARATORS.sub("", filename or "")
    cleaned = cleaned.replace("\x00", "")
    while ".." in cleaned:
        cleaned = cleaned.replace("..", "")
    return cleaned.strip()[:MAX_FILENAME_LENGTH]


def file_extension(filename: str) -> str:
    if "." not in filename:
        return ""
    return filename.rsplit(".", 1)[-1].lower()


def matches_signature(content: bytes, mime_type: str) -> bool:
    signatures = FILE_SIGNATURES.get(mime_type)
    if not signatures:
        return False
    if mime_type == "image/webp":
        # RIFF container whose form type is WEBP.
        return content.startswith(b"RIFF") and content[8:12] == b"WEBP"
    return any(content.startswith(signature) for signature in signatures)


def validate_upload(
    content: bytes,
    declared_mime_type: Optional[str],
    filename: Optional[str],
    *,
    max_size: int,
) -> ValidationOutcome:
    size = len(content)
    if size == 0:
        return RejectedFile(RejectReason.EMPTY, "File is empty")
    if size > max_size:
        limit_mb = max_size / (1024 * 1024)
        return RejectedFile(RejectReason.TOO_LARGE, f"File size must be at most {limit_mb:g} MB")

    safe_name = sanitize_filename(filename)
    if not safe_name:
        return RejectedFile(RejectReason.BAD_FILENAME, "Filename is missing or invalid")

    extension = file_extension(safe_name)
    if extension not in ALLOWED_EXTENSIONS:
        return RejectedFile(
            RejectReason.EXTENSION,
            "Invalid file type. Allowed: JPEG, PNG, GIF, WebP, PDF",
        )

    mime_type = (declared_mime_type or "").split(";", 1)[0].strip().lower()
    expected_mime = EXTENSION_MIME_TYPES[extension]
    if mime_type != expected_mime:
        return RejectedFile(
            RejectReason.MIME_MISMATCH,
            f"Declared content type does not match the .{extension} extension",
        )

    if not matches_signature(content, mime_type):
        return RejectedFile(RejectReason.SIGNATURE, "File content does not match its declared type")

    return AcceptedFile(filename=safe_name, mime_type=mime_type, extension=extension, size=size)
