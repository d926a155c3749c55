"""Attachment bytes on local disk under ``settings.uploads_dir``.

Rows store a path relative to the uploads root
(``invoices/<invoice_id>/<uuid>.<ext>``). Disk writes and database rows are
not in one transaction: a crash between them can orphan a file, and a row
whose bytes are missing surfaces as ``NotFoundError`` on read.
"""

from __future__ import annotations

import logging
import uuid
from pathlib import Path

from invoicedesk.core.errors import NotFoundError, StorageError
from invoicedesk.core.settings import settings

logger = logging.getLogger(__name__)


def uploads_root() -> Path:
    return settings.ensure_uploads_dir()


def _resolve(storage_path: str) -> Path:
    root = uploads_root()
    candidate = (root / storage_path).resolve()
    if root != candidate and root not in candidate.parents:
        raise NotFoundError("Attachment not found")
    return candidate


def save_attachment_bytes(*, invoice_id: int, extension: str, content: bytes) -> str:
    relative = Path("invoices") / str(invoice_id) / f"{uuid.uuid4().hex}.{extension}"
    target = uploads_root() / relative
    try:
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(content)
    except OSError as exc:
        logger.error("attachment_write_failed invoice_id=%s error=%s", invoice_id, exc.__class__.__name__)
        raise StorageError("Could not store the file, please retry") from exc
    return relative.as_posix()


def attachment_file(storage_path: str) -> Path:
    path = _resolve(storage_path)
    if not path.is_file():
        logger.warning("attachment_bytes_missing storage_path=%s", storage_path)
        raise NotFoundError("Attachment file is missing")
    return path


def remove_attachment_bytes(storage_path: str) -> bool:
    """Best-effort delete. Returns False (and logs) when removal fails."""
    try:
        path = _resolve(storage_path)
        path.unlink(missing_ok=True)
        return True
    except (OSError, NotFoundError):
        logger.warning("attachment_remove_failed storage_path=%s", storage_path, exc_info=True)
        return False
