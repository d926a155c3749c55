from __future__ import annotations

from invoicedesk.services.file_validation import (
    AcceptedFile,
    RejectedFile,
    RejectReason,
    sanitize_filename,
    validate_upload,
)

PNG = b"\x89PNG\r\n\x1a\n" + b"\x00\x00\x00\rIHDR" + b"\x00" * 16
PDF = b"%PDF-1.7\n%\xe2\xe3\xcf\xd3\n1 0 obj\n"
JPEG = b"\xff\xd8\xff\xe0\x00\x10JFIF\x00" + b"\x00" * 8
WEBP = b"RIFF\x24\x00\x00\x00WEBPVP8 " + b"\x00" * 8
MAX = 10 * 1024 * 1024


def test_pdf_bytes_behind_double_extension_are_rejected():
    outcome = validate_upload(PDF, "image/jpeg", "shell.pdf.jpg", max_size=MAX)
    assert isinstance(outcome, RejectedFile)
    assert outcome.reason == RejectReason.SIGNATURE


def test_valid_png_is_accepted():
    outcome = validate_upload(PNG, "image/png", "receipt.png", max_size=MAX)
    assert outcome == AcceptedFile(filename="receipt.png", mime_type="image/png", extension="png", size=len(PNG))


def test_accepts_other_allowed_types():
    assert isinstance(validate_upload(PDF, "application/pdf", "Invoice.PDF", max_size=MAX), AcceptedFile)
    assert isinstance(validate_upload(JPEG, "image/jpeg", "photo.jpeg", max_size=MAX), AcceptedFile)
    assert isinstance(validate_upload(WEBP, "image/webp", "scan.webp", max_size=MAX), AcceptedFile)
    assert isinstance(validate_upload(b"GIF89a" + b"\x00" * 10, "image/gif", "a.gif", max_size=MAX), AcceptedFile)


def test_declared_type_must_match_extension():
    outcome = validate_upload(PDF, "image/png", "contract.pdf", max_size=MAX)
    assert isinstance(outcome, RejectedFile)
    assert outcome.reason == RejectReason.MIME_MISMATCH


def test_disallowed_extension_is_rejected():
    outcome = validate_upload(b"#!/bin/sh\n", "text/x-sh", "run.sh", max_size=MAX)
    assert isinstance(outcome, RejectedFile)
    assert outcome.reason == RejectReason.EXTENSION


def test_empty_and_oversized_files_are_rejected():
    assert validate_upload(b"", "image/png", "a.png", max_size=MAX).reason == RejectReason.EMPTY
    assert validate_upload(PNG, "image/png", "a.png", max_size=len(PNG) - 1).reason == RejectReason.TOO_LARGE
    assert isinstance(validate_upload(PNG, "image/png", "a.png", max_size=len(PNG)), AcceptedFile)


def test_riff_container_that_is_not_webp_is_rejected():
    wav = b"RIFF\x24\x00\x00\x00WAVEfmt " + b"\x00" * 8
    outcome = validate_upload(wav, "image/webp", "audio.webp", max_size=MAX)
    assert outcome.reason == RejectReason.SIGNATURE


def test_filename_sanitizing():
    assert sanitize_filename("../../etc/passwd.png") == "etcpasswd.png"
    assert sanitize_filename("a\x00b.png") == "ab.png"
    assert sanitize_filename("C:\\temp\\x.pdf") == "C:tempx.pdf"
    assert len(sanitize_filename("a" * 300 + ".png")) == 255
    assert validate_upload(PNG, "image/png", "../", max_size=MAX).reason == RejectReason.BAD_FILENAME


def test_declared_type_parameters_are_ignored():
    outcome = validate_upload(PNG, "Image/PNG; charset=binary", "r.png", max_size=MAX)
    assert isinstance(outcome, AcceptedFile)
    assert outcome.mime_type == "image/png"
