from __future__ import annotations

from invoicedesk.core.settings import settings
from invoicedesk.models.audit import AuditLog
from invoicedesk.models.invoice import Attachment

from conftest import make_invoice, make_user

PNG = b"\x89PNG\r\n\x1a\n" + b"\x00\x00\x00\rIHDR" + b"\x00" * 32
PDF = b"%PDF-1.4\n%fake\n"


def upload(api, invoice_id: int, name: str, content: bytes, mime: str, path: str = "attachments"):
    return api.post(
        f"/api/invoices/{invoice_id}/{path}",
        files={"file": (name, content, mime)},
        data={"attachment_type": "receipt"},
    )


def test_upload_download_and_delete(api, db, owner, uploads_dir):
    invoice = make_invoice(db, owner)

    response = upload(api, invoice.id, "receipt.png", PNG, "image/png")
    assert response.status_code == 201, response.text
    body = response.json()
    assert body["filename"] == "receipt.png"
    assert body["mime_type"] == "image/png"
    assert body["size"] == len(PNG)
    assert body["attachment_type"] == "receipt"

    stored = db.get(Attachment, body["id"])
    assert (uploads_dir / stored.storage_path).read_bytes() == PNG

    listing = api.get(f"/api/invoices/{invoice.id}/attachments").json()
    assert [row["id"] for row in listing] == [body["id"]]

    download = api.get(f"/api/invoices/{invoice.id}/attachments/{body['id']}/download")
    assert download.status_code == 200
    assert download.content == PNG
    assert download.headers["content-type"] == "image/png"

    deleted = api.delete(f"/api/invoices/{invoice.id}/attachments/{body['id']}")
    assert deleted.status_code == 200
    assert not (uploads_dir / stored.storage_path).exists()
    assert db.query(Attachment).count() == 0

    actions = [row.action for row in db.query(AuditLog).order_by(AuditLog.id)]
    assert actions == ["attachment.uploaded", "attachment.deleted"]


def test_receipts_path_accepts_uploads(api, db, owner, uploads_dir):
    invoice = make_invoice(db, owner)
    response = upload(api, invoice.id, "scan.pdf", PDF, "application/pdf", path="receipts")
    assert response.status_code == 201
    assert response.json()["mime_type"] == "application/pdf"


def test_spoofed_image_is_rejected_and_not_stored(api, db, owner, uploads_dir):
    invoice = make_invoice(db, owner)

    response = upload(api, invoice.id, "shell.pdf.jpg", PDF, "image/jpeg")
    assert response.status_code == 400
    assert response.json()["error"]["kind"] == "file_rejected"
    assert response.json()["error"]["reason"] == "signature_mismatch"

    assert db.query(Attachment).count() == 0
    assert not (uploads_dir / "invoices").exists()


def test_oversized_upload_is_rejected(api, db, owner, uploads_dir, monkeypatch):
    monkeypatch.setattr(settings, "max_upload_bytes", 16)
    invoice = make_invoice(db, owner)

    response = upload(api, invoice.id, "big.png", PNG, "image/png")
    assert response.status_code == 413
    assert response.json()["error"]["kind"] == "file_too_large"
    assert db.query(Attachment).count() == 0


def test_missing_bytes_surface_as_not_found(api, db, owner, uploads_dir):
    invoice = make_invoice(db, owner)
    attachment_id = upload(api, invoice.id, "receipt.png", PNG, "image/png").json()["id"]
    stored = db.get(Attachment, attachment_id)
    (uploads_dir / stored.storage_path).unlink()

    response = api.get(f"/api/invoices/{invoice.id}/attachments/{attachment_id}/download")
    assert response.status_code == 404
    assert response.json()["error"]["message"] == "Attachment file is missing"


def test_attachments_of_other_users_are_hidden(api, db, owner, uploads_dir):
    invoice = make_invoice(db, owner)
    attachment_id = upload(api, invoice.id, "receipt.png", PNG, "image/png").json()["id"]

    api.state["user"] = make_user(db, "intruder@example.com")
    assert api.get(f"/api/invoices/{invoice.id}/attachments/{attachment_id}/download").status_code == 404
    assert api.delete(f"/api/invoices/{invoice.id}/attachments/{attachment_id}").status_code == 404
    assert upload(api, invoice.id, "x.png", PNG, "image/png").status_code == 404
    assert db.query(Attachment).count() == 1


def test_attachment_from_another_invoice_is_not_found(api, db, owner, uploads_dir):
    first = make_invoice(db, owner)
    second = make_invoice(db, owner)
    attachment_id = upload(api, first.id, "receipt.png", PNG, "image/png").json()["id"]

    response = api.get(f"/api/invoices/{second.id}/attachments/{attachment_id}/download")
    assert response.status_code == 404
    assert response.json()["error"]["message"] == "Attachment not found"
