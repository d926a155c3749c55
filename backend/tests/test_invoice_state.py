from __future__ import annotations

from datetime import date, datetime, timezone
from decimal import Decimal

import pytest

from invoicedesk.models.enums import DisplayStatus, InvoiceStatus
from invoicedesk.models.invoice import StatusHistory, normalize_status
from invoicedesk.services.invoice_state import (
    can_transition,
    cancel_error,
    derive_display_status,
    send_error,
    status_after_refund,
    transition,
)

from conftest import make_invoice

NOW = datetime(2026, 3, 10, 15, 0, tzinfo=timezone.utc)


def display(status, due, paid, total="100.00"):
    return derive_display_status(status, due, Decimal(paid), Decimal(total), NOW)


@pytest.mark.parametrize(
    "status, due, paid, expected",
    [
        (InvoiceStatus.DRAFT, date(2026, 1, 1), "0", DisplayStatus.DRAFT),
        (InvoiceStatus.DRAFT, date(2099, 1, 1), "60", DisplayStatus.PARTIAL),
        (InvoiceStatus.DRAFT, date(2026, 1, 1), "60", DisplayStatus.PARTIAL),
        (InvoiceStatus.CANCELLED, date(2026, 1, 1), "50", DisplayStatus.CANCELLED),
        (InvoiceStatus.PAID, date(2026, 1, 1), "100", DisplayStatus.PAID),
        (InvoiceStatus.SENT, None, "0", DisplayStatus.SENT),
        (InvoiceStatus.SENT, date(2026, 4, 1), "0", DisplayStatus.DUE),
        (InvoiceStatus.SENT, date(2026, 4, 1), "30", DisplayStatus.PARTIAL),
        (InvoiceStatus.SENT, date(2026, 3, 9), "0", DisplayStatus.OVERDUE),
        (InvoiceStatus.SENT, date(2026, 3, 9), "30", DisplayStatus.OVERDUE),
        (InvoiceStatus.SENT, date(2026, 3, 10), "0", DisplayStatus.DUE),
        (InvoiceStatus.SENT, date(2026, 3, 9), "100", DisplayStatus.PAID),
    ],
)
def test_display_status(status, due, paid, expected):
    assert display(status, due, paid) == expected


def test_zero_total_sent_invoice_is_not_shown_as_paid():
    assert display(InvoiceStatus.SENT, None, "0", total="0") == DisplayStatus.SENT


def test_terminal_statuses_have_restricted_moves():
    assert not can_transition(InvoiceStatus.CANCELLED, InvoiceStatus.SENT)
    assert not can_transition(InvoiceStatus.PAID, InvoiceStatus.CANCELLED)
    assert can_transition(InvoiceStatus.PAID, InvoiceStatus.SENT)
    assert can_transition(InvoiceStatus.DRAFT, InvoiceStatus.SENT)
    assert can_transition(InvoiceStatus.SENT, InvoiceStatus.SENT)


def test_action_guards():
    assert send_error(InvoiceStatus.CANCELLED) is not None
    assert send_error(InvoiceStatus.PAID) is not None
    assert send_error(InvoiceStatus.SENT) is None
    assert cancel_error(InvoiceStatus.PAID) is not None
    assert cancel_error(InvoiceStatus.CANCELLED) is not None
    assert cancel_error(InvoiceStatus.DRAFT) is None


def test_refund_target_depends_on_whether_the_invoice_was_emailed():
    assert status_after_refund(email_sent_at=NOW) == InvoiceStatus.SENT
    assert status_after_refund(email_sent_at=None) == InvoiceStatus.DRAFT


def test_transition_records_history(db, owner):
    invoice = make_invoice(db, owner, status=InvoiceStatus.DRAFT)

    assert transition(db, invoice, InvoiceStatus.SENT, notes="Emailed")
    db.commit()
    rows = db.query(StatusHistory).filter(StatusHistory.invoice_id == invoice.id).all()
    assert [(row.status, row.notes) for row in rows] == [(InvoiceStatus.SENT, "Emailed")]

    assert transition(db, invoice, InvoiceStatus.SENT)
    db.commit()
    assert db.query(StatusHistory).filter(StatusHistory.invoice_id == invoice.id).count() == 1


def test_rejected_transition_changes_nothing(db, owner):
    invoice = make_invoice(db, owner, status=InvoiceStatus.CANCELLED)
    assert not transition(db, invoice, InvoiceStatus.SENT)
    assert invoice.status == InvoiceStatus.CANCELLED
    assert db.query(StatusHistory).count() == 0


@pytest.mark.parametrize("raw", ["partial", "due", "overdue", " SENT "])
def test_legacy_stored_statuses_read_back_as_sent(raw):
    assert normalize_status(raw) == InvoiceStatus.SENT
