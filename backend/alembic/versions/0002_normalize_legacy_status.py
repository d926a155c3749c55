"""Fold persisted display-only statuses back to ``sent``.

Older write paths stored ``partial`` (and occasionally ``due``/``overdue``)
in ``invoices.status``. Those are read-time values; only ``draft``, ``sent``,
``paid`` and ``cancelled`` are persisted.

Revision ID: 0002_normalize_legacy_status
Revises: 0001_initial
Create Date: 2026-10-19
"""

from __future__ import annotations

from alembic import op

revision = "0002_normalize_legacy_status"
down_revision = "0001_initial"
branch_labels = None
depends_on = None


LEGACY_VALUES = ("partial", "due", "overdue")


def upgrade() -> None:
    for table in ("invoices", "status_history"):
        for value in LEGACY_VALUES:
            op.execute(f"UPDATE {table} SET status = 'sent' WHERE status = '{value}'")


def downgrade() -> None:
    # Display statuses are derived; nothing to restore.
    pass
