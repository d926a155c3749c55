"""Public view links, owner business profile and saved customers.

Existing invoices get a random ``view_token`` so every invoice has a
shareable read-only link.

Revision ID: 0003_view_links_profile_customers
Revises: 0002_normalize_legacy_status
Create Date: 2026-10-19
"""

from __future__ import annotations

import secrets

from alembic import op
import sqlalchemy as sa

revision = "0003_view_links_profile_customers"
down_revision = "0002_normalize_legacy_status"
branch_labels = None
depends_on = None


def upgrade() -> None:
    with op.batch_alter_table("invoices") as batch:
        batch.add_column(sa.Column("view_token", sa.String(length=64), nullable=True))
        batch.add_column(sa.Column("view_count", sa.Integer(), nullable=False, server_default="0"))
        batch.add_column(sa.Column("last_viewed_at", sa.DateTime(timezone=True), nullable=True))
        batch.create_index("ix_invoices_view_token", ["view_token"], unique=True)

    invoices = sa.table("invoices", sa.column("id", sa.Integer()), sa.column("view_token", sa.String()))
    connection = op.get_bind()
    missing = connection.execute(sa.select(invoices.c.id).where(invoices.c.view_token.is_(None))).scalars().all()
    for invoice_id in missing:
        connection.execute(
            invoices.update().where(invoices.c.id == invoice_id).values(view_token=secrets.token_hex(32))
        )

    with op.batch_alter_table("users") as batch:
        batch.add_column(sa.Column("business_email", sa.String(length=255), nullable=True))
        batch.add_column(sa.Column("business_phone", sa.String(length=50), nullable=True))
        batch.add_column(sa.Column("business_address", sa.Text(), nullable=True))
        batch.add_column(sa.Column("payment_notes", sa.Text(), nullable=True))

    op.create_table(
        "customers",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("owner_id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("business_name", sa.String(length=255), nullable=True),
        sa.Column("address", sa.Text(), nullable=True),
        sa.Column("phone", sa.String(length=50), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.ForeignKeyConstraint(["owner_id"], ["users.id"], ondelete="CASCADE"),
    )
    op.create_index("ix_customers_owner_id", "customers", ["owner_id"], unique=False)
    op.create_index("ix_customers_name", "customers", ["name"], unique=False)
    op.create_index("ix_customers_email", "customers", ["email"], unique=False)


def downgrade() -> None:
    op.drop_table("customers")
    with op.batch_alter_table("users") as batch:
        batch.drop_column("payment_notes")
        batch.drop_column("business_address")
        batch.drop_column("business_phone")
        batch.drop_column("business_email")
    with op.batch_alter_table("invoices") as batch:
        batch.drop_index("ix_invoices_view_token")
        batch.drop_column("last_viewed_at")
        batch.drop_column("view_count")
        batch.drop_column("view_token")
