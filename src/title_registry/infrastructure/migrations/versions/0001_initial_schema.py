"""initial schema

Revision ID: 0001
Revises:
Create Date: 2026-10-19 09:00:00
"""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

revision = "0001"
down_revision = None
branch_labels = None
depends_on = None

JSONVariant = sa.JSON().with_variant(postgresql.JSONB(), "postgresql")


def upgrade() -> None:
    op.create_table(
        "accounts",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("email", sa.String(320), nullable=True, unique=True),
        sa.Column("wallet_address", sa.String(42), nullable=False, unique=True),
        sa.Column("role", sa.String(20), nullable=False),
        sa.Column("kyc_status", sa.String(20), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint(
            "role IN ('seller', 'buyer', 'verifier')", name="ck_account_valid_role"
        ),
    )

    op.create_table(
        "properties",
        sa.Column("property_id", sa.String(100), primary_key=True),
        sa.Column("survey_number", sa.String(100), nullable=False),
        sa.Column("asset_id", sa.BigInteger(), nullable=True, unique=True),
        sa.Column("property_address", sa.Text(), nullable=False),
        sa.Column("area", sa.Numeric(24, 6), nullable=False),
        sa.Column("owner_name", sa.String(200), nullable=False),
        sa.Column("owner_wallet_address", sa.String(42), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("document_hashes", JSONVariant, nullable=False),
        sa.Column("verifier_ref", sa.String(100), nullable=False),
        sa.Column("owner_ref", sa.Uuid(), sa.ForeignKey("accounts.id"), nullable=True),
        sa.Column("payload_hash", sa.String(66), nullable=False),
        sa.Column("consent_signature", sa.String(132), nullable=True),
        sa.Column("status", sa.String(20), nullable=False),
        sa.Column("mint_transaction_hash", sa.String(66), nullable=False, unique=True),
        sa.Column("sale_transaction_hash", sa.String(66), nullable=True),
        sa.Column("list_price", sa.Numeric(36, 18), nullable=True),
        sa.Column("sale_price", sa.Numeric(36, 18), nullable=True),
        sa.Column("listed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("sold_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint(
            "status IN ('pending', 'verified', 'listed_for_sale', 'sold')",
            name="ck_property_valid_status",
        ),
        sa.CheckConstraint("area > 0", name="ck_property_positive_area"),
    )
    op.create_index("idx_property_status", "properties", ["status"])
    op.create_index("idx_property_owner_wallet", "properties", ["owner_wallet_address"])
    op.create_index("idx_property_owner_ref", "properties", ["owner_ref"])

    op.create_table(
        "registration_drafts",
        sa.Column("payload_hash", sa.String(66), primary_key=True),
        sa.Column("property_id", sa.String(100), nullable=False),
        sa.Column("fields", JSONVariant, nullable=False),
        sa.Column("document_hashes", JSONVariant, nullable=False),
        sa.Column("encoded_call_data", sa.Text(), nullable=False),
        sa.Column("verifier_ref", sa.String(100), nullable=False),
        sa.Column("status", sa.String(20), nullable=False),
        sa.Column("failure_reason", sa.Text(), nullable=True),
        sa.Column("signer_address", sa.String(42), nullable=True),
        sa.Column("signature", sa.String(132), nullable=True),
        sa.Column("mint_transaction_hash", sa.String(66), nullable=True, unique=True),
        sa.Column("asset_id", sa.BigInteger(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint(
            "status IN ('drafted', 'hash_prepared', 'signed', 'chain_submitted', "
            "'recorded', 'failed')",
            name="ck_draft_valid_status",
        ),
    )
    op.create_index("idx_draft_property_id", "registration_drafts", ["property_id"])
    op.create_index("idx_draft_status", "registration_drafts", ["status"])

    op.create_table(
        "property_events",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column(
            "property_id",
            sa.String(100),
            sa.ForeignKey("properties.property_id"),
            nullable=False,
        ),
        sa.Column("event_type", sa.String(40), nullable=False),
        sa.Column("old_status", sa.String(20), nullable=True),
        sa.Column("new_status", sa.String(20), nullable=False),
        sa.Column("actor", sa.String(100), nullable=False),
        sa.Column("metadata", JSONVariant, nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("idx_event_property", "property_events", ["property_id"])
    op.create_index("idx_event_type", "property_events", ["event_type"])
    op.create_index("idx_event_created_at", "property_events", ["created_at"])

    op.create_table(
        "sale_events",
        sa.Column("transaction_hash", sa.String(66), primary_key=True),
        sa.Column("asset_id", sa.BigInteger(), nullable=False),
        sa.Column(
            "property_id",
            sa.String(100),
            sa.ForeignKey("properties.property_id"),
            nullable=False,
        ),
        sa.Column("buyer", sa.String(42), nullable=False),
        sa.Column("seller", sa.String(42), nullable=False),
        sa.Column("price_wei", sa.String(78), nullable=False),
        sa.Column("block_number", sa.BigInteger(), nullable=True),
        sa.Column("captured_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("idx_sale_seller", "sale_events", ["seller"])
    op.create_index("idx_sale_asset", "sale_events", ["asset_id"])


def downgrade() -> None:
    op.drop_table("sale_events")
    op.drop_table("property_events")
    op.drop_table("registration_drafts")
    op.drop_table("properties")
    op.drop_table("accounts")
