"""create perk ledger

Revision ID: 4c1e8b7d2a90
Revises:
Create Date: 2026-10-18 00:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "4c1e8b7d2a90"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table(
        "users",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("username", sa.String(length=50), nullable=False),
        sa.Column("settings", sa.Text(), nullable=True),
        sa.Column("created_at", sa.String(length=26), nullable=True),
        sa.Column("updated_at", sa.String(length=26), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    with op.batch_alter_table("users", schema=None) as batch_op:
        batch_op.create_index(batch_op.f("ix_users_username"), ["username"], unique=True)

    op.create_table(
        "card_products",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("slug", sa.String(length=50), nullable=False),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("issuer", sa.String(length=50), nullable=False),
        sa.Column("annual_fee", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.String(length=26), nullable=True),
        sa.Column("updated_at", sa.String(length=26), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    with op.batch_alter_table("card_products", schema=None) as batch_op:
        batch_op.create_index(batch_op.f("ix_card_products_slug"), ["slug"], unique=True)

    op.create_table(
        "perk_definitions",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("card_product_id", sa.String(length=36), nullable=False),
        sa.Column("slug", sa.String(length=50), nullable=False),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("value", sa.Float(), nullable=False),
        sa.Column("period_months", sa.Integer(), nullable=False),
        sa.Column("reset_policy", sa.String(length=20), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.ForeignKeyConstraint(["card_product_id"], ["card_products.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("card_product_id", "slug", name="uq_perk_definition"),
    )
    with op.batch_alter_table("perk_definitions", schema=None) as batch_op:
        batch_op.create_index(batch_op.f("ix_perk_definitions_card_product_id"), ["card_product_id"], unique=False)

    op.create_table(
        "card_enrollments",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("user_id", sa.String(length=36), nullable=False),
        sa.Column("card_product_id", sa.String(length=36), nullable=False),
        sa.Column("nickname", sa.String(length=100), nullable=True),
        sa.Column("anniversary", sa.String(length=10), nullable=True),
        sa.Column("active", sa.Integer(), nullable=True),
        sa.Column("added_at", sa.String(length=26), nullable=True),
        sa.Column("removed_at", sa.String(length=26), nullable=True),
        sa.ForeignKeyConstraint(["card_product_id"], ["card_products.id"]),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("user_id", "card_product_id", name="uq_card_enrollment"),
    )
    with op.batch_alter_table("card_enrollments", schema=None) as batch_op:
        batch_op.create_index(batch_op.f("ix_card_enrollments_user_id"), ["user_id"], unique=False)

    op.create_table(
        "auto_redemptions",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("user_id", sa.String(length=36), nullable=False),
        sa.Column("card_enrollment_id", sa.String(length=36), nullable=False),
        sa.Column("perk_definition_id", sa.String(length=36), nullable=False),
        sa.Column("is_enabled", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.String(length=26), nullable=True),
        sa.Column("updated_at", sa.String(length=26), nullable=True),
        sa.ForeignKeyConstraint(["card_enrollment_id"], ["card_enrollments.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["perk_definition_id"], ["perk_definitions.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("card_enrollment_id", "perk_definition_id", name="uq_auto_redemption"),
    )
    with op.batch_alter_table("auto_redemptions", schema=None) as batch_op:
        batch_op.create_index(batch_op.f("ix_auto_redemptions_user_id"), ["user_id"], unique=False)

    op.create_table(
        "redemption_records",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("user_id", sa.String(length=36), nullable=False),
        sa.Column("perk_definition_id", sa.String(length=36), nullable=False),
        sa.Column("card_enrollment_id", sa.String(length=36), nullable=False),
        sa.Column("redemption_instant", sa.DateTime(), nullable=False),
        sa.Column("cycle_reset_instant", sa.DateTime(), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("value_redeemed", sa.Float(), nullable=False),
        sa.Column("total_value", sa.Float(), nullable=False),
        sa.Column("remaining_value", sa.Float(), nullable=False),
        sa.Column("parent_record_id", sa.String(length=36), nullable=True),
        sa.Column("is_auto_redemption", sa.Integer(), nullable=True),
        sa.Column("provider", sa.String(length=50), nullable=True),
        sa.Column("created_at", sa.String(length=26), nullable=True),
        sa.ForeignKeyConstraint(["card_enrollment_id"], ["card_enrollments.id"]),
        sa.ForeignKeyConstraint(["perk_definition_id"], ["perk_definitions.id"]),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    with op.batch_alter_table("redemption_records", schema=None) as batch_op:
        batch_op.create_index(
            "ix_redemption_records_active",
            ["user_id", "perk_definition_id", "cycle_reset_instant"],
            unique=False,
        )
        batch_op.create_index("ix_redemption_records_card", ["card_enrollment_id"], unique=False)

    op.create_table(
        "notifications",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("user_id", sa.String(length=36), nullable=False),
        sa.Column("type", sa.String(length=50), nullable=False),
        sa.Column("period_months", sa.Integer(), nullable=True),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("scheduled_for", sa.String(length=26), nullable=False),
        sa.Column("expires_at", sa.String(length=26), nullable=True),
        sa.Column("delivered", sa.Integer(), nullable=True),
        sa.Column("delivered_at", sa.String(length=26), nullable=True),
        sa.Column("created_at", sa.String(length=26), nullable=True),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    with op.batch_alter_table("notifications", schema=None) as batch_op:
        batch_op.create_index("ix_notifications_user_pending", ["user_id", "delivered"], unique=False)
        batch_op.create_index("ix_notifications_scheduled", ["user_id", "scheduled_for"], unique=False)


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_table("notifications")
    op.drop_table("redemption_records")
    op.drop_table("auto_redemptions")
    op.drop_table("card_enrollments")
    op.drop_table("perk_definitions")
    op.drop_table("card_products")
    op.drop_table("users")
