"""create purchase tables

Revision ID: 3f2a9c1d7b40
Revises:
Create Date: 2026-10-19 10:12:44.118203

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '3f2a9c1d7b40'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

ACTIVE_PURCHASE = sa.text("status IN ('pending_initiation', 'awaiting_payment', 'pending_verification')")
OPEN_REQUEST = sa.text("status IN ('pending', 'contacted')")

item_type = sa.Enum("book", "bundle", name="itemtype")
purchase_status = sa.Enum(
    "pending_initiation", "awaiting_payment", "pending_verification", "completed", "rejected",
    name="purchasestatus",
)
submission_status = sa.Enum("pending", "approved", "rejected", name="submissionstatus")
library_status = sa.Enum("owned", "pending", "completed", name="librarystatus")
request_status = sa.Enum(
    "pending", "contacted", "approved", "rejected", "completed", "cancelled",
    name="paymentrequeststatus",
)
recipient_role = sa.Enum("admin", "customer", name="recipientrole")
notification_channel = sa.Enum("email", "system", name="notificationchannel")


def upgrade():
    op.create_table(
        "user",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("first_name", sa.String(), nullable=False),
        sa.Column("last_name", sa.String(), nullable=False, server_default=""),
        sa.Column("email", sa.String(), nullable=False),
        sa.Column("display_name", sa.String(), nullable=True),
        sa.Column("role", sa.String(), nullable=False, server_default="user"),
        sa.Column("can_login", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_user_email", "user", ["email"])

    op.create_table(
        "book",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("title", sa.String(), nullable=False),
        sa.Column("author", sa.String(), nullable=False),
        sa.Column("price", sa.Numeric(10, 2), nullable=False, server_default="0"),
        sa.Column("is_free", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("cover_image", sa.String(), nullable=True),
        sa.Column("pdf_key", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    )

    op.create_table(
        "bundle",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("title", sa.String(), nullable=False),
        sa.Column("description", sa.String(), nullable=True),
        sa.Column("price", sa.Numeric(10, 2), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    )

    op.create_table(
        "bundlebook",
        sa.Column("bundle_id", sa.Integer(), sa.ForeignKey("bundle.id"), primary_key=True),
        sa.Column("book_id", sa.Integer(), sa.ForeignKey("book.id"), primary_key=True),
    )

    op.create_table(
        "purchases",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("user.id"), nullable=False),
        sa.Column("item_type", item_type, nullable=False),
        sa.Column("item_id", sa.Integer(), nullable=False),
        sa.Column("amount", sa.Numeric(10, 2), nullable=False),
        sa.Column("currency", sa.String(length=3), nullable=False),
        sa.Column("transaction_reference", sa.String(), nullable=False),
        sa.Column("status", purchase_status, nullable=False),
        sa.Column("initiation_token", sa.String(), nullable=False),
        sa.Column("payment_provider_id", sa.String(), nullable=True),
        sa.Column("transaction_id", sa.String(), nullable=True),
        sa.Column("claimed_amount", sa.Numeric(10, 2), nullable=True),
        sa.Column("telegram_chat_id", sa.BigInteger(), nullable=True),
        sa.Column("telegram_user_id", sa.BigInteger(), nullable=True),
        sa.Column("reviewer_notes", sa.String(), nullable=True),
        sa.Column("reviewed_by", sa.Integer(), sa.ForeignKey("user.id"), nullable=True),
        sa.Column("reviewed_at", sa.DateTime(), nullable=True),
        sa.Column("cancellation_reason", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_purchases_user_id", "purchases", ["user_id"])
    op.create_index("ix_purchases_item_id", "purchases", ["item_id"])
    op.create_index("ix_purchases_status", "purchases", ["status"])
    op.create_index("ix_purchases_payment_provider_id", "purchases", ["payment_provider_id"])
    op.create_index("ix_purchases_transaction_reference", "purchases", ["transaction_reference"], unique=True)
    op.create_index("ix_purchases_initiation_token", "purchases", ["initiation_token"], unique=True)
    # one in-flight purchase per user and item
    op.create_index(
        "uq_purchases_active_item",
        "purchases",
        ["user_id", "item_type", "item_id"],
        unique=True,
        postgresql_where=ACTIVE_PURCHASE,
    )

    op.create_table(
        "manual_payment_submissions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("purchase_id", sa.String(), sa.ForeignKey("purchases.id"), nullable=False),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("user.id"), nullable=False),
        sa.Column("receipt_paths", sa.JSON(), nullable=False),
        sa.Column("claimed_amount", sa.String(), nullable=True),
        sa.Column("status", submission_status, nullable=False),
        sa.Column("admin_notes", sa.String(), nullable=True),
        sa.Column("reviewed_by", sa.Integer(), sa.ForeignKey("user.id"), nullable=True),
        sa.Column("reviewed_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_manual_payment_submissions_purchase_id", "manual_payment_submissions", ["purchase_id"])
    op.create_index("ix_manual_payment_submissions_user_id", "manual_payment_submissions", ["user_id"])
    op.create_index("ix_manual_payment_submissions_status", "manual_payment_submissions", ["status"])

    op.create_table(
        "user_library",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("user.id"), nullable=False),
        sa.Column("book_id", sa.Integer(), sa.ForeignKey("book.id"), nullable=False),
        sa.Column("status", library_status, nullable=False),
        sa.Column("progress", sa.Float(), nullable=False, server_default="0"),
        sa.Column("purchase_id", sa.String(), sa.ForeignKey("purchases.id"), nullable=True),
        sa.Column("added_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("user_id", "book_id", name="uq_user_library_user_book"),
    )
    op.create_index("ix_user_library_user_id", "user_library", ["user_id"])
    op.create_index("ix_user_library_book_id", "user_library", ["book_id"])

    op.create_table(
        "payment_requests",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("user.id"), nullable=False),
        sa.Column("item_type", item_type, nullable=False),
        sa.Column("item_id", sa.Integer(), nullable=False),
        sa.Column("amount", sa.Numeric(10, 2), nullable=False),
        sa.Column("currency", sa.String(length=3), nullable=False),
        sa.Column("status", request_status, nullable=False),
        sa.Column("preferred_contact_method", sa.String(), nullable=True),
        sa.Column("user_message", sa.String(), nullable=True),
        sa.Column("admin_notes", sa.String(), nullable=True),
        sa.Column("cancellation_reason", sa.String(), nullable=True),
        sa.Column("contacted_at", sa.DateTime(), nullable=True),
        sa.Column("completed_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_payment_requests_user_id", "payment_requests", ["user_id"])
    op.create_index("ix_payment_requests_status", "payment_requests", ["status"])
    op.create_index(
        "uq_payment_requests_open_item",
        "payment_requests",
        ["user_id", "item_type", "item_id"],
        unique=True,
        postgresql_where=OPEN_REQUEST,
    )

    op.create_table(
        "purchase_event",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("purchase_id", sa.String(), sa.ForeignKey("purchases.id"), nullable=False),
        sa.Column("event_type", sa.String(), nullable=False),
        sa.Column("label", sa.String(), nullable=False),
        sa.Column("meta", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("created_by", sa.String(), nullable=False, server_default="system"),
    )
    # indexes for fast timeline queries
    op.create_index("ix_purchase_event_purchase_id", "purchase_event", ["purchase_id"])
    op.create_index("ix_purchase_event_event_type", "purchase_event", ["event_type"])

    op.create_table(
        "fulfillmentissue",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("purchase_id", sa.String(), sa.ForeignKey("purchases.id"), nullable=True),
        sa.Column("payment_request_id", sa.Integer(), sa.ForeignKey("payment_requests.id"), nullable=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("user.id"), nullable=False),
        sa.Column("item_type", item_type, nullable=False),
        sa.Column("item_id", sa.Integer(), nullable=False),
        sa.Column("failed_book_ids", sa.JSON(), nullable=False),
        sa.Column("error", sa.String(), nullable=False),
        sa.Column("status", sa.String(), nullable=False, server_default="open"),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("resolved_at", sa.DateTime(), nullable=True),
    )
    op.create_index("ix_fulfillmentissue_purchase_id", "fulfillmentissue", ["purchase_id"])
    op.create_index("ix_fulfillmentissue_status", "fulfillmentissue", ["status"])

    op.create_table(
        "notification",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("recipient_role", recipient_role, nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=True),
        sa.Column("trigger_source", sa.String(), nullable=False),
        sa.Column("related_id", sa.String(), nullable=True),
        sa.Column("title", sa.String(), nullable=False),
        sa.Column("content", sa.String(), nullable=False),
        sa.Column("channel", notification_channel, nullable=False),
        sa.Column("read_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_notification_recipient_role", "notification", ["recipient_role"])
    op.create_index("ix_notification_user_id", "notification", ["user_id"])


def downgrade():
    op.drop_index("ix_notification_user_id", table_name="notification")
    op.drop_index("ix_notification_recipient_role", table_name="notification")
    op.drop_table("notification")
    op.drop_index("ix_fulfillmentissue_status", table_name="fulfillmentissue")
    op.drop_index("ix_fulfillmentissue_purchase_id", table_name="fulfillmentissue")
    op.drop_table("fulfillmentissue")
    op.drop_index("ix_purchase_event_event_type", table_name="purchase_event")
    op.drop_index("ix_purchase_event_purchase_id", table_name="purchase_event")
    op.drop_table("purchase_event")
    op.drop_index("uq_payment_requests_open_item", table_name="payment_requests")
    op.drop_table("payment_requests")
    op.drop_table("user_library")
    op.drop_table("manual_payment_submissions")
    op.drop_index("uq_purchases_active_item", table_name="purchases")
    op.drop_table("purchases")
    op.drop_table("bundlebook")
    op.drop_table("bundle")
    op.drop_table("book")
    op.drop_table("user")

    bind = op.get_bind()
    for enum in (
        notification_channel, recipient_role, request_status,
        library_status, submission_status, purchase_status, item_type,
    ):
        enum.drop(bind, checkfirst=True)
