"""initial marketplace escrow schema"""
from alembic import op
import sqlalchemy as sa

revision = "20261017_initial_marketplace_escrow"
down_revision = None
branch_labels = None
depends_on = None

BUYER_TIER = sa.Enum("NEW", "VERIFIED", "TRUSTED", name="buyertier")
SELLER_TIER = sa.Enum("NEW", "VERIFIED", "TRUSTED", "PRO", name="sellertier")
DELIVERY_METHOD = sa.Enum(
    "INSTANT_DOWNLOAD", "REPOSITORY_ACCESS", "MANUAL_TRANSFER", "DOMAIN_TRANSFER", name="deliverymethod"
)
LISTING_STATUS = sa.Enum("DRAFT", "ACTIVE", "SOLD", "REMOVED", name="listingstatus")
SCAN_STATUS = sa.Enum("PENDING", "CLEAN", "SUSPICIOUS", "MALICIOUS", "SKIPPED", name="scanstatus")
PAYMENT_STATUS = sa.Enum("PENDING", "COMPLETED", "REFUNDED", name="paymentstatus")
DELIVERY_STATUS = sa.Enum("PENDING", "DELIVERED", "CONFIRMED", "AUTO_COMPLETED", name="deliverystatus")
ESCROW_STATUS = sa.Enum("HOLDING", "DISPUTED", "RELEASED", "REFUNDED", name="escrowstatus")
DISPUTE_REASON = sa.Enum(
    "FILES_EMPTY",
    "NOT_AS_DESCRIBED",
    "SELLER_UNRESPONSIVE",
    "SUSPECTED_STOLEN",
    "MALWARE",
    "OTHER",
    name="disputereason",
)


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        "users",
        *_timestamps(),
        sa.Column("username", sa.String(length=100), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("is_admin", sa.Boolean(), nullable=False),
        sa.Column("stripe_account_id", sa.String(length=255), nullable=True),
        sa.Column("buyer_tier", BUYER_TIER, nullable=False),
        sa.Column("seller_tier", SELLER_TIER, nullable=False),
        sa.Column("total_sales", sa.Integer(), nullable=False),
        sa.Column("total_disputes", sa.Integer(), nullable=False),
        sa.Column("dispute_rate", sa.Float(), nullable=False),
        sa.UniqueConstraint("username"),
        sa.UniqueConstraint("email"),
        sa.CheckConstraint("total_sales >= 0", name="ck_users_total_sales_non_negative"),
        sa.CheckConstraint("total_disputes >= 0", name="ck_users_total_disputes_non_negative"),
    )

    op.create_table(
        "listings",
        *_timestamps(),
        sa.Column("seller_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("title", sa.String(length=200), nullable=False),
        sa.Column("price_cents", sa.Integer(), nullable=False),
        sa.Column("delivery_method", DELIVERY_METHOD, nullable=False),
        sa.Column("status", LISTING_STATUS, nullable=False),
        sa.Column("scan_status", SCAN_STATUS, nullable=True),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint("price_cents >= 0", name="ck_listings_price_non_negative"),
    )
    op.create_index("ix_listings_seller_id", "listings", ["seller_id"], unique=False)
    op.create_index("ix_listings_seller_status", "listings", ["seller_id", "status"], unique=False)

    op.create_table(
        "purchases",
        *_timestamps(),
        sa.Column("buyer_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("guest_email", sa.String(length=255), nullable=True),
        sa.Column("seller_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("listing_id", sa.Integer(), sa.ForeignKey("listings.id"), nullable=False),
        sa.Column("amount_paid_cents", sa.Integer(), nullable=False),
        sa.Column("platform_fee_cents", sa.Integer(), nullable=False),
        sa.Column("seller_amount_cents", sa.Integer(), nullable=False),
        sa.Column("status", PAYMENT_STATUS, nullable=False),
        sa.Column("delivery_status", DELIVERY_STATUS, nullable=False),
        sa.Column("escrow_status", ESCROW_STATUS, nullable=True),
        sa.Column("escrow_expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("escrow_released_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("disputed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("resolved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("dispute_reason", DISPUTE_REASON, nullable=True),
        sa.Column("dispute_notes", sa.Text(), nullable=True),
        sa.Column("resolution", sa.Text(), nullable=True),
        sa.Column("resolved_by", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("payment_reference", sa.String(length=255), nullable=True),
        sa.Column("stripe_transfer_id", sa.String(length=255), nullable=True),
        sa.Column("stripe_refund_id", sa.String(length=255), nullable=True),
        sa.UniqueConstraint("stripe_transfer_id"),
        sa.UniqueConstraint("stripe_refund_id"),
        sa.CheckConstraint(
            "amount_paid_cents = platform_fee_cents + seller_amount_cents",
            name="ck_purchases_fee_split",
        ),
        sa.CheckConstraint("platform_fee_cents >= 0", name="ck_purchases_fee_non_negative"),
        sa.CheckConstraint("seller_amount_cents >= 0", name="ck_purchases_seller_amount_non_negative"),
        sa.CheckConstraint(
            "buyer_id IS NOT NULL OR guest_email IS NOT NULL",
            name="ck_purchases_buyer_or_guest",
        ),
        sa.CheckConstraint(
            "escrow_status IS NULL OR status <> 'PENDING'",
            name="ck_purchases_escrow_requires_capture",
        ),
        sa.CheckConstraint(
            "escrow_status <> 'RELEASED' OR stripe_transfer_id IS NOT NULL OR seller_amount_cents = 0",
            name="ck_purchases_released_has_transfer",
        ),
        sa.CheckConstraint(
            "escrow_status <> 'DISPUTED' OR disputed_at IS NOT NULL",
            name="ck_purchases_disputed_has_timestamp",
        ),
    )
    op.create_index("ix_purchases_buyer_id", "purchases", ["buyer_id"], unique=False)
    op.create_index("ix_purchases_seller_id", "purchases", ["seller_id"], unique=False)
    op.create_index("ix_purchases_listing_id", "purchases", ["listing_id"], unique=False)
    op.create_index("ix_purchases_escrow_due", "purchases", ["escrow_status", "escrow_expires_at"], unique=False)
    op.create_index("ix_purchases_status_created", "purchases", ["status", "created_at"], unique=False)
    op.create_index("ix_purchases_buyer_created", "purchases", ["buyer_id", "created_at"], unique=False)
    op.create_index("ix_purchases_guest_created", "purchases", ["guest_email", "created_at"], unique=False)

    op.create_table(
        "audit_logs",
        *_timestamps(),
        sa.Column("actor", sa.String(length=100), nullable=False),
        sa.Column("action", sa.String(length=100), nullable=False),
        sa.Column("entity", sa.String(length=100), nullable=False),
        sa.Column("entity_id", sa.Integer(), nullable=False),
        sa.Column("data_json", sa.JSON(), nullable=False),
        sa.Column("at", sa.DateTime(timezone=True), nullable=False),
    )


def downgrade() -> None:
    op.drop_table("audit_logs")
    for index in (
        "ix_purchases_guest_created",
        "ix_purchases_buyer_created",
        "ix_purchases_status_created",
        "ix_purchases_escrow_due",
        "ix_purchases_listing_id",
        "ix_purchases_seller_id",
        "ix_purchases_buyer_id",
    ):
        op.drop_index(index, table_name="purchases")
    op.drop_table("purchases")
    op.drop_index("ix_listings_seller_status", table_name="listings")
    op.drop_index("ix_listings_seller_id", table_name="listings")
    op.drop_table("listings")
    op.drop_table("users")
    for enum in (
        DISPUTE_REASON,
        ESCROW_STATUS,
        DELIVERY_STATUS,
        PAYMENT_STATUS,
        SCAN_STATUS,
        LISTING_STATUS,
        DELIVERY_METHOD,
        SELLER_TIER,
        BUYER_TIER,
    ):
        enum.drop(op.get_bind(), checkfirst=True)
