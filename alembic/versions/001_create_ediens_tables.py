"""Create users, food_posts, claims and messages tables

Revision ID: 001
Revises: None
Create Date: 2025-01-10 00:00:00.000000+00:00

What:  Initial schema for the food-sharing marketplace.
How:   UUID primary keys and TIMESTAMP WITH TIME ZONE throughout. The
       claims table carries the partial unique index that allows at most one
       pending/confirmed claim per (food post, claimant).

Rollback: downgrade() drops all four tables (destructive).
"""

from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa

# revision identifiers
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

ACTIVE_CLAIM_PREDICATE = sa.text("status IN ('pending', 'confirmed')")


def _timestamps():
    return [
        sa.Column(
            "created_at",
            sa.TIMESTAMP(timezone=True),
            server_default=sa.text("CURRENT_TIMESTAMP"),
            nullable=False,
            comment="Row creation time (UTC)",
        ),
        sa.Column(
            "updated_at",
            sa.TIMESTAMP(timezone=True),
            server_default=sa.text("CURRENT_TIMESTAMP"),
            nullable=False,
            comment="Last modification time (UTC)",
        ),
    ]


def upgrade() -> None:
    # ── users ─────────────────────────────────────────────────────────────
    op.create_table(
        "users",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("password_hash", sa.String(255), nullable=False),
        sa.Column("first_name", sa.String(50), nullable=False),
        sa.Column("last_name", sa.String(50), nullable=False),
        sa.Column("phone", sa.String(32), nullable=True),
        sa.Column("avatar", sa.String(255), nullable=True),
        sa.Column("latitude", sa.Float(), nullable=True),
        sa.Column("longitude", sa.Float(), nullable=True),
        sa.Column("address", sa.String(255), nullable=True),
        sa.Column("city", sa.String(100), nullable=False),
        sa.Column("postal_code", sa.String(16), nullable=True),
        sa.Column("is_business", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("business_name", sa.String(100), nullable=True),
        sa.Column("business_type", sa.String(50), nullable=True),
        sa.Column("is_verified", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("rating", sa.Float(), nullable=False, server_default=sa.text("0")),
        sa.Column("total_ratings", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("eco_points", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column(
            "last_active",
            sa.TIMESTAMP(timezone=True),
            server_default=sa.text("CURRENT_TIMESTAMP"),
            nullable=False,
        ),
        sa.Column("preferences", sa.JSON(), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("email", name="uq_users_email"),
    )
    op.create_index("idx_users_city", "users", ["city"])
    op.create_index("idx_users_eco_points", "users", ["eco_points"])

    # ── food_posts ────────────────────────────────────────────────────────
    op.create_table(
        "food_posts",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("user_id", sa.Uuid(), nullable=False, comment="Owner of the post"),
        sa.Column("title", sa.String(100), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("category", sa.String(20), nullable=False),
        sa.Column("subcategory", sa.String(50), nullable=True),
        sa.Column("quantity", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.Column("unit", sa.String(20), nullable=False, server_default=sa.text("'piece'")),
        sa.Column("price", sa.Float(), nullable=False, server_default=sa.text("0")),
        sa.Column("is_free", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("original_price", sa.Float(), nullable=True),
        sa.Column("discount_percentage", sa.Integer(), nullable=True),
        sa.Column("images", sa.JSON(), nullable=False),
        sa.Column("latitude", sa.Float(), nullable=False),
        sa.Column("longitude", sa.Float(), nullable=False),
        sa.Column("address", sa.String(255), nullable=False),
        sa.Column("city", sa.String(100), nullable=False),
        sa.Column("pickup_instructions", sa.Text(), nullable=True),
        sa.Column("expiry_date", sa.TIMESTAMP(timezone=True), nullable=False),
        sa.Column("is_expired", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("urgency", sa.String(10), nullable=False, server_default=sa.text("'medium'")),
        sa.Column("allergens", sa.JSON(), nullable=False),
        sa.Column("dietary_info", sa.JSON(), nullable=False),
        sa.Column("storage_instructions", sa.Text(), nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default=sa.text("'available'")),
        sa.Column("max_reservations", sa.Integer(), nullable=True),
        sa.Column("current_reservations", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("is_business_post", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("tags", sa.JSON(), nullable=False),
        sa.Column("view_count", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("is_featured", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("version_id", sa.Integer(), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
    )
    op.create_index("idx_food_posts_user", "food_posts", ["user_id"])
    op.create_index("idx_food_posts_status_expiry", "food_posts", ["status", "expiry_date"])
    op.create_index("idx_food_posts_location", "food_posts", ["latitude", "longitude"])
    op.create_index("idx_food_posts_city", "food_posts", ["city"])
    op.create_index("idx_food_posts_category", "food_posts", ["category"])

    # ── claims ────────────────────────────────────────────────────────────
    op.create_table(
        "claims",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("food_post_id", sa.Uuid(), nullable=False),
        sa.Column("claimer_id", sa.Uuid(), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default=sa.text("'pending'")),
        sa.Column("quantity", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.Column("pickup_date", sa.TIMESTAMP(timezone=True), nullable=False),
        sa.Column("pickup_time", sa.String(5), nullable=True),
        sa.Column("message", sa.Text(), nullable=True),
        sa.Column("is_urgent", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("confirmed_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("picked_up_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("cancelled_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("cancelled_by_id", sa.Uuid(), nullable=True),
        sa.Column("expired_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("rating", sa.Integer(), nullable=True),
        sa.Column("review", sa.Text(), nullable=True),
        sa.Column("reviewed_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("eco_points_earned", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("version_id", sa.Integer(), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["food_post_id"], ["food_posts.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["claimer_id"], ["users.id"], ondelete="CASCADE"),
        sa.CheckConstraint(
            "status IN ('pending', 'confirmed', 'picked_up', 'cancelled', 'expired')",
            name="ck_claims_status_valid",
        ),
        sa.CheckConstraint("quantity >= 1", name="ck_claims_quantity_positive"),
        sa.CheckConstraint(
            "rating IS NULL OR (rating >= 1 AND rating <= 5)",
            name="ck_claims_rating_range",
        ),
    )
    # At most one pending/confirmed claim per claimant and post
    op.create_index(
        "uq_claims_active_per_user",
        "claims",
        ["food_post_id", "claimer_id"],
        unique=True,
        postgresql_where=ACTIVE_CLAIM_PREDICATE,
        sqlite_where=ACTIVE_CLAIM_PREDICATE,
    )
    op.create_index("idx_claims_claimer_status", "claims", ["claimer_id", "status"])
    op.create_index("idx_claims_post_status", "claims", ["food_post_id", "status"])
    op.create_index("idx_claims_status_pickup", "claims", ["status", "pickup_date"])

    # ── messages ──────────────────────────────────────────────────────────
    op.create_table(
        "messages",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("sender_id", sa.Uuid(), nullable=False),
        sa.Column("receiver_id", sa.Uuid(), nullable=False),
        sa.Column("food_post_id", sa.Uuid(), nullable=True),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("message_type", sa.String(10), nullable=False, server_default=sa.text("'text'")),
        sa.Column("media_url", sa.String(255), nullable=True),
        sa.Column("latitude", sa.Float(), nullable=True),
        sa.Column("longitude", sa.Float(), nullable=True),
        sa.Column("is_read", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("read_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("is_edited", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("edited_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("original_content", sa.Text(), nullable=True),
        sa.Column("is_deleted", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("deleted_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("reply_to_id", sa.Uuid(), nullable=True),
        sa.Column("metadata", sa.JSON(), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["sender_id"], ["users.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["receiver_id"], ["users.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["food_post_id"], ["food_posts.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["reply_to_id"], ["messages.id"], ondelete="SET NULL"),
    )
    op.create_index("idx_messages_pair", "messages", ["sender_id", "receiver_id", "created_at"])
    op.create_index("idx_messages_receiver_unread", "messages", ["receiver_id", "is_read"])
    op.create_index("idx_messages_food_post", "messages", ["food_post_id"])


def downgrade() -> None:
    """Drop every table in reverse dependency order. Destructive."""
    op.drop_table("messages")
    op.drop_table("claims")
    op.drop_table("food_posts")
    op.drop_table("users")
