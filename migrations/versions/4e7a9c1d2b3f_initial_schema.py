"""initial schema: users, rbac, photos, collections, feedback, reports, security

Revision ID: 4e7a9c1d2b3f
Revises:
Create Date: 2026-10-19 09:12:41.208314

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '4e7a9c1d2b3f'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create every table. Idempotent: tables that already exist are skipped."""
    conn = op.get_bind()
    inspector = sa.inspect(conn)
    existing_tables = set(inspector.get_table_names())

    if "users" not in existing_tables:
        op.create_table(
            "users",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("email", sa.String(320), nullable=False, unique=True),
            sa.Column("password_hash", sa.String(255), nullable=False),
            sa.Column("name", sa.String(100), nullable=True),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("email_verified_at", sa.DateTime(), nullable=True),
            sa.Column("subscription_status", sa.String(16), nullable=False, server_default="free"),
            sa.Column("monthly_analysis_count", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("last_analysis_reset", sa.DateTime(), nullable=False, server_default=sa.func.now()),
            sa.Column("current_period_end", sa.DateTime(), nullable=True),
            sa.Column("billing_customer_id", sa.String(128), nullable=True),
            sa.Column("billing_subscription_id", sa.String(128), nullable=True),
            sa.Column("starter_pack_purchased", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("starter_pack_activated_at", sa.DateTime(), nullable=True),
            sa.Column("starter_analysis_count", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("starter_shares_count", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("starter_exports_count", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("manual_premium_access", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("manual_premium_reason", sa.String(512), nullable=True),
            sa.Column("manual_premium_granted_at", sa.DateTime(), nullable=True),
            sa.Column("manual_premium_granted_by", sa.String(320), nullable=True),
            sa.Column("preferred_language", sa.String(8), nullable=False, server_default="fr"),
            sa.Column("preferred_tone", sa.String(32), nullable=False, server_default="professional"),
            sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
            sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        )
        op.create_index("idx_users_subscription_status", "users", ["subscription_status"])
        op.create_index("idx_users_created_at", "users", ["created_at"])

    if "roles" not in existing_tables:
        op.create_table(
            "roles",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("key", sa.String(64), nullable=False, unique=True),
            sa.Column("name", sa.String(128), nullable=False),
            sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        )

    if "permissions" not in existing_tables:
        op.create_table(
            "permissions",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("key", sa.String(128), nullable=False, unique=True),
            sa.Column("name", sa.String(128), nullable=False),
            sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        )

    if "user_roles" not in existing_tables:
        op.create_table(
            "user_roles",
            sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
            sa.Column("role_id", sa.Integer(), sa.ForeignKey("roles.id", ondelete="CASCADE"), primary_key=True),
        )

    if "role_permissions" not in existing_tables:
        op.create_table(
            "role_permissions",
            sa.Column("role_id", sa.Integer(), sa.ForeignKey("roles.id", ondelete="CASCADE"), primary_key=True),
            sa.Column(
                "permission_id", sa.Integer(), sa.ForeignKey("permissions.id", ondelete="CASCADE"), primary_key=True
            ),
        )

    if "audit_events" not in existing_tables:
        op.create_table(
            "audit_events",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
            sa.Column("request_id", sa.String(64), nullable=True),
            sa.Column("actor_user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
            sa.Column("actor_user_email", sa.String(320), nullable=True),
            sa.Column("action", sa.String(128), nullable=False),
            sa.Column("entity_type", sa.String(128), nullable=True),
            sa.Column("entity_id", sa.String(128), nullable=True),
            sa.Column("reason", sa.String(512), nullable=True),
            sa.Column("metadata_json", sa.Text(), nullable=True),
            sa.Column("client_ip", sa.String(64), nullable=True),
            sa.Column("user_agent", sa.String(500), nullable=True),
            sa.Column("risk_level", sa.String(16), nullable=False, server_default="low"),
            sa.Column("success", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.UniqueConstraint("request_id", "id", name="uq_audit_request_id_id"),
        )
        op.create_index("idx_audit_events_created_at", "audit_events", ["created_at"])
        op.create_index("idx_audit_events_action", "audit_events", ["action"])
        op.create_index("idx_audit_events_risk_level", "audit_events", ["risk_level"])

    if "banned_ips" not in existing_tables:
        op.create_table(
            "banned_ips",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("ip_address", sa.String(64), nullable=False),
            sa.Column("reason", sa.String(512), nullable=True),
            sa.Column("banned_by_user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
            sa.Column("banned_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
            sa.Column("expires_at", sa.DateTime(), nullable=True),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("metadata_json", sa.Text(), nullable=True),
        )
        op.create_index("idx_banned_ips_ip_active", "banned_ips", ["ip_address", "is_active"])

    if "verification_tokens" not in existing_tables:
        op.create_table(
            "verification_tokens",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
            sa.Column("token_hash", sa.String(64), nullable=False, unique=True),
            sa.Column("purpose", sa.String(32), nullable=False),
            sa.Column("expires_at", sa.DateTime(), nullable=False),
            sa.Column("used_at", sa.DateTime(), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        )
        op.create_index("idx_verification_tokens_user_purpose", "verification_tokens", ["user_id", "purpose"])

    if "photos" not in existing_tables:
        op.create_table(
            "photos",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
            sa.Column("storage_key", sa.String(512), nullable=False),
            sa.Column("filename", sa.String(255), nullable=False),
            sa.Column("content_type", sa.String(128), nullable=False),
            sa.Column("sha256", sa.String(64), nullable=False),
            sa.Column("size_bytes", sa.Integer(), nullable=False),
            sa.Column("width", sa.Integer(), nullable=True),
            sa.Column("height", sa.Integer(), nullable=True),
            sa.Column("score", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("potential_score", sa.Integer(), nullable=True),
            sa.Column("tone", sa.String(32), nullable=False, server_default="professional"),
            sa.Column("language", sa.String(8), nullable=False, server_default="fr"),
            sa.Column("analysis_json", sa.Text(), nullable=False),
            sa.Column("is_top_photo", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        )
        op.create_index("idx_photos_user_created", "photos", ["user_id", "created_at"])
        op.create_index("idx_photos_score", "photos", ["score"])
        op.create_index("idx_photos_sha256", "photos", ["sha256"])

    if "favorites" not in existing_tables:
        op.create_table(
            "favorites",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
            sa.Column("photo_id", sa.Integer(), sa.ForeignKey("photos.id", ondelete="CASCADE"), nullable=False),
            sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
            sa.UniqueConstraint("user_id", "photo_id", name="uq_favorites_user_photo"),
        )

    if "collections" not in existing_tables:
        op.create_table(
            "collections",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
            sa.Column("name", sa.String(100), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("color", sa.String(16), nullable=False, server_default="#FF006E"),
            sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
            sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
            sa.UniqueConstraint("user_id", "name", name="uq_collections_user_name"),
        )
        op.create_index("idx_collections_user_created", "collections", ["user_id", "created_at"])

    if "collection_items" not in existing_tables:
        op.create_table(
            "collection_items",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column(
                "collection_id", sa.Integer(), sa.ForeignKey("collections.id", ondelete="CASCADE"), nullable=False
            ),
            sa.Column("photo_id", sa.Integer(), sa.ForeignKey("photos.id", ondelete="CASCADE"), nullable=False),
            sa.Column("added_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
            sa.UniqueConstraint("collection_id", "photo_id", name="uq_collection_items_collection_photo"),
        )

    if "feedbacks" not in existing_tables:
        op.create_table(
            "feedbacks",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
            sa.Column("email", sa.String(320), nullable=True),
            sa.Column("type", sa.String(32), nullable=False),
            sa.Column("category", sa.String(64), nullable=True),
            sa.Column("rating", sa.Integer(), nullable=True),
            sa.Column("title", sa.String(100), nullable=True),
            sa.Column("message", sa.Text(), nullable=False),
            sa.Column("page", sa.String(200), nullable=True),
            sa.Column("user_agent", sa.String(500), nullable=True),
            sa.Column("metadata_json", sa.Text(), nullable=True),
            sa.Column("status", sa.String(32), nullable=False, server_default="new"),
            sa.Column("admin_notes", sa.Text(), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
            sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        )
        op.create_index("idx_feedbacks_status", "feedbacks", ["status"])
        op.create_index("idx_feedbacks_type", "feedbacks", ["type"])
        op.create_index("idx_feedbacks_created_at", "feedbacks", ["created_at"])

    if "reports" not in existing_tables:
        op.create_table(
            "reports",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("reporter_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
            sa.Column("photo_id", sa.Integer(), sa.ForeignKey("photos.id", ondelete="SET NULL"), nullable=True),
            sa.Column("photo_url", sa.String(1024), nullable=True),
            sa.Column("reason", sa.String(32), nullable=False),
            sa.Column("details", sa.Text(), nullable=True),
            sa.Column("reporter_ip", sa.String(64), nullable=True),
            sa.Column("status", sa.String(32), nullable=False, server_default="pending"),
            sa.Column(
                "reviewed_by_user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True
            ),
            sa.Column("reviewed_at", sa.DateTime(), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        )
        op.create_index("idx_reports_reporter_created", "reports", ["reporter_id", "created_at"])
        op.create_index("idx_reports_status", "reports", ["status"])


def downgrade() -> None:
    for table in (
        "reports",
        "feedbacks",
        "collection_items",
        "collections",
        "favorites",
        "photos",
        "verification_tokens",
        "banned_ips",
        "audit_events",
        "role_permissions",
        "user_roles",
        "permissions",
        "roles",
        "users",
    ):
        op.drop_table(table)
