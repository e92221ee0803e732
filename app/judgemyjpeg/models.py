from __future__ import annotations

from datetime import datetime

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from app.judgemyjpeg.utils import utcnow


class Base(DeclarativeBase):
    pass


class UserRole(Base):
    __tablename__ = "user_roles"
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), primary_key=True)
    role_id: Mapped[int] = mapped_column(ForeignKey("roles.id", ondelete="CASCADE"), primary_key=True)


class RolePermission(Base):
    __tablename__ = "role_permissions"
    role_id: Mapped[int] = mapped_column(ForeignKey("roles.id", ondelete="CASCADE"), primary_key=True)
    permission_id: Mapped[int] = mapped_column(ForeignKey("permissions.id", ondelete="CASCADE"), primary_key=True)


class User(Base):
    __tablename__ = "users"
    __table_args__ = (
        Index("idx_users_subscription_status", "subscription_status"),
        Index("idx_users_created_at", "created_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    email: Mapped[str] = mapped_column(String(320), nullable=False, unique=True)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    name: Mapped[str | None] = mapped_column(String(100), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)  # False = suspended
    email_verified_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)

    # Subscription
    subscription_status: Mapped[str] = mapped_column(String(16), nullable=False, default="free")  # free, premium, annual
    monthly_analysis_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_analysis_reset: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)
    current_period_end: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    billing_customer_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    billing_subscription_id: Mapped[str | None] = mapped_column(String(128), nullable=True)

    # Starter Pack (one-time purchase)
    starter_pack_purchased: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    starter_pack_activated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    starter_analysis_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    starter_shares_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    starter_exports_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # Manual premium granted from the back office (support gestures, partners)
    manual_premium_access: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    manual_premium_reason: Mapped[str | None] = mapped_column(String(512), nullable=True)
    manual_premium_granted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    manual_premium_granted_by: Mapped[str | None] = mapped_column(String(320), nullable=True)

    # Preferences
    preferred_language: Mapped[str] = mapped_column(String(8), nullable=False, default="fr")
    preferred_tone: Mapped[str] = mapped_column(String(32), nullable=False, default="professional")

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow, onupdate=utcnow)

    roles: Mapped[list["Role"]] = relationship(
        secondary="user_roles",
        back_populates="users",
        lazy="selectin",
    )


class Role(Base):
    __tablename__ = "roles"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    key: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)  # e.g. "admin"
    name: Mapped[str] = mapped_column(String(128), nullable=False)  # display name
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)

    users: Mapped[list[User]] = relationship(secondary="user_roles", back_populates="roles", lazy="selectin")
    permissions: Mapped[list["Permission"]] = relationship(
        secondary="role_permissions",
        back_populates="roles",
        lazy="selectin",
    )


class Permission(Base):
    __tablename__ = "permissions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    key: Mapped[str] = mapped_column(String(128), nullable=False, unique=True)  # e.g. "admin.view"
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)

    roles: Mapped[list[Role]] = relationship(secondary="role_permissions", back_populates="permissions", lazy="selectin")


class AuditEvent(Base):
    """
    Append-only audit trail event.
    Security-relevant events carry a risk level; high/critical ones are also logged at ERROR.
    """

    __tablename__ = "audit_events"
    __table_args__ = (
        UniqueConstraint("request_id", "id", name="uq_audit_request_id_id"),
        Index("idx_audit_events_created_at", "created_at"),
        Index("idx_audit_events_action", "action"),
        Index("idx_audit_events_risk_level", "risk_level"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)
    request_id: Mapped[str | None] = mapped_column(String(64), nullable=True)

    actor_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    actor_user_email: Mapped[str | None] = mapped_column(String(320), nullable=True)

    action: Mapped[str] = mapped_column(String(128), nullable=False)  # e.g. "login_failed"
    entity_type: Mapped[str | None] = mapped_column(String(128), nullable=True)  # e.g. "Photo"
    entity_id: Mapped[str | None] = mapped_column(String(128), nullable=True)  # string for flexibility (ip/int)

    reason: Mapped[str | None] = mapped_column(String(512), nullable=True)  # human description
    metadata_json: Mapped[str | None] = mapped_column(Text, nullable=True)  # small JSON string

    client_ip: Mapped[str | None] = mapped_column(String(64), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(String(500), nullable=True)
    risk_level: Mapped[str] = mapped_column(String(16), nullable=False, default="low")  # low, medium, high, critical
    success: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)


class BannedIP(Base):
    __tablename__ = "banned_ips"
    __table_args__ = (
        Index("idx_banned_ips_ip_active", "ip_address", "is_active"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    ip_address: Mapped[str] = mapped_column(String(64), nullable=False)
    reason: Mapped[str | None] = mapped_column(String(512), nullable=True)
    banned_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    banned_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)
    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)  # NULL = permanent
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    metadata_json: Mapped[str | None] = mapped_column(Text, nullable=True)


class VerificationToken(Base):
    __tablename__ = "verification_tokens"
    __table_args__ = (
        Index("idx_verification_tokens_user_purpose", "user_id", "purpose"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    token_hash: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)  # sha256 hex; raw token never stored
    purpose: Mapped[str] = mapped_column(String(32), nullable=False)  # email_verify, password_reset
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)
    used_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)


# Ensure module models are imported so Base.metadata includes their tables.
# (Kept at bottom to avoid circular imports.)
from app.judgemyjpeg.modules.photos.models import Favorite, Photo  # noqa: E402,F401
from app.judgemyjpeg.modules.collections.models import Collection, CollectionItem  # noqa: E402,F401
from app.judgemyjpeg.modules.feedback.models import Feedback  # noqa: E402,F401
from app.judgemyjpeg.modules.reports.models import Report  # noqa: E402,F401
