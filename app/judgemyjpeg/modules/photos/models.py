from __future__ import annotations

from datetime import datetime

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.judgemyjpeg.models import Base
from app.judgemyjpeg.utils import utcnow


class Photo(Base):
    __tablename__ = "photos"
    __table_args__ = (
        Index("idx_photos_user_created", "user_id", "created_at"),
        Index("idx_photos_score", "score"),
        Index("idx_photos_sha256", "sha256"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)

    # Stored object
    storage_key: Mapped[str] = mapped_column(String(512), nullable=False)
    filename: Mapped[str] = mapped_column(String(255), nullable=False)
    content_type: Mapped[str] = mapped_column(String(128), nullable=False)
    sha256: Mapped[str] = mapped_column(String(64), nullable=False)
    size_bytes: Mapped[int] = mapped_column(Integer, nullable=False)
    width: Mapped[int | None] = mapped_column(Integer, nullable=True)
    height: Mapped[int | None] = mapped_column(Integer, nullable=True)

    # Analysis
    score: Mapped[int] = mapped_column(Integer, nullable=False, default=0)  # 0-100
    potential_score: Mapped[int | None] = mapped_column(Integer, nullable=True)
    tone: Mapped[str] = mapped_column(String(32), nullable=False, default="professional")
    language: Mapped[str] = mapped_column(String(8), nullable=False, default="fr")
    analysis_json: Mapped[str] = mapped_column(Text, nullable=False)  # normalized analyzer payload
    is_top_photo: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)

    favorites: Mapped[list["Favorite"]] = relationship(
        "Favorite",
        back_populates="photo",
        cascade="all, delete-orphan",
        lazy="selectin",
    )


class Favorite(Base):
    __tablename__ = "favorites"
    __table_args__ = (
        UniqueConstraint("user_id", "photo_id", name="uq_favorites_user_photo"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    photo_id: Mapped[int] = mapped_column(ForeignKey("photos.id", ondelete="CASCADE"), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)

    photo: Mapped[Photo] = relationship("Photo", back_populates="favorites")
