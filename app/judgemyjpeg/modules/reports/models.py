from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from app.judgemyjpeg.models import Base
from app.judgemyjpeg.utils import utcnow


class Report(Base):
    __tablename__ = "reports"
    __table_args__ = (
        Index("idx_reports_reporter_created", "reporter_id", "created_at"),
        Index("idx_reports_status", "status"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    reporter_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    photo_id: Mapped[int | None] = mapped_column(ForeignKey("photos.id", ondelete="SET NULL"), nullable=True)
    photo_url: Mapped[str | None] = mapped_column(String(1024), nullable=True)

    reason: Mapped[str] = mapped_column(String(32), nullable=False)  # nudity, violence, hate, ...
    details: Mapped[str | None] = mapped_column(Text, nullable=True)
    reporter_ip: Mapped[str | None] = mapped_column(String(64), nullable=True)

    status: Mapped[str] = mapped_column(String(32), nullable=False, default="pending")  # pending, reviewed, dismissed, actioned
    reviewed_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    reviewed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)
