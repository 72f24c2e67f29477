"""WorkCenter — a physical fulfilment site, and its shift windows.

Each work center runs up to four named shifts per day. A ShiftConfig
row stores the window as minutes from local midnight; windows that
end before they start wrap past midnight (e.g. night 22:00 → 06:00).
"""

import uuid
from datetime import datetime

from sqlalchemy import (
    Boolean, CheckConstraint, DateTime, ForeignKey,
    Integer, String, UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.database import Base, utcnow

SHIFT_NAMES = ("morning", "afternoon", "evening", "night")

MINUTES_PER_DAY = 24 * 60


class WorkCenter(Base):
    __tablename__ = "work_centers"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    code: Mapped[str] = mapped_column(String(50), unique=True, nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    # IANA zone name; null falls back to settings.default_timezone
    timezone: Mapped[str | None] = mapped_column(String(64))
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    shifts = relationship(
        "ShiftConfig", back_populates="work_center", lazy="selectin",
        order_by="ShiftConfig.start_min",
    )


class ShiftConfig(Base):
    __tablename__ = "shift_configs"
    __table_args__ = (
        UniqueConstraint("work_center_id", "name", name="uq_shift_config_name"),
        CheckConstraint(
            f"start_min >= 0 AND start_min < {MINUTES_PER_DAY} "
            f"AND end_min >= 0 AND end_min <= {MINUTES_PER_DAY}",
            name="ck_shift_config_window",
        ),
    )

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    work_center_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("work_centers.id"), nullable=False, index=True
    )
    # morning | afternoon | evening | night
    name: Mapped[str] = mapped_column(String(20), nullable=False)
    start_min: Mapped[int] = mapped_column(Integer, nullable=False)
    end_min: Mapped[int] = mapped_column(Integer, nullable=False)

    work_center = relationship("WorkCenter", back_populates="shifts")
