"""PackageSize — a container type pickers pack orders into.

Usable volume is either stored directly or derived from the inner
dimensions minus headroom. Keys (Small, Medium, Large, ...) are
ordered by size, not alphabetically; see ContainerCatalog in
app.services.packing.
"""

import uuid
from datetime import datetime

from sqlalchemy import Boolean, CheckConstraint, DateTime, Float, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base, utcnow


class PackageSize(Base):
    __tablename__ = "package_sizes"
    __table_args__ = (
        CheckConstraint(
            "headroom_pct >= 0 AND headroom_pct <= 0.9",
            name="ck_package_size_headroom",
        ),
    )

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    key: Mapped[str] = mapped_column(String(50), unique=True, nullable=False)
    name: Mapped[str] = mapped_column(String(100), nullable=False)

    # ── Dimensions (cm) ──────────────────────────────────────
    inner_length_cm: Mapped[float] = mapped_column(Float, nullable=False)
    inner_width_cm: Mapped[float] = mapped_column(Float, nullable=False)
    inner_height_cm: Mapped[float] = mapped_column(Float, nullable=False)
    headroom_pct: Mapped[float] = mapped_column(Float, default=0.1)
    # Null → derived from dimensions and headroom
    usable_liters: Mapped[float | None] = mapped_column(Float)

    # ── Limits ───────────────────────────────────────────────
    max_weight_kg: Mapped[float] = mapped_column(Float, nullable=False)
    vented: Mapped[bool] = mapped_column(Boolean, default=False)
    max_skus_per_box: Mapped[int | None] = mapped_column(Integer)
    mixing_allowed: Mapped[bool] = mapped_column(Boolean, default=True)

    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
