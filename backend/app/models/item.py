"""Item catalog and per-item packing overrides.

Items are owned by the catalog service upstream; this service reads
them to classify produce and size bags. ItemPacking carries optional
per-item overrides layered on top of the classifier's defaults. Every
column is nullable: a null field means "use the default".
"""

import uuid
from datetime import datetime

from sqlalchemy import Boolean, DateTime, Float, ForeignKey, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base, utcnow


class Item(Base):
    __tablename__ = "items"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    # fruit | vegetable | leafy | herbs | dairy | bakery | ...
    category: Mapped[str | None] = mapped_column(String(50), index=True)
    type: Mapped[str | None] = mapped_column(String(100))
    variety: Mapped[str | None] = mapped_column(String(100))
    avg_weight_per_unit_gr: Mapped[float | None] = mapped_column(Float)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)


class ItemPacking(Base):
    __tablename__ = "item_packings"

    item_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("items.id"), primary_key=True
    )

    # ── Handling ─────────────────────────────────────────────
    # very_fragile | fragile | normal | sturdy
    fragility: Mapped[str | None] = mapped_column(String(20))
    allow_mixing: Mapped[bool | None] = mapped_column(Boolean)
    requires_vented_box: Mapped[bool | None] = mapped_column(Boolean)

    # ── Box limits ───────────────────────────────────────────
    min_box_type: Mapped[str | None] = mapped_column(String(50))
    max_weight_per_box_kg: Mapped[float | None] = mapped_column(Float)
    max_kg_per_bag: Mapped[float | None] = mapped_column(Float)

    # ── Volume estimation ────────────────────────────────────
    density_kg_per_l: Mapped[float | None] = mapped_column(Float)
    unit_vol_liters: Mapped[float | None] = mapped_column(Float)

    notes: Mapped[str | None] = mapped_column(Text)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, onupdate=utcnow
    )
