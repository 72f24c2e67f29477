"""Order — a customer order scheduled for fulfilment in a shift.

Orders are written by the ordering service; this service only reads
them. Line items are stored as a JSON list:

    [{"item_id": "...", "name": "Carrot", "quantity_kg": 3.0, "units": null}, ...]

A line is sold by weight when quantity_kg is set and positive,
otherwise by unit count.
"""

import uuid
from datetime import date, datetime

from sqlalchemy import Date, DateTime, ForeignKey, Index, JSON, String
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base, utcnow


class Order(Base):
    __tablename__ = "orders"
    __table_args__ = (
        Index("ix_orders_shift_scope", "work_center_id", "shift_date", "shift_name"),
    )

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    work_center_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("work_centers.id"), nullable=False
    )
    shift_name: Mapped[str] = mapped_column(String(20), nullable=False)
    shift_date: Mapped[date] = mapped_column(Date, nullable=False)
    customer_id: Mapped[str | None] = mapped_column(String(36), index=True)
    items: Mapped[list] = mapped_column(JSON, default=list)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    @property
    def item_ids(self) -> set[str]:
        return {str(line["item_id"]) for line in (self.items or []) if line.get("item_id")}
