import enum
import uuid
from datetime import datetime

from sqlalchemy import Boolean, DateTime, Enum as SAEnum, ForeignKey, String
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base, utcnow


class UserRole(str, enum.Enum):
    ADMINISTRATOR = "administrator"
    SUPERVISOR = "supervisor"
    PICKER = "picker"


class User(Base):
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    email: Mapped[str] = mapped_column(
        String(255), unique=True, nullable=False, index=True
    )
    full_name: Mapped[str] = mapped_column(String(255), nullable=False)
    role: Mapped[UserRole] = mapped_column(SAEnum(UserRole), default=UserRole.PICKER)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    # Home work center; pickers and supervisors act within it
    work_center_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("work_centers.id"), index=True
    )

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, onupdate=utcnow
    )
