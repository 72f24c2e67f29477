"""Shift scope resolution.

A shift scope is (work center, shift name, shift date). Scopes come
either from the caller (explicit name + yyyy-mm-dd date) or from the
clock: the current shift is the configured window containing "now"
in the work center's local timezone.

Windows that wrap midnight (start > end) belong to the day they
started on, so at 02:00 the night shift that began at 22:00 yesterday
resolves to yesterday's date.
"""

from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.config import settings
from app.middleware.exceptions import InvalidScopeError
from app.models.work_center import SHIFT_NAMES, ShiftConfig, WorkCenter


@dataclass(frozen=True)
class ShiftScope:
    work_center_id: str
    shift_name: str
    shift_date: date
    timezone: str | None = None


def validate_shift_name(shift_name: str) -> str:
    name = (shift_name or "").strip().lower()
    if name not in SHIFT_NAMES:
        raise InvalidScopeError(
            f"Unknown shift name {shift_name!r}; expected one of {', '.join(SHIFT_NAMES)}"
        )
    return name


def parse_shift_date(value: str | date) -> date:
    if isinstance(value, date):
        return value
    try:
        return datetime.strptime(value, "%Y-%m-%d").date()
    except (TypeError, ValueError):
        raise InvalidScopeError(f"Invalid shift date {value!r}; expected yyyy-mm-dd")


async def get_work_center(db: AsyncSession, work_center_id: str | None) -> WorkCenter:
    work_center = None
    if work_center_id:
        result = await db.execute(
            select(WorkCenter)
            .where(WorkCenter.id == work_center_id)
            .options(selectinload(WorkCenter.shifts))
            .execution_options(populate_existing=True)
        )
        work_center = result.scalar_one_or_none()
    if work_center is None or not work_center.is_active:
        raise InvalidScopeError(f"Unknown work center {work_center_id!r}")
    return work_center


def work_center_zone(work_center: WorkCenter) -> ZoneInfo:
    try:
        return ZoneInfo(work_center.timezone or settings.default_timezone)
    except ZoneInfoNotFoundError:
        return ZoneInfo(settings.default_timezone)


def is_now_in_shift(minute_of_day: int, start_min: int, end_min: int) -> bool:
    if start_min <= end_min:
        return start_min <= minute_of_day < end_min
    return minute_of_day >= start_min or minute_of_day < end_min


def current_shift_for(
    work_center: WorkCenter, now: datetime | None = None
) -> ShiftScope | None:
    """Pure part of resolve_current_shift, given loaded shift configs."""
    now = now or datetime.now(timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    zone = work_center_zone(work_center)
    local = now.astimezone(zone)
    minute = local.hour * 60 + local.minute

    shift: ShiftConfig
    for shift in work_center.shifts:
        if not is_now_in_shift(minute, shift.start_min, shift.end_min):
            continue
        shift_date = local.date()
        if shift.start_min > shift.end_min and minute < shift.end_min:
            shift_date -= timedelta(days=1)
        return ShiftScope(
            work_center_id=work_center.id,
            shift_name=shift.name,
            shift_date=shift_date,
            timezone=zone.key,
        )
    return None


async def resolve_current_shift(
    db: AsyncSession, work_center_id: str, now: datetime | None = None
) -> ShiftScope | None:
    work_center = await get_work_center(db, work_center_id)
    return current_shift_for(work_center, now)


async def resolve_shift_scope(
    db: AsyncSession,
    work_center_id: str,
    shift_name: str | None = None,
    shift_date: str | date | None = None,
    now: datetime | None = None,
) -> ShiftScope | None:
    """Explicit scope when both parts are given, else the current shift."""
    if shift_name and shift_date:
        name = validate_shift_name(shift_name)
        parsed = parse_shift_date(shift_date)
        await get_work_center(db, work_center_id)
        return ShiftScope(work_center_id, name, parsed)
    if shift_name or shift_date:
        raise InvalidScopeError("shift_name and shift_date must be given together")
    return await resolve_current_shift(db, work_center_id, now)
