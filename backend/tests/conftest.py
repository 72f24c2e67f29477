"""Pytest configuration and fixtures for PickPack tests.

Every test gets its own SQLite database file (via aiosqlite), so
separate sessions really are separate connections and concurrent
generators / claimers race on the same conditional writes the service
issues against PostgreSQL.
"""

from datetime import date, datetime, timedelta, timezone
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

import app.models  # noqa: F401
from app.database import Base, get_db, utcnow
from app.main import app
from app.models.item import Item, ItemPacking
from app.models.order import Order
from app.models.package_size import PackageSize
from app.models.picker_task import PickerTask
from app.models.user import User, UserRole
from app.models.work_center import ShiftConfig, WorkCenter

SHIFT_DATE = date(2025, 3, 10)
# 10:00 UTC on SHIFT_DATE is inside the morning shift of the UTC work center
MORNING_NOW = datetime(2025, 3, 10, 10, 0, tzinfo=timezone.utc)

WORK_CENTER_ID = "wc-north"
SUPERVISOR_ID = "user-supervisor"
PICKER_IDS = [f"user-picker-{i}" for i in range(1, 6)]


# ── Test Database Setup ──────────────────────────────────────────

@pytest_asyncio.fixture
async def test_engine(tmp_path):
    """Per-test SQLite engine with every table created."""
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'pickpack_test.db'}",
        connect_args={"timeout": 30},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(test_engine) -> async_sessionmaker:
    return async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def client(session_factory) -> AsyncGenerator[AsyncClient, None]:
    """Test client whose get_db commits per request, like production."""

    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db

    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://test"
    ) as client:
        yield client

    app.dependency_overrides.clear()


# ── Test Data Fixtures ───────────────────────────────────────────

@pytest_asyncio.fixture
async def work_center(db_session: AsyncSession) -> WorkCenter:
    """UTC work center with morning / afternoon / night covering the whole day."""
    wc = WorkCenter(
        id=WORK_CENTER_ID,
        code="NORTH",
        name="North Fulfilment",
        timezone="UTC",
        shifts=[
            ShiftConfig(name="morning", start_min=6 * 60, end_min=14 * 60),
            ShiftConfig(name="afternoon", start_min=14 * 60, end_min=22 * 60),
            ShiftConfig(name="night", start_min=22 * 60, end_min=6 * 60),
        ],
    )
    db_session.add(wc)
    await db_session.commit()
    return wc


@pytest_asyncio.fixture
async def users(db_session: AsyncSession, work_center: WorkCenter) -> dict[str, User]:
    people = [
        User(
            id=SUPERVISOR_ID,
            email="supervisor@example.com",
            full_name="Dana Supervisor",
            role=UserRole.SUPERVISOR,
            work_center_id=work_center.id,
        )
    ] + [
        User(
            id=picker_id,
            email=f"{picker_id}@example.com",
            full_name=f"Picker {i}",
            role=UserRole.PICKER,
            work_center_id=work_center.id,
        )
        for i, picker_id in enumerate(PICKER_IDS, start=1)
    ]
    db_session.add_all(people)
    await db_session.commit()
    return {user.id: user for user in people}


@pytest_asyncio.fixture
async def package_sizes(db_session: AsyncSession) -> list[PackageSize]:
    sizes = [
        PackageSize(
            key="Small", name="Small crate",
            inner_length_cm=30, inner_width_cm=20, inner_height_cm=20, headroom_pct=0.1,
            usable_liters=10, max_weight_kg=5, vented=True,
        ),
        PackageSize(
            key="Medium", name="Medium crate",
            inner_length_cm=40, inner_width_cm=30, inner_height_cm=20, headroom_pct=0.1,
            usable_liters=20, max_weight_kg=10, vented=True,
        ),
        PackageSize(
            key="Large", name="Large carton",
            inner_length_cm=60, inner_width_cm=40, inner_height_cm=20, headroom_pct=0.1,
            usable_liters=40, max_weight_kg=18, vented=False,
        ),
    ]
    db_session.add_all(sizes)
    await db_session.commit()
    return sizes


@pytest_asyncio.fixture
async def catalog_items(db_session: AsyncSession) -> dict[str, Item]:
    items = [
        Item(id="carrot-1", name="Carrot", category="vegetable", type="Carrot"),
        Item(id="lettuce-1", name="Romaine Lettuce", category="vegetable", type="Lettuce"),
        Item(id="strawberry-1", name="Strawberries", category="fruit", type="Strawberry"),
        Item(id="tomato-1", name="Cherry Tomato", category="vegetable", type="Tomato"),
        Item(id="eggs-1", name="Free-range Eggs", category="dairy", type="Eggs",
             avg_weight_per_unit_gr=60),
        Item(id="apple-1", name="Gala Apple", category="fruit", type="Apple",
             avg_weight_per_unit_gr=150),
    ]
    db_session.add_all(items)
    db_session.add(ItemPacking(item_id="tomato-1", max_kg_per_bag=1.0))
    await db_session.commit()
    return {item.id: item for item in items}


@pytest_asyncio.fixture
async def seeded(work_center, users, package_sizes, catalog_items):
    """Work center, people, containers and catalog, ready for orders."""
    return {
        "work_center": work_center,
        "users": users,
        "package_sizes": package_sizes,
        "items": catalog_items,
    }


# ── Builders ─────────────────────────────────────────────────────

async def make_order(
    db: AsyncSession,
    order_id: str,
    lines: list[dict],
    *,
    shift_name: str = "morning",
    shift_date: date = SHIFT_DATE,
    work_center_id: str = WORK_CENTER_ID,
    created_at: datetime | None = None,
) -> Order:
    order = Order(
        id=order_id,
        work_center_id=work_center_id,
        shift_name=shift_name,
        shift_date=shift_date,
        customer_id=f"customer-{order_id}",
        items=lines,
        created_at=created_at or utcnow(),
    )
    db.add(order)
    await db.commit()
    return order


async def make_task(
    db: AsyncSession,
    order_id: str,
    *,
    status: str = "ready",
    priority: int = 0,
    created_at: datetime | None = None,
    assigned_picker_id: str | None = None,
    shift_name: str = "morning",
    shift_date: date = SHIFT_DATE,
    work_center_id: str = WORK_CENTER_ID,
) -> PickerTask:
    """Insert an order and a task with a one-box plan directly."""
    await make_order(
        db, order_id, [{"item_id": "carrot-1", "quantity_kg": 3}],
        shift_name=shift_name, shift_date=shift_date, work_center_id=work_center_id,
    )
    task = PickerTask(
        work_center_id=work_center_id,
        shift_name=shift_name,
        shift_date=shift_date,
        order_id=order_id,
        plan={
            "boxes": [{
                "box_no": 1, "box_type": "Medium", "vented": True,
                "est_fill_liters": 3.95, "est_weight_kg": 3.0, "fill_pct": 19.8,
                "contents": [{
                    "item_id": "carrot-1", "item_name": "Carrot", "piece_type": "bag",
                    "mode": "kg", "qty_kg": 3.0, "units": None, "liters": 3.95,
                    "est_weight_kg": 3.0, "fragility": "sturdy",
                }],
            }],
            "summary": {"total_boxes": 1, "by_item": {}, "warnings": [],
                        "total_kg": 3.0, "total_liters": 3.95},
        },
        status=status,
        priority=priority,
        assigned_picker_id=assigned_picker_id,
        history_audit_trail=[],
        created_at=created_at or utcnow(),
    )
    db.add(task)
    await db.commit()
    return task


def minutes_after(base: datetime, minutes: int) -> datetime:
    return base + timedelta(minutes=minutes)


# ── Test Markers ─────────────────────────────────────────────────

def pytest_configure(config):
    """Configure custom markers."""
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "integration: Integration tests")
    config.addinivalue_line("markers", "api: HTTP API tests")
    config.addinivalue_line("markers", "concurrency: Concurrent session tests")
