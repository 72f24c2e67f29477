"""Management CLI.

Usage:
    python -m app.cli init-db                                   # Create missing tables
    python -m app.cli generate <work_center_id> <shift> <date>  # Generate tasks once
"""

import asyncio
import sys

from app.config import settings
from app.database import Base, async_session, engine


async def init_db():
    import app.models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    print("Tables created.")


async def generate(work_center_id: str, shift_name: str, shift_date: str):
    from app.services.picker_tasks import generate_tasks_for_shift

    async with async_session() as db:
        outcome = await generate_tasks_for_shift(
            db, work_center_id, shift_name, shift_date, settings.system_actor_id
        )
        await db.commit()

    print(f"  Orders:    {outcome.orders_processed}")
    print(f"  Created:   {outcome.created_count}")
    print(f"  Existing:  {outcome.already_existed}")
    print(f"  Empty:     {outcome.skipped_empty}")
    print(f"  Ready:     {outcome.promoted_to_ready}")
    for failure in outcome.failed_orders:
        print(f"  FAILED {failure['order_id']}: {failure['error']}")


def main(argv: list[str]) -> int:
    cmd = argv[0] if argv else ""
    if cmd == "init-db":
        asyncio.run(init_db())
    elif cmd == "generate" and len(argv) == 4:
        asyncio.run(generate(argv[1], argv[2], argv[3]))
    else:
        print(__doc__)
        return 1
    return 0


def run():
    sys.exit(main(sys.argv[1:]))


if __name__ == "__main__":
    run()
