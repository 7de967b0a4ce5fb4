"""Send subscription expiry reminders (3 days, 1 day, expired).

Schedule once a day, e.g. from cron:
    docker compose exec backend python -m scripts.check_subscription_expiry
"""

import asyncio
import sys
from pathlib import Path

# Add backend to path so imports work when run as a script
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from app.database import engine, session_scope
from app.notifications.dispatcher import dispatcher
from app.notifications.scheduled import check_subscription_expiry


async def main() -> None:
    async with session_scope() as db:
        processed = await check_subscription_expiry(db)
    # E-mails are dispatched in the background; wait for them before exiting.
    await dispatcher.drain()
    await engine.dispose()
    print(f"Processed {processed} subscription notifications")


if __name__ == "__main__":
    asyncio.run(main())
