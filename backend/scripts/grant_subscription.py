"""Grant a user a free subscription for a number of months.

    docker compose exec backend python -m scripts.grant_subscription \
        --user-id 4b0c... --plan family --months 6 --admin-id admin@budget-ch.ch
"""

import argparse
import asyncio
import sys
import uuid
from pathlib import Path

# Add backend to path so imports work when run as a script
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from app.billing.plans import VALID_PLAN_NAMES
from app.database import engine, session_scope
from app.services.subscription_grant import grant_subscription


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument("--user-id", type=uuid.UUID, required=True)
    parser.add_argument("--plan", choices=sorted(VALID_PLAN_NAMES), required=True)
    parser.add_argument("--months", type=int, required=True)
    parser.add_argument("--admin-id", required=True)
    return parser.parse_args(argv)


async def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    async with session_scope() as db:
        result = await grant_subscription(
            db,
            user_id=args.user_id,
            plan=args.plan,
            months=args.months,
            admin_id=args.admin_id,
        )
    await engine.dispose()
    print(result.message)
    return 0 if result.success else 1


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
