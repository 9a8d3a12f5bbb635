"""
Create a manager or delivery partner account directly in the store.
Run: python -m orderdesk.seed --name "Partner 1" --email p1@example.com --password secret1 --role delivery_partner
"""
import argparse
import asyncio
import logging
import sys

from orderdesk.accounts import create_user
from orderdesk.errors import OrderDeskError
from orderdesk.models import Role
from orderdesk.store import close_store, get_store

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(message)s",
    stream=sys.stdout,
)
logger = logging.getLogger(__name__)


async def seed(name: str, email: str, password: str, role: Role) -> int:
    store = await get_store()
    try:
        user = await create_user(store, name, email, password, role)
    except OrderDeskError as e:
        logger.error("Could not create %s: %s", email, e.message)
        return 1
    finally:
        await close_store()
    logger.info("Created %s %s (id=%s)", role.value, user.email, user.id)
    return 0


def main() -> None:
    parser = argparse.ArgumentParser(description="Create an order desk user")
    parser.add_argument("--name", required=True)
    parser.add_argument("--email", required=True)
    parser.add_argument("--password", required=True)
    parser.add_argument("--role", choices=[r.value for r in Role], default=Role.DELIVERY_PARTNER.value)
    args = parser.parse_args()
    if len(args.password) < 6:
        parser.error("password must be at least 6 characters")
    sys.exit(asyncio.run(seed(args.name, args.email, args.password, Role(args.role))))


if __name__ == "__main__":
    main()
