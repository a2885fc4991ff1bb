"""Catalog seed script for local development.

Inserts the launch catalog if the games are missing. It is idempotent and
safe to run on every container start.
"""

import asyncio
import logging
from sqlalchemy import select

from app.database import AsyncSessionLocal
from app.models.game import Game

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

LAUNCH_CATALOG = [
    {
        "id": "game-bubbles-tiktok",
        "slug": "bubbles-tiktok",
        "title": "Bubbles TikTok",
        "price_cents": 2490,
        "lifetime_price_cents": None,
        "rental_duration_days": 30,
        "is_lifetime_available": False,
        "status": "available",
    },
    {
        "id": "game-saturn-plinko",
        "slug": "saturn-plinko",
        "title": "Saturn Plinko",
        "price_cents": 0,
        "lifetime_price_cents": None,
        "rental_duration_days": 30,
        "is_lifetime_available": False,
        "status": "coming_soon",
    },
    {
        "id": "game-saturn-cleaner",
        "slug": "saturn-cleaner",
        "title": "Saturn Cleaner",
        "price_cents": 0,
        "lifetime_price_cents": None,
        "rental_duration_days": 30,
        "is_lifetime_available": False,
        "status": "coming_soon",
    },
]


async def seed_games():
    """Create catalog entries that don't exist yet."""
    async with AsyncSessionLocal() as session:
        created = 0
        for entry in LAUNCH_CATALOG:
            result = await session.execute(select(Game).where(Game.id == entry["id"]))
            if result.scalar_one_or_none():
                logger.info(f"Game {entry['slug']} already exists, skipping")
                continue

            session.add(Game(**entry))
            created += 1

        await session.commit()
        logger.info(f"Seeded {created} games")


def main():
    """Entry point for the seed script."""
    asyncio.run(seed_games())


if __name__ == "__main__":
    main()
