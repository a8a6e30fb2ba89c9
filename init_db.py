import asyncio
import os
import sys

from souq.config import DATABASE_URL
from souq.helpers import now_ts
from souq.infra.sql import make_async_engine
from souq.model.db import Base, Product, UserProfile

# Demo seller; use the id of a real Supabase user to log in as them
DEMO_SELLER_ID = os.environ.get("DEMO_SELLER_ID", "00000000-0000-0000-0000-000000000001")
DEMO_SELLER_NAME = "Souq Demo Store"

DEMO_PRODUCTS = [
    {"title": "Wireless Headphones", "price": 79.99, "category": "Electronics",
     "condition": "Like New",
     "description": "Over-ear, noise cancelling, 30h battery. Case included."},
    {"title": "Vintage Denim Jacket", "price": 45.00, "category": "Fashion",
     "condition": "Good", "description": "Classic cut, size M."},
    {"title": "Ceramic Table Lamp", "price": 32.50, "category": "Home",
     "condition": "New", "description": "Warm light, linen shade."},
    {"title": "Wooden Train Set", "price": 25.00, "category": "Toys",
     "condition": "Good", "description": "42 pieces, ages 3+."},
    {"title": "The Cairo Trilogy", "price": 18.75, "category": "Books",
     "condition": "Fair", "description": "Naguib Mahfouz, paperback box set."},
    {"title": "Road Bike Helmet", "price": 39.00, "category": "Sports",
     "condition": "New", "description": "Size L, never worn."},
    {"title": "Argan Oil Set", "price": 15.00, "category": "Beauty",
     "condition": "New", "description": "Three sealed bottles."},
    {"title": "Car Phone Mount", "price": 12.00, "category": "Automotive",
     "condition": "Used", "description": "Dashboard suction mount."},
]


async def create_schema(engine):
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    print('✅ schema created')


async def seed_demo_data(SessionAsync):
    async with SessionAsync() as db:
        if await db.get(UserProfile, DEMO_SELLER_ID) is None:
            db.add(UserProfile(id=DEMO_SELLER_ID, full_name=DEMO_SELLER_NAME))
        ts = now_ts()
        for i, item in enumerate(DEMO_PRODUCTS):
            db.add(Product(
                seller_id=DEMO_SELLER_ID,
                images=[],
                status="active",
                # newest first matches the list order above
                created_at=ts - i,
                updated_at=ts - i,
                **item,
            ))
        await db.commit()
    print(f'✅ {len(DEMO_PRODUCTS)} demo products listed')


async def main(seed: bool):
    engine, SessionAsync = make_async_engine(DATABASE_URL)
    try:
        await create_schema(engine)
        if seed:
            await seed_demo_data(SessionAsync)
    finally:
        await engine.dispose()


if __name__ == "__main__":
    asyncio.run(main(seed="--no-seed" not in sys.argv[1:]))
