"""Seed script for Barback demo catalog data."""

import asyncio
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from barback.core.db import Base, create_engine, create_session_factory
from barback.models import CatalogItem
from barback.models.enums import CatalogSegmentKey, ShelfTier

SPIRITS = CatalogSegmentKey.SPIRITS.value
COCKTAILS = CatalogSegmentKey.COCKTAILS.value
WINES = CatalogSegmentKey.WINES.value
BEERS = CatalogSegmentKey.BEERS.value
MOCKTAILS = CatalogSegmentKey.MOCKTAILS.value

# (id, segment, name, brand, type, sub_type, origin, age, price, rating, tier)
CATALOG = [
    ("pappy-23", SPIRITS, "Van Winkle Family Reserve 23 Year", "Pappy", "Whiskey", "Bourbon",
     "Kentucky", 23, "3500.00", 4.9, ShelfTier.ULTRA),
    ("blantons-gold", SPIRITS, "Gold Edition", "Blanton's", "Whiskey", "Bourbon",
     "Kentucky", None, "180.00", 4.7, ShelfTier.TOP),
    ("weller-12", SPIRITS, "12 Year", "Weller", "Whiskey", "Wheated Bourbon",
     "Kentucky", 12, "95.00", 4.5, ShelfTier.TOP),
    ("buffalo-trace", SPIRITS, "Kentucky Straight Bourbon", "Buffalo Trace", "Whiskey", "Bourbon",
     "Kentucky", None, "35.00", 4.3, ShelfTier.LOWER),
    ("macallan-30", SPIRITS, "30 Year Sherry Oak", "Macallan", "Whiskey", "Scotch",
     "Scotland", 30, "4200.00", 4.9, ShelfTier.ULTRA),
    ("lagavulin-16", SPIRITS, "16 Year", "Lagavulin", "Whiskey", "Scotch",
     "Scotland", 16, "120.00", 4.6, ShelfTier.TOP),
    ("hendricks", SPIRITS, "Gin", "Hendrick's", "Gin", "London Dry",
     "Scotland", None, "40.00", 4.4, ShelfTier.LOWER),
    ("clase-azul", SPIRITS, "Reposado", "Clase Azul", "Tequila", "Reposado",
     "Mexico", None, "160.00", 4.5, ShelfTier.TOP),
    ("louis-xiii", SPIRITS, "Louis XIII", "Rémy Martin", "Cognac", "Grande Champagne",
     "France", None, "4800.00", 4.9, ShelfTier.ULTRA),
    ("old-fashioned", COCKTAILS, "Old Fashioned", None, None, None,
     None, None, "16.00", 4.8, ShelfTier.LOWER),
    ("negroni", COCKTAILS, "Negroni", None, None, None,
     None, None, "15.00", 4.6, ShelfTier.LOWER),
    ("margarita", COCKTAILS, "Margarita", None, None, None,
     None, None, "14.00", 4.5, ShelfTier.LOWER),
    ("opus-one-2018", WINES, "Opus One 2018", "Opus One", "Red", "Cabernet Blend",
     "Napa Valley", None, "450.00", 4.8, ShelfTier.TOP),
    ("cloudy-bay-sb", WINES, "Sauvignon Blanc", "Cloudy Bay", "White", "Sauvignon Blanc",
     "New Zealand", None, "38.00", 4.4, ShelfTier.LOWER),
    ("guinness", BEERS, "Draught", "Guinness", "Stout", None,
     "Ireland", None, "8.00", 4.3, ShelfTier.LOWER),
    ("virgin-mojito", MOCKTAILS, "Virgin Mojito", None, None, None,
     None, None, "9.00", 4.2, ShelfTier.LOWER),
]


async def seed_catalog(db: AsyncSession) -> int:
    """Insert the demo catalog unless items already exist."""
    result = await db.execute(select(CatalogItem).limit(1))
    if result.scalar_one_or_none():
        print("ℹ️  Catalog already seeded, skipping...")
        return 0

    for item_id, segment, name, brand, type_, sub_type, origin, age, price, rating, tier in CATALOG:
        db.add(
            CatalogItem(
                id=item_id,
                segment=segment,
                name=name,
                brand=brand,
                type=type_,
                sub_type=sub_type,
                origin=origin,
                age=age,
                price=Decimal(price),
                rating=rating,
                shelf_tier=tier.value,
                is_available=True,
            )
        )
    await db.flush()
    print(f"✅ Created {len(CATALOG)} catalog items")
    return len(CATALOG)


async def main():
    """Run seed script."""
    print("🌱 Starting Barback seed script...\n")

    engine = create_engine()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    session_factory = create_session_factory(engine)
    async with session_factory() as db:
        created = await seed_catalog(db)
        await db.commit()
    await engine.dispose()

    ultra = sum(1 for row in CATALOG if row[-1] is ShelfTier.ULTRA)
    print("\n🎉 Seed complete!")
    print(f"   🥃 Items: {created}")
    print(f"   🔒 Ultra shelf: {ultra}")


if __name__ == "__main__":
    asyncio.run(main())
