"""Tests for catalog segment loads and ORM change notifications."""

from decimal import Decimal

import pytest
import pytest_asyncio
from sqlalchemy import delete

from barback.core.catalog import CatalogChangeFeed, CatalogEntry, CatalogLoader, get_catalog_item
from barback.core.catalog_cache import CatalogCache
from barback.models.catalog_item import CatalogItem
from barback.models.enums import ShelfTier
from tests.factories import CatalogItemFactory


@pytest_asyncio.fixture
async def feed():
    feed = CatalogChangeFeed()
    feed.install()
    yield feed
    feed.uninstall()


class TestCatalogLoader:
    @pytest.mark.asyncio
    async def test_spirits_ordered_by_price_desc(self, session_factory, catalog):
        entries = await CatalogLoader(session_factory)("spirits")

        assert [e.id for e in entries] == ["macallan-30", "pappy-23", "hendricks", "buffalo-trace"]
        assert all(isinstance(e, CatalogEntry) for e in entries)

    @pytest.mark.asyncio
    async def test_cocktails_ordered_by_rating_desc(self, session_factory, catalog):
        entries = await CatalogLoader(session_factory)("cocktails")

        assert [e.id for e in entries] == ["old-fashioned", "negroni"]

    @pytest.mark.asyncio
    async def test_unavailable_items_excluded(self, session_factory, db_session, catalog):
        await CatalogItemFactory.create(
            db_session, id="sold-out", segment="beers", name="Seasonal", is_available=False
        )
        entries = await CatalogLoader(session_factory)("beers")

        assert [e.id for e in entries] == ["guinness"]

    @pytest.mark.asyncio
    async def test_spirits_segment_is_capped(self, session_factory, db_session):
        for n in range(17):
            await CatalogItemFactory.create(db_session, id=f"spirit-{n:02d}", price=f"{n + 1}.00")
        entries = await CatalogLoader(session_factory)("spirits")

        assert len(entries) == 15
        assert entries[0].id == "spirit-16"

    @pytest.mark.asyncio
    async def test_entry_snapshot_fields(self, session_factory, catalog):
        entries = await CatalogLoader(session_factory)("spirits")
        pappy = next(e for e in entries if e.id == "pappy-23")

        assert pappy.display_name == "Pappy Van Winkle 23 Year"
        assert pappy.is_restricted is True
        assert pappy.price == Decimal("3500.00")
        assert pappy.age == 23

    @pytest.mark.asyncio
    async def test_direct_item_lookup(self, db_session, catalog):
        item = await get_catalog_item(db_session, "pappy-23")

        assert item is not None
        assert item.shelf_tier == ShelfTier.ULTRA.value
        assert await get_catalog_item(db_session, "missing") is None


class TestCatalogChangeFeed:
    @pytest.mark.asyncio
    async def test_commit_notifies_segment(self, feed, db_session):
        seen = []
        feed.subscribe("wines", seen.append)

        await CatalogItemFactory.create(db_session, id="barolo", segment="wines", name="Barolo")

        assert seen == ["wines"]

    @pytest.mark.asyncio
    async def test_rollback_notifies_nothing(self, feed, db_session):
        seen = []
        feed.subscribe("beers", seen.append)

        db_session.add(CatalogItem(id="ghost", segment="beers", name="Ghost Ale"))
        await db_session.flush()
        await db_session.rollback()

        assert seen == []

    @pytest.mark.asyncio
    async def test_segment_move_notifies_both_segments(self, feed, db_session, catalog):
        seen = []
        feed.subscribe("mocktails", seen.append)
        feed.subscribe("non_alcoholic", seen.append)

        item = await db_session.get(CatalogItem, "virgin-mojito")
        item.segment = "non_alcoholic"
        await db_session.commit()

        assert sorted(seen) == ["mocktails", "non_alcoholic"]

    @pytest.mark.asyncio
    async def test_delete_notifies_segment(self, feed, db_session, catalog):
        seen = []
        feed.subscribe("beers", seen.append)

        item = await db_session.get(CatalogItem, "guinness")
        await db_session.delete(item)
        await db_session.commit()

        assert seen == ["beers"]

    @pytest.mark.asyncio
    async def test_bulk_statement_is_invisible(self, feed, db_session, catalog):
        seen = []
        feed.subscribe("beers", seen.append)

        await db_session.execute(delete(CatalogItem).where(CatalogItem.segment == "beers"))
        await db_session.commit()

        assert seen == []

    @pytest.mark.asyncio
    async def test_failing_subscriber_does_not_block_others(self, feed, db_session):
        seen = []

        def broken(segment):
            raise RuntimeError("subscriber bug")

        feed.subscribe("beers", broken)
        feed.subscribe("beers", seen.append)
        await CatalogItemFactory.create(db_session, id="pils", segment="beers", name="Pils")

        assert seen == ["beers"]

    @pytest.mark.asyncio
    async def test_unsubscribe(self, feed, db_session):
        seen = []
        unsubscribe = feed.subscribe("beers", seen.append)
        unsubscribe()
        unsubscribe()

        await CatalogItemFactory.create(db_session, id="porter", segment="beers", name="Porter")

        assert seen == []

    def test_subscribe_requires_install(self):
        with pytest.raises(RuntimeError):
            CatalogChangeFeed().subscribe("beers", lambda segment: None)

    @pytest.mark.asyncio
    async def test_cache_sees_committed_write_before_ttl(
        self, feed, session_factory, db_session, catalog, clock
    ):
        cache = CatalogCache(CatalogLoader(session_factory), ["cocktails"], clock=clock)
        cache.attach_change_feed(feed)
        assert [e.id for e in await cache.get("cocktails")] == ["old-fashioned", "negroni"]

        await CatalogItemFactory.create(
            db_session, id="paper-plane", segment="cocktails", name="Paper Plane", rating=4.95
        )

        assert [e.id for e in await cache.get("cocktails")][0] == "paper-plane"
        await cache.close()


class TestDemoSeed:
    @pytest.mark.asyncio
    async def test_seed_is_idempotent(self, session_factory):
        from barback.scripts.seed import CATALOG, seed_catalog

        async with session_factory() as db:
            assert await seed_catalog(db) == len(CATALOG)
            await db.commit()
            assert await seed_catalog(db) == 0

        entries = await CatalogLoader(session_factory)("spirits")
        restricted = {e.id for e in entries if e.is_restricted}
        assert restricted == {"pappy-23", "macallan-30", "louis-xiii"}
