"""Pytest configuration and shared fixtures."""

from decimal import Decimal
from typing import Dict, Iterable, Optional
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio
from playwright.async_api import Error as PlaywrightError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from seek.db.seed import seed_retailers
from seek.models import Base, Retailer
from seek.models.enums import Availability
from seek.scrapers.base import ScrapedProduct
from seek.scrapers.utils.rate_limiter import AdaptiveDelay
from seek.services.alert_system import AlertSystem
from seek.services.product_classifier import ProductClassifier


@pytest.fixture
def anyio_backend():
    """Use asyncio as the async backend for tests."""
    return "asyncio"


# ============================================================================
# DATABASE
# ============================================================================

@pytest_asyncio.fixture
async def test_engine():
    """In-memory SQLite engine shared across sessions via StaticPool."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
        echo=False,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(test_engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def test_db(session_factory):
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def retailers(session_factory) -> Dict[str, Retailer]:
    """The two default retailers, keyed by slug."""
    async with session_factory() as db:
        await seed_retailers(db)
        result = await db.execute(select(Retailer))
        return {retailer.slug: retailer for retailer in result.scalars().all()}


@pytest.fixture
def smokingpipes(retailers) -> Retailer:
    return retailers["smokingpipes"]


@pytest.fixture
def countrysquire(retailers) -> Retailer:
    return retailers["countrysquire"]


# ============================================================================
# SERVICES
# ============================================================================

@pytest.fixture
def classifier() -> ProductClassifier:
    return ProductClassifier()


@pytest.fixture
def console_sink():
    sink = MagicMock()
    sink.handle = AsyncMock()
    return sink


@pytest.fixture
def alert_system(console_sink) -> AlertSystem:
    return AlertSystem(console_sink=console_sink)


@pytest.fixture
def no_delay() -> AdaptiveDelay:
    """Delay policy that never sleeps."""
    return AdaptiveDelay(0.0, jitter_ratio=0.0, sleep=AsyncMock())


# ============================================================================
# BROWSER FAKES
# ============================================================================

class FakeBrowserSession:
    """Stands in for BrowserSession: serves canned HTML per URL.

    URLs listed in ``failing`` raise a Playwright error on every goto.
    """

    def __init__(self, pages: Dict[str, str], failing: Iterable[str] = ()):
        self.pages = dict(pages)
        self.failing = set(failing)
        self.visited = []
        self.closed = False
        self._current: Optional[str] = None

        self.page = MagicMock()
        self.page.goto = AsyncMock(side_effect=self._goto)
        self.page.wait_for_selector = AsyncMock()
        self.page.content = AsyncMock(side_effect=self._content)

    async def _goto(self, url, **kwargs):
        self.visited.append(url)
        if url in self.failing:
            raise PlaywrightError(f"net::ERR_CONNECTION_RESET at {url}")
        self._current = url

    async def _content(self):
        return self.pages.get(self._current, "<html><body></body></html>")

    async def new_page(self):
        return self.page

    async def close(self):
        self.closed = True


@pytest.fixture
def fake_session_cls():
    return FakeBrowserSession


def make_scraped(
    name: str = "Esoterica Tobacco Penzance 50g",
    price: str = "12.50",
    url: str = "https://www.smokingpipes.com/tobacco/penzance",
    brand: Optional[str] = "Esoterica",
    availability: Availability = Availability.IN_STOCK,
    **kwargs,
) -> ScrapedProduct:
    return ScrapedProduct(
        name=name,
        price=Decimal(price),
        product_url=url,
        brand=brand,
        availability=availability,
        **kwargs,
    )


@pytest.fixture
def scraped_factory():
    return make_scraped
