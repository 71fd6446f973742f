"""Scraper orchestration service.

This service connects the scraper layer with the catalog. It handles the
end-to-end flow of a crawl: pick the scraper for a retailer, fetch pages
inside a scoped browser session, reconcile the results into the catalog and
record the run in the scrape_runs table.
"""

import asyncio
import random
import traceback
from decimal import Decimal
from typing import Awaitable, Callable, Dict, List, Optional, Sequence
from uuid import UUID

import structlog
from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import selectinload

from seek.config import settings
from seek.core.exceptions import ConfigurationError, NotFoundError
from seek.core.timeutils import utcnow
from seek.models.enums import PriorityTier
from seek.models.listing import RetailerListing
from seek.models.product import CatalogProduct
from seek.models.retailer import Retailer
from seek.models.scrape_run import ScrapeRun
from seek.scrapers.base import BaseScraper
from seek.scrapers.factory import ScraperFactory
from seek.services.alert_system import AlertSystem
from seek.services.catalog_reconciler import PRICE_QUANTUM, CatalogReconciler, ReconcileReport
from seek.services.product_classifier import ProductClassifier

logger = structlog.get_logger(__name__)

MAX_TRACKED_PRODUCTS = 100


class ScraperService:
    """Runs retailer crawls and single-product re-checks against the catalog."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        classifier: ProductClassifier,
        alert_system: AlertSystem,
        scraper_factory: Optional[ScraperFactory] = None,
        specific_product_limit: int = settings.SPECIFIC_PRODUCT_LIMIT,
        rng: Optional[random.Random] = None,
        sleep: Callable[[float], Awaitable] = asyncio.sleep,
    ):
        """Initialize scraper service.

        Args:
            session_factory: Async session factory for catalog access
            classifier: Demand classifier shared with the scheduler
            alert_system: Alert engine notified by the reconciler
            scraper_factory: Retailer -> scraper registry
            specific_product_limit: Max products re-checked per limited-release run
            rng: Random source for the inter-request delay
            sleep: Awaitable sleep (tests inject a no-op)
        """
        self.session_factory = session_factory
        self.classifier = classifier
        self.alert_system = alert_system
        self.scraper_factory = scraper_factory or ScraperFactory()
        self.specific_product_limit = specific_product_limit
        self._rng = rng or random.Random()
        self._sleep = sleep
        self.logger = logger.bind(service="scraper_service")

    # ------------------------------------------------------------------
    # Retailer lookup
    # ------------------------------------------------------------------

    async def find_retailer(self, name_or_slug: str) -> Optional[Retailer]:
        """Find a retailer by exact slug, falling back to a name substring."""
        needle = name_or_slug.strip().lower()
        async with self.session_factory() as db:
            result = await db.execute(
                select(Retailer)
                .where(or_(Retailer.slug == needle, func.lower(Retailer.name).contains(needle)))
                .order_by(Retailer.slug != needle, Retailer.name)
                .limit(1)
            )
            return result.scalar_one_or_none()

    async def get_retailer(self, retailer_id: UUID) -> Optional[Retailer]:
        async with self.session_factory() as db:
            return await db.get(Retailer, retailer_id)

    async def get_active_retailers(self) -> List[Retailer]:
        async with self.session_factory() as db:
            result = await db.execute(
                select(Retailer).where(Retailer.is_active.is_(True)).order_by(Retailer.name)
            )
            return list(result.scalars().all())

    def _create_scraper(self, retailer: Retailer) -> BaseScraper:
        scraper = self.scraper_factory.create_scraper(retailer)
        if scraper is None:
            raise ConfigurationError(f"No scraper registered for retailer: {retailer.name}")
        return scraper

    # ------------------------------------------------------------------
    # Full crawls
    # ------------------------------------------------------------------

    async def scrape_retailer(self, retailer: Retailer, trigger: str = "manual") -> ReconcileReport:
        """Crawl a retailer's listing and reconcile every product found.

        Args:
            retailer: Retailer to crawl
            trigger: Recorded on the run ('manual' or 'scheduler:<tier>')

        Returns:
            ReconcileReport for the crawl

        Raises:
            ConfigurationError: If no scraper is registered for the retailer
            ScraperError: If the listing could not be loaded
        """
        scraper = self._create_scraper(retailer)

        async def crawl() -> ReconcileReport:
            async with scraper:
                products = await scraper.scrape_products()
            self.logger.info("products_fetched", retailer=retailer.name, count=len(products))

            async with self.session_factory() as db:
                reconciler = CatalogReconciler(db, self.classifier, self.alert_system)
                return await reconciler.process_scraped_products(products, retailer)

        return await self._record_run(retailer, trigger, crawl)

    async def scrape_all_retailers(self) -> Dict[str, dict]:
        """Crawl every active retailer in turn.

        A failing retailer is logged and does not stop the others.

        Returns:
            Dict keyed by retailer name with the report (or the error)
        """
        retailers = await self.get_active_retailers()
        if not retailers:
            self.logger.warning("no_active_retailers")
            return {}

        self.logger.info("scraping_all_retailers", count=len(retailers))
        results: Dict[str, dict] = {}
        for retailer in retailers:
            try:
                report = await self.scrape_retailer(retailer)
                results[retailer.name] = report.as_dict()
            except Exception as e:
                self.logger.error("retailer_scrape_failed", retailer=retailer.name, error=str(e))
                results[retailer.name] = {"error": str(e)}

        self.logger.info("all_retailers_scraped", count=len(results))
        return results

    # ------------------------------------------------------------------
    # Single-product re-checks
    # ------------------------------------------------------------------

    async def scrape_specific_products(
        self,
        scraper: BaseScraper,
        retailer: Retailer,
        product_ids: Sequence[UUID],
    ) -> ReconcileReport:
        """Re-check individual product pages with an initialized scraper.

        At most specific_product_limit products are visited, one at a time,
        with a random 2-5 second pause between requests. Products without a
        listing at this retailer are skipped; a failing product is logged
        and counted.

        Args:
            scraper: Initialized scraper for the retailer
            retailer: Retailer whose listings are re-checked
            product_ids: Tracked product ids, in priority order

        Returns:
            ReconcileReport of the re-checks
        """
        report = ReconcileReport(retailer=retailer.name)
        if not product_ids:
            return report

        wanted = list(product_ids)[: self.specific_product_limit]
        async with self.session_factory() as db:
            result = await db.execute(
                select(CatalogProduct)
                .options(selectinload(CatalogProduct.listings).selectinload(RetailerListing.price_history))
                .where(CatalogProduct.id.in_(wanted))
            )
            listings = {}
            for product in result.scalars().all():
                listing = product.listing_for(retailer.id)
                if listing is not None and listing.product_url:
                    listings[product.id] = (listing.product_url, Decimal(listing.current_price), listing.availability)
            # Snapshot first: a rollback below expires every loaded object
            targets = [(product_id, *listings[product_id]) for product_id in wanted if product_id in listings]
            reconciler = CatalogReconciler(db, self.classifier, self.alert_system)

            for visited, (product_id, product_url, old_price, old_availability) in enumerate(targets):
                if visited:
                    await self._sleep(
                        self._rng.uniform(
                            settings.SPECIFIC_PRODUCT_DELAY_MIN_SECONDS,
                            settings.SPECIFIC_PRODUCT_DELAY_MAX_SECONDS,
                        )
                    )
                try:
                    scraped = await scraper.scrape_product(product_url)
                    if scraped is None:
                        report.errors += 1
                        continue
                    report.received += 1
                    product = await reconciler.reconcile_listing(product_id, scraped, retailer)
                except NotFoundError:
                    self.logger.info("tracked_product_gone", product_id=str(product_id))
                    continue
                except Exception as e:
                    report.errors += 1
                    self.logger.error(
                        "specific_product_failed",
                        retailer=retailer.name,
                        product_id=str(product_id),
                        error=str(e),
                        exc_info=True,
                    )
                    continue

                if scraped.price.quantize(PRICE_QUANTUM) != old_price or scraped.availability != old_availability:
                    report.updated += 1
                else:
                    report.unchanged += 1
                report.touched[product.id] = product.priority

        self.logger.info("specific_products_scraped", **report.as_dict())
        return report

    async def scrape_retailer_products(
        self,
        retailer: Retailer,
        product_ids: Sequence[UUID],
        trigger: str = "limited",
    ) -> ReconcileReport:
        """Open a scraper for the retailer and re-check the given products."""
        scraper = self._create_scraper(retailer)

        async def recheck() -> ReconcileReport:
            async with scraper:
                return await self.scrape_specific_products(scraper, retailer, product_ids)

        return await self._record_run(retailer, trigger, recheck)

    async def get_limited_release_ids(self, retailer_id: UUID, limit: int = MAX_TRACKED_PRODUCTS) -> List[UUID]:
        return await self.get_product_ids_by_priority(retailer_id, PriorityTier.LIMITED_RELEASE, limit)

    async def get_product_ids_by_priority(
        self,
        retailer_id: UUID,
        priority: PriorityTier,
        limit: int = MAX_TRACKED_PRODUCTS,
    ) -> List[UUID]:
        """Ids of products in a tier that are listed at the retailer, most popular first."""
        async with self.session_factory() as db:
            result = await db.execute(
                select(CatalogProduct.id)
                .join(RetailerListing, RetailerListing.product_id == CatalogProduct.id)
                .where(RetailerListing.retailer_id == retailer_id, CatalogProduct.priority == priority)
                .order_by(CatalogProduct.popularity_score.desc())
                .limit(limit)
            )
            return list(result.scalars().all())

    async def scrape_limited_releases(self) -> Dict[str, dict]:
        """Re-check the limited-release products of every active retailer."""
        results: Dict[str, dict] = {}
        for retailer in await self.get_active_retailers():
            product_ids = await self.get_limited_release_ids(retailer.id)
            if not product_ids:
                self.logger.info("no_limited_releases", retailer=retailer.name)
                continue
            try:
                report = await self.scrape_retailer_products(retailer, product_ids, trigger="limited")
                results[retailer.name] = report.as_dict()
            except Exception as e:
                self.logger.error("limited_release_scan_failed", retailer=retailer.name, error=str(e))
                results[retailer.name] = {"error": str(e)}
        return results

    # ------------------------------------------------------------------
    # Reporting and maintenance
    # ------------------------------------------------------------------

    async def get_scraping_stats(self) -> dict:
        async with self.session_factory() as db:
            return await CatalogReconciler(db, self.classifier, self.alert_system).get_scraping_stats()

    async def repair_catalog(self) -> Dict[str, int]:
        async with self.session_factory() as db:
            return await CatalogReconciler(db, self.classifier, self.alert_system).repair_catalog()

    async def get_recent_runs(self, limit: int = 20) -> List[ScrapeRun]:
        async with self.session_factory() as db:
            result = await db.execute(select(ScrapeRun).order_by(ScrapeRun.started_at.desc()).limit(limit))
            return list(result.scalars().all())

    # ------------------------------------------------------------------
    # Run records
    # ------------------------------------------------------------------

    async def _record_run(
        self,
        retailer: Retailer,
        trigger: str,
        work: Callable[[], Awaitable[ReconcileReport]],
    ) -> ReconcileReport:
        """Execute one unit of scraping work and record it as a ScrapeRun.

        The run row is committed as 'running' before the work starts and
        finalized as 'completed' or 'failed'. Failures are re-raised after
        they are recorded.
        """
        self.logger.info("starting_scrape_run", retailer=retailer.name, trigger=trigger)

        async with self.session_factory() as db:
            start_time = utcnow()
            run = ScrapeRun(
                retailer_id=retailer.id,
                trigger=trigger,
                status="running",
                started_at=start_time,
            )
            db.add(run)
            await db.commit()

            try:
                report = await work()
            except Exception as e:
                end_time = utcnow()
                duration = (end_time - start_time).total_seconds()

                run.status = "failed"
                run.completed_at = end_time
                run.duration_seconds = Decimal(str(round(duration, 2)))
                run.error_message = str(e)
                run.error_traceback = traceback.format_exc()
                await db.commit()

                self.logger.error(
                    "scrape_run_failed",
                    retailer=retailer.name,
                    trigger=trigger,
                    run_id=str(run.id),
                    error=str(e),
                    duration_seconds=float(duration),
                    exc_info=True,
                )
                raise

            end_time = utcnow()
            duration = (end_time - start_time).total_seconds()

            run.status = "completed"
            run.completed_at = end_time
            run.duration_seconds = Decimal(str(round(duration, 2)))
            run.items_found = report.received
            run.items_created = report.created
            run.items_updated = report.updated + report.listings_added
            run.items_failed = report.errors
            await db.commit()

            self.logger.info(
                "scrape_run_completed",
                trigger=trigger,
                run_id=str(run.id),
                duration_seconds=float(duration),
                **report.as_dict(),
            )
            return report
