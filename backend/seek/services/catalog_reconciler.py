"""Catalog reconciliation: merge scraped observations into the catalog.

For every scraped product of one retailer crawl the reconciler finds the
catalog entry it describes (or creates one), keeps the retailer listing's
current price/availability up to date, records superseded values in the
listing's price history, and reports the resulting changes to the alert
engine.

Matching runs in three tiers:
1. Case-insensitive name among products already listed at this retailer.
2. Known brand: (name, brand) across the catalog. A hit that already has a
   listing at this retailer is rejected to avoid cross-merging.
3. Unknown brand: normalized match key among products listed at this
   retailer, so an unbranded first sighting can later be recognised.

Each product is committed on its own; a failure rolls back that product
only and the batch continues.
"""

import re
import statistics
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Awaitable, Callable, Dict, List, Optional, Sequence
from uuid import UUID

import structlog
from sqlalchemy import distinct, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from seek.core.exceptions import NotFoundError
from seek.core.timeutils import utcnow
from seek.models.enums import Category, PriorityTier
from seek.models.listing import MAX_PRICE_HISTORY, RetailerListing
from seek.models.price_history import PriceHistoryEntry
from seek.models.product import UNKNOWN_BRAND, CatalogProduct
from seek.models.retailer import Retailer
from seek.scrapers.base import ScrapedProduct
from seek.scrapers.utils.normalizer import (
    extract_tobacco_types,
    is_plausible_name,
    match_key,
    recover_concatenated_name,
    strip_size_and_codes,
)
from seek.services.alert_system import AlertSystem
from seek.services.product_classifier import MAX_POPULARITY, Classification, ProductClassifier

logger = structlog.get_logger(__name__)

PRICE_QUANTUM = Decimal("0.01")

# Maintenance fixes: name fragment -> brand
BRAND_FIXES = {
    "123 mixture": "Robert Lewis",
    "123": "Robert Lewis",
    "royal comfort": "Royal Comfort",
}

_STOCK_CODE = re.compile(r"\d{3}-\d{2,3}-\d{4}")


@dataclass
class ReconcileReport:
    """Outcome of one reconciliation batch."""

    retailer: str
    received: int = 0
    created: int = 0
    updated: int = 0
    unchanged: int = 0
    listings_added: int = 0
    errors: int = 0
    touched: Dict[UUID, PriorityTier] = field(default_factory=dict)

    def as_dict(self) -> dict:
        return {
            "retailer": self.retailer,
            "received": self.received,
            "created": self.created,
            "updated": self.updated,
            "unchanged": self.unchanged,
            "listings_added": self.listings_added,
            "errors": self.errors,
        }


def calculate_price_volatility(prices: Sequence) -> float:
    """Coefficient of variation (population stddev / mean).

    0 for fewer than two prices or a zero mean. Scale-invariant.
    """
    values = [float(price) for price in prices]
    if len(values) <= 1:
        return 0.0
    mean = statistics.fmean(values)
    if mean == 0:
        return 0.0
    return statistics.pstdev(values) / mean


PendingAlert = Callable[[], Awaitable]


class CatalogReconciler:
    """Only writer of catalog products, listings and price history."""

    def __init__(self, db: AsyncSession, classifier: ProductClassifier, alert_system: AlertSystem):
        """Initialize the reconciler.

        Args:
            db: Async database session
            classifier: Demand classifier seeding and refreshing classification
            alert_system: Alert engine notified of changes after each commit
        """
        self.db = db
        self.classifier = classifier
        self.alert_system = alert_system
        self.logger = logger.bind(service="catalog_reconciler")

    # ------------------------------------------------------------------
    # Batch entry point
    # ------------------------------------------------------------------

    async def process_scraped_products(
        self,
        products: Sequence[ScrapedProduct],
        retailer: Retailer,
    ) -> ReconcileReport:
        """Reconcile one retailer crawl into the catalog.

        Args:
            products: Scraped observations from the retailer
            retailer: Retailer the observations came from

        Returns:
            ReconcileReport with per-outcome counts and touched product ids
        """
        retailer_id = retailer.id
        retailer_name = retailer.name
        report = ReconcileReport(retailer=retailer_name, received=len(products))
        self.logger.info("processing_scraped_products", retailer=retailer_name, count=len(products))

        for scraped in products:
            pending: List[PendingAlert] = []
            try:
                product, outcome = await self._reconcile_one(scraped, retailer_id, retailer_name, pending)
                await self.db.commit()
            except Exception as e:
                await self.db.rollback()
                report.errors += 1
                self.logger.error(
                    "product_reconcile_failed",
                    retailer=retailer_name,
                    name=scraped.name,
                    error=str(e),
                    exc_info=True,
                )
                continue

            setattr(report, outcome, getattr(report, outcome) + 1)
            report.touched[product.id] = product.priority
            await self._dispatch(pending)

        await self.db.execute(
            update(Retailer).where(Retailer.id == retailer_id).values(last_scraped=utcnow())
        )
        await self.db.commit()

        self.logger.info("scraped_products_processed", **report.as_dict())
        return report

    async def reconcile_listing(
        self,
        product_id: UUID,
        scraped: ScrapedProduct,
        retailer: Retailer,
    ) -> CatalogProduct:
        """Apply a single-page re-check to a known product.

        Raises:
            NotFoundError: If the product no longer exists
        """
        product = await self._load_product(product_id)
        if product is None:
            raise NotFoundError("CatalogProduct", str(product_id))

        pending: List[PendingAlert] = []
        listing = product.listing_for(retailer.id)
        try:
            if listing is None:
                self._add_listing(product, scraped, retailer.id)
            else:
                self._update_listing(product, listing, scraped, retailer.name, pending)
            self._backfill_metadata(product, scraped)
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        await self._dispatch(pending)
        return product

    # ------------------------------------------------------------------
    # Matching
    # ------------------------------------------------------------------

    def _product_query(self):
        return select(CatalogProduct).options(
            selectinload(CatalogProduct.listings).selectinload(RetailerListing.price_history)
        )

    async def _load_product(self, product_id: UUID) -> Optional[CatalogProduct]:
        result = await self.db.execute(self._product_query().where(CatalogProduct.id == product_id))
        return result.scalar_one_or_none()

    async def find_match(self, scraped: ScrapedProduct, retailer_id: UUID) -> Optional[CatalogProduct]:
        """Three-tier lookup of the catalog product a scrape describes."""
        name = scraped.name.casefold()

        # Tier 1: same name already listed at this retailer
        stmt = (
            self._product_query()
            .join(RetailerListing, RetailerListing.product_id == CatalogProduct.id)
            .where(RetailerListing.retailer_id == retailer_id, CatalogProduct.name_key == name)
            .limit(1)
        )
        product = (await self.db.execute(stmt)).scalars().first()
        if product:
            return product

        brand = scraped.brand or UNKNOWN_BRAND
        if brand != UNKNOWN_BRAND:
            # Tier 2: same physical product sold elsewhere
            stmt = self._product_query().where(
                CatalogProduct.name_key == name,
                CatalogProduct.brand_key == brand.casefold(),
            )
            for candidate in (await self.db.execute(stmt)).scalars().all():
                if candidate.listing_for(retailer_id) is None:
                    return candidate
            return None

        # Tier 3: unbranded, fuzzy name at this retailer
        stmt = (
            self._product_query()
            .join(RetailerListing, RetailerListing.product_id == CatalogProduct.id)
            .where(RetailerListing.retailer_id == retailer_id, CatalogProduct.match_key == match_key(scraped.name))
            .limit(1)
        )
        return (await self.db.execute(stmt)).scalars().first()

    # ------------------------------------------------------------------
    # Create / update
    # ------------------------------------------------------------------

    async def _reconcile_one(
        self,
        scraped: ScrapedProduct,
        retailer_id: UUID,
        retailer_name: str,
        pending: List[PendingAlert],
    ):
        product = await self.find_match(scraped, retailer_id)

        if product is None:
            product = self._create_product(scraped, retailer_id)
            self.db.add(product)
            await self.db.flush()
            pending.append(lambda: self.alert_system.check_new_product(product))
            self.logger.info("product_created", product_id=str(product.id), name=product.name, priority=product.priority.value)
            return product, "created"

        listing = product.listing_for(retailer_id)
        if listing is None:
            self._add_listing(product, scraped, retailer_id)
            outcome = "listings_added"
        else:
            changed = self._update_listing(product, listing, scraped, retailer_name, pending)
            outcome = "updated" if changed else "unchanged"

        self._backfill_metadata(product, scraped)
        await self.db.flush()
        return product, outcome

    def _create_product(self, scraped: ScrapedProduct, retailer_id: UUID) -> CatalogProduct:
        classification = self.classifier.classify(scraped)
        product = CatalogProduct(
            name=scraped.name,
            match_key=match_key(scraped.name),
            brand=scraped.brand or UNKNOWN_BRAND,
            description=scraped.description,
            category=scraped.category or Category.TINNED,
            tobacco_types=extract_tobacco_types(scraped.name, scraped.description),
            image_url=scraped.image_url,
            search_count=0,
            price_volatility=0.0,
            last_stock_change=None,
            listings=[],
        )
        self._apply_classification(product, classification)
        self._add_listing(product, scraped, retailer_id)
        return product

    def _add_listing(self, product: CatalogProduct, scraped: ScrapedProduct, retailer_id: UUID) -> RetailerListing:
        listing = RetailerListing(
            retailer_id=retailer_id,
            product_url=scraped.product_url,
            current_price=scraped.price.quantize(PRICE_QUANTUM),
            availability=scraped.availability,
            last_scraped=utcnow(),
            price_history=[],
        )
        product.listings.append(listing)
        return listing

    def _update_listing(
        self,
        product: CatalogProduct,
        listing: RetailerListing,
        scraped: ScrapedProduct,
        retailer_name: str,
        pending: List[PendingAlert],
    ) -> bool:
        """Merge a new observation into an existing listing.

        The superseded value (price, availability, previous last_scraped) is
        appended to history only when price or availability changed.

        Returns:
            True if price or availability changed
        """
        now = utcnow()
        new_price = scraped.price.quantize(PRICE_QUANTUM)
        old_price = Decimal(listing.current_price)
        old_availability = listing.availability

        price_changed = old_price != new_price
        availability_changed = old_availability != scraped.availability

        if price_changed or availability_changed:
            listing.price_history.append(
                PriceHistoryEntry(price=old_price, availability=old_availability, date=listing.last_scraped)
            )
            overflow = len(listing.price_history) - MAX_PRICE_HISTORY
            if overflow > 0:
                del listing.price_history[:overflow]

            if price_changed:
                product.price_volatility = calculate_price_volatility(
                    [entry.price for entry in listing.price_history]
                )
            if availability_changed:
                product.last_stock_change = now

        listing.current_price = new_price
        listing.availability = scraped.availability
        listing.last_scraped = now
        listing.product_url = scraped.product_url

        if not (price_changed or availability_changed):
            return False

        self._apply_classification(product, self.classifier.classify(scraped, existing=product))

        if price_changed:
            pending.append(
                lambda: self.alert_system.check_price_change(product, old_price, new_price, retailer_name)
            )
        if availability_changed:
            new_availability = scraped.availability
            pending.append(
                lambda: self.alert_system.check_stock_change(product, old_availability, new_availability)
            )

        self.logger.info(
            "listing_changed",
            product_id=str(product.id),
            retailer=retailer_name,
            old_price=str(old_price),
            new_price=str(new_price),
            old_availability=old_availability.value,
            new_availability=scraped.availability.value,
        )
        return True

    def _backfill_metadata(self, product: CatalogProduct, scraped: ScrapedProduct) -> None:
        """First-write-wins for description/image; brand upgrades from Unknown."""
        if scraped.description and not product.description:
            product.description = scraped.description
        if scraped.image_url and not product.image_url:
            product.image_url = scraped.image_url
        if not product.has_known_brand and scraped.brand and scraped.brand != UNKNOWN_BRAND:
            self.logger.info("brand_learned", product_id=str(product.id), brand=scraped.brand)
            product.brand = scraped.brand

    @staticmethod
    def _apply_classification(product: CatalogProduct, classification: Classification) -> None:
        product.priority = classification.priority
        product.release_type = classification.release_type
        product.popularity_score = min(classification.popularity_score, MAX_POPULARITY)

    async def _dispatch(self, pending: List[PendingAlert]) -> None:
        for notify in pending:
            try:
                await notify()
            except Exception as e:
                self.logger.error("alert_dispatch_failed", error=str(e))

    # ------------------------------------------------------------------
    # Reporting and maintenance
    # ------------------------------------------------------------------

    async def get_scraping_stats(self) -> dict:
        """Catalog size, retailer count, last crawl and product count per retailer."""
        total_products = (await self.db.execute(select(func.count(CatalogProduct.id)))).scalar_one()
        retailers = (await self.db.execute(select(Retailer).order_by(Retailer.name))).scalars().all()

        counts_stmt = (
            select(RetailerListing.retailer_id, func.count(distinct(RetailerListing.product_id)))
            .group_by(RetailerListing.retailer_id)
        )
        counts = {retailer_id: count for retailer_id, count in (await self.db.execute(counts_stmt)).all()}

        return {
            "total_products": total_products,
            "total_retailers": len(retailers),
            "last_scraped": {
                retailer.name: retailer.last_scraped.isoformat() if retailer.last_scraped else None
                for retailer in retailers
            },
            "products_per_retailer": {retailer.name: counts.get(retailer.id, 0) for retailer in retailers},
        }

    async def repair_catalog(self) -> Dict[str, int]:
        """Clean up names and brands written by earlier, less careful crawls.

        Applies known brand fixes, strips stock codes and weights from
        names, recovers the first product from concatenated names, and
        recomputes match keys.
        """
        stats = {"brands_fixed": 0, "codes_removed": 0, "names_recovered": 0}
        products = (await self.db.execute(select(CatalogProduct))).scalars().all()

        for product in products:
            if len(product.name) > 100:
                recovered = recover_concatenated_name(product.name)
                if recovered and recovered != product.name:
                    self.logger.info("name_recovered", product_id=str(product.id), old=product.name[:100], new=recovered)
                    product.name = recovered
                    stats["names_recovered"] += 1

            if _STOCK_CODE.search(product.name):
                cleaned = strip_size_and_codes(product.name)
                if cleaned != product.name and is_plausible_name(cleaned):
                    self.logger.info("stock_code_removed", product_id=str(product.id), old=product.name, new=cleaned)
                    product.name = cleaned
                    stats["codes_removed"] += 1

            lowered = product.name.lower()
            for fragment, brand in BRAND_FIXES.items():
                if fragment in lowered:
                    if product.brand != brand:
                        self.logger.info("brand_fixed", product_id=str(product.id), old=product.brand, new=brand)
                        product.brand = brand
                        stats["brands_fixed"] += 1
                    break

            product.match_key = match_key(product.name)

        await self.db.commit()
        self.logger.info("catalog_repaired", **stats)
        return stats
