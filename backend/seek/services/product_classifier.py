"""Demand classification for catalog products.

The ProductClassifier labels every product with a priority tier (which
drives re-scrape cadence), a release type and a popularity score. It is a
pure function of the product text, brand, price, availability and, for
existing products, the historical activity recorded in the catalog.

Keyword groups are evaluated as an ordered rule list: a title can match
several groups ("Christmas Anniversary Limited Edition") and the first rule
wins, so the order of KEYWORD_RULES is the precedence contract.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Iterable, List, Optional, Tuple, Union

import structlog

from seek.core.timeutils import as_utc, utcnow
from seek.models.enums import Availability, PriorityTier, ReleaseType
from seek.models.product import CatalogProduct
from seek.scrapers.base import ScrapedProduct

logger = structlog.get_logger(__name__)

# ---------------------------------------------------------------------------
# Keyword groups
# ---------------------------------------------------------------------------

LIMITED_RELEASE_KEYWORDS = (
    "limited", "exclusive", "small batch", "anniversary", "special edition",
    "collectors", "reserve", "vintage", "aged", "barrel aged", "cask",
    "christmas", "holiday", "seasonal", "limited edition", "ltd",
    "commemorative", "tribute", "special release", "rare",
)

SEASONAL_KEYWORDS = (
    "christmas", "holiday", "winter", "spring", "summer", "fall", "autumn",
    "easter", "thanksgiving", "halloween", "seasonal", "yuletide",
)

ANNIVERSARY_KEYWORDS = (
    "anniversary", "10th", "20th", "25th", "50th", "100th", "centennial",
    "milestone", "celebration", "commemorative", "jubilee",
)

EXCLUSIVE_KEYWORDS = (
    "exclusive", "members only", "vip", "private", "invitation only",
    "select", "premium", "signature", "master", "artisan",
)

SMALL_BATCH_KEYWORDS = (
    "small batch", "micro batch", "artisan", "handcrafted", "craft",
    "boutique", "limited production", "single batch",
)

# Brand reputation (compared against the lowercased brand)
LIMITED_BRANDS = (
    "esoterica", "mcclelland", "gl pease", "cornell & diehl", "c&d",
    "seattle pipe club", "drew estate", "peter stokkebye", "mac baren",
)
POPULAR_BRANDS = (
    "peterson", "dunhill", "captain black", "lane", "borkum riff",
    "carter hall", "prince albert", "amphora", "sutliff",
)
# Almost every Esoterica blend is a limited run
ALWAYS_LIMITED_BRAND = "esoterica"

# ---------------------------------------------------------------------------
# Scoring parameters
# ---------------------------------------------------------------------------
LIMITED_BRAND_BONUS = 15
ALWAYS_LIMITED_BONUS = 20
POPULAR_BRAND_BONUS = 10
PREMIUM_PRICE = Decimal("100")
PREMIUM_PRICE_BONUS = 20
HIGH_PRICE = Decimal("50")
HIGH_PRICE_BONUS = 10
LIMITED_STOCK_BONUS = 15
DISCONTINUED_SCORE = -10

MAX_POPULARITY = 100
MAX_HISTORICAL_SCORE = 50

SCRAPING_FREQUENCY_MINUTES = {
    PriorityTier.LIMITED_RELEASE: 15,
    PriorityTier.SEASONAL: 30,
    PriorityTier.POPULAR: 120,
    PriorityTier.DISCONTINUED: 10080,  # weekly
    PriorityTier.STANDARD: 1440,  # daily
}


@dataclass(frozen=True)
class KeywordRule:
    """One keyword group -> (release type, priority, score bonus)."""

    release_type: ReleaseType
    priority: PriorityTier
    score: int
    keywords: Tuple[str, ...]

    def matches(self, text: str) -> bool:
        return any(keyword in text for keyword in self.keywords)


KEYWORD_RULES: List[KeywordRule] = [
    KeywordRule(ReleaseType.ANNIVERSARY, PriorityTier.LIMITED_RELEASE, 30, ANNIVERSARY_KEYWORDS),
    KeywordRule(ReleaseType.EXCLUSIVE, PriorityTier.LIMITED_RELEASE, 25, EXCLUSIVE_KEYWORDS),
    KeywordRule(ReleaseType.SMALL_BATCH, PriorityTier.LIMITED_RELEASE, 20, SMALL_BATCH_KEYWORDS),
    KeywordRule(ReleaseType.SEASONAL, PriorityTier.SEASONAL, 15, SEASONAL_KEYWORDS),
    KeywordRule(ReleaseType.LIMITED, PriorityTier.LIMITED_RELEASE, 25, LIMITED_RELEASE_KEYWORDS),
]


@dataclass(frozen=True)
class Classification:
    """Result of classifying one product.

    Attributes:
        priority: Demand tier controlling re-scrape cadence
        release_type: How exclusive/time-limited the product is
        popularity_score: Demand signal; -10 for discontinued, else >= 0
    """

    priority: PriorityTier
    release_type: ReleaseType
    popularity_score: int


Classifiable = Union[ScrapedProduct, CatalogProduct]


class ProductClassifier:
    """Scores and labels products with priority tier and release type."""

    def __init__(self, keyword_rules: Optional[List[KeywordRule]] = None):
        self.keyword_rules = keyword_rules if keyword_rules is not None else KEYWORD_RULES
        self.logger = logger.bind(service="product_classifier")

    def classify(self, product: Classifiable, existing: Optional[CatalogProduct] = None) -> Classification:
        """Classify a scraped observation or a catalog product.

        Catalog products carry no price or availability of their own, so
        they are scored as an in-stock item with no price signal.

        Args:
            product: ScrapedProduct or CatalogProduct
            existing: Catalog entry whose history augments the score

        Returns:
            Classification with priority, release type and popularity score
        """
        brand = (product.brand or "").lower()
        full_text = f"{product.name.lower()} {brand} {(product.description or '').lower()}"
        availability = getattr(product, "availability", Availability.IN_STOCK)
        price = getattr(product, "price", None) or Decimal("0")

        if availability == Availability.DISCONTINUED or "discontinued" in full_text:
            return Classification(PriorityTier.DISCONTINUED, ReleaseType.REGULAR, DISCONTINUED_SCORE)

        priority = PriorityTier.STANDARD
        release_type = ReleaseType.REGULAR
        score = 0

        for rule in self.keyword_rules:
            if rule.matches(full_text):
                release_type = rule.release_type
                priority = rule.priority
                score += rule.score
                break

        if brand in LIMITED_BRANDS:
            if priority == PriorityTier.STANDARD:
                priority = PriorityTier.POPULAR
            score += LIMITED_BRAND_BONUS

            if brand == ALWAYS_LIMITED_BRAND:
                priority = PriorityTier.LIMITED_RELEASE
                if release_type == ReleaseType.REGULAR:
                    release_type = ReleaseType.LIMITED
                score += ALWAYS_LIMITED_BONUS
        elif brand in POPULAR_BRANDS:
            if priority == PriorityTier.STANDARD:
                priority = PriorityTier.POPULAR
            score += POPULAR_BRAND_BONUS

        if existing is not None:
            score += self.calculate_historical_score(existing)

        # Premium threshold first; it subsumes the lower one
        if price > PREMIUM_PRICE:
            score += PREMIUM_PRICE_BONUS
            if priority == PriorityTier.STANDARD:
                priority = PriorityTier.POPULAR
        elif price > HIGH_PRICE:
            score += HIGH_PRICE_BONUS
            if priority == PriorityTier.STANDARD:
                priority = PriorityTier.POPULAR

        if availability == Availability.LIMITED:
            score += LIMITED_STOCK_BONUS
            if priority == PriorityTier.STANDARD:
                priority = PriorityTier.POPULAR

        return Classification(priority, release_type, max(0, score))

    def calculate_historical_score(self, product: CatalogProduct, now: Optional[datetime] = None) -> int:
        """Score derived from recorded activity, capped at 50.

        Components: search count, price volatility, recency of the last
        stock change, and per listing the number of history transitions and
        availability flips. Requires product.listings and their
        price_history to be loaded.
        """
        now = now or utcnow()
        score = 0.0

        score += min((product.search_count or 0) * 2, 30)
        score += min((product.price_volatility or 0.0) * 10, 20)

        last_change = as_utc(product.last_stock_change)
        if last_change is not None:
            days_since_change = (now - last_change).days
            if days_since_change < 7:
                score += 15
            elif days_since_change < 30:
                score += 10

        for listing in product.listings:
            history = listing.price_history
            if len(history) > 1:
                score += min((len(history) - 1) * 2, 15)
                availability_changes = sum(
                    1 for previous, entry in zip(history, history[1:])
                    if entry.availability != previous.availability
                )
                score += min(availability_changes * 3, 20)

        return int(round(min(score, MAX_HISTORICAL_SCORE)))

    def update_popularity_score(self, product: CatalogProduct, now: Optional[datetime] = None) -> int:
        """Base classification score plus historical activity, clamped to [0, 100]."""
        base = self.classify(product).popularity_score
        historical = self.calculate_historical_score(product, now=now)
        return max(0, min(base + historical, MAX_POPULARITY))

    def get_scraping_frequency_minutes(self, priority: Union[PriorityTier, str]) -> int:
        try:
            tier = PriorityTier(priority)
        except ValueError:
            return SCRAPING_FREQUENCY_MINUTES[PriorityTier.STANDARD]
        return SCRAPING_FREQUENCY_MINUTES[tier]

    def should_prioritize_scraping(self, product: CatalogProduct) -> bool:
        if product.priority in (PriorityTier.LIMITED_RELEASE, PriorityTier.SEASONAL):
            return True
        return product.priority == PriorityTier.POPULAR and product.popularity_score > 20

    def identify_limited_releases(self, products: Iterable[ScrapedProduct]) -> List[ScrapedProduct]:
        """Scraped products whose classification marks them as limited."""
        limited = []
        for product in products:
            classification = self.classify(product)
            if (
                classification.priority == PriorityTier.LIMITED_RELEASE
                or classification.release_type != ReleaseType.REGULAR
            ):
                limited.append(product)
        return limited

    def detect_new_limited_release(self, product: ScrapedProduct) -> bool:
        classification = self.classify(product)
        return classification.priority == PriorityTier.LIMITED_RELEASE or classification.popularity_score > 40
