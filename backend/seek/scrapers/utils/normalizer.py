"""Data normalization utilities for scraped tobacco listings.

Covers price parsing, availability phrases, product-name cleanup (including
recovery of names that swallowed neighbouring products), keyword-based
category inference and brand extraction.
"""

import re
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import List, Optional, Sequence, Tuple

import structlog

from seek.models.enums import Availability, Category
from seek.models.product import UNKNOWN_BRAND

logger = structlog.get_logger()

MAX_NAME_LENGTH = 100
MIN_NAME_LENGTH = 5
RECOVERY_WINDOW = 50


class PriceNormalizer:
    """Price parsing utilities."""

    _NUMBER = re.compile(r"\d[\d,]*(?:\.\d+)?")

    @classmethod
    def parse_price(cls, raw: Optional[str]) -> Decimal:
        """Parse the first price-like number in a text node.

        Handles "$12.50", "1,234.00", "Sale $10.00 Was $12.00" (first
        number wins). Unparsable input yields Decimal("0"), which callers
        treat as "no price".

        Args:
            raw: Raw price text

        Returns:
            Decimal price value, or Decimal("0") if parsing fails
        """
        if not raw:
            return Decimal("0")

        match = cls._NUMBER.search(raw)
        if not match:
            return Decimal("0")

        cleaned = match.group(0).replace(",", "")
        try:
            return Decimal(cleaned)
        except InvalidOperation:
            return Decimal("0")


# Checked in order; first phrase found wins. Negative phrases come first
# because "unavailable" contains "available".
AVAILABILITY_PHRASES: List[Tuple[Availability, Tuple[str, ...]]] = [
    (Availability.OUT_OF_STOCK, ("out of stock", "sold out", "unavailable", "backorder")),
    (Availability.DISCONTINUED, ("discontinued", "no longer available")),
    (Availability.LIMITED, ("limited", "few left", "low stock", "only 1 left", "only 2 left", "only 3 left")),
    (Availability.IN_STOCK, ("in stock", "available", "add to cart")),
]


def parse_availability(text: Optional[str]) -> Availability:
    """Classify availability text into the fixed enum.

    Defaults to IN_STOCK when no phrase matches, including when the retailer
    shows no stock marker at all.
    """
    if not text:
        return Availability.IN_STOCK

    lowered = text.lower()
    for availability, phrases in AVAILABILITY_PHRASES:
        if any(phrase in lowered for phrase in phrases):
            return availability
    return Availability.IN_STOCK


def normalize_product_name(name: str) -> str:
    """Trim, drop punctuation other than hyphens, collapse whitespace."""
    cleaned = re.sub(r"[^\w\s-]", "", name or "")
    return re.sub(r"\s+", " ", cleaned).strip()


def strip_size_and_codes(name: str) -> str:
    """Remove weights (50g, 2oz, 1 lb) and retailer stock codes (003-057-0003)."""
    cleaned = name
    cleaned = re.sub(r"\s+\d{3}-\d{2,3}-\d{4}", "", cleaned)
    cleaned = re.sub(r"\s+\d+g\b", "", cleaned, flags=re.IGNORECASE)
    cleaned = re.sub(r"\s+\d+oz\b", "", cleaned, flags=re.IGNORECASE)
    cleaned = re.sub(r"\s+\d+\s?lb\b", "", cleaned, flags=re.IGNORECASE)
    cleaned = re.sub(r"\s+\d{3,}[-\d]*$", "", cleaned)
    cleaned = re.sub(r"\s*\([^)]*\d+(?:g|oz)[^)]*\)$", "", cleaned, flags=re.IGNORECASE)
    return re.sub(r"\s+", " ", cleaned).strip()


def is_plausible_name(name: Optional[str]) -> bool:
    """Non-blank, meaningful and short enough to be a single product."""
    if not name or not name.strip():
        return False
    length = len(name.strip())
    return MIN_NAME_LENGTH < length <= MAX_NAME_LENGTH


_FIRST_PRODUCT = re.compile(
    r"^([^0-9]*?(?:mixture|blend|flake|virginia|burley|aromatic|english|comfort|cavendish|perique)[^0-9]*?)"
    r"(?:\s+\d{3}[-\d]|\s+\d+g|\s+\d+oz|\s+[A-Z][a-z]+\s+[A-Z])",
    re.IGNORECASE,
)


def recover_concatenated_name(text: str) -> Optional[str]:
    """Recover the first product name from text that spans several products.

    Over-long text usually means a container node was read instead of a
    title node. Try to cut at the end of the first embedded product (a blend
    word followed by a size/code or the next title); otherwise truncate at
    the last word boundary inside RECOVERY_WINDOW characters.

    Returns:
        The recovered name, or None when nothing usable remains
    """
    if not text:
        return None

    flattened = re.sub(r"\s+", " ", text).strip()
    match = _FIRST_PRODUCT.match(flattened)
    if match:
        candidate = match.group(1).strip()
    else:
        candidate = flattened[:RECOVERY_WINDOW]
        last_space = candidate.rfind(" ")
        if last_space > 10:
            candidate = candidate[:last_space]

    candidate = strip_size_and_codes(candidate)
    if not is_plausible_name(candidate):
        return None

    logger.debug("concatenated_name_recovered", original_length=len(text), recovered=candidate)
    return candidate


def match_key(name: str) -> str:
    """Normalized comparison key: lowercase alphanumerics, no sizes or codes."""
    base = strip_size_and_codes(normalize_product_name(name)).lower()
    base = re.sub(r"\b(tin|tins|pouch|bulk|tobacco|pipe)\b", " ", base)
    return re.sub(r"[^a-z0-9]+", " ", base).strip()


@dataclass(frozen=True)
class CategoryRule:
    category: Category
    keywords: Tuple[str, ...]


# Precedence matters: perique/oriental phrases are checked before the
# Virginia/English families that contain them, and flavour words before
# blend families.
CATEGORY_RULES: List[CategoryRule] = [
    CategoryRule(Category.PERIQUE, ("perique", "louisiana", "vaper", "va/per", "virginia perique", "escudo")),
    CategoryRule(Category.ORIENTAL, ("oriental mixture", "turkish", "smyrna", "drama", "izmir", "macedonian")),
    CategoryRule(Category.AROMATIC, (
        "aromatic", "vanilla", "cherry", "caramel", "rum", "whiskey", "chocolate", "honey",
        "maple", "cognac", "amaretto", "irish cream", "captain black", "lane 1-q", "borkum riff",
    )),
    CategoryRule(Category.ENGLISH, (
        "english", "latakia", "morning pipe", "nightcap", "early morning", "london mixture",
        "balkan", "cyprus latakia", "squadron leader", "dunhill", "gl pease",
    )),
    CategoryRule(Category.VIRGINIA, (
        "virginia", "bright", "flake", "red virginia", "golden virginia", "orlik", "capstan",
    )),
    CategoryRule(Category.VIRGINIA, ("navy",)),
    CategoryRule(Category.BURLEY, (
        "burley", "white burley", "kentucky", "carter hall", "prince albert", "codger",
    )),
    CategoryRule(Category.CAVENDISH, ("cavendish", "black cavendish", "danish")),
    CategoryRule(Category.LATAKIA, ("latakia mixture", "cyprus", "syrian latakia")),
    # Packaging hints only when no blend family was identified
    CategoryRule(Category.BULK, ("bulk", "ounce", "oz", "lb", "pound", "pouch")),
    CategoryRule(Category.TINNED, ("tin", "50g", "100g", "2oz", "gram", "canister")),
]


class CategoryClassifier:
    """Keyword-based blend family inference."""

    @staticmethod
    def infer(
        name: str,
        description: Optional[str] = None,
        default: Category = Category.TINNED,
    ) -> Category:
        """Infer the blend category from name and description.

        Args:
            name: Product name
            description: Optional description text
            default: Retailer-appropriate fallback (bulk or tinned)

        Returns:
            First matching category in CATEGORY_RULES order, else default
        """
        text = f"{name} {description or ''}".lower()
        for rule in CATEGORY_RULES:
            if any(keyword in text for keyword in rule.keywords):
                return rule.category
        return default


TOBACCO_TYPE_KEYWORDS = {
    "virginia": ("virginia", "bright virginia", "red virginia"),
    "burley": ("burley", "white burley"),
    "latakia": ("latakia", "syrian latakia", "cyprian latakia"),
    "oriental": ("oriental", "turkish", "smyrna", "yenidje"),
    "perique": ("perique", "louisiana perique"),
    "cavendish": ("cavendish", "black cavendish"),
    "kentucky": ("kentucky", "dark fired"),
    "maryland": ("maryland",),
}


def extract_tobacco_types(name: str, description: Optional[str] = None) -> List[str]:
    """Constituent leaf types mentioned in the text, defaulting to virginia."""
    text = f"{name} {description or ''}".lower()
    types = [
        leaf for leaf, keywords in TOBACCO_TYPE_KEYWORDS.items()
        if any(keyword in text for keyword in keywords)
    ]
    return types or ["virginia"]


COMMON_BRANDS: Tuple[str, ...] = (
    "Peterson", "Dunhill", "McClelland", "Rattray", "Solani",
    "Sutliff", "Lane", "Captain Black", "Borkum Riff", "Cornell & Diehl",
    "Mac Baren", "Erik Stokkebye", "Larsen", "Robert Lewis",
    "Missouri Meerschaum", "Royal Comfort", "Drew Estate", "Ashton",
    "Davidoff", "CAO", "H. Upmann", "Frog Morton", "Seattle Pipe Club",
    "C&D", "GL Pease", "Esoterica", "McCranie", "Orlik", "Altadis",
    "Samuel Gawith", "Gawith Hoggarth", "Wessex", "Amphora", "Villiger",
    "Peter Stokkebye", "Three Nuns", "Balkan Sobranie", "John Cotton",
    "Mixture 79", "Carter Hall", "Prince Albert", "1792",
    "Escudo", "965", "Squadron Leader", "Nightcap", "Early Morning",
)


class BrandExtractor:
    """Brand inference from a product name.

    Order: curated brand list, numeric house brands ("1792", "965",
    "123 Mixture"), then the first one or two capitalized words.
    """

    def __init__(self, brands: Sequence[str] = COMMON_BRANDS):
        self.brands = tuple(brands)

    def from_known_list(self, name: str) -> Optional[str]:
        lowered = name.lower()
        for brand in self.brands:
            if brand.lower() in lowered:
                return brand
        return None

    def extract(self, name: str) -> str:
        if not name or not name.strip():
            return UNKNOWN_BRAND

        known = self.from_known_list(name)
        if known:
            return known

        stripped = name.strip()
        numeric = re.match(r"^(\d+)\s*(?:mixture|blend)\b", stripped, re.IGNORECASE)
        if numeric:
            return numeric.group(1)

        # Drop a trailing size but keep leading numbers that may be the brand
        cleaned = re.sub(r"\s*\d+g?\s*$", "", stripped)
        words = [word for word in cleaned.split() if len(word) > 1]
        if not words:
            return UNKNOWN_BRAND

        first = words[0]
        if len(first) > 2 and first[0].isalpha():
            return first[0].upper() + first[1:].lower()

        if len(words) > 1 and words[0].isalpha() and words[1].isalpha():
            return " ".join(word[0].upper() + word[1:].lower() for word in words[:2])

        return first[0].upper() + first[1:].lower()
