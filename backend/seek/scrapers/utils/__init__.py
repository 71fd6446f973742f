"""Scraper utilities for delays, retries, browser rotation and data normalization."""

from .rate_limiter import AdaptiveDelay
from .user_agents import get_random_user_agent, get_random_viewport, USER_AGENTS
from .normalizer import (
    PriceNormalizer,
    CategoryClassifier,
    BrandExtractor,
    parse_availability,
    normalize_product_name,
    strip_size_and_codes,
    is_plausible_name,
    recover_concatenated_name,
    extract_tobacco_types,
    match_key,
    CATEGORY_RULES,
)
from .retry import navigation_retrying


__all__ = [
    # Delays
    "AdaptiveDelay",
    # User agents
    "get_random_user_agent",
    "get_random_viewport",
    "USER_AGENTS",
    # Normalization
    "PriceNormalizer",
    "CategoryClassifier",
    "BrandExtractor",
    "parse_availability",
    "normalize_product_name",
    "strip_size_and_codes",
    "is_plausible_name",
    "recover_concatenated_name",
    "extract_tobacco_types",
    "match_key",
    "CATEGORY_RULES",
    # Retry
    "navigation_retrying",
]
