"""Retailer seeding for local runs.

Provisions the scraping recipes of the supported retailers. Existing
retailers (matched by slug) are left untouched.
"""

from typing import List

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from seek.models import Retailer

logger = structlog.get_logger(__name__)

DEFAULT_RETAILERS: List[dict] = [
    {
        "name": "Smokingpipes.com",
        "slug": "smokingpipes",
        "base_url": "https://www.smokingpipes.com",
        "is_active": True,
        "scraping_config": {
            "product_list_url": "https://www.smokingpipes.com/tobacco/",
            "product_list_selector": 'article, .product, [data-testid*="product"], .product-item, div[id*="product"]',
            "product_link_selector": 'a[href*="/tobacco/"], a[href*="/pipe-tobacco/"], a.product-link, a[title]',
            "name_selector": "h3 a, h2 a, .product-title, .product-name, h3, h2, [data-title], [title]:not(img)",
            "price_selector": '.price, [class*="price"]:not([class*="old"]), .cost, [data-price]',
            "brand_selector": '.brand, .manufacturer, [class*="brand"], [data-brand]',
            "description_selector": '.description, .excerpt, [class*="desc"], [data-description]',
            "image_selector": 'img[src*="tobacco"], img[alt], img',
            "availability_selector": '[class*="stock"], [class*="availability"], .in-stock, .out-of-stock, [data-availability]',
            "category_selector": '.category, [class*="category"], [data-category]',
            "wait_for_selector": 'article, .product, [data-testid*="product"]',
            "delay": 2000,
        },
    },
    {
        "name": "The Country Squire",
        "slug": "countrysquire",
        "base_url": "https://www.thecountrysquireonline.com",
        "is_active": True,
        "scraping_config": {
            "product_list_url": "https://www.thecountrysquireonline.com/product-category/tobacco/",
            "product_list_selector": ".product",
            "product_link_selector": "a.woocommerce-LoopProduct-link",
            "name_selector": ".woocommerce-loop-product__title",
            "price_selector": ".price",
            "brand_selector": ".brand",
            "description_selector": ".product-description",
            "image_selector": "img.attachment-woocommerce_thumbnail",
            "availability_selector": ".stock",
            "category_selector": ".product-category",
            "wait_for_selector": ".product",
            "delay": 1000,
            "max_pages": 10,
        },
    },
]


async def seed_retailers(db: AsyncSession, retailers: List[dict] = None) -> int:
    """Insert missing retailers.

    Args:
        db: Async database session
        retailers: Retailer definitions, defaults to DEFAULT_RETAILERS

    Returns:
        Number of retailers created
    """
    created = 0
    for data in retailers or DEFAULT_RETAILERS:
        result = await db.execute(select(Retailer).where(Retailer.slug == data["slug"]))
        if result.scalar_one_or_none():
            logger.debug("retailer_exists", slug=data["slug"])
            continue

        db.add(Retailer(**data))
        created += 1
        logger.info("retailer_seeded", slug=data["slug"], name=data["name"])

    await db.commit()
    return created
