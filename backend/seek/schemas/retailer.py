"""Retailer scraping recipe schema."""

from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


def _split_selectors(value):
    """Accept 'a, b, c' strings as well as lists; keep declaration order."""
    if value is None:
        return None
    if isinstance(value, str):
        parts = [part.strip() for part in value.split(",")]
    else:
        parts = [str(part).strip() for part in value]
    return [part for part in parts if part]


class RetailerConfig(BaseModel):
    """Site-specific scraping recipe, immutable during a run.

    Every selector field is an ordered list: retailer markup is inconsistent,
    so selectors are tried in priority order and the first plausible result
    wins.
    """

    model_config = ConfigDict(frozen=True)

    product_list_url: str
    product_list_selector: List[str]
    product_link_selector: List[str]
    name_selector: List[str]
    price_selector: List[str]
    brand_selector: Optional[List[str]] = None
    description_selector: Optional[List[str]] = None
    image_selector: Optional[List[str]] = None
    availability_selector: Optional[List[str]] = None
    category_selector: Optional[List[str]] = None
    wait_for_selector: Optional[str] = None
    delay: int = Field(default=1000, ge=0, description="Base delay between navigations in milliseconds")
    max_pages: int = Field(default=10, ge=1, description="Pagination ceiling for paged listings")

    @field_validator(
        "product_list_selector",
        "product_link_selector",
        "name_selector",
        "price_selector",
        "brand_selector",
        "description_selector",
        "image_selector",
        "availability_selector",
        "category_selector",
        mode="before",
    )
    @classmethod
    def split_selector_lists(cls, value):
        return _split_selectors(value)

    @field_validator("product_list_selector", "product_link_selector", "name_selector", "price_selector")
    @classmethod
    def require_selectors(cls, value: List[str]) -> List[str]:
        if not value:
            raise ValueError("at least one selector is required")
        return value

    @property
    def delay_seconds(self) -> float:
        return self.delay / 1000.0
