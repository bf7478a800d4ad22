"""
Schemas for products and the supplier scraper's JSON contract.
"""

from decimal import Decimal
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, field_validator


class ScrapedProduct(BaseModel):
    """
    One element of the array the supplier scraper writes to products-*.json.

    Unknown keys are allowed and kept; they land in the product's specs.
    """
    model_config = ConfigDict(extra="allow")

    source: Optional[str] = None
    source_id: Optional[str] = None
    source_url: Optional[str] = None
    title: Optional[str] = None
    sku: Optional[str] = None
    brand: Optional[str] = None
    category: Optional[str] = None
    price: Optional[Union[Decimal, str]] = None
    currency: Optional[str] = None
    stock: Optional[Union[int, str]] = None
    quantity: Optional[Union[int, str]] = None
    description: Optional[str] = None
    technical_description: Optional[str] = None
    models: Optional[str] = None
    branch_availability: Optional[str] = None
    images: Optional[Union[List[str], str]] = None
    specs: Optional[Dict[str, Any]] = None

    @field_validator('source_id', 'sku', mode='before')
    @classmethod
    def stringify_identifiers(cls, v):
        # The scraper emits numeric codes for some suppliers
        if v is None:
            return None
        return str(v).strip()

    @field_validator('models', 'branch_availability', mode='before')
    @classmethod
    def join_lists(cls, v):
        if isinstance(v, list):
            return ", ".join(str(i) for i in v if i is not None)
        return v
