"""
Builds the request body for POST/PUT /listings from a product and its template.
"""

import re
from decimal import Decimal
from typing import Any, Dict, List, Optional

from app.models.olx_category import OlxCategory
from app.models.olx_category_template import OlxCategoryTemplate
from app.models.olx_location import OlxLocation
from app.models.product import Product

SHORT_DESCRIPTION_LENGTH = 100
TITLE_MAX_LENGTH = 200
PLACEHOLDER = re.compile(r"\{(\w+)\}")

# description_filter keys -> labels that may start a description line
FIELD_PATTERNS = {
    "namjena": ["Namjena"],
    "sirina": ["Širina", "Sirina"],
    "profil": ["Profil"],
    "promjer": ["Promjer", "Prečnik"],
    "sezona": ["Sezona"],
    "brend": ["Brend", "Brand"],
    "brand": ["Brand", "Brend"],
    "index_nosivosti": ["Index nosivosti", "Indeks nosivosti"],
    "indeks_brzine": ["Indeks brzine"],
    "tip_konstrukcija": ["Tip (konstrukcija)", "Tip"],
    "sifra_proizvodaca": ["Šifra proizvođača", "Sifra proizvodaca"],
    "ean": ["EAN", "EAN bar-kod"],
    "velicina": ["Veličina", "Velicina"],
    "tezina": ["Težina", "Tezina"],
    "sku": ["SKU"],
}


def truncate(text: Optional[str], length: int) -> str:
    if not text:
        return ""
    return f"{text[:length]}..." if len(text) > length else text


def _price_text(value) -> str:
    if value is None:
        return ""
    value = Decimal(value)
    return str(value.quantize(Decimal("1"))) if value == value.to_integral_value() else str(value)


def render_title(product: Product, template: OlxCategoryTemplate) -> str:
    """Fill {brand} {title} {sku} {category} {price}; unknown placeholders render empty."""
    if product.olx_title:
        return product.olx_title
    if not template.title_template:
        return product.title

    values = {
        "brand": product.brand or "",
        "title": product.title or "",
        "sku": product.sku or "",
        "category": product.category or "",
        "price": _price_text(product.effective_price),
    }
    rendered = PLACEHOLDER.sub(lambda m: values.get(m.group(1).lower(), ""), template.title_template)
    rendered = " ".join(rendered.split())
    return truncate(rendered, TITLE_MAX_LENGTH) or product.title


def field_patterns(field: str) -> List[str]:
    return FIELD_PATTERNS.get(field.lower(), [field.replace("_", " ").title()])


def filter_description(product: Product, fields: List[str]) -> str:
    """Keep only description lines mentioning one of the filter fields."""
    if not product.description:
        return product.title

    kept = []
    for line in product.description.splitlines():
        line = line.strip()
        if not line:
            continue
        for field in fields:
            if any(re.search(re.escape(p), line, re.IGNORECASE) for p in field_patterns(field)):
                kept.append(line)
                break

    if "sku" in fields and product.sku and not any("SKU:" in line for line in kept):
        kept.append(f"SKU: {product.sku}")
    if ("brand" in fields or "brend" in fields) and product.brand:
        if not any(re.search(r"Brand:|Brend:", line, re.IGNORECASE) for line in kept):
            kept.append(f"Brand: {product.brand}")

    return "\n".join(kept) or product.title


def render_description(product: Product, template: OlxCategoryTemplate) -> str:
    if product.olx_description:
        return product.olx_description
    if template.description_filter:
        return filter_description(product, list(template.description_filter))

    parts = []
    if product.description:
        parts.append(product.description)
    if product.sku:
        parts.append(f"SKU: {product.sku}")
    if product.brand:
        parts.append(f"Brand: {product.brand}")
    if product.stock and product.stock > 0:
        parts.append(f"Stock: {product.stock}")
    return "\n".join(parts).strip() or product.title


def build_listing_payload(
    product: Product,
    template: OlxCategoryTemplate,
    category: OlxCategory,
    location: Optional[OlxLocation],
    attributes: List[Dict[str, Any]],
) -> Dict[str, Any]:
    price = product.effective_price
    payload = {
        "title": render_title(product, template),
        "description": render_description(product, template),
        "price": float(price) if price is not None else 0,
        "category_id": category.external_id,
        "listing_type": template.default_listing_type or "sell",
        "state": template.default_state or "new",
        "available": (product.stock or 0) > 0,
        "attributes": attributes,
    }

    if template.uses_coordinates:
        payload["lat"] = template.lat
        payload["lon"] = template.lon
    else:
        payload["city_id"] = location.external_id

    short = product.olx_description or product.description
    if short:
        payload["short_description"] = truncate(short, SHORT_DESCRIPTION_LENGTH)
    if product.sku:
        payload["sku_number"] = product.sku
    return payload
