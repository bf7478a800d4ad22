"""
Turns a product into the marketplace attribute list of its category.

Templates map an attribute (by name or external id) to a rule:

    product.<field>     a Product column, e.g. product.brand
    specs.<key>         a key of Product.specs
    fixed:<value>       a literal
    template.<field>    a column of the template itself
    extract:<keyword>   "keyword: value" in the description, then the specs
                        (exact key first, then any key containing the keyword)
"""

import logging
import re
from typing import Any, Dict, Iterable, List, Optional

from app.core.exceptions import ValidationError
from app.models.olx_category import OlxCategoryAttribute
from app.models.olx_category_template import OlxCategoryTemplate
from app.models.product import Product

logger = logging.getLogger(__name__)

NUMBER_TOKEN = re.compile(r"(\d+(?:[.,]\d+)?)")


def _blank(value) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def extract_keyword(product: Product, keyword: str) -> Optional[str]:
    keyword = keyword.strip()
    if not keyword:
        return None

    if product.description:
        match = re.search(rf"{re.escape(keyword)}\s*:?\s*([^\n,;]+)", product.description, re.IGNORECASE)
        if match and match.group(1).strip():
            return match.group(1).strip()

    specs = product.specs or {}
    lowered = keyword.lower()
    for key, value in specs.items():
        if str(key).lower() == lowered and not _blank(value):
            return str(value)
    for key, value in specs.items():
        if lowered in str(key).lower() and not _blank(value):
            return str(value)
    return None


def resolve_rule(rule: str, product: Product, template: OlxCategoryTemplate) -> Any:
    """Value a rule yields for this product, or None."""
    if _blank(rule):
        return None
    rule = str(rule).strip()

    if rule.startswith("fixed:"):
        return rule[len("fixed:"):]
    if rule.startswith("product."):
        field = rule[len("product."):]
        if field.startswith("_") or not hasattr(Product, field):
            logger.warning(f"[OLX Attributes] Unknown product field in rule '{rule}'")
            return None
        return getattr(product, field)
    if rule.startswith("specs."):
        return (product.specs or {}).get(rule[len("specs."):])
    if rule.startswith("template."):
        field = rule[len("template."):]
        if field.startswith("_") or not hasattr(OlxCategoryTemplate, field):
            logger.warning(f"[OLX Attributes] Unknown template field in rule '{rule}'")
            return None
        return getattr(template, field)
    if rule.startswith("extract:"):
        return extract_keyword(product, rule[len("extract:"):])

    logger.warning(f"[OLX Attributes] Unrecognised mapping rule '{rule}'")
    return None


def coerce_value(attribute: OlxCategoryAttribute, value: Any) -> Optional[str]:
    """Number attributes keep the first numeric token, as an integer string."""
    if _blank(value):
        return None
    if attribute.is_numeric:
        match = NUMBER_TOKEN.search(str(value))
        if not match:
            return None
        return str(int(float(match.group(1).replace(",", "."))))
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value).strip()


def build_attributes(
    product: Product,
    template: OlxCategoryTemplate,
    category_attributes: Iterable[OlxCategoryAttribute],
) -> List[Dict[str, Any]]:
    """
    Resolve every category attribute the template has a rule for.

    Raises ValidationError naming all required attributes that ended up
    without a value.
    """
    attributes = []
    missing = []

    for attribute in sorted(category_attributes, key=lambda a: a.external_id):
        rule = template.attribute_mapping_for(attribute.name, attribute.external_id)
        value = coerce_value(attribute, resolve_rule(rule, product, template)) if rule else None

        if value is None:
            if attribute.required:
                missing.append(attribute.display_label)
            continue
        attributes.append({"id": attribute.external_id, "value": value})

    if missing:
        raise ValidationError(f"Missing required attributes: {', '.join(missing)}")
    return attributes
