from decimal import Decimal

from app.models import OlxCategory, OlxCategoryTemplate, OlxLocation, Product
from app.services.olx.payload_builder import (
    build_listing_payload,
    filter_description,
    render_description,
    render_title,
    truncate,
)

DESCRIPTION = "Sezona: ljetna\nŠirina: 225\nRok isporuke: 3 dana\nEAN: 3528701234567"


def make_product(**overrides):
    values = dict(
        shop_id=1,
        title="Pilot Sport 4",
        sku="MPS4",
        brand="Michelin",
        category="Gume",
        description=DESCRIPTION,
        price=Decimal("150"),
        final_price=Decimal("180"),
        stock=4,
        specs={},
    )
    values.update(overrides)
    return Product(**values)


def make_template(**overrides):
    values = dict(
        shop_id=1,
        name="Gume",
        olx_category_id=1,
        olx_location_id=1,
        default_listing_type="sell",
        default_state="new",
        description_filter=[],
    )
    values.update(overrides)
    return OlxCategoryTemplate(**values)


CATEGORY = OlxCategory(id=1, external_id=1495, name="Gume")
LOCATION = OlxLocation(id=1, external_id=77, name="Sarajevo")


def test_truncate():
    assert truncate("abcdef", 3) == "abc..."
    assert truncate("abc", 3) == "abc"
    assert truncate(None, 3) == ""


"""
1. Title
"""

def test_title_defaults_to_product_title():
    assert render_title(make_product(), make_template()) == "Pilot Sport 4"


def test_title_override_wins():
    assert render_title(make_product(olx_title="Guma 225/45 R17"), make_template(title_template="{brand}")) == "Guma 225/45 R17"


def test_title_template_placeholders():
    template = make_template(title_template="{brand} {title} - {price} KM {unknown} ({sku})")

    assert render_title(make_product(), template) == "Michelin Pilot Sport 4 - 180 KM (MPS4)"


def test_title_template_with_missing_values_collapses_whitespace():
    template = make_template(title_template="{brand}   {title}")

    assert render_title(make_product(brand=None), template) == "Pilot Sport 4"


"""
2. Description
"""

def test_description_override_wins():
    assert render_description(make_product(olx_description="Samo ovo"), make_template()) == "Samo ovo"


def test_default_description_appends_details():
    result = render_description(make_product(description="Odlicna guma"), make_template())

    assert result == "Odlicna guma\nSKU: MPS4\nBrand: Michelin\nStock: 4"


def test_description_falls_back_to_title():
    product = make_product(description=None, sku=None, brand=None, stock=0)

    assert render_description(product, make_template()) == "Pilot Sport 4"


def test_description_filter_keeps_matching_lines():
    result = filter_description(make_product(), ["sezona", "sirina", "sku", "brand"])

    assert result.splitlines() == ["Sezona: ljetna", "Širina: 225", "SKU: MPS4", "Brand: Michelin"]


def test_unknown_filter_field_matches_its_title_cased_label():
    assert filter_description(make_product(), ["rok_isporuke"]) == "Rok isporuke: 3 dana"


def test_description_filter_with_no_match_uses_title():
    assert filter_description(make_product(), ["tezina"]) == "Pilot Sport 4"


"""
3. Payload
"""

def test_payload_with_city():
    attributes = [{"id": 501, "value": "Michelin"}]

    payload = build_listing_payload(make_product(), make_template(), CATEGORY, LOCATION, attributes)

    assert payload["title"] == "Pilot Sport 4"
    assert payload["price"] == 180.0
    assert payload["category_id"] == 1495
    assert payload["city_id"] == 77
    assert "lat" not in payload
    assert payload["listing_type"] == "sell"
    assert payload["state"] == "new"
    assert payload["available"] is True
    assert payload["attributes"] == attributes
    assert payload["sku_number"] == "MPS4"
    assert payload["short_description"] == DESCRIPTION


def test_payload_with_coordinates():
    template = make_template(olx_location_id=None, lat=43.85, lon=18.41)

    payload = build_listing_payload(make_product(stock=0), template, CATEGORY, None, [])

    assert (payload["lat"], payload["lon"]) == (43.85, 18.41)
    assert "city_id" not in payload
    assert payload["available"] is False


def test_payload_uses_raw_price_without_final_price():
    payload = build_listing_payload(make_product(final_price=None), make_template(), CATEGORY, LOCATION, [])

    assert payload["price"] == 150.0


def test_short_description_is_truncated():
    payload = build_listing_payload(make_product(description="x" * 150), make_template(), CATEGORY, LOCATION, [])

    assert payload["short_description"] == "x" * 100 + "..."
