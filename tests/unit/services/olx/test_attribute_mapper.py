from decimal import Decimal

import pytest

from app.core.exceptions import ValidationError
from app.models import OlxCategoryAttribute, OlxCategoryTemplate, Product
from app.services.olx.attribute_mapper import build_attributes, coerce_value, extract_keyword, resolve_rule


def make_product(**overrides):
    values = dict(
        shop_id=1,
        title="Michelin Pilot Sport 4 225/45 R17",
        sku="MPS4",
        brand="Michelin",
        description="Sezona: ljetna\nŠirina: 225 mm\nIndeks brzine: Y",
        specs={"Promjer": "17", "Profil gume": "45"},
        price=Decimal("150"),
        stock=4,
    )
    values.update(overrides)
    return Product(**values)


def make_template(mappings=None, **overrides):
    values = dict(shop_id=1, name="Gume", olx_category_id=1, olx_location_id=1, default_state="new",
                  attribute_mappings=mappings or {})
    values.update(overrides)
    return OlxCategoryTemplate(**values)


def attribute(external_id, name, attribute_type="string", required=False, label=None):
    return OlxCategoryAttribute(
        external_id=external_id,
        name=name,
        attribute_type=attribute_type,
        required=required,
        options={"label": label} if label else {},
    )


"""
1. Rules
"""

def test_extract_from_description_line():
    assert extract_keyword(make_product(), "Sezona") == "ljetna"
    assert extract_keyword(make_product(), "širina") == "225 mm"


def test_extract_falls_back_to_specs():
    product = make_product(description=None)

    assert extract_keyword(product, "promjer") == "17"
    # partial key match
    assert extract_keyword(product, "profil") == "45"
    assert extract_keyword(product, "boja") is None


@pytest.mark.parametrize(
    "rule, expected",
    [
        ("product.brand", "Michelin"),
        ("specs.Promjer", "17"),
        ("fixed:Nova", "Nova"),
        ("template.default_state", "new"),
        ("extract:Indeks brzine", "Y"),
        ("product.does_not_exist", None),
        ("product._sa_instance_state", None),
        ("lookup:brand", None),
        ("", None),
    ],
)
def test_resolve_rule(rule, expected):
    assert resolve_rule(rule, make_product(), make_template()) == expected


@pytest.mark.parametrize(
    "attribute_type, value, expected",
    [
        ("number", "225 mm", "225"),
        ("number", "17,5", "17"),
        ("integer", 45, "45"),
        ("number", "bez", None),
        ("string", True, "true"),
        ("string", "  ljetna ", "ljetna"),
        ("string", "   ", None),
        ("string", None, None),
    ],
)
def test_coerce_value(attribute_type, value, expected):
    assert coerce_value(attribute(1, "x", attribute_type), value) == expected


"""
2. Attribute list
"""

def test_build_attributes_in_external_id_order():
    template = make_template({
        "sezona": "extract:Sezona",
        "501": "product.brand",
        "width": "extract:Širina",
    })
    category_attributes = [
        attribute(503, "width", "number"),
        attribute(501, "brand"),
        attribute(502, "sezona"),
        attribute(504, "unmapped"),
    ]

    result = build_attributes(make_product(), template, category_attributes)

    assert result == [
        {"id": 501, "value": "Michelin"},
        {"id": 502, "value": "ljetna"},
        {"id": 503, "value": "225"},
    ]


def test_missing_required_attributes_are_all_named():
    template = make_template({"brand": "product.brand"})
    category_attributes = [
        attribute(501, "brand", required=True),
        attribute(502, "sezona", required=True, label="Sezona gume"),
        attribute(503, "load_index", required=True),
        attribute(504, "color"),
    ]

    with pytest.raises(ValidationError) as exc_info:
        build_attributes(make_product(), template, category_attributes)

    assert str(exc_info.value) == "Missing required attributes: Sezona gume, Load Index"


def test_required_attribute_with_empty_value_is_missing():
    template = make_template({"brand": "product.brand"})

    with pytest.raises(ValidationError, match="Brand"):
        build_attributes(make_product(brand=""), template, [attribute(501, "brand", required=True)])
