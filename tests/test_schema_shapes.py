import pytest

from gentask.schema import shapes
from gentask.schema.shapes import (
    ArrayShape,
    EnumShape,
    ObjectShape,
    PrimitiveShape,
    SchemaDefinitionError,
    as_gemini_schema,
    as_json_schema,
    from_dict,
)


SAFETY_AUDIT = {
    "type": "ARRAY",
    "items": {
        "type": "OBJECT",
        "properties": {
            "hazard": {"type": "STRING"},
            "severity": {"type": "STRING", "enum": ["Low", "Medium", "High"]},
            "recommendation": {"type": "STRING", "description": "Corrective action"},
        },
        "required": ["hazard", "severity"],
    },
}


def test_from_dict_builds_nested_shapes():
    shape = from_dict(SAFETY_AUDIT)
    assert isinstance(shape, ArrayShape)
    item = shape.items
    assert isinstance(item, ObjectShape)
    assert item.required == ("hazard", "severity")
    assert item.properties["severity"] == EnumShape(("Low", "Medium", "High"))
    assert item.properties["recommendation"] == PrimitiveShape("string", "Corrective action")


def test_from_dict_is_case_insensitive_and_infers_object():
    shape = from_dict({"required": ["summary"]})
    assert shape == ObjectShape({}, ("summary",))
    assert from_dict({"type": "number"}) == shapes.number()
    assert from_dict({"type": "Boolean"}) == shapes.boolean()


def test_from_dict_maps_integer_to_number():
    assert from_dict({"type": "INTEGER"}) == shapes.number()


@pytest.mark.parametrize(
    "definition",
    [
        {"type": "ARRAY"},
        {"type": "DATE"},
        {"properties": []},
        {"type": "OBJECT", "required": "summary"},
        {"type": "OBJECT", "required": 5},
        {"type": "OBJECT", "required": {"summary": True}},
        {"type": "STRING", "enum": []},
        {"type": "STRING", "enum": [1, 2]},
        {"type": "STRING", "enum": 5},
        {"type": "STRING", "enum": {"Low": 1}},
        "STRING",
        {},
    ],
)
def test_from_dict_rejects_malformed_definitions(definition):
    with pytest.raises(SchemaDefinitionError):
        from_dict(definition)


def test_builders_match_literals():
    built = shapes.obj(
        {"vendor": shapes.string(), "totalAmount": shapes.number()},
        required=["vendor", "totalAmount"],
    )
    literal = from_dict({
        "type": "OBJECT",
        "properties": {"vendor": {"type": "STRING"}, "totalAmount": {"type": "NUMBER"}},
        "required": ["vendor", "totalAmount"],
    })
    assert built == literal


def test_gemini_dialect_round_trips_literal():
    assert as_gemini_schema(from_dict(SAFETY_AUDIT)) == SAFETY_AUDIT


def test_json_schema_dialect_uses_lower_case_types():
    rendered = as_json_schema(from_dict(SAFETY_AUDIT))
    assert rendered["type"] == "array"
    assert rendered["items"]["properties"]["severity"] == {
        "type": "string",
        "enum": ["Low", "Medium", "High"],
    }
    assert rendered["items"]["required"] == ["hazard", "severity"]
