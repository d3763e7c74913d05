"""Tests for MCP schema translation."""

import logging

from mcpchat.core.translator import (
    ARRAY_ITEM,
    NO_DESCRIPTION,
    NO_PARAMETERS,
    translate_schema,
    translate_tool,
    translate_tools,
)
from mcpchat.mcp.schema import Tool


class TestTranslateSchema:
    """Tests for translate_schema."""

    def test_none_is_empty_object(self):
        """A missing schema describes a tool without arguments."""
        schema = translate_schema(None)

        assert schema.type == "object"
        assert schema.properties == {}
        assert schema.required == []
        assert schema.description == NO_PARAMETERS

    def test_object_with_properties(self):
        """Test that type, description, required, enum and format survive."""
        native = {
            "type": "object",
            "properties": {
                "path": {"type": "string", "description": "File path", "format": "uri"},
                "mode": {"type": "string", "enum": ["r", "w"]},
                "count": {"type": "integer"},
            },
            "required": ["path"],
        }

        schema = translate_schema(native)

        assert schema.type == "object"
        assert schema.required == ["path"]
        assert list(schema.properties) == ["path", "mode", "count"]
        assert schema.properties["path"].description == "File path"
        assert schema.properties["path"].format == "uri"
        assert schema.properties["mode"].enum == ["r", "w"]
        assert schema.properties["count"].type == "integer"

    def test_nested_objects_and_arrays(self):
        """Test recursive translation of nested schemas."""
        native = {
            "type": "object",
            "properties": {
                "options": {
                    "type": "object",
                    "properties": {"recursive": {"type": "boolean"}},
                },
                "tags": {"type": "array", "items": {"type": "string"}},
            },
        }

        schema = translate_schema(native)

        assert schema.properties["options"].properties["recursive"].type == "boolean"
        assert schema.properties["tags"].items.type == "string"

    def test_array_without_items_defaults_to_string(self, caplog):
        """Arrays without items get string items and a warning."""
        with caplog.at_level(logging.WARNING):
            schema = translate_schema({"type": "array"})

        assert schema.type == "array"
        assert schema.items.type == "string"
        assert schema.items.description == ARRAY_ITEM
        assert "no items" in caplog.text

    def test_missing_type_defaults_to_string(self):
        assert translate_schema({"description": "anything"}).type == "string"

    def test_nullable_type_list(self):
        """Test that the first non-null type of a union wins."""
        schema = translate_schema({"type": ["null", "integer"]})

        assert schema.type == "integer"

    def test_malformed_property_degrades(self):
        """A broken property becomes a string; its siblings are unaffected."""
        native = {
            "type": "object",
            "properties": {
                "good": {"type": "number"},
                "bad": "not a schema",
            },
        }

        schema = translate_schema(native)

        assert schema.properties["good"].type == "number"
        assert schema.properties["bad"].type == "string"

    def test_non_mapping_schema_degrades(self):
        schema = translate_schema(["not", "a", "schema"])

        assert schema.type == "string"

    def test_serialised_form_omits_none(self):
        """Test that unset fields are absent from the wire form."""
        data = translate_schema({"type": "string"}).to_dict()

        assert data == {"type": "string"}


class TestTranslateTool:
    """Tests for translate_tool and translate_tools."""

    def test_wraps_as_function(self):
        tool = Tool(
            name="read_file",
            description="Read a file",
            inputSchema={"type": "object", "properties": {"path": {"type": "string"}}},
        )

        definition = translate_tool(tool)

        assert definition.type == "function"
        assert definition.function.name == "read_file"
        assert definition.function.description == "Read a file"
        assert definition.function.parameters.properties["path"].type == "string"

    def test_missing_description(self):
        definition = translate_tool(Tool(name="ping"))

        assert definition.function.description == NO_DESCRIPTION
        assert definition.function.parameters.type == "object"

    def test_nameless_tools_are_skipped(self):
        """Test that blank names are dropped from the batch."""
        definitions = translate_tools([Tool(name=" "), Tool(name="ok")])

        assert [d.function.name for d in definitions] == ["ok"]
