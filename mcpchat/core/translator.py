"""
Schema translation of MCP ``inputSchema`` to the chat API's parameter schema.

Translation is total: whatever a server sends, the result is a usable
schema. Anything unrecognised degrades to a plain string parameter.
"""

import logging
from typing import Any, Iterable, List, Mapping, Optional

from mcpchat.mcp.schema import Tool
from mcpchat.providers.base import FunctionDefinition, JsonSchema, ToolDefinition

logger = logging.getLogger(__name__)

DEFAULT_TYPE = "string"
NO_DESCRIPTION = "No description provided"
UNDEFINED_SCHEMA = "Undefined schema"
NO_PARAMETERS = "No parameters"
ARRAY_ITEM = "Array item"


def translate_schema(native: Optional[Mapping[str, Any]]) -> JsonSchema:
    """Translate a tool's input schema. ``None`` means a zero-argument tool."""
    if native is None:
        return JsonSchema(type="object", description=NO_PARAMETERS, properties={}, required=[])
    try:
        return _translate(native)
    except Exception:
        logger.warning("Failed to convert schema, using default string schema", exc_info=True)
        return JsonSchema(type=DEFAULT_TYPE, description=UNDEFINED_SCHEMA)


def _translate(native: Any) -> JsonSchema:
    if not isinstance(native, Mapping):
        logger.warning("Unexpected schema of type %s, using string", type(native).__name__)
        return JsonSchema(type=DEFAULT_TYPE, description=UNDEFINED_SCHEMA)

    schema_type = _read_type(native.get("type"))
    required = native.get("required")
    required = [str(r) for r in required] if isinstance(required, list) else None

    description = native.get("description")
    enum = native.get("enum")
    fmt = native.get("format")

    properties = None
    items = None
    if schema_type == "object":
        properties = _translate_properties(native.get("properties"))
    elif schema_type == "array":
        items = _translate_items(native.get("items"))

    return JsonSchema(
        type=schema_type,
        description=description if isinstance(description, str) else None,
        properties=properties,
        items=items,
        required=required,
        enum=list(enum) if isinstance(enum, list) else None,
        format=fmt if isinstance(fmt, str) else None,
    )


def _read_type(value: Any) -> str:
    if isinstance(value, str) and value:
        return value
    if isinstance(value, list):
        # ["string", "null"] style unions: first concrete type wins
        for entry in value:
            if isinstance(entry, str) and entry != "null":
                return entry
    if value is None:
        logger.debug("Schema has no type specified, defaulting to string")
    return DEFAULT_TYPE


def _translate_properties(raw: Any) -> Optional[dict]:
    if not isinstance(raw, Mapping):
        return None

    properties = {}
    for key, value in raw.items():
        name = str(key)
        try:
            properties[name] = _translate(value)
        except Exception:
            logger.warning("Failed to convert property '%s', using default string schema", name, exc_info=True)
            properties[name] = JsonSchema(type=DEFAULT_TYPE, description=NO_DESCRIPTION)
    return properties or None


def _translate_items(raw: Any) -> JsonSchema:
    if raw is None:
        logger.warning("Array schema has no items definition, defaulting to string items")
        return JsonSchema(type=DEFAULT_TYPE, description=ARRAY_ITEM)
    try:
        return _translate(raw)
    except Exception:
        logger.warning("Failed to convert array items schema, using default", exc_info=True)
        return JsonSchema(type=DEFAULT_TYPE, description=ARRAY_ITEM)


def translate_tool(tool: Tool) -> Optional[ToolDefinition]:
    """Wrap one MCP tool as a function definition, or ``None`` if it has no name."""
    if not tool.name or not tool.name.strip():
        logger.warning("MCP tool has no name, skipping conversion")
        return None
    return ToolDefinition(
        function=FunctionDefinition(
            name=tool.name,
            description=tool.description or NO_DESCRIPTION,
            parameters=translate_schema(tool.input_schema),
        )
    )


def translate_tools(tools: Iterable[Tool]) -> List[ToolDefinition]:
    definitions = []
    for tool in tools:
        definition = translate_tool(tool)
        if definition is not None:
            definitions.append(definition)
    logger.debug("Translated %d MCP tools for the model", len(definitions))
    return definitions
