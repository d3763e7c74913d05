"""System prompt assembly from the discovered capability set."""

import logging
from typing import List, Optional, Sequence

from mcpchat.core.translator import NO_DESCRIPTION, translate_schema
from mcpchat.mcp.schema import Prompt, Resource, Tool
from mcpchat.providers.base import JsonSchema

logger = logging.getLogger(__name__)

PROMPT_HEADER = (
    "You are a helpful AI assistant with access to a set of capabilities provided by "
    "Model Context Protocol (MCP) servers.\n"
    "You can use the tools provided. When you decide to call a tool, you must respond "
    "with a JSON object containing the tool call.\n"
    "You also have access to a list of resources and prompts for context.\n"
)

NO_CAPABILITIES_MESSAGE = (
    "\nNo external capabilities (tools, resources, or prompts) are currently available."
)

CAPABILITIES_INTRO = "\nHere are the available capabilities:\n"

TOOLS_SECTION_HEADER = (
    "\n--- AVAILABLE TOOLS ---\n"
    "You can call the following tools. For each tool, the name, description, "
    "and parameters are provided.\n\n"
)
RESOURCES_SECTION_HEADER = (
    "\n--- AVAILABLE RESOURCES ---\n"
    "The following resources are available for context. You can refer to them "
    "in your responses.\n\n"
)
PROMPTS_SECTION_HEADER = (
    "\n--- AVAILABLE PROMPTS ---\n"
    "The following prompt templates are available for use.\n\n"
)

INDENT = "  "
NOT_AVAILABLE = "N/A"


def build_system_prompt(
    tools: Optional[Sequence[Tool]] = None,
    resources: Optional[Sequence[Resource]] = None,
    prompts: Optional[Sequence[Prompt]] = None,
) -> str:
    """
    Render the capability set as a system prompt.

    Sections appear in a fixed order (tools, resources, prompts) and the
    output depends only on the input, so the same capabilities always give
    the same prompt.
    """
    tools = tools or []
    resources = resources or []
    prompts = prompts or []

    if not (tools or resources or prompts):
        logger.warning("No MCP capabilities discovered. The model will operate without external tools.")
        return build_minimal_prompt()

    parts: List[str] = [PROMPT_HEADER, CAPABILITIES_INTRO]
    if tools:
        parts.append(TOOLS_SECTION_HEADER)
        parts.extend(format_tool(t) + "\n" for t in tools)
    if resources:
        parts.append(RESOURCES_SECTION_HEADER)
        parts.extend(format_resource(r) + "\n" for r in resources)
    if prompts:
        parts.append(PROMPTS_SECTION_HEADER)
        parts.extend(format_prompt(p) + "\n" for p in prompts)

    text = "".join(parts)
    logger.info(
        "Built system prompt with %d tools, %d resources, %d prompts (total length: %d chars)",
        len(tools), len(resources), len(prompts), len(text),
    )
    return text


def build_minimal_prompt() -> str:
    return PROMPT_HEADER + NO_CAPABILITIES_MESSAGE


def format_tool(tool: Tool) -> str:
    lines = [
        f"Tool: {tool.name}\n",
        f"{INDENT}Description: {tool.description or NO_DESCRIPTION}\n",
    ]
    schema = translate_schema(tool.input_schema) if tool.input_schema else None
    if schema is not None and schema.properties:
        lines.append(f"{INDENT}Parameters:\n")
        lines.append(format_parameters(schema, INDENT * 2))
    else:
        lines.append(f"{INDENT}Parameters: None\n")
    return "".join(lines)


def format_parameters(schema: JsonSchema, indent: str) -> str:
    """Render an object schema's properties, recursing into nested objects."""
    if schema.type != "object" or not schema.properties:
        return ""

    required = set(schema.required or [])
    lines = []
    for name, prop in schema.properties.items():
        label = "required" if name in required else "optional"
        lines.append(
            f"{indent}- {name} ({prop.type}, {label}): {prop.description or NO_DESCRIPTION}\n"
        )
        if prop.type == "object":
            lines.append(format_parameters(prop, indent + INDENT))
    return "".join(lines)


def format_resource(resource: Resource) -> str:
    return (
        f"Resource URI: {resource.uri}\n"
        f"{INDENT}Name: {resource.name or NOT_AVAILABLE}\n"
        f"{INDENT}Description: {resource.description or NO_DESCRIPTION}\n"
        f"{INDENT}MIME Type: {resource.mime_type or NOT_AVAILABLE}\n"
    )


def format_prompt(prompt: Prompt) -> str:
    lines = [
        f"Prompt: {prompt.name}\n",
        f"{INDENT}Description: {prompt.description or NO_DESCRIPTION}\n",
    ]
    if prompt.arguments:
        lines.append(f"{INDENT}Arguments:\n")
        for arg in prompt.arguments:
            label = "required" if arg.required else "optional"
            lines.append(f"{INDENT * 2}- {arg.name} ({label}): {arg.description or NO_DESCRIPTION}\n")
    return "".join(lines)
