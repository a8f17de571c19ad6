"""
MCP server for per-user memory.
Declares the memory.* tools and dispatches calls to MemoryService.
"""

import json
import logging
from typing import Any

from mcp.server import Server
from mcp.types import TextContent, Tool

from .core import (
    InvalidArgumentError,
    KGError,
    MemoryService,
    TOOL_ADD,
    TOOL_QUERY,
    TOOL_SUMMARIZE,
    UnknownOperationError,
)
from .version import __version__

logger = logging.getLogger(__name__)

SERVER_NAME = "context-echo"

ENTITY_SCHEMA = {
    "type": "object",
    "properties": {
        "name": {"type": "string", "description": "The name of the entity"},
        "type": {"type": "string", "description": "The type of the entity (e.g., Person, Organization, Project)"},
        "metadata": {"type": "object", "description": "Additional metadata for the entity"},
    },
    "required": ["name", "type"],
}

RELATION_SCHEMA = {
    "type": "object",
    "properties": {
        "source": {"type": "string", "description": "The name of the source entity"},
        "target": {"type": "string", "description": "The name of the target entity"},
        "type": {"type": "string", "description": "The type of the relation (e.g., worksAt, memberOf, locatedIn)"},
        "weight": {"type": "number", "description": "The weight or strength of the relation (0.0 to 1.0)"},
    },
    "required": ["source", "target", "type"],
}

FACT_SCHEMA = {
    "type": "object",
    "properties": {
        "content": {"type": "string", "description": "The factual statement"},
        "confidence": {"type": "number", "minimum": 0, "maximum": 1, "description": "Confidence score for the fact (0.0 to 1.0)"},
        "timestamp": {"type": "string", "description": "ISO timestamp when the fact was recorded"},
    },
    "required": ["content", "confidence", "timestamp"],
}

USER_ID_PROPERTY = {"type": "string", "description": "Identifier of the user whose memory is used"}


def tool_definitions() -> list[Tool]:
    """The three memory tools with their input schemas."""
    return [
        Tool(
            name=TOOL_ADD,
            description="Add an entity, relation, or fact to the user's knowledge graph.",
            inputSchema={
                "type": "object",
                "properties": {
                    "userId": USER_ID_PROPERTY,
                    "entity": ENTITY_SCHEMA,
                    "relation": RELATION_SCHEMA,
                    "fact": FACT_SCHEMA,
                },
                "required": ["userId"],
            },
        ),
        Tool(
            name=TOOL_QUERY,
            description="Query the user's knowledge graph for relevant context.",
            inputSchema={
                "type": "object",
                "properties": {
                    "userId": USER_ID_PROPERTY,
                    "query": {"type": "string", "description": "Case-insensitive text to look for"},
                },
                "required": ["userId", "query"],
            },
        ),
        Tool(
            name=TOOL_SUMMARIZE,
            description="Summarize the user's knowledge graph.",
            inputSchema={
                "type": "object",
                "properties": {
                    "userId": USER_ID_PROPERTY,
                },
                "required": ["userId"],
            },
        ),
    ]


async def dispatch(service: MemoryService, name: str, arguments: dict[str, Any] | None) -> str:
    """Run one tool call and return its text result. Raises KGError subclasses."""
    if name not in (TOOL_ADD, TOOL_QUERY, TOOL_SUMMARIZE):
        raise UnknownOperationError(name)

    if not isinstance(arguments, dict) or not isinstance(arguments.get("userId"), str):
        raise InvalidArgumentError("userId is required and must be a string")
    user_id = arguments["userId"]

    if name == TOOL_ADD:
        added = await service.add(
            user_id,
            entity=arguments.get("entity"),
            relation=arguments.get("relation"),
            fact=arguments.get("fact"),
        )
        if added:
            return f"Successfully added {added} items to memory for user {user_id}."
        return "No items provided to add."

    elif name == TOOL_QUERY:
        if "query" not in arguments:
            raise InvalidArgumentError("query is required and must be a string")
        result = await service.query(user_id, arguments["query"])
        return json.dumps(result.model_dump(mode="json", exclude_none=True), indent=2)

    else:
        summary = await service.summarize(user_id)
        return summary.to_text()


def create_mcp_server(service: MemoryService) -> Server:
    """Create and configure an MCP server exposing the memory tools."""
    server = Server(SERVER_NAME, version=__version__)

    @server.list_tools()
    async def list_tools() -> list[Tool]:
        """List all available tools."""
        return tool_definitions()

    @server.call_tool(validate_input=False)
    async def call_tool(name: str, arguments: dict) -> list[TextContent]:
        """Handle tool calls. Errors are re-raised so the SDK marks the result isError."""
        try:
            text = await dispatch(service, name, arguments)
            return [TextContent(type="text", text=text)]

        except KGError as e:
            logger.warning(f"Tool {name} failed: {e}")
            raise
        except Exception as e:
            logger.error(f"Tool error: {e}", exc_info=True)
            raise KGError(f"Internal error: {e}") from e

    return server
