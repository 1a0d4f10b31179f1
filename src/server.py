"""
GraphQL MCP bridge exposing `graphql_query` and `graphql_introspect` tools over stdio.

How `graphql_query` works:
- Parse the query, refuse mutations unless `allowMutations=true`, and refuse documents
  whose field count exceeds the configured ceiling.
- POST `{query, variables}` to the endpoint with default headers merged under the
  request headers, then echo the normalized query and pretty-printed data back.

How `graphql_introspect` works:
- Run the standard introspection query, build a client schema and print it as SDL.

Startup notes:
- Defaults come from CLI flags, then ENDPOINT/TIMEOUT/MAX_DEPTH (a `.env` file is honoured).
- Logs go to stderr; stdout carries the MCP stream.
"""
from __future__ import annotations

import asyncio
import logging
import sys
from typing import Any, Sequence

from mcp.server.lowlevel import Server
from mcp.server.stdio import stdio_server
from mcp.types import CallToolResult, Tool
from pydantic import BaseModel, ValidationError

from config import APP_NAME, ServerConfig, load_config
from handlers import (
    IntrospectArguments,
    QueryArguments,
    error_result,
    handle_graphql_introspect,
    handle_graphql_query,
)

logger = logging.getLogger(APP_NAME)

_HEADERS_PROPERTY = {
    "type": "object",
    "additionalProperties": {"type": "string"},
    "description": "Additional headers to include in the request (will be merged with default headers)",
}
_ENDPOINT_PROPERTY = {
    "type": "string",
    "description": "GraphQL endpoint URL (can be omitted to use default)",
}
_TIMEOUT_PROPERTY = {
    "type": "integer",
    "minimum": 0,
    "description": "Request timeout in milliseconds",
}

GRAPHQL_QUERY_TOOL = Tool(
    name="graphql_query",
    description=(
        "Execute GraphQL queries using either a specified endpoint or the default endpoint "
        "configured during installation"
    ),
    inputSchema={
        "type": "object",
        "properties": {
            "endpoint": _ENDPOINT_PROPERTY,
            "query": {
                "type": "string",
                "description": "GraphQL query to execute",
            },
            "variables": {
                "type": ["object", "string"],
                "description": "Variables to use with the query (JSON object or JSON-encoded string)",
            },
            "headers": _HEADERS_PROPERTY,
            "timeout": _TIMEOUT_PROPERTY,
            "allowMutations": {
                "type": "boolean",
                "description": "Allow mutation operations (disabled by default)",
            },
        },
        "required": ["query"],
    },
)

GRAPHQL_INTROSPECT_TOOL = Tool(
    name="graphql_introspect",
    description="Introspect a GraphQL schema from an endpoint with configurable headers",
    inputSchema={
        "type": "object",
        "properties": {
            "endpoint": _ENDPOINT_PROPERTY,
            "headers": _HEADERS_PROPERTY,
            "includeDeprecated": {
                "type": "boolean",
                "description": "Whether to include deprecated fields",
            },
            "timeout": _TIMEOUT_PROPERTY,
        },
    },
)

GRAPHQL_TOOLS = (GRAPHQL_QUERY_TOOL, GRAPHQL_INTROSPECT_TOOL)

_TOOL_ARGUMENTS: dict[str, type[BaseModel]] = {
    GRAPHQL_QUERY_TOOL.name: QueryArguments,
    GRAPHQL_INTROSPECT_TOOL.name: IntrospectArguments,
}


def list_tools() -> list[Tool]:
    return list(GRAPHQL_TOOLS)


def _describe_validation_error(exc: ValidationError) -> str:
    parts = []
    for err in exc.errors():
        location = ".".join(str(part) for part in err.get("loc", ())) or "arguments"
        parts.append(f"{location}: {err.get('msg', 'invalid value')}")
    return "; ".join(parts)


def parse_tool_arguments(name: str, arguments: dict[str, Any] | None) -> BaseModel:
    """Validate the raw argument bag into the model registered for ``name``."""
    model = _TOOL_ARGUMENTS.get(name)
    if model is None:
        raise KeyError(name)
    try:
        return model.model_validate(arguments or {})
    except ValidationError as exc:
        raise ValueError(
            f"Invalid arguments for {name}: {_describe_validation_error(exc)}"
        ) from exc


async def dispatch_tool(
    name: str, arguments: dict[str, Any] | None, config: ServerConfig
) -> CallToolResult:
    if name not in _TOOL_ARGUMENTS:
        return error_result(f"Unknown tool: {name}")
    try:
        parsed = parse_tool_arguments(name, arguments)
        if isinstance(parsed, QueryArguments):
            return await handle_graphql_query(parsed, config)
        if isinstance(parsed, IntrospectArguments):
            return await handle_graphql_introspect(parsed, config)
        return error_result(f"Unknown tool: {name}")
    except Exception as exc:
        logger.warning("Tool %s failed: %s", name, exc)
        return error_result(f"Error: {exc}")


def create_server(config: ServerConfig) -> Server:
    server = Server(APP_NAME, version=config.version)

    @server.list_tools()
    async def _list_tools() -> list[Tool]:
        return list_tools()

    # arguments are validated by the pydantic models in dispatch_tool
    @server.call_tool(validate_input=False)
    async def _call_tool(name: str, arguments: dict[str, Any]) -> CallToolResult:
        return await dispatch_tool(name, arguments, config)

    return server


async def run_stdio(config: ServerConfig) -> None:
    server = create_server(config)
    logger.info("Starting %s %s (endpoint=%s)", APP_NAME, config.version, config.endpoint)
    async with stdio_server() as (read_stream, write_stream):
        logger.info("%s ready", APP_NAME)
        await server.run(read_stream, write_stream, server.create_initialization_options())


def main(argv: Sequence[str] | None = None) -> int:
    config = load_config(argv)
    logging.basicConfig(
        level=getattr(logging, config.log_level, logging.INFO),
        stream=sys.stderr,
    )
    if config.has_default_headers:
        logger.info("Using default headers: %s", sorted(config.headers.keys()))
    try:
        asyncio.run(run_stdio(config))
    except KeyboardInterrupt:
        return 0
    except Exception as exc:
        logger.error("Fatal error running server: %s", exc)
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
