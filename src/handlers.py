from __future__ import annotations

import json
import logging
import time
from typing import Any

from graphql import GraphQLError, parse, print_schema
from mcp.types import CallToolResult, TextContent
from pydantic import BaseModel, ConfigDict, Field, field_validator

import graphql_client
from config import APP_NAME, ServerConfig

logger = logging.getLogger(APP_NAME)

MUTATIONS_DISABLED_MESSAGE = (
    "Mutation operations are not allowed unless explicitly enabled with allowMutations=true"
)


def _stringify_headers(value: Any) -> Any:
    if isinstance(value, dict):
        return {str(key): str(val) for key, val in value.items()}
    return value


class QueryArguments(BaseModel):
    """Arguments accepted by the ``graphql_query`` tool."""

    model_config = ConfigDict(extra="ignore")

    query: str = Field(min_length=1)
    variables: dict[str, Any] | str | None = None
    endpoint: str | None = None
    headers: dict[str, str] | None = None
    timeout: int | None = Field(default=None, ge=0)
    allowMutations: bool = False

    @field_validator("headers", mode="before")
    @classmethod
    def stringify_header_values(cls, value: Any) -> Any:
        return _stringify_headers(value)


class IntrospectArguments(BaseModel):
    """Arguments accepted by the ``graphql_introspect`` tool."""

    model_config = ConfigDict(extra="ignore")

    endpoint: str | None = None
    headers: dict[str, str] | None = None
    includeDeprecated: bool = True
    timeout: int | None = Field(default=None, ge=0)

    @field_validator("headers", mode="before")
    @classmethod
    def stringify_header_values(cls, value: Any) -> Any:
        return _stringify_headers(value)


def text_result(*texts: str, is_error: bool = False) -> CallToolResult:
    return CallToolResult(
        content=[TextContent(type="text", text=text) for text in texts],
        isError=is_error,
    )


def error_result(message: str) -> CallToolResult:
    return text_result(message, is_error=True)


def _default_headers_lines(config: ServerConfig) -> list[str]:
    if not config.has_default_headers:
        return []
    return [f"Using default headers: {json.dumps(dict(config.headers), indent=2)}"]


def _join_error_messages(errors: Any) -> str:
    if not isinstance(errors, list):
        return str(errors)
    messages = []
    for err in errors:
        if isinstance(err, dict):
            messages.append(str(err.get("message", "")))
        else:
            messages.append(str(err))
    return ", ".join(messages)


async def handle_graphql_query(arguments: QueryArguments, config: ServerConfig) -> CallToolResult:
    endpoint = arguments.endpoint or config.endpoint
    timeout_ms = config.timeout_ms if arguments.timeout is None else arguments.timeout
    query = arguments.query
    try:
        parse(query)

        # is_mutation fails open on bad syntax; the parse above has already rejected it
        if not arguments.allowMutations and graphql_client.is_mutation(query):
            logger.info("Rejected mutation for %s", endpoint)
            return error_result(MUTATIONS_DISABLED_MESSAGE)

        complexity = graphql_client.calculate_query_complexity(query, config.max_complexity)
        if complexity > config.max_complexity:
            logger.info("Rejected query with complexity %s (max %s)", complexity, config.max_complexity)
            return error_result(
                f"Query complexity ({complexity}) exceeds maximum allowed ({config.max_complexity})"
            )

        try:
            variables = graphql_client.decode_variables(arguments.variables)
        except ValueError as exc:
            return error_result(f"Failed to parse variables as JSON: {exc}")

        started = time.perf_counter()
        response = await graphql_client.execute_graphql_query(
            endpoint,
            query,
            variables=variables,
            headers=arguments.headers,
            timeout_ms=timeout_ms,
            default_headers=config.headers,
        )
        elapsed_ms = int((time.perf_counter() - started) * 1000)
        logger.debug("Query against %s finished in %sms", endpoint, elapsed_ms)

        if response.errors:
            return error_result(
                f"GraphQL server returned errors: {_join_error_messages(response.errors)}"
            )

        formatted_query = graphql_client.format_graphql_query(query)
        formatted_data = json.dumps(response.data, indent=2, ensure_ascii=False)
        return text_result(
            f"Query executed successfully in {elapsed_ms}ms at {endpoint}",
            *_default_headers_lines(config),
            f"\nQuery:\n```graphql\n{formatted_query}\n```",
            f"\nResult:\n```json\n{formatted_data}\n```",
        )
    except Exception as exc:
        if not isinstance(exc, GraphQLError):
            logger.warning("Query against %s failed: %s", endpoint, exc)
        return error_result(
            f"Error executing GraphQL query: {graphql_client.sanitize_error_message(exc)}"
        )


async def handle_graphql_introspect(
    arguments: IntrospectArguments, config: ServerConfig
) -> CallToolResult:
    endpoint = arguments.endpoint or config.endpoint
    timeout_ms = config.timeout_ms if arguments.timeout is None else arguments.timeout
    try:
        fetched = await graphql_client.fetch_graphql_schema(
            endpoint,
            headers=arguments.headers,
            include_deprecated=arguments.includeDeprecated,
            timeout_ms=timeout_ms,
            default_headers=config.headers,
        )
        schema_text = print_schema(fetched.schema)
    except Exception as exc:
        logger.warning("Introspection of %s failed: %s", endpoint, exc)
        return error_result(
            f"Error introspecting GraphQL schema: {graphql_client.sanitize_error_message(exc)}"
        )

    return text_result(
        f"Schema introspection from {endpoint} completed successfully",
        *_default_headers_lines(config),
        f"\nGraphQL Schema:\n```graphql\n{schema_text}\n```",
    )
