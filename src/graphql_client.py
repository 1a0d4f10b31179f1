"""
Outbound GraphQL helpers used by the MCP tool handlers.

Everything here is stateless: callers pass the endpoint, headers and timeout
explicitly, and the process-wide defaults travel in through ``default_headers``.
Only the two HTTP helpers suspend; the rest is plain document inspection over
graphql-core ASTs.
"""
from __future__ import annotations

import asyncio
import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Mapping

import aiohttp
from graphql import (
    GraphQLError,
    GraphQLSchema,
    OperationDefinitionNode,
    OperationType,
    Visitor,
    build_client_schema,
    get_introspection_query,
    parse,
    visit,
)

from config import APP_NAME, DEFAULT_TIMEOUT_MS

_BASE_HEADERS = {"Content-Type": "application/json", "Accept": "application/json"}
_WHITESPACE = re.compile(r"\s+")
logger = logging.getLogger(APP_NAME)


@dataclass(frozen=True)
class GraphQLHTTPResponse:
    status: int
    payload: dict[str, Any]

    @property
    def data(self) -> Any:
        return self.payload.get("data")

    @property
    def errors(self) -> list | None:
        return self.payload.get("errors")


@dataclass(frozen=True)
class SchemaFetchResult:
    schema: GraphQLSchema
    introspection_result: dict[str, Any]


def _single_line(text: str) -> str:
    return " ".join(text.split())


def _message_of(error: BaseException) -> str:
    message = getattr(error, "message", None)
    if isinstance(message, str) and message:
        return _single_line(message)
    text = str(error)
    if text:
        return _single_line(text)
    return error.__class__.__name__


def sanitize_error_message(error: BaseException) -> str:
    """Turn any failure into a one-line message suitable for a tool result."""
    try:
        if isinstance(error, aiohttp.ClientResponseError):
            return f"Server responded with status {error.status}: {_message_of(error)}"
        if isinstance(error, (aiohttp.ClientConnectionError, asyncio.TimeoutError)):
            return f"No response received: {_message_of(error)}"
        return _message_of(error)
    except Exception:
        return error.__class__.__name__


def format_graphql_query(query: str) -> str:
    return _WHITESPACE.sub(" ", query).strip()


def is_mutation(query: str) -> bool:
    """
    Report whether any top-level operation is a mutation.

    Unparseable text returns False; the query handler rejects it at its syntax
    check before this gate runs.
    """
    try:
        document = parse(query)
    except GraphQLError:
        return False
    for definition in document.definitions:
        if (
            isinstance(definition, OperationDefinitionNode)
            and definition.operation == OperationType.MUTATION
        ):
            return True
    return False


class _FieldCounter(Visitor):
    def __init__(self) -> None:
        super().__init__()
        self.count = 0

    def enter_field(self, *_args: Any) -> None:
        self.count += 1


def calculate_query_complexity(query: str, max_complexity: int) -> int:
    """
    Count every field selection in the document, one point each.

    Nested, aliased and fragment fields all count the same. Unparseable text
    scores ``max_complexity + 1`` so the complexity gate always rejects it.
    """
    try:
        document = parse(query)
    except GraphQLError:
        return max_complexity + 1
    counter = _FieldCounter()
    visit(document, counter)
    return counter.count


def merge_headers(*layers: Mapping[str, str] | None) -> dict[str, str]:
    """Merge header layers in order; a later layer wins, names compared case-insensitively."""
    merged: dict[str, str] = {}
    names: dict[str, str] = {}
    for layer in layers:
        for name, value in (layer or {}).items():
            previous = names.get(name.lower())
            if previous is not None:
                del merged[previous]
            names[name.lower()] = name
            merged[name] = value
    return merged


def decode_variables(variables: Mapping[str, Any] | str | None) -> dict[str, Any] | None:
    if variables is None:
        return None
    if isinstance(variables, str):
        decoded = json.loads(variables)
        if decoded is None:
            return None
        if not isinstance(decoded, dict):
            raise ValueError("Variables must be a JSON object")
        return decoded
    return dict(variables)


async def _post_json(
    endpoint: str,
    payload: dict,
    headers: Mapping[str, str],
    timeout_ms: int,
) -> GraphQLHTTPResponse:
    timeout = aiohttp.ClientTimeout(total=timeout_ms / 1000 if timeout_ms else None)
    try:
        async with aiohttp.ClientSession(timeout=timeout) as session:
            async with session.post(endpoint, json=payload, headers=dict(headers)) as resp:
                resp.raise_for_status()
                text = await resp.text()
                status = resp.status
    except asyncio.TimeoutError as exc:
        raise aiohttp.ServerTimeoutError(f"timeout of {timeout_ms}ms exceeded") from exc

    if not text:
        return GraphQLHTTPResponse(status=status, payload={})
    try:
        body = json.loads(text)
    except json.JSONDecodeError as exc:
        raise ValueError(f"Response from {endpoint} was not valid JSON") from exc
    if not isinstance(body, dict):
        raise ValueError(f"Response from {endpoint} was not a JSON object")
    return GraphQLHTTPResponse(status=status, payload=body)


async def execute_graphql_query(
    endpoint: str,
    query: str,
    variables: Mapping[str, Any] | str | None = None,
    headers: Mapping[str, str] | None = None,
    timeout_ms: int = DEFAULT_TIMEOUT_MS,
    default_headers: Mapping[str, str] | None = None,
) -> GraphQLHTTPResponse:
    processed_variables = decode_variables(variables)
    request_headers = merge_headers(_BASE_HEADERS, default_headers, headers)
    logger.debug("POST %s (timeout=%sms)", endpoint, timeout_ms)
    return await _post_json(
        endpoint,
        {"query": query, "variables": processed_variables},
        request_headers,
        timeout_ms,
    )


async def fetch_graphql_schema(
    endpoint: str,
    headers: Mapping[str, str] | None = None,
    include_deprecated: bool = True,
    timeout_ms: int = DEFAULT_TIMEOUT_MS,
    default_headers: Mapping[str, str] | None = None,
) -> SchemaFetchResult:
    payload = {
        "query": get_introspection_query(
            descriptions=True,
            input_value_deprecation=include_deprecated,
        ),
    }
    request_headers = merge_headers(_BASE_HEADERS, default_headers, headers)
    logger.debug("Introspecting %s (timeout=%sms)", endpoint, timeout_ms)
    result = await _post_json(endpoint, payload, request_headers, timeout_ms)
    if result.errors:
        raise RuntimeError(f"GraphQL server returned errors: {json.dumps(result.errors)}")
    data = result.data
    if not data:
        raise RuntimeError("Introspection response missing 'data'.")
    schema = build_client_schema(data)
    return SchemaFetchResult(schema=schema, introspection_result=data)
