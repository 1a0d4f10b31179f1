import asyncio
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator

import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer
from graphql import build_schema, graphql_sync

from config import ServerConfig

SDL = '''
"""Root query"""
type Query {
  "Look up a book by id"
  book(id: ID!): Book
  books(first: Int = 10): [Book!]!
  oldBooks: [Book!]! @deprecated(reason: "Use books")
}

type Mutation {
  addBook(title: String!): Book
}

type Book {
  id: ID!
  title: String!
  author: Author
}

type Author {
  name: String!
}
'''


class StubEndpoint:
    """A tiny GraphQL endpoint that records every request it receives."""

    def __init__(
        self,
        *,
        status: int = 200,
        body: Any = None,
        raw: str | None = None,
        delay: float = 0.0,
        execute: bool = False,
    ) -> None:
        self.status = status
        self.body = body
        self.raw = raw
        self.delay = delay
        self.execute = execute
        self.schema = build_schema(SDL)
        self.requests: list[dict] = []

    async def handle(self, request: web.Request) -> web.Response:
        payload = await request.json()
        self.requests.append({"headers": request.headers.copy(), "json": payload})
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.raw is not None:
            return web.Response(status=self.status, text=self.raw)
        if self.execute:
            result = graphql_sync(
                self.schema,
                payload["query"],
                root_value={"books": [{"id": "1", "title": "Dune"}]},
                variable_values=payload.get("variables"),
            )
            body: dict = {"data": result.data}
            if result.errors:
                body["errors"] = [{"message": err.message} for err in result.errors]
            return web.json_response(body, status=self.status)
        return web.json_response(self.body, status=self.status)


@asynccontextmanager
async def serve(stub: StubEndpoint) -> AsyncIterator[str]:
    app = web.Application()
    app.router.add_post("/graphql", stub.handle)
    async with TestServer(app) as server:
        yield str(server.make_url("/graphql"))


@pytest.fixture
def config() -> ServerConfig:
    return ServerConfig(endpoint="http://127.0.0.1:1/graphql", timeout_ms=5000, max_complexity=100)


@pytest.fixture
def config_with_headers() -> ServerConfig:
    return ServerConfig(
        endpoint="http://127.0.0.1:1/graphql",
        headers={"Authorization": "Bearer default", "X-Tenant": "acme"},
        timeout_ms=5000,
        max_complexity=100,
    )
