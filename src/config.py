from __future__ import annotations

import argparse
import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Mapping, Sequence

from dotenv import load_dotenv

APP_NAME = "graphql-mcp-bridge"
VERSION = "1.0.0"
DEFAULT_ENDPOINT = "http://localhost:4000/graphql"
DEFAULT_TIMEOUT_MS = 30000
DEFAULT_MAX_COMPLEXITY = 100
_REPO_ROOT = Path(__file__).resolve().parent.parent
_ENV_PATHS = [Path.cwd() / ".env", _REPO_ROOT / ".env"]

logger = logging.getLogger(APP_NAME)


def load_env_files(paths: Sequence[Path] = tuple(_ENV_PATHS)) -> None:
    # exported variables win over .env entries
    for path in paths:
        if path.exists():
            load_dotenv(path, override=False)


load_env_files()


@dataclass(frozen=True)
class ServerConfig:
    endpoint: str = DEFAULT_ENDPOINT
    headers: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))
    timeout_ms: int = DEFAULT_TIMEOUT_MS
    max_complexity: int = DEFAULT_MAX_COMPLEXITY
    version: str = VERSION
    log_level: str = "INFO"

    def __post_init__(self) -> None:
        if not isinstance(self.headers, MappingProxyType):
            object.__setattr__(self, "headers", MappingProxyType(dict(self.headers)))

    @property
    def has_default_headers(self) -> bool:
        return len(self.headers) > 0


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = int(raw)
    except ValueError as exc:
        raise ValueError(f"Invalid {name} value: {raw!r}") from exc
    if value < 0:
        raise ValueError(f"{name} must be a non-negative integer")
    return value


def _non_negative_int(raw: str) -> int:
    try:
        value = int(raw)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"expected an integer, got {raw!r}") from exc
    if value < 0:
        raise argparse.ArgumentTypeError("must be a non-negative integer")
    return value


def parse_default_headers(raw_headers: str | None) -> dict[str, str]:
    """Parse the ``--headers`` JSON object, falling back to no headers on bad input."""
    if not raw_headers:
        return {}
    try:
        parsed = json.loads(raw_headers)
    except json.JSONDecodeError as exc:
        logger.warning("Error parsing default headers: %s", exc)
        logger.warning("Headers should be a valid JSON object string")
        return {}
    if not isinstance(parsed, dict):
        logger.warning("Default headers must be a JSON object, got %s", type(parsed).__name__)
        return {}
    return {str(key): str(val) for key, val in parsed.items()}


def build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog=APP_NAME,
        description="Expose a GraphQL endpoint as MCP tools over stdio.",
    )
    parser.add_argument(
        "-e",
        "--endpoint",
        default=os.environ.get("ENDPOINT") or DEFAULT_ENDPOINT,
        help="Default GraphQL endpoint URL (env: ENDPOINT).",
    )
    parser.add_argument(
        "-H",
        "--headers",
        default=None,
        help="Default headers for all requests, as a JSON object string.",
    )
    parser.add_argument(
        "-t",
        "--timeout",
        type=_non_negative_int,
        default=_env_int("TIMEOUT", DEFAULT_TIMEOUT_MS),
        help="Default request timeout in milliseconds (env: TIMEOUT).",
    )
    parser.add_argument(
        "-m",
        "--maxComplexity",
        dest="max_complexity",
        type=_non_negative_int,
        default=_env_int("MAX_DEPTH", DEFAULT_MAX_COMPLEXITY),
        help="Maximum allowed query complexity (env: MAX_DEPTH).",
    )
    parser.add_argument(
        "--log-level",
        default=os.environ.get("LOG_LEVEL", "INFO"),
        help="Log level (DEBUG, INFO, WARNING, ERROR).",
    )
    parser.add_argument(
        "-v",
        "--version",
        action="version",
        version=VERSION,
    )
    return parser


def load_config(argv: Sequence[str] | None = None) -> ServerConfig:
    args = build_arg_parser().parse_args(argv)
    return ServerConfig(
        endpoint=args.endpoint,
        headers=parse_default_headers(args.headers),
        timeout_ms=args.timeout,
        max_complexity=args.max_complexity,
        version=VERSION,
        log_level=str(args.log_level).upper(),
    )
