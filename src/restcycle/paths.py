"""URL composition across nested scopes.

A path starting with ``/`` is absolute relative to the base: it replaces
the accumulated parent path but keeps any sub-route the base itself
carries. Any other non-empty path is relative and is appended to the
parent path. The empty path leaves the parent path untouched.

    parent_path = "/users",  path = "/health"  ->  "/health"
    parent_path = "/users",  path = "42"       ->  "/users/42"
    parent_path = "/users",  path = ""         ->  "/users"
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any
from urllib.parse import urljoin

from restcycle.models.options import QueryStringOptions
from restcycle.querystring import stringify_query


def compose_path(parent_path: str, path: str) -> str:
    """Fold ``path`` into the accumulated ``parent_path``."""
    if path == "/":
        return "/"
    if path.startswith("/"):
        return urljoin(parent_path, path)
    if path:
        return f"{parent_path.rstrip('/')}/{path}"
    return parent_path


def compose_url(base: str, parent_path: str, path: str) -> str:
    """Plain concatenation of base and composed path, without URL resolution."""
    composed = compose_path(parent_path, path)
    return f"{base[:-1]}{composed}" if base.endswith("/") else f"{base}{composed}"


def with_identifier(path: str, identifier: Any) -> str:
    """Append ``identifier`` as the final path segment (DELETE by id)."""
    return compose_path(path, str(identifier).lstrip("/"))


def construct_url(
    base: str,
    path: str,
    query_params: Mapping[str, Any] | None = None,
    query_param_options: QueryStringOptions | None = None,
    *,
    strip_trailing_slash: bool = False,
) -> str:
    """Resolve an already composed ``path`` against ``base`` and append the query string.

    The base is treated as a directory, so ``"/b"`` under
    ``"https://api.fake/a"`` lands on ``"https://api.fake/a/b"`` while dot
    segments such as ``"../"`` still climb out of it.
    """
    normalized_base = base if base.endswith("/") else f"{base}/"
    trimmed_path = path[1:] if path.startswith("/") else path

    if query_params:
        query = stringify_query(query_params, query_param_options)
        if query:
            separator = "&" if "?" in trimmed_path else "?"
            trimmed_path = f"{trimmed_path}{separator}{query}"

    composed = urljoin(normalized_base, trimmed_path) if trimmed_path else normalized_base

    if strip_trailing_slash and composed.endswith("/"):
        return composed[:-1]
    return composed


def resolve_url(
    base: str,
    parent_path: str,
    path: str,
    query_params: Mapping[str, Any] | None = None,
    query_param_options: QueryStringOptions | None = None,
) -> str:
    """Compose ``base``, ``parent_path`` and ``path`` into one absolute URL."""
    return construct_url(base, compose_path(parent_path, path), query_params, query_param_options)
