"""Query-string serialization for composed request URLs.

Nested mappings become ``a[b]=c`` (or ``a.b=c`` with ``allow_dots``);
sequences follow ``QueryStringOptions.array_format``.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any
from urllib.parse import quote

from restcycle.models.options import QueryStringOptions

_DEFAULT_OPTIONS = QueryStringOptions()


def stringify_query(params: Mapping[str, Any], options: QueryStringOptions | None = None) -> str:
    """Serialize ``params`` into a query string without the leading ``?``."""
    opts = options or _DEFAULT_OPTIONS
    pairs: list[str] = []
    for key, value in params.items():
        pairs.extend(_encode_value(str(key), value, opts))
    return opts.delimiter.join(pairs)


def merge_query_params(*layers: Mapping[str, Any] | None) -> dict[str, Any]:
    """Merge query parameter layers; later layers win per key."""
    merged: dict[str, Any] = {}
    for layer in layers:
        if layer:
            merged.update(layer)
    return merged


def _encode_value(prefix: str, value: Any, opts: QueryStringOptions) -> list[str]:
    if value is None:
        return [] if opts.skip_nulls else [_pair(prefix, "", opts)]

    if isinstance(value, Mapping):
        pairs: list[str] = []
        for key, nested in value.items():
            nested_key = f"{prefix}.{key}" if opts.allow_dots else f"{prefix}[{key}]"
            pairs.extend(_encode_value(nested_key, nested, opts))
        return pairs

    if isinstance(value, (list, tuple)):
        if opts.array_format == "comma":
            items = [_scalar(item) for item in value if item is not None]
            return [_pair(prefix, ",".join(items), opts, safe=",")] if items else []

        pairs = []
        for index, item in enumerate(value):
            if opts.array_format == "indices":
                item_key = f"{prefix}[{index}]"
            elif opts.array_format == "brackets":
                item_key = f"{prefix}[]"
            else:
                item_key = prefix
            pairs.extend(_encode_value(item_key, item, opts))
        return pairs

    return [_pair(prefix, _scalar(value), opts)]


def _scalar(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _pair(key: str, value: str, opts: QueryStringOptions, safe: str = "") -> str:
    if not opts.encode:
        return f"{key}={value}"
    return f"{quote(key, safe='')}={quote(value, safe=safe)}"
