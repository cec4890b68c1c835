from __future__ import annotations

import re

from flask import request

_CAMEL = re.compile(r"_([a-z])")


def _camel(key: str) -> str:
    return _CAMEL.sub(lambda m: m.group(1).upper(), key)


def json_body() -> dict:
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def pick(data: dict, key: str, default=None):
    """Read a snake_case key, falling back to its camelCase spelling."""
    if key in data:
        return data[key]
    alt = _camel(key)
    if alt in data:
        return data[alt]
    return default


def page_args(default_limit: int = 20, max_limit: int = 100) -> tuple[int, int]:
    try:
        page = int(request.args.get("page") or 1)
    except (TypeError, ValueError):
        page = 1
    try:
        limit = int(request.args.get("limit") or default_limit)
    except (TypeError, ValueError):
        limit = default_limit
    return max(page, 1), max(1, min(limit, max_limit))
