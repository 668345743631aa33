"""Offset pagination over in-memory collections"""

import math
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple
from urllib.parse import urlencode

DEFAULT_LIMIT = 10
MAX_LIMIT = 100


def _to_int(value: Any, default: int) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def validate_params(page: Any = 1, limit: Any = DEFAULT_LIMIT) -> Tuple[int, int, int]:
    """Clamp page to >= 1 and limit to [1, MAX_LIMIT]; returns (page, limit, offset)."""
    page = max(1, _to_int(page, 1))
    limit = min(MAX_LIMIT, max(1, _to_int(limit, DEFAULT_LIMIT)))
    return page, limit, (page - 1) * limit


def matches(item: Mapping[str, Any], filters: Mapping[str, Any]) -> bool:
    """Strings match as case-insensitive substrings; other values exactly."""
    for key, expected in filters.items():
        actual = item.get(key)
        if isinstance(expected, str):
            if actual is None or expected.lower() not in str(actual).lower():
                return False
        elif isinstance(expected, (list, tuple, set)):
            if actual not in expected:
                return False
        elif actual != expected:
            return False
    return True


def apply_filters(items: Sequence[Mapping[str, Any]], filters: Optional[Mapping[str, Any]]) -> List[Mapping[str, Any]]:
    if not filters:
        return list(items)
    return [item for item in items if matches(item, filters)]


def paginate(
    items: Sequence[Mapping[str, Any]],
    page: Any = 1,
    limit: Any = DEFAULT_LIMIT,
    filters: Optional[Mapping[str, Any]] = None,
) -> Dict[str, Any]:
    """Filter then slice; returns {"data": [...], "pagination": {...}}"""
    page, limit, offset = validate_params(page, limit)
    filtered = apply_filters(items, filters)

    total = len(filtered)
    total_pages = math.ceil(total / limit)
    has_next = page < total_pages
    has_prev = page > 1

    return {
        "data": filtered[offset:offset + limit],
        "pagination": {
            "page": page,
            "limit": limit,
            "total": total,
            "totalPages": total_pages,
            "hasNext": has_next,
            "hasPrev": has_prev,
            "nextPage": page + 1 if has_next else None,
            "prevPage": page - 1 if has_prev else None,
        },
    }


def build_url(base_url: str, page: int, limit: int, filters: Optional[Mapping[str, Any]] = None) -> str:
    params = {"page": page, "limit": limit}
    for key in sorted(filters or {}):
        params[key] = filters[key]
    separator = "&" if "?" in base_url else "?"
    return f"{base_url}{separator}{urlencode(params)}"


def build_links(base_url: str, pagination: Mapping[str, Any], filters: Optional[Mapping[str, Any]] = None) -> Dict[str, str]:
    """self/first/last always; prev/next only when those pages exist."""
    page, limit = pagination["page"], pagination["limit"]
    last = max(1, pagination["totalPages"])
    links = {
        "self": build_url(base_url, page, limit, filters),
        "first": build_url(base_url, 1, limit, filters),
        "last": build_url(base_url, last, limit, filters),
    }
    if pagination["hasPrev"]:
        links["prev"] = build_url(base_url, pagination["prevPage"], limit, filters)
    if pagination["hasNext"]:
        links["next"] = build_url(base_url, pagination["nextPage"], limit, filters)
    return links


def list_cache_key(page: Any, limit: Any, filters: Optional[Mapping[str, Any]] = None) -> str:
    """users:list:{page}:{limit}[:{k=v,...}] with filters in key order"""
    page, limit, _ = validate_params(page, limit)
    key = f"users:list:{page}:{limit}"
    if filters:
        key += ":" + ",".join(f"{k}={filters[k]}" for k in sorted(filters))
    return key
