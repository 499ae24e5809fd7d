"""
Helpers shared by the application, request and response objects.

Includes the compilers for the settings that derive a function
("etag", "query parser"), ETag generation and conditional-GET freshness.
"""

import base64
import hashlib
import re
from email.utils import parsedate_to_datetime
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Union
from urllib.parse import parse_qsl

from .exceptions import SettingError

_CACHE_CONTROL_NO_CACHE_RE = re.compile(r"(?:^|,)\s*?no-cache\s*?(?:,|$)")
_BRACKET_RE = re.compile(r"\[([^\[\]]*)\]")
_INDEX_RE = re.compile(r"0|[1-9][0-9]*")
# larger indices stay dict keys
_ARRAY_LIMIT = 20


def flatten(items: Iterable[Any]) -> List[Any]:
    """Flatten nested lists and tuples into a single list."""
    flat: List[Any] = []
    for item in items:
        if isinstance(item, (list, tuple)):
            flat.extend(flatten(item))
        else:
            flat.append(item)
    return flat


# ------------------ ETAG ------------------


def _entity_tag(body: bytes) -> str:
    if not body:
        # fast-path empty body
        return '"0-2jmj7l5rSw0yVb/vlWAYkK/YBwk"'

    digest = base64.b64encode(hashlib.sha1(body).digest()).decode("ascii")[:27]
    return f'"{len(body):x}-{digest}"'


def _create_etag_generator(weak: bool) -> Callable[..., str]:
    def generate(body: Union[str, bytes], encoding: str = "utf-8") -> str:
        data = body.encode(encoding) if isinstance(body, str) else body
        tag = _entity_tag(data)
        return f"W/{tag}" if weak else tag

    generate.__name__ = "wetag" if weak else "etag"
    return generate


etag = _create_etag_generator(weak=False)
wetag = _create_etag_generator(weak=True)


def compile_etag(value: Any) -> Optional[Callable[..., str]]:
    """Compile the "etag" setting to an ETag generator (or None when disabled)."""
    if callable(value):
        return value

    if value is True or value == "weak":
        return wetag
    if value is False:
        return None
    if value == "strong":
        return etag

    raise SettingError(f"unknown value for etag function: {value!r}")


# ------------------ QUERY STRINGS ------------------


def parse_simple_query(query: str) -> Dict[str, Any]:
    """Flat query parsing; repeated keys collect into a list."""
    result: Dict[str, Any] = {}
    for key, value in parse_qsl(query, keep_blank_values=True):
        if key in result:
            existing = result[key]
            if isinstance(existing, list):
                existing.append(value)
            else:
                result[key] = [existing, value]
        else:
            result[key] = value
    return result


def parse_extended_query(query: str) -> Dict[str, Any]:
    """
    Query parsing with nested bracket syntax.

    Example:
        "user[name]=tobi&user[age]=3&tags[]=a&tags[]=b"
        -> {"user": {"name": "tobi", "age": "3"}, "tags": ["a", "b"]}

    Repeated keys merge: scalars collect into a list, and numeric indices
    ("a[0]=x&a[1]=y") build lists.
    """
    result: Dict[str, Any] = {}
    for key, value in parse_qsl(query, keep_blank_values=True):
        head, _, rest = key.partition("[")
        segments = _BRACKET_RE.findall("[" + rest) if rest else []
        if not head or not segments:
            _merge(result, key, value)
            continue

        _merge(result, head, _build_nested(segments, value))
    return {key: _compact(value) for key, value in result.items()}


def _build_nested(segments: List[str], value: Any) -> Any:
    for segment in reversed(segments):
        value = [value] if segment == "" else {segment: value}
    return value


def _merge(target: Dict[str, Any], key: str, value: Any) -> None:
    if key not in target:
        target[key] = value
        return

    existing = target[key]
    if isinstance(existing, dict) and isinstance(value, dict):
        for name, item in value.items():
            _merge(existing, name, item)
    elif isinstance(existing, list):
        existing.extend(value if isinstance(value, list) else [value])
    else:
        target[key] = [existing] + (value if isinstance(value, list) else [value])


def _compact(value: Any) -> Any:
    """Turn dicts keyed only by small array indices into lists, ordered by index."""
    if isinstance(value, list):
        return [_compact(item) for item in value]
    if not isinstance(value, dict):
        return value

    items = {key: _compact(item) for key, item in value.items()}
    if items and all(_INDEX_RE.fullmatch(key) and int(key) <= _ARRAY_LIMIT for key in items):
        return [items[key] for key in sorted(items, key=int)]
    return items


def compile_query_parser(value: Any) -> Optional[Callable[[str], Dict[str, Any]]]:
    """Compile the "query parser" setting to a parser function (or None when disabled)."""
    if callable(value):
        return value

    if value is True or value == "simple":
        return parse_simple_query
    if value is False:
        return None
    if value == "extended":
        return parse_extended_query

    raise SettingError(f"unknown value for query parser function: {value!r}")


# ------------------ FRESHNESS ------------------


def _parse_http_date(value: Optional[str]):
    if not value:
        return None
    try:
        return parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None


def is_fresh(request_headers: Mapping[str, str], response_headers: Mapping[str, Any]) -> bool:
    """
    Check freshness of a response against the request's conditional headers.

    Both mappings use lower-case header names.
    """
    modified_since = request_headers.get("if-modified-since")
    none_match = request_headers.get("if-none-match")

    # unconditional request
    if not modified_since and not none_match:
        return False

    cache_control = request_headers.get("cache-control")
    if cache_control and _CACHE_CONTROL_NO_CACHE_RE.search(cache_control):
        return False

    if none_match and none_match != "*":
        tag = response_headers.get("etag")
        if not tag:
            return False

        matches = [item.strip() for item in none_match.split(",")]
        candidates = {tag, f"W/{tag}", tag[2:] if tag.startswith("W/") else tag}
        if not any(item in candidates for item in matches):
            return False

    if modified_since:
        last_modified = _parse_http_date(response_headers.get("last-modified"))
        since = _parse_http_date(modified_since)
        if last_modified is None or since is None or last_modified > since:
            return False

    return True
