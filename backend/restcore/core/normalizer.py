"""Request Normalizer: raw transport request -> NormalizedRequest.

Invariants:
    - Header names lowercased; repeated names joined with ", "
    - Empty path (or "/") -> empty segment tuple, meaning root
    - Empty segments ("//", trailing "/") are dropped
    - Each segment percent-decoded on its own, so "%2F" stays inside one segment
    - Missing/invalid method, bad escapes, non-UTF-8 bytes, "." and ".." -> MalformedRequestError
    - Result holds copies only, nothing from the transport object

Design Decisions:
    - Method token checked against the RFC 9110 token grammar; unknown but valid
      methods pass through so the registry can answer 405 with Allow
    - Query string parsed here but never used for routing
"""

import re
from typing import Any, Iterable, Mapping
from urllib.parse import parse_qsl, unquote

from restcore.core.errors import MalformedRequestError
from restcore.core.messages import NormalizedRequest, RawRequest

# RFC 9110 section 5.6.2 tchar
TOKEN_PATTERN = re.compile(r"^[!#$%&'*+\-.^_`|~0-9A-Za-z]+$")
_BAD_ESCAPE = re.compile(r"%(?![0-9A-Fa-f]{2})")
_FORBIDDEN_PATH_CHARS = re.compile(r"[\x00-\x20\x7f#]")


def normalize(raw: RawRequest) -> NormalizedRequest:
    """Canonicalize a raw request. Raises MalformedRequestError."""
    method = _normalize_method(raw.method)
    path, _, query_string = (raw.raw_path or "").partition("?")
    return NormalizedRequest(
        method=method,
        segments=split_path(path),
        headers=_normalize_headers(raw.headers),
        body=_normalize_body(raw.body),
        query=_parse_query(query_string),
    )


def split_path(path: str) -> tuple[str, ...]:
    """Split and percent-decode a path into segments."""
    if _FORBIDDEN_PATH_CHARS.search(path):
        raise MalformedRequestError("Path contains forbidden characters")
    if path and not path.startswith("/"):
        raise MalformedRequestError(f"Path must start with '/': {path!r}")
    segments = []
    for raw_segment in path.split("/"):
        if not raw_segment:
            continue
        segment = _decode_segment(raw_segment)
        if segment in (".", ".."):
            raise MalformedRequestError("Dot segments are not allowed")
        segments.append(segment)
    return tuple(segments)


def _decode_segment(raw_segment: str) -> str:
    if _BAD_ESCAPE.search(raw_segment):
        raise MalformedRequestError(
            f"Invalid percent-encoding in segment {raw_segment!r}",
        )
    try:
        return unquote(raw_segment, encoding="utf-8", errors="strict")
    except UnicodeDecodeError:
        raise MalformedRequestError(
            f"Segment {raw_segment!r} is not valid UTF-8 once decoded",
        ) from None


def _normalize_method(method: Any) -> str:
    if not isinstance(method, str) or not method.strip():
        raise MalformedRequestError("Request method is missing")
    method = method.strip().upper()
    if not TOKEN_PATTERN.match(method):
        raise MalformedRequestError(f"Invalid request method {method!r}")
    return method


def _normalize_headers(
    headers: Mapping[str, str] | Iterable[tuple[str, str]] | None,
) -> dict[str, str]:
    pairs = headers.items() if isinstance(headers, Mapping) else (headers or ())
    result: dict[str, str] = {}
    for name, value in pairs:
        if isinstance(name, bytes):
            name = name.decode("latin-1")
        if isinstance(value, bytes):
            value = value.decode("latin-1")
        if not TOKEN_PATTERN.match(name or ""):
            raise MalformedRequestError(f"Invalid header name {name!r}")
        key = name.lower()
        value = str(value).strip()
        result[key] = f"{result[key]}, {value}" if key in result else value
    return result


def _normalize_body(body: Any) -> bytes | None:
    if body is None:
        return None
    if not isinstance(body, (bytes, bytearray, memoryview)):
        raise MalformedRequestError("Request body must be bytes")
    return bytes(body) or None


def _parse_query(query_string: str) -> dict[str, tuple[str, ...]]:
    if not query_string:
        return {}
    try:
        pairs = parse_qsl(
            query_string, keep_blank_values=True, strict_parsing=False,
            encoding="utf-8", errors="strict",
        )
    except (UnicodeDecodeError, ValueError):
        raise MalformedRequestError("Query string cannot be decoded") from None
    query: dict[str, list[str]] = {}
    for key, value in pairs:
        query.setdefault(key, []).append(value)
    return {k: tuple(v) for k, v in query.items()}
