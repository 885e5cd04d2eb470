"""Content Negotiation: pick a response codec from Accept, decode bodies by Content-Type.

Invariants:
    - The default codec is the first registered and answers absent or "*/*" Accept
    - A range with q=0 excludes the media type it names
    - Unknown request Content-Type -> UnsupportedMediaTypeError (415)
    - Undecodable body -> ClientError (400)
    - No acceptable codec -> NotAcceptableError (406)

Design Decisions:
    - JSON is the only built-in representation; other formats plug in through
      CodecRegistry.register (RepresentationCodec protocol)
    - Compact JSON separators so bodies are byte-stable for ETags
    - pydantic models returned by handlers are dumped in JSON mode
"""

import dataclasses
import json
import logging
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

from pydantic import BaseModel

from restcore.core.boundary_protocols import RepresentationCodec
from restcore.core.errors import (
    ClientError, NotAcceptableError, UnsupportedMediaTypeError,
)

logger = logging.getLogger(__name__)

JSON_MEDIA_TYPE = "application/json"


class JsonCodec:
    """application/json via the standard json module."""

    media_type = JSON_MEDIA_TYPE

    def encode(self, value: Any) -> bytes:
        return json.dumps(
            value, ensure_ascii=False, separators=(",", ":"),
            default=_json_default,
        ).encode("utf-8")

    def decode(self, data: bytes) -> Any:
        return json.loads(data.decode("utf-8"))


def _json_default(value: Any) -> Any:
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json")
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return dataclasses.asdict(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (UUID, Decimal)):
        return str(value)
    if isinstance(value, (set, frozenset, tuple)):
        return list(value)
    raise TypeError(f"{type(value).__name__} is not JSON serializable")


def media_type_of(header_value: str | None) -> str | None:
    """'Application/JSON; charset=utf-8' -> 'application/json'."""
    if not header_value:
        return None
    return header_value.split(";", 1)[0].strip().lower() or None


def parse_accept(accept: str | None) -> list[tuple[str, float]]:
    """Parse an Accept header into (range, q) pairs. Malformed entries skipped."""
    if not accept or not accept.strip():
        return [("*/*", 1.0)]
    ranges = []
    for item in accept.split(","):
        media, *params = [p.strip() for p in item.split(";")]
        media = media.lower()
        if "/" not in media:
            continue
        q = 1.0
        for param in params:
            key, _, value = param.partition("=")
            if key.strip().lower() == "q":
                try:
                    q = float(value)
                except ValueError:
                    q = -1.0
        if 0.0 <= q <= 1.0:
            ranges.append((media, q))
    return ranges


def _quality(media_type: str, ranges: list[tuple[str, float]]) -> float:
    """q for a media type, taken from the most specific matching range."""
    main = media_type.split("/", 1)[0]
    best_rank, best_q = -1, 0.0
    for media_range, q in ranges:
        if media_range == media_type:
            rank = 2
        elif media_range == f"{main}/*":
            rank = 1
        elif media_range == "*/*":
            rank = 0
        else:
            continue
        if rank > best_rank:
            best_rank, best_q = rank, q
    return best_q


class CodecRegistry:
    """Codecs keyed by media type, in registration order."""

    def __init__(self, *codecs: RepresentationCodec):
        self._codecs: dict[str, RepresentationCodec] = {}
        for codec in codecs or (JsonCodec(),):
            self.register(codec)

    def register(self, codec: RepresentationCodec) -> None:
        media_type = codec.media_type.lower()
        if media_type in self._codecs:
            raise ValueError(f"Codec for {media_type} already registered")
        self._codecs[media_type] = codec

    @property
    def default(self) -> RepresentationCodec:
        return next(iter(self._codecs.values()))

    @property
    def media_types(self) -> tuple[str, ...]:
        return tuple(self._codecs)

    def get(self, media_type: str) -> RepresentationCodec | None:
        return self._codecs.get(media_type.lower())

    def for_accept(self, accept: str | None) -> RepresentationCodec:
        """Best codec for an Accept header, or NotAcceptableError."""
        ranges = parse_accept(accept)
        best, best_q = None, 0.0
        for media_type, codec in self._codecs.items():
            q = _quality(media_type, ranges)
            if q > best_q:
                best, best_q = codec, q
        if best is None:
            raise NotAcceptableError(accept or "", self.media_types)
        return best

    def for_error(self, accept: str | None) -> RepresentationCodec:
        """Like for_accept, but falls back to the default codec."""
        try:
            return self.for_accept(accept)
        except NotAcceptableError:
            return self.default

    def decode(self, body: bytes | None, content_type: str | None) -> Any:
        """Decode a request body. None when there is no body."""
        if body is None:
            return None
        media_type = media_type_of(content_type) or self.default.media_type
        codec = self.get(media_type)
        if codec is None:
            raise UnsupportedMediaTypeError(media_type)
        try:
            return codec.decode(body)
        except (ValueError, UnicodeDecodeError) as e:
            logger.info(f"Undecodable {media_type} body: {e}")
            raise ClientError(
                f"Request body is not valid {media_type}",
            ) from None
