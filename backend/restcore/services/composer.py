"""Response Composer: HandlerOutcome or RestCoreError -> ResponseRecord.

Invariants:
    - Success status from intent: AUTO gives 200 with a body and 204 without,
      CREATED gives 201, NO_CONTENT gives 204 (body dropped)
    - Every success has a `self` link first: the matched template filled with the
      actual parameters. A handler-declared `self` is ignored
    - Links go in the JSON envelope {"data", "links"} and in an RFC 8288 Link header
    - Cacheable outcomes get Cache-Control max-age plus a strong ETag; others no-store
    - Error responses: {"error": {"kind", "message", ...}}, no links, no-store

Design Decisions:
    - Envelope over mixing links into handler data: handler bodies are never mutated
    - Authenticated responses are cached `private` so shared caches never store them
"""

import hashlib
import logging

from restcore.core.boundary_protocols import RepresentationCodec
from restcore.core.domain_types import OutcomeIntent
from restcore.core.errors import RestCoreError
from restcore.core.messages import (
    HandlerOutcome, Link, ResponseRecord, RouteMatch,
)

logger = logging.getLogger(__name__)

SELF_REL = "self"

# Set by the composer; handler-supplied values for these are discarded
_RESERVED_HEADERS = frozenset({
    "content-type", "content-length", "link", "location",
    "cache-control", "etag", "allow",
})


class ResponseComposer:
    """Builds self-descriptive responses. Holds configuration only."""

    def __init__(self, default_cache_max_age: int = 60):
        self.default_cache_max_age = default_cache_max_age

    def compose(
        self,
        result: HandlerOutcome | RestCoreError,
        codec: RepresentationCodec,
        match: RouteMatch | None = None,
        authenticated: bool = False,
    ) -> ResponseRecord:
        if isinstance(result, RestCoreError):
            return self.compose_error(result, codec)
        if match is None:
            raise ValueError("compose() needs the RouteMatch for a success")
        return self.compose_success(result, match, codec, authenticated)

    def compose_success(
        self,
        outcome: HandlerOutcome,
        match: RouteMatch,
        codec: RepresentationCodec,
        authenticated: bool = False,
    ) -> ResponseRecord:
        status = _status_for(outcome)
        links = build_links(match.self_href, outcome.links)

        headers = {
            k: v for k, v in outcome.headers.items()
            if k.lower() not in _RESERVED_HEADERS
        }
        headers["Link"] = format_link_header(links)
        if status == 201:
            headers["Location"] = outcome.location or match.self_href

        body = b""
        if status != 204:
            body = codec.encode({
                "data": outcome.body,
                "links": [link.to_dict() for link in links],
            })
            headers["Content-Type"] = codec.media_type
            headers["Vary"] = "Accept"
        elif outcome.body is not None:
            logger.warning(
                f"Body dropped from 204 response of {match.binding.handler_name}",
            )

        if outcome.cacheable and status == 200:
            max_age = (
                outcome.max_age if outcome.max_age is not None
                else self.default_cache_max_age
            )
            scope = "private" if authenticated else "public"
            headers["Cache-Control"] = f"{scope}, max-age={max_age}"
            headers["ETag"] = etag_for(body)
        else:
            headers["Cache-Control"] = "no-store"

        return ResponseRecord(status, headers, body, links)

    def compose_error(
        self, error: RestCoreError, codec: RepresentationCodec,
    ) -> ResponseRecord:
        headers = {str(k): str(v) for k, v in error.headers.items()}
        headers["Content-Type"] = codec.media_type
        headers["Cache-Control"] = "no-store"
        return ResponseRecord(
            error.http_status, headers, codec.encode(error.to_response()),
        )


def _status_for(outcome: HandlerOutcome) -> int:
    if outcome.intent == OutcomeIntent.CREATED:
        return 201
    if outcome.intent == OutcomeIntent.NO_CONTENT:
        return 204
    if outcome.intent == OutcomeIntent.OK:
        return 200
    return 204 if outcome.body is None else 200


def build_links(self_href: str, declared: tuple[Link, ...]) -> tuple[Link, ...]:
    """`self` first, then declared links in order, minus any declared `self`."""
    return (Link(SELF_REL, self_href),) + tuple(
        link for link in declared if link.rel != SELF_REL
    )


def format_link_header(links: tuple[Link, ...]) -> str:
    return ", ".join(f'<{link.href}>; rel="{link.rel}"' for link in links)


def etag_for(body: bytes) -> str:
    return '"' + hashlib.sha256(body).hexdigest() + '"'
