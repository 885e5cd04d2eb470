"""Boundary Protocols: contracts between the core and its collaborators.

Invariants:
    - Core never imports concrete handlers, authenticators or codecs
    - Collaborators receive request-scoped values only, never session state

Design Decisions:
    - Protocol over ABC: structural subtyping, plain callables still fit
    - handle() may be sync or async; the dispatcher decides how to run it
"""

from typing import Any, Awaitable, Protocol, Union

from restcore.core.messages import HandlerOutcome, RequestContext

HandlerReturn = Union[HandlerOutcome, Any]


class ResourceHandler(Protocol):
    """A concrete handler variant registered at startup.

    Returning a bare value is shorthand for HandlerOutcome(body=value).
    Raise ClientError (or pydantic.ValidationError) for request problems.
    """
    def handle(
        self, context: RequestContext,
    ) -> HandlerReturn | Awaitable[HandlerReturn]: ...


class Authenticator(Protocol):
    """Turns an Authorization header value into an opaque identity.

    Returns None, or raises AuthenticationError, when the value is not accepted.
    """
    def authenticate(self, authorization: str | None) -> Any | None: ...


class RepresentationCodec(Protocol):
    """Serializer for one media type."""
    media_type: str

    def encode(self, value: Any) -> bytes: ...
    def decode(self, data: bytes) -> Any: ...
