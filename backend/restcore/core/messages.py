"""Messages: the immutable records that flow through one request/response cycle.

Invariants:
    - Every record is frozen; mappings are exposed as read-only proxies
    - NormalizedRequest header keys are lowercase
    - ResponseRecord.status_code is within 100-599
    - No record holds a reference to transport objects or to another request

Design Decisions:
    - Frozen dataclasses over pydantic models: built on the hot path, never parsed
      from untrusted JSON, and immutability is the statelessness guarantee
    - Containers copied on construction so callers cannot mutate them afterwards
"""

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Callable, Iterable, Mapping

from restcore.core.domain_types import OutcomeIntent

_EMPTY: Mapping = MappingProxyType({})


def freeze_mapping(values: Mapping | None) -> Mapping:
    """Copy into a read-only mapping."""
    if not values:
        return _EMPTY
    return MappingProxyType(dict(values))


# ─── Transport boundary ─────────────────────────────────────────

@dataclass(frozen=True)
class RawRequest:
    """Request as handed over by the transport layer."""
    method: str
    raw_path: str
    headers: Mapping[str, str] | Iterable[tuple[str, str]] = ()
    body: bytes | None = None


@dataclass(frozen=True)
class RawResponse:
    """Response handed back to the transport layer."""
    status_code: int
    headers: Mapping[str, str]
    body: bytes = b""


# ─── Request side ───────────────────────────────────────────────

@dataclass(frozen=True)
class NormalizedRequest:
    """Canonical, self-descriptive request; discarded after dispatch."""
    method: str
    segments: tuple[str, ...]
    headers: Mapping[str, str] = field(default_factory=dict)
    body: bytes | None = None
    query: Mapping[str, tuple[str, ...]] = field(default_factory=dict)

    def __post_init__(self):
        object.__setattr__(self, "segments", tuple(self.segments))
        object.__setattr__(self, "headers", freeze_mapping(
            {k.lower(): v for k, v in self.headers.items()},
        ))
        object.__setattr__(self, "query", freeze_mapping(self.query))

    @property
    def path(self) -> str:
        """Decoded path, for messages and logs only."""
        return "/" + "/".join(self.segments)

    def header(self, name: str, default: str | None = None) -> str | None:
        return self.headers.get(name.lower(), default)


@dataclass(frozen=True)
class RouteMatch:
    """Binding plus extracted path parameters. Consumed immediately."""
    binding: Any  # ResourceBinding; typed loosely to keep registry import-free
    params: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self):
        object.__setattr__(self, "params", freeze_mapping(self.params))

    @property
    def self_href(self) -> str:
        return self.binding.template.expand(self.params)


@dataclass(frozen=True)
class RequestContext:
    """Everything a handler may see. Built fresh for every dispatch."""
    method: str
    path: str
    params: Mapping[str, str]
    headers: Mapping[str, str]
    query: Mapping[str, tuple[str, ...]]
    body: bytes | None
    request_id: str
    identity: Any = None
    decoder: Callable[[bytes | None, str | None], Any] | None = field(
        default=None, repr=False, compare=False,
    )

    def __post_init__(self):
        for name in ("params", "headers", "query"):
            object.__setattr__(self, name, freeze_mapping(getattr(self, name)))

    def header(self, name: str, default: str | None = None) -> str | None:
        return self.headers.get(name.lower(), default)

    def query_value(self, name: str, default: str | None = None) -> str | None:
        """First value of a query parameter."""
        values = self.query.get(name)
        return values[0] if values else default

    def data(self) -> Any:
        """Decode the body according to its Content-Type."""
        if self.decoder is None:
            raise RuntimeError("RequestContext has no body decoder")
        return self.decoder(self.body, self.header("content-type"))


# ─── Response side ──────────────────────────────────────────────

@dataclass(frozen=True)
class Link:
    """Hypermedia link: relation plus target URI."""
    rel: str
    href: str

    def to_dict(self) -> dict[str, str]:
        return {"rel": self.rel, "href": self.href}


@dataclass(frozen=True)
class HandlerOutcome:
    """What a handler returns on success."""
    body: Any = None
    intent: OutcomeIntent = OutcomeIntent.AUTO
    links: tuple[Link, ...] = ()
    cacheable: bool = False
    max_age: int | None = None
    headers: Mapping[str, str] = field(default_factory=dict)
    location: str | None = None

    def __post_init__(self):
        object.__setattr__(self, "intent", OutcomeIntent(self.intent))
        object.__setattr__(self, "links", tuple(
            _as_link(link) for link in self.links
        ))
        # Header values reach the transport as text
        object.__setattr__(self, "headers", freeze_mapping(
            {str(k): str(v) for k, v in self.headers.items()},
        ))
        if self.max_age is not None and self.max_age < 0:
            raise ValueError("max_age must be >= 0")


@dataclass(frozen=True)
class ResponseRecord:
    """Composed response. Immutable once built."""
    status_code: int
    headers: Mapping[str, str] = field(default_factory=dict)
    body: bytes = b""
    links: tuple[Link, ...] = ()

    def __post_init__(self):
        if not 100 <= self.status_code <= 599:
            raise ValueError(f"status_code out of range: {self.status_code}")
        object.__setattr__(self, "headers", freeze_mapping(self.headers))
        object.__setattr__(self, "links", tuple(self.links))

    def to_raw(self) -> RawResponse:
        return RawResponse(self.status_code, self.headers, self.body)


def _as_link(link: Any) -> Link:
    if isinstance(link, Link):
        return link
    if isinstance(link, Mapping):
        return Link(link["rel"], link["href"])
    rel, href = link
    return Link(rel, href)
