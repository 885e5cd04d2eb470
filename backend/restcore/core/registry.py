"""Resource Registry: URI template + method -> handler bindings.

Invariants:
    - Bindings are immutable once registered and owned by the registry
    - At most one binding per (template shape, method); `/u/{id}` and `/u/{key}`
      have the same shape
    - Literal segments match exactly (case-sensitive); `{name}` matches any one
      non-empty segment
    - 404 vs 405: NoMatchError only when no template matches the path at all
    - Among matching templates the most literal segments wins, then the earliest
      literal, then registration order

Design Decisions:
    - Copy-on-write tuple of bindings: lookups never take the lock, registration
      is serialized (ADR: read-mostly after startup)
    - Explicit register() calls only, no decorator auto-discovery
      (ADR: every mapping visible in one place)
"""

import re
import threading
from dataclasses import dataclass
from typing import Any, Iterator, Mapping
from urllib.parse import quote, unquote

from restcore.core.domain_types import ALLOW_ORDER, HttpMethod
from restcore.core.errors import (
    DuplicateBindingError, InvalidTemplateError, MethodNotAllowedError,
    NoMatchError, RegistryFrozenError,
)
from restcore.core.messages import RouteMatch

_PARAM = re.compile(r"^\{([A-Za-z_][A-Za-z0-9_]*)\}$")


@dataclass(frozen=True)
class UriTemplate:
    """Parsed URI template. `parts[i]` is a literal, or None for a parameter."""
    source: str
    parts: tuple[str | None, ...]
    names: tuple[str | None, ...]

    @classmethod
    def parse(cls, source: str) -> "UriTemplate":
        if not source.startswith("/"):
            raise InvalidTemplateError(source, "must start with '/'")
        parts: list[str | None] = []
        names: list[str | None] = []
        body = source.strip("/")
        for raw in body.split("/") if body else ():
            if not raw:
                raise InvalidTemplateError(source, "empty segment")
            m = _PARAM.match(raw)
            if m:
                if m.group(1) in names:
                    raise InvalidTemplateError(
                        source, f"parameter '{m.group(1)}' repeated",
                    )
                parts.append(None)
                names.append(m.group(1))
            elif "{" in raw or "}" in raw:
                raise InvalidTemplateError(source, f"bad segment '{raw}'")
            else:
                parts.append(unquote(raw, errors="strict"))
                names.append(None)
        return cls(source, tuple(parts), tuple(names))

    @property
    def literal_count(self) -> int:
        return sum(1 for p in self.parts if p is not None)

    @property
    def specificity(self) -> tuple:
        """Sort key: smaller is more specific."""
        return (-self.literal_count, tuple(p is None for p in self.parts))

    def match(self, segments: tuple[str, ...]) -> dict[str, str] | None:
        if len(segments) != len(self.parts):
            return None
        params = {}
        for part, name, seg in zip(self.parts, self.names, segments):
            if part is None:
                if not seg:
                    return None
                params[name] = seg
            elif part != seg:
                return None
        return params

    def expand(self, params: Mapping[str, str]) -> str:
        """Fill parameters back in, percent-encoding every segment."""
        segs = [
            quote(part if part is not None else str(params[name]), safe="")
            for part, name in zip(self.parts, self.names)
        ]
        return "/" + "/".join(segs)


@dataclass(frozen=True)
class ResourceBinding:
    """Template + method + handler. Created by ResourceRegistry.register only."""
    template: UriTemplate
    method: HttpMethod
    handler: Any
    requires_auth: bool = False
    name: str | None = None

    @property
    def uri_template(self) -> str:
        return self.template.source

    @property
    def handler_name(self) -> str:
        if self.name:
            return self.name
        target = getattr(self.handler, "handle", self.handler)
        return getattr(target, "__qualname__", type(self.handler).__name__)


class ResourceRegistry:
    """Maps URI templates to handler bindings."""

    def __init__(self):
        self._lock = threading.Lock()
        self._bindings: tuple[ResourceBinding, ...] = ()
        self._frozen = False

    def register(
        self,
        uri_template: str,
        method: str,
        handler: Any,
        *,
        requires_auth: bool = False,
        name: str | None = None,
    ) -> ResourceBinding:
        """Add a binding. Startup-time only; raises on conflicts."""
        template = UriTemplate.parse(uri_template)
        try:
            verb = HttpMethod(method.strip().upper())
        except ValueError:
            raise InvalidTemplateError(
                uri_template, f"method '{method}' cannot be bound",
            ) from None
        if not (callable(handler) or callable(getattr(handler, "handle", None))):
            raise TypeError(
                f"handler for {verb.value} {uri_template} is not callable "
                "and has no handle() method"
            )
        binding = ResourceBinding(template, verb, handler, requires_auth, name)
        with self._lock:
            if self._frozen:
                raise RegistryFrozenError(uri_template, verb.value)
            for existing in self._bindings:
                if existing.method == verb and existing.template.parts == template.parts:
                    raise DuplicateBindingError(
                        uri_template, verb.value, existing.uri_template,
                    )
            self._bindings = self._bindings + (binding,)
        return binding

    def freeze(self) -> None:
        """Reject any further registration."""
        with self._lock:
            self._frozen = True

    @property
    def frozen(self) -> bool:
        return self._frozen

    def lookup(self, segments: tuple[str, ...], method: str) -> RouteMatch:
        """Best binding for path + method, or NoMatchError / MethodNotAllowedError."""
        segments = tuple(segments)
        candidates = []
        for order, binding in enumerate(self._bindings):
            params = binding.template.match(segments)
            if params is not None:
                candidates.append((binding, params, order))
        path = "/" + "/".join(segments)
        if not candidates:
            raise NoMatchError(path)
        for_method = [c for c in candidates if c[0].method.value == method]
        if not for_method:
            raise MethodNotAllowedError(
                method, path, _ordered(c[0].method.value for c in candidates),
            )
        binding, params, _ = min(
            for_method, key=lambda c: (c[0].template.specificity, c[2]),
        )
        return RouteMatch(binding, params)

    def allowed_methods(self, segments: tuple[str, ...]) -> tuple[str, ...]:
        """Bound methods for a path, in Allow-header order. Empty if unknown."""
        segments = tuple(segments)
        return _ordered(
            b.method.value for b in self._bindings
            if b.template.match(segments) is not None
        )

    def bindings(self) -> tuple[ResourceBinding, ...]:
        return self._bindings

    def __len__(self) -> int:
        return len(self._bindings)

    def __iter__(self) -> Iterator[ResourceBinding]:
        return iter(self._bindings)

    def __contains__(self, key: object) -> bool:
        try:
            uri_template, method = key
            parts = UriTemplate.parse(uri_template).parts
            verb = HttpMethod(method.upper())
        except (TypeError, ValueError, InvalidTemplateError):
            return False
        return any(
            b.method == verb and b.template.parts == parts for b in self._bindings
        )


def _ordered(methods) -> tuple[str, ...]:
    present = set(methods)
    return tuple(m for m in ALLOW_ORDER if m in present)
