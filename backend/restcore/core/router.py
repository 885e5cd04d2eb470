"""Router: NormalizedRequest -> RouteMatch via the registry.

Invariants:
    - NoMatchError / MethodNotAllowedError propagate unchanged
    - HEAD is routed to the GET binding; errors still name HEAD
    - Router holds the registry reference only, no per-request state
"""

from restcore.core.domain_types import HEAD, HttpMethod
from restcore.core.errors import MethodNotAllowedError
from restcore.core.messages import NormalizedRequest, RouteMatch
from restcore.core.registry import ResourceRegistry


class Router:
    """Matches normalized requests against a ResourceRegistry."""

    def __init__(self, registry: ResourceRegistry):
        self._registry = registry

    @property
    def registry(self) -> ResourceRegistry:
        return self._registry

    def route(self, request: NormalizedRequest) -> RouteMatch:
        if request.method != HEAD:
            return self._registry.lookup(request.segments, request.method)
        try:
            return self._registry.lookup(request.segments, HttpMethod.GET.value)
        except MethodNotAllowedError as exc:
            raise MethodNotAllowedError(
                HEAD, exc.path, exc.allowed_methods,
            ) from None

    def allowed_methods(self, request: NormalizedRequest) -> tuple[str, ...]:
        return self._registry.allowed_methods(request.segments)
