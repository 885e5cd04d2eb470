"""Error Hierarchy: typed, categorized exceptions for every dispatch failure mode.

Invariants:
    - Every error has a kind (stable str), category, severity and http_status
    - to_response() always has the {"error": {"kind", "message", ...}} shape
    - ServerError never carries handler internals in its message
    - DuplicateBindingError and InvalidTemplateError are startup-time only

Design Decisions:
    - Single hierarchy with RestCoreError base: pipeline and FastAPI handlers catch one type
    - kind defaults to the class name so the wire value matches the taxonomy table;
      HandlerTimeoutError overrides it to "TimeoutError" without shadowing the builtin
"""

from typing import Any, Iterable

from restcore.core.domain_types import ErrorCategory, ErrorSeverity

GENERIC_SERVER_MESSAGE = "An unexpected error occurred"


class RestCoreError(Exception):
    """Base exception for all restcore errors."""

    kind: str = "RestCoreError"

    def __init__(
        self,
        message: str,
        category: ErrorCategory,
        severity: ErrorSeverity = ErrorSeverity.ERROR,
        http_status: int = 500,
        headers: dict[str, str] | None = None,
        details: list[dict[str, Any]] | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category
        self.severity = severity
        self.http_status = http_status
        self.headers = dict(headers or {})
        self.details = details

    def __init_subclass__(cls, **kwargs):
        super().__init_subclass__(**kwargs)
        if "kind" not in cls.__dict__:
            cls.kind = cls.__name__

    def to_response(self) -> dict:
        """Convert to the stable error representation."""
        body: dict[str, Any] = {
            "kind": self.kind,
            "message": self.message,
            "category": self.category.value,
            "severity": self.severity.value,
        }
        if self.details:
            body["details"] = self.details
        return {"error": body}


# ─── Request-time client errors (4xx) ───────────────────────────

class MalformedRequestError(RestCoreError):
    """Raw request could not be normalized."""
    def __init__(self, message: str):
        super().__init__(
            message, ErrorCategory.VALIDATION, ErrorSeverity.WARNING, 400,
        )


class NoMatchError(RestCoreError):
    """No registered template matches the path."""
    def __init__(self, path: str):
        super().__init__(
            f"No resource matches '{path}'",
            ErrorCategory.RESOURCE_NOT_FOUND, ErrorSeverity.INFO, 404,
        )
        self.path = path


class MethodNotAllowedError(RestCoreError):
    """Path is known, but not for this method."""
    def __init__(self, method: str, path: str, allowed_methods: Iterable[str]):
        allowed = tuple(allowed_methods)
        super().__init__(
            f"Method {method} is not allowed on '{path}'",
            ErrorCategory.METHOD_NOT_ALLOWED, ErrorSeverity.WARNING, 405,
            headers={"Allow": ", ".join(allowed)},
        )
        self.method = method
        self.path = path
        self.allowed_methods = allowed


class ClientError(RestCoreError):
    """Handler-declared problem with the request (400-422)."""
    def __init__(
        self,
        message: str,
        status: int = 400,
        details: list[dict[str, Any]] | None = None,
        headers: dict[str, str] | None = None,
        category: ErrorCategory = ErrorCategory.VALIDATION,
    ):
        if not 400 <= status <= 422:
            raise ValueError(f"ClientError status must be 400-422, got {status}")
        super().__init__(
            message, category, ErrorSeverity.WARNING, status,
            headers=headers, details=details,
        )


class AuthenticationError(ClientError):
    """Authenticator rejected the Authorization header."""
    def __init__(self, message: str = "Authentication required", scheme: str = "Bearer"):
        super().__init__(
            message, 401,
            headers={"WWW-Authenticate": scheme},
            category=ErrorCategory.AUTHENTICATION,
        )


class NotAcceptableError(ClientError):
    """No available representation satisfies the Accept header."""
    def __init__(self, accept: str, available: Iterable[str]):
        available = tuple(available)
        super().__init__(
            f"Cannot produce a representation for Accept: {accept}",
            406,
            details=[{"available": list(available)}],
            category=ErrorCategory.NEGOTIATION,
        )


class UnsupportedMediaTypeError(ClientError):
    """Request body format has no registered codec."""
    def __init__(self, media_type: str):
        super().__init__(
            f"Unsupported Content-Type: {media_type}", 415,
            category=ErrorCategory.NEGOTIATION,
        )


# ─── Server-side errors (5xx) ───────────────────────────────────

class ServerError(RestCoreError):
    """Unexpected handler fault. Detail goes to logs, never to the body."""
    def __init__(self, cause: BaseException | None = None):
        super().__init__(
            GENERIC_SERVER_MESSAGE,
            ErrorCategory.INTERNAL, ErrorSeverity.CRITICAL, 500,
        )
        self.cause = cause


class HandlerTimeoutError(RestCoreError):
    """Handler did not finish within the dispatch timeout."""

    kind = "TimeoutError"

    def __init__(self, timeout_ms: int):
        super().__init__(
            f"Handler did not complete within {timeout_ms}ms",
            ErrorCategory.TIMEOUT, ErrorSeverity.ERROR, 504,
        )
        self.timeout_ms = timeout_ms


class HandlerCapacityError(RestCoreError):
    """Every handler worker slot is taken; the handler was not started."""
    def __init__(self, max_workers: int, retry_after_s: int = 1):
        super().__init__(
            f"All {max_workers} handler workers are busy",
            ErrorCategory.CAPACITY, ErrorSeverity.ERROR, 503,
            headers={"Retry-After": str(retry_after_s)},
        )
        self.max_workers = max_workers


# ─── Startup-time errors (never rendered) ───────────────────────

class DuplicateBindingError(RestCoreError):
    """(template, method) pair already registered."""
    def __init__(self, template: str, method: str, existing: str):
        super().__init__(
            f"{method} {template} conflicts with registered {method} {existing}",
            ErrorCategory.CONFIGURATION, ErrorSeverity.CRITICAL,
        )
        self.template = template
        self.method = method


class InvalidTemplateError(RestCoreError):
    """URI template or method cannot be registered."""
    def __init__(self, template: str, reason: str):
        super().__init__(
            f"Invalid URI template '{template}': {reason}",
            ErrorCategory.CONFIGURATION, ErrorSeverity.CRITICAL,
        )
        self.template = template


class RegistryFrozenError(RestCoreError):
    """Registration attempted after the registry was frozen."""
    def __init__(self, template: str, method: str):
        super().__init__(
            f"Cannot register {method} {template}: registry is frozen",
            ErrorCategory.CONFIGURATION, ErrorSeverity.CRITICAL,
        )
