"""Domain Types: enums and aliases that replace bare strings across the codebase.

Invariants:
    - Only the five HttpMethod members can be bound to a handler
    - ALLOW_ORDER fixes the order methods appear in an Allow header
    - All valid states encoded as Enums, no raw string matching

Design Decisions:
    - str Enums: compare equal to the wire token and serialize without custom encoders
"""

from enum import Enum


class HttpMethod(str, Enum):
    """Methods a binding may be registered for."""
    GET = "GET"
    POST = "POST"
    PUT = "PUT"
    PATCH = "PATCH"
    DELETE = "DELETE"


# Answered by the pipeline itself, never bound to a handler
HEAD = "HEAD"
OPTIONS = "OPTIONS"

ALLOW_ORDER: tuple[str, ...] = (
    "GET", HEAD, "POST", "PUT", "PATCH", "DELETE", OPTIONS,
)


class OutcomeIntent(str, Enum):
    """What a handler declares it produced; drives the success status code."""
    AUTO = "auto"            # 200 with a body, 204 without
    OK = "ok"                # 200
    CREATED = "created"      # 201
    NO_CONTENT = "no_content"  # 204


class ErrorCategory(str, Enum):
    """High-level error categories for routing and handling."""
    VALIDATION = "validation"
    RESOURCE_NOT_FOUND = "resource_not_found"
    METHOD_NOT_ALLOWED = "method_not_allowed"
    AUTHENTICATION = "authentication"
    NEGOTIATION = "negotiation"
    CONFIGURATION = "configuration"
    INTERNAL = "internal"
    TIMEOUT = "timeout"
    CAPACITY = "capacity"


class ErrorSeverity(str, Enum):
    """Error severity for observability and client handling."""
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"
