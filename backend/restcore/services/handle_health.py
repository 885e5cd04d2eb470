"""Health Resource: liveness probe served through the dispatch core itself.

Invariants:
    - GET /health always returns 200 with service name and version while the process is up
    - Never cached, never authenticated
"""

from restcore.core.messages import HandlerOutcome, RequestContext

HEALTH_TEMPLATE = "/health"


class HealthHandler:
    """Reports service identity. Holds configuration only."""

    def __init__(self, service_name: str, service_version: str):
        self.service_name = service_name
        self.service_version = service_version

    def handle(self, context: RequestContext) -> HandlerOutcome:
        return HandlerOutcome(body={
            "status": "healthy",
            "service": self.service_name,
            "version": self.service_version,
        })
