"""restcore ASGI application: FastAPI wrapper around the dispatch core.

Invariants:
    - Resources registered explicitly on a ResourceRegistry (no auto-discovery)
    - Registry frozen on startup: no registration once traffic flows
    - Settings read here only, then injected into components
    - GET /health served by the core like any other binding

Design Decisions:
    - create_app() factory so tests and host applications bring their own registry
    - Lifespan over @app.on_event: logging set up on startup, abandoned handlers reported on shutdown
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from restcore import __version__
from restcore.api.asgi_transport import build_router
from restcore.api.error_handlers import register_error_handlers
from restcore.config import Settings, get_settings
from restcore.core.boundary_protocols import Authenticator
from restcore.core.registry import ResourceRegistry
from restcore.infrastructure.observability import setup_logging
from restcore.services.composer import ResponseComposer
from restcore.services.dispatcher import Dispatcher
from restcore.services.handle_health import HEALTH_TEMPLATE, HealthHandler
from restcore.services.negotiation import CodecRegistry
from restcore.services.pipeline import RequestPipeline

logger = logging.getLogger(__name__)


def build_pipeline(
    registry: ResourceRegistry,
    settings: Settings,
    authenticator: Authenticator | None = None,
    codecs: CodecRegistry | None = None,
) -> RequestPipeline:
    """Wire core components from settings. Registers GET /health if absent."""
    if (HEALTH_TEMPLATE, "GET") not in registry and not registry.frozen:
        registry.register(
            HEALTH_TEMPLATE, "GET",
            HealthHandler(settings.service_name, settings.service_version),
            name="health",
        )
    codecs = codecs or CodecRegistry()
    return RequestPipeline(
        registry,
        dispatcher=Dispatcher(
            timeout_ms=settings.dispatch_timeout_ms,
            authenticator=authenticator,
            codecs=codecs,
            max_workers=settings.handler_workers,
        ),
        composer=ResponseComposer(settings.default_cache_max_age),
        codecs=codecs,
    )


def create_app(
    registry: ResourceRegistry | None = None,
    settings: Settings | None = None,
    authenticator: Authenticator | None = None,
    codecs: CodecRegistry | None = None,
) -> FastAPI:
    settings = settings or get_settings()
    registry = registry if registry is not None else ResourceRegistry()
    pipeline = build_pipeline(registry, settings, authenticator, codecs)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Startup/shutdown lifecycle."""
        setup_logging(settings.log_level, settings.log_format)
        registry.freeze()
        logger.info(f"restcore started with {len(registry)} bindings")
        yield
        pipeline.dispatcher.close()
        logger.info("restcore shutting down")

    app = FastAPI(
        title=settings.service_name, version=__version__, lifespan=lifespan,
        docs_url=None, redoc_url=None, openapi_url=None,
    )
    app.state.pipeline = pipeline
    register_error_handlers(app)
    app.include_router(build_router(pipeline))
    return app


app = create_app()
