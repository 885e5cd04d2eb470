"""Request Pipeline: raw request -> Normalizer -> Router -> Dispatcher -> Composer -> raw response.

Invariants:
    - Every RestCoreError becomes a rendered error response; nothing is swallowed
    - Unexpected pipeline faults -> ServerError response, traceback logged
    - An error whose body cannot be encoded is answered with a plain ServerError
    - Every response carries X-Request-ID (echoed when valid, generated otherwise)
    - The Accept header is resolved before dispatch, so a 406 never runs a handler
    - No retries, no response cache, no state kept between calls

Design Decisions:
    - OPTIONS answered here from the registry (204 + Allow), never by handlers
    - HEAD reuses the GET binding and drops the body after composition
    - One log line per request; level follows the status class
"""

import asyncio
import dataclasses
import logging
import re
import time
from uuid import uuid4

from restcore.core.domain_types import HEAD, OPTIONS
from restcore.core.errors import NoMatchError, RestCoreError, ServerError
from restcore.core.messages import (
    NormalizedRequest, RawRequest, RawResponse, ResponseRecord,
)
from restcore.core.normalizer import normalize
from restcore.core.registry import ResourceRegistry
from restcore.core.router import Router
from restcore.services.composer import ResponseComposer
from restcore.services.dispatcher import Dispatcher
from restcore.services.negotiation import CodecRegistry

logger = logging.getLogger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"
_REQUEST_ID = re.compile(r"^[A-Za-z0-9._\-]{1,128}$")


class RequestPipeline:
    """Wires the core components together for one request at a time."""

    def __init__(
        self,
        registry: ResourceRegistry,
        dispatcher: Dispatcher | None = None,
        composer: ResponseComposer | None = None,
        codecs: CodecRegistry | None = None,
    ):
        self.codecs = codecs or CodecRegistry()
        self.router = Router(registry)
        self.dispatcher = dispatcher or Dispatcher(codecs=self.codecs)
        self.composer = composer or ResponseComposer()

    @property
    def registry(self) -> ResourceRegistry:
        return self.router.registry

    async def handle(self, raw: RawRequest) -> RawResponse:
        """Transport entry point."""
        record = await self.process(raw)
        return record.to_raw()

    def handle_blocking(self, raw: RawRequest) -> RawResponse:
        """For thread-per-request transports without an event loop."""
        return asyncio.run(self.handle(raw))

    async def process(self, raw: RawRequest) -> ResponseRecord:
        """Like handle(), but returns the ResponseRecord with its links."""
        started = time.perf_counter()
        request = None
        request_id = uuid4().hex
        accept = None
        error_kind = None
        try:
            request = normalize(raw)
            request_id = _request_id(request)
            accept = request.header("accept")
            record = await self._run(request, request_id)
        except RestCoreError as e:
            record, error_kind = self._render_error(e, accept, request_id)
        except Exception as e:
            logger.error(
                f"Unhandled exception in pipeline: {e}",
                exc_info=True, extra={"request_id": request_id},
            )
            record, error_kind = self._render_error(
                ServerError(cause=e), accept, request_id,
            )
        record = _with_header(record, REQUEST_ID_HEADER, request_id)
        self._log(raw, request, record, request_id, error_kind, started)
        return record

    async def _run(self, request: NormalizedRequest, request_id: str) -> ResponseRecord:
        if request.method == OPTIONS:
            allowed = self.router.allowed_methods(request)
            if not allowed:
                raise NoMatchError(request.path)
            return ResponseRecord(
                204, {"Allow": ", ".join(allowed), "Cache-Control": "no-store"},
            )
        match = self.router.route(request)
        codec = self.codecs.for_accept(request.header("accept"))
        outcome = await self.dispatcher.dispatch(match, request, request_id)
        try:
            record = self.composer.compose_success(
                outcome, match, codec,
                authenticated=match.binding.requires_auth,
            )
        except (TypeError, ValueError) as e:
            logger.error(
                f"Cannot compose response of {match.binding.handler_name}: {e}",
                exc_info=True, extra={"request_id": request_id},
            )
            raise ServerError(cause=e) from e
        if request.method == HEAD:
            record = dataclasses.replace(record, body=b"")
        return record

    def _render_error(
        self, error: RestCoreError, accept: str | None, request_id: str,
    ) -> tuple[ResponseRecord, str]:
        try:
            return (
                self.composer.compose_error(error, self.codecs.for_error(accept)),
                error.kind,
            )
        except (TypeError, ValueError) as e:
            logger.error(
                f"Cannot render {error.kind}, answering with ServerError: {e}",
                exc_info=True, extra={"request_id": request_id},
            )
        fallback = ServerError()
        return (
            self.composer.compose_error(fallback, self.codecs.default),
            fallback.kind,
        )

    def _log(self, raw, request, record, request_id, error_kind, started) -> None:
        status = record.status_code
        level = (
            logging.ERROR if status >= 500
            else logging.WARNING if status >= 400
            else logging.INFO
        )
        method = request.method if request else str(raw.method)
        path = request.path if request else str(raw.raw_path)
        extra = {
            "request_id": request_id,
            "method": method,
            "path": path,
            "status": status,
            "duration_ms": round((time.perf_counter() - started) * 1000, 2),
        }
        if error_kind:
            extra["error_kind"] = error_kind
        logger.log(level, f"{method} {path} -> {status}", extra=extra)


def _request_id(request: NormalizedRequest) -> str:
    supplied = request.header(REQUEST_ID_HEADER)
    if supplied and _REQUEST_ID.match(supplied):
        return supplied
    return uuid4().hex


def _with_header(record: ResponseRecord, name: str, value: str) -> ResponseRecord:
    headers = dict(record.headers)
    headers[name] = value
    return dataclasses.replace(record, headers=headers)
