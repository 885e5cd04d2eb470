"""Dispatcher: runs the matched handler with an isolated context under a timeout.

Invariants:
    - Every dispatch builds a fresh RequestContext from the current request only
    - Handler 4xx RestCoreErrors pass through; pydantic ValidationError -> ClientError 422
    - Any other handler exception -> ServerError (logged with traceback, body stays generic)
    - Exceeding timeout_ms -> HandlerTimeoutError; the handler is abandoned, not killed
    - The timeout clock starts when the handler starts; nothing queues for a worker
    - At most max_workers sync handlers are awaited at once; beyond that
      HandlerCapacityError (503) without running the handler
    - No retries

Design Decisions:
    - Sync handlers run on their own daemon thread so a slow handler cannot stall
      the event loop; async handlers are awaited and cancelled on timeout
    - An abandoned handler gives its worker slot back at once. Its thread runs to
      completion on its own and is counted in `abandoned` until then
    - Authentication happens before the handler runs and only for bindings that
      declare requires_auth; the identity is opaque to the core
"""

import asyncio
import inspect
import itertools
import logging
import threading
from concurrent.futures import Future
from typing import Any

from pydantic import ValidationError

from restcore.core.boundary_protocols import Authenticator
from restcore.core.errors import (
    AuthenticationError, ClientError, HandlerCapacityError, HandlerTimeoutError,
    RestCoreError, ServerError,
)
from restcore.core.messages import (
    HandlerOutcome, NormalizedRequest, RequestContext, RouteMatch,
)
from restcore.services.negotiation import CodecRegistry

logger = logging.getLogger(__name__)


class Dispatcher:
    """Invokes bound handlers. Holds configuration only."""

    def __init__(
        self,
        timeout_ms: int = 1000,
        authenticator: Authenticator | None = None,
        codecs: CodecRegistry | None = None,
        max_workers: int = 32,
    ):
        if timeout_ms <= 0:
            raise ValueError("timeout_ms must be > 0")
        self.timeout_ms = timeout_ms
        self._authenticator = authenticator
        self._codecs = codecs or CodecRegistry()
        self.max_workers = max_workers
        self._slots = threading.BoundedSemaphore(max_workers)
        self._lock = threading.Lock()
        self._abandoned = 0
        self._thread_ids = itertools.count(1)

    @property
    def abandoned(self) -> int:
        """Timed-out sync handlers whose threads are still running."""
        with self._lock:
            return self._abandoned

    def close(self) -> None:
        """Abandoned handler threads are daemons and are not waited for."""
        if self.abandoned:
            logger.warning(
                f"{self.abandoned} abandoned handler(s) still running at shutdown",
            )

    async def dispatch(
        self,
        match: RouteMatch,
        request: NormalizedRequest,
        request_id: str = "",
    ) -> HandlerOutcome:
        """Run the handler for one request and return its outcome."""
        binding = match.binding
        identity = None
        if binding.requires_auth:
            identity = await self._authenticate(request, binding.handler_name)
        context = self.build_context(match, request, request_id, identity)
        try:
            return await asyncio.wait_for(
                self._invoke(binding, context), self.timeout_ms / 1000,
            )
        except asyncio.TimeoutError:
            logger.error(
                f"Handler {binding.handler_name} exceeded {self.timeout_ms}ms",
                extra={"request_id": request_id, "handler": binding.handler_name},
            )
            raise HandlerTimeoutError(self.timeout_ms) from None

    def build_context(
        self,
        match: RouteMatch,
        request: NormalizedRequest,
        request_id: str = "",
        identity: Any = None,
    ) -> RequestContext:
        """Fresh context; RequestContext copies every mapping it is given."""
        return RequestContext(
            method=request.method,
            path=request.path,
            params=match.params,
            headers=request.headers,
            query=request.query,
            body=request.body,
            request_id=request_id,
            identity=identity,
            decoder=self._codecs.decode,
        )

    async def _invoke(self, binding, context: RequestContext) -> HandlerOutcome:
        target = getattr(binding.handler, "handle", binding.handler)
        try:
            if inspect.iscoroutinefunction(target):
                result = await target(context)
            else:
                result = await self._run_sync(binding, target, context)
                if inspect.isawaitable(result):
                    result = await result
        except HandlerCapacityError:
            raise
        except RestCoreError as e:
            if e.http_status < 500:
                raise
            raise self._server_error(binding, context, e) from e
        except ValidationError as e:
            raise ClientError(
                "Request data failed validation", 422,
                details=[
                    {
                        "field": ".".join(str(loc) for loc in err["loc"]),
                        "message": err["msg"],
                        "type": err["type"],
                    }
                    for err in e.errors()
                ],
            ) from None
        except Exception as e:
            raise self._server_error(binding, context, e) from e
        if isinstance(result, HandlerOutcome):
            return result
        return HandlerOutcome(body=result)

    async def _run_sync(self, binding, target, context: RequestContext) -> Any:
        if not self._slots.acquire(blocking=False):
            logger.error(
                f"No free worker for {binding.handler_name}: "
                f"{self.max_workers} busy, {self.abandoned} abandoned",
                extra={"request_id": context.request_id, "handler": binding.handler_name},
            )
            raise HandlerCapacityError(self.max_workers)
        future: Future = Future()
        thread = threading.Thread(
            target=_run_in_thread, args=(future, target, context),
            name=f"restcore-handler-{next(self._thread_ids)}", daemon=True,
        )
        try:
            thread.start()
            return await asyncio.wrap_future(future)
        except asyncio.CancelledError:
            self._abandon(future)
            raise
        finally:
            self._slots.release()

    def _abandon(self, future: Future) -> None:
        with self._lock:
            self._abandoned += 1
        future.add_done_callback(self._abandoned_done)

    def _abandoned_done(self, future: Future) -> None:
        with self._lock:
            self._abandoned -= 1

    def _server_error(self, binding, context, exc: BaseException) -> ServerError:
        logger.error(
            f"Handler {binding.handler_name} failed: {exc}",
            exc_info=exc,
            extra={"request_id": context.request_id, "handler": binding.handler_name},
        )
        return ServerError(cause=exc)

    async def _authenticate(self, request: NormalizedRequest, handler_name: str) -> Any:
        if self._authenticator is None:
            logger.error(f"{handler_name} requires auth but no authenticator is set")
            raise ServerError()
        try:
            identity = self._authenticator.authenticate(request.header("authorization"))
            if inspect.isawaitable(identity):
                identity = await identity
        except RestCoreError:
            raise
        except Exception as e:
            logger.error(f"Authenticator failed: {e}", exc_info=True)
            raise ServerError(cause=e) from e
        if identity is None:
            raise AuthenticationError()
        return identity


def _run_in_thread(future: Future, target, context: RequestContext) -> None:
    if not future.set_running_or_notify_cancel():
        return
    try:
        result = target(context)
    except BaseException as e:
        future.set_exception(e)
    else:
        future.set_result(result)
