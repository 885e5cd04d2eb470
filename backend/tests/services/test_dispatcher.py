"""Dispatcher: tests for context isolation, error conversion, auth and timeouts.

Tests cover:
    - Sync functions and async handler objects both run
    - Bare return values wrapped into HandlerOutcome
    - ClientError passes through; ValidationError -> 422; other faults -> ServerError
    - Concurrent dispatches never see each other's context
    - requires_auth bindings consult the authenticator
    - Timeout -> HandlerTimeoutError for sync and async handlers
    - Timed-out sync handlers release their worker slot; saturation -> 503
"""

import asyncio
import threading

import pytest

from restcore.core.errors import (
    AuthenticationError, ClientError, HandlerCapacityError, HandlerTimeoutError,
    ServerError,
)
from restcore.core.messages import HandlerOutcome, NormalizedRequest, RequestContext
from restcore.core.registry import ResourceRegistry
from restcore.core.router import Router
from restcore.services.dispatcher import Dispatcher


def _route(registry, method, path, headers=None, body=None):
    request = NormalizedRequest(
        method, tuple(p for p in path.split("/") if p), headers or {}, body,
    )
    return Router(registry).route(request), request


@pytest.mark.asyncio
async def test_sync_handler_outcome_returned(registry, dispatcher):
    match, request = _route(registry, "GET", "/users/42")
    outcome = await dispatcher.dispatch(match, request, "r1")
    assert outcome.body == {"id": 42, "username": "jdoe"}
    assert outcome.cacheable


@pytest.mark.asyncio
async def test_bare_return_value_wrapped(registry, dispatcher):
    match, request = _route(registry, "GET", "/echo/hi", {"x-trace": "t"})
    outcome = await dispatcher.dispatch(match, request)
    assert isinstance(outcome, HandlerOutcome)
    assert outcome.body["params"] == {"value": "hi"}
    assert outcome.body["trace"] == "t"


@pytest.mark.asyncio
async def test_async_handler_object_decodes_body(registry, dispatcher):
    match, request = _route(
        registry, "POST", "/users",
        {"content-type": "application/json"}, b'{"username": "alice"}',
    )
    outcome = await dispatcher.dispatch(match, request)
    assert outcome.body == {"id": 43, "username": "alice"}


@pytest.mark.asyncio
async def test_pydantic_validation_error_becomes_422(registry, dispatcher):
    match, request = _route(
        registry, "POST", "/users",
        {"content-type": "application/json"}, b'{"username": "a"}',
    )
    with pytest.raises(ClientError) as exc_info:
        await dispatcher.dispatch(match, request)
    assert exc_info.value.http_status == 422
    assert exc_info.value.details[0]["field"] == "username"


@pytest.mark.asyncio
async def test_client_error_passes_through(registry, dispatcher):
    match, request = _route(registry, "GET", "/users/7")
    with pytest.raises(ClientError) as exc_info:
        await dispatcher.dispatch(match, request)
    assert exc_info.value.http_status == 404


@pytest.mark.asyncio
async def test_unexpected_failure_becomes_server_error(registry, dispatcher, caplog):
    match, request = _route(registry, "GET", "/broken")
    with pytest.raises(ServerError) as exc_info:
        await dispatcher.dispatch(match, request, "r-broken")
    assert "hunter2" not in exc_info.value.message
    assert isinstance(exc_info.value.cause, RuntimeError)
    assert any("hunter2" in r.getMessage() for r in caplog.records)


@pytest.mark.asyncio
async def test_handler_raising_server_side_restcore_error_is_wrapped(dispatcher):
    registry = ResourceRegistry()

    def fails(context):
        raise HandlerTimeoutError(5)

    registry.register("/x", "GET", fails)
    match, request = _route(registry, "GET", "/x")
    with pytest.raises(ServerError):
        await dispatcher.dispatch(match, request)


@pytest.mark.asyncio
async def test_sync_timeout(registry, dispatcher):
    match, request = _route(registry, "GET", "/slow")
    with pytest.raises(HandlerTimeoutError) as exc_info:
        await dispatcher.dispatch(match, request)
    assert exc_info.value.http_status == 504
    assert exc_info.value.kind == "TimeoutError"


@pytest.mark.asyncio
async def test_async_timeout_cancels_handler():
    cancelled = asyncio.Event()

    async def hangs(context):
        try:
            await asyncio.sleep(10)
        except asyncio.CancelledError:
            cancelled.set()
            raise

    registry = ResourceRegistry()
    registry.register("/hang", "GET", hangs)
    dispatcher = Dispatcher(timeout_ms=50)
    match, request = _route(registry, "GET", "/hang")
    with pytest.raises(HandlerTimeoutError):
        await dispatcher.dispatch(match, request)
    assert cancelled.is_set()
    dispatcher.close()


@pytest.mark.asyncio
async def test_concurrent_dispatches_are_isolated():
    seen: dict[str, RequestContext] = {}
    barrier = threading.Barrier(2, timeout=2)

    def record(context):
        barrier.wait()
        seen[context.params["id"]] = context
        return {"id": context.params["id"], "trace": context.header("x-trace")}

    registry = ResourceRegistry()
    registry.register("/items/{id}", "GET", record)
    dispatcher = Dispatcher(timeout_ms=3000, max_workers=4)
    (m1, r1) = _route(registry, "GET", "/items/1", {"x-trace": "one"})
    (m2, r2) = _route(registry, "GET", "/items/2", {"x-trace": "two"})
    o1, o2 = await asyncio.gather(
        dispatcher.dispatch(m1, r1, "req-1"), dispatcher.dispatch(m2, r2, "req-2"),
    )
    dispatcher.close()

    assert o1.body == {"id": "1", "trace": "one"}
    assert o2.body == {"id": "2", "trace": "two"}
    assert seen["1"] is not seen["2"]
    assert seen["1"].request_id == "req-1"
    assert dict(seen["2"].headers) == {"x-trace": "two"}
    with pytest.raises(TypeError):
        seen["1"].params["id"] = "2"


@pytest.mark.asyncio
async def test_context_is_rebuilt_per_dispatch(registry, dispatcher):
    match, request = _route(registry, "GET", "/echo/a")
    first = dispatcher.build_context(match, request, "r1")
    second = dispatcher.build_context(match, request, "r2")
    assert first is not second
    assert first.params is not second.params


@pytest.mark.asyncio
async def test_auth_required_accepts_valid_token(registry, dispatcher):
    match, request = _route(
        registry, "GET", "/private/x", {"authorization": "Bearer good"},
    )
    outcome = await dispatcher.dispatch(match, request)
    assert outcome.body["identity"] == "user-1"


@pytest.mark.asyncio
@pytest.mark.parametrize("header", [None, "Bearer bad", "Bearer revoked"])
async def test_auth_required_rejects(registry, dispatcher, header):
    headers = {"authorization": header} if header else {}
    match, request = _route(registry, "GET", "/private/x", headers)
    with pytest.raises(AuthenticationError) as exc_info:
        await dispatcher.dispatch(match, request)
    assert exc_info.value.http_status == 401


@pytest.mark.asyncio
async def test_auth_required_without_authenticator_is_server_error(registry):
    dispatcher = Dispatcher()
    match, request = _route(registry, "GET", "/private/x", {"authorization": "Bearer good"})
    with pytest.raises(ServerError):
        await dispatcher.dispatch(match, request)
    dispatcher.close()


@pytest.mark.asyncio
async def test_unprotected_binding_never_sees_identity(registry, dispatcher):
    match, request = _route(registry, "GET", "/echo/x", {"authorization": "Bearer good"})
    outcome = await dispatcher.dispatch(match, request)
    assert outcome.body["identity"] is None


def test_timeout_must_be_positive():
    with pytest.raises(ValueError):
        Dispatcher(timeout_ms=0)


async def _wait_until(predicate, timeout: float = 2.0) -> None:
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        assert asyncio.get_running_loop().time() < deadline
        await asyncio.sleep(0.01)


@pytest.mark.asyncio
async def test_fast_handler_runs_after_all_workers_timed_out():
    release = threading.Event()

    def hangs(context):
        release.wait(5)
        return {"late": True}

    registry = ResourceRegistry()
    registry.register("/hang", "GET", hangs)
    registry.register("/fast", "GET", lambda context: {"fast": True})
    dispatcher = Dispatcher(timeout_ms=100, max_workers=2)
    try:
        for _ in range(2):
            match, request = _route(registry, "GET", "/hang")
            with pytest.raises(HandlerTimeoutError):
                await dispatcher.dispatch(match, request)
        assert dispatcher.abandoned == 2

        match, request = _route(registry, "GET", "/fast")
        outcome = await dispatcher.dispatch(match, request)
        assert outcome.body == {"fast": True}
    finally:
        release.set()
    await _wait_until(lambda: dispatcher.abandoned == 0)
    dispatcher.close()


@pytest.mark.asyncio
async def test_saturated_workers_fail_fast_with_capacity_error():
    entered = threading.Event()
    release = threading.Event()

    def blocks(context):
        entered.set()
        release.wait(5)
        return {"done": True}

    registry = ResourceRegistry()
    registry.register("/block", "GET", blocks)
    dispatcher = Dispatcher(timeout_ms=3000, max_workers=1)
    match, request = _route(registry, "GET", "/block")
    first = asyncio.create_task(dispatcher.dispatch(match, request))
    try:
        await _wait_until(entered.is_set)
        with pytest.raises(HandlerCapacityError) as exc_info:
            await dispatcher.dispatch(match, request)
        assert exc_info.value.http_status == 503
        assert exc_info.value.headers["Retry-After"] == "1"
    finally:
        release.set()
    assert (await first).body == {"done": True}
    dispatcher.close()


@pytest.mark.asyncio
async def test_async_handlers_do_not_take_worker_slots():
    async def quick(context):
        return {"ok": True}

    registry = ResourceRegistry()
    registry.register("/quick", "GET", quick)
    dispatcher = Dispatcher(timeout_ms=500, max_workers=1)
    match, request = _route(registry, "GET", "/quick")
    outcomes = await asyncio.gather(*(
        dispatcher.dispatch(match, request) for _ in range(5)
    ))
    assert [o.body for o in outcomes] == [{"ok": True}] * 5
    dispatcher.close()
