"""Service test fixtures: a users resource, pipeline and ASGI test client.

Invariants:
    - Every test gets a fresh registry, dispatcher and app; nothing is shared
    - Handlers are plain callables and handler objects, sync and async, so both
      invocation paths are exercised

Design Decisions:
    - httpx ASGITransport drives the FastAPI app in-process (no sockets)
"""

import asyncio
import time

import pytest
from httpx import ASGITransport, AsyncClient
from pydantic import BaseModel, Field

from restcore.config import Settings
from restcore.core.domain_types import OutcomeIntent
from restcore.core.errors import AuthenticationError, ClientError
from restcore.core.messages import HandlerOutcome, Link, RequestContext
from restcore.core.registry import ResourceRegistry
from restcore.main import create_app
from restcore.services.dispatcher import Dispatcher
from restcore.services.negotiation import CodecRegistry
from restcore.services.pipeline import RequestPipeline

USERS = {42: {"id": 42, "username": "jdoe"}}


class UserCreate(BaseModel):
    username: str = Field(min_length=3)


def get_user(context: RequestContext) -> HandlerOutcome:
    user_id = int(context.params["id"])
    if user_id not in USERS:
        raise ClientError(f"User {user_id} not found", 404)
    return HandlerOutcome(
        body=USERS[user_id],
        links=[Link("collection", "/users")],
        cacheable=True,
        max_age=30,
    )


class UserCollection:
    """Handler object variant with an async handle()."""

    async def handle(self, context: RequestContext) -> HandlerOutcome:
        payload = UserCreate.model_validate(context.data())
        return HandlerOutcome(
            body={"id": 43, "username": payload.username},
            intent=OutcomeIntent.CREATED,
            location="/users/43",
        )


def delete_user(context: RequestContext) -> None:
    return None


def echo(context: RequestContext) -> dict:
    return {
        "params": dict(context.params),
        "trace": context.header("x-trace"),
        "identity": context.identity,
    }


def slow(context: RequestContext) -> dict:
    time.sleep(0.5)
    return {"done": True}


async def slow_async(context: RequestContext) -> dict:
    await asyncio.sleep(0.5)
    return {"done": True}


def broken(context: RequestContext) -> dict:
    raise RuntimeError("db password=hunter2")


def bad_request(context: RequestContext) -> dict:
    raise ClientError("name is required", 422, details=[{"field": "name"}])


class TokenAuthenticator:
    def authenticate(self, authorization: str | None):
        if authorization == "Bearer good":
            return "user-1"
        if authorization == "Bearer revoked":
            raise AuthenticationError("Token revoked")
        return None


@pytest.fixture
def registry() -> ResourceRegistry:
    registry = ResourceRegistry()
    registry.register("/users/{id}", "GET", get_user)
    registry.register("/users", "POST", UserCollection())
    registry.register("/users/{id}", "DELETE", delete_user, requires_auth=True)
    registry.register("/echo/{value}", "GET", echo)
    registry.register("/private/{value}", "GET", echo, requires_auth=True)
    registry.register("/slow", "GET", slow)
    registry.register("/slow-async", "GET", slow_async)
    registry.register("/broken", "GET", broken)
    registry.register("/bad", "POST", bad_request)
    return registry


@pytest.fixture
def codecs() -> CodecRegistry:
    return CodecRegistry()


@pytest.fixture
def dispatcher(codecs):
    dispatcher = Dispatcher(
        timeout_ms=200, authenticator=TokenAuthenticator(), codecs=codecs,
    )
    yield dispatcher
    dispatcher.close()


@pytest.fixture
def pipeline(registry, dispatcher, codecs) -> RequestPipeline:
    return RequestPipeline(registry, dispatcher=dispatcher, codecs=codecs)


@pytest.fixture
def settings() -> Settings:
    return Settings(dispatch_timeout_ms=200, log_format="text", _env_file=None)


@pytest.fixture
async def client(registry, settings):
    """FastAPI test client over a fresh app."""
    app = create_app(registry, settings, authenticator=TokenAuthenticator())
    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://test",
    ) as c:
        yield c
    app.state.pipeline.dispatcher.close()
