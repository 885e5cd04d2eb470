"""ASGI Transport: FastAPI catch-all route feeding the RequestPipeline.

Invariants:
    - The path handed to the core is the raw, still percent-encoded request path
    - Query string re-attached after "?" exactly as received
    - Headers passed as raw pairs so repeated names reach the normalizer
    - Response headers and body copied verbatim from RawResponse

Design Decisions:
    - One catch-all route instead of one FastAPI route per binding: the registry,
      not Starlette, decides 404 vs 405 (ADR: routing lives in the core)
"""

from fastapi import APIRouter, Request, Response

from restcore.core.errors import MalformedRequestError
from restcore.core.messages import RawRequest, RawResponse
from restcore.services.pipeline import RequestPipeline

TRANSPORT_METHODS = ["GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]


async def to_raw_request(request: Request) -> RawRequest:
    """Starlette request -> core RawRequest."""
    raw_path = request.scope.get("raw_path")
    if raw_path:
        try:
            path = raw_path.decode("ascii").split("?", 1)[0]
        except UnicodeDecodeError:
            raise MalformedRequestError("Request target is not ASCII") from None
    else:
        path = request.url.path
    query = request.scope.get("query_string", b"")
    if query:
        path = f"{path}?{query.decode('latin-1')}"
    body = await request.body()
    return RawRequest(
        method=request.method,
        raw_path=path,
        headers=list(request.headers.raw),
        body=body or None,
    )


def to_response(raw: RawResponse) -> Response:
    """Core RawResponse -> Starlette response."""
    return Response(
        content=raw.body, status_code=raw.status_code, headers=dict(raw.headers),
    )


def build_router(pipeline: RequestPipeline) -> APIRouter:
    """Catch-all router bound to one pipeline."""
    router = APIRouter(tags=["resources"])

    @router.api_route(
        "/{path:path}", methods=TRANSPORT_METHODS, include_in_schema=False,
    )
    async def dispatch_request(request: Request) -> Response:
        raw = await to_raw_request(request)
        return to_response(await pipeline.handle(raw))

    return router
