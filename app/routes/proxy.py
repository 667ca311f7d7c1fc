"""Pass-through to the upstream Koios API with the server-side bearer token."""

import logging

import httpx
from fastapi import APIRouter, Depends, HTTPException, Request, Response

from app.dependencies import get_ledger_client
from poolrewards.services.errors import UpstreamRequestError
from poolrewards.services.ledger_client import LedgerClient

logger: logging.Logger = logging.getLogger(__name__)

# httpx already decoded the body, so length/encoding headers no longer apply.
FORWARDED_RESPONSE_HEADERS: frozenset[str] = frozenset(
    {"cache-control", "content-range", "content-type", "etag", "last-modified"}
)

PROXY_METHODS: list[str] = ["GET", "POST", "PUT", "PATCH", "DELETE", "HEAD", "OPTIONS"]


def create_router(prefix: str) -> APIRouter:
    router: APIRouter = APIRouter(prefix=prefix, tags=["proxy"])

    @router.api_route("/{path:path}", methods=PROXY_METHODS, include_in_schema=False)
    async def forward(
        path: str,
        request: Request,
        client: LedgerClient = Depends(get_ledger_client),
    ) -> Response:
        body: bytes = await request.body()
        try:
            upstream: httpx.Response = await client.forward(
                request.method,
                path,
                params=request.query_params.multi_items(),
                headers=dict(request.headers),
                content=body or None,
            )
        except UpstreamRequestError as e:
            logger.warning("Proxy request failed: %s", e)
            raise HTTPException(status_code=502, detail=str(e)) from e

        headers: dict[str, str] = {
            k: v for k, v in upstream.headers.items() if k.lower() in FORWARDED_RESPONSE_HEADERS
        }
        return Response(content=upstream.content, status_code=upstream.status_code, headers=headers)

    return router
