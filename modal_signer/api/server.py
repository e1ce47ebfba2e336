"""FastAPI server for the signing bridge.

Endpoints:
- POST /api/register-peer   : Register a peer ID on-chain for the caller's account
- POST /api/submit-winner   : Submit a round's winners on-chain
- GET  /health              : Liveness check
- GET  /metrics             : Prometheus metrics

Request bodies are read raw and validated by the pipeline, so malformed JSON
and missing fields map to 400 rather than FastAPI's default 422.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import Response
from starlette.responses import JSONResponse

from modal_signer import __version__
from modal_signer.api.metrics import metrics_response
from modal_signer.api.middleware import BODY_LIMIT, BodyLimitMiddleware, RequestIdMiddleware
from modal_signer.api.models import HealthResponse

if TYPE_CHECKING:
    from modal_signer.api.models import RegisterPeerRequest, SubmitWinnerRequest
    from modal_signer.core.pipeline import Pipeline

log = structlog.get_logger()


def create_app(
    register_peer: Pipeline[RegisterPeerRequest],
    submit_winner: Pipeline[SubmitWinnerRequest],
    chain: str = "",
    chain_id: int = 0,
    cors_origins: list[str] | None = None,
) -> FastAPI:
    """Create the FastAPI application with injected pipelines."""

    app = FastAPI(
        title="Modal Signer",
        version=__version__,
        description="Delegated signing bridge for sponsored smart-account operations",
    )

    # Catch unhandled exceptions; stack traces stay in the logs
    @app.exception_handler(Exception)
    async def _unhandled_error(request: Request, exc: Exception) -> JSONResponse:
        log.error(
            "unhandled_exception",
            error=str(exc),
            path=request.url.path,
            method=request.method,
            exc_info=True,
        )
        return JSONResponse(status_code=500, content={"error": "error"})

    origins = cors_origins or ["*"]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials="*" not in origins,
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )
    app.add_middleware(BodyLimitMiddleware)
    # Request ID tracing is outermost, so it is added last
    app.add_middleware(RequestIdMiddleware)

    async def _run(pipeline: Pipeline, request: Request) -> JSONResponse:
        body = await request.body()
        if len(body) > BODY_LIMIT:
            log.warning("request_body_too_large", path=request.url.path, content_length=len(body))
            return JSONResponse(status_code=413, content={"error": "request body too large"})
        result = await pipeline.handle(body)
        return JSONResponse(status_code=result.status_code, content=result.content)

    @app.post("/api/register-peer")
    async def register_peer_endpoint(request: Request) -> JSONResponse:
        """Body: ``{"orgId": str, "peerId": str}``. Returns ``{"hash": str}``."""
        return await _run(register_peer, request)

    @app.post("/api/submit-winner")
    async def submit_winner_endpoint(request: Request) -> JSONResponse:
        """Body: ``{"orgId": str, "roundNumber": int, "winners": [str]}``. Returns ``{"hash": str}``."""
        return await _run(submit_winner, request)

    @app.get("/health", response_model=HealthResponse)
    async def health() -> HealthResponse:
        return HealthResponse(status="ok", version=__version__, chain=chain, chain_id=chain_id)

    @app.get("/metrics")
    async def metrics() -> Response:
        """Prometheus metrics endpoint."""
        return Response(
            content=metrics_response(),
            media_type="text/plain; version=0.0.4; charset=utf-8",
        )

    return app
