"""
FastAPI application for one action flow node.

Serves the chat surface for users and the node to node surface
(/collections, /execute) used by federated peers.
"""

from typing import Optional
from uuid import uuid4

from fastapi import FastAPI, Request
import structlog

from actionflow.application.api.route import chat, node
from actionflow.application.container import ActionFlowContainer
from actionflow.infrastructure.http.node_client import FORWARDED_HEADER
from actionflow.infrastructure.observability.logging import setup_logging

logger = structlog.get_logger(__name__)


def create_app(container: ActionFlowContainer, configure_logging: bool = False) -> FastAPI:
    """Create the API for a wired container"""

    if configure_logging:
        setup_logging(container.settings.log_level, container.settings.log_format)

    app = FastAPI(
        title="Action Flow",
        description=f"Conversational action node '{container.settings.node_slug}'",
        version="0.1.0"
    )
    app.state.container = container

    @app.middleware("http")
    async def request_context_middleware(request: Request, call_next):
        trace_id = request.headers.get("X-Trace-ID") or uuid4().hex
        forwarded_from: Optional[str] = request.headers.get(FORWARDED_HEADER)

        with structlog.contextvars.bound_contextvars(trace_id=trace_id, node=container.settings.node_slug):
            if forwarded_from:
                logger.info("Request forwarded from peer", path=request.url.path, peer=forwarded_from)
            response = await call_next(request)

        response.headers["X-Trace-ID"] = trace_id
        return response

    app.include_router(chat.router, tags=["chat"])
    app.include_router(node.router, tags=["node"])

    @app.get("/health")
    async def health():
        """Health check endpoint."""
        return {"status": "ok", "node": container.settings.node_slug}

    return app
