"""FastAPI application for the streamable HTTP memory server."""

import logging
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI
from fastapi.staticfiles import StaticFiles
from pydantic import BaseModel

from ..config import ServerConfig
from ..core import GraphStore, MemoryService
from ..server import create_mcp_server
from ..version import __version__
from .router import RequestRouter
from .session_manager import SessionRegistry

logger = logging.getLogger(__name__)

STATIC_DIR = Path(__file__).resolve().parent.parent / "static"


class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    version: str
    transport: str
    active_sessions: int


def create_app(config: ServerConfig) -> FastAPI:
    """Build store, service, session registry and router once, and wire them into an app."""
    store = GraphStore(config.memory_dir)
    service = MemoryService(store)
    registry = SessionRegistry(
        server_factory=lambda: create_mcp_server(service),
        capacity=config.session_capacity,
        eviction_interval=config.eviction_interval,
        json_response=config.json_response,
    )
    router = RequestRouter(registry)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Manage application lifespan."""
        logger.info("Starting context-echo HTTP server...")
        async with registry.run():
            logger.info(f"Server ready, memory stored in {config.memory_dir}")
            yield
        logger.info("Server stopped")

    app = FastAPI(
        title="context-echo",
        description="MCP server for per-user memory",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.store = store
    app.state.service = service
    app.state.registry = registry

    @app.get("/health", response_model=HealthResponse)
    async def health_check():
        """Health check endpoint."""
        return {
            "status": "ok",
            "version": __version__,
            "transport": "streamable-http",
            "active_sessions": registry.count(),
        }

    app.add_route("/mcp", router, include_in_schema=False)
    app.mount("/.well-known", StaticFiles(directory=str(STATIC_DIR)), name="well-known")

    return app
