"""HTTP proxy: FastAPI routes that forward to the supervised stdio server."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, Dict, Optional

import uvicorn
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from pydantic import BaseModel

from dashscope_mcp import __version__
from dashscope_mcp.errors import DashScopeMCPError, RequestTimeoutError
from dashscope_mcp.proxy.session import ProxySession
from dashscope_mcp.validation.config import Config

logger = logging.getLogger(__name__)

WEB_DIR = Path(__file__).resolve().parent.parent / "web"


class ToolCallBody(BaseModel):
    name: Optional[str] = None
    arguments: Optional[Dict[str, Any]] = None


class ResourceReadBody(BaseModel):
    uri: Optional[str] = None


def error_json(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


def create_app(config: Config, session: Optional[ProxySession] = None) -> FastAPI:
    """Build the proxy application. ``session`` defaults to one spawning ``server_command``."""
    if session is None:
        session = ProxySession.from_config(config)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await session.start()
        try:
            yield
        finally:
            await session.stop()

    app = FastAPI(title="dashscope-mcp proxy", version=__version__, lifespan=lifespan)
    app.state.session = session

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        errors = exc.errors()
        message = errors[0].get("msg", "Invalid request") if errors else "Invalid request"
        return error_json(400, message)

    @app.exception_handler(DashScopeMCPError)
    async def proxy_error_handler(request: Request, exc: DashScopeMCPError):
        if isinstance(exc, RequestTimeoutError):
            logger.warning("%s %s: %s", request.method, request.url.path, exc)
        else:
            logger.error("%s %s: %s", request.method, request.url.path, exc)
        return error_json(500, str(exc))

    @app.get("/api/mcp/status")
    async def status():
        return session.status()

    @app.get("/api/mcp/tools")
    async def list_tools():
        return await session.send_request("tools/list", {})

    @app.post("/api/mcp/tools/call")
    async def call_tool(body: ToolCallBody):
        if not body.name:
            return error_json(400, "Tool name is required")
        return await session.send_request(
            "tools/call", {"name": body.name, "arguments": body.arguments or {}}
        )

    @app.get("/api/mcp/resources")
    async def list_resources():
        return await session.send_request("resources/list", {})

    @app.post("/api/mcp/resources/read")
    async def read_resource(body: ResourceReadBody):
        if not body.uri:
            return error_json(400, "Resource URI is required")
        return await session.send_request("resources/read", {"uri": body.uri})

    static_dir = Path(config.proxy.static_dir) if config.proxy.static_dir else WEB_DIR
    app.mount("/", StaticFiles(directory=static_dir, html=True), name="web")

    return app


def run_proxy(config: Config, host: Optional[str] = None, port: Optional[int] = None) -> None:
    """Serve the proxy with uvicorn until interrupted."""
    host = host or config.proxy.host
    port = port or config.proxy.port
    app = create_app(config)
    logger.info("MCP API server on http://%s:%d (web client at /)", host, port)
    uvicorn.run(app, host=host, port=port, log_config=None)
