"""
gox FastAPI application.

Provides a local REST API for managing stored proxy servers, starting and
stopping the Xray engine against one of them, and reading engine status and
application logs.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import APIRouter, FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from .config import config
from .engine_config import synthesize
from .errors import (
    ConfigWriteError,
    DuplicateServerName,
    InvalidServer,
    KillFailed,
    LaunchFailed,
    ServerNotFound,
)
from .logs import read_log_lines, setup_logging
from .models import initialize_db
from .monitor import get_engine_metrics
from .provision import BinaryProvisioner
from .registry import ServerRegistry
from .supervisor import ProcessSupervisor

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler for startup/shutdown."""
    # Startup
    setup_logging()
    logger.info("Starting gox...")

    if app.state.registry is None:
        initialize_db()
        app.state.registry = ServerRegistry()

    if app.state.supervisor is None:
        # ProvisionError here aborts startup
        app.state.supervisor = ProcessSupervisor(provisioner=BinaryProvisioner())

    yield

    # Shutdown
    logger.info("Shutting down gox...")
    app.state.supervisor.shutdown()


def create_app(supervisor: ProcessSupervisor = None, registry: ServerRegistry = None) -> FastAPI:
    """
    Build the application.

    The supervisor and registry are created at startup unless given here;
    a given supervisor is still shut down when the application stops.
    """
    app = FastAPI(
        title="gox",
        description="Local control plane for the Xray proxy engine",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.supervisor = supervisor
    app.state.registry = registry

    # CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.include_router(router)
    return app


# Pydantic models for API
class ServerCreate(BaseModel):
    id: Optional[str] = Field(None, description="Server ID, generated when omitted")
    name: str = Field(..., description="Unique display name")
    protocol: str = Field(..., description="vmess, vless, trojan or shadowsocks")
    address: str = Field(..., description="Server address")
    port: int = Field(..., description="Server port")
    uuid: str = Field("", description="User ID (vmess/vless)")
    password: str = Field("", description="Password (trojan/shadowsocks)")
    method: str = Field("", description="Cipher method (shadowsocks)")
    network: str = Field("", description="Transport: tcp, ws, grpc")
    path: str = Field("", description="WebSocket path")
    host: str = Field("", description="WebSocket Host header")
    tls: bool = Field(False, description="Enable TLS")
    sni: str = Field("", description="TLS server name")


class ServerUpdate(BaseModel):
    name: Optional[str] = None
    protocol: Optional[str] = None
    address: Optional[str] = None
    port: Optional[int] = None
    uuid: Optional[str] = None
    password: Optional[str] = None
    method: Optional[str] = None
    network: Optional[str] = None
    path: Optional[str] = None
    host: Optional[str] = None
    tls: Optional[bool] = None
    sni: Optional[str] = None


def _registry(request: Request) -> ServerRegistry:
    return request.app.state.registry


def _supervisor(request: Request) -> ProcessSupervisor:
    return request.app.state.supervisor


# Server CRUD
@router.get("/servers")
async def list_servers(request: Request):
    """List all stored servers."""
    return [s.to_dict() for s in _registry(request).list_servers()]


@router.post("/servers")
async def create_server(request: Request, data: ServerCreate):
    """Store a new server."""
    try:
        server = _registry(request).create_server(data.model_dump())
    except DuplicateServerName as e:
        raise HTTPException(status_code=409, detail=str(e))
    except InvalidServer as e:
        raise HTTPException(status_code=422, detail=str(e))
    return server.to_dict()


@router.get("/servers/validate-name")
async def validate_server_name(
    request: Request,
    name: str = Query(..., description="Display name to check"),
    exclude_id: Optional[str] = Query(None, description="Server ID to ignore"),
):
    """Check whether a display name is free."""
    try:
        _registry(request).validate_server_name(name, exclude_id)
    except DuplicateServerName as e:
        return {"valid": False, "detail": str(e)}
    return {"valid": True}


@router.get("/servers/{server_id}")
async def get_server(request: Request, server_id: str):
    """Get a specific server."""
    try:
        return _registry(request).get_server(server_id).to_dict()
    except ServerNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.put("/servers/{server_id}")
async def update_server(request: Request, server_id: str, data: ServerUpdate):
    """Update a server. A running engine keeps the settings it was started with."""
    try:
        server = _registry(request).update_server(server_id, data.model_dump(exclude_none=True))
    except ServerNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    except DuplicateServerName as e:
        raise HTTPException(status_code=409, detail=str(e))
    except InvalidServer as e:
        raise HTTPException(status_code=422, detail=str(e))
    return server.to_dict()


@router.delete("/servers/by-name/{name}")
async def remove_server(request: Request, name: str):
    """Delete a server by its display name."""
    try:
        _registry(request).remove_server(name)
    except ServerNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    return {"status": "deleted", "name": name}


@router.delete("/servers/{server_id}")
async def delete_server(request: Request, server_id: str):
    """Delete a server."""
    try:
        _registry(request).delete_server(server_id)
    except ServerNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    return {"status": "deleted", "id": server_id}


# Proxy control
@router.post("/proxy/start/{server_id}")
async def start_proxy(request: Request, server_id: str):
    """Start the engine against a stored server. Blocks for the liveness check."""
    try:
        server = _registry(request).get_server(server_id)
    except ServerNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))

    supervisor = _supervisor(request)
    try:
        await asyncio.to_thread(supervisor.start, server)
    except (ConfigWriteError, LaunchFailed, KillFailed) as e:
        raise HTTPException(status_code=500, detail=str(e))

    return {"status": supervisor.get_status().value, "server": server.to_dict(), "pid": supervisor.get_pid()}


@router.post("/proxy/stop")
async def stop_proxy(request: Request):
    """Stop the engine."""
    supervisor = _supervisor(request)
    try:
        await asyncio.to_thread(supervisor.stop)
    except KillFailed as e:
        raise HTTPException(status_code=500, detail=str(e))
    return {"status": supervisor.get_status().value}


@router.get("/proxy/status")
async def get_proxy_status(request: Request):
    """Get engine status, the active server and current resource usage."""
    supervisor = _supervisor(request)
    active = supervisor.get_active_server()
    metrics = await asyncio.to_thread(
        get_engine_metrics, supervisor.get_pid(), supervisor.get_started_at()
    )
    return {
        "status": supervisor.get_status().value,
        "running": supervisor.is_running(),
        "active_server": active.to_dict() if active else None,
        "metrics": metrics,
        "socks_port": supervisor.socks_port,
        "http_port": supervisor.http_port,
    }


@router.get("/proxy/config")
async def get_proxy_config(request: Request):
    """Get the engine configuration for the active server."""
    supervisor = _supervisor(request)
    active = supervisor.get_active_server()
    if not active:
        raise HTTPException(status_code=404, detail="No active server")
    return synthesize(
        active,
        socks_port=supervisor.socks_port,
        http_port=supervisor.http_port,
        log_level=supervisor.engine_log_level,
    )


# Logs
@router.get("/logs")
async def get_logs(lines: int = Query(100, ge=0, le=10000)):
    """Get the last lines of the application log."""
    return {"lines": read_log_lines(lines), "path": str(config.log_file)}


app = create_app()
