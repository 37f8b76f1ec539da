"""FastAPI application exposing the storage engine channels over loopback HTTP."""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional, Sequence

from fastapi import Depends, FastAPI, HTTPException, Request, Response, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .auth import APIKeyAuth
from .models import ChannelsResponse, HealthResponse, RpcRequest, RpcResponse
from .rpc import RpcDispatcher, UnknownChannel
from .service import PatientService

LOGGER = logging.getLogger("patientvault.api")


@dataclass(slots=True)
class APIServerConfig:
    """Runtime configuration for the FastAPI application."""

    service: PatientService
    api_key: Optional[str]
    cors_origins: Sequence[str]
    app_version: str = "dev"
    lan_only: bool = True


_LOCAL_CLIENT_SENTINELS = {
    "127.0.0.1",
    "::1",
    "localhost",
    "testclient",
}


def _normalise_remote_host(host: Optional[str]) -> Optional[str]:
    if host is None:
        return None
    value = host.strip().lower()
    if not value:
        return None
    if value.startswith("::ffff:"):
        value = value.split("::ffff:")[-1]
    if value.startswith("[") and value.endswith("]"):
        value = value[1:-1]
    if "%" in value:  # IPv6 scope id
        value = value.split("%", 1)[0]
    return value


def _is_loopback_host(host: Optional[str]) -> bool:
    value = _normalise_remote_host(host)
    if value is None:
        return True
    return value in _LOCAL_CLIENT_SENTINELS or value.startswith("127.")


def create_app(config: APIServerConfig) -> FastAPI:
    """Create a FastAPI application bound to the given configuration."""

    app = FastAPI(
        title="PatientVault Local API",
        version=config.app_version,
        docs_url="/docs",
        openapi_url="/openapi.json",
    )

    allowed_origins: List[str] = [origin for origin in config.cors_origins if origin]
    if allowed_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=allowed_origins,
            allow_methods=["GET", "POST"],
            allow_headers=["*"],
        )

    auth_dependency = APIKeyAuth(config.api_key)
    service = config.service
    dispatcher = RpcDispatcher(service)
    lan_only = bool(config.lan_only)
    app.state.dispatcher = dispatcher

    @app.middleware("http")
    async def log_requests(request: Request, call_next):  # type: ignore[override]
        start = time.perf_counter()
        response: Optional[Response] = None
        client_host = request.client.host if request.client else None
        try:
            if lan_only and not _is_loopback_host(client_host):
                LOGGER.warning("Rejected non-local HTTP request from %s", client_host or "<unknown>")
                response = JSONResponse(status_code=status.HTTP_403_FORBIDDEN, content={"error": "LAN access disabled"})
            else:
                response = await call_next(request)
            return response
        finally:
            duration_ms = (time.perf_counter() - start) * 1000
            status_code = response.status_code if response is not None else 500
            LOGGER.info(
                "%s %s -> %s (%.1f ms) ip=%s",
                request.method,
                request.url.path,
                status_code,
                duration_ms,
                client_host or "-",
            )

    @app.exception_handler(HTTPException)
    async def http_exception_handler(_request: Request, exc: HTTPException):
        detail = exc.detail if isinstance(exc.detail, str) else str(exc.detail)
        return JSONResponse(status_code=exc.status_code, content={"error": detail})

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(_request: Request, exc: RequestValidationError):
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"error": "invalid parameters", "details": exc.errors()},
        )

    @app.get("/v1/health", response_model=HealthResponse)
    def health_check(_: str = Depends(auth_dependency)) -> HealthResponse:
        now = datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")
        roots = service.registry.roots()
        active = service.registry.get_active()
        return HealthResponse(
            ok=True,
            version=config.app_version,
            time_utc=now,
            storage_roots=len(roots),
            active_root=active.path if active else None,
            active_root_available=bool(active and Path(active.path).is_dir()),
        )

    @app.get("/v1/rpc/channels", response_model=ChannelsResponse)
    def list_channels(_: str = Depends(auth_dependency)) -> ChannelsResponse:
        return ChannelsResponse(channels=dispatcher.channel_names())

    @app.post("/v1/rpc/{channel}", response_model=RpcResponse, response_model_exclude_unset=True)
    async def rpc_call(
        channel: str,
        payload: Optional[RpcRequest] = None,
        _: str = Depends(auth_dependency),
    ) -> RpcResponse:
        args = payload.args if payload is not None else []
        try:
            envelope = await dispatcher.call(channel, args)
        except UnknownChannel:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"unknown channel: {channel}")
        return RpcResponse(**envelope)

    return app


__all__ = ["APIServerConfig", "create_app"]
