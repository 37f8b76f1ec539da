"""Pydantic schemas for the PatientVault local API."""
from __future__ import annotations

from typing import Any, List, Optional

from pydantic import BaseModel, Field


class HealthResponse(BaseModel):
    """Health response summarising server readiness and storage state."""

    ok: bool = Field(True, description="Indicates the API server is reachable.")
    version: str = Field(..., description="Application version string.")
    time_utc: str = Field(..., description="Current UTC timestamp in ISO8601 format.")
    storage_roots: int = Field(..., ge=0, description="Number of registered storage roots.")
    active_root: Optional[str] = Field(None, description="Path of the active storage root, when one is set.")
    active_root_available: bool = Field(..., description="True when the active storage root exists on disk.")


class RpcRequest(BaseModel):
    """Positional arguments for a single channel call."""

    args: List[Any] = Field(default_factory=list, description="Positional arguments in channel order.")


class RpcError(BaseModel):
    code: str = Field(..., description="Stable error code, e.g. NotFound or FolderUnavailable.")
    message: str = Field(..., description="Human readable description.")
    recoverable: bool = Field(False, description="True when retrying later may succeed.")
    path: Optional[str] = Field(None, description="Filesystem path involved, when known.")


class RpcResponse(BaseModel):
    ok: bool = Field(..., description="False when the call failed; see error.")
    result: Any = Field(None, description="Channel result on success.")
    error: Optional[RpcError] = Field(None, description="Failure details when ok is false.")


class ChannelsResponse(BaseModel):
    channels: List[str] = Field(default_factory=list, description="Supported channel names.")


__all__ = ["ChannelsResponse", "HealthResponse", "RpcError", "RpcRequest", "RpcResponse"]
