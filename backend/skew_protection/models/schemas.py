"""API request/response and realtime wire schemas"""

import time
from typing import Dict, List, Literal, Optional
from pydantic import BaseModel, Field


def now_ms() -> int:
    return int(time.time() * 1000)


class RealtimeMessage(BaseModel):
    """Server -> client realtime event (SSE data line or WebSocket text frame)"""
    type: Literal["connected", "version-update", "keepalive", "pong"]
    version: Optional[str] = None
    timestamp: int = Field(default_factory=now_ms)

    def to_wire(self) -> str:
        return self.model_dump_json(exclude_none=True)


class ClientMessage(BaseModel):
    """Client -> server WebSocket message"""
    type: str


class BroadcastRequest(BaseModel):
    """POST /_skew/broadcast request"""
    version: str = Field(..., min_length=1)


class BroadcastResponse(BaseModel):
    """POST /_skew/broadcast response"""
    success: bool = True
    broadcast_count: int
    total_sessions: int


class StatusResponse(BaseModel):
    """GET /_skew/status response"""
    currentBuildId: str
    userVersion: Optional[str] = None
    outdated: bool
    manifest: Optional[dict] = None


class VersionDocumentEntry(BaseModel):
    timestamp: str
    deletedChunks: List[str] = Field(default_factory=list)


class VersionDocument(BaseModel):
    """Small document polled by clients when realtime transports are unavailable"""
    id: str
    timestamp: int = Field(default_factory=now_ms)
    versions: Dict[str, VersionDocumentEntry] = Field(default_factory=dict)


class ErrorResponse(BaseModel):
    """Error response"""
    error_id: str
    code: str
    message: str
    hint: Optional[str] = None
    retryable: bool = False
