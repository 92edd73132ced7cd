"""Version status, polling document, diagnostics and broadcast trigger"""

import logging
from fastapi import APIRouter, Depends, Request
from skew_protection.core.auth import verify_api_key
from skew_protection.core.identity import get_cookie_version
from skew_protection.models.errors import RealtimeUnavailableError, VersionNotFoundError
from skew_protection.models.schemas import (
    BroadcastRequest,
    BroadcastResponse,
    StatusResponse,
    VersionDocument,
    VersionDocumentEntry,
)

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/status", response_model=StatusResponse)
async def get_status(request: Request):
    """Whether the caller's identity cookie is behind the live build"""
    service = request.app.state.service
    current = await service.current_version()
    user_version = get_cookie_version(request, service.settings)
    manifest = await service.store.get()
    return StatusResponse(
        currentBuildId=current,
        userVersion=user_version,
        outdated=bool(user_version) and user_version != current,
        manifest=None if manifest.is_empty() else manifest.to_document(),
    )


@router.get("/version", response_model=VersionDocument)
async def get_version_document(request: Request):
    """
    Small document clients poll when realtime transports are unavailable.

    Mirrors `builds/latest.json`: the live id plus each retained version's
    timestamp and deleted chunks, so clients can tell whether a chunk they
    loaded has since disappeared.
    """
    service = request.app.state.service
    manifest = await service.store.get()
    return VersionDocument(
        id=await service.current_version(),
        versions={
            version_id: VersionDocumentEntry(
                timestamp=record.timestamp.isoformat(),
                deletedChunks=record.deleted_chunks,
            )
            for version_id, record in manifest.versions.items()
        },
    )


@router.get("/debug")
async def get_debug(request: Request):
    service = request.app.state.service
    settings = service.settings
    manifest = await service.store.get()
    broadcaster = service.broadcaster
    return {
        "platform": settings.platform,
        "buildId": await service.current_version(),
        "manifest": manifest.to_document(),
        "stats": {
            "availableVersions": manifest.sorted_version_ids(),
            "currentVersion": manifest.current or None,
            "totalVersions": len(manifest.versions),
            "activeDeployments": len(manifest.deployment_mapping),
        },
        "realtime": {
            "enabled": broadcaster is not None,
            "sessions": broadcaster.session_count() if broadcaster else 0,
            "clients": broadcaster.sessions() if broadcaster else [],
        },
    }


@router.post("/broadcast", response_model=BroadcastResponse)
async def broadcast_version(body: BroadcastRequest, request: Request, api_key: str = Depends(verify_api_key)):
    """Announce a newly published version to every connected client"""
    service = request.app.state.service
    broadcaster = service.broadcaster
    if broadcaster is None:
        raise RealtimeUnavailableError(service.settings.platform)
    manifest = await service.store.get()
    if body.version not in manifest.versions and body.version != await service.current_version():
        raise VersionNotFoundError(body.version)
    count = await broadcaster.publish(body.version)
    return BroadcastResponse(broadcast_count=count, total_sessions=broadcaster.session_count())
