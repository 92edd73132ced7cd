"""GET /_skew/versions/{path} endpoint"""

import logging
from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import JSONResponse, RedirectResponse, Response
from skew_protection.core.asset_router import AssetRequest, AssetResolution, ResolutionKind
from skew_protection.core.identity import get_identity_hint
from skew_protection.models.errors import ApplicationError, ErrorCode

logger = logging.getLogger(__name__)

router = APIRouter()


def to_response(resolution: AssetResolution) -> Response:
    """Turn a router resolution into an HTTP response"""
    if resolution.kind == ResolutionKind.SERVE:
        return Response(content=resolution.body, status_code=200, headers=resolution.headers)
    if resolution.kind == ResolutionKind.REDIRECT:
        return RedirectResponse(url=resolution.location, status_code=resolution.status)
    if resolution.kind == ResolutionKind.FORWARD:
        return Response(content=resolution.body, status_code=resolution.status, headers=resolution.headers)
    error = ApplicationError(code=ErrorCode.ASSET_NOT_FOUND, message="Asset not found in any retained version")
    return JSONResponse(error.model_dump(), status_code=error.http_status)


def build_asset_request(request: Request, path: str, explicit_version=None) -> AssetRequest:
    settings = request.app.state.settings
    return AssetRequest(
        path=path,
        hint=get_identity_hint(request, settings),
        explicit_version=explicit_version,
        method=request.method,
        query=request.url.query,
        headers=dict(request.headers),
    )


@router.get("/versions/{path:path}")
async def get_versioned_asset(path: str, request: Request) -> Response:
    """
    Serve an asset from a specific retained version.

    `/_skew/versions/{versionId}/{assetPath}` targets that version directly;
    any other path is resolved through the identity hint and fallback chain.
    """
    if not path:
        raise HTTPException(status_code=404, detail="Asset not found")

    service = request.app.state.service
    manifest = await service.store.get()
    head, _, rest = path.partition("/")
    explicit_version = head if rest and head in manifest.versions else None
    asset_path = rest if explicit_version else path

    resolution = await service.router.resolve(build_asset_request(request, asset_path, explicit_version))
    logger.debug(f"Versioned asset {path}: {resolution.kind.value} ({resolution.version or '-'})")
    return to_response(resolution)
