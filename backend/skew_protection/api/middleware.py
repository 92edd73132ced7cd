"""Skew protection middleware: documents, API sub-requests and asset misses"""

import logging
from datetime import datetime, timezone
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response
from skew_protection.api.assets import build_asset_request, to_response
from skew_protection.core.asset_router import EdgeAssetRouter, ResolutionKind
from skew_protection.core.deployment_mapping import resolve_version
from skew_protection.core.identity import (
    get_cookie_version,
    get_identity_hint,
    is_api_request,
    is_bot,
    is_document_request,
    set_identity_cookie,
)

logger = logging.getLogger(__name__)


class SkewProtectionMiddleware(BaseHTTPMiddleware):
    """
    Document requests always get `current` and have the identity cookie reset
    to it; crawlers skip identity handling entirely. Only asset and API
    sub-requests honor a stale identity hint.
    """

    async def dispatch(self, request: Request, call_next) -> Response:
        service = request.app.state.service
        settings = service.settings
        path = request.url.path

        if path.startswith("/_skew"):
            return await call_next(request)

        if is_document_request(request, settings):
            response = await call_next(request)
            if not is_bot(request):
                current = await service.current_version()
                if current:
                    set_identity_cookie(response, current, settings)
            return response

        if is_api_request(request):
            return await self._handle_api(request, call_next, service)

        if path.startswith(settings.assets_prefix.rstrip("/") + "/"):
            response = await call_next(request)
            if response.status_code != 404:
                return response
            resolution = await service.router.resolve(build_asset_request(request, path))
            logger.debug(f"Asset miss {path} resolved as {resolution.kind.value} ({resolution.version or '-'})")
            return to_response(resolution)

        return await call_next(request)

    async def _handle_api(self, request: Request, call_next, service) -> Response:
        settings = service.settings
        current = await service.current_version()

        if isinstance(service.router, EdgeAssetRouter):
            hint = get_identity_hint(request, settings)
            if hint:
                manifest = await service.store.get()
                target = resolve_version(hint, manifest)
                if target and target != manifest.current:
                    asset_request = build_asset_request(request, request.url.path)
                    asset_request.body = await request.body()
                    resolution = await service.router.forward(target, hint, asset_request)
                    if resolution.kind == ResolutionKind.FORWARD:
                        return to_response(resolution)

        client_version = get_cookie_version(request, settings)
        response = await call_next(request)
        if client_version and current and client_version != current:
            response.headers["x-skew-outdated"] = "1"
            await service.notify_outdated_client({
                "clientVersion": client_version,
                "currentVersion": current,
                "userAgent": request.headers.get("user-agent"),
                "ip": request.headers.get("x-forwarded-for") or (request.client.host if request.client else None),
                "url": str(request.url),
                "timestamp": datetime.now(timezone.utc).isoformat(),
            })
        return response
