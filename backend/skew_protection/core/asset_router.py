"""Request-time asset resolution across retained versions"""

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Optional
from pathlib import PurePosixPath
import httpx
from skew_protection.core.config import Settings
from skew_protection.core.dedup import filename_fingerprint, storage_key
from skew_protection.core.deployment_mapping import resolve_version
from skew_protection.core.manifest_store import ManifestStore
from skew_protection.core.storage import Storage
from skew_protection.models.manifest import VersionManifest

logger = logging.getLogger(__name__)

IMMUTABLE_CACHE_CONTROL = "public, max-age=31536000, immutable"
VERSIONS_ROUTE = "/_skew/versions"

CONTENT_TYPES = {
    "js": "application/javascript",
    "mjs": "application/javascript",
    "css": "text/css",
    "json": "application/json",
    "map": "application/json",
    "html": "text/html; charset=utf-8",
    "txt": "text/plain; charset=utf-8",
    "wasm": "application/wasm",
    "png": "image/png",
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "gif": "image/gif",
    "webp": "image/webp",
    "avif": "image/avif",
    "svg": "image/svg+xml",
    "ico": "image/x-icon",
    "woff": "font/woff",
    "woff2": "font/woff2",
    "ttf": "font/ttf",
    "eot": "application/vnd.ms-fontobject",
}

# Hop-by-hop and origin headers that must not be replayed against another origin
_DROP_FORWARD_HEADERS = {"host", "origin", "connection", "content-length", "transfer-encoding", "keep-alive"}


def content_type_for(path: str) -> str:
    ext = PurePosixPath(path).suffix.lstrip(".").lower()
    return CONTENT_TYPES.get(ext, "application/octet-stream")


class ResolutionKind(str, Enum):
    SERVE = "serve"
    REDIRECT = "redirect"
    FORWARD = "forward"
    NOT_FOUND = "not_found"


@dataclass
class AssetRequest:
    """What the router needs to know about an inbound request"""
    path: str
    hint: Optional[str] = None
    explicit_version: Optional[str] = None
    method: str = "GET"
    query: str = ""
    headers: Dict[str, str] = field(default_factory=dict)
    body: bytes = b""

    @property
    def asset_path(self) -> str:
        return self.path.lstrip("/")


@dataclass
class AssetResolution:
    kind: ResolutionKind
    status: int = 200
    body: bytes = b""
    headers: Dict[str, str] = field(default_factory=dict)
    location: Optional[str] = None
    version: Optional[str] = None

    @classmethod
    def serve(cls, body: bytes, path: str, version: Optional[str]) -> "AssetResolution":
        return cls(
            kind=ResolutionKind.SERVE,
            body=body,
            headers={"content-type": content_type_for(path), "cache-control": IMMUTABLE_CACHE_CONTROL},
            version=version,
        )

    @classmethod
    def redirect(cls, location: str, version: Optional[str] = None) -> "AssetResolution":
        return cls(kind=ResolutionKind.REDIRECT, status=302, location=location, version=version)

    @classmethod
    def not_found(cls) -> "AssetResolution":
        return cls(kind=ResolutionKind.NOT_FOUND, status=404)


class AssetRouter:
    """
    Resolves "which stored version satisfies this request" for assets the
    origin could not serve directly.

    Fallback chain: identity hint -> asset index -> target version ->
    fingerprint owner -> every retained version, newest first -> unqualified
    path -> redirect under current. Storage failures and timeouts skip to the
    next step; the chain always ends in a response, never an exception.
    """

    supports_realtime = True

    def __init__(self, settings: Settings, storage: Storage, store: ManifestStore):
        self.settings = settings
        self.storage = storage
        self.store = store

    async def resolve(self, request: AssetRequest) -> AssetResolution:
        manifest = await self.store.get()
        path = request.asset_path
        if not path:
            return AssetResolution.not_found()

        hint = request.hint
        if request.explicit_version is None and not hint:
            hint = self.lookup_asset_deployment(manifest, path)

        target = request.explicit_version or resolve_version(hint, manifest)
        routed = await self.route_to_version(manifest, target, hint, request)
        if routed is not None:
            return routed
        return await self.resolve_from_storage(manifest, path, target, request)

    def lookup_asset_deployment(self, manifest: VersionManifest, path: str) -> Optional[str]:
        """Fast path: asset -> deployment index for hint-less requests under the assets prefix"""
        if not path.startswith(self.settings.assets_dir_name + "/"):
            return None
        return manifest.asset_to_deployment.get(path)

    async def route_to_version(
        self,
        manifest: VersionManifest,
        target: Optional[str],
        hint: Optional[str],
        request: AssetRequest,
    ) -> Optional[AssetResolution]:
        """Hook for platforms that serve other versions from another origin"""
        return None

    async def resolve_from_storage(
        self,
        manifest: VersionManifest,
        path: str,
        target: Optional[str],
        request: AssetRequest,
    ) -> AssetResolution:
        tried = set()

        if target:
            tried.add(target)
            data = await self.read(storage_key(target, path))
            if data is not None:
                return AssetResolution.serve(data, path, target)

        owner = manifest.file_id_to_version.get(filename_fingerprint(path))
        if owner and owner not in tried and owner in manifest.versions:
            tried.add(owner)
            data = await self.read(storage_key(owner, path))
            if data is not None:
                return AssetResolution.serve(data, path, owner)

        for version_id in manifest.sorted_version_ids():
            if version_id in tried or path not in manifest.versions[version_id].assets:
                continue
            tried.add(version_id)
            data = await self.read(storage_key(version_id, path))
            if data is not None:
                logger.debug(f"Asset found in version {version_id}: {path}")
                return AssetResolution.serve(data, path, version_id)

        data = await self.read(path)
        if data is not None:
            return AssetResolution.serve(data, path, None)

        if manifest.is_empty():
            return AssetResolution.not_found()
        if request.explicit_version == manifest.current:
            # Already looked under current; redirecting again would loop
            return AssetResolution.not_found()
        return AssetResolution.redirect(f"{VERSIONS_ROUTE}/{manifest.current}/{path}", manifest.current)

    async def read(self, key: str) -> Optional[bytes]:
        """Bounded storage read; failures count as a miss"""
        try:
            return await asyncio.wait_for(self.storage.get_raw(key), timeout=self.settings.storage_timeout)
        except asyncio.TimeoutError:
            logger.warning(f"Storage read timed out for {key}")
        except Exception as e:
            logger.warning(f"Storage read failed for {key}: {e}")
        return None

    async def close(self) -> None:
        """Release router resources"""


class EdgeAssetRouter(AssetRouter):
    """
    Edge platforms have no shared storage: every build runs as its own origin.
    Requests for a stale version are forwarded to that version's origin.
    """

    supports_realtime = False

    def __init__(self, settings: Settings, storage: Storage, store: ManifestStore,
                 client: Optional[httpx.AsyncClient] = None):
        super().__init__(settings, storage, store)
        self._client = client

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.settings.forward_timeout)
        return self._client

    async def close(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    def origin_for(self, version_id: str, deployment_id: Optional[str] = None) -> str:
        return self.settings.edge_origin_template.format(
            version=version_id,
            version_prefix=version_id.split("-")[0],
            deployment=deployment_id or version_id,
        ).rstrip("/")

    async def route_to_version(
        self,
        manifest: VersionManifest,
        target: Optional[str],
        hint: Optional[str],
        request: AssetRequest,
    ) -> Optional[AssetResolution]:
        if not target or target == manifest.current:
            return None
        return await self.forward(target, hint, request)

    async def forward(self, version_id: str, deployment_id: Optional[str], request: AssetRequest) -> AssetResolution:
        """Replay the request against the version's own origin; failures become 404"""
        url = f"{self.origin_for(version_id, deployment_id)}/{request.asset_path}"
        if request.query:
            url = f"{url}?{request.query}"
        headers = {k: v for k, v in request.headers.items() if k.lower() not in _DROP_FORWARD_HEADERS}
        client = await self._get_client()
        try:
            response = await client.request(
                request.method,
                url,
                headers=headers,
                content=request.body if request.method not in ("GET", "HEAD") else None,
                timeout=self.settings.forward_timeout,
            )
        except httpx.HTTPError as e:
            logger.error(f"Failed to forward request to {url}: {e!r}")
            return AssetResolution.not_found()

        response_headers = {
            k: v for k, v in response.headers.items()
            if k.lower() not in _DROP_FORWARD_HEADERS and k.lower() != "content-encoding"
        }
        logger.debug(f"Forwarded {request.method} {request.asset_path} to {version_id}: {response.status_code}")
        return AssetResolution(
            kind=ResolutionKind.FORWARD,
            status=response.status_code,
            body=response.content,
            headers=response_headers,
            version=version_id,
        )


class ServerlessAssetRouter(AssetRouter):
    """Shared storage, but the platform cannot hold persistent connections"""

    supports_realtime = False
