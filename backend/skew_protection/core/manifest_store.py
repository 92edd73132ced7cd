"""Version manifest store"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Iterable, List, Optional
from pydantic import ValidationError
from skew_protection.core.storage import Storage
from skew_protection.models.manifest import VersionManifest, VersionRecord, VersionSummary

logger = logging.getLogger(__name__)

DEFAULT_MANIFEST_KEY = "version-manifest.json"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class RegistrationResult:
    manifest: VersionManifest
    existed: bool


class ManifestStore:
    """
    Owns the single manifest document.

    Every mutation is read-modify-write over the whole document. Only one
    build process may mutate a given storage backend at a time; concurrent
    builds can race and overwrite each other's changes.
    """

    def __init__(self, storage: Storage, key: str = DEFAULT_MANIFEST_KEY, retention_days: float = 7):
        self.storage = storage
        self.key = key
        self.retention_days = retention_days

    async def get(self) -> VersionManifest:
        """Load the manifest; falls back to an empty one instead of failing the caller"""
        try:
            document = await self.storage.get(self.key)
        except Exception as e:
            logger.warning(f"Failed to read manifest '{self.key}': {e}")
            return VersionManifest()
        if not document:
            return VersionManifest()
        try:
            return VersionManifest.model_validate(document)
        except ValidationError as e:
            logger.warning(f"Stored manifest '{self.key}' is invalid, starting from empty: {e}")
            return VersionManifest()

    async def put(self, manifest: VersionManifest) -> None:
        await self.storage.set(self.key, manifest.to_document())

    async def register_version(
        self,
        version_id: str,
        assets: Iterable[str],
        now: Optional[datetime] = None,
    ) -> RegistrationResult:
        """
        Make `version_id` current with a fresh record.

        Re-registering an existing id replaces its record (idempotent rebuild)
        and reports existed=True so callers can skip restoration work.
        """
        now = now or utcnow()
        manifest = await self.get()
        existed = version_id in manifest.versions

        manifest.current = version_id
        manifest.versions[version_id] = VersionRecord(
            timestamp=now,
            expires=now + timedelta(days=self.retention_days),
            assets=list(dict.fromkeys(assets)),
            deleted_chunks=[],
        )
        await self.put(manifest)

        if existed:
            logger.info(f"Re-registered existing version {version_id}")
        else:
            logger.info(f"Registered version {version_id} with {len(manifest.versions[version_id].assets)} assets")
        return RegistrationResult(manifest=manifest, existed=existed)

    async def list_versions(self, manifest: Optional[VersionManifest] = None) -> List[VersionSummary]:
        """Retained versions, newest first"""
        manifest = manifest or await self.get()
        return [
            VersionSummary(id=version_id, created_at=manifest.versions[version_id].timestamp)
            for version_id in manifest.sorted_version_ids()
        ]

    async def index_assets(self, deployment_id: str, assets: Iterable[str]) -> VersionManifest:
        """Record which deployment serves each asset (edge platforms route by it directly)"""
        manifest = await self.get()
        for asset in assets:
            manifest.asset_to_deployment[asset.lstrip("/")] = deployment_id
        await self.put(manifest)
        return manifest


def previous_version(manifest: VersionManifest, version_id: str) -> Optional[str]:
    """The version immediately preceding `version_id` by timestamp"""
    record = manifest.versions.get(version_id)
    if record is None:
        return None
    older = [
        (other.timestamp, other_id)
        for other_id, other in manifest.versions.items()
        if other_id != version_id and other.timestamp <= record.timestamp
    ]
    if not older:
        return None
    return max(older)[1]
