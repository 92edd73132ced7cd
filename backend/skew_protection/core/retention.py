"""Retention eviction policy"""

import logging
from datetime import datetime, timedelta
from typing import List, Optional
from skew_protection.core.dedup import storage_key
from skew_protection.core.manifest_store import utcnow
from skew_protection.core.storage import Storage
from skew_protection.models.manifest import VersionManifest

logger = logging.getLogger(__name__)


class RetentionPolicy:
    """Evicts versions that are too old or beyond the count cap, never the current one"""

    def __init__(self, storage: Storage, retention_days: float = 7, max_versions: int = 10):
        self.storage = storage
        self.max_age = timedelta(days=retention_days)
        self.max_versions = max_versions

    def select_evictions(self, manifest: VersionManifest, now: Optional[datetime] = None) -> List[str]:
        """Version ids the sweep would evict, without touching anything"""
        now = now or utcnow()
        ordered = manifest.sorted_version_ids()
        evict = []
        for index, version_id in enumerate(ordered):
            if version_id == manifest.current or len(ordered) == 1:
                continue
            record = manifest.versions[version_id]
            expired = (now - record.timestamp) > self.max_age
            over_count = index >= self.max_versions
            if expired or over_count:
                evict.append(version_id)
        return evict

    async def sweep(self, manifest: VersionManifest, now: Optional[datetime] = None) -> List[str]:
        """
        Evict in place and return the evicted ids; the caller persists the manifest.

        Asset deletion is best effort: a failed delete is logged and the
        sweep carries on.
        """
        evicted = self.select_evictions(manifest, now)
        for version_id in evicted:
            await self._evict(manifest, version_id)
        if evicted:
            logger.info(f"Retention sweep evicted {len(evicted)} versions: {', '.join(evicted)}")
        return evicted

    async def _evict(self, manifest: VersionManifest, version_id: str) -> None:
        record = manifest.versions.pop(version_id)
        for asset in record.assets:
            key = storage_key(version_id, asset)
            try:
                await self.storage.remove(key)
            except Exception as e:
                logger.warning(f"Failed to remove asset {key} of evicted version: {e}")

        dropped_deployments = {
            deployment_id
            for deployment_id, mapped in manifest.deployment_mapping.items()
            if mapped == version_id
        }
        for deployment_id in dropped_deployments:
            del manifest.deployment_mapping[deployment_id]

        for fingerprint in [fp for fp, owner in manifest.file_id_to_version.items() if owner == version_id]:
            del manifest.file_id_to_version[fingerprint]

        for asset in [a for a, dpl in manifest.asset_to_deployment.items() if dpl in dropped_deployments]:
            del manifest.asset_to_deployment[asset]

        logger.info(f"Removed version {version_id} ({len(record.assets)} assets)")
