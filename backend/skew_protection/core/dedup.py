"""Cross-version asset deduplication"""

import hashlib
import logging
from dataclasses import dataclass, field
from pathlib import PurePosixPath
from typing import Awaitable, Callable, Dict, Iterable, List, Optional
from skew_protection.core.manifest_store import previous_version
from skew_protection.core.storage import Storage
from skew_protection.models.manifest import VersionManifest

logger = logging.getLogger(__name__)

AssetReader = Callable[[str], Awaitable[Optional[bytes]]]


def filename_fingerprint(asset_path: str, data: Optional[bytes] = None) -> str:
    """
    Fingerprint from the hashed file name, extension included.

    Build tools content-hash asset names, so an identical name is treated as
    identical bytes. This is an assumption, the bytes are never compared.
    """
    return PurePosixPath(asset_path).name


def content_fingerprint(asset_path: str, data: Optional[bytes] = None) -> str:
    """sha256 of the bytes plus the extension; falls back to the file name without bytes"""
    if data is None:
        return filename_fingerprint(asset_path)
    digest = hashlib.sha256(data).hexdigest()
    return f"sha256-{digest}{PurePosixPath(asset_path).suffix}"


FINGERPRINTS = {
    "filename": filename_fingerprint,
    "content": content_fingerprint,
}


def storage_key(version_id: str, asset_path: str) -> str:
    return f"{version_id}/{asset_path.lstrip('/')}"


def compute_deleted_chunks(manifest: VersionManifest, version_id: str, assets: Iterable[str]) -> List[str]:
    """Assets of the preceding version that the new version no longer ships"""
    previous = previous_version(manifest, version_id)
    if previous is None:
        return []
    current_assets = set(assets)
    return sorted(a for a in manifest.versions[previous].assets if a not in current_assets)


@dataclass
class DedupReport:
    stored: int = 0
    reassigned: Dict[str, str] = field(default_factory=dict)  # asset -> previous owner
    failed: List[str] = field(default_factory=list)


class AssetDeduplicator:
    """Keeps one stored copy per asset path and fingerprint, owned by the newest version"""

    def __init__(self, storage: Storage, fingerprint_mode: str = "filename"):
        self.storage = storage
        self.fingerprint = FINGERPRINTS[fingerprint_mode]

    async def deduplicate(
        self,
        manifest: VersionManifest,
        version_id: str,
        read_asset: AssetReader,
    ) -> DedupReport:
        """
        Move ownership of every asset of `version_id` to it and store the bytes.

        Mutates `manifest` in place; the caller persists it. Storage failures
        are logged per asset and never abort the remaining assets.
        """
        report = DedupReport()
        record = manifest.versions[version_id]

        for asset in list(record.assets):
            try:
                data = await read_asset(asset)
            except OSError as e:
                logger.warning(f"Failed to read asset {asset} for version {version_id}: {e}")
                data = None
            if data is None:
                report.failed.append(asset)
                continue

            fingerprint = self.fingerprint(asset, data)
            owner = manifest.file_id_to_version.get(fingerprint)
            if owner and owner != version_id and owner in manifest.versions:
                if await self._release(manifest, owner, asset, fingerprint):
                    report.reassigned[asset] = owner
            manifest.file_id_to_version[fingerprint] = version_id

            key = storage_key(version_id, asset)
            try:
                await self.storage.set_raw(key, data)
                report.stored += 1
            except Exception as e:
                logger.warning(f"Failed to store {key}: {e}")
                report.failed.append(asset)

        if report.reassigned:
            logger.info(f"Version {version_id} took ownership of {len(report.reassigned)} shared assets")
        return report

    async def _stored_fingerprint(self, version_id: str, asset: str) -> str:
        if self.fingerprint is filename_fingerprint:
            return filename_fingerprint(asset)
        try:
            data = await self.storage.get_raw(storage_key(version_id, asset))
        except Exception as e:
            logger.warning(f"Failed to read {storage_key(version_id, asset)} for fingerprinting: {e}")
            data = None
        return self.fingerprint(asset, data)

    async def _release(self, manifest: VersionManifest, owner: str, asset: str, fingerprint: str) -> bool:
        """
        Drop the previous owner's copy of `asset` if it holds the same fingerprint.

        Only the same path is released; a copy under another path stays with its
        version.
        """
        old_record = manifest.versions[owner]
        if asset not in old_record.assets:
            return False
        if await self._stored_fingerprint(owner, asset) != fingerprint:
            return False
        key = storage_key(owner, asset)
        try:
            await self.storage.remove(key)
        except Exception as e:
            logger.warning(f"Failed to remove redundant copy {key}: {e}")
        old_record.assets = [a for a in old_record.assets if a != asset]
        return True
