"""Build-completion pipeline: register, dedup, map, sweep, restore"""

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional
from skew_protection.core.config import Settings
from skew_protection.core.dedup import AssetDeduplicator, compute_deleted_chunks, storage_key
from skew_protection.core.deployment_mapping import DeploymentMappingManager
from skew_protection.core.manifest_store import ManifestStore
from skew_protection.core.retention import RetentionPolicy
from skew_protection.core.storage import Storage
from skew_protection.models.manifest import VersionManifest

logger = logging.getLogger(__name__)


@dataclass
class BuildResult:
    version_id: str
    deployment_id: str
    assets: List[str]
    existed: bool
    deleted_chunks: List[str] = field(default_factory=list)
    evicted: List[str] = field(default_factory=list)
    restored: int = 0
    failed_assets: List[str] = field(default_factory=list)
    mapping: Dict[str, str] = field(default_factory=dict)


def collect_assets(public_dir: Path, assets_dir_name: str) -> List[str]:
    """Every file under the public assets directory, as `assets_dir/relative/path`"""
    assets_root = public_dir / assets_dir_name
    if not assets_root.is_dir():
        logger.warning(f"Build assets directory not found: {assets_root}")
        return []
    return sorted(
        f"{assets_dir_name}/{path.relative_to(assets_root).as_posix()}"
        for path in assets_root.rglob("*")
        if path.is_file()
    )


class BuildPipeline:
    """
    Runs once per build, from a single build process.

    A deployment id collision aborts before anything is written. Per-asset
    storage failures are logged and the build continues.
    """

    def __init__(self, settings: Settings, storage: Storage):
        self.settings = settings
        self.storage = storage
        self.store = ManifestStore(storage, key=settings.manifest_key, retention_days=settings.retention_days)
        self.mapping = DeploymentMappingManager(self.store)
        self.dedup = AssetDeduplicator(storage, settings.fingerprint_mode)
        self.retention = RetentionPolicy(storage, settings.retention_days, settings.max_versions)

    async def run(self, deployment_id: str, output_dir: str, version_id: Optional[str] = None) -> BuildResult:
        version_id = version_id or deployment_id
        public_dir = Path(output_dir) / "public"
        logger.info(f"[BUILD] deployment={deployment_id} version={version_id} output={public_dir}")

        await self.mapping.ensure_unused(deployment_id)

        assets = collect_assets(public_dir, self.settings.assets_dir_name)
        builds_prefix = f"{self.settings.assets_dir_name}/builds/"
        assets = [a for a in assets if not a.startswith(builds_prefix)]

        # Read before registering: a rebuild of an existing id must not change
        # which version the outgoing deployment is pinned to
        before = await self.store.get()
        previous_current = before.current or None
        prior_versions = before.sorted_version_ids()

        registration = await self.store.register_version(version_id, assets)
        manifest = registration.manifest
        deleted_chunks = compute_deleted_chunks(manifest, version_id, assets)
        manifest.versions[version_id].deleted_chunks = deleted_chunks

        async def read_asset(asset: str) -> Optional[bytes]:
            path = public_dir / asset
            return path.read_bytes() if path.is_file() else None

        report = await self.dedup.deduplicate(manifest, version_id, read_asset)
        await self.store.put(manifest)

        await self.mapping.update_mapping(
            deployment_id, prior_versions, self.settings.max_versions, previous_current=previous_current
        )

        if self.settings.platform == "edge":
            await self.store.index_assets(deployment_id, assets)

        manifest = await self.store.get()
        evicted = await self.retention.sweep(manifest)
        if evicted:
            await self.store.put(manifest)

        restored = 0
        if not registration.existed:
            restored = await self.restore_old_assets(manifest, version_id, public_dir)

        self.write_build_metadata(manifest, version_id, public_dir)

        logger.info(
            f"[BUILD DONE] version={version_id} assets={len(assets)} stored={report.stored} "
            f"evicted={len(evicted)} restored={restored}"
        )
        return BuildResult(
            version_id=version_id,
            deployment_id=deployment_id,
            assets=assets,
            existed=registration.existed,
            deleted_chunks=deleted_chunks,
            evicted=evicted,
            restored=restored,
            failed_assets=report.failed,
            mapping=dict(manifest.deployment_mapping),
        )

    async def restore_old_assets(self, manifest: VersionManifest, current_version: str, public_dir: Path) -> int:
        """Copy retained older assets into the public directory so static hosting serves them too"""
        restored = 0
        for version_id, record in manifest.versions.items():
            if version_id == current_version:
                continue
            for asset in record.assets:
                target = public_dir / asset
                if target.exists():
                    continue
                key = storage_key(version_id, asset)
                try:
                    data = await self.storage.get_raw(key)
                    if data is None:
                        continue
                    target.parent.mkdir(parents=True, exist_ok=True)
                    target.write_bytes(data)
                    restored += 1
                except Exception as e:
                    logger.warning(f"Failed to restore asset {asset} from version {version_id}: {e}")
        if restored:
            logger.info(f"Restored {restored} old assets to public directory")
        return restored

    def write_build_metadata(self, manifest: VersionManifest, version_id: str, public_dir: Path) -> bool:
        """Augment `builds/latest.json` with the retained versions; skipped without a builds directory"""
        builds_dir = public_dir / self.settings.assets_dir_name / "builds"
        if not builds_dir.is_dir():
            logger.debug(f"No builds directory at {builds_dir}, skipping metadata augmentation")
            return False
        latest_path = builds_dir / "latest.json"
        latest = {}
        if latest_path.is_file():
            try:
                latest = json.loads(latest_path.read_text(encoding="utf-8"))
            except json.JSONDecodeError as e:
                logger.warning(f"Existing {latest_path} is not valid JSON, rewriting it: {e}")
        latest["id"] = version_id
        latest.setdefault("timestamp", int(manifest.versions[version_id].timestamp.timestamp() * 1000))
        latest["skewProtection"] = {
            "versions": {
                vid: {
                    "timestamp": record.timestamp.isoformat(),
                    "deletedChunks": record.deleted_chunks,
                }
                for vid, record in manifest.versions.items()
            }
        }
        latest_path.write_text(json.dumps(latest, indent=2), encoding="utf-8")
        return True
