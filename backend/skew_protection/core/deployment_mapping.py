"""Deployment id -> version id mapping"""

import logging
from typing import Dict, Iterable, List, Optional
from skew_protection.core.manifest_store import ManifestStore
from skew_protection.models.errors import DeploymentIdCollisionError
from skew_protection.models.manifest import CURRENT_VERSION_ID, VersionManifest

logger = logging.getLogger(__name__)


def compute_mapping(
    previous: Dict[str, str],
    new_deployment_id: str,
    retained_newest_first: List[str],
    max_versions: int = 20,
    previous_current: Optional[str] = None,
) -> Dict[str, str]:
    """
    Build the mapping for a new deployment.

    The new deployment becomes the only CURRENT entry. The deployment that was
    CURRENT before is pinned to `previous_current`, the version it was actually
    serving (falling back to the newest retained version when unknown); other
    entries survive only while their version is still retained.
    """
    mapping = {new_deployment_id: CURRENT_VERSION_ID}
    window = retained_newest_first[:max_versions]
    retained = set(window)
    if not previous_current and window:
        previous_current = window[0]

    for deployment_id, version_id in previous.items():
        if deployment_id == new_deployment_id:
            continue
        if version_id == CURRENT_VERSION_ID:
            if previous_current:
                mapping[deployment_id] = previous_current
        elif version_id in retained:
            mapping[deployment_id] = version_id
    return mapping


class DeploymentMappingManager:
    """Translates short-lived deployment ids into the version ids the manifest tracks"""

    def __init__(self, store: ManifestStore):
        self.store = store

    async def get_mapping(self) -> Dict[str, str]:
        manifest = await self.store.get()
        return dict(manifest.deployment_mapping)

    async def update_mapping(
        self,
        new_deployment_id: str,
        retained_newest_first: List[str],
        max_versions: int = 20,
        previous_current: Optional[str] = None,
    ) -> Dict[str, str]:
        manifest = await self.store.get()
        manifest.deployment_mapping = compute_mapping(
            manifest.deployment_mapping, new_deployment_id, retained_newest_first, max_versions,
            previous_current=previous_current,
        )
        await self.store.put(manifest)
        logger.info(f"Deployment mapping updated: {len(manifest.deployment_mapping)} active deployments")
        return dict(manifest.deployment_mapping)

    async def get_version_for_deployment(self, deployment_id: str) -> Optional[str]:
        return (await self.get_mapping()).get(deployment_id)

    async def is_deployment_id_used(self, deployment_id: str) -> bool:
        return deployment_id in await self.get_mapping()

    async def ensure_unused(self, deployment_id: str) -> None:
        """Raise DeploymentIdCollisionError if the id was already deployed"""
        if await self.is_deployment_id_used(deployment_id):
            logger.error(f'Deployment ID collision detected: "{deployment_id}" has been used previously.')
            raise DeploymentIdCollisionError(deployment_id)

    async def active_deployments(self) -> List[str]:
        return list(await self.get_mapping())

    async def remove_deployment(self, deployment_id: str) -> None:
        manifest = await self.store.get()
        if manifest.deployment_mapping.pop(deployment_id, None) is not None:
            await self.store.put(manifest)

    async def cleanup_stale_deployments(self, valid_versions: Iterable[str]) -> Dict[str, str]:
        """Drop entries whose version is gone, keeping CURRENT"""
        manifest = await self.store.get()
        valid = set(valid_versions)
        manifest.deployment_mapping = {
            deployment_id: version_id
            for deployment_id, version_id in manifest.deployment_mapping.items()
            if version_id == CURRENT_VERSION_ID or version_id in valid
        }
        await self.store.put(manifest)
        return dict(manifest.deployment_mapping)

    async def resolve(self, hint: Optional[str], manifest: Optional[VersionManifest] = None) -> Optional[str]:
        manifest = manifest or await self.store.get()
        return resolve_version(hint, manifest)


def resolve_version(hint: Optional[str], manifest: VersionManifest) -> Optional[str]:
    """
    Resolve an identity hint (deployment id or version id) to a retained version.

    CURRENT resolves to the manifest's current version. A hint that is not a
    known deployment but is itself a retained version id resolves to itself.
    """
    if not hint:
        return None
    mapped = manifest.deployment_mapping.get(hint)
    if mapped == CURRENT_VERSION_ID:
        return manifest.current or None
    if mapped and mapped in manifest.versions:
        return mapped
    if hint in manifest.versions:
        return hint
    return None
