"""Process-wide service objects, constructed once and injected into the app"""

import logging
from typing import Awaitable, Callable, List, Optional
from skew_protection.core.asset_router import AssetRouter, EdgeAssetRouter, ServerlessAssetRouter
from skew_protection.core.broadcaster import VersionBroadcaster, VersionWatcher
from skew_protection.core.config import Settings
from skew_protection.core.deployment_mapping import DeploymentMappingManager
from skew_protection.core.manifest_store import ManifestStore
from skew_protection.core.storage import Storage, create_storage

logger = logging.getLogger(__name__)

ROUTERS = {
    "generic": AssetRouter,
    "edge": EdgeAssetRouter,
    "serverless": ServerlessAssetRouter,
}

OutdatedClientHook = Callable[[dict], Awaitable[None]]


class SkewProtectionService:
    """
    Bundles storage, manifest store, mapping manager, the platform's asset
    router and (when the platform can hold connections) the broadcaster.

    Lifecycle: `start()` at process start, `stop()` on termination.
    """

    def __init__(self, settings: Settings, storage: Optional[Storage] = None):
        self.settings = settings
        self.storage = storage or create_storage(settings)
        self.store = ManifestStore(self.storage, key=settings.manifest_key, retention_days=settings.retention_days)
        self.mapping = DeploymentMappingManager(self.store)
        self.router: AssetRouter = ROUTERS[settings.platform](settings, self.storage, self.store)
        self.outdated_hooks: List[OutdatedClientHook] = []

        self.broadcaster: Optional[VersionBroadcaster] = None
        self.watcher: Optional[VersionWatcher] = None
        if settings.realtime_enabled and self.router.supports_realtime:
            self.broadcaster = VersionBroadcaster(
                current_version=settings.build_id or "",
                heartbeat_interval=settings.heartbeat_interval,
            )
            self.watcher = VersionWatcher(self.current_version, self.broadcaster, settings.watch_interval)
        logger.info(
            f"Skew protection using {settings.platform} platform "
            f"(realtime {'enabled' if self.broadcaster else 'disabled, clients poll'})"
        )

    async def current_version(self) -> str:
        """The live build: the configured build id, else the manifest's current"""
        if self.settings.build_id:
            return self.settings.build_id
        manifest = await self.store.get()
        return manifest.current

    def on_outdated_client(self, hook: OutdatedClientHook) -> OutdatedClientHook:
        self.outdated_hooks.append(hook)
        return hook

    async def notify_outdated_client(self, details: dict) -> None:
        logger.info(
            f"Outdated client detected: {details.get('clientVersion')} (current: {details.get('currentVersion')})"
        )
        for hook in list(self.outdated_hooks):
            try:
                await hook(details)
            except Exception as e:
                logger.error(f"Outdated-client hook failed: {e}", exc_info=True)

    async def start(self) -> None:
        if self.broadcaster is not None:
            if not self.broadcaster.current_version:
                self.broadcaster.current_version = await self.current_version()
            self.watcher.start()

    async def stop(self) -> None:
        if self.watcher is not None:
            await self.watcher.stop()
        if self.broadcaster is not None:
            await self.broadcaster.shutdown()
        await self.router.close()
        await self.storage.close()
