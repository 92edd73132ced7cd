"""Tests for service wiring and configuration"""
from unittest.mock import AsyncMock
import pytest

from skew_protection.core.asset_router import EdgeAssetRouter, ServerlessAssetRouter
from skew_protection.core.config import Settings
from skew_protection.core.manifest_store import ManifestStore
from skew_protection.core.service import SkewProtectionService


class TestSettings:

    def test_env_prefix(self, monkeypatch):
        monkeypatch.setenv("SKEW_RETENTION_DAYS", "3")
        monkeypatch.setenv("SKEW_PLATFORM", "edge")
        settings = Settings(_env_file=None)

        assert settings.retention_days == 3
        assert settings.platform == "edge"
        assert settings.cookie_name == "__nkpv"
        assert settings.assets_dir_name == "_assets"


class TestSkewProtectionService:

    @pytest.mark.asyncio
    async def test_current_version_falls_back_to_manifest(self, make_settings, storage, manifest_factory):
        """Without a configured build id the manifest decides"""
        await ManifestStore(storage).put(manifest_factory({"v1": [], "v2": []}))
        service = SkewProtectionService(make_settings(), storage=storage)

        assert await service.current_version() == "v2"
        await service.start()
        assert service.broadcaster.current_version == "v2"
        await service.stop()

    @pytest.mark.asyncio
    async def test_configured_build_id_wins(self, make_settings, storage, manifest_factory):
        await ManifestStore(storage).put(manifest_factory({"v1": []}))
        service = SkewProtectionService(make_settings(build_id="v9"), storage=storage)
        assert await service.current_version() == "v9"

    @pytest.mark.parametrize("platform, router_class", [
        ("edge", EdgeAssetRouter),
        ("serverless", ServerlessAssetRouter),
    ])
    def test_platforms_without_realtime(self, make_settings, storage, platform, router_class):
        service = SkewProtectionService(make_settings(platform=platform), storage=storage)

        assert isinstance(service.router, router_class)
        assert service.broadcaster is None
        assert service.watcher is None

    def test_realtime_can_be_disabled(self, make_settings, storage):
        service = SkewProtectionService(make_settings(realtime_enabled=False), storage=storage)
        assert service.broadcaster is None

    @pytest.mark.asyncio
    async def test_outdated_hook_errors_are_contained(self, make_settings, storage):
        """A failing hook should NOT stop the remaining hooks"""
        service = SkewProtectionService(make_settings(), storage=storage)
        broken = AsyncMock(side_effect=RuntimeError("hook failed"))
        record = AsyncMock()
        service.on_outdated_client(broken)
        service.on_outdated_client(record)

        details = {"clientVersion": "v1", "currentVersion": "v2"}
        await service.notify_outdated_client(details)
        broken.assert_awaited_once_with(details)
        record.assert_awaited_once_with(details)
