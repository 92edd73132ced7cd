"""Shared fixtures"""

from datetime import datetime, timedelta, timezone
import pytest

from skew_protection.core.config import Settings
from skew_protection.core.manifest_store import ManifestStore
from skew_protection.core.storage import MemoryStorage
from skew_protection.models.manifest import VersionManifest, VersionRecord

T0 = datetime(2026, 1, 1, tzinfo=timezone.utc)


@pytest.fixture
def make_settings(tmp_path):
    """Settings isolated from the environment's .env file"""
    def factory(**overrides):
        values = {
            "storage_driver": "memory",
            "public_dir": str(tmp_path / "no-public"),
            "heartbeat_interval": 0,
            "watch_interval": 0,
            "storage_timeout": 0.5,
        }
        values.update(overrides)
        return Settings(_env_file=None, **values)
    return factory


@pytest.fixture
def storage():
    return MemoryStorage()


@pytest.fixture
def store(storage):
    return ManifestStore(storage, retention_days=7)


def make_manifest(versions, current=None, mapping=None, file_ids=None, asset_index=None):
    """
    Manifest from {version_id: [assets]}; versions are one hour apart in the
    given order, so the last one is the newest.
    """
    records = {}
    for index, (version_id, assets) in enumerate(versions.items()):
        timestamp = T0 + timedelta(hours=index)
        records[version_id] = VersionRecord(
            timestamp=timestamp,
            expires=timestamp + timedelta(days=7),
            assets=list(assets),
        )
    return VersionManifest(
        current=current if current is not None else (list(versions)[-1] if versions else ""),
        versions=records,
        deployment_mapping=mapping or {},
        file_id_to_version=file_ids or {},
        asset_to_deployment=asset_index or {},
    )


@pytest.fixture
def manifest_factory():
    return make_manifest
