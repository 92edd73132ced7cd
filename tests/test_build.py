"""
Tests for the build-completion pipeline

Each test lays out a fake build output directory:
    {out}/public/_assets/*.js
"""
import json
import pytest

from skew_protection.cli import main
from skew_protection.core.build import BuildPipeline, collect_assets
from skew_protection.core.manifest_store import ManifestStore
from skew_protection.models.errors import DeploymentIdCollisionError


def write_build(root, files, latest=None):
    public = root / "public"
    for name, data in files.items():
        path = public / "_assets" / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)
    if latest is not None:
        builds = public / "_assets" / "builds"
        builds.mkdir(parents=True, exist_ok=True)
        (builds / "latest.json").write_text(json.dumps(latest))
    return root


def build_files(n):
    return {
        "vendors.SHARED123.js": b"vendor",
        f"entry.E{n}.js": f"entry {n}".encode(),
    }


class TestCollectAssets:

    def test_recursive_relative_paths(self, tmp_path):
        """Nested files come back as sorted, slash-separated relative paths"""
        write_build(tmp_path, {"a.js": b"a", "nested/b.css": b"b"})
        assert collect_assets(tmp_path / "public", "_assets") == ["_assets/a.js", "_assets/nested/b.css"]

    def test_missing_directory(self, tmp_path):
        assert collect_assets(tmp_path / "public", "_assets") == []


class TestBuildPipeline:

    @pytest.mark.asyncio
    async def test_first_build(self, make_settings, storage, tmp_path):
        """Without an explicit version id the deployment id doubles as one"""
        out = write_build(tmp_path / "b1", build_files(1))
        result = await BuildPipeline(make_settings(), storage).run("D1", str(out))

        assert result.version_id == "D1"
        assert result.existed is False
        assert result.assets == ["_assets/entry.E1.js", "_assets/vendors.SHARED123.js"]
        assert result.mapping == {"D1": "current"}
        assert await storage.get_raw("D1/_assets/entry.E1.js") == b"entry 1"

        manifest = await ManifestStore(storage).get()
        assert manifest.current == "D1"

    @pytest.mark.asyncio
    async def test_collision_aborts_before_writing(self, make_settings, storage, tmp_path):
        """Reusing a deployment id should NOT touch storage or the manifest"""
        pipeline = BuildPipeline(make_settings(), storage)
        await pipeline.run("D1", str(write_build(tmp_path / "b1", build_files(1))))
        before = (await ManifestStore(storage).get()).to_document()

        with pytest.raises(DeploymentIdCollisionError):
            await pipeline.run("D1", str(write_build(tmp_path / "b2", build_files(2))))

        assert (await ManifestStore(storage).get()).to_document() == before
        assert await storage.get_raw("D1/_assets/entry.E2.js") is None

    @pytest.mark.asyncio
    async def test_three_builds(self, make_settings, storage, tmp_path):
        pipeline = BuildPipeline(make_settings(), storage)
        outs = []
        for n in (1, 2, 3):
            out = write_build(tmp_path / f"b{n}", build_files(n))
            outs.append(out)
            result = await pipeline.run(f"D{n}", str(out), version_id=f"v{n}")

        manifest = await ManifestStore(storage).get()
        assert manifest.current == "v3"
        assert manifest.deployment_mapping == {"D3": "current", "D2": "v2", "D1": "v1"}
        assert manifest.file_id_to_version["vendors.SHARED123.js"] == "v3"
        assert [k for k in await storage.list_keys() if "vendors" in k] == ["v3/_assets/vendors.SHARED123.js"]
        assert result.deleted_chunks == ["_assets/entry.E2.js"]

        # Older entry chunks are restored into the newest build's public dir
        assert result.restored == 2
        assert (outs[2] / "public" / "_assets" / "entry.E1.js").read_bytes() == b"entry 1"
        assert (outs[2] / "public" / "_assets" / "entry.E2.js").read_bytes() == b"entry 2"

    @pytest.mark.asyncio
    async def test_retention_evicts_during_build(self, make_settings, storage, tmp_path):
        """Builds past max_versions sweep the oldest version out"""
        pipeline = BuildPipeline(make_settings(max_versions=2), storage)
        for n in (1, 2, 3):
            result = await pipeline.run(f"D{n}", str(write_build(tmp_path / f"b{n}", build_files(n))),
                                        version_id=f"v{n}")

        assert result.evicted == ["v1"]
        manifest = await ManifestStore(storage).get()
        assert set(manifest.versions) == {"v2", "v3"}
        assert "D1" not in manifest.deployment_mapping
        assert await storage.list_keys("v1/") == []

    @pytest.mark.asyncio
    async def test_five_builds_keep_a_three_version_window(self, make_settings, storage, tmp_path):
        """Mapping and storage follow the retention window across many deploys"""
        pipeline = BuildPipeline(make_settings(retention_days=1, max_versions=3), storage)
        for n in range(1, 6):
            result = await pipeline.run(f"D{n}", str(write_build(tmp_path / f"b{n}", build_files(n))),
                                        version_id=f"v{n}")

        manifest = await ManifestStore(storage).get()
        assert set(manifest.versions) == {"v3", "v4", "v5"}
        assert manifest.deployment_mapping == {"D5": "current", "D4": "v4", "D3": "v3"}
        assert result.mapping == manifest.deployment_mapping
        assert result.evicted == ["v2"]
        assert await storage.list_keys("v1/") == []
        assert await storage.list_keys("v2/") == []
        assert await pipeline.mapping.resolve("D3") == "v3"
        assert await pipeline.mapping.resolve("D2") is None

    @pytest.mark.asyncio
    async def test_rebuild_skips_restore(self, make_settings, storage, tmp_path):
        """Rebuilding an existing version id replaces it in place"""
        pipeline = BuildPipeline(make_settings(), storage)
        await pipeline.run("D1", str(write_build(tmp_path / "b1", build_files(1))), version_id="v1")
        await pipeline.run("D2", str(write_build(tmp_path / "b2", build_files(2))), version_id="v2")
        result = await pipeline.run("D3", str(write_build(tmp_path / "b3", build_files(3))), version_id="v2")

        assert result.existed is True
        assert result.restored == 0

        # D2 was serving v2 before the rebuild and still is
        assert result.mapping == {"D3": "current", "D2": "v2", "D1": "v1"}
        assert await pipeline.mapping.resolve("D2") == "v2"

    @pytest.mark.asyncio
    async def test_build_metadata(self, make_settings, storage, tmp_path):
        """latest.json keeps its own keys and gains the retained versions"""
        pipeline = BuildPipeline(make_settings(), storage)
        await pipeline.run("D1", str(write_build(tmp_path / "b1", build_files(1))), version_id="v1")
        out = write_build(tmp_path / "b2", build_files(2), latest={"id": "v2", "timestamp": 1})
        result = await pipeline.run("D2", str(out), version_id="v2")

        latest = json.loads((out / "public" / "_assets" / "builds" / "latest.json").read_text())
        assert latest["id"] == "v2"
        assert latest["timestamp"] == 1
        assert set(latest["skewProtection"]["versions"]) == {"v1", "v2"}
        assert latest["skewProtection"]["versions"]["v2"]["deletedChunks"] == ["_assets/entry.E1.js"]
        assert not any(a.startswith("_assets/builds/") for a in result.assets)

    @pytest.mark.asyncio
    async def test_edge_platform_indexes_assets(self, make_settings, storage, tmp_path):
        pipeline = BuildPipeline(make_settings(platform="edge"), storage)
        await pipeline.run("D1", str(write_build(tmp_path / "b1", build_files(1))))

        manifest = await ManifestStore(storage).get()
        assert manifest.asset_to_deployment["_assets/entry.E1.js"] == "D1"


class TestCli:

    def test_build_and_collision_exit_code(self, tmp_path, monkeypatch, capsys):
        """CLI should exit 1 on a deployment id collision"""
        monkeypatch.setenv("SKEW_STORAGE_DRIVER", "fs")
        monkeypatch.setenv("SKEW_STORAGE_BASE", str(tmp_path / "storage"))
        monkeypatch.setattr("skew_protection.cli.configure_logging", lambda settings: None)
        out = write_build(tmp_path / "b1", build_files(1))

        main(["build", "--deployment-id", "D1", "--output-dir", str(out)])
        assert "OK Version D1 registered" in capsys.readouterr().out

        with pytest.raises(SystemExit) as exc_info:
            main(["build", "--deployment-id", "D1", "--output-dir", str(out)])
        assert exc_info.value.code == 1
