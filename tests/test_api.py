"""
Tests for the HTTP surface: middleware, versioned assets, status endpoints,
broadcast trigger and WebSocket transport
"""
import asyncio
import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from skew_protection.core.asset_router import IMMUTABLE_CACHE_CONTROL
from skew_protection.core.manifest_store import ManifestStore
from skew_protection.main import create_app


@pytest.fixture
def seeded_storage(storage, manifest_factory):
    manifest = manifest_factory(
        {"v1": ["_assets/entry.ONE.js"], "v2": ["_assets/entry.TWO.js"]},
        mapping={"D2": "current", "D1": "v1"},
        file_ids={"entry.ONE.js": "v1", "entry.TWO.js": "v2"},
    )
    manifest.versions["v2"].deleted_chunks = ["_assets/entry.ONE.js"]

    async def seed():
        await ManifestStore(storage).put(manifest)
        await storage.set_raw("v1/_assets/entry.ONE.js", b"one")
        await storage.set_raw("v2/_assets/entry.TWO.js", b"two")

    asyncio.run(seed())
    return storage


@pytest.fixture
def make_client(make_settings, seeded_storage):
    def factory(**overrides):
        overrides.setdefault("build_id", "v2")
        app = create_app(make_settings(**overrides), storage=seeded_storage)
        return TestClient(app)
    return factory


class TestHealth:

    def test_health(self, make_client):
        client = make_client()
        assert client.get("/health").json() == {"status": "healthy", "platform": "generic"}


class TestDocumentRequests:

    def test_document_resets_cookie_to_current(self, make_client):
        client = make_client()
        response = client.get("/", headers={"accept": "text/html", "cookie": "__nkpv=v1"})

        assert response.status_code == 200
        set_cookie = response.headers["set-cookie"]
        assert "__nkpv=v2" in set_cookie
        assert "samesite=strict" in set_cookie.lower()
        assert "Max-Age=5184000" in set_cookie

    def test_bots_get_no_cookie(self, make_client):
        """Crawlers should NOT be pinned to a version"""
        client = make_client()
        response = client.get("/", headers={
            "accept": "text/html",
            "user-agent": "Mozilla/5.0 (compatible; Googlebot/2.1; +http://www.google.com/bot.html)",
        })
        assert "set-cookie" not in response.headers

    def test_non_document_requests_keep_cookie(self, make_client):
        client = make_client()
        response = client.get("/health", headers={"accept": "application/json", "cookie": "__nkpv=v1"})
        assert "set-cookie" not in response.headers


class TestAssetRequests:

    def test_versioned_route_serves_old_asset(self, make_client):
        client = make_client()
        response = client.get("/_skew/versions/v1/_assets/entry.ONE.js")

        assert response.status_code == 200
        assert response.content == b"one"
        assert response.headers["cache-control"] == IMMUTABLE_CACHE_CONTROL
        assert response.headers["content-type"] == "application/javascript"

    def test_versioned_route_redirects_unknown_to_current(self, make_client):
        """Unknown assets go to the current build, not a 404"""
        client = make_client()
        response = client.get("/_skew/versions/_assets/missing.js", follow_redirects=False)

        assert response.status_code == 302
        assert response.headers["location"] == "/_skew/versions/v2/_assets/missing.js"

    def test_redirect_target_miss_is_404(self, make_client):
        client = make_client()
        response = client.get("/_skew/versions/v2/_assets/missing.js")
        assert response.status_code == 404

    def test_asset_miss_resolved_with_cookie_hint(self, make_client):
        """Test static miss falling through to the storage resolver"""
        client = make_client()
        response = client.get("/_assets/entry.ONE.js", headers={"cookie": "__nkpv=D1"})

        assert response.status_code == 200
        assert response.content == b"one"

    def test_asset_miss_resolved_with_header_hint(self, make_client):
        client = make_client()
        response = client.get("/_assets/entry.ONE.js", headers={"x-deployment-id": "D1"})
        assert response.content == b"one"

    def test_static_build_output_served_first(self, make_settings, seeded_storage, tmp_path):
        """Files on disk win; misses still resolve from storage"""
        assets_dir = tmp_path / "public" / "_assets"
        assets_dir.mkdir(parents=True)
        (assets_dir / "entry.TWO.js").write_bytes(b"two-from-disk")
        app = create_app(make_settings(build_id="v2", public_dir=str(tmp_path / "public")), storage=seeded_storage)
        client = TestClient(app)

        assert client.get("/_assets/entry.TWO.js").content == b"two-from-disk"
        assert client.get("/_assets/entry.ONE.js", headers={"cookie": "__nkpv=D1"}).content == b"one"


class TestApiRequests:

    def test_outdated_client_flagged(self, make_client):
        """Outdated API callers are flagged and reported to hooks"""
        client = make_client()
        seen = []

        @client.app.state.service.on_outdated_client
        async def record(details):
            seen.append(details)

        response = client.get("/api/data", headers={"cookie": "__nkpv=v1"})

        assert response.headers["x-skew-outdated"] == "1"
        assert seen[0]["clientVersion"] == "v1"
        assert seen[0]["currentVersion"] == "v2"

    def test_current_client_not_flagged(self, make_client):
        client = make_client()
        response = client.get("/api/data", headers={"cookie": "__nkpv=v2"})
        assert "x-skew-outdated" not in response.headers


class TestStatusEndpoints:

    def test_status(self, make_client):
        client = make_client()
        body = client.get("/_skew/status", headers={"cookie": "__nkpv=v1"}).json()

        assert body["currentBuildId"] == "v2"
        assert body["userVersion"] == "v1"
        assert body["outdated"] is True
        assert body["manifest"]["current"] == "v2"

    def test_status_without_cookie(self, make_client):
        body = make_client().get("/_skew/status").json()
        assert body["userVersion"] is None
        assert body["outdated"] is False

    def test_version_document(self, make_client):
        """Polling document mirrors builds/latest.json"""
        body = make_client().get("/_skew/version").json()

        assert body["id"] == "v2"
        assert set(body["versions"]) == {"v1", "v2"}
        assert body["versions"]["v2"]["deletedChunks"] == ["_assets/entry.ONE.js"]

    def test_debug(self, make_client):
        body = make_client().get("/_skew/debug").json()

        assert body["platform"] == "generic"
        assert body["stats"]["availableVersions"] == ["v2", "v1"]
        assert body["stats"]["totalVersions"] == 2
        assert body["realtime"] == {"enabled": True, "sessions": 0, "clients": []}


class TestBroadcastEndpoint:

    def test_requires_api_key(self, make_client):
        """Missing or wrong key is a 403"""
        client = make_client(api_key="secret")
        assert client.post("/_skew/broadcast", json={"version": "v3"}).status_code == 403
        assert client.post("/_skew/broadcast", json={"version": "v3"},
                           headers={"X-API-Key": "wrong"}).status_code == 403

    def test_broadcast(self, make_client):
        client = make_client(api_key="secret")
        response = client.post("/_skew/broadcast", json={"version": "v1"}, headers={"X-API-Key": "secret"})

        assert response.status_code == 200
        assert response.json() == {"success": True, "broadcast_count": 0, "total_sessions": 0}
        assert client.app.state.service.broadcaster.current_version == "v1"

    def test_unknown_version_rejected(self, make_client):
        """Broadcasting a version nobody can fetch must not reach clients"""
        client = make_client(api_key="secret")
        response = client.post("/_skew/broadcast", json={"version": "v9"}, headers={"X-API-Key": "secret"})

        assert response.status_code == 404
        assert response.json()["code"] == "VERSION_NOT_FOUND"
        assert client.app.state.service.broadcaster.current_version == "v2"

    def test_live_build_id_accepted(self, make_client):
        client = make_client(api_key="secret", build_id="v3")
        response = client.post("/_skew/broadcast", json={"version": "v3"}, headers={"X-API-Key": "secret"})
        assert response.status_code == 200

    def test_unavailable_without_realtime(self, make_client):
        client = make_client(platform="serverless")
        assert client.post("/_skew/broadcast", json={"version": "v3"}).status_code == 404


class TestRealtimeEndpoints:

    def test_sse_requires_version(self, make_client):
        assert make_client().get("/_skew/sse").status_code == 400

    def test_sse_unavailable_on_serverless(self, make_client):
        assert make_client(platform="serverless").get("/_skew/sse?version=v1").status_code == 404

    def test_websocket_handshake_and_ping(self, make_client):
        """Malformed frames are ignored, ping is answered"""
        client = make_client()
        with client.websocket_connect("/_skew/ws?version=v1") as websocket:
            assert websocket.receive_json()["type"] == "connected"
            update = websocket.receive_json()
            assert update["type"] == "version-update"
            assert update["version"] == "v2"

            websocket.send_text("not json")
            websocket.send_json({"type": "ping"})
            assert websocket.receive_json()["type"] == "pong"
            assert client.app.state.service.broadcaster.session_count() == 1

    def test_websocket_requires_version(self, make_client):
        client = make_client()
        with pytest.raises(WebSocketDisconnect):
            with client.websocket_connect("/_skew/ws") as websocket:
                websocket.receive_json()
