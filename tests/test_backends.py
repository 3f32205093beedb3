"""
Tests for the publishing backends.

Covers IPFSBackend (with a mocked client), drive key derivation and the
local drive publisher, and the dat-store registrar client.
"""

import os
import time
from unittest.mock import Mock

import pytest
import pytest_asyncio
from aiohttp import web
from aiohttp.test_utils import TestServer as HTTPTestServer

from pinning.backends.dat_store import DatStoreClient
from pinning.backends.hyperdrive import LocalDrivePublisher, drive_key, public_key
from pinning.backends.ipfs_backend import IPFSBackend
from pinning.errors import PublishFailure


@pytest.fixture
def site(tmp_path):
    """A small website tree."""
    root = tmp_path / "www"
    (root / "css").mkdir(parents=True)
    (root / "index.html").write_text("<h1>Hello</h1>")
    (root / "css" / "site.css").write_text("body { color: black; }")
    return root


# ===== IPFS =====

class TestIPFSBackend:
    """Test IPFS tree publication."""

    @pytest.mark.asyncio
    async def test_add_tree_returns_root_cid(self, site):
        client = Mock()
        client.add.return_value = [
            {"Name": "www/css/site.css", "Hash": "bafyfile1"},
            {"Name": "www/index.html", "Hash": "bafyfile2"},
            {"Name": "www/css", "Hash": "bafydir"},
            {"Name": "www", "Hash": "bafyroot"},
        ]
        backend = IPFSBackend(client=client)

        cid = await backend.add_tree(site)

        assert cid == "bafyroot"
        client.add.assert_called_once()
        args, kwargs = client.add.call_args
        assert args == (str(site),)
        assert kwargs["recursive"] is True
        assert kwargs["follow_symlinks"] is False
        assert kwargs["cid_version"] == 1
        assert kwargs["pin"] is True
        assert kwargs["timeout"] == 60

    @pytest.mark.asyncio
    async def test_client_error_becomes_publish_failure(self, site):
        client = Mock()
        client.add.side_effect = RuntimeError("daemon went away")
        backend = IPFSBackend(client=client)

        with pytest.raises(PublishFailure):
            await backend.add_tree(site)

    @pytest.mark.asyncio
    async def test_timeout_becomes_publish_failure(self, site):
        client = Mock()
        client.add.side_effect = lambda *a, **kw: time.sleep(0.5) or [{"Name": "www", "Hash": "late"}]
        backend = IPFSBackend(client=client)

        with pytest.raises(PublishFailure, match="timed out"):
            await backend.add_tree(site, timeout=0.05)

    @pytest.mark.asyncio
    async def test_empty_response_is_a_failure(self, site):
        client = Mock()
        client.add.return_value = []
        backend = IPFSBackend(client=client)

        with pytest.raises(PublishFailure):
            await backend.add_tree(site)


# ===== HYPERDRIVE =====

class TestDriveKeys:
    """Test seed to drive address derivation."""

    def test_public_key_matches_ed25519_test_vector(self, tmp_path):
        # RFC 8032, section 7.1, TEST 1
        seed = bytes.fromhex("9d61b19deffd5a60ba844af492ec2cc44449c5697b326919703bac031cae7f60")
        expected = "d75a980182b10ab7d54bfed3c964073a0ee172f3daa62325af021a68f707511a"

        assert public_key(seed).hex() == expected
        assert LocalDrivePublisher(tmp_path).get_url(seed) == f"hyper://{expected}"

    def test_url_is_deterministic_per_seed(self, tmp_path):
        drive = LocalDrivePublisher(tmp_path)
        seed_a = os.urandom(32)
        seed_b = os.urandom(32)

        assert drive.get_url(seed_a) == drive.get_url(seed_a)
        assert drive.get_url(seed_a) != drive.get_url(seed_b)

    def test_drive_key_strips_scheme(self):
        assert drive_key("hyper://abc123/") == "abc123"
        assert drive_key("abc123") == "abc123"


class TestLocalDrivePublisher:
    """Test mirroring trees into local drives."""

    @pytest.mark.asyncio
    async def test_first_sync_adds_everything(self, tmp_path, site):
        drive = LocalDrivePublisher(tmp_path / "drives")
        seed = os.urandom(32)

        result = await drive.sync(seed, site)

        assert result.url == drive.get_url(seed)
        assert sorted(d["name"] for d in result.diff) == ["/css/site.css", "/index.html"]
        assert {d["type"] for d in result.diff} == {"add"}
        assert (drive.drive_dir(seed) / "css" / "site.css").read_text() == "body { color: black; }"

    @pytest.mark.asyncio
    async def test_resync_reports_changes_and_deletions(self, tmp_path, site):
        drive = LocalDrivePublisher(tmp_path / "drives")
        seed = os.urandom(32)
        await drive.sync(seed, site)

        (site / "index.html").write_text("<h1>Changed</h1>")
        (site / "css" / "site.css").unlink()
        (site / "about.html").write_text("about")

        result = await drive.sync(seed, site)

        assert sorted((d["type"], d["name"]) for d in result.diff) == [
            ("add", "/about.html"),
            ("change", "/index.html"),
            ("del", "/css/site.css"),
        ]
        assert not (drive.drive_dir(seed) / "css").exists()

    @pytest.mark.asyncio
    async def test_unchanged_tree_has_empty_diff(self, tmp_path, site):
        drive = LocalDrivePublisher(tmp_path / "drives")
        seed = os.urandom(32)
        await drive.sync(seed, site)

        result = await drive.sync(seed, site)

        assert result.diff == []
        assert result.describe() == "no changes"

    @pytest.mark.asyncio
    async def test_symlinks_are_not_followed(self, tmp_path, site):
        outside = tmp_path / "secret.txt"
        outside.write_text("do not publish")
        (site / "link.txt").symlink_to(outside)
        drive = LocalDrivePublisher(tmp_path / "drives")
        seed = os.urandom(32)

        result = await drive.sync(seed, site)

        assert "/link.txt" not in [d["name"] for d in result.diff]
        assert not (drive.drive_dir(seed) / "link.txt").exists()

    @pytest.mark.asyncio
    async def test_create_returns_url(self, tmp_path):
        drive = LocalDrivePublisher(tmp_path / "drives")
        seed = os.urandom(32)

        url = await drive.create(seed)

        assert url == drive.get_url(seed)
        assert drive.drive_dir(seed).is_dir()

    @pytest.mark.asyncio
    async def test_sync_past_budget_fails(self, tmp_path, site, monkeypatch):
        drive = LocalDrivePublisher(tmp_path / "drives")
        monkeypatch.setattr(drive, "_mirror", lambda source, target: time.sleep(0.5) or [])

        with pytest.raises(PublishFailure, match="timed out"):
            await drive.sync(os.urandom(32), site, sync_time=0.05)

    @pytest.mark.asyncio
    async def test_missing_tree_fails(self, tmp_path):
        drive = LocalDrivePublisher(tmp_path / "drives")

        with pytest.raises(PublishFailure):
            await drive.sync(os.urandom(32), tmp_path / "nope")


# ===== DAT-STORE =====

class FakePinningServiceAPI:
    """Fake dat-store pinning service."""

    def __init__(self):
        self.dats = []
        self.auth_headers = []

    def app(self) -> web.Application:
        app = web.Application()
        app.router.add_post("/v1/accounts/login", self.login)
        app.router.add_post("/v1/dats/add", self.add)
        app.router.add_post("/v1/dats/remove", self.remove)
        return app

    async def login(self, request):
        body = await request.json()
        if body != {"username": "press", "password": "secret"}:
            return web.json_response({"message": "bad credentials"}, status=403)
        return web.json_response({"sessionToken": "tok123"})

    async def add(self, request):
        self.auth_headers.append(request.headers.get("Authorization"))
        body = await request.json()
        self.dats.append(body["url"])
        return web.json_response({})

    async def remove(self, request):
        body = await request.json()
        self.dats.remove(body["url"])
        return web.Response(status=200)


@pytest_asyncio.fixture
async def pinning_api():
    state = FakePinningServiceAPI()
    server = HTTPTestServer(state.app())
    await server.start_server()
    try:
        yield state, str(server.make_url("/")).rstrip("/")
    finally:
        await server.close()


class TestDatStoreClient:
    """Test drive registration."""

    @pytest.mark.asyncio
    async def test_login_then_add_sends_session_token(self, pinning_api):
        state, url = pinning_api
        client = DatStoreClient(url)
        try:
            await client.login("press", "secret")
            await client.add("hyper://abc")
            await client.remove("hyper://abc")
        finally:
            await client.close()

        assert client.session_token == "tok123"
        assert state.auth_headers == ["Bearer tok123"]
        assert state.dats == []

    @pytest.mark.asyncio
    async def test_bad_credentials_raise(self, pinning_api):
        _, url = pinning_api
        client = DatStoreClient(url)
        try:
            with pytest.raises(PublishFailure):
                await client.login("press", "wrong")
        finally:
            await client.close()
