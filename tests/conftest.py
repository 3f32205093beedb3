"""
Shared fixtures for pinning service tests.

Provides an in-process fake of the DigitalOcean domain records API, a
fake dat-store pinning service, and lightweight stand-ins for the block
store and registrar capabilities.
"""

import asyncio
import json
from pathlib import Path
from typing import Dict, List, Optional

import pytest
import pytest_asyncio
from aiohttp import web
from aiohttp.test_utils import TestServer

from pinning.backends.hyperdrive import LocalDrivePublisher
from pinning.core.projects import Project
from pinning.errors import PublishFailure
from pinning.web_hosting.dns_records import DigitalOceanDNS

TOKEN = "test-do-token"


# ===== FAKE DIGITALOCEAN API =====

class FakeDigitalOcean:
    """State and handlers of a fake DigitalOcean domain records API."""

    def __init__(self):
        self.records: Dict[str, List[dict]] = {}
        self.requests: List[tuple] = []
        self.next_id = 1000
        self.page_size: Optional[int] = None
        self.fail_delete_ids = set()
        self.fail_create = False

    def add(self, domain: str, type: str, name: str, data: str, ttl: int = 300) -> dict:
        record = {"id": self.next_id, "type": type, "name": name, "data": data, "ttl": ttl}
        self.next_id += 1
        self.records.setdefault(domain, []).append(record)
        return record

    def find(self, domain: str, name: str, type: str = "TXT") -> List[dict]:
        return [
            r for r in self.records.get(domain, [])
            if r["name"] == name and r["type"] == type
        ]

    def posted_names(self, domain: Optional[str] = None) -> List[str]:
        return [
            name for method, d, name in self.requests
            if method == "POST" and (domain is None or d == domain)
        ]

    def deletes(self) -> List[tuple]:
        return [r for r in self.requests if r[0] == "DELETE"]

    def app(self) -> web.Application:
        app = web.Application()
        app.router.add_get("/v2/domains/{domain}/records", self.list_records)
        app.router.add_post("/v2/domains/{domain}/records", self.create_record)
        app.router.add_delete("/v2/domains/{domain}/records/{id}", self.delete_record)
        return app

    def _authorized(self, request: web.Request) -> bool:
        return request.headers.get("Authorization") == f"Bearer {TOKEN}"

    async def list_records(self, request: web.Request) -> web.Response:
        if not self._authorized(request):
            return web.json_response({"id": "unauthorized"}, status=401)

        domain = request.match_info["domain"]
        self.requests.append(("GET", domain, None))

        per_page = int(request.query.get("per_page", 20))
        if self.page_size:
            per_page = min(per_page, self.page_size)
        page = int(request.query.get("page", 1))

        records = self.records.get(domain, [])
        start = (page - 1) * per_page
        body = {
            "domain_records": records[start:start + per_page],
            "links": {},
            "meta": {"total": len(records)},
        }
        if start + per_page < len(records):
            next_url = request.url.with_query(per_page=per_page, page=page + 1)
            body["links"] = {"pages": {"next": str(next_url)}}

        return web.json_response(body)

    async def create_record(self, request: web.Request) -> web.Response:
        if not self._authorized(request):
            return web.json_response({"id": "unauthorized"}, status=401)

        domain = request.match_info["domain"]
        body = await request.json()
        self.requests.append(("POST", domain, body["name"]))

        if self.fail_create:
            return web.json_response({"id": "server_error"}, status=500)

        record = self.add(domain, body["type"], body["name"], body["data"], body["ttl"])
        return web.json_response({"domain_record": record}, status=201)

    async def delete_record(self, request: web.Request) -> web.Response:
        if not self._authorized(request):
            return web.json_response({"id": "unauthorized"}, status=401)

        domain = request.match_info["domain"]
        record_id = int(request.match_info["id"])
        self.requests.append(("DELETE", domain, record_id))

        if record_id in self.fail_delete_ids:
            return web.json_response({"id": "server_error"}, status=500)

        records = self.records.get(domain, [])
        for record in records:
            if record["id"] == record_id:
                records.remove(record)
                return web.Response(status=204)

        return web.json_response({"id": "not_found"}, status=404)


@pytest_asyncio.fixture
async def fake_do():
    """Running fake DigitalOcean API; yields (state, base_url)."""
    state = FakeDigitalOcean()
    server = TestServer(state.app())
    await server.start_server()
    try:
        yield state, str(server.make_url("/v2"))
    finally:
        await server.close()


@pytest_asyncio.fixture
async def dns_provider(fake_do):
    """DigitalOcean client pointed at the fake API."""
    _, base_url = fake_do
    provider = DigitalOceanDNS(TOKEN, base_url=base_url)
    try:
        yield provider
    finally:
        await provider.close()


# ===== CAPABILITY STAND-INS =====

class FakeBlockStore:
    """Block store that returns a CID derived from the tree name."""

    def __init__(self, fail_trees=()):
        self.calls: List[Path] = []
        self.fail_trees = set(fail_trees)

    async def add_tree(self, path, timeout=None) -> str:
        path = Path(path)
        self.calls.append(path)
        await asyncio.sleep(0)
        if path.name in self.fail_trees:
            raise PublishFailure(f"IPFS add of {path} failed")
        return f"bafy{path.parent.name.replace('.', '')}{path.name}"

    def close(self):
        pass


class FakeRegistrar:
    """Dat-store registrar that records registered URLs."""

    def __init__(self):
        self.added: List[str] = []
        self.logged_in = False
        self.failures = 0

    async def login(self, username, password):
        self.logged_in = True

    async def add(self, url):
        if self.failures > 0:
            self.failures -= 1
            raise PublishFailure(f"dat-store rejected {url}")
        self.added.append(url)

    async def close(self):
        pass


class RecordingDrive(LocalDrivePublisher):
    """Local drive publisher that records sync calls."""

    def __init__(self, storage_dir):
        super().__init__(storage_dir)
        self.synced: List[Path] = []
        self.sync_times: List[float] = []

    async def sync(self, seed, fs_path, drive_path="/", sync_time=None):
        self.synced.append(Path(fs_path))
        self.sync_times.append(sync_time)
        return await super().sync(seed, fs_path, drive_path, sync_time)


@pytest.fixture
def block_store():
    return FakeBlockStore()


@pytest.fixture
def registrar():
    return FakeRegistrar()


@pytest.fixture
def drive(tmp_path):
    return RecordingDrive(tmp_path / "drives")


# ===== PROJECTS =====

def write_project(
    projects_dir: Path,
    domain: str,
    www: bool = True,
    api: bool = False
) -> Path:
    """Lay out a project directory with the requested content trees."""
    root = projects_dir / domain
    root.mkdir(parents=True, exist_ok=True)
    (root / "config.json").write_text(json.dumps({"domain": domain}))

    if www:
        (root / "www").mkdir(exist_ok=True)
        (root / "www" / "index.html").write_text(f"<h1>{domain}</h1>")
    if api:
        (root / "api" / "v1").mkdir(parents=True, exist_ok=True)
        (root / "api" / "v1" / "index.json").write_text(json.dumps({"domain": domain}))

    return root


@pytest.fixture
def projects_dir(tmp_path):
    path = tmp_path / "data" / "projects"
    path.mkdir(parents=True)
    return path


@pytest.fixture
def make_project(projects_dir):
    """Factory creating a Project on disk."""
    def _make(domain: str, www: bool = True, api: bool = False) -> Project:
        root = write_project(projects_dir, domain, www=www, api=api)
        return Project(name=domain, domain=domain, root=root)
    return _make
