"""
Publish pipeline.

Pushes every existing content tree of a project to both backends and
advertises each resulting location in DNS:

    tree     backend   record         data
    www      hyper     @              datkey=<hex key>
    api      hyper     api            datkey=<hex key>
    www      ipfs      _dnslink       dnslink=/ipfs/<cid>
    api      ipfs      _dnslink.api   dnslink=/ipfs/<cid>

Each (tree, backend) combination runs as its own asyncio task. The DNS
upsert of a combination only runs after its publish succeeded; no other
ordering exists between combinations or projects.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional, Set

from pinning.backends.dat_store import DatStoreClient
from pinning.backends.hyperdrive import DrivePublisher, drive_key
from pinning.backends.ipfs_backend import IPFSBackend
from pinning.core.projects import ContentTree, Project
from pinning.core.seed_manager import SeedManager, SeedPurpose
from pinning.web_hosting.dns_records import DEFAULT_TTL, DnsReconciler

logger = logging.getLogger(__name__)

WEBSITE_SYNC_TIME = 600  # Allow up to 10 minutes for website sync
API_SYNC_TIME = 60
IPFS_TIMEOUT = 60


class Backend(Enum):
    DRIVE = "hyper"
    IPFS = "ipfs"


RECORD_NAMES: Dict[tuple, str] = {
    (ContentTree.WEBSITE, Backend.DRIVE): "@",
    (ContentTree.API, Backend.DRIVE): "api",
    (ContentTree.WEBSITE, Backend.IPFS): "_dnslink",
    (ContentTree.API, Backend.IPFS): "_dnslink.api",
}

TREE_LABELS = {
    ContentTree.WEBSITE: "WWW site",
    ContentTree.API: "API responses",
}


def datkey_record(url: str) -> str:
    return f"datkey={drive_key(url)}"


def dnslink_record(cid: str) -> str:
    return f"dnslink=/ipfs/{cid}"


@dataclass
class PublishResult:
    """Outcome of one (project, tree, backend) publication."""

    project: str
    tree: ContentTree
    backend: Backend
    record_name: str
    locator: Optional[str] = None
    dns_updated: bool = False
    diff: List[dict] = field(default_factory=list)
    error: Optional[BaseException] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class PublishPipeline:
    """
    Publishes project content trees to the drive and IPFS backends.

    Also serves as the seed manager's creation hook: a freshly minted
    seed is registered with the drive store, created, and advertised.
    """

    def __init__(
        self,
        drive: DrivePublisher,
        registrar: DatStoreClient,
        block_store: IPFSBackend,
        dns: DnsReconciler,
        seed_manager: Optional[SeedManager] = None,
        dns_ttl: int = DEFAULT_TTL,
        ipfs_timeout: float = IPFS_TIMEOUT,
        sync_times: Optional[Dict[ContentTree, float]] = None
    ):
        """
        Initialize publish pipeline.

        Args:
            drive: Drive publisher
            registrar: Drive storage registrar
            block_store: IPFS backend
            dns: DNS reconciler
            seed_manager: Seed manager (one is created when omitted)
            dns_ttl: TTL of upserted records (seconds)
            ipfs_timeout: Budget for each IPFS add (seconds)
            sync_times: Drive sync budget per tree (seconds)
        """
        self.drive = drive
        self.registrar = registrar
        self.block_store = block_store
        self.dns = dns
        self.dns_ttl = dns_ttl
        self.ipfs_timeout = ipfs_timeout
        self.sync_times = sync_times or {
            ContentTree.WEBSITE: WEBSITE_SYNC_TIME,
            ContentTree.API: API_SYNC_TIME,
        }

        # Drive URLs whose dat-store registration failed
        self.unregistered: Set[str] = set()

        self.seed_manager = seed_manager or SeedManager()
        if self.seed_manager.on_create is None:
            self.seed_manager.on_create = self.create_drive

    def publish_project(self, project: Project) -> List["asyncio.Task[PublishResult]"]:
        """
        Start one task per existing tree and backend.

        Returns:
            Tasks, each resolving to a PublishResult (never raising)
        """
        tasks = []
        for tree, path in project.trees():
            for backend in Backend:
                tasks.append(asyncio.create_task(
                    self._run(project, tree, backend, path),
                    name=f"{project.name}:{tree.value}:{backend.value}"
                ))

        if not tasks:
            logger.info(f"No content trees found for {project.name}")

        return tasks

    async def process_project(self, project: Project) -> List[PublishResult]:
        """Publish a project and wait for all of its tasks."""
        return await gather_results(self.publish_project(project))

    async def _run(
        self,
        project: Project,
        tree: ContentTree,
        backend: Backend,
        path: Path
    ) -> PublishResult:
        result = PublishResult(
            project=project.name,
            tree=tree,
            backend=backend,
            record_name=RECORD_NAMES[(tree, backend)],
        )
        try:
            if backend is Backend.DRIVE:
                await self.publish_drive(project, tree, path, result)
            else:
                await self.publish_ipfs(project, tree, path, result)
        except Exception as e:
            result.error = e
            logger.error(
                f"Failed to pin {TREE_LABELS[tree]} for {project.name} "
                f"to {backend.value}: {e}"
            )
        return result

    async def publish_drive(
        self,
        project: Project,
        tree: ContentTree,
        path: Path,
        result: PublishResult
    ):
        """Sync a tree into the project's drive and advertise its key."""
        seed = await self.seed_manager.get_or_create_seed(project, SeedPurpose.for_tree(tree))
        # A new drive was advertised by create_drive when its seed was minted
        if seed.created:
            result.dns_updated = True
        else:
            await self._retry_registration(project, seed.key)

        synced = await self.drive.sync(
            seed.key,
            path,
            drive_path="/",
            sync_time=self.sync_times.get(tree)
        )
        result.locator = synced.url
        result.diff = synced.diff
        logger.info(
            f"{TREE_LABELS[tree]} for {project.name} pinned at {synced.url}. "
            f"Changes:\n{synced.describe()}"
        )

        if not seed.created:
            await self.dns.upsert_txt(
                project.domain,
                result.record_name,
                datkey_record(synced.url),
                self.dns_ttl
            )
            result.dns_updated = True

    async def publish_ipfs(
        self,
        project: Project,
        tree: ContentTree,
        path: Path,
        result: PublishResult
    ):
        """Add a tree to IPFS and point its dnslink record at the new CID."""
        cid = await self.block_store.add_tree(path, timeout=self.ipfs_timeout)
        result.locator = cid
        logger.info(f"{TREE_LABELS[tree]} for {project.name} pinned at ipfs/{cid}")

        await self.dns.upsert_txt(
            project.domain,
            result.record_name,
            dnslink_record(cid),
            self.dns_ttl
        )
        result.dns_updated = True

    async def _retry_registration(self, project: Project, seed: bytes):
        url = self.drive.get_url(seed)
        if url not in self.unregistered:
            return
        try:
            await self.registrar.add(url)
        except Exception as e:
            logger.warning(f"Registration of {url} for {project.name} failed again: {e}")
            return
        self.unregistered.discard(url)
        logger.info(f"Registered {url} for {project.name} with the drive store")

    async def create_drive(self, project: Project, purpose: SeedPurpose, seed: bytes):
        """
        Register, create and advertise the drive of a newly minted seed.

        If registration fails the seed is kept and the drive URL is
        remembered; later passes of this process retry the registration
        before syncing. A restart forgets pending registrations.
        """
        url = self.drive.get_url(seed)
        try:
            await self.registrar.add(url)
        except Exception:
            self.unregistered.add(url)
            raise
        url = await self.drive.create(seed)
        logger.info(f"New hyperdrive published for {project.name} at {url}")

        tree = ContentTree.WEBSITE if purpose is SeedPurpose.WEBSITE else ContentTree.API
        await self.dns.upsert_txt(
            project.domain,
            RECORD_NAMES[(tree, Backend.DRIVE)],
            datkey_record(url),
            self.dns_ttl
        )


async def gather_results(tasks: List["asyncio.Task[PublishResult]"]) -> List[PublishResult]:
    """Join publish tasks, preserving their order."""
    if not tasks:
        return []
    return list(await asyncio.gather(*tasks))
