"""
Hyperdrive publishing backend.

A hyperdrive is identified by the ed25519 key pair derived from a 32-byte
seed; its public key is the drive's address (``hyper://<hex key>``).
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional
import asyncio
import hashlib
import logging
import shutil

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ed25519

from pinning.errors import PublishFailure

logger = logging.getLogger(__name__)

HYPER_SCHEME = "hyper://"


def public_key(seed: bytes) -> bytes:
    """Derive the drive's ed25519 public key from its seed."""
    private_key = ed25519.Ed25519PrivateKey.from_private_bytes(seed)
    return private_key.public_key().public_bytes(
        encoding=serialization.Encoding.Raw,
        format=serialization.PublicFormat.Raw
    )


def drive_key(url: str) -> str:
    """Strip the scheme from a drive URL, leaving the hex key."""
    if url.startswith(HYPER_SCHEME):
        url = url[len(HYPER_SCHEME):]
    return url.rstrip("/")


@dataclass
class SyncResult:
    """Result of mirroring a directory into a drive."""

    url: str
    diff: List[Dict[str, str]] = field(default_factory=list)

    def describe(self) -> str:
        if not self.diff:
            return "no changes"
        return "\n".join(f"  {d['type']} {d['name']}" for d in self.diff)


class DrivePublisher(ABC):
    """
    Drive publishing capability.

    Implementations mirror a local directory into the drive identified by
    a seed and make it available to peers.
    """

    def get_url(self, seed: bytes) -> str:
        """Drive URL for a seed (deterministic)."""
        return HYPER_SCHEME + public_key(seed).hex()

    @abstractmethod
    async def create(self, seed: bytes) -> str:
        """Create (or open) the drive for a seed and return its URL."""

    @abstractmethod
    async def sync(
        self,
        seed: bytes,
        fs_path: Path,
        drive_path: str = "/",
        sync_time: Optional[float] = None
    ) -> SyncResult:
        """
        Mirror ``fs_path`` into the drive at ``drive_path``.

        Raises:
            PublishFailure: If the sync fails or exceeds ``sync_time``
        """


class LocalDrivePublisher(DrivePublisher):
    """
    Drive publisher backed by a local directory per drive.

    Directory structure:
    storage_dir/
        <hex public key>/
            index.html
            ...

    Only the content is mirrored. The seed never leaves this process, so
    nothing writes, signs or announces these drives on the hyperdrive
    network: the advertised ``hyper://`` keys do not resolve to peers.
    Use it for development and tests; production deployments pass a
    DrivePublisher backed by a hyperdrive daemon that holds the seeds.
    """

    def __init__(self, storage_dir: Path, default_sync_time: float = 60):
        """
        Initialize local drive publisher.

        Args:
            storage_dir: Base directory for drive contents
            default_sync_time: Sync budget (seconds) when none is given
        """
        self.storage_dir = Path(storage_dir)
        self.storage_dir.mkdir(parents=True, exist_ok=True)
        self.default_sync_time = default_sync_time

        logger.info(f"Initialized local drive publisher at {self.storage_dir}")
        logger.warning(
            "Local drive publisher only mirrors files: drives are not announced "
            "to hyperdrive peers and their datkey records will not resolve"
        )

    def drive_dir(self, seed: bytes) -> Path:
        return self.storage_dir / public_key(seed).hex()

    async def create(self, seed: bytes) -> str:
        self.drive_dir(seed).mkdir(parents=True, exist_ok=True)
        return self.get_url(seed)

    async def sync(
        self,
        seed: bytes,
        fs_path: Path,
        drive_path: str = "/",
        sync_time: Optional[float] = None
    ) -> SyncResult:
        sync_time = sync_time if sync_time is not None else self.default_sync_time
        fs_path = Path(fs_path)
        target = self.drive_dir(seed) / drive_path.strip("/")
        loop = asyncio.get_running_loop()

        try:
            diff = await asyncio.wait_for(
                loop.run_in_executor(None, self._mirror, fs_path, target),
                timeout=sync_time,
            )
        except asyncio.TimeoutError as e:
            raise PublishFailure(f"Drive sync of {fs_path} timed out after {sync_time}s") from e
        except OSError as e:
            raise PublishFailure(f"Drive sync of {fs_path} failed: {e}") from e

        return SyncResult(url=self.get_url(seed), diff=diff)

    # Internal methods

    def _mirror(self, source: Path, target: Path) -> List[Dict[str, str]]:
        """Make ``target`` an exact copy of ``source`` and report the changes."""
        if not source.is_dir():
            raise FileNotFoundError(f"Content tree not found: {source}")

        target.mkdir(parents=True, exist_ok=True)
        diff = []

        wanted = set()
        for file_path in sorted(source.rglob("*")):
            if file_path.is_symlink() or not file_path.is_file():
                continue

            rel_path = file_path.relative_to(source)
            wanted.add(rel_path)
            dest = target / rel_path

            if not dest.exists():
                change = "add"
            elif not self._same_content(file_path, dest):
                change = "change"
            else:
                continue

            dest.parent.mkdir(parents=True, exist_ok=True)
            shutil.copy2(file_path, dest)
            diff.append({"type": change, "name": f"/{rel_path.as_posix()}"})

        for dest in sorted(target.rglob("*"), reverse=True):
            if dest.is_file() and dest.relative_to(target) not in wanted:
                dest.unlink()
                diff.append({"type": "del", "name": f"/{dest.relative_to(target).as_posix()}"})
                self._cleanup_empty_dirs(dest.parent, stop=target)

        return diff

    @staticmethod
    def _same_content(a: Path, b: Path) -> bool:
        if a.stat().st_size != b.stat().st_size:
            return False
        return hashlib.sha256(a.read_bytes()).digest() == hashlib.sha256(b.read_bytes()).digest()

    def _cleanup_empty_dirs(self, directory: Path, stop: Path):
        """Remove empty directories up to (not including) ``stop``."""
        while directory != stop and directory.is_dir() and not any(directory.iterdir()):
            directory.rmdir()
            logger.debug(f"Cleaned up empty directory {directory}")
            directory = directory.parent
