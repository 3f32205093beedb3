"""
Durable identity seeds for hyperdrive publication.

Each project holds one 32-byte seed per purpose in its private directory:

    <project>/private/
        dat-seed-www     website drive seed
        dat-seed-api     API drive seed

A stored seed is never regenerated, overwritten or deleted here. Losing
the file is indistinguishable from never having created it and mints a
new drive identity on the next publish.
"""

import asyncio
import logging
import os
import secrets
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Awaitable, Callable, Dict, Optional, Tuple

from pinning.core.projects import ContentTree, Project
from pinning.errors import SeedIOFailure

logger = logging.getLogger(__name__)

SEED_SIZE = 32


class SeedPurpose(Enum):
    """Identity purposes, named after their seed files."""
    WEBSITE = "dat-seed-www"
    API = "dat-seed-api"

    @classmethod
    def for_tree(cls, tree: ContentTree) -> "SeedPurpose":
        return cls.WEBSITE if tree is ContentTree.WEBSITE else cls.API


@dataclass(frozen=True)
class Seed:
    """Seed bytes plus whether this call minted them."""

    key: bytes
    purpose: SeedPurpose
    created: bool = False

    def __post_init__(self):
        if len(self.key) != SEED_SIZE:
            raise ValueError(f"Seed must be {SEED_SIZE} bytes, got {len(self.key)}")


# Called once after a new seed has been persisted
OnCreateFn = Callable[[Project, SeedPurpose, bytes], Awaitable[None]]


def seed_path(project: Project, purpose: SeedPurpose) -> Path:
    return project.private_dir / purpose.value


class SeedManager:
    """
    Provides idempotent identity seeds per (project, purpose).

    Calls for the same (project, purpose) are serialized so overlapping
    passes cannot both observe "no seed" and mint two identities.
    """

    def __init__(self, on_create: Optional[OnCreateFn] = None):
        """
        Initialize seed manager.

        Args:
            on_create: Coroutine run after a new seed is written, used to
                create and advertise the new drive
        """
        self.on_create = on_create
        self._locks: Dict[Tuple[str, SeedPurpose], asyncio.Lock] = {}

    def _lock_for(self, project: Project, purpose: SeedPurpose) -> asyncio.Lock:
        key = (project.name, purpose)
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        return lock

    async def get_or_create_seed(self, project: Project, purpose: SeedPurpose) -> Seed:
        """
        Return the stored seed, minting and persisting one if none exists.

        Args:
            project: Project owning the private directory
            purpose: Which drive the seed identifies

        Returns:
            Seed (``created`` is True when this call minted it)

        Raises:
            SeedIOFailure: If a seed file exists but cannot be read, or
                does not hold exactly 32 bytes
        """
        async with self._lock_for(project, purpose):
            key = self.read_seed(project, purpose)
            if key is not None:
                return Seed(key=key, purpose=purpose)

            logger.info(f"Generating new {purpose.value} for {project.name} ...")
            key = secrets.token_bytes(SEED_SIZE)
            self._write_seed(project, purpose, key)
            logger.info(f"Project {purpose.value} updated for {project.name}")

            if self.on_create is not None:
                await self.on_create(project, purpose, key)

            return Seed(key=key, purpose=purpose, created=True)

    def read_seed(self, project: Project, purpose: SeedPurpose) -> Optional[bytes]:
        """
        Read a stored seed.

        Returns:
            Seed bytes, or None if no seed file exists

        Raises:
            SeedIOFailure: On any read error other than absence, or a
                truncated/oversized file
        """
        path = seed_path(project, purpose)
        try:
            with open(path, "rb") as f:
                key = f.read()
        except FileNotFoundError:
            logger.info(f"Project {purpose.value} not found for {project.name}")
            return None
        except OSError as e:
            raise SeedIOFailure(f"Cannot read {path}: {e}") from e

        if len(key) != SEED_SIZE:
            raise SeedIOFailure(
                f"Corrupt seed at {path}: expected {SEED_SIZE} bytes, found {len(key)}"
            )

        return key

    def _write_seed(self, project: Project, purpose: SeedPurpose, key: bytes):
        """Persist a new seed; refuses to replace an existing file."""
        path = seed_path(project, purpose)
        try:
            project.private_dir.mkdir(mode=0o700, parents=True, exist_ok=True)
            fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o600)
            with os.fdopen(fd, "wb") as f:
                f.write(key)
                f.flush()
                os.fsync(f.fileno())
        except OSError as e:
            raise SeedIOFailure(f"Cannot store {path}: {e}") from e
