"""
IPFS content-addressed block store backend.

Adds content trees to an IPFS node and pins them so the node retains them.
"""

from typing import Any, List, Optional
import asyncio
import logging
from pathlib import Path

import ipfshttpclient

from pinning.errors import PublishFailure

logger = logging.getLogger(__name__)


class IPFSBackend:
    """
    IPFS block store backend.

    Trees are added recursively with CIDv1, whose base32 string form is
    a valid DNS label and can be used in dnslink records and subdomain
    gateways. Content is pinned to prevent garbage collection.

    The HTTP client is blocking, so every call runs in the default
    executor and is bounded by ``asyncio.wait_for``.
    """

    def __init__(
        self,
        ipfs_addr: str = "/ip4/127.0.0.1/tcp/5001",
        pin_content: bool = True,
        timeout: int = 60,
        client: Any = None,
    ):
        """
        Initialize IPFS backend.

        Args:
            ipfs_addr: IPFS daemon API address (multiaddr format)
            pin_content: Whether to pin added content
            timeout: Timeout for IPFS operations (seconds)
            client: Pre-built client (connects lazily when omitted)
        """
        self.ipfs_addr = ipfs_addr
        self.pin_content = pin_content
        self.timeout = timeout
        self.client = client

        logger.info(f"Initialized IPFS backend at {self.ipfs_addr}")

    def _connect(self):
        """Connect to IPFS daemon."""
        if self.client is not None:
            return self.client

        try:
            self.client = ipfshttpclient.connect(self.ipfs_addr, timeout=self.timeout)
            version = self.client.version()
            logger.info(f"Connected to IPFS {version['Version']}")
        except Exception as e:
            self.client = None
            logger.error(f"Failed to connect to IPFS daemon: {e}")
            logger.error(
                "Make sure IPFS daemon is running: ipfs daemon\n"
                "Install IPFS: https://docs.ipfs.tech/install/"
            )
            raise PublishFailure(f"IPFS connection failed: {e}") from e

        return self.client

    def _add_tree_blocking(self, path: Path, timeout: float) -> str:
        client = self._connect()
        result = client.add(
            str(path),
            recursive=True,
            follow_symlinks=False,
            cid_version=1,
            pin=self.pin_content,
            timeout=timeout,
        )
        return self._root_cid(path, result)

    @staticmethod
    def _root_cid(path: Path, result) -> str:
        """
        Pick the root directory's CID out of an add response.

        A recursive add returns one entry per file and directory; the
        entry named after the added directory is the root.
        """
        entries: List[dict] = result if isinstance(result, list) else [result]
        if not entries:
            raise PublishFailure(f"IPFS returned no entries for {path}")

        for entry in entries:
            if entry.get("Name") == path.name:
                return entry["Hash"]

        return entries[-1]["Hash"]

    async def add_tree(self, path: Path, timeout: Optional[float] = None) -> str:
        """
        Add a directory tree to IPFS.

        Args:
            path: Directory to add (symbolic links are not followed)
            timeout: Budget in seconds (default: backend timeout)

        Returns:
            CIDv1 of the root directory

        Raises:
            PublishFailure: If the add fails or exceeds its budget
        """
        path = Path(path)
        timeout = timeout if timeout is not None else self.timeout
        loop = asyncio.get_running_loop()

        try:
            cid = await asyncio.wait_for(
                loop.run_in_executor(None, self._add_tree_blocking, path, timeout),
                timeout=timeout,
            )
        except asyncio.TimeoutError as e:
            raise PublishFailure(f"IPFS add of {path} timed out after {timeout}s") from e
        except PublishFailure:
            raise
        except Exception as e:
            raise PublishFailure(f"IPFS add of {path} failed: {e}") from e

        logger.debug(f"Added {path} to IPFS as {cid}")
        return cid

    def close(self):
        """Close the client session."""
        if self.client is not None:
            try:
                self.client.close()
            finally:
                self.client = None
