"""
Storage backends for the pinning service.

Supports hyperdrive (with dat-store registration) and IPFS.
"""

from .ipfs_backend import IPFSBackend
from .hyperdrive import DrivePublisher, LocalDrivePublisher, SyncResult
from .dat_store import DatStoreClient

__all__ = ["IPFSBackend", "DrivePublisher", "LocalDrivePublisher", "SyncResult", "DatStoreClient"]
