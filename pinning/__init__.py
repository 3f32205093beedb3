"""
Distributed Press Pinning Service

Republishes static project sites and API responses to hyperdrive and IPFS
on a schedule, and keeps DNS discovery records (datkey / dnslink TXT
records) pointing at the latest published location.

Quick Start:
    >>> import asyncio
    >>> from pinning import PinningService, load_app_config
    >>>
    >>> service = PinningService(load_app_config())
    >>> report = asyncio.run(service.run_pass())
    >>> print(report.summary())

Features:
    - Durable per-project drive identities (seeds are never regenerated)
    - Dual-backend publishing (hyperdrive + pinned IPFS CIDv1)
    - DNS TXT upserts serialized per record name
    - Per-project fault isolation
"""

from pinning.config import AppConfig, load_app_config, load_registry
from pinning.core.pipeline import PublishPipeline, PublishResult
from pinning.core.projects import Project, ProjectIterator, PassReport
from pinning.core.scheduler import Scheduler
from pinning.core.seed_manager import Seed, SeedManager, SeedPurpose
from pinning.service import PinningService
from pinning.web_hosting.dns_records import DigitalOceanDNS, DnsReconciler

__version__ = "0.1.0"
__author__ = "Distributed Press"

__all__ = [
    "AppConfig",
    "load_app_config",
    "load_registry",
    "PublishPipeline",
    "PublishResult",
    "Project",
    "ProjectIterator",
    "PassReport",
    "Scheduler",
    "Seed",
    "SeedManager",
    "SeedPurpose",
    "PinningService",
    "DigitalOceanDNS",
    "DnsReconciler",
]
