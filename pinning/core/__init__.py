"""
Pinning Core Module

Reconciliation engine:
- Scheduler (cron or fixed-period passes)
- Project iterator (per-project fault isolation)
- Seed manager (durable drive identities)
- Publish pipeline (hyperdrive + IPFS, DNS advertisement)
"""

from pinning.core.projects import ContentTree, Project, ProjectIterator, PassReport
from pinning.core.seed_manager import Seed, SeedManager, SeedPurpose
from pinning.core.pipeline import Backend, PublishPipeline, PublishResult
from pinning.core.scheduler import Scheduler, parse_period

__all__ = [
    "ContentTree",
    "Project",
    "ProjectIterator",
    "PassReport",
    "Seed",
    "SeedManager",
    "SeedPurpose",
    "Backend",
    "PublishPipeline",
    "PublishResult",
    "Scheduler",
    "parse_period",
]
