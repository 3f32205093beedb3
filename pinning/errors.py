"""
Error classes for the pinning service.

Failures are contained at the project-processing boundary:
- ConfigurationMissing: fatal at startup, never raised during a pass
- ProjectSkipped: project has no local configuration, pass continues
- PublishFailure: one (tree, backend) publication abandoned for this pass
- SeedIOFailure: stored seed exists but cannot be used
- DnsApiFailure: DNS provider request failed
"""

from typing import Optional


class PinningError(Exception):
    """Base exception for the pinning service."""
    pass


class ConfigurationMissing(PinningError):
    """Application configuration, registry or data directory is absent or invalid."""
    pass


class ProjectSkipped(PinningError):
    """Project is listed as active but its local configuration is missing."""

    def __init__(self, project_name: str, reason: str):
        super().__init__(f"{project_name}: {reason}")
        self.project_name = project_name
        self.reason = reason


class PublishFailure(PinningError, ConnectionError):
    """
    Backend sync/add failed or ran past its time budget.

    The publication and its DNS upsert are abandoned for this pass and
    retried naturally on the next scheduled pass.
    """
    pass


class SeedIOFailure(PinningError):
    """
    Seed file exists but is unreadable or corrupt.

    Raised instead of minting a new identity so that a transient I/O
    error never rotates a project's public drive key.
    """
    pass


class DnsApiFailure(PinningError):
    """HTTP or DNS error while listing, deleting or creating records."""

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status
