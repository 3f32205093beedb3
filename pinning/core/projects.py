"""
Projects and the per-pass project iterator.

A project is a directory under the data directory's projects/ folder
holding up to two content trees (www/ and api/) and a private/ folder
for identity material. The iterator walks the registry's active list and
isolates every project from the failures of the others.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Awaitable, Callable, Iterator, List, Optional, Tuple

from pinning.config import ProjectEntry, Registry, load_project_config
from pinning.errors import ProjectSkipped

logger = logging.getLogger(__name__)


class ContentTree(Enum):
    """Content trees a project may publish."""
    WEBSITE = "www"
    API = "api"


@dataclass
class Project:
    """An active project resolved against its local directory."""

    name: str
    domain: str
    root: Path

    @property
    def www_dir(self) -> Path:
        return self.root / ContentTree.WEBSITE.value

    @property
    def api_dir(self) -> Path:
        return self.root / ContentTree.API.value

    @property
    def private_dir(self) -> Path:
        return self.root / "private"

    def tree_dir(self, tree: ContentTree) -> Path:
        return self.root / tree.value

    def trees(self) -> Iterator[Tuple[ContentTree, Path]]:
        """Yield the content trees that exist on disk, website first."""
        for tree in ContentTree:
            path = self.tree_dir(tree)
            if path.is_dir():
                yield tree, path


@dataclass
class PassReport:
    """Outcome of one iteration over the active projects."""

    processed: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)

    def summary(self) -> str:
        return (
            f"{len(self.processed)} processed, "
            f"{len(self.skipped)} skipped, "
            f"{len(self.failed)} failed"
        )


ProcessFn = Callable[[Project], Awaitable[object]]


class ProjectIterator:
    """
    Enumerates active projects and processes each one in isolation.

    Processing starts in registry order. Up to ``max_concurrency``
    projects run at the same time; each project owns its own directory
    so no state is shared between concurrent projects.
    """

    def __init__(self, projects_dir: Path, max_concurrency: int = 4):
        """
        Initialize project iterator.

        Args:
            projects_dir: Directory holding one folder per project
            max_concurrency: Projects processed concurrently (1 = sequential)
        """
        self.projects_dir = Path(projects_dir)
        self.max_concurrency = max(1, max_concurrency)

    def load_project(self, entry: ProjectEntry) -> Project:
        """
        Resolve a registry entry to a Project.

        Raises:
            ProjectSkipped: If the project's config.json is missing
        """
        root = self.projects_dir / entry.directory_name
        config_file = root / "config.json"

        if not config_file.exists():
            raise ProjectSkipped(
                entry.display_name,
                f"Project directory not found at {config_file}"
            )

        conf = load_project_config(config_file)
        return Project(name=entry.display_name, domain=conf.domain, root=root)

    async def for_each_active_project(
        self,
        registry: Registry,
        process_fn: ProcessFn
    ) -> PassReport:
        """
        Run ``process_fn`` for every active project.

        A failure of any kind while processing one project is logged with
        the project's name and never prevents the remaining projects from
        being processed.

        Args:
            registry: Project registry
            process_fn: Coroutine function taking a Project

        Returns:
            PassReport listing processed, skipped and failed projects
        """
        report = PassReport()
        semaphore = asyncio.Semaphore(self.max_concurrency)

        async def run_one(entry: ProjectEntry):
            async with semaphore:
                await self._process_entry(entry, process_fn, report)

        tasks = []
        for entry in registry.active:
            tasks.append(asyncio.create_task(
                run_one(entry),
                name=f"project:{entry.display_name}"
            ))
            # Let the task acquire the semaphore so projects start in registry order
            await asyncio.sleep(0)

        if tasks:
            await asyncio.gather(*tasks)

        return report

    async def _process_entry(
        self,
        entry: ProjectEntry,
        process_fn: ProcessFn,
        report: PassReport
    ):
        name = entry.display_name
        try:
            project = self.load_project(entry)
            await process_fn(project)
            report.processed.append(name)
        except ProjectSkipped as e:
            logger.warning(f"{e.reason}, processing of {name} skipped")
            report.skipped.append(name)
        except Exception as e:
            logger.error(f"Failed to process project {name}: {e}", exc_info=True)
            report.failed.append(name)


def find_project(
    iterator: ProjectIterator,
    registry: Registry,
    name: str
) -> Optional[Project]:
    """Look up one active project by name or domain."""
    for entry in registry.active:
        if name in (entry.name, entry.domain):
            return iterator.load_project(entry)
    return None
