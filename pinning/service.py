"""
Distributed Press Pinning Service

Periodically republishes every active project's website and API trees to
hyperdrive and IPFS, and keeps the projects' DNS discovery records
pointing at the latest published locations.

Commands:
- run: Start the scheduler and publish every pinning period (default)
- once: Run a single pass and exit
- check: Show the discovery records a project currently publishes
"""

import argparse
import asyncio
import inspect
import logging
import os
import sys
from pathlib import Path
from typing import List, Optional

from loguru import logger

from pinning.backends.dat_store import DatStoreClient
from pinning.backends.hyperdrive import DrivePublisher, LocalDrivePublisher
from pinning.backends.ipfs_backend import IPFSBackend
from pinning.config import AppConfig, load_app_config, load_registry
from pinning.core.pipeline import PublishPipeline
from pinning.core.projects import PassReport, Project, ProjectIterator, find_project
from pinning.core.scheduler import Scheduler, parse_period
from pinning.core.seed_manager import SeedManager
from pinning.errors import ConfigurationMissing, PinningError
from pinning.web_hosting.dns_records import DigitalOceanDNS, DnsReconciler
from pinning.web_hosting.dns_verifier import PublishedRecordVerifier


class PinningService:
    """
    Wires configuration, backends and the reconciliation loop together.

    Every collaborator can be passed in; the rest are built from the
    application configuration. Without a ``drive``, content is only
    mirrored locally (see LocalDrivePublisher) and drives never reach
    the hyperdrive network.
    """

    def __init__(
        self,
        config: AppConfig,
        *,
        block_store: Optional[IPFSBackend] = None,
        drive: Optional[DrivePublisher] = None,
        registrar: Optional[DatStoreClient] = None,
        dns_provider: Optional[DigitalOceanDNS] = None,
        max_concurrency: int = 4
    ):
        self.config = config
        self.block_store = block_store or IPFSBackend(config.ipfs_server)
        self.drive = drive or LocalDrivePublisher(config.data_dir / "drives")
        self.registrar = registrar or DatStoreClient(config.dat_store.server)
        self.dns_provider = dns_provider or DigitalOceanDNS(config.digital_ocean_access_token)

        self.seed_manager = SeedManager()
        self.pipeline = PublishPipeline(
            drive=self.drive,
            registrar=self.registrar,
            block_store=self.block_store,
            dns=DnsReconciler(self.dns_provider),
            seed_manager=self.seed_manager,
        )
        self.iterator = ProjectIterator(config.projects_dir, max_concurrency=max_concurrency)
        self.scheduler = Scheduler(
            self.run_pass,
            period=parse_period(config.dev.pinning_period),
        )

    async def process_project(self, project: Project):
        results = await self.pipeline.process_project(project)
        failed = [r for r in results if not r.ok]
        logger.info(
            "Project {} published: {} ok, {} failed",
            project.name, len(results) - len(failed), len(failed)
        )
        return results

    async def run_pass(self) -> PassReport:
        """Reload the registry and publish every active project once."""
        registry = load_registry(self.config.registry_file)
        logger.info("Starting pass over {} active project(s)", len(registry.active))
        report = await self.iterator.for_each_active_project(registry, self.process_project)
        logger.info("Pass complete: {}", report.summary())
        return report

    async def login(self):
        """Log in to the dat-store; failures are logged, not fatal."""
        try:
            await self.registrar.login(
                self.config.dat_store.username,
                self.config.dat_store.password
            )
        except PinningError as e:
            logger.error("Dat-store login failed: {}", e)

    async def start(self):
        await self.login()
        self.scheduler.start()

    async def stop(self):
        await self.scheduler.stop()
        await self.close()

    async def close(self):
        await self.registrar.close()
        await self.dns_provider.close()
        self.block_store.close()

    async def check(self, name: str) -> dict:
        """Resolve the discovery records published for one project."""
        registry = load_registry(self.config.registry_file)
        project = find_project(self.iterator, registry, name)
        if project is None:
            raise ConfigurationMissing(f"No active project named {name}")
        return await PublishedRecordVerifier().published(project.domain)


# =============================================================================
# Logging
# =============================================================================

class InterceptHandler(logging.Handler):
    """Forward standard-library log records to loguru."""

    def emit(self, record: logging.LogRecord):
        try:
            level = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        # Report the caller of the stdlib logger, not the logging module
        frame, depth = inspect.currentframe(), 0
        while frame and (depth == 0 or frame.f_code.co_filename == logging.__file__):
            frame = frame.f_back
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(level, record.getMessage())


def configure_logging(level: str = "INFO", log_dir: Optional[Path] = None):
    logger.remove()
    logger.add(sys.stderr, level=level)
    if log_dir is not None:
        logger.add(
            str(log_dir / "pinning_{time}.log"),
            rotation="1 day",
            retention="30 days",
            level=level
        )
    logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)


# =============================================================================
# Main Entry Point
# =============================================================================

async def _run_forever(service: PinningService):
    await service.start()
    try:
        await asyncio.Event().wait()
    finally:
        await service.stop()


async def _run_once(service: PinningService) -> int:
    try:
        await service.login()
        report = await service.run_pass()
    finally:
        await service.close()
    return 1 if report.failed else 0


async def _run_check(service: PinningService, name: str) -> int:
    try:
        records = await service.check(name)
    finally:
        await service.close()

    for record_name, values in records.items():
        print(f"{record_name:14} {', '.join(values) if values else '(none)'}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="pinning-service",
        description="Publish Distributed Press projects to hyperdrive and IPFS"
    )
    parser.add_argument(
        "--config-dir",
        type=Path,
        default=None,
        help="Configuration directory (default: $PINNING_CONFIG_DIR or ~/.distributed-press)"
    )
    parser.add_argument(
        "--log-level",
        default=os.getenv("PINNING_LOG_LEVEL", "INFO"),
        help="Log level (default: INFO)"
    )
    parser.add_argument(
        "--log-dir",
        type=Path,
        default=None,
        help="Also write rotated log files to this directory"
    )

    subparsers = parser.add_subparsers(dest="command")
    subparsers.add_parser("run", help="Publish every pinning period (default)")
    subparsers.add_parser("once", help="Run a single pass and exit")
    check = subparsers.add_parser("check", help="Show a project's published DNS records")
    check.add_argument("project", help="Project name or domain")

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Run the pinning service."""
    args = build_parser().parse_args(argv)
    configure_logging(args.log_level.upper(), args.log_dir)

    try:
        config = load_app_config(args.config_dir)
        service = PinningService(config)
    except ConfigurationMissing as e:
        logger.error("{}", e)
        return 1

    logger.info("Pinning service started with configuration at {}", config.config_dir)
    logger.info("   Data directory: {}", config.data_dir)
    logger.info("   IPFS API: {}", config.ipfs_server)
    logger.info("   Dat-store: {}", config.dat_store.server)

    command = args.command or "run"
    try:
        if command == "once":
            return asyncio.run(_run_once(service))
        if command == "check":
            return asyncio.run(_run_check(service, args.project))
        asyncio.run(_run_forever(service))
    except PinningError as e:
        logger.error("{}", e)
        return 1
    except KeyboardInterrupt:
        logger.info("Shutting down...")

    return 0


if __name__ == "__main__":
    sys.exit(main())
