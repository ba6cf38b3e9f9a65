"""
Verifier runner — wire the components together from one ``Settings``.

``build_verifier`` is what an embedding process (the HTTP API) calls at
startup; ``drain_queue`` processes whatever is QUEUED and returns, which
is also what the CLI entry point does.
"""
import argparse
import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from contract_verifier.config import Settings, configure_logging
from contract_verifier.core.repo_host import GitHubClient
from contract_verifier.core.sandbox import ContainerRuntime, DockerRuntime
from contract_verifier.io.schema import JobStatus
from contract_verifier.io.storage import JobStore
from contract_verifier.service import VerificationService
from contract_verifier.worker import Worker

logger = logging.getLogger(__name__)


@dataclass
class Verifier:
    settings: Settings
    store: JobStore
    repo_host: GitHubClient
    worker: Worker
    service: VerificationService

    async def aclose(self) -> None:
        await self.worker.stop()
        await self.repo_host.aclose()
        self.store.close()


def build_verifier(
    settings: Settings,
    runtime: Optional[ContainerRuntime] = None,
) -> Verifier:
    settings.ensure_dirs()
    store = JobStore(Path(settings.DB_PATH))
    repo_host = GitHubClient.from_settings(settings)
    worker = Worker(settings, store, runtime or DockerRuntime(), repo_host)
    service = VerificationService.from_settings(settings, store, worker.notify)
    return Verifier(settings, store, repo_host, worker, service)


async def drain_queue(settings: Settings, runtime: Optional[ContainerRuntime] = None) -> int:
    """Process every QUEUED job once; returns how many are still queued."""
    verifier = build_verifier(settings, runtime)
    try:
        verifier.worker.notify()
        await verifier.worker.join()
        return len(verifier.store.list_jobs(status=JobStatus.QUEUED))
    finally:
        await verifier.aclose()


def main() -> None:
    """CLI entry point."""
    parser = argparse.ArgumentParser(description="Contract verifier worker")
    parser.add_argument("--list", dest="status", default=None,
                        choices=[s.name.lower() for s in JobStatus],
                        help="List jobs with this status instead of building")
    parser.add_argument("--verbose", "-v", action="store_true")
    args = parser.parse_args()

    settings = Settings()
    configure_logging("DEBUG" if args.verbose else settings.LOG_LEVEL)

    if args.status:
        store = JobStore(Path(settings.DB_PATH))
        for job in store.list_jobs(status=JobStatus[args.status.upper()], limit=1000):
            print(f"{job.address}  {job.status.value:<12s} {job.requested_at.isoformat()}  "
                  f"{job.toolchain.language} {job.toolchain.version}")
        store.close()
        return

    remaining = asyncio.run(drain_queue(settings))
    logger.info(f"Queue drained, {remaining} job(s) still queued")


if __name__ == "__main__":
    main()
