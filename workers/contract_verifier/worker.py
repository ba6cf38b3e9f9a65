"""
Verification worker — single-flight consumer of the job queue.

One ``Worker`` owns at most one asyncio consumer task. ``notify()`` starts
the task when none is running and otherwise only records a wake-up, so a
burst of submissions never runs two pipelines side by side. The task
drains the queue oldest-first and exits when it finds nothing to do.

Per job:
    select → fresh build dirs → acquire source → IN_PROGRESS → sandbox build
    → post-process → content id compare → SUCCESS | NOT_MATCH | FAILED
    → clean build dirs (always)

Transient acquisition errors leave the job QUEUED; the task sleeps the
policy backoff and picks the queue head again.
"""
import asyncio
import logging
import sqlite3
from pathlib import Path
from typing import Awaitable, Callable, Dict, Optional

from contract_verifier.config import Settings
from contract_verifier.core.content_id import compute_content_id, content_ids_equal
from contract_verifier.core.exports import list_exports
from contract_verifier.core.postprocess import PostProcessor
from contract_verifier.core.repo_host import RepoHost
from contract_verifier.core.sandbox import ContainerRuntime, SandboxSpec
from contract_verifier.core.source import SourceAcquirer
from contract_verifier.core.workdir import BuildDirs
from contract_verifier.errors import (
    ExportParseError,
    FatalWorkerError,
    PostProcessError,
    SandboxStartError,
    TerminalSourceError,
    TransientSourceError,
)
from contract_verifier.io.schema import JobStatus, VerificationJob
from contract_verifier.io.storage import JobStore
from contract_verifier.policy.retry import RetryPolicy
from contract_verifier.policy.toolchain import ToolchainProfile, get_profile

logger = logging.getLogger(__name__)

Sleeper = Callable[[float], Awaitable[None]]


class Worker:
    """Drains QUEUED jobs one at a time."""

    def __init__(
        self,
        settings: Settings,
        store: JobStore,
        runtime: ContainerRuntime,
        repo_host: RepoHost,
        retry_policy: Optional[RetryPolicy] = None,
        post_processor: Optional[PostProcessor] = None,
        sleep: Sleeper = asyncio.sleep,
    ):
        self.settings = settings
        self.store = store
        self.runtime = runtime
        self.acquirer = SourceAcquirer.from_settings(settings, store, repo_host)
        self.retry_policy = retry_policy or RetryPolicy.from_settings(settings)
        self.post_processor = post_processor or PostProcessor.from_settings(settings)
        self._sleep = sleep

        self._task: Optional[asyncio.Task] = None
        self._wake = False
        self._attempts: Dict[str, int] = {}
        self.last_error: Optional[BaseException] = None

    # ── Lifecycle ────────────────────────────────────────────────────────

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def notify(self) -> None:
        """Fire-and-forget wake-up. Must be called from the event loop thread."""
        self._wake = True
        if self.running:
            return
        self._task = asyncio.get_running_loop().create_task(self._run())

    async def join(self) -> None:
        """Wait until the current consumer task (if any) goes idle."""
        if self._task is not None:
            await asyncio.shield(self._task)

    async def stop(self) -> None:
        """Cancel the consumer task, including any backoff sleep."""
        if not self.running:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        logger.info("Worker stopped")

    async def _run(self) -> None:
        logger.info("Worker started")
        try:
            while True:
                self._wake = False
                job = await self._store_call(self.store.next_queued)
                if job is None:
                    if self._wake:
                        continue
                    logger.info("Queue empty, worker idle")
                    return
                delay = await self.process_job(job)
                if delay:
                    await self._sleep(delay)
        except FatalWorkerError as e:
            self.last_error = e
            logger.error(f"Worker halted: {e}")
        except Exception as e:
            self.last_error = e
            logger.error(f"Worker halted by unexpected error: {e}", exc_info=True)

    # ── Store access ─────────────────────────────────────────────────────

    async def _store_call(self, fn, *args, **kwargs):
        try:
            return await asyncio.to_thread(fn, *args, **kwargs)
        except sqlite3.Error as e:
            raise FatalWorkerError(f"Job store unavailable: {e}") from e

    async def _set_status(self, job: VerificationJob, status: JobStatus) -> None:
        await self._store_call(self.store.set_status, job.address, status)
        logger.info(f"Job {job.address}: {status.value}")
        if status.is_terminal:
            self._attempts.pop(job.address, None)

    # ── Pipeline ─────────────────────────────────────────────────────────

    async def process_job(self, job: VerificationJob) -> Optional[float]:
        """Run the pipeline for *job*.

        Returns a backoff in seconds when the job should be retried in
        place, None when it reached a terminal status.
        """
        logger.info(
            f"Processing {job.address} ({job.toolchain.language} {job.toolchain.version})"
        )
        try:
            profile = get_profile(job.toolchain.language)
        except KeyError:
            logger.error(f"Unsupported language {job.toolchain.language} for {job.address}")
            await self._set_status(job, JobStatus.FAILED)
            return None

        with BuildDirs(Path(self.settings.SRC_DIR), Path(self.settings.OUTPUT_DIR)) as dirs:
            try:
                acquired = await self.acquirer.acquire(job, dirs.src_dir)
            except TerminalSourceError as e:
                logger.error(f"Source acquisition failed for {job.address}: {e}")
                await self._set_status(job, JobStatus.FAILED)
                return None
            except TransientSourceError as e:
                return await self._transient(job, e)
            except FatalWorkerError:
                raise
            except Exception as e:
                logger.error(f"Unexpected error acquiring source for {job.address}: {e}", exc_info=True)
                await self._set_status(job, JobStatus.FAILED)
                return None

            self._attempts.pop(job.address, None)
            await self._set_status(job, JobStatus.IN_PROGRESS)
            try:
                status = await self._build_and_compare(job, profile, dirs, acquired)
            except FatalWorkerError:
                raise
            except Exception as e:
                logger.error(f"Unexpected error verifying {job.address}: {e}", exc_info=True)
                status = JobStatus.FAILED
            if status is not JobStatus.SUCCESS:
                await self._set_status(job, status)
        return None

    async def _transient(self, job: VerificationJob, error: TransientSourceError) -> Optional[float]:
        attempts = self._attempts.get(job.address, 0) + 1
        if self.retry_policy.exhausted(attempts):
            logger.error(f"Giving up on {job.address} after {attempts} attempts: {error}")
            await self._set_status(job, JobStatus.FAILED)
            return None
        self._attempts[job.address] = attempts
        delay = self.retry_policy.backoff_for(error.backoff)
        logger.warning(
            f"Transient failure for {job.address} (attempt {attempts}): {error}; "
            f"retrying in {delay:g}s"
        )
        return delay

    def sandbox_spec(self, job: VerificationJob, profile: ToolchainProfile) -> SandboxSpec:
        return SandboxSpec(
            image=profile.image(job.toolchain.version),
            command=tuple(profile.command(self.settings.BUILD_TIMEOUT)),
            mounts={
                self.settings.src_mount: profile.source_mount,
                self.settings.output_mount: profile.output_mount,
            },
            memory_limit=self.settings.MEMORY_LIMIT,
            name=self.settings.CONTAINER_NAME,
        )

    async def _build_and_compare(self, job, profile, dirs, acquired) -> JobStatus:
        spec = self.sandbox_spec(job, profile)
        try:
            exit_code = await asyncio.to_thread(self.runtime.run, spec)
        except SandboxStartError as e:
            logger.error(f"Sandbox failed to start for {job.address}: {e}")
            return JobStatus.FAILED
        if exit_code != 0:
            logger.error(f"Build for {job.address} exited with code {exit_code}")
            return JobStatus.FAILED

        artifact = dirs.output_path(profile.output_file)
        if not artifact.is_file():
            logger.error(f"Build for {job.address} produced no {profile.output_file}")
            return JobStatus.FAILED

        try:
            data = await asyncio.to_thread(
                self.post_processor.process, artifact, job.toolchain.strip_tool
            )
        except PostProcessError as e:
            logger.error(f"Post-processing failed for {job.address}: {e}")
            return JobStatus.FAILED

        content_id = compute_content_id(data, job.toolchain.content_encoding)
        if not content_ids_equal(content_id, job.expected_content_id):
            logger.info(
                f"Bytecode mismatch for {job.address}: "
                f"built {content_id}, expected {job.expected_content_id}"
            )
            return JobStatus.NOT_MATCH

        try:
            exports = list_exports(data)
        except ExportParseError as e:
            if self.settings.REQUIRE_EXPORTS:
                logger.error(f"Cannot list exports for {job.address}: {e}")
                return JobStatus.FAILED
            logger.warning(f"Cannot list exports for {job.address}: {e}")
            exports = None

        await self._store_call(
            self.store.mark_success,
            job.address,
            exports,
            git_commit=acquired.git_commit,
            license=acquired.license,
        )
        self._attempts.pop(job.address, None)
        logger.info(f"Job {job.address}: {JobStatus.SUCCESS.value} ({content_id})")
        return JobStatus.SUCCESS
