"""
Source acquirer — materialise a job's source tree in the build directory.

Two strategies, picked by the job's locator:
  - upload: uploaded files from the store, written under the toolchain's
    fixed source subpath (lockfiles at the project root)
  - repo:   GitHub metadata checks, then clone + checkout of one commit

Failures raise ``TerminalSourceError`` or ``TransientSourceError``; the
worker decides what each means for the job.
"""
import asyncio
import json
import logging
import sqlite3
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from contract_verifier.core.git_ops import chown_recursive, clone_at_commit
from contract_verifier.core.repo_host import RepoHost
from contract_verifier.errors import FatalWorkerError, TerminalSourceError
from contract_verifier.io.schema import RepoLocator, VerificationJob
from contract_verifier.io.storage import JobStore
from contract_verifier.policy.toolchain import ToolchainProfile, get_profile

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AcquiredSource:
    """Where the source ended up and what we learned on the way."""
    path: Path
    git_commit: Optional[str] = None
    license: Optional[str] = None


def render_package_json(job: VerificationJob) -> str:
    """Minimal package.json pinning the job's AssemblyScript dependencies."""
    package = {
        "name": f"contract-{job.address}",
        "version": "0.0.0",
        "private": True,
        "type": "module",
        "dependencies": dict(sorted(job.toolchain.dependencies.items())),
    }
    return json.dumps(package, indent=2) + "\n"


class SourceAcquirer:
    """Fetches sources for one job into ``src_dir``."""

    def __init__(
        self,
        store: JobStore,
        repo_host: RepoHost,
        max_repo_size_kb: int = 10240,
        fix_permissions: bool = True,
        uid: int = 1000,
        gid: int = 1000,
    ):
        self.store = store
        self.repo_host = repo_host
        self.max_repo_size_kb = max_repo_size_kb
        self.fix_permissions = fix_permissions
        self.uid = uid
        self.gid = gid

    @classmethod
    def from_settings(cls, settings, store: JobStore, repo_host: RepoHost) -> "SourceAcquirer":
        return cls(
            store,
            repo_host,
            max_repo_size_kb=settings.MAX_REPO_SIZE_KB,
            fix_permissions=settings.FIX_PERMISSIONS,
            uid=settings.SANDBOX_UID,
            gid=settings.SANDBOX_GID,
        )

    async def acquire(self, job: VerificationJob, src_dir: Path) -> AcquiredSource:
        try:
            profile = get_profile(job.toolchain.language)
        except KeyError:
            raise TerminalSourceError(
                f"Unsupported language: {job.toolchain.language}"
            ) from None

        if job.is_repo:
            return await self._acquire_repo(job.source, src_dir)
        return await asyncio.to_thread(self._acquire_upload, job, profile, src_dir)

    # ── Upload ───────────────────────────────────────────────────────────

    def _acquire_upload(
        self,
        job: VerificationJob,
        profile: ToolchainProfile,
        src_dir: Path,
    ) -> AcquiredSource:
        try:
            files = self.store.list_source_files(job.address)
        except sqlite3.Error as e:
            raise FatalWorkerError(f"Job store unavailable: {e}") from e
        if not files:
            raise TerminalSourceError(f"No source files uploaded for {job.address}")

        code_dir = src_dir / profile.source_subdir if profile.source_subdir else src_dir
        try:
            code_dir.mkdir(parents=True, exist_ok=True)
            for f in files:
                # Filenames are validated on upload; refuse anything with a path part.
                if Path(f.filename).name != f.filename:
                    raise TerminalSourceError(f"Invalid source filename: {f.filename!r}")
                target = src_dir / f.filename if f.is_lockfile else code_dir / f.filename
                target.write_text(f.content, encoding="utf-8")
            if profile.required_dependencies:
                (src_dir / "package.json").write_text(
                    render_package_json(job), encoding="utf-8"
                )
        except OSError as e:
            raise TerminalSourceError(f"Failed to write source files: {e}") from e

        try:
            deleted = self.store.delete_source_files(job.address)
        except sqlite3.Error as e:
            raise FatalWorkerError(f"Job store unavailable: {e}") from e
        logger.info(f"Wrote {len(files)} uploaded files for {job.address} ({deleted} rows consumed)")
        return AcquiredSource(path=src_dir)

    # ── Repository ───────────────────────────────────────────────────────

    async def _acquire_repo(self, locator: RepoLocator, src_dir: Path) -> AcquiredSource:
        repo = await self.repo_host.get_repo(locator.repo_name)
        if repo.size > self.max_repo_size_kb:
            raise TerminalSourceError(
                f"Repository {locator.repo_name} is {repo.size} KB, "
                f"limit is {self.max_repo_size_kb} KB"
            )

        # An explicit branch must exist even when a commit is pinned.
        head = None
        if locator.branch or not locator.pinned_commit:
            branch = locator.branch or repo.default_branch
            head = await self.repo_host.resolve_branch(locator.repo_name, branch)
        commit = locator.pinned_commit or head

        url = self.repo_host.clone_url(locator.repo_name)
        logger.info(f"Cloning {url} at {commit}")
        resolved = await asyncio.to_thread(clone_at_commit, url, src_dir, commit)
        if self.fix_permissions:
            await asyncio.to_thread(chown_recursive, src_dir, self.uid, self.gid)
        return AcquiredSource(path=src_dir, git_commit=resolved, license=repo.license_id)
