"""
Verification service — submission and status lookup for the HTTP layer.

Validates requests, keeps the one-live-job-per-address rule, and wakes the
worker when a job becomes QUEUED. Authentication and the lookup of the
on-chain content identifier happen in the caller.

Upload flow:  start_upload → upload_file (× n) → complete_upload
Repo flow:    submit_repo
"""
import logging
import re
import sqlite3
from datetime import timedelta
from typing import Callable, Dict, Iterable, Mapping, Optional, Union

from contract_verifier import VERIFIER_NAME
from contract_verifier.core.content_id import content_ids_equal
from contract_verifier.errors import (
    CooldownActiveError,
    JobConflictError,
    NotFoundError,
    SubmissionError,
)
from contract_verifier.io.schema import (
    RETRYABLE_STATUSES,
    ContractInfo,
    JobStatus,
    RepoLocator,
    SourceFile,
    StripTool,
    ToolchainSpec,
    UploadLocator,
    VerificationJob,
    status_to_store,
    utcnow,
)
from contract_verifier.io.storage import JobStore
from contract_verifier.policy.toolchain import (
    SOURCE_REPO,
    SOURCE_UPLOAD,
    ToolchainProfile,
    get_profile,
)

logger = logging.getLogger(__name__)

SUPPORTED_LICENSES = (
    "MIT",
    "Apache-2.0",
    "GPL-3.0-only",
    "GPL-3.0-or-later",
    "LGPL-3.0-only",
    "LGPL-3.0-or-later",
    "AGPL-3.0-only",
    "AGPL-3.0-or-later",
    "MPL 2.0",
    "BSL-1.0",
    "WTFPL",
    "Unlicense",
)

FILENAME_RE = re.compile(r"^[A-Za-z0-9._-]+$")
MAX_FILENAME_LENGTH = 50
MAX_FILE_SIZE = 1024 * 1024

REPO_URL_RE = re.compile(
    r"^(?:https?://)?(?:www\.)?github\.com/"
    r"(?P<owner>[A-Za-z0-9](?:[A-Za-z0-9-]{0,38}))/"
    r"(?P<repo>[A-Za-z0-9._-]+?)(?:\.git)?/?$"
)

# git ref name: no control chars, spaces or ~^:?*[\, no "..", "@{", "//",
# no leading "/" or "-", no trailing "/", "." or ".lock"
BRANCH_RE = re.compile(
    r"^(?![/-])(?!.*(?:\.\.|@\{|//|/\.|\.lock$|/$|\.$))[^\x00-\x20\x7f~^:?*\[\\]+$"
)
MAX_BRANCH_LENGTH = 255

# npm-style range: comparators joined by whitespace, "," or "||"
_PART = r"(?:0|[1-9]\d*|[xX*])"
_COMPARATOR = (
    rf"(?:\^|~|>=|<=|>|<|=)?\s*v?{_PART}(?:\.{_PART}){{0,2}}"
    r"(?:-[0-9A-Za-z.-]+)?(?:\+[0-9A-Za-z.-]+)?"
)
VERSION_RANGE_RE = re.compile(
    rf"^\s*{_COMPARATOR}(?:\s*(?:,|\|\||\s)\s*{_COMPARATOR})*\s*$"
)


def is_version_range(value: str) -> bool:
    """True for npm/semver range strings like ``^1.2.3`` or ``>=0.27 <0.28``."""
    return bool(VERSION_RANGE_RE.match(value))


def parse_repo_url(url: str) -> str:
    """``https://github.com/owner/repo`` → ``owner/repo``."""
    m = REPO_URL_RE.match(url.strip())
    if not m:
        raise SubmissionError(f"Not a GitHub repository URL: {url}")
    return f"{m.group('owner')}/{m.group('repo')}"


def validate_branch(branch: str) -> None:
    if len(branch) > MAX_BRANCH_LENGTH or not BRANCH_RE.match(branch):
        raise SubmissionError(f"Invalid branch name: {branch!r}")


def validate_filename(filename: str) -> None:
    if len(filename) > MAX_FILENAME_LENGTH:
        raise SubmissionError(
            f"Filename length must be at most {MAX_FILENAME_LENGTH} characters"
        )
    if not FILENAME_RE.match(filename) or filename in (".", ".."):
        raise SubmissionError("Invalid filename")


class VerificationService:
    """Submission-side operations over the job store."""

    def __init__(
        self,
        store: JobStore,
        notify: Callable[[], None],
        cooldown_seconds: int = 3600,
        licenses: Iterable[str] = SUPPORTED_LICENSES,
    ):
        self.store = store
        self._notify = notify
        self.cooldown = timedelta(seconds=cooldown_seconds)
        self.licenses = frozenset(licenses)

    @classmethod
    def from_settings(cls, settings, store: JobStore, notify: Callable[[], None]) -> "VerificationService":
        return cls(store, notify, cooldown_seconds=settings.RESUBMIT_COOLDOWN_SECONDS)

    # ── Checks ───────────────────────────────────────────────────────────

    def _profile(self, language: str, source_kind: str) -> ToolchainProfile:
        try:
            profile = get_profile(language)
        except KeyError:
            raise SubmissionError(f"Language {language} is unsupported") from None
        if profile.source_kind != source_kind:
            raise SubmissionError(f"Language {language} does not support {source_kind} submissions")
        return profile

    def _check_license(self, license: str) -> None:
        if license not in self.licenses:
            raise SubmissionError(f"License {license} is not supported.")

    def _check_dependencies(self, profile: ToolchainProfile, dependencies: Mapping[str, str]) -> Dict[str, str]:
        if not isinstance(dependencies, Mapping):
            raise SubmissionError("Dependencies must be an object")
        missing = sorted(profile.required_dependencies - set(dependencies))
        if missing:
            raise SubmissionError(f"Missing required dependencies: {', '.join(missing)}")
        for name, version in dependencies.items():
            if not isinstance(version, str):
                raise SubmissionError("Dependency versions must be strings")
            if not is_version_range(version):
                raise SubmissionError(f"Invalid version for {name}: {version}")
        return dict(dependencies)

    def _check_replaceable(self, address: str, expected_content_id: str) -> Optional[VerificationJob]:
        """
        Decide what an existing job means for a new submission.

        Returns the existing job when it already verified the same bytecode
        (nothing to rebuild), None when the submission may proceed.
        """
        existing = self.store.get_job(address)
        if existing is None or existing.status == JobStatus.PENDING:
            return None
        if existing.status == JobStatus.SUCCESS:
            if content_ids_equal(existing.expected_content_id, expected_content_id):
                return existing
            raise JobConflictError(f"Contract {address} is already verified.")
        if existing.status not in RETRYABLE_STATUSES:
            raise JobConflictError(f"Contract {address} is already being verified.")

        finished = existing.finished_at or existing.requested_at
        remaining = (finished + self.cooldown) - utcnow()
        if remaining.total_seconds() > 0:
            raise CooldownActiveError(address, int(remaining.total_seconds()) + 1)
        return None

    def _strip_tool(self, value) -> Optional[StripTool]:
        if not value:
            return None
        try:
            return StripTool(value)
        except ValueError:
            raise SubmissionError(f"Unsupported strip tool: {value}") from None

    def _require_job(self, address: str) -> VerificationJob:
        job = self.store.get_job(address)
        if job is None:
            raise NotFoundError("Contract", address)
        return job

    def _replace(self, job: VerificationJob) -> VerificationJob:
        self.store.delete_source_files(job.address)
        self.store.upsert_job(job)
        logger.info(f"Job {job.address}: {job.status.value} ({job.toolchain.language})")
        if job.status == JobStatus.QUEUED:
            self._notify()
        return job

    # ── Upload flow ──────────────────────────────────────────────────────

    def start_upload(
        self,
        address: str,
        expected_content_id: str,
        language: str,
        license: str,
        version: str,
        dependencies: Optional[Mapping[str, str]] = None,
        strip_tool: Optional[Union[StripTool, str]] = None,
        username: Optional[str] = None,
    ) -> VerificationJob:
        """Open a PENDING upload job, discarding any earlier attempt."""
        profile = self._profile(language, SOURCE_UPLOAD)
        self._check_license(license)
        if version not in profile.descriptors:
            raise SubmissionError(f"Unsupported {language} version {version}")
        deps = self._check_dependencies(profile, dependencies or {})
        strip = self._strip_tool(strip_tool)

        existing = self._check_replaceable(address, expected_content_id)
        if existing is not None:
            return existing

        job = VerificationJob(
            address=address,
            expected_content_id=expected_content_id,
            source=UploadLocator(),
            toolchain=ToolchainSpec(
                language=language,
                version=version,
                dependencies=deps,
                strip_tool=strip,
                content_encoding=profile.default_encoding,
            ),
            status=JobStatus.PENDING,
            username=username,
            license=license,
            verifier_identity=VERIFIER_NAME,
        )
        return self._replace(job)

    def upload_file(
        self,
        address: str,
        filename: str,
        content: Union[bytes, str],
        is_lockfile: bool = False,
    ) -> SourceFile:
        raw = content.encode("utf-8") if isinstance(content, str) else content
        if len(raw) > MAX_FILE_SIZE:
            raise SubmissionError("Uploaded file size exceeds 1MB limit")
        try:
            text = raw.decode("utf-8")
        except UnicodeDecodeError:
            raise SubmissionError("Uploaded file is not valid UTF-8") from None
        validate_filename(filename)

        job = self.store.get_job(address)
        if job is None:
            raise NotFoundError("Pending verification", address)
        if job.status != JobStatus.PENDING:
            raise SubmissionError(
                f"Status needs to be pending, it is currently {status_to_store(job.status)}"
            )
        profile = get_profile(job.toolchain.language)
        if is_lockfile:
            if filename not in profile.lockfile_names:
                raise SubmissionError(f"{filename} is not a lockfile name for {profile.language}")
        elif filename in profile.reserved_filenames:
            raise SubmissionError(f"{filename} is a reserved filename.")

        source_file = SourceFile(address=address, filename=filename, content=text, is_lockfile=is_lockfile)
        try:
            self.store.add_source_file(source_file)
        except sqlite3.IntegrityError as e:
            raise SubmissionError(f"File {filename} was already uploaded") from e
        logger.debug(f"Stored {filename} for {address} ({len(raw)} bytes)")
        return source_file

    def complete_upload(self, address: str) -> VerificationJob:
        """PENDING → QUEUED once at least one file is stored."""
        job = self._require_job(address)
        if job.status != JobStatus.PENDING:
            raise SubmissionError("Status is currently not pending upload")
        if self.store.count_source_files(address) < 1:
            raise SubmissionError("No source files were uploaded for this contract")
        self.store.set_status(address, JobStatus.QUEUED)
        logger.info(f"Job {address}: {JobStatus.QUEUED.value}")
        self._notify()
        return job.model_copy(update={"status": JobStatus.QUEUED})

    # ── Repository flow ──────────────────────────────────────────────────

    def submit_repo(
        self,
        address: str,
        expected_content_id: str,
        repo_url: str,
        version: str,
        license: Optional[str] = None,
        branch: Optional[str] = None,
        commit: Optional[str] = None,
        strip_tool: Optional[Union[StripTool, str]] = None,
        language: str = "golang",
        username: Optional[str] = None,
    ) -> VerificationJob:
        """Queue a build of a GitHub repository."""
        profile = self._profile(language, SOURCE_REPO)
        repo_name = parse_repo_url(repo_url)
        if license is not None:
            self._check_license(license)
        try:
            deps = profile.descriptor(version)
        except KeyError:
            raise SubmissionError(
                f"Unsupported {language} version {version}; "
                f"supported: {', '.join(profile.supported_versions)}"
            ) from None
        if branch is not None:
            validate_branch(branch)
        if commit is not None and not re.fullmatch(r"[0-9a-fA-F]{7,40}", commit):
            raise SubmissionError(f"Invalid commit hash: {commit}")
        strip = self._strip_tool(strip_tool)

        existing = self._check_replaceable(address, expected_content_id)
        if existing is not None:
            return existing

        job = VerificationJob(
            address=address,
            expected_content_id=expected_content_id,
            source=RepoLocator(repo_name=repo_name, branch=branch, pinned_commit=commit),
            toolchain=ToolchainSpec(
                language=language,
                version=version,
                dependencies=deps,
                strip_tool=strip,
                content_encoding=profile.default_encoding,
            ),
            status=JobStatus.QUEUED,
            username=username,
            license=license,
            verifier_identity=VERIFIER_NAME,
        )
        return self._replace(job)

    # ── Read side ────────────────────────────────────────────────────────

    def contract_info(self, address: str) -> ContractInfo:
        job = self._require_job(address)
        files = self.store.list_source_files(address)
        lockfile = next((f.filename for f in files if f.is_lockfile), None)
        source = job.source
        return ContractInfo(
            address=job.address,
            code=job.expected_content_id,
            status=status_to_store(job.status),
            username=job.username,
            request_ts=job.requested_at,
            verified_ts=job.verified_at,
            exports=job.exports,
            files=[f.filename for f in files if not f.is_lockfile],
            lockfile=lockfile,
            license=job.license,
            lang=job.toolchain.language,
            repo_name=source.repo_name if isinstance(source, RepoLocator) else None,
            repo_branch=source.branch if isinstance(source, RepoLocator) else None,
            git_commit=job.git_commit,
            tinygo_version=job.toolchain.version if job.toolchain.language == "golang" else None,
            strip_tool=job.toolchain.strip_tool.value if job.toolchain.strip_tool else None,
            dependencies=job.toolchain.dependencies,
        )
