"""
Schema — Pydantic models for verification jobs and uploaded source files.

The status enum is closed and used everywhere in code; the legacy
lowercase strings appear only when a record crosses the store boundary
(``status_to_store`` / ``status_from_store``).
"""
from datetime import datetime, timezone
from enum import Enum, unique
from typing import Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field

from contract_verifier.core.content_id import ContentEncoding


# ── Status ───────────────────────────────────────────────────────────────────

@unique
class JobStatus(str, Enum):
    """Verification job lifecycle."""
    PENDING = "PENDING"          # upload mode, files still arriving
    QUEUED = "QUEUED"
    IN_PROGRESS = "IN_PROGRESS"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"
    NOT_MATCH = "NOT_MATCH"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({JobStatus.SUCCESS, JobStatus.FAILED, JobStatus.NOT_MATCH})
RETRYABLE_STATUSES = frozenset({JobStatus.FAILED, JobStatus.NOT_MATCH})

_STATUS_TO_STORE: Dict[JobStatus, str] = {
    JobStatus.PENDING: "pending",
    JobStatus.QUEUED: "queued",
    JobStatus.IN_PROGRESS: "in progress",
    JobStatus.SUCCESS: "success",
    JobStatus.FAILED: "failed",
    JobStatus.NOT_MATCH: "not match",
}
_STATUS_FROM_STORE: Dict[str, JobStatus] = {v: k for k, v in _STATUS_TO_STORE.items()}


def status_to_store(status: JobStatus) -> str:
    return _STATUS_TO_STORE[JobStatus(status)]


def status_from_store(value: str) -> JobStatus:
    try:
        return _STATUS_FROM_STORE[value]
    except KeyError:
        raise ValueError(f"Unknown stored job status: {value!r}") from None


# ── Source locators ──────────────────────────────────────────────────────────

class UploadLocator(BaseModel):
    """Source comes from the uploaded-file collection for the address."""
    kind: Literal["upload"] = "upload"


class RepoLocator(BaseModel):
    """Source comes from a GitHub repository at a resolved commit."""
    kind: Literal["repo"] = "repo"
    repo_name: str                        # "owner/repo"
    branch: Optional[str] = None          # None → repository default branch
    pinned_commit: Optional[str] = None   # overrides the branch head when set


SourceLocator = Union[UploadLocator, RepoLocator]


# ── Toolchain ────────────────────────────────────────────────────────────────

class StripTool(str, Enum):
    WABT = "wabt"
    WASM_TOOLS = "wasm-tools"


class ToolchainSpec(BaseModel):
    """Toolchain selection recorded on the job at submission time."""
    language: str                                          # "golang" | "assemblyscript"
    version: str                                           # compiler / image release
    dependencies: Dict[str, str] = Field(default_factory=dict)
    strip_tool: Optional[StripTool] = None
    content_encoding: ContentEncoding = ContentEncoding.RAW


# ── Records ──────────────────────────────────────────────────────────────────

def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class VerificationJob(BaseModel):
    """One verification request, keyed by contract address."""

    address: str
    expected_content_id: str
    source: SourceLocator = Field(discriminator="kind")
    toolchain: ToolchainSpec
    status: JobStatus = JobStatus.PENDING
    username: Optional[str] = None

    requested_at: datetime = Field(default_factory=utcnow)
    verified_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None

    exports: Optional[List[str]] = None
    license: Optional[str] = None
    verifier_identity: Optional[str] = None
    git_commit: Optional[str] = None

    @property
    def is_repo(self) -> bool:
        return isinstance(self.source, RepoLocator)


class SourceFile(BaseModel):
    """An uploaded source file, unique on (address, filename)."""
    address: str
    filename: str
    content: str
    is_lockfile: bool = False


class ContractInfo(BaseModel):
    """Read model served to the status-lookup API."""
    address: str
    code: str
    status: str                           # legacy store string
    username: Optional[str] = None
    request_ts: datetime
    verified_ts: Optional[datetime] = None
    exports: Optional[List[str]] = None
    files: List[str] = Field(default_factory=list)
    lockfile: Optional[str] = None
    license: Optional[str] = None
    lang: str
    repo_name: Optional[str] = None
    repo_branch: Optional[str] = None
    git_commit: Optional[str] = None
    tinygo_version: Optional[str] = None
    strip_tool: Optional[str] = None
    dependencies: Dict[str, str] = Field(default_factory=dict)
