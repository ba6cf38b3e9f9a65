"""
Shared pytest fixtures for contract_verifier tests.

Provides:
  - wasm modules assembled on the fly with ``wasmtime.wat2wasm``
  - a temporary SQLite job store and matching ``Settings``
  - fakes for the container runtime and the repository host, so the
    worker pipeline runs without docker or network access
  - a local git repository fixture (skipped when git is unavailable)
"""
import shutil
import subprocess
import textwrap
from pathlib import Path
from typing import Dict, List, Optional

import pytest
import wasmtime

from contract_verifier.config import Settings
from contract_verifier.core.repo_host import RepoInfo, RepoLicense
from contract_verifier.core.sandbox import SandboxSpec
from contract_verifier.errors import SandboxStartError, TerminalSourceError
from contract_verifier.io.storage import JobStore

# Contract-shaped module: runtime hooks plus two public entry points.
CONTRACT_WAT = textwrap.dedent("""\
    (module
      (memory (export "memory") 1)
      (global (export "counter") (mut i32) (i32.const 0))
      (func (export "_initialize"))
      (func (export "alloc") (param i32) (result i32) (local.get 0))
      (func (export "entrypoint") (result i32) (i32.const 1))
      (func (export "hello_world") (result i32) (i32.const 2))
    )
""")

# Same exports, different body → different bytes, different CID.
OTHER_WAT = CONTRACT_WAT.replace("(i32.const 2)", "(i32.const 3)")


@pytest.fixture(scope="session")
def contract_wasm() -> bytes:
    return bytes(wasmtime.wat2wasm(CONTRACT_WAT))


@pytest.fixture(scope="session")
def other_wasm() -> bytes:
    return bytes(wasmtime.wat2wasm(OTHER_WAT))


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        _env_file=None,
        DB_PATH=str(tmp_path / "db" / "verifier.db"),
        SRC_DIR=str(tmp_path / "src"),
        OUTPUT_DIR=str(tmp_path / "out"),
        NETWORK_BACKOFF_SECONDS=600.0,
        SHORT_BACKOFF_SECONDS=60.0,
    )


@pytest.fixture
def store(settings):
    s = JobStore(Path(settings.DB_PATH))
    yield s
    s.close()


# ── Fakes ────────────────────────────────────────────────────────────────────

class FakeRuntime:
    """ContainerRuntime that "builds" by writing fixed bytes to the output mount."""

    def __init__(self, artifact: Optional[bytes] = None, exit_code: int = 0, fail_start: bool = False):
        self.artifact = artifact
        self.exit_code = exit_code
        self.fail_start = fail_start
        self.specs: List[SandboxSpec] = []
        self.seen_sources: List[List[str]] = []

    def run(self, spec: SandboxSpec) -> int:
        self.specs.append(spec)
        if self.fail_start:
            raise SandboxStartError("no such image")
        mounts = {target: Path(host) for host, target in spec.mounts.items()}
        src = next(p for t, p in mounts.items() if t != "/out")
        self.seen_sources.append(
            sorted(str(p.relative_to(src)) for p in src.rglob("*") if p.is_file())
        )
        if self.artifact is not None:
            (mounts["/out"] / "build.wasm").write_bytes(self.artifact)
        return self.exit_code


class FakeRepoHost:
    """RepoHost backed by in-memory metadata and a local clone URL."""

    def __init__(
        self,
        size: int = 100,
        default_branch: str = "main",
        branches: Optional[Dict[str, str]] = None,
        clone_from: Optional[Path] = None,
        failures: Optional[List[Exception]] = None,
        license_id: Optional[str] = "MIT",
    ):
        self.size = size
        self.default_branch = default_branch
        self.branches = branches or {}
        self.clone_from = clone_from
        self.failures = list(failures or [])
        self.license_id = license_id
        self.repo_calls = 0
        self.branch_calls: List[str] = []

    async def get_repo(self, repo_name: str) -> RepoInfo:
        self.repo_calls += 1
        if self.failures:
            raise self.failures.pop(0)
        return RepoInfo(
            full_name=repo_name,
            default_branch=self.default_branch,
            size=self.size,
            license=RepoLicense(spdx_id=self.license_id) if self.license_id else None,
        )

    async def resolve_branch(self, repo_name: str, branch: str) -> str:
        self.branch_calls.append(branch)
        if branch not in self.branches:
            raise TerminalSourceError(f"Branch not found: {branch}")
        return self.branches[branch]

    def clone_url(self, repo_name: str) -> str:
        return str(self.clone_from) if self.clone_from else f"/nonexistent/{repo_name}"


@pytest.fixture
def fake_runtime(contract_wasm):
    return FakeRuntime(artifact=contract_wasm)


class RecordingSleep:
    """Stand-in for asyncio.sleep that records delays instead of waiting."""

    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


@pytest.fixture
def recording_sleep():
    return RecordingSleep()


# ── Git fixture ──────────────────────────────────────────────────────────────

def _git(cwd: Path, *args: str) -> str:
    result = subprocess.run(
        ["git", *args], cwd=str(cwd), capture_output=True, text=True, check=True,
    )
    return result.stdout.strip()


@pytest.fixture
def git_repo(tmp_path):
    """
    Local repository with two commits on ``main``.

    Returns (path, first_commit, second_commit).
    """
    if shutil.which("git") is None:
        pytest.skip("git not available")
    repo = tmp_path / "upstream"
    (repo / "contract").mkdir(parents=True)
    _git(repo, "init", "-q", "-b", "main")
    _git(repo, "config", "user.email", "dev@example.com")
    _git(repo, "config", "user.name", "dev")
    (repo / "contract" / "main.go").write_text("package main\n// v1\n")
    _git(repo, "add", ".")
    _git(repo, "commit", "-q", "-m", "v1")
    first = _git(repo, "rev-parse", "HEAD")
    (repo / "contract" / "main.go").write_text("package main\n// v2\n")
    _git(repo, "commit", "-q", "-am", "v2")
    second = _git(repo, "rev-parse", "HEAD")
    return repo, first, second
