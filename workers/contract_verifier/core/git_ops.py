"""
Git helpers — clone a repository and pin it to one commit.

Thin wrappers over the ``git`` CLI; every failure is reported as a
transient source error so the worker retries the job later.
"""
import logging
import subprocess
from pathlib import Path
from typing import List, Optional, Tuple

from contract_verifier.errors import BackoffKind, TerminalSourceError, TransientSourceError

logger = logging.getLogger(__name__)

GIT_TIMEOUT = 300


def _run_git(args: List[str], cwd: Optional[Path] = None, timeout: int = GIT_TIMEOUT) -> Tuple[str, str, int]:
    """Run ``git <args>`` and return (stdout, stderr, exit_code)."""
    cmd = ["git", *args]
    try:
        result = subprocess.run(
            cmd,
            cwd=str(cwd) if cwd else None,
            capture_output=True,
            text=True,
            timeout=timeout,
        )
        return result.stdout, result.stderr, result.returncode
    except subprocess.TimeoutExpired:
        return "", f"Command timed out after {timeout}s", -1
    except OSError as e:
        return "", str(e), -1


def clone_at_commit(url: str, target_dir: Path, commit: str) -> str:
    """
    Clone *url* into *target_dir* and check out *commit* (detached HEAD).

    A commit the clone does not contain is terminal; clone and checkout
    failures are transient.

    *target_dir* must be empty or absent. Returns the full commit hash that
    ended up checked out.
    """
    stdout, stderr, code = _run_git(["clone", "--no-checkout", url, str(target_dir)])
    if code != 0:
        raise TransientSourceError(f"Clone failed: {stderr.strip()}", BackoffKind.SHORT)

    stdout, stderr, code = _run_git(["cat-file", "-e", f"{commit}^{{commit}}"], cwd=target_dir)
    if code != 0:
        raise TerminalSourceError(f"Commit {commit} not found in {url}")

    stdout, stderr, code = _run_git(["checkout", "--detach", commit], cwd=target_dir)
    if code != 0:
        raise TransientSourceError(
            f"Checkout of {commit} failed: {stderr.strip()}", BackoffKind.SHORT
        )

    stdout, stderr, code = _run_git(["rev-parse", "HEAD"], cwd=target_dir)
    if code != 0:
        raise TransientSourceError(f"rev-parse failed: {stderr.strip()}", BackoffKind.SHORT)
    return stdout.strip()


def chown_recursive(path: Path, uid: int, gid: int) -> bool:
    """``chown -R uid:gid path``; returns False (and logs) on failure."""
    try:
        result = subprocess.run(
            ["chown", "-R", f"{uid}:{gid}", str(path)],
            capture_output=True,
            text=True,
            timeout=60,
        )
    except (OSError, subprocess.TimeoutExpired) as e:
        logger.warning(f"chown of {path} failed: {e}")
        return False
    if result.returncode != 0:
        logger.warning(f"chown of {path} failed: {result.stderr.strip()}")
        return False
    return True
