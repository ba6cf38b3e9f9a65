"""Exception taxonomy for the verification pipeline.

The worker maps every exception class here onto exactly one outcome:
terminal (job ``FAILED``), transient (sleep and retry the same job) or
fatal (halt the worker until the next ``notify()``).
"""

from __future__ import annotations

from enum import Enum


class BackoffKind(str, Enum):
    """Which retry-policy backoff applies to a transient failure."""
    NETWORK = "network"
    SHORT = "short"


class VerifierError(Exception):
    """Base exception for contract_verifier."""


# ── Pipeline errors ──────────────────────────────────────────────────────────

class TerminalSourceError(VerifierError):
    """Source cannot be acquired and retrying will not help."""


class TransientSourceError(VerifierError):
    """Source acquisition failed for a reason that may go away."""

    def __init__(self, message: str, backoff: BackoffKind = BackoffKind.NETWORK):
        self.backoff = backoff
        super().__init__(message)


class SandboxStartError(VerifierError):
    """The build container could not be created or started."""


class PostProcessError(VerifierError):
    """A requested strip step failed or left no output."""


class ExportParseError(VerifierError):
    """Bytes are not a valid wasm module."""


class FatalWorkerError(VerifierError):
    """The worker cannot continue (store unreachable, base dirs missing)."""


# ── Submission errors ────────────────────────────────────────────────────────

class SubmissionError(VerifierError):
    """A submission or upload was rejected."""


class NotFoundError(SubmissionError):
    """No contract or job for the given address."""

    def __init__(self, resource: str, identifier: str):
        self.resource = resource
        self.identifier = identifier
        super().__init__(f"{resource} not found: {identifier}")


class JobConflictError(SubmissionError):
    """A non-terminal or successful job already exists for the address."""


class CooldownActiveError(SubmissionError):
    """A failed job was resubmitted before its cooldown elapsed."""

    def __init__(self, address: str, retry_after_seconds: int):
        self.address = address
        self.retry_after_seconds = retry_after_seconds
        super().__init__(
            f"Verification for {address} failed recently, "
            f"retry in {retry_after_seconds}s"
        )
