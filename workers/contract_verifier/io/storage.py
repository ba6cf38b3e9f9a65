"""Storage module for verification jobs and uploaded source files."""

import json
import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional

from pydantic import TypeAdapter

from .schema import (
    JobStatus,
    SourceFile,
    SourceLocator,
    ToolchainSpec,
    VerificationJob,
    status_from_store,
    status_to_store,
    utcnow,
)

_source_adapter: TypeAdapter = TypeAdapter(SourceLocator)

# Fixed-width UTC timestamps so that text ordering is time ordering.
TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"


def _ts(dt: Optional[datetime]) -> Optional[str]:
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).strftime(TIMESTAMP_FORMAT)


def _parse_ts(value: Optional[str]) -> Optional[datetime]:
    if value is None:
        return None
    return datetime.strptime(value, TIMESTAMP_FORMAT).replace(tzinfo=timezone.utc)


class JobStore:
    """SQLite-backed job and source-file storage with thread-safe operations.

    Every public method is one atomic statement (or one transaction);
    nothing spans pipeline steps.
    """

    def __init__(self, db_path: Path):
        """Initialize job store.

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = Path(db_path)
        self._local = threading.local()
        self._init_db()

    def _get_connection(self) -> sqlite3.Connection:
        """Get thread-local database connection."""
        if not hasattr(self._local, "conn") or self._local.conn is None:
            self._local.conn = sqlite3.connect(
                str(self.db_path),
                check_same_thread=False,
                timeout=30,
            )
            self._local.conn.row_factory = sqlite3.Row
        return self._local.conn

    @contextmanager
    def _cursor(self):
        """Context manager for database cursor with auto-commit."""
        conn = self._get_connection()
        cursor = conn.cursor()
        try:
            yield cursor
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            cursor.close()

    def _init_db(self):
        """Initialize database schema."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        with self._cursor() as cursor:
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS jobs (
                    address TEXT PRIMARY KEY,
                    status TEXT NOT NULL,
                    expected_content_id TEXT NOT NULL,
                    source_json TEXT NOT NULL,
                    toolchain_json TEXT NOT NULL,
                    requested_at TEXT NOT NULL,
                    verified_at TEXT,
                    finished_at TEXT,
                    exports_json TEXT,
                    license TEXT,
                    verifier_identity TEXT,
                    git_commit TEXT,
                    username TEXT
                )
            """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS source_files (
                    address TEXT NOT NULL,
                    filename TEXT NOT NULL,
                    content TEXT NOT NULL,
                    is_lockfile INTEGER NOT NULL DEFAULT 0,
                    UNIQUE (address, filename)
                )
            """)

            cursor.execute("""
                CREATE INDEX IF NOT EXISTS idx_jobs_status ON jobs(status)
            """)
            cursor.execute("""
                CREATE INDEX IF NOT EXISTS idx_jobs_status_requested
                ON jobs(status, requested_at)
            """)

    def close(self):
        """Close the calling thread's connection."""
        conn = getattr(self._local, "conn", None)
        if conn is not None:
            conn.close()
            self._local.conn = None

    # ── Jobs ─────────────────────────────────────────────────────────────

    def upsert_job(self, job: VerificationJob) -> None:
        """Insert *job*, replacing any existing record for the address."""
        with self._cursor() as cursor:
            cursor.execute("""
                INSERT OR REPLACE INTO jobs (
                    address, status, expected_content_id, source_json,
                    toolchain_json, requested_at, verified_at, finished_at,
                    exports_json, license, verifier_identity, git_commit,
                    username
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, (
                job.address,
                status_to_store(job.status),
                job.expected_content_id,
                job.source.model_dump_json(),
                job.toolchain.model_dump_json(),
                _ts(job.requested_at),
                _ts(job.verified_at),
                _ts(job.finished_at),
                json.dumps(job.exports) if job.exports is not None else None,
                job.license,
                job.verifier_identity,
                job.git_commit,
                job.username,
            ))

    def get_job(self, address: str) -> Optional[VerificationJob]:
        with self._cursor() as cursor:
            cursor.execute("SELECT * FROM jobs WHERE address = ?", (address,))
            row = cursor.fetchone()
        return self._row_to_job(row) if row else None

    def delete_job(self, address: str) -> None:
        with self._cursor() as cursor:
            cursor.execute("DELETE FROM jobs WHERE address = ?", (address,))

    def next_queued(self) -> Optional[VerificationJob]:
        """Oldest queued job; ties on ``requested_at`` break on address."""
        with self._cursor() as cursor:
            cursor.execute("""
                SELECT * FROM jobs WHERE status = ?
                ORDER BY requested_at ASC, address ASC LIMIT 1
            """, (status_to_store(JobStatus.QUEUED),))
            row = cursor.fetchone()
        return self._row_to_job(row) if row else None

    def list_jobs(
        self,
        status: Optional[JobStatus] = None,
        limit: int = 100,
    ) -> List[VerificationJob]:
        """List jobs oldest first, optionally filtered by status."""
        with self._cursor() as cursor:
            if status:
                cursor.execute("""
                    SELECT * FROM jobs WHERE status = ?
                    ORDER BY requested_at ASC, address ASC LIMIT ?
                """, (status_to_store(status), limit))
            else:
                cursor.execute("""
                    SELECT * FROM jobs
                    ORDER BY requested_at ASC, address ASC LIMIT ?
                """, (limit,))
            rows = cursor.fetchall()
        return [self._row_to_job(row) for row in rows]

    def set_status(self, address: str, status: JobStatus) -> None:
        """Update status; terminal statuses also stamp ``finished_at``."""
        status = JobStatus(status)
        updates = ["status = ?"]
        params: list = [status_to_store(status)]

        if status.is_terminal:
            updates.append("finished_at = ?")
            params.append(_ts(utcnow()))
        else:
            updates.append("finished_at = NULL")

        params.append(address)
        with self._cursor() as cursor:
            cursor.execute(
                f"UPDATE jobs SET {', '.join(updates)} WHERE address = ?",
                params,
            )

    def mark_success(
        self,
        address: str,
        exports: Optional[List[str]],
        git_commit: Optional[str] = None,
        license: Optional[str] = None,
        verified_at: Optional[datetime] = None,
    ) -> None:
        """Record a matching build in one statement."""
        verified_at = verified_at or utcnow()
        with self._cursor() as cursor:
            cursor.execute("""
                UPDATE jobs SET
                    status = ?,
                    verified_at = ?,
                    finished_at = ?,
                    exports_json = ?,
                    git_commit = COALESCE(?, git_commit),
                    license = COALESCE(?, license)
                WHERE address = ?
            """, (
                status_to_store(JobStatus.SUCCESS),
                _ts(verified_at),
                _ts(verified_at),
                json.dumps(exports) if exports is not None else None,
                git_commit,
                license,
                address,
            ))

    def _row_to_job(self, row: sqlite3.Row) -> VerificationJob:
        """Convert database row to VerificationJob."""
        return VerificationJob(
            address=row["address"],
            expected_content_id=row["expected_content_id"],
            source=_source_adapter.validate_json(row["source_json"]),
            toolchain=ToolchainSpec.model_validate_json(row["toolchain_json"]),
            status=status_from_store(row["status"]),
            requested_at=_parse_ts(row["requested_at"]),
            verified_at=_parse_ts(row["verified_at"]),
            finished_at=_parse_ts(row["finished_at"]),
            exports=json.loads(row["exports_json"]) if row["exports_json"] else None,
            license=row["license"],
            verifier_identity=row["verifier_identity"],
            git_commit=row["git_commit"],
            username=row["username"],
        )

    # ── Source files ─────────────────────────────────────────────────────

    def add_source_file(self, source_file: SourceFile) -> None:
        """Insert an uploaded file.

        Raises sqlite3.IntegrityError when (address, filename) exists.
        """
        with self._cursor() as cursor:
            cursor.execute("""
                INSERT INTO source_files (address, filename, content, is_lockfile)
                VALUES (?, ?, ?, ?)
            """, (
                source_file.address,
                source_file.filename,
                source_file.content,
                int(source_file.is_lockfile),
            ))

    def list_source_files(self, address: str) -> List[SourceFile]:
        with self._cursor() as cursor:
            cursor.execute("""
                SELECT * FROM source_files WHERE address = ?
                ORDER BY filename ASC
            """, (address,))
            rows = cursor.fetchall()
        return [
            SourceFile(
                address=row["address"],
                filename=row["filename"],
                content=row["content"],
                is_lockfile=bool(row["is_lockfile"]),
            )
            for row in rows
        ]

    def get_source_file(self, address: str, filename: str) -> Optional[SourceFile]:
        with self._cursor() as cursor:
            cursor.execute(
                "SELECT * FROM source_files WHERE address = ? AND filename = ?",
                (address, filename),
            )
            row = cursor.fetchone()
        if not row:
            return None
        return SourceFile(
            address=row["address"],
            filename=row["filename"],
            content=row["content"],
            is_lockfile=bool(row["is_lockfile"]),
        )

    def count_source_files(self, address: str) -> int:
        with self._cursor() as cursor:
            cursor.execute(
                "SELECT COUNT(*) FROM source_files WHERE address = ?",
                (address,),
            )
            return cursor.fetchone()[0]

    def delete_source_files(self, address: str) -> int:
        with self._cursor() as cursor:
            cursor.execute("DELETE FROM source_files WHERE address = ?", (address,))
            return cursor.rowcount
