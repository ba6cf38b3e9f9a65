"""
test_storage — SQLite job and source-file store.

Properties:
  - Jobs round-trip through the store with their locator variant intact.
  - Status is persisted as the legacy lowercase string.
  - next_queued is FIFO on requested_at, ties broken by address.
  - Terminal statuses stamp finished_at; mark_success keeps an existing
    license when the build learned none.
  - (address, filename) is unique for source files.
"""
import sqlite3
from datetime import datetime, timedelta, timezone

import pytest

from contract_verifier.core.content_id import ContentEncoding
from contract_verifier.io.schema import (
    JobStatus,
    RepoLocator,
    SourceFile,
    ToolchainSpec,
    UploadLocator,
    VerificationJob,
    status_from_store,
    status_to_store,
)

T0 = datetime(2025, 1, 1, tzinfo=timezone.utc)


def make_job(address, status=JobStatus.QUEUED, requested_at=T0, **kw):
    return VerificationJob(
        address=address,
        expected_content_id="bafkreihdwdcefgh4dqkjv67uzcmw7ojee6xedzdetojuzjevtenxquvyku",
        source=kw.pop("source", RepoLocator(repo_name="owner/repo", branch="main")),
        toolchain=ToolchainSpec(language="golang", version="0.38.0"),
        status=status,
        requested_at=requested_at,
        **kw,
    )


class TestStatusMapping:

    def test_legacy_strings(self):
        assert status_to_store(JobStatus.IN_PROGRESS) == "in progress"
        assert status_to_store(JobStatus.NOT_MATCH) == "not match"
        assert status_from_store("queued") is JobStatus.QUEUED

    def test_unknown_string(self):
        with pytest.raises(ValueError):
            status_from_store("done")

    def test_stored_as_legacy_string(self, store):
        store.upsert_job(make_job("vsc1a", status=JobStatus.IN_PROGRESS))
        row = store._get_connection().execute(
            "SELECT status FROM jobs WHERE address = ?", ("vsc1a",)
        ).fetchone()
        assert row[0] == "in progress"


class TestJobs:

    def test_round_trip_repo_locator(self, store):
        store.upsert_job(make_job("vsc1a", username="alice", license="MIT"))
        job = store.get_job("vsc1a")
        assert isinstance(job.source, RepoLocator)
        assert job.source.repo_name == "owner/repo"
        assert job.requested_at == T0
        assert job.username == "alice"
        assert job.toolchain.content_encoding == ContentEncoding.RAW

    def test_round_trip_upload_locator(self, store):
        store.upsert_job(make_job("vsc1a", source=UploadLocator()))
        assert isinstance(store.get_job("vsc1a").source, UploadLocator)

    def test_missing(self, store):
        assert store.get_job("nope") is None

    def test_upsert_replaces(self, store):
        store.upsert_job(make_job("vsc1a", status=JobStatus.FAILED))
        store.upsert_job(make_job("vsc1a", status=JobStatus.QUEUED))
        assert store.get_job("vsc1a").status == JobStatus.QUEUED
        assert len(store.list_jobs()) == 1

    def test_next_queued_fifo(self, store):
        store.upsert_job(make_job("vsc1late", requested_at=T0 + timedelta(seconds=5)))
        store.upsert_job(make_job("vsc1early", requested_at=T0))
        store.upsert_job(make_job("vsc1pending", status=JobStatus.PENDING, requested_at=T0 - timedelta(days=1)))
        assert store.next_queued().address == "vsc1early"

    def test_next_queued_tie_breaks_on_address(self, store):
        store.upsert_job(make_job("vsc1b"))
        store.upsert_job(make_job("vsc1a"))
        assert store.next_queued().address == "vsc1a"

    def test_next_queued_empty(self, store):
        store.upsert_job(make_job("vsc1a", status=JobStatus.SUCCESS))
        assert store.next_queued() is None

    def test_terminal_status_sets_finished_at(self, store):
        store.upsert_job(make_job("vsc1a"))
        store.set_status("vsc1a", JobStatus.IN_PROGRESS)
        assert store.get_job("vsc1a").finished_at is None
        store.set_status("vsc1a", JobStatus.NOT_MATCH)
        job = store.get_job("vsc1a")
        assert job.status == JobStatus.NOT_MATCH
        assert job.finished_at is not None

    def test_mark_success(self, store):
        store.upsert_job(make_job("vsc1a", license="Apache-2.0"))
        store.mark_success("vsc1a", ["entrypoint"], git_commit="abc123")
        job = store.get_job("vsc1a")
        assert job.status == JobStatus.SUCCESS
        assert job.exports == ["entrypoint"]
        assert job.git_commit == "abc123"
        assert job.license == "Apache-2.0"
        assert job.verified_at is not None

    def test_mark_success_without_exports(self, store):
        store.upsert_job(make_job("vsc1a"))
        store.mark_success("vsc1a", None, license="MIT")
        job = store.get_job("vsc1a")
        assert job.exports is None
        assert job.license == "MIT"

    def test_list_jobs_by_status(self, store):
        store.upsert_job(make_job("vsc1a", status=JobStatus.IN_PROGRESS))
        store.upsert_job(make_job("vsc1b"))
        stuck = store.list_jobs(status=JobStatus.IN_PROGRESS)
        assert [j.address for j in stuck] == ["vsc1a"]

    def test_delete(self, store):
        store.upsert_job(make_job("vsc1a"))
        store.delete_job("vsc1a")
        assert store.get_job("vsc1a") is None


class TestSourceFiles:

    def test_add_and_list(self, store):
        store.add_source_file(SourceFile(address="vsc1a", filename="b.ts", content="b"))
        store.add_source_file(SourceFile(address="vsc1a", filename="a.ts", content="a"))
        store.add_source_file(SourceFile(address="vsc1b", filename="a.ts", content="other"))
        files = store.list_source_files("vsc1a")
        assert [f.filename for f in files] == ["a.ts", "b.ts"]
        assert store.count_source_files("vsc1a") == 2
        assert store.get_source_file("vsc1a", "b.ts").content == "b"

    def test_duplicate_filename_rejected(self, store):
        store.add_source_file(SourceFile(address="vsc1a", filename="a.ts", content="a"))
        with pytest.raises(sqlite3.IntegrityError):
            store.add_source_file(SourceFile(address="vsc1a", filename="a.ts", content="again"))

    def test_lockfile_flag(self, store):
        store.add_source_file(
            SourceFile(address="vsc1a", filename="pnpm-lock.yaml", content="x", is_lockfile=True)
        )
        assert store.list_source_files("vsc1a")[0].is_lockfile is True

    def test_delete(self, store):
        store.add_source_file(SourceFile(address="vsc1a", filename="a.ts", content="a"))
        store.add_source_file(SourceFile(address="vsc1a", filename="b.ts", content="b"))
        assert store.delete_source_files("vsc1a") == 2
        assert store.count_source_files("vsc1a") == 0
        assert store.get_source_file("vsc1a", "a.ts") is None
