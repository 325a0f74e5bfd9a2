"""Tests for background ingestion jobs."""
import pytest

from schemeqa.errors import JobNotFoundError, SchemeNotFoundError


class TestIngestionJobs:
    def test_job_completes_with_report(self, services, scheme, scholarship_pdf):
        job = services.jobs.submit(scheme.id, str(scholarship_pdf))
        assert job.status in ("pending", "running", "completed")

        done = services.jobs.wait(job.id, timeout=30)

        assert done.status == "completed"
        assert done.report.success
        assert done.started_at is not None and done.finished_at is not None
        data = done.to_dict()
        assert data["type"] == "ingest"
        assert data["report"]["chunksCreated"] == done.report.chunks_created

    def test_unknown_scheme_is_rejected_before_queueing(self, services, scholarship_pdf):
        with pytest.raises(SchemeNotFoundError):
            services.jobs.submit("missing", str(scholarship_pdf))

    def test_failed_job_can_be_retried(self, services, scheme, tmp_path, scholarship_pdf):
        source = tmp_path / "late-upload.pdf"
        job = services.jobs.wait(services.jobs.submit(scheme.id, str(source)).id, timeout=30)
        assert job.status == "failed"
        assert job.error_kind == "extraction_failed"

        source.write_bytes(scholarship_pdf.read_bytes())
        retried = services.jobs.wait(services.jobs.retry(job.id).id, timeout=30)

        assert retried.status == "completed"
        assert retried.retry_of == job.id
        assert [j.id for j in services.jobs.list_for_scheme(scheme.id)] == [job.id, retried.id]

    def test_only_failed_jobs_are_retried(self, services, scheme, scholarship_pdf):
        job = services.jobs.wait(services.jobs.submit(scheme.id, str(scholarship_pdf)).id, timeout=30)
        with pytest.raises(ValueError):
            services.jobs.retry(job.id)

    def test_reprocess_job(self, services, ingested, scheme, revised_pdf):
        job = services.jobs.wait(services.jobs.submit(scheme.id, str(revised_pdf), reprocess=True).id, timeout=30)
        assert job.status == "completed"
        assert job.to_dict()["type"] == "reprocess"

    def test_unknown_job(self, services):
        with pytest.raises(JobNotFoundError):
            services.jobs.get("nope")
