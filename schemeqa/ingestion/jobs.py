"""Background ingestion jobs.

Provides:
- Job: observable record of one ingestion run (pending -> running ->
  completed | failed) with its report or error.
- IngestionJobRunner: thread-pool queue running IngestionPipeline jobs so HTTP
  requests can return immediately; failed jobs can be inspected and retried.

Job records live in memory for the lifetime of the process.
"""
import logging
import threading
import uuid
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Dict, List, Optional

from schemeqa.config import settings
from schemeqa.errors import JobNotFoundError, SchemeQAError
from schemeqa.ingestion.pipeline import IngestionPipeline, IngestOptions, IngestReport

logger = logging.getLogger(__name__)

JOB_STATUSES = ("pending", "running", "completed", "failed")


@dataclass
class Job:
    id: str
    scheme_id: str
    source: str
    reprocess: bool = False
    options: IngestOptions = field(default_factory=IngestOptions)
    status: str = "pending"
    created_at: datetime = field(default_factory=datetime.utcnow)
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    report: Optional[IngestReport] = None
    error: Optional[str] = None
    error_kind: Optional[str] = None
    retry_of: Optional[str] = None

    @property
    def done(self) -> bool:
        return self.status in ("completed", "failed")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "schemeId": self.scheme_id,
            "type": "reprocess" if self.reprocess else "ingest",
            "source": self.source,
            "status": self.status,
            "createdAt": self.created_at,
            "startedAt": self.started_at,
            "finishedAt": self.finished_at,
            "report": self.report.to_dict() if self.report else None,
            "error": self.error,
            "errorKind": self.error_kind,
            "retryOf": self.retry_of,
        }


class IngestionJobRunner:
    """Run ingestion jobs on a bounded worker pool.

    Args:
        pipeline: Pipeline executing the jobs.
        max_workers: Concurrent jobs; runs on the same scheme are additionally
            serialized by the pipeline's scheme locks.
    """

    def __init__(self, pipeline: IngestionPipeline, max_workers: int = settings.INGEST_MAX_WORKERS):
        self.pipeline = pipeline
        self._executor = ThreadPoolExecutor(max_workers=max(1, max_workers), thread_name_prefix="ingest")
        self._jobs: Dict[str, Job] = {}
        self._futures: Dict[str, Future] = {}
        self._lock = threading.Lock()

    def submit(
        self,
        scheme_id: str,
        source: str,
        options: Optional[IngestOptions] = None,
        reprocess: bool = False,
    ) -> Job:
        """Queue an ingestion (or reprocess) of ``source`` for ``scheme_id``.

        Raises:
            SchemeNotFoundError: If the scheme does not exist, before anything is queued.
        """
        self.pipeline.store.require_scheme(scheme_id)
        job = Job(
            id=uuid.uuid4().hex,
            scheme_id=scheme_id,
            source=str(source),
            reprocess=reprocess,
            options=options or IngestOptions(),
        )
        return self._enqueue(job)

    def retry(self, job_id: str) -> Job:
        """Queue a new run with the parameters of a failed job.

        Raises:
            JobNotFoundError: If the job is unknown.
            ValueError: If the job has not failed.
        """
        previous = self.get(job_id)
        if previous.status != "failed":
            raise ValueError(f"Only failed jobs can be retried (job {job_id} is {previous.status})")
        self.pipeline.store.require_scheme(previous.scheme_id)
        job = Job(
            id=uuid.uuid4().hex,
            scheme_id=previous.scheme_id,
            source=previous.source,
            reprocess=previous.reprocess,
            options=replace(previous.options),
            retry_of=previous.id,
        )
        return self._enqueue(job)

    def get(self, job_id: str) -> Job:
        with self._lock:
            job = self._jobs.get(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        return job

    def list_for_scheme(self, scheme_id: str) -> List[Job]:
        with self._lock:
            jobs = [j for j in self._jobs.values() if j.scheme_id == scheme_id]
        return sorted(jobs, key=lambda j: j.created_at)

    def wait(self, job_id: str, timeout: Optional[float] = None) -> Job:
        """Block until the job has finished (or ``timeout`` elapses)."""
        job = self.get(job_id)
        with self._lock:
            future = self._futures.get(job_id)
        if future is not None:
            future.result(timeout=timeout)
        return job

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)

    def _enqueue(self, job: Job) -> Job:
        with self._lock:
            self._jobs[job.id] = job
            self._futures[job.id] = self._executor.submit(self._execute, job)
        logger.info("Queued %s job %s for scheme %s", "reprocess" if job.reprocess else "ingest", job.id, job.scheme_id)
        return job

    def _execute(self, job: Job) -> None:
        job.status = "running"
        job.started_at = datetime.utcnow()
        try:
            if job.reprocess:
                report = self.pipeline.reprocess(job.scheme_id, job.source, job.options)
            else:
                report = self.pipeline.ingest(job.scheme_id, job.source, job.options)
        except SchemeQAError as exc:
            job.status = "failed"
            job.error, job.error_kind = exc.message, exc.kind
            logger.error("Ingestion job %s failed: %s", job.id, exc)
        except Exception as exc:
            job.status = "failed"
            job.error, job.error_kind = str(exc), "internal_error"
            logger.exception("Ingestion job %s crashed", job.id)
        else:
            job.report = report
            job.status = "completed" if report.success else "failed"
            if not report.success:
                job.error, job.error_kind = report.error, report.error_kind
        finally:
            job.finished_at = datetime.utcnow()
            with self._lock:
                self._futures.pop(job.id, None)
