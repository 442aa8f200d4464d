"""
Assessment Job Manager
======================
Area assessments run as jobs: submit() records a `processing` job and hands
the work to a thread pool, the worker writes the terminal state
(`completed` with a result, or `failed` with a message). Terminal jobs are
never overwritten.

Job records live behind the JobStore interface:
  - InMemoryJobStore: process-local dict, optional TTL for finished jobs
  - SupabaseJobStore: one row per job in JOB_TABLE, upserted by id
"""

import logging
import threading
import uuid
from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Dict, Optional

from supabase import create_client

from config import config
from errors import JobNotFound, SoilServiceError
from soil_models import AssessmentJob, AssessmentOptions, AssessmentResult, JobStatus
from soil_pipeline import SoilAssessmentPipeline
from utils import utc_now

logger = logging.getLogger("soil-jobs")


# =============================================================================
# Stores
# =============================================================================
class JobStore(ABC):
    @abstractmethod
    def put(self, job: AssessmentJob) -> None:
        ...

    @abstractmethod
    def get(self, job_id: str) -> Optional[AssessmentJob]:
        ...


class InMemoryJobStore(JobStore):
    def __init__(self, ttl_seconds: int = config.JOB_TTL_SECONDS):
        self.ttl_seconds = ttl_seconds
        self._jobs: Dict[str, AssessmentJob] = {}
        self._lock = threading.Lock()

    def put(self, job: AssessmentJob) -> None:
        with self._lock:
            self._evict_expired()
            self._jobs[job.id] = job

    def get(self, job_id: str) -> Optional[AssessmentJob]:
        with self._lock:
            self._evict_expired()
            return self._jobs.get(job_id)

    def _evict_expired(self):
        if self.ttl_seconds <= 0:
            return
        now = utc_now()
        expired = [
            job_id for job_id, job in self._jobs.items()
            if job.is_terminal and (now - job.updated_at).total_seconds() > self.ttl_seconds
        ]
        for job_id in expired:
            del self._jobs[job_id]
        if expired:
            logger.debug(f"Evicted {len(expired)} expired jobs")


class SupabaseJobStore(JobStore):
    def __init__(self, client: Any, table: str = config.JOB_TABLE):
        self.client = client
        self.table = table

    def put(self, job: AssessmentJob) -> None:
        self.client.table(self.table).upsert(job.model_dump(mode="json"), on_conflict="id").execute()

    def get(self, job_id: str) -> Optional[AssessmentJob]:
        response = self.client.table(self.table).select("*").eq("id", job_id).limit(1).execute()
        if not response.data:
            return None
        return AssessmentJob.model_validate(response.data[0])


def build_job_store() -> JobStore:
    if config.JOB_STORE == "supabase":
        if not config.SUPABASE_URL or not config.SUPABASE_KEY:
            raise RuntimeError("JOB_STORE=supabase requires SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY")
        logger.info(f"🗄️ Using Supabase job store (table={config.JOB_TABLE})")
        return SupabaseJobStore(create_client(config.SUPABASE_URL, config.SUPABASE_KEY))
    logger.info("🗄️ Using in-memory job store")
    return InMemoryJobStore()


# =============================================================================
# Manager
# =============================================================================
class AssessmentJobManager:
    def __init__(
        self,
        pipeline: SoilAssessmentPipeline,
        store: Optional[JobStore] = None,
        mode: str = config.ASSESSMENT_MODE,
        workers: int = config.ASSESSMENT_WORKERS,
    ):
        self.pipeline = pipeline
        self.store = store or InMemoryJobStore()
        self.mode = mode
        self.executor = None
        if mode != "sync":
            self.executor = ThreadPoolExecutor(max_workers=max(1, workers), thread_name_prefix="soil-job")
        self._lock = threading.Lock()

    def submit(self, area: Dict[str, Any], options: Optional[AssessmentOptions] = None) -> str:
        options = options or AssessmentOptions()
        now = utc_now()
        job = AssessmentJob(id=str(uuid.uuid4()), status=JobStatus.PROCESSING, created_at=now, updated_at=now)
        self.store.put(job)
        logger.info(f"📥 Job {job.id} submitted ({self.mode})")

        if self.executor is None:
            self._run(job.id, area, options)
        else:
            self.executor.submit(self._run, job.id, area, options)
        return job.id

    def get(self, job_id: str) -> AssessmentJob:
        job = self.store.get(job_id)
        if job is None:
            raise JobNotFound(job_id)
        return job

    def _run(self, job_id: str, area: Dict[str, Any], options: AssessmentOptions):
        try:
            result = self.pipeline.assess_area(area, options)
        except SoilServiceError as e:
            logger.warning(f"❌ Job {job_id} failed: {e.message}")
            self._finish(job_id, JobStatus.FAILED, error=e.message)
            return
        except Exception as e:
            logger.exception(f"❌ Job {job_id} crashed")
            self._finish(job_id, JobStatus.FAILED, error=str(e) or e.__class__.__name__)
            return
        self._finish(job_id, JobStatus.COMPLETED, result=result)

    def _finish(
        self,
        job_id: str,
        status: JobStatus,
        result: Optional[AssessmentResult] = None,
        error: Optional[str] = None,
    ):
        with self._lock:
            current = self.store.get(job_id)
            if current is None:
                logger.warning(f"Job {job_id} vanished before it finished")
                return
            if current.is_terminal:
                logger.warning(f"Ignoring {status.value} for job {job_id}: already {current.status.value}")
                return
            self.store.put(current.model_copy(update={
                "status": status,
                "result": result,
                "error": error,
                "updated_at": utc_now(),
            }))
        logger.info(f"🏁 Job {job_id} -> {status.value}")

    def shutdown(self):
        if self.executor is not None:
            self.executor.shutdown(wait=True)
