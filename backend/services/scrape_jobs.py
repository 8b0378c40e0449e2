import logging
from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from models.base import utcnow
from models.reviews import ScrapingJob

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


class JobStatus(str, Enum):
    QUEUED = "queued"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    INDEXING = "indexing"
    INDEXED = "indexed"
    INDEX_FAILED = "index_failed"


IN_FLIGHT = (JobStatus.QUEUED.value, JobStatus.RUNNING.value)


def _in_flight_job(db: Session, source: str, source_identifier: str) -> Optional[ScrapingJob]:
    return db.execute(
        select(ScrapingJob)
        .where(
            ScrapingJob.source == source,
            ScrapingJob.source_identifier == source_identifier,
            ScrapingJob.status.in_(IN_FLIGHT),
        )
        .order_by(ScrapingJob.created_at.desc())
        .limit(1)
    ).scalar_one_or_none()


def create_job(
    db: Session,
    product_id: str,
    source: str,
    source_identifier: str,
    actor_run_id: Optional[str] = None,
) -> dict:
    """
    Register a new scraping run in `running` state.

    Rejected with a conflict result when a queued or running job already
    exists for the same (source, source_identifier).
    """
    existing = _in_flight_job(db, source, source_identifier)
    if existing:
        logger.info(f"[JOBS] Already have a running job for {source} with identifier {source_identifier}")
        return {
            "success": False,
            "conflict": True,
            "error": f"A scraping job for this {source} source is already running",
            "job_id": existing.id,
        }

    now = utcnow()
    job = ScrapingJob(
        product_id=product_id,
        source=source,
        status=JobStatus.RUNNING.value,
        source_identifier=source_identifier,
        actor_run_id=actor_run_id,
        started_at=now,
        created_at=now,
        updated_at=now,
    )
    db.add(job)
    try:
        db.commit()
    except IntegrityError as e:
        db.rollback()
        logger.error(f"[JOBS] Could not create job for {source}/{source_identifier}: {e}")
        return {"success": False, "conflict": False, "error": str(e.orig)}

    logger.info(f"[JOBS] Created job {job.id} ({source} {source_identifier}, run {actor_run_id})")
    return {"success": True, "job_id": job.id}


def update_status(
    db: Session,
    actor_run_id: str,
    status: JobStatus | str,
    error_message: Optional[str] = None,
    indexed_at: Optional[datetime] = None,
) -> dict:
    """
    Move the job correlated with `actor_run_id` to `status`.

    Stamps completed_at on completed/failed and indexed_at on
    indexed/index_failed. An unknown run id is logged, not raised: the
    webhook may report a run this service never started.
    """
    status = JobStatus(status)
    job = get_job_by_run_id(db, actor_run_id)
    if job is None:
        logger.warning(f"[JOBS] No scraping job tracked for run {actor_run_id}; ignoring {status.value}")
        return {"success": False, "error": f"No scraping job for run {actor_run_id}"}

    now = utcnow()
    job.status = status.value
    job.updated_at = now

    if status in (JobStatus.COMPLETED, JobStatus.FAILED):
        job.completed_at = now
    if status in (JobStatus.INDEXED, JobStatus.INDEX_FAILED):
        job.indexed_at = indexed_at or now
    if error_message:
        job.error_message = error_message

    db.commit()
    logger.info(f"[JOBS] Job {job.id} (run {actor_run_id}) -> {status.value}")
    return {"success": True, "job_id": job.id}


def get_status(db: Session, source: str, source_identifier: str) -> dict:
    """Latest job for the scope, and whether a scrape is currently in flight."""
    job = db.execute(
        select(ScrapingJob)
        .where(ScrapingJob.source == source, ScrapingJob.source_identifier == source_identifier)
        .order_by(ScrapingJob.created_at.desc())
        .limit(1)
    ).scalar_one_or_none()

    if job is None:
        return {"success": True, "is_running": False, "status": None, "job": None}

    return {
        "success": True,
        "is_running": job.status in IN_FLIGHT,
        "status": job.status,
        "job": job,
    }


def get_job_by_run_id(db: Session, actor_run_id: str) -> Optional[ScrapingJob]:
    return db.execute(
        select(ScrapingJob).where(ScrapingJob.actor_run_id == actor_run_id)
    ).scalar_one_or_none()


def get_jobs_for_product(db: Session, product_id: str) -> list[ScrapingJob]:
    return list(db.execute(
        select(ScrapingJob)
        .where(ScrapingJob.product_id == product_id)
        .order_by(ScrapingJob.created_at.desc())
    ).scalars().all())
