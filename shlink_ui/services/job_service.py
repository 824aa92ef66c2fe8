"""
Background job bookkeeping and the admin jobs dashboard.

A job is a BackgroundJob row plus a JobMessage on the queue. The row is
the source of truth for status; the message only wakes a worker.
"""

import json
import logging
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from shlink_ui.clock import utcnow
from shlink_ui.config import settings
from shlink_ui.models.background_job import (
    STATUS_FAILED,
    STATUS_FINISHED,
    STATUS_PENDING,
    STATUS_RUNNING,
    BackgroundJob,
)
from shlink_ui.queue.models import JobMessage
from shlink_ui.queue.strategies import QueueStrategy

logger = logging.getLogger(__name__)


class JobService:
    def __init__(self, db: Session, queue: QueueStrategy):
        self.db = db
        self.queue = queue

    async def enqueue(
        self, class_name: str, arguments: Dict[str, Any], queue_name: Optional[str] = None
    ) -> BackgroundJob:
        job = BackgroundJob(
            class_name=class_name,
            arguments=json.dumps(arguments),
            queue_name=queue_name or settings.queue_name,
            status=STATUS_PENDING,
        )
        self.db.add(job)
        self.db.commit()
        self.db.refresh(job)
        await self.publish(job)
        return job

    async def publish(self, job: BackgroundJob) -> bool:
        message = JobMessage(job_id=job.id, class_name=job.class_name, queue_name=job.queue_name)
        if await self.queue.publish(job.queue_name, message):
            return True
        # Leave it where the admin retry can pick it up
        job.status = STATUS_FAILED
        job.error_message = "Could not publish job to the queue"
        job.finished_at = utcnow()
        self.db.commit()
        logger.error("Failed to enqueue %s job %s", job.class_name, job.id)
        return False

    def _count(self, status: str) -> int:
        return self.db.query(BackgroundJob).filter(BackgroundJob.status == status).count()

    async def stats(self) -> Dict[str, Any]:
        try:
            counts = {
                "pending_jobs": self._count(STATUS_PENDING),
                "running_jobs": self._count(STATUS_RUNNING),
                "finished_jobs": self._count(STATUS_FINISHED),
                "failed_jobs": self._count(STATUS_FAILED),
            }
        except Exception as e:
            logger.error("Job stats error: %s", e)
            self.db.rollback()
            counts = dict.fromkeys(("pending_jobs", "running_jobs", "finished_jobs", "failed_jobs"), 0)
            counts["database_error"] = True
            return counts
        counts["queue_length"] = await self.queue.get_queue_length(settings.queue_name)
        counts["database_error"] = False
        return counts

    def recent_jobs(self, limit: int = 20) -> List[BackgroundJob]:
        return (
            self.db.query(BackgroundJob)
            .order_by(BackgroundJob.created_at.desc(), BackgroundJob.id.desc())
            .limit(limit)
            .all()
        )

    def failed_jobs(self, limit: int = 50) -> List[BackgroundJob]:
        return (
            self.db.query(BackgroundJob)
            .filter(BackgroundJob.status == STATUS_FAILED)
            .order_by(BackgroundJob.created_at.desc(), BackgroundJob.id.desc())
            .limit(limit)
            .all()
        )

    def _failed(self, job_id: int) -> Optional[BackgroundJob]:
        return (
            self.db.query(BackgroundJob)
            .filter(BackgroundJob.id == job_id, BackgroundJob.status == STATUS_FAILED)
            .first()
        )

    async def retry(self, job_id: int) -> Optional[BackgroundJob]:
        """Enqueue a fresh copy of a failed job and drop the failed record."""
        failed = self._failed(job_id)
        if failed is None:
            return None
        class_name, arguments, queue_name = failed.class_name, failed.arguments_dict, failed.queue_name
        self.db.delete(failed)
        self.db.commit()
        job = await self.enqueue(class_name, arguments, queue_name)
        logger.info("Retried failed job %s as %s", job_id, job.id)
        return job

    async def retry_all(self) -> int:
        ids = [job_id for (job_id,) in self.db.query(BackgroundJob.id).filter(BackgroundJob.status == STATUS_FAILED)]
        retried = 0
        for job_id in ids:
            if await self.retry(job_id):
                retried += 1
        return retried

    def discard(self, job_id: int) -> bool:
        failed = self._failed(job_id)
        if failed is None:
            return False
        self.db.delete(failed)
        self.db.commit()
        return True

    def _delete_status(self, status: str) -> int:
        count = (
            self.db.query(BackgroundJob)
            .filter(BackgroundJob.status == status)
            .delete(synchronize_session=False)
        )
        self.db.commit()
        return count

    def clear_failed(self) -> int:
        return self._delete_status(STATUS_FAILED)

    def clear_finished(self) -> int:
        return self._delete_status(STATUS_FINISHED)

    @staticmethod
    def serialize(job: BackgroundJob) -> Dict[str, Any]:
        return {
            "id": job.id,
            "class_name": job.class_name,
            "queue_name": job.queue_name,
            "status": job.status,
            "attempts": job.attempts,
            "error_message": job.error_message,
            "created_at": job.created_at.isoformat() if job.created_at else None,
            "finished_at": job.finished_at.isoformat() if job.finished_at else None,
        }
