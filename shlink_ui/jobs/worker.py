"""
Job Worker

Consumes job messages from the queue and runs the matching handler.

- The BackgroundJob row is re-read for every message, so a job deleted
  from the dashboard is simply skipped.
- A failing job is re-published until it reaches jobs.max_attempts,
  then it stays in the failed state for an admin retry.
- Messages are acknowledged once handled, whatever the outcome.
- Handlers run in a worker thread so the embedded worker never stalls
  the API event loop.
"""

import asyncio
import logging
import signal
import sys
from typing import Dict, List, Optional

from shlink_ui.clock import utcnow
from shlink_ui.config import settings
from shlink_ui.database.connection import SessionLocal
from shlink_ui.jobs.handlers import JOB_HANDLERS
from shlink_ui.models.background_job import (
    STATUS_FAILED,
    STATUS_FINISHED,
    STATUS_PENDING,
    STATUS_RUNNING,
    BackgroundJob,
)
from shlink_ui.queue.models import JobMessage
from shlink_ui.queue.strategies import QueueStrategy
from shlink_ui.services.settings_store import SettingsStore

logger = logging.getLogger(__name__)


class JobWorker:
    def __init__(
        self,
        queue: QueueStrategy,
        db_session_factory=SessionLocal,
        handlers: Optional[Dict[str, object]] = None,
        queue_name: Optional[str] = None,
        batch_size: Optional[int] = None,
        block_time: Optional[int] = None,
        idle_sleep: float = 0.5,
    ):
        self.queue = queue
        self.db_session_factory = db_session_factory
        self.handlers = handlers if handlers is not None else JOB_HANDLERS
        self.queue_name = queue_name or settings.queue_name
        self.batch_size = batch_size or settings.queue_batch_size
        self.block_time = settings.queue_block_time if block_time is None else block_time
        self.idle_sleep = idle_sleep
        self.running = False
        self.processed_count = 0

    async def start(self, install_signal_handlers: bool = True):
        """Run until stop() is called (or SIGINT/SIGTERM when installed)."""
        self.running = True
        logger.info("Job worker started on queue %s (batch size %s)", self.queue_name, self.batch_size)

        if install_signal_handlers:
            signal.signal(signal.SIGINT, self._signal_handler)
            signal.signal(signal.SIGTERM, self._signal_handler)

        while self.running:
            try:
                processed = await self.run_once()
                if not processed:
                    await asyncio.sleep(self.idle_sleep)
            except asyncio.CancelledError:
                logger.info("Worker task cancelled")
                break
            except Exception as e:
                logger.error("Error processing batch: %s", e)
                await asyncio.sleep(1)

        logger.info("Job worker stopped")

    async def run_once(self) -> int:
        """Consume and handle one batch. Returns the number of messages handled."""
        messages: List[JobMessage] = await self.queue.consume(
            self.queue_name, batch_size=self.batch_size, block_time=self.block_time
        )
        for message in messages:
            await self.process(message)
        message_ids = [m.message_id for m in messages if m.message_id]
        if message_ids:
            await self.queue.ack(self.queue_name, message_ids)
        self.processed_count += len(messages)
        return len(messages)

    async def process(self, message: JobMessage) -> Optional[str]:
        """Run one job. Returns its resulting status, None when skipped."""
        db = self.db_session_factory()
        try:
            job = db.query(BackgroundJob).filter(BackgroundJob.id == message.job_id).first()
            if job is None or job.status in (STATUS_FINISHED, STATUS_FAILED):
                logger.warning("Skipping job %s (missing or already done)", message.job_id)
                return None

            handler = self.handlers.get(job.class_name)
            max_attempts = SettingsStore(db).get("jobs.max_attempts", settings.job_max_attempts)

            job.status = STATUS_RUNNING
            job.attempts = (job.attempts or 0) + 1
            db.commit()

            try:
                if handler is None:
                    raise LookupError(f"No handler registered for {job.class_name}")
                await asyncio.to_thread(handler.perform, job.arguments_dict)
            except Exception as e:
                job.error_message = str(e)
                if job.attempts < max_attempts and handler is not None:
                    job.status = STATUS_PENDING
                    db.commit()
                    logger.warning("Job %s failed (attempt %s/%s), re-enqueued: %s", job.id, job.attempts, max_attempts, e)
                    await self.queue.publish(job.queue_name, JobMessage(
                        job_id=job.id, class_name=job.class_name, queue_name=job.queue_name
                    ))
                else:
                    job.status = STATUS_FAILED
                    job.finished_at = utcnow()
                    db.commit()
                    logger.error("Job %s failed permanently after %s attempts: %s", job.id, job.attempts, e)
                return job.status

            job.status = STATUS_FINISHED
            job.error_message = None
            job.finished_at = utcnow()
            db.commit()
            return job.status
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def _signal_handler(self, signum, frame):
        logger.info("Received signal %s, shutting down", signum)
        self.stop()

    def stop(self):
        self.running = False


async def main():
    """
    Standalone worker entry point.

    Usage:
        python -m shlink_ui.jobs.worker
    """
    from shlink_ui.logging_setup import configure_logging
    from shlink_ui.queue.factory import QueueBackend, QueueFactory

    configure_logging(settings.log_level)
    print("=" * 60)
    print("Shlink UI - Job Worker")
    print("=" * 60)
    print(f"Environment: {settings.environment}")
    print(f"Queue backend: {settings.queue_backend}")
    print(f"Queue name: {settings.queue_name}")
    print("=" * 60)

    from shlink_ui.services.app_config import AppConfig
    from shlink_ui.services.runtime_config import reconfigure

    db = SessionLocal()
    try:
        await reconfigure(AppConfig(SettingsStore(db)))
    finally:
        db.close()

    queue = QueueFactory.create(QueueBackend(settings.queue_backend))
    worker = JobWorker(queue=queue)

    try:
        await worker.start()
    except KeyboardInterrupt:
        print("\nInterrupted by user")
    except Exception as e:
        logger.critical("Fatal error: %s", e)
        sys.exit(1)


if __name__ == "__main__":
    asyncio.run(main())
