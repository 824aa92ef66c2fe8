import json

from sqlalchemy import Column, DateTime, Integer, String, Text

from shlink_ui.clock import utcnow
from shlink_ui.database.connection import Base

STATUS_PENDING = "pending"
STATUS_RUNNING = "running"
STATUS_FINISHED = "finished"
STATUS_FAILED = "failed"


class BackgroundJob(Base):
    """
    Bookkeeping row for a job dispatched through the queue.

    The queue message only carries the job id. Status, attempts and the
    last error live here so the admin dashboard can list and retry
    failed jobs.
    """
    __tablename__ = "background_jobs"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    queue_name = Column(String(64), nullable=False, default="default")
    class_name = Column(String(128), nullable=False)
    arguments = Column(Text, nullable=False, default="{}")
    status = Column(String(16), nullable=False, default=STATUS_PENDING, index=True)
    attempts = Column(Integer, nullable=False, default=0)
    error_message = Column(Text)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    finished_at = Column(DateTime)

    @property
    def arguments_dict(self) -> dict:
        try:
            return json.loads(self.arguments or "{}")
        except ValueError:
            return {}
