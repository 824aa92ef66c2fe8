"""
Data models for queue messages.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from shlink_ui.clock import utcnow


class JobMessage(BaseModel):
    """
    Message published to the queue when a background job is enqueued.

    Only references the BackgroundJob row; the arguments stay in the
    database so a retried job re-reads them from there.
    """

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "job_id": 42,
                "class_name": "MailDeliveryJob",
                "queue_name": "mailers",
                "enqueued_at": "2025-10-29T10:30:00",
            }
        }
    )

    job_id: int = Field(..., description="Primary key of the BackgroundJob row")
    class_name: str = Field(..., description="Registered job handler name")
    queue_name: str = Field("default", description="Logical queue the job belongs to")
    enqueued_at: datetime = Field(default_factory=utcnow)

    # Set by the Redis Streams backend on consume, used for XACK
    message_id: Optional[str] = None
