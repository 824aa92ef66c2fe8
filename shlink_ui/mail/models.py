"""
Data models for outgoing mail.
"""

from typing import Optional

from pydantic import BaseModel, Field


class MailMessage(BaseModel):
    to: str = Field(..., description="Recipient address")
    subject: str
    text_body: str
    html_body: Optional[str] = None
    from_address: Optional[str] = None
    from_name: Optional[str] = None


class MailDeliveryError(Exception):
    """Raised by an adapter when a message could not be handed over."""

    def __init__(self, message: str, original_error: Optional[Exception] = None):
        super().__init__(message)
        self.original_error = original_error
