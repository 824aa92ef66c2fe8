"""
Background jobs executed by the job worker.
"""

from .handlers import JOB_HANDLERS, MailDeliveryJob

__all__ = ["JOB_HANDLERS", "MailDeliveryJob"]
