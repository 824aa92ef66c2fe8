"""
Job handlers, looked up by the class_name stored on the job.
"""

import logging
from typing import Any, Dict

from shlink_ui.mail.models import MailMessage
from shlink_ui.services import runtime_config

logger = logging.getLogger(__name__)


class MailDeliveryJob:
    """Hand one account e-mail to the active mail adapter."""

    name = "MailDeliveryJob"

    def perform(self, arguments: Dict[str, Any]) -> bool:
        message = MailMessage(**arguments["message"])
        adapter = runtime_config.mail_adapter()
        logger.info("Delivering %r to %s via %s", message.subject, message.to, adapter.name)
        return adapter.deliver(message)


JOB_HANDLERS = {
    MailDeliveryJob.name: MailDeliveryJob(),
}
