"""
Account e-mails (confirmation, password reset).

Messages are not sent inline: each one becomes a MailDeliveryJob so a
slow or failing mail server never blocks the request.
"""

import logging
from urllib.parse import urlencode

from shlink_ui.jobs.handlers import MailDeliveryJob
from shlink_ui.mail.models import MailMessage
from shlink_ui.models.user import User
from shlink_ui.services.app_config import AppConfig
from shlink_ui.services.job_service import JobService

logger = logging.getLogger(__name__)


class AccountMailer:
    def __init__(self, jobs: JobService, config: AppConfig):
        self.jobs = jobs
        self.config = config

    async def _link(self, path: str, **params) -> str:
        site_url = (await self.config.string("system.site_url", "http://localhost:8000")).rstrip("/")
        return f"{site_url}{path}?{urlencode(params)}"

    async def _send(self, message: MailMessage):
        message.from_address = message.from_address or await self.config.string("email.from_address") or None
        message.from_name = message.from_name or await self.config.string("email.from_name") or None
        job = await self.jobs.enqueue(MailDeliveryJob.name, {"message": message.model_dump()})
        logger.info("Queued %r for %s as job %s", message.subject, message.to, job.id)
        return job

    async def confirmation_instructions(self, user: User):
        site_name = await self.config.string("system.site_name", "Shlink UI")
        link = await self._link("/users/confirmation", token=user.confirmation_token)
        return await self._send(MailMessage(
            to=user.email,
            subject=f"[{site_name}] Confirm your account",
            text_body=(
                f"Welcome {user.display_name}!\n\n"
                f"Confirm your account by opening the link below:\n{link}\n"
            ),
        ))

    async def reset_password_instructions(self, user: User):
        site_name = await self.config.string("system.site_name", "Shlink UI")
        link = await self._link("/users/password/edit", token=user.reset_password_token)
        return await self._send(MailMessage(
            to=user.email,
            subject=f"[{site_name}] Reset password instructions",
            text_body=(
                f"Hello {user.display_name}!\n\n"
                "Someone requested a link to change your password. "
                f"You can do this through the link below:\n{link}\n\n"
                "If you didn't request this, please ignore this email.\n"
            ),
        ))
