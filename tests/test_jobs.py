"""
Tests for mail adapters, the job service, the worker and account mails.
"""
import asyncio
import json
import smtplib
import time
from unittest.mock import MagicMock, patch

import pytest
import requests

from conftest import TestingSessionLocal
from shlink_ui.jobs.handlers import MailDeliveryJob
from shlink_ui.jobs.worker import JobWorker
from shlink_ui.mail.factory import MailAdapterFactory, MailBackend
from shlink_ui.mail.models import MailDeliveryError, MailMessage
from shlink_ui.mail.strategies import (
    OUTBOX_SIZE,
    ConsoleMailAdapter,
    MailersendMailAdapter,
    SmtpMailAdapter,
)
from shlink_ui.models.background_job import (
    STATUS_FAILED,
    STATUS_FINISHED,
    STATUS_PENDING,
    BackgroundJob,
)
from shlink_ui.services.account_mailer import AccountMailer
from shlink_ui.services.app_config import AppConfig
from shlink_ui.services.job_service import JobService
from shlink_ui.services.runtime_config import runtime
from shlink_ui.services.settings_store import SettingsStore

MESSAGE = MailMessage(to="to@example.com", subject="Hello", text_body="Body")


class ExplodingJob:
    name = "ExplodingJob"

    def __init__(self):
        self.calls = 0

    def perform(self, arguments):
        self.calls += 1
        raise RuntimeError("boom")


class RecordingJob:
    name = "RecordingJob"

    def __init__(self):
        self.arguments = []

    def perform(self, arguments):
        self.arguments.append(arguments)
        return True

class SlowJob:
    name = "SlowJob"

    def perform(self, arguments):
        time.sleep(0.5)
        return True


def make_worker(queue, **handlers):
    return JobWorker(queue, db_session_factory=TestingSessionLocal, handlers=handlers, block_time=0)


class TestMailAdapters:
    def test_factory_resolves_names(self):
        assert MailAdapterFactory.resolve("SMTP") == MailBackend.SMTP
        assert MailAdapterFactory.resolve("mailersend") == MailBackend.MAILERSEND
        # Unknown falls back to the environment default (console under test)
        assert MailAdapterFactory.resolve("carrier-pigeon") == MailBackend.CONSOLE

    def test_factory_passes_options(self):
        adapter = MailAdapterFactory.create("smtp", {
            "smtp_address": "smtp.example.com", "smtp_port": 2525, "from_address": "me@example.com",
        })
        assert isinstance(adapter, SmtpMailAdapter)
        assert adapter.port == 2525
        assert adapter.configured()

    def test_console_keeps_outbox(self):
        adapter = ConsoleMailAdapter()
        assert adapter.deliver(MESSAGE)
        assert list(adapter.outbox) == [MESSAGE]

    def test_console_outbox_is_bounded(self):
        adapter = ConsoleMailAdapter()
        for i in range(OUTBOX_SIZE + 5):
            adapter.deliver(MailMessage(to=f"to{i}@example.com", subject="Hi", text_body="Body"))
        assert len(adapter.outbox) == OUTBOX_SIZE
        assert adapter.outbox[0].to == "to5@example.com"

    def test_smtp_incomplete(self):
        with pytest.raises(MailDeliveryError):
            SmtpMailAdapter(address="").deliver(MESSAGE)

    def test_smtp_delivery(self):
        adapter = SmtpMailAdapter(address="smtp.example.com", user_name="u", password="p",
                                  from_address="me@example.com", from_name="Me")
        with patch("shlink_ui.mail.strategies.smtplib.SMTP") as smtp_cls:
            smtp = smtp_cls.return_value.__enter__.return_value
            smtp.has_extn.return_value = True
            assert adapter.deliver(MESSAGE)

        smtp.starttls.assert_called_once()
        smtp.login.assert_called_once_with("u", "p")
        sent = smtp.send_message.call_args.args[0]
        assert sent["From"] == "Me <me@example.com>"
        assert sent["To"] == "to@example.com"

    def test_smtp_failure_wrapped(self):
        adapter = SmtpMailAdapter(address="smtp.example.com", from_address="me@example.com")
        with patch("shlink_ui.mail.strategies.smtplib.SMTP", side_effect=smtplib.SMTPConnectError(421, "busy")):
            with pytest.raises(MailDeliveryError):
                adapter.deliver(MESSAGE)

    def test_mailersend_payload_and_errors(self):
        adapter = MailersendMailAdapter(api_key="key", from_address="me@example.com", from_name="Me")
        payload = adapter.payload(MESSAGE)
        assert payload["from"] == {"email": "me@example.com", "name": "Me"}
        assert payload["to"] == [{"email": "to@example.com"}]
        assert "html" not in payload

        with patch("shlink_ui.mail.strategies.requests.post") as post:
            post.return_value = MagicMock(status_code=202)
            assert adapter.deliver(MESSAGE)
            assert post.call_args.kwargs["headers"] == {"Authorization": "Bearer key"}

            post.return_value = MagicMock(status_code=422, text="invalid")
            with pytest.raises(MailDeliveryError):
                adapter.deliver(MESSAGE)

            post.side_effect = requests.ConnectionError("down")
            with pytest.raises(MailDeliveryError):
                adapter.deliver(MESSAGE)

    def test_mailersend_needs_api_key(self):
        assert not MailersendMailAdapter(api_key="").configured()
        with pytest.raises(MailDeliveryError):
            MailersendMailAdapter(api_key="").deliver(MESSAGE)


class TestJobService:
    def test_enqueue_writes_row_and_message(self, db_session, queue):
        job = asyncio.run(JobService(db_session, queue).enqueue("RecordingJob", {"a": 1}))

        assert job.status == STATUS_PENDING
        assert job.arguments_dict == {"a": 1}
        assert asyncio.run(queue.get_queue_length(job.queue_name)) == 1

    def test_publish_failure_marks_failed(self, db_session):
        queue = MagicMock()

        async def refuse(queue_name, message):
            return False

        queue.publish = refuse
        job = asyncio.run(JobService(db_session, queue).enqueue("RecordingJob", {}))
        assert job.status == STATUS_FAILED
        assert job.error_message

    def test_retry_replaces_failed_job(self, db_session, queue):
        service = JobService(db_session, queue)
        failed = BackgroundJob(class_name="RecordingJob", arguments='{"x": 2}', queue_name="mailers",
                               status=STATUS_FAILED)
        db_session.add(failed)
        db_session.commit()
        failed_id = failed.id

        job = asyncio.run(service.retry(failed_id))

        assert job.id != failed_id
        assert job.arguments_dict == {"x": 2}
        assert db_session.query(BackgroundJob).filter_by(id=failed_id).first() is None
        assert asyncio.run(service.retry(failed_id)) is None

    def test_clear_and_stats(self, db_session, queue):
        service = JobService(db_session, queue)
        for status in (STATUS_FAILED, STATUS_FAILED, STATUS_FINISHED, STATUS_PENDING):
            db_session.add(BackgroundJob(class_name="RecordingJob", status=status))
        db_session.commit()

        stats = asyncio.run(service.stats())
        assert stats["failed_jobs"] == 2
        assert stats["finished_jobs"] == 1
        assert stats["database_error"] is False

        assert service.clear_failed() == 2
        assert service.clear_finished() == 1
        assert db_session.query(BackgroundJob).count() == 1


class TestJobWorker:
    def test_runs_job_to_finished(self, db_session, queue):
        handler = RecordingJob()
        job = asyncio.run(JobService(db_session, queue).enqueue("RecordingJob", {"n": 1}))

        processed = asyncio.run(make_worker(queue, RecordingJob=handler).run_once())

        assert processed == 1
        assert handler.arguments == [{"n": 1}]
        db_session.refresh(job)
        assert job.status == STATUS_FINISHED
        assert job.attempts == 1

    def test_failure_retried_until_max_attempts(self, db_session, queue):
        SettingsStore(db_session).set("jobs.max_attempts", 2)
        handler = ExplodingJob()
        job = asyncio.run(JobService(db_session, queue).enqueue("ExplodingJob", {}))
        worker = make_worker(queue, ExplodingJob=handler)

        asyncio.run(worker.run_once())
        db_session.refresh(job)
        assert job.status == STATUS_PENDING
        assert job.error_message == "boom"

        asyncio.run(worker.run_once())
        db_session.refresh(job)
        assert job.status == STATUS_FAILED
        assert handler.calls == 2
        assert asyncio.run(queue.get_queue_length(job.queue_name)) == 0

    def test_slow_handler_does_not_block_event_loop(self, db_session, queue):
        asyncio.run(JobService(db_session, queue).enqueue("SlowJob", {}))
        worker = make_worker(queue, SlowJob=SlowJob())

        async def run():
            ticks = []

            async def ticker():
                while len(ticks) < 40:
                    ticks.append(time.monotonic())
                    await asyncio.sleep(0.01)

            ticking = asyncio.create_task(ticker())
            await worker.run_once()
            ticking.cancel()
            return ticks

        ticks = asyncio.run(run())

        gaps = [b - a for a, b in zip(ticks, ticks[1:])]
        assert len(ticks) > 10
        assert max(gaps) < 0.25

    def test_unknown_handler_fails_at_once(self, db_session, queue):
        job = asyncio.run(JobService(db_session, queue).enqueue("Missing", {}))
        asyncio.run(make_worker(queue).run_once())
        db_session.refresh(job)
        assert job.status == STATUS_FAILED

    def test_discarded_job_skipped(self, db_session, queue):
        handler = RecordingJob()
        service = JobService(db_session, queue)
        job = asyncio.run(service.enqueue("RecordingJob", {}))
        db_session.delete(job)
        db_session.commit()

        assert asyncio.run(make_worker(queue, RecordingJob=handler).run_once()) == 1
        assert handler.arguments == []

    def test_mail_delivery_job_uses_runtime_adapter(self):
        adapter = ConsoleMailAdapter()
        runtime.mail_adapter = adapter
        MailDeliveryJob().perform({"message": MESSAGE.model_dump()})
        assert adapter.outbox[0].subject == "Hello"


class TestAccountMailer:
    def test_confirmation_mail_is_queued(self, db_session, queue, user):
        SettingsStore(db_session).set("system.site_url", "https://short.example.com/")
        user.confirmation_token = "tok123"
        db_session.commit()
        mailer = AccountMailer(JobService(db_session, queue), AppConfig(SettingsStore(db_session)))

        job = asyncio.run(mailer.confirmation_instructions(user))

        message = json.loads(job.arguments)["message"]
        assert job.class_name == MailDeliveryJob.name
        assert message["to"] == user.email
        assert "https://short.example.com/users/confirmation?token=tok123" in message["text_body"]

    def test_end_to_end_delivery(self, db_session, queue, user):
        adapter = ConsoleMailAdapter()
        runtime.mail_adapter = adapter
        user.reset_password_token = "reset-me"
        db_session.commit()
        mailer = AccountMailer(JobService(db_session, queue), AppConfig(SettingsStore(db_session)))

        asyncio.run(mailer.reset_password_instructions(user))
        asyncio.run(make_worker(queue, MailDeliveryJob=MailDeliveryJob()).run_once())

        assert len(adapter.outbox) == 1
        assert "reset-me" in adapter.outbox[0].text_body
