from __future__ import annotations

import pytest

from apps.api.core.config import Settings
from apps.api.services.notifications import (
    LoggingEmailSender,
    NotificationDispatcher,
    NotificationKind,
    SmtpEmailSender,
    TicketNotification,
    build_email_sender,
    render_notification,
)


def _notification(kind: NotificationKind = NotificationKind.CONFIRMATION, number: int = 7) -> TicketNotification:
    return TicketNotification(kind=kind, recipient="lee@acme.io", ticket_number=number, category="Network")


class FlakySender:
    def __init__(self, failures: int) -> None:
        self.failures = failures
        self.delivered: list[int] = []

    async def send(self, notification: TicketNotification) -> None:
        if self.failures:
            self.failures -= 1
            raise ConnectionError("relay unavailable")
        self.delivered.append(notification.ticket_number)


def test_render_confirmation_mentions_ticket_number():
    subject, body = render_notification(_notification(), portal_url="https://help.acme.io/")

    assert subject == "Ticket #7 received"
    assert "Network" in body
    assert body.endswith("https://help.acme.io")


def test_render_resolution_includes_solution():
    notification = TicketNotification(
        kind=NotificationKind.RESOLVED,
        recipient="lee@acme.io",
        ticket_number=3,
        category="Email",
        detail="Cleared the mailbox cache",
    )

    subject, body = render_notification(notification)

    assert subject == "Ticket #3 resolved"
    assert "Cleared the mailbox cache" in body


@pytest.mark.asyncio
async def test_dispatcher_survives_failing_sender():
    sender = FlakySender(failures=1)
    dispatcher = NotificationDispatcher(sender)
    dispatcher.start()

    assert dispatcher.enqueue(_notification(number=1))
    assert dispatcher.enqueue(_notification(number=2))
    await dispatcher.drain()

    assert sender.delivered == [2]
    assert dispatcher.stats.failed == 1
    assert dispatcher.stats.sent == 1
    await dispatcher.stop()
    assert dispatcher.running is False


@pytest.mark.asyncio
async def test_full_queue_drops_notifications():
    dispatcher = NotificationDispatcher(FlakySender(failures=0), max_queue_size=1)

    assert dispatcher.enqueue(_notification(number=1)) is True
    assert dispatcher.enqueue(_notification(number=2)) is False
    assert dispatcher.stats.dropped == 1
    assert dispatcher.pending == 1


@pytest.mark.asyncio
async def test_stop_delivers_pending_notifications():
    sender = FlakySender(failures=0)
    dispatcher = NotificationDispatcher(sender)
    dispatcher.start()
    for number in range(3):
        dispatcher.enqueue(_notification(number=number))

    await dispatcher.stop()

    assert sender.delivered == [0, 1, 2]
    assert dispatcher.pending == 0


def test_build_email_sender_without_relay_logs_only():
    sender = build_email_sender(Settings(smtp_host=None))

    assert isinstance(sender, LoggingEmailSender)


@pytest.mark.asyncio
async def test_smtp_sender_delivers_message(monkeypatch):
    sent = []

    class FakeSMTP:
        def __init__(self, host, port, timeout):
            self.host = host
            self.port = port
            self.started_tls = False
            self.credentials = None

        def __enter__(self):
            return self

        def __exit__(self, exc_type, exc, tb):
            return False

        def starttls(self):
            self.started_tls = True

        def login(self, username, password):
            self.credentials = (username, password)

        def send_message(self, message):
            sent.append((self, message))

    monkeypatch.setattr("apps.api.services.notifications.smtplib.SMTP", FakeSMTP)
    sender = build_email_sender(
        Settings(smtp_host="smtp.acme.io", smtp_username="helpdesk", smtp_password="secret")
    )
    assert isinstance(sender, SmtpEmailSender)

    await sender.send(_notification(NotificationKind.IN_PROGRESS))

    smtp, message = sent[0]
    assert smtp.host == "smtp.acme.io"
    assert smtp.started_tls is True
    assert smtp.credentials == ("helpdesk", "secret")
    assert message["To"] == "lee@acme.io"
    assert message["Subject"] == "Ticket #7 is in progress"


@pytest.mark.asyncio
async def test_logging_sender_never_raises(caplog):
    caplog.set_level("INFO")

    await LoggingEmailSender().send(_notification())

    assert "suppressed" in caplog.text
