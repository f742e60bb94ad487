"""Post-commit email notifications for ticket lifecycle events.

Notifications are handed to `NotificationDispatcher` only after the ticket
transaction has committed. A background worker delivers them at most once;
delivery failures are logged and counted but never affect the ticket.
"""

from __future__ import annotations

import asyncio
import logging
import smtplib
from dataclasses import dataclass
from email.message import EmailMessage
from enum import Enum
from typing import Protocol

from apps.api.core.config import Settings

logger = logging.getLogger(__name__)


class NotificationKind(str, Enum):
    CONFIRMATION = "confirmation"
    IN_PROGRESS = "in_progress"
    RESOLVED = "resolved"


@dataclass(frozen=True, slots=True)
class TicketNotification:
    """Identifying ticket information sent to a submitter."""

    kind: NotificationKind
    recipient: str
    ticket_number: int
    category: str
    detail: str | None = None


class EmailSender(Protocol):
    async def send(self, notification: TicketNotification) -> None:
        ...


def render_notification(notification: TicketNotification, *, portal_url: str = "") -> tuple[str, str]:
    """Return the subject and plain-text body for a notification."""

    number = notification.ticket_number
    if notification.kind is NotificationKind.CONFIRMATION:
        subject = f"Ticket #{number} received"
        body = (
            f"Thank you for contacting the helpdesk. Your {notification.category} ticket "
            f"#{number} has been received and will be reviewed shortly."
        )
    elif notification.kind is NotificationKind.IN_PROGRESS:
        subject = f"Ticket #{number} is in progress"
        body = f"A member of staff is now working on your ticket #{number}."
    else:
        subject = f"Ticket #{number} resolved"
        resolution = notification.detail or "Issue resolved."
        body = f"Your ticket #{number} has been resolved.\n\nResolution:\n{resolution}"
    if portal_url:
        body += f"\n\n{portal_url.rstrip('/')}"
    return subject, body


class SmtpEmailSender:
    """Deliver notifications through an SMTP relay."""

    def __init__(
        self,
        *,
        host: str,
        port: int = 587,
        sender: str,
        username: str | None = None,
        password: str | None = None,
        use_tls: bool = True,
        portal_url: str = "",
        timeout: float = 10.0,
    ) -> None:
        self._host = host
        self._port = port
        self._sender = sender
        self._username = username
        self._password = password
        self._use_tls = use_tls
        self._portal_url = portal_url
        self._timeout = timeout

    async def send(self, notification: TicketNotification) -> None:
        subject, body = render_notification(notification, portal_url=self._portal_url)
        message = EmailMessage()
        message["Subject"] = subject
        message["From"] = self._sender
        message["To"] = notification.recipient
        message.set_content(body)
        await asyncio.to_thread(self._deliver, message)

    def _deliver(self, message: EmailMessage) -> None:
        with smtplib.SMTP(self._host, self._port, timeout=self._timeout) as smtp:
            if self._use_tls:
                smtp.starttls()
            if self._username and self._password:
                smtp.login(self._username, self._password)
            smtp.send_message(message)


class LoggingEmailSender:
    """Fallback sender used when no SMTP relay is configured."""

    def __init__(self, *, portal_url: str = "") -> None:
        self._portal_url = portal_url

    async def send(self, notification: TicketNotification) -> None:
        subject, _ = render_notification(notification, portal_url=self._portal_url)
        logger.info("Email to %s suppressed (no SMTP relay): %s", notification.recipient, subject)


def build_email_sender(settings: Settings) -> EmailSender:
    if not settings.smtp_host:
        return LoggingEmailSender(portal_url=settings.portal_url)
    return SmtpEmailSender(
        host=settings.smtp_host,
        port=settings.smtp_port,
        sender=settings.smtp_sender,
        username=settings.smtp_username,
        password=settings.smtp_password,
        use_tls=settings.smtp_use_tls,
        portal_url=settings.portal_url,
    )


@dataclass(slots=True)
class DispatchStats:
    sent: int = 0
    failed: int = 0
    dropped: int = 0


class NotificationDispatcher:
    """Bounded queue drained by a single background delivery worker."""

    def __init__(self, sender: EmailSender, *, max_queue_size: int = 1000) -> None:
        self._sender = sender
        self._queue: asyncio.Queue[TicketNotification] = asyncio.Queue(maxsize=max_queue_size)
        self._worker: asyncio.Task[None] | None = None
        self.stats = DispatchStats()

    @property
    def running(self) -> bool:
        return self._worker is not None and not self._worker.done()

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    def start(self) -> None:
        if self.running:
            return
        self._worker = asyncio.create_task(self._run(), name="notification-dispatcher")

    def enqueue(self, notification: TicketNotification) -> bool:
        try:
            self._queue.put_nowait(notification)
        except asyncio.QueueFull:
            self.stats.dropped += 1
            logger.warning(
                "Notification queue full, dropping %s email for ticket #%d",
                notification.kind.value,
                notification.ticket_number,
            )
            return False
        return True

    async def drain(self) -> None:
        """Wait until every queued notification has been attempted."""

        await self._queue.join()

    async def stop(self) -> None:
        if self._worker is None:
            return
        if self.running:
            await self.drain()
        self._worker.cancel()
        try:
            await self._worker
        except asyncio.CancelledError:
            pass
        self._worker = None

    async def _run(self) -> None:
        while True:
            notification = await self._queue.get()
            try:
                await self._sender.send(notification)
            except Exception:
                self.stats.failed += 1
                logger.exception(
                    "Failed to send %s email for ticket #%d to %s",
                    notification.kind.value,
                    notification.ticket_number,
                    notification.recipient,
                )
            else:
                self.stats.sent += 1
                logger.info(
                    "Sent %s email for ticket #%d to %s",
                    notification.kind.value,
                    notification.ticket_number,
                    notification.recipient,
                )
            finally:
                self._queue.task_done()
