"""
Outbound mail: transports, the process-wide cooldown guard and the guarded
send wrapper every call site goes through.

The guard is a coarse circuit breaker. When the provider answers with its
daily-quota signature, all sends are suspended until the cooldown ends.
"""

from __future__ import annotations

import asyncio
import logging
import smtplib
import socket
from dataclasses import dataclass
from datetime import datetime, timedelta
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import List, Optional, Sequence

from fastapi.concurrency import run_in_threadpool
from tenacity import Retrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from .configuration import MailSettings
from .errors import MailDeliveryError, MailerBlockedError, ProviderRateLimited, TransportTimeout
from .models import MailerStatus
from .utils import Clock, utc_now

logger = logging.getLogger(__name__)

DEFAULT_COOLDOWN = timedelta(hours=25)

# Fragments of a 550 response that mean the daily sending quota is used up.
RATE_LIMIT_MARKERS = ("5.4.5", "daily user sending", "quota exceeded")

# Failures worth another attempt on a fresh connection.
TRANSIENT_SMTP_ERRORS = (smtplib.SMTPServerDisconnected, smtplib.SMTPConnectError, ConnectionError)


@dataclass
class MailMessage:
    to: str
    subject: str
    html: str
    text: Optional[str] = None


@dataclass
class SendOutcome:
    recipient: str
    ok: bool
    error: Optional[BaseException] = None


def should_cooldown_for(exc: BaseException) -> bool:
    """Return True if ``exc`` is the provider's daily-quota rejection."""
    if isinstance(exc, ProviderRateLimited):
        return True
    if not isinstance(exc, smtplib.SMTPResponseException) or exc.smtp_code != 550:
        return False
    detail = exc.smtp_error
    if isinstance(detail, bytes):
        detail = detail.decode("utf-8", errors="replace")
    detail = str(detail).lower()
    return any(marker in detail for marker in RATE_LIMIT_MARKERS)


class MailerGuard:
    """
    Process-wide send suspension with a single ``blocked_until`` timestamp.

    Reads and writes happen on the event loop thread with no await between
    the check and the trip, so no lock is needed.
    """

    def __init__(self, default_cooldown: timedelta = DEFAULT_COOLDOWN, clock: Clock = utc_now):
        self.default_cooldown = default_cooldown
        self._clock = clock
        self._blocked_until: Optional[datetime] = None

    def is_blocked(self) -> bool:
        return self._blocked_until is not None and self._clock() < self._blocked_until

    def trip(self, duration: Optional[timedelta] = None) -> datetime:
        """Suspend sending for ``duration`` (default cooldown) from now."""
        if duration is None:
            duration = self.default_cooldown
        self._blocked_until = self._clock() + duration
        logger.warning(f"Mailer cooldown started; sending paused until {self._blocked_until.isoformat()}")
        return self._blocked_until

    def next_available(self) -> Optional[datetime]:
        """When sending resumes, or None if it is not blocked."""
        return self._blocked_until if self.is_blocked() else None

    def status(self) -> MailerStatus:
        return MailerStatus(blocked=self.is_blocked(), blocked_until=self.next_available())


class Mailer:
    """Transport interface: deliver one message or raise."""

    async def send(self, message: MailMessage) -> None:
        raise NotImplementedError


class LoggingMailer(Mailer):
    """Stand-in transport for environments without SMTP; messages are logged and dropped."""

    async def send(self, message: MailMessage) -> None:
        logger.info(f"Mail transport not configured; dropping '{message.subject}' to {message.to}")


class SmtpMailer(Mailer):
    """
    SMTP transport run in a worker thread.

    Connection and socket timeouts bound every send. Dropped connections are
    retried with exponential backoff; quota rejections, timeouts and other
    failures are translated into the mail error taxonomy.
    """

    def __init__(self, settings: MailSettings):
        self.settings = settings
        self._retrying = Retrying(
            stop=stop_after_attempt(settings.retry_attempts),
            wait=wait_exponential(multiplier=1, min=2, max=10),
            retry=retry_if_exception_type(TRANSIENT_SMTP_ERRORS),
            reraise=True,
        )

    def _build(self, message: MailMessage) -> MIMEMultipart:
        msg = MIMEMultipart("alternative")
        msg["Subject"] = message.subject
        msg["From"] = self.settings.from_email
        msg["To"] = message.to
        if message.text:
            msg.attach(MIMEText(message.text, "plain", "utf-8"))
        msg.attach(MIMEText(message.html, "html", "utf-8"))
        return msg

    def _deliver_once(self, message: MailMessage) -> None:
        settings = self.settings
        with smtplib.SMTP(settings.host, settings.port, timeout=settings.connection_timeout) as server:
            if server.sock is not None:
                server.sock.settimeout(settings.socket_timeout)
            if settings.use_starttls:
                server.starttls()
            if settings.user and settings.password:
                server.login(settings.user, settings.password)
            server.sendmail(settings.from_email, [message.to], self._build(message).as_string())

    def _deliver(self, message: MailMessage) -> None:
        try:
            self._retrying(self._deliver_once, message)
        except (socket.timeout, TimeoutError) as exc:
            raise TransportTimeout(f"SMTP timed out sending to {message.to}") from exc
        except smtplib.SMTPResponseException as exc:
            if should_cooldown_for(exc):
                raise ProviderRateLimited(f"Provider quota exhausted: {exc.smtp_code} {exc.smtp_error!r}") from exc
            raise MailDeliveryError(f"SMTP rejected message to {message.to}: {exc.smtp_code}") from exc
        except (smtplib.SMTPException, OSError) as exc:
            raise MailDeliveryError(f"SMTP delivery to {message.to} failed: {exc}") from exc

    async def send(self, message: MailMessage) -> None:
        await run_in_threadpool(self._deliver, message)


class GuardedMailer:
    """Routes every send through the guard and trips it on a quota rejection."""

    def __init__(self, mailer: Mailer, guard: MailerGuard):
        self.mailer = mailer
        self.guard = guard

    async def send(self, message: MailMessage) -> None:
        if self.guard.is_blocked():
            raise MailerBlockedError(f"Mailer cooling down until {self.guard.next_available().isoformat()}")
        try:
            await self.mailer.send(message)
        except ProviderRateLimited:
            self.guard.trip()
            raise
        except Exception as exc:
            if should_cooldown_for(exc):
                self.guard.trip()
                raise ProviderRateLimited(str(exc)) from exc
            raise

    async def send_all(self, messages: Sequence[MailMessage]) -> List[SendOutcome]:
        """
        Send concurrently and settle every message.

        Never raises for an individual failure; each message gets an outcome.
        """
        results = await asyncio.gather(*(self.send(m) for m in messages), return_exceptions=True)
        outcomes = []
        for message, result in zip(messages, results):
            if isinstance(result, BaseException):
                logger.warning(f"Email to {message.to} failed: {result}")
                outcomes.append(SendOutcome(recipient=message.to, ok=False, error=result))
            else:
                outcomes.append(SendOutcome(recipient=message.to, ok=True))
        return outcomes


def build_mailer(settings: MailSettings) -> Mailer:
    if settings.host:
        return SmtpMailer(settings)
    logger.warning("SMTP host not configured; outbound mail will only be logged")
    return LoggingMailer()
