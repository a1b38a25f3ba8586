"""
Periodic review reminders.

Each tick scans submissions that are with the committee and still awaiting a
decision, and re-sends the review request to every member in the submission's
committee snapshot once the reminder interval has elapsed. Reminders stop at
the configured cap or once the status is terminal.

Ticks run one after another on a fixed delay. Nothing prevents overlap beyond
that, so the tick period has to exceed the worst-case tick duration.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import suppress
from datetime import datetime, timedelta
from typing import Optional

from fastapi.concurrency import run_in_threadpool

from .configuration import ReminderSettings
from .database import ConferenceStore
from .mailer import MailerGuard
from .models import REMINDER_ELIGIBLE_STATUSES, ReminderTickResult, Submission
from .notifications import Notifier
from .utils import Clock, ensure_utc, utc_now

logger = logging.getLogger(__name__)

MAILER_BLOCKED = "mailer_blocked"


def reminder_reference(submission: Submission) -> datetime:
    """
    The moment the reminder interval is measured from.

    Last reminder if any, else the earliest dispatch time in the committee
    snapshot, else the record's own timestamps.
    """
    if submission.review_reminder_last_sent_at is not None:
        return ensure_utc(submission.review_reminder_last_sent_at)
    if submission.committee_members:
        return min(ensure_utc(member.sent_at) for member in submission.committee_members)
    return ensure_utc(submission.updated_at or submission.created_at)


def is_reminder_due(submission: Submission, now: datetime, interval: timedelta, max_reminders: int) -> bool:
    if submission.review_reminder_count >= max_reminders:
        return False
    if submission.review_status.is_terminal:
        return False
    return ensure_utc(now) - reminder_reference(submission) >= interval


class ReviewReminderJob:
    def __init__(
        self,
        store: ConferenceStore,
        notifier: Notifier,
        guard: MailerGuard,
        settings: ReminderSettings,
        clock: Clock = utc_now,
    ):
        self.store = store
        self.notifier = notifier
        self.guard = guard
        self.settings = settings
        self.clock = clock
        self._task: Optional[asyncio.Task] = None

    @property
    def interval(self) -> timedelta:
        return timedelta(hours=self.settings.interval_hours)

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def run_once(self, now: Optional[datetime] = None) -> ReminderTickResult:
        """Run a single tick and report what it did."""
        if self.guard.is_blocked():
            logger.info(f"[ReviewReminderJob] Skipped: mailer blocked until {self.guard.next_available().isoformat()}")
            return ReminderTickResult(skipped_reason=MAILER_BLOCKED)

        now = now or self.clock()
        submissions = await run_in_threadpool(
            self.store.find_submissions_by_filter, True, REMINDER_ELIGIBLE_STATUSES
        )
        result = ReminderTickResult(scanned=len(submissions))

        for submission in submissions:
            if self.guard.is_blocked():
                logger.warning("[ReviewReminderJob] Mailer blocked mid-tick; leaving remaining submissions for later")
                result.skipped_reason = MAILER_BLOCKED
                break
            if not is_reminder_due(submission, now, self.interval, self.settings.max_reminders):
                continue
            if not submission.committee_members:
                logger.debug(f"[ReviewReminderJob] {submission.paper_id}: no committee snapshot, skipping")
                continue

            outcomes = await self.notifier.review_reminders(submission, submission.committee_members)
            sent = sum(1 for o in outcomes if o.ok)
            failed = len(outcomes) - sent
            result.emails_delivered += sent
            result.emails_failed += failed
            logger.info(f"[ReviewReminderJob] {submission.paper_id}: sent={sent}, failed={failed}")

            recorded = await run_in_threadpool(
                self.store.record_reminder, submission.id, now, self.settings.max_reminders
            )
            if recorded:
                result.reminders_sent += 1

        logger.info(f"[ReviewReminderJob] scanned={result.scanned}, remindersSent={result.reminders_sent}")
        return result

    async def _run_forever(self) -> None:
        await asyncio.sleep(self.settings.initial_delay_seconds)
        period = self.settings.check_every_min * 60
        while True:
            try:
                await self.run_once()
            except Exception:
                logger.exception("[ReviewReminderJob] Tick failed")
            await asyncio.sleep(period)

    def start(self) -> None:
        """Schedule the tick loop on the running event loop."""
        if self.settings.disabled:
            logger.info("[ReviewReminderJob] Disabled by configuration")
            return
        if self.running:
            return
        logger.info(
            f"[ReviewReminderJob] Starting: every {self.settings.check_every_min} min, "
            f"interval {self.settings.interval_hours} h, max {self.settings.max_reminders} reminders"
        )
        self._task = asyncio.create_task(self._run_forever())

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        with suppress(asyncio.CancelledError):
            await self._task
        self._task = None
        logger.info("[ReviewReminderJob] Stopped")
