from __future__ import annotations

import logging
from typing import Dict, Optional

from fastapi.concurrency import run_in_threadpool

from .database import ConferenceStore
from .errors import DuplicateEmailError, DuplicatePaperIdError, PaperIdExhaustedError
from .models import ReviewStatus, Submission, SubmissionCreate
from .notifications import Notifier
from .paper_ids import PaperIdAllocator, format_paper_id, parse_serial
from .utils import Clock, utc_now

logger = logging.getLogger(__name__)

DEFAULT_MAX_ATTEMPTS = 6


class SubmissionIntake:
    """
    Persists new paper submissions under a freshly allocated paper id.

    Attempts are strictly sequential per request. Concurrent requests race on
    the same serial and the loser of each collision moves to the next serial.
    """

    def __init__(
        self,
        store: ConferenceStore,
        allocator: PaperIdAllocator,
        notifier: Optional[Notifier] = None,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        clock: Clock = utc_now,
    ):
        self.store = store
        self.allocator = allocator
        self.notifier = notifier
        self.max_attempts = max_attempts
        self.clock = clock

    async def submit(self, data: SubmissionCreate, file_urls: Optional[Dict[str, Optional[str]]] = None) -> Submission:
        """
        Validate uniqueness, allocate a paper id and store the submission.

        Raises:
            DuplicateEmailError: If the author's email already has a submission
            PaperIdExhaustedError: If every attempt collided on the paper id
        """
        if await run_in_threadpool(self.store.email_registered, data.email):
            raise DuplicateEmailError("A submission with this email already exists")

        now = self.clock()
        values = {
            **data.model_dump(),
            **(file_urls or {}),
            "review_status": ReviewStatus.PENDING,
            "sent_to_committee": False,
            "created_at": now,
            "updated_at": now,
        }

        submission = None
        candidate = await self.allocator.allocate(now)
        for attempt in range(1, self.max_attempts + 1):
            try:
                submission = await run_in_threadpool(self.store.create_submission, {**values, "paper_id": candidate})
                break
            except DuplicatePaperIdError:
                logger.info(f"Paper id {candidate} taken (attempt {attempt}/{self.max_attempts}); retrying")
                candidate = format_paper_id(now, parse_serial(candidate) + 1)

        if submission is None:
            logger.error(f"Paper id allocation exhausted after {self.max_attempts} attempts")
            raise PaperIdExhaustedError(self.max_attempts)

        logger.info(f"Submission {submission.id} stored with paper id {submission.paper_id}")

        if self.notifier is not None:
            outcomes = await self.notifier.submission_received(submission)
            failed = sum(1 for o in outcomes if not o.ok)
            if failed:
                logger.warning(f"Submission {submission.paper_id}: {failed} confirmation email(s) not delivered")

        return submission
