from __future__ import annotations

import logging
from typing import Iterable, Optional

from fastapi.concurrency import run_in_threadpool

from .database import ConferenceStore
from .errors import NoActiveRecipientsError
from .models import DispatchResult, ReviewStatus
from .notifications import Notifier
from .utils import Clock, utc_now

logger = logging.getLogger(__name__)


class CommitteeDispatch:
    """
    Sends a submission to reviewing committee members.

    Delivery is best-effort: the snapshot records every resolved member, not
    only those whose email went out, so requests can be resent manually.
    """

    def __init__(self, store: ConferenceStore, notifier: Notifier, clock: Clock = utc_now):
        self.store = store
        self.notifier = notifier
        self.clock = clock

    async def dispatch(
        self,
        submission_id: str,
        committee_ids: Optional[Iterable[str]] = None,
        send_to_all: bool = False,
    ) -> DispatchResult:
        """
        Email the selected active members and mark the submission as sent.

        Raises:
            NotFoundError: If the submission does not exist
            NoActiveRecipientsError: If the selection resolves to no active
                members; the submission is left unchanged
        """
        submission = await run_in_threadpool(self.store.get_submission, submission_id)

        ids = None if send_to_all else list(committee_ids or [])
        if ids is not None and not ids:
            raise NoActiveRecipientsError("Select at least one committee member or send to all")
        members = await run_in_threadpool(self.store.find_active_committee_members, ids)
        if not members:
            raise NoActiveRecipientsError()

        outcomes = await self.notifier.review_requests(submission, members)
        delivered = sum(1 for o in outcomes if o.ok)
        failed = len(outcomes) - delivered
        if failed:
            logger.warning(f"Dispatch {submission.paper_id}: {failed} of {len(outcomes)} review requests not delivered")

        now = self.clock()
        updated = await run_in_threadpool(
            self.store.update_submission,
            submission.id,
            {
                "review_status": ReviewStatus.SENT_TO_COMMITTEE,
                "sent_to_committee": True,
                "committee_members": [member.snapshot(now) for member in members],
                "review_reminder_count": 0,
                "review_reminder_last_sent_at": None,
                "updated_at": now,
            },
        )
        logger.info(f"Dispatched {updated.paper_id} to {len(members)} committee member(s): delivered={delivered}, failed={failed}")

        return DispatchResult(sent_count=len(members), delivered=delivered, failed=failed, submission=updated)
