"""
Review status state machines.

Submissions move ``PENDING -> SENT_TO_COMMITTEE -> UNDER_REVIEW -> {APPROVED |
REJECTED | NEEDS_REVISION}``. Writes are permissive: any status may follow any
other, and the only check is membership in the enum. The reminder scheduler's
eligibility rules are what give the states their practical order. Resetting to
``PENDING`` restarts the review cycle.

Reviewer expressions of interest move ``PENDING -> {ACCEPTED | REJECTED}``;
accepting one syncs the committee directory in the same transaction.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Any, Dict, Optional, Type, TypeVar

from fastapi.concurrency import run_in_threadpool

from .database import ConferenceStore
from .errors import ValidationError
from .models import ExpressionStatus, ExpressionStatusResult, KeynoteStatus, ReviewStatus, Submission

logger = logging.getLogger(__name__)

E = TypeVar("E", bound=Enum)


def _parse_enum(enum_cls: Type[E], value: Any, label: str) -> E:
    try:
        return enum_cls(value)
    except ValueError:
        allowed = ", ".join(member.value for member in enum_cls)
        raise ValidationError(f"Invalid {label} '{value}'. Allowed values: {allowed}") from None


def parse_review_status(value: Any) -> ReviewStatus:
    return _parse_enum(ReviewStatus, value, "review status")


def parse_expression_status(value: Any) -> ExpressionStatus:
    return _parse_enum(ExpressionStatus, value, "expression status")


def parse_keynote_status(value: Any) -> KeynoteStatus:
    return _parse_enum(KeynoteStatus, value, "keynote status")


class ReviewStatusMachine:
    def __init__(self, store: ConferenceStore):
        self.store = store

    async def set_status(self, submission_id: str, value: Any) -> Submission:
        """
        Write a new review status.

        Raises:
            ValidationError: If ``value`` is not a known status
            NotFoundError: If the submission does not exist
        """
        status = parse_review_status(value)
        patch: Dict[str, Any] = {"review_status": status}
        if status == ReviewStatus.PENDING:
            patch.update(
                sent_to_committee=False,
                committee_members=[],
                review_reminder_count=0,
                review_reminder_last_sent_at=None,
            )

        submission = await run_in_threadpool(self.store.update_submission, submission_id, patch)
        logger.info(f"Submission {submission.paper_id} review status set to {status.value}")
        return submission


class ExpressionStatusMachine:
    def __init__(self, store: ConferenceStore):
        self.store = store

    async def set_status(self, expression_id: str, value: Any, actor: Optional[str] = None) -> ExpressionStatusResult:
        status = parse_expression_status(value)
        result = await run_in_threadpool(self.store.set_expression_status, expression_id, status, actor)
        if result.synced_to_committee:
            logger.info(f"Reviewer expression {expression_id} accepted; committee member {result.committee_member.email} synced")
        else:
            logger.info(f"Reviewer expression {expression_id} set to {status.value}")
        return result
