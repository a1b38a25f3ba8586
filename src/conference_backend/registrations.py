"""
Public sign-up forms: attendee registrations, keynote speaker applications,
sponsorship offers and contact messages.

Each form is stored first and acknowledged by e-mail afterwards. Mail
failures are logged and never undo a stored record.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from fastapi.concurrency import run_in_threadpool

from .database import ConferenceStore
from .errors import ValidationError
from .mailer import SendOutcome
from .models import (
    ContactMessage,
    ContactMessageCreate,
    KeynoteSpeaker,
    KeynoteSpeakerCreate,
    Registration,
    RegistrationCreate,
    Sponsor,
    SponsorCreate,
)
from .notifications import Notifier
from .review_status import parse_keynote_status
from .utils import Clock, utc_now

logger = logging.getLogger(__name__)


def _log_failed(outcomes: List[SendOutcome], label: str) -> None:
    failed = sum(1 for o in outcomes if not o.ok)
    if failed:
        logger.warning(f"{label}: {failed} confirmation email(s) not delivered")


class RegistrationDesk:
    def __init__(self, store: ConferenceStore, notifier: Optional[Notifier] = None, clock: Clock = utc_now):
        self.store = store
        self.notifier = notifier
        self.clock = clock

    def _timestamps(self) -> Dict[str, Any]:
        now = self.clock()
        return {"created_at": now, "updated_at": now}

    async def _check_paper_reference(self, paper_id: str) -> None:
        if await run_in_threadpool(self.store.find_submission_by_paper_id, paper_id) is None:
            raise ValidationError(f'Paper ID "{paper_id}" does not match any submission')

    async def register_attendee(self, data: RegistrationCreate, receipt_url: Optional[str] = None) -> Registration:
        """
        Store an attendee registration for a submitted paper.

        Raises:
            ValidationError: If the paper id matches no submission
            ConflictError: If the paper id or transaction id is already registered
        """
        await self._check_paper_reference(data.paper_id)
        values = {**data.model_dump(), "payment_receipt_url": receipt_url, **self._timestamps()}
        registration = await run_in_threadpool(self.store.create_registration, values)
        logger.info(f"Registration {registration.id} stored for paper {registration.paper_id}")

        if self.notifier is not None:
            _log_failed(await self.notifier.registration_received(registration), f"Registration {registration.id}")
        return registration

    async def update_registration(self, registration_id: str, patch: Dict[str, Any]) -> Registration:
        if patch.get("paper_id"):
            await self._check_paper_reference(patch["paper_id"])
        return await run_in_threadpool(self.store.update_registration, registration_id, patch)

    async def register_keynote_speaker(
        self, data: KeynoteSpeakerCreate, file_urls: Optional[Dict[str, Optional[str]]] = None
    ) -> KeynoteSpeaker:
        """
        Store a keynote speaker application in ``PENDING``.

        Raises:
            DuplicateEmailError: If the e-mail already has an application
        """
        values = {**data.model_dump(), **(file_urls or {}), **self._timestamps()}
        speaker = await run_in_threadpool(self.store.create_keynote_speaker, values)
        logger.info(f"Keynote speaker application {speaker.id} stored")

        if self.notifier is not None:
            _log_failed(await self.notifier.keynote_speaker_received(speaker), f"Keynote speaker {speaker.id}")
        return speaker

    async def update_keynote_speaker(self, speaker_id: str, patch: Dict[str, Any]) -> KeynoteSpeaker:
        patch = dict(patch)
        if patch.get("status") is not None:
            patch["status"] = parse_keynote_status(patch["status"])
        return await run_in_threadpool(self.store.update_keynote_speaker, speaker_id, patch)

    async def set_keynote_status(self, speaker_id: str, value: Any) -> KeynoteSpeaker:
        """
        Raises:
            ValidationError: If ``value`` is not a known keynote status
            NotFoundError: If the application does not exist
        """
        status = parse_keynote_status(value)
        speaker = await run_in_threadpool(self.store.update_keynote_speaker, speaker_id, {"status": status})
        logger.info(f"Keynote speaker {speaker_id} status set to {status.value}")
        return speaker

    async def register_sponsor(self, data: SponsorCreate) -> Sponsor:
        values = {**data.model_dump(), **self._timestamps()}
        sponsor = await run_in_threadpool(self.store.create_sponsor, values)
        logger.info(f"Sponsor {sponsor.id} stored at level {sponsor.level.value}")

        if self.notifier is not None:
            _log_failed(await self.notifier.sponsor_received(sponsor), f"Sponsor {sponsor.id}")
        return sponsor

    async def record_contact(self, data: ContactMessageCreate) -> ContactMessage:
        values = {**data.model_dump(), "created_at": self.clock()}
        contact = await run_in_threadpool(self.store.create_contact_message, values)
        logger.info(f"Contact message {contact.id} stored")

        if self.notifier is not None:
            _log_failed(await self.notifier.contact_received(contact), f"Contact message {contact.id}")
        return contact
