"""Templated notification emails for intake, committee dispatch, reminders and
the public sign-up forms."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple

from jinja2 import Environment, FileSystemLoader, select_autoescape

from .mailer import GuardedMailer, MailMessage, SendOutcome
from .models import ContactMessage, KeynoteSpeaker, Registration, Sponsor, Submission

logger = logging.getLogger(__name__)

TEMPLATES_DIR = Path(__file__).resolve().parent / "templates"


class Notifier:
    def __init__(self, mailer: GuardedMailer, admin_email: str = "", storage=None):
        self.mailer = mailer
        self.admin_email = admin_email
        self.storage = storage
        self._jinja = Environment(
            loader=FileSystemLoader(str(TEMPLATES_DIR)),
            autoescape=select_autoescape(["html", "xml"]),
        )

    def render(self, template_name: str, context: Dict[str, Any]) -> str:
        return self._jinja.get_template(template_name).render(**context)

    def _paper_link(self, submission: Submission) -> Optional[str]:
        if self.storage is None or not submission.paper_file_url:
            return None
        return self.storage.presigned_url(submission.paper_file_url)

    def _message(self, to: str, subject: str, template_name: str, context: Dict[str, Any]) -> MailMessage:
        context = {"subject": subject, "admin_email": self.admin_email, **context}
        submission = context.get("submission")
        if submission is not None:
            context.setdefault("conference_title", submission.conference_title)
        return MailMessage(to=to, subject=subject, html=self.render(template_name, context))

    async def submission_received(self, submission: Submission) -> List[SendOutcome]:
        """Confirm receipt to the author and alert the admin inbox."""
        messages = [
            self._message(
                submission.email,
                f"Paper submission received: {submission.paper_id}",
                "submission_received.html",
                {"submission": submission},
            )
        ]
        if self.admin_email:
            messages.append(
                self._message(
                    self.admin_email,
                    f"New paper submission: {submission.name} ({submission.paper_id})",
                    "admin_notification.html",
                    {"submission": submission},
                )
            )
        return await self.mailer.send_all(messages)

    async def review_requests(self, submission: Submission, members: Sequence[Any]) -> List[SendOutcome]:
        link = self._paper_link(submission)
        messages = [
            self._message(
                member.email,
                f"Review request: {submission.paper_title} ({submission.paper_id})",
                "review_request.html",
                {"submission": submission, "member_name": member.name, "paper_link": link},
            )
            for member in members
        ]
        return await self.mailer.send_all(messages)

    async def review_reminders(self, submission: Submission, members: Sequence[Any]) -> List[SendOutcome]:
        link = self._paper_link(submission)
        reminder_number = submission.review_reminder_count + 1
        messages = [
            self._message(
                member.email,
                f"Reminder: review pending for {submission.paper_id}",
                "review_reminder.html",
                {
                    "submission": submission,
                    "member_name": member.name,
                    "paper_link": link,
                    "reminder_number": reminder_number,
                },
            )
            for member in members
        ]
        return await self.mailer.send_all(messages)

    async def _form_received(
        self,
        to: str,
        subject: str,
        template_name: str,
        context: Dict[str, Any],
        admin_subject: str,
        fields: Sequence[Tuple[str, Any]],
    ) -> List[SendOutcome]:
        messages = [self._message(to, subject, template_name, context)]
        if self.admin_email:
            messages.append(
                self._message(
                    self.admin_email,
                    admin_subject,
                    "form_admin_notification.html",
                    {
                        "heading": admin_subject,
                        "fields": [(label, value) for label, value in fields if value not in (None, "")],
                    },
                )
            )
        return await self.mailer.send_all(messages)

    async def registration_received(self, registration: Registration) -> List[SendOutcome]:
        return await self._form_received(
            registration.email,
            f"Registration received for paper {registration.paper_id}",
            "registration_received.html",
            {"registration": registration},
            f"New registration: {registration.name} ({registration.paper_id})",
            [
                ("Name", registration.name),
                ("Email", registration.email),
                ("Type", registration.registration_type),
                ("Institution", registration.institution_name),
                ("Country", registration.country),
                ("Paper ID", registration.paper_id),
                ("Transaction ID", registration.transaction_id),
                ("Fee", registration.reg_fee),
                ("Receipt", registration.payment_receipt_url),
            ],
        )

    async def keynote_speaker_received(self, speaker: KeynoteSpeaker) -> List[SendOutcome]:
        return await self._form_received(
            speaker.email,
            "Keynote speaker application received",
            "keynote_received.html",
            {"speaker": speaker},
            f"New keynote speaker application: {speaker.name}",
            [
                ("Name", speaker.name),
                ("Email", speaker.email),
                ("Designation", speaker.designation),
                ("Institution", speaker.institution_name),
                ("Expertise", speaker.expertise_area.value),
                ("Keynote title", speaker.keynote_title),
                ("CV", speaker.cv_file_url),
            ],
        )

    async def sponsor_received(self, sponsor: Sponsor) -> List[SendOutcome]:
        return await self._form_received(
            sponsor.email,
            "Thank you for your sponsorship interest",
            "sponsor_received.html",
            {"sponsor": sponsor},
            f"New {sponsor.level.value} sponsor: {sponsor.name}",
            [
                ("Name", sponsor.name),
                ("Email", sponsor.email),
                ("Company", sponsor.company_name),
                ("Level", sponsor.level.value),
                ("Amount", sponsor.amount),
                ("Message", sponsor.message),
            ],
        )

    async def contact_received(self, contact: ContactMessage) -> List[SendOutcome]:
        return await self._form_received(
            contact.email,
            f"We received your message: {contact.subject}",
            "contact_received.html",
            {"contact": contact},
            f"Contact form: {contact.subject}",
            [
                ("Name", contact.name),
                ("Email", contact.email),
                ("Phone", contact.phone),
                ("Subject", contact.subject),
                ("Message", contact.message),
            ],
        )
