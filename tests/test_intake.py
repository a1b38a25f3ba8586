"""
Tests for submission intake validation and notifications.
"""

import pytest
from pydantic import ValidationError

from conference_backend.intake import SubmissionIntake
from conference_backend.models import ReviewerExpressionCreate, SubmissionCreate
from conference_backend.paper_ids import PaperIdAllocator


class TestSubmissionValidation:
    """Tests for the intake form rules."""

    def test_valid_payload(self, submission_data):
        payload = SubmissionCreate(**submission_data(orcid_id=""))
        assert payload.orcid_id is None

    def test_abstract_too_short(self, submission_data):
        with pytest.raises(ValidationError, match="at least 50 words"):
            SubmissionCreate(**submission_data(paper_abstract="too short"))

    def test_abstract_too_long(self, submission_data):
        with pytest.raises(ValidationError, match="must not exceed 500 words"):
            SubmissionCreate(**submission_data(paper_abstract=" ".join(["word"] * 501)))

    @pytest.mark.parametrize(
        "field, value",
        [
            ("email", "not-an-email"),
            ("phone", "abc"),
            ("orcid_id", "1234-5678"),
            ("paper_title", "   "),
        ],
    )
    def test_invalid_fields(self, submission_data, field, value):
        with pytest.raises(ValidationError):
            SubmissionCreate(**submission_data(**{field: value}))

    def test_agreements_must_be_accepted(self, submission_data):
        with pytest.raises(ValidationError, match="must be accepted"):
            SubmissionCreate(**submission_data(agree_terms=False))

    def test_co_authors_must_be_complete(self, submission_data):
        with pytest.raises(ValidationError):
            SubmissionCreate(**submission_data(co_authors=[{"name": "Bo", "email": "bo@example.org"}]))

        payload = SubmissionCreate(
            **submission_data(
                co_authors=[
                    {
                        "name": "Bo",
                        "email": "bo@example.org",
                        "institution": "Elsewhere",
                        "country": "Chile",
                        "orcid_id": "0000-0002-1825-009X",
                    }
                ]
            )
        )
        assert payload.co_authors[0].orcid_id == "0000-0002-1825-009X"


class TestReviewerExpressionValidation:
    def test_list_fields_accept_loose_formats(self):
        payload = ReviewerExpressionCreate(
            name="Rita Reviewer",
            current_job_title="Professor",
            institution="University of Examples",
            email="  ",
            subject_area='["NLP", "Vision"]',
            education="PhD, MSc",
            research_interest=["Robotics", ""],
        )
        assert payload.email is None
        assert payload.subject_area == ["NLP", "Vision"]
        assert payload.education == ["PhD", "MSc"]
        assert payload.research_interest == ["Robotics"]


class TestIntakeNotifications:
    @pytest.mark.asyncio
    async def test_confirmation_and_admin_copy(self, store, clock, notifier, transport, submission_data):
        intake = SubmissionIntake(store, PaperIdAllocator(store, clock=clock), notifier, clock=clock)
        data = submission_data()

        submission = await intake.submit(SubmissionCreate(**data), {"paper_file_url": "s3://bucket/papers/x.pdf"})

        assert submission.paper_file_url == "s3://bucket/papers/x.pdf"
        assert sorted(transport.recipients()) == sorted([data["email"], "admin@conference.test"])
        assert submission.paper_id in transport.sent[0].subject

    @pytest.mark.asyncio
    async def test_mail_failure_does_not_fail_intake(self, store, clock, notifier, transport, submission_data):
        data = submission_data()
        transport.fail_for.add(data["email"])
        intake = SubmissionIntake(store, PaperIdAllocator(store, clock=clock), notifier, clock=clock)

        submission = await intake.submit(SubmissionCreate(**data))

        assert store.get_submission(submission.id).paper_id == "2501001"
        assert transport.recipients() == ["admin@conference.test"]
