"""
Tests for committee dispatch.
"""

import pytest

from conference_backend.dispatch import CommitteeDispatch
from conference_backend.errors import NoActiveRecipientsError, NotFoundError, ValidationError
from conference_backend.models import ReviewStatus


@pytest.fixture
def dispatcher(store, notifier, clock):
    return CommitteeDispatch(store, notifier, clock=clock)


class TestDispatch:
    @pytest.mark.asyncio
    async def test_send_to_all_without_active_members_changes_nothing(self, dispatcher, store, make_submission, make_member):
        submission = make_submission()
        make_member(active=False)

        with pytest.raises(NoActiveRecipientsError, match="No active committee members found") as excinfo:
            await dispatcher.dispatch(submission.id, send_to_all=True)

        assert isinstance(excinfo.value, ValidationError)
        unchanged = store.get_submission(submission.id)
        assert unchanged.review_status == ReviewStatus.PENDING
        assert unchanged.sent_to_committee is False
        assert unchanged.committee_members == []

    @pytest.mark.asyncio
    async def test_selected_inactive_members_are_filtered(self, dispatcher, make_submission, make_member):
        submission = make_submission()
        inactive = make_member(active=False)

        with pytest.raises(NoActiveRecipientsError):
            await dispatcher.dispatch(submission.id, committee_ids=[inactive.id])

    @pytest.mark.asyncio
    async def test_unknown_submission(self, dispatcher, make_member):
        make_member()
        with pytest.raises(NotFoundError):
            await dispatcher.dispatch("missing", send_to_all=True)

    @pytest.mark.asyncio
    async def test_snapshot_records_every_resolved_member(self, dispatcher, store, transport, clock, make_submission, make_member):
        submission = make_submission()
        alice = make_member(name="Alice", email="alice@review.test")
        bob = make_member(name="Bob", email="bob@review.test")
        make_member(name="Carol", email="carol@review.test")
        transport.fail_for.add("bob@review.test")

        result = await dispatcher.dispatch(submission.id, committee_ids=[alice.id, bob.id])

        assert result.sent_count == 2
        assert result.delivered == 1
        assert result.failed == 1
        assert transport.recipients() == ["alice@review.test"]

        stored = store.get_submission(submission.id)
        assert stored.review_status == ReviewStatus.SENT_TO_COMMITTEE
        assert stored.sent_to_committee is True
        assert {m.email for m in stored.committee_members} == {"alice@review.test", "bob@review.test"}
        assert all(m.sent_at == clock() for m in stored.committee_members)

    @pytest.mark.asyncio
    async def test_send_to_all_uses_active_members_only(self, dispatcher, transport, make_submission, make_member):
        submission = make_submission()
        make_member(email="one@review.test")
        make_member(email="two@review.test")
        make_member(email="gone@review.test", active=False)

        result = await dispatcher.dispatch(submission.id, send_to_all=True)

        assert result.sent_count == 2
        assert sorted(transport.recipients()) == ["one@review.test", "two@review.test"]

    @pytest.mark.asyncio
    async def test_redispatch_starts_a_new_reminder_cycle(self, dispatcher, store, clock, make_submission, make_member):
        submission = make_submission()
        make_member()
        await dispatcher.dispatch(submission.id, send_to_all=True)
        store.record_reminder(submission.id, clock(), max_reminders=5)
        assert store.get_submission(submission.id).review_reminder_count == 1

        clock.advance(days=3)
        result = await dispatcher.dispatch(submission.id, send_to_all=True)

        assert result.submission.review_reminder_count == 0
        assert result.submission.review_reminder_last_sent_at is None
        assert result.submission.committee_members[0].sent_at == clock()
