"""Tests for the merge invitation lifecycle."""

from datetime import datetime, timedelta

import pytest
from sqlalchemy.exc import IntegrityError

from account_merge import invitations
from account_merge.errors import (
    AlreadyMerged,
    HasActiveInvitation,
    InvitationExpired,
    NotFound,
    NotFoundOrProcessed,
    ValidationFailed,
)
from account_merge.models import (
    INVITATION_ACCEPTED,
    INVITATION_CANCELLED,
    INVITATION_DECLINED,
    INVITATION_PENDING,
    Account,
    AccountMerge,
    MergeInvitation,
    db,
)
from account_merge.settings_provider import MergeSettings

T0 = datetime(2024, 5, 1, 12, 0, 0)


@pytest.fixture
def anna(make_account):
    return make_account("anna", first_name="Anna", public_username="anna-pub")


@pytest.fixture
def ben(make_account):
    return make_account("ben", first_name="Ben")


@pytest.fixture
def cleo(make_account):
    return make_account("cleo", first_name="Cleo")


class TestSendInvitation:

    @pytest.mark.parametrize("identifier", ["ben", "ben@example.com", "BEN@example.com"])
    def test_identifier_resolution(self, session, anna, ben, identifier):
        invitation = invitations.send_invitation(session, anna.id, identifier, None, now=T0)
        assert invitation.invited_id == ben.id
        assert invitation.status == INVITATION_PENDING

    def test_public_username_resolves(self, session, anna, ben):
        invitation = invitations.send_invitation(session, ben.id, "anna-pub", "hi", now=T0)
        assert invitation.invited_id == anna.id
        assert invitation.message == "hi"

    def test_expiry_from_settings(self, session, anna, ben):
        invitation = invitations.send_invitation(
            session, anna.id, "ben", None, settings=MergeSettings(invitation_expiry_days=3), now=T0
        )
        assert invitation.expires_at == T0 + timedelta(days=3)

    def test_default_expiry_is_seven_days(self, session, anna, ben):
        invitation = invitations.send_invitation(session, anna.id, "ben", None, now=T0)
        assert invitation.expires_at == T0 + timedelta(days=7)

    def test_unknown_target(self, session, anna):
        with pytest.raises(NotFound):
            invitations.send_invitation(session, anna.id, "nobody", None, now=T0)

    def test_inviting_self_is_not_found(self, session, anna):
        with pytest.raises(NotFound):
            invitations.send_invitation(session, anna.id, "anna", None, now=T0)

    def test_blank_identifier_and_long_message(self, session, anna, ben):
        with pytest.raises(ValidationFailed):
            invitations.send_invitation(session, anna.id, "   ", None, now=T0)
        with pytest.raises(ValidationFailed):
            invitations.send_invitation(session, anna.id, "ben", "x" * 501, now=T0)

    def test_merged_target_rejected(self, session, anna, ben, cleo):
        inv = invitations.send_invitation(session, anna.id, "ben", None, now=T0)
        invitations.accept_invitation(session, inv.id, ben.id, now=T0)

        with pytest.raises(AlreadyMerged):
            invitations.send_invitation(session, cleo.id, "ben", None, now=T0)
        with pytest.raises(AlreadyMerged):
            invitations.send_invitation(session, anna.id, "cleo", None, now=T0)

    def test_pending_invitation_blocks_both_parties(self, session, anna, ben, cleo):
        invitations.send_invitation(session, anna.id, "ben", None, now=T0)

        # Target already has a received invitation
        with pytest.raises(HasActiveInvitation):
            invitations.send_invitation(session, cleo.id, "ben", None, now=T0)
        # Inviter already has a sent invitation
        with pytest.raises(HasActiveInvitation):
            invitations.send_invitation(session, anna.id, "cleo", None, now=T0)
        # Invited party cannot counter-invite
        with pytest.raises(HasActiveInvitation):
            invitations.send_invitation(session, ben.id, "anna", None, now=T0)

        pending = db.session.query(MergeInvitation).filter_by(status=INVITATION_PENDING).count()
        assert pending == 1

    def test_pending_pair_index_rejects_duplicate_rows(self, session, anna, ben):
        for _ in range(2):
            db.session.add(MergeInvitation(inviter_id=anna.id, invited_id=ben.id, status=INVITATION_PENDING,
                                           created_at=T0, expires_at=T0 + timedelta(days=7)))
        with pytest.raises(IntegrityError):
            db.session.commit()
        db.session.rollback()


class TestAcceptInvitation:

    def test_accept_merges_and_marks_accepted(self, session, anna, ben):
        inv = invitations.send_invitation(session, anna.id, "ben", None, now=T0)
        merge = invitations.accept_invitation(session, inv.id, ben.id, now=T0 + timedelta(hours=1))

        db.session.expire_all()
        invitation = db.session.get(MergeInvitation, inv.id)
        assert invitation.status == INVITATION_ACCEPTED
        assert invitation.responded_at == T0 + timedelta(hours=1)
        assert merge.user1_id == anna.id
        assert merge.user2_id == ben.id
        assert merge.merge_slug == "anna-ben-travels"

    def test_only_invited_party_may_accept(self, session, anna, ben):
        inv = invitations.send_invitation(session, anna.id, "ben", None, now=T0)
        with pytest.raises(NotFoundOrProcessed):
            invitations.accept_invitation(session, inv.id, anna.id, now=T0)

    def test_expired_invitation_is_cancelled(self, session, anna, ben):
        inv = invitations.send_invitation(session, anna.id, "ben", None, now=T0)

        with pytest.raises(InvitationExpired):
            invitations.accept_invitation(session, inv.id, ben.id, now=T0 + timedelta(days=8))

        db.session.expire_all()
        invitation = db.session.get(MergeInvitation, inv.id)
        assert invitation.status == INVITATION_CANCELLED
        assert db.session.query(AccountMerge).count() == 0

        with pytest.raises(NotFoundOrProcessed):
            invitations.accept_invitation(session, inv.id, ben.id, now=T0 + timedelta(days=8))

    def test_accept_exactly_at_expiry_succeeds(self, session, anna, ben):
        inv = invitations.send_invitation(session, anna.id, "ben", None, now=T0)
        merge = invitations.accept_invitation(session, inv.id, ben.id, now=T0 + timedelta(days=7))
        assert merge.merge_slug == "anna-ben-travels"

    def test_eligibility_rechecked_at_accept(self, session, anna, ben, cleo):
        inv = invitations.send_invitation(session, anna.id, "ben", None, now=T0)
        # Another pending invitation appears for ben behind the guard's back
        db.session.add(MergeInvitation(inviter_id=cleo.id, invited_id=ben.id, status=INVITATION_PENDING,
                                       created_at=T0, expires_at=T0 + timedelta(days=7)))
        db.session.commit()

        with pytest.raises(HasActiveInvitation):
            invitations.accept_invitation(session, inv.id, ben.id, now=T0)

        db.session.expire_all()
        assert db.session.get(MergeInvitation, inv.id).status == INVITATION_PENDING
        assert db.session.query(AccountMerge).count() == 0

    def test_failed_merge_rolls_back_everything(self, session, anna, ben, monkeypatch):
        inv = invitations.send_invitation(session, anna.id, "ben", None, now=T0)

        def explode(*args, **kwargs):
            raise RuntimeError("history write failed")

        monkeypatch.setattr("account_merge.history.record_merged", explode)

        with pytest.raises(RuntimeError):
            invitations.accept_invitation(session, inv.id, ben.id, now=T0)

        db.session.expire_all()
        assert db.session.get(MergeInvitation, inv.id).status == INVITATION_PENDING
        assert db.session.query(AccountMerge).count() == 0
        assert not db.session.get(Account, anna.id).is_merged


class TestDeclineAndCancel:

    def test_decline_by_invited(self, session, anna, ben):
        inv = invitations.send_invitation(session, anna.id, "ben", None, now=T0)
        invitations.decline_invitation(session, inv.id, ben.id, now=T0)
        assert db.session.get(MergeInvitation, inv.id).status == INVITATION_DECLINED

        with pytest.raises(NotFoundOrProcessed):
            invitations.decline_invitation(session, inv.id, ben.id, now=T0)

    def test_cancel_by_inviter_only(self, session, anna, ben):
        inv = invitations.send_invitation(session, anna.id, "ben", None, now=T0)
        with pytest.raises(NotFoundOrProcessed):
            invitations.cancel_invitation(session, inv.id, ben.id, now=T0)

        invitations.cancel_invitation(session, inv.id, anna.id, now=T0)
        assert db.session.get(MergeInvitation, inv.id).status == INVITATION_CANCELLED

    def test_closed_invitation_frees_both_parties(self, session, anna, ben):
        inv = invitations.send_invitation(session, anna.id, "ben", None, now=T0)
        assert invitations.can_send_invitation(session, ben.id) == (False, "has_active_invitation")

        invitations.cancel_invitation(session, inv.id, anna.id, now=T0)
        assert invitations.can_send_invitation(session, ben.id) == (True, None)

        again = invitations.send_invitation(session, anna.id, "ben", None, now=T0)
        assert again.id != inv.id


class TestPendingInvitations:

    def test_sent_and_received_views(self, session, anna, ben):
        inv = invitations.send_invitation(session, anna.id, "ben", "let's merge", now=T0)

        sent = invitations.get_pending_invitations(session, anna.id, now=T0)
        assert [i["id"] for i in sent["sent"]] == [inv.id]
        assert sent["sent"][0]["invitedUser"]["username"] == "ben"
        assert sent["received"] == []

        received = invitations.get_pending_invitations(session, ben.id, now=T0)
        assert received["received"][0]["inviter"]["firstName"] == "Anna"
        assert received["received"][0]["message"] == "let's merge"
        assert received["received"][0]["isExpired"] is False


class TestOverlappingCalls:

    def test_sends_to_same_target_leave_one_pending(self, session, anna, ben, cleo, run_overlapping):
        anna_id, ben_id, cleo_id = anna.id, ben.id, cleo.id

        first, second = run_overlapping(
            lambda s: invitations.send_invitation(s, anna_id, "ben", None, now=T0).id,
            lambda s: invitations.send_invitation(s, cleo_id, "ben", None, now=T0).id,
            pause_before="INSERT INTO account_merge_invitations",
        )

        assert isinstance(first, int)
        assert isinstance(second, HasActiveInvitation)
        pending = db.session.query(MergeInvitation).filter_by(invited_id=ben_id, status=INVITATION_PENDING)
        assert pending.count() == 1
        assert pending.one().inviter_id == anna_id

    def test_double_accept_merges_once(self, session, anna, ben, run_overlapping):
        inv_id = invitations.send_invitation(session, anna.id, "ben", None, now=T0).id
        ben_id = ben.id

        def accept(s):
            return invitations.accept_invitation(s, inv_id, ben_id, now=T0).merge_slug

        first, second = run_overlapping(accept, accept, pause_before="INSERT INTO account_merges")

        assert first == "anna-ben-travels"
        assert isinstance(second, NotFoundOrProcessed)
        assert db.session.query(AccountMerge).count() == 1
        assert db.session.get(MergeInvitation, inv_id).status == INVITATION_ACCEPTED

    def test_accept_and_cancel_do_not_both_apply(self, session, anna, ben, run_overlapping):
        inv_id = invitations.send_invitation(session, anna.id, "ben", None, now=T0).id
        anna_id, ben_id = anna.id, ben.id

        first, second = run_overlapping(
            lambda s: invitations.accept_invitation(s, inv_id, ben_id, now=T0).merge_slug,
            lambda s: invitations.cancel_invitation(s, inv_id, anna_id, now=T0).status,
            pause_before="INSERT INTO account_merges",
        )

        assert first == "anna-ben-travels"
        assert isinstance(second, NotFoundOrProcessed)
        assert db.session.get(MergeInvitation, inv_id).status == INVITATION_ACCEPTED
