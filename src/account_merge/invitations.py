"""
Merge invitation lifecycle.

pending -> accepted | declined | cancelled. An expired invitation is
cancelled lazily the first time someone tries to accept it.

Every mutating call checks eligibility inside its own transaction, after
locking the participating account rows.
"""
import logging
from datetime import datetime, timedelta
from typing import Any, Optional

from sqlalchemy import func, or_
from sqlalchemy.exc import IntegrityError

from .database import atomic
from .errors import (
    AlreadyMerged,
    HasActiveInvitation,
    InvitationExpired,
    MergeConflict,
    MergeError,
    NotFound,
    NotFoundOrProcessed,
    ValidationFailed,
)
from .merge_service import execute_merge, lock_accounts
from .models import (
    INVITATION_ACCEPTED,
    INVITATION_CANCELLED,
    INVITATION_DECLINED,
    INVITATION_MESSAGE_MAX_LENGTH,
    INVITATION_PENDING,
    Account,
    AccountMerge,
    MergeInvitation,
)
from .settings_provider import MergeSettings, resolve_settings

logger = logging.getLogger(__name__)


# ============================================================================
# Eligibility
# ============================================================================

def _pending_query(session, account_id: int, exclude_invitation_id: Optional[int] = None):
    query = session.query(MergeInvitation).filter(
        MergeInvitation.status == INVITATION_PENDING,
        or_(MergeInvitation.inviter_id == account_id, MergeInvitation.invited_id == account_id),
    )
    if exclude_invitation_id is not None:
        query = query.filter(MergeInvitation.id != exclude_invitation_id)
    return query


def eligibility_error(session, account: Account,
                      exclude_invitation_id: Optional[int] = None) -> Optional[MergeError]:
    """Return the error that blocks `account` from a new merge, or None."""
    if account.is_merged:
        return AlreadyMerged(f'{account.username} is already merged')
    if _pending_query(session, account.id, exclude_invitation_id).first() is not None:
        return HasActiveInvitation(f'{account.username} already has a pending merge invitation')
    return None


def _require_eligible(session, accounts: list[Account], exclude_invitation_id: Optional[int] = None):
    for account in accounts:
        error = eligibility_error(session, account, exclude_invitation_id)
        if error is not None:
            logger.info(f"Account {account.id} not eligible: {error.code}")
            raise error


def can_send_invitation(session, account_id: int,
                        exclude_invitation_id: Optional[int] = None) -> tuple[bool, Optional[str]]:
    """
    Check whether the account may take part in a new invitation.

    Returns:
        (allowed, reason) where reason is the error code when not allowed
    """
    account = session.get(Account, account_id)
    if account is None:
        return False, NotFound.code
    error = eligibility_error(session, account, exclude_invitation_id)
    if error is not None:
        return False, error.code
    return True, None


def find_invitation_target(session, inviter_id: int, identifier: str) -> Optional[Account]:
    """Resolve username, email or public username, never the inviter."""
    return (
        session.query(Account)
        .filter(
            or_(
                Account.username == identifier,
                func.lower(Account.email) == identifier.lower(),
                Account.public_username == identifier,
            ),
            Account.id != inviter_id,
        )
        .order_by(Account.id.asc())
        .first()
    )


# ============================================================================
# Operations
# ============================================================================

def send_invitation(session, inviter_id: int, identifier: str, message: Optional[str] = None,
                    settings: Optional[MergeSettings] = None,
                    now: Optional[datetime] = None) -> MergeInvitation:
    """
    Create a pending invitation from `inviter_id` to the account named by `identifier`.

    Raises:
        ValidationFailed: blank identifier or message too long
        NotFound: identifier does not resolve (or resolves to the inviter)
        AlreadyMerged: either party is merged
        HasActiveInvitation: either party has a pending invitation
        MergeConflict: a concurrent identical invitation won the insert
    """
    identifier = (identifier or '').strip()
    if not identifier:
        raise ValidationFailed('invitedUser is required')
    message = (message or '').strip() or None
    if message and len(message) > INVITATION_MESSAGE_MAX_LENGTH:
        raise ValidationFailed(f'Message must be at most {INVITATION_MESSAGE_MAX_LENGTH} characters')

    settings = resolve_settings(session, settings)
    now = now or datetime.utcnow()

    try:
        with atomic(session):
            target = find_invitation_target(session, inviter_id, identifier)
            if target is None:
                raise NotFound()

            accounts = lock_accounts(session, [inviter_id, target.id])
            inviter = accounts.get(inviter_id)
            if inviter is None:
                raise NotFound('Account not found')

            _require_eligible(session, [inviter, accounts[target.id]])

            invitation = MergeInvitation(
                inviter_id=inviter_id,
                invited_id=target.id,
                message=message,
                status=INVITATION_PENDING,
                created_at=now,
                expires_at=now + timedelta(days=settings.invitation_expiry_days),
            )
            session.add(invitation)
            session.flush()
    except IntegrityError as e:
        logger.warning(f"Invitation {inviter_id}->{identifier} lost a race: {e.orig}")
        raise MergeConflict() from e

    logger.info(f"Merge invitation {invitation.id} sent: {inviter_id} -> {target.id}")
    return invitation


def accept_invitation(session, invitation_id: int, responding_user_id: int,
                      now: Optional[datetime] = None) -> AccountMerge:
    """
    Accept a pending invitation and merge the two accounts.

    An expired invitation is cancelled (and that cancellation committed)
    before InvitationExpired is raised. Any other failure rolls back every
    write, leaving the invitation pending.
    """
    now = now or datetime.utcnow()
    expired = False

    try:
        with atomic(session):
            invitation = (
                session.query(MergeInvitation)
                .filter_by(id=invitation_id, invited_id=responding_user_id, status=INVITATION_PENDING)
                .with_for_update()
                .populate_existing()
                .first()
            )
            if invitation is None:
                raise NotFoundOrProcessed()

            if invitation.is_expired(now):
                invitation.status = INVITATION_CANCELLED
                invitation.responded_at = now
                expired = True
            else:
                accounts = lock_accounts(session, [invitation.inviter_id, invitation.invited_id])
                if len(accounts) != 2:
                    raise NotFoundOrProcessed()
                _require_eligible(
                    session,
                    [accounts[invitation.inviter_id], accounts[invitation.invited_id]],
                    exclude_invitation_id=invitation.id,
                )

                merge = execute_merge(session, invitation, responding_user_id, now)
                invitation.status = INVITATION_ACCEPTED
                invitation.responded_at = now
    except IntegrityError as e:
        logger.warning(f"Accepting invitation {invitation_id} hit a constraint: {e.orig}")
        raise MergeConflict() from e

    if expired:
        logger.info(f"Invitation {invitation_id} expired, cancelled on accept")
        raise InvitationExpired()

    logger.info(f"Invitation {invitation_id} accepted by account {responding_user_id}")
    return merge


def _close_invitation(session, invitation_id: int, owner_filter: dict[str, int], status: str,
                      now: Optional[datetime]) -> MergeInvitation:
    now = now or datetime.utcnow()
    with atomic(session):
        invitation = (
            session.query(MergeInvitation)
            .filter_by(id=invitation_id, status=INVITATION_PENDING, **owner_filter)
            .with_for_update()
            .populate_existing()
            .first()
        )
        if invitation is None:
            raise NotFoundOrProcessed()
        invitation.status = status
        invitation.responded_at = now

    logger.info(f"Invitation {invitation_id} {status}")
    return invitation


def decline_invitation(session, invitation_id: int, responding_user_id: int,
                       now: Optional[datetime] = None) -> MergeInvitation:
    """Decline an invitation addressed to `responding_user_id`."""
    return _close_invitation(session, invitation_id, {'invited_id': responding_user_id},
                             INVITATION_DECLINED, now)


def cancel_invitation(session, invitation_id: int, inviter_id: int,
                      now: Optional[datetime] = None) -> MergeInvitation:
    """Withdraw an invitation sent by `inviter_id`."""
    return _close_invitation(session, invitation_id, {'inviter_id': inviter_id},
                             INVITATION_CANCELLED, now)


# ============================================================================
# Queries
# ============================================================================

def _invitation_summary(invitation: MergeInvitation, counterpart: Account, key: str,
                        now: datetime) -> dict[str, Any]:
    return {
        'id': invitation.id,
        'message': invitation.message,
        'status': invitation.status,
        'createdAt': invitation.created_at.isoformat(),
        'expiresAt': invitation.expires_at.isoformat(),
        'isExpired': invitation.is_expired(now),
        key: {
            'id': counterpart.id,
            'username': counterpart.username,
            'firstName': counterpart.first_name,
            'lastName': counterpart.last_name,
        },
    }


def get_pending_invitations(session, account_id: int,
                            now: Optional[datetime] = None) -> dict[str, list[dict[str, Any]]]:
    """Pending invitations sent and received by the account, newest first."""
    now = now or datetime.utcnow()
    pending = (
        _pending_query(session, account_id)
        .order_by(MergeInvitation.created_at.desc(), MergeInvitation.id.desc())
        .all()
    )
    sent, received = [], []
    for invitation in pending:
        if invitation.inviter_id == account_id:
            sent.append(_invitation_summary(invitation, invitation.invited, 'invitedUser', now))
        else:
            received.append(_invitation_summary(invitation, invitation.inviter, 'inviter', now))
    return {'sent': sent, 'received': received}
