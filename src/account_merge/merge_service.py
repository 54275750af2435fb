"""
Merge and unmerge coordination.

Handles:
- Row locking of participating accounts (ascending id order)
- The merge transition (merge row, account flags, redirects, history)
- The unmerge transition (cooling period, restore, delete, history)
- The merge info lookup used by the status endpoint

execute_merge runs inside the caller's transaction (accept_invitation owns
the commit). execute_unmerge owns its own transaction.
"""
import logging
import math
from datetime import datetime
from typing import Any, Iterable, NamedTuple, Optional

from sqlalchemy.exc import IntegrityError

from . import history
from .database import atomic
from .errors import CoolingPeriod, MergeConflict, NotFound, NotMerged, ValidationFailed
from .models import (
    UNMERGE_REASON_MAX_LENGTH,
    Account,
    AccountMerge,
    MergeInvitation,
    MergeUrlRedirect,
)
from .settings_document import MergeSettingsDocument
from .settings_provider import MergeSettings, resolve_settings
from .slugs import generate_merge_slug

logger = logging.getLogger(__name__)

SECONDS_PER_DAY = 86400


class UnmergeResult(NamedTuple):
    merge_slug: str
    merge_duration: int
    partner_id: int


# ============================================================================
# Locking
# ============================================================================

def lock_accounts_query(session, account_ids: Iterable[int]):
    """SELECT ... FOR UPDATE of the given accounts, ascending id."""
    return (
        session.query(Account)
        .filter(Account.id.in_(sorted(set(account_ids))))
        .order_by(Account.id.asc())
        .with_for_update()
        .populate_existing()
    )


def lock_accounts(session, account_ids: Iterable[int]) -> dict[int, Account]:
    """
    Lock the given accounts in ascending id order.

    Overlapping pairs serialize on the lowest shared id; disjoint pairs never
    wait on each other. Attributes are refreshed from the locked rows.
    """
    rows = lock_accounts_query(session, account_ids).all()
    return {account.id: account for account in rows}


def days_between(start: datetime, end: datetime) -> float:
    return (end - start).total_seconds() / SECONDS_PER_DAY


# ============================================================================
# Merge
# ============================================================================

def execute_merge(session, invitation: MergeInvitation, initiated_by_id: int,
                  now: Optional[datetime] = None) -> AccountMerge:
    """
    Join the two accounts of `invitation` into one merged identity.

    Caller must hold row locks on both accounts and commit or roll back the
    surrounding transaction. Nothing is committed here.

    Args:
        session: Request-scoped SQLAlchemy session
        invitation: The pending invitation being accepted
        initiated_by_id: Account that triggered the merge (the accepter)
        now: Merge timestamp (defaults to utcnow)

    Returns:
        The new AccountMerge row (flushed, not committed)
    """
    now = now or datetime.utcnow()
    inviter = session.get(Account, invitation.inviter_id)
    invited = session.get(Account, invitation.invited_id)
    if inviter is None or invited is None:
        raise NotFound('Account not found')

    slug = generate_merge_slug(session, inviter, invited)

    merge = AccountMerge(
        user1_id=inviter.id,
        user2_id=invited.id,
        merge_slug=slug,
        merged_at=now,
    )
    merge.set_settings(MergeSettingsDocument())
    session.add(merge)
    session.flush()

    for account in (inviter, invited):
        if account.original_public_username is None:
            account.original_public_username = account.public_username
        account.merge_id = merge.id
        account.is_merged = 1

        session.add(MergeUrlRedirect(
            merge_slug=slug,
            merge_id=merge.id,
            user_id=account.id,
            original_username=account.username,
            original_public_username=account.public_username,
            user1_id=inviter.id,
            user2_id=invited.id,
            created_at=now,
        ))

    history.record_merged(session, inviter.id, invited.id, slug, initiated_by_id, now)
    session.flush()

    logger.info(f"Accounts {inviter.id} and {invited.id} merged as {slug}")
    return merge


# ============================================================================
# Unmerge
# ============================================================================

def execute_unmerge(session, requesting_user_id: int, reason: Optional[str] = None,
                    settings: Optional[MergeSettings] = None,
                    now: Optional[datetime] = None) -> UnmergeResult:
    """
    Dissolve the requester's active merge.

    Both accounts get their pre-merge public username back and lose their
    merge flags. The merge row is deleted; redirect rows stay so the slug
    keeps routing to the choice page.

    Raises:
        ValidationFailed: reason longer than UNMERGE_REASON_MAX_LENGTH
        NotMerged: requester has no active merge
        CoolingPeriod: merge younger than the cooling period
        MergeConflict: a restored public username was taken meanwhile
    """
    if reason is not None:
        reason = reason.strip() or None
    if reason and len(reason) > UNMERGE_REASON_MAX_LENGTH:
        raise ValidationFailed(f'Reason must be at most {UNMERGE_REASON_MAX_LENGTH} characters')

    settings = resolve_settings(session, settings)
    now = now or datetime.utcnow()

    try:
        with atomic(session):
            account = session.get(Account, requesting_user_id)
            if account is None or not account.is_merged or account.merge_id is None:
                raise NotMerged()

            accounts = lock_accounts(session, _pair_ids(session, account))
            account = accounts.get(requesting_user_id)
            if account is None or not account.is_merged or account.merge_id is None:
                raise NotMerged()

            merge = session.get(AccountMerge, account.merge_id, populate_existing=True)
            if merge is None:
                logger.error(f"Account {account.id} flagged merged but merge {account.merge_id} is missing")
                raise NotMerged()
            if set(merge.member_ids()) != set(accounts):
                logger.warning(f"Merge {merge.id} changed members while account {account.id} was locking it")
                raise MergeConflict()

            days_since = days_between(merge.merged_at, now)
            cooling = settings.unmerge_cooling_period_days
            if days_since < cooling:
                remaining = math.ceil(cooling - days_since)
                logger.info(f"Unmerge of {merge.merge_slug} refused: {remaining} day(s) of cooling left")
                raise CoolingPeriod(remaining)

            for member_id in merge.member_ids():
                member = accounts[member_id]
                member.public_username = member.original_public_username
                member.merge_id = None
                member.is_merged = 0
                member.original_public_username = None

            slug = merge.merge_slug
            partner_id = merge.partner_of(requesting_user_id)
            duration = math.floor(days_since)
            user1_id, user2_id = merge.member_ids()

            session.delete(merge)
            session.flush()

            history.record_unmerged(
                session, user1_id, user2_id, slug, requesting_user_id, now,
                duration_days=duration, reason=reason,
            )
    except IntegrityError as e:
        logger.warning(f"Unmerge by account {requesting_user_id} hit a constraint: {e.orig}")
        raise MergeConflict() from e

    logger.info(f"Merge {slug} dissolved by account {requesting_user_id} after {duration} day(s)")
    return UnmergeResult(merge_slug=slug, merge_duration=duration, partner_id=partner_id)


def _pair_ids(session, account: Account) -> list[int]:
    merge = session.get(AccountMerge, account.merge_id)
    if merge is None:
        return [account.id]
    return [merge.user1_id, merge.user2_id]


# ============================================================================
# Merge info
# ============================================================================

def get_merge_info(session, account_id: int) -> Optional[dict[str, Any]]:
    """Current merge of the account with partner details, or None."""
    account = session.get(Account, account_id)
    if account is None or not account.is_merged or account.merge_id is None:
        return None

    merge = session.get(AccountMerge, account.merge_id)
    if merge is None:
        return None

    partner = session.get(Account, merge.partner_of(account_id))
    return {
        'mergeId': merge.id,
        'mergeSlug': merge.merge_slug,
        'mergedAt': merge.merged_at.isoformat(),
        'isUser1': merge.user1_id == account_id,
        'publicUrl': f'/u/{merge.merge_slug}',
        'partner': {
            'id': partner.id,
            'username': partner.username,
            'firstName': partner.first_name,
            'lastName': partner.last_name,
            'publicUsername': partner.public_username,
        } if partner else None,
    }
