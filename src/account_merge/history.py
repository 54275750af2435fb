"""
Append-only merge history.

Entries are written inside the merge/unmerge transaction and never updated
or deleted. The pair is stored in canonical order (user1_id < user2_id).
"""
import logging
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import or_

from .models import HISTORY_MERGED, HISTORY_UNMERGED, Account, MergeHistoryEntry

logger = logging.getLogger(__name__)


def canonical_pair(account_a_id: int, account_b_id: int) -> tuple[int, int]:
    return min(account_a_id, account_b_id), max(account_a_id, account_b_id)


def _append(session, action: str, account_a_id: int, account_b_id: int, merge_slug: str,
            initiated_by_id: int, action_at: datetime, duration_days: Optional[int] = None,
            reason: Optional[str] = None) -> MergeHistoryEntry:
    user1_id, user2_id = canonical_pair(account_a_id, account_b_id)
    entry = MergeHistoryEntry(
        user1_id=user1_id,
        user2_id=user2_id,
        action=action,
        merge_slug=merge_slug,
        merge_duration_days=duration_days,
        initiated_by_id=initiated_by_id,
        reason=reason,
        action_at=action_at,
    )
    session.add(entry)
    session.flush()
    logger.debug(f"History: {action} {merge_slug} ({user1_id}, {user2_id}) by {initiated_by_id}")
    return entry


def record_merged(session, account_a_id: int, account_b_id: int, merge_slug: str,
                  initiated_by_id: int, action_at: datetime) -> MergeHistoryEntry:
    return _append(session, HISTORY_MERGED, account_a_id, account_b_id, merge_slug,
                   initiated_by_id, action_at)


def record_unmerged(session, account_a_id: int, account_b_id: int, merge_slug: str,
                    initiated_by_id: int, action_at: datetime, duration_days: int,
                    reason: Optional[str] = None) -> MergeHistoryEntry:
    return _append(session, HISTORY_UNMERGED, account_a_id, account_b_id, merge_slug,
                   initiated_by_id, action_at, duration_days=duration_days, reason=reason)


def get_history(session, account_id: int) -> list[dict[str, Any]]:
    """
    History entries involving `account_id`, oldest first.

    Each entry names the partner from the caller's point of view.
    """
    entries = (
        session.query(MergeHistoryEntry)
        .filter(or_(MergeHistoryEntry.user1_id == account_id, MergeHistoryEntry.user2_id == account_id))
        .order_by(MergeHistoryEntry.action_at.asc(), MergeHistoryEntry.id.asc())
        .all()
    )

    partner_ids = {e.user2_id if e.user1_id == account_id else e.user1_id for e in entries}
    partners = {}
    if partner_ids:
        partners = {a.id: a for a in session.query(Account).filter(Account.id.in_(partner_ids))}

    result = []
    for entry in entries:
        partner_id = entry.user2_id if entry.user1_id == account_id else entry.user1_id
        partner = partners.get(partner_id)
        result.append({
            'id': entry.id,
            'action': entry.action,
            'mergeSlug': entry.merge_slug,
            'actionAt': entry.action_at.isoformat(),
            'mergeDurationDays': entry.merge_duration_days,
            'reason': entry.reason,
            'initiatedById': entry.initiated_by_id,
            'initiatedByMe': entry.initiated_by_id == account_id,
            'partner': {
                'id': partner_id,
                'username': partner.username if partner else None,
                'firstName': partner.first_name if partner else None,
                'lastName': partner.last_name if partner else None,
            },
        })
    return result
