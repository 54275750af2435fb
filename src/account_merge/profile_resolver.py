"""
Public profile resolution.

Maps a public key (merge slug, username or public username) to one of four
outcomes:
- merged: the slug names a live merge
- unmerged_choice: the slug names a dissolved merge
- redirect_to_merge: the key is an identity of a currently merged account
- individual: a plain public profile

Resolution only reads. It takes no locks and puts no wall-clock values in
the payload, so repeated resolutions return identical results until
something writes.
"""
import logging
from typing import Any, NamedTuple, Optional

from sqlalchemy import case, func, or_

from .errors import NotFound
from .models import Account, AccountMerge, MediaFile, MergeUrlRedirect, TravelEntry
from .settings_document import MergeSettingsDocument

logger = logging.getLogger(__name__)

PROFILE_MERGED = 'merged'
PROFILE_UNMERGED_CHOICE = 'unmerged_choice'
PROFILE_REDIRECT = 'redirect_to_merge'
PROFILE_INDIVIDUAL = 'individual'

BIO_SEPARATOR = ' | '


class ProfileResolution(NamedTuple):
    type: str
    payload: dict[str, Any]

    def to_dict(self) -> dict[str, Any]:
        return {'type': self.type, **self.payload}


# ============================================================================
# Content helpers
# ============================================================================

def public_entries(session, account_ids: list[int]) -> list[dict[str, Any]]:
    """Public entries of the accounts, newest first."""
    entries = (
        session.query(TravelEntry)
        .filter(TravelEntry.account_id.in_(account_ids), TravelEntry.is_public == 1)
        .order_by(TravelEntry.created_at.desc(), TravelEntry.id.desc())
        .all()
    )
    return [entry.to_public_dict() for entry in entries]


def content_stats(session, account_ids: list[int]) -> dict[str, int]:
    """Aggregate counts over the public content of the accounts."""
    total_entries = (
        session.query(func.count(TravelEntry.id))
        .filter(TravelEntry.account_id.in_(account_ids), TravelEntry.is_public == 1)
        .scalar()
    ) or 0

    total_media, image_count, video_count = (
        session.query(
            func.count(MediaFile.id),
            func.sum(case((MediaFile.file_type == 'image', 1), else_=0)),
            func.sum(case((MediaFile.file_type == 'video', 1), else_=0)),
        )
        .join(TravelEntry, MediaFile.entry_id == TravelEntry.id)
        .filter(TravelEntry.account_id.in_(account_ids), TravelEntry.is_public == 1)
        .one()
    )

    return {
        'totalEntries': int(total_entries),
        'totalMedia': int(total_media or 0),
        'imageCount': int(image_count or 0),
        'videoCount': int(video_count or 0),
    }


def _pick(choice: str, value1: Optional[str], value2: Optional[str]) -> Optional[str]:
    """Chosen member's value, else the other member's."""
    if choice == 'user2':
        return value2 or value1
    return value1 or value2


def combined_bio(user1: Account, user2: Account, bio_display: str) -> Optional[str]:
    if bio_display == 'user1':
        return user1.profile_bio or None
    if bio_display == 'user2':
        return user2.profile_bio or None
    parts = [f'{account.slug_name}: {account.profile_bio}'
             for account in (user1, user2) if account.profile_bio]
    return BIO_SEPARATOR.join(parts) or None


# ============================================================================
# Payload builders
# ============================================================================

def _merged_payload(session, merge: AccountMerge) -> dict[str, Any]:
    user1, user2 = merge.user1, merge.user2
    document: MergeSettingsDocument = merge.get_settings()
    display = document.profile_display
    member_ids = [user1.id, user2.id]

    return {
        'mergeSlug': merge.merge_slug,
        'mergedAt': merge.merged_at.isoformat(),
        'user1': user1.public_summary(),
        'user2': user2.public_summary(),
        'combinedName': f'{user1.display_name} & {user2.display_name}',
        'shortName': f'{user1.slug_name} & {user2.slug_name}',
        'bio': combined_bio(user1, user2, display.bio_display),
        'avatarFilename': _pick(display.avatar_display, user1.avatar_filename, user2.avatar_filename),
        'heroImageFilename': _pick(display.hero_image_display, user1.hero_image_filename, user2.hero_image_filename),
        'displaySettings': {
            'avatar_display': display.avatar_display,
            'hero_image_display': display.hero_image_display,
            'bio_display': display.bio_display,
        },
        'entries': public_entries(session, member_ids),
        'stats': content_stats(session, member_ids),
    }


def _choice_payload(session, redirect: MergeUrlRedirect) -> dict[str, Any]:
    users = []
    for account_id in (redirect.user1_id, redirect.user2_id):
        account = session.get(Account, account_id)
        if account is None:
            continue
        is_public = bool(account.profile_public)
        card = account.public_summary()
        card['profilePublic'] = is_public
        card['profilePath'] = f'/u/{account.profile_path_key}' if is_public else None
        users.append(card)
    return {'mergeSlug': redirect.merge_slug, 'users': users}


def _individual_payload(session, account: Account) -> dict[str, Any]:
    user = account.public_summary()
    user['displayName'] = account.display_name
    return {
        'user': user,
        'entries': public_entries(session, [account.id]),
        'stats': content_stats(session, [account.id]),
    }


# ============================================================================
# Resolution
# ============================================================================

def find_account_by_key(session, key: str) -> Optional[Account]:
    """Username match wins over public username match."""
    return (
        session.query(Account)
        .filter(or_(Account.username == key, Account.public_username == key))
        .order_by(case((Account.username == key, 0), else_=1), Account.id.asc())
        .first()
    )


def resolve_public_profile(session, key: str) -> ProfileResolution:
    """
    Resolve a public key to a profile outcome.

    Raises:
        NotFound: no merge, redirect or public profile matches `key`
    """
    key = (key or '').strip()
    if not key:
        raise NotFound('Profile not found')

    redirect = (
        session.query(MergeUrlRedirect)
        .filter_by(merge_slug=key)
        .order_by(MergeUrlRedirect.id.asc())
        .first()
    )
    if redirect is not None:
        merge = session.get(AccountMerge, redirect.merge_id)
        if merge is not None and merge.merge_slug == key:
            return ProfileResolution(PROFILE_MERGED, _merged_payload(session, merge))
        return ProfileResolution(PROFILE_UNMERGED_CHOICE, _choice_payload(session, redirect))

    account = find_account_by_key(session, key)
    if account is None:
        raise NotFound('Profile not found')

    if account.is_merged and account.merge_id is not None:
        merge = session.get(AccountMerge, account.merge_id)
        if merge is not None:
            return ProfileResolution(PROFILE_REDIRECT, {'redirectTo': merge.merge_slug})
        logger.warning(f"Account {account.id} flagged merged but merge {account.merge_id} is missing")

    if not account.profile_public:
        raise NotFound('Profile not found')

    return ProfileResolution(PROFILE_INDIVIDUAL, _individual_payload(session, account))
