"""
Display preferences of a merged profile (merge_settings.profile_display).

Only avatar_display, hero_image_display and bio_display are editable through
the API; the rest of the document keeps its stored or default values.
"""
import logging
from dataclasses import replace
from typing import Any

from .database import atomic
from .errors import InvalidSetting, NotMerged, ValidationFailed
from .models import Account, AccountMerge
from .settings_document import BIO_CHOICES, MEMBER_CHOICES

logger = logging.getLogger(__name__)

EDITABLE_FIELDS = {
    'avatar_display': MEMBER_CHOICES,
    'hero_image_display': MEMBER_CHOICES,
    'bio_display': BIO_CHOICES,
}


def _active_merge(session, account_id: int, lock: bool = False) -> AccountMerge:
    account = session.get(Account, account_id)
    if account is None or not account.is_merged or account.merge_id is None:
        raise NotMerged()
    query = session.query(AccountMerge).filter_by(id=account.merge_id)
    if lock:
        query = query.with_for_update().populate_existing()
    merge = query.first()
    if merge is None:
        raise NotMerged()
    return merge


def _payload(merge: AccountMerge, account_id: int) -> dict[str, Any]:
    display = merge.get_settings().profile_display
    return {
        'avatar_display': display.avatar_display,
        'hero_image_display': display.hero_image_display,
        'bio_display': display.bio_display,
        'current_user_is': 'user1' if merge.user1_id == account_id else 'user2',
    }


def get_display_settings(session, account_id: int) -> dict[str, Any]:
    """Editable display settings of the caller's merge, with defaults filled."""
    return _payload(_active_merge(session, account_id), account_id)


def update_display_settings(session, account_id: int, changes: dict[str, Any]) -> dict[str, Any]:
    """
    Apply a partial update to the display settings.

    Raises:
        ValidationFailed: body is not an object
        InvalidSetting: unknown key or value outside the allowed choices
        NotMerged: caller has no active merge
    """
    if not isinstance(changes, dict):
        raise ValidationFailed('Expected a JSON object')

    for field, value in changes.items():
        choices = EDITABLE_FIELDS.get(field)
        if choices is None:
            raise InvalidSetting(field, f'Unknown setting {field}')
        if value not in choices:
            raise InvalidSetting(field, f'{field} must be one of: {", ".join(choices)}')

    with atomic(session):
        merge = _active_merge(session, account_id, lock=True)
        document = merge.get_settings()
        document.profile_display = replace(document.profile_display, **changes)
        merge.set_settings(document)

    logger.info(f"Display settings of merge {merge.merge_slug} updated by account {account_id}: {sorted(changes)}")
    return _payload(merge, account_id)
