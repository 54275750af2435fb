"""
Read-only access to admin-tunable merge settings.

Values live in the `settings` table. Any failure (missing row, malformed or
negative value, database error) yields the default for that key, so a broken
settings table never blocks invitations or unmerges.
"""
import logging
from dataclasses import dataclass
from typing import Any, Optional

from sqlalchemy.exc import SQLAlchemyError

from .config_defaults import get_int_config
from .models import Settings

logger = logging.getLogger(__name__)

EXPIRY_DAYS_KEY = 'merge_invitation_expiry_days'
COOLING_PERIOD_KEY = 'merge_unmerge_cooling_period_days'

DEFAULT_EXPIRY_DAYS = 7
DEFAULT_COOLING_PERIOD_DAYS = 0


@dataclass(frozen=True)
class MergeSettings:
    invitation_expiry_days: int = DEFAULT_EXPIRY_DAYS
    unmerge_cooling_period_days: int = DEFAULT_COOLING_PERIOD_DAYS

    def to_dict(self) -> dict[str, int]:
        return {
            EXPIRY_DAYS_KEY: self.invitation_expiry_days,
            COOLING_PERIOD_KEY: self.unmerge_cooling_period_days,
        }


def _fallback(key: str, default: int) -> int:
    return get_int_config(key.upper(), default)


def _coerce_days(key: str, raw: Any, default: int) -> int:
    if raw is None:
        return default
    if isinstance(raw, bool):
        logger.warning(f"Setting {key} has boolean value, using default {default}")
        return default
    try:
        value = int(raw)
    except (TypeError, ValueError):
        logger.warning(f"Setting {key} has invalid value {raw!r}, using default {default}")
        return default
    if value < 0:
        logger.warning(f"Setting {key} is negative ({value}), using default {default}")
        return default
    return value


def get_int_setting(session, key: str, default: int) -> int:
    """Read one integer setting, falling back to `default` on any failure."""
    try:
        row = session.query(Settings).filter_by(key=key).first()
    except SQLAlchemyError as e:
        logger.warning(f"Could not read setting {key}: {e}; using default {default}")
        return default
    if row is None:
        return default
    return _coerce_days(key, row.get_value(), default)


def load_merge_settings(session) -> MergeSettings:
    """Snapshot of the merge settings for one operation."""
    expiry_default = _fallback(EXPIRY_DAYS_KEY, DEFAULT_EXPIRY_DAYS)
    cooling_default = _fallback(COOLING_PERIOD_KEY, DEFAULT_COOLING_PERIOD_DAYS)
    return MergeSettings(
        invitation_expiry_days=get_int_setting(session, EXPIRY_DAYS_KEY, expiry_default),
        unmerge_cooling_period_days=get_int_setting(session, COOLING_PERIOD_KEY, cooling_default),
    )


def resolve_settings(session, settings: Optional[MergeSettings]) -> MergeSettings:
    """Use caller-provided settings, else load them."""
    return settings if settings is not None else load_merge_settings(session)
