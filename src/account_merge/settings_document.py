"""
Versioned settings document stored in account_merges.merge_settings.

Older rows may lack keys added in later versions; `from_dict` fills every
missing key with its default. Writes are validated against MERGE_SETTINGS_SCHEMA.
"""
from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from typing import Any

import jsonschema

from .errors import InvalidSetting

logger = logging.getLogger(__name__)

SETTINGS_VERSION = 1

MEMBER_CHOICES = ('user1', 'user2')
BIO_CHOICES = ('user1', 'user2', 'combine')
DISPLAY_ORDERS = ('chronological', 'alternating')
BIO_MERGE_STRATEGIES = ('combine', 'user1', 'user2')

MERGE_SETTINGS_SCHEMA: dict[str, Any] = {
    'type': 'object',
    'required': ['version', 'display_order', 'profile_display', 'privacy'],
    'additionalProperties': False,
    'properties': {
        'version': {'type': 'integer', 'const': SETTINGS_VERSION},
        'display_order': {'enum': list(DISPLAY_ORDERS)},
        'profile_display': {
            'type': 'object',
            'additionalProperties': False,
            'required': [
                'show_both_names', 'bio_merge_strategy',
                'avatar_display', 'hero_image_display', 'bio_display',
            ],
            'properties': {
                'show_both_names': {'type': 'boolean'},
                'bio_merge_strategy': {'enum': list(BIO_MERGE_STRATEGIES)},
                'avatar_display': {'enum': list(MEMBER_CHOICES)},
                'hero_image_display': {'enum': list(MEMBER_CHOICES)},
                'bio_display': {'enum': list(BIO_CHOICES)},
            },
        },
        'privacy': {
            'type': 'object',
            'additionalProperties': False,
            'required': ['cross_user_visibility', 'shared_statistics'],
            'properties': {
                'cross_user_visibility': {'type': 'boolean'},
                'shared_statistics': {'type': 'boolean'},
            },
        },
    },
}


@dataclass
class ProfileDisplay:
    show_both_names: bool = True
    bio_merge_strategy: str = 'combine'
    avatar_display: str = 'user1'
    hero_image_display: str = 'user1'
    bio_display: str = 'combine'


@dataclass
class PrivacySettings:
    cross_user_visibility: bool = True
    shared_statistics: bool = True


@dataclass
class MergeSettingsDocument:
    """Typed view of merge_settings (version 1)."""
    version: int = SETTINGS_VERSION
    display_order: str = 'chronological'
    profile_display: ProfileDisplay = field(default_factory=ProfileDisplay)
    privacy: PrivacySettings = field(default_factory=PrivacySettings)

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> 'MergeSettingsDocument':
        """Build a document, filling defaults for missing keys and dropping unknown ones."""
        data = data if isinstance(data, dict) else {}
        display = data.get('profile_display')
        privacy = data.get('privacy')
        return cls(
            version=SETTINGS_VERSION,
            display_order=data.get('display_order', 'chronological'),
            profile_display=_known_fields(ProfileDisplay, display),
            privacy=_known_fields(PrivacySettings, privacy),
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    def validate(self):
        """Raise InvalidSetting naming the first offending field."""
        try:
            jsonschema.validate(instance=self.to_dict(), schema=MERGE_SETTINGS_SCHEMA)
        except jsonschema.ValidationError as e:
            path = '.'.join(str(part) for part in e.absolute_path) or 'merge_settings'
            logger.warning(f"Merge settings document rejected at {path}: {e.message}")
            raise InvalidSetting(path.split('.')[-1], f'Invalid value for {path}') from e


def _known_fields(cls, data: Any):
    if not isinstance(data, dict):
        return cls()
    names = cls.__dataclass_fields__.keys()
    return cls(**{key: value for key, value in data.items() if key in names})
