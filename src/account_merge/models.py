"""
Database models for the account merge service.

Merge lifecycle tables:
- MergeInvitation: proposal between two accounts (terminal once answered)
- AccountMerge: exists only while two accounts are merged
- MergeUrlRedirect: permanent memory that a slug once named two accounts
- MergeHistoryEntry: append-only ledger of merged/unmerged transitions

Account, TravelEntry and MediaFile mirror tables owned by the surrounding
travel-journal application. Only the columns this service reads or writes
are declared here.

Flags are stored as integers (0/1) to match the account table of the host
application.
"""
import json
import logging
from datetime import datetime
from typing import Any, Optional

import bcrypt
from flask_sqlalchemy import SQLAlchemy
from sqlalchemy import CheckConstraint, Index, text

from .settings_document import MergeSettingsDocument

logger = logging.getLogger(__name__)

db = SQLAlchemy()

# Invitation states
INVITATION_PENDING = 'pending'
INVITATION_ACCEPTED = 'accepted'
INVITATION_DECLINED = 'declined'
INVITATION_CANCELLED = 'cancelled'
INVITATION_STATUSES = frozenset({
    INVITATION_PENDING, INVITATION_ACCEPTED, INVITATION_DECLINED, INVITATION_CANCELLED,
})

# History actions
HISTORY_MERGED = 'merged'
HISTORY_UNMERGED = 'unmerged'

INVITATION_MESSAGE_MAX_LENGTH = 500
UNMERGE_REASON_MAX_LENGTH = 500


class Account(db.Model):
    """
    User account of the travel-journal application.

    Merge state columns:
    - merge_id: id of the active AccountMerge (no foreign key; the merge row
      is deleted on unmerge and the column cleared in the same transaction)
    - is_merged: 1 while merge_id points at a live merge
    - original_public_username: public username captured at merge time,
      restored on unmerge
    """
    __tablename__ = 'accounts'

    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(64), unique=True, nullable=False, index=True)
    email = db.Column(db.String(255), unique=True, nullable=False, index=True)
    password_hash = db.Column(db.String(255), nullable=False, default='')

    first_name = db.Column(db.String(100))
    last_name = db.Column(db.String(100))
    public_username = db.Column(db.String(64), unique=True, index=True)
    profile_bio = db.Column(db.Text)
    avatar_filename = db.Column(db.String(255))
    hero_image_filename = db.Column(db.String(255))
    profile_public = db.Column(db.Integer, nullable=False, default=1)
    is_active = db.Column(db.Integer, nullable=False, default=1)

    # Merge state
    merge_id = db.Column(db.Integer, index=True)
    is_merged = db.Column(db.Integer, nullable=False, default=0)
    original_public_username = db.Column(db.String(64))

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        CheckConstraint('is_merged IN (0, 1)', name='check_is_merged_flag'),
    )

    def set_password(self, password: str):
        """Hash and set password."""
        self.password_hash = bcrypt.hashpw(password.encode('utf-8'), bcrypt.gensalt()).decode('utf-8')

    def verify_password(self, password: str) -> bool:
        """Verify password against hash."""
        try:
            return bcrypt.checkpw(password.encode('utf-8'), self.password_hash.encode('utf-8'))
        except (ValueError, TypeError):
            return False

    @property
    def slug_name(self) -> str:
        """Name used for merge slugs: first name, else username."""
        return self.first_name or self.username

    @property
    def display_name(self) -> str:
        full = ' '.join(part for part in (self.first_name, self.last_name) if part)
        return full or self.username

    @property
    def profile_path_key(self) -> str:
        """Path segment of the individual profile (/u/<key>)."""
        return self.public_username or self.username

    def public_summary(self) -> dict[str, Any]:
        return {
            'id': self.id,
            'username': self.username,
            'publicUsername': self.public_username,
            'firstName': self.first_name,
            'lastName': self.last_name,
            'bio': self.profile_bio,
            'avatarFilename': self.avatar_filename,
            'heroImageFilename': self.hero_image_filename,
        }

    def __repr__(self):
        return f'<Account {self.username}>'


class MergeInvitation(db.Model):
    """
    Proposal to merge two accounts.

    Rows are never deleted; the audit trail is the status column.
    """
    __tablename__ = 'account_merge_invitations'

    id = db.Column(db.Integer, primary_key=True)
    inviter_id = db.Column(db.Integer, db.ForeignKey('accounts.id', ondelete='CASCADE'), nullable=False, index=True)
    invited_id = db.Column(db.Integer, db.ForeignKey('accounts.id', ondelete='CASCADE'), nullable=False, index=True)
    message = db.Column(db.String(INVITATION_MESSAGE_MAX_LENGTH))
    status = db.Column(db.String(20), nullable=False, default=INVITATION_PENDING, index=True)

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    expires_at = db.Column(db.DateTime, nullable=False)
    responded_at = db.Column(db.DateTime)

    inviter = db.relationship('Account', foreign_keys=[inviter_id])
    invited = db.relationship('Account', foreign_keys=[invited_id])

    __table_args__ = (
        CheckConstraint('inviter_id != invited_id', name='check_invitation_distinct_accounts'),
        CheckConstraint(
            "status IN ('pending', 'accepted', 'declined', 'cancelled')",
            name='check_invitation_status'
        ),
        # One pending row per pair; dialects without partial indexes skip it
        Index(
            'uq_pending_invitation_pair', 'inviter_id', 'invited_id',
            unique=True,
            sqlite_where=text("status = 'pending'"),
            postgresql_where=text("status = 'pending'"),
        ).ddl_if(dialect=('sqlite', 'postgresql')),
    )

    @property
    def is_pending(self) -> bool:
        return self.status == INVITATION_PENDING

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        """True once `now` is past expires_at."""
        return (now or datetime.utcnow()) > self.expires_at

    def __repr__(self):
        return f'<MergeInvitation {self.id} {self.inviter_id}->{self.invited_id} {self.status}>'


class AccountMerge(db.Model):
    """
    Active merge of two accounts.

    user1 is always the inviter. The row lives exactly as long as the merge;
    the slug outlives it in merge_url_redirects.
    """
    __tablename__ = 'account_merges'

    id = db.Column(db.Integer, primary_key=True)
    user1_id = db.Column(db.Integer, db.ForeignKey('accounts.id'), nullable=False, index=True)
    user2_id = db.Column(db.Integer, db.ForeignKey('accounts.id'), nullable=False, index=True)
    merge_slug = db.Column(db.String(100), unique=True, nullable=False, index=True)
    merge_settings = db.Column(db.Text)  # JSON: MergeSettingsDocument
    merged_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    user1 = db.relationship('Account', foreign_keys=[user1_id])
    user2 = db.relationship('Account', foreign_keys=[user2_id])

    __table_args__ = (
        CheckConstraint('user1_id != user2_id', name='check_merge_distinct_accounts'),
    )

    def get_settings(self) -> MergeSettingsDocument:
        """Parse merge_settings; missing or corrupt documents yield defaults."""
        try:
            data = json.loads(self.merge_settings) if self.merge_settings else {}
        except (json.JSONDecodeError, TypeError):
            logger.warning(f"Corrupt merge_settings on merge {self.id}, using defaults")
            data = {}
        return MergeSettingsDocument.from_dict(data)

    def set_settings(self, document: MergeSettingsDocument):
        """Validate and store the settings document."""
        document.validate()
        self.merge_settings = json.dumps(document.to_dict(), sort_keys=True)

    def member_ids(self) -> tuple[int, int]:
        return self.user1_id, self.user2_id

    def partner_of(self, account_id: int) -> int:
        return self.user2_id if account_id == self.user1_id else self.user1_id

    def __repr__(self):
        return f'<AccountMerge {self.merge_slug}>'


class MergeUrlRedirect(db.Model):
    """
    Sticky slug record, one row per original identity.

    Never deleted: after an unmerge these rows route the old slug to the
    choice page. merge_id is a plain integer because the merge row it named
    may no longer exist.
    """
    __tablename__ = 'merge_url_redirects'

    id = db.Column(db.Integer, primary_key=True)
    merge_slug = db.Column(db.String(100), nullable=False, index=True)
    merge_id = db.Column(db.Integer, nullable=False, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey('accounts.id'), nullable=False, index=True)
    original_username = db.Column(db.String(64), nullable=False)
    original_public_username = db.Column(db.String(64))
    user1_id = db.Column(db.Integer, db.ForeignKey('accounts.id'), nullable=False)
    user2_id = db.Column(db.Integer, db.ForeignKey('accounts.id'), nullable=False)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    def __repr__(self):
        return f'<MergeUrlRedirect {self.merge_slug} user={self.user_id}>'


class MergeHistoryEntry(db.Model):
    """
    Append-only ledger of merge transitions.

    user1_id < user2_id always (canonical ordering), regardless of who
    initiated the action.
    """
    __tablename__ = 'account_merge_history'

    id = db.Column(db.Integer, primary_key=True)
    user1_id = db.Column(db.Integer, db.ForeignKey('accounts.id'), nullable=False, index=True)
    user2_id = db.Column(db.Integer, db.ForeignKey('accounts.id'), nullable=False, index=True)
    action = db.Column(db.String(20), nullable=False, index=True)
    merge_slug = db.Column(db.String(100), nullable=False, index=True)
    merge_duration_days = db.Column(db.Integer)  # unmerge only
    initiated_by_id = db.Column(db.Integer, db.ForeignKey('accounts.id'), nullable=False)
    reason = db.Column(db.String(UNMERGE_REASON_MAX_LENGTH))  # unmerge only
    action_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, index=True)

    user1 = db.relationship('Account', foreign_keys=[user1_id])
    user2 = db.relationship('Account', foreign_keys=[user2_id])

    __table_args__ = (
        CheckConstraint('user1_id < user2_id', name='check_history_canonical_order'),
        CheckConstraint("action IN ('merged', 'unmerged')", name='check_history_action'),
    )

    def __repr__(self):
        return f'<MergeHistoryEntry {self.action} {self.merge_slug} {self.action_at}>'


class TravelEntry(db.Model):
    """Travel entry (owned by the journal application, read-only here)."""
    __tablename__ = 'travel_entries'

    id = db.Column(db.Integer, primary_key=True)
    account_id = db.Column(db.Integer, db.ForeignKey('accounts.id', ondelete='CASCADE'), nullable=False, index=True)
    title = db.Column(db.String(255), nullable=False)
    location_name = db.Column(db.String(255))
    entry_date = db.Column(db.Date)
    is_public = db.Column(db.Integer, nullable=False, default=0, index=True)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    media = db.relationship('MediaFile', back_populates='entry', cascade='all, delete-orphan')

    def to_public_dict(self) -> dict[str, Any]:
        return {
            'id': self.id,
            'accountId': self.account_id,
            'title': self.title,
            'locationName': self.location_name,
            'entryDate': self.entry_date.isoformat() if self.entry_date else None,
        }


class MediaFile(db.Model):
    """Media attached to a travel entry (read-only here)."""
    __tablename__ = 'media_files'

    id = db.Column(db.Integer, primary_key=True)
    entry_id = db.Column(db.Integer, db.ForeignKey('travel_entries.id', ondelete='CASCADE'), nullable=False, index=True)
    file_name = db.Column(db.String(255), nullable=False)
    file_type = db.Column(db.String(20), nullable=False)  # 'image' or 'video'
    uploaded_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    entry = db.relationship('TravelEntry', back_populates='media')


class Settings(db.Model):
    """
    System settings key-value store.

    Holds admin-tunable values such as merge_invitation_expiry_days.
    """
    __tablename__ = 'settings'

    id = db.Column(db.Integer, primary_key=True)
    key = db.Column(db.String(100), unique=True, nullable=False)
    value = db.Column(db.Text)  # JSON
    updated_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    def get_value(self) -> Any:
        """Parse value from JSON."""
        try:
            return json.loads(self.value) if self.value else None
        except (json.JSONDecodeError, TypeError):
            return None

    def set_value(self, data: Any):
        """Set value as JSON."""
        self.value = json.dumps(data) if data is not None else None

    def __repr__(self):
        return f'<Settings {self.key}>'
