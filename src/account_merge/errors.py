"""
Error kinds raised by the merge services.

Every error carries a machine-readable `code`, the HTTP status the API
answers with, and a human-readable message. The merge blueprint turns any
MergeError into `{"error": code, "message": ..., **extra}`.
"""
from typing import Any, Optional


class MergeError(Exception):
    """Base class for merge service errors."""
    code = 'merge_error'
    status_code = 400
    default_message = 'Merge operation failed'

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)

    def extra(self) -> dict[str, Any]:
        return {}

    def to_dict(self) -> dict[str, Any]:
        payload = {'error': self.code, 'message': self.message}
        payload.update(self.extra())
        return payload


class NotFound(MergeError):
    code = 'not_found'
    status_code = 404
    default_message = 'User not found'


class AlreadyMerged(MergeError):
    code = 'already_merged'
    status_code = 409
    default_message = 'One of the accounts is already merged'


class HasActiveInvitation(MergeError):
    code = 'has_active_invitation'
    status_code = 409
    default_message = 'One of the accounts already has a pending merge invitation'


class InvitationExpired(MergeError):
    code = 'expired'
    status_code = 410
    default_message = 'This invitation has expired'


class NotFoundOrProcessed(MergeError):
    code = 'not_found_or_processed'
    status_code = 404
    default_message = 'Invitation not found or already processed'


class NotMerged(MergeError):
    code = 'not_merged'
    status_code = 400
    default_message = 'Account is not merged'


class CoolingPeriod(MergeError):
    """Unmerge requested before the cooling period elapsed."""
    code = 'cooling_period'
    status_code = 400

    def __init__(self, remaining_days: int, message: Optional[str] = None):
        self.remaining_days = remaining_days
        super().__init__(
            message or f'You must wait {remaining_days} more day(s) before unmerging'
        )

    def extra(self) -> dict[str, Any]:
        return {'remainingDays': self.remaining_days}


class InvalidSetting(MergeError):
    code = 'invalid_setting'
    status_code = 400

    def __init__(self, field: str, message: Optional[str] = None):
        self.field = field
        super().__init__(message or f'Invalid value for {field}')

    def extra(self) -> dict[str, Any]:
        return {'field': self.field}


class MergeConflict(MergeError):
    """Concurrent write lost against a uniqueness constraint."""
    code = 'conflict'
    status_code = 409
    default_message = 'A conflicting merge operation is in progress, please retry'


class ValidationFailed(MergeError):
    code = 'validation_failed'
    status_code = 400
    default_message = 'Invalid request'


class SlugExhausted(MergeError):
    code = 'slug_exhausted'
    status_code = 500
    default_message = 'Could not allocate a merge URL'
