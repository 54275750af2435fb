"""
Merge API Blueprint - session authentication.

Routes:
- GET  /merge/status - Merge state, pending invitations, eligibility
- POST /merge/invite - Send invitation
- POST /merge/accept/<id> - Accept invitation (performs the merge)
- POST /merge/decline/<id> - Decline invitation
- POST /merge/cancel/<id> - Cancel own invitation
- POST /merge/unmerge - Dissolve active merge
- GET  /merge/history - Merge history of the caller
- GET  /merge/public-profile/<key> - Resolve public profile (no auth)
- GET  /merge/display-settings - Read display settings
- PUT  /merge/display-settings - Update display settings
"""
import logging

from flask import Blueprint, g, jsonify, request
from flask_wtf.csrf import generate_csrf

from ..display_settings import get_display_settings, update_display_settings
from ..errors import MergeError, ValidationFailed
from ..history import get_history
from ..invitations import (
    accept_invitation,
    can_send_invitation,
    cancel_invitation,
    decline_invitation,
    get_pending_invitations,
    send_invitation,
)
from ..account_auth import require_account_auth
from ..merge_service import execute_unmerge, get_merge_info
from ..models import db
from ..profile_resolver import resolve_public_profile

logger = logging.getLogger(__name__)

merge_bp = Blueprint('merge', __name__, url_prefix='/merge')


def _json_body() -> dict:
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationFailed('Expected a JSON object')
    return data


@merge_bp.errorhandler(MergeError)
def handle_merge_error(error: MergeError):
    """Structured JSON for every service error."""
    account = getattr(g, 'account', None)
    logger.info(
        f"{request.method} {request.path} rejected for account "
        f"{account.id if account else '-'}: {error.code} ({error.message})"
    )
    return jsonify(error.to_dict()), error.status_code


# ============================================================================
# Status and invitations
# ============================================================================

@merge_bp.route('/status')
@require_account_auth
def status():
    """Merge info, pending invitations and whether a new invitation is possible."""
    account = g.account
    pending = get_pending_invitations(db.session, account.id)
    allowed, reason = can_send_invitation(db.session, account.id)
    return jsonify({
        'mergeInfo': get_merge_info(db.session, account.id),
        'sentInvitations': pending['sent'],
        'receivedInvitations': pending['received'],
        'canSendInvitation': allowed,
        'cannotSendReason': reason,
        'csrfToken': generate_csrf(),
    })


@merge_bp.route('/invite', methods=['POST'])
@require_account_auth
def invite():
    data = _json_body()
    invited_user = data.get('invitedUser') or ''
    message = data.get('message')
    if not isinstance(invited_user, str) or (message is not None and not isinstance(message, str)):
        raise ValidationFailed('invitedUser and message must be strings')

    invitation = send_invitation(db.session, g.account.id, invited_user, message)
    return jsonify({
        'success': True,
        'invitationId': invitation.id,
        'expiresAt': invitation.expires_at.isoformat(),
        'message': f'Merge invitation sent to {invitation.invited.username}',
    }), 201


@merge_bp.route('/accept/<int:invitation_id>', methods=['POST'])
@require_account_auth
def accept(invitation_id):
    merge = accept_invitation(db.session, invitation_id, g.account.id)
    return jsonify({
        'success': True,
        'mergeSlug': merge.merge_slug,
        'publicUrl': f'/u/{merge.merge_slug}',
        'message': 'Accounts merged successfully',
    })


@merge_bp.route('/decline/<int:invitation_id>', methods=['POST'])
@require_account_auth
def decline(invitation_id):
    decline_invitation(db.session, invitation_id, g.account.id)
    return jsonify({'success': True, 'message': 'Invitation declined'})


@merge_bp.route('/cancel/<int:invitation_id>', methods=['POST'])
@require_account_auth
def cancel(invitation_id):
    cancel_invitation(db.session, invitation_id, g.account.id)
    return jsonify({'success': True, 'message': 'Invitation cancelled'})


# ============================================================================
# Unmerge and history
# ============================================================================

@merge_bp.route('/unmerge', methods=['POST'])
@require_account_auth
def unmerge():
    data = _json_body()
    reason = data.get('reason')
    if reason is not None and not isinstance(reason, str):
        raise ValidationFailed('reason must be a string')

    result = execute_unmerge(db.session, g.account.id, reason)
    return jsonify({
        'success': True,
        'mergeDuration': result.merge_duration,
        'message': 'Accounts unmerged successfully',
        'note': f'The URL /u/{result.merge_slug} now shows a choice between both profiles',
    })


@merge_bp.route('/history')
@require_account_auth
def history():
    return jsonify({'history': get_history(db.session, g.account.id)})


# ============================================================================
# Public profile and display settings
# ============================================================================

@merge_bp.route('/public-profile/<key>')
def public_profile(key):
    """Resolve a public key; no authentication required."""
    resolution = resolve_public_profile(db.session, key)
    return jsonify(resolution.to_dict())


@merge_bp.route('/display-settings', methods=['GET'])
@require_account_auth
def display_settings():
    return jsonify(get_display_settings(db.session, g.account.id))


@merge_bp.route('/display-settings', methods=['PUT'])
@require_account_auth
def update_display():
    settings = update_display_settings(db.session, g.account.id, _json_body())
    return jsonify({'success': True, **settings})
