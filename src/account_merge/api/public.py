"""
Public profile pages - no authentication.

Routes:
- GET /u/<key> - Preview HTML for crawlers, forward page for humans,
  301 to the merge slug for identities of merged accounts
"""
import logging
from typing import Any

from flask import Blueprint, current_app, redirect, render_template, request

from ..errors import NotFound
from ..models import db
from ..profile_resolver import (
    PROFILE_MERGED,
    PROFILE_REDIRECT,
    PROFILE_UNMERGED_CHOICE,
    ProfileResolution,
    resolve_public_profile,
)

logger = logging.getLogger(__name__)

public_bp = Blueprint('public', __name__)


# ============================================================================
# URL helpers
# ============================================================================

def canonical_url(key: str) -> str:
    return f"{current_app.config['PUBLIC_APP_URL'].rstrip('/')}/u/{key}"


def frontend_url(key: str) -> str:
    return f"{current_app.config['FRONTEND_URL'].rstrip('/')}/u/{key}"


def media_url(kind: str, filename: str | None) -> str:
    """Absolute URL of a hero or avatar image, default share image when missing."""
    if not filename:
        return current_app.config['DEFAULT_SHARE_IMAGE']
    return f"{current_app.config['MEDIA_BASE_URL'].rstrip('/')}/{kind}/{filename}"


def _memories(count: int) -> str:
    return 'memory' if count == 1 else 'memories'


# ============================================================================
# Preview metadata
# ============================================================================

def build_preview(resolution: ProfileResolution, key: str) -> dict[str, Any]:
    """
    Open Graph / Twitter metadata plus page body for a resolved profile.

    Returns:
        Dict with title, description, image, url, og_type, heading,
        has_image and cards (choice page only)
    """
    site_name = current_app.config['SITE_NAME']
    payload = resolution.payload
    url = canonical_url(key)

    if resolution.type == PROFILE_MERGED:
        name = payload['shortName']
        bios = [f"{user['firstName'] or user['username']}: {user['bio']}"
                for user in (payload['user1'], payload['user2']) if user['bio']]
        description = ' | '.join(bios) or f'Travel memories and adventures from {name}.'
        total = payload['stats']['totalEntries']
        description += f' {total} shared travel {_memories(total)}.'
        hero = payload['heroImageFilename']
        return {
            'title': f'{name} - {site_name}',
            'heading': name,
            'description': description,
            'image': media_url('hero', hero),
            'has_image': bool(hero),
            'url': url,
            'og_type': 'profile',
            'cards': [],
        }

    if resolution.type == PROFILE_UNMERGED_CHOICE:
        users = payload['users']
        names = [user['firstName'] or user['username'] for user in users]
        hero = next((user['heroImageFilename'] for user in users if user['heroImageFilename']), None)
        return {
            'title': f"Choose Profile - {' or '.join(names)} - {site_name}",
            'heading': 'Choose a profile',
            'description': (
                f"This travel profile was previously shared by {' and '.join(names)}. "
                "Choose which individual profile you'd like to visit."
            ),
            'image': media_url('hero', hero),
            'has_image': False,
            'url': url,
            'og_type': 'website',
            'cards': [
                {
                    'name': ' '.join(p for p in (user['firstName'], user['lastName']) if p) or user['username'],
                    'bio': user['bio'],
                    'href': canonical_url(user['profilePath'].split('/u/', 1)[1]) if user['profilePath'] else None,
                }
                for user in users
            ],
        }

    user = payload['user']
    total = payload['stats']['totalEntries']
    description = user['bio'] or f"Travel memories from {user['displayName']}."
    description += f' {total} public travel {_memories(total)}.'
    hero = user['heroImageFilename']
    return {
        'title': f"{user['displayName']} - {site_name}",
        'heading': user['displayName'],
        'description': description,
        'image': media_url('hero', hero),
        'has_image': bool(hero),
        'url': url,
        'og_type': 'profile',
        'cards': [],
    }


# ============================================================================
# Routes
# ============================================================================

@public_bp.route('/u/<key>')
def profile_page(key):
    """Serve the public profile page for a slug, username or public username."""
    try:
        resolution = resolve_public_profile(db.session, key)
    except NotFound:
        return render_template(
            'public/not_found.html',
            site_name=current_app.config['SITE_NAME'],
            key=key,
        ), 404

    if resolution.type == PROFILE_REDIRECT:
        slug = resolution.payload['redirectTo']
        logger.info(f"Profile {key} belongs to merge {slug}, redirecting")
        return redirect(f'/u/{slug}', code=301)

    classifier = current_app.extensions['requester_classifier']
    preview = build_preview(resolution, key)
    preview['site_name'] = current_app.config['SITE_NAME']

    if classifier.is_automated(request):
        logger.debug(f"Serving {resolution.type} preview for {key} to automated agent")
        return render_template('public/preview.html', **preview)

    return render_template('public/forward.html', forward_url=frontend_url(key), **preview)
