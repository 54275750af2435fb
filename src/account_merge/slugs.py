"""
Merge slug generation.

A slug names the joint profile (`/u/<slug>`). Slugs are never reused: the
probe checks live merges and the sticky redirect table, so a dissolved
merge keeps routing to its choice page forever.
"""
import logging
import re

from .errors import SlugExhausted
from .models import Account, AccountMerge, MergeUrlRedirect

logger = logging.getLogger(__name__)

SLUG_SUFFIX = 'travels'
SLUG_MAX_LENGTH = 80
MAX_SLUG_PROBES = 1000

_INVALID_SLUG_CHARS = re.compile(r'[^a-z0-9-]')


def build_base_slug(name1: str, name2: str) -> str:
    """
    Deterministic base slug for two names.

    Names are lowercased and sorted so the result does not depend on who
    invited whom: build_base_slug('Ben', 'anna') == 'anna-ben-travels'.
    """
    first, second = sorted([(name1 or '').lower(), (name2 or '').lower()])
    slug = f'{first}-{second}-{SLUG_SUFFIX}'
    slug = _INVALID_SLUG_CHARS.sub('', slug)
    return slug[:SLUG_MAX_LENGTH]


def slug_in_use(session, slug: str) -> bool:
    if session.query(AccountMerge.id).filter_by(merge_slug=slug).first():
        return True
    return session.query(MergeUrlRedirect.id).filter_by(merge_slug=slug).first() is not None


def generate_merge_slug(session, account1: Account, account2: Account) -> str:
    """
    Return an unused slug for the pair.

    The base slug is tried first, then `-2`, `-3`, ...

    Raises:
        SlugExhausted: no free slug within MAX_SLUG_PROBES attempts
    """
    base = build_base_slug(account1.slug_name, account2.slug_name)
    if not slug_in_use(session, base):
        return base

    for counter in range(2, MAX_SLUG_PROBES + 1):
        candidate = f'{base}-{counter}'
        if not slug_in_use(session, candidate):
            logger.debug(f"Slug {base} taken, using {candidate}")
            return candidate

    logger.error(f"No free merge slug for base {base} after {MAX_SLUG_PROBES} probes")
    raise SlugExhausted()
