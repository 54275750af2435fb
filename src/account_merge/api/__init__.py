"""
Blueprints of the account merge service.

Provides:
- merge_bp: Merge JSON API (invitations, merge, unmerge, history, display settings)
- public_bp: Public profile pages (/u/<key>)
"""
from .merge import merge_bp
from .public import public_bp

__all__ = ['merge_bp', 'public_bp']
