"""
Session identity for merge endpoints.

Login and session issuance belong to the host application. This module only
reads the account id it stores in the Flask session.
"""
import logging
from functools import wraps
from typing import Optional

from flask import g, jsonify, session

from .models import Account, db

logger = logging.getLogger(__name__)

# Session configuration (shared with the host application)
SESSION_KEY_USER_ID = 'account_id'


def get_current_account() -> Optional[Account]:
    """Get currently logged-in account from session."""
    account_id = session.get(SESSION_KEY_USER_ID)
    if not account_id:
        return None
    return db.session.get(Account, account_id)


def is_authenticated() -> bool:
    """Check if user is authenticated."""
    return SESSION_KEY_USER_ID in session


def require_account_auth(f):
    """
    Decorator for JSON routes requiring account authentication.

    Returns 401 JSON if not authenticated.
    Sets g.account with current Account.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        account = get_current_account()
        if not account:
            return jsonify({'error': 'unauthorized', 'message': 'Authentication required'}), 401

        if not account.is_active:
            logger.warning(f"Inactive account {account.id} rejected")
            session.pop(SESSION_KEY_USER_ID, None)
            return jsonify({'error': 'unauthorized', 'message': 'Account is inactive'}), 401

        g.account = account
        return f(*args, **kwargs)

    return decorated_function
