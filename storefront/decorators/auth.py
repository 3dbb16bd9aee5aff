"""
Authentication decorators for JSON routes.

Identity is established by the accounts service, which signs the shared
Flask session: session['user_id'] for customers, session['admin_user_id']
for administrators.
"""

from functools import wraps
from flask import session, g

from storefront.exceptions import UnauthorizedError, ForbiddenError


def load_identity():
    """
    Load the caller's identity into g.

    Called before each request. Sets g.customer_id (or None) and resets
    g.admin_user, which admin_required fills in.
    """
    user_id = session.get('user_id')
    g.customer_id = int(user_id) if user_id is not None else None
    g.admin_user = None


def customer_required(f):
    """Decorator: require an authenticated customer (401 otherwise)."""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        if g.get('customer_id') is None:
            raise UnauthorizedError('Please sign in to continue')
        return f(*args, **kwargs)

    return decorated_function


def admin_required(f):
    """
    Decorator: require an administrator.

    401 without an admin session, 403 when the admin account no longer
    exists or was deactivated.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        admin_user_id = session.get('admin_user_id')
        if not admin_user_id:
            raise UnauthorizedError('Administrator sign-in required')

        from storefront.database import db_session
        from storefront.models import AdminUser

        admin_user = db_session.query(AdminUser).filter_by(id=admin_user_id).first()
        if not admin_user or not admin_user.active:
            session.pop('admin_user_id', None)
            raise ForbiddenError('Administrator access denied')

        g.admin_user = admin_user
        return f(*args, **kwargs)

    return decorated_function
