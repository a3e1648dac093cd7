from abc import ABC, abstractmethod
from functools import wraps

from flask import current_app, flash, g, redirect, session, url_for

from schemas import UserRole

LOGIN_FAILED_MESSAGE = 'Invalid username or password.'


class Authenticator(ABC):
    """Checks a username/secret pair and returns the matching user record or None."""

    @abstractmethod
    def verify(self, username, secret):
        pass


class PlaintextAuthenticator(Authenticator):
    """Exact string comparison against the stored password.

    Unknown user and wrong password are deliberately indistinguishable to the
    caller. Records written before passwords were stored have no
    ``password``; they accept the seed password for their role.
    """

    def __init__(self, store):
        self.store = store

    def verify(self, username, secret):
        if not username or secret is None:
            return None
        user = self.store.find_user_by_username(username)
        if user is None:
            return None
        expected = user.get('password')
        if expected is None:
            role = user.get('role')
            expected = self.store.seed_passwords.get(role, self.store.seed_passwords[UserRole.TEACHER.value])
        return user if secret == expected else None


def current_user():
    """The logged-in user record, or None when the session points at nothing."""
    if 'current_user' in g:
        return g.current_user
    user = None
    user_id = session.get('user_id')
    if user_id:
        user = current_app.extensions['record_store'].find_user(user_id)
    g.current_user = user
    return user


def login_required(f):
    @wraps(f)
    def decorated_function(*args, **kwargs):
        if 'logged_in' not in session:
            return redirect(url_for('main.login'))

        # The account may have been deleted since this session started
        if current_user() is None:
            session.clear()
            flash('Your account is no longer available. Please log in again.', 'error')
            return redirect(url_for('main.login'))

        return f(*args, **kwargs)
    return decorated_function


def permission_required(screen):
    """Hide a screen from users whose permission flag for it is off."""
    def decorator(f):
        @wraps(f)
        @login_required
        def decorated_function(*args, **kwargs):
            store = current_app.extensions['record_store']
            permissions = store.user_permissions(current_user())
            if not getattr(permissions, screen, False):
                flash('You do not have access to that screen.', 'error')
                allowed = permissions.allowed_screens()
                if allowed and allowed[0] != screen:
                    return redirect(url_for(f'main.{allowed[0]}'))
                return redirect(url_for('main.logout'))
            return f(*args, **kwargs)
        return decorated_function
    return decorator
