"""Middleware for the acting-user request context."""
from dataclasses import dataclass
from functools import wraps
from typing import Optional

from flask import session, g, request, current_app

from almacen.exceptions import UnauthorizedError

ANONYMOUS_USER_ID = 'anonymous'


@dataclass(frozen=True)
class Actor:
    """Identity of whoever performs a write. Passed explicitly into services."""
    user_id: str
    user_name: Optional[str] = None

    @property
    def is_anonymous(self) -> bool:
        return self.user_id == ANONYMOUS_USER_ID


ANONYMOUS = Actor(ANONYMOUS_USER_ID)


def load_actor():
    """
    Load the acting user into g.actor.

    Identity comes from the X-User-Id / X-User-Name headers set by the
    authenticating front end, falling back to the Flask session.
    g.actor stays None when neither is present.
    """
    g.actor = None

    user_id = (request.headers.get('X-User-Id') or '').strip()
    user_name = (request.headers.get('X-User-Name') or '').strip() or None

    if not user_id:
        user_id = str(session.get('user_id') or '').strip()
        user_name = user_name or session.get('user_name')

    if user_id:
        g.actor = Actor(user_id=user_id, user_name=user_name)


def get_actor() -> Actor:
    """
    Return the request actor.

    Raises:
        UnauthorizedError: no identity on the request and ALLOW_ANONYMOUS is off
    """
    actor = g.get('actor')
    if actor is not None:
        return actor
    if current_app.config.get('ALLOW_ANONYMOUS', True):
        return ANONYMOUS
    raise UnauthorizedError()


def require_actor(f):
    """
    Decorator: Require an identified user for write endpoints.

    Anonymous access is accepted only when ALLOW_ANONYMOUS is enabled.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        get_actor()
        return f(*args, **kwargs)
    return decorated_function
