"""
services/session_service.py
---------------------------
Session Service — request-scoped user identity for the soil-health API.

A SessionContext is created per authenticated request from a signed bearer
token and handed to whichever component needs the current user. Components
that care about sign-in / sign-out subscribe to the context explicitly and
unsubscribe when they are done; there is no process-wide auth state.

Tokens are signed with itsdangerous using the app secret. The signing
timestamp doubles as the login time, so clients never cache it themselves.

Usage:
    from services.session_service import issue_token, load_session

    token   = issue_token(secret, "user-42")
    session = load_session(secret, token, max_age=43200)
    unsubscribe = session.subscribe(lambda event, ctx: print(event, ctx.user_id))

Run standalone to mint a development token:
    python -m services.session_service issue user-42
"""

import argparse
import logging
import os
import uuid
from datetime import datetime, timezone
from typing import Callable

from itsdangerous import BadData, SignatureExpired, URLSafeTimedSerializer

from services.errors import AuthenticationError

logger = logging.getLogger(__name__)

_TOKEN_SALT = "soilhealth-session"

SIGNED_IN  = "SIGNED_IN"
SIGNED_OUT = "SIGNED_OUT"

Listener = Callable[[str, "SessionContext"], None]


class SessionContext:
    """Identity of the user behind the current request."""

    def __init__(self, session_id: str):
        self.session_id = session_id
        self.user_id: str | None = None
        self.login_time: datetime | None = None
        self._listeners: list[Listener] = []

    @property
    def is_authenticated(self) -> bool:
        return self.user_id is not None

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a listener; returns a function that removes it again."""
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def sign_in(self, user_id: str, login_time: datetime) -> None:
        self.user_id    = user_id
        self.login_time = login_time
        self._notify(SIGNED_IN)

    def sign_out(self) -> None:
        if not self.is_authenticated:
            return
        self._notify(SIGNED_OUT)
        self.user_id    = None
        self.login_time = None

    def to_dict(self) -> dict:
        return {
            "user_id":    self.user_id,
            "session_id": self.session_id,
            "login_time": (self.login_time.isoformat(timespec="seconds")
                           if self.login_time else None),
        }

    def _notify(self, event: str) -> None:
        for listener in list(self._listeners):
            listener(event, self)


# ─────────────────────────────────────────────────────────────────────────────
# Token helpers
# ─────────────────────────────────────────────────────────────────────────────

def _serializer(secret: str) -> URLSafeTimedSerializer:
    return URLSafeTimedSerializer(secret, salt=_TOKEN_SALT)


def issue_token(secret: str, user_id: str) -> str:
    """Sign a bearer token for user_id with a fresh session id."""
    if not user_id:
        raise ValueError("user_id must be a non-empty string")
    return _serializer(secret).dumps({"uid": user_id, "sid": uuid.uuid4().hex})


def verify_token(secret: str, token: str, max_age: int) -> tuple[str, str, datetime]:
    """
    Verify a bearer token.

    Returns:
        (user_id, session_id, login_time) – login_time is the UTC signing time.

    Raises:
        AuthenticationError: If the token is expired, tampered with or malformed.
    """
    try:
        payload, signed_at = _serializer(secret).loads(
            token, max_age=max_age, return_timestamp=True
        )
    except SignatureExpired:
        raise AuthenticationError("Session has expired. Please sign in again.")
    except BadData:
        raise AuthenticationError("Invalid session token")

    if not isinstance(payload, dict) or not payload.get("uid") or not payload.get("sid"):
        raise AuthenticationError("Invalid session token")

    if signed_at.tzinfo is None:
        signed_at = signed_at.replace(tzinfo=timezone.utc)

    return str(payload["uid"]), str(payload["sid"]), signed_at


def load_session(secret: str, token: str, max_age: int,
                 listeners: tuple[Listener, ...] = ()) -> SessionContext:
    """
    Verify a bearer token and return a signed-in SessionContext.

    Listeners are subscribed before sign-in so they see the SIGNED_IN event.
    """
    user_id, session_id, login_time = verify_token(secret, token, max_age)
    session = SessionContext(session_id)
    for listener in listeners:
        session.subscribe(listener)
    session.sign_in(user_id, login_time)
    return session


def bearer_token(authorization_header: str | None) -> str:
    """Extract the token from an 'Authorization: Bearer <token>' header."""
    if not authorization_header:
        raise AuthenticationError("Missing Authorization header")
    scheme, _, token = authorization_header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise AuthenticationError("Authorization header must be 'Bearer <token>'")
    return token.strip()


def log_auth_event(event: str, session: SessionContext) -> None:
    """Session listener that records sign-in / sign-out events."""
    logger.info("%s user=%s session=%s", event, session.user_id, session.session_id)


# ─────────────────────────────────────────────────────────────────────────────
# Run standalone: python -m services.session_service issue <user_id>
# ─────────────────────────────────────────────────────────────────────────────

if __name__ == "__main__":
    from dotenv import load_dotenv
    load_dotenv()

    parser = argparse.ArgumentParser(description="Soil-health session tokens")
    sub = parser.add_subparsers(dest="command", required=True)
    issue = sub.add_parser("issue", help="mint a bearer token for a user id")
    issue.add_argument("user_id")
    args = parser.parse_args()

    secret = os.getenv("SOILHEALTH_SECRET")
    if not secret:
        parser.error("SOILHEALTH_SECRET must be set to mint tokens")
    print(issue_token(secret, args.user_id))
