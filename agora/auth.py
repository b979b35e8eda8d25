"""
Agora - Authentication Module
===============================
Session-based authentication in front of the protected pages and the
realtime channel.

Security model:
- Users register with username, password and email
- Passwords are stored as bcrypt hashes by the credential store
- A successful login creates a server-side Session and a signed JWT
  carrying its id; the token travels in an HttpOnly cookie
- Sessions expire after a fixed idle timeout (60 seconds by default);
  every successful check renews the timeout
- Logout destroys the session unconditionally

Login failures do not reveal whether the username exists: an unknown user
and a wrong password raise the same InvalidCredentials error, and the
unknown-user path still runs a bcrypt comparison.

Usage:
    auth = AuthManager(store, secret_key="...", idle_timeout=60)
    await auth.register("alice", "pw1", "a@x.com")
    session = await auth.login("alice", "pw1")
    token = auth.issue_token(session)
    session = auth.require_session(token, visit=True)   # counter -> 1
"""

import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable

from fastapi import Request
from jose import JWTError, jwt

from agora.credentials import CredentialStore, User, check_password_async, hash_password_async
from agora.errors import InvalidCredentials, NotAuthenticated

logger = logging.getLogger(__name__)

JWT_ALGORITHM = "HS256"
DEFAULT_IDLE_TIMEOUT = 60
DEFAULT_COOKIE_NAME = "agora_session"

# bcrypt only looks at the first 72 bytes of a password
MAX_PASSWORD_BYTES = 72


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Session:
    """One authenticated browser session."""
    session_id: str
    username: str
    expires_at: datetime
    counter: int = 0


class AuthManager:
    """
    Registers users, opens sessions and gates protected capabilities.

    Attributes:
        store:        Credential store holding users and password hashes.
        idle_timeout: Seconds a session stays valid after its last renewal.
        cookie_name:  Name of the cookie carrying the session token.
    """

    def __init__(
        self,
        store: CredentialStore,
        secret_key: str,
        idle_timeout: int = DEFAULT_IDLE_TIMEOUT,
        cookie_name: str = DEFAULT_COOKIE_NAME,
        now: Callable[[], datetime] = _utcnow,
    ):
        """
        Initialize the auth manager.

        Args:
            store:        Credential store backend.
            secret_key:   Key used to sign session tokens.
            idle_timeout: Idle timeout in seconds.
            cookie_name:  Session cookie name.
            now:          Clock returning an aware UTC datetime (tests inject one).
        """
        if not secret_key:
            raise ValueError("A secret key is required to sign session tokens.")
        self.store = store
        self.idle_timeout = idle_timeout
        self.cookie_name = cookie_name
        self._secret_key = secret_key
        self._now = now
        self._sessions: dict[str, Session] = {}
        self._dummy_hash: str | None = None

    # -- Registration and login ------------------------------------------------

    async def register(self, username: str, password: str, email: str) -> User:
        """
        Create a new user.

        Returns:
            The stored user.

        Raises:
            ValueError: If username or password is empty, or the password is
                        longer than bcrypt supports.
            DuplicateUser: If the username is already registered.
        """
        username = (username or "").strip()
        if not username:
            raise ValueError("Username must not be empty.")
        if not password:
            raise ValueError("Password must not be empty.")
        if len(password.encode("utf-8")) > MAX_PASSWORD_BYTES:
            raise ValueError(f"Password must be at most {MAX_PASSWORD_BYTES} bytes.")

        user = await self.store.create(username, password, (email or "").strip())
        logger.info("User %s registered", username)
        return user

    async def login(self, username: str, password: str) -> Session:
        """
        Verify credentials and open a new session.

        Raises:
            InvalidCredentials: If the user does not exist or the password
                                does not match. No session is created.
        """
        self.purge_expired()

        username = (username or "").strip()
        user = await self.store.find_by_username(username)
        if user is None:
            # Same bcrypt cost as a real check so timing does not leak the miss
            await check_password_async(password or "", await self._get_dummy_hash())
            logger.debug("Login failed for %s: no such user", username)
            raise InvalidCredentials()

        if not await self.store.verify_password(user, password or ""):
            logger.debug("Login failed for %s: wrong password", username)
            raise InvalidCredentials()

        session = Session(
            session_id=secrets.token_urlsafe(24),
            username=user.username,
            expires_at=self._expiry(),
        )
        self._sessions[session.session_id] = session
        logger.info("User %s logged in", user.username)
        return session

    def logout(self, token: str | None) -> None:
        """Destroy the session behind a token. Invalid tokens are ignored."""
        session_id = self._decode(token)
        if session_id and self._sessions.pop(session_id, None):
            logger.info("Session %s destroyed", session_id[:8])

    # -- Session tokens --------------------------------------------------------

    def issue_token(self, session: Session) -> str:
        """Sign a token identifying the session."""
        payload = {
            "sid": session.session_id,
            "sub": session.username,
            "iat": self._now(),
        }
        return jwt.encode(payload, self._secret_key, algorithm=JWT_ALGORITHM)

    def require_session(self, token: str | None, *, visit: bool = False) -> Session:
        """
        Resolve a token to a live session and renew it.

        Args:
            token: The session token, usually taken from the cookie.
            visit: Count this call as a protected-page visit (counter + 1).

        Returns:
            The renewed session.

        Raises:
            NotAuthenticated: If the token is missing or invalid, or the
                              session is unknown or expired.
        """
        session_id = self._decode(token)
        if session_id is None:
            raise NotAuthenticated("Authentication required")

        session = self._sessions.get(session_id)
        if session is None:
            raise NotAuthenticated("Session not found")

        if session.expires_at <= self._now():
            del self._sessions[session_id]
            logger.debug("Session %s expired", session_id[:8])
            raise NotAuthenticated("Session expired")

        session.expires_at = self._expiry()
        if visit:
            session.counter += 1
        return session

    def session_from_request(self, request: Request, *, visit: bool = False) -> Session:
        """require_session() using the request's session cookie."""
        return self.require_session(request.cookies.get(self.cookie_name), visit=visit)

    async def current_user(self, session: Session) -> dict:
        """
        Public profile of the session's user plus the visit counter.

        Raises:
            NotAuthenticated: If the user no longer exists.
        """
        user = await self.store.find_by_username(session.username)
        if user is None:
            raise NotAuthenticated("User not found")
        return {"user": user.public(), "counter": session.counter}

    def purge_expired(self) -> int:
        """
        Drop every session whose idle timeout has passed.

        Runs on each login so sessions that are never presented again do
        not accumulate.

        Returns:
            Number of sessions removed.
        """
        now = self._now()
        expired = [sid for sid, s in self._sessions.items() if s.expires_at <= now]
        for sid in expired:
            del self._sessions[sid]
        if expired:
            logger.debug("Purged %d expired sessions", len(expired))
        return len(expired)

    @property
    def session_count(self) -> int:
        return len(self._sessions)

    # -- Internal helpers ------------------------------------------------------

    def _expiry(self) -> datetime:
        return self._now() + timedelta(seconds=self.idle_timeout)

    def _decode(self, token: str | None) -> str | None:
        if not token:
            return None
        try:
            payload = jwt.decode(token, self._secret_key, algorithms=[JWT_ALGORITHM])
        except JWTError:
            return None
        return payload.get("sid")

    async def _get_dummy_hash(self) -> str:
        if self._dummy_hash is None:
            self._dummy_hash = await hash_password_async(secrets.token_hex(8))
        return self._dummy_hash
