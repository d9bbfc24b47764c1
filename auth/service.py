"""
auth/service.py -- Authentication and session lifecycle.

AuthService is the only component that combines credentials, users, roles and
sessions. Routes call it; it calls the stores. Every business rule violation
leaves here as an AuthError with a specific ErrorCode.

Account and session states:

    unauthenticated --register--> pending (inactive, "pending" role, 1 session)
    pending --admin approval--> active
    active --login--> active + new session (logins are additive)
    session --refresh--> same session, new refresh token, new expiry
    session --logout / logout-all / sweep / failed check--> inactive (terminal)

Rotation is single-use: once refresh_tokens() has renewed a session, the
token that was presented matches nothing and fails with INVALID_REFRESH_TOKEN.

Access tokens are never revoked individually. Logging out closes the session
(so no new access tokens can be minted) but an access token already issued
stays usable until its own exp. Each request still re-reads the account, so
deactivating or locking a user takes effect immediately.
"""

from __future__ import annotations

import logging

from auth.errors import AuthError, ErrorCode
from auth.models import AuthResult, ClientContext, Outcome, Principal, TokenPair, User
from auth.roles import PENDING_ROLE, RoleStore
from auth.sessions import SessionStore
from auth.tokens import (
    Credentials,
    is_valid_email,
    normalize_email,
    validate_password_strength,
)
from auth.users import UserStore
from core.config import Settings

logger = logging.getLogger("turnstile.auth")


def _weak_password_error(reasons: list[str], field: str = "password") -> AuthError:
    return AuthError(
        ErrorCode.PASSWORD_WEAK,
        details=[{"field": field, "message": reason, "value": None} for reason in reasons],
    )


class AuthService:
    """Orchestrates register, login, refresh, logout and token verification.

    Usage:
        service = AuthService(users, roles, sessions, Credentials(settings), settings)
        result = service.login("alice@example.com", "GoodPass1!", ClientContext(ip="10.0.0.1"))
        service.refresh_tokens(result.tokens.refresh_token)
    """

    def __init__(
        self,
        users: UserStore,
        roles: RoleStore,
        sessions: SessionStore,
        credentials: Credentials,
        settings: Settings,
    ) -> None:
        self.users = users
        self.roles = roles
        self.sessions = sessions
        self.credentials = credentials
        self.refresh_token_ttl = settings.refresh_token_ttl

    # ------------------------------------------------------------------
    # Sign-up and sign-in
    # ------------------------------------------------------------------

    def register(
        self,
        email: str,
        password: str,
        name: str | None = None,
        context: ClientContext | None = None,
    ) -> AuthResult:
        """Create a pending account and sign it in.

        The account starts inactive with the pending role. It still gets a
        session and an access token, but the access gate rejects that token
        with ACCOUNT_DISABLED until an administrator approves the account.
        """
        email = normalize_email(email)
        if not is_valid_email(email):
            raise AuthError(ErrorCode.EMAIL_INVALID)
        check = validate_password_strength(password)
        if not check.valid:
            raise _weak_password_error(check.reasons)

        user = self.users.create_user(
            User(
                email=email,
                password_hash=self.credentials.hash_password(password),
                name=(name or "").strip() or None,
                is_active=False,
            )
        )
        pending = self.roles.find_by_name(PENDING_ROLE)
        if pending is None:
            pending = self.roles.create(PENDING_ROLE, "Registered, awaiting administrator approval")
        self.users.assign_role(user.id, pending.id)
        logger.info("Registered user_id=%s (pending approval)", user.id)
        return self._open_session(user.id, context)

    def login(self, email: str, password: str, context: ClientContext | None = None) -> AuthResult:
        """Check credentials and open a new session.

        Unknown email and wrong password both raise INVALID_CREDENTIALS; the
        difference is only visible in the log.
        """
        user = self.users.find_by_email(email)
        if user is None:
            self.credentials.burn_password_check(password)
            logger.info("Login failed: unknown account")
            raise AuthError(ErrorCode.INVALID_CREDENTIALS)
        if not user.is_active:
            logger.info("Login refused: user_id=%s is inactive", user.id)
            raise AuthError(ErrorCode.ACCOUNT_DISABLED)
        if user.is_locked:
            logger.info("Login refused: user_id=%s is locked", user.id)
            raise AuthError(ErrorCode.ACCOUNT_LOCKED)
        if not self.credentials.verify_password(password, user.password_hash):
            self.users.record_failed_attempt(user.id)
            logger.info("Login failed: wrong password for user_id=%s", user.id)
            raise AuthError(ErrorCode.INVALID_CREDENTIALS)

        if user.failed_attempts:
            self.users.update_user(user.id, failed_attempts=0)
        logger.info("Login succeeded for user_id=%s", user.id)
        return self._open_session(user.id, context)

    def _open_session(self, user_id: int, context: ClientContext | None) -> AuthResult:
        user = self.users.find_with_roles(user_id)
        session = self.sessions.create(user_id, context, self.refresh_token_ttl)
        tokens = TokenPair(
            access_token=self.credentials.create_access_token(
                user_id=user.id, email=user.email, roles=user.role_names, session_id=session.id
            ),
            refresh_token=session.refresh_token,
            expires_in=self.credentials.access_token_ttl,
        )
        return AuthResult(user=user, tokens=tokens, session_id=session.id)

    # ------------------------------------------------------------------
    # Session lifecycle
    # ------------------------------------------------------------------

    def refresh_tokens(self, refresh_token: str) -> AuthResult:
        """Rotate a refresh token and mint a new access token.

        Roles are re-read, so a role change since the last login shows up in
        the new access token.
        """
        if not refresh_token:
            raise AuthError(ErrorCode.INVALID_REFRESH_TOKEN)
        session = self.sessions.find_by_refresh_token(refresh_token)
        if session is None:
            raise AuthError(ErrorCode.INVALID_REFRESH_TOKEN)
        if not self.sessions.is_valid(refresh_token):
            raise AuthError(ErrorCode.SESSION_EXPIRED)

        renewed = self.sessions.renew(refresh_token, self.refresh_token_ttl)
        if renewed is None:
            # Lost a race with a concurrent refresh or logout of the same token.
            logger.info("Refresh lost rotation race for session_id=%s", session.id)
            raise AuthError(ErrorCode.INVALID_REFRESH_TOKEN)

        user = self.users.find_with_roles(renewed.user_id)
        tokens = TokenPair(
            access_token=self.credentials.create_access_token(
                user_id=user.id, email=user.email, roles=user.role_names, session_id=renewed.id
            ),
            refresh_token=renewed.refresh_token,
            expires_in=self.credentials.access_token_ttl,
        )
        self.sessions.touch_last_activity(renewed.refresh_token)
        return AuthResult(user=user, tokens=tokens, session_id=renewed.id)

    def logout(self, refresh_token: str | None) -> Outcome:
        """Close the session behind a refresh token.

        Never raises: the caller discards its credentials whatever happens
        here, and the access token's expiry bounds what is left.
        """
        if not refresh_token:
            return Outcome.noop
        try:
            closed = self.sessions.invalidate_by_refresh_token(refresh_token)
        except Exception:
            logger.warning("Logout could not be recorded", exc_info=True)
            return Outcome.unknown
        return Outcome.confirmed if closed else Outcome.noop

    def logout_all_sessions(self, user_id: int, except_session_id: int | None = None) -> int:
        return self.sessions.invalidate_all(user_id, except_session_id=except_session_id)

    def clean_expired_sessions(self) -> int:
        return self.sessions.sweep_expired()

    # ------------------------------------------------------------------
    # Credentials
    # ------------------------------------------------------------------

    def change_password(self, user_id: int, current_password: str, new_password: str) -> None:
        """Replace a user's password after checking the current one.

        Other sessions stay open.
        """
        user = self.users.find_by_id(user_id)
        if user is None:
            raise AuthError(ErrorCode.USER_NOT_FOUND)
        if not self.credentials.verify_password(current_password, user.password_hash):
            raise AuthError(ErrorCode.INVALID_CURRENT_PASSWORD)
        check = validate_password_strength(new_password)
        if not check.valid:
            raise _weak_password_error(check.reasons, field="new_password")
        self.users.change_password(user_id, self.credentials.hash_password(new_password))

    def authenticate_access_token(self, token: str) -> Principal:
        """Verify an access token against the live account.

        Raises AuthError with TOKEN_EXPIRED or INVALID_TOKEN for a bad token,
        and ACCOUNT_DISABLED or ACCOUNT_LOCKED when the account has changed
        since the token was issued.
        """
        claims = self.credentials.decode_access_token(token)
        user = self.users.find_with_roles(claims["user_id"])
        if user is None:
            raise AuthError(ErrorCode.INVALID_TOKEN)
        if not user.is_active:
            raise AuthError(ErrorCode.ACCOUNT_DISABLED)
        if user.is_locked:
            raise AuthError(ErrorCode.ACCOUNT_LOCKED)
        sid = claims.get("sid")
        return Principal(user=user, session_id=sid if isinstance(sid, int) else None)

    def verify_access_token(self, token: str) -> User | None:
        """Soft variant of authenticate_access_token(): None instead of raising."""
        try:
            return self.authenticate_access_token(token).user
        except AuthError:
            return None
