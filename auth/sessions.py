"""
auth/sessions.py -- Session records: one row per signed-in device.

Each session binds exactly one opaque refresh token to a user, a coarse
user-agent label, a client IP and an absolute expiry. Rows are never deleted
by the session lifecycle. Logout, bulk logout and the expiry sweep only set
is_active = False, so the table doubles as an audit trail.

A session is valid only while all of these hold:
  is_active, now < expires_at, owner.is_active, not owner.is_locked
is_valid() flips a failing session to inactive as a side effect, so an
invalid session can never become valid again.

Rotation (renew) is a single conditional UPDATE keyed on the presented token
and is_active. Two refreshes racing on the same token cannot both match:
the first writer wins and the other sees no row.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy import func, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from auth.db import now_iso, sessions, to_iso, users
from auth.models import ClientContext, Outcome, Session, SessionOwner, SessionStats
from auth.tokens import compute_expiry, generate_refresh_token, parse_user_agent

logger = logging.getLogger("turnstile.auth")

_IP_MAX_LENGTH = 45


class SessionStore:
    """Repository for Session entities.

    Usage:
        store = SessionStore(engine)
        session = store.create(user_id=1, context=ClientContext(user_agent=ua, ip=ip), expires_in="7d")
        store.is_valid(session.refresh_token)
    """

    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    def create(self, user_id: int, context: ClientContext | None, expires_in: str) -> Session:
        """Open a session with a fresh refresh token and return the stored row."""
        context = context or ClientContext()
        now = datetime.now(timezone.utc)
        token = generate_refresh_token()
        with self.engine.connect() as conn:
            result = conn.execute(
                sessions.insert().values(
                    user_id=user_id,
                    refresh_token=token,
                    user_agent=parse_user_agent(context.user_agent),
                    ip=(context.ip or "")[:_IP_MAX_LENGTH] or None,
                    created_at=to_iso(now),
                    expires_at=to_iso(compute_expiry(expires_in, now=now)),
                    last_activity_at=to_iso(now),
                    is_active=True,
                )
            )
            conn.commit()
        session_id = result.inserted_primary_key[0]
        logger.info("Session opened (session_id=%s, user_id=%s)", session_id, user_id)
        return self.find_by_id(session_id)

    def find_by_id(self, session_id: int) -> Session | None:
        with self.engine.connect() as conn:
            row = conn.execute(sessions.select().where(sessions.c.id == session_id)).fetchone()
        return _row_to_session(row) if row is not None else None

    def find_by_refresh_token(self, refresh_token: str) -> Session | None:
        """Active session for a token, with its owner attached. None otherwise."""
        with self.engine.connect() as conn:
            row = conn.execute(
                select(
                    sessions,
                    users.c.email.label("owner_email"),
                    users.c.name.label("owner_name"),
                    users.c.is_active.label("owner_is_active"),
                    users.c.is_locked.label("owner_is_locked"),
                )
                .join(users, users.c.id == sessions.c.user_id)
                .where(sessions.c.refresh_token == refresh_token, sessions.c.is_active.is_(True))
            ).fetchone()
        if row is None:
            return None
        session = _row_to_session(row)
        session.owner = SessionOwner(
            id=row.user_id,
            email=row.owner_email,
            name=row.owner_name,
            is_active=bool(row.owner_is_active),
            is_locked=bool(row.owner_is_locked),
        )
        return session

    def list_active(self, user_id: int) -> list[Session]:
        """Active, unexpired sessions for a user, newest first."""
        with self.engine.connect() as conn:
            rows = conn.execute(
                sessions.select()
                .where(
                    sessions.c.user_id == user_id,
                    sessions.c.is_active.is_(True),
                    sessions.c.expires_at > now_iso(),
                )
                .order_by(sessions.c.created_at.desc(), sessions.c.id.desc())
            ).fetchall()
        return [_row_to_session(r) for r in rows]

    def invalidate(self, session_id: int, user_id: int | None = None) -> bool:
        """Deactivate one session. With user_id, only if that user owns it."""
        stmt = sessions.update().where(sessions.c.id == session_id, sessions.c.is_active.is_(True))
        if user_id is not None:
            stmt = stmt.where(sessions.c.user_id == user_id)
        with self.engine.connect() as conn:
            result = conn.execute(stmt.values(is_active=False))
            conn.commit()
        if result.rowcount:
            logger.info("Session invalidated (session_id=%s)", session_id)
        return result.rowcount > 0

    def invalidate_all(self, user_id: int, except_session_id: int | None = None) -> int:
        """Deactivate every active session of a user, optionally sparing one."""
        stmt = sessions.update().where(sessions.c.user_id == user_id, sessions.c.is_active.is_(True))
        if except_session_id is not None:
            stmt = stmt.where(sessions.c.id != except_session_id)
        with self.engine.connect() as conn:
            result = conn.execute(stmt.values(is_active=False))
            conn.commit()
        logger.info("Sessions invalidated (user_id=%s, count=%s)", user_id, result.rowcount)
        return result.rowcount

    def invalidate_by_refresh_token(self, refresh_token: str) -> bool:
        with self.engine.connect() as conn:
            result = conn.execute(
                sessions.update()
                .where(sessions.c.refresh_token == refresh_token, sessions.c.is_active.is_(True))
                .values(is_active=False)
            )
            conn.commit()
        return result.rowcount > 0

    def is_valid(self, refresh_token: str) -> bool:
        """Full validity check for the session behind a refresh token.

        An expired session, or one whose owner is inactive or locked, is
        deactivated on the spot.
        """
        session = self.find_by_refresh_token(refresh_token)
        if session is None:
            return False
        reason = None
        if session.expires_at <= now_iso():
            reason = "expired"
        elif session.owner is None or not session.owner.is_active:
            reason = "owner inactive"
        elif session.owner.is_locked:
            reason = "owner locked"
        if reason is None:
            return True
        self.invalidate(session.id)
        logger.info("Session %s deactivated on check: %s", session.id, reason)
        return False

    def renew(self, refresh_token: str, expires_in: str) -> Session | None:
        """Swap in a new refresh token and extend expiry.

        Returns the renewed session, or None if the presented token no longer
        matches an active session (already rotated or invalidated).
        """
        now = datetime.now(timezone.utc)
        new_token = generate_refresh_token()
        with self.engine.begin() as conn:
            result = conn.execute(
                sessions.update()
                .where(sessions.c.refresh_token == refresh_token, sessions.c.is_active.is_(True))
                .values(
                    refresh_token=new_token,
                    expires_at=to_iso(compute_expiry(expires_in, now=now)),
                    last_activity_at=to_iso(now),
                )
            )
            if result.rowcount == 0:
                return None
            row = conn.execute(sessions.select().where(sessions.c.refresh_token == new_token)).fetchone()
        return _row_to_session(row)

    def touch_last_activity(self, refresh_token: str) -> Outcome:
        """Record activity on a session. Failures are logged, never raised."""
        try:
            with self.engine.connect() as conn:
                result = conn.execute(
                    sessions.update()
                    .where(sessions.c.refresh_token == refresh_token)
                    .values(last_activity_at=now_iso())
                )
                conn.commit()
        except SQLAlchemyError:
            logger.warning("Could not record session activity", exc_info=True)
            return Outcome.unknown
        return Outcome.confirmed if result.rowcount else Outcome.noop

    def sweep_expired(self) -> int:
        """Deactivate every active session past its expiry. Returns the count."""
        with self.engine.connect() as conn:
            result = conn.execute(
                sessions.update()
                .where(sessions.c.is_active.is_(True), sessions.c.expires_at <= now_iso())
                .values(is_active=False)
            )
            conn.commit()
        if result.rowcount:
            logger.info("Expired sessions swept: %s", result.rowcount)
        return result.rowcount

    def stats(self, user_id: int) -> SessionStats:
        with self.engine.connect() as conn:
            total = conn.execute(
                select(func.count()).select_from(sessions).where(sessions.c.user_id == user_id)
            ).scalar()
            active = conn.execute(
                select(func.count())
                .select_from(sessions)
                .where(
                    sessions.c.user_id == user_id,
                    sessions.c.is_active.is_(True),
                    sessions.c.expires_at > now_iso(),
                )
            ).scalar()
        return SessionStats(active_sessions=active or 0, total_sessions=total or 0)


def _row_to_session(row) -> Session:
    return Session(
        id=row.id,
        user_id=row.user_id,
        refresh_token=row.refresh_token,
        user_agent=row.user_agent,
        ip=row.ip,
        created_at=row.created_at,
        expires_at=row.expires_at,
        last_activity_at=row.last_activity_at,
        is_active=bool(row.is_active),
    )
