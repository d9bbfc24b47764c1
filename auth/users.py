"""
auth/users.py -- User records and their role associations.

Pattern: Repository + Data Mapper. UserStore is the repository; _row_to_user
is the mapper. Route and service code never touches SQL directly.

Invariants enforced here:
  - email is normalized to lowercase before every write and lookup, and the
    UNIQUE constraint on users.email turns a duplicate into
    AuthError(EMAIL_ALREADY_EXISTS).
  - (user, role) pairs are unique; a repeat assignment is
    AuthError(ROLE_ALREADY_ASSIGNED), distinct from other failures.
  - replace_roles() removes every role and assigns the new one inside a
    single transaction, so no reader ever sees the user with zero roles or
    with both the old and the new role. approve() does the same and sets
    is_active in that transaction.
  - delete_user() removes role associations first, in the same transaction
    as the user row; a foreign key held by other data rolls both back and
    raises AuthError(USER_HAS_DEPENDENCIES).

Security: all queries use bound parameters. The search term is escaped
before it is wrapped in ILIKE wildcards.
"""

from __future__ import annotations

import logging

from sqlalchemy import func, or_, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError

from auth.db import now_iso, roles, user_roles, users
from auth.errors import AuthError, ErrorCode
from auth.models import Role, User, UserPage
from auth.tokens import normalize_email

logger = logging.getLogger("turnstile.auth")


def _escape_like(term: str) -> str:
    return term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


class UserStore:
    """Repository for User entities and the user_roles junction.

    Usage:
        store = UserStore(engine)
        user = store.create_user(User(email="Alice@Example.com", password_hash=hashed))
        store.find_by_email("alice@example.com")
    """

    # Mutable through update_user(). Email and password have their own paths;
    # anything else is rejected rather than silently dropped.
    _UPDATABLE_FIELDS: frozenset = frozenset({"name", "is_active", "is_locked", "failed_attempts"})

    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    def create_user(self, user: User) -> User:
        """Insert a new user and return the stored record.

        Raises AuthError(EMAIL_ALREADY_EXISTS) if the email is taken. Other
        constraint violations propagate as IntegrityError.
        """
        email = normalize_email(user.email)
        try:
            with self.engine.connect() as conn:
                result = conn.execute(
                    users.insert().values(
                        email=email,
                        password_hash=user.password_hash,
                        name=user.name,
                        is_active=user.is_active,
                        is_locked=user.is_locked,
                        failed_attempts=0,
                        created_at=now_iso(),
                    )
                )
                conn.commit()
        except IntegrityError as exc:
            if self.find_by_email(email) is not None:
                raise AuthError(ErrorCode.EMAIL_ALREADY_EXISTS) from exc
            raise
        user_id = result.inserted_primary_key[0]
        logger.info("User created (user_id=%s, active=%s)", user_id, user.is_active)
        return self.find_by_id(user_id)

    def find_by_email(self, email: str) -> User | None:
        """Case-insensitive lookup. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(users.select().where(users.c.email == normalize_email(email))).fetchone()
        return _row_to_user(row) if row is not None else None

    def find_by_id(self, user_id: int) -> User | None:
        with self.engine.connect() as conn:
            row = conn.execute(users.select().where(users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def find_with_roles(self, user_id: int) -> User | None:
        """Look up a user and attach its roles (ordered by role id)."""
        with self.engine.connect() as conn:
            row = conn.execute(users.select().where(users.c.id == user_id)).fetchone()
            if row is None:
                return None
            role_rows = conn.execute(
                select(roles)
                .join(user_roles, user_roles.c.role_id == roles.c.id)
                .where(user_roles.c.user_id == user_id)
                .order_by(roles.c.id)
            ).fetchall()
        user = _row_to_user(row)
        user.roles = [_row_to_role(r) for r in role_rows]
        return user

    def list_with_roles(self) -> list[User]:
        """Every user with roles attached, ordered by id. Admin overview."""
        with self.engine.connect() as conn:
            user_rows = conn.execute(users.select().order_by(users.c.id)).fetchall()
            pairs = conn.execute(
                select(user_roles.c.user_id, roles)
                .join(roles, roles.c.id == user_roles.c.role_id)
                .order_by(roles.c.id)
            ).fetchall()
        by_user: dict[int, list[Role]] = {}
        for pair in pairs:
            by_user.setdefault(pair.user_id, []).append(_row_to_role(pair))
        result = []
        for row in user_rows:
            user = _row_to_user(row)
            user.roles = by_user.get(user.id, [])
            result.append(user)
        return result

    def list_users(
        self,
        page: int = 1,
        limit: int = 10,
        search: str = "",
        include_inactive: bool = False,
    ) -> UserPage:
        """Return one page of users, newest first.

        search matches a case-insensitive substring of email or name.
        Inactive users (pending or deactivated) are hidden unless
        include_inactive is set.
        """
        conditions = []
        if not include_inactive:
            conditions.append(users.c.is_active.is_(True))
        if search:
            pattern = f"%{_escape_like(search.strip())}%"
            conditions.append(
                or_(users.c.email.ilike(pattern, escape="\\"), users.c.name.ilike(pattern, escape="\\"))
            )
        offset = (page - 1) * limit
        with self.engine.connect() as conn:
            total = conn.execute(select(func.count()).select_from(users).where(*conditions)).scalar() or 0
            rows = conn.execute(
                users.select()
                .where(*conditions)
                .order_by(users.c.created_at.desc(), users.c.id.desc())
                .limit(limit)
                .offset(offset)
            ).fetchall()
        return UserPage(users=[_row_to_user(r) for r in rows], page=page, limit=limit, total=total)

    def update_user(self, user_id: int, **fields) -> User | None:
        """Update allow-listed fields and return the fresh record.

        Accepted fields: name, is_active, is_locked, failed_attempts.
        Unknown keys raise ValueError. Returns None if user_id was not found.
        """
        unknown = set(fields) - self._UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Fields not updatable: {sorted(unknown)!r}")
        if fields:
            with self.engine.connect() as conn:
                result = conn.execute(users.update().where(users.c.id == user_id).values(**fields))
                conn.commit()
            if result.rowcount == 0:
                return None
            logger.info("User updated (user_id=%s, fields=%s)", user_id, sorted(fields))
        return self.find_by_id(user_id)

    def record_failed_attempt(self, user_id: int) -> None:
        with self.engine.connect() as conn:
            conn.execute(
                users.update().where(users.c.id == user_id).values(failed_attempts=users.c.failed_attempts + 1)
            )
            conn.commit()

    def change_password(self, user_id: int, password_hash: str) -> bool:
        """Store a new password hash. Returns False if user_id was not found."""
        with self.engine.connect() as conn:
            result = conn.execute(users.update().where(users.c.id == user_id).values(password_hash=password_hash))
            conn.commit()
        if result.rowcount:
            logger.info("Password changed (user_id=%s)", user_id)
        return result.rowcount > 0

    def deactivate_user(self, user_id: int) -> bool:
        """Soft delete: mark the user inactive. Returns False if not found."""
        with self.engine.connect() as conn:
            result = conn.execute(users.update().where(users.c.id == user_id).values(is_active=False))
            conn.commit()
        if result.rowcount:
            logger.info("User deactivated (user_id=%s)", user_id)
        return result.rowcount > 0

    def delete_user(self, user_id: int) -> bool:
        """Permanently delete a user and its role associations.

        Sessions go with the user via ON DELETE CASCADE. Any other row that
        still references the user aborts the whole transaction.

        Returns False if user_id was not found.
        Raises AuthError(USER_HAS_DEPENDENCIES) on a foreign-key conflict.
        """
        try:
            with self.engine.begin() as conn:
                conn.execute(user_roles.delete().where(user_roles.c.user_id == user_id))
                result = conn.execute(users.delete().where(users.c.id == user_id))
        except IntegrityError as exc:
            logger.warning("Permanent delete blocked by dependent rows (user_id=%s)", user_id)
            raise AuthError(ErrorCode.USER_HAS_DEPENDENCIES) from exc
        if result.rowcount:
            logger.info("User permanently deleted (user_id=%s)", user_id)
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Role assignments
    # ------------------------------------------------------------------

    def assign_role(self, user_id: int, role_id: int) -> None:
        """Link a role to a user.

        Raises AuthError(ROLE_ALREADY_ASSIGNED) if the pair already exists.
        Other integrity failures (unknown user or role) propagate unchanged.
        """
        try:
            with self.engine.connect() as conn:
                conn.execute(user_roles.insert().values(user_id=user_id, role_id=role_id))
                conn.commit()
        except IntegrityError as exc:
            if self._has_pair(user_id, role_id):
                raise AuthError(ErrorCode.ROLE_ALREADY_ASSIGNED) from exc
            raise
        logger.info("Role assigned (user_id=%s, role_id=%s)", user_id, role_id)

    def remove_role(self, user_id: int, role_id: int) -> bool:
        with self.engine.connect() as conn:
            result = conn.execute(
                user_roles.delete().where((user_roles.c.user_id == user_id) & (user_roles.c.role_id == role_id))
            )
            conn.commit()
        if result.rowcount:
            logger.info("Role removed (user_id=%s, role_id=%s)", user_id, role_id)
        return result.rowcount > 0

    def remove_all_roles(self, user_id: int) -> int:
        with self.engine.connect() as conn:
            result = conn.execute(user_roles.delete().where(user_roles.c.user_id == user_id))
            conn.commit()
        return result.rowcount

    def replace_roles(self, user_id: int, role_id: int) -> None:
        """Make role_id the user's only role, atomically."""
        with self.engine.begin() as conn:
            conn.execute(user_roles.delete().where(user_roles.c.user_id == user_id))
            conn.execute(user_roles.insert().values(user_id=user_id, role_id=role_id))
        logger.info("Roles replaced (user_id=%s, role_id=%s)", user_id, role_id)

    def approve(self, user_id: int, role_id: int) -> None:
        """Activate a pending account with role_id as its only role.

        Role replacement and activation commit together or not at all.
        """
        with self.engine.begin() as conn:
            conn.execute(user_roles.delete().where(user_roles.c.user_id == user_id))
            conn.execute(user_roles.insert().values(user_id=user_id, role_id=role_id))
            conn.execute(users.update().where(users.c.id == user_id).values(is_active=True))
        logger.info("User approved (user_id=%s, role_id=%s)", user_id, role_id)

    def _has_pair(self, user_id: int, role_id: int) -> bool:
        with self.engine.connect() as conn:
            row = conn.execute(
                select(user_roles.c.id).where((user_roles.c.user_id == user_id) & (user_roles.c.role_id == role_id))
            ).fetchone()
        return row is not None


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        email=row.email,
        password_hash=row.password_hash,
        name=row.name,
        is_active=bool(row.is_active),
        is_locked=bool(row.is_locked),
        failed_attempts=row.failed_attempts or 0,
        created_at=row.created_at,
    )


def _row_to_role(row) -> Role:
    return Role(
        id=row.id,
        name=row.name,
        description=row.description,
        created_at=row.created_at,
    )
