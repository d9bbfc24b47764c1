"""
auth/roles.py -- The role catalog and role-membership queries.

The catalog is small and mostly static: ensure_default_roles() seeds it at
startup and may run any number of times. Names are stored lowercase; the
UNIQUE constraint on roles.name backs ROLE_ALREADY_EXISTS.

Assigning and removing roles on a user lives in UserStore (it mutates the
junction on behalf of a user); this module answers "who holds what".
"""

from __future__ import annotations

import logging

from sqlalchemy import func, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError

from auth.db import now_iso, roles, user_roles, users
from auth.errors import AuthError, ErrorCode
from auth.models import Role, User
from auth.users import _row_to_role, _row_to_user

logger = logging.getLogger("turnstile.auth")

ADMIN_ROLE = "admin"
EMPLOYEE_ROLE = "employee"
APPROVED_ROLE = "client"  # granted by a plain approval
PENDING_ROLE = "pending"  # granted at registration

DEFAULT_ROLES: dict[str, str] = {
    ADMIN_ROLE: "Full administrative access",
    EMPLOYEE_ROLE: "Staff member",
    APPROVED_ROLE: "Approved customer account",
    PENDING_ROLE: "Registered, awaiting administrator approval",
}


class RoleStore:
    """Repository for the roles catalog.

    Usage:
        store = RoleStore(engine)
        store.ensure_default_roles()
        admin = store.find_by_name("admin")
    """

    _UPDATABLE_FIELDS: frozenset = frozenset({"name", "description"})

    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    def create(self, name: str, description: str | None = None) -> Role:
        """Add a role. Raises AuthError(ROLE_ALREADY_EXISTS) on a duplicate name."""
        try:
            with self.engine.connect() as conn:
                result = conn.execute(
                    roles.insert().values(name=name.strip().lower(), description=description, created_at=now_iso())
                )
                conn.commit()
        except IntegrityError as exc:
            raise AuthError(ErrorCode.ROLE_ALREADY_EXISTS) from exc
        role_id = result.inserted_primary_key[0]
        logger.info("Role created (role_id=%s, name=%s)", role_id, name.strip().lower())
        return self.find_by_id(role_id)

    def find_by_id(self, role_id: int) -> Role | None:
        with self.engine.connect() as conn:
            row = conn.execute(roles.select().where(roles.c.id == role_id)).fetchone()
        return _row_to_role(row) if row is not None else None

    def find_by_name(self, name: str) -> Role | None:
        with self.engine.connect() as conn:
            row = conn.execute(roles.select().where(roles.c.name == name.strip().lower())).fetchone()
        return _row_to_role(row) if row is not None else None

    def list_all(self) -> list[Role]:
        with self.engine.connect() as conn:
            rows = conn.execute(roles.select().order_by(roles.c.id)).fetchall()
        return [_row_to_role(r) for r in rows]

    def update(self, role_id: int, **fields) -> Role | None:
        """Rename or re-describe a role. Returns None if role_id was not found.

        Raises AuthError(ROLE_ALREADY_EXISTS) if the new name is taken.
        """
        unknown = set(fields) - self._UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Fields not updatable: {sorted(unknown)!r}")
        if "name" in fields:
            fields["name"] = fields["name"].strip().lower()
        if fields:
            try:
                with self.engine.connect() as conn:
                    result = conn.execute(roles.update().where(roles.c.id == role_id).values(**fields))
                    conn.commit()
            except IntegrityError as exc:
                raise AuthError(ErrorCode.ROLE_ALREADY_EXISTS) from exc
            if result.rowcount == 0:
                return None
        return self.find_by_id(role_id)

    def delete(self, role_id: int) -> bool:
        """Remove a role nobody holds. Raises AuthError(ROLE_HAS_USERS) otherwise."""
        with self.engine.begin() as conn:
            holders = conn.execute(
                select(func.count()).select_from(user_roles).where(user_roles.c.role_id == role_id)
            ).scalar()
            if holders:
                raise AuthError(ErrorCode.ROLE_HAS_USERS)
            result = conn.execute(roles.delete().where(roles.c.id == role_id))
        if result.rowcount:
            logger.info("Role deleted (role_id=%s)", role_id)
        return result.rowcount > 0

    def list_users(self, role_id: int) -> list[User]:
        """Users currently holding the role, ordered by id."""
        with self.engine.connect() as conn:
            rows = conn.execute(
                select(users)
                .join(user_roles, user_roles.c.user_id == users.c.id)
                .where(user_roles.c.role_id == role_id)
                .order_by(users.c.id)
            ).fetchall()
        return [_row_to_user(r) for r in rows]

    def list_for_user(self, user_id: int) -> list[Role]:
        with self.engine.connect() as conn:
            rows = conn.execute(
                select(roles)
                .join(user_roles, user_roles.c.role_id == roles.c.id)
                .where(user_roles.c.user_id == user_id)
                .order_by(roles.c.id)
            ).fetchall()
        return [_row_to_role(r) for r in rows]

    def has_role(self, user_id: int, name: str) -> bool:
        return self.has_any_role(user_id, [name])

    def has_any_role(self, user_id: int, names: list[str]) -> bool:
        wanted = [n.strip().lower() for n in names]
        if not wanted:
            return False
        with self.engine.connect() as conn:
            row = conn.execute(
                select(user_roles.c.id)
                .join(roles, roles.c.id == user_roles.c.role_id)
                .where(user_roles.c.user_id == user_id, roles.c.name.in_(wanted))
                .limit(1)
            ).fetchone()
        return row is not None

    def ensure_default_roles(self) -> list[Role]:
        """Create whichever default roles are missing. Returns the ones created."""
        created: list[Role] = []
        for name, description in DEFAULT_ROLES.items():
            if self.find_by_name(name) is not None:
                continue
            try:
                created.append(self.create(name, description))
            except AuthError:
                # Another process seeded it between the check and the insert.
                continue
        if created:
            logger.info("Seeded default roles: %s", ", ".join(r.name for r in created))
        return created
