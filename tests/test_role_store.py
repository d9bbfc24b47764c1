"""
tests/test_role_store.py -- Unit tests for auth/roles.py.
"""

from __future__ import annotations

import pytest

from auth.errors import AuthError, ErrorCode
from auth.models import User
from auth.roles import DEFAULT_ROLES, RoleStore


def test_default_roles_seed_is_idempotent(engine):
    store = RoleStore(engine)
    first = store.ensure_default_roles()
    assert sorted(r.name for r in first) == sorted(DEFAULT_ROLES)
    assert store.ensure_default_roles() == []
    assert len(store.list_all()) == len(DEFAULT_ROLES)


def test_seed_only_creates_missing_roles(engine):
    store = RoleStore(engine)
    store.create("admin", "pre-existing")
    created = store.ensure_default_roles()
    assert "admin" not in [r.name for r in created]
    assert store.find_by_name("admin").description == "pre-existing"


def test_create_lowercases_and_rejects_duplicates(role_store):
    role = role_store.create("Auditor", "Read-only access")
    assert role.name == "auditor"
    with pytest.raises(AuthError) as exc_info:
        role_store.create("AUDITOR")
    assert exc_info.value.code == ErrorCode.ROLE_ALREADY_EXISTS


def test_find_by_name_is_case_insensitive(role_store):
    assert role_store.find_by_name("Admin").name == "admin"
    assert role_store.find_by_name("missing") is None
    assert role_store.find_by_id(9999) is None


def test_update_role(role_store):
    role = role_store.create("support")
    updated = role_store.update(role.id, name="Helpdesk", description="First line")
    assert updated.name == "helpdesk"
    assert updated.description == "First line"
    assert role_store.update(9999, description="x") is None


def test_update_to_taken_name_is_rejected(role_store):
    role = role_store.create("support")
    with pytest.raises(AuthError) as exc_info:
        role_store.update(role.id, name="admin")
    assert exc_info.value.code == ErrorCode.ROLE_ALREADY_EXISTS


def test_delete_blocked_while_role_is_held(role_store, user_store):
    role = role_store.create("temp")
    user = user_store.create_user(User(email="t@example.com", password_hash="x"))
    user_store.assign_role(user.id, role.id)
    with pytest.raises(AuthError) as exc_info:
        role_store.delete(role.id)
    assert exc_info.value.code == ErrorCode.ROLE_HAS_USERS

    user_store.remove_role(user.id, role.id)
    assert role_store.delete(role.id)
    assert role_store.find_by_id(role.id) is None


def test_membership_queries(role_store, user_store):
    user = user_store.create_user(User(email="m@example.com", password_hash="x"))
    employee = role_store.find_by_name("employee")
    user_store.assign_role(user.id, employee.id)

    assert [u.id for u in role_store.list_users(employee.id)] == [user.id]
    assert [r.name for r in role_store.list_for_user(user.id)] == ["employee"]
    assert role_store.has_role(user.id, "EMPLOYEE")
    assert not role_store.has_role(user.id, "admin")
    assert role_store.has_any_role(user.id, ["admin", "employee"])
    assert not role_store.has_any_role(user.id, [])
