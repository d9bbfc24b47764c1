"""
auth/errors.py -- Error taxonomy for authentication and account management.

Business-rule violations (wrong password, disabled account, duplicate email)
are expected outcomes. They are raised as AuthError carrying a machine-readable
ErrorCode; the API layer turns every AuthError into the error envelope with
the status code from _STATUS. Anything that is not an AuthError is an
unexpected failure and surfaces as INTERNAL_ERROR.
"""

from __future__ import annotations

from enum import Enum


class ErrorCode(str, Enum):
    VALIDATION_ERROR = "VALIDATION_ERROR"
    # registration
    EMAIL_ALREADY_EXISTS = "EMAIL_ALREADY_EXISTS"
    EMAIL_INVALID = "EMAIL_INVALID"
    PASSWORD_WEAK = "PASSWORD_WEAK"
    # login, also reused when an access token belongs to a disabled account
    INVALID_CREDENTIALS = "INVALID_CREDENTIALS"
    ACCOUNT_DISABLED = "ACCOUNT_DISABLED"
    ACCOUNT_LOCKED = "ACCOUNT_LOCKED"
    # refresh
    INVALID_REFRESH_TOKEN = "INVALID_REFRESH_TOKEN"
    SESSION_EXPIRED = "SESSION_EXPIRED"
    # access gate
    TOKEN_REQUIRED = "TOKEN_REQUIRED"
    TOKEN_EXPIRED = "TOKEN_EXPIRED"
    INVALID_TOKEN = "INVALID_TOKEN"
    # references
    USER_NOT_FOUND = "USER_NOT_FOUND"
    ROLE_NOT_FOUND = "ROLE_NOT_FOUND"
    SESSION_NOT_FOUND = "SESSION_NOT_FOUND"
    NOT_FOUND = "NOT_FOUND"
    # catalog / junction conflicts
    ROLE_ALREADY_ASSIGNED = "ROLE_ALREADY_ASSIGNED"
    ROLE_ALREADY_EXISTS = "ROLE_ALREADY_EXISTS"
    ROLE_HAS_USERS = "ROLE_HAS_USERS"
    # authorization
    INSUFFICIENT_PERMISSIONS = "INSUFFICIENT_PERMISSIONS"
    ACCESS_DENIED = "ACCESS_DENIED"
    # account management
    INVALID_CURRENT_PASSWORD = "INVALID_CURRENT_PASSWORD"
    CANNOT_DEACTIVATE_SELF = "CANNOT_DEACTIVATE_SELF"
    USER_HAS_DEPENDENCIES = "USER_HAS_DEPENDENCIES"
    RATE_LIMIT_EXCEEDED = "RATE_LIMIT_EXCEEDED"
    INTERNAL_ERROR = "INTERNAL_ERROR"


_STATUS: dict[ErrorCode, int] = {
    ErrorCode.VALIDATION_ERROR: 400,
    ErrorCode.EMAIL_ALREADY_EXISTS: 409,
    ErrorCode.EMAIL_INVALID: 400,
    ErrorCode.PASSWORD_WEAK: 400,
    ErrorCode.INVALID_CREDENTIALS: 401,
    ErrorCode.ACCOUNT_DISABLED: 401,
    ErrorCode.ACCOUNT_LOCKED: 401,
    ErrorCode.INVALID_REFRESH_TOKEN: 401,
    ErrorCode.SESSION_EXPIRED: 401,
    ErrorCode.TOKEN_REQUIRED: 401,
    ErrorCode.TOKEN_EXPIRED: 401,
    ErrorCode.INVALID_TOKEN: 401,
    ErrorCode.USER_NOT_FOUND: 404,
    ErrorCode.ROLE_NOT_FOUND: 404,
    ErrorCode.SESSION_NOT_FOUND: 404,
    ErrorCode.NOT_FOUND: 404,
    ErrorCode.ROLE_ALREADY_ASSIGNED: 409,
    ErrorCode.ROLE_ALREADY_EXISTS: 409,
    ErrorCode.ROLE_HAS_USERS: 400,
    ErrorCode.INSUFFICIENT_PERMISSIONS: 403,
    ErrorCode.ACCESS_DENIED: 403,
    ErrorCode.INVALID_CURRENT_PASSWORD: 400,
    ErrorCode.CANNOT_DEACTIVATE_SELF: 400,
    ErrorCode.USER_HAS_DEPENDENCIES: 409,
    ErrorCode.RATE_LIMIT_EXCEEDED: 429,
    ErrorCode.INTERNAL_ERROR: 500,
}

_MESSAGES: dict[ErrorCode, str] = {
    ErrorCode.VALIDATION_ERROR: "Request validation failed.",
    ErrorCode.EMAIL_ALREADY_EXISTS: "That email is already registered.",
    ErrorCode.EMAIL_INVALID: "Invalid email format.",
    ErrorCode.PASSWORD_WEAK: "Password does not meet the strength requirements.",
    ErrorCode.INVALID_CREDENTIALS: "Invalid email or password.",
    ErrorCode.ACCOUNT_DISABLED: "Account is disabled or pending approval.",
    ErrorCode.ACCOUNT_LOCKED: "Account is locked.",
    ErrorCode.INVALID_REFRESH_TOKEN: "Invalid refresh token.",
    ErrorCode.SESSION_EXPIRED: "Session expired or invalid.",
    ErrorCode.TOKEN_REQUIRED: "Access token required.",
    ErrorCode.TOKEN_EXPIRED: "Access token expired.",
    ErrorCode.INVALID_TOKEN: "Invalid access token.",
    ErrorCode.USER_NOT_FOUND: "User not found.",
    ErrorCode.ROLE_NOT_FOUND: "Role not found.",
    ErrorCode.SESSION_NOT_FOUND: "Session not found.",
    ErrorCode.NOT_FOUND: "Resource not found.",
    ErrorCode.ROLE_ALREADY_ASSIGNED: "The user already holds that role.",
    ErrorCode.ROLE_ALREADY_EXISTS: "A role with that name already exists.",
    ErrorCode.ROLE_HAS_USERS: "The role is still assigned to one or more users.",
    ErrorCode.INSUFFICIENT_PERMISSIONS: "Insufficient permissions.",
    ErrorCode.ACCESS_DENIED: "You do not have access to this resource.",
    ErrorCode.INVALID_CURRENT_PASSWORD: "Current password is incorrect.",
    ErrorCode.CANNOT_DEACTIVATE_SELF: "You cannot deactivate your own account.",
    ErrorCode.USER_HAS_DEPENDENCIES: "The user is still referenced by other records.",
    ErrorCode.RATE_LIMIT_EXCEEDED: "Too many requests.",
    ErrorCode.INTERNAL_ERROR: "An unexpected error occurred.",
}


def status_for(code: ErrorCode) -> int:
    return _STATUS.get(code, 500)


def default_message(code: ErrorCode) -> str:
    return _MESSAGES.get(code, code.value)


class AuthError(Exception):
    """An expected business outcome with a stable machine-readable code.

    details carries a list of {field, message, value} dicts for failures that
    report several problems at once (PASSWORD_WEAK lists every violated rule).
    """

    def __init__(self, code: ErrorCode, message: str | None = None, details: list[dict] | None = None) -> None:
        self.code = code
        self.message = message or default_message(code)
        self.details = details
        super().__init__(f"{code.value}: {self.message}")

    @property
    def status_code(self) -> int:
        return status_for(self.code)
