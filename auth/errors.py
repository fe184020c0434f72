"""
auth/errors.py -- Exceptions raised by the authentication core.

Unauthorized carries an internal reason for logging only. Route code must
never copy the reason into a response body: every authentication failure
looks the same to the caller.
"""

from __future__ import annotations


class AuthError(Exception):
    """Base class for authentication core errors."""


class Unauthorized(AuthError):
    # Internal reasons: "no_token", "invalid_token", "user_not_found", "inactive"
    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason


class PasswordHashError(AuthError):
    """A stored digest could not be parsed as a bcrypt hash."""
