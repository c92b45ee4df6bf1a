"""
auth/models.py -- Domain types for identity and access control.

Pattern: Data class (pure data container) for Account; closed
str enums for Role and Permission so an unknown role is rejected where it is
constructed instead of silently failing a membership test later.

ROLE_PERMISSIONS is the fixed role -> permission table. There is no dynamic
role creation.

Layer rule: no imports from api/.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class Role(str, Enum):
    admin = "admin"
    editor = "editor"
    viewer = "viewer"


class Permission(str, Enum):
    create_whiskey = "create:whiskey"
    read_whiskey = "read:whiskey"
    update_whiskey = "update:whiskey"
    delete_whiskey = "delete:whiskey"
    manage_users = "manage:users"


ROLE_PERMISSIONS: dict[Role, frozenset[Permission]] = {
    Role.admin: frozenset(
        {
            Permission.create_whiskey,
            Permission.read_whiskey,
            Permission.update_whiskey,
            Permission.delete_whiskey,
            Permission.manage_users,
        }
    ),
    Role.editor: frozenset(
        {
            Permission.create_whiskey,
            Permission.read_whiskey,
            Permission.update_whiskey,
        }
    ),
    Role.viewer: frozenset({Permission.read_whiskey}),
}


@dataclass
class Account:
    """The durable identity record.

    hashed_password is a bcrypt hash; the plaintext is never stored.

    Verification state: verification_code is the 8-character code mailed at
    registration or resend. verification_code_attempts counts guesses against
    the current code and resets to 0 whenever a new code is issued.

    Reset state: password_reset_token is single-use and cleared on success or
    on the first expired lookup.

    Timestamps are ISO 8601 UTC strings (same convention as the rest of the
    store).

    first_name, last_name, profile_photo and is_profile_public are profile
    passthrough fields; the auth flows never interpret them.
    """

    username: str
    email: str
    role: Role = Role.editor
    id: int | None = None
    hashed_password: str | None = None
    first_name: str | None = None
    last_name: str | None = None
    profile_photo: str | None = None
    is_profile_public: bool = False
    email_verified: bool = False
    verification_code: str | None = None
    verification_code_expires_at: str | None = None
    verification_code_attempts: int = 0
    password_reset_token: str | None = None
    password_reset_expires_at: str | None = None
    created_at: str | None = None
    updated_at: str | None = None
    last_login: str | None = None

    @property
    def permissions(self) -> frozenset[Permission]:
        return ROLE_PERMISSIONS[self.role]
