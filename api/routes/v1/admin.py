"""
api/routes/v1/admin.py -- Account administration endpoints.

Routes:
  GET    /api/v1/admin/users            -- list all accounts
  PUT    /api/v1/admin/users/{id}/role  -- change role (not your own)
  PUT    /api/v1/admin/users/{id}       -- edit username/email/names
  DELETE /api/v1/admin/users/{id}       -- delete account (not your own)

Every route requires the manage:users permission. DELETE additionally
requires the admin role, so a future non-admin role granted manage:users
still cannot remove accounts.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Path, Request

from api.models import AccountResponse, AdminProfileUpdate, MessageResponse, RoleUpdate, UserEnvelope, UserListResponse
from auth.models import Account, Permission, Role
from auth.rbac import require_permission, require_role
from auth.service import AuthService

# Auth policy: require_permission(manage:users) on every route below.
router = APIRouter(prefix="/admin")

_manage_users = require_permission(Permission.manage_users)
_admin_only = require_role(Role.admin)

_UserId = Path(ge=1, description="Account id")


def _service(request: Request) -> AuthService:
    return request.app.state.auth_service


@router.get("/users", response_model=UserListResponse)
def list_users(request: Request, actor: Account = Depends(_manage_users)) -> UserListResponse:
    """List every account, newest first. Credential fields are never included."""
    accounts = _service(request).list_accounts()
    return UserListResponse(users=[AccountResponse.from_account(a) for a in accounts])


@router.put("/users/{user_id}/role", response_model=UserEnvelope)
def change_role(
    request: Request,
    body: RoleUpdate,
    user_id: int = _UserId,
    actor: Account = Depends(_manage_users),
) -> UserEnvelope:
    """Set a user's role. Admins cannot change their own role (lock-out guard)."""
    account = _service(request).change_role(actor, user_id, body.role)
    return UserEnvelope(message="User role updated successfully", user=AccountResponse.from_account(account))


@router.put("/users/{user_id}", response_model=UserEnvelope)
def update_user(
    request: Request,
    body: AdminProfileUpdate,
    user_id: int = _UserId,
    actor: Account = Depends(_manage_users),
) -> UserEnvelope:
    account = _service(request).admin_update_profile(
        user_id,
        username=body.username,
        email=body.email,
        first_name=body.first_name,
        last_name=body.last_name,
    )
    return UserEnvelope(message="User profile updated successfully", user=AccountResponse.from_account(account))


@router.delete("/users/{user_id}", response_model=MessageResponse, dependencies=[Depends(_admin_only)])
def delete_user(
    request: Request,
    user_id: int = _UserId,
    actor: Account = Depends(_manage_users),
) -> MessageResponse:
    _service(request).delete_account(actor, user_id)
    return MessageResponse(message="User deleted successfully")
