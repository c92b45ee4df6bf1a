"""
api/routes/v1/users.py -- Public profile endpoints.

Routes:
  GET /api/v1/users             -- list public profiles
  GET /api/v1/users/{username}  -- one profile

A private profile is visible only to its owner and to admins. Everyone else
gets the same 404 "Profile not found" as for an unknown username, so the
endpoint cannot be used to probe which usernames exist.

Responses use PublicProfileResponse: no email, hash or token fields.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request

from api.models import ProfileEnvelope, ProfileListResponse, PublicProfileResponse
from auth.dependencies import get_principal
from auth.errors import NotFoundError
from auth.models import Account, Role
from auth.store import AccountStore

# Auth policy: public; the principal (if any) only widens visibility.
router = APIRouter(prefix="/users")


@router.get("", response_model=ProfileListResponse)
def list_profiles(request: Request) -> ProfileListResponse:
    store: AccountStore = request.app.state.account_store
    return ProfileListResponse(profiles=[PublicProfileResponse.from_account(a) for a in store.list_public_profiles()])


@router.get("/{username}", response_model=ProfileEnvelope)
def get_profile(
    request: Request,
    username: str,
    principal: Account | None = Depends(get_principal),
) -> ProfileEnvelope:
    store: AccountStore = request.app.state.account_store
    account = store.get_by_username(username)
    if account is None or not _can_view(account, principal):
        raise NotFoundError("Profile not found")
    return ProfileEnvelope(profile=PublicProfileResponse.from_account(account))


def _can_view(account: Account, principal: Account | None) -> bool:
    if account.is_profile_public:
        return True
    if principal is None:
        return False
    return principal.id == account.id or principal.role == Role.admin
