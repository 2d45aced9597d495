"""
api/routes/users.py -- Admin user management and profile self-service.

Routes (mounted under /api/auth):
  GET    /users              -- list every account (admin)
  PATCH  /users/{id}/role    -- change another user's role (admin)
  DELETE /users/{id}         -- delete another user and their sessions (admin)
  PATCH  /profile/name       -- change own first/last name; refreshes own session
  PATCH  /profile/password   -- change own password given the current one

Admins cannot change their own role or delete themselves; AccountService
enforces that and answers 400.

A role change is not pushed into the target's live sessions. The target
keeps the old role until they log in again.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request

from api.models import (
    ChangePasswordRequest,
    ProfileNameResponse,
    RoleUpdateRequest,
    SessionUserResponse,
    SuccessResponse,
    UpdateNameRequest,
    UserResponse,
)
from auth.dependencies import get_current_user, require_admin
from auth.models import SessionUser
from auth.service import AccountService
from auth.sessions import SessionStore

# Auth policy:
# - /users, /users/{id}/role, /users/{id}:  requires admin (require_admin)
# - /profile/name, /profile/password:       requires session (get_current_user)
router = APIRouter()


# ---------------------------------------------------------------------------
# User management (admin only)
# ---------------------------------------------------------------------------


@router.get("/users", response_model=list[UserResponse])
def list_users(
    request: Request,
    current_user: SessionUser = Depends(require_admin),
) -> list[UserResponse]:
    accounts: AccountService = request.app.state.accounts
    return [UserResponse.from_user(u) for u in accounts.list_users()]


@router.patch("/users/{user_id}/role", response_model=SuccessResponse)
def update_role(
    request: Request,
    user_id: int,
    body: RoleUpdateRequest,
    current_user: SessionUser = Depends(require_admin),
) -> SuccessResponse:
    accounts: AccountService = request.app.state.accounts
    accounts.set_role(current_user.id, user_id, body.role)
    return SuccessResponse()


@router.delete("/users/{user_id}", response_model=SuccessResponse)
def delete_user(
    request: Request,
    user_id: int,
    current_user: SessionUser = Depends(require_admin),
) -> SuccessResponse:
    accounts: AccountService = request.app.state.accounts
    accounts.delete_user(current_user.id, user_id)
    return SuccessResponse()


# ---------------------------------------------------------------------------
# Profile (any signed-in user)
# ---------------------------------------------------------------------------


@router.patch("/profile/name", response_model=ProfileNameResponse)
def update_name(
    request: Request,
    body: UpdateNameRequest,
    current_user: SessionUser = Depends(get_current_user),
) -> ProfileNameResponse:
    """Rename the caller and rewrite the snapshot in the caller's session.

    The new snapshot is re-read from the store, so any pending role change
    lands in this session too. Only the session making the request is
    refreshed; other sessions of the same user keep the old name until they
    log in again.
    """
    accounts: AccountService = request.app.state.accounts
    sessions: SessionStore = request.app.state.session_store
    accounts.update_name(current_user.id, body.first_name, body.last_name)
    snapshot = accounts.snapshot(current_user.id)
    sessions.refresh(request.state.session_id, snapshot)
    return ProfileNameResponse(user=SessionUserResponse.from_session(snapshot))


@router.patch("/profile/password", response_model=SuccessResponse)
def change_password(
    request: Request,
    body: ChangePasswordRequest,
    current_user: SessionUser = Depends(get_current_user),
) -> SuccessResponse:
    accounts: AccountService = request.app.state.accounts
    accounts.change_password(current_user.id, body.current_password, body.new_password)
    return SuccessResponse(message="Password updated successfully.")
