"""
api/routes/users.py -- Signup, duplicate checks, the current user's profile and withdrawal.

Routes:
  POST   /users                  -- create an account (public)
  POST   /users/check-email      -- {available} for an email (public)
  POST   /users/check-nickname   -- {available} for a nickname (public)
  GET    /users/me               -- the authenticated user
  PATCH  /users/me               -- change the nickname (409 if another account has it)
  PATCH  /users/me/password      -- change the password; ends every session
  DELETE /users/me               -- withdraw: soft delete, revoke sessions, clear cookies

Duplicate email checks include withdrawn accounts: a soft-deleted row keeps
its email reserved.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Request, Response
from sqlalchemy.exc import IntegrityError

from api.models import (
    AvailabilityResponse,
    EmailCheckRequest,
    MessageResponse,
    NicknameCheckRequest,
    PasswordChangeRequest,
    ProfileUpdateRequest,
    SignupRequest,
    UserResponse,
)
from api.routes.auth import user_response
from auth.dependencies import get_identity
from auth.flow import AuthFlow, normalize_email
from auth.models import Identity, User
from auth.passwords import hash_password
from auth.store import UserStore

logger = logging.getLogger("community.api")

router = APIRouter()


def _conflict(code: str, message: str) -> HTTPException:
    return HTTPException(status_code=409, detail={"code": code, "message": message})


@router.post("/users", response_model=UserResponse, status_code=201)
def signup(request: Request, body: SignupRequest) -> UserResponse:
    """Create an account. 409 if the email or nickname is already taken."""
    store: UserStore = request.app.state.user_store
    email = normalize_email(body.email)
    if store.email_exists(email):
        raise _conflict("duplicate_email", "Email is already registered.")
    if store.nickname_exists(body.nickname):
        raise _conflict("duplicate_nickname", "Nickname is already taken.")
    try:
        user_id = store.create_user(
            User(email=email, nickname=body.nickname, hashed_password=hash_password(body.password))
        )
    except IntegrityError:
        # Lost a race with a concurrent signup for the same email or nickname.
        raise _conflict("duplicate_user", "Email or nickname is already taken.") from None
    logger.info("User created: user_id=%s", user_id)
    return user_response(store.get_by_id(user_id))


@router.post("/users/check-email", response_model=AvailabilityResponse)
def check_email(request: Request, body: EmailCheckRequest) -> AvailabilityResponse:
    store: UserStore = request.app.state.user_store
    return AvailabilityResponse(available=not store.email_exists(normalize_email(body.email)))


@router.post("/users/check-nickname", response_model=AvailabilityResponse)
def check_nickname(request: Request, body: NicknameCheckRequest) -> AvailabilityResponse:
    store: UserStore = request.app.state.user_store
    return AvailabilityResponse(available=not store.nickname_exists(body.nickname))


@router.get("/users/me", response_model=UserResponse)
def me(request: Request, identity: Identity = Depends(get_identity)) -> UserResponse:
    store: UserStore = request.app.state.user_store
    user = store.get_by_id(identity.user_id)
    if user is None:
        raise HTTPException(status_code=404, detail={"code": "not_found", "message": "User not found."})
    return user_response(user)


@router.patch("/users/me", response_model=UserResponse)
def update_profile(
    request: Request, body: ProfileUpdateRequest, identity: Identity = Depends(get_identity)
) -> UserResponse:
    """Change the nickname. Keeping the current nickname is a no-op, not a conflict."""
    store: UserStore = request.app.state.user_store
    user = store.get_by_id(identity.user_id)
    if user is None:
        raise HTTPException(status_code=404, detail={"code": "not_found", "message": "User not found."})
    if body.nickname == user.nickname:
        return user_response(user)
    if store.nickname_exists(body.nickname):
        raise _conflict("duplicate_nickname", "Nickname is already taken.")
    try:
        store.update_nickname(user.id, body.nickname)
    except IntegrityError:
        raise _conflict("duplicate_nickname", "Nickname is already taken.") from None
    logger.info("Nickname changed for user_id=%s", user.id)
    return user_response(store.get_by_id(user.id))


@router.patch("/users/me/password", response_model=MessageResponse)
def change_password(
    request: Request,
    response: Response,
    body: PasswordChangeRequest,
    identity: Identity = Depends(get_identity),
) -> MessageResponse:
    """Set a new password. Every session, this one included, ends; the client logs in again."""
    flow: AuthFlow = request.app.state.auth_flow
    flow.change_password(identity.user_id, body.new_password, body.confirm_password, response)
    request.app.state.authenticator.forget(request)
    return MessageResponse(message="Password changed.")

@router.delete("/users/me", response_model=MessageResponse)
def withdraw(request: Request, response: Response, identity: Identity = Depends(get_identity)) -> MessageResponse:
    """Withdraw the account. Sessions end immediately; the row is kept soft-deleted."""
    flow: AuthFlow = request.app.state.auth_flow
    flow.withdraw(identity.user_id, response)
    request.app.state.authenticator.forget(request)
    return MessageResponse(message="Account withdrawn.")
