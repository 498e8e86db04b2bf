# inkpost/routers/auth.py
from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse
from typing import Any, Dict, Optional

from inkpost.core.deps import get_auth_store, get_gateway, require_user
from inkpost.core.guard import clear_auth_cookies, set_auth_cookies
from inkpost.core.session_store import SessionStore
from inkpost.schemas.auth import (
    AuthSession, AuthUser, ChangePassword, RefreshTokenRequest, SignInRequest, SignUpRequest
)
from inkpost.services.gateway import Gateway

router = APIRouter(tags=["authentication"])


def _session_response(session: AuthSession, status_code: int = status.HTTP_200_OK) -> JSONResponse:
    response = JSONResponse(content=session.model_dump(mode="json"), status_code=status_code)
    set_auth_cookies(response, session)
    return response


@router.get("/login", response_model=Dict[str, Any])
def login_page(
    redirect: Optional[str] = None,
    store: SessionStore = Depends(get_auth_store),
):
    return {"authenticated": store.is_authenticated, "redirect": redirect or "/"}


@router.post("/login", response_model=AuthSession)
async def login(
    login_data: SignInRequest,
    store: SessionStore = Depends(get_auth_store),
):
    """
    Sign in with an email address or a username.

    Sets the `access_token` / `refresh_token` cookies in addition to
    returning the session.
    """
    session = await store.sign_in(login_data.identifier, login_data.password)
    return _session_response(session)


@router.get("/signup", response_model=Dict[str, Any])
def signup_page(store: SessionStore = Depends(get_auth_store)):
    return {"authenticated": store.is_authenticated}


@router.post("/signup", response_model=AuthSession, status_code=status.HTTP_201_CREATED)
async def signup(
    signup_data: SignUpRequest,
    store: SessionStore = Depends(get_auth_store),
):
    """Register and sign in straight away."""
    await store.sign_up(signup_data.email, signup_data.password, signup_data.username)
    return _session_response(store.session, status.HTTP_201_CREATED)


@router.post("/logout", response_model=Dict[str, bool])
async def logout(store: SessionStore = Depends(get_auth_store)):
    await store.sign_out()
    response = JSONResponse(content={"success": True})
    clear_auth_cookies(response)
    return response


@router.post("/auth/refresh", response_model=AuthSession)
async def refresh(
    refresh_data: RefreshTokenRequest,
    gateway: Gateway = Depends(get_gateway),
):
    store = SessionStore(gateway, refresh_token=refresh_data.refresh_token)
    try:
        session = await store.refresh_session()
    finally:
        store.close()
    return _session_response(session)


@router.get("/account", response_model=AuthUser)
def account(current_user: AuthUser = Depends(require_user)):
    return current_user


@router.put("/account/password", response_model=Dict[str, bool])
async def change_password(
    password_data: ChangePassword,
    store: SessionStore = Depends(get_auth_store),
    current_user: AuthUser = Depends(require_user),
):
    await store.update_password(password_data.current_password, password_data.new_password)
    return {"success": True}
