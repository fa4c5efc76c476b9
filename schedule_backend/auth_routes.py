"""
Authentication routes: register, login, refresh, logout and the current user.
"""

from __future__ import annotations

import logging
import secrets

from fastapi import APIRouter, Cookie, Depends, Header, Request, Response

from schedule_backend.auth_service import AuthService, AuthSession, RateLimiter
from schedule_backend.config import Settings, get_settings
from schedule_backend.db import UserRecord
from schedule_backend.dependencies import get_auth_service, get_current_user
from schedule_backend.schemas import (
    LoginRequest,
    RegisterRequest,
    TokenResponse,
    UserResponse,
)

logger = logging.getLogger(__name__)

REFRESH_COOKIE = "refresh_token"
CSRF_COOKIE = "csrf_token"
CSRF_HEADER = "X-CSRF-TOKEN"

router = APIRouter(prefix="/auth")


def user_response(user: UserRecord) -> UserResponse:
    return UserResponse(id=user.id, email=user.email, nickname=user.nickname, role=user.role)


def _client_address(request: Request) -> str:
    return request.client.host if request.client else "unknown"


def _set_session_cookies(
    response: Response, session: AuthSession, csrf_token: str, settings: Settings
) -> None:
    response.set_cookie(
        REFRESH_COOKIE,
        session.refresh_token,
        max_age=settings.refresh_exp_seconds,
        path="/",
        httponly=True,
        secure=settings.cookie_secure,
        samesite="strict",
    )
    response.set_cookie(
        CSRF_COOKIE,
        csrf_token,
        max_age=settings.refresh_exp_seconds,
        path="/",
        httponly=False,
        secure=settings.cookie_secure,
        samesite="strict",
    )


def _token_response(session: AuthSession) -> TokenResponse:
    return TokenResponse(
        access_token=session.access_token, expires_in_seconds=session.access_expires_in
    )


@router.post("/register", response_model=UserResponse)
def register(payload: RegisterRequest, auth: AuthService = Depends(get_auth_service)):
    return user_response(auth.register(payload.email, payload.password, payload.nickname))


@router.post("/login", response_model=TokenResponse)
def login(
    payload: LoginRequest,
    request: Request,
    response: Response,
    auth: AuthService = Depends(get_auth_service),
):
    settings = get_settings()
    RateLimiter(auth.kv).check(
        f"login:{_client_address(request)}", settings.login_rate_per_minute
    )
    session = auth.login(payload.email, payload.password)
    _set_session_cookies(response, session, secrets.token_urlsafe(32), settings)
    return _token_response(session)


@router.post("/refresh", response_model=TokenResponse)
def refresh(
    request: Request,
    response: Response,
    refresh_token: str | None = Cookie(None),
    csrf_token: str | None = Cookie(None),
    csrf_header: str | None = Header(None, alias=CSRF_HEADER),
    auth: AuthService = Depends(get_auth_service),
):
    settings = get_settings()
    RateLimiter(auth.kv).check(
        f"refresh:{_client_address(request)}", settings.refresh_rate_per_minute
    )
    session = auth.refresh(refresh_token, csrf_header, csrf_token)
    # The CSRF token survives rotation so concurrent tabs keep working.
    _set_session_cookies(response, session, csrf_token or "", settings)
    return _token_response(session)


@router.post("/logout", status_code=204)
def logout(
    user: UserRecord = Depends(get_current_user),
    auth: AuthService = Depends(get_auth_service),
):
    auth.logout(user.id)
    response = Response(status_code=204)
    response.delete_cookie(REFRESH_COOKIE, path="/")
    response.delete_cookie(CSRF_COOKIE, path="/")
    return response


@router.get("/me", response_model=UserResponse)
def me(user: UserRecord = Depends(get_current_user)):
    return user_response(user)
