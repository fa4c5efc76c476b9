"""
Registration, login with lockout, refresh-token rotation and admin seeding.
"""

from __future__ import annotations

import datetime
import logging
from dataclasses import dataclass
from typing import Callable, Optional

from schedule_backend.config import Settings
from schedule_backend.db import SqlDbClient, UserRecord, utc_now
from schedule_backend.errors import BadRequestError, RateLimitedError, UnauthorizedError
from schedule_backend.kv_store import KeyValueStore
from schedule_backend.security import (
    TokenClaims,
    TokenService,
    hash_password,
    verify_password,
)
from shared.types import UserRole

logger = logging.getLogger(__name__)

INVALID_CREDENTIALS = "Email or password is incorrect."
ACCOUNT_LOCKED = "Account is locked. Try again later."


def refresh_key(user_id: str) -> str:
    return f"refresh:{user_id}"


@dataclass
class AuthSession:
    access_token: str
    refresh_token: str
    access_expires_in: int
    user: UserRecord


@dataclass
class RateLimiter:
    """Fixed-window counter per key, shared through the key-value store."""

    kv: KeyValueStore
    window_seconds: int = 60

    def check(self, key: str, limit: int) -> None:
        count = self.kv.incr_window(f"ratelimit:{key}", self.window_seconds)
        if count > limit:
            logger.warning("Rate limit hit for %s", key)
            raise RateLimitedError("Too many requests. Try again later.")


def _claims(user: UserRecord) -> TokenClaims:
    return TokenClaims(
        user_id=user.id, email=user.email, nickname=user.nickname, role=user.role
    )


class AuthService:
    def __init__(
        self,
        db: SqlDbClient,
        kv: KeyValueStore,
        settings: Settings,
        clock: Callable[[], datetime.datetime] = utc_now,
    ):
        self.db = db
        self.kv = kv
        self.settings = settings
        self.clock = clock
        self.tokens = TokenService(
            access_secret=settings.jwt_access_secret,
            refresh_secret=settings.jwt_refresh_secret,
            access_exp_seconds=settings.access_exp_seconds,
            refresh_exp_seconds=settings.refresh_exp_seconds,
        )

    def _hash(self, password: str) -> str:
        return hash_password(password, rounds=self.settings.password_hash_rounds)

    def register(self, email: str, password: str, nickname: Optional[str] = None) -> UserRecord:
        email = email.strip().lower()
        if self.db.get_user_by_email(email):
            raise BadRequestError("Email is already registered.")
        name = (nickname or "").strip() or email.split("@", 1)[0]
        user = self.db.create_user(email, name, self._hash(password))
        logger.info("Registered user %s", user.id)
        return user

    def login(self, email: str, password: str) -> AuthSession:
        user = self.db.get_user_by_email(email.strip().lower())
        if user is None:
            raise BadRequestError(INVALID_CREDENTIALS)
        now = self.clock()
        if user.locked_until is not None and user.locked_until > now:
            raise BadRequestError(ACCOUNT_LOCKED)

        if not verify_password(password, user.password_hash):
            failed = user.failed_login_count + 1
            if failed >= self.settings.max_failed_login:
                locked_until = now + datetime.timedelta(minutes=self.settings.lock_minutes)
                self.db.update_user(user.id, failed_login_count=0, locked_until=locked_until)
                logger.warning("Locked user %s until %s", user.id, locked_until.isoformat())
            else:
                self.db.update_user(user.id, failed_login_count=failed)
            raise BadRequestError(INVALID_CREDENTIALS)

        if user.failed_login_count or user.locked_until is not None:
            user = self.db.update_user(user.id, failed_login_count=0, locked_until=None)
        session = self._issue(user)
        logger.info("User %s logged in", user.id)
        return session

    def refresh(
        self,
        refresh_token: Optional[str],
        csrf_header: Optional[str],
        csrf_cookie: Optional[str],
    ) -> AuthSession:
        if not refresh_token or not refresh_token.strip():
            raise UnauthorizedError("Refresh token is missing.")
        if not csrf_header or csrf_header != csrf_cookie:
            raise UnauthorizedError("CSRF token mismatch.")
        claims = self.tokens.parse_refresh_token(refresh_token)
        if self.kv.get(refresh_key(claims.user_id)) != refresh_token:
            raise UnauthorizedError("Refresh token is no longer valid.")
        user = self.db.get_user(claims.user_id)
        if user is None:
            raise UnauthorizedError("Refresh token is no longer valid.")
        return self._issue(user)

    def logout(self, user_id: str) -> None:
        self.kv.delete(refresh_key(user_id))
        logger.info("User %s logged out", user_id)

    def _issue(self, user: UserRecord) -> AuthSession:
        access = self.tokens.create_access_token(_claims(user))
        refresh = self.tokens.create_refresh_token(_claims(user))
        self.kv.set(refresh_key(user.id), refresh, self.settings.refresh_exp_seconds)
        return AuthSession(
            access_token=access,
            refresh_token=refresh,
            access_expires_in=self.settings.access_exp_seconds,
            user=user,
        )

    def seed_admin(self) -> Optional[UserRecord]:
        """Creates the configured admin, or promotes and resets an existing account."""
        if not self.settings.admin_seed_enabled:
            return None
        email = self.settings.admin_email.strip().lower()
        password_hash = self._hash(self.settings.admin_password)
        existing = self.db.get_user_by_email(email)
        if existing is None:
            user = self.db.create_user(
                email, self.settings.admin_nickname or email.split("@", 1)[0],
                password_hash, role=UserRole.ADMIN,
            )
            logger.info("Seeded admin account %s", user.id)
            return user
        changes = dict(
            role=UserRole.ADMIN,
            password_hash=password_hash,
            failed_login_count=0,
            locked_until=None,
        )
        if not existing.nickname.strip():
            changes["nickname"] = self.settings.admin_nickname
        user = self.db.update_user(existing.id, **changes)
        logger.info("Promoted existing account %s to admin", existing.id)
        return user
