"""
Password hashing and JWT access/refresh tokens.
"""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass

import bcrypt
import jwt

from schedule_backend.errors import UnauthorizedError
from shared.types import UserRole

JWT_ALGORITHM = "HS256"
# bcrypt only looks at the first 72 bytes of a password.
BCRYPT_MAX_BYTES = 72


def hash_password(password: str, rounds: int = 12) -> str:
    secret = password.encode("utf-8")[:BCRYPT_MAX_BYTES]
    return bcrypt.hashpw(secret, bcrypt.gensalt(rounds=rounds)).decode("ascii")


def verify_password(password: str, password_hash: str) -> bool:
    secret = password.encode("utf-8")[:BCRYPT_MAX_BYTES]
    try:
        return bcrypt.checkpw(secret, password_hash.encode("ascii"))
    except ValueError:
        return False


@dataclass
class TokenClaims:
    user_id: str
    email: str
    nickname: str
    role: UserRole


@dataclass
class TokenService:
    """Issues and verifies HS256 tokens; access and refresh use separate secrets."""

    access_secret: str
    refresh_secret: str
    access_exp_seconds: int = 900
    refresh_exp_seconds: int = 1209600

    def create_access_token(self, claims: TokenClaims) -> str:
        return self._create(claims, self.access_exp_seconds, self.access_secret)

    def create_refresh_token(self, claims: TokenClaims) -> str:
        return self._create(claims, self.refresh_exp_seconds, self.refresh_secret)

    def parse_access_token(self, token: str) -> TokenClaims:
        return self._parse(token, self.access_secret)

    def parse_refresh_token(self, token: str) -> TokenClaims:
        return self._parse(token, self.refresh_secret)

    @staticmethod
    def _create(claims: TokenClaims, exp_seconds: int, secret: str) -> str:
        now = int(time.time())
        payload = {
            "sub": claims.user_id,
            "role": claims.role.value,
            "email": claims.email,
            "nickname": claims.nickname,
            "iat": now,
            "exp": now + exp_seconds,
            # Two tokens minted in the same second must still differ.
            "jti": uuid.uuid4().hex,
        }
        return jwt.encode(payload, secret, algorithm=JWT_ALGORITHM)

    @staticmethod
    def _parse(token: str, secret: str) -> TokenClaims:
        try:
            payload = jwt.decode(
                token,
                secret,
                algorithms=[JWT_ALGORITHM],
                options={"require": ["sub", "exp"]},
            )
            return TokenClaims(
                user_id=str(payload["sub"]),
                email=str(payload.get("email", "")),
                nickname=str(payload.get("nickname", "")),
                role=UserRole(payload.get("role", UserRole.USER.value)),
            )
        except (jwt.InvalidTokenError, ValueError) as e:
            raise UnauthorizedError("Invalid or expired token") from e
