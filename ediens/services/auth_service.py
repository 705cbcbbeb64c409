"""
Ediens Backend — Authentication Service
=========================================

What:  Password hashing, access tokens, registration and login.
How:
    - bcrypt for password hashes (cost from settings.bcrypt_rounds). Hashing
      is CPU bound, so it runs in Starlette's threadpool.
    - PyJWT HS256 access tokens carrying sub (user id), email, is_business,
      iat and exp. Tokens are stateless; logout is a client-side discard.
Who:   routes/auth.py, and ediens.dependencies for bearer authentication.
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import timedelta

import bcrypt
import jwt
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.concurrency import run_in_threadpool

from ediens.config import settings
from ediens.exceptions import AuthenticationError, ValidationError
from ediens.models.common import utcnow
from ediens.models.user import User
from ediens.schemas.user import AuthResponse, LoginRequest, RegisterRequest, TokenResponse, UserProfile

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TokenClaims:
    user_id: uuid.UUID
    email: str
    is_business: bool


class AuthService:
    """Stateless authentication helpers plus register/login flows."""

    # ── Passwords ─────────────────────────────────────────────────────────

    @staticmethod
    def hash_password(password: str) -> str:
        salt = bcrypt.gensalt(rounds=settings.bcrypt_rounds)
        return bcrypt.hashpw(password.encode("utf-8"), salt).decode("utf-8")

    @staticmethod
    def verify_password(plain_password: str, hashed_password: str) -> bool:
        try:
            return bcrypt.checkpw(plain_password.encode("utf-8"), hashed_password.encode("utf-8"))
        except ValueError:
            # Malformed stored hash
            return False

    # ── Tokens ────────────────────────────────────────────────────────────

    @staticmethod
    def token_lifetime_seconds() -> int:
        return settings.jwt_expires_minutes * 60

    @staticmethod
    def create_access_token(user: User) -> str:
        now = utcnow()
        payload = {
            "sub": str(user.id),
            "email": user.email,
            "is_business": user.is_business,
            "iat": now,
            "exp": now + timedelta(minutes=settings.jwt_expires_minutes),
        }
        return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)

    @staticmethod
    def decode_access_token(token: str) -> TokenClaims:
        """
        Verify signature and expiry.

        Raises:
            AuthenticationError: expired, tampered or malformed token
        """
        try:
            payload = jwt.decode(
                token,
                settings.jwt_secret,
                algorithms=[settings.jwt_algorithm],
                options={"require": ["sub", "exp"]},
            )
            return TokenClaims(
                user_id=uuid.UUID(payload["sub"]),
                email=payload.get("email", ""),
                is_business=bool(payload.get("is_business", False)),
            )
        except jwt.ExpiredSignatureError:
            raise AuthenticationError(message="Token expired")
        except (jwt.InvalidTokenError, ValueError):
            raise AuthenticationError(message="Invalid token")

    def _auth_response(self, message: str, user: User) -> AuthResponse:
        return AuthResponse(
            message=message,
            token=self.create_access_token(user),
            expires_in=self.token_lifetime_seconds(),
            user=UserProfile.model_validate(user),
        )

    # ── Flows ─────────────────────────────────────────────────────────────

    async def register(self, db: AsyncSession, data: RegisterRequest) -> AuthResponse:
        email = data.email.lower()
        existing = await db.execute(select(User.id).where(func.lower(User.email) == email))
        if existing.scalar_one_or_none() is not None:
            raise ValidationError(message="User with this email already exists", field="email")

        password_hash = await run_in_threadpool(self.hash_password, data.password)
        user = User(
            email=email,
            password_hash=password_hash,
            **data.model_dump(exclude={"email", "password"}),
        )
        db.add(user)
        await db.flush()
        logger.info("User registered: %s", user.id)
        return self._auth_response("User registered successfully", user)

    async def login(self, db: AsyncSession, data: LoginRequest) -> AuthResponse:
        result = await db.execute(select(User).where(func.lower(User.email) == data.email.lower()))
        user = result.scalar_one_or_none()
        if user is None:
            # Same error for unknown email and wrong password
            raise AuthenticationError(message="Invalid credentials")
        if not await run_in_threadpool(self.verify_password, data.password, user.password_hash):
            raise AuthenticationError(message="Invalid credentials")

        user.last_active = utcnow()
        await db.flush()
        logger.info("User logged in: %s", user.id)
        return self._auth_response("Login successful", user)

    def refresh(self, user: User) -> TokenResponse:
        return TokenResponse(
            token=self.create_access_token(user),
            expires_in=self.token_lifetime_seconds(),
        )


auth_service = AuthService()
