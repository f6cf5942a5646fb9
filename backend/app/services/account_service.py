"""
SuperClip Backend — Account Service
=====================================

What:  Registration, login, and profile lookup; the only place tokens are issued.
How:   Passwords are hashed with bcrypt (cost from settings.bcrypt_rounds) in a
       worker thread so hashing does not stall the event loop. On success the
       token service signs `{userId, email}` for the account.
Who:   Called by app/routes/auth.py.

Error mapping:
    duplicate email               → AppError(CONFLICT)         409
    unknown email / bad password  → AppError(UNAUTHENTICATED)  401, same message
    token for a missing account   → AppError(NOT_FOUND)        404
    SQLAlchemy failure            → AppError(DATABASE)         500
"""

import asyncio
import logging
import uuid

import bcrypt
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.exceptions import AppError, ErrorKind
from app.models.user import User
from app.schemas.auth import AuthResponse, UserResponse
from app.services.token_service import TokenPayload, TokenService, token_service

logger = logging.getLogger(__name__)

_INVALID_CREDENTIALS = "Invalid email or password"


def hash_password(password: str, rounds: int) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(rounds=rounds)).decode("utf-8")


def check_password(password: str, password_hash: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        # Malformed stored hash
        logger.error("Stored password hash is not a valid bcrypt hash")
        return False


class AccountService:
    """Stateless account operations; each call receives its db session."""

    def __init__(self, tokens: TokenService = token_service):
        self.tokens = tokens

    async def register(
        self,
        db: AsyncSession,
        email: str,
        password: str,
        name: str | None = None,
    ) -> AuthResponse:
        email = email.strip().lower()

        existing = await self._find_by_email(db, email)
        if existing is not None:
            raise AppError(ErrorKind.CONFLICT, "User with this email already exists")

        password_hash = await asyncio.to_thread(hash_password, password, settings.bcrypt_rounds)
        user = User(id=uuid.uuid4(), email=email, password_hash=password_hash, name=name)
        db.add(user)
        try:
            await db.flush()
        except IntegrityError as e:
            # Lost a race with a concurrent registration for the same email
            raise AppError(ErrorKind.CONFLICT, "User with this email already exists") from e
        except SQLAlchemyError as e:
            logger.error("Failed to create user %s: %s", email, e)
            raise AppError(ErrorKind.DATABASE, details={"operation": "create_user"}) from e

        logger.info("Registered user %s", user.id)
        return self._auth_response(user)

    async def login(self, db: AsyncSession, email: str, password: str) -> AuthResponse:
        user = await self._find_by_email(db, email.strip().lower())
        if user is None:
            raise AppError(ErrorKind.UNAUTHENTICATED, _INVALID_CREDENTIALS)

        valid = await asyncio.to_thread(check_password, password, user.password_hash)
        if not valid:
            logger.info("Failed login for user %s", user.id)
            raise AppError(ErrorKind.UNAUTHENTICATED, _INVALID_CREDENTIALS)

        return self._auth_response(user)

    async def get_user(self, db: AsyncSession, user_id: str) -> UserResponse:
        try:
            key = uuid.UUID(user_id)
        except ValueError:
            raise AppError(ErrorKind.NOT_FOUND, "User not found", details={"user_id": user_id})

        try:
            result = await db.execute(select(User).where(User.id == key))
            user = result.scalar_one_or_none()
        except SQLAlchemyError as e:
            logger.error("Failed to load user %s: %s", user_id, e)
            raise AppError(ErrorKind.DATABASE, details={"operation": "get_user"}) from e

        if user is None:
            raise AppError(ErrorKind.NOT_FOUND, "User not found", details={"user_id": user_id})
        return UserResponse.model_validate(user)

    async def _find_by_email(self, db: AsyncSession, email: str) -> User | None:
        try:
            result = await db.execute(select(User).where(User.email == email))
        except SQLAlchemyError as e:
            logger.error("Failed to look up user by email: %s", e)
            raise AppError(ErrorKind.DATABASE, details={"operation": "find_user"}) from e
        return result.scalar_one_or_none()

    def _auth_response(self, user: User) -> AuthResponse:
        token = self.tokens.issue(TokenPayload(user_id=str(user.id), email=user.email))
        return AuthResponse(user=UserResponse.model_validate(user), token=token)


# Singleton instance
account_service = AccountService()
