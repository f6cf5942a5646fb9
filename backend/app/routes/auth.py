"""
SuperClip Backend — Auth Route Handlers
=========================================

What:  POST /api/auth/register, POST /api/auth/login, GET /api/auth/me.
How:   Thin handlers; AccountService does the work and raises AppError on failure.
"""

import logging

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db_session
from app.dependencies import get_current_user
from app.schemas.auth import AuthResponse, LoginRequest, RegisterRequest, UserResponse
from app.schemas.common import ErrorResponse
from app.services.account_service import account_service
from app.services.token_service import TokenPayload

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth", tags=["Auth"])


@router.post(
    "/register",
    status_code=201,
    response_model=AuthResponse,
    responses={
        409: {"description": "Email already registered", "model": ErrorResponse},
    },
    summary="Create an account and receive a bearer token",
)
async def register(
    body: RegisterRequest,
    db: AsyncSession = Depends(get_db_session),
) -> AuthResponse:
    return await account_service.register(
        db=db,
        email=body.email,
        password=body.password,
        name=body.name,
    )


@router.post(
    "/login",
    response_model=AuthResponse,
    responses={
        401: {"description": "Invalid email or password", "model": ErrorResponse},
    },
    summary="Exchange credentials for a bearer token",
)
async def login(
    body: LoginRequest,
    db: AsyncSession = Depends(get_db_session),
) -> AuthResponse:
    return await account_service.login(db=db, email=body.email, password=body.password)


@router.get(
    "/me",
    response_model=UserResponse,
    responses={
        401: {"description": "Missing or invalid token", "model": ErrorResponse},
        404: {"description": "Account no longer exists", "model": ErrorResponse},
    },
    summary="Get the authenticated account",
)
async def me(
    user: TokenPayload = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
) -> UserResponse:
    return await account_service.get_user(db=db, user_id=user.user_id)
