"""
SuperClip Backend — Account Schemas
=====================================

What:  Request/response models for /api/auth (register, login, me).
"""

import uuid
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, EmailStr, Field, field_validator

# bcrypt only hashes the first 72 bytes of a password
_BCRYPT_MAX_BYTES = 72


def _check_password_bytes(v: str) -> str:
    if len(v.encode("utf-8")) > _BCRYPT_MAX_BYTES:
        raise ValueError(f"Password must be at most {_BCRYPT_MAX_BYTES} bytes")
    return v


class RegisterRequest(BaseModel):
    email: EmailStr = Field(description="Login email")
    password: str = Field(min_length=8, description="At least 8 characters")
    name: Optional[str] = Field(default=None, max_length=255)

    @field_validator("password")
    @classmethod
    def validate_password(cls, v: str) -> str:
        return _check_password_bytes(v)


class LoginRequest(BaseModel):
    email: EmailStr
    password: str = Field(min_length=1)

    @field_validator("password")
    @classmethod
    def validate_password(cls, v: str) -> str:
        return _check_password_bytes(v)


class UserResponse(BaseModel):
    """Public account fields. The password hash is never serialized."""
    id: uuid.UUID
    email: str
    name: Optional[str] = None
    created_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class AuthResponse(BaseModel):
    """Returned by register (201) and login (200)."""
    user: UserResponse
    token: str = Field(description="Bearer token for the Authorization header")
    token_type: str = Field(default="bearer")
