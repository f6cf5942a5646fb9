"""
SuperClip Backend — Token Service
===================================

What:  Issues and verifies signed, time-bound bearer tokens carrying
       `(userId, email)`.
How:   HS256 JWTs via PyJWT. Claims use the `userId` / `email` names that
       existing clients already decode, plus the registered `iat` and `exp`.
Who:   `issue()` is called by the account service at register/login;
       `verify()` is called by the request gate on every authenticated request.

Contract:
    issue(payload)  → token string
        Raises AppError(CONFIGURATION) only if no signing secret is configured,
        which startup validation already turns into a fatal error.
    verify(token)   → TokenPayload | None
        None for malformed tokens, bad signatures, expired tokens, disallowed
        algorithms and tokens missing either claim. Never raises for those.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt

from app.config import settings
from app.exceptions import AppError, ErrorKind

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TokenPayload:
    """Identity claims embedded in a token. Immutable; reissue to change."""

    user_id: str
    email: str


class TokenService:
    """
    Stateless JWT issuer/verifier.

    The secret, algorithm and lifetime are read from `settings` at call time
    unless given explicitly, so tests can construct isolated instances.
    """

    def __init__(
        self,
        secret: Optional[str] = None,
        algorithm: Optional[str] = None,
        expires_in: Optional[timedelta] = None,
    ):
        self._secret = secret
        self._algorithm = algorithm
        self._expires_in = expires_in

    @property
    def secret(self) -> str:
        return self._secret if self._secret is not None else settings.jwt_secret

    @property
    def algorithm(self) -> str:
        return self._algorithm or settings.jwt_algorithm

    @property
    def expires_in(self) -> timedelta:
        return self._expires_in or settings.jwt_expiration_delta

    def issue(self, payload: TokenPayload) -> str:
        """Sign `payload` into a token that expires after `expires_in`."""
        if not self.secret:
            raise AppError(
                ErrorKind.CONFIGURATION,
                "Token signing secret is not configured",
            )

        now = datetime.now(timezone.utc)
        claims = {
            "userId": payload.user_id,
            "email": payload.email,
            "iat": now,
            "exp": now + self.expires_in,
        }
        return jwt.encode(claims, self.secret, algorithm=self.algorithm)

    def verify(self, token: str) -> Optional[TokenPayload]:
        """Return the payload of a valid token, or None."""
        if not token or not self.secret:
            return None

        try:
            claims = jwt.decode(
                token,
                self.secret,
                algorithms=[self.algorithm],
                options={"require": ["exp"]},
            )
        except jwt.ExpiredSignatureError:
            logger.debug("Rejected expired token")
            return None
        except jwt.PyJWTError as e:
            logger.debug("Rejected invalid token: %s", type(e).__name__)
            return None

        user_id = claims.get("userId")
        email = claims.get("email")
        if not isinstance(user_id, str) or not user_id or not isinstance(email, str):
            logger.debug("Rejected token with missing identity claims")
            return None

        return TokenPayload(user_id=user_id, email=email)


# Singleton instance
token_service = TokenService()
