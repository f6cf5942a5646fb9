"""
SuperClip Backend — Request Gate
==================================

What:  FastAPI dependencies that authenticate requests and gate endpoints by
       subscription status, feature access, and usage quota.
How:   Each gate either returns a value for the handler or raises AppError,
       which the global handler in main.py turns into a JSON error response.
Who:   Declared in route signatures, e.g.

    @router.get("/reports", dependencies=[Depends(require_feature("premium-feature"))])

Gate order for a fully protected endpoint:
    get_current_user            401 if the bearer token is missing or invalid
    require_active_subscription 402 if expired, 403 for other inactive states
    require_feature(name)       403 if the plan does not unlock `name`
    track_usage(type)           429 if the call would exceed the plan quota

`metered_usage_type` validates a `{usage_type}` path segment (404 for types
without quotas), and `ensure_feature_access` is the one place the feature
denial is built.

FastAPI caches dependency results per request, so stacking these gates
resolves the token and the subscription only once.
"""

import logging
from typing import Callable, Optional, Union

from fastapi import Depends, Path, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from app.exceptions import AppError, ErrorKind
from app.services.subscription_service import (
    EntitlementService,
    Plan,
    SubscriptionDetails,
    SubscriptionStatus,
    UsageSnapshot,
    entitlement_service,
    is_metered,
)
from app.services.token_service import TokenPayload, TokenService, token_service

logger = logging.getLogger(__name__)

# auto_error=False: missing credentials become our own 401, not FastAPI's 403
_bearer = HTTPBearer(auto_error=False)


# ── Service providers (overridable via app.dependency_overrides) ──────────

def get_token_service() -> TokenService:
    return token_service


def get_entitlement_service() -> EntitlementService:
    return entitlement_service


# ── Authentication ────────────────────────────────────────────────────────

async def get_current_user(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(_bearer),
    tokens: TokenService = Depends(get_token_service),
) -> TokenPayload:
    """Verify the bearer token and attach the identity to `request.state.user`."""
    if credentials is None or credentials.scheme.lower() != "bearer":
        raise AppError(
            ErrorKind.UNAUTHENTICATED,
            "Authentication required. Please provide a valid token.",
        )

    payload = tokens.verify(credentials.credentials)
    if payload is None:
        raise AppError(
            ErrorKind.UNAUTHENTICATED,
            "Invalid or expired token. Please login again.",
        )

    request.state.user = payload
    return payload


# ── Subscription gates ────────────────────────────────────────────────────

async def get_subscription(
    request: Request,
    user: TokenPayload = Depends(get_current_user),
    entitlements: EntitlementService = Depends(get_entitlement_service),
) -> SubscriptionDetails:
    subscription = await entitlements.resolve_subscription(user.user_id)
    request.state.subscription = subscription
    return subscription


def _subscription_details(subscription: SubscriptionDetails) -> dict:
    return {
        "plan": subscription.plan.value,
        "status": subscription.status.value,
        "expires_at": subscription.expires_at.isoformat() if subscription.expires_at else None,
    }


async def require_active_subscription(
    subscription: SubscriptionDetails = Depends(get_subscription),
) -> SubscriptionDetails:
    """
    Expired subscriptions get 402; ACTIVE passes, and so does any FREE plan
    that is not expired. Everything else (canceled, past due) gets 403.
    """
    if subscription.status == SubscriptionStatus.EXPIRED:
        raise AppError(
            ErrorKind.PAYMENT_REQUIRED,
            "Your subscription has expired. Please renew to continue.",
            details={"subscription": _subscription_details(subscription)},
        )

    if subscription.status == SubscriptionStatus.ACTIVE or subscription.plan == Plan.FREE:
        return subscription

    raise AppError(
        ErrorKind.FORBIDDEN,
        "Your subscription status does not allow access to this resource.",
        details={"subscription": _subscription_details(subscription)},
    )


def ensure_feature_access(
    entitlements: EntitlementService,
    user: TokenPayload,
    feature: str,
    subscription: SubscriptionDetails,
) -> None:
    """Raise 403 unless `subscription` unlocks `feature`. Shared by every feature gate."""
    if entitlements.check_feature_access(user.user_id, feature, subscription):
        return

    logger.info(
        "Feature '%s' denied for user=%s on plan %s",
        feature,
        user.user_id,
        subscription.plan.value,
    )
    raise AppError(
        ErrorKind.FORBIDDEN,
        f"Your subscription does not include access to {feature}",
        details={"feature": feature, "upgrade": True},
    )


def require_feature(feature: str) -> Callable:
    """Dependency factory: 403 unless the caller's plan unlocks `feature`."""

    async def dependency(
        user: TokenPayload = Depends(get_current_user),
        subscription: SubscriptionDetails = Depends(require_active_subscription),
        entitlements: EntitlementService = Depends(get_entitlement_service),
    ) -> SubscriptionDetails:
        ensure_feature_access(entitlements, user, feature, subscription)
        return subscription

    return dependency


# ── Usage ─────────────────────────────────────────────────────────────────

# Matches the usage_records.usage_type column width
MAX_USAGE_TYPE_LENGTH = 64


def metered_usage_type(
    usage_type: str = Path(
        min_length=1,
        max_length=MAX_USAGE_TYPE_LENGTH,
        description="A usage type with configured quotas, e.g. `api-calls`",
    ),
) -> str:
    """
    Path dependency for `{usage_type}`: 404 unless the type has quotas.

    Keeps client-chosen names out of the usage store, so callers cannot
    create counters for arbitrary types.
    """
    if not is_metered(usage_type):
        raise AppError(
            ErrorKind.NOT_FOUND,
            f"Unknown usage type '{usage_type}'",
            details={"usage_type": usage_type},
        )
    return usage_type


def track_usage(
    usage_type: str,
    increment: Union[int, Callable[[Request], int]] = 1,
) -> Callable:
    """
    Dependency factory: count this request against `usage_type` before the
    handler runs.

    `increment` is a constant or a function of the request. Quota and
    validation failures block the request. Storage failures are logged and
    the request proceeds, so an unavailable usage store never takes the API
    down with it.
    """

    async def dependency(
        request: Request,
        user: TokenPayload = Depends(get_current_user),
        subscription: SubscriptionDetails = Depends(require_active_subscription),
        entitlements: EntitlementService = Depends(get_entitlement_service),
    ) -> Optional[UsageSnapshot]:
        amount = increment(request) if callable(increment) else increment
        try:
            return await entitlements.consume_usage(
                user.user_id, usage_type, subscription, amount
            )
        except AppError as e:
            if e.kind not in (ErrorKind.DATABASE, ErrorKind.INTERNAL):
                raise
            logger.error(
                "Usage tracking failed for user=%s type=%s; allowing request: %s",
                user.user_id,
                usage_type,
                e.message,
            )
            return None

    return dependency
