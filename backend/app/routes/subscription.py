"""
SuperClip Backend — Subscription Route Handlers
=================================================

What:  Lets an authenticated user inspect their plan, check a feature, read
       usage against quota, and record metered usage.

Endpoints:
    GET  /api/subscription                         plan, status, features
    GET  /api/subscription/features/{feature}      {allowed: bool}
    GET  /api/subscription/usage/{usage_type}      current / limit / remaining
    POST /api/subscription/usage/{usage_type}      record usage (quota-checked)

Recording usage requires an active subscription and a plan that unlocks the
usage type as a feature (e.g. FREE cannot record `storage`). Only usage types
with configured quotas are accepted; any other name is a 404.
"""

import logging

from fastapi import APIRouter, Depends, Path

from app.dependencies import (
    ensure_feature_access,
    get_current_user,
    get_entitlement_service,
    get_subscription,
    metered_usage_type,
    require_active_subscription,
)
from app.schemas.common import ErrorResponse
from app.schemas.subscription import (
    FeatureAccessResponse,
    SubscriptionResponse,
    UsageIncrementRequest,
    UsageResponse,
)
from app.services.subscription_service import EntitlementService, SubscriptionDetails
from app.services.token_service import TokenPayload

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/subscription",
    tags=["Subscription"],
    responses={401: {"description": "Missing or invalid token", "model": ErrorResponse}},
)


@router.get(
    "",
    response_model=SubscriptionResponse,
    summary="Get the caller's subscription",
)
async def get_my_subscription(
    subscription: SubscriptionDetails = Depends(get_subscription),
) -> SubscriptionResponse:
    # Expired subscriptions are still reported here so clients can prompt renewal
    return SubscriptionResponse.from_details(subscription)


@router.get(
    "/features/{feature}",
    response_model=FeatureAccessResponse,
    responses={402: {"description": "Subscription expired", "model": ErrorResponse}},
    summary="Check whether the caller's plan unlocks a feature",
)
async def check_feature(
    feature: str = Path(min_length=1, max_length=64),
    user: TokenPayload = Depends(get_current_user),
    subscription: SubscriptionDetails = Depends(require_active_subscription),
    entitlements: EntitlementService = Depends(get_entitlement_service),
) -> FeatureAccessResponse:
    return FeatureAccessResponse(
        feature=feature,
        allowed=entitlements.check_feature_access(user.user_id, feature, subscription),
        plan=subscription.plan,
    )


@router.get(
    "/usage/{usage_type}",
    response_model=UsageResponse,
    responses={404: {"description": "Unknown usage type", "model": ErrorResponse}},
    summary="Get current usage and quota for a usage type",
)
async def get_usage(
    user: TokenPayload = Depends(get_current_user),
    subscription: SubscriptionDetails = Depends(get_subscription),
    usage_type: str = Depends(metered_usage_type),
    entitlements: EntitlementService = Depends(get_entitlement_service),
) -> UsageResponse:
    snapshot = await entitlements.get_usage_snapshot(
        user.user_id, usage_type, subscription.plan
    )
    return UsageResponse.from_snapshot(snapshot)


@router.post(
    "/usage/{usage_type}",
    response_model=UsageResponse,
    responses={
        402: {"description": "Subscription expired", "model": ErrorResponse},
        403: {"description": "Usage type not included in plan", "model": ErrorResponse},
        404: {"description": "Unknown usage type", "model": ErrorResponse},
        429: {"description": "Plan quota exceeded", "model": ErrorResponse},
    },
    summary="Record usage against the caller's quota",
)
async def record_usage(
    body: UsageIncrementRequest,
    user: TokenPayload = Depends(get_current_user),
    subscription: SubscriptionDetails = Depends(require_active_subscription),
    usage_type: str = Depends(metered_usage_type),
    entitlements: EntitlementService = Depends(get_entitlement_service),
) -> UsageResponse:
    ensure_feature_access(entitlements, user, usage_type, subscription)

    snapshot = await entitlements.consume_usage(
        user.user_id, usage_type, subscription, body.increment
    )
    return UsageResponse.from_snapshot(snapshot)
