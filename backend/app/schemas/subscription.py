"""
SuperClip Backend — Subscription Schemas
==========================================

What:  API representations of the entitlement engine's value objects.
How:   `from_details` / `from_snapshot` convert the engine's frozen
       dataclasses; the engine itself stays free of Pydantic.
"""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from app.services.subscription_service import (
    Plan,
    SubscriptionDetails,
    SubscriptionStatus,
    UNLIMITED,
    UsageSnapshot,
)


class SubscriptionResponse(BaseModel):
    plan: Plan
    status: SubscriptionStatus
    expires_at: Optional[datetime] = None
    features: List[str] = Field(description="Features unlocked by the plan, sorted")

    @classmethod
    def from_details(cls, details: SubscriptionDetails) -> "SubscriptionResponse":
        return cls(
            plan=details.plan,
            status=details.status,
            expires_at=details.expires_at,
            features=sorted(details.features),
        )


class FeatureAccessResponse(BaseModel):
    feature: str
    allowed: bool
    plan: Plan


class UsageResponse(BaseModel):
    usage_type: str
    current: int
    limit: int
    remaining: int

    @classmethod
    def from_snapshot(cls, snapshot: UsageSnapshot) -> "UsageResponse":
        return cls(
            usage_type=snapshot.usage_type,
            current=snapshot.current,
            limit=snapshot.limit,
            remaining=snapshot.remaining,
        )


class UsageIncrementRequest(BaseModel):
    # Out-of-range values are rejected here (422) and again by the engine
    increment: int = Field(default=1, ge=0, le=UNLIMITED, description="Units to record")
