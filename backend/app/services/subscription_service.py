"""
SuperClip Backend — Entitlement Engine
========================================

What:  Decides, per user, which plan they are on, which features that plan
       unlocks, and how much of a metered resource they have consumed
       against a plan-specific quota.
How:   Feature access and quotas are data (FEATURE_ACCESS_MATRIX, USAGE_LIMITS),
       not branches: adding a plan or feature is a table edit. Plan lookup and
       usage storage are injected (SubscriptionResolver, UsageStore).
Who:   Called by the request-gate dependencies in app/dependencies.py and by
       the subscription routes.

Fail-closed defaults:
    unknown feature     → access denied
    unknown usage type  → quota 0
    Callers cannot tell "never heard of it" from "explicitly denied".

Policy notes:
    - ENTERPRISE bypasses the feature matrix entirely
    - check_feature_access() ignores subscription status; expiry is enforced
      by the request gate (require_active_subscription), not here
    - Negative usage increments are rejected; counters never go down except
      through reset_usage()
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from types import MappingProxyType
from typing import Callable, FrozenSet, Mapping, Optional

from app.config import settings
from app.exceptions import AppError, ErrorKind
from app.services.usage_store import UsageStore, create_usage_store

logger = logging.getLogger(__name__)


# ══════════════════════════════════════════════════════════════════════════
# Plans and statuses
# ══════════════════════════════════════════════════════════════════════════

class Plan(str, Enum):
    """Subscription tier, ordered FREE < BASIC < PREMIUM < ENTERPRISE."""

    FREE = "FREE"
    BASIC = "BASIC"
    PREMIUM = "PREMIUM"
    ENTERPRISE = "ENTERPRISE"

    @property
    def rank(self) -> int:
        return _PLAN_RANKS[self]

    def __lt__(self, other):
        if not isinstance(other, Plan):
            return NotImplemented
        return self.rank < other.rank

    def __le__(self, other):
        if not isinstance(other, Plan):
            return NotImplemented
        return self.rank <= other.rank

    def __gt__(self, other):
        if not isinstance(other, Plan):
            return NotImplemented
        return self.rank > other.rank

    def __ge__(self, other):
        if not isinstance(other, Plan):
            return NotImplemented
        return self.rank >= other.rank


_PLAN_RANKS = {plan: index for index, plan in enumerate(Plan)}


class SubscriptionStatus(str, Enum):
    """
    Lifecycle state of a subscription.

    The reference resolver only produces ACTIVE and EXPIRED; the others exist
    for real subscription stores.
    """

    ACTIVE = "ACTIVE"
    EXPIRED = "EXPIRED"
    CANCELED = "CANCELED"
    PAST_DUE = "PAST_DUE"
    TRIAL = "TRIAL"


# ══════════════════════════════════════════════════════════════════════════
# Static entitlement tables (read-only after import)
# ══════════════════════════════════════════════════════════════════════════

_ALL_PLANS = frozenset(Plan)

FEATURE_ACCESS_MATRIX: Mapping[str, FrozenSet[Plan]] = MappingProxyType({
    "basic-feature": _ALL_PLANS,
    "standard-feature": frozenset({Plan.BASIC, Plan.PREMIUM, Plan.ENTERPRISE}),
    "premium-feature": frozenset({Plan.PREMIUM, Plan.ENTERPRISE}),
    "enterprise-feature": frozenset({Plan.ENTERPRISE}),
    "api-calls": _ALL_PLANS,
    "storage": frozenset({Plan.BASIC, Plan.PREMIUM, Plan.ENTERPRISE}),
})

# Largest integer a JSON client can represent exactly (2^53 - 1)
UNLIMITED = 9_007_199_254_740_991

USAGE_LIMITS: Mapping[str, Mapping[Plan, int]] = MappingProxyType({
    "api-calls": MappingProxyType({
        Plan.FREE: 100,
        Plan.BASIC: 1_000,
        Plan.PREMIUM: 10_000,
        Plan.ENTERPRISE: UNLIMITED,
    }),
    # megabytes
    "storage": MappingProxyType({
        Plan.FREE: 10,
        Plan.BASIC: 100,
        Plan.PREMIUM: 1_000,
        Plan.ENTERPRISE: UNLIMITED,
    }),
})


def is_metered(usage_type: str) -> bool:
    """True if `usage_type` has configured quotas."""
    return usage_type in USAGE_LIMITS


def features_for_plan(plan: Plan) -> FrozenSet[str]:
    """Every feature whose access list includes `plan`."""
    return frozenset(
        feature for feature, plans in FEATURE_ACCESS_MATRIX.items() if plan in plans
    )


# ══════════════════════════════════════════════════════════════════════════
# Value objects
# ══════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class SubscriptionDetails:
    """
    A user's resolved subscription.

    `features` is a property derived from FEATURE_ACCESS_MATRIX, so it can
    never drift from the plan.
    """

    plan: Plan
    status: SubscriptionStatus
    expires_at: Optional[datetime] = None

    @property
    def features(self) -> FrozenSet[str]:
        return features_for_plan(self.plan)

    @property
    def is_active(self) -> bool:
        return self.status == SubscriptionStatus.ACTIVE


@dataclass(frozen=True)
class UsageSnapshot:
    """Current consumption of one usage type against the plan ceiling."""

    usage_type: str
    current: int
    limit: int

    @property
    def remaining(self) -> int:
        return max(self.limit - self.current, 0)


# ══════════════════════════════════════════════════════════════════════════
# Subscription resolvers
# ══════════════════════════════════════════════════════════════════════════

class SubscriptionResolver(ABC):
    """Looks up a user's subscription. Implementations may do I/O."""

    @abstractmethod
    async def resolve(self, user_id: str) -> SubscriptionDetails:
        ...


class DigitSubscriptionResolver(SubscriptionResolver):
    """
    Deterministic placeholder: the last character of the user id picks the plan.

        '1'-'3' → BASIC      '4'-'6' → PREMIUM      '7'-'9' → ENTERPRISE
        anything else (including '0', letters, empty id) → FREE

    '0' additionally marks the subscription EXPIRED, one day in the past;
    every other id is ACTIVE for thirty more days.
    """

    ACTIVE_TERM = timedelta(days=30)
    EXPIRED_AGO = timedelta(days=1)

    def __init__(self, clock: Optional[Callable[[], datetime]] = None):
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    async def resolve(self, user_id: str) -> SubscriptionDetails:
        last = user_id[-1:] if user_id else ""
        now = self._clock()

        if last in ("1", "2", "3"):
            plan = Plan.BASIC
        elif last in ("4", "5", "6"):
            plan = Plan.PREMIUM
        elif last in ("7", "8", "9"):
            plan = Plan.ENTERPRISE
        else:
            plan = Plan.FREE

        if last == "0":
            return SubscriptionDetails(
                plan=plan,
                status=SubscriptionStatus.EXPIRED,
                expires_at=now - self.EXPIRED_AGO,
            )
        return SubscriptionDetails(
            plan=plan,
            status=SubscriptionStatus.ACTIVE,
            expires_at=now + self.ACTIVE_TERM,
        )


# ══════════════════════════════════════════════════════════════════════════
# Engine
# ══════════════════════════════════════════════════════════════════════════

class EntitlementService:
    """
    Entitlement decisions for one deployment.

    Usage:
        service = EntitlementService(DigitSubscriptionResolver(), InMemoryUsageStore())
        sub = await service.resolve_subscription(user_id)
        if not service.check_feature_access(user_id, "premium-feature", sub):
            raise AppError(ErrorKind.FORBIDDEN, ...)
    """

    def __init__(self, resolver: SubscriptionResolver, usage_store: UsageStore):
        self.resolver = resolver
        self.usage_store = usage_store

    # ── Subscription ──────────────────────────────────────────────────────

    async def resolve_subscription(self, user_id: str) -> SubscriptionDetails:
        subscription = await self.resolver.resolve(user_id)
        logger.debug(
            "Resolved subscription for user=%s: plan=%s status=%s",
            user_id,
            subscription.plan.value,
            subscription.status.value,
        )
        return subscription

    def check_feature_access(
        self, user_id: str, feature: str, subscription: SubscriptionDetails
    ) -> bool:
        """
        True if `subscription` unlocks `feature`.

        ENTERPRISE always passes; unknown features always fail. Status is not
        consulted.
        """
        if subscription.plan == Plan.ENTERPRISE:
            return True

        allowed_plans = FEATURE_ACCESS_MATRIX.get(feature)
        if allowed_plans is None:
            logger.info("Denied unknown feature '%s' for user=%s", feature, user_id)
            return False

        return subscription.plan in allowed_plans

    # ── Usage ─────────────────────────────────────────────────────────────

    async def record_usage(self, user_id: str, usage_type: str, increment: int = 1) -> None:
        """
        Add `increment` to the user's counter for `usage_type`.

        Raises:
            AppError(VALIDATION): increment is negative or larger than UNLIMITED
        """
        if increment < 0:
            raise AppError(
                ErrorKind.VALIDATION,
                "Usage increment must not be negative",
                details={"usage_type": usage_type, "increment": increment},
            )
        if increment > UNLIMITED:
            raise AppError(
                ErrorKind.VALIDATION,
                f"Usage increment must not exceed {UNLIMITED}",
                details={"usage_type": usage_type, "increment": increment},
            )
        if increment == 0:
            return
        await self.usage_store.increment(user_id, usage_type, increment)

    async def get_current_usage(self, user_id: str, usage_type: str) -> int:
        return await self.usage_store.get(user_id, usage_type)

    def get_usage_limit(self, user_id: str, usage_type: str, plan: Plan) -> int:
        """
        Ceiling for `usage_type` on `plan`; 0 for unknown usage types.

        `user_id` is reserved for per-user overrides.
        """
        limits = USAGE_LIMITS.get(usage_type)
        if limits is None:
            return 0
        return limits.get(plan, 0)

    async def get_usage_snapshot(
        self, user_id: str, usage_type: str, plan: Plan
    ) -> UsageSnapshot:
        return UsageSnapshot(
            usage_type=usage_type,
            current=await self.get_current_usage(user_id, usage_type),
            limit=self.get_usage_limit(user_id, usage_type, plan),
        )

    async def consume_usage(
        self,
        user_id: str,
        usage_type: str,
        subscription: SubscriptionDetails,
        increment: int = 1,
    ) -> UsageSnapshot:
        """
        Record `increment` units unless that would exceed the plan's quota.

        ENTERPRISE is recorded without a quota check. The check and the
        increment are two steps, so concurrent requests can overshoot the
        ceiling slightly; usage accounting is advisory.

        Raises:
            AppError(QUOTA_EXCEEDED): current + increment > limit
            AppError(VALIDATION):     increment is negative
        """
        plan = subscription.plan
        if plan == Plan.ENTERPRISE:
            await self.record_usage(user_id, usage_type, increment)
            return await self.get_usage_snapshot(user_id, usage_type, plan)

        snapshot = await self.get_usage_snapshot(user_id, usage_type, plan)
        if snapshot.current + increment > snapshot.limit:
            logger.warning(
                "Quota exceeded for user=%s type=%s: %d + %d > %d (plan=%s)",
                user_id,
                usage_type,
                snapshot.current,
                increment,
                snapshot.limit,
                plan.value,
            )
            raise AppError(
                ErrorKind.QUOTA_EXCEEDED,
                f"You have reached your {usage_type} limit for your current subscription plan",
                details={
                    "usage_type": usage_type,
                    "current_usage": snapshot.current,
                    "limit": snapshot.limit,
                    "upgrade": True,
                },
            )

        await self.record_usage(user_id, usage_type, increment)
        return UsageSnapshot(
            usage_type=usage_type,
            current=snapshot.current + increment,
            limit=snapshot.limit,
        )

    async def reset_usage(self, user_id: str, usage_type: Optional[str] = None) -> None:
        """Zero one counter, or all of a user's counters. For billing-cycle jobs."""
        await self.usage_store.reset(user_id, usage_type)
        logger.info("Reset usage for user=%s type=%s", user_id, usage_type or "*")


# Singleton wired from settings; tests construct their own instances
entitlement_service = EntitlementService(
    resolver=DigitSubscriptionResolver(),
    usage_store=create_usage_store(settings.usage_store_backend),
)
