"""
Tier policy and daily limits.

Free users get one fixed-size session and a capped number of reviews per
study day; paid and admin users are effectively unlimited. The study day is
the user's local calendar day shifted back by their day-start hour, so a
review at 02:00 with a 04:00 day start still counts toward yesterday.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timedelta
from enum import Enum
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from flashdeck import settings
from flashdeck.fsrs.parameters import FsrsConfig

UNLIMITED_SESSIONS = 999
UNLIMITED_REVIEWS = 9999


class UserTier(str, Enum):
    FREE = "free"
    PAID = "paid"
    ADMIN = "admin"


@dataclass(frozen=True)
class TierPolicy:
    tier: UserTier
    sessions_per_day: int
    reviews_per_day: int
    session_size: int

    @property
    def is_limited(self) -> bool:
        return self.tier == UserTier.FREE


def parse_tier(value: Optional[str]) -> UserTier:
    """Unknown or missing tiers fall back to free limits."""
    try:
        return UserTier(value)
    except ValueError:
        return UserTier.FREE


def policy_for(tier) -> TierPolicy:
    """
    Limits for a tier. Free-tier numbers come from settings.
    """
    tier = parse_tier(tier.value if isinstance(tier, UserTier) else tier)
    size = settings.get_session_size()
    if tier == UserTier.FREE:
        return TierPolicy(
            tier=tier,
            sessions_per_day=settings.get_free_sessions_per_day(),
            reviews_per_day=settings.get_free_daily_review_limit(),
            session_size=size,
        )
    return TierPolicy(
        tier=tier,
        sessions_per_day=UNLIMITED_SESSIONS,
        reviews_per_day=UNLIMITED_REVIEWS,
        session_size=size,
    )


# ---- Study day ----

def resolve_timezone(name: Optional[str]) -> ZoneInfo:
    try:
        return ZoneInfo(name or settings.get_default_timezone())
    except (ZoneInfoNotFoundError, ValueError):
        return ZoneInfo("UTC")


def local_study_day(now: datetime, timezone_name: Optional[str], day_start_hour: int = 0) -> date:
    """
    The user's current study day.

    Args:
        now: Aware timestamp
        timezone_name: IANA timezone of the user (UTC if unknown)
        day_start_hour: Hour (0-23) at which the user's day begins

    Returns:
        Local calendar date shifted by the day-start hour
    """
    local = now.astimezone(resolve_timezone(timezone_name))
    return (local - timedelta(hours=day_start_hour)).date()


# ---- Quota checks ----

def review_limit(policy: TierPolicy, config: Optional[FsrsConfig]) -> int:
    """Daily review cap, honouring a per-user override."""
    if config is not None and config.reviews_per_day is not None:
        return config.reviews_per_day
    return policy.reviews_per_day


def is_review_limited(policy: TierPolicy, config: Optional[FsrsConfig]) -> bool:
    """Free users are always capped; other tiers only with an explicit override."""
    return policy.is_limited or (config is not None and config.reviews_per_day is not None)


def review_quota_exhausted(policy: TierPolicy, config: Optional[FsrsConfig], reviews_today: int) -> bool:
    return is_review_limited(policy, config) and reviews_today >= review_limit(policy, config)


def session_quota_exhausted(policy: TierPolicy, sessions_today: int) -> bool:
    return policy.is_limited and sessions_today >= policy.sessions_per_day


def new_card_allowance(config: Optional[FsrsConfig], new_cards_today: int, slots: int) -> int:
    """
    How many new cards may be added to a batch with ``slots`` free places.
    """
    if config is None or config.new_cards_per_day is None:
        return max(0, slots)
    return max(0, min(slots, config.new_cards_per_day - new_cards_today))
