"""
Retention tiers and age-based tier classification.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Dict, List


HOURLY = 'hourly'
DAILY = 'daily'
WEEKLY = 'weekly'
MONTHLY = 'monthly'
QUARTERLY = 'quarterly'
YEARLY = 'yearly'

# Pseudo-tier used when a database has no retention tiers configured
DEFAULT_TIER = 'default'

# Shortest interval first
TIER_ORDER = [HOURLY, DAILY, WEEKLY, MONTHLY, QUARTERLY, YEARLY]

TIER_INTERVALS: Dict[str, timedelta] = {
    HOURLY: timedelta(hours=1),
    DAILY: timedelta(days=1),
    WEEKLY: timedelta(days=7),
    MONTHLY: timedelta(days=30),
    QUARTERLY: timedelta(days=90),
    YEARLY: timedelta(days=365),
}

# Upper age bound (inclusive) for each tier when classifying by age
AGE_LIMITS = [
    (HOURLY, timedelta(hours=24)),
    (DAILY, timedelta(days=7)),
    (WEEKLY, timedelta(days=30)),
    (MONTHLY, timedelta(days=90)),
    (QUARTERLY, timedelta(days=365)),
]


@dataclass(frozen=True)
class RetentionTier:
    """How many backups of one tier to keep. A retention of 0 keeps all."""
    tier: str
    retention: int

    def __post_init__(self):
        if self.tier not in TIER_INTERVALS:
            raise ValueError(f"Unknown retention tier: {self.tier!r} (valid: {', '.join(TIER_ORDER)})")
        if self.retention < 0:
            raise ValueError(f"Retention for {self.tier} must be >= 0, got {self.retention}")

    @classmethod
    def from_dict(cls, data: dict) -> 'RetentionTier':
        return cls(tier=data.get('tier'), retention=int(data.get('retention', 0)))

    def to_dict(self) -> dict:
        return {'tier': self.tier, 'retention': self.retention}


def categorize_tier(backup_time: datetime, now: datetime) -> str:
    """
    Classify a backup into a tier by its age.

    Args:
        backup_time: When the backup was taken
        now: Reference time

    Returns:
        hourly (<=24h), daily (<=7d), weekly (<=30d), monthly (<=90d),
        quarterly (<=365d) or yearly
    """
    age = now - backup_time
    for tier, limit in AGE_LIMITS:
        if age <= limit:
            return tier
    return YEARLY


def ordered_tiers(retention_tiers: List[RetentionTier]) -> List[RetentionTier]:
    """Return configured tiers sorted shortest interval first."""
    return sorted(retention_tiers, key=lambda rt: TIER_ORDER.index(rt.tier))


def retention_map(retention_tiers: List[RetentionTier]) -> Dict[str, int]:
    return {rt.tier: rt.retention for rt in retention_tiers}
