"""
Unit tests for retention tiers (pgbackuper/rotation/tiers.py).
"""

from datetime import datetime, timedelta, timezone

import pytest

from pgbackuper.rotation.tiers import (
    RetentionTier,
    TIER_INTERVALS,
    categorize_tier,
    ordered_tiers,
    retention_map,
)


NOW = datetime(2024, 6, 1, 12, 0, 0, tzinfo=timezone.utc)


class TestCategorizeTier:
    """Test age-based tier classification."""

    @pytest.mark.parametrize('age,expected', [
        (timedelta(minutes=5), 'hourly'),
        (timedelta(hours=24), 'hourly'),
        (timedelta(hours=25), 'daily'),
        (timedelta(days=7), 'daily'),
        (timedelta(days=8), 'weekly'),
        (timedelta(days=30), 'weekly'),
        (timedelta(days=31), 'monthly'),
        (timedelta(days=90), 'monthly'),
        (timedelta(days=91), 'quarterly'),
        (timedelta(days=365), 'quarterly'),
        (timedelta(days=366), 'yearly'),
    ])
    def test_age_boundaries(self, age, expected):
        """Test each boundary is inclusive on the younger tier."""
        assert categorize_tier(NOW - age, NOW) == expected


class TestRetentionTier:
    """Test RetentionTier validation."""

    def test_valid_tier(self):
        tier = RetentionTier('daily', 7)
        assert tier.to_dict() == {'tier': 'daily', 'retention': 7}

    def test_unknown_tier(self):
        """Test unknown tier names are rejected."""
        with pytest.raises(ValueError, match='Unknown retention tier'):
            RetentionTier('minutely', 5)

    def test_negative_retention(self):
        """Test negative retention is rejected."""
        with pytest.raises(ValueError):
            RetentionTier('daily', -1)

    def test_from_dict(self):
        assert RetentionTier.from_dict({'tier': 'weekly', 'retention': 4}) == RetentionTier('weekly', 4)

    def test_ordered_tiers(self):
        """Test tiers sort shortest interval first."""
        tiers = [RetentionTier('yearly', 2), RetentionTier('hourly', 24), RetentionTier('weekly', 4)]
        assert [t.tier for t in ordered_tiers(tiers)] == ['hourly', 'weekly', 'yearly']

    def test_retention_map(self):
        tiers = [RetentionTier('daily', 7), RetentionTier('monthly', 12)]
        assert retention_map(tiers) == {'daily': 7, 'monthly': 12}

    def test_intervals(self):
        """Test tier intervals used for scheduling."""
        assert TIER_INTERVALS['hourly'] == timedelta(hours=1)
        assert TIER_INTERVALS['quarterly'] == timedelta(days=90)
        assert TIER_INTERVALS['yearly'] == timedelta(days=365)
