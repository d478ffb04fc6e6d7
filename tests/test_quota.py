"""Tests for quota admission with counters on an in-memory Redis double."""

from unittest.mock import patch

import pytest

from mutate.core import quota
from mutate.core.config import settings
from tests.conftest import FakeRedis

MB = 1024 * 1024


@pytest.fixture
def fake_redis():
    fake = FakeRedis()
    with patch("mutate.core.quota.get_redis_client", return_value=fake):
        yield fake


class TestCheckAndReserve:
    def test_allowed_reserves_slot(self, fake_redis):
        decision = quota.check_and_reserve("org_a", 2 * MB)
        assert decision.allowed
        assert quota.get_usage("org_a")["activeConversions"] == 1

    def test_file_too_large(self, fake_redis):
        with patch.object(settings, "max_file_size_mb", 1.0):
            decision = quota.check_and_reserve("org_a", 2 * MB)
        assert not decision.allowed
        assert "exceeds plan limit" in decision.reason
        assert quota.get_usage("org_a")["activeConversions"] == 0

    def test_concurrency_limit(self, fake_redis):
        with patch.object(settings, "concurrent_conversion_limit", 2):
            assert quota.check_and_reserve("org_a", MB).allowed
            assert quota.check_and_reserve("org_a", MB).allowed
            denied = quota.check_and_reserve("org_a", MB)
        assert not denied.allowed
        assert "Concurrent conversion limit" in denied.reason
        assert quota.get_usage("org_a")["activeConversions"] == 2

    def test_release_frees_slot(self, fake_redis):
        with patch.object(settings, "concurrent_conversion_limit", 1):
            assert quota.check_and_reserve("org_a", MB).allowed
            quota.release_slot("org_a")
            assert quota.check_and_reserve("org_a", MB).allowed

    def test_monthly_limit(self, fake_redis):
        with patch.object(settings, "monthly_conversion_limit", 2):
            assert quota.check_and_reserve("org_a", MB).allowed
            assert quota.check_and_reserve("org_a", MB).allowed
            decision = quota.check_and_reserve("org_a", MB)
        assert not decision.allowed
        assert decision.reason == "Monthly conversion limit reached (2)"
        assert quota.get_usage("org_a")["currentUsage"] == 2

    def test_last_monthly_unit_admits_once(self, fake_redis):
        fake_redis.set(quota._monthly_key("org_a"), 9)
        with patch.object(settings, "monthly_conversion_limit", 10):
            first = quota.check_and_reserve("org_a", MB)
            second = quota.check_and_reserve("org_a", MB)
        assert first.allowed
        assert not second.allowed
        assert quota.get_usage("org_a")["currentUsage"] == 10

    def test_concurrency_denial_returns_monthly_unit(self, fake_redis):
        with patch.object(settings, "concurrent_conversion_limit", 1):
            assert quota.check_and_reserve("org_a", MB).allowed
            assert not quota.check_and_reserve("org_a", MB).allowed
        assert quota.get_usage("org_a")["currentUsage"] == 1

    def test_organizations_are_independent(self, fake_redis):
        with patch.object(settings, "concurrent_conversion_limit", 1):
            assert quota.check_and_reserve("org_a", MB).allowed
            assert quota.check_and_reserve("org_b", MB).allowed


class TestCounters:
    def test_release_never_negative(self, fake_redis):
        quota.release_slot("org_a")
        assert quota.get_usage("org_a")["activeConversions"] == 0

    def test_monthly_key_expiry_set_once(self, fake_redis):
        quota.check_and_reserve("org_a", MB)
        quota.check_and_reserve("org_a", MB)
        assert list(fake_redis.expirations.values()) == [quota.MONTHLY_KEY_TTL_SECONDS]

    def test_refund_usage(self, fake_redis):
        quota.check_and_reserve("org_a", MB)
        assert quota.refund_usage("org_a") == 0
        assert quota.get_usage("org_a")["currentUsage"] == 0

    def test_refund_never_negative(self, fake_redis):
        assert quota.refund_usage("org_a") == 0
        assert quota.get_usage("org_a")["currentUsage"] == 0
