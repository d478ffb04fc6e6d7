"""Tests for organization-scoped configuration persistence."""

from unittest.mock import patch

import pytest

from mutate.core import configuration_store
from tests.conftest import FakeRedis, make_configuration, make_rule


@pytest.fixture
def fake_redis():
    fake = FakeRedis()
    with patch("mutate.core.configuration_store.get_redis_client", return_value=fake):
        yield fake


class TestConfigurationStore:
    def test_save_and_get(self, fake_redis):
        rules = [make_rule("DELETE_COLUMNS", columns=["A"])]
        saved = configuration_store.save_configuration(make_configuration(rules))
        assert saved.created_at is not None
        loaded = configuration_store.get_configuration("org_test", "cfg_test")
        assert loaded.rules == rules
        assert loaded.version == 1

    def test_replace_bumps_version(self, fake_redis):
        configuration_store.save_configuration(make_configuration())
        saved = configuration_store.save_configuration(make_configuration())
        assert saved.version == 2

    def test_replace_from_other_organization_rejected(self, fake_redis):
        configuration_store.save_configuration(make_configuration())
        with pytest.raises(PermissionError):
            configuration_store.save_configuration(make_configuration(organization_id="org_other"))

    def test_scoped_to_organization(self, fake_redis):
        configuration_store.save_configuration(make_configuration())
        assert configuration_store.get_configuration("org_other", "cfg_test") is None

    def test_deactivate_hides_configuration(self, fake_redis):
        configuration_store.save_configuration(make_configuration())
        assert configuration_store.deactivate_configuration("org_test", "cfg_test")
        assert configuration_store.get_configuration("org_test", "cfg_test") is None
        inactive = configuration_store.get_configuration("org_test", "cfg_test", include_inactive=True)
        assert inactive.is_active is False
        assert configuration_store.list_configurations("org_test") == []
        assert len(configuration_store.list_configurations("org_test", include_inactive=True)) == 1

    def test_deactivate_missing(self, fake_redis):
        assert not configuration_store.deactivate_configuration("org_test", "cfg_nope")
