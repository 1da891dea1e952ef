"""
Unit tests for the privacy settings store.
"""

import json
import logging

import pytest

from search_intel.models import PrivacySettings
from search_intel.privacy import STORAGE_KEY, PrivacySettingsStore
from search_intel.storage import MemoryStore, StorageError


class UndeletableStore(MemoryStore):
    def remove(self, key):
        raise StorageError("read-only store")


def test_defaults_when_nothing_stored(privacy):
    settings = privacy.get()
    assert settings == PrivacySettings()
    assert settings.personalization_enabled is True
    assert settings.ai_suggestions_enabled is False


def test_set_persists_and_notifies(privacy, store):
    received = []
    privacy.subscribe(received.append)
    settings = PrivacySettings(trending_queries_enabled=False)

    privacy.set(settings)

    assert PrivacySettingsStore(store).get() == settings
    assert received == [settings]


def test_malformed_record_is_removed(privacy, store):
    store.set(STORAGE_KEY, json.dumps({"personalization_enabled": "yes"}))

    assert privacy.get() == PrivacySettings()
    assert store.get(STORAGE_KEY) is None


def test_unparseable_record_falls_back_to_defaults(privacy, store):
    store.set(STORAGE_KEY, "{broken")
    assert privacy.get() == PrivacySettings()


def test_failed_removal_of_invalid_record_is_logged(caplog):
    store = UndeletableStore()
    store.set(STORAGE_KEY, json.dumps({"personalization_enabled": "yes"}))
    privacy = PrivacySettingsStore(store)

    with caplog.at_level(logging.DEBUG, logger="search_intel.privacy"):
        assert privacy.get() == PrivacySettings()

    assert store.get(STORAGE_KEY) is not None
    assert "Failed to remove invalid privacy settings" in caplog.text


def test_update_applies_changes(privacy):
    updated = privacy.update(ai_suggestions_enabled=True)

    assert updated.ai_suggestions_enabled is True
    assert privacy.get().ai_suggestions_enabled is True
    assert privacy.get().personalization_enabled is True


def test_update_rejects_unknown_keys(privacy):
    with pytest.raises(ValueError, match="telemetry"):
        privacy.update(telemetry=True)
