"""Persisted privacy settings gating personalized suggestions."""

import json
import logging
from typing import Callable, List

from jsonschema import ValidationError, validate

from .models import PrivacySettings
from .storage import KeyValueStore, StorageError


STORAGE_KEY = 'search_intel.privacy'

PRIVACY_SETTINGS_SCHEMA = {
    "type": "object",
    "properties": {
        "personalization_enabled": {"type": "boolean"},
        "history_based_suggestions": {"type": "boolean"},
        "trending_queries_enabled": {"type": "boolean"},
        "ai_suggestions_enabled": {"type": "boolean"},
    },
    "required": [
        "personalization_enabled",
        "history_based_suggestions",
        "trending_queries_enabled",
        "ai_suggestions_enabled",
    ],
}


class PrivacySettingsStore:
    """Reads and writes the single privacy-settings record."""

    def __init__(self, store: KeyValueStore):
        self.logger = logging.getLogger(f"{__name__}.PrivacySettingsStore")
        self.store = store
        self._listeners: List[Callable[[PrivacySettings], None]] = []

    def subscribe(self, listener: Callable[[PrivacySettings], None]) -> None:
        """Call ``listener`` with the new settings after every change."""
        self._listeners.append(listener)

    def get(self) -> PrivacySettings:
        """Stored settings, or defaults when missing or malformed."""
        try:
            stored = self.store.get(STORAGE_KEY)
        except StorageError as e:
            self.logger.error(f"Failed to read privacy settings: {e}")
            return PrivacySettings()
        if not stored:
            return PrivacySettings()

        try:
            data = json.loads(stored)
            validate(instance=data, schema=PRIVACY_SETTINGS_SCHEMA)
        except (json.JSONDecodeError, ValidationError) as e:
            self.logger.warning(f"Invalid privacy settings in storage, using defaults: {getattr(e, 'message', e)}")
            try:
                self.store.remove(STORAGE_KEY)
            except StorageError as remove_error:
                self.logger.debug(f"Failed to remove invalid privacy settings: {remove_error}")
            return PrivacySettings()

        return PrivacySettings(**{k: data[k] for k in PRIVACY_SETTINGS_SCHEMA["required"]})

    def set(self, settings: PrivacySettings) -> None:
        """Persist ``settings`` and notify listeners."""
        try:
            self.store.set(STORAGE_KEY, json.dumps(settings.to_dict()))
        except StorageError as e:
            self.logger.error(f"Failed to set privacy settings: {e}")
            return
        self.logger.info(f"Privacy settings updated: {settings.to_dict()}")
        for listener in self._listeners:
            listener(settings)

    def update(self, **changes: bool) -> PrivacySettings:
        """Apply field changes on top of the current settings."""
        current = self.get().to_dict()
        unknown = set(changes) - set(current)
        if unknown:
            raise ValueError(f"Unknown privacy settings: {', '.join(sorted(unknown))}")
        current.update(changes)
        settings = PrivacySettings(**current)
        self.set(settings)
        return settings
