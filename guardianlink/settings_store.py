"""Trigger and guardian settings.

``SettingsStore`` keeps everything in memory; ``YamlSettingsStore`` writes the
same data to a YAML file after every change. The engine only ever reads a
``SettingsSnapshot`` at trigger time.
"""

from __future__ import annotations

import itertools
import time
from pathlib import Path

import structlog
import yaml

from guardianlink.core.channels import normalize_address
from guardianlink.core.models import (
    Contact,
    SettingsSnapshot,
    contact_from_dict,
    contact_to_dict,
)

log = structlog.get_logger()

DEFAULT_TRIGGER_PHRASE = "I am in danger"
DEFAULT_MESSAGE_TEMPLATE = "URGENT: I need assistance. Tracking location: {location}"


class SettingsStore:
    def __init__(
        self,
        trigger_phrase: str = DEFAULT_TRIGGER_PHRASE,
        message_template: str = DEFAULT_MESSAGE_TEMPLATE,
        contacts: list[Contact] | None = None,
    ) -> None:
        self._trigger_phrase = trigger_phrase
        self._message_template = message_template
        self._contacts: list[Contact] = list(contacts or [])
        self._ids = itertools.count()

    async def snapshot(self) -> SettingsSnapshot:
        return SettingsSnapshot(
            trigger_phrase=self._trigger_phrase,
            message_template=self._message_template,
            recipients=tuple(self._contacts),
        )

    @property
    def contacts(self) -> list[Contact]:
        return list(self._contacts)

    def set_trigger_phrase(self, phrase: str) -> None:
        phrase = phrase.strip()
        if not phrase:
            raise ValueError("trigger phrase must not be empty")
        self._trigger_phrase = phrase
        self._changed()

    def set_message_template(self, template: str) -> None:
        self._message_template = template.strip() or DEFAULT_MESSAGE_TEMPLATE
        self._changed()

    def add_contact(self, name: str, address: str, is_registered_user: bool = False) -> Contact:
        name = name.strip()
        address = normalize_address(address)
        if not name or not address:
            raise ValueError("contact needs a name and an address")
        contact = Contact(
            id=f"{int(time.time() * 1000)}{next(self._ids):03d}",
            display_name=name,
            address=address,
            is_registered_user=is_registered_user,
        )
        # One contact per address; re-adding replaces the old entry.
        self._contacts = [c for c in self._contacts if c.address != address]
        self._contacts.append(contact)
        self._changed()
        log.info("contact_added", contact_id=contact.id, registered=is_registered_user)
        return contact

    def remove_contact(self, contact_id: str) -> bool:
        before = len(self._contacts)
        self._contacts = [c for c in self._contacts if c.id != contact_id]
        removed = len(self._contacts) < before
        if removed:
            self._changed()
            log.info("contact_removed", contact_id=contact_id)
        return removed

    def _changed(self) -> None:
        """Hook for persistent subclasses."""


class YamlSettingsStore(SettingsStore):
    """SettingsStore persisted to a YAML file."""

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)
        raw: dict = {}
        if self._path.exists():
            with open(self._path) as f:
                raw = yaml.safe_load(f) or {}
        super().__init__(
            trigger_phrase=raw.get("trigger_phrase") or DEFAULT_TRIGGER_PHRASE,
            message_template=raw.get("message_template") or DEFAULT_MESSAGE_TEMPLATE,
            contacts=[contact_from_dict(c) for c in raw.get("contacts") or []],
        )

    def _changed(self) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        data = {
            "trigger_phrase": self._trigger_phrase,
            "message_template": self._message_template,
            "contacts": [contact_to_dict(c) for c in self._contacts],
        }
        with open(self._path, "w") as f:
            yaml.safe_dump(data, f, sort_keys=False, allow_unicode=True)
        log.debug("settings_saved", path=str(self._path))
