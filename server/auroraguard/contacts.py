from __future__ import annotations

import json
import logging
import os
import uuid
from datetime import datetime, timezone
from typing import Iterable

from auroraguard.models import Contact


class ContactStore:
    """Emergency contacts ordered by priority (0 = primary). Optionally persisted to a JSON file."""

    def __init__(self, path: str | None = None) -> None:
        self._path = path
        self._logger = logging.getLogger("auroraguard.contacts")
        self._contacts: list[Contact] = []
        if path and os.path.exists(path):
            self._load()

    def _load(self) -> None:
        assert self._path is not None
        with open(self._path, "r", encoding="utf-8") as handle:
            data = json.load(handle) or []
        contacts: list[Contact] = []
        for item in data:
            try:
                contacts.append(
                    Contact(
                        id=str(item["id"]),
                        name=str(item["name"]),
                        phone=str(item["phone"]),
                        priority=int(item["priority"]),
                        created_at=item.get("created_at"),
                    )
                )
            except (KeyError, TypeError, ValueError):
                self._logger.warning("Skipping malformed contact entry in %s: %r", self._path, item)
        self._contacts = sorted(contacts, key=lambda c: c.priority)
        self._logger.info("Loaded %d contacts from %s", len(self._contacts), self._path)

    def _save(self) -> None:
        if not self._path:
            return
        payload = [
            {
                "id": c.id,
                "name": c.name,
                "phone": c.phone,
                "priority": c.priority,
                "created_at": c.created_at,
            }
            for c in self._contacts
        ]
        tmp = f"{self._path}.tmp"
        with open(tmp, "w", encoding="utf-8") as handle:
            json.dump(payload, handle, indent=2)
        os.replace(tmp, self._path)

    def list(self) -> list[Contact]:
        return sorted(self._contacts, key=lambda c: c.priority)

    def snapshot(self) -> tuple[Contact, ...]:
        """Immutable copy of the ordered list, detached from later edits."""
        return tuple(
            Contact(id=c.id, name=c.name, phone=c.phone, priority=c.priority, created_at=c.created_at)
            for c in self.list()
        )

    def get(self, contact_id: str) -> Contact | None:
        for c in self._contacts:
            if c.id == contact_id:
                return c
        return None

    def add(self, name: str, phone: str) -> Contact:
        name = (name or "").strip()
        phone = (phone or "").strip()
        if not name or not phone:
            raise ValueError("Contact name and phone are required")
        priority = max((c.priority for c in self._contacts), default=-1) + 1
        contact = Contact(
            id=uuid.uuid4().hex,
            name=name,
            phone=phone,
            priority=priority,
            created_at=datetime.now(timezone.utc).isoformat(),
        )
        self._contacts.append(contact)
        self._save()
        return contact

    def delete(self, contact_id: str) -> Contact | None:
        contact = self.get(contact_id)
        if contact is None:
            return None
        self._contacts = [c for c in self._contacts if c.id != contact_id]
        self._save()
        return contact

    def reorder(self, contact_ids: Iterable[str]) -> list[Contact]:
        ids = [str(i) for i in contact_ids]
        by_id = {c.id: c for c in self._contacts}
        if len(ids) != len(set(ids)) or set(ids) != set(by_id):
            raise ValueError("Reorder must list every contact exactly once")
        for index, contact_id in enumerate(ids):
            by_id[contact_id].priority = index
        self._contacts = [by_id[i] for i in ids]
        self._save()
        return self.list()

    def __len__(self) -> int:
        return len(self._contacts)
