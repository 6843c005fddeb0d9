"""
Client-side mirror of the organizer's collections.

A StateStore is created by whoever needs it and handed around explicitly.
Changes stay in memory until save() is called. Each collection lives under its
own key as a JSON array; the "_clock" key holds one logical clock per
collection so two writers sharing a storage resolve to last-write-wins.
"""
from __future__ import annotations

import copy
import json
import logging
import os
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)

COLLECTIONS = ("events", "teams", "judges", "categories", "evaluations")
CLOCK_KEY = "_clock"
USER_KEY = "currentUser"

DEFAULTS: Dict[str, List[Dict[str, Any]]] = {
    "events": [{"id": 1, "name": "Event 1", "description": "First event"}],
    "teams": [
        {"id": 1, "name": "Team A", "description": "Team Alpha"},
        {"id": 2, "name": "Team B", "description": "Team Beta"},
    ],
    "judges": [{"id": 1, "name": "Judge 1", "description": "First judge"}],
    "categories": [
        {"id": 1, "name": "Idea", "weight": 1},
        {"id": 2, "name": "Presentation", "weight": 1},
        {"id": 3, "name": "Execution", "weight": 1},
    ],
    "evaluations": [],
}


class MemoryStorage:
    """String key/value storage with the local-storage interface."""

    def __init__(self, items: Optional[Dict[str, str]] = None):
        self._items = dict(items or {})

    def get_item(self, key: str) -> Optional[str]:
        return self._items.get(key)

    def set_item(self, key: str, value: str) -> None:
        self._items[key] = value

    def remove_item(self, key: str) -> None:
        self._items.pop(key, None)


class FileStorage:
    """Same interface, backed by one JSON object on disk."""

    def __init__(self, path: str):
        self.path = path

    def _read(self) -> Dict[str, str]:
        if not os.path.exists(self.path):
            return {}
        with open(self.path, "r", encoding="utf-8") as f:
            try:
                data = json.load(f)
            except ValueError:
                logger.debug("Storage file %s is not valid JSON; treating it as empty", self.path)
                return {}
        return data if isinstance(data, dict) else {}

    def _write(self, data: Dict[str, str]) -> None:
        tmp = self.path + ".tmp"
        with open(tmp, "w", encoding="utf-8") as f:
            json.dump(data, f)
        os.replace(tmp, self.path)

    def get_item(self, key: str) -> Optional[str]:
        return self._read().get(key)

    def set_item(self, key: str, value: str) -> None:
        data = self._read()
        data[key] = value
        self._write(data)

    def remove_item(self, key: str) -> None:
        data = self._read()
        if key in data:
            del data[key]
            self._write(data)


class StateStore:
    def __init__(self, storage):
        self.storage = storage
        self.user: Optional[Dict[str, Any]] = None
        self._data: Dict[str, List[Any]] = {name: copy.deepcopy(DEFAULTS[name]) for name in COLLECTIONS}
        self._clock: Dict[str, int] = {name: 0 for name in COLLECTIONS}
        self._dirty: set = set()

    # -- collections -------------------------------------------------

    def _check(self, name: str) -> None:
        if name not in COLLECTIONS:
            raise KeyError(f"Unknown collection '{name}'.")

    def _read_collection(self, name: str) -> List[Any]:
        raw = self.storage.get_item(name)
        if raw is None:
            return copy.deepcopy(DEFAULTS[name])
        try:
            value = json.loads(raw)
        except ValueError:
            logger.debug("Stored %s is not valid JSON; using defaults", name)
            return copy.deepcopy(DEFAULTS[name])
        if not isinstance(value, list):
            return copy.deepcopy(DEFAULTS[name])
        return value

    def _stored_clock(self) -> Dict[str, int]:
        raw = self.storage.get_item(CLOCK_KEY)
        if raw is None:
            return {}
        try:
            value = json.loads(raw)
            return {k: int(v) for k, v in value.items() if k in COLLECTIONS}
        except (ValueError, TypeError, AttributeError):
            return {}

    def load(self) -> None:
        stored = self._stored_clock()
        for name in COLLECTIONS:
            self._data[name] = self._read_collection(name)
            self._clock[name] = stored.get(name, 0)
        self._dirty.clear()

    def get(self, name: str) -> List[Any]:
        """A copy; changes only count once they go through set()."""
        self._check(name)
        return copy.deepcopy(self._data[name])

    def set(self, name: str, items: List[Any]) -> None:
        self._check(name)
        self._data[name] = list(items)
        self._dirty.add(name)

    @property
    def dirty(self) -> List[str]:
        return sorted(self._dirty)

    def clock(self, name: str) -> int:
        self._check(name)
        return self._clock[name]

    def save(self) -> List[str]:
        """Write every changed collection; returns the names written."""
        stored = self._stored_clock()
        saved = []
        for name in COLLECTIONS:
            if name not in self._dirty:
                continue
            tick = max(self._clock[name], stored.get(name, 0)) + 1
            self.storage.set_item(name, json.dumps(self._data[name]))
            self._clock[name] = tick
            stored[name] = tick
            saved.append(name)
        if saved:
            self.storage.set_item(CLOCK_KEY, json.dumps(stored))
        self._dirty.clear()
        return saved

    def refresh(self) -> List[str]:
        """
        Pick up collections another writer saved after us. Collections with
        unsaved local changes are left alone: saving them later makes them
        the last write.
        """
        stored = self._stored_clock()
        reloaded = []
        for name in COLLECTIONS:
            if name in self._dirty or stored.get(name, 0) <= self._clock[name]:
                continue
            self._data[name] = self._read_collection(name)
            self._clock[name] = stored[name]
            reloaded.append(name)
        return reloaded

    # -- session -----------------------------------------------------

    def sign_in(self, profile: Dict[str, Any]) -> Dict[str, Any]:
        self.user = {
            "role": "admin",
            "username": profile.get("name"),
            "email": profile.get("email"),
            "id": profile.get("id"),
        }
        return self.user

    def sign_out(self) -> None:
        self.user = None
        self.storage.remove_item(USER_KEY)

    def on_auth_state_change(self, event: str, profile: Optional[Dict[str, Any]] = None) -> None:
        if event == "SIGNED_IN" and profile:
            self.sign_in(profile)
        elif event == "SIGNED_OUT":
            self.user = None

    def fetch_session(self, client, token: str) -> Optional[Dict[str, Any]]:
        """
        Load the signed-in organizer from the backend. ``client`` is any HTTP
        client with a requests-style ``get`` pointed at the service.
        """
        resp = client.get("/auth/session", headers={"Authorization": f"Bearer {token}"})
        if resp.status_code != 200:
            logger.info("No backend session (HTTP %s)", resp.status_code)
            self.user = None
            return None
        return self.sign_in(resp.json()["profile"])
