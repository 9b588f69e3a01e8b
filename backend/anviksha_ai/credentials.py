"""Credential resolution for the AI backend.

Resolution order (``resolve_credentials()``):
1. Keys saved on this device (settings screen), in saved order.
2. Environment fallback: ``GEMINI_API_KEYS`` (comma separated), then
   ``GEMINI_API_KEY``, then ``API_KEY``.

The first key is the preferred one. An empty list is a valid answer; callers
check ``is_configured()`` or get a ``ConfigurationError`` from the invoker.
Raw key values are never logged; use ``mask_credential()``.
"""

from __future__ import annotations

import logging
import os
from typing import Iterable

from anviksha_store.database import LocalStateDB

logger = logging.getLogger(__name__)

CREDENTIALS_KEY = "anviksha_neural_links"
FDA_KEY = "anviksha_fda_key"
_ENV_LIST = "GEMINI_API_KEYS"
_ENV_SINGLE = ("GEMINI_API_KEY", "API_KEY")


def mask_credential(credential: str) -> str:
    cleaned = credential.strip()
    if len(cleaned) <= 8:
        return "*" * len(cleaned)
    return f"{cleaned[:4]}...{cleaned[-4:]}"


def _dedupe(values: Iterable[object]) -> list[str]:
    seen: set[str] = set()
    keys: list[str] = []
    for value in values:
        if not isinstance(value, str):
            continue
        cleaned = value.strip()
        if not cleaned or cleaned in seen:
            continue
        seen.add(cleaned)
        keys.append(cleaned)
    return keys


class CredentialStore:
    def __init__(self, db: LocalStateDB, *, env_fallback: bool = True) -> None:
        self._db = db
        self._env_fallback = env_fallback

    def stored_credentials(self) -> list[str]:
        raw = self._db.read_json(CREDENTIALS_KEY, [])
        if not isinstance(raw, list):
            logger.warning("Ignoring malformed credential list in local state")
            return []
        return _dedupe(raw)

    def _env_credentials(self) -> list[str]:
        listed = (os.getenv(_ENV_LIST) or "").split(",")
        singles = [os.getenv(name) or "" for name in _ENV_SINGLE]
        return _dedupe([*listed, *singles])

    def resolve_credentials(self) -> list[str]:
        stored = self.stored_credentials()
        if stored:
            return stored
        if self._env_fallback:
            return self._env_credentials()
        return []

    def is_configured(self) -> bool:
        return bool(self.resolve_credentials())

    def source(self) -> str:
        if self.stored_credentials():
            return "device"
        if self._env_fallback and self._env_credentials():
            return "environment"
        return "none"

    def save_credentials(self, keys: Iterable[str]) -> list[str]:
        cleaned = _dedupe(keys)
        self._db.write_json(CREDENTIALS_KEY, cleaned)
        logger.info("Saved %d AI credential(s) to device", len(cleaned))
        return cleaned

    def add_credential(self, key: str) -> list[str]:
        return self.save_credentials([*self.stored_credentials(), key])

    def remove_credential(self, index: int) -> list[str]:
        keys = self.stored_credentials()
        if index < 0 or index >= len(keys):
            raise IndexError(f"No stored credential at position {index}")
        del keys[index]
        return self.save_credentials(keys)

    def masked(self) -> list[str]:
        return [mask_credential(key) for key in self.resolve_credentials()]

    def fda_key(self) -> str | None:
        value = self._db.read_json(FDA_KEY, None)
        if isinstance(value, str) and value.strip():
            return value.strip()
        return (os.getenv("FDA_KEY") or "").strip() or None

    def save_fda_key(self, key: str | None) -> None:
        cleaned = (key or "").strip()
        if cleaned:
            self._db.write_json(FDA_KEY, cleaned)
        else:
            self._db.delete(FDA_KEY)
