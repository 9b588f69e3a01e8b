from __future__ import annotations

import logging

from .database import LocalStateDB
from .models import UserProfile

logger = logging.getLogger(__name__)

PROFILE_KEY = "anviksha_user_profile"


class ProfileStore:
    def __init__(self, db: LocalStateDB) -> None:
        self._db = db

    def load(self) -> UserProfile:
        raw = self._db.read_json(PROFILE_KEY, None)
        if not isinstance(raw, dict):
            return UserProfile()
        try:
            return UserProfile.from_payload(raw)
        except (TypeError, ValueError) as exc:
            logger.warning("Stored profile is invalid, using defaults: %s", exc)
            return UserProfile()

    def save(self, profile: UserProfile) -> UserProfile:
        self._db.write_json(PROFILE_KEY, profile.to_payload())
        return profile
