"""Per-user credential lookup with a static fallback."""

from __future__ import annotations

import logging
from typing import Mapping

from toolchat.db import Database

LOGGER = logging.getLogger(__name__)


class CredentialStore:
    """Resolves API keys: the user's stored key first, then the environment.

    A missing key is reported as ``None``; callers decide how to surface it.
    """

    def __init__(self, db: Database | None, user_id: str | None, fallback: Mapping[str, str] | None = None) -> None:
        self._db = db
        self._user_id = user_id
        self._fallback = dict(fallback or {})
        self._session: dict[str, str] = {}

    def get(self, name: str) -> str | None:
        if name in self._session:
            return self._session[name]
        if self._db is not None and self._user_id:
            stored = self._db.get_credential(self._user_id, name)
            if stored:
                return stored
        return self._fallback.get(name) or None

    def has(self, name: str) -> bool:
        return self.get(name) is not None

    def set(self, name: str, value: str) -> None:
        """Store a key for the current user, or for this session when signed out."""

        if self._db is not None and self._user_id:
            self._db.set_credential(self._user_id, name, value)
        else:
            self._session[name] = value
        LOGGER.info("Credential %r updated", name)

    def remove(self, name: str) -> None:
        self._session.pop(name, None)
        if self._db is not None and self._user_id:
            self._db.delete_credential(self._user_id, name)
