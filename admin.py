from __future__ import annotations

import logging
from typing import Dict

from werkzeug.security import check_password_hash, generate_password_hash

from errors import StorageError
from storage import RecordStore, timestamp

log = logging.getLogger(__name__)


class AdminCredentials:
    """The single admin account, stored as one record next to the posts."""

    def __init__(
        self,
        store: RecordStore,
        username: str = "admin",
        password: str = "admin123",
        locator: str = "admin",
    ) -> None:
        self.store = store
        self.locator = locator
        self.default_username = username
        self._bootstrap_password = password

    def _default_record(self) -> Dict:
        return {
            "username": self.default_username,
            "password": generate_password_hash(self._bootstrap_password),
            "lastLogin": None,
        }

    def initialize(self) -> bool:
        return self.store.initialize(self.locator, self._default_record)

    def get(self) -> Dict:
        try:
            record = self.store.read_strict(self.locator)
        except FileNotFoundError:
            record = self._default_record()
            if not self.store.write(self.locator, record):
                log.warning("Could not persist the admin record, keeping it in memory only")
            return record
        except (OSError, ValueError) as exc:
            log.error("Admin record is unreadable: %s", exc)
            raise StorageError("Admin record unavailable") from exc

        if not isinstance(record, dict) or not record.get("username") or not record.get("password"):
            log.error("Admin record is malformed")
            raise StorageError("Admin record unavailable")
        return record

    def record_login(self) -> Dict:
        record = self.get()
        record["lastLogin"] = timestamp()
        if not self.store.write(self.locator, record):
            log.warning("Could not persist last login time")
        return record

    def _password_matches(self, record: Dict, password: str) -> bool:
        try:
            return check_password_hash(record["password"], password)
        except ValueError as exc:
            log.error("Stored admin password hash is not usable: %s", exc)
            return False

    def uses_password(self, password: str) -> bool:
        return self._password_matches(self.get(), password)

    def verify(self, username: str, password: str) -> bool:
        """Check a login attempt; a successful one also stamps ``lastLogin``."""
        if not isinstance(username, str) or not isinstance(password, str):
            return False
        record = self.get()
        if username != record["username"] or not self._password_matches(record, password):
            return False
        self.record_login()
        return True

    @staticmethod
    def public(record: Dict) -> Dict:
        return {"username": record.get("username"), "lastLogin": record.get("lastLogin")}
