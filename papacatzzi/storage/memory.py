from __future__ import annotations

import json
import threading
from datetime import datetime
from pathlib import Path
from typing import Callable, Dict, Optional

from papacatzzi.logging import get_logger
from papacatzzi.storage.errors import ConstraintViolation
from papacatzzi.storage.models import Account, normalize_email


class MemoryStore:
    """In-process credential store used by tests and local development.

    When ``state_path`` is given, every write is mirrored to a JSON file and
    reloaded on start so a dev server keeps its accounts across restarts.
    """

    def __init__(self, state_path: str | None = None) -> None:
        self.logger = get_logger(__name__)
        self.accounts: Dict[str, Account] = {}
        # RLock so helpers can be called while a write holds the lock
        self._data_lock = threading.RLock()
        self._state_path = Path(state_path) if state_path else None
        if self._state_path is not None:
            self._load_state()

    def verify_connection(self) -> None:
        return None

    # lookups
    def get_account_by_email(self, email: str) -> Optional[Account]:
        normalized = normalize_email(email)
        with self._data_lock:
            return self._find(lambda acc: acc.email == normalized)

    def get_account_by_username(self, username: str) -> Optional[Account]:
        with self._data_lock:
            return self._find(lambda acc: acc.username == username)

    def get_account_by_federated_id(self, federated_id: str) -> Optional[Account]:
        if not federated_id:
            return None
        with self._data_lock:
            return self._find(lambda acc: acc.federated_id == federated_id)

    def get_account(self, account_id: str) -> Optional[Account]:
        with self._data_lock:
            account = self.accounts.get(account_id)
            return account.copy() if account else None

    # writes
    def insert_account(self, account: Account) -> Account:
        stored = account.copy(email=normalize_email(account.email))
        with self._data_lock:
            if stored.id in self.accounts:
                raise ConstraintViolation("account id already exists", field="id")
            self._check_unique(stored)
            self.accounts[stored.id] = stored
            self._persist_state()
            return stored.copy()

    def update_password(self, account_id: str, password_hash: str) -> Optional[Account]:
        with self._data_lock:
            account = self.accounts.get(account_id)
            if account is None:
                return None
            account.password_hash = password_hash
            self._persist_state()
            return account.copy()

    def update_federated_id(self, account_id: str, federated_id: str) -> Optional[Account]:
        with self._data_lock:
            account = self.accounts.get(account_id)
            if account is None:
                return None
            self._check_unique(account.copy(federated_id=federated_id))
            account.federated_id = federated_id
            self._persist_state()
            return account.copy()

    def activate_account(
        self,
        account_id: str,
        *,
        username: Optional[str] = None,
        password_hash: Optional[str] = None,
    ) -> Optional[Account]:
        with self._data_lock:
            account = self.accounts.get(account_id)
            if account is None:
                return None
            candidate = account.copy(
                username=username or account.username,
                password_hash=password_hash or account.password_hash,
                is_active=True,
            )
            self._check_unique(candidate)
            self.accounts[account_id] = candidate
            self._persist_state()
            return candidate.copy()

    # helpers
    def _find(self, predicate: Callable[[Account], bool]) -> Optional[Account]:
        account = next((acc for acc in self.accounts.values() if predicate(acc)), None)
        return account.copy() if account else None

    def _check_unique(self, candidate: Account) -> None:
        for other in self.accounts.values():
            if other.id == candidate.id:
                continue
            if other.email == candidate.email:
                raise ConstraintViolation("email already exists", field="email")
            if candidate.username and other.username == candidate.username:
                raise ConstraintViolation("username already exists", field="username")
            if candidate.federated_id and other.federated_id == candidate.federated_id:
                raise ConstraintViolation(
                    "federated id already linked", field="federated_id"
                )

    def _persist_state(self) -> None:
        if self._state_path is None:
            return
        state = {"accounts": [self._serialize(acc) for acc in self.accounts.values()]}
        try:
            self._state_path.parent.mkdir(parents=True, exist_ok=True)
            self._state_path.write_text(json.dumps(state, indent=2))
        except OSError as exc:
            raise RuntimeError(f"failed to persist in-memory state: {exc}") from exc

    def _load_state(self) -> None:
        # Read directly instead of exists() to avoid a TOCTOU race
        try:
            data = json.loads(self._state_path.read_text())
        except FileNotFoundError:
            return
        except (OSError, json.JSONDecodeError) as exc:
            self.logger.warning("memory_state_unreadable", error=str(exc))
            return
        for raw in data.get("accounts", []):
            account = self._deserialize(raw)
            self.accounts[account.id] = account

    @staticmethod
    def _serialize(account: Account) -> dict:
        return {
            "id": account.id,
            "email": account.email,
            "username": account.username,
            "password_hash": account.password_hash,
            "federated_id": account.federated_id,
            "is_active": account.is_active,
            "created_at": account.created_at.isoformat(),
        }

    @staticmethod
    def _deserialize(data: dict) -> Account:
        return Account(
            id=data["id"],
            email=data["email"],
            username=data.get("username"),
            password_hash=data.get("password_hash"),
            federated_id=data.get("federated_id"),
            is_active=bool(data.get("is_active", False)),
            created_at=datetime.fromisoformat(data["created_at"]),
        )
