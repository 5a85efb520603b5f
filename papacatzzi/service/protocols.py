from __future__ import annotations

from typing import Any, Optional, Protocol

from papacatzzi.storage.models import Account


class CredentialStore(Protocol):
    """Durable account records. Blocking; services call it off the event loop.

    Lookups return ``None`` when nothing matches. Uniqueness failures raise
    ``ConstraintViolation`` with ``field`` set.
    """

    def get_account_by_email(self, email: str) -> Optional[Account]: ...

    def get_account_by_username(self, username: str) -> Optional[Account]: ...

    def get_account_by_federated_id(self, federated_id: str) -> Optional[Account]: ...

    def insert_account(self, account: Account) -> Account: ...

    def update_password(self, account_id: str, password_hash: str) -> Optional[Account]: ...

    def update_federated_id(self, account_id: str, federated_id: str) -> Optional[Account]: ...

    def activate_account(
        self,
        account_id: str,
        *,
        username: Optional[str] = None,
        password_hash: Optional[str] = None,
    ) -> Optional[Account]: ...


class CodeCache(Protocol):
    """Expiring key/value cache. Every ``set`` replaces the value and re-arms the TTL."""

    async def set(self, key: str, value: str, ttl_seconds: int) -> None: ...

    async def get(self, key: str) -> Optional[str]: ...

    async def delete(self, key: str) -> None: ...

    async def pop(self, key: str) -> Optional[str]: ...


class NotificationSender(Protocol):
    """Delivers messages to a recipient. Blocking; may raise on transport failure."""

    def send_verification_code(self, recipient: str, code: str) -> bool: ...

    def send_templated(
        self, recipient: str, subject: str, template_key: str, data: dict[str, Any]
    ) -> bool: ...
