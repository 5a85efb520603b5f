from __future__ import annotations

import secrets
from typing import Optional, Tuple

from papacatzzi.logging import get_logger, hash_email
from papacatzzi.service.errors import (
    AccountNotFound,
    IdentityConflict,
    UsernameTaken,
    ValidationError,
)
from papacatzzi.service.guards import guard_store
from papacatzzi.service.sessions import SessionService
from papacatzzi.service.tokens import TokenPair
from papacatzzi.service.validation import validate_email
from papacatzzi.storage.errors import ConstraintViolation
from papacatzzi.storage.models import Account

logger = get_logger(__name__)

DEFAULT_USERNAME_PREFIX = "AnonymousUser"
USERNAME_DIGITS = 12
MAX_USERNAME_ATTEMPTS = 5


class IdentityResolver:
    """Maps a provider identity onto a local account.

    Resolution order: by email (link or reuse), then by federated id, then
    provision a fresh account. Provider emails are trusted, so an inactive
    placeholder found along the way is activated.
    """

    def __init__(
        self,
        store,
        sessions: SessionService,
        *,
        username_prefix: str = DEFAULT_USERNAME_PREFIX,
        max_username_attempts: int = MAX_USERNAME_ATTEMPTS,
    ) -> None:
        self.store = guard_store(store)
        self.sessions = sessions
        self.username_prefix = username_prefix
        self.max_username_attempts = max_username_attempts

    def generate_username(self) -> str:
        digits = "".join(str(secrets.randbelow(10)) for _ in range(USERNAME_DIGITS))
        return f"{self.username_prefix}{digits}"

    async def resolve(self, federated_id: str, email: str) -> Tuple[Account, TokenPair]:
        if not federated_id or not isinstance(federated_id, str):
            raise ValidationError("federated id is required", detail={"field": "federated_id"})
        email = validate_email(email)
        account = await self._resolve_account(federated_id, email, retry=True)
        if not account.is_active:
            account = await self._activate(account)
        return account, self.sessions.issue_pair(account)

    async def _resolve_account(self, federated_id: str, email: str, *, retry: bool) -> Account:
        account = await self.store.get_account_by_email(email)
        if account is not None:
            if account.federated_id == federated_id:
                return account
            if account.federated_id:
                logger.warning(
                    "identity_conflict", account_id=account.id, email_hash=hash_email(email)
                )
                raise IdentityConflict("email is linked to a different identity")
            return await self._link(account, federated_id)

        account = await self.store.get_account_by_federated_id(federated_id)
        if account is not None:
            return account

        try:
            return await self._provision(email, federated_id)
        except ConstraintViolation as exc:
            if retry and exc.field in ("email", "federated_id"):
                # Lost a concurrent provisioning race; the winner's row is there now
                logger.info("identity_provision_race", email_hash=hash_email(email))
                return await self._resolve_account(federated_id, email, retry=False)
            raise IdentityConflict("identity could not be resolved") from exc

    async def _link(self, account: Account, federated_id: str) -> Account:
        try:
            linked = await self.store.update_federated_id(account.id, federated_id)
        except ConstraintViolation as exc:
            raise IdentityConflict("identity is already linked to another account") from exc
        if linked is None:
            raise AccountNotFound("account not found")
        logger.info("identity_linked", account_id=account.id)
        return linked

    async def _provision(self, email: str, federated_id: str) -> Account:
        for _ in range(self.max_username_attempts):
            candidate = Account.new(
                email,
                username=self.generate_username(),
                federated_id=federated_id,
                is_active=True,
            )
            try:
                account = await self.store.insert_account(candidate)
            except ConstraintViolation as exc:
                if exc.field == "username":
                    continue
                raise
            logger.info("identity_provisioned", account_id=account.id)
            return account
        raise UsernameTaken("could not allocate a username")

    async def _activate(self, account: Account) -> Account:
        username: Optional[str] = account.username
        for _ in range(self.max_username_attempts):
            try:
                activated = await self.store.activate_account(
                    account.id, username=username or self.generate_username()
                )
            except ConstraintViolation as exc:
                if exc.field == "username" and not account.username:
                    continue
                raise IdentityConflict("account could not be activated") from exc
            if activated is None:
                raise AccountNotFound("account not found")
            logger.info("identity_placeholder_activated", account_id=account.id)
            return activated
        raise UsernameTaken("could not allocate a username")
