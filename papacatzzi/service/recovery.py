from __future__ import annotations

import asyncio

from papacatzzi.logging import get_logger, hash_email
from papacatzzi.service.errors import AccountNotFound, SamePassword, TokenInvalid
from papacatzzi.service.guards import guard_store
from papacatzzi.service.notifications import NotificationDispatcher
from papacatzzi.service.passwords import CredentialHasher
from papacatzzi.service.tokens import PASSWORD_RESET, TokenIssuer
from papacatzzi.service.validation import validate_email, validate_password

logger = get_logger(__name__)

DEFAULT_RESET_TTL_SECONDS = 60 * 60
RESET_SUBJECT = "Reset your password"


class PasswordRecovery:
    def __init__(
        self,
        store,
        hasher: CredentialHasher,
        tokens: TokenIssuer,
        notifier: NotificationDispatcher,
        *,
        base_url: str,
        reset_ttl_seconds: int = DEFAULT_RESET_TTL_SECONDS,
    ) -> None:
        self.store = guard_store(store)
        self.hasher = hasher
        self.tokens = tokens
        self.notifier = notifier
        self.base_url = base_url.rstrip("/")
        self.reset_ttl_seconds = reset_ttl_seconds

    def reset_link(self, token: str) -> str:
        return f"{self.base_url}/reset-password?token={token}"

    async def forgot_password(self, email: str) -> bool:
        """Email a reset link. Returns whether the notification was queued."""
        email = validate_email(email)
        account = await self.store.get_account_by_email(email)
        if account is None:
            raise AccountNotFound("account not found")
        token = self.tokens.issue(
            account.id, account.email, self.reset_ttl_seconds, kind=PASSWORD_RESET
        )
        queued = self.notifier.send_templated(
            account.email,
            RESET_SUBJECT,
            "password_reset",
            {
                "reset_url": self.reset_link(token),
                "expires_minutes": max(1, self.reset_ttl_seconds // 60),
            },
        )
        logger.info(
            "password_reset_requested",
            account_id=account.id,
            email_hash=hash_email(email),
            delivery_queued=queued,
        )
        return queued

    async def reset_password(self, token: str, new_password: str) -> None:
        validate_password(new_password, field="new_password")
        claims = self.tokens.verify(token, kind=PASSWORD_RESET)
        account = await self.store.get_account_by_email(claims.email)
        if account is None:
            raise AccountNotFound("account not found")
        if account.id != claims.sub:
            raise TokenInvalid("invalid or expired token")
        if account.password_hash and await asyncio.to_thread(
            self.hasher.verify, account.password_hash, new_password
        ):
            raise SamePassword("new password must differ from the current one")
        digest = await asyncio.to_thread(self.hasher.hash, new_password)
        if await self.store.update_password(account.id, digest) is None:
            raise AccountNotFound("account not found")
        logger.info("password_reset_completed", account_id=account.id)
