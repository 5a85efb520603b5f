"""Email-verified sign-up.

An email moves through ``NoAccount -> CodeIssued -> EmailVerified -> Active``.
Only the two middle states live in the cache, under ``signup:<email>``: the
six digit code while it is outstanding, then the ``EMAIL_VERIFIED`` sentinel.
Every transition rewrites the entry, which re-arms its TTL.
"""

from __future__ import annotations

import asyncio
import hmac
import secrets
from dataclasses import dataclass

from papacatzzi.logging import get_logger, hash_email
from papacatzzi.service.errors import (
    AccountAlreadyActive,
    CodeExpiredOrMissing,
    DependencyFailure,
    IncorrectCode,
    UsernameTaken,
    ValidationError,
    VerificationRequired,
)
from papacatzzi.service.guards import guard_cache, guard_store
from papacatzzi.service.notifications import NotificationDispatcher
from papacatzzi.service.passwords import CredentialHasher
from papacatzzi.service.validation import (
    CODE_LENGTH,
    validate_code,
    validate_email,
    validate_password,
    validate_username,
)
from papacatzzi.storage.errors import ConstraintViolation
from papacatzzi.storage.models import Account

logger = get_logger(__name__)

SIGNUP_NAMESPACE = "signup"
EMAIL_VERIFIED = "EMAIL_VERIFIED"
DEFAULT_CODE_TTL_SECONDS = 300


def signup_key(email: str) -> str:
    return f"{SIGNUP_NAMESPACE}:{email}"


def generate_code() -> str:
    return f"{secrets.randbelow(10**CODE_LENGTH):0{CODE_LENGTH}d}"


@dataclass(frozen=True)
class PendingVerification:
    email: str
    expires_in: int
    delivery_queued: bool = True


class SignUpCoordinator:
    def __init__(
        self,
        store,
        cache,
        hasher: CredentialHasher,
        notifier: NotificationDispatcher,
        *,
        code_ttl_seconds: int = DEFAULT_CODE_TTL_SECONDS,
    ) -> None:
        self.store = guard_store(store)
        self.cache = guard_cache(cache)
        self.hasher = hasher
        self.notifier = notifier
        self.code_ttl_seconds = code_ttl_seconds

    async def begin(self, email: str) -> PendingVerification:
        email = validate_email(email)
        account = await self.store.get_account_by_email(email)
        if account is not None and account.is_active:
            raise AccountAlreadyActive("an account with this email already exists")
        return await self._issue_code(email, event="signup_code_issued")

    async def verify_code(self, email: str, code: str) -> None:
        email = validate_email(email)
        validate_code(code)
        try:
            cached = await self.cache.get(signup_key(email))
        except DependencyFailure:
            logger.warning("signup_code_lookup_failed", email_hash=hash_email(email))
            raise CodeExpiredOrMissing("verification code expired or missing")
        if cached is None or cached == EMAIL_VERIFIED:
            raise CodeExpiredOrMissing("verification code expired or missing")
        if not hmac.compare_digest(cached.encode(), code.encode()):
            logger.info("signup_code_mismatch", email_hash=hash_email(email))
            raise IncorrectCode("incorrect verification code")
        await self.cache.set(signup_key(email), EMAIL_VERIFIED, self.code_ttl_seconds)
        logger.info("signup_email_verified", email_hash=hash_email(email))

    async def finish(self, email: str, username: str, password: str) -> Account:
        email = validate_email(email)
        validate_username(username)
        validate_password(password)
        try:
            cached = await self.cache.get(signup_key(email))
        except DependencyFailure:
            logger.warning("signup_state_lookup_failed", email_hash=hash_email(email))
            raise VerificationRequired("email has not been verified")
        if cached != EMAIL_VERIFIED:
            raise VerificationRequired("email has not been verified")

        if await self.store.get_account_by_username(username) is not None:
            raise UsernameTaken("username is already taken")
        existing = await self.store.get_account_by_email(email)
        if existing is not None and existing.is_active:
            raise AccountAlreadyActive("an account with this email already exists")

        digest = await asyncio.to_thread(self.hasher.hash, password)
        try:
            account = None
            if existing is not None:
                account = await self.store.activate_account(
                    existing.id, username=username, password_hash=digest
                )
            if account is None:
                account = await self.store.insert_account(
                    Account.new(email, username=username, password_hash=digest, is_active=True)
                )
        except ConstraintViolation as exc:
            # The unique constraints settle racing finishes
            if exc.field == "username":
                raise UsernameTaken("username is already taken") from exc
            if exc.field == "email":
                raise AccountAlreadyActive("an account with this email already exists") from exc
            raise

        try:
            await self.cache.delete(signup_key(email))
        except DependencyFailure:
            logger.warning("signup_state_cleanup_failed", email_hash=hash_email(email))
        logger.info("signup_completed", account_id=account.id, email_hash=hash_email(email))
        return account

    async def resend_code(self, email: str) -> PendingVerification:
        email = validate_email(email)
        cached = await self.cache.get(signup_key(email))
        if cached is None:
            raise CodeExpiredOrMissing("no sign-up in progress for this email")
        if cached == EMAIL_VERIFIED:
            raise ValidationError("email is already verified", detail={"field": "email"})
        return await self._issue_code(email, event="signup_code_resent")

    async def _issue_code(self, email: str, *, event: str) -> PendingVerification:
        code = generate_code()
        await self.cache.set(signup_key(email), code, self.code_ttl_seconds)
        # Delivery happens on the dispatcher's workers; resend covers lost mail
        queued = self.notifier.send_verification_code(email, code)
        logger.info(
            event,
            email_hash=hash_email(email),
            expires_in=self.code_ttl_seconds,
            delivery_queued=queued,
        )
        return PendingVerification(
            email=email, expires_in=self.code_ttl_seconds, delivery_queued=queued
        )
