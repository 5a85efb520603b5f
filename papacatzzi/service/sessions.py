from __future__ import annotations

import asyncio

from papacatzzi.logging import get_logger, hash_email
from papacatzzi.service.errors import (
    AccountNotFound,
    DependencyFailure,
    HashingError,
    InvalidCredentials,
    TokenInvalid,
)
from papacatzzi.service.guards import guard_cache, guard_store
from papacatzzi.service.passwords import CredentialHasher
from papacatzzi.service.tokens import ACCESS, REFRESH, TokenClaims, TokenIssuer, TokenPair
from papacatzzi.service.validation import validate_email
from papacatzzi.storage.models import Account

logger = get_logger(__name__)

REFRESH_DENYLIST_NAMESPACE = "denylist:refresh"
DEFAULT_ACCESS_TTL_SECONDS = 15 * 60
DEFAULT_REFRESH_TTL_SECONDS = 7 * 24 * 60 * 60


def refresh_denylist_key(jti: str) -> str:
    return f"{REFRESH_DENYLIST_NAMESPACE}:{jti}"


class SessionService:
    """Password login and the access/refresh token lifecycle."""

    def __init__(
        self,
        store,
        cache,
        hasher: CredentialHasher,
        tokens: TokenIssuer,
        *,
        access_ttl_seconds: int = DEFAULT_ACCESS_TTL_SECONDS,
        refresh_ttl_seconds: int = DEFAULT_REFRESH_TTL_SECONDS,
    ) -> None:
        self.store = guard_store(store)
        self.cache = guard_cache(cache)
        self.hasher = hasher
        self.tokens = tokens
        self.access_ttl_seconds = access_ttl_seconds
        self.refresh_ttl_seconds = refresh_ttl_seconds

    def issue_pair(self, account: Account) -> TokenPair:
        return TokenPair(
            access_token=self.tokens.issue(
                account.id, account.email, self.access_ttl_seconds, kind=ACCESS
            ),
            refresh_token=self.tokens.issue(
                account.id, account.email, self.refresh_ttl_seconds, kind=REFRESH
            ),
        )

    async def login(self, email: str, password: str) -> TokenPair:
        email = validate_email(email)
        account = await self.store.get_account_by_email(email)
        # One error for every failure so callers cannot probe which accounts exist
        if account is None or not account.is_active or not account.password_hash:
            await asyncio.to_thread(self.hasher.verify_dummy, password)
            logger.info("login_failed", email_hash=hash_email(email), reason="no_usable_account")
            raise InvalidCredentials()
        if not await asyncio.to_thread(self.hasher.verify, account.password_hash, password):
            logger.info("login_failed", email_hash=hash_email(email), reason="password_mismatch")
            raise InvalidCredentials()

        await self._maybe_rehash(account, password)
        logger.info("login_succeeded", account_id=account.id)
        return self.issue_pair(account)

    async def _maybe_rehash(self, account: Account, password: str) -> None:
        if not self.hasher.needs_rehash(account.password_hash):
            return
        try:
            digest = await asyncio.to_thread(self.hasher.hash, password)
            await self.store.update_password(account.id, digest)
        except (DependencyFailure, HashingError) as exc:
            logger.warning("password_rehash_failed", account_id=account.id, error=exc.message)
        else:
            logger.info("password_rehashed", account_id=account.id)

    async def refresh(self, refresh_token: str) -> str:
        claims = self.tokens.verify(refresh_token, kind=REFRESH)
        if await self.cache.get(refresh_denylist_key(claims.jti)) is not None:
            logger.info("refresh_rejected", account_id=claims.sub, reason="denylisted")
            raise TokenInvalid("invalid or expired token")
        account = await self.store.get_account_by_email(claims.email)
        if account is None or not account.is_active:
            raise AccountNotFound("account not found")
        if account.id != claims.sub:
            # The email now belongs to a different account
            logger.warning("refresh_rejected", account_id=claims.sub, reason="subject_mismatch")
            raise TokenInvalid("invalid or expired token")
        return self.tokens.issue(account.id, account.email, self.access_ttl_seconds, kind=ACCESS)

    def authenticate(self, access_token: str) -> TokenClaims:
        return self.tokens.verify(access_token, kind=ACCESS)

    async def logout(self, refresh_token: str) -> None:
        claims = self.tokens.verify(refresh_token, kind=REFRESH)
        remaining = max(1, claims.exp - self.tokens.now())
        await self.cache.set(refresh_denylist_key(claims.jti), "1", remaining)
        logger.info("logout", account_id=claims.sub)
