from __future__ import annotations

from typing import Optional, Tuple

from papacatzzi.config import Settings
from papacatzzi.logging import get_logger
from papacatzzi.service.errors import AccountNotFound, TokenInvalid
from papacatzzi.service.guards import GuardedCache, GuardedStore
from papacatzzi.service.identity import IdentityResolver
from papacatzzi.service.notifications import NotificationDispatcher
from papacatzzi.service.oauth import OAuthClient
from papacatzzi.service.passwords import CredentialHasher
from papacatzzi.service.protocols import CodeCache, CredentialStore
from papacatzzi.service.recovery import PasswordRecovery
from papacatzzi.service.sessions import SessionService
from papacatzzi.service.signup import PendingVerification, SignUpCoordinator
from papacatzzi.service.tokens import TokenClaims, TokenIssuer, TokenPair
from papacatzzi.storage.models import Account

logger = get_logger(__name__)


class AuthService:
    """Single entry point for the boundary layer.

    Owns the collaborators and delegates each operation to the component that
    implements it. Results are returned directly; failures are raised as
    ``ServiceError`` subclasses.
    """

    def __init__(
        self,
        settings: Settings,
        store: CredentialStore,
        cache: CodeCache,
        notifier: NotificationDispatcher,
        *,
        hasher: Optional[CredentialHasher] = None,
        tokens: Optional[TokenIssuer] = None,
        oauth: Optional[OAuthClient] = None,
    ) -> None:
        self.settings = settings
        self.store = GuardedStore(store, timeout=settings.store_timeout_seconds)
        self.cache = GuardedCache(cache, timeout=settings.cache_timeout_seconds)
        self.notifier = notifier
        self.hasher = hasher or CredentialHasher.from_settings(settings)
        self.tokens = tokens or TokenIssuer.from_settings(settings)
        self.oauth = oauth or OAuthClient.from_settings(self.cache, settings)

        self.signup = SignUpCoordinator(
            self.store,
            self.cache,
            self.hasher,
            notifier,
            code_ttl_seconds=settings.signup_code_ttl_seconds,
        )
        self.sessions = SessionService(
            self.store,
            self.cache,
            self.hasher,
            self.tokens,
            access_ttl_seconds=settings.access_token_ttl_minutes * 60,
            refresh_ttl_seconds=settings.refresh_token_ttl_minutes * 60,
        )
        self.identity = IdentityResolver(
            self.store,
            self.sessions,
            username_prefix=settings.federated_username_prefix,
        )
        self.recovery = PasswordRecovery(
            self.store,
            self.hasher,
            self.tokens,
            notifier,
            base_url=settings.app_base_url,
            reset_ttl_seconds=settings.reset_token_ttl_minutes * 60,
        )

    # sign-up
    async def begin_signup(self, email: str) -> PendingVerification:
        return await self.signup.begin(email)

    async def verify_signup(self, email: str, code: str) -> None:
        await self.signup.verify_code(email, code)

    async def finish_signup(self, email: str, username: str, password: str) -> Account:
        return await self.signup.finish(email, username, password)

    async def resend_signup_code(self, email: str) -> PendingVerification:
        return await self.signup.resend_code(email)

    # sessions
    async def login(self, email: str, password: str) -> TokenPair:
        return await self.sessions.login(email, password)

    async def refresh(self, refresh_token: str) -> str:
        return await self.sessions.refresh(refresh_token)

    async def logout(self, refresh_token: str) -> None:
        await self.sessions.logout(refresh_token)

    def authenticate(self, access_token: str) -> TokenClaims:
        return self.sessions.authenticate(access_token)

    async def current_account(self, access_token: str) -> Account:
        claims = self.authenticate(access_token)
        account = await self.store.get_account_by_email(claims.email)
        if account is None or not account.is_active:
            raise AccountNotFound("account not found")
        if account.id != claims.sub:
            raise TokenInvalid("invalid or expired token")
        return account

    # federated identity
    async def federated_login(self, federated_id: str, email: str) -> Tuple[Account, TokenPair]:
        return await self.identity.resolve(federated_id, email)

    async def oauth_authorization_url(self, provider: str) -> Tuple[str, str]:
        return await self.oauth.authorization_url(provider)

    async def complete_oauth(
        self, provider: str, code: str, state: str
    ) -> Tuple[Account, TokenPair]:
        identity = await self.oauth.exchange(provider, code, state)
        return await self.federated_login(identity.federated_id, identity.email)

    # password recovery
    async def forgot_password(self, email: str) -> bool:
        return await self.recovery.forgot_password(email)

    async def reset_password(self, token: str, new_password: str) -> None:
        await self.recovery.reset_password(token, new_password)
