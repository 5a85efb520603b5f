from __future__ import annotations

import secrets
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple
from urllib.parse import urlencode

import httpx

from papacatzzi.config import Settings
from papacatzzi.logging import get_logger
from papacatzzi.service.errors import DependencyFailure, ValidationError
from papacatzzi.service.guards import guard_cache

logger = get_logger(__name__)

OAUTH_PROVIDERS: Dict[str, Dict[str, str]] = {
    "google": {
        "auth_url": "https://accounts.google.com/o/oauth2/v2/auth",
        "token_url": "https://oauth2.googleapis.com/token",
        "userinfo_url": "https://www.googleapis.com/oauth2/v2/userinfo",
        "scope": "openid email",
    },
    "github": {
        "auth_url": "https://github.com/login/oauth/authorize",
        "token_url": "https://github.com/login/oauth/access_token",
        "userinfo_url": "https://api.github.com/user",
        "emails_url": "https://api.github.com/user/emails",
        "scope": "read:user user:email",
    },
}

OAUTH_STATE_NAMESPACE = "oauth:state"
OAUTH_STATE_TTL_SECONDS = 10 * 60
DEFAULT_HTTP_TIMEOUT = 10.0


@dataclass(frozen=True)
class FederatedIdentity:
    provider: str
    subject: str
    email: str

    @property
    def federated_id(self) -> str:
        # Qualified so equal subject ids from two providers never collide
        return f"{self.provider}:{self.subject}"


class OAuthClient:
    """Authorization-code round trip against Google and GitHub."""

    def __init__(
        self,
        cache,
        *,
        credentials: Dict[str, Tuple[Optional[str], Optional[str]]],
        redirect_uri: Optional[str],
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: float = DEFAULT_HTTP_TIMEOUT,
    ) -> None:
        self.cache = guard_cache(cache)
        self.credentials = credentials
        self.redirect_uri = redirect_uri
        self.timeout = timeout
        self._http_client = http_client

    @classmethod
    def from_settings(cls, cache, settings: Settings, **kwargs: Any) -> "OAuthClient":
        return cls(
            cache,
            credentials={
                "google": (settings.oauth_google_client_id, settings.oauth_google_client_secret),
                "github": (settings.oauth_github_client_id, settings.oauth_github_client_secret),
            },
            redirect_uri=settings.oauth_redirect_uri,
            **kwargs,
        )

    def _provider(self, provider: str) -> Tuple[Dict[str, str], str, str, str]:
        config = OAUTH_PROVIDERS.get(provider)
        if config is None:
            raise ValidationError(
                f"unsupported oauth provider: {provider}", detail={"field": "provider"}
            )
        client_id, client_secret = self.credentials.get(provider, (None, None))
        if not client_id or not client_secret or not self.redirect_uri:
            logger.warning("oauth_not_configured", provider=provider)
            raise ValidationError(
                f"oauth provider {provider} is not configured", detail={"field": "provider"}
            )
        return config, client_id, client_secret, self._callback_uri(provider)

    def _callback_uri(self, provider: str) -> str:
        # OAUTH_REDIRECT_URI may carry a {provider} placeholder
        return self.redirect_uri.replace("{provider}", provider)

    async def authorization_url(self, provider: str) -> Tuple[str, str]:
        """Return ``(url, state)``. The state is stored for single use."""
        config, client_id, _, callback_uri = self._provider(provider)
        state = secrets.token_urlsafe(32)
        await self.cache.set(f"{OAUTH_STATE_NAMESPACE}:{state}", provider, OAUTH_STATE_TTL_SECONDS)
        params = {
            "client_id": client_id,
            "redirect_uri": callback_uri,
            "response_type": "code",
            "scope": config["scope"],
            "state": state,
        }
        return f"{config['auth_url']}?{urlencode(params)}", state

    async def exchange(self, provider: str, code: str, state: str) -> FederatedIdentity:
        config, client_id, client_secret, callback_uri = self._provider(provider)
        if not code or not state:
            raise ValidationError("missing oauth code or state")
        stored = await self.cache.pop(f"{OAUTH_STATE_NAMESPACE}:{state}")
        if stored != provider:
            logger.warning("oauth_state_invalid", provider=provider)
            raise ValidationError("invalid or expired oauth state", detail={"field": "state"})

        try:
            if self._http_client is not None:
                return await self._exchange(
                    self._http_client, provider, config, client_id, client_secret, callback_uri, code
                )
            async with httpx.AsyncClient(timeout=self.timeout, follow_redirects=False) as client:
                return await self._exchange(
                    client, provider, config, client_id, client_secret, callback_uri, code
                )
        except httpx.HTTPError as exc:
            logger.error(
                "oauth_exchange_error",
                provider=provider,
                error=str(exc),
                error_type=type(exc).__name__,
            )
            raise DependencyFailure(f"oauth:{provider}", "exchange", cause=exc) from exc

    async def _exchange(
        self,
        client: httpx.AsyncClient,
        provider: str,
        config: Dict[str, str],
        client_id: str,
        client_secret: str,
        callback_uri: str,
        code: str,
    ) -> FederatedIdentity:
        token_response = await client.post(
            config["token_url"],
            data={
                "client_id": client_id,
                "client_secret": client_secret,
                "code": code,
                "redirect_uri": callback_uri,
                "grant_type": "authorization_code",
            },
            headers={"Accept": "application/json"},
        )
        token_result = self._json(provider, token_response, "token")
        access_token = token_result.get("access_token")
        if not access_token:
            logger.warning("oauth_no_access_token", provider=provider)
            raise ValidationError("authorization code was rejected by the provider")

        headers = {"Authorization": f"Bearer {access_token}"}
        if provider == "github":
            headers["Accept"] = "application/vnd.github+json"
        userinfo = self._json(provider, await client.get(config["userinfo_url"], headers=headers), "userinfo")

        subject = userinfo.get("id")
        email = userinfo.get("email")
        if provider == "google" and userinfo.get("verified_email") is False:
            email = None
        if provider == "github" and not email:
            email = await self._github_primary_email(client, config, headers)
        if subject in (None, ""):
            raise ValidationError("provider did not return a subject id")
        if not email:
            logger.warning("oauth_identity_missing_email", provider=provider)
            raise ValidationError("provider did not return a verified email")

        logger.info("oauth_exchange_success", provider=provider)
        return FederatedIdentity(provider=provider, subject=str(subject), email=email)

    async def _github_primary_email(
        self, client: httpx.AsyncClient, config: Dict[str, str], headers: Dict[str, str]
    ) -> Optional[str]:
        response = await client.get(config["emails_url"], headers=headers)
        if response.status_code != 200:
            return None
        emails = response.json()
        if not isinstance(emails, list):
            return None
        return next(
            (e.get("email") for e in emails if e.get("primary") and e.get("verified")),
            None,
        )

    @staticmethod
    def _json(provider: str, response: httpx.Response, step: str) -> Dict[str, Any]:
        if response.status_code >= 500:
            response.raise_for_status()
        if response.status_code >= 400:
            logger.warning(
                "oauth_provider_rejected", provider=provider, step=step, status_code=response.status_code
            )
            raise ValidationError(f"oauth {step} request was rejected by the provider")
        try:
            payload = response.json()
        except ValueError as exc:
            raise httpx.DecodingError(f"invalid {step} response", request=response.request) from exc
        if not isinstance(payload, dict):
            raise httpx.DecodingError(f"invalid {step} response", request=response.request)
        return payload
