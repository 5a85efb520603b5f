from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Cookie, Depends, Header, Path, Query, Response

from papacatzzi.api.schemas import (
    AccountResponse,
    AuthResponse,
    Envelope,
    ForgotPasswordRequest,
    LoginRequest,
    OAuthStartResponse,
    PendingVerificationResponse,
    RefreshRequest,
    ResetPasswordRequest,
    SignupBeginRequest,
    SignupFinishRequest,
    SignupResendRequest,
    SignupVerifyRequest,
    TokenResponse,
)
from papacatzzi.service.errors import TokenInvalid
from papacatzzi.service.runtime import Runtime, get_runtime
from papacatzzi.service.signup import PendingVerification
from papacatzzi.service.tokens import TokenPair
from papacatzzi.storage.models import Account

router = APIRouter(prefix="/v1")

REFRESH_COOKIE = "refresh_token"


def _runtime() -> Runtime:
    return get_runtime()


def _bearer_token(authorization: Optional[str] = Header(None)) -> str:
    if not authorization:
        raise TokenInvalid("missing bearer token")
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise TokenInvalid("malformed authorization header")
    return token.strip()


def _account_response(account: Account) -> AccountResponse:
    return AccountResponse(**account.public_dict())


def _token_response(runtime: Runtime, pair: TokenPair) -> TokenResponse:
    return TokenResponse(
        access_token=pair.access_token,
        refresh_token=pair.refresh_token,
        token_type=pair.token_type,
        expires_in=runtime.settings.access_token_ttl_minutes * 60,
    )


def _pending_response(pending: PendingVerification) -> PendingVerificationResponse:
    return PendingVerificationResponse(
        email=pending.email,
        expires_in=pending.expires_in,
        delivery_queued=pending.delivery_queued,
    )


def _apply_refresh_cookie(response: Response, runtime: Runtime, refresh_token: str) -> None:
    response.set_cookie(
        REFRESH_COOKIE,
        refresh_token,
        httponly=True,
        secure=True,
        samesite="lax",
        max_age=runtime.settings.refresh_token_ttl_minutes * 60,
        path="/v1/auth",
    )


def _resolve_refresh_token(body: Optional[RefreshRequest], cookie: Optional[str]) -> str:
    token = (body.refresh_token if body else None) or cookie
    if not token:
        raise TokenInvalid("missing refresh token")
    return token


@router.post("/auth/signup/begin", response_model=Envelope, status_code=202, tags=["auth"])
async def signup_begin(body: SignupBeginRequest, runtime: Runtime = Depends(_runtime)):
    """Start sign-up by emailing a six digit verification code."""
    pending = await runtime.auth.begin_signup(body.email)
    return Envelope(status="ok", data=_pending_response(pending))


@router.post("/auth/signup/verify", response_model=Envelope, tags=["auth"])
async def signup_verify(body: SignupVerifyRequest, runtime: Runtime = Depends(_runtime)):
    await runtime.auth.verify_signup(body.email, body.code)
    return Envelope(status="ok", data={"email": body.email.strip().lower(), "verified": True})


@router.post("/auth/signup/finish", response_model=Envelope, status_code=201, tags=["auth"])
async def signup_finish(body: SignupFinishRequest, runtime: Runtime = Depends(_runtime)):
    """Create the account once the email has been verified."""
    account = await runtime.auth.finish_signup(body.email, body.username, body.password)
    return Envelope(status="ok", data=_account_response(account))


@router.post("/auth/signup/resend", response_model=Envelope, status_code=202, tags=["auth"])
async def signup_resend(body: SignupResendRequest, runtime: Runtime = Depends(_runtime)):
    pending = await runtime.auth.resend_signup_code(body.email)
    return Envelope(status="ok", data=_pending_response(pending))


@router.post("/auth/login", response_model=Envelope, tags=["auth"])
async def login(body: LoginRequest, response: Response, runtime: Runtime = Depends(_runtime)):
    """Authenticate with email and password.

    Returns an access/refresh token pair and sets the refresh token cookie.

    Raises:
        401: If credentials are invalid
    """
    pair = await runtime.auth.login(body.email, body.password)
    _apply_refresh_cookie(response, runtime, pair.refresh_token)
    return Envelope(status="ok", data=_token_response(runtime, pair))


@router.post("/auth/refresh", response_model=Envelope, tags=["auth"])
async def refresh(
    body: Optional[RefreshRequest] = None,
    refresh_cookie: Optional[str] = Cookie(None, alias=REFRESH_COOKIE),
    runtime: Runtime = Depends(_runtime),
):
    """Exchange a refresh token (body or cookie) for a new access token."""
    access_token = await runtime.auth.refresh(_resolve_refresh_token(body, refresh_cookie))
    return Envelope(
        status="ok",
        data=TokenResponse(
            access_token=access_token,
            expires_in=runtime.settings.access_token_ttl_minutes * 60,
        ),
    )


@router.post("/auth/logout", response_model=Envelope, tags=["auth"])
async def logout(
    response: Response,
    body: Optional[RefreshRequest] = None,
    refresh_cookie: Optional[str] = Cookie(None, alias=REFRESH_COOKIE),
    runtime: Runtime = Depends(_runtime),
):
    await runtime.auth.logout(_resolve_refresh_token(body, refresh_cookie))
    response.delete_cookie(REFRESH_COOKIE, path="/v1/auth")
    return Envelope(status="ok", data={"logged_out": True})


@router.post("/auth/password/forgot", response_model=Envelope, status_code=202, tags=["auth"])
async def forgot_password(body: ForgotPasswordRequest, runtime: Runtime = Depends(_runtime)):
    queued = await runtime.auth.forgot_password(body.email)
    return Envelope(status="ok", data={"sent": queued})


@router.post("/auth/password/reset", response_model=Envelope, tags=["auth"])
async def reset_password(body: ResetPasswordRequest, runtime: Runtime = Depends(_runtime)):
    await runtime.auth.reset_password(body.token, body.new_password)
    return Envelope(status="ok", data={"reset": True})


@router.get("/auth/oauth/{provider}/start", response_model=Envelope, tags=["auth"])
async def oauth_start(
    provider: str = Path(..., max_length=32, description="OAuth provider (google, github)"),
    runtime: Runtime = Depends(_runtime),
):
    """Return the provider authorization URL the client should redirect to."""
    url, state = await runtime.auth.oauth_authorization_url(provider)
    return Envelope(
        status="ok",
        data=OAuthStartResponse(authorization_url=url, state=state, provider=provider),
    )


@router.get("/auth/oauth/{provider}/callback", response_model=Envelope, tags=["auth"])
async def oauth_callback(
    response: Response,
    provider: str = Path(..., max_length=32),
    code: str = Query(..., max_length=512, description="Authorization code from the provider"),
    state: str = Query(..., max_length=128, description="State issued by the start endpoint"),
    runtime: Runtime = Depends(_runtime),
):
    account, pair = await runtime.auth.complete_oauth(provider, code, state)
    _apply_refresh_cookie(response, runtime, pair.refresh_token)
    return Envelope(
        status="ok",
        data=AuthResponse(
            account=_account_response(account),
            tokens=_token_response(runtime, pair),
        ),
    )


@router.get("/auth/me", response_model=Envelope, tags=["auth"])
async def me(token: str = Depends(_bearer_token), runtime: Runtime = Depends(_runtime)):
    account = await runtime.auth.current_account(token)
    return Envelope(status="ok", data=_account_response(account))

