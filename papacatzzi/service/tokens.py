from __future__ import annotations

import base64
import hashlib
import hmac
import json
import time
import uuid
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Protocol, Tuple

from papacatzzi.config import Settings
from papacatzzi.logging import get_logger
from papacatzzi.service.errors import TokenInvalid

logger = get_logger(__name__)

ACCESS = "access"
REFRESH = "refresh"
PASSWORD_RESET = "password_reset"
TOKEN_KINDS = frozenset({ACCESS, REFRESH, PASSWORD_RESET})

_ALGORITHM = "HS256"


class KeyLookup(Protocol):
    def current(self) -> Tuple[str, str]:
        """Return ``(kid, secret)`` used to sign new tokens."""
        ...

    def lookup(self, kid: str) -> Optional[str]: ...


class StaticKeyring:
    """Fixed signing keys: one active key plus retired keys kept for verification."""

    def __init__(self, kid: str, secret: str, previous: Optional[Dict[str, str]] = None):
        if not secret:
            raise ValueError("signing secret must not be empty")
        self._kid = kid
        self._keys = dict(previous or {})
        self._keys[kid] = secret

    @classmethod
    def from_settings(cls, settings: Settings) -> "StaticKeyring":
        return cls(settings.jwt_key_id, settings.jwt_secret, settings.previous_keys())

    def current(self) -> Tuple[str, str]:
        return self._kid, self._keys[self._kid]

    def lookup(self, kid: str) -> Optional[str]:
        return self._keys.get(kid)


@dataclass(frozen=True)
class TokenClaims:
    sub: str
    email: str
    token_type: str
    jti: str
    iat: int
    exp: int
    iss: str
    aud: str


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str
    token_type: str = "bearer"


def _encode_segment(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).decode("utf-8").rstrip("=")


def _decode_segment(segment: str) -> bytes:
    padding = "=" * ((4 - len(segment) % 4) % 4)
    return base64.urlsafe_b64decode(segment + padding)


def _json_segment(data: dict[str, Any]) -> str:
    return _encode_segment(json.dumps(data, separators=(",", ":")).encode())


class TokenIssuer:
    """Issues and verifies compact HS256 tokens.

    Verification is stateless: it never touches the cache or the store. The
    ``token_type`` claim keeps access, refresh and reset tokens apart.
    """

    def __init__(
        self,
        keys: KeyLookup,
        *,
        issuer: str,
        audience: str,
        leeway_seconds: int = 0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.keys = keys
        self.issuer = issuer
        self.audience = audience
        self.leeway_seconds = leeway_seconds
        self._clock = clock

    @classmethod
    def from_settings(cls, settings: Settings) -> "TokenIssuer":
        return cls(
            StaticKeyring.from_settings(settings),
            issuer=settings.jwt_issuer,
            audience=settings.jwt_audience,
            leeway_seconds=settings.jwt_leeway_seconds,
        )

    def now(self) -> int:
        return int(self._clock())

    @staticmethod
    def _sign(secret: str, signing_input: str) -> str:
        digest = hmac.new(secret.encode(), signing_input.encode(), hashlib.sha256).digest()
        return _encode_segment(digest)

    def issue(self, account_id: str, email: str, ttl_seconds: int, *, kind: str) -> str:
        if kind not in TOKEN_KINDS:
            raise ValueError(f"unknown token kind: {kind}")
        kid, secret = self.keys.current()
        now = int(self._clock())
        payload = {
            "iss": self.issuer,
            "aud": self.audience,
            "sub": account_id,
            "email": email,
            "token_type": kind,
            "jti": str(uuid.uuid4()),
            "iat": now,
            "exp": now + int(ttl_seconds),
        }
        header = {"alg": _ALGORITHM, "typ": "JWT", "kid": kid}
        signing_input = f"{_json_segment(header)}.{_json_segment(payload)}"
        return f"{signing_input}.{self._sign(secret, signing_input)}"

    def _reject(self, reason: str, **fields: Any) -> TokenInvalid:
        logger.info("token_rejected", reason=reason, **fields)
        return TokenInvalid("invalid or expired token")

    def verify(self, token: str, *, kind: str) -> TokenClaims:
        if not isinstance(token, str):
            raise self._reject("malformed")
        parts = token.split(".")
        if len(parts) != 3:
            raise self._reject("malformed")
        header_b64, payload_b64, sig_b64 = parts

        # Pin the algorithm before touching the signature so "none" or
        # asymmetric algorithms can never be selected by the token itself
        try:
            header = json.loads(_decode_segment(header_b64))
        except (ValueError, TypeError):
            raise self._reject("header_decode_failed")
        if not isinstance(header, dict) or header.get("alg") != _ALGORITHM:
            alg = header.get("alg") if isinstance(header, dict) else None
            raise self._reject("invalid_algorithm", alg=str(alg))

        kid = header.get("kid")
        if kid is None:
            kid, _ = self.keys.current()
        secret = self.keys.lookup(kid) if isinstance(kid, str) else None
        if not secret:
            raise self._reject("unknown_kid", kid=str(kid))

        if not sig_b64.isascii():
            raise self._reject("malformed")
        expected_sig = self._sign(secret, f"{header_b64}.{payload_b64}")
        if not hmac.compare_digest(expected_sig.encode(), sig_b64.encode()):
            raise self._reject("bad_signature")

        try:
            payload = json.loads(_decode_segment(payload_b64))
        except (ValueError, TypeError):
            raise self._reject("payload_decode_failed")
        if not isinstance(payload, dict):
            raise self._reject("payload_decode_failed")

        if payload.get("iss") != self.issuer:
            raise self._reject("issuer_mismatch")
        aud = payload.get("aud")
        if isinstance(aud, list):
            valid_aud = self.audience in aud
        else:
            valid_aud = aud == self.audience
        if not valid_aud:
            raise self._reject("audience_mismatch")

        try:
            exp = int(payload["exp"])
            iat = int(payload.get("iat", 0))
        except (KeyError, TypeError, ValueError):
            raise self._reject("exp_missing")
        if exp <= self._clock() - self.leeway_seconds:
            raise self._reject("expired")

        if payload.get("token_type") != kind:
            raise self._reject("wrong_kind", token_type=str(payload.get("token_type")))

        sub = payload.get("sub")
        email = payload.get("email")
        jti = payload.get("jti")
        if not (isinstance(sub, str) and isinstance(email, str) and isinstance(jti, str)):
            raise self._reject("claims_missing")

        return TokenClaims(
            sub=sub,
            email=email,
            token_type=kind,
            jti=jti,
            iat=iat,
            exp=exp,
            iss=payload["iss"],
            aud=self.audience,
        )
