"""Unit tests for token issuing and verification."""

import base64
import json

import pytest

from papacatzzi.service.errors import TokenInvalid
from papacatzzi.service.tokens import (
    ACCESS,
    PASSWORD_RESET,
    REFRESH,
    StaticKeyring,
    TokenIssuer,
)

from conftest import FakeClock, TEST_JWT_SECRET


def _segment(data: dict) -> str:
    return base64.urlsafe_b64encode(json.dumps(data).encode()).decode().rstrip("=")


def _decode(segment: str) -> dict:
    return json.loads(base64.urlsafe_b64decode(segment + "=" * (-len(segment) % 4)))


@pytest.fixture
def token_clock():
    return FakeClock()


@pytest.fixture
def issuer(token_clock):
    return TokenIssuer(
        StaticKeyring("k1", TEST_JWT_SECRET),
        issuer="papacatzzi",
        audience="papacatzzi-clients",
        clock=token_clock,
    )


class TestIssue:
    def test_claims_round_trip(self, issuer, token_clock):
        token = issuer.issue("acct-1", "user@example.com", 900, kind=ACCESS)

        claims = issuer.verify(token, kind=ACCESS)

        assert claims.sub == "acct-1"
        assert claims.email == "user@example.com"
        assert claims.token_type == ACCESS
        assert claims.iat == int(token_clock.now)
        assert claims.exp - claims.iat == 900
        assert claims.iss == "papacatzzi"
        assert claims.aud == "papacatzzi-clients"

    def test_header_names_algorithm_and_key(self, issuer):
        token = issuer.issue("acct-1", "user@example.com", 60, kind=ACCESS)

        header = _decode(token.split(".")[0])

        assert header == {"alg": "HS256", "typ": "JWT", "kid": "k1"}

    def test_each_token_gets_a_unique_jti(self, issuer):
        first = issuer.issue("acct-1", "user@example.com", 60, kind=REFRESH)
        second = issuer.issue("acct-1", "user@example.com", 60, kind=REFRESH)

        assert issuer.verify(first, kind=REFRESH).jti != issuer.verify(second, kind=REFRESH).jti

    def test_unknown_kind_is_rejected(self, issuer):
        with pytest.raises(ValueError):
            issuer.issue("acct-1", "user@example.com", 60, kind="session")


class TestVerify:
    def test_kinds_are_not_interchangeable(self, issuer):
        access = issuer.issue("acct-1", "user@example.com", 60, kind=ACCESS)
        refresh = issuer.issue("acct-1", "user@example.com", 60, kind=REFRESH)

        with pytest.raises(TokenInvalid):
            issuer.verify(access, kind=REFRESH)
        with pytest.raises(TokenInvalid):
            issuer.verify(refresh, kind=ACCESS)
        with pytest.raises(TokenInvalid):
            issuer.verify(access, kind=PASSWORD_RESET)

    def test_expired_token_is_rejected(self, issuer, token_clock):
        token = issuer.issue("acct-1", "user@example.com", 60, kind=ACCESS)

        token_clock.advance(59)
        issuer.verify(token, kind=ACCESS)
        token_clock.advance(1)
        with pytest.raises(TokenInvalid):
            issuer.verify(token, kind=ACCESS)

    def test_negative_ttl_is_already_expired(self, issuer):
        token = issuer.issue("acct-1", "user@example.com", -1, kind=ACCESS)

        with pytest.raises(TokenInvalid):
            issuer.verify(token, kind=ACCESS)

    def test_leeway_extends_acceptance(self, token_clock):
        lenient = TokenIssuer(
            StaticKeyring("k1", TEST_JWT_SECRET),
            issuer="papacatzzi",
            audience="papacatzzi-clients",
            leeway_seconds=30,
            clock=token_clock,
        )
        token = lenient.issue("acct-1", "user@example.com", 60, kind=ACCESS)

        token_clock.advance(80)

        assert lenient.verify(token, kind=ACCESS).sub == "acct-1"

    def test_alg_none_is_rejected(self, issuer):
        token = issuer.issue("acct-1", "user@example.com", 60, kind=ACCESS)
        _, payload, _ = token.split(".")
        forged = f"{_segment({'alg': 'none', 'typ': 'JWT'})}.{payload}."

        with pytest.raises(TokenInvalid):
            issuer.verify(forged, kind=ACCESS)

    def test_tampered_payload_is_rejected(self, issuer):
        token = issuer.issue("acct-1", "user@example.com", 60, kind=ACCESS)
        header, payload, signature = token.split(".")
        claims = _decode(payload)
        claims["sub"] = "acct-2"

        with pytest.raises(TokenInvalid):
            issuer.verify(f"{header}.{_segment(claims)}.{signature}", kind=ACCESS)

    @pytest.mark.parametrize("token", ["", "abc", "a.b", "a.b.c.d", "!!!.???.***"])
    def test_malformed_tokens_are_rejected(self, issuer, token):
        with pytest.raises(TokenInvalid):
            issuer.verify(token, kind=ACCESS)

    @pytest.mark.parametrize("signature", ["éé", "é", "sig "])
    def test_non_ascii_signature_is_rejected(self, issuer, signature):
        header, payload, _ = issuer.issue("acct-1", "user@example.com", 60, kind=REFRESH).split(".")

        with pytest.raises(TokenInvalid):
            issuer.verify(f"{header}.{payload}.{signature}", kind=REFRESH)

    def test_issuer_and_audience_must_match(self, issuer, token_clock):
        other = TokenIssuer(
            StaticKeyring("k1", TEST_JWT_SECRET),
            issuer="someone-else",
            audience="papacatzzi-clients",
            clock=token_clock,
        )
        foreign_aud = TokenIssuer(
            StaticKeyring("k1", TEST_JWT_SECRET),
            issuer="papacatzzi",
            audience="another-app",
            clock=token_clock,
        )

        with pytest.raises(TokenInvalid):
            issuer.verify(other.issue("acct-1", "user@example.com", 60, kind=ACCESS), kind=ACCESS)
        with pytest.raises(TokenInvalid):
            issuer.verify(
                foreign_aud.issue("acct-1", "user@example.com", 60, kind=ACCESS), kind=ACCESS
            )


class TestKeyring:
    def test_previous_key_still_verifies(self, token_clock):
        old = TokenIssuer(
            StaticKeyring("k0", "retired-secret-retired-secret-0000"),
            issuer="papacatzzi",
            audience="papacatzzi-clients",
            clock=token_clock,
        )
        rotated = TokenIssuer(
            StaticKeyring(
                "k1", TEST_JWT_SECRET, previous={"k0": "retired-secret-retired-secret-0000"}
            ),
            issuer="papacatzzi",
            audience="papacatzzi-clients",
            clock=token_clock,
        )
        token = old.issue("acct-1", "user@example.com", 60, kind=ACCESS)

        assert rotated.verify(token, kind=ACCESS).sub == "acct-1"
        # New tokens are signed with the active key
        fresh = rotated.issue("acct-1", "user@example.com", 60, kind=ACCESS)
        assert _decode(fresh.split(".")[0])["kid"] == "k1"

    def test_unknown_key_id_is_rejected(self, issuer, token_clock):
        stranger = TokenIssuer(
            StaticKeyring("k9", "some-other-secret-some-other-secret"),
            issuer="papacatzzi",
            audience="papacatzzi-clients",
            clock=token_clock,
        )

        with pytest.raises(TokenInvalid):
            issuer.verify(stranger.issue("acct-1", "user@example.com", 60, kind=ACCESS), kind=ACCESS)

    def test_keyring_from_settings(self, settings):
        configured = settings.model_copy(
            update={"jwt_key_id": "main", "jwt_previous_secrets": ["old=legacy-secret"]}
        )

        keyring = StaticKeyring.from_settings(configured)

        assert keyring.current() == ("main", TEST_JWT_SECRET)
        assert keyring.lookup("old") == "legacy-secret"
        assert keyring.lookup("missing") is None

    def test_same_kid_different_secret_is_rejected(self, issuer, token_clock):
        impostor = TokenIssuer(
            StaticKeyring("k1", "an-entirely-different-signing-secret"),
            issuer="papacatzzi",
            audience="papacatzzi-clients",
            clock=token_clock,
        )

        with pytest.raises(TokenInvalid):
            issuer.verify(impostor.issue("acct-1", "user@example.com", 60, kind=ACCESS), kind=ACCESS)
