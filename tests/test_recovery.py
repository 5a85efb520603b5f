from urllib.parse import parse_qs, urlparse

import pytest

from papacatzzi.service.errors import (
    AccountNotFound,
    InvalidCredentials,
    SamePassword,
    TokenInvalid,
    ValidationError,
)
from papacatzzi.service.tokens import ACCESS, PASSWORD_RESET
from papacatzzi.storage.models import Account

EMAIL = "forgetful@example.com"
OLD_PASSWORD = "CorrectHorse42"
NEW_PASSWORD = "BatteryStaple99"


@pytest.fixture
def member(memory_store, hasher):
    return memory_store.insert_account(
        Account.new(EMAIL, username="forgetful", password_hash=hasher.hash(OLD_PASSWORD), is_active=True)
    )


async def _reset_token(auth_service, sender):
    await auth_service.forgot_password(EMAIL)
    await auth_service.notifier.drain()
    _, _, _, data = sender.templated[-1]
    return parse_qs(urlparse(data["reset_url"]).query)["token"][0]


class TestForgotPassword:
    async def test_sends_reset_link(self, auth_service, sender, member):
        assert await auth_service.forgot_password("Forgetful@Example.com") is True
        await auth_service.notifier.drain()

        recipient, subject, template_key, data = sender.templated[0]
        assert recipient == EMAIL
        assert template_key == "password_reset"
        assert subject
        assert data["reset_url"].startswith("https://app.example.com/reset-password?token=")
        assert data["expires_minutes"] == 60

        token = parse_qs(urlparse(data["reset_url"]).query)["token"][0]
        claims = auth_service.tokens.verify(token, kind=PASSWORD_RESET)
        assert claims.sub == member.id
        assert claims.exp - claims.iat == 3600

    async def test_full_queue_is_reported(self, auth_service, member):
        while auth_service.notifier.send_verification_code("filler@example.com", "000000"):
            pass

        assert await auth_service.forgot_password(EMAIL) is False

    async def test_unknown_email(self, auth_service, sender):
        with pytest.raises(AccountNotFound):
            await auth_service.forgot_password("nobody@example.com")

        await auth_service.notifier.drain()
        assert sender.templated == []


class TestResetPassword:
    async def test_reset_replaces_password(self, auth_service, sender, member):
        token = await _reset_token(auth_service, sender)

        await auth_service.reset_password(token, NEW_PASSWORD)

        pair = await auth_service.login(EMAIL, NEW_PASSWORD)
        assert auth_service.authenticate(pair.access_token).sub == member.id
        with pytest.raises(InvalidCredentials):
            await auth_service.login(EMAIL, OLD_PASSWORD)

    async def test_same_password_rejected(self, auth_service, sender, member):
        token = await _reset_token(auth_service, sender)

        with pytest.raises(SamePassword):
            await auth_service.reset_password(token, OLD_PASSWORD)

    async def test_access_token_cannot_reset(self, auth_service, member):
        access = auth_service.tokens.issue(member.id, EMAIL, 900, kind=ACCESS)

        with pytest.raises(TokenInvalid):
            await auth_service.reset_password(access, NEW_PASSWORD)

    async def test_weak_password_rejected(self, auth_service, sender, member):
        token = await _reset_token(auth_service, sender)

        with pytest.raises(ValidationError) as excinfo:
            await auth_service.reset_password(token, "short")

        assert excinfo.value.detail == {"field": "new_password"}

    async def test_token_for_replaced_account(self, auth_service, sender, member, memory_store, hasher):
        token = await _reset_token(auth_service, sender)
        memory_store.accounts.clear()
        memory_store.insert_account(
            Account.new(EMAIL, username="successor", password_hash=hasher.hash(OLD_PASSWORD), is_active=True)
        )

        with pytest.raises(TokenInvalid):
            await auth_service.reset_password(token, NEW_PASSWORD)

    async def test_account_gone(self, auth_service, sender, member, memory_store):
        token = await _reset_token(auth_service, sender)
        memory_store.accounts.clear()

        with pytest.raises(AccountNotFound):
            await auth_service.reset_password(token, NEW_PASSWORD)

    async def test_federated_account_can_set_password(self, auth_service, sender, memory_store):
        federated = memory_store.insert_account(
            Account.new(EMAIL, username="fed", federated_id="google:5", is_active=True)
        )
        token = await _reset_token(auth_service, sender)

        await auth_service.reset_password(token, NEW_PASSWORD)

        pair = await auth_service.login(EMAIL, NEW_PASSWORD)
        assert auth_service.authenticate(pair.access_token).sub == federated.id
