import pydantic
import pytest

from papacatzzi.config import Settings, get_settings, reset_settings_cache

SECRET = "x" * 40


def test_secret_required_outside_test_mode():
    with pytest.raises(pydantic.ValidationError):
        Settings(test_mode=False, jwt_secret=None)


def test_short_secret_rejected():
    with pytest.raises(pydantic.ValidationError):
        Settings(test_mode=True, jwt_secret="too-short")


def test_test_mode_generates_ephemeral_secret():
    first = Settings(test_mode=True, jwt_secret=None)
    second = Settings(test_mode=True, jwt_secret=None)

    assert len(first.jwt_secret) >= 32
    assert first.jwt_secret != second.jwt_secret


def test_csv_fields_are_parsed():
    settings = Settings(
        jwt_secret=SECRET,
        jwt_previous_secrets="old=" + "y" * 40 + ", older=" + "z" * 40,
        cors_allow_origins="https://a.example.com, https://b.example.com",
    )

    assert settings.previous_keys() == {"old": "y" * 40, "older": "z" * 40}
    assert settings.cors_allow_origins == ["https://a.example.com", "https://b.example.com"]


def test_malformed_previous_secret_rejected():
    with pytest.raises(pydantic.ValidationError):
        Settings(jwt_secret=SECRET, jwt_previous_secrets="no-separator")


def test_from_env_reads_environment(monkeypatch):
    monkeypatch.setenv("JWT_SECRET", SECRET)
    monkeypatch.setenv("TEST_MODE", "false")
    monkeypatch.setenv("SIGNUP_CODE_TTL_SECONDS", "120")
    monkeypatch.setenv("FEDERATED_USERNAME_PREFIX", "Guest")

    settings = Settings.from_env()

    assert settings.jwt_secret == SECRET
    assert settings.test_mode is False
    assert settings.signup_code_ttl_seconds == 120
    assert settings.federated_username_prefix == "Guest"


def test_from_env_reads_dotenv_file(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    monkeypatch.delenv("ACCESS_TOKEN_TTL_MINUTES", raising=False)
    (tmp_path / ".env").write_text("ACCESS_TOKEN_TTL_MINUTES=5\n")

    assert Settings.from_env().access_token_ttl_minutes == 5


def test_invalid_numbers_rejected(monkeypatch):
    monkeypatch.setenv("ACCESS_TOKEN_TTL_MINUTES", "0")

    with pytest.raises(pydantic.ValidationError):
        Settings.from_env()


def test_get_settings_is_cached_until_reset(monkeypatch):
    reset_settings_cache()
    first = get_settings()
    assert get_settings() is first

    monkeypatch.setenv("SIGNUP_CODE_TTL_SECONDS", "90")
    reset_settings_cache()

    assert get_settings().signup_code_ttl_seconds == 90
    reset_settings_cache()
