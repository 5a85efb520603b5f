import smtplib

import pytest

from papacatzzi.service.email import EmailService


class FakeSMTP:
    sent = []
    fail_with = None

    def __init__(self, host, port, timeout=None, **kwargs):
        self.host = host
        self.port = port

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def starttls(self, context=None):
        pass

    def login(self, user, password):
        pass

    def sendmail(self, sender, recipient, message):
        if FakeSMTP.fail_with is not None:
            raise FakeSMTP.fail_with
        FakeSMTP.sent.append((sender, recipient, message))


@pytest.fixture
def smtp(monkeypatch):
    FakeSMTP.sent = []
    FakeSMTP.fail_with = None
    monkeypatch.setattr(smtplib, "SMTP", FakeSMTP)
    return FakeSMTP


def _configured():
    return EmailService(
        smtp_host="smtp.example.com",
        smtp_user="mailer",
        smtp_password="pw",
        from_email="no-reply@example.com",
        code_ttl_seconds=300,
    )


def test_dev_mode_logs_instead_of_sending(smtp):
    service = EmailService()

    assert not service.is_configured
    assert service.send_verification_code("user@example.com", "123456") is True
    assert smtp.sent == []


def test_verification_code_email(smtp):
    assert _configured().send_verification_code("user@example.com", "123456") is True

    sender, recipient, message = smtp.sent[0]
    assert sender == "no-reply@example.com"
    assert recipient == "user@example.com"
    assert "123456" in message
    assert "5 minutes" in message


def test_reset_email_carries_link(smtp):
    _configured().send_templated(
        "user@example.com",
        "Reset your password",
        "password_reset",
        {"reset_url": "https://app.example.com/reset-password?token=abc", "expires_minutes": 60},
    )

    assert "https://app.example.com/reset-password?token=abc" in smtp.sent[0][2]


def test_unknown_template():
    with pytest.raises(ValueError):
        EmailService().send_templated("user@example.com", "Hi", "newsletter", {})


def test_refused_recipient_returns_false(smtp):
    smtp.fail_with = smtplib.SMTPRecipientsRefused({"user@example.com": (550, b"no such user")})

    assert _configured().send_verification_code("user@example.com", "123456") is False


def test_transport_errors_propagate(smtp):
    smtp.fail_with = smtplib.SMTPServerDisconnected("connection lost")

    with pytest.raises(smtplib.SMTPServerDisconnected):
        _configured().send_verification_code("user@example.com", "123456")


def test_redact_email():
    assert EmailService._redact_email("someone@example.com") == "so***@example.com"
    assert EmailService._redact_email("nobody") == "redacted"
