"""Tests for credential issuance and email notifications."""

import smtplib
from datetime import datetime, timedelta, timezone

import jwt
import pytest

from app.features.admins.notifications import ADMIN_CREDENTIALS, EmailNotifier, render
from app.features.users.auth import create_access_token, verify_jwt_token
from app.features.users.credentials import (
    CredentialIssuer,
    DIGITS,
    LOWERCASE,
    SPECIAL,
    UPPERCASE,
    generate_password,
    verify_password,
)


PAYLOAD = {
    "name": "Nia New",
    "organization": "Springfield High",
    "email": "nia@example.com",
    "password": "Secret123!!x",
    "admin_role": "secondary_admin",
}


class TestPasswords:
    def test_generated_password_has_every_class(self):
        password = generate_password()
        assert len(password) == 12
        for charset in (UPPERCASE, LOWERCASE, DIGITS, SPECIAL):
            assert sum(c in charset for c in password) >= 2

    @pytest.mark.parametrize("length,expected", [(4, 8), (30, 20), (16, 16)])
    def test_length_is_clamped(self, length, expected):
        assert len(generate_password(length)) == expected

    def test_hash_round_trip(self):
        issuer = CredentialIssuer(rounds=4)
        secret = issuer.generate_credential()
        hashed = issuer.hash(secret)
        assert verify_password(secret, hashed)
        assert not verify_password("wrong", hashed)

    def test_malformed_hash_does_not_verify(self):
        assert not verify_password("anything", "not-a-bcrypt-hash")


class TestTokens:
    def test_round_trip(self):
        assert verify_jwt_token(create_access_token("user-1"))["sub"] == "user-1"

    def test_token_signed_with_another_secret(self):
        token = jwt.encode({"sub": "user-1", "exp": datetime.now(timezone.utc) + timedelta(hours=1)}, "other-secret")
        assert verify_jwt_token(token) is None

    def test_expired_token(self):
        assert verify_jwt_token(create_access_token("user-1", expires_in=timedelta(seconds=-5))) is None


class FakeSMTP:
    sent = []

    def __init__(self, host, port):
        self.host = host

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def login(self, username, password):
        pass

    def send_message(self, msg):
        FakeSMTP.sent.append(msg)


class TestEmailNotifier:
    def test_render_credentials(self):
        subject, text, html = render(ADMIN_CREDENTIALS, PAYLOAD)
        assert "Springfield High" in subject
        assert "Secondary Admin" in text
        assert "Secret123!!x" in html

    def test_html_body_escapes_user_values(self):
        payload = {**PAYLOAD, "name": "<script>alert(1)</script>", "organization": "Smith & Sons <b>"}
        _, text, html = render(ADMIN_CREDENTIALS, payload)

        assert "<script>" not in html
        assert "&lt;script&gt;alert(1)&lt;/script&gt;" in html
        assert "Smith &amp; Sons &lt;b&gt;" in html
        assert "<script>alert(1)</script>" in text

    def test_unknown_template(self):
        with pytest.raises(ValueError):
            render("WELCOME", PAYLOAD)

    async def test_skipped_without_smtp_host(self, monkeypatch):
        monkeypatch.setattr("app.core.config.SMTP_HOST", None)
        assert await EmailNotifier().notify("nia@example.com", ADMIN_CREDENTIALS, PAYLOAD) is False

    async def test_sends_over_smtp(self, monkeypatch):
        FakeSMTP.sent = []
        monkeypatch.setattr(smtplib, "SMTP_SSL", FakeSMTP)
        notifier = EmailNotifier(host="smtp.example.com", sender="school@example.com")

        assert await notifier.notify("nia@example.com", ADMIN_CREDENTIALS, PAYLOAD) is True
        [msg] = FakeSMTP.sent
        assert msg["To"] == "nia@example.com"

    async def test_delivery_failure_returns_false(self, monkeypatch):
        def refuse(host, port):
            raise ConnectionRefusedError("no route")

        monkeypatch.setattr(smtplib, "SMTP_SSL", refuse)
        notifier = EmailNotifier(host="smtp.example.com")
        assert await notifier.notify("nia@example.com", ADMIN_CREDENTIALS, PAYLOAD) is False
