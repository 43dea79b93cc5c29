import smtplib

import pytest

from eventhub import email_service
from eventhub.config import settings
from eventhub.email_service import OutgoingEmail, deliver


class FakeSMTP:
    sent = []
    failures_left = 0

    def __init__(self, host, port, timeout=None):
        self.host = host
        self.port = port

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        return False

    def starttls(self):
        pass

    def login(self, username, password):
        pass

    def send_message(self, message):
        if FakeSMTP.failures_left > 0:
            FakeSMTP.failures_left -= 1
            raise smtplib.SMTPServerDisconnected("connection dropped")
        FakeSMTP.sent.append(message)


@pytest.fixture()
def smtp(monkeypatch):
    FakeSMTP.sent = []
    FakeSMTP.failures_left = 0
    monkeypatch.setattr(settings, "email_enabled", True)
    monkeypatch.setattr(settings, "smtp_host", "smtp.test")
    monkeypatch.setattr(settings, "smtp_sender", "hub@test.ro")
    monkeypatch.setattr(settings, "smtp_use_tls", False)
    monkeypatch.setattr(email_service.smtplib, "SMTP", FakeSMTP)
    monkeypatch.setattr(email_service.time, "sleep", lambda seconds: None)
    return FakeSMTP


def test_disabled_email_is_skipped(monkeypatch):
    monkeypatch.setattr(settings, "email_enabled", False)
    assert deliver(OutgoingEmail("a@test.ro", "Hi", "Body")) is False


def test_deliver_builds_multipart_message(smtp):
    assert deliver(OutgoingEmail("a@test.ro", "Hi", "Plain body", "<p>Html body</p>")) is True
    message = smtp.sent[0]
    assert message["To"] == "a@test.ro"
    assert message["From"] == "hub@test.ro"
    assert message.is_multipart()


def test_deliver_retries_then_gives_up(smtp, monkeypatch):
    monkeypatch.setattr(settings, "smtp_max_attempts", 3)
    smtp.failures_left = 2
    assert deliver(OutgoingEmail("a@test.ro", "Hi", "Body")) is True
    assert len(smtp.sent) == 1

    smtp.failures_left = 5
    failed_before = email_service.delivery_stats["failed"]
    assert deliver(OutgoingEmail("a@test.ro", "Hi", "Body")) is False
    assert email_service.delivery_stats["failed"] == failed_before + 1


def test_registration_and_cancellation_send_emails(helpers, smtp):
    client = helpers["client"]
    admin = helpers["admin_token"]()
    event = helpers["create_event"](admin, title="Board Games")
    headers = helpers["auth_header"](helpers["register_user"]("player@test.ro"))

    assert client.post(f"/api/events/{event['id']}/register", headers=headers).status_code == 201
    assert client.delete(f"/api/events/{event['id']}/register", headers=headers).status_code == 200

    subjects = [message["Subject"] for message in smtp.sent]
    assert subjects == ["Registration confirmed: Board Games", "Registration cancelled: Board Games"]
    assert all(message["To"] == "player@test.ro" for message in smtp.sent)
