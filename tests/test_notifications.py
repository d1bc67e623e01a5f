from decimal import Decimal
from email import message_from_string

from app.core import email
from app.core.config import settings
from app.services.notifications import (
    ConfirmationNotice,
    EmailNotifier,
    GroupMemberLine,
    GroupReceiptNotice,
    amount_display,
    dispatch_notifications,
)
from tests.conftest import RecordingNotifier


class FakeSMTP:
    instances = []

    def __init__(self, host, port):
        self.host = host
        self.port = port
        self.messages = []
        self.started_tls = False
        FakeSMTP.instances.append(self)

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def starttls(self):
        self.started_tls = True

    def login(self, user, password):
        self.user = user

    def sendmail(self, sender, recipient, message):
        self.messages.append((sender, recipient, message))


def notice(**overrides):
    values = dict(
        to="ada@example.com",
        first_name="Ada",
        last_name="Lovelace",
        event_name="Summer Conference",
        amount=Decimal("120.00"),
        registration_id="reg-1",
        explanation_detail="Full conference (adult): $100.00 + $20.00 Late Fee. Total: $120.00",
    )
    values.update(overrides)
    return ConfirmationNotice(**values)


def test_amount_display():
    assert amount_display(Decimal("0")) == "FREE"
    assert amount_display(Decimal("12.5")) == "$12.50"


def test_sending_is_skipped_without_smtp_host(monkeypatch):
    monkeypatch.setattr(settings, "EMAIL_HOST", None)
    assert EmailNotifier().send(notice()) is False


def test_confirmation_email_goes_over_smtp(monkeypatch):
    FakeSMTP.instances = []
    monkeypatch.setattr(settings, "EMAIL_HOST", "smtp.example.com")
    monkeypatch.setattr(settings, "EMAIL_SECURE", False)
    monkeypatch.setattr(email.smtplib, "SMTP", FakeSMTP)

    assert EmailNotifier().send(notice()) is True

    [smtp] = FakeSMTP.instances
    assert smtp.started_tls is True
    [(sender, recipient, message)] = smtp.messages
    assert recipient == "ada@example.com"
    assert "Registration Confirmed - Summer Conference" in message


def test_group_receipt_lists_every_member(monkeypatch):
    FakeSMTP.instances = []
    monkeypatch.setattr(settings, "EMAIL_HOST", "smtp.example.com")
    monkeypatch.setattr(email.smtplib, "SMTP", FakeSMTP)
    members = [
        GroupMemberLine("Ada", "One", "adult", 36, Decimal("100.00"), "Full Conference", "FULL_ADULT"),
        GroupMemberLine("Byron", "One", "child", 8, Decimal("0.00"), "Partial - Motel", "PARTIAL_MOTEL_FREE"),
    ]
    receipt = GroupReceiptNotice(
        to="family@example.com",
        event_name="Summer Conference",
        primary_registration_id="reg-1",
        members=members,
        subtotal=Decimal("100.00"),
        surcharge=Decimal("20.00"),
        surcharge_label="Late Fee",
        grand_total=Decimal("120.00"),
    )

    assert EmailNotifier().send(receipt) is True

    [(_, recipient, message)] = FakeSMTP.instances[0].messages
    assert recipient == "family@example.com"
    body = message_from_string(message).get_payload()[0].get_payload(decode=True).decode("utf-8")
    assert "Byron One" in body
    assert "Late Fee: $20.00" in body


def test_dispatch_survives_a_failing_notifier():
    assert dispatch_notifications(RecordingNotifier(fail=True), [notice(), notice(to="b@example.com")]) == 2


def test_dispatch_sends_each_notice():
    notifier = RecordingNotifier()
    dispatch_notifications(notifier, [notice()])
    assert [n.to for n in notifier.sent] == ["ada@example.com"]
