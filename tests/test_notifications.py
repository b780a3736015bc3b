from contextlib import contextmanager

from config import settings
from services import notification_service

from conftest import make_campaign, make_donation


def test_skipped_when_mail_is_not_configured(monkeypatch):
    monkeypatch.setattr(settings, "BREVO_API_KEY", "")
    assert notification_service.send_donation_thanks(1) is False


def test_thank_you_is_sent(db, monkeypatch):
    campaign = make_campaign(db, title="Clean water for Kota")
    donation = make_donation(db, campaign, amount=750, email="Water@Example.com")
    sent = []

    @contextmanager
    def session_context():
        yield db

    monkeypatch.setattr(settings, "BREVO_API_KEY", "test-key")
    monkeypatch.setattr(notification_service, "get_session_context", session_context)
    monkeypatch.setattr(notification_service, "send_thank_you_email", lambda **kwargs: sent.append(kwargs))

    assert notification_service.send_donation_thanks(donation.id) is True
    assert sent[0]["to_email"] == "water@example.com"
    assert sent[0]["campaign_title"] == "Clean water for Kota"
    assert sent[0]["receipt_number"] == donation.receipt_number


def test_mail_failure_is_swallowed(db, monkeypatch):
    campaign = make_campaign(db)
    donation = make_donation(db, campaign)

    @contextmanager
    def session_context():
        yield db

    def failing_send(**kwargs):
        raise Exception("Brevo error: 401")

    monkeypatch.setattr(settings, "BREVO_API_KEY", "test-key")
    monkeypatch.setattr(notification_service, "get_session_context", session_context)
    monkeypatch.setattr(notification_service, "send_thank_you_email", failing_send)

    assert notification_service.send_donation_thanks(donation.id) is False
