from datetime import datetime, timedelta

import pytest

from exceptions import VelocityLimitExceeded
from models import Donation
from services import velocity_guard
from services.donation_service import GuestInfo, commit_donation

from conftest import make_campaign, make_donation, make_donor

NOW = datetime(2026, 10, 19, 12, 0, 0)


def test_first_donation_is_allowed_with_sentinel(db):
    decision = velocity_guard.check(db, "198.51.100.1", NOW, by="ip")

    assert decision.allowed
    assert decision.seconds_since_last == velocity_guard.FIRST_DONATION_SENTINEL


def test_same_ip_within_interval_is_rejected(db):
    campaign = make_campaign(db)
    make_donation(db, campaign, ip_address="198.51.100.2", created_at=NOW - timedelta(seconds=10))

    decision = velocity_guard.check(db, "198.51.100.2", NOW, by="ip")

    assert not decision.allowed
    assert decision.retry_after_seconds == 20
    assert decision.seconds_since_last == 10


def test_retry_after_is_rounded_up_and_at_least_one(db):
    campaign = make_campaign(db)
    make_donation(db, campaign, ip_address="198.51.100.3", created_at=NOW - timedelta(seconds=29, milliseconds=900))

    decision = velocity_guard.check(db, "198.51.100.3", NOW, by="ip")

    assert not decision.allowed
    assert decision.retry_after_seconds == 1


def test_allowed_after_interval(db):
    campaign = make_campaign(db)
    make_donation(db, campaign, ip_address="198.51.100.4", created_at=NOW - timedelta(seconds=31))

    decision = velocity_guard.check(db, "198.51.100.4", NOW, by="ip")

    assert decision.allowed
    assert decision.seconds_since_last == 31


def test_donor_key_ignores_other_donors(db):
    campaign = make_campaign(db)
    first = make_donor(db, email="a@example.com")
    second = make_donor(db, email="b@example.com")
    make_donation(db, campaign, donor=first, created_at=NOW - timedelta(seconds=5))

    assert not velocity_guard.check(db, first.id, NOW, by="donor").allowed
    assert velocity_guard.check(db, second.id, NOW, by="donor").allowed


def test_unknown_actor_type_is_rejected(db):
    with pytest.raises(ValueError):
        velocity_guard.check(db, "x", NOW, by="email")


def test_guest_commit_from_same_ip_is_throttled(db):
    campaign = make_campaign(db)
    ip = "198.51.100.9"
    commit_donation(
        db, campaign.id, 250, guest=GuestInfo(name="Meera", email="meera@example.com"),
        ip_address=ip, now=NOW,
    )
    db.commit()

    with pytest.raises(VelocityLimitExceeded) as excinfo:
        commit_donation(
            db, campaign.id, 300, guest=GuestInfo(name="Other", email="other@example.com"),
            ip_address=ip, now=NOW + timedelta(seconds=12),
        )
    db.rollback()

    assert excinfo.value.details["retryAfterSeconds"] == 18
    assert db.query(Donation).count() == 1

    later = commit_donation(
        db, campaign.id, 300, guest=GuestInfo(name="Other", email="other@example.com"),
        ip_address=ip, now=NOW + timedelta(seconds=31),
    )
    db.commit()
    assert later.time_since_last_donation == 31
