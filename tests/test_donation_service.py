import re
from datetime import datetime, timedelta
from decimal import Decimal

import pytest

from exceptions import DonorBlocked, InvalidDonationRequest, WalletNotFound
from models import Donation, DonationAdminAction
from models.donation import COMMITMENT_METHOD, PaymentStatus
from services import donation_service, wallet_service
from services.donation_service import GuestInfo, commit_donation, update_donation_status
from services.settlement_service import create_order, verify_payment
from services.wallet_service import LedgerError

from conftest import make_campaign, make_donation, make_donor

NOW = datetime(2026, 10, 19, 12, 0, 0)


def _pledge(db, campaign, donor=None, amount=500, now=NOW, ip="10.40.0.1"):
    guest = None if donor else GuestInfo(name="Guest Donor", email="Guest@Example.com", phone="12345")
    donation = commit_donation(db, campaign.id, amount, donor=donor, guest=guest, ip_address=ip, now=now)
    db.commit()
    return donation


@pytest.mark.parametrize(
    "amount, expected_fee, expected_net",
    [
        (500, Decimal("10.00"), Decimal("490.00")),
        (1, Decimal("0.02"), Decimal("0.98")),
        (333, Decimal("6.66"), Decimal("326.34")),
        (1_000_000, Decimal("20000.00"), Decimal("980000.00")),
    ],
)
def test_fee_is_two_percent(amount, expected_fee, expected_net):
    fee, net = donation_service.compute_fee(amount)

    assert fee == expected_fee
    assert net == expected_net
    assert fee + net == amount


@pytest.mark.parametrize("amount", [None, 0, -5, 1_000_001, 10.5, "abc", "NaN", True])
def test_invalid_amounts_are_rejected(amount):
    with pytest.raises(InvalidDonationRequest):
        donation_service.validate_amount(amount)


def test_validate_amount_accepts_whole_numbers():
    assert donation_service.validate_amount("250") == 250
    assert donation_service.validate_amount(1_000_000) == 1_000_000


def test_donor_commitment_counts_toward_goal(db):
    campaign = make_campaign(db)
    donor = make_donor(db)

    donation = _pledge(db, campaign, donor=donor)

    assert donation.payment_status == PaymentStatus.PENDING
    assert donation.payment_method == COMMITMENT_METHOD
    assert donation.donor_id == donor.id
    assert re.match(r"^RCP-[0-9A-Z]+-[0-9A-Z]{4}$", donation.receipt_number)
    assert donation.net_amount == Decimal("490.00")
    assert donation.time_since_last_donation == 999_999
    db.refresh(campaign)
    assert campaign.raised_amount == Decimal("500")
    assert campaign.contributors == 0


def test_guest_commitment_normalizes_email(db):
    campaign = make_campaign(db)

    donation = _pledge(db, campaign)

    assert donation.donor_id is None
    assert donation.donor_email == "guest@example.com"
    assert donation.donor_phone == "12345"


def test_guest_commitment_requires_contact_details(db):
    campaign = make_campaign(db)

    with pytest.raises(InvalidDonationRequest):
        commit_donation(db, campaign.id, 100, guest=GuestInfo(name="", email="x@example.com"), now=NOW)
    with pytest.raises(InvalidDonationRequest):
        commit_donation(db, campaign.id, 100, now=NOW)


def test_blocked_donor_cannot_pledge(db):
    campaign = make_campaign(db)
    donor = make_donor(db, blocked=True)

    with pytest.raises(DonorBlocked):
        _pledge(db, campaign, donor=donor)
    assert db.query(Donation).count() == 0


def test_approving_commitment_credits_wallet(db):
    campaign = make_campaign(db)
    donor = make_donor(db)
    donation = _pledge(db, campaign, donor=donor)

    donation, entry = update_donation_status(db, donation.id, admin_id=1, payment_received=True, now=NOW)
    db.commit()

    assert donation.payment_status == PaymentStatus.SUCCESS
    assert donation.payment_received
    assert donation.payment_received_at == NOW
    assert donation.admin_verified
    assert donation.wallet_transaction_id is not None
    assert entry.action == "approved"
    assert "has been verified" in entry.message

    db.refresh(campaign)
    assert campaign.raised_amount == Decimal("500")
    assert campaign.contributors == 1
    assert wallet_service.get_wallet(db, campaign.id).balance == Decimal("490.00")
    db.refresh(donor)
    assert donor.total_donations == 1


def test_rejecting_commitment_reverses_raised_amount(db):
    campaign = make_campaign(db)
    donation = _pledge(db, campaign, amount=800)

    with pytest.raises(InvalidDonationRequest):
        update_donation_status(db, donation.id, admin_id=1, admin_rejected=True, now=NOW)

    donation, entry = update_donation_status(
        db, donation.id, admin_id=1, admin_rejected=True, rejection_reason="No transfer received", now=NOW
    )
    db.commit()

    assert donation.payment_status == PaymentStatus.FAILED
    assert donation.admin_rejected
    assert donation.rejection_reason == "No transfer received"
    assert entry.action == "rejected"
    assert "No transfer received" in entry.message
    db.refresh(campaign)
    assert campaign.raised_amount == Decimal("0")
    assert wallet_service.get_wallet(db, campaign.id) is None


def test_terminal_donations_cannot_change_status(db):
    campaign = make_campaign(db)
    donation = _pledge(db, campaign)
    update_donation_status(db, donation.id, admin_id=1, payment_status=PaymentStatus.CANCELLED, now=NOW)
    db.commit()

    with pytest.raises(InvalidDonationRequest):
        update_donation_status(db, donation.id, admin_id=1, payment_status=PaymentStatus.SUCCESS, now=NOW)


def test_gateway_donation_cannot_be_marked_success_by_admin(db, gateway):
    campaign = make_campaign(db)
    donor = make_donor(db)
    donation = create_order(db, campaign.id, 700, donor, gateway, ip_address="10.40.0.2", now=NOW).donation

    with pytest.raises(InvalidDonationRequest):
        update_donation_status(db, donation.id, admin_id=1, payment_status=PaymentStatus.SUCCESS, now=NOW)


def test_review_notes_only_update_is_audited(db):
    campaign = make_campaign(db)
    donation = _pledge(db, campaign)

    donation, entry = update_donation_status(db, donation.id, admin_id=3, review_notes="Called donor", now=NOW)
    db.commit()

    assert donation.payment_status == PaymentStatus.PENDING
    assert donation.review_notes == "Called donor"
    assert entry.action == "updated"
    assert db.query(DonationAdminAction).count() == 1


def test_flag_and_mark_viewed(db):
    campaign = make_campaign(db)
    donation = _pledge(db, campaign)

    flagged = donation_service.flag_donation(db, donation.id, "Card testing pattern", admin_id=1, now=NOW)
    db.commit()

    assert flagged.is_suspicious
    assert "Card testing pattern" in flagged.suspicious_reason
    action = db.query(DonationAdminAction).filter_by(donation_id=donation.id).one()
    assert not action.viewed

    assert donation_service.mark_admin_action_viewed(db, donation.id, action.id)
    assert not donation_service.mark_admin_action_viewed(db, donation.id, action.id + 100)
    db.commit()
    db.refresh(action)
    assert action.viewed


def test_refund_of_gateway_donation(db, gateway):
    campaign = make_campaign(db)
    donor = make_donor(db)
    donation = create_order(db, campaign.id, 1000, donor, gateway, ip_address="10.40.0.3", now=NOW).donation
    verify_payment(db, donation.order_id, "pay_r1", gateway.sign(donation.order_id, "pay_r1"), donation.id, gateway)

    donation, result = donation_service.refund_donation(
        db, donation.id, admin_id=1, reason="Donor request", gateway=gateway, now=NOW
    )
    db.commit()

    assert result.ok
    assert donation.payment_status == PaymentStatus.REFUNDED
    assert donation.refunded
    assert donation.refund_amount == Decimal("980.00")
    assert donation.refunded_at == NOW
    assert gateway.refunds[0]["payment_id"] == "pay_r1"
    assert gateway.refunds[0]["amount"] == pytest.approx(980.0)
    wallet = wallet_service.get_wallet(db, campaign.id)
    assert wallet.balance == Decimal("0")
    assert wallet.total_refunded == Decimal("980.00")
    db.refresh(campaign)
    assert campaign.raised_amount == Decimal("0")
    assert campaign.contributors == 0
    ok, _ = wallet_service.verify_wallet(db, wallet.id)
    assert ok


def test_partial_refund_removes_gross_share_from_campaign(db, gateway):
    campaign = make_campaign(db)
    donor = make_donor(db)
    donation = create_order(db, campaign.id, 1000, donor, gateway, ip_address="10.40.0.4", now=NOW).donation
    verify_payment(db, donation.order_id, "pay_r2", gateway.sign(donation.order_id, "pay_r2"), donation.id, gateway)

    donation, result = donation_service.refund_donation(
        db, donation.id, admin_id=1, reason="Partial", gateway=gateway, amount=490, now=NOW
    )
    db.commit()

    assert result.ok
    assert donation.refund_amount == Decimal("490.00")
    db.refresh(campaign)
    assert campaign.raised_amount == Decimal("500.00")
    assert campaign.contributors == 1


def test_refund_rules(db, gateway):
    campaign = make_campaign(db)
    pending = _pledge(db, campaign)

    with pytest.raises(InvalidDonationRequest):
        donation_service.refund_donation(db, pending.id, admin_id=1, reason="x", gateway=gateway)

    settled = make_donation(db, campaign, amount=400)
    with pytest.raises(InvalidDonationRequest):
        donation_service.refund_donation(db, settled.id, admin_id=1, reason="  ", gateway=gateway)
    with pytest.raises(InvalidDonationRequest):
        donation_service.refund_donation(db, settled.id, admin_id=1, reason="x", gateway=gateway, amount=500)
    with pytest.raises(WalletNotFound):
        donation_service.refund_donation(db, settled.id, admin_id=1, reason="x", gateway=gateway)


def test_refund_fails_cleanly_when_funds_were_withdrawn(db):
    campaign = make_campaign(db, owner=9)
    donation = _pledge(db, campaign)
    update_donation_status(db, donation.id, admin_id=1, payment_received=True, now=NOW)
    wallet = wallet_service.get_wallet(db, campaign.id)
    wallet_service.withdraw_funds(db, wallet, Decimal("400"))
    db.commit()

    donation, result = donation_service.refund_donation(
        db, donation.id, admin_id=1, reason="Duplicate", gateway=None, now=NOW
    )

    assert not result.ok
    assert result.error == LedgerError.INSUFFICIENT_BALANCE
    db.rollback()
    db.refresh(donation)
    assert donation.payment_status == PaymentStatus.SUCCESS
    assert wallet_service.get_wallet(db, campaign.id).balance == Decimal("90.00")


def test_queries_and_stats(db):
    campaign = make_campaign(db)
    donor = make_donor(db)
    first = _pledge(db, campaign, donor=donor, now=NOW - timedelta(minutes=5))
    second = _pledge(db, campaign, donor=donor, amount=300, now=NOW)
    update_donation_status(db, first.id, admin_id=1, payment_received=True, now=NOW)
    db.commit()

    items, total = donation_service.list_donor_donations(db, donor.id, page=1, limit=1)
    assert total == 2
    assert [d.id for d in items] == [second.id]

    approved = donation_service.list_recent_approved_for_email(db, "DONOR@example.com", now=NOW)
    assert [d.id for d in approved] == [first.id]

    stats = donation_service.donation_stats(db)
    assert stats["total_donations"] == 2
    assert stats["total_raised"] == 500
    assert stats["total_pledged"] == 300
    assert stats["by_status"]["success"]["count"] == 1

    assert donation_service.get_donation_status(db, second.id, donor.id).id == second.id
