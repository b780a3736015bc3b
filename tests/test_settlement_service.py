from datetime import datetime, timedelta
from decimal import Decimal

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from exceptions import (
    CampaignGoalReached,
    DonorBlocked,
    InvalidPaymentSignature,
    OrderMismatch,
    PaymentGatewayError,
    SettlementIncomplete,
)
from models import Base, Campaign, Donation, Donor, WalletTransaction
from models.donation import PaymentStatus
from services import settlement_service, wallet_service
from services.settlement_service import (
    compute_payment_signature,
    create_order,
    reconcile_unsettled_donations,
    signature_matches,
    verify_payment,
)

from conftest import FakeGateway, make_campaign, make_donor

NOW = datetime(2026, 10, 19, 12, 0, 0)


def _order(db, gateway, campaign, donor, amount=2000, now=NOW, ip="10.20.0.1"):
    return create_order(db, campaign.id, amount, donor, gateway, ip_address=ip, now=now)


def _verify(db, gateway, donation, payment_id="pay_test_1"):
    return verify_payment(
        db,
        donation.order_id,
        payment_id,
        gateway.sign(donation.order_id, payment_id),
        donation.id,
        gateway,
    )


def test_signature_is_hmac_of_order_and_payment():
    # hex(HMAC_SHA256("secret", "order_1|pay_1"))
    signature = compute_payment_signature("secret", "order_1", "pay_1")

    assert len(signature) == 64
    assert signature_matches("secret", "order_1", "pay_1", signature)
    assert not signature_matches("secret", "order_1", "pay_2", signature)
    assert not signature_matches("other", "order_1", "pay_1", signature)
    assert not signature_matches("secret", "order_1", "pay_1", "")


def test_create_order_records_pending_donation(db, gateway):
    campaign = make_campaign(db)
    donor = make_donor(db)

    created = _order(db, gateway, campaign, donor, amount=2000)

    donation = created.donation
    assert donation.payment_status == PaymentStatus.PENDING
    assert donation.order_id == created.order["id"]
    assert created.order["amount"] == 200000
    assert created.order["receipt"] == donation.receipt_number
    assert created.key_id == gateway.key_id
    assert donation.transaction_fee == Decimal("40.00")
    assert donation.net_amount == Decimal("1960.00")
    # raised_amount only moves on verification
    db.refresh(campaign)
    assert campaign.raised_amount == Decimal("0")


def test_gateway_failure_deletes_pending_donation(db, gateway):
    campaign = make_campaign(db)
    donor = make_donor(db)
    gateway.fail_create = True

    with pytest.raises(PaymentGatewayError):
        _order(db, gateway, campaign, donor)

    assert db.query(Donation).count() == 0


def test_unexpected_gateway_error_is_wrapped(db, gateway, monkeypatch):
    campaign = make_campaign(db)
    donor = make_donor(db)

    def broken(amount, currency, receipt):
        raise ConnectionError("reset by peer")

    monkeypatch.setattr(gateway, "create_order", broken)

    with pytest.raises(PaymentGatewayError) as excinfo:
        _order(db, gateway, campaign, donor)

    assert "reset by peer" in excinfo.value.details["error"]
    assert db.query(Donation).count() == 0


def test_goal_headroom_gate(db, gateway):
    campaign = make_campaign(db, goal=100_000, raised=104_000)
    donor = make_donor(db)

    created = _order(db, gateway, campaign, donor, amount=2000)
    assert created.donation.id is not None

    with pytest.raises(CampaignGoalReached):
        _order(db, gateway, campaign, donor, amount=12_000, now=NOW + timedelta(minutes=5))

    full = make_campaign(db, goal=100_000, raised=105_000, title="Fully funded")
    with pytest.raises(CampaignGoalReached):
        _order(db, gateway, full, donor, amount=1, now=NOW + timedelta(minutes=10))
    assert db.query(Donation).count() == 1


def test_blocked_donor_cannot_create_orders(db, gateway):
    campaign = make_campaign(db)
    donor = make_donor(db, blocked=True)

    with pytest.raises(DonorBlocked):
        _order(db, gateway, campaign, donor)
    assert gateway.orders == []


def test_verify_settles_donation(db, gateway):
    campaign = make_campaign(db)
    donor = make_donor(db)
    donation = _order(db, gateway, campaign, donor, amount=2000).donation

    result = _verify(db, gateway, donation)

    assert not result.already_verified
    assert result.donation.payment_status == PaymentStatus.SUCCESS
    assert result.donation.payment_method == "upi"
    assert result.donation.payment_id == "pay_test_1"
    assert result.donation.wallet_transaction_id is not None

    db.refresh(campaign)
    assert campaign.raised_amount == Decimal("2000")
    assert campaign.contributors == 1

    wallet = wallet_service.get_wallet(db, campaign.id)
    assert wallet.balance == Decimal("1960.00")
    entry = db.get(WalletTransaction, result.donation.wallet_transaction_id)
    assert entry.donation_id == donation.id

    db.refresh(donor)
    assert donor.total_donations == 1
    assert donor.total_donated == Decimal("2000")


def test_bad_signature_leaves_donation_pending(db, gateway):
    campaign = make_campaign(db)
    donor = make_donor(db)
    donation = _order(db, gateway, campaign, donor).donation

    with pytest.raises(InvalidPaymentSignature):
        verify_payment(db, donation.order_id, "pay_x", "0" * 64, donation.id, gateway)

    db.refresh(donation)
    assert donation.payment_status == PaymentStatus.PENDING
    assert wallet_service.get_wallet(db, campaign.id) is None


def test_order_mismatch_is_rejected(db, gateway):
    campaign = make_campaign(db)
    donor = make_donor(db)
    donation = _order(db, gateway, campaign, donor).donation
    signature = gateway.sign("order_other", "pay_1")

    with pytest.raises(OrderMismatch):
        verify_payment(db, "order_other", "pay_1", signature, donation.id, gateway)


def test_second_verify_is_a_no_op(db, gateway):
    campaign = make_campaign(db)
    donor = make_donor(db)
    donation = _order(db, gateway, campaign, donor, amount=1000).donation
    _verify(db, gateway, donation)

    again = _verify(db, gateway, donation)

    assert again.already_verified
    db.refresh(campaign)
    assert campaign.raised_amount == Decimal("1000")
    assert campaign.contributors == 1
    assert db.query(WalletTransaction).count() == 1


def test_concurrent_verification_credits_once(tmp_path):
    engine = create_engine(f"sqlite:///{tmp_path / 'race.db'}", connect_args={"check_same_thread": False})
    Base.metadata.create_all(bind=engine)
    Session = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    gateway = FakeGateway()

    setup = Session()
    campaign = Campaign(title="Race", goal_amount=Decimal("100000"), raised_amount=Decimal("0"), created_by=1)
    donor = Donor(name="Racer", email="racer@example.com")
    setup.add_all([campaign, donor])
    setup.commit()
    donation = create_order(setup, campaign.id, 3000, donor, gateway, ip_address="10.30.0.1", now=NOW).donation
    setup.close()

    signature = gateway.sign(donation.order_id, "pay_race")
    first, second = Session(), Session()
    # both requests have read the donation while it was still pending
    assert first.get(Donation, donation.id).payment_status == PaymentStatus.PENDING
    assert second.get(Donation, donation.id).payment_status == PaymentStatus.PENDING
    first.commit()
    second.commit()

    winner = verify_payment(second, donation.order_id, "pay_race", signature, donation.id, gateway)
    loser = verify_payment(first, donation.order_id, "pay_race", signature, donation.id, gateway)

    assert not winner.already_verified
    assert loser.already_verified
    first.close()
    second.close()

    check = Session()
    stored_campaign = check.get(Campaign, campaign.id)
    assert stored_campaign.raised_amount == Decimal("3000")
    assert stored_campaign.contributors == 1
    assert check.query(WalletTransaction).count() == 1
    assert wallet_service.get_wallet(check, campaign.id).balance == Decimal("2940.00")
    check.close()
    engine.dispose()


def test_wallet_failure_is_reconciled_later(db, gateway, monkeypatch):
    campaign = make_campaign(db)
    donor = make_donor(db)
    donation = _order(db, gateway, campaign, donor, amount=500).donation
    original_add_funds = wallet_service.add_funds

    def failing_add_funds(*args, **kwargs):
        raise RuntimeError("ledger unavailable")

    monkeypatch.setattr(wallet_service, "add_funds", failing_add_funds)
    with pytest.raises(SettlementIncomplete):
        _verify(db, gateway, donation)

    db.refresh(donation)
    assert donation.payment_status == PaymentStatus.SUCCESS
    assert donation.wallet_transaction_id is None
    assert settlement_service.find_unsettled_donations(db) == [donation]

    monkeypatch.setattr(wallet_service, "add_funds", original_add_funds)
    outcome = reconcile_unsettled_donations(db)

    assert outcome == {"credited": [donation.id], "failed": []}
    db.refresh(donation)
    assert donation.wallet_transaction_id is not None
    assert wallet_service.get_wallet(db, campaign.id).balance == Decimal("490.00")
    assert reconcile_unsettled_donations(db) == {"credited": [], "failed": []}
