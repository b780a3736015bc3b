"""
Settlement Coordinator - order creation and payment verification.

createOrder is a two-step saga: the pending donation is committed first, then
the gateway order is created. If the gateway call fails the pending donation is
deleted again before the error is returned, so a caller is never told an order
exists when it does not.

verifyPayment is idempotent and safe under concurrent retries:
1. Signature check: hex(HMAC-SHA256(secret, "order_id|payment_id")), constant time
2. Already success -> return success, no mutation
3. Stored order_id must match
4. Payment details fetched from the gateway (actual method used)
5. Conditional transition to success (only from pending/processing)
6. Atomic campaign increment + donor stats, committed together with step 5
7. Wallet credit in its own unit of work; a failure there leaves the donation
   success-but-unlinked, which reconcile_unsettled_donations() picks up
"""
import hashlib
import hmac
import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import update
from sqlalchemy.orm import Session

from config import settings
from exceptions import (
     CampaignGoalReached,
     DonationPlatformException,
     DonorBlocked,
     InvalidDonationRequest,
     InvalidPaymentSignature,
     OrderMismatch,
     PaymentGatewayError,
     SettlementIncomplete,
)
from models import Donation, Donor
from models.donation import COMMITMENT_METHOD, PaymentStatus
from services import wallet_service
from services.donation_service import (
     adjust_campaign_totals,
     assign_unique_receipt_number,
     compute_fee,
     get_campaign,
     get_donation,
     record_donor_stats,
     risk_fields,
     screen_donation,
     transition_status,
     validate_amount,
)
from services.fraud_service import FraudActor
from utils.clock import utcnow

logger = logging.getLogger(__name__)

GOAL_CAP_MULTIPLIER = Decimal("1.05")
REQUEST_SLACK_MULTIPLIER = Decimal("1.10")
DEFAULT_METHOD = "razorpay"


@dataclass
class OrderCreated:
     donation: Donation
     order: dict
     key_id: Optional[str] = None


@dataclass
class VerificationResult:
     donation: Donation
     already_verified: bool = False


def compute_payment_signature(secret: str, order_id: str, payment_id: str) -> str:
     """hex(HMAC_SHA256(secret, order_id + "|" + payment_id)) - gateway wire format."""
     return hmac.new(
          secret.encode("utf-8"),
          f"{order_id}|{payment_id}".encode("utf-8"),
          hashlib.sha256,
     ).hexdigest()


def signature_matches(secret: str, order_id: str, payment_id: str, signature: str) -> bool:
     expected = compute_payment_signature(secret, order_id, payment_id)
     return hmac.compare_digest(expected.encode("utf-8"), (signature or "").encode("utf-8"))


def check_goal_headroom(campaign, amount: int) -> None:
     """
     Over-funding gate for new orders:
          raised < goal * 1.05, and
          raised + amount <= goal * 1.05 * 1.10
     """
     cap = Decimal(campaign.goal_amount) * GOAL_CAP_MULTIPLIER
     raised = Decimal(campaign.raised_amount or 0)
     if raised >= cap:
          raise CampaignGoalReached()
     if raised + amount > cap * REQUEST_SLACK_MULTIPLIER:
          remaining = max(cap - raised, Decimal("0"))
          raise CampaignGoalReached(
               "Campaign goal has been reached. Please donate a smaller amount.",
               details={"remainingAmount": float(remaining)},
          )


def create_order(
     db: Session,
     campaign_id: int,
     amount,
     donor: Donor,
     gateway,
     ip_address: str = "",
     user_agent: str = "",
     message: str = "",
     is_anonymous: bool = False,
     now: Optional[datetime] = None,
) -> OrderCreated:
     now = now or utcnow()
     value = validate_amount(amount)
     campaign = get_campaign(db, campaign_id)
     if donor.is_blocked:
          raise DonorBlocked()
     check_goal_headroom(campaign, value)

     actor = FraudActor(donor_id=donor.id, email=donor.email.lower(), ip_address=ip_address or None)
     assessment, decision = screen_donation(db, actor, value, campaign.id, now)

     fee, net = compute_fee(value)
     donation = Donation(
          donor_id=donor.id,
          campaign_id=campaign.id,
          amount=value,
          payment_status=PaymentStatus.PENDING,
          payment_method=DEFAULT_METHOD,
          receipt_number=assign_unique_receipt_number(db, now),
          donor_name=donor.name,
          donor_email=donor.email.lower(),
          donor_phone=donor.phone or "",
          is_anonymous=is_anonymous,
          message=message or "",
          ip_address=ip_address or "",
          user_agent=user_agent or "",
          transaction_fee=fee,
          net_amount=net,
          created_at=now,
          updated_at=now,
          **risk_fields(assessment, decision),
     )
     db.add(donation)
     db.commit()
     logger.info(f"[Settlement] Pending donation {donation.id} ({donation.receipt_number}) created")

     try:
          order = gateway.create_order(value, settings.PAYMENT_CURRENCY, donation.receipt_number)
     except Exception as exc:
          logger.error(f"[Settlement] Order creation failed for donation {donation.id}: {exc}")
          _discard_pending_donation(db, donation)
          if isinstance(exc, DonationPlatformException):
               raise
          raise PaymentGatewayError(details={"error": str(exc)}) from exc

     donation.order_id = order["id"]
     db.commit()
     logger.info(f"[Settlement] Order {order['id']} linked to donation {donation.id}")
     return OrderCreated(donation=donation, order=order, key_id=getattr(gateway, "key_id", None))


def _discard_pending_donation(db: Session, donation: Donation) -> None:
     """Compensating action for a failed gateway call: the provisional record must not survive."""
     donation_id = donation.id
     db.rollback()
     db.expunge(donation)
     db.query(Donation).filter(Donation.id == donation_id).delete(synchronize_session=False)
     db.commit()
     logger.info(f"[Settlement] Compensated: pending donation {donation_id} deleted")


def verify_payment(
     db: Session,
     order_id: str,
     payment_id: str,
     signature: str,
     donation_id: int,
     gateway,
     now: Optional[datetime] = None,
) -> VerificationResult:
     if not (order_id and payment_id and signature and donation_id):
          raise InvalidDonationRequest("Order ID, Payment ID, Signature, and Donation ID are required.")
     now = now or utcnow()

     if not signature_matches(gateway.signature_secret, order_id, payment_id, signature):
          logger.warning(f"[Settlement] Invalid signature for donation {donation_id} order {order_id}")
          raise InvalidPaymentSignature()

     donation = get_donation(db, donation_id)
     if donation.payment_status == PaymentStatus.SUCCESS:
          return VerificationResult(donation=donation, already_verified=True)
     if donation.order_id != order_id:
          raise OrderMismatch()
     if not donation.is_open:
          raise InvalidDonationRequest(f"Donation is {donation.payment_status.value} and cannot be verified.")

     details = gateway.fetch_payment_details(payment_id)

     changed = transition_status(
          db,
          donation,
          PaymentStatus.SUCCESS,
          payment_id=payment_id,
          signature=signature,
          payment_method=details.get("method") or DEFAULT_METHOD,
     )
     if not changed:
          # Lost the race to a concurrent verification of the same donation
          db.rollback()
          if donation.payment_status == PaymentStatus.SUCCESS:
               return VerificationResult(donation=donation, already_verified=True)
          raise InvalidDonationRequest(f"Donation is {donation.payment_status.value} and cannot be verified.")

     adjust_campaign_totals(db, donation.campaign_id, donation.amount, contributors_delta=1)
     record_donor_stats(db, donation.donor_id, donation.amount, now)
     db.commit()
     logger.info(f"[Settlement] Payment {payment_id} captured for donation {donation.id}")

     try:
          credit_wallet(db, donation)
     except Exception as exc:
          db.rollback()
          logger.exception(
               f"[Settlement] Wallet credit failed for donation {donation.id}; left for reconciliation"
          )
          raise SettlementIncomplete(
               details={"donationId": donation.id, "receiptNumber": donation.receipt_number}
          ) from exc

     return VerificationResult(donation=donation, already_verified=False)


def credit_wallet(db: Session, donation: Donation) -> bool:
     """
     Credit the campaign wallet with the donation's net amount and link the
     ledger row to the donation, as one unit of work.

     Returns False (and rolls back) when the donation was already linked by
     someone else in the meantime.
     """
     wallet = wallet_service.get_or_create_wallet(db, donation.campaign_id)
     result = wallet_service.add_funds(
          db,
          wallet,
          donation.net_amount,
          donation.id,
          f"Donation from {donation.donor_name or 'anonymous donor'}",
     )
     if not result.ok:
          raise RuntimeError(result.message)

     linked = db.execute(
          update(Donation)
          .where(Donation.id == donation.id, Donation.wallet_transaction_id.is_(None))
          .values(wallet_transaction_id=result.transaction.id)
          .execution_options(synchronize_session=False)
     ).rowcount == 1
     if not linked:
          db.rollback()
          return False

     db.commit()
     db.refresh(donation)
     return True


def find_unsettled_donations(db: Session) -> list[Donation]:
     """Captured gateway donations whose wallet credit never happened (commitments settle atomically)."""
     return (
          db.query(Donation)
          .filter(
               Donation.payment_status == PaymentStatus.SUCCESS,
               Donation.wallet_transaction_id.is_(None),
               Donation.payment_method != COMMITMENT_METHOD,
          )
          .order_by(Donation.id)
          .all()
     )


def reconcile_unsettled_donations(db: Session) -> dict:
     credited, failed = [], []
     for donation in find_unsettled_donations(db):
          try:
               if credit_wallet(db, donation):
                    credited.append(donation.id)
          except Exception:
               db.rollback()
               logger.exception(f"[Settlement] Reconciliation failed for donation {donation.id}")
               failed.append(donation.id)
     if credited or failed:
          logger.info(f"[Settlement] Reconciliation credited={credited} failed={failed}")
     return {"credited": credited, "failed": failed}
