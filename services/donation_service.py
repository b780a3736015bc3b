"""
Donation Service - commitment (pledge) workflow, receipts and the admin surface.

Shared building blocks used by the settlement coordinator also live here:
amount validation, the fraud/velocity screen, fee computation, conditional
status transitions and atomic aggregate updates.
"""
import logging
import secrets
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Optional, Sequence, Tuple

from sqlalchemy import case, desc, func, update
from sqlalchemy.orm import Session

from config import settings
from exceptions import (
     CampaignNotFound,
     DonationNotFound,
     DonationPlatformException,
     DonorBlocked,
     FraudCheckFailed,
     InvalidDonationRequest,
     WalletNotFound,
)
from models import Campaign, Donation, DonationAdminAction, Donor
from models.donation import (
     COMMITMENT_METHOD,
     MAX_DONATION_AMOUNT,
     MIN_DONATION_AMOUNT,
     OPEN_STATUSES,
     PaymentStatus,
)
from services import fraud_service, velocity_guard, wallet_service
from services.fraud_service import FraudActor, FraudAssessment
from services.velocity_guard import VelocityDecision
from services.wallet_service import WalletOperationResult, to_money
from utils.clock import utcnow

logger = logging.getLogger(__name__)

PLATFORM_FEE_RATE = Decimal("0.02")
RECEIPT_MAX_ATTEMPTS = 10


# ---------------------------------------------------------------------------
# Receipt numbers
# ---------------------------------------------------------------------------

_BASE36 = "0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZ"


def _to_base36(value: int) -> str:
     if value == 0:
          return "0"
     digits = []
     while value:
          value, rem = divmod(value, 36)
          digits.append(_BASE36[rem])
     return "".join(reversed(digits))


class ReceiptNumberGenerator:
     """
     RCP-<base36 ms timestamp>-<4 random base36 chars>, all uppercase.

     Suffixes already issued by this process within the same millisecond are
     redrawn, so one process never repeats itself. Cross-process uniqueness is
     checked against the database by assign_unique_receipt_number().
     """

     def __init__(self):
          self._lock = threading.Lock()
          self._current_ms = None
          self._issued: set[str] = set()

     def generate(self, now: Optional[datetime] = None) -> str:
          moment = now or utcnow()
          ms = int(moment.replace(tzinfo=timezone.utc).timestamp() * 1000)
          stamp = _to_base36(ms)
          with self._lock:
               if ms != self._current_ms:
                    self._current_ms = ms
                    self._issued = set()
               while True:
                    suffix = "".join(secrets.choice(_BASE36) for _ in range(4))
                    if suffix not in self._issued:
                         self._issued.add(suffix)
                         return f"RCP-{stamp}-{suffix}"


receipt_numbers = ReceiptNumberGenerator()


def generate_receipt_number(now: Optional[datetime] = None) -> str:
     return receipt_numbers.generate(now)


def assign_unique_receipt_number(db: Session, now: Optional[datetime] = None) -> str:
     """Draw receipt numbers until one is not already stored (unique constraint backs this up)."""
     for _ in range(RECEIPT_MAX_ATTEMPTS):
          candidate = generate_receipt_number(now)
          taken = db.query(Donation.id).filter(Donation.receipt_number == candidate).first()
          if taken is None:
               return candidate
          logger.warning(f"[Receipts] Collision on {candidate}, retrying")
     raise DonationPlatformException("Could not allocate a unique receipt number.")


# ---------------------------------------------------------------------------
# Shared building blocks
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class GuestInfo:
     name: str
     email: str
     phone: str = ""


def validate_amount(amount) -> int:
     if amount is None or isinstance(amount, bool):
          raise InvalidDonationRequest("Campaign ID and valid amount are required.")
     try:
          value = Decimal(str(amount))
     except ArithmeticError:
          raise InvalidDonationRequest("Donation amount must be a number.")
     if not value.is_finite() or value != value.to_integral_value():
          raise InvalidDonationRequest("Donation amount must be a whole number.")
     value = int(value)
     if value < MIN_DONATION_AMOUNT or value > MAX_DONATION_AMOUNT:
          raise InvalidDonationRequest(
               f"Donation amount must be between {MIN_DONATION_AMOUNT} and {MAX_DONATION_AMOUNT}."
          )
     return value


def get_campaign(db: Session, campaign_id: int) -> Campaign:
     campaign = db.get(Campaign, campaign_id)
     if campaign is None:
          raise CampaignNotFound()
     return campaign


def get_donation(db: Session, donation_id: int) -> Donation:
     donation = db.get(Donation, donation_id)
     if donation is None:
          raise DonationNotFound()
     return donation


def compute_fee(amount: int) -> Tuple[Decimal, Decimal]:
     """Platform fee (2%, rounded to 2 decimals) and the net amount that reaches the wallet."""
     fee = to_money(Decimal(amount) * PLATFORM_FEE_RATE)
     return fee, to_money(Decimal(amount) - fee)


def screen_donation(
     db: Session,
     actor: FraudActor,
     amount: int,
     campaign_id: int,
     now: datetime,
) -> Tuple[FraudAssessment, VelocityDecision]:
     """
     Fraud score gate followed by the velocity guard. Raises before anything is persisted.
     Velocity is keyed by donor id when known, otherwise by IP address.
     """
     assessment = fraud_service.evaluate(db, actor, amount, campaign_id, now)
     if fraud_service.should_block(assessment):
          logger.warning(
               f"[Donations] Blocked donation to campaign={campaign_id} donor={actor.donor_id} "
               f"ip={actor.ip_address} score={assessment.score}"
          )
          raise FraudCheckFailed(
               "Donation blocked due to suspicious activity.",
               details={
                    "reasons": assessment.reasons,
                    "fraudScore": assessment.score,
                    "riskLevel": assessment.risk_level.value,
               },
          )

     if actor.donor_id is not None:
          decision = velocity_guard.enforce(db, actor.donor_id, now, by="donor")
     else:
          decision = velocity_guard.enforce(db, actor.ip_address, now, by="ip")
     return assessment, decision


def risk_fields(assessment: FraudAssessment, decision: VelocityDecision) -> dict:
     return {
          "fraud_score": assessment.score,
          "risk_level": assessment.risk_level,
          "is_suspicious": assessment.is_suspicious,
          "suspicious_reason": assessment.reason_text,
          "donation_count_from_ip": assessment.donation_count_from_ip,
          "donation_count_from_donor": assessment.donation_count_from_donor,
          "time_since_last_donation": decision.seconds_since_last,
          "amount_anomaly": assessment.amount_anomaly,
          "velocity_check": decision.allowed,
     }


def transition_status(
     db: Session,
     donation: Donation,
     target: PaymentStatus,
     from_statuses: Sequence[PaymentStatus] = OPEN_STATUSES,
     **values,
) -> bool:
     """
     Conditional state change: UPDATE ... WHERE id = :id AND payment_status IN (:from).
     Returns False when another request already moved the donation.
     """
     stmt = (
          update(Donation)
          .where(Donation.id == donation.id, Donation.payment_status.in_(list(from_statuses)))
          .values(payment_status=target, **values)
          .execution_options(synchronize_session=False)
     )
     changed = db.execute(stmt).rowcount == 1
     db.refresh(donation)
     return changed


def adjust_campaign_totals(db: Session, campaign_id: int, raised_delta, contributors_delta: int = 0) -> None:
     """Atomic UPDATE campaigns SET raised_amount = raised_amount + ?, contributors = contributors + ?."""
     values = {"raised_amount": Campaign.raised_amount + to_money(raised_delta)}
     if contributors_delta:
          values["contributors"] = Campaign.contributors + contributors_delta
     db.execute(
          update(Campaign)
          .where(Campaign.id == campaign_id)
          .values(values)
          .execution_options(synchronize_session=False)
     )


def record_donor_stats(db: Session, donor_id: Optional[int], amount: int, now: datetime) -> None:
     if donor_id is None:
          return
     db.execute(
          update(Donor)
          .where(Donor.id == donor_id)
          .values(
               total_donated=Donor.total_donated + amount,
               total_donations=Donor.total_donations + 1,
               last_donation_at=now,
          )
          .execution_options(synchronize_session=False)
     )


def add_admin_action(
     db: Session,
     donation: Donation,
     action: str,
     message: str,
     admin_id: Optional[int],
     now: datetime,
) -> DonationAdminAction:
     entry = DonationAdminAction(
          donation_id=donation.id,
          action=action,
          message=message,
          admin_id=admin_id,
          viewed=False,
          created_at=now,
     )
     db.add(entry)
     db.flush()
     return entry


def _describe_amount(amount) -> str:
     return f"{amount} {settings.PAYMENT_CURRENCY}"


# ---------------------------------------------------------------------------
# Commitment (pledge) workflow
# ---------------------------------------------------------------------------

def commit_donation(
     db: Session,
     campaign_id: int,
     amount,
     donor: Optional[Donor] = None,
     guest: Optional[GuestInfo] = None,
     ip_address: str = "",
     user_agent: str = "",
     message: str = "",
     is_anonymous: bool = False,
     now: Optional[datetime] = None,
) -> Donation:
     """
     Record a pledge: pending / "commitment", no money moved yet.

     The campaign's raised_amount is incremented right away so pledges count
     toward the goal; rejecting the pledge later reverses it.
     """
     if (donor is None) == (guest is None):
          raise InvalidDonationRequest("Either a donor or guest details are required.")
     if guest is not None and not (guest.name and guest.email):
          raise InvalidDonationRequest("Name and email are required for guest donations.")

     now = now or utcnow()
     value = validate_amount(amount)
     campaign = get_campaign(db, campaign_id)
     if donor is not None and donor.is_blocked:
          raise DonorBlocked()

     email = (donor.email if donor else guest.email).strip().lower()
     actor = FraudActor(donor_id=donor.id if donor else None, email=email, ip_address=ip_address or None)
     assessment, decision = screen_donation(db, actor, value, campaign.id, now)

     fee, net = compute_fee(value)
     donation = Donation(
          donor_id=donor.id if donor else None,
          campaign_id=campaign.id,
          amount=value,
          payment_status=PaymentStatus.PENDING,
          payment_method=COMMITMENT_METHOD,
          receipt_number=assign_unique_receipt_number(db, now),
          donor_name=donor.name if donor else guest.name,
          donor_email=email,
          donor_phone=(donor.phone if donor else guest.phone) or "",
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
     db.flush()

     adjust_campaign_totals(db, campaign.id, value)

     logger.info(
          f"[Donations] Commitment {donation.id} ({donation.receipt_number}) of {value} "
          f"to campaign={campaign.id} risk={assessment.risk_level.value}"
     )
     return donation


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------

def get_donation_status(db: Session, donation_id: int, donor_id: int) -> Donation:
     """Status lookup scoped to the owning donor; other donors' donations look missing."""
     donation = (
          db.query(Donation)
          .filter(Donation.id == donation_id, Donation.donor_id == donor_id)
          .first()
     )
     if donation is None:
          raise DonationNotFound()
     return donation


def list_donor_donations(db: Session, donor_id: int, page: int = 1, limit: int = 10) -> Tuple[list[Donation], int]:
     query = db.query(Donation).filter(Donation.donor_id == donor_id)
     total = query.count()
     donations = (
          query.order_by(desc(Donation.created_at), desc(Donation.id))
          .offset((page - 1) * limit)
          .limit(limit)
          .all()
     )
     return donations, total


def list_campaign_donations(db: Session, campaign_id: int) -> list[Donation]:
     get_campaign(db, campaign_id)
     return (
          db.query(Donation)
          .filter(Donation.campaign_id == campaign_id)
          .order_by(desc(Donation.created_at), desc(Donation.id))
          .all()
     )


def list_recent_approved_for_email(
     db: Session,
     email: str,
     days: int = 7,
     now: Optional[datetime] = None,
) -> list[Donation]:
     """Donations confirmed as received in the last `days` days (drives the donor thank-you popup)."""
     cutoff = (now or utcnow()) - timedelta(days=days)
     return (
          db.query(Donation)
          .filter(
               Donation.donor_email == email.strip().lower(),
               Donation.payment_status == PaymentStatus.SUCCESS,
               Donation.payment_received.is_(True),
               Donation.payment_received_at >= cutoff,
          )
          .order_by(desc(Donation.payment_received_at))
          .limit(10)
          .all()
     )


def list_donations_admin(
     db: Session,
     status: Optional[PaymentStatus] = None,
     suspicious_only: bool = False,
     campaign_id: Optional[int] = None,
     page: int = 1,
     limit: int = 20,
) -> Tuple[list[Donation], int]:
     query = db.query(Donation)
     if status is not None:
          query = query.filter(Donation.payment_status == status)
     if suspicious_only:
          query = query.filter(Donation.is_suspicious.is_(True))
     if campaign_id is not None:
          query = query.filter(Donation.campaign_id == campaign_id)
     total = query.count()
     donations = (
          query.order_by(desc(Donation.created_at), desc(Donation.id))
          .offset((page - 1) * limit)
          .limit(limit)
          .all()
     )
     return donations, total


def donation_stats(db: Session) -> dict:
     rows = (
          db.query(Donation.payment_status, func.count(Donation.id), func.coalesce(func.sum(Donation.amount), 0))
          .group_by(Donation.payment_status)
          .all()
     )
     by_status = {status.value: {"count": 0, "amount": 0} for status in PaymentStatus}
     for status, count, amount in rows:
          by_status[status.value] = {"count": count, "amount": int(amount)}

     suspicious, refunded_total = db.query(
          func.coalesce(func.sum(case((Donation.is_suspicious.is_(True), 1), else_=0)), 0),
          func.coalesce(func.sum(Donation.refund_amount), 0),
     ).one()

     return {
          "total_donations": sum(item["count"] for item in by_status.values()),
          "total_raised": by_status[PaymentStatus.SUCCESS.value]["amount"],
          "total_pledged": by_status[PaymentStatus.PENDING.value]["amount"],
          "total_refunded": float(refunded_total),
          "suspicious_count": int(suspicious),
          "by_status": by_status,
     }


# ---------------------------------------------------------------------------
# Admin surface
# ---------------------------------------------------------------------------

_ADMIN_TARGETS = (
     PaymentStatus.PROCESSING,
     PaymentStatus.SUCCESS,
     PaymentStatus.FAILED,
     PaymentStatus.CANCELLED,
)


def _settle_commitment(db: Session, donation: Donation, admin_id: Optional[int], now: datetime) -> bool:
     """Approve a pledge whose money arrived offline: status, wallet, contributors, donor stats."""
     wallet = wallet_service.get_or_create_wallet(db, donation.campaign_id)
     changed = transition_status(
          db,
          donation,
          PaymentStatus.SUCCESS,
          admin_verified=True,
          payment_received=True,
          payment_received_at=now,
     )
     if not changed:
          return False

     result = wallet_service.add_funds(
          db,
          wallet,
          donation.net_amount,
          donation.id,
          f"Donation from {donation.donor_name or 'anonymous donor'}",
     )
     donation.wallet_transaction_id = result.transaction.id
     # raised_amount already includes the pledge
     adjust_campaign_totals(db, donation.campaign_id, 0, contributors_delta=1)
     record_donor_stats(db, donation.donor_id, donation.amount, now)
     db.flush()
     return True


def update_donation_status(
     db: Session,
     donation_id: int,
     admin_id: Optional[int],
     payment_status: Optional[PaymentStatus] = None,
     payment_received: Optional[bool] = None,
     admin_verified: Optional[bool] = None,
     review_notes: Optional[str] = None,
     admin_rejected: Optional[bool] = None,
     rejection_reason: Optional[str] = None,
     now: Optional[datetime] = None,
) -> Tuple[Donation, DonationAdminAction]:
     """
     Admin review of a donation. Appends exactly one audit entry per call.

     Rejecting a pledge reverses its contribution to the campaign's raised_amount.
     Refunds go through refund_donation(), not through this operation.
     """
     now = now or utcnow()
     donation = get_donation(db, donation_id)
     campaign = get_campaign(db, donation.campaign_id)

     if admin_rejected:
          if not rejection_reason or not rejection_reason.strip():
               raise InvalidDonationRequest("A rejection reason is required.")
          if payment_status in (None, PaymentStatus.FAILED, PaymentStatus.CANCELLED):
               payment_status = payment_status or PaymentStatus.FAILED
          else:
               raise InvalidDonationRequest("A rejected donation cannot be marked as successful.")
     elif payment_received and payment_status is None and donation.is_open:
          payment_status = PaymentStatus.SUCCESS

     action = "updated"
     text = None
     if payment_status is not None and payment_status != donation.payment_status:
          if not donation.is_open:
               raise InvalidDonationRequest(
                    f"Cannot change the status of a {donation.payment_status.value} donation."
               )
          if payment_status not in _ADMIN_TARGETS:
               raise InvalidDonationRequest(f"Admins cannot set status '{payment_status.value}' here.")

          if payment_status == PaymentStatus.SUCCESS:
               if not donation.is_commitment:
                    raise InvalidDonationRequest("Gateway donations are settled by payment verification.")
               if not _settle_commitment(db, donation, admin_id, now):
                    raise InvalidDonationRequest("Donation status changed concurrently; reload and retry.")
               action = "approved"
               text = (
                    f"Your donation of {_describe_amount(donation.amount)} to \"{campaign.title}\" "
                    f"has been verified. Thank you for your support!"
               )
          else:
               extra = {}
               if payment_status in (PaymentStatus.FAILED, PaymentStatus.CANCELLED):
                    extra = {
                         "admin_rejected": True,
                         "rejection_reason": (rejection_reason or "").strip(),
                    }
               if not transition_status(db, donation, payment_status, **extra):
                    raise InvalidDonationRequest("Donation status changed concurrently; reload and retry.")
               if payment_status in (PaymentStatus.FAILED, PaymentStatus.CANCELLED):
                    if donation.is_commitment:
                         adjust_campaign_totals(db, donation.campaign_id, -donation.amount)
                    action = "rejected"
                    text = (
                         f"Your donation of {_describe_amount(donation.amount)} to \"{campaign.title}\" "
                         f"was not accepted."
                    )
                    if donation.rejection_reason:
                         text += f" Reason: {donation.rejection_reason}"
     elif admin_rejected:
          raise InvalidDonationRequest(f"Donation is already {donation.payment_status.value}.")

     if admin_verified is not None and action != "approved":
          donation.admin_verified = admin_verified
     if payment_received and not donation.payment_received and donation.payment_status == PaymentStatus.SUCCESS:
          donation.payment_received = True
          donation.payment_received_at = now
     if review_notes is not None:
          donation.review_notes = review_notes

     if text is None:
          text = f"Your donation status is now {donation.payment_status.value}."
     entry = add_admin_action(db, donation, action, text, admin_id, now)

     logger.info(
          f"[Donations] Admin {admin_id} {action} donation {donation.id} -> {donation.payment_status.value}"
     )
     return donation, entry


def flag_donation(
     db: Session,
     donation_id: int,
     reason: str,
     admin_id: Optional[int],
     now: Optional[datetime] = None,
) -> Donation:
     if not reason or not reason.strip():
          raise InvalidDonationRequest("A reason is required to flag a donation.")
     now = now or utcnow()
     donation = get_donation(db, donation_id)
     donation.is_suspicious = True
     donation.suspicious_reason = "; ".join(filter(None, [donation.suspicious_reason, reason.strip()]))
     add_admin_action(db, donation, "flagged", f"Donation flagged for review: {reason.strip()}", admin_id, now)
     logger.warning(f"[Donations] Donation {donation.id} flagged by admin {admin_id}")
     return donation


def mark_admin_action_viewed(db: Session, donation_id: int, action_id: int) -> bool:
     get_donation(db, donation_id)
     entry = (
          db.query(DonationAdminAction)
          .filter(DonationAdminAction.id == action_id, DonationAdminAction.donation_id == donation_id)
          .first()
     )
     if entry is None:
          return False
     entry.viewed = True
     db.flush()
     return True


def refund_donation(
     db: Session,
     donation_id: int,
     admin_id: Optional[int],
     reason: str,
     gateway,
     amount=None,
     now: Optional[datetime] = None,
) -> Tuple[Donation, WalletOperationResult]:
     """
     Refund a settled donation: wallet refund, then the status change, then the
     gateway refund. A failed result (insufficient balance) means nothing changed;
     any raised error must roll the session back.
     """
     if not reason or not reason.strip():
          raise InvalidDonationRequest("A refund reason is required.")
     now = now or utcnow()
     donation = get_donation(db, donation_id)
     if donation.payment_status != PaymentStatus.SUCCESS:
          raise InvalidDonationRequest("Only successful donations can be refunded.")

     value = to_money(amount) if amount is not None else to_money(donation.net_amount)
     if value <= 0 or value > to_money(donation.net_amount):
          raise InvalidDonationRequest(f"Refund amount must be between 0.01 and {donation.net_amount}.")

     wallet = wallet_service.get_wallet(db, donation.campaign_id)
     if wallet is None:
          raise WalletNotFound()

     result = wallet_service.refund(
          db, wallet, value, donation.id, f"Refund for receipt {donation.receipt_number}"
     )
     if not result.ok:
          return donation, result

     changed = transition_status(
          db,
          donation,
          PaymentStatus.REFUNDED,
          from_statuses=(PaymentStatus.SUCCESS,),
          refunded=True,
          refunded_at=now,
          refund_amount=value,
          refund_reason=reason.strip(),
          refunded_by=admin_id,
     )
     if not changed:
          raise InvalidDonationRequest("Donation was refunded concurrently.")

     # Campaign totals hold the gross amount; a partial refund removes its gross share
     net = to_money(donation.net_amount)
     full_refund = value == net
     gross_share = Decimal(donation.amount) if full_refund else to_money(Decimal(donation.amount) * value / net)
     adjust_campaign_totals(db, donation.campaign_id, -gross_share, contributors_delta=-1 if full_refund else 0)

     if not donation.is_commitment and donation.payment_id:
          gateway.refund_payment(donation.payment_id, float(value))

     add_admin_action(
          db,
          donation,
          "refunded",
          f"{_describe_amount(value)} of your donation has been refunded. Reason: {reason.strip()}",
          admin_id,
          now,
     )
     logger.info(f"[Donations] Refunded {value} for donation {donation.id} by admin {admin_id}")
     return donation, result
