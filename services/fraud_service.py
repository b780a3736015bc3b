"""
Fraud Risk Evaluator.

Scores a prospective donation from the donation history. Reads only; the
decision to block is taken by the callers (commitment and order workflows).

Signals (additive, trailing 24h window unless noted):
     donor/email frequency   >= 10 -> +30   >= 5 -> +15
     IP frequency            >= 20 -> +40   >= 10 -> +20
     duplicate amount from the same actor          +10
     amount > 10x campaign average (all history)   +25
     amount < 10 and actor frequency >= 3          +15

Bands: >= 70 critical, >= 50 high, >= 30 medium, else low.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from models import Donation
from models.donation import PaymentStatus, RiskLevel

logger = logging.getLogger(__name__)

WINDOW = timedelta(hours=24)
MAX_SCORE = 100
BLOCK_THRESHOLD = 80

# (threshold, points, label) - first match wins within a table
_ACTOR_THRESHOLDS = [
     (10, 30, "Too many donations from this donor in 24 hours"),
     (5, 15, "High donation frequency from this donor"),
]
_IP_THRESHOLDS = [
     (20, 40, "Too many donations from this IP address in 24 hours"),
     (10, 20, "High donation frequency from this IP address"),
]

DUPLICATE_AMOUNT_POINTS = 10
ANOMALY_MULTIPLIER = 10
ANOMALY_POINTS = 25
SPAM_AMOUNT_LIMIT = 10
SPAM_MIN_FREQUENCY = 3
SPAM_POINTS = 15

# (minimum score, level), highest first
_RISK_BANDS = [
     (70, RiskLevel.CRITICAL),
     (50, RiskLevel.HIGH),
     (30, RiskLevel.MEDIUM),
]

# Donations that never happened do not count toward the campaign average
_EXCLUDED_FROM_AVERAGE = (PaymentStatus.FAILED, PaymentStatus.CANCELLED)


@dataclass(frozen=True)
class FraudActor:
     """Who is donating: a registered donor, or a guest identified by email and IP."""
     donor_id: Optional[int] = None
     email: Optional[str] = None
     ip_address: Optional[str] = None


@dataclass
class FraudAssessment:
     score: int
     raw_score: int
     risk_level: RiskLevel
     reasons: list[str] = field(default_factory=list)
     donation_count_from_ip: int = 0
     donation_count_from_donor: int = 0
     duplicate_amount: bool = False
     amount_anomaly: bool = False
     campaign_average: Optional[float] = None

     @property
     def reason_text(self) -> str:
          return "; ".join(self.reasons)

     @property
     def is_suspicious(self) -> bool:
          return self.risk_level in (RiskLevel.HIGH, RiskLevel.CRITICAL)


def risk_level_for(score: int) -> RiskLevel:
     for minimum, level in _RISK_BANDS:
          if score >= minimum:
               return level
     return RiskLevel.LOW


def should_block(assessment: FraudAssessment) -> bool:
     return assessment.score >= BLOCK_THRESHOLD


def _actor_filter(actor: FraudActor):
     if actor.donor_id is not None:
          return Donation.donor_id == actor.donor_id
     if actor.email:
          return Donation.donor_email == actor.email.lower()
     return None


def _count_actor(db: Session, actor: FraudActor, since: datetime) -> int:
     criterion = _actor_filter(actor)
     if criterion is None:
          return 0
     return db.query(func.count(Donation.id)).filter(criterion, Donation.created_at >= since).scalar() or 0


def _count_ip(db: Session, ip_address: Optional[str], since: datetime) -> int:
     if not ip_address:
          return 0
     return (
          db.query(func.count(Donation.id))
          .filter(Donation.ip_address == ip_address, Donation.created_at >= since)
          .scalar()
          or 0
     )


def _has_duplicate_amount(db: Session, actor: FraudActor, amount: int, since: datetime) -> bool:
     criterion = _actor_filter(actor)
     if criterion is None:
          return False
     match = (
          db.query(Donation.id)
          .filter(criterion, Donation.amount == amount, Donation.created_at >= since)
          .first()
     )
     return match is not None


def _campaign_average(db: Session, campaign_id: int) -> Optional[float]:
     average = (
          db.query(func.avg(Donation.amount))
          .filter(
               Donation.campaign_id == campaign_id,
               Donation.payment_status.notin_(_EXCLUDED_FROM_AVERAGE),
          )
          .scalar()
     )
     return float(average) if average is not None else None


def _threshold_points(count: int, table) -> tuple[int, Optional[str]]:
     for threshold, points, label in table:
          if count >= threshold:
               return points, label
     return 0, None


def evaluate(
     db: Session,
     actor: FraudActor,
     amount: int,
     campaign_id: int,
     now: datetime,
) -> FraudAssessment:
     """
     Score a prospective donation against the history in the database.

     Counts are over donations already recorded, so the donation being
     evaluated is never part of its own history.
     """
     since = now - WINDOW

     actor_count = _count_actor(db, actor, since)
     ip_count = _count_ip(db, actor.ip_address, since)
     duplicate = _has_duplicate_amount(db, actor, amount, since)
     average = _campaign_average(db, campaign_id)

     raw_score = 0
     reasons: list[str] = []

     for count, table in ((actor_count, _ACTOR_THRESHOLDS), (ip_count, _IP_THRESHOLDS)):
          points, label = _threshold_points(count, table)
          if points:
               raw_score += points
               reasons.append(f"{label} ({count})")

     if duplicate:
          raw_score += DUPLICATE_AMOUNT_POINTS
          reasons.append(f"Duplicate donation amount {amount} within 24 hours")

     anomaly = bool(average) and amount > ANOMALY_MULTIPLIER * average
     if anomaly:
          raw_score += ANOMALY_POINTS
          reasons.append(f"Amount {amount} is more than {ANOMALY_MULTIPLIER}x the campaign average ({average:.2f})")

     if amount < SPAM_AMOUNT_LIMIT and actor_count >= SPAM_MIN_FREQUENCY:
          raw_score += SPAM_POINTS
          reasons.append("Repeated small donations (possible spam)")

     score = min(raw_score, MAX_SCORE)
     assessment = FraudAssessment(
          score=score,
          raw_score=raw_score,
          risk_level=risk_level_for(score),
          reasons=reasons,
          donation_count_from_ip=ip_count,
          donation_count_from_donor=actor_count,
          duplicate_amount=duplicate,
          amount_anomaly=anomaly,
          campaign_average=average,
     )

     if score > 0:
          logger.info(
               f"[FraudEvaluator] campaign={campaign_id} donor={actor.donor_id} ip={actor.ip_address} "
               f"score={score} raw={raw_score} level={assessment.risk_level.value}"
          )
     return assessment
