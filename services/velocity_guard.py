"""
Velocity guard: minimum interval between two donations from the same actor.

The actor key is the donor id for authenticated flows and the IP address for
guest flows. Applied in addition to the fraud score, never instead of it.
"""
import logging
import math
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Union

from sqlalchemy import desc
from sqlalchemy.orm import Session

from exceptions import VelocityLimitExceeded
from models import Donation

logger = logging.getLogger(__name__)

MIN_INTERVAL_SECONDS = 30

# Elapsed time reported when the actor has never donated
FIRST_DONATION_SENTINEL = 999_999


@dataclass(frozen=True)
class VelocityDecision:
     allowed: bool
     retry_after_seconds: int
     seconds_since_last: int


def _last_donation_at(db: Session, actor_key: Union[int, str], by: str) -> Optional[datetime]:
     column = Donation.donor_id if by == "donor" else Donation.ip_address
     row = (
          db.query(Donation.created_at)
          .filter(column == actor_key)
          .order_by(desc(Donation.created_at))
          .limit(1)
          .first()
     )
     return row[0] if row else None


def check(db: Session, actor_key: Union[int, str, None], now: datetime, by: str = "donor") -> VelocityDecision:
     """
     by: "donor" (actor_key is a donor id) or "ip" (actor_key is an IP address).
     """
     if by not in ("donor", "ip"):
          raise ValueError(f"Unknown velocity actor type: {by}")

     last = _last_donation_at(db, actor_key, by) if actor_key not in (None, "") else None
     if last is None:
          return VelocityDecision(allowed=True, retry_after_seconds=0, seconds_since_last=FIRST_DONATION_SENTINEL)

     elapsed = (now - last).total_seconds()
     if elapsed < MIN_INTERVAL_SECONDS:
          retry_after = max(1, math.ceil(MIN_INTERVAL_SECONDS - elapsed))
          return VelocityDecision(allowed=False, retry_after_seconds=retry_after, seconds_since_last=int(elapsed))

     return VelocityDecision(allowed=True, retry_after_seconds=0, seconds_since_last=int(elapsed))


def enforce(db: Session, actor_key: Union[int, str, None], now: datetime, by: str = "donor") -> VelocityDecision:
     """Same as check(), but raises VelocityLimitExceeded when the actor must wait."""
     decision = check(db, actor_key, now, by=by)
     if not decision.allowed:
          logger.warning(
               f"[VelocityGuard] {by}={actor_key} blocked, retry after {decision.retry_after_seconds}s"
          )
          raise VelocityLimitExceeded(
               f"Please wait {decision.retry_after_seconds} seconds before donating again.",
               details={"retryAfterSeconds": decision.retry_after_seconds},
          )
     return decision
