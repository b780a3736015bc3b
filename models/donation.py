"""
Donation model - the unit of truth for one contribution attempt.

State machine (payment_status):
     pending -> processing -> success -> refunded
     pending|processing -> failed|cancelled

Field validity per status is enforced by check constraints so a row can never
carry an impossible combination (e.g. a pending donation with a refund timestamp).
Once a donation is settled, amount / net_amount / order_id are frozen.
"""
import enum
from sqlalchemy import (
     Column, Integer, String, Numeric, Boolean, DateTime, Text, ForeignKey, Enum,
     CheckConstraint, Index, func,
)
from sqlalchemy.orm import relationship, validates
from .base import Base


MIN_DONATION_AMOUNT = 1
MAX_DONATION_AMOUNT = 1_000_000

COMMITMENT_METHOD = "commitment"


class PaymentStatus(str, enum.Enum):
     """Enumeration for donation payment status."""
     PENDING = "pending"
     PROCESSING = "processing"
     SUCCESS = "success"
     FAILED = "failed"
     REFUNDED = "refunded"
     CANCELLED = "cancelled"


class RiskLevel(str, enum.Enum):
     LOW = "low"
     MEDIUM = "medium"
     HIGH = "high"
     CRITICAL = "critical"


OPEN_STATUSES = (PaymentStatus.PENDING, PaymentStatus.PROCESSING)
SETTLED_STATUSES = (PaymentStatus.SUCCESS, PaymentStatus.REFUNDED)
FROZEN_FIELDS = ("amount", "net_amount", "order_id")


def _enum_values(enum_cls):
     return [member.value for member in enum_cls]


class Donation(Base):
     __tablename__ = "donations"

     id = Column(Integer, primary_key=True, autoincrement=True)

     # Foreign keys (donor is null for guest donations)
     donor_id = Column(Integer, ForeignKey("donors.id", ondelete="SET NULL"), nullable=True, index=True)
     campaign_id = Column(Integer, ForeignKey("campaigns.id", ondelete="RESTRICT"), nullable=False, index=True)

     amount = Column(Integer, nullable=False)
     payment_status = Column(
          Enum(PaymentStatus, name="payment_status", values_callable=_enum_values, create_constraint=True),
          default=PaymentStatus.PENDING,
          nullable=False,
          index=True
     )
     payment_method = Column(String(30), default="razorpay", nullable=False)

     # Gateway correlation
     order_id = Column(String(100), nullable=True, index=True)
     payment_id = Column(String(100), nullable=True)
     signature = Column(String(128), nullable=True)

     # Receipt (assigned once at creation, never changed)
     receipt_number = Column(String(40), unique=True, nullable=False)

     # Donor information (copied for guests and for receipts)
     donor_name = Column(String(200), default="", nullable=False)
     donor_email = Column(String(255), default="", nullable=False, index=True)
     donor_phone = Column(String(30), default="", nullable=False)
     is_anonymous = Column(Boolean, default=False, nullable=False)
     message = Column(String(500), default="", nullable=False)

     # Fraud detection
     ip_address = Column(String(64), default="", nullable=False, index=True)
     user_agent = Column(String(500), default="", nullable=False)
     fraud_score = Column(Integer, default=0, nullable=False)
     risk_level = Column(
          Enum(RiskLevel, name="risk_level", values_callable=_enum_values, create_constraint=True),
          default=RiskLevel.LOW,
          nullable=False
     )
     is_suspicious = Column(Boolean, default=False, nullable=False)
     suspicious_reason = Column(Text, default="", nullable=False)
     donation_count_from_ip = Column(Integer, default=0, nullable=False)
     donation_count_from_donor = Column(Integer, default=0, nullable=False)
     time_since_last_donation = Column(Integer, nullable=True)  # seconds
     amount_anomaly = Column(Boolean, default=False, nullable=False)
     velocity_check = Column(Boolean, default=True, nullable=False)

     # Settlement
     transaction_fee = Column(Numeric(12, 2), default=0, nullable=False)
     net_amount = Column(Numeric(12, 2), nullable=False)
     wallet_transaction_id = Column(Integer, nullable=True, index=True)  # set once the wallet is credited

     # Refund
     refunded = Column(Boolean, default=False, nullable=False)
     refunded_at = Column(DateTime, nullable=True)
     refund_amount = Column(Numeric(12, 2), default=0, nullable=False)
     refund_reason = Column(String(500), default="", nullable=False)
     refunded_by = Column(Integer, nullable=True)

     # Admin review
     admin_verified = Column(Boolean, default=False, nullable=False)
     admin_rejected = Column(Boolean, default=False, nullable=False)
     rejection_reason = Column(String(500), default="", nullable=False)
     payment_received = Column(Boolean, default=False, nullable=False)
     payment_received_at = Column(DateTime, nullable=True)
     review_notes = Column(Text, default="", nullable=False)

     # Timestamps
     created_at = Column(DateTime, server_default=func.now(), nullable=False)
     updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now(), nullable=False)

     # Relationships
     donor = relationship("Donor", back_populates="donations")
     campaign = relationship("Campaign", back_populates="donations")
     admin_actions = relationship(
          "DonationAdminAction",
          back_populates="donation",
          order_by="DonationAdminAction.id",
          cascade="all, delete-orphan"
     )

     __table_args__ = (
          CheckConstraint("amount >= 1 AND amount <= 1000000", name="ck_donations_amount_bounds"),
          CheckConstraint("net_amount >= 0 AND transaction_fee >= 0", name="ck_donations_net_amount"),
          CheckConstraint(
               "refunded_at IS NULL OR payment_status = 'refunded'",
               name="ck_donations_refund_fields"
          ),
          CheckConstraint(
               "refund_amount = 0 OR payment_status = 'refunded'",
               name="ck_donations_refund_amount"
          ),
          CheckConstraint(
               "payment_status != 'success' OR payment_id IS NOT NULL OR payment_method = 'commitment'",
               name="ck_donations_success_has_payment"
          ),
          Index("ix_donations_donor_created", "donor_id", "created_at"),
          Index("ix_donations_campaign_created", "campaign_id", "created_at"),
     )

     def __repr__(self):
          return (
               f"<Donation(id={self.id}, amount={self.amount}, "
               f"status='{self.payment_status.value if self.payment_status else None}', "
               f"receipt='{self.receipt_number}')>"
          )

     @validates(*FROZEN_FIELDS)
     def _guard_settled_fields(self, key, value):
          """Settled donations only accept refund-related changes."""
          current = self.__dict__.get(key)
          if (
               self.id is not None
               and self.payment_status in SETTLED_STATUSES
               and current is not None
               and current != value
          ):
               raise ValueError(f"{key} cannot change once donation {self.id} is {self.payment_status.value}")
          return value

     @property
     def is_commitment(self) -> bool:
          return self.payment_method == COMMITMENT_METHOD

     @property
     def is_open(self) -> bool:
          return self.payment_status in OPEN_STATUSES


class DonationAdminAction(Base):
     """Append-only audit entry for an admin decision on a donation."""
     __tablename__ = "donation_admin_actions"

     id = Column(Integer, primary_key=True, autoincrement=True)
     donation_id = Column(
          Integer,
          ForeignKey("donations.id", ondelete="CASCADE"),
          nullable=False,
          index=True
     )
     action = Column(String(30), nullable=False)  # approved, rejected, updated, flagged, refunded
     message = Column(String(1000), nullable=False)
     admin_id = Column(Integer, nullable=True)
     viewed = Column(Boolean, default=False, nullable=False)
     created_at = Column(DateTime, server_default=func.now(), nullable=False)

     donation = relationship("Donation", back_populates="admin_actions")

     def __repr__(self):
          return f"<DonationAdminAction(id={self.id}, donation_id={self.donation_id}, action='{self.action}')>"
