# schemas/donation.py
"""
Pydantic schemas for the donation API.

Donation views are a discriminated union keyed by paymentStatus, so a client
only ever sees the fields that make sense for the donation's current state.
"""
import enum
from datetime import datetime
from decimal import Decimal
from typing import Annotated, Literal, Optional, Union

from pydantic import ConfigDict, Discriminator, EmailStr, Field, Tag, field_validator

from models.donation import MAX_DONATION_AMOUNT, MIN_DONATION_AMOUNT, PaymentStatus, RiskLevel
from .common import ApiModel, Pagination


# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------

class DonationCommitRequest(ApiModel):
     """Request body for POST /donations/commit."""

     campaign_id: int = Field(..., gt=0, description="Campaign receiving the pledge")
     amount: int = Field(
          ...,
          ge=MIN_DONATION_AMOUNT,
          le=MAX_DONATION_AMOUNT,
          description="Whole currency units",
     )
     message: str = Field(default="", max_length=500)
     is_anonymous: bool = False

     model_config = ConfigDict(
          json_schema_extra={
               "example": {"campaignId": 1, "amount": 500, "message": "Get well soon", "isAnonymous": False}
          }
     )


class GuestCommitRequest(DonationCommitRequest):
     """Request body for POST /donations/commit-guest."""

     name: str = Field(..., min_length=1, max_length=200)
     email: EmailStr
     phone: str = Field(default="", max_length=30)


class AdminDonationUpdate(ApiModel):
     """Request body for PUT /donations/admin/{id}/status. All fields optional."""

     payment_status: Optional[PaymentStatus] = None
     payment_received: Optional[bool] = None
     admin_verified: Optional[bool] = None
     review_notes: Optional[str] = Field(default=None, max_length=2000)
     admin_rejected: Optional[bool] = None
     rejection_reason: Optional[str] = Field(default=None, max_length=500)

     model_config = ConfigDict(
          json_schema_extra={
               "example": {"paymentReceived": True, "reviewNotes": "Bank transfer confirmed"}
          }
     )


class FlagDonationRequest(ApiModel):
     reason: str = Field(..., min_length=1, max_length=500)


class RefundDonationRequest(ApiModel):
     reason: str = Field(..., min_length=1, max_length=500)
     amount: Optional[Decimal] = Field(default=None, gt=0, description="Defaults to the full net amount")


# ---------------------------------------------------------------------------
# Donation views
# ---------------------------------------------------------------------------

class _DonationViewBase(ApiModel):
     id: int
     campaign_id: int
     donor_id: Optional[int] = None
     amount: int
     payment_method: str
     receipt_number: str
     donor_name: str
     is_anonymous: bool
     message: str
     transaction_fee: Decimal
     net_amount: Decimal
     risk_level: RiskLevel
     fraud_score: int
     is_suspicious: bool
     created_at: datetime

     @field_validator("payment_status", mode="before", check_fields=False)
     @classmethod
     def _status_value(cls, value):
          if isinstance(value, enum.Enum):
               return value.value
          return value


class OpenDonationView(_DonationViewBase):
     payment_status: Literal["pending", "processing"]
     order_id: Optional[str] = None


class SuccessDonationView(_DonationViewBase):
     payment_status: Literal["success"]
     order_id: Optional[str] = None
     payment_id: Optional[str] = None
     payment_received: bool
     payment_received_at: Optional[datetime] = None
     admin_verified: bool
     wallet_transaction_id: Optional[int] = None


class ClosedDonationView(_DonationViewBase):
     payment_status: Literal["failed", "cancelled"]
     admin_rejected: bool
     rejection_reason: str


class RefundedDonationView(_DonationViewBase):
     payment_status: Literal["refunded"]
     payment_id: Optional[str] = None
     refund_amount: Decimal
     refunded_at: Optional[datetime] = None
     refund_reason: str


_TAG_BY_STATUS = {
     "pending": "open",
     "processing": "open",
     "success": "success",
     "failed": "closed",
     "cancelled": "closed",
     "refunded": "refunded",
}


def _status_tag(value) -> Optional[str]:
     """Discriminate on paymentStatus for dicts (either key spelling), views and ORM rows."""
     if isinstance(value, dict):
          status = value.get("paymentStatus", value.get("payment_status"))
     else:
          status = getattr(value, "payment_status", None)
     if isinstance(status, enum.Enum):
          status = status.value
     return _TAG_BY_STATUS.get(status)


DonationView = Annotated[
     Union[
          Annotated[OpenDonationView, Tag("open")],
          Annotated[SuccessDonationView, Tag("success")],
          Annotated[ClosedDonationView, Tag("closed")],
          Annotated[RefundedDonationView, Tag("refunded")],
     ],
     Discriminator(_status_tag),
]

_VIEW_BY_STATUS = {
     PaymentStatus.PENDING: OpenDonationView,
     PaymentStatus.PROCESSING: OpenDonationView,
     PaymentStatus.SUCCESS: SuccessDonationView,
     PaymentStatus.FAILED: ClosedDonationView,
     PaymentStatus.CANCELLED: ClosedDonationView,
     PaymentStatus.REFUNDED: RefundedDonationView,
}


def donation_view(donation):
     """Build the state-specific view for an ORM Donation."""
     return _VIEW_BY_STATUS[donation.payment_status].model_validate(donation)


class AdminDonationView(ApiModel):
     """Full record for the admin console, including fraud signals."""

     id: int
     campaign_id: int
     donor_id: Optional[int] = None
     amount: int
     payment_status: PaymentStatus
     payment_method: str
     receipt_number: str
     order_id: Optional[str] = None
     payment_id: Optional[str] = None
     donor_name: str
     donor_email: str
     donor_phone: str
     is_anonymous: bool
     message: str
     ip_address: str
     user_agent: str
     fraud_score: int
     risk_level: RiskLevel
     is_suspicious: bool
     suspicious_reason: str
     donation_count_from_ip: int
     donation_count_from_donor: int
     time_since_last_donation: Optional[int] = None
     amount_anomaly: bool
     velocity_check: bool
     transaction_fee: Decimal
     net_amount: Decimal
     wallet_transaction_id: Optional[int] = None
     refunded: bool
     refund_amount: Decimal
     refund_reason: str
     admin_verified: bool
     admin_rejected: bool
     rejection_reason: str
     payment_received: bool
     payment_received_at: Optional[datetime] = None
     review_notes: str
     created_at: datetime
     updated_at: datetime


class AdminActionView(ApiModel):
     id: int
     donation_id: int
     action: str
     message: str
     admin_id: Optional[int] = None
     viewed: bool
     created_at: datetime


# ---------------------------------------------------------------------------
# Responses
# ---------------------------------------------------------------------------

class DonationResponse(ApiModel):
     success: bool = True
     message: str
     donation: DonationView


class DonationListResponse(ApiModel):
     success: bool = True
     donations: list[DonationView]
     pagination: Optional[Pagination] = None


class AdminDonationResponse(ApiModel):
     success: bool = True
     message: str = ""
     donation: AdminDonationView
     admin_action: Optional[AdminActionView] = None


class AdminDonationDetailResponse(ApiModel):
     success: bool = True
     donation: AdminDonationView
     admin_actions: list[AdminActionView]


class AdminDonationListResponse(ApiModel):
     success: bool = True
     donations: list[AdminDonationView]
     pagination: Pagination


class StatusBucket(ApiModel):
     count: int
     amount: int


class DonationStatsResponse(ApiModel):
     success: bool = True
     total_donations: int
     total_raised: int
     total_pledged: int
     total_refunded: float
     suspicious_count: int
     by_status: dict[str, StatusBucket]


class ApprovedDonationsResponse(ApiModel):
     success: bool = True
     has_approved: bool
     donations: list[DonationView]
