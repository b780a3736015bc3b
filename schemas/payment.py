# schemas/payment.py
"""
Pydantic schemas for the gateway order / verification API.
"""
from typing import Optional

from pydantic import ConfigDict, Field

from models.donation import MAX_DONATION_AMOUNT, MIN_DONATION_AMOUNT
from .common import ApiModel
from .donation import DonationView


class CreateOrderRequest(ApiModel):
     """Request body for POST /payments/create-order."""

     campaign_id: int = Field(..., gt=0)
     amount: int = Field(..., ge=MIN_DONATION_AMOUNT, le=MAX_DONATION_AMOUNT)
     message: str = Field(default="", max_length=500)
     is_anonymous: bool = False

     model_config = ConfigDict(
          json_schema_extra={"example": {"campaignId": 1, "amount": 2000}}
     )


class OrderInfo(ApiModel):
     id: str
     amount: int = Field(..., description="Minor units, as returned by the gateway")
     currency: str
     receipt: Optional[str] = None


class CreateOrderResponse(ApiModel):
     success: bool = True
     order: OrderInfo
     donation_id: int
     receipt_number: str
     key_id: Optional[str] = None


class VerifyPaymentRequest(ApiModel):
     """Request body for POST /payments/verify (gateway checkout callback)."""

     order_id: str = Field(..., min_length=1, max_length=100)
     payment_id: str = Field(..., min_length=1, max_length=100)
     signature: str = Field(..., min_length=1, max_length=128)
     donation_id: int = Field(..., gt=0)

     model_config = ConfigDict(
          json_schema_extra={
               "example": {
                    "orderId": "order_N5x2abc",
                    "paymentId": "pay_N5x2xyz",
                    "signature": "9f86d081884c7d659a2feaa0c55ad015...",
                    "donationId": 42,
               }
          }
     )


class VerifyPaymentResponse(ApiModel):
     success: bool = True
     message: str
     donation: DonationView


class ReconcileResponse(ApiModel):
     success: bool = True
     credited: list[int]
     failed: list[int]
