# routers/payments.py
"""
Gateway payment API.

POST /payments/create-order: screen the donation, record it as pending and open a gateway order.
POST /payments/verify: checkout callback; verifies the signature and settles the donation.
POST /payments/admin/reconcile: credit wallets for captured payments whose settlement did not finish.
"""
from fastapi import APIRouter, BackgroundTasks, Depends, Request, status
from sqlalchemy.orm import Session

from database import get_session
from dependencies import client_ip, get_payment_gateway, require_admin, require_donor, user_agent
from models import Donor
from schemas.donation import donation_view
from schemas.payment import (
     CreateOrderRequest,
     CreateOrderResponse,
     OrderInfo,
     ReconcileResponse,
     VerifyPaymentRequest,
     VerifyPaymentResponse,
)
from services import settlement_service
from services.notification_service import send_donation_thanks

router = APIRouter(prefix="/api/payments", tags=["payments"])


@router.post(
     "/create-order",
     response_model=CreateOrderResponse,
     status_code=status.HTTP_201_CREATED,
     summary="Create a gateway order for a donation",
)
def create_order(
     body: CreateOrderRequest,
     request: Request,
     db: Session = Depends(get_session),
     donor: Donor = Depends(require_donor),
     gateway=Depends(get_payment_gateway),
):
     created = settlement_service.create_order(
          db,
          campaign_id=body.campaign_id,
          amount=body.amount,
          donor=donor,
          gateway=gateway,
          ip_address=client_ip(request),
          user_agent=user_agent(request),
          message=body.message,
          is_anonymous=body.is_anonymous,
     )
     order = created.order
     return CreateOrderResponse(
          order=OrderInfo(
               id=order["id"],
               amount=order["amount"],
               currency=order["currency"],
               receipt=order.get("receipt"),
          ),
          donation_id=created.donation.id,
          receipt_number=created.donation.receipt_number,
          key_id=created.key_id,
     )


@router.post("/verify", response_model=VerifyPaymentResponse, summary="Verify a completed checkout")
def verify_payment(
     body: VerifyPaymentRequest,
     background_tasks: BackgroundTasks,
     db: Session = Depends(get_session),
     gateway=Depends(get_payment_gateway),
):
     result = settlement_service.verify_payment(
          db,
          order_id=body.order_id,
          payment_id=body.payment_id,
          signature=body.signature,
          donation_id=body.donation_id,
          gateway=gateway,
     )
     if result.already_verified:
          message = "Payment already verified"
     else:
          message = "Payment verified successfully"
          background_tasks.add_task(send_donation_thanks, result.donation.id)
     return VerifyPaymentResponse(message=message, donation=donation_view(result.donation))


@router.post("/admin/reconcile", response_model=ReconcileResponse)
def reconcile(db: Session = Depends(get_session), admin: dict = Depends(require_admin)):
     outcome = settlement_service.reconcile_unsettled_donations(db)
     return ReconcileResponse(**outcome)
