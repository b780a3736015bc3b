# routers/donations.py
"""
Donation API.

Commitments (pledges) for donors and guests, donor-facing lookups, and the
admin review surface. Gateway payments live in routers/payments.py.
"""
import math
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query, Request, status
from sqlalchemy.orm import Session

from database import get_session
from dependencies import (
     ADMIN_ROLE,
     client_ip,
     get_payment_gateway,
     require_admin,
     require_donor,
     user_agent,
     verify_token,
)
from exceptions import PermissionDenied
from models import Donor
from models.donation import PaymentStatus
from schemas.common import MessageResponse, Pagination
from schemas.donation import (
     AdminActionView,
     AdminDonationDetailResponse,
     AdminDonationListResponse,
     AdminDonationResponse,
     AdminDonationUpdate,
     AdminDonationView,
     ApprovedDonationsResponse,
     DonationCommitRequest,
     DonationListResponse,
     DonationResponse,
     DonationStatsResponse,
     FlagDonationRequest,
     GuestCommitRequest,
     RefundDonationRequest,
     donation_view,
)
from services import donation_service
from services.donation_service import GuestInfo
from services.notification_service import send_donation_thanks

router = APIRouter(prefix="/api/donations", tags=["donations"])


def _pagination(page: int, limit: int, total: int) -> Pagination:
     return Pagination(page=page, limit=limit, total=total, pages=math.ceil(total / limit) if total else 0)


def _public_view(donation):
     view = donation_view(donation)
     if donation.is_anonymous:
          view = view.model_copy(update={"donor_name": "Anonymous", "donor_id": None})
     return view


# ---------------------------------------------------------------------------
# Commitments
# ---------------------------------------------------------------------------

@router.post(
     "/commit",
     response_model=DonationResponse,
     status_code=status.HTTP_201_CREATED,
     summary="Pledge a donation (registered donor)",
)
def commit_donation(
     body: DonationCommitRequest,
     request: Request,
     db: Session = Depends(get_session),
     donor: Donor = Depends(require_donor),
):
     donation = donation_service.commit_donation(
          db,
          campaign_id=body.campaign_id,
          amount=body.amount,
          donor=donor,
          ip_address=client_ip(request),
          user_agent=user_agent(request),
          message=body.message,
          is_anonymous=body.is_anonymous,
     )
     db.commit()
     return DonationResponse(
          message="Donation commitment recorded. It will be confirmed once payment is received.",
          donation=donation_view(donation),
     )


@router.post(
     "/commit-guest",
     response_model=DonationResponse,
     status_code=status.HTTP_201_CREATED,
     summary="Pledge a donation without an account",
)
def commit_guest_donation(
     body: GuestCommitRequest,
     request: Request,
     db: Session = Depends(get_session),
):
     donation = donation_service.commit_donation(
          db,
          campaign_id=body.campaign_id,
          amount=body.amount,
          guest=GuestInfo(name=body.name.strip(), email=str(body.email), phone=body.phone),
          ip_address=client_ip(request),
          user_agent=user_agent(request),
          message=body.message,
          is_anonymous=body.is_anonymous,
     )
     db.commit()
     return DonationResponse(
          message="Donation commitment recorded. It will be confirmed once payment is received.",
          donation=donation_view(donation),
     )


# ---------------------------------------------------------------------------
# Donor and public lookups
# ---------------------------------------------------------------------------

@router.get("/status/{donation_id}", response_model=DonationResponse)
def get_donation_status(
     donation_id: int,
     db: Session = Depends(get_session),
     donor: Donor = Depends(require_donor),
):
     donation = donation_service.get_donation_status(db, donation_id, donor.id)
     return DonationResponse(message="OK", donation=donation_view(donation))


@router.get("/my-donations", response_model=DonationListResponse)
def my_donations(
     page: int = Query(1, ge=1),
     limit: int = Query(10, ge=1, le=100),
     db: Session = Depends(get_session),
     donor: Donor = Depends(require_donor),
):
     donations, total = donation_service.list_donor_donations(db, donor.id, page=page, limit=limit)
     return DonationListResponse(
          donations=[donation_view(d) for d in donations],
          pagination=_pagination(page, limit, total),
     )


@router.get("/campaign/{campaign_id}", response_model=DonationListResponse)
def campaign_donations(campaign_id: int, db: Session = Depends(get_session)):
     donations = donation_service.list_campaign_donations(db, campaign_id)
     return DonationListResponse(donations=[_public_view(d) for d in donations])


@router.get("/check-approved/{email}", response_model=ApprovedDonationsResponse)
def check_approved(email: str, db: Session = Depends(get_session)):
     donations = donation_service.list_recent_approved_for_email(db, email)
     return ApprovedDonationsResponse(
          has_approved=bool(donations),
          donations=[donation_view(d) for d in donations],
     )


@router.put("/{donation_id}/admin-actions/{action_id}/view", response_model=MessageResponse)
def mark_action_viewed(
     donation_id: int,
     action_id: int,
     db: Session = Depends(get_session),
     token: dict = Depends(verify_token),
):
     donation = donation_service.get_donation(db, donation_id)
     if token.get("role") != ADMIN_ROLE and donation.donor_id != int(token["id"]):
          raise PermissionDenied()
     if not donation_service.mark_admin_action_viewed(db, donation_id, action_id):
          raise HTTPException(status_code=404, detail="Admin action not found")
     db.commit()
     return MessageResponse(message="Marked as viewed")


# ---------------------------------------------------------------------------
# Admin
# ---------------------------------------------------------------------------

@router.get("/admin/all", response_model=AdminDonationListResponse)
def admin_list_donations(
     payment_status: Optional[PaymentStatus] = Query(None, alias="status"),
     suspicious: bool = Query(False),
     campaign_id: Optional[int] = Query(None, alias="campaignId"),
     page: int = Query(1, ge=1),
     limit: int = Query(20, ge=1, le=100),
     db: Session = Depends(get_session),
     admin: dict = Depends(require_admin),
):
     donations, total = donation_service.list_donations_admin(
          db,
          status=payment_status,
          suspicious_only=suspicious,
          campaign_id=campaign_id,
          page=page,
          limit=limit,
     )
     return AdminDonationListResponse(
          donations=[AdminDonationView.model_validate(d) for d in donations],
          pagination=_pagination(page, limit, total),
     )


@router.get("/admin/stats", response_model=DonationStatsResponse)
def admin_stats(db: Session = Depends(get_session), admin: dict = Depends(require_admin)):
     return DonationStatsResponse(**donation_service.donation_stats(db))


@router.get("/admin/{donation_id}", response_model=AdminDonationDetailResponse)
def admin_get_donation(
     donation_id: int,
     db: Session = Depends(get_session),
     admin: dict = Depends(require_admin),
):
     donation = donation_service.get_donation(db, donation_id)
     return AdminDonationDetailResponse(
          donation=AdminDonationView.model_validate(donation),
          admin_actions=[AdminActionView.model_validate(a) for a in donation.admin_actions],
     )


@router.put("/admin/{donation_id}/status", response_model=AdminDonationResponse)
def admin_update_status(
     donation_id: int,
     body: AdminDonationUpdate,
     background_tasks: BackgroundTasks,
     db: Session = Depends(get_session),
     admin: dict = Depends(require_admin),
):
     donation, entry = donation_service.update_donation_status(
          db,
          donation_id,
          admin_id=int(admin["id"]),
          payment_status=body.payment_status,
          payment_received=body.payment_received,
          admin_verified=body.admin_verified,
          review_notes=body.review_notes,
          admin_rejected=body.admin_rejected,
          rejection_reason=body.rejection_reason,
     )
     db.commit()
     if entry.action == "approved":
          background_tasks.add_task(send_donation_thanks, donation.id)
     return AdminDonationResponse(
          message=f"Donation {entry.action}",
          donation=AdminDonationView.model_validate(donation),
          admin_action=AdminActionView.model_validate(entry),
     )


@router.post("/admin/{donation_id}/flag", response_model=AdminDonationResponse)
def admin_flag_donation(
     donation_id: int,
     body: FlagDonationRequest,
     db: Session = Depends(get_session),
     admin: dict = Depends(require_admin),
):
     donation = donation_service.flag_donation(db, donation_id, body.reason, admin_id=int(admin["id"]))
     db.commit()
     return AdminDonationResponse(message="Donation flagged", donation=AdminDonationView.model_validate(donation))


@router.post("/admin/{donation_id}/refund", response_model=AdminDonationResponse)
def admin_refund_donation(
     donation_id: int,
     body: RefundDonationRequest,
     db: Session = Depends(get_session),
     admin: dict = Depends(require_admin),
     gateway=Depends(get_payment_gateway),
):
     donation, result = donation_service.refund_donation(
          db,
          donation_id,
          admin_id=int(admin["id"]),
          reason=body.reason,
          gateway=gateway,
          amount=body.amount,
     )
     if not result.ok:
          db.rollback()
          raise HTTPException(
               status_code=status.HTTP_409_CONFLICT,
               detail={"error": result.error.value, "message": result.message},
          )
     db.commit()
     return AdminDonationResponse(message="Donation refunded", donation=AdminDonationView.model_validate(donation))
