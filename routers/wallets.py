# routers/wallets.py
"""
Campaign wallet API: balance and ledger, chain verification, withdrawals.

Ledger failures (insufficient balance) are not exceptions in the wallet
service; they are returned as results and mapped to 409 here.
"""
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import desc
from sqlalchemy.orm import Session

from database import get_session
from dependencies import ADMIN_ROLE, require_admin, verify_token
from exceptions import PermissionDenied, WalletNotFound
from models import WalletTransaction
from schemas.wallet import (
     WalletResponse,
     WalletTransactionView,
     WalletVerificationResponse,
     WalletView,
     WithdrawalCreate,
     WithdrawalReject,
     WithdrawalResponse,
     WithdrawalView,
)
from services import wallet_service
from services.donation_service import get_campaign

router = APIRouter(prefix="/api/wallets", tags=["wallets"])

RECENT_TRANSACTIONS = 50


def _ledger_conflict(result) -> HTTPException:
     return HTTPException(
          status_code=status.HTTP_409_CONFLICT,
          detail={"error": result.error.value, "message": result.message},
     )


@router.get("/campaign/{campaign_id}", response_model=WalletResponse)
def get_campaign_wallet(
     campaign_id: int,
     db: Session = Depends(get_session),
     token: dict = Depends(verify_token),
):
     campaign = get_campaign(db, campaign_id)
     if token.get("role") != ADMIN_ROLE and campaign.created_by != int(token["id"]):
          raise PermissionDenied()

     wallet = wallet_service.get_wallet(db, campaign_id)
     if wallet is None:
          raise WalletNotFound()

     transactions = (
          db.query(WalletTransaction)
          .filter(WalletTransaction.wallet_id == wallet.id)
          .order_by(desc(WalletTransaction.id))
          .limit(RECENT_TRANSACTIONS)
          .all()
     )
     return WalletResponse(
          wallet=WalletView.model_validate(wallet),
          transactions=[WalletTransactionView.model_validate(t) for t in transactions],
     )


@router.get("/campaign/{campaign_id}/verify", response_model=WalletVerificationResponse)
def verify_campaign_wallet(
     campaign_id: int,
     db: Session = Depends(get_session),
     admin: dict = Depends(require_admin),
):
     get_campaign(db, campaign_id)
     wallet = wallet_service.get_wallet(db, campaign_id)
     if wallet is None:
          raise WalletNotFound()
     valid, message = wallet_service.verify_wallet(db, wallet.id)
     return WalletVerificationResponse(valid=valid, message=message)


@router.post(
     "/campaign/{campaign_id}/withdrawals",
     response_model=WithdrawalResponse,
     status_code=status.HTTP_201_CREATED,
)
def request_withdrawal(
     campaign_id: int,
     body: WithdrawalCreate,
     db: Session = Depends(get_session),
     token: dict = Depends(verify_token),
):
     campaign = get_campaign(db, campaign_id)
     withdrawal = wallet_service.request_withdrawal(db, campaign, body.amount, owner_id=int(token["id"]))
     db.commit()
     return WithdrawalResponse(message="Withdrawal requested", withdrawal=WithdrawalView.model_validate(withdrawal))


@router.put("/withdrawals/{withdrawal_id}/approve", response_model=WithdrawalResponse)
def approve_withdrawal(
     withdrawal_id: int,
     db: Session = Depends(get_session),
     admin: dict = Depends(require_admin),
):
     withdrawal = wallet_service.approve_withdrawal(db, withdrawal_id, admin_id=int(admin["id"]))
     db.commit()
     return WithdrawalResponse(message="Withdrawal approved", withdrawal=WithdrawalView.model_validate(withdrawal))


@router.put("/withdrawals/{withdrawal_id}/reject", response_model=WithdrawalResponse)
def reject_withdrawal(
     withdrawal_id: int,
     body: WithdrawalReject,
     db: Session = Depends(get_session),
     admin: dict = Depends(require_admin),
):
     withdrawal = wallet_service.reject_withdrawal(db, withdrawal_id, admin_id=int(admin["id"]), reason=body.reason)
     db.commit()
     return WithdrawalResponse(message="Withdrawal rejected", withdrawal=WithdrawalView.model_validate(withdrawal))


@router.put("/withdrawals/{withdrawal_id}/process", response_model=WithdrawalResponse)
def process_withdrawal(
     withdrawal_id: int,
     db: Session = Depends(get_session),
     admin: dict = Depends(require_admin),
):
     withdrawal, result = wallet_service.process_withdrawal(db, withdrawal_id, admin_id=int(admin["id"]))
     if not result.ok:
          db.rollback()
          raise _ledger_conflict(result)
     db.commit()
     return WithdrawalResponse(message="Withdrawal processed", withdrawal=WithdrawalView.model_validate(withdrawal))
