# schemas/wallet.py
from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import Field

from models.campaign_wallet import TransactionType, WithdrawalStatus
from .common import ApiModel


class WalletView(ApiModel):
     id: int
     campaign_id: int
     balance: Decimal
     total_received: Decimal
     total_withdrawn: Decimal
     total_refunded: Decimal
     version: int


class WalletTransactionView(ApiModel):
     id: int
     type: TransactionType
     amount: Decimal
     balance_after: Decimal
     donation_id: Optional[int] = None
     description: str
     transaction_hash: str
     previous_hash: str
     created_at: datetime


class WalletResponse(ApiModel):
     success: bool = True
     wallet: WalletView
     transactions: list[WalletTransactionView]


class WalletVerificationResponse(ApiModel):
     success: bool = True
     valid: bool
     message: str


class WithdrawalCreate(ApiModel):
     amount: Decimal = Field(..., gt=0, decimal_places=2)


class WithdrawalReject(ApiModel):
     reason: str = Field(..., min_length=1, max_length=500)


class WithdrawalView(ApiModel):
     id: int
     wallet_id: int
     amount: Decimal
     status: WithdrawalStatus
     requested_by: int
     requested_at: datetime
     processed_by: Optional[int] = None
     processed_at: Optional[datetime] = None
     rejection_reason: str
     wallet_transaction_id: Optional[int] = None


class WithdrawalResponse(ApiModel):
     success: bool = True
     message: str = ""
     withdrawal: WithdrawalView
