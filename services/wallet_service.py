"""
Campaign Wallet Service - append-only ledger behind each campaign's balance.

Every mutation is one conditional UPDATE on the wallet row plus one appended
WalletTransaction, inside the caller's database transaction:

1. UPDATE campaign_wallets SET balance = balance +/- :amount ... WHERE id = :id
   [AND balance >= :amount for debits and refunds]
2. If no row matched, nothing changed -> INSUFFICIENT_BALANCE result
3. Otherwise append the ledger row, hash-chained to the wallet's previous row

Balances are never read, modified in Python and saved back, so two concurrent
credits cannot both start from the same stale balance.

Insufficient balance is an expected outcome, not an infrastructure failure, so
it is returned as a WalletOperationResult instead of being raised.
"""
import enum
import hashlib
import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional, Tuple, Union

from sqlalchemy import desc, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from exceptions import (
     InvalidWithdrawalRequest,
     PermissionDenied,
     WalletNotFound,
     WithdrawalNotFound,
)
from models import Campaign, CampaignWallet, WalletTransaction, WithdrawalRequest
from models.campaign_wallet import TransactionType, WithdrawalStatus
from utils.clock import utcnow

logger = logging.getLogger(__name__)

# First ledger row of every wallet points at this
GENESIS_HASH = "0"

CENTS = Decimal("0.01")

Amount = Union[Decimal, int, float, str]


class LedgerError(str, enum.Enum):
     INSUFFICIENT_BALANCE = "insufficient_balance"
     INVALID_AMOUNT = "invalid_amount"


@dataclass(frozen=True)
class WalletOperationResult:
     ok: bool
     transaction: Optional[WalletTransaction] = None
     error: Optional[LedgerError] = None
     message: str = ""


def to_money(amount: Amount) -> Decimal:
     """Quantize any numeric input to 2 decimal places (half-up)."""
     return Decimal(str(amount)).quantize(CENTS, rounding=ROUND_HALF_UP)


def _normalize_amount(amount: Decimal) -> str:
     """Normalize amount to canonical string for hashing (2 decimal places)."""
     return f"{to_money(amount):.2f}"


def _normalize_timestamp(ts: datetime) -> str:
     """Normalize timestamp to ISO format for deterministic hashing."""
     return ts.replace(microsecond=0).isoformat()


def compute_transaction_hash(
     wallet_id: int,
     tx_type: TransactionType,
     amount: Decimal,
     donation_id: Optional[int],
     timestamp: datetime,
     previous_hash: str,
) -> str:
     """
     Compute SHA-256 hash for a ledger row.

     Input string: wallet_id|type|amount|donation_id|timestamp|previous_hash.
     Returns 64-char hex string.
     """
     payload = "|".join([
          str(wallet_id),
          TransactionType(tx_type).value,
          _normalize_amount(amount),
          str(donation_id or ""),
          _normalize_timestamp(timestamp),
          previous_hash,
     ])
     return hashlib.sha256(payload.encode("utf-8")).hexdigest()


def get_previous_hash(db: Session, wallet_id: int) -> str:
     """transaction_hash of the wallet's most recent row, or GENESIS_HASH if empty."""
     last = (
          db.query(WalletTransaction)
          .filter(WalletTransaction.wallet_id == wallet_id)
          .order_by(desc(WalletTransaction.id))
          .limit(1)
          .first()
     )
     if last is None:
          return GENESIS_HASH
     return last.transaction_hash


def get_wallet(db: Session, campaign_id: int) -> Optional[CampaignWallet]:
     return db.query(CampaignWallet).filter(CampaignWallet.campaign_id == campaign_id).first()


def get_or_create_wallet(db: Session, campaign_id: int) -> CampaignWallet:
     """
     Return the campaign's wallet, creating it on first use.

     Call at the start of a unit of work: when a concurrent request creates the
     same wallet first, the unique key fires and we roll back and re-read.
     """
     wallet = get_wallet(db, campaign_id)
     if wallet is not None:
          return wallet

     wallet = CampaignWallet(
          campaign_id=campaign_id,
          balance=Decimal("0"),
          total_received=Decimal("0"),
          total_withdrawn=Decimal("0"),
          total_refunded=Decimal("0"),
          version=0,
     )
     db.add(wallet)
     try:
          db.flush()
     except IntegrityError:
          db.rollback()
          wallet = get_wallet(db, campaign_id)
          if wallet is None:
               raise
          return wallet

     logger.info(f"[Wallet] Created wallet id={wallet.id} for campaign={campaign_id}")
     return wallet


def _apply(
     db: Session,
     wallet: CampaignWallet,
     tx_type: TransactionType,
     amount: Amount,
     donation_id: Optional[int],
     description: str,
) -> WalletOperationResult:
     value = to_money(amount)
     if value <= 0:
          return WalletOperationResult(
               ok=False,
               error=LedgerError.INVALID_AMOUNT,
               message=f"Amount must be positive, got {value}",
          )

     stmt = update(CampaignWallet).where(CampaignWallet.id == wallet.id)
     if tx_type == TransactionType.CREDIT:
          stmt = stmt.values(
               balance=CampaignWallet.balance + value,
               total_received=CampaignWallet.total_received + value,
          )
     else:
          stmt = stmt.where(CampaignWallet.balance >= value)
          totals_column = "total_withdrawn" if tx_type == TransactionType.DEBIT else "total_refunded"
          stmt = stmt.values(
               {
                    "balance": CampaignWallet.balance - value,
                    totals_column: getattr(CampaignWallet, totals_column) + value,
               }
          )
     stmt = stmt.values(version=CampaignWallet.version + 1).execution_options(synchronize_session=False)

     result = db.execute(stmt)
     if result.rowcount != 1:
          logger.warning(
               f"[Wallet] {tx_type.value} of {value} rejected for wallet={wallet.id}: insufficient balance"
          )
          return WalletOperationResult(
               ok=False,
               error=LedgerError.INSUFFICIENT_BALANCE,
               message="Insufficient balance" if tx_type == TransactionType.DEBIT
               else "Insufficient balance for refund",
          )

     db.refresh(wallet)

     timestamp = utcnow().replace(microsecond=0)
     previous_hash = get_previous_hash(db, wallet.id)
     entry = WalletTransaction(
          wallet_id=wallet.id,
          type=tx_type,
          amount=value,
          balance_after=wallet.balance,
          donation_id=donation_id,
          description=description or "",
          transaction_hash=compute_transaction_hash(
               wallet.id, tx_type, value, donation_id, timestamp, previous_hash
          ),
          previous_hash=previous_hash,
          created_at=timestamp,
     )
     db.add(entry)
     db.flush()

     logger.info(
          f"[Wallet] {tx_type.value} {value} wallet={wallet.id} "
          f"donation={donation_id} balance_after={wallet.balance}"
     )
     return WalletOperationResult(ok=True, transaction=entry)


def add_funds(
     db: Session,
     wallet: CampaignWallet,
     amount: Amount,
     donation_id: Optional[int] = None,
     description: str = "",
) -> WalletOperationResult:
     """balance += amount; total_received += amount; append credit."""
     return _apply(db, wallet, TransactionType.CREDIT, amount, donation_id, description)


def withdraw_funds(
     db: Session,
     wallet: CampaignWallet,
     amount: Amount,
     description: str = "",
) -> WalletOperationResult:
     """balance -= amount; total_withdrawn += amount; append debit. Fails without mutation if amount > balance."""
     return _apply(db, wallet, TransactionType.DEBIT, amount, None, description)


def refund(
     db: Session,
     wallet: CampaignWallet,
     amount: Amount,
     donation_id: Optional[int] = None,
     description: str = "",
) -> WalletOperationResult:
     """balance -= amount; total_refunded += amount; append refund. Same balance rule as withdraw_funds."""
     return _apply(db, wallet, TransactionType.REFUND, amount, donation_id, description)


def verify_wallet(db: Session, wallet_id: int) -> Tuple[bool, str]:
     """
     Replay the wallet's ledger and compare against the stored balance and totals.

     Checks, row by row: previous_hash links, recomputed transaction_hash and
     balance_after. Then checks the wallet row against the replayed totals.

     Returns:
          (success: bool, message: str)
     """
     wallet = db.get(CampaignWallet, wallet_id)
     if wallet is None:
          return False, "Wallet not found"

     entries = (
          db.query(WalletTransaction)
          .filter(WalletTransaction.wallet_id == wallet_id)
          .order_by(WalletTransaction.id)
          .all()
     )

     balance = received = withdrawn = refunded = Decimal("0")
     prev_hash = GENESIS_HASH
     for entry in entries:
          if entry.previous_hash != prev_hash:
               return False, f"Chain broken at transaction id={entry.id}: previous_hash mismatch"
          computed = compute_transaction_hash(
               entry.wallet_id,
               entry.type,
               entry.amount,
               entry.donation_id,
               entry.created_at,
               entry.previous_hash,
          )
          if computed != entry.transaction_hash:
               return False, f"Hash mismatch at transaction id={entry.id}"

          if entry.type == TransactionType.CREDIT:
               balance += entry.amount
               received += entry.amount
          elif entry.type == TransactionType.DEBIT:
               balance -= entry.amount
               withdrawn += entry.amount
          else:
               balance -= entry.amount
               refunded += entry.amount

          if to_money(entry.balance_after) != to_money(balance):
               return False, f"balance_after mismatch at transaction id={entry.id}"
          prev_hash = entry.transaction_hash

     if to_money(wallet.balance) != to_money(balance):
          return False, f"Balance mismatch: stored={wallet.balance}, replayed={balance}"
     if (
          to_money(wallet.total_received) != to_money(received)
          or to_money(wallet.total_withdrawn) != to_money(withdrawn)
          or to_money(wallet.total_refunded) != to_money(refunded)
     ):
          return False, "Totals do not match the transaction log"
     if to_money(wallet.balance) != to_money(wallet.total_received - wallet.total_withdrawn - wallet.total_refunded):
          return False, "Balance does not equal received - withdrawn - refunded"

     return True, f"Wallet verification passed ({len(entries)} transactions)"


# ---------------------------------------------------------------------------
# Withdrawal requests
# ---------------------------------------------------------------------------

def _get_withdrawal(db: Session, withdrawal_id: int) -> WithdrawalRequest:
     withdrawal = db.get(WithdrawalRequest, withdrawal_id)
     if withdrawal is None:
          raise WithdrawalNotFound()
     return withdrawal


def request_withdrawal(
     db: Session,
     campaign: Campaign,
     amount: Amount,
     owner_id: int,
     now: Optional[datetime] = None,
) -> WithdrawalRequest:
     """Campaign owner asks for a payout. Funds move only when an admin processes it."""
     if campaign.created_by != owner_id:
          raise PermissionDenied("Only the campaign owner can request a withdrawal.")

     wallet = get_wallet(db, campaign.id)
     if wallet is None:
          raise WalletNotFound()

     value = to_money(amount)
     if value <= 0:
          raise InvalidWithdrawalRequest("Withdrawal amount must be positive.")
     if value > wallet.balance:
          raise InvalidWithdrawalRequest(
               "Requested amount exceeds the available balance.",
               details={"balance": float(wallet.balance)},
          )

     withdrawal = WithdrawalRequest(
          wallet_id=wallet.id,
          amount=value,
          status=WithdrawalStatus.PENDING,
          requested_by=owner_id,
          requested_at=now or utcnow(),
     )
     db.add(withdrawal)
     db.flush()
     logger.info(f"[Wallet] Withdrawal {withdrawal.id} of {value} requested for campaign={campaign.id}")
     return withdrawal


def approve_withdrawal(
     db: Session,
     withdrawal_id: int,
     admin_id: int,
     now: Optional[datetime] = None,
) -> WithdrawalRequest:
     withdrawal = _get_withdrawal(db, withdrawal_id)
     if withdrawal.status != WithdrawalStatus.PENDING:
          raise InvalidWithdrawalRequest(f"Cannot approve a {withdrawal.status.value} withdrawal.")
     withdrawal.status = WithdrawalStatus.APPROVED
     withdrawal.processed_by = admin_id
     withdrawal.processed_at = now or utcnow()
     db.flush()
     return withdrawal


def reject_withdrawal(
     db: Session,
     withdrawal_id: int,
     admin_id: int,
     reason: str,
     now: Optional[datetime] = None,
) -> WithdrawalRequest:
     if not reason or not reason.strip():
          raise InvalidWithdrawalRequest("A rejection reason is required.")
     withdrawal = _get_withdrawal(db, withdrawal_id)
     if withdrawal.status != WithdrawalStatus.PENDING:
          raise InvalidWithdrawalRequest(f"Cannot reject a {withdrawal.status.value} withdrawal.")
     withdrawal.status = WithdrawalStatus.REJECTED
     withdrawal.rejection_reason = reason.strip()
     withdrawal.processed_by = admin_id
     withdrawal.processed_at = now or utcnow()
     db.flush()
     return withdrawal


def process_withdrawal(
     db: Session,
     withdrawal_id: int,
     admin_id: int,
     now: Optional[datetime] = None,
) -> Tuple[WithdrawalRequest, WalletOperationResult]:
     """
     Move the funds for an approved request. On insufficient balance the request
     stays approved and the wallet is untouched.
     """
     withdrawal = _get_withdrawal(db, withdrawal_id)
     if withdrawal.status != WithdrawalStatus.APPROVED:
          raise InvalidWithdrawalRequest(f"Only approved withdrawals can be processed (is {withdrawal.status.value}).")

     result = withdraw_funds(
          db,
          withdrawal.wallet,
          withdrawal.amount,
          description=f"Withdrawal request #{withdrawal.id}",
     )
     if not result.ok:
          return withdrawal, result

     withdrawal.status = WithdrawalStatus.PROCESSED
     withdrawal.processed_by = admin_id
     withdrawal.processed_at = now or utcnow()
     withdrawal.wallet_transaction_id = result.transaction.id
     db.flush()
     return withdrawal, result
