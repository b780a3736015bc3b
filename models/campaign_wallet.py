"""
CampaignWallet, WalletTransaction and WithdrawalRequest models.

One wallet per campaign, created lazily on the first credit. The wallet row holds
the running balance and totals; wallet_transactions is the append-only ledger
backing it. Each ledger row stores a SHA-256 hash of its own content and the hash
of the previous row for the same wallet, forming a per-wallet chain.
Records are append-only; modification is prevented at the application layer.
"""
import enum
from sqlalchemy import (
     Column, Integer, String, Numeric, DateTime, ForeignKey, Enum, CheckConstraint, func,
)
from sqlalchemy.orm import relationship
from .base import Base, TimestampMixin


class TransactionType(str, enum.Enum):
     CREDIT = "credit"
     DEBIT = "debit"
     REFUND = "refund"


class WithdrawalStatus(str, enum.Enum):
     PENDING = "pending"
     APPROVED = "approved"
     REJECTED = "rejected"
     PROCESSED = "processed"


def _enum_values(enum_cls):
     return [member.value for member in enum_cls]


class CampaignWallet(TimestampMixin, Base):
     """
     Per-campaign balance. Invariant:
          balance == total_received - total_withdrawn - total_refunded
                  == replay of wallet_transactions
     """
     __tablename__ = "campaign_wallets"

     id = Column(Integer, primary_key=True, autoincrement=True)
     campaign_id = Column(
          Integer,
          ForeignKey("campaigns.id", ondelete="RESTRICT"),
          nullable=False,
          unique=True,  # One wallet per campaign
          index=True
     )
     balance = Column(Numeric(14, 2), default=0, nullable=False)
     total_received = Column(Numeric(14, 2), default=0, nullable=False)
     total_withdrawn = Column(Numeric(14, 2), default=0, nullable=False)
     total_refunded = Column(Numeric(14, 2), default=0, nullable=False)
     version = Column(Integer, default=0, nullable=False)  # Bumped on every balance mutation

     # Relationships
     campaign = relationship("Campaign", back_populates="wallet")
     transactions = relationship(
          "WalletTransaction",
          back_populates="wallet",
          order_by="WalletTransaction.id"
     )
     withdrawal_requests = relationship(
          "WithdrawalRequest",
          back_populates="wallet",
          order_by="WithdrawalRequest.id"
     )

     __table_args__ = (
          CheckConstraint("balance >= 0", name="ck_campaign_wallets_balance_non_negative"),
     )

     def __repr__(self):
          return f"<CampaignWallet(id={self.id}, campaign_id={self.campaign_id}, balance={self.balance})>"


class WalletTransaction(Base):
     """Immutable ledger row. One per credit/debit/refund."""
     __tablename__ = "wallet_transactions"

     id = Column(Integer, primary_key=True, autoincrement=True)
     wallet_id = Column(
          Integer,
          ForeignKey("campaign_wallets.id", ondelete="RESTRICT"),
          nullable=False,
          index=True
     )
     type = Column(
          Enum(TransactionType, name="wallet_transaction_type", values_callable=_enum_values, create_constraint=True),
          nullable=False
     )
     amount = Column(Numeric(14, 2), nullable=False)
     balance_after = Column(Numeric(14, 2), nullable=False)
     donation_id = Column(Integer, ForeignKey("donations.id", ondelete="SET NULL"), nullable=True, index=True)
     description = Column(String(500), default="", nullable=False)
     transaction_hash = Column(String(64), nullable=False, unique=True)  # SHA-256 hex length
     previous_hash = Column(String(64), nullable=False, index=True)  # "0" for the first row of a wallet
     created_at = Column(DateTime, server_default=func.now(), nullable=False)

     wallet = relationship("CampaignWallet", back_populates="transactions")

     __table_args__ = (
          CheckConstraint("amount > 0", name="ck_wallet_transactions_amount_positive"),
     )

     def __repr__(self):
          return (
               f"<WalletTransaction(id={self.id}, wallet_id={self.wallet_id}, "
               f"type='{self.type.value}', amount={self.amount})>"
          )


class WithdrawalRequest(Base):
     """
     Owner-initiated payout request.
     pending -> approved|rejected (admin) ; approved -> processed (funds moved, terminal)
     """
     __tablename__ = "withdrawal_requests"

     id = Column(Integer, primary_key=True, autoincrement=True)
     wallet_id = Column(
          Integer,
          ForeignKey("campaign_wallets.id", ondelete="RESTRICT"),
          nullable=False,
          index=True
     )
     amount = Column(Numeric(14, 2), nullable=False)
     status = Column(
          Enum(WithdrawalStatus, name="withdrawal_status", values_callable=_enum_values, create_constraint=True),
          default=WithdrawalStatus.PENDING,
          nullable=False,
          index=True
     )
     requested_by = Column(Integer, nullable=False)  # Campaign owner
     requested_at = Column(DateTime, server_default=func.now(), nullable=False)
     processed_by = Column(Integer, nullable=True)  # Admin
     processed_at = Column(DateTime, nullable=True)
     rejection_reason = Column(String(500), default="", nullable=False)
     wallet_transaction_id = Column(Integer, ForeignKey("wallet_transactions.id"), nullable=True)

     wallet = relationship("CampaignWallet", back_populates="withdrawal_requests")

     __table_args__ = (
          CheckConstraint("amount > 0", name="ck_withdrawal_requests_amount_positive"),
     )

     def __repr__(self):
          return f"<WithdrawalRequest(id={self.id}, amount={self.amount}, status='{self.status.value}')>"
