from . import fraud_service, velocity_guard, wallet_service
from .wallet_service import (
     GENESIS_HASH,
     LedgerError,
     WalletOperationResult,
     compute_transaction_hash,
     verify_wallet,
)

__all__ = [
     "fraud_service",
     "velocity_guard",
     "wallet_service",
     "GENESIS_HASH",
     "LedgerError",
     "WalletOperationResult",
     "compute_transaction_hash",
     "verify_wallet",
]
