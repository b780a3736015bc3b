# schemas/__init__.py
from .common import ApiModel, MessageResponse, Pagination
from .donation import (
     AdminDonationUpdate,
     DonationCommitRequest,
     DonationView,
     GuestCommitRequest,
     donation_view,
)
from .payment import CreateOrderRequest, VerifyPaymentRequest
from .wallet import WalletView, WithdrawalCreate, WithdrawalView

__all__ = [
     "ApiModel",
     "MessageResponse",
     "Pagination",
     "AdminDonationUpdate",
     "DonationCommitRequest",
     "DonationView",
     "GuestCommitRequest",
     "donation_view",
     "CreateOrderRequest",
     "VerifyPaymentRequest",
     "WalletView",
     "WithdrawalCreate",
     "WithdrawalView",
]
