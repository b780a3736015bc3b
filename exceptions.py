"""
Domain exceptions for the donation platform.

All of them inherit from DonationPlatformException so main.py can render
them with a single handler:

     @app.exception_handler(DonationPlatformException)
     async def handler(request, exc):
          return JSONResponse(status_code=exc.status_code, content=exc.to_dict())
"""
from typing import Any, Optional


class DonationPlatformException(Exception):
     """Base for every client-visible error raised by the services."""
     status_code: int = 500
     message: str = "Internal server error."

     def __init__(self, message: Optional[str] = None, details: Optional[dict[str, Any]] = None):
          self.message = message or self.__class__.message
          self.details = details or {}
          super().__init__(self.message)

     def to_dict(self) -> dict:
          return {"success": False, "message": self.message, **self.details}


# ---------------------------------------------------------------------------
# Validation and lookup
# ---------------------------------------------------------------------------

class InvalidDonationRequest(DonationPlatformException):
     status_code = 400
     message = "Invalid donation request."


class CampaignNotFound(DonationPlatformException):
     status_code = 404
     message = "Campaign not found."


class DonationNotFound(DonationPlatformException):
     status_code = 404
     message = "Donation not found."


class DonorNotFound(DonationPlatformException):
     status_code = 404
     message = "Donor not found."


class WalletNotFound(DonationPlatformException):
     status_code = 404
     message = "Wallet not found for this campaign."


class WithdrawalNotFound(DonationPlatformException):
     status_code = 404
     message = "Withdrawal request not found."


class PermissionDenied(DonationPlatformException):
     status_code = 403
     message = "You are not allowed to perform this action."


class DonorBlocked(DonationPlatformException):
     status_code = 403
     message = "This donor account has been blocked."


class CampaignGoalReached(DonationPlatformException):
     status_code = 400
     message = "Campaign goal has been reached."


# ---------------------------------------------------------------------------
# Risk gates
# ---------------------------------------------------------------------------

class FraudCheckFailed(DonationPlatformException):
     """Score at or above the blocking threshold. Nothing was persisted."""
     status_code = 403
     message = "Donation blocked by fraud checks."


class VelocityLimitExceeded(DonationPlatformException):
     status_code = 429
     message = "Too many donations in a short time. Please wait before donating again."


# ---------------------------------------------------------------------------
# Payment capture
# ---------------------------------------------------------------------------

class InvalidPaymentSignature(DonationPlatformException):
     status_code = 400
     message = "Invalid payment signature."


class OrderMismatch(DonationPlatformException):
     status_code = 400
     message = "Order ID mismatch."


class PaymentGatewayNotConfigured(DonationPlatformException):
     status_code = 503
     message = "Payment gateway is not configured."


class PaymentGatewayError(DonationPlatformException):
     status_code = 502
     message = "Failed to create payment order."


class SettlementIncomplete(DonationPlatformException):
     """Payment captured but the wallet credit failed; reconciliation will pick it up."""
     status_code = 500
     message = "Payment captured but wallet settlement is pending reconciliation."


# ---------------------------------------------------------------------------
# Wallet
# ---------------------------------------------------------------------------

class InvalidWithdrawalRequest(DonationPlatformException):
     status_code = 400
     message = "Invalid withdrawal request."
