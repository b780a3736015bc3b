"""
Razorpay adapter.

The core only needs three calls from the gateway (create an order, fetch a
payment, refund a payment) plus the shared secret used to sign
"order_id|payment_id". Amounts are passed in whole currency units and
converted to minor units (x100) here.
"""
import logging
from typing import Optional

import requests

from config import settings
from exceptions import PaymentGatewayError, PaymentGatewayNotConfigured

logger = logging.getLogger(__name__)


class RazorpayGateway:
     def __init__(
          self,
          key_id: Optional[str] = None,
          key_secret: Optional[str] = None,
          base_url: Optional[str] = None,
          timeout: Optional[int] = None,
     ):
          self.key_id = key_id
          self.key_secret = key_secret
          self.base_url = (base_url or "https://api.razorpay.com/v1").rstrip("/")
          self.timeout = timeout or 10

     @classmethod
     def from_settings(cls) -> "RazorpayGateway":
          return cls(
               key_id=settings.RAZORPAY_KEY_ID,
               key_secret=settings.RAZORPAY_KEY_SECRET,
               base_url=settings.RAZORPAY_BASE_URL,
               timeout=settings.GATEWAY_TIMEOUT_SECONDS,
          )

     @property
     def is_configured(self) -> bool:
          return bool(self.key_id and self.key_secret)

     @property
     def signature_secret(self) -> str:
          self._require_credentials()
          return self.key_secret

     def _require_credentials(self) -> None:
          if not self.is_configured:
               raise PaymentGatewayNotConfigured(
                    "Payment gateway is not configured.",
                    details={"details": "Razorpay credentials missing"},
               )

     def _request(self, method: str, path: str, payload: Optional[dict] = None) -> dict:
          self._require_credentials()
          try:
               response = requests.request(
                    method,
                    f"{self.base_url}{path}",
                    json=payload,
                    auth=(self.key_id, self.key_secret),
                    timeout=self.timeout,
               )
          except requests.RequestException as e:
               logger.error(f"[Razorpay] {method} {path} transport error: {e}")
               raise PaymentGatewayError(details={"error": str(e)}) from e

          if response.status_code not in (200, 201):
               logger.error(f"[Razorpay] {method} {path} failed: {response.status_code} {response.text}")
               raise PaymentGatewayError(details={"error": response.text, "status": response.status_code})
          return response.json()

     def create_order(self, amount: int, currency: str, receipt: str) -> dict:
          """Returns {id, amount, currency, receipt, ...}; amount in minor units."""
          order = self._request(
               "POST",
               "/orders",
               {
                    "amount": int(amount) * 100,
                    "currency": currency,
                    "receipt": receipt,
                    "payment_capture": 1,
               },
          )
          logger.info(f"[Razorpay] Order {order.get('id')} created for receipt {receipt}")
          return order

     def fetch_payment_details(self, payment_id: str) -> dict:
          return self._request("GET", f"/payments/{payment_id}")

     def refund_payment(self, payment_id: str, amount: Optional[float] = None) -> dict:
          payload = {}
          if amount:
               payload["amount"] = int(round(float(amount) * 100))
          return self._request("POST", f"/payments/{payment_id}/refund", payload)


payment_gateway = RazorpayGateway.from_settings()


def get_payment_gateway() -> RazorpayGateway:
     """FastAPI dependency; tests override it with a fake."""
     return payment_gateway
