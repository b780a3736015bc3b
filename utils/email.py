# utils/email.py
import requests

from config import settings

BREVO_URL = "https://api.brevo.com/v3/smtp/email"


def send_thank_you_email(
     to_email: str,
     donor_name: str,
     amount: int,
     campaign_title: str,
     receipt_number: str,
):
     if not settings.BREVO_API_KEY:
          raise Exception("BREVO_API_KEY is not set")

     response = requests.post(
          BREVO_URL,
          headers={
               "api-key": settings.BREVO_API_KEY,
               "Content-Type": "application/json",
          },
          json={
               "sender": {"name": settings.MAIL_SENDER_NAME, "email": settings.MAIL_SENDER_EMAIL},
               "to": [{"email": to_email, "name": donor_name or to_email}],
               "subject": f"Thank you for supporting {campaign_title}",
               "htmlContent": f"""
                    <h2>Thank you, {donor_name or 'friend'}!</h2>
                    <p>Your donation of <strong>{amount} {settings.PAYMENT_CURRENCY}</strong>
                    to <strong>{campaign_title}</strong> has been received.</p>
                    <p>Receipt number: <code>{receipt_number}</code></p>
               """,
          },
          timeout=10,
     )
     if response.status_code not in (200, 201):
          raise Exception(f"Brevo error: {response.text}")
