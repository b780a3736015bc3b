"""
Best-effort donor notifications.

Runs after the response has been produced (FastAPI BackgroundTasks), with its
own session. Nothing here may fail the donation flow: every error is logged
and dropped.
"""
import logging

from config import settings
from database import get_session_context
from models import Campaign, Donation
from utils.email import send_thank_you_email

logger = logging.getLogger(__name__)


def send_donation_thanks(donation_id: int) -> bool:
     if not settings.BREVO_API_KEY:
          logger.debug(f"[Notifications] Mail not configured, skipping donation {donation_id}")
          return False
     try:
          with get_session_context() as db:
               donation = db.get(Donation, donation_id)
               if donation is None or not donation.donor_email:
                    return False
               campaign = db.get(Campaign, donation.campaign_id)
               send_thank_you_email(
                    to_email=donation.donor_email,
                    donor_name=donation.donor_name,
                    amount=donation.amount,
                    campaign_title=campaign.title if campaign else "our campaign",
                    receipt_number=donation.receipt_number,
               )
          logger.info(f"[Notifications] Thank-you sent for donation {donation_id}")
          return True
     except Exception as e:
          logger.warning(f"[Notifications] Thank-you for donation {donation_id} failed: {e}")
          return False
