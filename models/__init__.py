from .base import Base
from .campaign import Campaign
from .donor import Donor
from .donation import Donation, DonationAdminAction
from .campaign_wallet import CampaignWallet, WalletTransaction, WithdrawalRequest

__all__ = [
     "Base",
     "Campaign",
     "Donor",
     "Donation",
     "DonationAdminAction",
     "CampaignWallet",
     "WalletTransaction",
     "WithdrawalRequest",
]
