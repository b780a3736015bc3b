from . import donations, payments, wallets

__all__ = ["donations", "payments", "wallets"]
