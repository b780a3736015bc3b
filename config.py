"""
Application settings loaded from environment variables (and .env).

Usage:
     from config import settings
     settings.database_url
"""
from typing import Optional
from urllib.parse import quote_plus

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
     # General
     ENVIRONMENT: str = "development"
     DEBUG: bool = False
     LOG_LEVEL: str = "INFO"

     # Database (explicit URL wins; otherwise built from DB_* for MS SQL Server)
     DATABASE_URL: Optional[str] = None
     DB_SERVER: Optional[str] = None
     DB_PORT: str = "1433"
     DB_USER: Optional[str] = None
     DB_PASS: Optional[str] = None
     DB_NAME: Optional[str] = None
     SQL_ECHO: bool = False

     # Auth
     JWT_SECRET: str = "dev-secret-change-in-production"
     JWT_ALGORITHM: str = "HS256"

     # Razorpay
     RAZORPAY_KEY_ID: Optional[str] = None
     RAZORPAY_KEY_SECRET: Optional[str] = None
     RAZORPAY_BASE_URL: str = "https://api.razorpay.com/v1"
     PAYMENT_CURRENCY: str = "INR"
     GATEWAY_TIMEOUT_SECONDS: int = 10

     # Brevo transactional mail
     BREVO_API_KEY: Optional[str] = None
     MAIL_SENDER_NAME: str = "Donation Platform"
     MAIL_SENDER_EMAIL: str = "noreply@example.org"

     # Comma separated, e.g. CORS_ORIGINS=http://localhost:3000,http://localhost:5173
     CORS_ORIGINS: str = "http://localhost:3000,http://localhost:5173"

     @property
     def cors_origins(self) -> list[str]:
          return [origin.strip() for origin in self.CORS_ORIGINS.split(",") if origin.strip()]

     @property
     def database_url(self) -> str:
          if self.DATABASE_URL:
               return self.DATABASE_URL
          if self.DB_SERVER:
               safe_user = quote_plus(self.DB_USER or "")
               safe_pass = quote_plus(self.DB_PASS or "")
               return (
                    f"mssql+pymssql://{safe_user}:{safe_pass}"
                    f"@{self.DB_SERVER}:{self.DB_PORT}/{self.DB_NAME}"
               )
          return "sqlite:///./donations.db"

     @property
     def gateway_configured(self) -> bool:
          return bool(self.RAZORPAY_KEY_ID and self.RAZORPAY_KEY_SECRET)

     model_config = SettingsConfigDict(
          env_file=".env",
          env_file_encoding="utf-8",
          case_sensitive=True,
          extra="ignore",
     )


settings = Settings()
