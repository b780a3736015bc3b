"""
Request-scoped dependencies: bearer token, role checks, client metadata.

Tokens are HS256 JWTs carrying {"id": <user id>, "role": "donor" | "admin" | ...}.
"""
import logging
from typing import Optional

from fastapi import Depends, HTTPException, Request
from jose import JWTError, jwt
from sqlalchemy.orm import Session

from config import settings
from database import get_session
from models import Donor
from services.payment_gateway import get_payment_gateway

logger = logging.getLogger(__name__)

ADMIN_ROLE = "admin"
DONOR_ROLE = "donor"

__all__ = [
     "verify_token",
     "optional_token",
     "require_admin",
     "require_donor",
     "client_ip",
     "user_agent",
     "get_payment_gateway",
]


def _decode(token: str) -> dict:
     try:
          return jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM])
     except JWTError:
          raise HTTPException(status_code=403, detail="Invalid token")


def verify_token(request: Request) -> dict:
     auth = request.headers.get("Authorization")
     if not auth or not auth.startswith("Bearer "):
          raise HTTPException(status_code=401, detail="Missing token")
     payload = _decode(auth.split(" ", 1)[1])
     if payload.get("id") is None:
          raise HTTPException(status_code=403, detail="Invalid token")
     return payload


def optional_token(request: Request) -> Optional[dict]:
     auth = request.headers.get("Authorization")
     if not auth or not auth.startswith("Bearer "):
          return None
     return _decode(auth.split(" ", 1)[1])


def require_admin(token: dict = Depends(verify_token)) -> dict:
     if token.get("role") != ADMIN_ROLE:
          raise HTTPException(status_code=403, detail="Admin access required")
     return token


def require_donor(
     token: dict = Depends(verify_token),
     db: Session = Depends(get_session),
) -> Donor:
     if token.get("role") != DONOR_ROLE:
          raise HTTPException(status_code=403, detail="Donor access required")
     donor = db.get(Donor, int(token["id"]))
     if donor is None:
          raise HTTPException(status_code=404, detail="Donor not found")
     return donor


def client_ip(request: Request) -> str:
     """First hop of X-Forwarded-For when behind a proxy, else the socket peer."""
     forwarded = request.headers.get("X-Forwarded-For")
     if forwarded:
          first = forwarded.split(",")[0].strip()
          if first:
               return first
     return request.client.host if request.client else ""


def user_agent(request: Request) -> str:
     return (request.headers.get("User-Agent") or "")[:500]
