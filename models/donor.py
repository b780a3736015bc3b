from sqlalchemy import Column, Integer, String, Numeric, Boolean, DateTime, func
from sqlalchemy.orm import relationship
from .base import Base


class Donor(Base):
     """
     Donor account (registered donors only; guests have no row here).
     Aggregate stats are updated once per settled donation.
     """
     __tablename__ = "donors"

     id = Column(Integer, primary_key=True, autoincrement=True)
     name = Column(String(200), nullable=False)
     email = Column(String(255), unique=True, nullable=False, index=True)
     phone = Column(String(30), nullable=True)
     is_blocked = Column(Boolean, default=False, nullable=False)
     blocked_reason = Column(String(500), default="", nullable=False)

     # Stats
     total_donated = Column(Numeric(14, 2), default=0, nullable=False)
     total_donations = Column(Integer, default=0, nullable=False)
     last_donation_at = Column(DateTime, nullable=True)

     created_at = Column(DateTime, server_default=func.now(), nullable=False)

     # Relationships
     donations = relationship("Donation", back_populates="donor")

     def __repr__(self):
          return f"<Donor(id={self.id}, email='{self.email}')>"
