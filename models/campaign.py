from sqlalchemy import Column, Integer, String, Numeric, Boolean, DateTime, CheckConstraint, func
from sqlalchemy.orm import relationship
from .base import Base


class Campaign(Base):
     """
     Campaign aggregate - only the fields the donation pipeline reads or moves.

     raised_amount and contributors are mutated with atomic UPDATE ... SET x = x + ?
     statements (see services.settlement_service); never fetch-then-save them.
     """
     __tablename__ = "campaigns"

     id = Column(Integer, primary_key=True, autoincrement=True)
     title = Column(String(255), nullable=False)
     beneficiary_name = Column(String(255), nullable=True)
     goal_amount = Column(Numeric(14, 2), nullable=False)
     raised_amount = Column(Numeric(14, 2), default=0, nullable=False)
     contributors = Column(Integer, default=0, nullable=False)
     created_by = Column(Integer, nullable=False, index=True)  # Campaign owner (user id)
     is_approved = Column(Boolean, default=False, nullable=False)
     created_at = Column(DateTime, server_default=func.now(), nullable=False)

     # Relationships
     donations = relationship("Donation", back_populates="campaign")
     wallet = relationship("CampaignWallet", back_populates="campaign", uselist=False)

     __table_args__ = (
          CheckConstraint("goal_amount > 0", name="ck_campaigns_goal_positive"),
          CheckConstraint("contributors >= 0", name="ck_campaigns_contributors_non_negative"),
     )

     def __repr__(self):
          return f"<Campaign(id={self.id}, raised={self.raised_amount}, goal={self.goal_amount})>"
