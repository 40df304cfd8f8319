"""
One row per payout we tried to reverse. The unique payout_id makes the claim
single-flight: a second request for the same payout cannot insert its own row.
"""
from sqlalchemy import Column, Integer, String, ForeignKey, DateTime, Numeric
from datetime import datetime
from app.db.base import Base


class PayoutReversal(Base):
    __tablename__ = "payout_reversals"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    payout_id = Column(String, nullable=False, unique=True, index=True)
    status = Column(String, nullable=False, default="pending")  # pending | reversed
    refunded_amount = Column(Numeric(12, 2), nullable=True)
    expense_id = Column(Integer, ForeignKey("expenses.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    reversed_at = Column(DateTime, nullable=True)
