"""
Bookkeeping entries. Amounts are signed: a payout reversal is recorded as a
negative entry pointing back at the original payment through `reversal_of_id`.
"""
from sqlalchemy import Column, Integer, String, Text, ForeignKey, Date, DateTime, Numeric
from datetime import datetime, date
from app.db.base import Base


class Expense(Base):
    __tablename__ = "expenses"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    project_id = Column(Integer, ForeignKey("projects.id", ondelete="SET NULL"), nullable=True, index=True)

    description = Column(String, nullable=False)
    amount = Column(Numeric(12, 2), nullable=False)
    category = Column(String, nullable=False)
    type = Column(String, nullable=False, default="GENERAL")
    date = Column(Date, default=date.today, nullable=False)
    notes = Column(Text, nullable=True)

    wave_payout_id = Column(String, nullable=True, index=True)
    reversal_of_id = Column(Integer, ForeignKey("expenses.id", ondelete="SET NULL"), nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
