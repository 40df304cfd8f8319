from sqlalchemy import Column, Integer, String, Text, JSON, Boolean, ForeignKey, DateTime
from datetime import datetime
from app.db.base import Base


class Notification(Base):
    __tablename__ = "notifications"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    title = Column(String, nullable=False)
    message = Column(Text, nullable=False)
    type = Column(String, nullable=False, default="INFO")  # INFO, SUCCESS, INVOICE_PAID, ...
    related_type = Column(String, nullable=True)  # "invoice", "payout"
    related_id = Column(String, nullable=True)
    action_url = Column(String, nullable=True)
    extra_metadata = Column(JSON, nullable=True)
    is_read = Column(Boolean, default=False, nullable=False)
    email_sent = Column(Boolean, default=False, nullable=False)
    email_sent_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)

    def __repr__(self):
        return f"<Notification(id={self.id}, type={self.type}, user_id={self.user_id})>"
