from sqlalchemy import Column, Integer, String, Boolean, DateTime
from sqlalchemy.sql import func
from app.db.base import Base

class User(Base):
    __tablename__ = "users"
    
    id = Column(Integer, primary_key=True, index=True)
    email = Column(String, unique=True, index=True, nullable=False)
    auth_subject = Column(String, unique=True, index=True, nullable=True)  # `sub` claim of the identity provider token
    first_name = Column(String, nullable=True)
    last_name = Column(String, nullable=True)
    company_name = Column(String, nullable=True)
    currency = Column(String, default="XOF", nullable=False)  # "FCFA" is accepted and mapped to XOF for Wave
    wave_api_key = Column(String, nullable=True)  # Per-user Wave business API key
    email_notifications = Column(Boolean, default=True, nullable=False)
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())
