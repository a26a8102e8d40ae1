"""
user_model.py — User & Admin Bootstrap ORM Models
Water Quality Tracker
"""

from sqlalchemy import Column, Integer, String, Boolean, DateTime
from app.database import Base
from app.utils import new_id, utcnow


class User(Base):
    __tablename__ = "users"

    id = Column(String(32), primary_key=True, default=new_id)
    email = Column(String(254), unique=True, nullable=False, index=True)
    password_hash = Column(String(255), nullable=False)
    first_name = Column(String(100), nullable=False)
    last_name = Column(String(100), nullable=False)
    registration_date = Column(DateTime, default=utcnow, index=True)
    last_login = Column(DateTime, default=utcnow)
    is_active = Column(Boolean, default=True)
    is_admin = Column(Boolean, default=False)
    registration_source = Column(String(20), default="web")   # web | admin
    ip_address = Column(String(64), nullable=True)
    user_agent = Column(String(512), nullable=True)


class AdminBootstrap(Base):
    """Single-row claim on the first-admin slot (id is always 1)."""
    __tablename__ = "admin_bootstrap"

    id = Column(Integer, primary_key=True)
    user_id = Column(String(32), nullable=False)
    claimed_at = Column(DateTime, default=utcnow)
