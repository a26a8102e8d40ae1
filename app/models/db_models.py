"""
db_models.py — Water Quality & Tracking ORM Models
Water Quality Tracker
"""

from sqlalchemy import Column, Float, String, DateTime, Text, JSON, Enum as SAEnum, Index
from app.database import Base
from app.utils import new_id, utcnow
import enum


# ── Enums ─────────────────────────────────────────────────────────────────────
class TrackingAction(str, enum.Enum):
    REGISTRATION = "registration"
    LOGIN = "login"
    LOGOUT = "logout"
    PROFILE_UPDATE = "profile_update"


# ── Water Quality Records ─────────────────────────────────────────────────────
class WaterQualityRecord(Base):
    """Field test of a single sampling location."""
    __tablename__ = "water_quality_records"

    id = Column(String(32), primary_key=True, default=new_id)
    date = Column(DateTime, nullable=False, default=utcnow, index=True)
    time = Column(String(20), nullable=False)
    tester = Column(String(200), nullable=False)         # free text, not a user FK
    location = Column(String(200), nullable=False)
    temperature = Column(Float, nullable=False)          # °C
    turbidity = Column(Float, nullable=False)            # NTU
    dissolved_oxygen = Column(Float, nullable=False)     # mg/L
    ph = Column(Float, nullable=False)
    fecal_coliform = Column(Float, nullable=False)       # CFU/100mL
    site_notes = Column(Text, nullable=True)
    weather = Column(String(200), nullable=True)
    additional_notes = Column(Text, nullable=True)
    created_by = Column(String(32), nullable=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow)

    __table_args__ = (
        Index("idx_wq_location", "location"),
    )


# ── Tracking Events ───────────────────────────────────────────────────────────
class TrackingEvent(Base):
    """Write-only audit log of account activity."""
    __tablename__ = "tracking_events"

    id = Column(String(32), primary_key=True, default=new_id)
    user_id = Column(String(32), nullable=False, index=True)
    action = Column(SAEnum(TrackingAction), nullable=False)
    timestamp = Column(DateTime, default=utcnow, index=True)
    ip_address = Column(String(64), nullable=True)
    user_agent = Column(String(512), nullable=True)
    details = Column("metadata", JSON, nullable=True)
