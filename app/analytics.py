"""
analytics.py — User & Water Quality Aggregates
Water Quality Tracker

All functions take an optional ``now`` (naive UTC) so the trailing windows
can be evaluated at any instant.
"""

import pandas as pd
from datetime import datetime, time, timedelta, timezone
from typing import Dict, List, Optional, Tuple
from app.config import settings
from app.quality import build_quality_summary
from app.utils import utcnow


# ── Constants ─────────────────────────────────────────────────────────────────
USER_COLUMNS = ["id", "registration_date", "is_active"]
MEASUREMENTS = {
    "temperature": "temperature",
    "turbidity": "turbidity",
    "dissolved_oxygen": "dissolvedOxygen",
    "ph": "ph",
    "fecal_coliform": "fecalColiform",
}
RECORD_COLUMNS = ["id", "date", "tester", "location", *MEASUREMENTS]


# ── Loading ───────────────────────────────────────────────────────────────────
def load_users_to_df(users: List[Dict]) -> pd.DataFrame:
    df = pd.DataFrame(users, columns=USER_COLUMNS)
    df["registration_date"] = pd.to_datetime(df["registration_date"])
    return df


def load_records_to_df(records: List[Dict]) -> pd.DataFrame:
    """Convert record dicts (from the repository) to a typed DataFrame."""
    df = pd.DataFrame(records, columns=RECORD_COLUMNS)
    df["date"] = pd.to_datetime(df["date"])
    for col in MEASUREMENTS:
        df[col] = df[col].astype(float)
    return df.sort_values("date").reset_index(drop=True)


# ── Windows ───────────────────────────────────────────────────────────────────
def local_day_bounds(now: datetime) -> Tuple[datetime, datetime]:
    """[start, end) of the server-local calendar day containing ``now``, as naive UTC."""
    local_day = now.replace(tzinfo=timezone.utc).astimezone().date()
    # each midnight takes its own UTC offset, so DST days are 23 or 25 hours long
    start = datetime.combine(local_day, time()).astimezone()
    end = datetime.combine(local_day + timedelta(days=1), time()).astimezone()
    return (
        start.astimezone(timezone.utc).replace(tzinfo=None),
        end.astimezone(timezone.utc).replace(tzinfo=None),
    )


def window_start(now: datetime, days: int) -> datetime:
    return now - timedelta(days=days)


# ── Aggregates ────────────────────────────────────────────────────────────────
def compute_user_analytics(
    users: List[Dict],
    now: Optional[datetime] = None,
    window_days: int = settings.RECENT_WINDOW_DAYS,
) -> Dict:
    now = now or utcnow()
    df = load_users_to_df(users)
    registered = df["registration_date"]
    day_start, day_end = local_day_bounds(now)
    return {
        "totalUsers": int(len(df)),
        "activeUsers": int(df["is_active"].astype(bool).sum()),
        "recentRegistrations": int((registered >= window_start(now, window_days)).sum()),
        "todayRegistrations": int(((registered >= day_start) & (registered < day_end)).sum()),
    }


def compute_averages(df: pd.DataFrame) -> Dict[str, Optional[float]]:
    """Mean of each measurement, rounded to 2 decimals (None when no records)."""
    if df.empty:
        return {key: None for key in MEASUREMENTS.values()}
    return {key: round(float(df[col].mean()), 2) for col, key in MEASUREMENTS.items()}


def compute_water_quality_analytics(
    records: List[Dict],
    now: Optional[datetime] = None,
    window_days: int = settings.RECENT_WINDOW_DAYS,
) -> Dict:
    now = now or utcnow()
    df = load_records_to_df(records)
    return {
        "totalRecords": int(len(df)),
        "uniqueLocations": int(df["location"].nunique()),
        "uniqueTesters": int(df["tester"].nunique()),
        "recentRecords": int((df["date"] >= window_start(now, window_days)).sum()),
        "qualityDistribution": build_quality_summary(records),
        "averages": compute_averages(df),
        "locationCounts": {str(k): int(v) for k, v in df["location"].value_counts().items()},
    }
