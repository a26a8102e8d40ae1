"""
quality.py — Water Quality Status Classification
Water Quality Tracker
"""

import enum
from typing import Dict, Iterable


class QualityStatus(str, enum.Enum):
    GOOD = "Good"
    FAIR = "Fair"
    POOR = "Poor"


# ── Thresholds ────────────────────────────────────────────────────────────────
GOOD_PH = (6.5, 8.5)
GOOD_MIN_DO = 5.0
GOOD_MAX_COLIFORM = 200.0

FAIR_PH = (6.0, 9.0)
FAIR_MIN_DO = 3.0
FAIR_MAX_COLIFORM = 1000.0


# ── Classification ────────────────────────────────────────────────────────────
def classify_quality(ph: float, dissolved_oxygen: float, fecal_coliform: float) -> QualityStatus:
    """
    Classify a sample as Good / Fair / Poor.
    The tiers overlap, so Good must be checked before Fair.
    """
    if (GOOD_PH[0] <= ph <= GOOD_PH[1]
            and dissolved_oxygen >= GOOD_MIN_DO
            and fecal_coliform <= GOOD_MAX_COLIFORM):
        return QualityStatus.GOOD
    elif (FAIR_PH[0] <= ph <= FAIR_PH[1]
            and dissolved_oxygen >= FAIR_MIN_DO
            and fecal_coliform <= FAIR_MAX_COLIFORM):
        return QualityStatus.FAIR
    return QualityStatus.POOR


def classify_record(record: Dict) -> QualityStatus:
    return classify_quality(record["ph"], record["dissolved_oxygen"], record["fecal_coliform"])


# ── Summary ───────────────────────────────────────────────────────────────────
def build_quality_summary(records: Iterable[Dict]) -> Dict:
    """Count records per status tier for dashboard consumption."""
    counts = {s.value.lower(): 0 for s in QualityStatus}
    for r in records:
        counts[classify_record(r).value.lower()] += 1
    return counts
