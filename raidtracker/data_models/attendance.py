"""
Attendance data models.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional


@dataclass(frozen=True)
class RaidSummary:
    """Single row of the raid list."""
    raid_id: int
    name: str
    created_at: Optional[datetime]
    is_official: bool
    total_ticks: int
    total_mains: int
