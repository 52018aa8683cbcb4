"""
Audit log data models.
"""

from dataclasses import dataclass
from typing import List, Optional

from raidtracker.database.models import AuditEntry


@dataclass(frozen=True)
class AuditSegment:
    """
    One piece of a rendered audit message.

    kind is 'text' for plain text, otherwise the token prefix
    (un, fn, tn, rn, in) with ref_id pointing at the referenced row.
    """
    kind: str
    text: str
    ref_id: Optional[int] = None


@dataclass(frozen=True)
class AuditPage:
    """Paginated audit entries."""
    entries: List[AuditEntry]
    page: int
    page_size: int
    total_results: int
