"""
Loot attribution data models.
"""

from dataclasses import dataclass, field
from typing import Dict, Optional, Tuple


@dataclass(frozen=True)
class LootAttribution:
    """Who gets credit for a loot award."""
    award_id: int
    credited_main_id: int
    credited_main_name: str
    is_box_win: bool
    box_character_id: Optional[int] = None
    box_character_name: Optional[str] = None


@dataclass
class MainLootTotal:
    """Items credited to one main, with per-box drilldown keyed by box id."""
    main_id: int
    name: str
    total_items: int = 0
    drilldown: Dict[int, Tuple[str, int]] = field(default_factory=dict)

    def add(self, quantity: int, box_id: Optional[int] = None, box_name: Optional[str] = None):
        self.total_items += quantity
        if box_id is not None:
            _, current = self.drilldown.get(box_id, (box_name, 0))
            self.drilldown[box_id] = (box_name, current + quantity)
