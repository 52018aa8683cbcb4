from sqlalchemy import (
    Column, Integer, String, DateTime, Boolean, Text, Float,
    ForeignKey, Enum as SQLEnum, UniqueConstraint, CheckConstraint, Index, event, text
)
from sqlalchemy.orm import declarative_base, relationship
from sqlalchemy.sql import func
from enum import Enum

Base = declarative_base()

class ClaimStatus(Enum):
    REQUESTED = "requested"
    APPROVED = "approved"
    REJECTED = "rejected"

class ItemCategory(Enum):
    BIS = "bis"
    ROLLED = "rolled"
    TRASH = "trash"
    UNCATEGORIZED = "uncategorized"

class AuditType(Enum):
    """Privileged actions recorded in the audit log"""
    TICK_REQUESTED = "tick_requested"
    TICK_APPROVED = "tick_approved"
    TICK_REJECTED = "tick_rejected"
    TICKS_REMOVED = "ticks_removed"
    BOX_LINKED = "box_linked"
    BOX_UNLINKED = "box_unlinked"
    CHARACTER_DELETED = "character_deleted"
    CHARACTER_RESTORED = "character_restored"
    LOOT_REASSIGNED = "loot_reassigned"
    GUILD_SETTINGS_UPDATED = "guild_settings_updated"

class Guild(Base):
    __tablename__ = 'guilds'

    id = Column(Integer, primary_key=True)
    name = Column(String(100), nullable=False, unique=True)

    # Modifiers consumed by the external attendance service (stored as fractions)
    last_win_modifier = Column(Float, default=0.0)
    box_modifier = Column(Float, default=0.0)

    # Metadata
    created_at = Column(DateTime, default=func.now())

    def __repr__(self):
        return f"<Guild(id={self.id}, name='{self.name}')>"

class Character(Base):
    """
    A playable character. Whether it is a main or a box is decided by
    OwnershipLink, not by a column on this table.
    """
    __tablename__ = 'characters'

    id = Column(Integer, primary_key=True)
    guild_id = Column(Integer, ForeignKey('guilds.id'), nullable=False, index=True)
    name = Column(String(64), nullable=False)  # Stored trimmed and lower-cased
    character_class = Column('class', String(32), nullable=True)
    level = Column(Integer, default=1)
    rank = Column(String(20), default='raider')  # alt, raider, support

    # Ticket entitlement
    base_ticket_allocation = Column(Integer, default=0)
    ticket_allocation = Column(Integer, nullable=True)      # Written by the external attendance service
    attendance_30 = Column(Integer, default=0)              # Recent attendance percentage, external
    ticks_since_last_win = Column(Integer, default=0)       # External

    # Soft delete
    is_deleted = Column(Boolean, default=False, nullable=False)

    # Metadata
    created_at = Column(DateTime, default=func.now())

    # Relationships
    guild = relationship("Guild")

    __table_args__ = (
        # Names are unique among live characters only
        Index(
            'uq_character_guild_name_live', 'guild_id', 'name', unique=True,
            sqlite_where=text('is_deleted = 0'),
            postgresql_where=text('is_deleted = false'),
        ),
    )

    def __repr__(self):
        return f"<Character(id={self.id}, name='{self.name}', class='{self.character_class}')>"

class OwnershipLink(Base):
    """A box (alt) owned by a main. A box has at most one main."""
    __tablename__ = 'ownership_links'

    id = Column(Integer, primary_key=True)
    main_id = Column(Integer, ForeignKey('characters.id'), nullable=False, index=True)
    box_id = Column(Integer, ForeignKey('characters.id'), nullable=False, unique=True)

    # Metadata
    created_at = Column(DateTime, default=func.now())

    # Relationships
    main = relationship("Character", foreign_keys=[main_id])
    box = relationship("Character", foreign_keys=[box_id])

    __table_args__ = (
        CheckConstraint('main_id <> box_id', name='no_self_ownership_check'),
    )

    def __repr__(self):
        return f"<OwnershipLink(main_id={self.main_id}, box_id={self.box_id})>"

class Raid(Base):
    __tablename__ = 'raids'

    id = Column(Integer, primary_key=True)
    guild_id = Column(Integer, ForeignKey('guilds.id'), nullable=False, index=True)
    name = Column(String(200), nullable=False)
    is_official = Column(Boolean, default=True)

    # Metadata
    created_at = Column(DateTime, default=func.now())

    def __repr__(self):
        return f"<Raid(id={self.id}, name='{self.name}', official={self.is_official})>"

class AttendanceFact(Base):
    """Confirmed presence of a character at one tick (raid hour) of a raid."""
    __tablename__ = 'attendance_facts'

    id = Column(Integer, primary_key=True)
    character_id = Column(Integer, ForeignKey('characters.id'), nullable=False, index=True)
    raid_id = Column(Integer, ForeignKey('raids.id'), nullable=False, index=True)
    tick_index = Column(Integer, nullable=False)  # 0-based

    recorded_at = Column(DateTime, default=func.now())

    # Relationships
    character = relationship("Character")
    raid = relationship("Raid")

    __table_args__ = (
        UniqueConstraint('character_id', 'raid_id', 'tick_index', name='unique_attendance_per_tick'),
        CheckConstraint('tick_index >= 0', name='non_negative_tick_check'),
    )

    def __repr__(self):
        return f"<AttendanceFact(character_id={self.character_id}, raid_id={self.raid_id}, tick={self.tick_index})>"

class TickClaim(Base):
    """
    An attendance request awaiting officer approval.

    The state is derived from the decision columns: both null means
    requested, approved_by set means approved, rejected_by set means
    rejected. A later request for the same key reopens the claim.
    """
    __tablename__ = 'tick_claims'

    id = Column(Integer, primary_key=True)
    character_id = Column(Integer, ForeignKey('characters.id'), nullable=False, index=True)
    raid_id = Column(Integer, ForeignKey('raids.id'), nullable=False, index=True)
    tick_index = Column(Integer, nullable=False)

    # Request
    requested_by = Column(Integer, ForeignKey('characters.id'), nullable=False)
    requested_at = Column(DateTime, default=func.now())

    # Decision (mutually exclusive)
    approved_by = Column(Integer, ForeignKey('characters.id'), nullable=True)
    approved_at = Column(DateTime, nullable=True)
    rejected_by = Column(Integer, ForeignKey('characters.id'), nullable=True)
    rejected_at = Column(DateTime, nullable=True)

    # Metadata
    created_at = Column(DateTime, default=func.now())

    # Relationships
    character = relationship("Character", foreign_keys=[character_id])
    raid = relationship("Raid")
    requester = relationship("Character", foreign_keys=[requested_by])
    approver = relationship("Character", foreign_keys=[approved_by])
    rejecter = relationship("Character", foreign_keys=[rejected_by])

    __table_args__ = (
        UniqueConstraint('character_id', 'raid_id', 'tick_index', name='unique_claim_per_tick'),
        CheckConstraint('approved_by IS NULL OR rejected_by IS NULL', name='single_decision_check'),
    )

    @property
    def status(self) -> ClaimStatus:
        if self.approved_by is not None:
            return ClaimStatus.APPROVED
        if self.rejected_by is not None:
            return ClaimStatus.REJECTED
        return ClaimStatus.REQUESTED

    @property
    def decided_at(self):
        return self.approved_at or self.rejected_at

    def __repr__(self):
        return f"<TickClaim(character_id={self.character_id}, raid_id={self.raid_id}, tick={self.tick_index}, status={self.status.value})>"

class Item(Base):
    __tablename__ = 'items'

    id = Column(Integer, primary_key=True)
    name = Column(String(200), nullable=False)
    category = Column(SQLEnum(ItemCategory), default=ItemCategory.UNCATEGORIZED, nullable=False)

    def __repr__(self):
        return f"<Item(id={self.id}, name='{self.name}', category={self.category.value})>"

class LootAward(Base):
    __tablename__ = 'loot_awards'

    id = Column(Integer, primary_key=True)
    raid_id = Column(Integer, ForeignKey('raids.id'), nullable=False, index=True)
    character_id = Column(Integer, ForeignKey('characters.id'), nullable=False, index=True)
    item_id = Column(Integer, ForeignKey('items.id'), nullable=False)
    quantity = Column(Integer, default=1, nullable=False)
    was_assigned = Column(Boolean, default=False)

    # Metadata
    created_at = Column(DateTime, default=func.now())

    # Relationships
    raid = relationship("Raid")
    character = relationship("Character")
    item = relationship("Item")

    def __repr__(self):
        return f"<LootAward(id={self.id}, character_id={self.character_id}, item_id={self.item_id}, qty={self.quantity})>"

class AuditEntry(Base):
    """
    Append-only record of a privileged action.

    The message is rendered from the type's template when the entry is
    written. Bracketed tokens (un[...], fn[...], tn[...], rn[...], in[...])
    point at actor, from_character, to_character, raid and item.
    """
    __tablename__ = 'audit_entries'

    id = Column(Integer, primary_key=True)
    guild_id = Column(Integer, ForeignKey('guilds.id'), nullable=False, index=True)
    actor_id = Column(Integer, ForeignKey('characters.id'), nullable=False)
    type = Column(SQLEnum(AuditType), nullable=False)

    # Typed references
    item_id = Column(Integer, ForeignKey('items.id'), nullable=True)
    from_character_id = Column(Integer, ForeignKey('characters.id'), nullable=True)
    to_character_id = Column(Integer, ForeignKey('characters.id'), nullable=True)
    raid_id = Column(Integer, ForeignKey('raids.id'), nullable=True, index=True)

    message = Column(Text, nullable=False)

    # Metadata
    created_at = Column(DateTime, default=func.now())

    def __repr__(self):
        return f"<AuditEntry(id={self.id}, type={self.type.value}, actor_id={self.actor_id})>"

# ============================================================================
# SQLAlchemy Event Listeners
# ============================================================================

@event.listens_for(AuditEntry, "before_update")
@event.listens_for(AuditEntry, "before_delete")
def _reject_audit_mutation(mapper, connection, target):
    """Audit entries are immutable once written"""
    raise ValueError(f"Audit entry {target.id} is append-only")
