"""
Guild-wide constants for the raid tracker.

Values that bound what a character may look like in the roster.
"""

class CharacterConstants:
    """Constants that bound character creation."""

    # Playable classes, stored lower-cased
    CLASSES = (
        'bard', 'beastlord', 'berserker', 'cleric', 'druid', 'enchanter',
        'magician', 'monk', 'necromancer', 'paladin', 'ranger', 'rogue',
        'shadowknight', 'shaman', 'warrior', 'wizard',
    )

    # Inclusive level range
    MIN_LEVEL = 1
    MAX_LEVEL = 150

    MIN_NAME_LENGTH = 3
