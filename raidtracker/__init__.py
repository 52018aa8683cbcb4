"""
Raid Tracker - attendance and entitlement engine for a raiding guild.
"""

__version__ = "0.1.0"
