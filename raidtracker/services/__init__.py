"""
Services package for the raid tracker.
"""

from .base import BaseService
from .attendance_recalc import AttendanceRecalcClient
from .entitlement import EntitlementService

__all__ = ['BaseService', 'AttendanceRecalcClient', 'EntitlementService']
