import os
from dotenv import load_dotenv

load_dotenv()

class Config:
    """Raid tracker configuration settings"""
    
    # Database settings
    DATABASE_URL = os.getenv('DATABASE_URL', 'sqlite:///raid_tracker.db')
    
    # Runtime settings
    DEBUG = os.getenv('DEBUG', 'False').lower() == 'true'
    LOG_DIR = os.getenv('LOG_DIR', 'logs')
    
    # External attendance-percentage service (empty disables the call)
    ATTENDANCE_RECALC_URL = os.getenv('ATTENDANCE_RECALC_URL', '')
    ATTENDANCE_RECALC_TIMEOUT = float(os.getenv('ATTENDANCE_RECALC_TIMEOUT', 10))
    
    # Attendance settings
    TICK_SKEW_THRESHOLD_MINUTES = int(os.getenv('TICK_SKEW_THRESHOLD_MINUTES', 60))
    REQUEST_MAX_RETRIES = int(os.getenv('REQUEST_MAX_RETRIES', 3))
    
    # Loot settings
    PASS_TOKEN_ITEM_ID = int(os.getenv('PASS_TOKEN_ITEM_ID', 0))  # 0 = no pass token
    
    @classmethod
    def validate(cls):
        """Validate that configuration values are usable"""
        if cls.ATTENDANCE_RECALC_TIMEOUT < 0:
            raise ValueError("ATTENDANCE_RECALC_TIMEOUT must not be negative")
        if cls.TICK_SKEW_THRESHOLD_MINUTES < 0:
            raise ValueError("TICK_SKEW_THRESHOLD_MINUTES must not be negative")
        if cls.REQUEST_MAX_RETRIES < 1:
            raise ValueError("REQUEST_MAX_RETRIES must be at least 1")
