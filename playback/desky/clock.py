"""
Clock display formatting
"""

from datetime import datetime
from typing import Optional


def format_time(moment: Optional[datetime] = None, use_24_hour_format: bool = True) -> str:
    moment = moment or datetime.now()
    if use_24_hour_format:
        return moment.strftime("%H:%M:%S")
    hour = moment.hour % 12 or 12
    return f"{hour}:{moment.strftime('%M:%S %p')}"


def format_duration(ms: int) -> str:
    """m:ss for track position/duration"""
    seconds = max(int(ms), 0) // 1000
    return f"{seconds // 60}:{seconds % 60:02d}"
