"""
Utility modules for the event series backend.

This package contains shared utilities used across the application:
- timezone: IANA zone resolution, instant parsing and local-day arithmetic
- deadline: Cooperative per-operation deadlines for database calls
- logging_config: Centralized logging configuration
"""

from backend.src.utils.deadline import Deadline
from backend.src.utils.timezone import (
    local_date,
    parse_instant,
    resolve_timezone,
    same_local_day,
    to_iso,
)

__all__ = [
    "Deadline",
    "local_date",
    "parse_instant",
    "resolve_timezone",
    "same_local_day",
    "to_iso",
]
