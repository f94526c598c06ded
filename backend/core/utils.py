"""
Utility functions for the workflow automation engine.

Includes:
- UTC datetime helpers
- JSON size measurement
- Pagination helpers
"""

import json
from datetime import datetime, timezone
from typing import Any


def utc_now() -> datetime:
    """
    Get the current UTC datetime.

    Returns:
        Current datetime in UTC timezone
    """
    return datetime.now(timezone.utc)


def json_size(value: Any) -> int:
    """
    Size in bytes of ``value`` serialized as compact UTF-8 JSON.

    Non-JSON values are stringified rather than rejected.
    """
    return len(json.dumps(value, separators=(",", ":"), default=str).encode("utf-8"))


def calculate_offset(page: int = 1, per_page: int = 20) -> int:
    """
    Calculate database offset from page and per_page values.

    Args:
        page: Page number (1-indexed)
        per_page: Items per page

    Returns:
        Offset for database queries
    """
    return (max(page, 1) - 1) * per_page
