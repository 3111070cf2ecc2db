"""UTC time helpers.

Importing this module sets TZ=UTC for the process. Timestamps are stored as naive
UTC datetimes so PostgreSQL and SQLite compare them the same way.
"""

import os
from datetime import UTC, datetime

os.environ["TZ"] = "UTC"


def utc_now() -> datetime:
    """Current UTC time as a naive datetime."""
    return datetime.now(UTC).replace(tzinfo=None)
