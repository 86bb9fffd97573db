from datetime import datetime
from typing import Optional

import pytz


def to_naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Naive values are taken to be UTC already; aware ones are converted and stripped."""
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(pytz.utc).replace(tzinfo=None)
