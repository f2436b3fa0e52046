"""Wall-clock normalisation for injected timestamps."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional

from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

logger = logging.getLogger(__name__)


def as_wall_clock(value: datetime, timezone_name: Optional[str] = None) -> datetime:
    """Return ``value`` as a naive datetime in the learner's wall-clock time.

    Sessions are stored as naive local dates and times, so aware inputs are
    converted into ``timezone_name`` (when known) and stripped of tzinfo.
    """
    if value.tzinfo is None:
        return value
    if timezone_name:
        try:
            value = value.astimezone(ZoneInfo(timezone_name))
        except ZoneInfoNotFoundError:
            logger.warning("Unknown timezone %s; keeping the offset supplied by the caller.", timezone_name)
    return value.replace(tzinfo=None)
