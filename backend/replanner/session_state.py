"""Session lifecycle classification."""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Iterable, List, Optional

from .clock import as_wall_clock
from .config import get_settings
from .models import StudySession

logger = logging.getLogger(__name__)

_LIVE_STATES = {"scheduled", "in_progress"}


@dataclass
class SessionClassification:
    active: List[StudySession] = field(default_factory=list)
    missed: List[StudySession] = field(default_factory=list)
    completed: List[StudySession] = field(default_factory=list)
    terminal: List[StudySession] = field(default_factory=list)
    newly_missed: List[StudySession] = field(default_factory=list)

    def as_dict(self) -> Dict[str, List[StudySession]]:
        return {
            "active": self.active,
            "missed": self.missed,
            "completed": self.completed,
            "terminal": self.terminal,
        }


def is_missed(session: StudySession, now: datetime) -> bool:
    """A live session whose end has strictly passed without completion."""
    return session.state in _LIVE_STATES and session.end_at < now


def classify_sessions(
    sessions: Iterable[StudySession],
    now: datetime,
    timezone_name: Optional[str] = None,
) -> SessionClassification:
    """Partition sessions by lifecycle and mark newly missed ones.

    The only mutation is ``scheduled``/``in_progress`` -> ``missed_original``
    for sessions whose end is before ``now``; running it twice is a no-op.
    An aware ``now`` is read as wall-clock time in ``timezone_name``, falling
    back to the configured timezone.
    """
    if now.tzinfo is not None:
        now = as_wall_clock(now, timezone_name if timezone_name is not None else get_settings().timezone)
    result = SessionClassification()
    for session in sessions:
        if is_missed(session, now):
            session.state = "missed_original"
            result.newly_missed.append(session)
        if session.state == "missed_original":
            result.missed.append(session)
        elif session.state in _LIVE_STATES:
            result.active.append(session)
        elif session.state == "completed":
            result.completed.append(session)
        else:
            result.terminal.append(session)
    if result.newly_missed:
        logger.debug(
            "Marked %d session(s) as missed: %s",
            len(result.newly_missed),
            ", ".join(session.key for session in result.newly_missed),
        )
    return result


def state_counts(sessions: Iterable[StudySession]) -> Dict[str, int]:
    """Aggregated state view used in redistribution metadata."""
    counts = Counter(session.state for session in sessions)
    return dict(sorted(counts.items()))


__all__ = [
    "SessionClassification",
    "classify_sessions",
    "is_missed",
    "state_counts",
]
