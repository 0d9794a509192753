"""Focus session records: the flow handle, activity log and check-in prompt."""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Any, Tuple

import config

logger = logging.getLogger(__name__)


@dataclass
class FlowSession:
    """
    A single focus session ("flow") as handed from setup to the engine.

    The approved website list is derived once at setup and never changes
    for the lifetime of the session. The end time is set exactly once.
    """

    flow_id: str
    user_id: str
    task_description: str
    tools_description: str
    duration_minutes: int
    approved_websites: Tuple[str, ...] = ()
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None

    def __post_init__(self):
        # Freeze the allow-list so callers can't mutate it mid-session
        self.approved_websites = tuple(self.approved_websites)

    @property
    def planned_end_time(self) -> Optional[datetime]:
        """Start time plus the planned duration."""
        if not self.start_time:
            return None
        return self.start_time + timedelta(minutes=self.duration_minutes)

    def mark_ended(self, end_time: Optional[datetime] = None) -> bool:
        """
        Record the end time of the session.

        Args:
            end_time: Optional end timestamp. If None, uses current time.

        Returns:
            True if the end time was set, False if it was already set.
        """
        if self.end_time is not None:
            return False
        self.end_time = end_time or datetime.now()
        return True

    def to_dict(self) -> Dict[str, Any]:
        """Serialise for logging and API responses."""
        return {
            "flow_id": self.flow_id,
            "user_id": self.user_id,
            "task_description": self.task_description,
            "tools_description": self.tools_description,
            "duration_minutes": self.duration_minutes,
            "approved_websites": list(self.approved_websites),
            "start_time": self.start_time.isoformat() if self.start_time else None,
            "end_time": self.end_time.isoformat() if self.end_time else None,
        }


@dataclass(frozen=True)
class ActivityLogEntry:
    """One logged activity: a check-in answer or a classified observation."""

    activity: str
    timestamp: datetime
    is_distraction: bool
    reason: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "activity": self.activity,
            "timestamp": self.timestamp.isoformat(),
            "is_distraction": self.is_distraction,
            "reason": self.reason,
        }


@dataclass
class CheckinPrompt:
    """A pending check-in question. At most one is open at a time."""

    question: str
    open: bool = True
    asked_at: datetime = field(default_factory=datetime.now)

    def close(self) -> None:
        self.open = False


class ActivityLog:
    """
    Append-only activity log for one session.

    Timestamps are kept non-decreasing: an entry stamped earlier than the
    previous one (clock adjustment, late callback) is clamped to the
    previous entry's timestamp.
    """

    def __init__(self):
        self._entries: List[ActivityLogEntry] = []

    def append(
        self,
        activity: str,
        is_distraction: bool,
        reason: str = "",
        timestamp: Optional[datetime] = None,
    ) -> ActivityLogEntry:
        """
        Append a new entry.

        Args:
            activity: Free-text activity label.
            is_distraction: Whether the activity was off-task.
            reason: Free-text explanation.
            timestamp: Optional timestamp. If None, uses current time.

        Returns:
            The stored entry.
        """
        timestamp = timestamp or datetime.now()
        if self._entries and timestamp < self._entries[-1].timestamp:
            logger.debug(
                f"Clamping out-of-order activity timestamp {timestamp.isoformat()} "
                f"to {self._entries[-1].timestamp.isoformat()}"
            )
            timestamp = self._entries[-1].timestamp

        entry = ActivityLogEntry(
            activity=activity,
            timestamp=timestamp,
            is_distraction=is_distraction,
            reason=reason,
        )
        self._entries.append(entry)
        return entry

    def log_focus_confirmed(self, timestamp: Optional[datetime] = None) -> ActivityLogEntry:
        return self.append(
            config.ACTIVITY_FOCUS_CONFIRMED,
            is_distraction=False,
            reason=config.REASON_FOCUS_CONFIRMED,
            timestamp=timestamp,
        )

    def log_self_reported_distraction(self, timestamp: Optional[datetime] = None) -> ActivityLogEntry:
        return self.append(
            config.ACTIVITY_SELF_REPORTED,
            is_distraction=True,
            reason=config.REASON_SELF_REPORTED,
            timestamp=timestamp,
        )

    @property
    def entries(self) -> List[ActivityLogEntry]:
        """Snapshot of the entries in append order."""
        return list(self._entries)

    def clear(self) -> None:
        self._entries = []

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self):
        return iter(list(self._entries))
