"""Analytics for computing the end-of-session focus report."""

import logging
from typing import Dict, List, Any, Iterable

from tracking.session import ActivityLogEntry

logger = logging.getLogger(__name__)


def format_duration(seconds: float, full_precision: bool = False) -> str:
    """
    Format duration in seconds to human-readable string.

    Args:
        seconds: Duration in seconds (truncated to int for display)
        full_precision: If True, always show all non-zero time components
                       including seconds even when hours > 0.

    Returns:
        Formatted string like "1 min 30 secs", "45 secs", "2 hrs 15 mins"

    Examples:
        >>> format_duration(90)
        '1 min 30 secs'
        >>> format_duration(3725)
        '1 hr 2 mins'
        >>> format_duration(0)
        '0 sec'
    """
    total_seconds = int(seconds) if seconds >= 0 else 0

    hours = total_seconds // 3600
    mins = (total_seconds % 3600) // 60
    secs = total_seconds % 60

    parts = []

    if hours > 0:
        parts.append(f"{hours} {'hr' if hours == 1 else 'hrs'}")

    if mins > 0 or (full_precision and hours > 0):
        parts.append(f"{mins} {'min' if mins == 1 else 'mins'}")

    if secs > 0 or full_precision:
        if hours == 0 or full_precision:
            parts.append(f"{secs} {'sec' if secs == 1 else 'secs'}")

    return " ".join(parts) if parts else "0 sec"


def format_countdown(seconds: int) -> str:
    """Format remaining seconds as MM:SS (or H:MM:SS for long sessions)."""
    seconds = max(0, int(seconds))
    hours, remainder = divmod(seconds, 3600)
    mins, secs = divmod(remainder, 60)
    if hours:
        return f"{hours}:{mins:02d}:{secs:02d}"
    return f"{mins:02d}:{secs:02d}"


def compute_report(entries: Iterable[ActivityLogEntry], duration_minutes: int) -> Dict[str, Any]:
    """
    Compute the focus report from the final activity log.

    Every logged entry counts as one check. Distraction percentage is the
    share of entries flagged as distractions; focus percentage is its
    complement. The two sub-logs partition the log and keep its order.

    Args:
        entries: Activity log entries in append order
        duration_minutes: Planned session duration

    Returns:
        Dictionary with counts, percentages and itemised sub-logs
    """
    entries = list(entries)

    distractions: List[ActivityLogEntry] = [e for e in entries if e.is_distraction]
    focus_activities: List[ActivityLogEntry] = [e for e in entries if not e.is_distraction]

    total_checks = len(entries)
    distraction_count = len(distractions)
    distraction_pct = (distraction_count / total_checks * 100.0) if total_checks > 0 else 0.0

    return {
        "duration_minutes": duration_minutes,
        "total_checks": total_checks,
        "distraction_count": distraction_count,
        "focus_count": len(focus_activities),
        "distraction_percentage": distraction_pct,
        "focus_percentage": 100.0 - distraction_pct,
        "distractions": distractions,
        "focus_activities": focus_activities,
    }


def get_focus_percentage(report: Dict[str, Any]) -> float:
    """
    Read the focus percentage from a report, clamped to 0-100.

    Returns 100.0 for an empty report (no checks means no distractions).
    """
    if not report:
        return 100.0
    try:
        focus_pct = float(report.get("focus_percentage", 100.0))
    except (TypeError, ValueError):
        return 100.0
    if focus_pct < 0.0 or focus_pct > 100.0:
        logger.warning(f"Focus percentage out of range ({focus_pct:.2f}%), clamping to 0-100")
    return min(100.0, max(0.0, focus_pct))


def generate_summary_text(report: Dict[str, Any], task_description: str = "") -> str:
    """
    Generate a plain-text summary of the session.

    Args:
        report: Report dictionary from compute_report
        task_description: Optional task description for the header

    Returns:
        Human-readable summary string
    """
    focus_pct = get_focus_percentage(report)
    distraction_pct = 100.0 - focus_pct
    duration_str = format_duration(report.get("duration_minutes", 0) * 60)

    summary = "Flow Complete!\n"
    if task_description:
        summary += f'Task: "{task_description}"\n'
    summary += f"""Total Time: {duration_str}
Distractions: {report.get("distraction_count", 0)}
Focus Breakdown: {focus_pct:.0f}% focus / {distraction_pct:.0f}% distracted
"""

    distractions = report.get("distractions", [])
    if distractions:
        summary += "\nDistraction Log:\n"
        for entry in distractions:
            summary += f"  - {entry.timestamp.strftime('%I:%M %p')} {entry.activity}"
            summary += f": {entry.reason}\n" if entry.reason else "\n"

    focus_activities = report.get("focus_activities", [])
    if focus_activities:
        summary += "\nFocus Log:\n"
        for entry in focus_activities:
            summary += f"  - {entry.timestamp.strftime('%I:%M %p')} {entry.activity}\n"

    summary += "\n"

    if report.get("total_checks", 0) == 0:
        summary += "No check-ins were recorded during this session."
    elif focus_pct >= 80:
        summary += "Excellent focus! You stayed on task for most of the session."
    elif focus_pct >= 60:
        summary += "Good session! You maintained decent focus with a few slips."
    elif focus_pct >= 40:
        summary += "Fair session. Consider minimising distractions for better focus."
    else:
        summary += "This session had many interruptions. Try closing unrelated tabs next time."

    return summary
