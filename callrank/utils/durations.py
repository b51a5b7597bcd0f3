"""
callrank/utils/durations.py
Human-readable call durations for the CLI.
"""


def fmt_short(seconds: int) -> str:
    """2h 15m / 45m / 30s"""
    if seconds < 60:
        return f"{max(seconds, 0)}s"
    if seconds < 3600:
        return f"{seconds // 60}m"
    hours, mins = seconds // 3600, (seconds % 3600) // 60
    return f"{hours}h {mins}m" if mins else f"{hours}h"


def fmt_average(total_seconds: int, total_calls: int) -> str:
    if total_calls <= 0:
        return '0 min/call'
    avg = total_seconds // total_calls
    if avg < 60:
        return f"{avg}s/call"
    return f"{avg / 60:.1f} min/call"
