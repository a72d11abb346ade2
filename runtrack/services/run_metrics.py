from __future__ import annotations

ZERO_PACE = "0:00"


def format_duration(total_seconds: int) -> str:
    """
    Format elapsed seconds the way the run screen shows them.
    Example: 754 -> '12:34', 3754 -> '1:02:34'
    """
    total_seconds = max(0, int(total_seconds))
    hours = total_seconds // 3600
    minutes = (total_seconds % 3600) // 60
    seconds = total_seconds % 60
    if hours > 0:
        return f"{hours}:{minutes:02d}:{seconds:02d}"
    return f"{minutes}:{seconds:02d}"


def pace_minutes_per_mile(elapsed_sec: int, distance_mi: float) -> float | None:
    if elapsed_sec <= 0 or distance_mi <= 0:
        return None
    return (elapsed_sec / 60) / distance_mi


def compute_pace(elapsed_sec: int, distance_mi: float) -> str:
    """
    Pace per mile as 'M:SS'; '0:00' until there is both distance and time.
    Example: elapsed=600 sec, distance=2.0 -> '5:00'
    """
    pace = pace_minutes_per_mile(elapsed_sec, distance_mi)
    if pace is None:
        return ZERO_PACE

    # Round on whole seconds so 4:59.6 becomes 5:00, never 4:60.
    minutes, seconds = divmod(int(round(pace * 60)), 60)
    return f"{minutes}:{seconds:02d}"
