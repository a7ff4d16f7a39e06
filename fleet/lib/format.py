from datetime import datetime

MINUTE = 60
HOUR = 3600
DAY = 86400


def format_duration(seconds: float) -> str:
    seconds = max(0.0, seconds)
    if seconds < MINUTE:
        return f"{int(seconds)}s"
    if seconds < HOUR:
        return f"{int(seconds / MINUTE)}m"
    if seconds < DAY:
        hours = int(seconds / HOUR)
        mins = int((seconds % HOUR) / MINUTE)
        return f"{hours}h {mins}m" if mins else f"{hours}h"
    days = int(seconds / DAY)
    hours = int((seconds % DAY) / HOUR)
    return f"{days}d {hours}h" if hours else f"{days}d"


def format_ms(ms: float) -> str:
    return format_duration(ms / 1000)


def now_ms() -> int:
    return int(datetime.now().timestamp() * 1000)


def iso_now() -> str:
    return datetime.now().astimezone().isoformat()


def parse_iso_ms(value: str | None) -> int | None:
    """Epoch milliseconds for an ISO-8601 timestamp, or None if unparseable."""
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except (ValueError, TypeError):
        return None
    return int(parsed.timestamp() * 1000)
