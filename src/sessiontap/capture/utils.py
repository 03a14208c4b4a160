"""
Console helpers for the capture proxy.

Provides helper functions for:
- Request duration calculation
- Status code coloring
- One-line summaries of captured records
"""

from mitmproxy import http

from ..common.models import CapturedRecord

# ANSI color codes
ANSI_GREEN = "\033[32m"
ANSI_CYAN = "\033[36m"
ANSI_YELLOW = "\033[33m"
ANSI_RED = "\033[31m"
ANSI_RESET = "\033[0m"

MILLISECONDS_PER_SECOND = 1000


def calc_duration(flow: http.HTTPFlow) -> int:
    """
    Round trip of a proxied request in milliseconds.

    Measured from the first request byte to the last response byte.

    Returns:
        Duration in milliseconds, or 0 if timing data is not available
    """
    try:
        if flow.response and flow.response.timestamp_end and flow.request.timestamp_start:
            duration = flow.response.timestamp_end - flow.request.timestamp_start
            return int(duration * MILLISECONDS_PER_SECOND)
    except (AttributeError, TypeError):
        pass
    return 0


def status_color(status: int) -> str:
    """
    ANSI color for an HTTP status: 2xx green, 3xx cyan, 4xx yellow, 5xx red.
    """
    if 200 <= status < 300:
        return ANSI_GREEN
    elif 300 <= status < 400:
        return ANSI_CYAN
    elif 400 <= status < 500:
        return ANSI_YELLOW
    elif 500 <= status < 600:
        return ANSI_RED
    return ""


def summarize_record(record: CapturedRecord) -> str:
    """
    Describe a captured record for the console.

    Example:
        "🎥 recording: 2048 bytes -> 3 event(s), session 0190a1b2-..."
    """
    icon = "🎥" if record.kind.value == 'recording' else "📊"
    if record.decompressed is None:
        return f"{icon} {record.kind.value}: {len(record.raw_bytes)} bytes (stored raw, not decodable)"

    events = record.events()
    sessions = sorted({
        e['properties']['$session_id']
        for e in events
        if isinstance(e.get('properties'), dict) and e['properties'].get('$session_id')
    })
    summary = f"{icon} {record.kind.value}: {len(record.raw_bytes)} bytes -> {len(events)} event(s)"
    if sessions:
        summary += f", session {', '.join(sessions)}"
    return summary
