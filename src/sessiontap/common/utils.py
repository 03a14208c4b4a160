"""
SessionTap Common Utilities

Shared helpers for JSON handling, timestamps and environment lookups.
"""

import json
import os
import time
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

# Environment variable holding the ingestion project key
PROJECT_KEY_ENV = 'POSTHOG_API_KEY'

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def get_project_key_from_env() -> Optional[str]:
    """
    Retrieve the ingestion project key from the environment.

    Project keys should be provided through the environment or a config file
    rather than typed on the command line, where they end up in shell history.

    Returns:
        Project key from POSTHOG_API_KEY environment variable, or None if not set
    """
    return os.environ.get(PROJECT_KEY_ENV)


def safe_json_parse(json_string: str, default: Any = None) -> Any:
    """
    Safely parse JSON string with error handling.

    Args:
        json_string: JSON string to parse
        default: Default value to return if parsing fails

    Returns:
        Parsed JSON object, or default if parsing fails
    """
    if not json_string:
        return default

    try:
        return json.loads(json_string)
    except (json.JSONDecodeError, TypeError, ValueError):
        return default


def compact_json(value: Any) -> str:
    """Serialize the way the browser client does (no whitespace, raw unicode)."""
    return json.dumps(value, ensure_ascii=False, separators=(',', ':'))


def json_copy(value: Any) -> Any:
    """Deep copy of decoded JSON. Handles far deeper nesting than copy.deepcopy."""
    return json.loads(compact_json(value))


def now_ms() -> int:
    """Current time in epoch milliseconds."""
    return int(time.time() * 1000)


def format_iso_ms(epoch_ms: int) -> str:
    """Format epoch milliseconds as an ISO 8601 UTC string with a Z suffix."""
    moment = EPOCH + timedelta(milliseconds=epoch_ms)
    return moment.isoformat(timespec='milliseconds').replace('+00:00', 'Z')


def parse_iso(value: str) -> datetime:
    """Parse an ISO 8601 timestamp, treating naive values as UTC."""
    moment = datetime.fromisoformat(value.strip().replace('Z', '+00:00'))
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment


def parse_iso_ms(value: str) -> int:
    """Parse an ISO 8601 timestamp into epoch milliseconds."""
    return (parse_iso(value) - EPOCH) // timedelta(milliseconds=1)
