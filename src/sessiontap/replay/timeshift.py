"""
Uniform time shift for replayed events.

One delta per run is added to every timestamp, so the gaps between events of
a session come out exactly as they were captured.
"""

from dataclasses import dataclass
from datetime import timedelta, timezone
from typing import Any, Dict, Iterable, Optional, Union

from ..capture.payload import SNAPSHOT_DATA_KEY
from ..common.models import CapturedRecord
from ..common.utils import format_iso_ms, parse_iso, parse_iso_ms

Number = Union[int, float]


@dataclass(frozen=True)
class TimeShift:
    """A fixed millisecond delta applied to every timestamp of a run."""

    delta_ms: int

    @classmethod
    def anchored(cls, anchor_ms: int, target_ms: int) -> 'TimeShift':
        """Shift that moves `anchor_ms` onto `target_ms`."""
        return cls(int(target_ms) - int(anchor_ms))

    def shift_ms(self, value: Number) -> Number:
        return value + self.delta_ms

    def shift_iso(self, value: str) -> str:
        """Shift an ISO 8601 timestamp, keeping sub-millisecond precision if present."""
        moment = parse_iso(value).astimezone(timezone.utc) + timedelta(milliseconds=self.delta_ms)
        timespec = 'milliseconds' if moment.microsecond % 1000 == 0 else 'microseconds'
        return moment.isoformat(timespec=timespec).replace('+00:00', 'Z')

    def shift_value(self, value: Any) -> Any:
        """Shift an epoch-ms number or ISO string; anything else is returned unchanged."""
        if isinstance(value, bool):
            return value
        if isinstance(value, (int, float)):
            return self.shift_ms(value)
        if isinstance(value, str):
            try:
                return self.shift_iso(value)
            except ValueError:
                return value
        return value

    def shift_event(self, event: Dict[str, Any], captured_at: Optional[int] = None) -> None:
        """
        Shift the top-level time of an event in place.

        The client sends either an absolute `timestamp` or an `offset` in ms
        before the send time. An offset is resolved against the capture time
        into an absolute timestamp so it no longer depends on when the replay
        is sent.
        """
        if event.get('timestamp') is not None:
            event['timestamp'] = self.shift_value(event['timestamp'])
            event.pop('offset', None)
        elif isinstance(event.get('offset'), (int, float)) and captured_at:
            event['timestamp'] = format_iso_ms(self.shift_ms(captured_at - int(event.pop('offset'))))

        properties = event.get('properties')
        if isinstance(properties, dict) and isinstance(properties.get('$time'), (int, float)):
            properties['$time'] = round(properties['$time'] + self.delta_ms / 1000, 3)

    def shift_snapshots(self, event: Dict[str, Any]) -> int:
        """
        Shift every nested snapshot timestamp of an event in place.

        Returns:
            Number of snapshot timestamps shifted
        """
        properties = event.get('properties')
        if not isinstance(properties, dict):
            return 0

        shifted = 0
        for snapshot in properties.get(SNAPSHOT_DATA_KEY) or []:
            if isinstance(snapshot, dict) and isinstance(snapshot.get('timestamp'), (int, float)) \
                    and not isinstance(snapshot.get('timestamp'), bool):
                snapshot['timestamp'] = self.shift_ms(snapshot['timestamp'])
                shifted += 1
        return shifted


def event_time_ms(event: Dict[str, Any], captured_at: Optional[int] = None) -> Optional[int]:
    """
    Best-effort original time of an event in epoch ms.

    Looks at `timestamp`, then `offset` against the capture time, then
    `properties.$time` (seconds).
    """
    timestamp = event.get('timestamp')
    if isinstance(timestamp, (int, float)) and not isinstance(timestamp, bool):
        return int(timestamp)
    if isinstance(timestamp, str):
        try:
            return parse_iso_ms(timestamp)
        except ValueError:
            pass

    if isinstance(event.get('offset'), (int, float)) and captured_at:
        return int(captured_at - event['offset'])

    properties = event.get('properties')
    if isinstance(properties, dict) and isinstance(properties.get('$time'), (int, float)):
        return int(round(properties['$time'] * 1000))
    return None


def earliest_snapshot_time(records: Iterable[CapturedRecord]) -> Optional[int]:
    """Earliest nested snapshot timestamp across recording records."""
    earliest = None
    for record in records:
        for event in record.events():
            properties = event.get('properties')
            if not isinstance(properties, dict):
                continue
            for snapshot in properties.get(SNAPSHOT_DATA_KEY) or []:
                timestamp = snapshot.get('timestamp') if isinstance(snapshot, dict) else None
                if isinstance(timestamp, (int, float)) and not isinstance(timestamp, bool):
                    earliest = timestamp if earliest is None else min(earliest, timestamp)
    return int(earliest) if earliest is not None else None


def plan_time_shift(
    records: Iterable[CapturedRecord],
    target_timestamp: Optional[int],
    fallback_offset_ms: int
) -> TimeShift:
    """
    Work out the run-level shift.

    With a target timestamp the earliest snapshot of the run lands on it;
    without one (or with nothing to anchor on) the fixed offset is used.
    """
    if target_timestamp is not None:
        anchor = earliest_snapshot_time(records)
        if anchor is not None:
            return TimeShift.anchored(anchor, target_timestamp)
    return TimeShift(fallback_offset_ms)
