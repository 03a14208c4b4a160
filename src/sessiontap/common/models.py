"""
SessionTap Data Model

Captured request records as they are persisted in the capture log.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from .utils import compact_json, format_iso_ms, parse_iso_ms


class RecordKind(str, Enum):
    """Kind of ingestion traffic a record was captured from."""

    EVENT = 'event'
    RECORDING = 'recording'


@dataclass(frozen=True)
class CapturedRecord:
    """
    One captured ingestion request.

    Holds both the untouched wire bytes and the expanded tree built from them.
    `decompressed` is None when the body could not be decoded at capture time.
    """

    kind: RecordKind
    raw_bytes: bytes
    decompressed: Optional[Any] = None
    headers: Dict[str, str] = field(default_factory=dict)
    query: Dict[str, str] = field(default_factory=dict)
    captured_at: int = 0  # epoch milliseconds

    @property
    def captured_at_iso(self) -> str:
        """Capture time as ISO 8601 string."""
        return format_iso_ms(self.captured_at)

    def events(self) -> List[Dict[str, Any]]:
        """
        Return the events contained in the expanded tree.

        Accepts the shapes the ingestion client sends: a bare list of events,
        a `{"batch": [...]}` envelope, or a single event object.
        """
        tree = self.decompressed
        if isinstance(tree, list):
            return [e for e in tree if isinstance(e, dict)]
        if isinstance(tree, dict):
            if isinstance(tree.get('batch'), list):
                return [e for e in tree['batch'] if isinstance(e, dict)]
            if 'properties' in tree or 'event' in tree:
                return [tree]
        return []

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the persisted capture-log line structure."""
        data = {
            'timestamp': self.captured_at_iso,
            'originalTimestamp': self.captured_at,
            'kind': self.kind.value,
            'data': {'type': 'Buffer', 'data': list(self.raw_bytes)},
        }
        if self.decompressed is not None:
            data['decompressed'] = self.decompressed
        data['headers'] = dict(self.headers)
        data['query'] = dict(self.query)
        return data

    def to_line(self) -> str:
        """Serialize as one newline-terminated JSON line."""
        return compact_json(self.to_dict()) + '\n'

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'CapturedRecord':
        """
        Create a record from a persisted capture-log line.

        Older captures stored `type` instead of `kind`, and kept uncompressed
        event bodies as a plain JSON tree in `data` with no `decompressed`.
        """
        kind = RecordKind(data.get('kind') or data.get('type') or RecordKind.EVENT.value)
        payload = data.get('data')
        decompressed = data.get('decompressed')

        if isinstance(payload, dict) and payload.get('type') == 'Buffer' and isinstance(payload.get('data'), list):
            raw_bytes = bytes(payload['data'])
        elif payload is None:
            raw_bytes = b''
        else:
            raw_bytes = compact_json(payload).encode('utf-8')
            if decompressed is None:
                decompressed = payload

        captured_at = data.get('originalTimestamp')
        if captured_at is None and data.get('timestamp'):
            captured_at = parse_iso_ms(data['timestamp'])

        return cls(
            kind=kind,
            raw_bytes=raw_bytes,
            decompressed=decompressed,
            headers=dict(data.get('headers') or {}),
            query=dict(data.get('query') or {}),
            captured_at=int(captured_at or 0)
        )
