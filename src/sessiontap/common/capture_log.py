"""
SessionTap Capture Log

Append-only newline-delimited JSON store of captured ingestion requests.
"""

import json
import logging
from dataclasses import replace
from pathlib import Path
from typing import List, Optional, Union

from .errors import SourceIOError
from .models import CapturedRecord, RecordKind

logger = logging.getLogger("sessiontap.capture_log")


def decode_stored_body(record: CapturedRecord) -> CapturedRecord:
    """
    Decode a record that was stored with its raw body only.

    Older captures kept bodies they could not parse as a bare Buffer; those
    are decoded and expanded on load.
    """
    if record.decompressed is not None or not record.raw_bytes:
        return record

    from ..capture.decompress import decode_body, expand_nested_snapshots

    decoded = decode_body(record.raw_bytes, record.headers, record.query)
    if decoded is None:
        return record
    return replace(record, decompressed=expand_nested_snapshots(decoded))


class CaptureLog:
    """
    One capture log file, one record per line.

    Records are only ever appended; nothing rewrites or truncates the file.

    Example:
        log = CaptureLog("data/recordings.jsonl")
        log.append(record)
        for record in log.load():
            print(record.kind, len(record.raw_bytes))
    """

    def __init__(self, file_path: Union[str, Path]):
        """
        Initialize capture log.

        Args:
            file_path: Path to the JSONL file
        """
        self.file_path = Path(file_path)

    def exists(self) -> bool:
        return self.file_path.is_file()

    def append(self, record: CapturedRecord) -> None:
        """
        Append a record as a single line.

        Args:
            record: Captured record to persist
        """
        self.file_path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.file_path, 'a', encoding='utf-8') as f:
            f.write(record.to_line())

    def load(self) -> List[CapturedRecord]:
        """
        Load every record in file order.

        Returns:
            List of captured records

        Raises:
            SourceIOError: If the file is missing, unreadable, or holds a malformed line
        """
        if not self.file_path.exists():
            raise SourceIOError(f"Capture log not found: {self.file_path}", path=str(self.file_path))

        try:
            with open(self.file_path, 'r', encoding='utf-8') as f:
                lines = f.readlines()
        except (OSError, UnicodeDecodeError) as e:
            raise SourceIOError(f"Cannot read capture log {self.file_path}: {e}", path=str(self.file_path)) from e

        records = []
        for line_number, line in enumerate(lines, 1):
            if not line.strip():
                continue
            try:
                records.append(decode_stored_body(CapturedRecord.from_dict(json.loads(line))))
            except (json.JSONDecodeError, ValueError, TypeError) as e:
                raise SourceIOError(
                    f"Malformed record at {self.file_path}:{line_number}: {e}",
                    path=str(self.file_path)
                ) from e

        logger.debug(f"Loaded {len(records)} records from {self.file_path}")
        return records


class CaptureStore:
    """
    Directory of capture logs, split by record kind.

    Live captures go to `events.jsonl` and `recordings.jsonl`. Curated
    captures used for replay runs are prefixed with a recording id, e.g.
    `onboarding-recordings.jsonl` and `onboarding-events.jsonl`.
    """

    def __init__(self, data_dir: Union[str, Path] = 'data'):
        self.data_dir = Path(data_dir)

    def log_for(self, kind: RecordKind, recording_id: Optional[str] = None) -> CaptureLog:
        """Get the capture log for a record kind, optionally scoped to a recording id."""
        prefix = f"{recording_id}-" if recording_id else ''
        return CaptureLog(self.data_dir / f"{prefix}{kind.value}s.jsonl")

    def append(self, record: CapturedRecord) -> None:
        """Append a live capture to its kind's log."""
        self.log_for(record.kind).append(record)

    def load_recordings(self, recording_id: Optional[str] = None) -> List[CapturedRecord]:
        """
        Load recording records. A missing recordings log is fatal.

        Raises:
            SourceIOError: If the log is missing or unreadable
        """
        return self.log_for(RecordKind.RECORDING, recording_id).load()

    def load_events(self, recording_id: Optional[str] = None) -> List[CapturedRecord]:
        """
        Load event records. A missing events log means the run has no events.

        Raises:
            SourceIOError: If the log exists but is unreadable
        """
        log = self.log_for(RecordKind.EVENT, recording_id)
        if not log.exists():
            logger.warning(f"Events log {log.file_path} not found, replaying without events")
            return []
        return log.load()
