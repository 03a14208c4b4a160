"""
Identity and time remapping of captured traffic.

Turns captured recordings and their correlated application events into
replay-ready payloads: DOM repaired, session/window/user ids substituted
through the run's IdentityMapping, timestamps shifted by the run's delta,
nested blobs recompressed to wire format.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Set

from .. import __version__
from ..capture.codec import compress_body, recompress_blob
from ..capture.decompress import DECOMPRESSION_ERROR_KEY, ORIGINAL_COMPRESSED_FLAG
from ..capture.payload import SNAPSHOT_DATA_KEY, PatternRewriter, ScalarRewriter, from_python
from ..common.errors import RecompressionFailure, SessionTapError
from ..common.models import CapturedRecord
from ..common.utils import compact_json, json_copy
from .identity import IdentityMapping
from .repair import repair_events
from .replay_config import ReplayConfig
from .timeshift import TimeShift, event_time_ms

logger = logging.getLogger("sessiontap.replay")

# Properties holding distinct ids of the anonymous visitor before identification
ANONYMOUS_ID_PROPERTIES = ('$anon_distinct_id', '$device_id')

# Project keys as the browser client embeds them
PROJECT_KEY_PATTERN = r'phc_[a-zA-Z0-9]+'


@dataclass
class RemappedRecording:
    """Replay-ready form of one captured recording request."""

    index: int
    events: List[Dict[str, Any]]
    body: bytes
    original_session_ids: List[str] = field(default_factory=list)
    session_ids: List[str] = field(default_factory=list)
    introduced_sessions: List[str] = field(default_factory=list)
    correlated_events: List[Dict[str, Any]] = field(default_factory=list)
    original_user_id: Optional[str] = None


def _properties(event: Dict[str, Any]) -> Dict[str, Any]:
    properties = event.get('properties')
    return properties if isinstance(properties, dict) else {}


class SessionRemapper:
    """
    Rewrites captured events for one replay run.

    The remapper holds no state of its own besides the run's IdentityMapping,
    which it only touches synchronously.

    Example:
        remapper = SessionRemapper(config, identity, TimeShift(-86400000))
        remapped = remapper.remap_recording(record, index=0)
        events = remapper.remap_correlated_events(event_records, remapped.introduced_sessions)
    """

    def __init__(self, config: ReplayConfig, identity: IdentityMapping, time_shift: TimeShift):
        self.config = config
        self.identity = identity
        self.time_shift = time_shift

    # ------------------------------------------------------------------
    # Identity
    # ------------------------------------------------------------------

    def _map_identities(self, event: Dict[str, Any], introduced: List[str]) -> None:
        """Register the ids of an event in the mapping (first pass)."""
        properties = _properties(event)

        original_session = properties.get('$session_id')
        if isinstance(original_session, str) and original_session:
            _, created = self.identity.session_for(original_session)
            if created:
                introduced.append(original_session)

        original_window = properties.get('$window_id')
        if isinstance(original_window, str) and original_window:
            self.identity.window_for(original_window)

        identified = bool(properties.get('$is_identified'))
        for distinct_id in (properties.get('distinct_id'), event.get('distinct_id')):
            if isinstance(distinct_id, str) and distinct_id:
                self.identity.alias_user(distinct_id, identified)
        for key in ANONYMOUS_ID_PROPERTIES:
            value = properties.get(key)
            if isinstance(value, str) and value:
                self.identity.alias_user(value, identified=False)

    def _substitute_identities(self, event: Dict[str, Any]) -> Dict[str, Any]:
        """Rewrite ids of an event to their replay stand-ins (second pass)."""
        replacements = dict(self.identity.user_aliases)
        replacements.update(self.identity.windows.items())
        replacements.update(self.identity.sessions.items())
        tree = ScalarRewriter(replacements).visit(from_python(event))
        event = PatternRewriter(PROJECT_KEY_PATTERN, self.config.project_key).visit(tree).to_python()

        properties = _properties(event)
        stand_in = self.identity.user_for(bool(properties.get('$is_identified')))
        if 'distinct_id' in properties:
            properties['distinct_id'] = stand_in
        if 'distinct_id' in event:
            event['distinct_id'] = stand_in

        if 'token' in properties:
            properties['token'] = self.config.project_key
        if 'api_key' in event:
            event['api_key'] = self.config.project_key
        return event

    # ------------------------------------------------------------------
    # Recompression
    # ------------------------------------------------------------------

    def _restore_wire_format(self, event: Dict[str, Any], event_index: int) -> None:
        """
        Recompress snapshot blobs flagged at capture time and strip annotations.

        Raises:
            RecompressionFailure: If a flagged blob cannot be recompressed
        """
        for snapshot in _properties(event).get(SNAPSHOT_DATA_KEY) or []:
            if not isinstance(snapshot, dict):
                continue

            if snapshot.pop(DECOMPRESSION_ERROR_KEY, None) is not None:
                logger.warning("Replaying snapshot that failed to decompress at capture time as captured")

            if not snapshot.pop(ORIGINAL_COMPRESSED_FLAG, False):
                continue

            data = snapshot.get('data')
            if not isinstance(data, str):
                raise RecompressionFailure(
                    f"Event {event_index}: flagged snapshot data is {type(data).__name__}, not text",
                    event_index=event_index
                )
            try:
                snapshot['data'] = recompress_blob(data)
            except RecompressionFailure as e:
                raise RecompressionFailure(f"Event {event_index}: {e}", event_index=event_index) from e

    # ------------------------------------------------------------------
    # Streams
    # ------------------------------------------------------------------

    def remap_recording(self, record: CapturedRecord, index: int = 0) -> RemappedRecording:
        """
        Produce the replay-ready snapshot stream of one recording request.

        Args:
            record: Captured recording
            index: Position of the record in the run, for reporting

        Returns:
            RemappedRecording with the gzip body ready for dispatch

        Raises:
            SessionTapError: If the record has no decoded payload
            RecompressionFailure: If a flagged blob cannot be recompressed
        """
        if record.decompressed is None:
            raise SessionTapError(f"Recording #{index} has no decompressed data")

        events = json_copy(record.events())
        repair_events(events)

        introduced: List[str] = []
        originals: List[str] = []
        original_user = None
        for event in events:
            properties = _properties(event)
            session = properties.get('$session_id')
            if isinstance(session, str) and session and session not in originals:
                originals.append(session)
            if original_user is None and isinstance(properties.get('distinct_id'), str):
                original_user = properties['distinct_id']
            self._map_identities(event, introduced)

        remapped = []
        for event_index, event in enumerate(events):
            event = self._substitute_identities(event)
            self.time_shift.shift_event(event, record.captured_at)
            self.time_shift.shift_snapshots(event)
            self._restore_wire_format(event, event_index)
            remapped.append(event)

        body = compress_body(compact_json(remapped).encode('utf-8'))
        logger.info(f"Recording #{index}: remapped {len(remapped)} event(s), "
                    f"sessions {originals} -> {[self.identity.sessions.get(s) for s in originals]}")

        return RemappedRecording(
            index=index,
            events=remapped,
            body=body,
            original_session_ids=originals,
            session_ids=[self.identity.sessions.get(s) for s in originals],
            introduced_sessions=introduced,
            original_user_id=original_user
        )

    def remap_correlated_events(
        self,
        records: Iterable[CapturedRecord],
        original_sessions: Iterable[str]
    ) -> List[Dict[str, Any]]:
        """
        Select and remap application events belonging to the given sessions.

        Sessions must already be in the mapping; their ids are reused, never
        allocated here.

        Args:
            records: Captured event records
            original_sessions: Original session ids whose events to replay

        Returns:
            Remapped events ordered by original time
        """
        wanted: Set[str] = {s for s in original_sessions if s in self.identity.sessions}
        if not wanted:
            return []

        selected = []
        for record in records:
            for event in record.events():
                if _properties(event).get('$session_id') in wanted:
                    selected.append((record.captured_at, json_copy(event)))

        introduced: List[str] = []
        for _, event in selected:
            self._map_identities(event, introduced)

        selected.sort(key=lambda item: event_time_ms(item[1], item[0]) or 0)

        remapped = []
        for captured_at, event in selected:
            event = self._substitute_identities(event)
            self.time_shift.shift_event(event, captured_at)
            event.pop('uuid', None)
            properties = event.setdefault('properties', {})
            properties['$lib'] = self.config.lib_name
            properties['$lib_version'] = __version__
            remapped.append(event)

        logger.info(f"Found {len(remapped)} event(s) for session(s) {sorted(wanted)}")
        return remapped
