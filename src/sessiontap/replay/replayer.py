"""
SessionTap Session Replayer

Runs one replay run end to end: loads the capture logs, remaps every recording
under the run's identity mapping and time shift, then dispatches recordings and
their correlated events with per-recording failure isolation.
"""

import asyncio
import json
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import httpx

from ..common.capture_log import CaptureStore
from ..common.errors import SessionTapError
from ..common.models import CapturedRecord
from .dispatcher import DispatchResult, ReplayDispatcher
from .identity import IdentityMapping
from .remapper import RemappedRecording, SessionRemapper
from .replay_config import ReplayConfig
from .timeshift import plan_time_shift

logger = logging.getLogger("sessiontap.replay")

STATUS_SENT = 'sent'
STATUS_DRY_RUN = 'dry_run'
STATUS_FAILED = 'failed'


@dataclass
class RecordingOutcome:
    """What happened to one captured recording during a run."""

    index: int
    status: str
    original_session_ids: List[str] = field(default_factory=list)
    session_ids: List[str] = field(default_factory=list)
    event_count: int = 0
    correlated_event_count: int = 0
    error: Optional[str] = None
    error_type: Optional[str] = None
    dispatches: List[DispatchResult] = field(default_factory=list)

    @property
    def failed(self) -> bool:
        return self.status == STATUS_FAILED

    def to_dict(self) -> Dict[str, Any]:
        return {
            'index': self.index,
            'status': self.status,
            'original_session_ids': self.original_session_ids,
            'session_ids': self.session_ids,
            'event_count': self.event_count,
            'correlated_event_count': self.correlated_event_count,
            'error': self.error,
            'error_type': self.error_type,
            'dispatches': [d.to_dict() for d in self.dispatches],
        }


@dataclass
class ReplayResult:
    """Summary of one replay run."""

    recording_id: Optional[str]
    target_session_id: str
    anonymous_id: str
    delta_ms: int
    dry_run: bool
    total_duration_sec: float = 0.0
    outcomes: List[RecordingOutcome] = field(default_factory=list)
    session_map: Dict[str, str] = field(default_factory=dict)

    @property
    def total_recordings(self) -> int:
        return len(self.outcomes)

    @property
    def failed_recordings(self) -> int:
        return sum(1 for o in self.outcomes if o.failed)

    @property
    def successful_recordings(self) -> int:
        return self.total_recordings - self.failed_recordings

    @property
    def success_rate(self) -> float:
        """Percentage of recordings that were dispatched (or would have been)."""
        if self.total_recordings == 0:
            return 0.0
        return (self.successful_recordings / self.total_recordings) * 100

    def to_dict(self) -> Dict[str, Any]:
        return {
            'summary': {
                'recording_id': self.recording_id,
                'target_session_id': self.target_session_id,
                'anonymous_id': self.anonymous_id,
                'delta_ms': self.delta_ms,
                'dry_run': self.dry_run,
                'total_recordings': self.total_recordings,
                'successful_recordings': self.successful_recordings,
                'failed_recordings': self.failed_recordings,
                'success_rate': round(self.success_rate, 2),
                'total_duration_sec': round(self.total_duration_sec, 2),
            },
            'session_map': self.session_map,
            'outcomes': [o.to_dict() for o in self.outcomes],
        }


class SessionReplayer:
    """
    Replays captured recordings as a new session.

    Example:
        config = ReplayConfig.from_yaml('replay.yaml')
        replayer = SessionReplayer(config)
        result = asyncio.run(replayer.replay(dry_run=False))
        print(f"{result.successful_recordings}/{result.total_recordings} recordings sent")
    """

    def __init__(
        self,
        config: ReplayConfig,
        store: Optional[CaptureStore] = None,
        identity: Optional[IdentityMapping] = None,
        client: Optional[httpx.AsyncClient] = None
    ):
        """
        Initialize replayer.

        Args:
            config: Run configuration
            store: Capture log store (defaults to config.data_dir)
            identity: Identity mapping for the run (a fresh one by default)
            client: Optional HTTP client handed to the dispatcher
        """
        self.config = config
        self.store = store or CaptureStore(config.data_dir)
        self.identity = identity or IdentityMapping(config.target_session_id, config.target_user_id)
        self.client = client

    def _remap_all(
        self,
        remapper: SessionRemapper,
        recordings: List[CapturedRecord],
        events: List[CapturedRecord]
    ) -> List[Any]:
        """
        Remap every recording before anything is sent.

        The identity mapping is complete once this returns, so no event is
        dispatched under a mapping that could still change.

        Returns:
            One RemappedRecording or failed RecordingOutcome per recording
        """
        prepared: List[Any] = []
        for index, record in enumerate(recordings):
            try:
                remapped = remapper.remap_recording(record, index)
                remapped.correlated_events = remapper.remap_correlated_events(
                    events, remapped.introduced_sessions
                )
                prepared.append(remapped)
            except Exception as e:
                # Any failure here is confined to this recording
                logger.error(f"Recording #{index}: {type(e).__name__}: {e}")
                prepared.append(RecordingOutcome(
                    index=index,
                    status=STATUS_FAILED,
                    error=str(e),
                    error_type=type(e).__name__
                ))
        return prepared

    async def _dispatch_recording(
        self,
        dispatcher: ReplayDispatcher,
        remapped: RemappedRecording,
        semaphore: asyncio.Semaphore
    ) -> RecordingOutcome:
        """Send one recording, then its correlated events. Never raises SessionTapError."""
        outcome = RecordingOutcome(
            index=remapped.index,
            status=STATUS_DRY_RUN if dispatcher.dry_run else STATUS_SENT,
            original_session_ids=remapped.original_session_ids,
            session_ids=remapped.session_ids,
            event_count=len(remapped.events),
            correlated_event_count=len(remapped.correlated_events)
        )

        async with semaphore:
            try:
                outcome.dispatches.append(
                    await dispatcher.send_recording(remapped.body, len(remapped.events))
                )
                outcome.dispatches.extend(await dispatcher.send_events(remapped.correlated_events))
            except SessionTapError as e:
                logger.error(f"Recording #{remapped.index}: {type(e).__name__}: {e}")
                outcome.status = STATUS_FAILED
                outcome.error = str(e)
                outcome.error_type = type(e).__name__

        return outcome

    async def replay(self, dry_run: bool = True) -> ReplayResult:
        """
        Run the replay.

        Args:
            dry_run: Build every payload but send nothing

        Returns:
            ReplayResult with one outcome per captured recording

        Raises:
            SourceIOError: If the recordings log is missing or unreadable
        """
        start_time = time.time()

        recordings = self.store.load_recordings(self.config.recording_id)
        events = self.store.load_events(self.config.recording_id)
        logger.info(f"Loaded {len(recordings)} recording(s) and {len(events)} event record(s)")

        time_shift = plan_time_shift(recordings, self.config.target_timestamp, self.config.timestamp_offset_ms)
        logger.info(f"Time shift: {time_shift.delta_ms} ms")

        remapper = SessionRemapper(self.config, self.identity, time_shift)
        prepared = self._remap_all(remapper, recordings, events)

        semaphore = asyncio.Semaphore(self.config.max_in_flight)
        async with ReplayDispatcher(self.config, dry_run=dry_run, client=self.client) as dispatcher:
            outcomes = await asyncio.gather(*(
                self._dispatch_recording(dispatcher, item, semaphore)
                if isinstance(item, RemappedRecording) else self._already_failed(item)
                for item in prepared
            ))

        result = ReplayResult(
            recording_id=self.config.recording_id,
            target_session_id=self.config.target_session_id,
            anonymous_id=self.identity.anonymous_id,
            delta_ms=time_shift.delta_ms,
            dry_run=dry_run,
            total_duration_sec=time.time() - start_time,
            outcomes=list(outcomes),
            session_map=dict(self.identity.sessions.items())
        )
        logger.info(f"Replay finished: {result.successful_recordings}/{result.total_recordings} "
                    f"recording(s) ok in {result.total_duration_sec:.2f}s")
        return result

    @staticmethod
    async def _already_failed(outcome: RecordingOutcome) -> RecordingOutcome:
        return outcome

    def save_result(self, result: ReplayResult, output_file: str):
        """
        Save replay results to JSON file.

        Args:
            result: ReplayResult to save
            output_file: Path to output JSON file
        """
        with open(output_file, 'w') as f:
            json.dump(result.to_dict(), f, indent=2)

        print(f"✅ Saved replay results to {output_file}")
