"""
SessionTap Replay Module

Replays captured ingestion traffic as new sessions.

This module provides:
- DOM snapshot repair
- Identity mapping and uniform time shifting
- Dispatch to the ingestion endpoints with dry-run support
- Demo dataset planning over a simulated user population
"""

from .dispatcher import DispatchResult, ReplayDispatcher
from .identity import BiMap, IdentityMapping
from .planner import DemoPlan, DemoPlanner, ScheduledSession, run_schedule
from .remapper import RemappedRecording, SessionRemapper
from .repair import repair_events, repair_node
from .replay_config import EventMode, ReplayConfig
from .replayer import RecordingOutcome, ReplayResult, SessionReplayer
from .timeshift import TimeShift, plan_time_shift

__all__ = [
    'DispatchResult',
    'ReplayDispatcher',
    'BiMap',
    'IdentityMapping',
    'DemoPlan',
    'DemoPlanner',
    'ScheduledSession',
    'run_schedule',
    'RemappedRecording',
    'SessionRemapper',
    'repair_events',
    'repair_node',
    'EventMode',
    'ReplayConfig',
    'RecordingOutcome',
    'ReplayResult',
    'SessionReplayer',
    'TimeShift',
    'plan_time_shift',
]
