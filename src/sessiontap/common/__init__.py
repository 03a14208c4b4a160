"""
SessionTap Common Utilities

Shared data model, capture log storage, errors and helpers.
"""

from .capture_log import CaptureLog, CaptureStore
from .errors import (
    DispatchError,
    IdentityConsistencyViolation,
    NestedDecompressionError,
    RecompressionFailure,
    SessionTapError,
    SourceIOError,
)
from .models import CapturedRecord, RecordKind
from .utils import compact_json, format_iso_ms, get_project_key_from_env, now_ms, safe_json_parse

__all__ = [
    'CaptureLog',
    'CaptureStore',
    'CapturedRecord',
    'RecordKind',
    'DispatchError',
    'IdentityConsistencyViolation',
    'NestedDecompressionError',
    'RecompressionFailure',
    'SessionTapError',
    'SourceIOError',
    'compact_json',
    'format_iso_ms',
    'get_project_key_from_env',
    'now_ms',
    'safe_json_parse',
]
