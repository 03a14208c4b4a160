"""
SessionTap Replay Configuration

Immutable run configuration, loadable from YAML with environment fallback
for the project key.
"""

import uuid
from dataclasses import asdict, dataclass, fields, replace
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml

from ..common.utils import get_project_key_from_env

DEFAULT_TARGET_HOST = 'us.i.posthog.com'
DEFAULT_CLIENT_VERSION = '1.265.0'
DEFAULT_USER_AGENT = (
    'Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 '
    '(KHTML, like Gecko) Chrome/140.0.0.0 Safari/537.36'
)
DEFAULT_TIMESTAMP_OFFSET_MS = -86400000  # one day back


class EventMode(str, Enum):
    """How application events are sent to ingestion."""

    BATCH = 'batch'    # one historical-import body to /batch/
    SINGLE = 'single'  # one gzip body per event to /e/


@dataclass(frozen=True)
class ReplayConfig:
    """
    Configuration of one replay run.

    A run replays every recording captured under `recording_id` as a single
    new session for `target_user_id`, starting at `target_timestamp`.
    """

    recording_id: Optional[str]
    target_user_id: str
    target_session_id: str
    project_key: str
    target_timestamp: Optional[int] = None  # epoch ms; None applies timestamp_offset_ms
    target_host: str = DEFAULT_TARGET_HOST
    timestamp_offset_ms: int = DEFAULT_TIMESTAMP_OFFSET_MS
    event_mode: EventMode = EventMode.BATCH
    data_dir: str = 'data'
    scheme: str = 'https'
    origin: str = 'http://localhost:3000'
    user_agent: str = DEFAULT_USER_AGENT
    client_version: str = DEFAULT_CLIENT_VERSION
    lib_name: str = 'sessiontap-replay'
    timeout: float = 30.0
    max_in_flight: int = 4

    def __post_init__(self):
        if not self.project_key:
            raise ValueError("project_key is required (set it in the config or POSTHOG_API_KEY)")
        if not self.target_session_id:
            raise ValueError("target_session_id is required")
        if not self.target_user_id:
            raise ValueError("target_user_id is required")
        if self.max_in_flight < 1:
            raise ValueError("max_in_flight must be at least 1")
        if not isinstance(self.event_mode, EventMode):
            object.__setattr__(self, 'event_mode', EventMode(self.event_mode))

    @property
    def base_url(self) -> str:
        return f"{self.scheme}://{self.target_host}"

    def with_overrides(self, **changes: Any) -> 'ReplayConfig':
        """Copy of this config with some fields changed."""
        return replace(self, **changes)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['event_mode'] = self.event_mode.value
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ReplayConfig':
        """
        Create config from a dictionary. Unknown keys are rejected.

        The project key falls back to the POSTHOG_API_KEY environment variable.
        A run without a target session id gets a fresh one.
        """
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ValueError(f"Unknown replay config keys: {', '.join(unknown)}")

        values = dict(data)
        values.setdefault('recording_id', None)
        if not values.get('target_session_id'):
            values['target_session_id'] = str(uuid.uuid4())
        if not values.get('project_key'):
            values['project_key'] = get_project_key_from_env() or ''
        return cls(**values)

    @classmethod
    def from_yaml(cls, yaml_path: Union[str, Path], **overrides: Any) -> 'ReplayConfig':
        """Load config from a YAML file; keyword overrides win over file values."""
        with open(yaml_path, 'r') as f:
            data = yaml.safe_load(f) or {}

        if not isinstance(data, dict):
            raise ValueError(f"Expected a mapping in {yaml_path}, got {type(data).__name__}")

        data.update({k: v for k, v in overrides.items() if v is not None})
        return cls.from_dict(data)
