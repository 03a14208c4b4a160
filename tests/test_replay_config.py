"""
Tests for SessionTap Replay Configuration

Tests YAML loading, validation and the project key environment fallback.
"""

from dataclasses import FrozenInstanceError

import pytest
import yaml

from src.sessiontap.replay.replay_config import EventMode, ReplayConfig


@pytest.fixture
def config_values():
    return {
        'recording_id': 'onboarding',
        'target_user_id': 'user-1',
        'target_session_id': 'session-B',
        'project_key': 'phc_from_file',
    }


@pytest.fixture
def config_file(tmp_path, config_values):
    path = tmp_path / 'replay.yaml'
    path.write_text(yaml.safe_dump({**config_values, 'event_mode': 'single', 'target_timestamp': 1700000000000}))
    return path


class TestReplayConfig:
    """Construction and validation."""

    def test_defaults(self, config_values):
        config = ReplayConfig(**config_values)

        assert config.target_host == 'us.i.posthog.com'
        assert config.base_url == 'https://us.i.posthog.com'
        assert config.event_mode == EventMode.BATCH
        assert config.timestamp_offset_ms == -86400000
        assert config.target_timestamp is None

    def test_event_mode_coerced(self, config_values):
        assert ReplayConfig(**config_values, event_mode='single').event_mode == EventMode.SINGLE

    def test_invalid_event_mode(self, config_values):
        with pytest.raises(ValueError):
            ReplayConfig(**config_values, event_mode='stream')

    @pytest.mark.parametrize('field', ['project_key', 'target_session_id', 'target_user_id'])
    def test_required_fields(self, config_values, field):
        config_values[field] = ''
        with pytest.raises(ValueError, match=field):
            ReplayConfig(**config_values)

    def test_max_in_flight_positive(self, config_values):
        with pytest.raises(ValueError):
            ReplayConfig(**config_values, max_in_flight=0)

    def test_immutable(self, config_values):
        config = ReplayConfig(**config_values)
        with pytest.raises(FrozenInstanceError):
            config.target_host = 'other'

    def test_with_overrides(self, config_values):
        config = ReplayConfig(**config_values)
        changed = config.with_overrides(target_host='localhost:8000', scheme='http')

        assert changed.base_url == 'http://localhost:8000'
        assert config.base_url == 'https://us.i.posthog.com'

    def test_to_dict(self, config_values):
        data = ReplayConfig(**config_values).to_dict()
        assert data['event_mode'] == 'batch'
        assert data['recording_id'] == 'onboarding'


class TestLoading:
    """Dictionary and YAML loading."""

    def test_from_yaml(self, config_file):
        config = ReplayConfig.from_yaml(config_file)

        assert config.project_key == 'phc_from_file'
        assert config.event_mode == EventMode.SINGLE
        assert config.target_timestamp == 1700000000000

    def test_overrides_win_and_none_ignored(self, config_file):
        config = ReplayConfig.from_yaml(config_file, target_user_id='user-2', target_host=None)

        assert config.target_user_id == 'user-2'
        assert config.target_host == 'us.i.posthog.com'

    def test_unknown_keys_rejected(self, config_values):
        with pytest.raises(ValueError, match='Unknown replay config keys: bogus'):
            ReplayConfig.from_dict({**config_values, 'bogus': 1})

    def test_project_key_from_environment(self, config_values, monkeypatch):
        monkeypatch.setenv('POSTHOG_API_KEY', 'phc_from_env')
        del config_values['project_key']

        assert ReplayConfig.from_dict(config_values).project_key == 'phc_from_env'

    def test_file_key_wins_over_environment(self, config_values, monkeypatch):
        monkeypatch.setenv('POSTHOG_API_KEY', 'phc_from_env')
        assert ReplayConfig.from_dict(config_values).project_key == 'phc_from_file'

    def test_missing_project_key(self, config_values, monkeypatch):
        monkeypatch.delenv('POSTHOG_API_KEY', raising=False)
        del config_values['project_key']

        with pytest.raises(ValueError, match='project_key'):
            ReplayConfig.from_dict(config_values)

    def test_recording_id_optional(self, config_values):
        del config_values['recording_id']
        assert ReplayConfig.from_dict(config_values).recording_id is None

    def test_non_mapping_yaml(self, tmp_path):
        path = tmp_path / 'bad.yaml'
        path.write_text('- just\n- a list\n')

        with pytest.raises(ValueError, match='Expected a mapping'):
            ReplayConfig.from_yaml(path)

    def test_session_id_generated_when_absent(self, config_values):
        del config_values['target_session_id']

        first = ReplayConfig.from_dict(config_values)
        second = ReplayConfig.from_dict(config_values)

        assert first.target_session_id
        assert first.target_session_id != second.target_session_id

    def test_yaml_without_session_id(self, tmp_path, config_values):
        del config_values['target_session_id']
        path = tmp_path / 'replay.yaml'
        path.write_text(yaml.safe_dump(config_values))

        assert ReplayConfig.from_yaml(path).target_session_id

    def test_session_id_override_wins(self, config_file):
        assert ReplayConfig.from_yaml(config_file, target_session_id='mine').target_session_id == 'mine'
