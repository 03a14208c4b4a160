"""
Tests for the demo planner.

Tests plan loading, population simulation and sequential scheduling of
replay runs.
"""

import asyncio
import random
from datetime import date
from unittest.mock import AsyncMock, Mock

import pytest
import yaml

from src.sessiontap.replay.planner import (
    DemoPlan,
    DemoPlanner,
    Persona,
    ScheduledSession,
    run_schedule,
)

DAY_MS = 86400000


@pytest.fixture
def plan_data():
    return {
        'start_date': '2024-01-01',  # a Monday
        'end_date': '2024-01-07',
        'starting_user_count': 20,
        'dau_percentage': 0.5,
        'daily_signups_growth': 0.05,
        'seed': 7,
        'personas': [
            {'name': 'explorer', 'user_share': 0.6, 'churn_rate': 0.0,
             'sessions': [{'id': 'onboarding'}, {'id': 'browse'}, {'id': 'checkout'}]},
            {'name': 'lurker', 'user_share': 0.4, 'churn_rate': 0.0, 'sessions': [{'id': 'browse'}]},
        ],
        'replay': {'project_key': 'phc_demo', 'target_host': 'localhost:8000', 'scheme': 'http'},
    }


@pytest.fixture
def plan(plan_data):
    return DemoPlan.from_dict(plan_data)


class TestDemoPlan:
    """Plan loading."""

    def test_from_dict(self, plan):
        assert plan.start_date == date(2024, 1, 1)
        assert plan.personas[0].sessions == ['onboarding', 'browse', 'checkout']
        assert plan.replay['project_key'] == 'phc_demo'

    def test_from_yaml_with_native_dates(self, tmp_path, plan_data):
        path = tmp_path / 'plan.yaml'
        path.write_text(yaml.safe_dump(plan_data).replace("'2024-01-01'", '2024-01-01'))

        assert DemoPlan.from_yaml(path).start_date == date(2024, 1, 1)

    def test_needs_personas(self, plan_data):
        plan_data['personas'] = []
        with pytest.raises(ValueError, match='persona'):
            DemoPlan.from_dict(plan_data)

    def test_persona_needs_sessions(self):
        with pytest.raises(ValueError, match='no sessions'):
            Persona.from_dict({'name': 'empty', 'user_share': 1.0, 'sessions': []})

    def test_end_before_start(self, plan_data):
        plan_data['end_date'] = '2023-12-31'
        with pytest.raises(ValueError):
            DemoPlan.from_dict(plan_data)


class TestDemoPlanner:
    """Population simulation."""

    def test_same_seed_same_schedule(self, plan):
        assert DemoPlanner(plan).schedule() == DemoPlanner(plan).schedule()

    def test_sessions_land_on_their_day(self, plan):
        schedule = DemoPlanner(plan).schedule()
        start_ms = 1704067200000  # 2024-01-01T00:00:00Z

        assert schedule
        for session in schedule:
            assert start_ms <= session.timestamp < start_ms + 8 * DAY_MS

    def test_session_ids_unique(self, plan):
        schedule = DemoPlanner(plan).schedule()
        assert len({s.session_id for s in schedule}) == len(schedule)

    def test_recordings_come_from_persona(self, plan):
        sessions_by_persona = {p.name: set(p.sessions) for p in plan.personas}
        for session in DemoPlanner(plan).schedule():
            assert session.recording_id in sessions_by_persona[session.persona]

    def test_returning_users_skip_onboarding(self, plan):
        seen = set()
        for session in DemoPlanner(plan).schedule():
            if session.recording_id == 'onboarding':
                assert session.user_id not in seen
            seen.add(session.user_id)

    def test_weekend_dau_reduced(self, plan):
        planner = DemoPlanner(plan, rng=random.Random(1))

        assert planner.daily_active_limit(date(2024, 1, 3), 100) == 100
        assert 5 <= planner.daily_active_limit(date(2024, 1, 6), 100) <= 15
        assert planner.daily_active_limit(date(2024, 1, 7), 2) == 1

    def test_persona_shares(self, plan):
        planner = DemoPlanner(plan, rng=random.Random(3))
        users = planner.generate_users(2000)

        explorers = sum(1 for u in users if u.persona == 'explorer')
        assert 1000 < explorers < 1400
        assert users[5].id == 'user-5'

    def test_daily_signups_ids_continue(self, plan):
        planner = DemoPlanner(plan, rng=random.Random(5))
        signups = planner.daily_signups(100)

        assert signups
        assert signups[0].id == 'user-100'

    def test_churned_users_never_return(self, plan_data):
        for persona in plan_data['personas']:
            persona['churn_rate'] = 1.0
        plan = DemoPlan.from_dict(plan_data)

        days_by_user = {}
        for session in DemoPlanner(plan).schedule():
            days_by_user.setdefault(session.user_id, set()).add(session.timestamp // DAY_MS)

        assert days_by_user
        assert all(len(days) == 1 for days in days_by_user.values())


class TestRunSchedule:
    """Sequential replay of a schedule."""

    def test_to_config(self, plan):
        session = ScheduledSession('browse', 'user-3', 'session-1', 1704067260000, 'lurker', 0)
        config = session.to_config(plan.replay)

        assert config.recording_id == 'browse'
        assert config.target_user_id == 'user-3'
        assert config.target_session_id == 'session-1'
        assert config.target_timestamp == 1704067260000
        assert config.base_url == 'http://localhost:8000'

    def test_runs_each_session_in_order(self, plan):
        schedule = [
            ScheduledSession('onboarding', 'user-1', 's1', 1, 'explorer', 0),
            ScheduledSession('browse', 'user-2', 's2', 2, 'lurker', 0),
        ]
        configs = []

        def factory(config):
            configs.append(config)
            replayer = Mock()
            replayer.replay = AsyncMock(return_value=f"result-{config.target_session_id}")
            return replayer

        reported = []
        results = asyncio.run(run_schedule(
            schedule,
            plan.replay,
            dry_run=True,
            replayer_factory=factory,
            on_result=lambda session, result: reported.append((session.session_id, result))
        ))

        assert results == ['result-s1', 'result-s2']
        assert [c.recording_id for c in configs] == ['onboarding', 'browse']
        assert reported == [('s1', 'result-s1'), ('s2', 'result-s2')]
