"""
SessionTap Demo Planner

Simulates a user population over a date range and schedules one replay run per
simulated session, so a handful of captured recordings becomes a realistic
looking demo dataset with daily activity, weekend dips, signups and churn.
"""

import logging
import math
import random
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Union

import yaml

from .replay_config import ReplayConfig
from .replayer import ReplayResult, SessionReplayer

logger = logging.getLogger("sessiontap.planner")

MINUTE_MS = 60 * 1000
WEEKEND_DAU_SHARE = 0.1
WEEKEND_DAU_VARIANCE = 0.05


@dataclass
class Persona:
    """A kind of user and the recordings its sessions are replayed from."""

    name: str
    user_share: float
    churn_rate: float
    sessions: List[str]

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Persona':
        sessions = [s['id'] if isinstance(s, dict) else str(s) for s in data.get('sessions', [])]
        if not sessions:
            raise ValueError(f"Persona {data.get('name')!r} has no sessions")
        return cls(
            name=data['name'],
            user_share=float(data['user_share']),
            churn_rate=float(data.get('churn_rate', 0.0)),
            sessions=sessions
        )


@dataclass
class DemoPlan:
    """Population parameters of a demo dataset."""

    start_date: date
    end_date: date
    starting_user_count: int
    dau_percentage: float
    daily_signups_growth: float
    personas: List[Persona]
    seed: Optional[int] = None
    replay: Dict[str, Any] = field(default_factory=dict)  # ReplayConfig fields shared by every run

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'DemoPlan':
        personas = [Persona.from_dict(p) for p in data.get('personas', [])]
        if not personas:
            raise ValueError("Demo plan needs at least one persona")

        plan = cls(
            start_date=_as_date(data['start_date']),
            end_date=_as_date(data['end_date']),
            starting_user_count=int(data['starting_user_count']),
            dau_percentage=float(data['dau_percentage']),
            daily_signups_growth=float(data.get('daily_signups_growth', 0.0)),
            personas=personas,
            seed=data.get('seed'),
            replay=dict(data.get('replay') or {})
        )
        if plan.end_date < plan.start_date:
            raise ValueError("end_date is before start_date")
        return plan

    @classmethod
    def from_yaml(cls, yaml_path: Union[str, Path]) -> 'DemoPlan':
        with open(yaml_path, 'r') as f:
            data = yaml.safe_load(f) or {}
        return cls.from_dict(data)


def _as_date(value: Any) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value))


@dataclass
class SimulatedUser:
    id: str
    persona: str
    churned: bool = False
    session_count: int = 0


@dataclass(frozen=True)
class ScheduledSession:
    """One replay run the planner wants to happen."""

    recording_id: str
    user_id: str
    session_id: str
    timestamp: int  # epoch ms
    persona: str
    session_index: int

    def to_config(self, defaults: Dict[str, Any]) -> ReplayConfig:
        """Build the run configuration from the plan-wide replay defaults."""
        values = dict(defaults)
        values.update(
            recording_id=self.recording_id,
            target_user_id=self.user_id,
            target_session_id=self.session_id,
            target_timestamp=self.timestamp
        )
        return ReplayConfig.from_dict(values)


class DemoPlanner:
    """
    Turns a DemoPlan into a list of scheduled sessions.

    The schedule is computed once and can be replayed twice (dry run, then
    live) with identical sessions. Pass a seed in the plan to make it
    reproducible across invocations.
    """

    def __init__(self, plan: DemoPlan, rng: Optional[random.Random] = None):
        self.plan = plan
        self.rng = rng or random.Random(plan.seed)
        self._personas = {p.name: p for p in plan.personas}

    def _new_uuid(self) -> str:
        return str(uuid.UUID(int=self.rng.getrandbits(128), version=4))

    def pick_persona(self) -> Persona:
        """Weighted choice by user_share; the last persona absorbs any rounding gap."""
        r = self.rng.random()
        acc = 0.0
        for persona in self.plan.personas:
            acc += persona.user_share
            if r < acc:
                return persona
        return self.plan.personas[-1]

    def generate_users(self, count: int, start_id: int = 0) -> List[SimulatedUser]:
        return [
            SimulatedUser(id=f"user-{start_id + i}", persona=self.pick_persona().name)
            for i in range(count)
        ]

    def daily_active_limit(self, day: date, dau: int) -> int:
        """Weekdays get the full DAU, weekends roughly 10% of it (±5%)."""
        if day.weekday() < 5:
            return dau
        share = WEEKEND_DAU_SHARE + (self.rng.random() * 2 * WEEKEND_DAU_VARIANCE - WEEKEND_DAU_VARIANCE)
        return max(1, round(dau * share))

    def daily_signups(self, total_users: int) -> List[SimulatedUser]:
        """New users for the day; growth swings up more often than down."""
        if self.rng.random() < 0.7:
            variance = self.rng.random() * 0.005
        else:
            variance = -(self.rng.random() * 0.01)
        count = max(0, math.ceil(total_users * (self.plan.daily_signups_growth + variance)))
        logger.info(f"Signups for the day (with variance): {count}")
        return self.generate_users(count, total_users)

    def _sessions_for_user(self, user: SimulatedUser, day_start_ms: int, slot: int) -> List[ScheduledSession]:
        persona = self._personas[user.persona]
        to_generate = math.ceil(self.rng.random() * len(persona.sessions)) or 1

        # Returning users skip the first (onboarding) recording
        first = 0 if user.session_count == 0 or len(persona.sessions) == 1 else 1

        scheduled = []
        for i in range(first, min(len(persona.sessions), to_generate)):
            scheduled.append(ScheduledSession(
                recording_id=persona.sessions[i],
                user_id=user.id,
                session_id=self._new_uuid(),
                timestamp=day_start_ms + slot * MINUTE_MS + i * MINUTE_MS,
                persona=persona.name,
                session_index=i
            ))
        return scheduled

    def schedule(self) -> List[ScheduledSession]:
        """
        Simulate the whole date range.

        Returns:
            Scheduled sessions in the order they should be replayed
        """
        plan = self.plan
        users = self.generate_users(plan.starting_user_count)
        dau = math.ceil(plan.starting_user_count * plan.dau_percentage)
        scheduled: List[ScheduledSession] = []

        day = plan.start_date
        while day <= plan.end_date:
            day_start_ms = int(datetime(day.year, day.month, day.day, tzinfo=timezone.utc).timestamp() * 1000)
            limit = self.daily_active_limit(day, dau)

            active_count = 0
            while active_count < limit and any(not u.churned for u in users):
                user = self.rng.choice(users)
                if user.churned:
                    continue

                sessions = self._sessions_for_user(user, day_start_ms, active_count)
                for session in sessions:
                    logger.info(f"User {user.id} scheduled session {session.session_index} "
                                f"with recording {session.recording_id}")
                scheduled.extend(sessions)

                user.session_count += 1
                user.churned = self.rng.random() < self._personas[user.persona].churn_rate
                if user.churned:
                    logger.info(f"User {user.id} churned after {user.session_count} sessions")
                active_count += 1

            users.extend(self.daily_signups(len(users)))
            active_users = sum(1 for u in users if not u.churned)
            dau = math.ceil(active_users * plan.dau_percentage)
            logger.info(f"{day.isoformat()}: {active_users} active users, next DAU {dau}")

            day += timedelta(days=1)

        return scheduled


async def run_schedule(
    schedule: List[ScheduledSession],
    defaults: Dict[str, Any],
    dry_run: bool = True,
    replayer_factory: Callable[[ReplayConfig], SessionReplayer] = SessionReplayer,
    on_result: Optional[Callable[[ScheduledSession, ReplayResult], None]] = None
) -> List[ReplayResult]:
    """
    Replay every scheduled session, one run after another.

    Each run has its own identity mapping, so sessions never share ids.

    Args:
        schedule: Sessions from DemoPlanner.schedule()
        defaults: ReplayConfig fields shared by every run (project key, host...)
        dry_run: Build payloads but send nothing
        replayer_factory: Builds the replayer for one run
        on_result: Called after each run, e.g. to print progress

    Returns:
        One ReplayResult per scheduled session
    """
    results = []
    for session in schedule:
        config = session.to_config(defaults)
        logger.info(f"Replaying session {session.session_id} for user {session.user_id} "
                    f"with recording {session.recording_id} at {session.timestamp}")
        result = await replayer_factory(config).replay(dry_run=dry_run)
        results.append(result)
        if on_result:
            on_result(session, result)
    return results
