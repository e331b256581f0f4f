import datetime
import os
import sys
from types import SimpleNamespace

import pytest

sys.path.append(os.path.dirname(os.path.dirname(__file__)))
from analytics_service import AnalyticsService
from db import (
    AsyncWorkoutResultRepository,
    BlockItemRepository,
    BlockResultRepository,
    ExerciseBlockRepository,
    ExerciseRepository,
    ProgramRepository,
    SessionTemplateRepository,
    SetResultRepository,
    WorkoutResultRepository,
)
from metrics_service import MetricsService
from planner_service import PlannerService
from session_service import SessionService


class FakeClock:
    """Deterministic stand-in for ``datetime.datetime.now``."""

    def __init__(self, start: datetime.datetime) -> None:
        self.now = start

    def __call__(self) -> datetime.datetime:
        return self.now

    def advance(self, **delta) -> None:
        self.now += datetime.timedelta(**delta)


@pytest.fixture
def clock():
    return FakeClock(datetime.datetime(2024, 3, 4, 9, 0))


@pytest.fixture
def services(tmp_path, clock):
    db_file = str(tmp_path / "training.db")
    repos = SimpleNamespace(
        exercises=ExerciseRepository(db_file),
        programs=ProgramRepository(db_file),
        sessions=SessionTemplateRepository(db_file),
        blocks=ExerciseBlockRepository(db_file),
        items=BlockItemRepository(db_file),
        workouts=WorkoutResultRepository(db_file),
        sets=SetResultRepository(db_file),
        block_results=BlockResultRepository(db_file),
    )
    metrics = MetricsService()
    planner = PlannerService(
        repos.programs, repos.sessions, repos.blocks, repos.items, repos.exercises
    )
    recorder = SessionService(
        repos.workouts,
        repos.sets,
        repos.block_results,
        repos.sessions,
        repos.blocks,
        repos.items,
        repos.exercises,
        metrics=metrics,
        clock=clock,
    )
    analytics = AnalyticsService(
        repos.workouts, AsyncWorkoutResultRepository(db_file), metrics=metrics
    )
    return SimpleNamespace(
        db_path=db_file,
        repos=repos,
        planner=planner,
        recorder=recorder,
        analytics=analytics,
        clock=clock,
    )
