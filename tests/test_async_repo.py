import datetime
import os
import sys

import pytest

sys.path.append(os.path.dirname(os.path.dirname(__file__)))
from db import AsyncWorkoutResultRepository
from errors import NotFoundError
from models import Exercise, SetResult

DAY = datetime.date(2024, 3, 4)


@pytest.mark.asyncio
async def test_async_fetch_matches_sync(services):
    squat = services.planner.create_exercise(Exercise(name="Squat"))
    recorder = services.recorder
    result = recorder.start_adhoc_session("athlete", DAY)
    recorder.record_set(result.id, SetResult.traditional(squat.id, "A", 1, 5, 100.0, rpe=8))
    recorder.record_set(result.id, SetResult.traditional(squat.id, "A", 2, 5, 110.0))
    recorder.finish_session(result.id)

    repo = AsyncWorkoutResultRepository(services.db_path)
    loaded = await repo.fetch(result.id)
    expected = services.repos.workouts.fetch(result.id)
    assert loaded.to_dict() == expected.to_dict()
    assert loaded.total_volume_load == 1050.0
    assert [s.exercise_name for s in loaded.set_results] == ["Squat", "Squat"]


@pytest.mark.asyncio
async def test_async_subject_filter(services):
    recorder = services.recorder
    recorder.start_adhoc_session("athlete", DAY)
    recorder.start_adhoc_session("athlete", DAY + datetime.timedelta(days=10))
    recorder.start_adhoc_session("coach", DAY)
    repo = AsyncWorkoutResultRepository(services.db_path)
    results = await repo.fetch_for_subject("athlete", DAY, DAY + datetime.timedelta(days=1))
    assert [r.date for r in results] == [DAY]
    assert len(await repo.fetch_for_subject("athlete")) == 2


@pytest.mark.asyncio
async def test_async_missing_result(tmp_path):
    repo = AsyncWorkoutResultRepository(str(tmp_path / "empty.db"))
    with pytest.raises(NotFoundError):
        await repo.fetch(1)
    assert await repo.fetch_all("SELECT COUNT(*) FROM workout_results") == [(0,)]


@pytest.mark.asyncio
async def test_async_read_ignores_results_added_meanwhile(services):
    squat = services.planner.create_exercise(Exercise(name="Squat"))
    recorder = services.recorder
    first = recorder.start_adhoc_session("athlete", DAY)
    recorder.record_set(first.id, SetResult.traditional(squat.id, "A", 1, 5, 100.0))

    repo = AsyncWorkoutResultRepository(services.db_path)
    original = repo.fetch_dicts
    pending = [True]

    async def fetch_then_record(query, params=()):
        rows = await original(query, params)
        if pending:
            pending.clear()
            late = recorder.start_adhoc_session("athlete", DAY)
            recorder.record_set(late.id, SetResult.traditional(squat.id, "A", 1, 3, 60.0))
        return rows

    repo.fetch_dicts = fetch_then_record
    results = await repo.fetch_for_subject("athlete", DAY, DAY)
    assert [r.id for r in results] == [first.id]
    assert results[0].total_volume_load == 500.0
    assert len(results[0].set_results) == 1
