import datetime
import os
import sys

import pytest

sys.path.append(os.path.dirname(os.path.dirname(__file__)))
from errors import InvalidStateError
from metrics_service import BLOCK_COMPLETION, MetricsService
from models import BlockResult, BlockType, SetResult, WorkoutResult


def _strength_sets():
    return [
        SetResult.traditional(1, "A", 1, reps=5, weight=100.0, rpe=8),
        SetResult.traditional(1, "A", 2, reps=5, weight=105.0, rpe=9),
        SetResult.traditional(1, "A", 3, reps=3, weight=110.0),
    ]


def test_every_block_type_has_a_completion_rule():
    assert set(BLOCK_COMPLETION) == set(BlockType)


def test_session_aggregates():
    agg = MetricsService.session_aggregates(_strength_sets())
    assert agg.total_reps == 13
    assert agg.total_volume_load == 1355.0
    assert agg.average_rpe == 8.5
    assert agg.rpe_count == 2


def test_aggregates_ignore_set_order():
    forward = MetricsService.session_aggregates(_strength_sets())
    backward = MetricsService.session_aggregates(list(reversed(_strength_sets())))
    assert forward == backward


def test_no_rpe_means_zero_average():
    agg = MetricsService.session_aggregates([SetResult.traditional(1, "A", 1, 5, 50.0)])
    assert agg.average_rpe == 0.0
    assert agg.rpe_count == 0


def test_emom_completion():
    block = BlockResult(
        block_type=BlockType.EMOM,
        emom_minutes_target=12,
        emom_minutes_completed=10,
        emom_failed_minutes=2,
    )
    derived = MetricsService.derive_block_completion(block)
    assert derived == {"completion_percentage": 83.33, "completed_as_planned": False}


def test_emom_zero_target_is_logged_and_left_alone():
    block = BlockResult(
        id=4,
        block_type=BlockType.EMOM,
        emom_minutes_target=0,
        emom_minutes_completed=5,
        completion_percentage=50.0,
    )
    with pytest.raises(InvalidStateError) as exc:
        MetricsService.derive_block_completion(block)
    assert exc.value.entity_id == 4
    assert MetricsService().apply_block_completion(block) is False
    assert block.completion_percentage == 50.0


def test_emom_without_target_derives_nothing():
    block = BlockResult(block_type=BlockType.EMOM, emom_minutes_completed=10)
    assert MetricsService.derive_block_completion(block) == {}
    assert MetricsService().apply_block_completion(block) is True
    assert block.completion_percentage is None
    assert block.completed_as_planned is None


def test_tabata_completion():
    block = BlockResult(block_type=BlockType.TABATA, target_rounds=8, tabata_rounds_completed=8)
    assert MetricsService().apply_block_completion(block)
    assert block.completion_percentage == 100.0
    assert block.completed_as_planned is True
    short = BlockResult(block_type=BlockType.TABATA, target_rounds=8, tabata_rounds_completed=6)
    MetricsService().apply_block_completion(short)
    assert short.completion_percentage == 75.0
    assert short.completed_as_planned is False


def test_circuit_round_times():
    block = BlockResult(
        block_type=BlockType.CIRCUIT,
        target_rounds=3,
        completed_rounds=3,
        round_times_seconds=[60, 70, 80],
    )
    MetricsService().apply_block_completion(block)
    assert block.completed_as_planned is True
    assert block.average_round_time == 70.0
    assert block.fastest_round_time_seconds == 60
    assert block.slowest_round_time_seconds == 80


def test_circuit_zero_target_raises():
    block = BlockResult(block_type=BlockType.CIRCUIT, target_rounds=0, completed_rounds=2)
    with pytest.raises(InvalidStateError):
        MetricsService.derive_block_completion(block)


def test_superset_falls_back_to_completed_rounds():
    block = BlockResult(block_type=BlockType.SUPERSET, target_rounds=4, completed_rounds=3)
    MetricsService().apply_block_completion(block)
    assert block.completion_percentage == 75.0
    assert block.completed_as_planned is False


def test_generic_blocks_keep_caller_values():
    block = BlockResult(
        block_type=BlockType.LADDER, completion_percentage=90.0, completed_as_planned=True
    )
    assert MetricsService().apply_block_completion(block)
    assert block.completion_percentage == 90.0
    assert block.completed_as_planned is True


def test_one_rep_max_by_exercise():
    sets = _strength_sets() + [SetResult.emom_round(1, "B", 1, reps=20, seconds_remaining=5)]
    best = MetricsService.one_rep_max_by_exercise(sets, key=lambda s: s.exercise_id)
    assert best == {1: pytest.approx(122.5)}


def test_personal_records_need_a_prior_best():
    history = [SetResult.traditional(1, "A", 1, reps=5, weight=100.0)]
    current = [SetResult.traditional(1, "A", 1, reps=5, weight=105.0)]
    assert MetricsService.detect_personal_records(current, history) == [122.5]
    assert MetricsService.detect_personal_records(current, []) == []
    assert MetricsService.detect_personal_records(history, current) == []


def test_finalize_is_idempotent():
    result = WorkoutResult(subject_id="a", date=datetime.date(2024, 3, 4))
    result.set_results = _strength_sets()
    result.block_results = [
        BlockResult(block_type=BlockType.TABATA, target_rounds=8, tabata_rounds_completed=7)
    ]
    history = [SetResult.traditional(1, "A", 1, reps=5, weight=100.0)]
    metrics = MetricsService()
    metrics.finalize(result, history)
    first = (
        result.aggregates,
        result.max_weight_lifted,
        result.estimated_one_rep_max,
        list(result.personal_records),
        result.block_results[0].completion_percentage,
    )
    metrics.finalize(result, history)
    second = (
        result.aggregates,
        result.max_weight_lifted,
        result.estimated_one_rep_max,
        list(result.personal_records),
        result.block_results[0].completion_percentage,
    )
    assert first == second
    assert result.max_weight_lifted == 110.0
    assert result.estimated_one_rep_max == 122.5
    assert result.personal_records == [122.5]
    assert result.block_results[0].completion_percentage == 87.5
