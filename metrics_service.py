from __future__ import annotations

from typing import Callable, Dict, Hashable, Iterable, List, Optional

from loguru import logger

from algorithms.math_tools import MathTools
from errors import InvalidStateError
from models import (
    BlockResult,
    BlockType,
    ResultType,
    SessionAggregates,
    SetResult,
    WorkoutResult,
)


def _ratio(completed: int, target: Optional[int], block_result: BlockResult) -> Optional[float]:
    if target is None:
        return None
    if target == 0:
        raise InvalidStateError(
            f"{block_result.block_type.name} target rounds is zero",
            entity="block result",
            entity_id=block_result.id,
        )
    return round(MathTools.percentage(completed, target), 2)


def _round_time_stats(block_result: BlockResult) -> dict:
    times = block_result.round_times_seconds
    if not times:
        return {}
    return {
        "average_round_time": round(MathTools.mean(times), 2),
        "fastest_round_time_seconds": min(times),
        "slowest_round_time_seconds": max(times),
    }


def _emom_completion(block_result: BlockResult) -> dict:
    target = block_result.emom_minutes_target
    if target is None:
        return {}
    if target == 0:
        raise InvalidStateError(
            "EMOM block has no target minutes",
            entity="block result",
            entity_id=block_result.id,
        )
    completed = block_result.emom_minutes_completed or 0
    failed = block_result.emom_failed_minutes or 0
    return {
        "completion_percentage": round(MathTools.percentage(completed, target), 2),
        "completed_as_planned": failed == 0,
    }


def _tabata_completion(block_result: BlockResult) -> dict:
    target = block_result.target_rounds
    rounds = block_result.tabata_rounds_completed or 0
    completion = _ratio(rounds, target, block_result)
    return {
        "completion_percentage": completion,
        "completed_as_planned": None if target is None else rounds == target,
    }


def _circuit_completion(block_result: BlockResult) -> dict:
    target = block_result.target_rounds
    rounds = block_result.completed_rounds or 0
    derived = {
        "completion_percentage": _ratio(rounds, target, block_result),
        "completed_as_planned": None if target is None else rounds == target,
    }
    derived.update(_round_time_stats(block_result))
    return derived


def _superset_completion(block_result: BlockResult) -> dict:
    target = block_result.target_rounds
    rounds = block_result.superset_rounds
    if rounds is None:
        rounds = block_result.completed_rounds or 0
    derived = {
        "completion_percentage": _ratio(rounds, target, block_result),
        "completed_as_planned": None if target is None else rounds == target,
    }
    derived.update(_round_time_stats(block_result))
    return derived


def _no_completion(block_result: BlockResult) -> dict:
    return {}


BLOCK_COMPLETION: Dict[BlockType, Callable[[BlockResult], dict]] = {
    BlockType.STRAIGHT_SETS: _no_completion,
    BlockType.SUPERSET: _superset_completion,
    BlockType.TRISET: _superset_completion,
    BlockType.GIANT_SET: _superset_completion,
    BlockType.CIRCUIT: _circuit_completion,
    BlockType.EMOM: _emom_completion,
    BlockType.TABATA: _tabata_completion,
    BlockType.AMRAP: _no_completion,
    BlockType.FOR_TIME: _no_completion,
    BlockType.COMPLEX: _no_completion,
    BlockType.LADDER: _no_completion,
    BlockType.PYRAMID: _no_completion,
    BlockType.WAVE: _no_completion,
    BlockType.CLUSTER: _no_completion,
    BlockType.REST_PAUSE: _no_completion,
    BlockType.DROP_SET: _no_completion,
    BlockType.MECHANICAL_DROP_SET: _no_completion,
    BlockType.DEATH_BY: _no_completion,
    BlockType.CUSTOM: _no_completion,
}


class MetricsService:
    """Derive set, block and session metrics from recorded results.

    Every derivation is a pure function of its inputs, so running it twice
    yields the same values.
    """

    @staticmethod
    def session_aggregates(sets: Iterable[SetResult]) -> SessionAggregates:
        return SessionAggregates.from_sets(sets)

    @staticmethod
    def recompute(result: WorkoutResult) -> SessionAggregates:
        return result.recompute()

    @staticmethod
    def derive_block_completion(block_result: BlockResult) -> dict:
        """Return the derived completion fields for ``block_result``.

        Raises :class:`InvalidStateError` when a declared target cannot be
        used as a divisor.
        """
        return BLOCK_COMPLETION[block_result.block_type](block_result)

    def apply_block_completion(self, block_result: BlockResult) -> bool:
        """Write derived completion fields onto ``block_result``.

        On failure the error is logged and the stored fields stay as they were.
        """
        try:
            derived = self.derive_block_completion(block_result)
        except InvalidStateError as exc:
            logger.error(
                f"Block completion failed for block result {block_result.id} "
                f"({block_result.block_type.name}): {exc}"
            )
            return False
        for name, value in derived.items():
            setattr(block_result, name, value)
        return True

    @staticmethod
    def is_strength_set(set_result: SetResult) -> bool:
        return (
            set_result.result_type is ResultType.STRAIGHT_SET
            and set_result.weight is not None
            and bool(set_result.performed_reps)
        )

    @classmethod
    def one_rep_max_by_exercise(
        cls,
        sets: Iterable[SetResult],
        key: Callable[[SetResult], Hashable] = lambda s: s.exercise_name or s.exercise_id,
    ) -> Dict[Hashable, float]:
        """Highest Epley estimate per exercise over straight sets."""
        best: Dict[Hashable, float] = {}
        for set_result in sets:
            if not cls.is_strength_set(set_result):
                continue
            estimate = MathTools.epley_1rm(set_result.weight, set_result.performed_reps)
            name = key(set_result)
            if estimate > best.get(name, 0.0):
                best[name] = estimate
        return best

    @classmethod
    def detect_personal_records(
        cls, sets: Iterable[SetResult], history: Iterable[SetResult]
    ) -> List[float]:
        """Session-best estimates that beat the prior best for their exercise."""
        previous = cls.one_rep_max_by_exercise(history, key=lambda s: s.exercise_id)
        current = cls.one_rep_max_by_exercise(sets, key=lambda s: s.exercise_id)
        records = [
            round(estimate, 2)
            for exercise_id, estimate in current.items()
            if exercise_id in previous and estimate > previous[exercise_id]
        ]
        return sorted(records, reverse=True)

    def finalize(
        self, result: WorkoutResult, history: Iterable[SetResult] = ()
    ) -> WorkoutResult:
        """Recompute every derived field of ``result`` in place."""
        result.recompute()
        weights = [s.weight for s in result.set_results if s.weight is not None]
        result.max_weight_lifted = max(weights) if weights else None
        estimates = self.one_rep_max_by_exercise(
            result.set_results, key=lambda s: s.exercise_id
        )
        result.estimated_one_rep_max = (
            round(max(estimates.values()), 2) if estimates else None
        )
        result.personal_records = self.detect_personal_records(
            result.set_results, history
        )
        for block_result in result.block_results:
            self.apply_block_completion(block_result)
        return result
