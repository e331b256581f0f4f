from __future__ import annotations

import datetime
import threading
import weakref
from contextlib import contextmanager
from typing import Callable, List, Optional, Tuple

from loguru import logger

from db import (
    BlockItemRepository,
    BlockResultRepository,
    ExerciseBlockRepository,
    ExerciseRepository,
    SessionTemplateRepository,
    SetResultRepository,
    WorkoutResultRepository,
)
from errors import InvalidStateError, ValidationError
from metrics_service import MetricsService
from models import (
    BLOCK_RESULTS,
    AdvancedPrescription,
    BlockItem,
    BlockResult,
    ExerciseBlock,
    ResultType,
    SessionCompletionStatus,
    SetResult,
    WorkoutResult,
    parse_enum,
)


class SessionService:
    """Records performed sessions against their templates."""

    def __init__(
        self,
        workout_repo: WorkoutResultRepository,
        set_repo: SetResultRepository,
        block_result_repo: BlockResultRepository,
        session_repo: SessionTemplateRepository,
        block_repo: ExerciseBlockRepository,
        item_repo: BlockItemRepository,
        exercise_repo: ExerciseRepository,
        metrics: MetricsService | None = None,
        clock: Callable[[], datetime.datetime] = datetime.datetime.now,
    ) -> None:
        self.workouts = workout_repo
        self.sets = set_repo
        self.block_results = block_result_repo
        self.sessions = session_repo
        self.blocks = block_repo
        self.items = item_repo
        self.exercises = exercise_repo
        self.metrics = metrics or MetricsService()
        self.clock = clock
        self._locks: weakref.WeakValueDictionary = weakref.WeakValueDictionary()
        self._locks_guard = threading.Lock()

    @contextmanager
    def _locked(self, result_id: int):
        """Serialize mutations of a single workout result."""
        with self._locks_guard:
            lock = self._locks.get(result_id)
            if lock is None:
                lock = threading.Lock()
                self._locks[result_id] = lock
        with lock:
            yield

    # session lifecycle

    def start_session(
        self,
        template_id: int,
        subject_id: str,
        date: datetime.date | None = None,
        week: int | None = None,
    ) -> WorkoutResult:
        template = self.sessions.fetch(template_id)
        now = self.clock()
        result = WorkoutResult(
            subject_id=subject_id,
            date=date or now.date(),
            template_id=template.id,
            template_title=template.title,
            week=week,
            start_time=now,
        )
        result.id = self.workouts.create(result)
        logger.info(
            f"Started session {result.id} from template {template_id} for {subject_id}"
        )
        return result

    def start_adhoc_session(
        self, subject_id: str, date: datetime.date | None = None
    ) -> WorkoutResult:
        now = self.clock()
        result = WorkoutResult(
            subject_id=subject_id, date=date or now.date(), start_time=now
        )
        result.id = self.workouts.create(result)
        logger.info(f"Started ad-hoc session {result.id} for {subject_id}")
        return result

    def import_result(self, result: WorkoutResult) -> WorkoutResult:
        """Store a result built elsewhere, e.g. by a result factory."""
        if result.template_id is not None:
            template = self.sessions.fetch(result.template_id)
            result.template_title = template.title
        for set_result in result.set_results:
            self.exercises.fetch(set_result.exercise_id)
            self._validate_set(set_result)
        sets = list(result.set_results)
        blocks = list(result.block_results)
        result.set_results = []
        result.block_results = []
        result.id = self.workouts.create(result)
        for set_result in sets:
            set_result.workout_result_id = result.id
            set_result.id = self.sets.add(set_result)
        for block_result in blocks:
            block_result.workout_result_id = result.id
            self.metrics.apply_block_completion(block_result)
            block_result.id = self.block_results.add(block_result)
        return self._recompute(result.id)

    def finish_session(self, result_id: int) -> WorkoutResult:
        """Stamp the end time and recompute every derived field."""
        with self._locked(result_id):
            result = self.workouts.fetch(result_id)
            end = self.clock()
            result.end_time = end
            fields = {"end_time": end}
            if result.start_time is not None:
                result.total_duration_seconds = max(
                    0, int((end - result.start_time).total_seconds())
                )
                fields["total_duration_seconds"] = result.total_duration_seconds
            history = self.sets.fetch_history(result.subject_id, result)
            self.metrics.finalize(result, history)
            if result.completion_status is None:
                result.completion_status = self._default_status(result)
                fields["completion_status"] = result.completion_status
            self.workouts.update(result_id, **fields)
            self.workouts.save_aggregates(result)
            for block_result in result.block_results:
                self.block_results.save_derived(block_result)
        logger.info(
            f"Finished session {result_id}: {result.total_reps} reps, "
            f"volume {result.total_volume_load:.1f}"
        )
        return result

    @staticmethod
    def _default_status(result: WorkoutResult) -> SessionCompletionStatus:
        if not result.set_results and not result.block_results:
            return SessionCompletionStatus.MISSED
        if any(b.completed_as_planned is False for b in result.block_results):
            return SessionCompletionStatus.PARTIALLY_COMPLETED
        return SessionCompletionStatus.COMPLETED

    def set_completion_status(
        self, result_id: int, status: SessionCompletionStatus | str
    ) -> WorkoutResult:
        status = parse_enum(SessionCompletionStatus, status)
        with self._locked(result_id):
            self.workouts.update(result_id, completion_status=status)
        return self._refresh(result_id)

    def update_session(self, result_id: int, **fields) -> WorkoutResult:
        """Edit descriptive fields such as notes, WOD result or energy levels."""
        if "completion_status" in fields:
            fields["completion_status"] = parse_enum(
                SessionCompletionStatus, fields["completion_status"]
            )
        with self._locked(result_id):
            self.workouts.update(result_id, **fields)
        return self._refresh(result_id)

    def delete_session(self, result_id: int) -> None:
        with self._locked(result_id):
            self.workouts.delete(result_id)

    # set results

    def _template_block(self, result: WorkoutResult, label: str | None) -> Optional[ExerciseBlock]:
        if result.template_id is None or label is None:
            return None
        blocks = self.blocks.fetch_for_session(result.template_id)
        for block in blocks:
            if block.label == label:
                return block
        raise InvalidStateError(
            f"block {label!r} is not part of the session template",
            entity="workout result",
            entity_id=result.id,
        )

    def _planned_item(self, result: WorkoutResult, item_id: int) -> Tuple[BlockItem, ExerciseBlock]:
        item = self.items.fetch(item_id)
        block = self.blocks.fetch(item.block_id)
        if result.template_id is not None and block.session_id != result.template_id:
            raise InvalidStateError(
                f"item {item.id} is not part of the session template",
                entity="workout result",
                entity_id=result.id,
            )
        return item, block

    def record_set(self, result_id: int, set_result: SetResult) -> WorkoutResult:
        """Append ``set_result`` to a session and refresh its aggregates."""
        with self._locked(result_id):
            result = self.workouts.fetch(result_id, with_children=False)
            if set_result.planned_item_id is not None:
                item, planned_block = self._planned_item(result, set_result.planned_item_id)
                if set_result.block_label is None:
                    set_result.block_label = planned_block.label
                if set_result.exercise_id is None:
                    set_result.exercise_id = item.exercise_id
                set_result.block_item_order = item.order_index
                if isinstance(item.prescription, AdvancedPrescription):
                    set_result.result_type = item.prescription.result_type
                    if set_result.target_reps is None:
                        set_result.target_reps = item.prescription.target_reps
            block = self._template_block(result, set_result.block_label)
            if set_result.result_type is None:
                set_result.result_type = (
                    BLOCK_RESULTS[block.block_type] if block else ResultType.STRAIGHT_SET
                )
            if set_result.exercise_id is None:
                raise ValidationError("set result needs an exercise")
            self.exercises.fetch(set_result.exercise_id)
            self._validate_set(set_result)
            self._assign_sequence(result_id, set_result, block)
            set_result.workout_result_id = result_id
            if set_result.completed_at is None:
                set_result.completed_at = self.clock()
            set_result.id = self.sets.add(set_result)
            return self._recompute(result_id)

    @staticmethod
    def _validate_set(set_result: SetResult) -> None:
        if set_result.rpe is not None and not 1 <= set_result.rpe <= 10:
            raise ValidationError("rpe must be between 1 and 10")
        for name in ("performed_reps", "target_reps", "weight", "work_time_seconds", "rest_time_seconds"):
            value = getattr(set_result, name)
            if value is not None and value < 0:
                raise ValidationError(f"{name} must not be negative")
        if len(set_result.drop_set_weights) not in (0, len(set_result.drop_set_reps)):
            raise ValidationError("drop set weights must match drop set reps")

    def _assign_sequence(
        self, result_id: int, set_result: SetResult, block: Optional[ExerciseBlock]
    ) -> None:
        round_based = block is not None and block.block_type.is_round_based
        if round_based or set_result.result_type in (
            ResultType.EMOM,
            ResultType.TABATA,
            ResultType.AMRAP,
            ResultType.CIRCUIT,
        ):
            key = set_result.round_number or set_result.interval_number
            if key:
                set_result.set_number = key
                return
        if set_result.set_number <= 0:
            set_result.set_number = self.sets.next_set_number(
                result_id, set_result.block_label, set_result.block_item_order
            )

    def update_set(self, set_id: int, **fields) -> WorkoutResult:
        """Corrective edit of a recorded set; aggregates follow."""
        current = self.sets.fetch(set_id)
        if "result_type" in fields:
            fields["result_type"] = parse_enum(ResultType, fields["result_type"])
        with self._locked(current.workout_result_id):
            merged = SetResult.from_dict({**current.to_dict(), **fields})
            self._validate_set(merged)
            result = self.workouts.fetch(current.workout_result_id, with_children=False)
            if "planned_item_id" in fields and merged.planned_item_id is not None:
                self._planned_item(result, merged.planned_item_id)
            self._template_block(result, merged.block_label)
            self.sets.update(set_id, **fields)
            return self._recompute(current.workout_result_id)

    def delete_set(self, set_id: int) -> WorkoutResult:
        current = self.sets.fetch(set_id)
        with self._locked(current.workout_result_id):
            self.sets.delete(set_id)
            return self._recompute(current.workout_result_id)

    def _recompute(self, result_id: int) -> WorkoutResult:
        result = self.workouts.fetch(result_id)
        if result.is_finished:
            history = self.sets.fetch_history(result.subject_id, result)
            self.metrics.finalize(result, history)
        else:
            self.metrics.recompute(result)
        self.workouts.save_aggregates(result)
        return result

    # block results

    def record_block_result(
        self, result_id: int, block_id: int, block_result: BlockResult
    ) -> BlockResult:
        """Store the outcome of a planned block with derived completion fields."""
        with self._locked(result_id):
            result = self.workouts.fetch(result_id, with_children=False)
            block = self.blocks.fetch(block_id)
            if result.template_id != block.session_id:
                raise InvalidStateError(
                    f"block {block_id} does not belong to the session template",
                    entity="workout result",
                    entity_id=result_id,
                )
            block_result.workout_result_id = result_id
            block_result.planned_block_id = block.id
            block_result.block_label = block.label
            block_result.block_order = block.order_index
            block_result.block_type = block.block_type
            if block_result.target_rounds is None:
                block_result.target_rounds = block.total_rounds
            if block_result.emom_minutes_target is None:
                block_result.emom_minutes_target = block.emom_minutes
            self.metrics.apply_block_completion(block_result)
            block_result.id = self.block_results.add(block_result)
            return block_result

    def get_block_result(self, block_result_id: int) -> BlockResult:
        return self.block_results.fetch(block_result_id)

    def delete_block_result(self, block_result_id: int) -> None:
        self.block_results.delete(block_result_id)

    # queries

    def _refresh(self, result_id: int) -> WorkoutResult:
        return self.workouts.fetch(result_id)

    def get_result(self, result_id: int) -> WorkoutResult:
        return self.workouts.fetch(result_id)

    def results_for_subject(
        self,
        subject_id: str,
        start_date: datetime.date | None = None,
        end_date: datetime.date | None = None,
    ) -> List[WorkoutResult]:
        return self.workouts.fetch_for_subject(subject_id, start_date, end_date)

    def results_for_template(self, template_id: int) -> List[WorkoutResult]:
        return self.workouts.fetch_for_template(template_id)

    def results_for_item(self, item_id: int) -> List[SetResult]:
        return self.sets.fetch_for_item(item_id)

    def results_for_block(self, block_id: int) -> List[BlockResult]:
        return self.block_results.fetch_for_block(block_id)
