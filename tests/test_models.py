import datetime
import os
import sys
import unittest

sys.path.append(os.path.dirname(os.path.dirname(__file__)))
from errors import InvalidStateError, NotFoundError, ValidationError
from models import (
    BlockResult,
    BlockType,
    Exercise,
    ExerciseBlock,
    MeasurementType,
    SessionAggregates,
    SessionCompletionStatus,
    SetResult,
    WorkoutResult,
    parse_enum,
)


class EnumTestCase(unittest.TestCase):
    def test_parse_enum_accepts_names_and_display_values(self) -> None:
        self.assertIs(parse_enum(BlockType, "STRAIGHT_SETS"), BlockType.STRAIGHT_SETS)
        self.assertIs(parse_enum(BlockType, "Straight Sets"), BlockType.STRAIGHT_SETS)
        self.assertIs(parse_enum(BlockType, BlockType.EMOM), BlockType.EMOM)
        self.assertIsNone(parse_enum(BlockType, None))
        with self.assertRaises(ValidationError):
            parse_enum(BlockType, "Yoga Flow")

    def test_display_names(self) -> None:
        self.assertEqual(BlockType.WAVE.display_name, "Wave Loading")
        self.assertEqual(len(BlockType), 19)
        self.assertTrue(BlockType.TABATA.is_round_based)
        self.assertFalse(BlockType.SUPERSET.is_round_based)


class ErrorTestCase(unittest.TestCase):
    def test_error_context(self) -> None:
        err = NotFoundError.for_entity("program", 7)
        self.assertIsInstance(err, ValueError)
        self.assertEqual(str(err), "program not found (program 7)")
        self.assertEqual(err.entity_id, 7)
        self.assertIsInstance(InvalidStateError("x"), RuntimeError)
        self.assertEqual(str(ValidationError("bad input")), "bad input")


class BlockTestCase(unittest.TestCase):
    def test_tabata_defaults(self) -> None:
        block = ExerciseBlock(label="A", block_type=BlockType.TABATA)
        self.assertEqual((block.work_phase_seconds, block.rest_phase_seconds), (20, 10))
        plain = ExerciseBlock(label="B")
        self.assertIsNone(plain.work_phase_seconds)

    def test_factories(self) -> None:
        self.assertEqual(ExerciseBlock.emom("A", 60, 720).emom_minutes, 12)
        self.assertIsNone(ExerciseBlock(label="A").emom_minutes)
        tabata = ExerciseBlock.tabata("A")
        self.assertEqual(tabata.total_rounds, 8)
        self.assertEqual(tabata.block_duration_seconds, 240)
        self.assertEqual(ExerciseBlock.amrap("A", 1200).amrap_duration_seconds, 1200)

    def test_from_dict_parses_display_value(self) -> None:
        block = ExerciseBlock.from_dict({"label": "A", "block_type": "Drop Set"})
        self.assertIs(block.block_type, BlockType.DROP_SET)
        self.assertEqual(block.to_dict()["block_type"], "DROP_SET")
        self.assertEqual(block.to_dict()["block_type_display"], "Drop Set")
        with self.assertRaises(ValidationError):
            ExerciseBlock.from_dict({"label": "A", "colour": "red"})
        with self.assertRaises(ValidationError):
            ExerciseBlock.from_dict({"block_type": "EMOM"})


class ExerciseTestCase(unittest.TestCase):
    def test_measurement_types(self) -> None:
        ex = Exercise.from_dict(
            {"name": "Row", "measurement_types": ["Distance", "DURATION"]}
        )
        self.assertEqual(ex.measurement_types, [MeasurementType.DISTANCE, MeasurementType.DURATION])
        self.assertEqual(ex.to_dict()["measurement_types"], ["DISTANCE", "DURATION"])


class SetResultTestCase(unittest.TestCase):
    def test_traditional(self) -> None:
        s = SetResult.traditional(1, "A", 1, reps=5, weight=100.0, rpe=8)
        self.assertEqual(s.volume_load(), 500.0)
        self.assertAlmostEqual(s.estimated_one_rep_max(), 116.6667, places=4)
        self.assertEqual(s.ordering_key, ("A", 0, 1))

    def test_drop_set(self) -> None:
        s = SetResult.drop_set(1, "A", 1, [10, 8, 6], [100.0, 80.0, 60.0])
        self.assertEqual(s.performed_reps, 24)
        self.assertEqual(s.total_drop_set_reps(), 24)

    def test_emom_round(self) -> None:
        late = SetResult.emom_round(1, "A", 4, reps=3, seconds_remaining=-2)
        self.assertFalse(late.completed_in_time)
        self.assertEqual(late.interval_number, 4)

    def test_reps_per_minute(self) -> None:
        s = SetResult(exercise_id=1, performed_reps=30, total_time_seconds=120)
        self.assertEqual(s.reps_per_minute(), 15.0)
        self.assertIsNone(SetResult(exercise_id=1).reps_per_minute())


class BlockResultTestCase(unittest.TestCase):
    def test_rating(self) -> None:
        self.assertEqual(BlockResult(completion_percentage=83.33).performance_rating(), "Good")
        self.assertEqual(BlockResult().performance_rating(), "Not Rated")
        self.assertTrue(
            BlockResult(completion_percentage=100.0, completed_as_planned=True).was_successful()
        )

    def test_durations(self) -> None:
        start = datetime.datetime(2024, 1, 1, 10, 0)
        result = BlockResult(start_time=start, end_time=start + datetime.timedelta(minutes=4))
        self.assertEqual(result.actual_duration_seconds(), 240)
        self.assertEqual(
            BlockResult(total_time_seconds=200, work_time_seconds=150).work_percentage(), 75.0
        )


class WorkoutResultTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self.day = datetime.date(2024, 3, 4)

    def test_aggregates_are_read_only(self) -> None:
        result = WorkoutResult(subject_id="a", date=self.day)
        with self.assertRaises(AttributeError):
            result.total_reps = 10
        result.set_results = [
            SetResult.traditional(1, "A", 1, reps=5, weight=100.0, rpe=8),
            SetResult.traditional(1, "A", 2, reps=5, weight=105.0, rpe=9),
        ]
        self.assertEqual(result.total_reps, 0)
        result.recompute()
        self.assertEqual(result.total_reps, 10)
        self.assertEqual(result.total_volume_load, 1025.0)
        self.assertEqual(result.average_rpe, 8.5)
        self.assertTrue(result.has_rpe)

    def test_restore_aggregates(self) -> None:
        result = WorkoutResult(subject_id="a", date=self.day)
        result.restore_aggregates(SessionAggregates(total_reps=3))
        self.assertEqual(result.total_reps, 3)
        self.assertEqual(result.to_dict()["total_reps"], 3)
        self.assertNotIn("_aggregates", result.to_dict())

    def test_add_set_result_keeps_order(self) -> None:
        result = WorkoutResult(subject_id="a", date=self.day)
        result.add_set_result(SetResult.traditional(1, "B", 1, 5, 50.0))
        result.add_set_result(SetResult.traditional(1, "A", 2, 5, 50.0))
        result.add_set_result(SetResult.traditional(1, "A", 1, 5, 50.0))
        self.assertEqual(
            [s.ordering_key for s in result.set_results],
            [("A", 0, 1), ("A", 0, 2), ("B", 0, 1)],
        )

    def test_factories(self) -> None:
        fran = WorkoutResult.for_time("a", self.day, 263, rx=True)
        self.assertEqual(fran.wod_result, "4:23")
        self.assertTrue(fran.rx_completed)
        amrap = WorkoutResult.amrap("a", self.day, 21, 5, 1200)
        self.assertEqual(amrap.wod_result, "21+5")
        self.assertEqual(amrap.total_rounds, 21)
        emom = WorkoutResult.emom("a", self.day, 10, 12, 2)
        self.assertIs(emom.completion_status, SessionCompletionStatus.PARTIALLY_COMPLETED)
        tabata = WorkoutResult.tabata("a", self.day, 8, 8, 15.5)
        self.assertIs(tabata.completion_status, SessionCompletionStatus.COMPLETED)

    def test_derived_ratios(self) -> None:
        result = WorkoutResult(
            subject_id="a",
            date=self.day,
            total_duration_seconds=600,
            rest_time_seconds=200,
            workout_quality=7,
            energy_level_pre=5,
            energy_level_post=7,
        )
        result.set_results = [SetResult(exercise_id=1, work_time_seconds=300)]
        result.recompute()
        self.assertEqual(result.work_density(), 50.0)
        self.assertEqual(result.work_to_rest_ratio(), 1.5)
        self.assertEqual(result.quality_label(), "Good")
        self.assertEqual(result.energy_change(), 2)
        self.assertEqual(result.average_rest_between_sets(), 0.0)

    def test_from_dict(self) -> None:
        result = WorkoutResult.from_dict(
            {"subject_id": "a", "date": "2024-03-04", "completion_status": "Terminated early"}
        )
        self.assertEqual(result.date, self.day)
        self.assertIs(result.completion_status, SessionCompletionStatus.TERMINATED_EARLY)
        with self.assertRaises(ValidationError):
            WorkoutResult.from_dict({"subject_id": "a", "date": "not a date"})


if __name__ == "__main__":
    unittest.main()
