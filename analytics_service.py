from __future__ import annotations

import datetime
from collections import defaultdict
from dataclasses import asdict, dataclass, field
from typing import Dict, Iterable, List, Optional, Tuple

import pandas as pd
from loguru import logger

from algorithms.math_tools import MathTools
from db import AsyncWorkoutResultRepository, WorkoutResultRepository
from errors import InvalidStateError, ValidationError
from metrics_service import MetricsService
from models import BlockResult, BlockType, ResultType, SetResult, WorkoutResult, parse_enum


@dataclass
class EmomSummary:
    total_sessions: int = 0
    average_completion_rate: float = 0.0
    total_minutes_completed: int = 0
    total_minutes_attempted: int = 0
    rounds_history: List[int] = field(default_factory=list)
    best_completion_rate: Optional[float] = None
    best_date: Optional[datetime.date] = None
    exercise_completion_rates: Dict[str, float] = field(default_factory=dict)


@dataclass
class TabataSummary:
    total_sessions: int = 0
    average_reps_per_round: float = 0.0
    total_rounds: int = 0
    reps_history: List[float] = field(default_factory=list)
    best_average_reps: Optional[float] = None
    best_date: Optional[datetime.date] = None
    exercise_average_reps: Dict[str, float] = field(default_factory=dict)


@dataclass
class AmrapSummary:
    total_sessions: int = 0
    results_by_workout: Dict[str, List[str]] = field(default_factory=dict)
    average_rounds: float = 0.0
    rounds_history: List[int] = field(default_factory=list)


@dataclass
class CircuitSummary:
    total_sessions: int = 0
    average_round_time: float = 0.0
    total_rounds: int = 0
    round_time_history: List[float] = field(default_factory=list)
    fastest_round_time: Optional[float] = None
    fastest_date: Optional[datetime.date] = None
    exercise_average_times: Dict[str, float] = field(default_factory=dict)


@dataclass
class StrengthSummary:
    exercise: str
    max_weight: float = 0.0
    max_weight_date: Optional[datetime.date] = None
    estimated_one_rep_max: float = 0.0
    total_volume: float = 0.0
    weight_history: List[Tuple[datetime.date, float]] = field(default_factory=list)
    rep_maxes: Dict[str, float] = field(default_factory=dict)
    strength_gain: Optional[float] = None


@dataclass
class AnalyticsReport:
    subject_id: str
    start_date: datetime.date
    end_date: datetime.date
    total_workouts: int = 0
    average_duration: float = 0.0
    total_volume: float = 0.0
    average_rpe: float = 0.0
    personal_records: int = 0
    emom: Optional[EmomSummary] = None
    tabata: Optional[TabataSummary] = None
    amrap: Optional[AmrapSummary] = None
    circuit: Optional[CircuitSummary] = None
    strength: Dict[str, StrengthSummary] = field(default_factory=dict)
    one_rep_max_estimates: Dict[str, float] = field(default_factory=dict)
    trends: Dict[str, List[float]] = field(default_factory=dict)
    session_dates: List[datetime.date] = field(default_factory=list)
    workout_consistency: float = 0.0
    performance_consistency: Optional[float] = None
    block_type_success: Dict[str, float] = field(default_factory=dict)
    weekly_volume: Dict[str, float] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return _jsonable(asdict(self))


def _jsonable(value):
    if isinstance(value, dict):
        return {k: _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    if isinstance(value, (datetime.date, datetime.datetime)):
        return value.isoformat()
    return value


def _exercise_name(set_result: SetResult) -> str:
    return set_result.exercise_name or f"exercise {set_result.exercise_id}"


REP_MAX_TARGETS = (1, 3, 5, 10)

PERFORMANCE_LINES = (
    (90, "Excellent - Consider increasing intensity"),
    (80, "Good - Solid consistency"),
    (70, "Fair - Focus on pacing"),
)


class AnalyticsService:
    """Date-range analytics over a subject's workout results."""

    def __init__(
        self,
        workout_repo: WorkoutResultRepository,
        async_repo: AsyncWorkoutResultRepository | None = None,
        metrics: MetricsService | None = None,
    ) -> None:
        self.workouts = workout_repo
        self.async_workouts = async_repo
        self.metrics = metrics or MetricsService()

    @staticmethod
    def _check_range(start_date: datetime.date, end_date: datetime.date) -> None:
        if end_date < start_date:
            raise ValidationError("end_date must not precede start_date")

    def generate_analytics(
        self, subject_id: str, start_date: datetime.date, end_date: datetime.date
    ) -> AnalyticsReport:
        self._check_range(start_date, end_date)
        results = self.workouts.fetch_for_subject(subject_id, start_date, end_date)
        return self.build_report(subject_id, start_date, end_date, results)

    async def generate_analytics_async(
        self, subject_id: str, start_date: datetime.date, end_date: datetime.date
    ) -> AnalyticsReport:
        self._check_range(start_date, end_date)
        if self.async_workouts is None:
            raise InvalidStateError("no asynchronous repository configured")
        results = await self.async_workouts.fetch_for_subject(
            subject_id, start_date, end_date
        )
        return self.build_report(subject_id, start_date, end_date, results)

    def build_report(
        self,
        subject_id: str,
        start_date: datetime.date,
        end_date: datetime.date,
        results: Iterable[WorkoutResult],
    ) -> AnalyticsReport:
        """Derive every analytics section from ``results``.

        Any corrupt record aborts the whole report.
        """
        self._check_range(start_date, end_date)
        results = sorted(results, key=lambda r: (r.date, r.id or 0))
        for result in results:
            result.recompute()
        logger.debug(
            f"Building analytics for {subject_id} over {len(results)} sessions "
            f"({start_date} to {end_date})"
        )
        report = AnalyticsReport(subject_id=subject_id, start_date=start_date, end_date=end_date)
        if not results:
            return report
        self._overall(report, results)
        report.emom = self._emom_summary(results)
        report.tabata = self._tabata_summary(results)
        report.amrap = self._amrap_summary(results)
        report.circuit = self._circuit_summary(results)
        report.strength = self._strength_summaries(results)
        report.one_rep_max_estimates = {
            name: summary.estimated_one_rep_max for name, summary in report.strength.items()
        }
        self._trends(report, results)
        report.workout_consistency = round(
            MathTools.sessions_per_week(len(results), start_date, end_date), 2
        )
        report.performance_consistency = self._performance_consistency(results)
        report.block_type_success = self._block_type_success(results)
        report.weekly_volume = self._weekly_volume(results)
        return report

    @staticmethod
    def _overall(report: AnalyticsReport, results: List[WorkoutResult]) -> None:
        durations = [r.total_duration_seconds for r in results if r.total_duration_seconds is not None]
        report.total_workouts = len(results)
        report.average_duration = round(MathTools.mean(durations), 2)
        report.total_volume = round(sum(r.total_volume_load for r in results), 2)
        report.average_rpe = round(
            MathTools.mean(r.average_rpe for r in results if r.has_rpe), 2
        )
        report.personal_records = sum(len(r.personal_records) for r in results)

    # per-methodology summaries

    @staticmethod
    def _emom_entries(results: List[WorkoutResult]):
        for result in results:
            blocks = [
                b for b in result.block_results
                if b.block_type is BlockType.EMOM and b.emom_minutes_target is not None
            ]
            if blocks:
                sources = [(b.emom_minutes_completed, b.emom_minutes_target, b.id, "block result") for b in blocks]
            elif result.emom_minutes_target is not None:
                sources = [(result.emom_minutes_completed, result.emom_minutes_target, result.id, "workout result")]
            else:
                continue
            for completed, target, entity_id, entity in sources:
                if target == 0:
                    raise InvalidStateError(
                        "EMOM target minutes is zero", entity=entity, entity_id=entity_id
                    )
                yield result.date, completed or 0, target

    def _emom_summary(self, results: List[WorkoutResult]) -> Optional[EmomSummary]:
        entries = list(self._emom_entries(results))
        if not entries:
            return None
        rates = [completed / target * 100 for _d, completed, target in entries]
        best = max(range(len(entries)), key=lambda i: rates[i])
        return EmomSummary(
            total_sessions=len(entries),
            average_completion_rate=round(MathTools.mean(rates), 2),
            total_minutes_completed=sum(e[1] for e in entries),
            total_minutes_attempted=sum(e[2] for e in entries),
            rounds_history=[e[1] for e in entries],
            best_completion_rate=round(rates[best], 2),
            best_date=entries[best][0],
            exercise_completion_rates=self._emom_exercise_rates(results),
        )

    @staticmethod
    def _emom_exercise_rates(results: List[WorkoutResult]) -> Dict[str, float]:
        grouped: Dict[str, List[float]] = defaultdict(list)
        for result in results:
            for s in result.set_results:
                if s.result_type is ResultType.EMOM and s.completed_in_time is not None:
                    grouped[_exercise_name(s)].append(100.0 if s.completed_in_time else 0.0)
        return {name: round(MathTools.mean(vals), 2) for name, vals in grouped.items()}

    @staticmethod
    def _tabata_entries(results: List[WorkoutResult]):
        for result in results:
            blocks = [
                b for b in result.block_results
                if b.block_type is BlockType.TABATA and b.tabata_rounds_completed is not None
            ]
            if blocks:
                for b in blocks:
                    yield result.date, b.tabata_rounds_completed, b.tabata_average_reps
            elif result.tabata_rounds_completed is not None:
                yield result.date, result.tabata_rounds_completed, result.tabata_average_reps

    def _tabata_summary(self, results: List[WorkoutResult]) -> Optional[TabataSummary]:
        entries = list(self._tabata_entries(results))
        if not entries:
            return None
        reps = [(d, avg) for d, _r, avg in entries if avg is not None]
        summary = TabataSummary(
            total_sessions=len(entries),
            average_reps_per_round=round(MathTools.mean(avg for _d, avg in reps), 2),
            total_rounds=sum(rounds for _d, rounds, _a in entries),
            reps_history=[avg for _d, avg in reps],
        )
        if reps:
            best_date, best = max(reps, key=lambda entry: entry[1])
            summary.best_average_reps = best
            summary.best_date = best_date
        grouped: Dict[str, List[int]] = defaultdict(list)
        for result in results:
            for s in result.set_results:
                if s.result_type is ResultType.TABATA and s.performed_reps is not None:
                    grouped[_exercise_name(s)].append(s.performed_reps)
        summary.exercise_average_reps = {
            name: round(MathTools.mean(vals), 2) for name, vals in grouped.items()
        }
        return summary

    @staticmethod
    def _amrap_summary(results: List[WorkoutResult]) -> Optional[AmrapSummary]:
        scored = [r for r in results if r.wod_result is not None]
        if not scored:
            return None
        grouped: Dict[str, List[str]] = defaultdict(list)
        for result in scored:
            if result.template_title is not None:
                grouped[result.template_title].append(result.wod_result)
        rounds = [r.total_rounds for r in scored if r.total_rounds is not None]
        return AmrapSummary(
            total_sessions=len(scored),
            results_by_workout=dict(grouped),
            average_rounds=round(MathTools.mean(rounds), 2),
            rounds_history=rounds,
        )

    @staticmethod
    def _circuit_entries(results: List[WorkoutResult]):
        for result in results:
            blocks = [
                b for b in result.block_results
                if b.block_type is BlockType.CIRCUIT and b.average_round_time is not None
            ]
            if blocks:
                for b in blocks:
                    fastest = b.fastest_round_time_seconds
                    yield (
                        result.date,
                        b.completed_rounds or 0,
                        b.average_round_time,
                        fastest if fastest is not None else b.average_round_time,
                    )
            elif result.average_circuit_time is not None:
                yield (
                    result.date,
                    result.circuit_rounds_completed or 0,
                    result.average_circuit_time,
                    result.average_circuit_time,
                )

    def _circuit_summary(self, results: List[WorkoutResult]) -> Optional[CircuitSummary]:
        entries = list(self._circuit_entries(results))
        if not entries:
            return None
        fastest_date, _r, _a, fastest = min(entries, key=lambda e: e[3])
        grouped: Dict[str, List[int]] = defaultdict(list)
        for result in results:
            for s in result.set_results:
                if s.result_type is ResultType.CIRCUIT and s.work_time_seconds is not None:
                    grouped[_exercise_name(s)].append(s.work_time_seconds)
        return CircuitSummary(
            total_sessions=len(entries),
            average_round_time=round(MathTools.mean(e[2] for e in entries), 2),
            total_rounds=sum(e[1] for e in entries),
            round_time_history=[e[2] for e in entries],
            fastest_round_time=fastest,
            fastest_date=fastest_date,
            exercise_average_times={
                name: round(MathTools.mean(vals), 2) for name, vals in grouped.items()
            },
        )

    def _strength_summaries(self, results: List[WorkoutResult]) -> Dict[str, StrengthSummary]:
        summaries: Dict[str, StrengthSummary] = {}
        session_bests: Dict[str, List[float]] = defaultdict(list)
        for result in results:
            sets = [s for s in result.set_results if self.metrics.is_strength_set(s)]
            sets.sort(key=lambda s: (s.completed_at is None, s.completed_at or datetime.datetime.min))
            bests = self.metrics.one_rep_max_by_exercise(sets, key=_exercise_name)
            for name, estimate in bests.items():
                session_bests[name].append(estimate)
            for s in sets:
                name = _exercise_name(s)
                summary = summaries.setdefault(name, StrengthSummary(exercise=name))
                if s.weight > summary.max_weight:
                    summary.max_weight = s.weight
                    summary.max_weight_date = result.date
                estimate = MathTools.epley_1rm(s.weight, s.performed_reps)
                summary.estimated_one_rep_max = max(summary.estimated_one_rep_max, estimate)
                summary.total_volume += s.volume_load() or 0.0
                summary.weight_history.append((result.date, s.weight))
                for target in REP_MAX_TARGETS:
                    if s.performed_reps >= target:
                        key = f"{target}RM"
                        summary.rep_maxes[key] = max(summary.rep_maxes.get(key, 0.0), s.weight)
        for name, summary in summaries.items():
            summary.estimated_one_rep_max = round(summary.estimated_one_rep_max, 2)
            summary.total_volume = round(summary.total_volume, 2)
            bests = session_bests[name]
            if len(bests) >= 2 and bests[0] > 0:
                summary.strength_gain = round((bests[-1] - bests[0]) / bests[0] * 100, 2)
        return summaries

    # trends and consistency

    @staticmethod
    def _trends(report: AnalyticsReport, results: List[WorkoutResult]) -> None:
        report.session_dates = [r.date for r in results]
        report.trends = {
            "volume_load": [round(r.total_volume_load, 2) for r in results],
            "average_rpe": [round(r.average_rpe, 2) for r in results],
            "session_duration": [float(r.total_duration_seconds or 0) for r in results],
        }

    @staticmethod
    def _performance_consistency(results: List[WorkoutResult]) -> Optional[float]:
        rpes = [r.average_rpe for r in results if r.has_rpe]
        if not rpes:
            return None
        return round(100 - MathTools.coefficient_of_variation(rpes), 2)

    @staticmethod
    def _block_type_success(results: List[WorkoutResult]) -> Dict[str, float]:
        grouped: Dict[str, List[float]] = defaultdict(list)
        for result in results:
            for b in result.block_results:
                grouped[b.block_type.name].append(1.0 if b.completed_as_planned else 0.0)
        return {tag: round(MathTools.mean(vals) * 100, 2) for tag, vals in grouped.items()}

    @staticmethod
    def _weekly_volume(results: List[WorkoutResult]) -> Dict[str, float]:
        weekly: Dict[str, float] = defaultdict(float)
        for result in results:
            year, week, _day = result.date.isocalendar()
            weekly[f"{year}-W{week:02d}"] += result.total_volume_load
        return {key: round(val, 2) for key, val in weekly.items()}

    # reports

    def generate_methodology_report(
        self,
        subject_id: str,
        block_type: BlockType | str,
        start_date: datetime.date,
        end_date: datetime.date,
    ) -> str:
        block_type = parse_enum(BlockType, block_type)
        self._check_range(start_date, end_date)
        results = self.workouts.fetch_for_subject(subject_id, start_date, end_date)
        return self.methodology_report(block_type, results)

    @staticmethod
    def methodology_report(block_type: BlockType, results: Iterable[WorkoutResult]) -> str:
        blocks = [
            b for r in results for b in r.block_results if b.block_type is block_type
        ]
        display = block_type.display_name
        if not blocks:
            return f"No {display} workouts found in the specified date range."
        lines = [f"=== {display} Performance Report ===", ""]
        if block_type is BlockType.EMOM:
            lines.extend(_emom_section(blocks))
        elif block_type is BlockType.TABATA:
            lines.extend(_tabata_section(blocks))
        elif block_type is BlockType.CIRCUIT:
            lines.extend(_circuit_section(blocks))
        elif block_type is BlockType.SUPERSET:
            lines.extend(_superset_section(blocks))
        else:
            lines.extend(_generic_section(blocks))
        return "\n".join(lines) + "\n"

    @staticmethod
    def trend_frame(report: AnalyticsReport) -> pd.DataFrame:
        """Trend series as a date-indexed DataFrame."""
        frame = pd.DataFrame(report.trends, index=pd.to_datetime(report.session_dates))
        frame.index.name = "date"
        return frame


def _emom_section(blocks: List[BlockResult]) -> List[str]:
    rates = [
        (b.emom_minutes_completed or 0) / b.emom_minutes_target * 100
        for b in blocks
        if b.emom_minutes_target
    ]
    average = MathTools.mean(rates)
    minutes = sum(b.emom_minutes_completed or 0 for b in blocks)
    verdict = "Needs improvement - Consider reducing load"
    for threshold, text in PERFORMANCE_LINES:
        if average >= threshold:
            verdict = text
            break
    return [
        f"Total EMOM Sessions: {len(blocks)}",
        f"Average Completion Rate: {average:.1f}%",
        f"Total Minutes Completed: {minutes}",
        f"Performance: {verdict}",
    ]


def _tabata_section(blocks: List[BlockResult]) -> List[str]:
    average = MathTools.mean(
        b.tabata_average_reps for b in blocks if b.tabata_average_reps is not None
    )
    rounds = sum(b.tabata_rounds_completed or 0 for b in blocks)
    if average >= 15:
        intensity = "High"
    elif average >= 10:
        intensity = "Moderate"
    else:
        intensity = "Low"
    return [
        f"Total Tabata Sessions: {len(blocks)}",
        f"Average Reps per Round: {average:.1f}",
        f"Total Rounds Completed: {rounds}",
        f"Intensity Level: {intensity}",
    ]


def _circuit_section(blocks: List[BlockResult]) -> List[str]:
    average = MathTools.mean(
        b.average_round_time for b in blocks if b.average_round_time is not None
    )
    rounds = sum(b.completed_rounds or 0 for b in blocks)
    return [
        f"Total Circuit Sessions: {len(blocks)}",
        f"Average Round Time: {average:.1f} seconds",
        f"Total Rounds Completed: {rounds}",
    ]


def _superset_section(blocks: List[BlockResult]) -> List[str]:
    average = MathTools.mean(
        b.average_rest_between_supersets
        for b in blocks
        if b.average_rest_between_supersets is not None
    )
    rounds = sum(b.superset_rounds or 0 for b in blocks)
    return [
        f"Total Superset Sessions: {len(blocks)}",
        f"Average Rest Between Supersets: {average:.1f} seconds",
        f"Total Supersets Completed: {rounds}",
    ]


def _generic_section(blocks: List[BlockResult]) -> List[str]:
    average = MathTools.mean(
        b.completion_percentage for b in blocks if b.completion_percentage is not None
    )
    return [
        f"Total Sessions: {len(blocks)}",
        f"Average Completion Rate: {average:.1f}%",
    ]
