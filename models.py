from __future__ import annotations

import datetime
from dataclasses import dataclass, field, fields
from enum import Enum
from typing import Iterable, List, Optional, Type, TypeVar, Union

from algorithms.math_tools import MathTools
from algorithms.tempo_parser import TempoComponents, TempoParser
from errors import ValidationError

E = TypeVar("E", bound=Enum)


class BlockType(Enum):
    """Training methodology of an exercise block, valued by display name."""

    STRAIGHT_SETS = "Straight Sets"
    SUPERSET = "Superset"
    TRISET = "Triset"
    GIANT_SET = "Giant Set"
    CIRCUIT = "Circuit"
    EMOM = "EMOM"
    TABATA = "Tabata"
    AMRAP = "AMRAP"
    FOR_TIME = "For Time"
    COMPLEX = "Complex Training"
    LADDER = "Ladder"
    PYRAMID = "Pyramid"
    WAVE = "Wave Loading"
    CLUSTER = "Cluster Sets"
    REST_PAUSE = "Rest-Pause"
    DROP_SET = "Drop Set"
    MECHANICAL_DROP_SET = "Mechanical Drop Set"
    DEATH_BY = "Death By"
    CUSTOM = "Custom"

    @property
    def display_name(self) -> str:
        return self.value

    @property
    def is_round_based(self) -> bool:
        return self in ROUND_BASED_BLOCKS


ROUND_BASED_BLOCKS = frozenset(
    {BlockType.EMOM, BlockType.TABATA, BlockType.AMRAP, BlockType.CIRCUIT}
)


class SetType(Enum):
    STRAIGHT_SETS = "STRAIGHT_SETS"
    SUPERSET = "SUPERSET"
    TRISET = "TRISET"
    GIANT_SET = "GIANT_SET"
    DROP_SET = "DROP_SET"
    REST_PAUSE = "REST_PAUSE"
    CLUSTER_SET = "CLUSTER_SET"
    PYRAMID = "PYRAMID"
    REVERSE_PYRAMID = "REVERSE_PYRAMID"
    CIRCUIT = "CIRCUIT"
    EMOM = "EMOM"
    TABATA = "TABATA"
    AMRAP = "AMRAP"
    FOR_TIME = "FOR_TIME"
    ISOMETRIC = "ISOMETRIC"
    COMPLEX = "COMPLEX"
    MECHANICAL_DROP_SET = "MECHANICAL_DROP_SET"


class LoadingScheme(Enum):
    LINEAR = "LINEAR"
    REVERSE_LINEAR = "REVERSE_LINEAR"
    UNDULATING = "UNDULATING"
    BLOCK = "BLOCK"
    CONJUGATE = "CONJUGATE"
    PERCENTAGE_BASED = "PERCENTAGE_BASED"
    RPE_BASED = "RPE_BASED"
    AUTOREGULATED = "AUTOREGULATED"


class ResultType(Enum):
    """Kind of recorded set, valued by display name."""

    STRAIGHT_SET = "Traditional Set"
    SUPERSET = "Superset"
    CIRCUIT = "Circuit"
    TABATA = "Tabata Round"
    EMOM = "EMOM Round"
    AMRAP = "AMRAP Round"
    FOR_TIME = "For Time"
    DROP_SET = "Drop Set"
    CLUSTER_SET = "Cluster Set"
    REST_PAUSE = "Rest-Pause"
    PYRAMID = "Pyramid Set"
    COMPLEX = "Complex Set"
    ISOMETRIC = "Isometric Hold"
    PLYOMETRIC = "Plyometric"
    CARDIO = "Cardio"
    TIME_TRIAL = "Time Trial"
    MAX_EFFORT = "Max Effort"
    DYNAMIC_EFFORT = "Dynamic Effort"
    SKILL_PRACTICE = "Skill Practice"
    CUSTOM = "Custom"

    @property
    def display_name(self) -> str:
        return self.value


SET_TYPE_RESULTS: dict[SetType, ResultType] = {
    SetType.STRAIGHT_SETS: ResultType.STRAIGHT_SET,
    SetType.SUPERSET: ResultType.SUPERSET,
    SetType.TRISET: ResultType.SUPERSET,
    SetType.GIANT_SET: ResultType.SUPERSET,
    SetType.DROP_SET: ResultType.DROP_SET,
    SetType.MECHANICAL_DROP_SET: ResultType.DROP_SET,
    SetType.REST_PAUSE: ResultType.REST_PAUSE,
    SetType.CLUSTER_SET: ResultType.CLUSTER_SET,
    SetType.PYRAMID: ResultType.PYRAMID,
    SetType.REVERSE_PYRAMID: ResultType.PYRAMID,
    SetType.CIRCUIT: ResultType.CIRCUIT,
    SetType.EMOM: ResultType.EMOM,
    SetType.TABATA: ResultType.TABATA,
    SetType.AMRAP: ResultType.AMRAP,
    SetType.FOR_TIME: ResultType.FOR_TIME,
    SetType.ISOMETRIC: ResultType.ISOMETRIC,
    SetType.COMPLEX: ResultType.COMPLEX,
}

# result type recorded for a set when no planned item names one
BLOCK_RESULTS: dict[BlockType, ResultType] = {
    BlockType.STRAIGHT_SETS: ResultType.STRAIGHT_SET,
    BlockType.SUPERSET: ResultType.SUPERSET,
    BlockType.TRISET: ResultType.SUPERSET,
    BlockType.GIANT_SET: ResultType.SUPERSET,
    BlockType.CIRCUIT: ResultType.CIRCUIT,
    BlockType.EMOM: ResultType.EMOM,
    BlockType.TABATA: ResultType.TABATA,
    BlockType.AMRAP: ResultType.AMRAP,
    BlockType.FOR_TIME: ResultType.FOR_TIME,
    BlockType.COMPLEX: ResultType.COMPLEX,
    BlockType.LADDER: ResultType.STRAIGHT_SET,
    BlockType.PYRAMID: ResultType.PYRAMID,
    BlockType.WAVE: ResultType.STRAIGHT_SET,
    BlockType.CLUSTER: ResultType.CLUSTER_SET,
    BlockType.REST_PAUSE: ResultType.REST_PAUSE,
    BlockType.DROP_SET: ResultType.DROP_SET,
    BlockType.MECHANICAL_DROP_SET: ResultType.DROP_SET,
    BlockType.DEATH_BY: ResultType.EMOM,
    BlockType.CUSTOM: ResultType.CUSTOM,
}


class SessionCompletionStatus(Enum):
    COMPLETED = "Completed as planned"
    PARTIALLY_COMPLETED = "Partially completed"
    MODIFIED = "Completed with modifications"
    TERMINATED_EARLY = "Terminated early"
    SCALED = "Scaled down"
    SCALED_UP = "Scaled up"
    MISSED = "Missed session"


class WeightUnit(Enum):
    KG = "kg"
    LB = "lb"


class ExerciseComplexity(Enum):
    BEGINNER = "Beginner"
    INTERMEDIATE = "Intermediate"
    ADVANCED = "Advanced"
    EXPERT = "Expert"


class ExerciseCategory(Enum):
    STRENGTH = "Strength"
    POWERLIFTING = "Powerlifting"
    OLYMPIC_LIFTING = "Olympic Lifting"
    BODYBUILDING = "Bodybuilding"
    FUNCTIONAL = "Functional"
    CROSSFIT = "CrossFit"
    KETTLEBELL = "Kettlebell"
    SANDBAG = "Sandbag"
    CARDIO = "Cardio"
    HIIT = "HIIT"
    STEADY_STATE = "Steady State"
    STRETCHING = "Stretching"
    MOBILITY = "Mobility"
    YOGA = "Yoga"
    PILATES = "Pilates"
    SPORT_SPECIFIC = "Sport-Specific"
    AGILITY = "Agility"
    PLYOMETRIC = "Plyometric"
    BALANCE = "Balance"
    CORRECTIVE = "Corrective"
    PREHAB = "Prehab"
    PHYSICAL_THERAPY = "Physical Therapy"
    ISOMETRIC = "Isometric"
    ECCENTRIC = "Eccentric"
    UNILATERAL = "Unilateral"
    COMPOUND = "Compound"
    ISOLATION = "Isolation"
    MARTIAL_ARTS = "Martial Arts"
    BOXING = "Boxing"
    AQUATIC = "Aquatic"
    BODYWEIGHT = "Bodyweight"
    FREE_WEIGHTS = "Free Weights"
    MACHINES = "Machines"
    RESISTANCE_BANDS = "Resistance Bands"
    SUSPENSION = "Suspension"
    RECOVERY = "Recovery"
    WARM_UP = "Warm-up"
    COOL_DOWN = "Cool-down"


class MovementPattern(Enum):
    SQUAT = "Squat"
    HINGE = "Hip Hinge"
    LUNGE = "Lunge"
    PUSH_VERTICAL = "Vertical Push"
    PUSH_HORIZONTAL = "Horizontal Push"
    PULL_VERTICAL = "Vertical Pull"
    PULL_HORIZONTAL = "Horizontal Pull"
    CORE_STABILITY = "Core Stability"
    ANTI_EXTENSION = "Anti-Extension"
    ANTI_FLEXION = "Anti-Flexion"
    ANTI_LATERAL_FLEXION = "Anti-Lateral Flexion"
    ANTI_ROTATION = "Anti-Rotation"
    GAIT = "Gait"
    CRAWLING = "Crawling"
    JUMPING = "Jumping"
    LANDING = "Landing"
    ROTATION = "Rotation"
    SPIRAL = "Spiral"
    CARRY = "Carry"
    THROWING = "Throwing"
    TURKISH_GET_UP = "Turkish Get-up"
    BURPEE = "Burpee"
    HOLD = "Hold/Isometric"
    STRETCH = "Stretch"
    COORDINATION = "Coordination"
    BALLISTIC = "Ballistic"
    PLYOMETRIC = "Plyometric"
    ISOLATION = "Isolation"
    COMPOUND = "Compound"
    UNILATERAL = "Unilateral"
    BILATERAL = "Bilateral"


class MeasurementType(Enum):
    WEIGHT = "Weight"
    BODYWEIGHT = "Bodyweight"
    REPS = "Repetitions"
    MAX_REPS = "Max Reps"
    REP_RANGES = "Rep Ranges"
    DURATION = "Duration"
    WORK_TIME = "Work Time"
    REST_TIME = "Rest Time"
    INTERVALS = "Intervals"
    PACE = "Pace"
    DISTANCE = "Distance"
    HEIGHT = "Height"
    DEPTH = "Depth"
    ROUNDS = "Rounds"
    SETS = "Sets"
    RPM = "RPM"
    HEART_RATE = "Heart Rate"
    CADENCE = "Cadence"
    RESISTANCE_LEVEL = "Resistance Level"
    INCLINE = "Incline"
    SPEED = "Speed"
    POWER = "Power"
    FORCE = "Force"
    VELOCITY = "Velocity"
    RANGE_OF_MOTION = "Range of Motion"
    HOLD_TIME = "Hold Time"
    CONTACT_TIME = "Contact Time"
    FLIGHT_TIME = "Flight Time"
    FORM_SCORE = "Form Score"
    DIFFICULTY_SCORE = "Difficulty Score"
    RPE = "RPE"
    RIR = "RIR"
    TEMPERATURE = "Temperature"
    ALTITUDE = "Altitude"
    BAND_RESISTANCE = "Band Resistance"
    WATER_DEPTH = "Water Depth"
    ACCURACY = "Accuracy"
    CONSISTENCY = "Consistency"
    CUSTOM_METRIC = "Custom Metric"


def parse_enum(enum_cls: Type[E], value: E | str | None) -> E | None:
    """Return the ``enum_cls`` member named ``value``.

    Accepts members, member names and display values.
    """
    if value is None or isinstance(value, enum_cls):
        return value
    try:
        return enum_cls[value]
    except KeyError:
        pass
    try:
        return enum_cls(value)
    except ValueError:
        raise ValidationError(
            f"unknown {enum_cls.__name__}: {value}"
        ) from None


def _encode(value):
    if isinstance(value, Enum):
        return value.name
    if isinstance(value, (datetime.date, datetime.datetime)):
        return value.isoformat()
    if isinstance(value, TempoComponents):
        return value.to_dict()
    if isinstance(value, (list, tuple, set, frozenset)):
        return [_encode(v) for v in value]
    return value


def _parse_date(value) -> datetime.date | None:
    if value is None or isinstance(value, datetime.date):
        return value
    return datetime.date.fromisoformat(value)


def _parse_datetime(value) -> datetime.datetime | None:
    if value is None or isinstance(value, datetime.datetime):
        return value
    return datetime.datetime.fromisoformat(value)


class _Serializable:
    """Mixin turning dataclasses into plain JSON-compatible dicts."""

    _ENUM_FIELDS: dict = {}
    _DATE_FIELDS: tuple = ()
    _DATETIME_FIELDS: tuple = ()
    _SKIP_FIELDS: tuple = ()

    def to_dict(self) -> dict:
        return {
            f.name: _encode(getattr(self, f.name))
            for f in fields(self)
            if not f.name.startswith("_")
        }

    @classmethod
    def from_dict(cls, data: dict):
        known = {f.name for f in fields(cls) if not f.name.startswith("_")}
        unknown = set(data) - known
        if unknown:
            raise ValidationError(
                f"unknown fields for {cls.__name__}: {', '.join(sorted(unknown))}"
            )
        kwargs = {k: v for k, v in data.items() if k not in cls._SKIP_FIELDS}
        for name, enum_cls in cls._ENUM_FIELDS.items():
            if name in kwargs:
                kwargs[name] = parse_enum(enum_cls, kwargs[name])
        try:
            for name in cls._DATE_FIELDS:
                if name in kwargs:
                    kwargs[name] = _parse_date(kwargs[name])
            for name in cls._DATETIME_FIELDS:
                if name in kwargs:
                    kwargs[name] = _parse_datetime(kwargs[name])
            return cls(**kwargs)
        except (TypeError, ValueError) as exc:
            raise ValidationError(str(exc)) from exc


# --- prescriptions ---------------------------------------------------------


@dataclass
class SimplePrescription(_Serializable):
    """Week-ranged tempo and rest notes for an item."""

    week_start: Optional[int] = None
    week_end: Optional[int] = None
    tempo: Optional[str] = None
    rest_seconds: Optional[int] = None
    coach_notes: Optional[str] = None

    @property
    def kind(self) -> str:
        return "simple"


@dataclass
class AdvancedPrescription(_Serializable):
    """Methodology-aware prescription; only fields relevant to ``set_type`` apply."""

    set_type: SetType = SetType.STRAIGHT_SETS
    week_start: Optional[int] = None
    week_end: Optional[int] = None
    sets: Optional[int] = None
    target_reps: Optional[int] = None
    min_reps: Optional[int] = None
    max_reps: Optional[int] = None
    weight: Optional[float] = None
    weight_unit: str = "kg"
    percentage_1rm: Optional[float] = None
    work_time_seconds: Optional[int] = None
    rest_time_seconds: Optional[int] = None
    total_duration_seconds: Optional[int] = None
    rounds: Optional[int] = None
    drop_set_stages: Optional[int] = None
    drop_set_reductions: List[str] = field(default_factory=list)
    cluster_reps: Optional[int] = None
    cluster_rest_seconds: Optional[int] = None
    rest_pause_reps: Optional[int] = None
    rest_pause_seconds: Optional[int] = None
    superset_position: Optional[int] = None
    circuit_position: Optional[int] = None
    complex_position: Optional[int] = None
    emom_interval_minutes: Optional[int] = None
    emom_target_reps: Optional[int] = None
    tabata_rounds: Optional[int] = None
    tabata_work_seconds: Optional[int] = None
    tabata_rest_seconds: Optional[int] = None
    tempo: Optional[str] = None
    tempo_components: Optional[TempoComponents] = None
    target_rpe: Optional[float] = None
    reps_in_reserve: Optional[int] = None
    distance: Optional[float] = None
    distance_unit: Optional[str] = None
    pyramid_structure: Optional[str] = None
    loading_scheme: Optional[LoadingScheme] = None
    progression_notes: Optional[str] = None
    regression_notes: Optional[str] = None
    special_instructions: Optional[str] = None
    coach_notes: Optional[str] = None
    technical_cues: Optional[str] = None

    _ENUM_FIELDS = {"set_type": SetType, "loading_scheme": LoadingScheme}

    def __post_init__(self) -> None:
        if self.tempo and self.tempo_components is None:
            self.tempo_components = TempoParser.parse(self.tempo)
        elif isinstance(self.tempo_components, dict):
            self.tempo_components = TempoComponents.from_dict(self.tempo_components)

    @property
    def kind(self) -> str:
        return "advanced"

    @property
    def result_type(self) -> ResultType:
        return SET_TYPE_RESULTS[self.set_type]

    def reps_display(self) -> str:
        if self.min_reps is not None and self.max_reps is not None:
            return f"{self.min_reps}-{self.max_reps}"
        if self.target_reps is not None:
            return str(self.target_reps)
        return ""

    def time_per_rep(self) -> int:
        return TempoParser.total_time(self.tempo_components)


Prescription = Union[SimplePrescription, AdvancedPrescription]


# --- planning entities -----------------------------------------------------


@dataclass
class Exercise(_Serializable):
    name: str
    id: Optional[int] = None
    description: Optional[str] = None
    primary_muscle: Optional[str] = None
    secondary_muscles: List[str] = field(default_factory=list)
    equipment: Optional[str] = None
    category: ExerciseCategory = ExerciseCategory.STRENGTH
    movement_pattern: Optional[MovementPattern] = None
    complexity: ExerciseComplexity = ExerciseComplexity.INTERMEDIATE
    measurement_types: List[MeasurementType] = field(default_factory=list)
    instructions: Optional[str] = None
    notes: Optional[str] = None

    _ENUM_FIELDS = {
        "category": ExerciseCategory,
        "movement_pattern": MovementPattern,
        "complexity": ExerciseComplexity,
    }

    @classmethod
    def from_dict(cls, data: dict) -> "Exercise":
        data = dict(data)
        types = data.pop("measurement_types", None) or []
        exercise = super().from_dict(data)
        exercise.measurement_types = [parse_enum(MeasurementType, t) for t in types]
        return exercise


@dataclass
class BlockItem(_Serializable):
    exercise_id: int
    prescription: Prescription
    id: Optional[int] = None
    block_id: Optional[int] = None
    order_index: int = 0
    exercise_name: Optional[str] = None

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["prescription"] = self.prescription.to_dict()
        data["prescription_kind"] = self.prescription.kind
        return data


@dataclass
class ExerciseBlock(_Serializable):
    label: str
    block_type: BlockType = BlockType.STRAIGHT_SETS
    id: Optional[int] = None
    session_id: Optional[int] = None
    order_index: int = 0
    block_duration_seconds: Optional[int] = None
    rest_between_items_seconds: Optional[int] = None
    rest_after_block_seconds: Optional[int] = None
    total_rounds: Optional[int] = None
    interval_seconds: Optional[int] = None
    work_phase_seconds: Optional[int] = None
    rest_phase_seconds: Optional[int] = None
    amrap_duration_seconds: Optional[int] = None
    instructions: Optional[str] = None
    notes: Optional[str] = None
    items: List[BlockItem] = field(default_factory=list)

    _ENUM_FIELDS = {"block_type": BlockType}
    _SKIP_FIELDS = ("items",)

    def __post_init__(self) -> None:
        if self.block_type is BlockType.TABATA:
            if self.work_phase_seconds is None:
                self.work_phase_seconds = 20
            if self.rest_phase_seconds is None:
                self.rest_phase_seconds = 10

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["items"] = [item.to_dict() for item in self.items]
        data["block_type_display"] = self.block_type.display_name
        return data

    @property
    def emom_minutes(self) -> Optional[int]:
        """Planned EMOM minutes derived from the block timing."""
        if not self.block_duration_seconds or not self.interval_seconds:
            return None
        return self.block_duration_seconds // self.interval_seconds

    @classmethod
    def superset(
        cls, label: str, rounds: int, rest_after_block_seconds: int | None = None
    ) -> "ExerciseBlock":
        return cls(
            label=label,
            block_type=BlockType.SUPERSET,
            total_rounds=rounds,
            rest_between_items_seconds=0,
            rest_after_block_seconds=rest_after_block_seconds,
        )

    @classmethod
    def circuit(
        cls, label: str, rounds: int, rest_between_items_seconds: int = 0
    ) -> "ExerciseBlock":
        return cls(
            label=label,
            block_type=BlockType.CIRCUIT,
            total_rounds=rounds,
            rest_between_items_seconds=rest_between_items_seconds,
        )

    @classmethod
    def emom(
        cls, label: str, interval_seconds: int, total_seconds: int
    ) -> "ExerciseBlock":
        return cls(
            label=label,
            block_type=BlockType.EMOM,
            interval_seconds=interval_seconds,
            block_duration_seconds=total_seconds,
        )

    @classmethod
    def tabata(cls, label: str, rounds: int = 8) -> "ExerciseBlock":
        return cls(
            label=label,
            block_type=BlockType.TABATA,
            total_rounds=rounds,
            work_phase_seconds=20,
            rest_phase_seconds=10,
            block_duration_seconds=rounds * 30,
        )

    @classmethod
    def amrap(cls, label: str, duration_seconds: int) -> "ExerciseBlock":
        return cls(
            label=label,
            block_type=BlockType.AMRAP,
            amrap_duration_seconds=duration_seconds,
            block_duration_seconds=duration_seconds,
        )


@dataclass
class SessionTemplate(_Serializable):
    title: str
    id: Optional[int] = None
    program_id: Optional[int] = None
    order_index: int = 0
    notes: Optional[str] = None
    blocks: List[ExerciseBlock] = field(default_factory=list)

    _SKIP_FIELDS = ("blocks",)

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["blocks"] = [block.to_dict() for block in self.blocks]
        return data

    def block_by_label(self, label: str) -> Optional[ExerciseBlock]:
        for block in self.blocks:
            if block.label == label:
                return block
        return None


@dataclass
class Program(_Serializable):
    title: str
    id: Optional[int] = None
    description: Optional[str] = None
    start_date: Optional[datetime.date] = None
    end_date: Optional[datetime.date] = None
    total_weeks: int = 0
    sessions: List[SessionTemplate] = field(default_factory=list)

    _DATE_FIELDS = ("start_date", "end_date")
    _SKIP_FIELDS = ("sessions",)

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["sessions"] = [session.to_dict() for session in self.sessions]
        return data

    def is_active(self, day: datetime.date) -> bool:
        if self.start_date is None or day < self.start_date:
            return False
        return self.end_date is None or day <= self.end_date


# --- results ---------------------------------------------------------------


@dataclass
class SetResult(_Serializable):
    """One performed set, round or interval."""

    exercise_id: Optional[int] = None
    id: Optional[int] = None
    workout_result_id: Optional[int] = None
    planned_item_id: Optional[int] = None
    exercise_name: Optional[str] = None
    block_label: Optional[str] = None
    block_item_order: int = 0
    set_number: int = 0
    round_number: Optional[int] = None
    interval_number: Optional[int] = None
    result_type: Optional[ResultType] = None
    performed_reps: Optional[int] = None
    target_reps: Optional[int] = None
    weight: Optional[float] = None
    weight_unit: str = "kg"
    work_time_seconds: Optional[int] = None
    rest_time_seconds: Optional[int] = None
    total_time_seconds: Optional[int] = None
    start_time: Optional[datetime.datetime] = None
    end_time: Optional[datetime.datetime] = None
    rpe: Optional[float] = None
    reps_in_reserve: Optional[int] = None
    distance: Optional[float] = None
    distance_unit: Optional[str] = None
    heart_rate_avg: Optional[int] = None
    heart_rate_max: Optional[int] = None
    completed_rounds: Optional[int] = None
    target_rounds: Optional[int] = None
    completed_in_time: Optional[bool] = None
    seconds_remaining: Optional[int] = None
    drop_stage: Optional[int] = None
    drop_set_reps: List[int] = field(default_factory=list)
    drop_set_weights: List[float] = field(default_factory=list)
    superset_position: Optional[int] = None
    circuit_position: Optional[int] = None
    cluster_number: Optional[int] = None
    rest_pause_number: Optional[int] = None
    velocity: Optional[float] = None
    reached_failure: bool = False
    failure_reason: Optional[str] = None
    completed_as_planned: Optional[bool] = None
    missed_reps: Optional[int] = None
    comments: Optional[str] = None
    completed_at: Optional[datetime.datetime] = None

    _ENUM_FIELDS = {"result_type": ResultType}
    _DATETIME_FIELDS = ("start_time", "end_time", "completed_at")

    @property
    def ordering_key(self) -> tuple:
        return (self.block_label or "", self.block_item_order, self.set_number)

    def volume_load(self) -> Optional[float]:
        if self.performed_reps is None or self.weight is None:
            return None
        return self.performed_reps * self.weight

    def reps_per_minute(self) -> Optional[float]:
        if not self.total_time_seconds or self.performed_reps is None:
            return None
        return self.performed_reps * 60.0 / self.total_time_seconds

    def total_drop_set_reps(self) -> Optional[int]:
        if self.drop_set_reps:
            return sum(self.drop_set_reps)
        return self.performed_reps

    def estimated_one_rep_max(self) -> Optional[float]:
        if self.weight is None or not self.performed_reps:
            return None
        return MathTools.epley_1rm(self.weight, self.performed_reps)

    @classmethod
    def traditional(
        cls,
        exercise_id: int,
        block_label: str,
        set_number: int,
        reps: int,
        weight: float,
        rpe: float | None = None,
        block_item_order: int = 0,
    ) -> "SetResult":
        return cls(
            exercise_id=exercise_id,
            block_label=block_label,
            block_item_order=block_item_order,
            set_number=set_number,
            result_type=ResultType.STRAIGHT_SET,
            performed_reps=reps,
            weight=weight,
            rpe=rpe,
        )

    @classmethod
    def tabata_round(
        cls,
        exercise_id: int,
        block_label: str,
        round_number: int,
        reps: int,
        work_seconds: int = 20,
        rest_seconds: int = 10,
        block_item_order: int = 0,
    ) -> "SetResult":
        return cls(
            exercise_id=exercise_id,
            block_label=block_label,
            block_item_order=block_item_order,
            set_number=round_number,
            interval_number=round_number,
            result_type=ResultType.TABATA,
            performed_reps=reps,
            work_time_seconds=work_seconds,
            rest_time_seconds=rest_seconds,
        )

    @classmethod
    def emom_round(
        cls,
        exercise_id: int,
        block_label: str,
        minute: int,
        reps: int,
        seconds_remaining: int,
        block_item_order: int = 0,
    ) -> "SetResult":
        return cls(
            exercise_id=exercise_id,
            block_label=block_label,
            block_item_order=block_item_order,
            set_number=minute,
            interval_number=minute,
            result_type=ResultType.EMOM,
            performed_reps=reps,
            seconds_remaining=seconds_remaining,
            completed_in_time=seconds_remaining >= 0,
        )

    @classmethod
    def amrap_round(
        cls,
        exercise_id: int,
        block_label: str,
        round_number: int,
        completed_rounds: int,
        total_time_seconds: int,
        block_item_order: int = 0,
    ) -> "SetResult":
        return cls(
            exercise_id=exercise_id,
            block_label=block_label,
            block_item_order=block_item_order,
            set_number=round_number,
            round_number=round_number,
            result_type=ResultType.AMRAP,
            completed_rounds=completed_rounds,
            total_time_seconds=total_time_seconds,
        )

    @classmethod
    def drop_set(
        cls,
        exercise_id: int,
        block_label: str,
        set_number: int,
        reps_per_drop: Iterable[int],
        weights_per_drop: Iterable[float],
        block_item_order: int = 0,
    ) -> "SetResult":
        reps = list(reps_per_drop)
        return cls(
            exercise_id=exercise_id,
            block_label=block_label,
            block_item_order=block_item_order,
            set_number=set_number,
            result_type=ResultType.DROP_SET,
            drop_set_reps=reps,
            drop_set_weights=list(weights_per_drop),
            performed_reps=sum(reps),
        )

    @classmethod
    def circuit_exercise(
        cls,
        exercise_id: int,
        block_label: str,
        round_number: int,
        position: int,
        reps: int,
        work_seconds: int,
    ) -> "SetResult":
        return cls(
            exercise_id=exercise_id,
            block_label=block_label,
            block_item_order=position,
            set_number=round_number,
            round_number=round_number,
            circuit_position=position,
            result_type=ResultType.CIRCUIT,
            performed_reps=reps,
            work_time_seconds=work_seconds,
        )


@dataclass
class BlockResult(_Serializable):
    """Outcome of one planned block within a session."""

    block_type: BlockType = BlockType.STRAIGHT_SETS
    id: Optional[int] = None
    workout_result_id: Optional[int] = None
    planned_block_id: Optional[int] = None
    block_label: Optional[str] = None
    block_order: int = 0
    start_time: Optional[datetime.datetime] = None
    end_time: Optional[datetime.datetime] = None
    total_time_seconds: Optional[int] = None
    work_time_seconds: Optional[int] = None
    rest_time_seconds: Optional[int] = None
    target_rounds: Optional[int] = None
    completed_rounds: Optional[int] = None
    completion_percentage: Optional[float] = None
    completed_as_planned: Optional[bool] = None
    emom_minutes_completed: Optional[int] = None
    emom_minutes_target: Optional[int] = None
    emom_failed_minutes: Optional[int] = None
    tabata_rounds_completed: Optional[int] = None
    tabata_average_reps: Optional[float] = None
    round_times_seconds: List[int] = field(default_factory=list)
    average_round_time: Optional[float] = None
    fastest_round_time_seconds: Optional[int] = None
    slowest_round_time_seconds: Optional[int] = None
    superset_rounds: Optional[int] = None
    average_rest_between_exercises: Optional[float] = None
    average_rest_between_supersets: Optional[float] = None
    drop_stages: Optional[int] = None
    total_drop_set_reps: Optional[int] = None
    average_rpe: Optional[float] = None
    total_volume_load: Optional[float] = None
    notes: Optional[str] = None
    modifications: Optional[str] = None

    _ENUM_FIELDS = {"block_type": BlockType}
    _DATETIME_FIELDS = ("start_time", "end_time")

    def actual_duration_seconds(self) -> Optional[int]:
        if self.start_time is not None and self.end_time is not None:
            return int((self.end_time - self.start_time).total_seconds())
        return self.total_time_seconds

    def work_percentage(self) -> Optional[float]:
        if not self.total_time_seconds or self.work_time_seconds is None:
            return None
        return self.work_time_seconds / self.total_time_seconds * 100

    def performance_rating(self) -> str:
        pct = self.completion_percentage
        if pct is None:
            return "Not Rated"
        if pct >= 100:
            return "Excellent"
        if pct >= 90:
            return "Very Good"
        if pct >= 80:
            return "Good"
        if pct >= 70:
            return "Fair"
        if pct >= 60:
            return "Poor"
        return "Very Poor"

    def was_successful(self) -> bool:
        return (
            self.completed_as_planned is True
            and self.completion_percentage is not None
            and self.completion_percentage >= 90
        )


@dataclass(frozen=True)
class SessionAggregates:
    """Aggregates derived from a session's set results."""

    total_reps: int = 0
    total_volume_load: float = 0.0
    average_rpe: float = 0.0
    work_time_seconds: int = 0
    rpe_count: int = 0

    @classmethod
    def from_sets(cls, sets: Iterable[SetResult]) -> "SessionAggregates":
        sets = list(sets)
        rpes = [s.rpe for s in sets if s.rpe is not None]
        return cls(
            total_reps=sum(s.performed_reps or 0 for s in sets),
            total_volume_load=MathTools.volume(
                (s.performed_reps, s.weight) for s in sets
            ),
            average_rpe=MathTools.mean(rpes),
            work_time_seconds=sum(s.work_time_seconds or 0 for s in sets),
            rpe_count=len(rpes),
        )


@dataclass
class WorkoutResult(_Serializable):
    """A performed session. Aggregates are read-only; call :meth:`recompute`."""

    subject_id: str
    date: datetime.date
    id: Optional[int] = None
    template_id: Optional[int] = None
    template_title: Optional[str] = None
    week: Optional[int] = None
    start_time: Optional[datetime.datetime] = None
    end_time: Optional[datetime.datetime] = None
    total_duration_seconds: Optional[int] = None
    rest_time_seconds: Optional[int] = None
    completion_status: Optional[SessionCompletionStatus] = None
    calories_burned: Optional[int] = None
    total_rounds: Optional[int] = None
    target_rounds: Optional[int] = None
    completed_in_time_limit: Optional[bool] = None
    emom_minutes_completed: Optional[int] = None
    emom_minutes_target: Optional[int] = None
    emom_failed_minutes: Optional[int] = None
    tabata_rounds_completed: Optional[int] = None
    tabata_rounds_target: Optional[int] = None
    tabata_average_reps: Optional[float] = None
    circuit_rounds_completed: Optional[int] = None
    average_circuit_time: Optional[float] = None
    wod_result: Optional[str] = None
    rx_completed: Optional[bool] = None
    scaling: Optional[str] = None
    personal_records: List[float] = field(default_factory=list)
    max_weight_lifted: Optional[float] = None
    estimated_one_rep_max: Optional[float] = None
    energy_level_pre: Optional[int] = None
    energy_level_post: Optional[int] = None
    workout_quality: Optional[int] = None
    difficulty_rating: Optional[int] = None
    notes: Optional[str] = None
    block_results: List[BlockResult] = field(default_factory=list)
    set_results: List[SetResult] = field(default_factory=list)
    _aggregates: SessionAggregates = field(
        default_factory=SessionAggregates, repr=False
    )

    _ENUM_FIELDS = {"completion_status": SessionCompletionStatus}
    _DATE_FIELDS = ("date",)
    _DATETIME_FIELDS = ("start_time", "end_time")
    _SKIP_FIELDS = ("block_results", "set_results")

    @property
    def aggregates(self) -> SessionAggregates:
        return self._aggregates

    @property
    def total_reps(self) -> int:
        return self._aggregates.total_reps

    @property
    def total_volume_load(self) -> float:
        return self._aggregates.total_volume_load

    @property
    def average_rpe(self) -> float:
        return self._aggregates.average_rpe

    @property
    def work_time_seconds(self) -> int:
        return self._aggregates.work_time_seconds

    @property
    def has_rpe(self) -> bool:
        return self._aggregates.rpe_count > 0

    @property
    def is_finished(self) -> bool:
        return self.end_time is not None

    def recompute(self) -> SessionAggregates:
        """Rederive the aggregates from the current set results."""
        self._aggregates = SessionAggregates.from_sets(self.set_results)
        return self._aggregates

    def restore_aggregates(self, aggregates: SessionAggregates) -> "WorkoutResult":
        """Attach aggregates loaded from storage."""
        self._aggregates = aggregates
        return self

    def add_set_result(self, set_result: SetResult) -> None:
        self.set_results.append(set_result)
        self.set_results.sort(key=lambda s: s.ordering_key)

    def to_dict(self) -> dict:
        data = super().to_dict()
        data.update(
            total_reps=self.total_reps,
            total_volume_load=self.total_volume_load,
            average_rpe=self.average_rpe,
            work_time_seconds=self.work_time_seconds,
            block_results=[b.to_dict() for b in self.block_results],
            set_results=[s.to_dict() for s in self.set_results],
        )
        return data

    def work_density(self) -> Optional[float]:
        """Work time as a percentage of session duration."""
        if not self.total_duration_seconds:
            return None
        return self.work_time_seconds / self.total_duration_seconds * 100

    def work_to_rest_ratio(self) -> Optional[float]:
        if not self.rest_time_seconds:
            return None
        return self.work_time_seconds / self.rest_time_seconds

    def average_rest_between_sets(self) -> Optional[float]:
        if not self.set_results or self.rest_time_seconds is None:
            return None
        count = len(self.set_results)
        return self.rest_time_seconds / (count - 1) if count > 1 else 0.0

    def work_capacity(self) -> Optional[float]:
        """Volume load per minute of session."""
        if not self.total_duration_seconds:
            return None
        return self.total_volume_load * 60 / self.total_duration_seconds

    def quality_label(self) -> str:
        quality = self.workout_quality
        if quality is None:
            return "Not Rated"
        if quality >= 9:
            return "Excellent"
        if quality >= 7:
            return "Good"
        if quality >= 5:
            return "Average"
        if quality >= 3:
            return "Poor"
        return "Very Poor"

    def energy_change(self) -> Optional[int]:
        if self.energy_level_pre is None or self.energy_level_post is None:
            return None
        return self.energy_level_post - self.energy_level_pre

    @classmethod
    def for_time(
        cls,
        subject_id: str,
        date: datetime.date,
        total_seconds: int,
        rx: bool,
        template_id: int | None = None,
    ) -> "WorkoutResult":
        return cls(
            subject_id=subject_id,
            date=date,
            template_id=template_id,
            completion_status=SessionCompletionStatus.COMPLETED,
            total_duration_seconds=total_seconds,
            wod_result=MathTools.format_duration(total_seconds),
            rx_completed=rx,
            completed_in_time_limit=True,
        )

    @classmethod
    def amrap(
        cls,
        subject_id: str,
        date: datetime.date,
        rounds: int,
        additional_reps: int,
        time_cap_seconds: int,
        template_id: int | None = None,
    ) -> "WorkoutResult":
        return cls(
            subject_id=subject_id,
            date=date,
            template_id=template_id,
            completion_status=SessionCompletionStatus.COMPLETED,
            total_duration_seconds=time_cap_seconds,
            total_rounds=rounds,
            wod_result=f"{rounds}+{additional_reps}",
            completed_in_time_limit=True,
        )

    @classmethod
    def emom(
        cls,
        subject_id: str,
        date: datetime.date,
        minutes_completed: int,
        target_minutes: int,
        failed_minutes: int,
        template_id: int | None = None,
    ) -> "WorkoutResult":
        status = (
            SessionCompletionStatus.COMPLETED
            if failed_minutes == 0
            else SessionCompletionStatus.PARTIALLY_COMPLETED
        )
        return cls(
            subject_id=subject_id,
            date=date,
            template_id=template_id,
            emom_minutes_completed=minutes_completed,
            emom_minutes_target=target_minutes,
            emom_failed_minutes=failed_minutes,
            completion_status=status,
        )

    @classmethod
    def tabata(
        cls,
        subject_id: str,
        date: datetime.date,
        rounds_completed: int,
        target_rounds: int,
        average_reps: float,
        template_id: int | None = None,
    ) -> "WorkoutResult":
        status = (
            SessionCompletionStatus.COMPLETED
            if rounds_completed == target_rounds
            else SessionCompletionStatus.PARTIALLY_COMPLETED
        )
        return cls(
            subject_id=subject_id,
            date=date,
            template_id=template_id,
            tabata_rounds_completed=rounds_completed,
            tabata_rounds_target=target_rounds,
            tabata_average_reps=average_reps,
            completion_status=status,
        )
