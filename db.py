import sqlite3
import aiosqlite
import os
import datetime
import json
from contextlib import contextmanager, asynccontextmanager
from enum import Enum
from typing import Iterable, Iterator, List, Optional, Tuple

from errors import InvalidStateError, NotFoundError, ValidationError
from models import (
    BlockItem,
    BlockResult,
    Exercise,
    ExerciseBlock,
    Prescription,
    Program,
    SessionAggregates,
    SessionTemplate,
    SetResult,
    SimplePrescription,
    WorkoutResult,
)
import prescriptions


_EXERCISE_COLUMNS = [
    "id",
    "name",
    "description",
    "primary_muscle",
    "secondary_muscles",
    "equipment",
    "category",
    "movement_pattern",
    "complexity",
    "measurement_types",
    "instructions",
    "notes",
]

_PROGRAM_COLUMNS = ["id", "title", "description", "start_date", "end_date", "total_weeks"]

_SESSION_COLUMNS = ["id", "program_id", "title", "order_index", "notes"]

_BLOCK_COLUMNS = [
    "id",
    "session_id",
    "label",
    "order_index",
    "block_type",
    "block_duration_seconds",
    "rest_between_items_seconds",
    "rest_after_block_seconds",
    "total_rounds",
    "interval_seconds",
    "work_phase_seconds",
    "rest_phase_seconds",
    "amrap_duration_seconds",
    "instructions",
    "notes",
]

_ITEM_COLUMNS = [
    "id",
    "block_id",
    "order_index",
    "exercise_id",
    "simple_prescription",
    "advanced_prescription",
]

_AGGREGATE_COLUMNS = [
    "total_reps",
    "total_volume_load",
    "average_rpe",
    "work_time_seconds",
    "rpe_count",
]

_FINALIZED_COLUMNS = ["personal_records", "max_weight_lifted", "estimated_one_rep_max"]

_WORKOUT_COLUMNS = [
    "id",
    "subject_id",
    "template_id",
    "template_title",
    "date",
    "week",
    "start_time",
    "end_time",
    "total_duration_seconds",
    "rest_time_seconds",
    "completion_status",
    "total_reps",
    "total_volume_load",
    "average_rpe",
    "work_time_seconds",
    "rpe_count",
    "calories_burned",
    "total_rounds",
    "target_rounds",
    "completed_in_time_limit",
    "emom_minutes_completed",
    "emom_minutes_target",
    "emom_failed_minutes",
    "tabata_rounds_completed",
    "tabata_rounds_target",
    "tabata_average_reps",
    "circuit_rounds_completed",
    "average_circuit_time",
    "wod_result",
    "rx_completed",
    "scaling",
    "personal_records",
    "max_weight_lifted",
    "estimated_one_rep_max",
    "energy_level_pre",
    "energy_level_post",
    "workout_quality",
    "difficulty_rating",
    "notes",
]

_BLOCK_RESULT_COLUMNS = [
    "id",
    "workout_result_id",
    "planned_block_id",
    "block_label",
    "block_order",
    "block_type",
    "start_time",
    "end_time",
    "total_time_seconds",
    "work_time_seconds",
    "rest_time_seconds",
    "target_rounds",
    "completed_rounds",
    "completion_percentage",
    "completed_as_planned",
    "emom_minutes_completed",
    "emom_minutes_target",
    "emom_failed_minutes",
    "tabata_rounds_completed",
    "tabata_average_reps",
    "round_times_seconds",
    "average_round_time",
    "fastest_round_time_seconds",
    "slowest_round_time_seconds",
    "superset_rounds",
    "average_rest_between_exercises",
    "average_rest_between_supersets",
    "drop_stages",
    "total_drop_set_reps",
    "average_rpe",
    "total_volume_load",
    "notes",
    "modifications",
]

_SET_RESULT_COLUMNS = [
    "id",
    "workout_result_id",
    "planned_item_id",
    "exercise_id",
    "block_label",
    "block_item_order",
    "set_number",
    "round_number",
    "interval_number",
    "result_type",
    "performed_reps",
    "target_reps",
    "weight",
    "weight_unit",
    "work_time_seconds",
    "rest_time_seconds",
    "total_time_seconds",
    "start_time",
    "end_time",
    "rpe",
    "reps_in_reserve",
    "distance",
    "distance_unit",
    "heart_rate_avg",
    "heart_rate_max",
    "completed_rounds",
    "target_rounds",
    "completed_in_time",
    "seconds_remaining",
    "drop_stage",
    "drop_set_reps",
    "drop_set_weights",
    "superset_position",
    "circuit_position",
    "cluster_number",
    "rest_pause_number",
    "velocity",
    "reached_failure",
    "failure_reason",
    "completed_as_planned",
    "missed_reps",
    "comments",
    "completed_at",
]

_JSON_COLUMNS = {
    "secondary_muscles",
    "measurement_types",
    "personal_records",
    "round_times_seconds",
    "drop_set_reps",
    "drop_set_weights",
}

_BOOL_COLUMNS = {
    "completed_in_time_limit",
    "rx_completed",
    "completed_as_planned",
    "completed_in_time",
    "reached_failure",
}

_SET_RESULT_ORDER = "s.block_label, s.block_item_order, s.set_number, s.id"


def _db_value(value):
    if isinstance(value, Enum):
        return value.name
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, (datetime.date, datetime.datetime)):
        return value.isoformat()
    if isinstance(value, (list, tuple)):
        return json.dumps([v.name if isinstance(v, Enum) else v for v in value])
    return value


def _decode_row(row: dict) -> dict:
    out = {}
    for key, value in row.items():
        if key in _JSON_COLUMNS:
            value = json.loads(value) if value else []
        elif key in _BOOL_COLUMNS and value is not None:
            value = bool(value)
        out[key] = value
    return out


def _build(cls, row: dict, entity: str):
    """Construct ``cls`` from a stored row, flagging corrupt records."""
    try:
        return cls.from_dict(_decode_row(row))
    except (ValidationError, TypeError, ValueError) as exc:
        raise InvalidStateError(
            f"corrupt {entity} record: {exc}", entity=entity, entity_id=row.get("id")
        ) from exc


def _workout_from_row(row: dict) -> WorkoutResult:
    data = dict(row)
    aggregates = SessionAggregates(
        total_reps=data.pop("total_reps") or 0,
        total_volume_load=data.pop("total_volume_load") or 0.0,
        average_rpe=data.pop("average_rpe") or 0.0,
        work_time_seconds=data.pop("work_time_seconds") or 0,
        rpe_count=data.pop("rpe_count") or 0,
    )
    result = _build(WorkoutResult, data, "workout result")
    return result.restore_aggregates(aggregates)


def _set_from_row(row: dict) -> SetResult:
    return _build(SetResult, row, "set result")


def _block_result_from_row(row: dict) -> BlockResult:
    return _build(BlockResult, row, "block result")


def _attach_children(
    results: List[WorkoutResult],
    block_rows: Iterable[dict],
    set_rows: Iterable[dict],
) -> List[WorkoutResult]:
    by_id = {r.id: r for r in results}
    for row in block_rows:
        parent = by_id.get(row["workout_result_id"])
        if parent is not None:
            parent.block_results.append(_block_result_from_row(row))
    for row in set_rows:
        parent = by_id.get(row["workout_result_id"])
        if parent is not None:
            parent.set_results.append(_set_from_row(row))
    return results


_ID_BATCH = 500


def _child_queries(ids: List[int]) -> Iterator[Tuple[str, str, Tuple]]:
    """Yield block and set queries for ``ids`` in batches of bound parameters."""
    for start in range(0, len(ids), _ID_BATCH):
        batch = tuple(ids[start:start + _ID_BATCH])
        marks = ", ".join("?" for _ in batch)
        yield (
            f"SELECT * FROM block_results WHERE workout_result_id IN ({marks}) "
            "ORDER BY workout_result_id, block_order, id;",
            "SELECT s.*, e.name AS exercise_name FROM set_results s "
            "JOIN exercises e ON e.id = s.exercise_id "
            f"WHERE s.workout_result_id IN ({marks}) "
            f"ORDER BY s.workout_result_id, {_SET_RESULT_ORDER};",
            batch,
        )


def _subject_filter(
    subject_id: str,
    start_date: Optional[datetime.date],
    end_date: Optional[datetime.date],
) -> Tuple[str, list]:
    clauses = ["subject_id = ?"]
    params: list = [subject_id]
    if start_date is not None:
        clauses.append("date >= ?")
        params.append(start_date.isoformat())
    if end_date is not None:
        clauses.append("date <= ?")
        params.append(end_date.isoformat())
    return " AND ".join(clauses), params


class Database:
    """Provides SQLite connection management and schema initialization."""

    _TABLE_DEFINITIONS = {
        "exercises": (
            """CREATE TABLE exercises (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    name TEXT NOT NULL UNIQUE,
                    description TEXT,
                    primary_muscle TEXT,
                    secondary_muscles TEXT,
                    equipment TEXT,
                    category TEXT NOT NULL DEFAULT 'STRENGTH',
                    movement_pattern TEXT,
                    complexity TEXT NOT NULL DEFAULT 'INTERMEDIATE',
                    measurement_types TEXT,
                    instructions TEXT,
                    notes TEXT
                );""",
            _EXERCISE_COLUMNS,
        ),
        "programs": (
            """CREATE TABLE programs (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    title TEXT NOT NULL,
                    description TEXT,
                    start_date TEXT,
                    end_date TEXT,
                    total_weeks INTEGER NOT NULL DEFAULT 0
                );""",
            _PROGRAM_COLUMNS,
        ),
        "session_templates": (
            """CREATE TABLE session_templates (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    program_id INTEGER NOT NULL,
                    title TEXT NOT NULL,
                    order_index INTEGER NOT NULL DEFAULT 0,
                    notes TEXT,
                    FOREIGN KEY(program_id) REFERENCES programs(id) ON DELETE CASCADE
                );""",
            _SESSION_COLUMNS,
        ),
        "exercise_blocks": (
            """CREATE TABLE exercise_blocks (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    session_id INTEGER NOT NULL,
                    label TEXT NOT NULL,
                    order_index INTEGER NOT NULL DEFAULT 0,
                    block_type TEXT NOT NULL DEFAULT 'STRAIGHT_SETS',
                    block_duration_seconds INTEGER,
                    rest_between_items_seconds INTEGER,
                    rest_after_block_seconds INTEGER,
                    total_rounds INTEGER,
                    interval_seconds INTEGER,
                    work_phase_seconds INTEGER,
                    rest_phase_seconds INTEGER,
                    amrap_duration_seconds INTEGER,
                    instructions TEXT,
                    notes TEXT,
                    UNIQUE(session_id, label),
                    FOREIGN KEY(session_id) REFERENCES session_templates(id) ON DELETE CASCADE
                );""",
            _BLOCK_COLUMNS,
        ),
        "block_items": (
            """CREATE TABLE block_items (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    block_id INTEGER NOT NULL,
                    order_index INTEGER NOT NULL DEFAULT 0,
                    exercise_id INTEGER NOT NULL,
                    simple_prescription TEXT,
                    advanced_prescription TEXT,
                    FOREIGN KEY(block_id) REFERENCES exercise_blocks(id) ON DELETE CASCADE,
                    FOREIGN KEY(exercise_id) REFERENCES exercises(id)
                );""",
            _ITEM_COLUMNS,
        ),
        "workout_results": (
            """CREATE TABLE workout_results (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    subject_id TEXT NOT NULL,
                    template_id INTEGER,
                    template_title TEXT,
                    date TEXT NOT NULL,
                    week INTEGER,
                    start_time TEXT,
                    end_time TEXT,
                    total_duration_seconds INTEGER,
                    rest_time_seconds INTEGER,
                    completion_status TEXT,
                    total_reps INTEGER NOT NULL DEFAULT 0,
                    total_volume_load REAL NOT NULL DEFAULT 0,
                    average_rpe REAL NOT NULL DEFAULT 0,
                    work_time_seconds INTEGER NOT NULL DEFAULT 0,
                    rpe_count INTEGER NOT NULL DEFAULT 0,
                    calories_burned INTEGER,
                    total_rounds INTEGER,
                    target_rounds INTEGER,
                    completed_in_time_limit INTEGER,
                    emom_minutes_completed INTEGER,
                    emom_minutes_target INTEGER,
                    emom_failed_minutes INTEGER,
                    tabata_rounds_completed INTEGER,
                    tabata_rounds_target INTEGER,
                    tabata_average_reps REAL,
                    circuit_rounds_completed INTEGER,
                    average_circuit_time REAL,
                    wod_result TEXT,
                    rx_completed INTEGER,
                    scaling TEXT,
                    personal_records TEXT,
                    max_weight_lifted REAL,
                    estimated_one_rep_max REAL,
                    energy_level_pre INTEGER,
                    energy_level_post INTEGER,
                    workout_quality INTEGER,
                    difficulty_rating INTEGER,
                    notes TEXT,
                    FOREIGN KEY(template_id) REFERENCES session_templates(id) ON DELETE SET NULL
                );""",
            _WORKOUT_COLUMNS,
        ),
        "block_results": (
            """CREATE TABLE block_results (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    workout_result_id INTEGER NOT NULL,
                    planned_block_id INTEGER,
                    block_label TEXT,
                    block_order INTEGER NOT NULL DEFAULT 0,
                    block_type TEXT NOT NULL,
                    start_time TEXT,
                    end_time TEXT,
                    total_time_seconds INTEGER,
                    work_time_seconds INTEGER,
                    rest_time_seconds INTEGER,
                    target_rounds INTEGER,
                    completed_rounds INTEGER,
                    completion_percentage REAL,
                    completed_as_planned INTEGER,
                    emom_minutes_completed INTEGER,
                    emom_minutes_target INTEGER,
                    emom_failed_minutes INTEGER,
                    tabata_rounds_completed INTEGER,
                    tabata_average_reps REAL,
                    round_times_seconds TEXT,
                    average_round_time REAL,
                    fastest_round_time_seconds INTEGER,
                    slowest_round_time_seconds INTEGER,
                    superset_rounds INTEGER,
                    average_rest_between_exercises REAL,
                    average_rest_between_supersets REAL,
                    drop_stages INTEGER,
                    total_drop_set_reps INTEGER,
                    average_rpe REAL,
                    total_volume_load REAL,
                    notes TEXT,
                    modifications TEXT,
                    FOREIGN KEY(workout_result_id) REFERENCES workout_results(id) ON DELETE CASCADE,
                    FOREIGN KEY(planned_block_id) REFERENCES exercise_blocks(id) ON DELETE SET NULL
                );""",
            _BLOCK_RESULT_COLUMNS,
        ),
        "set_results": (
            """CREATE TABLE set_results (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    workout_result_id INTEGER NOT NULL,
                    planned_item_id INTEGER,
                    exercise_id INTEGER NOT NULL,
                    block_label TEXT,
                    block_item_order INTEGER NOT NULL DEFAULT 0,
                    set_number INTEGER NOT NULL DEFAULT 0,
                    round_number INTEGER,
                    interval_number INTEGER,
                    result_type TEXT NOT NULL,
                    performed_reps INTEGER,
                    target_reps INTEGER,
                    weight REAL,
                    weight_unit TEXT NOT NULL DEFAULT 'kg',
                    work_time_seconds INTEGER,
                    rest_time_seconds INTEGER,
                    total_time_seconds INTEGER,
                    start_time TEXT,
                    end_time TEXT,
                    rpe REAL,
                    reps_in_reserve INTEGER,
                    distance REAL,
                    distance_unit TEXT,
                    heart_rate_avg INTEGER,
                    heart_rate_max INTEGER,
                    completed_rounds INTEGER,
                    target_rounds INTEGER,
                    completed_in_time INTEGER,
                    seconds_remaining INTEGER,
                    drop_stage INTEGER,
                    drop_set_reps TEXT,
                    drop_set_weights TEXT,
                    superset_position INTEGER,
                    circuit_position INTEGER,
                    cluster_number INTEGER,
                    rest_pause_number INTEGER,
                    velocity REAL,
                    reached_failure INTEGER NOT NULL DEFAULT 0,
                    failure_reason TEXT,
                    completed_as_planned INTEGER,
                    missed_reps INTEGER,
                    comments TEXT,
                    completed_at TEXT,
                    FOREIGN KEY(workout_result_id) REFERENCES workout_results(id) ON DELETE CASCADE,
                    FOREIGN KEY(planned_item_id) REFERENCES block_items(id) ON DELETE SET NULL,
                    FOREIGN KEY(exercise_id) REFERENCES exercises(id)
                );""",
            _SET_RESULT_COLUMNS,
        ),
    }

    _INDEXES = [
        "CREATE UNIQUE INDEX IF NOT EXISTS idx_set_results_order ON set_results (workout_result_id, block_label, block_item_order, set_number);",
        "CREATE INDEX IF NOT EXISTS idx_workout_results_subject ON workout_results (subject_id, date);",
        "CREATE INDEX IF NOT EXISTS idx_set_results_item ON set_results (planned_item_id);",
        "CREATE INDEX IF NOT EXISTS idx_block_results_block ON block_results (planned_block_id);",
    ]

    def __init__(self, db_path: str | None = None) -> None:
        self._db_path = db_path or os.environ.get("DB_PATH", "training.db")
        self._ensure_schema()

    @property
    def db_path(self) -> str:
        return self._db_path

    @contextmanager
    def _connection(self):
        connection = sqlite3.connect(self._db_path)
        connection.execute("PRAGMA foreign_keys=ON;")
        try:
            yield connection
            connection.commit()
        finally:
            connection.close()

    def _ensure_schema(self) -> None:
        with self._connection() as conn:
            cursor = conn.cursor()
            cursor.execute("PRAGMA foreign_keys=off;")
            for table, (sql, columns) in self._TABLE_DEFINITIONS.items():
                self._ensure_table(conn, table, sql, columns)
            for sql in self._INDEXES:
                conn.execute(sql)
            conn.commit()
            cursor.execute("PRAGMA foreign_keys=on;")

    def _ensure_table(
        self, conn: sqlite3.Connection, table: str, sql: str, columns: List[str]
    ) -> None:
        cur = conn.execute(
            "SELECT name FROM sqlite_master WHERE type='table' AND name=?;", (table,)
        )
        if cur.fetchone() is None:
            conn.execute(sql)
            return

        cur = conn.execute(f"PRAGMA table_info({table});")
        existing_cols = [row[1] for row in cur.fetchall()]
        if existing_cols == columns:
            return

        # rebuild the table keeping the columns both layouts share
        conn.execute(f"ALTER TABLE {table} RENAME TO {table}_old;")
        conn.execute(sql)
        common = [c for c in existing_cols if c in columns]
        if common:
            cols = ", ".join(common)
            conn.execute(f"INSERT INTO {table} ({cols}) SELECT {cols} FROM {table}_old;")
        conn.execute(f"DROP TABLE {table}_old;")


class BaseRepository(Database):
    """Base repository providing helper methods."""

    def execute(self, query: str, params: Tuple = ()) -> int:
        with self._connection() as conn:
            cursor = conn.cursor()
            cursor.execute(query, params)
            return cursor.lastrowid

    def fetch_all(self, query: str, params: Tuple = ()) -> List[Tuple]:
        with self._connection() as conn:
            cursor = conn.cursor()
            cursor.execute(query, params)
            return cursor.fetchall()

    def fetch_dicts(self, query: str, params: Tuple = ()) -> List[dict]:
        with self._connection() as conn:
            cursor = conn.cursor()
            cursor.execute(query, params)
            names = [col[0] for col in cursor.description]
            return [dict(zip(names, row)) for row in cursor.fetchall()]

    def _insert(self, table: str, values: dict) -> int:
        cols = ", ".join(values)
        marks = ", ".join("?" for _ in values)
        try:
            return self.execute(
                f"INSERT INTO {table} ({cols}) VALUES ({marks});",
                tuple(_db_value(v) for v in values.values()),
            )
        except sqlite3.IntegrityError as exc:
            raise ValidationError(f"{table}: {exc}") from exc

    def _update(self, table: str, row_id: int, values: dict, allowed: Iterable[str]) -> None:
        allowed = set(allowed) - {"id"}
        unknown = set(values) - allowed
        if unknown:
            raise ValidationError(f"cannot update {', '.join(sorted(unknown))} on {table}")
        if not values:
            return
        assignments = ", ".join(f"{col} = ?" for col in values)
        try:
            self.execute(
                f"UPDATE {table} SET {assignments} WHERE id = ?;",
                tuple(_db_value(v) for v in values.values()) + (row_id,),
            )
        except sqlite3.IntegrityError as exc:
            raise ValidationError(f"{table}: {exc}") from exc

    def _exists(self, table: str, row_id: int) -> bool:
        return bool(self.fetch_all(f"SELECT 1 FROM {table} WHERE id = ?;", (row_id,)))


class OrderedRepository(BaseRepository):
    """Repository for children kept in a contiguous 0-based ``order_index``."""

    table: str = ""
    parent_column: str = ""
    entity: str = ""

    def _next_index(self, parent_id: int) -> int:
        rows = self.fetch_all(
            f"SELECT COUNT(*) FROM {self.table} WHERE {self.parent_column} = ?;",
            (parent_id,),
        )
        return int(rows[0][0])

    def ids_for(self, parent_id: int) -> List[int]:
        return [
            row[0]
            for row in self.fetch_all(
                f"SELECT id FROM {self.table} WHERE {self.parent_column} = ? ORDER BY order_index, id;",
                (parent_id,),
            )
        ]

    def delete(self, row_id: int) -> None:
        """Delete a child and renumber its remaining siblings."""
        with self._connection() as conn:
            row = conn.execute(
                f"SELECT {self.parent_column} FROM {self.table} WHERE id = ?;",
                (row_id,),
            ).fetchone()
            if row is None:
                raise NotFoundError.for_entity(self.entity, row_id)
            parent_id = row[0]
            conn.execute(f"DELETE FROM {self.table} WHERE id = ?;", (row_id,))
            remaining = conn.execute(
                f"SELECT id FROM {self.table} WHERE {self.parent_column} = ? ORDER BY order_index, id;",
                (parent_id,),
            ).fetchall()
            for pos, (child_id,) in enumerate(remaining):
                conn.execute(
                    f"UPDATE {self.table} SET order_index = ? WHERE id = ?;",
                    (pos, child_id),
                )

    def reorder(self, parent_id: int, order: list[int]) -> None:
        """Renumber all children of ``parent_id`` in a single transaction."""
        existing = self.ids_for(parent_id)
        if set(order) != set(existing) or len(order) != len(existing):
            raise ValidationError(
                "invalid order", entity=self.entity, entity_id=parent_id
            )
        with self._connection() as conn:
            for pos, child_id in enumerate(order):
                conn.execute(
                    f"UPDATE {self.table} SET order_index = ? WHERE id = ?;",
                    (pos, child_id),
                )


class ExerciseRepository(BaseRepository):
    """Repository for the shared exercise library."""

    def add(self, exercise: Exercise) -> int:
        values = exercise.to_dict()
        values.pop("id")
        return self._insert("exercises", values)

    def fetch(self, exercise_id: int) -> Exercise:
        rows = self.fetch_dicts("SELECT * FROM exercises WHERE id = ?;", (exercise_id,))
        if not rows:
            raise NotFoundError.for_entity("exercise", exercise_id)
        return _build(Exercise, rows[0], "exercise")

    def fetch_by_name(self, name: str) -> Optional[Exercise]:
        rows = self.fetch_dicts("SELECT * FROM exercises WHERE name = ?;", (name,))
        return _build(Exercise, rows[0], "exercise") if rows else None

    def fetch_all_exercises(self) -> List[Exercise]:
        rows = self.fetch_dicts("SELECT * FROM exercises ORDER BY name;")
        return [_build(Exercise, row, "exercise") for row in rows]

    def search(self, text: str) -> List[Exercise]:
        rows = self.fetch_dicts(
            "SELECT * FROM exercises WHERE name LIKE ? ORDER BY name;",
            (f"%{text}%",),
        )
        return [_build(Exercise, row, "exercise") for row in rows]

    def update(self, exercise_id: int, **fields) -> None:
        if not self._exists("exercises", exercise_id):
            raise NotFoundError.for_entity("exercise", exercise_id)
        self._update("exercises", exercise_id, fields, _EXERCISE_COLUMNS)

    def delete(self, exercise_id: int) -> None:
        if not self._exists("exercises", exercise_id):
            raise NotFoundError.for_entity("exercise", exercise_id)
        try:
            self.execute("DELETE FROM exercises WHERE id = ?;", (exercise_id,))
        except sqlite3.IntegrityError as exc:
            raise InvalidStateError(
                "exercise is referenced by plans or results",
                entity="exercise",
                entity_id=exercise_id,
            ) from exc


class ProgramRepository(BaseRepository):
    """Repository for programs."""

    def create(self, program: Program) -> int:
        values = program.to_dict()
        values.pop("id")
        values.pop("sessions")
        return self._insert("programs", values)

    def fetch(self, program_id: int) -> Program:
        rows = self.fetch_dicts("SELECT * FROM programs WHERE id = ?;", (program_id,))
        if not rows:
            raise NotFoundError.for_entity("program", program_id)
        return _build(Program, rows[0], "program")

    def fetch_all_programs(self) -> List[Program]:
        rows = self.fetch_dicts("SELECT * FROM programs ORDER BY id;")
        return [_build(Program, row, "program") for row in rows]

    def search(self, title: str) -> List[Program]:
        rows = self.fetch_dicts(
            "SELECT * FROM programs WHERE title LIKE ? ORDER BY id;",
            (f"%{title}%",),
        )
        return [_build(Program, row, "program") for row in rows]

    def find_active(self, day: datetime.date) -> List[Program]:
        rows = self.fetch_dicts(
            "SELECT * FROM programs WHERE start_date IS NOT NULL AND start_date <= ? "
            "AND (end_date IS NULL OR end_date >= ?) ORDER BY start_date;",
            (day.isoformat(), day.isoformat()),
        )
        return [_build(Program, row, "program") for row in rows]

    def update(self, program_id: int, **fields) -> None:
        if not self._exists("programs", program_id):
            raise NotFoundError.for_entity("program", program_id)
        self._update("programs", program_id, fields, _PROGRAM_COLUMNS)

    def delete(self, program_id: int) -> None:
        if not self._exists("programs", program_id):
            raise NotFoundError.for_entity("program", program_id)
        self.execute("DELETE FROM programs WHERE id = ?;", (program_id,))


class SessionTemplateRepository(OrderedRepository):
    """Repository for the session templates of a program."""

    table = "session_templates"
    parent_column = "program_id"
    entity = "session template"

    def add(self, program_id: int, title: str, notes: str | None = None) -> int:
        if not self._exists("programs", program_id):
            raise NotFoundError.for_entity("program", program_id)
        return self._insert(
            self.table,
            {
                "program_id": program_id,
                "title": title,
                "order_index": self._next_index(program_id),
                "notes": notes,
            },
        )

    def fetch(self, session_id: int) -> SessionTemplate:
        rows = self.fetch_dicts(
            "SELECT * FROM session_templates WHERE id = ?;", (session_id,)
        )
        if not rows:
            raise NotFoundError.for_entity(self.entity, session_id)
        return _build(SessionTemplate, rows[0], self.entity)

    def fetch_for_program(self, program_id: int) -> List[SessionTemplate]:
        rows = self.fetch_dicts(
            "SELECT * FROM session_templates WHERE program_id = ? ORDER BY order_index, id;",
            (program_id,),
        )
        return [_build(SessionTemplate, row, self.entity) for row in rows]

    def update(self, session_id: int, **fields) -> None:
        if not self._exists(self.table, session_id):
            raise NotFoundError.for_entity(self.entity, session_id)
        self._update(self.table, session_id, fields, ("title", "notes"))


class ExerciseBlockRepository(OrderedRepository):
    """Repository for the exercise blocks of a session template."""

    table = "exercise_blocks"
    parent_column = "session_id"
    entity = "exercise block"

    def add(self, session_id: int, block: ExerciseBlock) -> int:
        if not self._exists("session_templates", session_id):
            raise NotFoundError.for_entity("session template", session_id)
        values = block.to_dict()
        for key in ("id", "items", "block_type_display"):
            values.pop(key)
        values["session_id"] = session_id
        values["order_index"] = self._next_index(session_id)
        return self._insert(self.table, values)

    def fetch(self, block_id: int) -> ExerciseBlock:
        rows = self.fetch_dicts("SELECT * FROM exercise_blocks WHERE id = ?;", (block_id,))
        if not rows:
            raise NotFoundError.for_entity(self.entity, block_id)
        return _build(ExerciseBlock, rows[0], self.entity)

    def fetch_for_session(self, session_id: int) -> List[ExerciseBlock]:
        rows = self.fetch_dicts(
            "SELECT * FROM exercise_blocks WHERE session_id = ? ORDER BY order_index, id;",
            (session_id,),
        )
        return [_build(ExerciseBlock, row, self.entity) for row in rows]

    def update(self, block_id: int, **fields) -> None:
        if not self._exists(self.table, block_id):
            raise NotFoundError.for_entity(self.entity, block_id)
        allowed = [c for c in _BLOCK_COLUMNS if c not in ("session_id", "order_index")]
        self._update(self.table, block_id, fields, allowed)


class BlockItemRepository(OrderedRepository):
    """Repository for block items and their stored prescriptions."""

    table = "block_items"
    parent_column = "block_id"
    entity = "block item"

    _SELECT = (
        "SELECT i.id, i.block_id, i.order_index, i.exercise_id, i.simple_prescription, "
        "i.advanced_prescription, e.name FROM block_items i "
        "JOIN exercises e ON e.id = i.exercise_id"
    )

    @staticmethod
    def _prescription_columns(
        prescription: Prescription, legacy: SimplePrescription | None = None
    ) -> dict:
        if isinstance(prescription, SimplePrescription):
            return {
                "simple_prescription": json.dumps(prescription.to_dict()),
                "advanced_prescription": None,
            }
        return {
            "simple_prescription": json.dumps(legacy.to_dict()) if legacy else None,
            "advanced_prescription": json.dumps(prescription.to_dict()),
        }

    def _item_from_row(self, row: Tuple) -> BlockItem:
        item_id, block_id, order_index, exercise_id, simple, advanced, name = row
        try:
            prescription = prescriptions.resolve(simple, advanced)
        except (ValidationError, TypeError, ValueError) as exc:
            raise InvalidStateError(
                f"corrupt prescription: {exc}", entity=self.entity, entity_id=item_id
            ) from exc
        return BlockItem(
            id=item_id,
            block_id=block_id,
            order_index=order_index,
            exercise_id=exercise_id,
            exercise_name=name,
            prescription=prescription,
        )

    def add(
        self,
        block_id: int,
        exercise_id: int,
        prescription: Prescription,
        legacy: SimplePrescription | None = None,
    ) -> int:
        if not self._exists("exercise_blocks", block_id):
            raise NotFoundError.for_entity("exercise block", block_id)
        values = {
            "block_id": block_id,
            "order_index": self._next_index(block_id),
            "exercise_id": exercise_id,
        }
        values.update(self._prescription_columns(prescription, legacy))
        return self._insert(self.table, values)

    def fetch(self, item_id: int) -> BlockItem:
        rows = self.fetch_all(f"{self._SELECT} WHERE i.id = ?;", (item_id,))
        if not rows:
            raise NotFoundError.for_entity(self.entity, item_id)
        return self._item_from_row(rows[0])

    def fetch_for_block(self, block_id: int) -> List[BlockItem]:
        rows = self.fetch_all(
            f"{self._SELECT} WHERE i.block_id = ? ORDER BY i.order_index, i.id;",
            (block_id,),
        )
        return [self._item_from_row(row) for row in rows]

    def update_prescription(
        self,
        item_id: int,
        prescription: Prescription,
        legacy: SimplePrescription | None = None,
    ) -> None:
        if not self._exists(self.table, item_id):
            raise NotFoundError.for_entity(self.entity, item_id)
        self._update(
            self.table,
            item_id,
            self._prescription_columns(prescription, legacy),
            _ITEM_COLUMNS,
        )

    def update_exercise(self, item_id: int, exercise_id: int) -> None:
        if not self._exists(self.table, item_id):
            raise NotFoundError.for_entity(self.entity, item_id)
        self._update(self.table, item_id, {"exercise_id": exercise_id}, _ITEM_COLUMNS)


class WorkoutResultRepository(BaseRepository):
    """Repository for workout results and their aggregates."""

    _EDITABLE = [
        c
        for c in _WORKOUT_COLUMNS
        if c not in ("id", "subject_id", *_AGGREGATE_COLUMNS, *_FINALIZED_COLUMNS)
    ]

    def create(self, result: WorkoutResult) -> int:
        values = {
            col: getattr(result, col)
            for col in _WORKOUT_COLUMNS
            if col != "id" and col not in _AGGREGATE_COLUMNS
        }
        values.update(
            {
                "total_reps": result.total_reps,
                "total_volume_load": result.total_volume_load,
                "average_rpe": result.average_rpe,
                "work_time_seconds": result.work_time_seconds,
                "rpe_count": result.aggregates.rpe_count,
            }
        )
        return self._insert("workout_results", values)

    def exists(self, result_id: int) -> bool:
        return self._exists("workout_results", result_id)

    def fetch(self, result_id: int, with_children: bool = True) -> WorkoutResult:
        rows = self.fetch_dicts(
            "SELECT * FROM workout_results WHERE id = ?;", (result_id,)
        )
        if not rows:
            raise NotFoundError.for_entity("workout result", result_id)
        result = _workout_from_row(rows[0])
        if with_children:
            _attach_children(
                [result],
                self.fetch_dicts(
                    "SELECT * FROM block_results WHERE workout_result_id = ? ORDER BY block_order, id;",
                    (result_id,),
                ),
                self.fetch_dicts(
                    "SELECT s.*, e.name AS exercise_name FROM set_results s "
                    "JOIN exercises e ON e.id = s.exercise_id "
                    f"WHERE s.workout_result_id = ? ORDER BY {_SET_RESULT_ORDER};",
                    (result_id,),
                ),
            )
        return result

    def _fetch_where(self, where: str, params: list) -> List[WorkoutResult]:
        rows = self.fetch_dicts(
            f"SELECT * FROM workout_results WHERE {where} ORDER BY date, id;",
            tuple(params),
        )
        results = [_workout_from_row(row) for row in rows]
        block_rows: List[dict] = []
        set_rows: List[dict] = []
        for block_sql, set_sql, batch in _child_queries([r.id for r in results]):
            block_rows.extend(self.fetch_dicts(block_sql, batch))
            set_rows.extend(self.fetch_dicts(set_sql, batch))
        return _attach_children(results, block_rows, set_rows)

    def fetch_for_subject(
        self,
        subject_id: str,
        start_date: Optional[datetime.date] = None,
        end_date: Optional[datetime.date] = None,
    ) -> List[WorkoutResult]:
        where, params = _subject_filter(subject_id, start_date, end_date)
        return self._fetch_where(where, params)

    def fetch_for_template(self, template_id: int) -> List[WorkoutResult]:
        return self._fetch_where("template_id = ?", [template_id])

    def update(self, result_id: int, **fields) -> None:
        if not self.exists(result_id):
            raise NotFoundError.for_entity("workout result", result_id)
        self._update("workout_results", result_id, fields, self._EDITABLE)

    def save_aggregates(self, result: WorkoutResult) -> None:
        """Persist the derived fields of ``result``."""
        aggregates = result.aggregates
        self.execute(
            "UPDATE workout_results SET total_reps = ?, total_volume_load = ?, "
            "average_rpe = ?, work_time_seconds = ?, rpe_count = ?, "
            "personal_records = ?, max_weight_lifted = ?, estimated_one_rep_max = ? "
            "WHERE id = ?;",
            (
                aggregates.total_reps,
                aggregates.total_volume_load,
                aggregates.average_rpe,
                aggregates.work_time_seconds,
                aggregates.rpe_count,
                _db_value(result.personal_records),
                result.max_weight_lifted,
                result.estimated_one_rep_max,
                result.id,
            ),
        )

    def delete(self, result_id: int) -> None:
        if not self.exists(result_id):
            raise NotFoundError.for_entity("workout result", result_id)
        self.execute("DELETE FROM workout_results WHERE id = ?;", (result_id,))


class SetResultRepository(BaseRepository):
    """Repository for recorded sets."""

    _SELECT = (
        "SELECT s.*, e.name AS exercise_name FROM set_results s "
        "JOIN exercises e ON e.id = s.exercise_id"
    )

    def add(self, set_result: SetResult) -> int:
        values = {col: getattr(set_result, col) for col in _SET_RESULT_COLUMNS if col != "id"}
        try:
            return self.execute(
                f"INSERT INTO set_results ({', '.join(values)}) VALUES ({', '.join('?' for _ in values)});",
                tuple(_db_value(v) for v in values.values()),
            )
        except sqlite3.IntegrityError as exc:
            raise InvalidStateError(
                f"set {set_result.ordering_key} already recorded: {exc}",
                entity="workout result",
                entity_id=set_result.workout_result_id,
            ) from exc

    def fetch(self, set_id: int) -> SetResult:
        rows = self.fetch_dicts(f"{self._SELECT} WHERE s.id = ?;", (set_id,))
        if not rows:
            raise NotFoundError.for_entity("set result", set_id)
        return _set_from_row(rows[0])

    def fetch_for_item(self, item_id: int) -> List[SetResult]:
        rows = self.fetch_dicts(
            f"{self._SELECT} WHERE s.planned_item_id = ? ORDER BY s.workout_result_id, {_SET_RESULT_ORDER};",
            (item_id,),
        )
        return [_set_from_row(row) for row in rows]

    def fetch_history(
        self, subject_id: str, before: WorkoutResult
    ) -> List[SetResult]:
        """Sets the subject recorded in sessions that precede ``before``."""
        rows = self.fetch_dicts(
            f"{self._SELECT} JOIN workout_results w ON w.id = s.workout_result_id "
            "WHERE w.subject_id = ? AND (w.date < ? OR (w.date = ? AND w.id < ?)) "
            f"ORDER BY w.date, w.id, {_SET_RESULT_ORDER};",
            (subject_id, before.date.isoformat(), before.date.isoformat(), before.id),
        )
        return [_set_from_row(row) for row in rows]

    def next_set_number(self, result_id: int, block_label: str | None, item_order: int) -> int:
        rows = self.fetch_all(
            "SELECT COALESCE(MAX(set_number), 0) + 1 FROM set_results "
            "WHERE workout_result_id = ? AND block_label IS ? AND block_item_order = ?;",
            (result_id, block_label, item_order),
        )
        return int(rows[0][0])

    def update(self, set_id: int, **fields) -> None:
        if not self._exists("set_results", set_id):
            raise NotFoundError.for_entity("set result", set_id)
        allowed = [c for c in _SET_RESULT_COLUMNS if c != "workout_result_id"]
        try:
            self._update("set_results", set_id, fields, allowed)
        except ValidationError as exc:
            if "UNIQUE" in str(exc):
                raise InvalidStateError(str(exc), entity="set result", entity_id=set_id) from exc
            raise

    def delete(self, set_id: int) -> None:
        if not self._exists("set_results", set_id):
            raise NotFoundError.for_entity("set result", set_id)
        self.execute("DELETE FROM set_results WHERE id = ?;", (set_id,))


class BlockResultRepository(BaseRepository):
    """Repository for per-block outcomes."""

    _DERIVED = [
        "completion_percentage",
        "completed_as_planned",
        "average_round_time",
        "fastest_round_time_seconds",
        "slowest_round_time_seconds",
    ]

    def add(self, block_result: BlockResult) -> int:
        values = {
            col: getattr(block_result, col) for col in _BLOCK_RESULT_COLUMNS if col != "id"
        }
        return self._insert("block_results", values)

    def fetch(self, block_result_id: int) -> BlockResult:
        rows = self.fetch_dicts(
            "SELECT * FROM block_results WHERE id = ?;", (block_result_id,)
        )
        if not rows:
            raise NotFoundError.for_entity("block result", block_result_id)
        return _block_result_from_row(rows[0])

    def fetch_for_block(self, block_id: int) -> List[BlockResult]:
        rows = self.fetch_dicts(
            "SELECT * FROM block_results WHERE planned_block_id = ? ORDER BY workout_result_id, id;",
            (block_id,),
        )
        return [_block_result_from_row(row) for row in rows]

    def save_derived(self, block_result: BlockResult) -> None:
        self._update(
            "block_results",
            block_result.id,
            {col: getattr(block_result, col) for col in self._DERIVED},
            self._DERIVED,
        )

    def delete(self, block_result_id: int) -> None:
        if not self._exists("block_results", block_result_id):
            raise NotFoundError.for_entity("block result", block_result_id)
        self.execute("DELETE FROM block_results WHERE id = ?;", (block_result_id,))


class AsyncDatabase(Database):
    """Provides asynchronous connection management."""

    @asynccontextmanager
    async def _async_connection(self):
        conn = await aiosqlite.connect(self._db_path)
        try:
            await conn.execute("PRAGMA foreign_keys=ON;")
            yield conn
            await conn.commit()
        finally:
            await conn.close()


class AsyncBaseRepository(AsyncDatabase):
    """Asynchronous variant of BaseRepository using aiosqlite."""

    async def fetch_all(self, query: str, params: Tuple = ()) -> List[Tuple]:
        async with self._async_connection() as conn:
            cursor = await conn.execute(query, params)
            return await cursor.fetchall()

    async def fetch_dicts(self, query: str, params: Tuple = ()) -> List[dict]:
        async with self._async_connection() as conn:
            cursor = await conn.execute(query, params)
            rows = await cursor.fetchall()
            names = [col[0] for col in cursor.description]
            return [dict(zip(names, row)) for row in rows]


class AsyncWorkoutResultRepository(AsyncBaseRepository):
    """Non-blocking reads of workout results for analytics."""

    async def fetch(self, result_id: int) -> WorkoutResult:
        results = await self._fetch_where("id = ?", [result_id])
        if not results:
            raise NotFoundError.for_entity("workout result", result_id)
        return results[0]

    async def fetch_for_subject(
        self,
        subject_id: str,
        start_date: Optional[datetime.date] = None,
        end_date: Optional[datetime.date] = None,
    ) -> List[WorkoutResult]:
        where, params = _subject_filter(subject_id, start_date, end_date)
        return await self._fetch_where(where, params)

    async def _fetch_where(self, where: str, params: list) -> List[WorkoutResult]:
        rows = await self.fetch_dicts(
            f"SELECT * FROM workout_results WHERE {where} ORDER BY date, id;",
            tuple(params),
        )
        results = [_workout_from_row(row) for row in rows]
        block_rows: List[dict] = []
        set_rows: List[dict] = []
        for block_sql, set_sql, batch in _child_queries([r.id for r in results]):
            block_rows.extend(await self.fetch_dicts(block_sql, batch))
            set_rows.extend(await self.fetch_dicts(set_sql, batch))
        return _attach_children(results, block_rows, set_rows)
