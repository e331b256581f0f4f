from __future__ import annotations

import datetime
from typing import List

from loguru import logger

from db import (
    BlockItemRepository,
    ExerciseBlockRepository,
    ExerciseRepository,
    ProgramRepository,
    SessionTemplateRepository,
)
from errors import NotFoundError, ValidationError
from models import (
    AdvancedPrescription,
    BlockItem,
    BlockType,
    Exercise,
    ExerciseBlock,
    ExerciseCategory,
    ExerciseComplexity,
    LoadingScheme,
    MovementPattern,
    Prescription,
    Program,
    SessionTemplate,
    SetType,
    SimplePrescription,
    parse_enum,
)
import prescriptions


class PlannerService:
    """Builds and edits programs, session templates, blocks and items."""

    def __init__(
        self,
        program_repo: ProgramRepository,
        session_repo: SessionTemplateRepository,
        block_repo: ExerciseBlockRepository,
        item_repo: BlockItemRepository,
        exercise_repo: ExerciseRepository,
        strict_exercises: bool = False,
        default_category: ExerciseCategory = ExerciseCategory.STRENGTH,
    ) -> None:
        self.programs = program_repo
        self.sessions = session_repo
        self.blocks = block_repo
        self.items = item_repo
        self.exercises = exercise_repo
        self.strict_exercises = strict_exercises
        self.default_category = default_category

    # programs

    def create_program(
        self,
        title: str,
        total_weeks: int = 0,
        start_date: datetime.date | None = None,
        end_date: datetime.date | None = None,
        description: str | None = None,
    ) -> Program:
        program = Program(
            title=title,
            total_weeks=total_weeks,
            start_date=start_date,
            end_date=end_date,
            description=description,
        )
        self._validate_program(program)
        program.id = self.programs.create(program)
        return program

    @staticmethod
    def _validate_program(program: Program) -> None:
        if not program.title or not program.title.strip():
            raise ValidationError("program title is required")
        if program.total_weeks < 0:
            raise ValidationError("total_weeks must not be negative")
        if (
            program.start_date is not None
            and program.end_date is not None
            and program.end_date < program.start_date
        ):
            raise ValidationError("end_date must not precede start_date")

    def get_program(self, program_id: int) -> Program:
        """Return a program with its full session tree."""
        program = self.programs.fetch(program_id)
        program.sessions = [
            self.get_session(session.id)
            for session in self.sessions.fetch_for_program(program_id)
        ]
        return program

    def list_programs(self) -> List[Program]:
        return self.programs.fetch_all_programs()

    def search_programs(self, title: str) -> List[Program]:
        return self.programs.search(title)

    def find_active_programs(self, day: datetime.date) -> List[Program]:
        return self.programs.find_active(day)

    def update_program(self, program_id: int, **fields) -> Program:
        program = self.programs.fetch(program_id)
        for name, value in fields.items():
            if name in ("start_date", "end_date") and isinstance(value, str):
                value = datetime.date.fromisoformat(value)
            if not hasattr(program, name) or name in ("id", "sessions"):
                raise ValidationError(f"cannot update {name} on program")
            setattr(program, name, value)
        self._validate_program(program)
        self.programs.update(program_id, **fields)
        return program

    def start_program(self, program_id: int, start_date: datetime.date) -> Program:
        """Set the start date and derive the end date from the planned weeks."""
        program = self.programs.fetch(program_id)
        end_date = program.end_date
        if program.total_weeks > 0:
            end_date = start_date + datetime.timedelta(weeks=program.total_weeks)
        return self.update_program(program_id, start_date=start_date, end_date=end_date)

    def delete_program(self, program_id: int) -> None:
        self.programs.delete(program_id)

    # session templates

    def add_session(
        self, program_id: int, title: str, notes: str | None = None
    ) -> SessionTemplate:
        if not title or not title.strip():
            raise ValidationError("session title is required")
        session_id = self.sessions.add(program_id, title, notes)
        return self.sessions.fetch(session_id)

    def get_session(self, session_id: int) -> SessionTemplate:
        """Return a session template with its blocks and items."""
        session = self.sessions.fetch(session_id)
        session.blocks = [
            self.get_block(block.id) for block in self.blocks.fetch_for_session(session_id)
        ]
        return session

    def list_sessions(self, program_id: int) -> List[SessionTemplate]:
        self.programs.fetch(program_id)
        return self.sessions.fetch_for_program(program_id)

    def update_session(self, session_id: int, **fields) -> SessionTemplate:
        self.sessions.update(session_id, **fields)
        return self.sessions.fetch(session_id)

    def delete_session(self, session_id: int) -> None:
        self.sessions.delete(session_id)

    def reorder_sessions(self, program_id: int, order: list[int]) -> List[SessionTemplate]:
        self.programs.fetch(program_id)
        self.sessions.reorder(program_id, order)
        return self.sessions.fetch_for_program(program_id)

    # exercise blocks

    def add_block(self, session_id: int, block: ExerciseBlock) -> ExerciseBlock:
        self._validate_block(block)
        existing = {b.label for b in self.blocks.fetch_for_session(session_id)}
        if block.label in existing:
            raise ValidationError(
                f"block label {block.label!r} already used",
                entity="session template",
                entity_id=session_id,
            )
        block_id = self.blocks.add(session_id, block)
        return self.blocks.fetch(block_id)

    @staticmethod
    def _validate_block(block: ExerciseBlock) -> None:
        if not block.label or not block.label.strip():
            raise ValidationError("block label is required")
        for name in (
            "block_duration_seconds",
            "rest_between_items_seconds",
            "rest_after_block_seconds",
            "total_rounds",
            "interval_seconds",
            "work_phase_seconds",
            "rest_phase_seconds",
            "amrap_duration_seconds",
        ):
            value = getattr(block, name)
            if value is not None and value < 0:
                raise ValidationError(f"{name} must not be negative")
        if block.block_type is BlockType.EMOM and block.interval_seconds == 0:
            raise ValidationError("EMOM interval must be positive")

    def get_block(self, block_id: int) -> ExerciseBlock:
        block = self.blocks.fetch(block_id)
        block.items = self.items.fetch_for_block(block_id)
        return block

    def update_block(self, block_id: int, **fields) -> ExerciseBlock:
        block = self.blocks.fetch(block_id)
        if "block_type" in fields:
            fields["block_type"] = parse_enum(BlockType, fields["block_type"])
        for name, value in fields.items():
            if not hasattr(block, name) or name in ("id", "session_id", "order_index", "items"):
                raise ValidationError(f"cannot update {name} on exercise block")
            setattr(block, name, value)
        self._validate_block(block)
        self.blocks.update(block_id, **fields)
        return self.get_block(block_id)

    def delete_block(self, block_id: int) -> None:
        self.blocks.delete(block_id)

    def reorder_blocks(self, session_id: int, order: list[int]) -> List[ExerciseBlock]:
        self.sessions.fetch(session_id)
        self.blocks.reorder(session_id, order)
        return self.blocks.fetch_for_session(session_id)

    # exercises

    def create_exercise(self, exercise: Exercise) -> Exercise:
        if not exercise.name or not exercise.name.strip():
            raise ValidationError("exercise name is required")
        if self.exercises.fetch_by_name(exercise.name) is not None:
            raise ValidationError(f"exercise {exercise.name!r} already exists")
        exercise.id = self.exercises.add(exercise)
        return exercise

    def get_exercise(self, exercise_id: int) -> Exercise:
        return self.exercises.fetch(exercise_id)

    def list_exercises(self, search: str | None = None) -> List[Exercise]:
        if search:
            return self.exercises.search(search)
        return self.exercises.fetch_all_exercises()

    def update_exercise(self, exercise_id: int, **fields) -> Exercise:
        current = self.exercises.fetch(exercise_id)
        if "id" in fields:
            raise ValidationError("cannot update id on exercise")
        merged = Exercise.from_dict({**current.to_dict(), **fields})
        if not merged.name or not merged.name.strip():
            raise ValidationError("exercise name is required")
        self.exercises.update(exercise_id, **{name: getattr(merged, name) for name in fields})
        return self.exercises.fetch(exercise_id)

    def delete_exercise(self, exercise_id: int) -> None:
        """Remove an exercise no plan or result refers to."""
        self.exercises.delete(exercise_id)

    def find_or_create_exercise(
        self,
        name: str,
        category: ExerciseCategory | None = None,
        movement_pattern: MovementPattern | None = None,
        strict: bool | None = None,
    ) -> Exercise:
        """Return the exercise called ``name``.

        Unknown names create a stub exercise unless strict mode is on, in
        which case :class:`NotFoundError` is raised.
        """
        existing = self.exercises.fetch_by_name(name)
        if existing is not None:
            return existing
        if self.strict_exercises if strict is None else strict:
            raise NotFoundError(f"exercise {name!r} not found", entity="exercise")
        logger.warning(f"Creating stub exercise {name!r}")
        exercise = Exercise(
            name=name,
            category=category or self.default_category,
            movement_pattern=movement_pattern,
            complexity=ExerciseComplexity.INTERMEDIATE,
        )
        exercise.id = self.exercises.add(exercise)
        return exercise

    def _resolve_exercise(self, exercise: int | str, strict: bool | None) -> Exercise:
        if isinstance(exercise, int):
            return self.exercises.fetch(exercise)
        return self.find_or_create_exercise(exercise, strict=strict)

    # block items

    def add_item(
        self,
        block_id: int,
        exercise: int | str,
        prescription: Prescription,
        legacy: SimplePrescription | None = None,
        strict: bool | None = None,
    ) -> BlockItem:
        """Append an item to a block, resolving ``exercise`` by id or name."""
        self.blocks.fetch(block_id)
        prescriptions.validate(prescription)
        if legacy is not None:
            prescriptions.validate(legacy)
        resolved = self._resolve_exercise(exercise, strict)
        item_id = self.items.add(block_id, resolved.id, prescription, legacy)
        return self.items.fetch(item_id)

    def get_item(self, item_id: int) -> BlockItem:
        return self.items.fetch(item_id)

    def update_item_prescription(
        self,
        item_id: int,
        prescription: Prescription,
        legacy: SimplePrescription | None = None,
    ) -> BlockItem:
        prescriptions.validate(prescription)
        self.items.update_prescription(item_id, prescription, legacy)
        return self.items.fetch(item_id)

    def replace_item_exercise(
        self, item_id: int, exercise: int | str, strict: bool | None = None
    ) -> BlockItem:
        self.items.fetch(item_id)
        resolved = self._resolve_exercise(exercise, strict)
        self.items.update_exercise(item_id, resolved.id)
        return self.items.fetch(item_id)

    def delete_item(self, item_id: int) -> None:
        self.items.delete(item_id)

    def reorder_items(self, block_id: int, order: list[int]) -> List[BlockItem]:
        self.blocks.fetch(block_id)
        self.items.reorder(block_id, order)
        return self.items.fetch_for_block(block_id)

    # canonical sessions

    def _new_session(self, program_id: int, title: str, notes: str | None = None) -> SessionTemplate:
        return self.add_session(program_id, title, notes)

    def create_superset_session(self, program_id: int) -> SessionTemplate:
        session = self._new_session(program_id, "Upper Body Superset")
        block = self.add_block(session.id, ExerciseBlock.superset("A", rounds=4, rest_after_block_seconds=120))
        self.add_item(block.id, "Bench Press", prescriptions.superset(1, 4, 8, 0))
        self.add_item(block.id, "Bent-over Barbell Row", prescriptions.superset(2, 4, 8, 120))
        return self.get_session(session.id)

    def create_tabata_session(self, program_id: int) -> SessionTemplate:
        session = self._new_session(program_id, "HIIT Tabata")
        block = self.add_block(session.id, ExerciseBlock.tabata("A", rounds=8))
        self.add_item(block.id, "Burpees", prescriptions.tabata(8))
        return self.get_session(session.id)

    def create_emom_session(self, program_id: int) -> SessionTemplate:
        session = self._new_session(program_id, "EMOM Strength")
        block = self.add_block(session.id, ExerciseBlock.emom("A", interval_seconds=60, total_seconds=720))
        prescription = prescriptions.emom(1, 3, 12)
        prescription.percentage_1rm = 75.0
        prescription.loading_scheme = LoadingScheme.PERCENTAGE_BASED
        self.add_item(block.id, "Deadlift", prescription)
        return self.get_session(session.id)

    def create_circuit_session(self, program_id: int) -> SessionTemplate:
        session = self._new_session(program_id, "Full Body Circuit")
        block = self.add_block(session.id, ExerciseBlock.circuit("A", rounds=4, rest_between_items_seconds=15))
        for position, name in enumerate(
            ["Push-ups", "Mountain Climbers", "Jump Squats", "Plank"], start=1
        ):
            self.add_item(
                block.id,
                name,
                prescriptions.circuit(position, work_seconds=45, rest_seconds=15),
            )
        return self.get_session(session.id)

    def create_drop_set_session(self, program_id: int) -> SessionTemplate:
        session = self._new_session(program_id, "Hypertrophy Drop Sets")
        block = self.add_block(session.id, ExerciseBlock(label="A", block_type=BlockType.DROP_SET))
        self.add_item(block.id, "Leg Press", prescriptions.drop_set(3, 12, 3, ["20%", "20%", "20%"]))
        return self.get_session(session.id)

    def create_fran_session(self, program_id: int) -> SessionTemplate:
        session = self._new_session(program_id, "CrossFit WOD - Fran", notes="21-15-9")
        block = self.add_block(session.id, ExerciseBlock(label="A", block_type=BlockType.FOR_TIME))
        self.add_item(
            block.id,
            "Thrusters",
            AdvancedPrescription(
                set_type=SetType.FOR_TIME,
                weight=95.0,
                weight_unit="lb",
                pyramid_structure="21-15-9",
            ),
        )
        self.add_item(
            block.id,
            "Pull-ups",
            AdvancedPrescription(set_type=SetType.FOR_TIME, pyramid_structure="21-15-9"),
        )
        return self.get_session(session.id)

    def create_amrap_session(self, program_id: int) -> SessionTemplate:
        session = self._new_session(program_id, "AMRAP 20")
        block = self.add_block(session.id, ExerciseBlock.amrap("A", duration_seconds=1200))
        for name, reps in (("Pull-ups", 5), ("Push-ups", 10), ("Air Squats", 15)):
            self.add_item(block.id, name, prescriptions.amrap(1200, reps))
        return self.get_session(session.id)

    def create_demo_program(self, title: str = "Demo Program", total_weeks: int = 4) -> Program:
        """Create a program holding one session of each canonical methodology."""
        program = self.create_program(title, total_weeks=total_weeks)
        for build in (
            self.create_superset_session,
            self.create_tabata_session,
            self.create_emom_session,
            self.create_circuit_session,
            self.create_drop_set_session,
            self.create_fran_session,
            self.create_amrap_session,
        ):
            build(program.id)
        return self.get_program(program.id)
