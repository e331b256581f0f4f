import datetime
import os
from typing import Dict, List

from fastapi import Body, FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from loguru import logger

from analytics_service import AnalyticsService
from config import YamlConfig
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
from errors import InvalidStateError, NotFoundError, TrainingError, ValidationError
from log_setup import configure_logging
from metrics_service import MetricsService
from models import (
    BlockResult,
    BlockType,
    Exercise,
    ExerciseBlock,
    ExerciseCategory,
    SetResult,
    WorkoutResult,
    parse_enum,
)
from planner_service import PlannerService
import prescriptions
from session_service import SessionService


ERROR_STATUS = (
    (NotFoundError, 404),
    (ValidationError, 400),
    (InvalidStateError, 409),
)


def _parse_date(value: str | None, name: str) -> datetime.date | None:
    if value is None:
        return None
    try:
        return datetime.date.fromisoformat(value)
    except ValueError:
        raise ValidationError(f"{name} must be an ISO date") from None


def _dicts(items) -> List[dict]:
    return [item.to_dict() for item in items]


class TrainingAPI:
    """Provides REST endpoints for planning and recording training."""

    def __init__(
        self,
        db_path: str | None = None,
        yaml_path: str = "settings.yaml",
        clock=datetime.datetime.now,
    ) -> None:
        self.db_path = db_path or os.environ.get("DB_PATH", "training.db")
        self.config = YamlConfig(yaml_path)
        self.settings = self.config.settings()
        self.exercises = ExerciseRepository(self.db_path)
        self.programs = ProgramRepository(self.db_path)
        self.sessions = SessionTemplateRepository(self.db_path)
        self.blocks = ExerciseBlockRepository(self.db_path)
        self.items = BlockItemRepository(self.db_path)
        self.workouts = WorkoutResultRepository(self.db_path)
        self.set_results = SetResultRepository(self.db_path)
        self.block_results = BlockResultRepository(self.db_path)
        self.async_workouts = AsyncWorkoutResultRepository(self.db_path)
        self.metrics = MetricsService()
        self.planner = PlannerService(
            self.programs,
            self.sessions,
            self.blocks,
            self.items,
            self.exercises,
            strict_exercises=self.settings.strict_exercises,
            default_category=parse_enum(
                ExerciseCategory, self.settings.default_category
            ),
        )
        self.recorder = SessionService(
            self.workouts,
            self.set_results,
            self.block_results,
            self.sessions,
            self.blocks,
            self.items,
            self.exercises,
            metrics=self.metrics,
            clock=clock,
        )
        self.analytics = AnalyticsService(
            self.workouts, self.async_workouts, metrics=self.metrics
        )
        self.app = FastAPI(
            title="Training API",
            description="REST API for training programs, results and analytics",
        )
        self._setup_error_handlers()
        self._setup_routes()

    def _setup_error_handlers(self) -> None:
        @self.app.exception_handler(TrainingError)
        async def training_error(request: Request, exc: TrainingError):
            for error_cls, status in ERROR_STATUS:
                if isinstance(exc, error_cls):
                    break
            else:
                status = 500
            logger.warning(f"{request.method} {request.url.path} -> {status}: {exc}")
            return JSONResponse(status_code=status, content={"detail": str(exc)})

    def _setup_routes(self) -> None:
        @self.app.get(
            "/health",
            summary="Health check",
            description="Verify API and database connectivity.",
        )
        def health():
            """Return API and database connection status."""
            try:
                self.programs.fetch_all("SELECT 1;")
                return {"status": "ok"}
            except Exception as e:  # pragma: no cover - connectivity failure
                raise HTTPException(status_code=500, detail=str(e))

        # programs

        @self.app.post("/programs")
        def create_program(data: Dict = Body(...)):
            program = self.planner.create_program(
                data.get("title"),
                total_weeks=data.get("total_weeks", 0),
                start_date=_parse_date(data.get("start_date"), "start_date"),
                end_date=_parse_date(data.get("end_date"), "end_date"),
                description=data.get("description"),
            )
            return program.to_dict()

        @self.app.post("/programs/demo")
        def create_demo_program(title: str = "Demo Program", total_weeks: int = 4):
            return self.planner.create_demo_program(title, total_weeks).to_dict()

        @self.app.get("/programs")
        def list_programs(search: str = None):
            if search:
                return _dicts(self.planner.search_programs(search))
            return _dicts(self.planner.list_programs())

        @self.app.get("/programs/active")
        def active_programs(day: str = None):
            when = _parse_date(day, "day") or datetime.date.today()
            return _dicts(self.planner.find_active_programs(when))

        @self.app.get("/programs/{program_id}")
        def get_program(program_id: int):
            return self.planner.get_program(program_id).to_dict()

        @self.app.put("/programs/{program_id}")
        def update_program(program_id: int, data: Dict = Body(...)):
            return self.planner.update_program(program_id, **data).to_dict()

        @self.app.post("/programs/{program_id}/start")
        def start_program(program_id: int, start_date: str):
            day = _parse_date(start_date, "start_date")
            return self.planner.start_program(program_id, day).to_dict()

        @self.app.delete("/programs/{program_id}")
        def delete_program(program_id: int):
            self.planner.delete_program(program_id)
            return {"status": "deleted"}

        # session templates

        @self.app.post("/programs/{program_id}/sessions")
        def add_session(program_id: int, data: Dict = Body(...)):
            session = self.planner.add_session(
                program_id, data.get("title"), data.get("notes")
            )
            return session.to_dict()

        @self.app.get("/programs/{program_id}/sessions")
        def list_sessions(program_id: int):
            return _dicts(self.planner.list_sessions(program_id))

        @self.app.post("/programs/{program_id}/sessions/reorder")
        def reorder_sessions(program_id: int, order: List[int] = Body(...)):
            return _dicts(self.planner.reorder_sessions(program_id, order))

        @self.app.get("/sessions/{session_id}")
        def get_session(session_id: int):
            return self.planner.get_session(session_id).to_dict()

        @self.app.put("/sessions/{session_id}")
        def update_session(session_id: int, data: Dict = Body(...)):
            return self.planner.update_session(session_id, **data).to_dict()

        @self.app.delete("/sessions/{session_id}")
        def delete_session(session_id: int):
            self.planner.delete_session(session_id)
            return {"status": "deleted"}

        @self.app.get("/sessions/{session_id}/results")
        def session_results(session_id: int):
            return _dicts(self.recorder.results_for_template(session_id))

        # blocks

        @self.app.post("/sessions/{session_id}/blocks")
        def add_block(session_id: int, data: Dict = Body(...)):
            block = ExerciseBlock.from_dict(data)
            return self.planner.add_block(session_id, block).to_dict()

        @self.app.post("/sessions/{session_id}/blocks/reorder")
        def reorder_blocks(session_id: int, order: List[int] = Body(...)):
            return _dicts(self.planner.reorder_blocks(session_id, order))

        @self.app.get("/blocks/{block_id}")
        def get_block(block_id: int):
            return self.planner.get_block(block_id).to_dict()

        @self.app.put("/blocks/{block_id}")
        def update_block(block_id: int, data: Dict = Body(...)):
            return self.planner.update_block(block_id, **data).to_dict()

        @self.app.delete("/blocks/{block_id}")
        def delete_block(block_id: int):
            self.planner.delete_block(block_id)
            return {"status": "deleted"}

        @self.app.get("/blocks/{block_id}/results")
        def block_results(block_id: int):
            return _dicts(self.recorder.results_for_block(block_id))

        # items

        @self.app.post("/blocks/{block_id}/items")
        def add_item(block_id: int, data: Dict = Body(...)):
            if "exercise" not in data or "prescription" not in data:
                raise ValidationError("exercise and prescription are required")
            legacy = data.get("legacy")
            item = self.planner.add_item(
                block_id,
                data["exercise"],
                prescriptions.from_payload(data["prescription"]),
                prescriptions.from_payload({**legacy, "kind": "simple"}) if legacy else None,
                strict=data.get("strict"),
            )
            return item.to_dict()

        @self.app.post("/blocks/{block_id}/items/reorder")
        def reorder_items(block_id: int, order: List[int] = Body(...)):
            return _dicts(self.planner.reorder_items(block_id, order))

        @self.app.get("/items/{item_id}")
        def get_item(item_id: int):
            return self.planner.get_item(item_id).to_dict()

        @self.app.put("/items/{item_id}/prescription")
        def update_item_prescription(item_id: int, data: Dict = Body(...)):
            item = self.planner.update_item_prescription(
                item_id, prescriptions.from_payload(data)
            )
            return item.to_dict()

        @self.app.put("/items/{item_id}/exercise")
        def replace_item_exercise(item_id: int, exercise: str, strict: bool = None):
            target = int(exercise) if exercise.isdigit() else exercise
            return self.planner.replace_item_exercise(item_id, target, strict).to_dict()

        @self.app.delete("/items/{item_id}")
        def delete_item(item_id: int):
            self.planner.delete_item(item_id)
            return {"status": "deleted"}

        @self.app.get("/items/{item_id}/results")
        def item_results(item_id: int):
            return _dicts(self.recorder.results_for_item(item_id))

        # exercises

        @self.app.get("/exercises")
        def list_exercises(search: str = None):
            return _dicts(self.planner.list_exercises(search))

        @self.app.post("/exercises")
        def create_exercise(data: Dict = Body(...)):
            return self.planner.create_exercise(Exercise.from_dict(data)).to_dict()

        @self.app.get("/exercises/{exercise_id}")
        def get_exercise(exercise_id: int):
            return self.planner.get_exercise(exercise_id).to_dict()

        @self.app.put("/exercises/{exercise_id}")
        def update_exercise(exercise_id: int, data: Dict = Body(...)):
            return self.planner.update_exercise(exercise_id, **data).to_dict()

        @self.app.delete("/exercises/{exercise_id}")
        def delete_exercise(exercise_id: int):
            self.planner.delete_exercise(exercise_id)
            return {"status": "deleted"}

        # results

        @self.app.post("/results/start")
        def start_result(
            template_id: int, subject_id: str, date: str = None, week: int = None
        ):
            result = self.recorder.start_session(
                template_id, subject_id, _parse_date(date, "date"), week
            )
            return result.to_dict()

        @self.app.post("/results/adhoc")
        def start_adhoc(subject_id: str, date: str = None):
            result = self.recorder.start_adhoc_session(
                subject_id, _parse_date(date, "date")
            )
            return result.to_dict()

        @self.app.post("/results/import")
        def import_result(data: Dict = Body(...)):
            data = dict(data)
            sets = data.pop("set_results", []) or []
            blocks = data.pop("block_results", []) or []
            result = WorkoutResult.from_dict(data)
            result.set_results = [SetResult.from_dict(s) for s in sets]
            result.block_results = [BlockResult.from_dict(b) for b in blocks]
            return self.recorder.import_result(result).to_dict()

        @self.app.get("/results")
        def list_results(subject_id: str, start_date: str = None, end_date: str = None):
            results = self.recorder.results_for_subject(
                subject_id,
                _parse_date(start_date, "start_date"),
                _parse_date(end_date, "end_date"),
            )
            return _dicts(results)

        @self.app.get("/results/{result_id}")
        def get_result(result_id: int):
            return self.recorder.get_result(result_id).to_dict()

        @self.app.put("/results/{result_id}")
        def update_result(result_id: int, data: Dict = Body(...)):
            return self.recorder.update_session(result_id, **data).to_dict()

        @self.app.post("/results/{result_id}/status")
        def set_status(result_id: int, status: str):
            return self.recorder.set_completion_status(result_id, status).to_dict()

        @self.app.post("/results/{result_id}/finish")
        def finish_result(result_id: int):
            return self.recorder.finish_session(result_id).to_dict()

        @self.app.delete("/results/{result_id}")
        def delete_result(result_id: int):
            self.recorder.delete_session(result_id)
            return {"status": "deleted"}

        @self.app.post("/results/{result_id}/sets")
        def record_set(result_id: int, data: Dict = Body(...)):
            result = self.recorder.record_set(result_id, SetResult.from_dict(data))
            return result.to_dict()

        @self.app.put("/sets/{set_id}")
        def update_set(set_id: int, data: Dict = Body(...)):
            return self.recorder.update_set(set_id, **data).to_dict()

        @self.app.delete("/sets/{set_id}")
        def delete_set(set_id: int):
            return self.recorder.delete_set(set_id).to_dict()

        @self.app.post("/results/{result_id}/blocks/{block_id}")
        def record_block_result(result_id: int, block_id: int, data: Dict = Body(...)):
            block_result = self.recorder.record_block_result(
                result_id, block_id, BlockResult.from_dict(data)
            )
            return block_result.to_dict()

        @self.app.get("/block_results/{block_result_id}")
        def get_block_result(block_result_id: int):
            return self.recorder.get_block_result(block_result_id).to_dict()

        @self.app.delete("/block_results/{block_result_id}")
        def delete_block_result(block_result_id: int):
            self.recorder.delete_block_result(block_result_id)
            return {"status": "deleted"}

        # analytics

        @self.app.get("/analytics")
        async def analytics(subject_id: str, start_date: str, end_date: str):
            report = await self.analytics.generate_analytics_async(
                subject_id,
                _parse_date(start_date, "start_date"),
                _parse_date(end_date, "end_date"),
            )
            return report.to_dict()

        @self.app.get("/analytics/report")
        def methodology_report(
            subject_id: str, block_type: str, start_date: str, end_date: str
        ):
            text = self.analytics.generate_methodology_report(
                subject_id,
                parse_enum(BlockType, block_type),
                _parse_date(start_date, "start_date"),
                _parse_date(end_date, "end_date"),
            )
            return {"report": text}


def create_app() -> FastAPI:
    api = TrainingAPI()
    configure_logging(api.settings.log_level, api.settings.log_file)
    return api.app


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(create_app())
