import argparse
import datetime
import json
import shutil
import sys

from loguru import logger

from algorithms.weight_converter import WeightConverter
from errors import TrainingError
from log_setup import configure_logging
from models import BlockResult, SetResult, WorkoutResult
from rest_api import TrainingAPI


def backup_db(db_path: str, backup_path: str) -> None:
    shutil.copy(db_path, backup_path)
    logger.info(f"Backed up {db_path} to {backup_path}")


def restore_db(backup_path: str, db_path: str) -> None:
    shutil.copy(backup_path, db_path)
    logger.info(f"Restored {db_path} from {backup_path}")


def _parse_day(value: str | None) -> datetime.date | None:
    return datetime.date.fromisoformat(value) if value else None


def demo_data(db_path: str, yaml_path: str, subject_id: str = "demo") -> None:
    """Populate the database with a demo program and a few results if empty."""
    api = TrainingAPI(db_path=db_path, yaml_path=yaml_path)
    if api.planner.list_programs():
        print("Database already contains programs")
        return
    program = api.planner.create_demo_program()
    templates = {session.title: session for session in program.sessions}
    today = datetime.date.today()

    emom = templates["EMOM Strength"]
    block = emom.blocks[0]
    item = block.items[0]
    result = api.recorder.start_session(emom.id, subject_id, today)
    for minute in range(1, 13):
        round_result = SetResult.emom_round(
            item.exercise_id,
            block.label,
            minute,
            reps=3,
            seconds_remaining=20 if minute <= 10 else -1,
        )
        round_result.weight = 140.0
        round_result.planned_item_id = item.id
        api.recorder.record_set(result.id, round_result)
    api.recorder.record_block_result(
        result.id,
        block.id,
        BlockResult(emom_minutes_completed=10, emom_failed_minutes=2),
    )
    api.recorder.finish_session(result.id)

    fran = templates["CrossFit WOD - Fran"]
    api.recorder.import_result(
        WorkoutResult.for_time(subject_id, today, 263, rx=True, template_id=fran.id)
    )
    amrap = templates["AMRAP 20"]
    api.recorder.import_result(
        WorkoutResult.amrap(subject_id, today, 12, 7, 1200, template_id=amrap.id)
    )
    print("Demo data inserted")


def print_report(
    db_path: str,
    subject_id: str,
    start: datetime.date,
    end: datetime.date,
    block_type: str | None = None,
) -> None:
    api = TrainingAPI(db_path=db_path)
    if block_type:
        print(
            api.analytics.generate_methodology_report(subject_id, block_type, start, end),
            end="",
        )
    else:
        report = api.analytics.generate_analytics(subject_id, start, end)
        print(json.dumps(report.to_dict(), indent=2))


def export_trends(
    db_path: str, subject_id: str, start: datetime.date, end: datetime.date, out: str
) -> None:
    api = TrainingAPI(db_path=db_path)
    report = api.analytics.generate_analytics(subject_id, start, end)
    api.analytics.trend_frame(report).to_csv(out)
    print(f"Wrote {len(report.session_dates)} sessions to {out}")


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Training ledger utilities")
    parser.add_argument("--log-level", default="WARNING")
    sub = parser.add_subparsers(dest="cmd", required=True)

    demo = sub.add_parser("demo")
    demo.add_argument("--db", default="training.db")
    demo.add_argument("--yaml", default="settings.yaml")
    demo.add_argument("--subject", default="demo")

    for name in ("report", "export-trends"):
        rep = sub.add_parser(name)
        rep.add_argument("--db", default="training.db")
        rep.add_argument("--subject", required=True)
        rep.add_argument("--start", required=True)
        rep.add_argument("--end", required=True)
        if name == "report":
            rep.add_argument("--type", dest="block_type")
        else:
            rep.add_argument("--out", default="trends.csv")

    bkp = sub.add_parser("backup")
    bkp.add_argument("--db", default="training.db")
    bkp.add_argument("--out", default="backup.db")

    rst = sub.add_parser("restore")
    rst.add_argument("--in", dest="src", default="backup.db")
    rst.add_argument("--db", default="training.db")

    conv = sub.add_parser("convert")
    conv.add_argument("--weight", type=float, required=True)
    conv.add_argument("--unit", choices=["kg", "lb"], required=True)

    args = parser.parse_args(argv)
    configure_logging(args.log_level)

    try:
        if args.cmd == "demo":
            demo_data(args.db, args.yaml, args.subject)
        elif args.cmd == "report":
            print_report(
                args.db,
                args.subject,
                _parse_day(args.start),
                _parse_day(args.end),
                args.block_type,
            )
        elif args.cmd == "export-trends":
            export_trends(
                args.db, args.subject, _parse_day(args.start), _parse_day(args.end), args.out
            )
        elif args.cmd == "backup":
            backup_db(args.db, args.out)
        elif args.cmd == "restore":
            restore_db(args.src, args.db)
        elif args.cmd == "convert":
            if args.unit == "kg":
                print(f"{args.weight} kg = {WeightConverter.kg_to_lb(args.weight)} lb")
            else:
                print(f"{args.weight} lb = {WeightConverter.lb_to_kg(args.weight)} kg")
    except TrainingError as e:
        print(f"error: {e}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
