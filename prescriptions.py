from __future__ import annotations

import json
from typing import Callable, Iterable, Optional

from algorithms.tempo_parser import TempoParser
from algorithms.weight_converter import WeightConverter
from errors import ValidationError
from models import (
    AdvancedPrescription,
    Prescription,
    SetType,
    SimplePrescription,
    WeightUnit,
    parse_enum,
)


def straight_sets(sets: int, reps: int, rest_seconds: int) -> AdvancedPrescription:
    return AdvancedPrescription(
        set_type=SetType.STRAIGHT_SETS,
        sets=sets,
        target_reps=reps,
        rest_time_seconds=rest_seconds,
    )


def emom(interval_minutes: int, target_reps: int, total_minutes: int) -> AdvancedPrescription:
    return AdvancedPrescription(
        set_type=SetType.EMOM,
        emom_interval_minutes=interval_minutes,
        emom_target_reps=target_reps,
        total_duration_seconds=total_minutes * 60,
    )


def tabata(rounds: int = 8, work_seconds: int = 20, rest_seconds: int = 10) -> AdvancedPrescription:
    return AdvancedPrescription(
        set_type=SetType.TABATA,
        tabata_rounds=rounds,
        tabata_work_seconds=work_seconds,
        tabata_rest_seconds=rest_seconds,
        total_duration_seconds=rounds * (work_seconds + rest_seconds),
    )


def superset(position: int, sets: int, reps: int, rest_seconds: int) -> AdvancedPrescription:
    return AdvancedPrescription(
        set_type=SetType.SUPERSET,
        superset_position=position,
        sets=sets,
        target_reps=reps,
        rest_time_seconds=rest_seconds,
    )


def drop_set(
    sets: int, reps: int, stages: int, reductions: Iterable[str]
) -> AdvancedPrescription:
    return AdvancedPrescription(
        set_type=SetType.DROP_SET,
        sets=sets,
        target_reps=reps,
        drop_set_stages=stages,
        drop_set_reductions=list(reductions),
    )


def circuit(
    position: int,
    reps: int | None = None,
    work_seconds: int | None = None,
    rest_seconds: int | None = None,
) -> AdvancedPrescription:
    return AdvancedPrescription(
        set_type=SetType.CIRCUIT,
        circuit_position=position,
        target_reps=reps,
        work_time_seconds=work_seconds,
        rest_time_seconds=rest_seconds,
    )


def cluster(
    sets: int, cluster_reps: int, cluster_rest_seconds: int, clusters: int | None = None
) -> AdvancedPrescription:
    return AdvancedPrescription(
        set_type=SetType.CLUSTER_SET,
        sets=sets,
        cluster_reps=cluster_reps,
        cluster_rest_seconds=cluster_rest_seconds,
        target_reps=cluster_reps * clusters if clusters else None,
    )


def rest_pause(
    sets: int, reps: int, rest_pause_reps: int, rest_pause_seconds: int = 15
) -> AdvancedPrescription:
    return AdvancedPrescription(
        set_type=SetType.REST_PAUSE,
        sets=sets,
        target_reps=reps,
        rest_pause_reps=rest_pause_reps,
        rest_pause_seconds=rest_pause_seconds,
    )


def amrap(duration_seconds: int, reps: int | None = None) -> AdvancedPrescription:
    return AdvancedPrescription(
        set_type=SetType.AMRAP,
        total_duration_seconds=duration_seconds,
        target_reps=reps,
    )


def _require(condition: bool, message: str) -> None:
    if not condition:
        raise ValidationError(message)


def _positive(value: Optional[float]) -> bool:
    return value is not None and value > 0


def _validate_straight(p: AdvancedPrescription) -> None:
    if p.sets is not None:
        _require(p.sets > 0, "sets must be positive")


def _validate_superset(p: AdvancedPrescription) -> None:
    _require(
        p.superset_position is None or p.superset_position >= 1,
        "superset_position must be at least 1",
    )


def _validate_drop_set(p: AdvancedPrescription) -> None:
    _require(
        p.drop_set_stages is not None and p.drop_set_stages >= 1,
        "drop_set_stages must be at least 1",
    )
    _require(
        len(p.drop_set_reductions) == p.drop_set_stages,
        "drop_set_reductions must have one entry per stage",
    )


def _validate_rest_pause(p: AdvancedPrescription) -> None:
    _require(_positive(p.rest_pause_reps), "rest_pause_reps must be positive")
    if p.rest_pause_seconds is not None:
        _require(p.rest_pause_seconds >= 0, "rest_pause_seconds must not be negative")


def _validate_cluster(p: AdvancedPrescription) -> None:
    _require(_positive(p.cluster_reps), "cluster_reps must be positive")
    _require(
        p.cluster_rest_seconds is None or p.cluster_rest_seconds >= 0,
        "cluster_rest_seconds must not be negative",
    )


def _validate_pyramid(p: AdvancedPrescription) -> None:
    if not p.pyramid_structure:
        return
    parts = p.pyramid_structure.split("-")
    _require(
        all(part.strip().isdigit() for part in parts),
        f"invalid pyramid structure: {p.pyramid_structure}",
    )


def _validate_circuit(p: AdvancedPrescription) -> None:
    _require(
        p.circuit_position is None or p.circuit_position >= 1,
        "circuit_position must be at least 1",
    )


def _validate_emom(p: AdvancedPrescription) -> None:
    _require(_positive(p.emom_interval_minutes), "emom_interval_minutes must be positive")


def _validate_tabata(p: AdvancedPrescription) -> None:
    _require(_positive(p.tabata_rounds), "tabata_rounds must be positive")
    for name in ("tabata_work_seconds", "tabata_rest_seconds"):
        value = getattr(p, name)
        _require(value is None or value > 0, f"{name} must be positive")


def _validate_timed(p: AdvancedPrescription) -> None:
    if p.total_duration_seconds is not None:
        _require(p.total_duration_seconds > 0, "total_duration_seconds must be positive")


def _validate_isometric(p: AdvancedPrescription) -> None:
    if p.work_time_seconds is not None:
        _require(p.work_time_seconds > 0, "work_time_seconds must be positive")


def _validate_complex(p: AdvancedPrescription) -> None:
    _require(
        p.complex_position is None or p.complex_position >= 1,
        "complex_position must be at least 1",
    )


SET_TYPE_VALIDATORS: dict[SetType, Callable[[AdvancedPrescription], None]] = {
    SetType.STRAIGHT_SETS: _validate_straight,
    SetType.SUPERSET: _validate_superset,
    SetType.TRISET: _validate_superset,
    SetType.GIANT_SET: _validate_superset,
    SetType.DROP_SET: _validate_drop_set,
    SetType.MECHANICAL_DROP_SET: _validate_drop_set,
    SetType.REST_PAUSE: _validate_rest_pause,
    SetType.CLUSTER_SET: _validate_cluster,
    SetType.PYRAMID: _validate_pyramid,
    SetType.REVERSE_PYRAMID: _validate_pyramid,
    SetType.CIRCUIT: _validate_circuit,
    SetType.EMOM: _validate_emom,
    SetType.TABATA: _validate_tabata,
    SetType.AMRAP: _validate_timed,
    SetType.FOR_TIME: _validate_timed,
    SetType.ISOMETRIC: _validate_isometric,
    SetType.COMPLEX: _validate_complex,
}


def _validate_common(p: AdvancedPrescription) -> None:
    if p.min_reps is not None and p.max_reps is not None:
        _require(p.min_reps <= p.max_reps, "min_reps must not exceed max_reps")
    if p.target_rpe is not None:
        _require(1 <= p.target_rpe <= 10, "target_rpe must be between 1 and 10")
    if p.percentage_1rm is not None:
        _require(0 < p.percentage_1rm <= 100, "percentage_1rm must be within (0, 100]")
    if p.weight is not None:
        _require(p.weight >= 0, "weight must not be negative")
    parse_enum(WeightUnit, p.weight_unit)
    _require(TempoParser.is_valid(p.tempo), f"invalid tempo: {p.tempo}")
    if p.week_start is not None and p.week_end is not None:
        _require(p.week_start <= p.week_end, "week_start must not exceed week_end")


def validate(prescription: Prescription) -> Prescription:
    """Check ``prescription`` against its declared set type."""
    if isinstance(prescription, SimplePrescription):
        _require(TempoParser.is_valid(prescription.tempo), f"invalid tempo: {prescription.tempo}")
        if prescription.rest_seconds is not None:
            _require(prescription.rest_seconds >= 0, "rest_seconds must not be negative")
        if prescription.week_start is not None and prescription.week_end is not None:
            _require(
                prescription.week_start <= prescription.week_end,
                "week_start must not exceed week_end",
            )
        return prescription
    _validate_common(prescription)
    SET_TYPE_VALIDATORS[prescription.set_type](prescription)
    return prescription


def resolve(simple_json: str | None, advanced_json: str | None) -> Prescription:
    """Return the active prescription stored for an item.

    An advanced prescription supersedes a legacy simple one.
    """
    if advanced_json:
        return AdvancedPrescription.from_dict(json.loads(advanced_json))
    if simple_json:
        return SimplePrescription.from_dict(json.loads(simple_json))
    return SimplePrescription()


def from_payload(data: dict) -> Prescription:
    """Build a prescription from a request body with a ``kind`` key."""
    data = dict(data)
    kind = data.pop("kind", "advanced")
    if kind == "simple":
        return SimplePrescription.from_dict(data)
    if kind == "advanced":
        return AdvancedPrescription.from_dict(data)
    raise ValidationError(f"unknown prescription kind: {kind}")


def resolve_load(prescription: AdvancedPrescription, one_rep_max: float | None) -> float | None:
    """Absolute load for ``prescription``, using ``one_rep_max`` for %1RM entries."""
    if prescription.weight is not None:
        return prescription.weight
    if prescription.percentage_1rm is None or one_rep_max is None:
        return None
    return WeightConverter.load_from_percentage(one_rep_max, prescription.percentage_1rm)
