import json
import os
import sys

import pytest

sys.path.append(os.path.dirname(os.path.dirname(__file__)))
import prescriptions
from errors import ValidationError
from models import (
    AdvancedPrescription,
    LoadingScheme,
    ResultType,
    SetType,
    SimplePrescription,
    SET_TYPE_RESULTS,
)


def test_every_set_type_has_a_validator_and_result_type():
    assert set(prescriptions.SET_TYPE_VALIDATORS) == set(SetType)
    assert set(SET_TYPE_RESULTS) == set(SetType)


def test_factories_validate():
    for p in (
        prescriptions.straight_sets(3, 5, 180),
        prescriptions.emom(1, 3, 12),
        prescriptions.tabata(),
        prescriptions.superset(1, 4, 8, 0),
        prescriptions.drop_set(3, 12, 3, ["20%", "20%", "20%"]),
        prescriptions.circuit(2, work_seconds=45, rest_seconds=15),
        prescriptions.cluster(4, 2, 15, clusters=3),
        prescriptions.rest_pause(2, 8, 4),
        prescriptions.amrap(1200, 5),
    ):
        assert prescriptions.validate(p) is p


def test_factory_values():
    emom = prescriptions.emom(1, 3, 12)
    assert emom.total_duration_seconds == 720
    assert emom.result_type is ResultType.EMOM
    tabata = prescriptions.tabata()
    assert (tabata.tabata_rounds, tabata.tabata_work_seconds, tabata.tabata_rest_seconds) == (8, 20, 10)
    assert tabata.total_duration_seconds == 240
    assert prescriptions.cluster(4, 2, 15, clusters=3).target_reps == 6


@pytest.mark.parametrize(
    "prescription",
    [
        AdvancedPrescription(target_rpe=11),
        AdvancedPrescription(min_reps=10, max_reps=8),
        AdvancedPrescription(percentage_1rm=120),
        AdvancedPrescription(weight=-5),
        AdvancedPrescription(weight_unit="stone"),
        AdvancedPrescription(tempo="slow"),
        AdvancedPrescription(week_start=4, week_end=2),
        AdvancedPrescription(set_type=SetType.STRAIGHT_SETS, sets=0),
        prescriptions.drop_set(3, 12, 3, ["20%", "20%"]),
        AdvancedPrescription(set_type=SetType.EMOM),
        AdvancedPrescription(set_type=SetType.TABATA, tabata_rounds=8, tabata_work_seconds=0),
        AdvancedPrescription(set_type=SetType.CLUSTER_SET),
        AdvancedPrescription(set_type=SetType.REST_PAUSE, rest_pause_reps=0),
        AdvancedPrescription(set_type=SetType.PYRAMID, pyramid_structure="21-x-9"),
        AdvancedPrescription(set_type=SetType.SUPERSET, superset_position=0),
        SimplePrescription(rest_seconds=-1),
        SimplePrescription(tempo="fast"),
    ],
)
def test_invalid_prescriptions(prescription):
    with pytest.raises(ValidationError):
        prescriptions.validate(prescription)


def test_resolve_prefers_advanced():
    simple = SimplePrescription(tempo="3010", rest_seconds=90)
    advanced = prescriptions.straight_sets(5, 5, 180)
    resolved = prescriptions.resolve(
        json.dumps(simple.to_dict()), json.dumps(advanced.to_dict())
    )
    assert isinstance(resolved, AdvancedPrescription)
    assert resolved.sets == 5
    legacy = prescriptions.resolve(json.dumps(simple.to_dict()), None)
    assert isinstance(legacy, SimplePrescription)
    assert legacy.rest_seconds == 90
    assert prescriptions.resolve(None, None) == SimplePrescription()


def test_round_trip_keeps_enums_and_tempo():
    p = AdvancedPrescription(
        set_type=SetType.EMOM,
        emom_interval_minutes=1,
        tempo="30x1",
        loading_scheme=LoadingScheme.PERCENTAGE_BASED,
    )
    restored = prescriptions.resolve(None, json.dumps(p.to_dict()))
    assert restored.set_type is SetType.EMOM
    assert restored.loading_scheme is LoadingScheme.PERCENTAGE_BASED
    assert restored.tempo_components.concentric == 1


def test_from_payload():
    simple = prescriptions.from_payload({"kind": "simple", "tempo": "3010"})
    assert isinstance(simple, SimplePrescription)
    advanced = prescriptions.from_payload({"set_type": "TABATA", "tabata_rounds": 8})
    assert advanced.set_type is SetType.TABATA
    with pytest.raises(ValidationError):
        prescriptions.from_payload({"kind": "mystery"})
    with pytest.raises(ValidationError):
        prescriptions.from_payload({"kind": "advanced", "bogus": 1})


def test_resolve_load():
    p = AdvancedPrescription(percentage_1rm=75.0)
    assert prescriptions.resolve_load(p, 200.0) == 150.0
    assert prescriptions.resolve_load(p, None) is None
    assert prescriptions.resolve_load(AdvancedPrescription(weight=60.0), 200.0) == 60.0


def test_display_helpers():
    p = AdvancedPrescription(min_reps=8, max_reps=12, tempo="3010")
    assert p.reps_display() == "8-12"
    assert p.time_per_rep() == 4
    assert AdvancedPrescription(target_reps=5).reps_display() == "5"
    assert AdvancedPrescription().reps_display() == ""
    assert SimplePrescription().kind == "simple"
    assert p.kind == "advanced"
