"""Schedule engine tests"""
from datetime import datetime, timedelta, timezone

import pytest

from conftest import JAN_1, make_machine
from machinehub.errors import ConfigurationError, ValidationError
from machinehub.schemas.machines import EquipmentType, IntervalSpec
from machinehub.services.schedule import (
    advance,
    coerce_equipment_type,
    days_until_due,
    default_interval,
    ensure_schedule,
    find_schedule,
    is_overdue,
    load_interval_overrides,
    new_schedule,
)


def test_default_intervals():
    assert default_interval(EquipmentType.crane, overrides={}) == IntervalSpec.named("biweekly")
    for t in (EquipmentType.truck, EquipmentType.winch, EquipmentType.hooklift):
        assert default_interval(t, overrides={}) == IntervalSpec.named("monthly")


def test_overrides_replace_defaults():
    overrides = load_interval_overrides('{"winch": "quarterly", "truck": {"period": "custom", "length": 6, "unit": "weeks"}}')
    assert default_interval(EquipmentType.winch, overrides) == IntervalSpec.named("quarterly")
    assert default_interval(EquipmentType.truck, overrides) == IntervalSpec.custom(6, "weeks")
    assert default_interval(EquipmentType.crane, overrides) == IntervalSpec.named("biweekly")


@pytest.mark.parametrize(
    "raw",
    [
        "{not json",
        '["weekly"]',
        '{"forklift": "weekly"}',
        '{"truck": "sometimes"}',
        '{"truck": {"period": "custom", "length": 0, "unit": "days"}}',
    ],
)
def test_malformed_overrides_raise(raw):
    with pytest.raises(ConfigurationError):
        load_interval_overrides(raw)


def test_blank_overrides_are_empty():
    assert load_interval_overrides("") == {}
    assert load_interval_overrides("{}") == {}


def test_new_schedule_bootstraps_next_due():
    schedule = new_schedule(EquipmentType.crane, created_at=JAN_1, overrides={})
    assert schedule.next_due == JAN_1 + timedelta(days=14)
    assert schedule.last_performed is None
    assert schedule.task_description == "Routine maintenance of crane"


def test_new_schedule_with_explicit_interval():
    schedule = new_schedule(EquipmentType.truck, created_at=JAN_1, interval={"period": "custom", "length": 2, "unit": "months"})
    assert schedule.next_due == JAN_1 + timedelta(days=60)


def test_advance_rolls_forward_from_performed_date():
    schedule = new_schedule(EquipmentType.truck, created_at=JAN_1, overrides={})
    performed = datetime(2024, 3, 10, 8, 30, tzinfo=timezone.utc)
    advanced = advance(schedule, performed)

    assert advanced.last_performed == performed
    assert advanced.next_due == performed + timedelta(days=30)
    assert advanced.id == schedule.id
    assert advanced.interval == schedule.interval
    # the input schedule is untouched
    assert schedule.last_performed is None


def test_ensure_schedule_is_idempotent():
    machine = make_machine(EquipmentType.crane)
    machine, first, created = ensure_schedule(machine, EquipmentType.crane, now=JAN_1, overrides={})
    assert created is True
    assert len(machine.maintenance_schedules) == 1

    again, second, created_again = ensure_schedule(machine, EquipmentType.crane, now=JAN_1 + timedelta(days=3), overrides={})
    assert created_again is False
    assert again is machine
    assert second == first
    assert len(again.maintenance_schedules) == 1
    assert find_schedule(again, "crane") == first


def test_ensure_schedule_keeps_one_per_equipment_type():
    machine = make_machine(EquipmentType.crane, EquipmentType.truck)
    machine, _, _ = ensure_schedule(machine, EquipmentType.crane, now=JAN_1, overrides={})
    machine, _, _ = ensure_schedule(machine, EquipmentType.truck, now=JAN_1, overrides={})
    machine, _, _ = ensure_schedule(machine, EquipmentType.crane, now=JAN_1, overrides={})
    types = [s.equipment_type for s in machine.maintenance_schedules]
    assert sorted(t.value for t in types) == ["crane", "truck"]


def test_overdue_and_days_until_due():
    schedule = new_schedule(EquipmentType.crane, created_at=JAN_1, overrides={})
    assert days_until_due(schedule, now=JAN_1) == 14
    assert not is_overdue(schedule, now=JAN_1 + timedelta(days=13))
    assert is_overdue(schedule, now=JAN_1 + timedelta(days=15))


def test_unknown_equipment_type_raises_validation_error():
    assert coerce_equipment_type("winch") == EquipmentType.winch
    with pytest.raises(ValidationError):
        default_interval("boat", overrides={})
    with pytest.raises(ValidationError):
        new_schedule("boat", created_at=JAN_1, overrides={})
    with pytest.raises(ValidationError):
        find_schedule(make_machine(), "boat")
