"""
Interval resolution for maintenance schedules.
Turns a named period or a custom length/unit into a number of days.
"""
from typing import Any, Dict, Union

import structlog
from pydantic import ValidationError as PydanticValidationError

from ..errors import ConfigurationError
from ..schemas.machines import IntervalPeriod, IntervalSpec, IntervalUnit


logger = structlog.get_logger(__name__)

# Every month-based interval uses this conversion
DAYS_PER_MONTH = 30

NAMED_PERIOD_DAYS: Dict[IntervalPeriod, int] = {
    IntervalPeriod.daily: 1,
    IntervalPeriod.weekly: 7,
    IntervalPeriod.biweekly: 14,
    IntervalPeriod.monthly: DAYS_PER_MONTH,
    IntervalPeriod.quarterly: 3 * DAYS_PER_MONTH,
    IntervalPeriod.yearly: 365,
}

UNIT_DAYS: Dict[IntervalUnit, int] = {
    IntervalUnit.days: 1,
    IntervalUnit.weeks: 7,
    IntervalUnit.months: DAYS_PER_MONTH,
}


def parse_interval(value: Union[str, Dict[str, Any], IntervalSpec]) -> IntervalSpec:
    """
    Normalize an interval given as a period name, a dict or an IntervalSpec.

    Raises:
        ConfigurationError: the value does not describe a known interval
    """
    if isinstance(value, IntervalSpec):
        return value
    try:
        if isinstance(value, str):
            return IntervalSpec.named(value.strip().lower())
        if isinstance(value, dict):
            return IntervalSpec.model_validate(value)
    except (ValueError, PydanticValidationError) as e:
        logger.warning("interval_parse_failed", value=value, error=str(e))
        raise ConfigurationError(f"Unrecognized interval: {value!r}") from e
    raise ConfigurationError(f"Unrecognized interval: {value!r}")


def resolve(spec: Union[str, Dict[str, Any], IntervalSpec]) -> int:
    """
    Return the interval length in days.

    Args:
        spec: named period or custom spec

    Returns:
        Number of days, always positive

    Raises:
        ConfigurationError: unknown period, unknown unit or non-positive custom length
    """
    spec = parse_interval(spec)

    if spec.period != IntervalPeriod.custom:
        days = NAMED_PERIOD_DAYS.get(spec.period)
        if days is None:
            raise ConfigurationError(f"Unrecognized interval period: {spec.period!r}")
        return days

    length = spec.length
    if isinstance(length, bool) or not isinstance(length, int) or length <= 0:
        logger.warning("interval_invalid_length", length=length, unit=spec.unit)
        raise ConfigurationError(f"Custom interval length must be a positive integer, got {length!r}")
    if spec.unit is None:
        raise ConfigurationError("Custom interval requires a unit (days, weeks or months)")
    return length * UNIT_DAYS[spec.unit]
