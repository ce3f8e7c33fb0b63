"""
Age and weight resolution for dose calculation
"""

import math
import logging
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Optional, Union

from .errors import invalid_birth_date_error
from .schema import EngineSettings, Patient

logger = logging.getLogger(__name__)

DateLike = Union[date, datetime, str]

@dataclass(frozen=True)
class PatientDemographics:
    age_years: int
    weight_kg: Optional[float]
    is_pediatric: bool
    is_geriatric: bool

def _to_date(value: Any) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str) and value.strip():
        text = value.strip()
        if text.endswith('Z'):
            text = text[:-1] + '+00:00'
        try:
            return datetime.fromisoformat(text).date()
        except ValueError as e:
            raise invalid_birth_date_error(value, e)
    raise invalid_birth_date_error(value)

def calculate_age(date_of_birth: DateLike, now: Optional[DateLike] = None) -> int:
    """
    Whole years between date_of_birth and now.

    One year is subtracted when now's month/day falls before the birth
    month/day. A birth date that cannot be parsed, or lies after now,
    raises ValidationError instead of yielding a meaningless age.
    """
    born = _to_date(date_of_birth)
    today = _to_date(now) if now is not None else date.today()

    if born > today:
        raise invalid_birth_date_error(date_of_birth)

    age = today.year - born.year
    if (today.month, today.day) < (born.month, born.day):
        age -= 1
    return age

def resolve_weight(value: Any) -> Optional[float]:
    """Weight in kg if present and a finite positive number, else None"""
    if value is None or isinstance(value, bool):
        return None
    try:
        weight = float(value)
    except (TypeError, ValueError):
        logger.warning(f"Ignoring non-numeric patient weight: {value!r}")
        return None
    if not math.isfinite(weight) or weight <= 0:
        logger.warning(f"Ignoring out-of-range patient weight: {value!r}")
        return None
    return weight

def resolve_demographics(
    patient: Patient,
    now: Optional[DateLike] = None,
    settings: Optional[EngineSettings] = None
) -> PatientDemographics:
    settings = settings or EngineSettings()
    age = calculate_age(patient.date_of_birth, now)
    return PatientDemographics(
        age_years=age,
        weight_kg=resolve_weight(patient.weight),
        is_pediatric=age < settings.pediatric_age_limit,
        is_geriatric=age >= settings.geriatric_age_threshold
    )
