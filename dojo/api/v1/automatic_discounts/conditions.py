"""
Rule conditions. Stored as a JSON object on the rule ({"belt_rank": "yellow",
"min_family_size": 2, ...}); parsed into typed conditions when a rule is saved and
again when it is evaluated. Every condition present must pass.
"""

from typing import Any, Dict, List, NamedTuple, Optional, Union

from fastapi import status

from dojo.core.exceptions import ServiceError


class BeltRankCondition(NamedTuple):
    """Student's most recent belt award equals belt_rank."""

    belt_rank: str


class MinFamilySizeCondition(NamedTuple):
    """Family has at least min_family_size active students."""

    min_family_size: int


class AttendanceCountCondition(NamedTuple):
    """Student has at least attendance_count attendance records."""

    attendance_count: int


Condition = Union[BeltRankCondition, MinFamilySizeCondition, AttendanceCountCondition]


def _invalid(message: str) -> ServiceError:
    return ServiceError(message, status.HTTP_400_BAD_REQUEST)


def _parse_count(key: str, value: Any, minimum: int) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise _invalid(f"Condition '{key}' must be an integer")
    if value < minimum:
        raise _invalid(f"Condition '{key}' must be at least {minimum}")
    return value


def _parse_belt_rank(value: Any) -> BeltRankCondition:
    if not isinstance(value, str) or not value.strip():
        raise _invalid("Condition 'belt_rank' must be a non-empty string")
    return BeltRankCondition(value.strip())


def _parse_min_family_size(value: Any) -> MinFamilySizeCondition:
    return MinFamilySizeCondition(_parse_count("min_family_size", value, 1))


def _parse_attendance_count(value: Any) -> AttendanceCountCondition:
    return AttendanceCountCondition(_parse_count("attendance_count", value, 0))


CONDITION_PARSERS = {
    "belt_rank": _parse_belt_rank,
    "min_family_size": _parse_min_family_size,
    "attendance_count": _parse_attendance_count,
}


def parse_conditions(raw: Optional[Dict[str, Any]]) -> List[Condition]:
    """Typed conditions from the stored JSON; unknown keys and bad values raise ServiceError (400)."""
    if not raw:
        return []
    if not isinstance(raw, dict):
        raise _invalid("Conditions must be an object")
    unknown = sorted(set(raw) - set(CONDITION_PARSERS))
    if unknown:
        raise _invalid(f"Unknown rule condition(s): {', '.join(unknown)}")
    return [CONDITION_PARSERS[key](value) for key, value in raw.items() if value is not None]


def conditions_to_json(conditions: List[Condition]) -> Optional[Dict[str, Any]]:
    if not conditions:
        return None
    out: Dict[str, Any] = {}
    for condition in conditions:
        out.update(condition._asdict())
    return out
