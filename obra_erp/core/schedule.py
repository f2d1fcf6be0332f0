"""
Working-day arithmetic and task dependency validation for project schedules.
"""

from dataclasses import dataclass
from datetime import date, datetime, timedelta

from obra_erp.core.models import DependencyType

# weekday() numbers skipped for each working-week length
_NON_WORKING: dict[int, set[int]] = {
    5: {5, 6},  # Saturday, Sunday
    6: {6},  # Sunday
    7: set(),
}


def _as_date(value: date | datetime) -> date:
    return value.date() if isinstance(value, datetime) else value


def is_working_day(day: date, working_days_per_week: int = 5) -> bool:
    skipped = _NON_WORKING.get(working_days_per_week, _NON_WORKING[5])
    return day.weekday() not in skipped


def add_working_days(start: date | datetime, days: int, working_days_per_week: int = 5) -> date:
    """
    Move `days` working days from `start` (backwards when negative).

    The start date itself is not counted; 0 returns it unchanged.
    """
    current = _as_date(start)
    if days == 0:
        return current
    step = timedelta(days=1 if days > 0 else -1)
    remaining = abs(days)
    while remaining:
        current += step
        if is_working_day(current, working_days_per_week):
            remaining -= 1
    return current


def working_days_between(start: date, end: date, working_days_per_week: int = 5) -> int:
    """Working days in [start, end], inclusive on both ends."""
    if end < start:
        return 0
    count = 0
    current = start
    while current <= end:
        if is_working_day(current, working_days_per_week):
            count += 1
        current += timedelta(days=1)
    return count


@dataclass
class Dependency:
    """The other end of a dependency, seen from the task being edited."""

    planned_start_date: date
    planned_end_date: date
    dependency_type: DependencyType
    lag_days: int = 0
    code: str | None = None


def _lag_label(dep_type: DependencyType, lag: int) -> str:
    return f"{dep_type.value} + {lag} días" if lag else dep_type.value


def _fmt(day: date) -> str:
    return day.strftime("%d/%m/%Y")


def validate_task_dates_against_dependencies(
    new_start: date | datetime,
    new_end: date | datetime,
    predecessors: list[Dependency],
    successors: list[Dependency],
    working_days_per_week: int = 5,
) -> tuple[bool, str | None]:
    """
    Check proposed task dates against every predecessor and successor.

    FS/FF use the predecessor end as reference, SS/SF its start. FS/SS
    constrain the start of the later task, FF/SF its end. Comparison is
    by calendar day.

    Returns:
        (True, None) when valid, otherwise (False, message)
    """
    start = _as_date(new_start)
    end = _as_date(new_end)

    for pred in predecessors:
        dep_type = DependencyType(pred.dependency_type)
        uses_end = dep_type in (DependencyType.FS, DependencyType.FF)
        reference = _as_date(pred.planned_end_date if uses_end else pred.planned_start_date)
        min_date = add_working_days(reference, pred.lag_days, working_days_per_week)
        label = _lag_label(dep_type, pred.lag_days)

        if dep_type in (DependencyType.FS, DependencyType.SS):
            if start < min_date:
                return False, (
                    f"La fecha de inicio no puede ser anterior al requisito de la dependencia "
                    f"({label}). Debe ser al menos {_fmt(min_date)}."
                )
        elif end < min_date:
            return False, (
                f"La fecha de fin no puede ser anterior al requisito de la dependencia "
                f"({label}). Debe ser al menos {_fmt(min_date)}."
            )

    for succ in successors:
        dep_type = DependencyType(succ.dependency_type)
        uses_end = dep_type in (DependencyType.FS, DependencyType.FF)
        reference = end if uses_end else start
        min_date = add_working_days(reference, succ.lag_days, working_days_per_week)
        label = _lag_label(dep_type, succ.lag_days)

        if dep_type in (DependencyType.FS, DependencyType.SS):
            if _as_date(succ.planned_start_date) < min_date:
                return False, (
                    f"La tarea sucesora no puede iniciar antes de lo que permite esta tarea "
                    f"({label}). La dependencia quedaría incumplida."
                )
        elif _as_date(succ.planned_end_date) < min_date:
            return False, (
                f"La tarea sucesora no puede terminar antes de lo que permite esta tarea "
                f"({label}). La dependencia quedaría incumplida."
            )

    return True, None
