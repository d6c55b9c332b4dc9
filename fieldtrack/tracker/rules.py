"""Validation and classification rules for achievements and tasks."""

import math
from datetime import date
from numbers import Real

from ..sync.errors import ValidationError
from .models import RiskLevel, Task, TaskStatus

VALUE_CEILING = 1_000_000
TARGET_TOLERANCE = 1.10

# Percentage points behind the expected trajectory
HIGH_RISK_GAP = 20
MEDIUM_RISK_GAP = 10


def validate_value(value, ceiling: float = VALUE_CEILING) -> float:
    """
    Check an achievement value.

    Args:
        value: Value entered by the user
        ceiling: Absolute sanity ceiling

    Returns:
        The value as a float

    Raises:
        ValidationError: Not a finite number, negative, or above the ceiling
    """
    if isinstance(value, bool) or not isinstance(value, Real):
        raise ValidationError(f"Value must be a number, got {value!r}")

    number = float(value)
    if not math.isfinite(number):
        raise ValidationError("Value must be a finite number")
    if number < 0:
        raise ValidationError(f"Value must not be negative, got {number:g}")
    if number > ceiling:
        raise ValidationError(f"Value {number:g} exceeds the maximum of {ceiling:g}")
    return number


def requires_confirmation(
    projected_total: float, total_target: float, tolerance: float = TARGET_TOLERANCE
) -> bool:
    """Whether a projected total goes past the tolerated share of the target."""
    return projected_total > total_target * tolerance


def expected_progress(task: Task, as_of: date) -> float:
    """
    Calculate the progress expected by a date along the planned window.

    Args:
        task: Task with planned start and end dates
        as_of: Date to evaluate

    Returns:
        Expected progress percentage (0-100)

    Example:
        10-day window, as_of = start + 4 days
        = 4 / 10 * 100 = 40.0
    """
    total_days = max(1, (task.end_date - task.start_date).days)
    elapsed_days = (as_of - task.start_date).days
    elapsed_days = max(0, min(elapsed_days, total_days))
    return elapsed_days / total_days * 100


def classify_risk(task: Task, as_of: date) -> RiskLevel:
    """
    Classify schedule risk for a task.

    Overdue unfinished work is always critical. Otherwise the gap between
    expected and actual progress decides.

    Args:
        task: Task snapshot
        as_of: Date to evaluate

    Returns:
        RiskLevel
    """
    if as_of > task.end_date and task.status != TaskStatus.COMPLETED:
        return RiskLevel.CRITICAL

    expected = expected_progress(task, as_of)
    actual = task.progress

    if actual < expected - HIGH_RISK_GAP:
        return RiskLevel.HIGH
    elif actual < expected - MEDIUM_RISK_GAP:
        return RiskLevel.MEDIUM
    else:
        return RiskLevel.LOW


def display_status(task: Task, today: date) -> str:
    """
    Human-readable status label for a task card.

    Returns:
        "Completed", "In Progress", "Overdue", "Pending (Overdue)" or "Not Started"
    """
    if task.actual_end_date:
        return "Completed"
    if task.actual_start_date:
        return "Overdue" if today > task.end_date else "In Progress"
    return "Pending (Overdue)" if today > task.start_date else "Not Started"
