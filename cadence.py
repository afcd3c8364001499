"""Cadence period math and per-period progress for goals."""
import calendar
import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional

from models import (
    ActivityCompletion,
    CadencePeriod,
    CadenceProgress,
    Goal,
    PeriodBounds,
    assume_utc,
)

logger = logging.getLogger(__name__)

PERIOD_NAMES = {
    CadencePeriod.DAY: "today",
    CadencePeriod.WEEK: "this week",
    CadencePeriod.MONTH: "this month",
}


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def resolve_now(now: Optional[datetime] = None) -> datetime:
    """`now`, or the current UTC time. Naive values are read as UTC, like stored records."""
    return assume_utc(now or utcnow())


def _start_of_day(moment: datetime) -> datetime:
    return moment.replace(hour=0, minute=0, second=0, microsecond=0)


def _end_of_day(moment: datetime) -> datetime:
    return moment.replace(hour=23, minute=59, second=59, microsecond=999999)


def get_current_period_bounds(period: CadencePeriod, reference: Optional[datetime] = None) -> PeriodBounds:
    """Return the inclusive [start, end] of the period containing `reference`.

    Works on the wall-clock fields of `reference` as given. Weeks start on
    Sunday and months follow the calendar.
    """
    reference = reference or utcnow()
    period = CadencePeriod(period)

    if period == CadencePeriod.DAY:
        start = _start_of_day(reference)
        end = _end_of_day(reference)
    elif period == CadencePeriod.WEEK:
        # datetime.weekday() has Monday=0; shift so Sunday is day 0
        days_since_sunday = (reference.weekday() + 1) % 7
        start = _start_of_day(reference - timedelta(days=days_since_sunday))
        end = _end_of_day(start + timedelta(days=6))
    else:
        last_day = calendar.monthrange(reference.year, reference.month)[1]
        start = _start_of_day(reference.replace(day=1))
        end = _end_of_day(reference.replace(day=last_day))

    return PeriodBounds(start=start, end=end)


def period_name(period: CadencePeriod) -> str:
    return PERIOD_NAMES[CadencePeriod(period)]


def calculate_cadence_progress(goal: Goal, now: Optional[datetime] = None) -> Optional[CadenceProgress]:
    """Progress toward the goal's cadence target in the current period.

    Returns None when the goal has no cadence. Always recomputed from the
    completion list since it changes between calls.
    """
    if not goal.cadence:
        return None

    bounds = get_current_period_bounds(goal.cadence.period, resolve_now(now))
    completed = sum(
        1 for c in goal.activityCompletions
        if bounds.start <= c.timestamp <= bounds.end
    )
    target = goal.cadence.frequency

    return CadenceProgress(
        periodStart=bounds.start,
        periodEnd=bounds.end,
        completedCount=completed,
        targetCount=target,
        isOnTrack=completed >= target,
        remainingCount=max(0, target - completed),
        completionRate=min(1.0, completed / target) if target > 0 else 1.0,
    )


def has_met_cadence_target(goal: Goal, now: Optional[datetime] = None) -> bool:
    progress = calculate_cadence_progress(goal, now)
    # Goals without a cadence have nothing to meet
    return progress.isOnTrack if progress else True


def get_cadence_progress_summary(goal: Goal, now: Optional[datetime] = None) -> Optional[str]:
    progress = calculate_cadence_progress(goal, now)
    if not progress:
        return None

    name = period_name(goal.cadence.period)
    if progress.isOnTrack:
        return f"✓ Completed {progress.completedCount}/{progress.targetCount} {name}"
    return f"{progress.completedCount}/{progress.targetCount} {name} ({progress.remainingCount} remaining)"


def record_activity_completion(
    goal: Goal,
    description: str,
    completed_at: Optional[datetime] = None,
    original_message: Optional[str] = None,
    now: Optional[datetime] = None,
) -> ActivityCompletion:
    """Append a completion to `goal`, attributed to the period it happened in.

    Also advances the first unfinished milestone, if any.
    """
    if not description or not description.strip():
        raise ValueError("A description of what was completed is required")

    now = resolve_now(now)
    completed_at = assume_utc(completed_at or now)
    period = goal.cadence.period if goal.cadence else CadencePeriod.WEEK
    bounds = get_current_period_bounds(period, completed_at)

    completion = ActivityCompletion(
        id=str(uuid.uuid4()),
        timestamp=completed_at,
        description=description.strip(),
        matchedFromMessage=original_message,
        periodStart=bounds.start,
        periodEnd=bounds.end,
        createdAt=now,
    )
    goal.activityCompletions.append(completion)
    goal.updatedAt = now

    milestone = next((m for m in goal.milestones if m.completedAt is None), None)
    if milestone:
        milestone.current += 1
        if milestone.current >= milestone.target:
            milestone.completedAt = now
            logger.info("Milestone %r reached for %r", milestone.title, goal.title)

    logger.debug("Logged activity for %r: %s", goal.title, completion.description)
    return completion
