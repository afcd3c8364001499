"""Shared fixtures for the analytics and nudge test suite."""

import pytest
from datetime import datetime, timedelta, timezone

from models import (
    ActivityCompletion,
    Cadence,
    Goal,
    NudgeRecord,
    NudgeStatus,
    NudgeType,
    Sentiment,
    Update,
    UpdateType,
    UserPreferences,
)


@pytest.fixture
def frozen_now():
    """Fixed 'now' for deterministic tests: 2026-02-18T12:00:00Z, a Wednesday.

    The surrounding week runs Sunday 2026-02-15 to Saturday 2026-02-21.
    """
    return datetime(2026, 2, 18, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def preferences():
    return UserPreferences()


@pytest.fixture
def make_completion():
    """Factory for ActivityCompletion at a given instant."""
    _counter = 0

    def _factory(timestamp, description="Did the thing"):
        nonlocal _counter
        _counter += 1
        return ActivityCompletion(
            id=f"completion-{_counter}",
            timestamp=timestamp,
            description=description,
            periodStart=timestamp,
            periodEnd=timestamp,
            createdAt=timestamp,
        )

    return _factory


@pytest.fixture
def make_update(frozen_now):
    _counter = 0

    def _factory(created_at=None, type=UpdateType.PROGRESS, sentiment=None, content="Update"):
        nonlocal _counter
        _counter += 1
        return Update(
            id=f"update-{_counter}",
            type=type,
            content=content,
            sentiment=sentiment,
            createdAt=created_at or frozen_now,
        )

    return _factory


@pytest.fixture
def make_goal(frozen_now, make_completion):
    """Factory fixture that creates Goal instances with sensible defaults.

    Usage:
        goal = make_goal(title="Run", cadence=(3, "week"), completions=[t1, t2])
    """
    _counter = 0

    def _factory(completions=(), cadence=None, **overrides):
        nonlocal _counter
        _counter += 1
        defaults = {
            "id": f"goal-{_counter}",
            "title": f"Goal {_counter}",
            "createdAt": frozen_now - timedelta(days=60),
        }
        defaults.update(overrides)
        if cadence is not None:
            frequency, period = cadence
            defaults["cadence"] = Cadence(frequency=frequency, period=period)
        defaults["activityCompletions"] = [make_completion(t) for t in completions]
        return Goal(**defaults)

    return _factory


@pytest.fixture
def make_nudge(frozen_now):
    _counter = 0

    def _factory(goal_id="goal-1", delivered_at=None, status=NudgeStatus.DELIVERED,
                 type=NudgeType.CHECK_IN, scheduled_at=None):
        nonlocal _counter
        _counter += 1
        scheduled_at = scheduled_at or delivered_at or frozen_now
        return NudgeRecord(
            id=f"nudge-{_counter}",
            resolutionId=goal_id,
            scheduledAt=scheduled_at,
            deliveredAt=delivered_at,
            status=status,
            type=type,
            createdAt=scheduled_at,
        )

    return _factory


@pytest.fixture
def naive_goal():
    """Goal stored with timezone-naive timestamps, as some stores hand them back.

    Carries a 3/week cadence, one completion and one positive update, all
    stamped with the current wall-clock time.
    """
    wall_clock = datetime.now(timezone.utc).replace(tzinfo=None)
    return Goal(
        id="goal-naive",
        title="Stretch",
        createdAt=wall_clock - timedelta(days=10),
        cadence=Cadence(frequency=3, period="week"),
        activityCompletions=[ActivityCompletion(
            id="completion-naive",
            timestamp=wall_clock,
            description="Stretched",
            periodStart=wall_clock,
            periodEnd=wall_clock,
            createdAt=wall_clock,
        )],
        updates=[Update(
            id="update-naive",
            type=UpdateType.PROGRESS,
            content="Loosening up",
            sentiment=Sentiment.POSITIVE,
            createdAt=wall_clock,
        )],
    )
