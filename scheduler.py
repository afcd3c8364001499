import logging
import random
import uuid
from datetime import datetime
from typing import Awaitable, Callable, Dict, List, Optional, Tuple
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

import config
from cadence import get_current_period_bounds, resolve_now
from models import (
    CadencePeriod,
    Goal,
    GoalStatus,
    NudgeChannel,
    NudgeRecord,
    NudgeStatus,
    SweepResult,
    UserPreferences,
)
from nudge import (
    FREQUENCY_THRESHOLDS,
    determine_nudge_type,
    elapsed_days,
    generate_sms_message,
    seconds_since_last_nudge,
    transition_nudge,
    update_goal_nudge_stats,
)

logger = logging.getLogger(__name__)

# Transport collaborator: delivers one SMS, returns whether it went out
SendFn = Callable[[NudgeRecord, Goal], bool]
# Persistence collaborators; the snapshot's nudge records must include today's SMS deliveries
LoadSnapshotFn = Callable[[], Awaitable[Tuple[List[Goal], UserPreferences, List[NudgeRecord]]]]
SaveFn = Callable[[List[Goal], List[NudgeRecord]], Awaitable[None]]


def _minutes(hhmm: str) -> int:
    hours, minutes = hhmm.split(":")
    return int(hours) * 60 + int(minutes)


def is_quiet_hours(preferences: UserPreferences, now: Optional[datetime] = None) -> bool:
    """Whether `now` falls in the user's quiet hours, in their own timezone.

    Overnight windows such as 22:00-08:00 wrap past midnight.
    """
    quiet = preferences.sms.quietHours
    if not quiet.enabled:
        return False

    try:
        local = resolve_now(now).astimezone(ZoneInfo(quiet.timezone))
        start = _minutes(quiet.start)
        end = _minutes(quiet.end)
    except (ZoneInfoNotFoundError, ValueError) as e:
        logger.warning("Could not evaluate quiet hours, allowing SMS: %s", e)
        return False

    current = local.hour * 60 + local.minute
    if start > end:
        return current >= start or current < end
    return start <= current < end


def count_sms_sent_today(nudges: List[NudgeRecord], preferences: UserPreferences, now: Optional[datetime] = None) -> int:
    """SMS nudges delivered since midnight in the user's timezone."""
    now = resolve_now(now)
    try:
        local = now.astimezone(ZoneInfo(preferences.sms.quietHours.timezone))
    except (ZoneInfoNotFoundError, ValueError):
        local = now
    today = get_current_period_bounds(CadencePeriod.DAY, local)
    return sum(
        1 for n in nudges
        if n.channel == NudgeChannel.SMS
        and n.deliveredAt is not None
        and today.start <= n.deliveredAt <= today.end
    )


def get_goals_due_for_sms(goals: List[Goal], preferences: UserPreferences, now: Optional[datetime] = None) -> List[Goal]:
    """Active goals whose last nudge is older than the frequency threshold."""
    if not preferences.sms.enabled or not preferences.sms.verified:
        return []

    now = resolve_now(now)
    # SMS shares the in-conversation frequency setting
    threshold = FREQUENCY_THRESHOLDS[preferences.inConversation.frequency].total_seconds()
    return [
        g for g in goals
        if g.status == GoalStatus.ACTIVE
        and g.updateSettings.enabled
        and seconds_since_last_nudge(g, now) >= threshold
    ]


def plan_sms_nudges(
    goals: List[Goal],
    preferences: UserPreferences,
    now: Optional[datetime] = None,
    rng: Optional[random.Random] = None,
    id_factory: Callable[[], str] = lambda: str(uuid.uuid4()),
    sent_today: int = 0,
) -> List[NudgeRecord]:
    """Scheduled SMS records for the due goals.

    `sent_today` SMS nudges already went out today; together with the new
    records they stay within `maxNudgesPerDay`.
    """
    now = resolve_now(now)
    rng = rng or random.Random()
    budget = max(0, preferences.defaultCadence.maxNudgesPerDay - sent_today)
    due = get_goals_due_for_sms(goals, preferences, now)[:budget]

    records = []
    for goal in due:
        nudge_type = determine_nudge_type(goal, elapsed_days(seconds_since_last_nudge(goal, now)), now)
        records.append(NudgeRecord(
            id=id_factory(),
            resolutionId=goal.id,
            channel=NudgeChannel.SMS,
            scheduledAt=now,
            status=NudgeStatus.SCHEDULED,
            type=nudge_type,
            message=generate_sms_message(nudge_type, goal.title, rng),
            createdAt=now,
        ))
    return records


def dispatch_nudges(
    records: List[NudgeRecord],
    goals: Dict[str, Goal],
    send: SendFn,
    now: Optional[datetime] = None,
    rng: Optional[random.Random] = None,
    result: Optional[SweepResult] = None,
) -> Tuple[SweepResult, List[NudgeRecord], Dict[str, Goal]]:
    """Hand scheduled SMS nudges to the transport and settle their status.

    Returns the tally, the settled records, and the goal map with nudge stats
    advanced for every delivered nudge.
    """
    now = resolve_now(now)
    result = result or SweepResult()
    goals = dict(goals)
    settled = []

    for record in records:
        result.processed += 1
        goal = goals.get(record.resolutionId)
        if goal is None:
            settled.append(transition_nudge(record, NudgeStatus.SKIPPED, now))
            result.skipped += 1
            continue

        if not record.message:
            record = record.model_copy(update={"message": generate_sms_message(record.type, goal.title, rng)})

        try:
            sent = send(record, goal)
            error = None if sent else "delivery rejected"
        except Exception as e:
            logger.exception("Error sending nudge %s", record.id)
            sent, error = False, str(e)

        if sent:
            settled.append(transition_nudge(record, NudgeStatus.DELIVERED, now))
            goals[goal.id] = update_goal_nudge_stats(goal, now)
            result.sent += 1
        else:
            settled.append(transition_nudge(record, NudgeStatus.FAILED, now))
            result.failed += 1
            result.errors.append(f"{goal.title}: {error}")

    return result, settled, goals


async def run_nudge_sweep(
    load_snapshot: LoadSnapshotFn,
    send: SendFn,
    save: SaveFn,
    now: Optional[datetime] = None,
    rng: Optional[random.Random] = None,
) -> SweepResult:
    """Deliver due SMS nudges, then schedule and deliver new ones."""
    now = resolve_now(now)
    goals, preferences, nudges = await load_snapshot()
    result = SweepResult()

    if not preferences.sms.enabled:
        logger.info("SMS not enabled, skipping nudge sweep")
        return result

    if is_quiet_hours(preferences, now):
        logger.info("Currently in quiet hours, skipping nudge sweep")
        return result

    goal_map = {g.id: g for g in goals}
    due = [
        n for n in nudges
        if n.status == NudgeStatus.SCHEDULED and n.scheduledAt <= now
    ]
    logger.info("Found %d due nudges", len(due))
    result, settled_due, goal_map = dispatch_nudges(due, goal_map, send, now, rng, result)

    sent_today = count_sms_sent_today(nudges + settled_due, preferences, now)
    planned = plan_sms_nudges(list(goal_map.values()), preferences, now, rng, sent_today=sent_today)
    logger.info("%d resolutions due for new nudge", len(planned))
    result, settled_new, goal_map = dispatch_nudges(planned, goal_map, send, now, rng, result)

    await save(list(goal_map.values()), settled_due + settled_new)
    logger.info(
        "Nudge sweep completed: %d sent, %d skipped, %d failed",
        result.sent, result.skipped, result.failed,
    )
    return result


def init_scheduler(
    load_snapshot: LoadSnapshotFn,
    send: SendFn,
    save: SaveFn,
    event_loop=None,
    start: bool = True,
) -> AsyncIOScheduler:
    """Initialize the scheduler to run the SMS nudge sweep, hourly by default."""
    scheduler = AsyncIOScheduler(event_loop=event_loop) if event_loop else AsyncIOScheduler()

    scheduler.add_job(
        run_nudge_sweep,
        CronTrigger(hour=config.SWEEP_CRON_HOUR, minute=config.SWEEP_CRON_MINUTE),
        kwargs={"load_snapshot": load_snapshot, "send": send, "save": save},
        id="nudge_sweep",
        name="Deliver scheduled SMS nudges",
        replace_existing=True,
    )

    if start:
        scheduler.start()
        logger.info("Scheduler initialized - nudge sweep runs at minute %s of hour %s",
                    config.SWEEP_CRON_MINUTE, config.SWEEP_CRON_HOUR)
    return scheduler
