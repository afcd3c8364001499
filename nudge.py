"""Nudge decisions and nudge records.

Decides, for one chat turn, whether to proactively ask the user about a
goal, which goal and in what tone, then turns an accepted decision into
prompt guidance and a persisted NudgeRecord.
"""
import logging
import math
import random
import uuid
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional, Set, Tuple

import config
from cadence import calculate_cadence_progress, has_met_cadence_target, resolve_now
from models import (
    CadenceProgressSnapshot,
    Goal,
    GoalStatus,
    NudgeChannel,
    NudgeContext,
    NudgeDecision,
    NudgeFrequency,
    NudgeRecord,
    NudgeStatus,
    NudgeType,
    Sentiment,
    UpdateType,
    UserPreferences,
)
from prompts import (
    CADENCE_IN_PROGRESS,
    CADENCE_NOT_STARTED,
    DEFAULT_NUDGE_PROMPT,
    DEFAULT_SMS_TEMPLATE,
    NUDGE_PROMPTS,
    SMS_TEMPLATES,
)

logger = logging.getLogger(__name__)

FREQUENCY_THRESHOLDS = {
    NudgeFrequency.GENTLE: timedelta(days=7),
    NudgeFrequency.MODERATE: timedelta(days=3),
    NudgeFrequency.PERSISTENT: timedelta(days=1),
}

STREAK_UPDATE_COUNT = 3
RECENT_UPDATE_WINDOW = timedelta(days=7)
GENTLE_NUDGE_AFTER_DAYS = 7
MILESTONE_EVERY = 5

ALLOWED_TRANSITIONS: Dict[NudgeStatus, Set[NudgeStatus]] = {
    NudgeStatus.SCHEDULED: {NudgeStatus.DELIVERED, NudgeStatus.SKIPPED, NudgeStatus.FAILED},
    NudgeStatus.DELIVERED: {NudgeStatus.RESPONDED},
    NudgeStatus.RESPONDED: set(),
    NudgeStatus.SKIPPED: set(),
    NudgeStatus.FAILED: set(),
}


class InvalidNudgeTransition(ValueError):
    def __init__(self, current: NudgeStatus, requested: NudgeStatus):
        super().__init__(f"Cannot move nudge from {current.value} to {requested.value}")
        self.current = current
        self.requested = requested


def seconds_since_last_nudge(goal: Goal, now: datetime) -> float:
    """Elapsed seconds since the goal was last nudged, infinity if never."""
    last = goal.updateSettings.lastNudgeAt
    if last is None:
        return math.inf
    return (now - last).total_seconds()


def elapsed_days(seconds: float) -> Optional[int]:
    if math.isinf(seconds):
        return None
    return math.floor(seconds / 86400)


# Decision logic

def should_nudge(
    preferences: UserPreferences,
    goals: List[Goal],
    session_nudge_count: int = 0,
    now: Optional[datetime] = None,
) -> NudgeDecision:
    """Decide whether to nudge during this chat turn, and about which goal.

    Checks run in order and the first failing one returns a "do not nudge"
    decision carrying the reason.
    """
    now = resolve_now(now)

    if not preferences.updatesEnabled:
        return NudgeDecision(shouldNudge=False, reason="Updates disabled globally")

    if not preferences.inConversation.enabled:
        return NudgeDecision(shouldNudge=False, reason="In-conversation nudges disabled")

    if session_nudge_count >= config.MAX_NUDGES_PER_SESSION:
        return NudgeDecision(shouldNudge=False, reason="Session nudge limit reached")

    active = [
        g for g in goals
        if g.status == GoalStatus.ACTIVE and g.updateSettings.enabled
    ]
    if not active:
        return NudgeDecision(shouldNudge=False, reason="No active resolutions with updates enabled")

    needing_attention = []
    for goal in active:
        if goal.cadence and has_met_cadence_target(goal, now):
            logger.debug("Skipping %r - cadence target already met for this period", goal.title)
            continue
        needing_attention.append(goal)

    if not needing_attention:
        return NudgeDecision(shouldNudge=False, reason="All resolutions with cadence have met their targets")

    threshold = FREQUENCY_THRESHOLDS[preferences.inConversation.frequency].total_seconds()
    candidates = []
    for goal in needing_attention:
        since = seconds_since_last_nudge(goal, now)
        if since >= threshold:
            candidates.append((goal, since, calculate_cadence_progress(goal, now)))

    if not candidates:
        return NudgeDecision(shouldNudge=False, reason="No resolutions due for nudge")

    def priority(candidate):
        _, since, progress = candidate
        # Furthest behind on cadence first, goals without cadence after; then longest since nudged
        urgency_key = (0, -(1 - progress.completionRate)) if progress else (1, 0)
        return urgency_key + (-since,)

    goal, since, progress = sorted(candidates, key=priority)[0]
    days_since = elapsed_days(since)
    nudge_type = determine_nudge_type(goal, days_since, now)

    snapshot = None
    if progress:
        snapshot = CadenceProgressSnapshot(
            completedCount=progress.completedCount,
            targetCount=progress.targetCount,
            remainingCount=progress.remainingCount,
            periodStart=progress.periodStart,
            periodEnd=progress.periodEnd,
        )

    decision = NudgeDecision(
        shouldNudge=True,
        resolutionId=goal.id,
        resolutionTitle=goal.title,
        type=nudge_type,
        reason="Never checked in on this resolution" if days_since is None else f"{days_since} days since last check-in",
        daysSinceLastNudge=days_since,
        cadenceProgress=snapshot,
    )
    logger.debug("Nudge selected for %r (%s): %s", goal.title, nudge_type.value, decision.reason)
    return decision


def determine_nudge_type(goal: Goal, days_since: Optional[int], now: Optional[datetime] = None) -> NudgeType:
    """Pick the tone of the nudge from the goal's recent update history.

    `days_since` is None when the goal has never been nudged.
    """
    now = resolve_now(now)
    cutoff = now - RECENT_UPDATE_WINDOW

    recent = [u for u in goal.updates if u.createdAt > cutoff]
    if len(recent) >= STREAK_UPDATE_COUNT:
        return NudgeType.STREAK

    last = goal.updates[-1] if goal.updates else None
    if last and (last.type == UpdateType.SETBACK or last.sentiment == Sentiment.STRUGGLING):
        return NudgeType.ENCOURAGEMENT

    progress_updates = sum(1 for u in goal.updates if u.type in (UpdateType.PROGRESS, UpdateType.MILESTONE))
    # One short of the next multiple of five
    if progress_updates > 0 and progress_updates % MILESTONE_EVERY == MILESTONE_EVERY - 1:
        return NudgeType.MILESTONE

    if days_since is None or days_since >= GENTLE_NUDGE_AFTER_DAYS:
        return NudgeType.GENTLE_NUDGE

    return NudgeType.CHECK_IN


# Guidance text

def _span_name(start: datetime, end: datetime) -> str:
    days = math.ceil((end - start) / timedelta(days=1))
    if days <= 1:
        return "today"
    if days <= 7:
        return "this week"
    return "this month"


def cadence_clause(progress: Optional[CadenceProgressSnapshot]) -> str:
    if not progress:
        return ""
    name = _span_name(progress.periodStart, progress.periodEnd)
    if progress.completedCount == 0:
        return CADENCE_NOT_STARTED.format(period_name=name, target=progress.targetCount)
    if progress.remainingCount > 0:
        return CADENCE_IN_PROGRESS.format(
            completed=progress.completedCount,
            target=progress.targetCount,
            period_name=name,
            remaining=progress.remainingCount,
        )
    return ""


def generate_nudge_prompt(decision: NudgeDecision, name: Optional[str] = None) -> str:
    """Guidance for the text generator describing tone and example phrasing."""
    template = NUDGE_PROMPTS.get(decision.type.value if decision.type else "", DEFAULT_NUDGE_PROMPT)
    return template.format(
        name=name or config.USER_DISPLAY_NAME,
        title=decision.resolutionTitle or "their resolution",
        cadence=cadence_clause(decision.cadenceProgress),
    )


def generate_nudge_context(
    decision: NudgeDecision,
    id_factory: Callable[[], str] = lambda: str(uuid.uuid4()),
    name: Optional[str] = None,
) -> NudgeContext:
    if not decision.shouldNudge:
        return NudgeContext(hasNudge=False)

    return NudgeContext(
        hasNudge=True,
        nudgeId=id_factory(),
        resolutionId=decision.resolutionId,
        resolutionTitle=decision.resolutionTitle,
        type=decision.type,
        prompt=generate_nudge_prompt(decision, name=name),
        reason=decision.reason,
    )


def generate_sms_message(nudge_type: NudgeType, title: str, rng: Optional[random.Random] = None) -> str:
    """Short outbound text for the SMS channel.

    The phrasing is drawn from `rng`; pass a seeded generator for
    reproducible output.
    """
    templates = SMS_TEMPLATES.get(NudgeType(nudge_type).value)
    if not templates:
        return DEFAULT_SMS_TEMPLATE.format(title=title)
    rng = rng or random.Random()
    return rng.choice(templates).format(title=title)


# Records

def create_nudge_record(
    context: NudgeContext,
    channel: NudgeChannel = NudgeChannel.IN_CONVERSATION,
    now: Optional[datetime] = None,
) -> Optional[NudgeRecord]:
    """Record for an accepted nudge. In-conversation nudges count as delivered on creation."""
    if not context.hasNudge or not context.nudgeId or not context.resolutionId:
        return None

    now = resolve_now(now)
    channel = NudgeChannel(channel)
    delivered = channel == NudgeChannel.IN_CONVERSATION

    return NudgeRecord(
        id=context.nudgeId,
        resolutionId=context.resolutionId,
        channel=channel,
        scheduledAt=now,
        deliveredAt=now if delivered else None,
        status=NudgeStatus.DELIVERED if delivered else NudgeStatus.SCHEDULED,
        type=context.type or NudgeType.CHECK_IN,
        message=context.prompt or "",
        createdAt=now,
    )


def update_goal_nudge_stats(goal: Goal, now: Optional[datetime] = None) -> Goal:
    """Copy of `goal` with the nudge timestamp and counter advanced."""
    updated = goal.model_copy(deep=True)
    updated.updateSettings.lastNudgeAt = resolve_now(now)
    updated.updateSettings.nudgeCount += 1
    return updated


def accept_nudge(
    context: NudgeContext,
    goal: Goal,
    now: Optional[datetime] = None,
) -> Tuple[NudgeRecord, Goal]:
    """Build the delivered record and the updated goal for persistence."""
    if not context.hasNudge:
        raise ValueError("No nudge to accept")
    if context.resolutionId != goal.id:
        raise ValueError(f"Nudge targets {context.resolutionId}, not {goal.id}")

    now = resolve_now(now)
    record = create_nudge_record(context, NudgeChannel.IN_CONVERSATION, now)
    return record, update_goal_nudge_stats(goal, now)


def transition_nudge(record: NudgeRecord, status: NudgeStatus, now: Optional[datetime] = None) -> NudgeRecord:
    status = NudgeStatus(status)
    if status not in ALLOWED_TRANSITIONS[record.status]:
        raise InvalidNudgeTransition(record.status, status)

    updated = record.model_copy()
    updated.status = status
    if status == NudgeStatus.DELIVERED and updated.deliveredAt is None:
        updated.deliveredAt = resolve_now(now)
    return updated


def mark_nudge_responded(
    record: NudgeRecord,
    content: str,
    sentiment: Sentiment,
    now: Optional[datetime] = None,
) -> NudgeRecord:
    now = resolve_now(now)
    updated = transition_nudge(record, NudgeStatus.RESPONDED, now)
    updated.responseAt = now
    updated.responseContent = content
    updated.responseSentiment = Sentiment(sentiment)
    return updated


def calculate_response_rate(goal_id: str, nudges: List[NudgeRecord]) -> float:
    """Responded share of the goal's delivered nudges, rounded to two decimals."""
    delivered = [
        n for n in nudges
        if n.resolutionId == goal_id and n.status in (NudgeStatus.DELIVERED, NudgeStatus.RESPONDED)
    ]
    if not delivered:
        return 0
    responded = sum(1 for n in delivered if n.status == NudgeStatus.RESPONDED)
    return round(responded / len(delivered), 2)


def refresh_response_rate(goal: Goal, nudges: List[NudgeRecord]) -> Goal:
    updated = goal.model_copy(deep=True)
    updated.updateSettings.responseRate = calculate_response_rate(goal.id, nudges)
    return updated
