"""Behavioral analytics over goal history.

Turns completions, sentiment-tagged updates and delivered nudges into
derived metrics, then into short evidence-gated insight lines that the
prompt builder injects into the system prompt.
"""
import logging
import math
from collections import Counter
from datetime import datetime, timedelta
from typing import Dict, Iterable, List, Optional, Tuple

import config
from cadence import resolve_now
from models import (
    ActivityCompletion,
    CadencePeriod,
    CadenceSuccessRate,
    EffectivenessScope,
    Goal,
    GoalStreak,
    NudgeEffectiveness,
    NudgeRecord,
    NudgeStatus,
    NudgeTypeStat,
    Sentiment,
    SentimentTrend,
    SentimentTrendDirection,
    StreakInsight,
    TimeOfDay,
    TimeOfDayPattern,
    TimePattern,
    UserInsights,
    assume_utc,
)
from prompts import (
    ACTIVE_STREAK_INSIGHT,
    BEST_DAYS_INSIGHT,
    BEST_NUDGE_TYPE_INSIGHT,
    BEST_TIME_INSIGHT,
    CADENCE_HARD_INSIGHT,
    CADENCE_WORKS_INSIGHT,
    INSIGHTS_SECTION_PROMPT,
    NUDGES_EFFECTIVE_INSIGHT,
    NUDGES_INEFFECTIVE_INSIGHT,
    SENTIMENT_DECLINING_INSIGHT,
    SENTIMENT_IMPROVING_INSIGHT,
    STREAK_VULNERABILITY_INSIGHT,
    STRUGGLING_INSIGHT,
)

logger = logging.getLogger(__name__)

DAY_NAMES = ["Sunday", "Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday"]

# Approximate period lengths; thresholds downstream were tuned against these,
# so a month stays 30 days rather than the calendar length.
PERIOD_LENGTHS = {
    CadencePeriod.DAY: timedelta(days=1),
    CadencePeriod.WEEK: timedelta(days=7),
    CadencePeriod.MONTH: timedelta(days=30),
}
STREAK_TOLERANCE = 1.5
RECENT_WINDOW = timedelta(days=7)
TREND_MARGIN = 0.1
MIN_RECENT_SENTIMENT_SAMPLES = 3
STRUGGLING_UPDATE_THRESHOLD = 2
CADENCE_SUCCESS_THRESHOLD = 0.7


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def _rate(numerator: int, denominator: int) -> float:
    """Ratio rounded to two decimals, 0 for an empty denominator."""
    if denominator <= 0:
        return 0
    return _round_half_up(numerator / denominator * 100) / 100


def _percentage(count: int, total: int) -> int:
    return _round_half_up(count / total * 100) if total else 0


def _all_completions(goals: Iterable[Goal]) -> List[Tuple[Goal, ActivityCompletion]]:
    return [(goal, c) for goal in goals for c in goal.activityCompletions]


# Histograms

def sunday_based_weekday(moment: datetime) -> int:
    """0=Sunday .. 6=Saturday."""
    return (moment.weekday() + 1) % 7


def time_of_day_bucket(moment: datetime) -> TimeOfDay:
    hour = moment.hour
    if 5 <= hour < 12:
        return TimeOfDay.MORNING
    if 12 <= hour < 17:
        return TimeOfDay.AFTERNOON
    if 17 <= hour < 21:
        return TimeOfDay.EVENING
    return TimeOfDay.NIGHT


def analyze_best_days(completions: List[ActivityCompletion]) -> List[TimePattern]:
    """Completion counts per weekday, busiest first. Only observed days are listed."""
    if not completions:
        return []

    counts = Counter(sunday_based_weekday(c.timestamp) for c in completions)
    total = len(completions)
    patterns = [
        TimePattern(dayOfWeek=day, dayName=DAY_NAMES[day], count=count, percentage=_percentage(count, total))
        for day, count in counts.items()
    ]
    # Ties keep weekday order
    return sorted(patterns, key=lambda p: (-p.count, p.dayOfWeek))


def analyze_best_time_of_day(completions: List[ActivityCompletion]) -> List[TimeOfDayPattern]:
    """Completion counts per time-of-day bucket, busiest first. All four buckets are listed."""
    if not completions:
        return []

    counts = Counter(time_of_day_bucket(c.timestamp) for c in completions)
    total = len(completions)
    patterns = [
        TimeOfDayPattern(period=bucket, count=counts.get(bucket, 0), percentage=_percentage(counts.get(bucket, 0), total))
        for bucket in TimeOfDay
    ]
    return sorted(patterns, key=lambda p: -p.count)


# Cadence success

def calculate_historical_completion_rate(goal: Goal, now: Optional[datetime] = None) -> float:
    """Completions so far against what the cadence expected since the goal was created."""
    if not goal.cadence or not goal.activityCompletions:
        return 0

    now = resolve_now(now)
    days_passed = math.ceil((now - goal.createdAt) / timedelta(days=1))
    period = goal.cadence.period
    if period == CadencePeriod.DAY:
        expected = days_passed * goal.cadence.frequency
    elif period == CadencePeriod.WEEK:
        expected = math.ceil(days_passed / 7) * goal.cadence.frequency
    else:
        expected = math.ceil(days_passed / 30) * goal.cadence.frequency

    if expected <= 0:
        # Too early to judge
        return 1
    return min(1, len(goal.activityCompletions) / expected)


def analyze_cadence_success(goals: List[Goal], now: Optional[datetime] = None) -> List[CadenceSuccessRate]:
    stats: Dict[CadencePeriod, List[int]] = {}
    for goal in goals:
        if not goal.cadence:
            continue
        total_and_successful = stats.setdefault(goal.cadence.period, [0, 0])
        total_and_successful[0] += 1
        if calculate_historical_completion_rate(goal, now) >= CADENCE_SUCCESS_THRESHOLD:
            total_and_successful[1] += 1

    results = [
        CadenceSuccessRate(
            period=period,
            totalResolutions=total,
            successfulResolutions=successful,
            successRate=_rate(successful, total),
        )
        for period, (total, successful) in stats.items()
    ]
    return sorted(results, key=lambda r: -r.successRate)


# Streaks

def compute_goal_streak(timestamps: List[datetime], period: CadencePeriod, now: Optional[datetime] = None) -> GoalStreak:
    """Walk one goal's completions and split them into tolerance-spaced runs.

    A run ends when the gap to the next completion exceeds 1.5 periods.
    Runs of a single completion are not counted as streaks. The final run is
    recorded only while it is still active, i.e. its last completion lies
    within 1.5 periods of `now`.
    """
    now = resolve_now(now)
    tolerance = PERIOD_LENGTHS[CadencePeriod(period)] * STREAK_TOLERANCE
    ordered = sorted(assume_utc(t) for t in timestamps)
    if not ordered:
        return GoalStreak(currentStreak=0, isActive=False)

    broken: List[int] = []
    current = 1
    for previous, following in zip(ordered, ordered[1:]):
        if following - previous <= tolerance:
            current += 1
        else:
            if current > 1:
                broken.append(current)
            current = 1

    is_active = now - ordered[-1] <= tolerance
    recorded = list(broken)
    if is_active and current > 1:
        recorded.append(current)

    return GoalStreak(currentStreak=current, isActive=is_active, recordedStreaks=recorded, brokenStreaks=broken)


def analyze_streaks(goals: List[Goal], now: Optional[datetime] = None) -> StreakInsight:
    now = resolve_now(now)
    longest = 0
    holder: Optional[str] = None
    recorded: List[int] = []
    broken: List[int] = []

    for goal in goals:
        if not goal.cadence or len(goal.activityCompletions) < 2:
            continue

        streak = compute_goal_streak([c.timestamp for c in goal.activityCompletions], goal.cadence.period, now)
        recorded.extend(streak.recordedStreaks)
        broken.extend(streak.brokenStreaks)
        if streak.isActive and streak.currentStreak > longest:
            longest = streak.currentStreak
            holder = goal.title

    return StreakInsight(
        currentLongestStreak=longest,
        resolutionWithStreak=holder,
        averageStreakBeforeDrop=_round_half_up(sum(recorded) / len(recorded)) if recorded else 0,
        streakVulnerabilityWindow=_round_half_up(sum(broken) / len(broken)) if broken else 0,
        recordedStreaks=recorded,
        brokenStreaks=broken,
    )


# Sentiment

def analyze_sentiment(goals: List[Goal], now: Optional[datetime] = None) -> SentimentTrend:
    now = resolve_now(now)
    recent_cutoff = now - RECENT_WINDOW

    recent_positive = recent_total = all_positive = all_total = 0
    recent_struggling: Counter = Counter()

    for goal in goals:
        for update in goal.updates:
            if update.sentiment is None:
                continue
            all_total += 1
            if update.sentiment == Sentiment.POSITIVE:
                all_positive += 1
            if update.createdAt >= recent_cutoff:
                recent_total += 1
                if update.sentiment == Sentiment.POSITIVE:
                    recent_positive += 1
                elif update.sentiment == Sentiment.STRUGGLING:
                    recent_struggling[goal.title] += 1

    if all_total == 0:
        return SentimentTrend()

    recent_rate = recent_positive / recent_total if recent_total else 0
    historical_rate = all_positive / all_total

    trend = SentimentTrendDirection.STABLE
    if recent_total >= MIN_RECENT_SENTIMENT_SAMPLES:
        if recent_rate > historical_rate + TREND_MARGIN:
            trend = SentimentTrendDirection.IMPROVING
        elif recent_rate < historical_rate - TREND_MARGIN:
            trend = SentimentTrendDirection.DECLINING

    return SentimentTrend(
        overall=trend,
        recentPositiveRate=_rate(recent_positive, recent_total),
        historicalPositiveRate=_rate(all_positive, all_total),
        strugglingResolutions=[
            title for title, count in recent_struggling.items()
            if count >= STRUGGLING_UPDATE_THRESHOLD
        ],
    )


# Nudge effectiveness

def analyze_nudge_effectiveness(
    nudges: List[NudgeRecord],
    goals: List[Goal],
    scope: Optional[EffectivenessScope] = None,
    window: Optional[timedelta] = None,
) -> NudgeEffectiveness:
    """Share of delivered nudges followed by a completion inside the response window.

    With the default ANY_GOAL scope a completion on any goal counts, not only
    on the nudged one. SAME_GOAL restricts matching to the nudge's own goal.
    """
    scope = EffectivenessScope(scope or config.EFFECTIVENESS_SCOPE)
    window = window or timedelta(hours=config.RESPONSE_WINDOW_HOURS)

    qualifying = [n for n in nudges if n.status in (NudgeStatus.DELIVERED, NudgeStatus.RESPONDED)]
    if not qualifying:
        return NudgeEffectiveness()

    completions = _all_completions(goals)
    type_stats: Dict[str, List[int]] = {}
    effective_total = 0

    for nudge in qualifying:
        delivered_at = nudge.deliveredAt or nudge.scheduledAt
        window_end = delivered_at + window
        effective = any(
            delivered_at <= completion.timestamp <= window_end
            for goal, completion in completions
            if scope == EffectivenessScope.ANY_GOAL or goal.id == nudge.resolutionId
        )

        total_and_effective = type_stats.setdefault(nudge.type, [0, 0])
        total_and_effective[0] += 1
        if effective:
            total_and_effective[1] += 1
            effective_total += 1

    best_types = sorted(
        (
            NudgeTypeStat(type=nudge_type, count=total, successRate=_rate(effective, total))
            for nudge_type, (total, effective) in type_stats.items()
        ),
        key=lambda s: -s.successRate,
    )

    return NudgeEffectiveness(
        totalNudges=len(qualifying),
        nudgesLeadingToActivity=effective_total,
        effectivenessRate=_rate(effective_total, len(qualifying)),
        bestNudgeTypes=best_types,
    )


# Insight synthesis

PERIOD_LABELS = {
    CadencePeriod.DAY: "Daily",
    CadencePeriod.WEEK: "Weekly",
    CadencePeriod.MONTH: "Monthly",
}


def _period_label(period: CadencePeriod) -> str:
    return PERIOD_LABELS[CadencePeriod(period)]


def generate_prompt_insights(
    best_days: List[TimePattern],
    best_time_of_day: List[TimeOfDayPattern],
    cadence_success: List[CadenceSuccessRate],
    nudge_effectiveness: NudgeEffectiveness,
    streaks: StreakInsight,
    sentiment: SentimentTrend,
    name: Optional[str] = None,
) -> List[str]:
    """Render the analyzer outputs as short insight lines.

    Each line is emitted only when its supporting evidence clears a minimum
    threshold, so sparse histories produce few or no lines.
    """
    name = name or config.USER_DISPLAY_NAME
    insights: List[str] = []

    if len(best_days) >= 2:
        insights.append(BEST_DAYS_INSIGHT.format(
            name=name,
            days=" and ".join(d.dayName for d in best_days[:2]),
            percentage=best_days[0].percentage,
        ))

    if best_time_of_day and best_time_of_day[0].percentage >= 40:
        best = best_time_of_day[0]
        insights.append(BEST_TIME_INSIGHT.format(period=best.period.value, percentage=best.percentage))

    if cadence_success:
        best = cadence_success[0]
        worst = cadence_success[-1]
        if best.successRate >= 0.7 and best.totalResolutions >= 2:
            insights.append(CADENCE_WORKS_INSIGHT.format(
                period_label=_period_label(best.period), name=name, rate=_round_half_up(best.successRate * 100),
            ))
        if (worst.successRate < 0.5 and worst.totalResolutions >= 2 and best.totalResolutions >= 2
                and worst.period != best.period):
            insights.append(CADENCE_HARD_INSIGHT.format(
                period_label=_period_label(worst.period), rate=_round_half_up(worst.successRate * 100),
            ))

    if nudge_effectiveness.totalNudges >= 5:
        rate = nudge_effectiveness.effectivenessRate
        if rate >= 0.5:
            insights.append(NUDGES_EFFECTIVE_INSIGHT.format(
                rate=_round_half_up(rate * 100), hours=config.RESPONSE_WINDOW_HOURS,
            ))
        elif rate < 0.3:
            insights.append(NUDGES_INEFFECTIVE_INSIGHT.format(rate=_round_half_up(rate * 100)))

        if nudge_effectiveness.bestNudgeTypes:
            best_type = nudge_effectiveness.bestNudgeTypes[0]
            if best_type.successRate >= 0.5 and best_type.count >= 3:
                insights.append(BEST_NUDGE_TYPE_INSIGHT.format(
                    type_label=best_type.type.value.replace("_", " "),
                    rate=_round_half_up(best_type.successRate * 100),
                ))

    if streaks.currentLongestStreak >= 3 and streaks.resolutionWithStreak:
        insights.append(ACTIVE_STREAK_INSIGHT.format(
            streak=streaks.currentLongestStreak, title=streaks.resolutionWithStreak,
        ))

    if 3 <= streaks.streakVulnerabilityWindow <= 7:
        insights.append(STREAK_VULNERABILITY_INSIGHT.format(window=streaks.streakVulnerabilityWindow))

    if sentiment.overall == SentimentTrendDirection.DECLINING:
        insights.append(SENTIMENT_DECLINING_INSIGHT)
    elif sentiment.overall == SentimentTrendDirection.IMPROVING:
        insights.append(SENTIMENT_IMPROVING_INSIGHT)

    if sentiment.strugglingResolutions:
        insights.append(STRUGGLING_INSIGHT.format(titles=", ".join(sentiment.strugglingResolutions)))

    return insights


def generate_user_insights(
    goals: List[Goal],
    nudges: Optional[List[NudgeRecord]] = None,
    now: Optional[datetime] = None,
    effectiveness_scope: Optional[EffectivenessScope] = None,
    name: Optional[str] = None,
) -> UserInsights:
    """Run every analyzer over a snapshot of goals and nudge records."""
    now = resolve_now(now)
    nudges = nudges or []
    completions = [c for _, c in _all_completions(goals)]
    sentiment_updates = sum(1 for goal in goals for u in goal.updates if u.sentiment is not None)

    best_days = analyze_best_days(completions)
    best_time_of_day = analyze_best_time_of_day(completions)
    cadence_success = analyze_cadence_success(goals, now)
    nudge_effectiveness = analyze_nudge_effectiveness(nudges, goals, scope=effectiveness_scope)
    streaks = analyze_streaks(goals, now)
    sentiment = analyze_sentiment(goals, now)

    insights = UserInsights(
        bestDays=best_days,
        bestTimeOfDay=best_time_of_day,
        cadenceSuccess=cadence_success,
        nudgeEffectiveness=nudge_effectiveness,
        streaks=streaks,
        sentiment=sentiment,
        promptInsights=generate_prompt_insights(
            best_days, best_time_of_day, cadence_success, nudge_effectiveness, streaks, sentiment, name=name,
        ),
        dataPoints=len(completions) + sentiment_updates,
        generatedAt=now,
    )
    logger.debug("Generated %d insights from %d data points", len(insights.promptInsights), insights.dataPoints)
    return insights


def build_insights_prompt_section(insights: UserInsights, name: Optional[str] = None) -> str:
    """System-prompt section for the insights, or "" while data is too sparse."""
    if insights.dataPoints < config.MIN_INSIGHT_DATA_POINTS or not insights.promptInsights:
        return ""

    return INSIGHTS_SECTION_PROMPT.format(
        name=name or config.USER_DISPLAY_NAME,
        insight_lines="\n".join(f"- {line}" for line in insights.promptInsights),
    )
