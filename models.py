from enum import Enum
from typing import Annotated, List, Optional
from pydantic import AfterValidator, BaseModel, Field
from datetime import datetime, timezone


class GoalStatus(str, Enum):
    ACTIVE = "active"
    COMPLETED = "completed"

class CadencePeriod(str, Enum):
    DAY = "day"
    WEEK = "week"
    MONTH = "month"

class UpdateType(str, Enum):
    PROGRESS = "progress"
    SETBACK = "setback"
    MILESTONE = "milestone"
    NOTE = "note"
    CHECK_IN_RESPONSE = "check_in_response"

class Sentiment(str, Enum):
    POSITIVE = "positive"
    NEUTRAL = "neutral"
    STRUGGLING = "struggling"

class UpdateOrigin(str, Enum):
    USER = "user"
    NUDGE = "nudge"
    SMS = "sms"

class NudgeChannel(str, Enum):
    IN_CONVERSATION = "in_conversation"
    SMS = "sms"

class NudgeStatus(str, Enum):
    SCHEDULED = "scheduled"
    DELIVERED = "delivered"
    RESPONDED = "responded"
    SKIPPED = "skipped"
    FAILED = "failed"

class NudgeType(str, Enum):
    CHECK_IN = "check_in"
    ENCOURAGEMENT = "encouragement"
    MILESTONE = "milestone"
    STREAK = "streak"
    GENTLE_NUDGE = "gentle_nudge"

class NudgeFrequency(str, Enum):
    GENTLE = "gentle"
    MODERATE = "moderate"
    PERSISTENT = "persistent"

class EffectivenessScope(str, Enum):
    ANY_GOAL = "any_goal"
    SAME_GOAL = "same_goal"

class SentimentTrendDirection(str, Enum):
    IMPROVING = "improving"
    STABLE = "stable"
    DECLINING = "declining"

class TimeOfDay(str, Enum):
    MORNING = "morning"
    AFTERNOON = "afternoon"
    EVENING = "evening"
    NIGHT = "night"


# Goal records, as handed in by the persistence layer

def assume_utc(value: datetime) -> datetime:
    # Naive timestamps keep their wall-clock fields and are read as UTC
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)

Timestamp = Annotated[datetime, AfterValidator(assume_utc)]

class Cadence(BaseModel):
    frequency: int = Field(ge=1)
    period: CadencePeriod
    targetDays: Optional[List[int]] = None  # 0=Sunday .. 6=Saturday
    description: Optional[str] = None

class Milestone(BaseModel):
    id: str
    title: str
    target: int
    current: int = 0
    unit: Optional[str] = None
    completedAt: Optional[Timestamp] = None
    createdAt: Timestamp

class ActivityCompletion(BaseModel):
    id: str
    timestamp: Timestamp
    description: str
    matchedFromMessage: Optional[str] = None
    # Period the completion was attributed to when it was logged; never re-derived
    periodStart: Timestamp
    periodEnd: Timestamp
    createdAt: Timestamp

class Update(BaseModel):
    id: str
    type: UpdateType
    content: str
    sentiment: Optional[Sentiment] = None
    progressDelta: Optional[float] = Field(default=None, ge=-100, le=100)
    createdAt: Timestamp
    triggeredBy: Optional[UpdateOrigin] = None

class CadenceOverride(BaseModel):
    checkInDays: List[int] = []
    preferredTimeUTC: str = "14:00"

class UpdateSettings(BaseModel):
    enabled: bool = True
    cadenceOverride: Optional[CadenceOverride] = None
    lastNudgeAt: Optional[Timestamp] = None
    nextNudgeAt: Optional[Timestamp] = None
    nudgeCount: int = 0
    responseRate: float = 0

class Goal(BaseModel):
    id: str
    title: str
    measurableCriteria: Optional[str] = None
    context: Optional[str] = None
    status: GoalStatus = GoalStatus.ACTIVE
    createdAt: Timestamp
    updatedAt: Optional[Timestamp] = None
    completedAt: Optional[Timestamp] = None
    updates: List[Update] = []
    updateSettings: UpdateSettings = Field(default_factory=UpdateSettings)
    cadence: Optional[Cadence] = None
    milestones: List[Milestone] = []
    activityCompletions: List[ActivityCompletion] = []

class NudgeRecord(BaseModel):
    id: str
    resolutionId: str  # weak reference, the goal may since have been deleted
    channel: NudgeChannel = NudgeChannel.IN_CONVERSATION
    scheduledAt: Timestamp
    deliveredAt: Optional[Timestamp] = None
    status: NudgeStatus = NudgeStatus.SCHEDULED
    type: NudgeType = NudgeType.CHECK_IN
    message: str = ""
    responseAt: Optional[Timestamp] = None
    responseContent: Optional[str] = None
    responseSentiment: Optional[Sentiment] = None
    createdAt: Timestamp


# User preferences

class InConversationPreferences(BaseModel):
    enabled: bool = True
    frequency: NudgeFrequency = NudgeFrequency.MODERATE

class QuietHours(BaseModel):
    enabled: bool = True
    start: str = "22:00"
    end: str = "08:00"
    timezone: str = "America/New_York"

class SMSPreferences(BaseModel):
    enabled: bool = False
    phoneNumber: Optional[str] = None
    verified: bool = False
    quietHours: QuietHours = Field(default_factory=QuietHours)

class DefaultCadencePreferences(BaseModel):
    checkInDays: List[int] = [1, 3, 5]
    preferredTimeUTC: str = "14:00"
    maxNudgesPerDay: int = 3

class UserPreferences(BaseModel):
    updatesEnabled: bool = True
    inConversation: InConversationPreferences = Field(default_factory=InConversationPreferences)
    sms: SMSPreferences = Field(default_factory=SMSPreferences)
    defaultCadence: DefaultCadencePreferences = Field(default_factory=DefaultCadencePreferences)
    updatedAt: Optional[Timestamp] = None


# Derived metrics

class PeriodBounds(BaseModel):
    start: datetime
    end: datetime

class CadenceProgress(BaseModel):
    periodStart: datetime
    periodEnd: datetime
    completedCount: int
    targetCount: int
    isOnTrack: bool
    remainingCount: int
    completionRate: float

class TimePattern(BaseModel):
    dayOfWeek: int  # 0-6 (Sunday-Saturday)
    dayName: str
    count: int
    percentage: int

class TimeOfDayPattern(BaseModel):
    period: TimeOfDay
    count: int
    percentage: int

class CadenceSuccessRate(BaseModel):
    period: CadencePeriod
    totalResolutions: int
    successfulResolutions: int
    successRate: float

class NudgeTypeStat(BaseModel):
    type: NudgeType
    count: int
    successRate: float

class NudgeEffectiveness(BaseModel):
    totalNudges: int = 0
    nudgesLeadingToActivity: int = 0
    effectivenessRate: float = 0
    bestNudgeTypes: List[NudgeTypeStat] = []

class GoalStreak(BaseModel):
    currentStreak: int
    isActive: bool
    recordedStreaks: List[int] = []
    brokenStreaks: List[int] = []

class StreakInsight(BaseModel):
    currentLongestStreak: int = 0
    resolutionWithStreak: Optional[str] = None
    averageStreakBeforeDrop: int = 0
    streakVulnerabilityWindow: int = 0
    recordedStreaks: List[int] = []
    brokenStreaks: List[int] = []

class SentimentTrend(BaseModel):
    overall: SentimentTrendDirection = SentimentTrendDirection.STABLE
    recentPositiveRate: float = 0
    historicalPositiveRate: float = 0
    strugglingResolutions: List[str] = []

class UserInsights(BaseModel):
    bestDays: List[TimePattern] = []
    bestTimeOfDay: List[TimeOfDayPattern] = []
    cadenceSuccess: List[CadenceSuccessRate] = []
    nudgeEffectiveness: NudgeEffectiveness = Field(default_factory=NudgeEffectiveness)
    streaks: StreakInsight = Field(default_factory=StreakInsight)
    sentiment: SentimentTrend = Field(default_factory=SentimentTrend)
    promptInsights: List[str] = []
    dataPoints: int = 0
    generatedAt: datetime


# Nudge decisions

class CadenceProgressSnapshot(BaseModel):
    completedCount: int
    targetCount: int
    remainingCount: int
    periodStart: datetime
    periodEnd: datetime

class NudgeDecision(BaseModel):
    shouldNudge: bool
    resolutionId: Optional[str] = None
    resolutionTitle: Optional[str] = None
    type: Optional[NudgeType] = None
    reason: Optional[str] = None
    daysSinceLastNudge: Optional[int] = None
    cadenceProgress: Optional[CadenceProgressSnapshot] = None

class NudgeContext(BaseModel):
    hasNudge: bool
    nudgeId: Optional[str] = None
    resolutionId: Optional[str] = None
    resolutionTitle: Optional[str] = None
    type: Optional[NudgeType] = None
    prompt: Optional[str] = None
    reason: Optional[str] = None

class SweepResult(BaseModel):
    processed: int = 0
    sent: int = 0
    skipped: int = 0
    failed: int = 0
    errors: List[str] = []
