INSIGHTS_SECTION_PROMPT = """## Personalized Insights About {name}
Based on historical patterns, here's what you know about {name}:

{insight_lines}

Use these insights to personalize your coaching approach.
"""

# Insight lines, one per evidence-gated observation
BEST_DAYS_INSIGHT = "{name} is most active on {days} ({percentage}% of activities)."
BEST_TIME_INSIGHT = "Most activities are completed in the {period} ({percentage}% of the time)."
CADENCE_WORKS_INSIGHT = "{period_label} cadences work well for {name} ({rate}% success rate)."
CADENCE_HARD_INSIGHT = "{period_label} cadences tend to be harder to maintain ({rate}% success rate)."
NUDGES_EFFECTIVE_INSIGHT = "Nudges are effective - {rate}% lead to activity within {hours} hours."
NUDGES_INEFFECTIVE_INSIGHT = "Nudges have low effectiveness ({rate}%). Consider adjusting timing or frequency."
BEST_NUDGE_TYPE_INSIGHT = "\"{type_label}\" nudges work best ({rate}% success)."
ACTIVE_STREAK_INSIGHT = "Currently on a {streak}-period streak with \"{title}\" - encourage continuing!"
STREAK_VULNERABILITY_INSIGHT = "Streaks typically break around the {window}-period mark - be extra encouraging around that time."
SENTIMENT_DECLINING_INSIGHT = "Recent sentiment is declining - be extra supportive and check in on blockers."
SENTIMENT_IMPROVING_INSIGHT = "Sentiment is improving recently - acknowledge and celebrate the positive momentum!"
STRUGGLING_INSIGHT = "Watch for struggles with: {titles}."

# Cadence clause appended to nudge guidance
CADENCE_NOT_STARTED = " They haven't logged any activities for {period_name} yet (target: {target})."
CADENCE_IN_PROGRESS = " They've done {completed}/{target} {period_name} ({remaining} to go)."

LOG_ACTIVITY_HINT = "If they mention completing an activity, use log_activity_completion to record it. "

# Guidance injected into the system prompt, keyed by nudge type
NUDGE_PROMPTS = {
    "check_in": (
        "[NUDGE CONTEXT] It's been a few days since {name} updated on \"{title}\".{cadence} "
        "Naturally weave in a question about their progress. Keep it warm and casual, not pushy. "
        + LOG_ACTIVITY_HINT +
        "Example: \"By the way, how's {title} going lately?\""
    ),
    "gentle_nudge": (
        "[NUDGE CONTEXT] It's been over a week since {name} checked in on \"{title}\".{cadence} "
        "Gently ask about their progress without being intrusive. "
        + LOG_ACTIVITY_HINT +
        "Example: \"I noticed we haven't talked about {title} in a while - how are things going with that?\""
    ),
    "encouragement": (
        "[NUDGE CONTEXT] {name} was struggling with \"{title}\" last time.{cadence} "
        "Check in with empathy and support. Focus on what might be blocking them. "
        "Example: \"I remember {title} was tough last time - how are you feeling about it now?\""
    ),
    "streak": (
        "[NUDGE CONTEXT] {name} has been on a streak with \"{title}\"!{cadence} "
        "Acknowledge their consistency and ask about their progress. "
        "Example: \"You've been really consistent with {title} lately - that's awesome! How's it feeling?\""
    ),
    "milestone": (
        "[NUDGE CONTEXT] {name} might be approaching a milestone with \"{title}\".{cadence} "
        "Ask about their progress and be ready to celebrate if they've hit it. "
        "Example: \"How's {title} coming along? You've been making great progress!\""
    ),
}

DEFAULT_NUDGE_PROMPT = "[NUDGE CONTEXT] Check in on \"{title}\" with {name} naturally.{cadence}"

# Short outbound phrasings for the SMS channel, one is picked per message
SMS_TEMPLATES = {
    "check_in": [
        "Hey! How's \"{title}\" going? Quick update?",
        "Checking in on \"{title}\" - how are things progressing?",
        "Hi! Any updates on \"{title}\"? 📊",
    ],
    "gentle_nudge": [
        "It's been a bit since we talked about \"{title}\". Everything okay?",
        "Just thinking about your \"{title}\" goal. How's it coming along?",
        "Hey, wanted to check in on \"{title}\". Still on track?",
    ],
    "encouragement": [
        "Remember, setbacks are part of the journey. How can I help with \"{title}\"?",
        "Thinking of you and \"{title}\". Small steps count! How are you doing?",
        "Progress isn't always linear. How's \"{title}\" feeling today?",
    ],
    "streak": [
        "You've been crushing it with \"{title}\"! 🔥 Keep the momentum going!",
        "Loving your consistency on \"{title}\"! How's today going?",
        "That streak on \"{title}\" is impressive! Still going strong? 💪",
    ],
    "milestone": [
        "Getting close to a milestone on \"{title}\"! How's progress?",
        "You might be hitting a milestone soon on \"{title}\"! Update? 🎯",
        "Big things happening with \"{title}\"? Let me know! ✨",
    ],
}

DEFAULT_SMS_TEMPLATE = "How's \"{title}\" going?"
