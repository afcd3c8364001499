import logging
import os

from models import EffectivenessScope

logger = logging.getLogger(__name__)


def _int_env(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning("Ignoring non-integer %s=%r, using %d", name, raw, default)
        return default


def _scope_env(name: str, default: EffectivenessScope) -> EffectivenessScope:
    raw = os.environ.get(name)
    if not raw:
        return default
    try:
        return EffectivenessScope(raw.lower())
    except ValueError:
        logger.warning("Ignoring unknown %s=%r, using %s", name, raw, default.value)
        return default


# How the assistant refers to the user inside generated guidance
USER_DISPLAY_NAME = os.environ.get("NUDGE_USER_DISPLAY_NAME", "the user")

# Nudge decisions
MAX_NUDGES_PER_SESSION = _int_env("NUDGE_MAX_PER_SESSION", 1)

# Analytics
RESPONSE_WINDOW_HOURS = _int_env("NUDGE_RESPONSE_WINDOW_HOURS", 24)
EFFECTIVENESS_SCOPE = _scope_env("NUDGE_EFFECTIVENESS_SCOPE", EffectivenessScope.ANY_GOAL)
MIN_INSIGHT_DATA_POINTS = _int_env("INSIGHTS_MIN_DATA_POINTS", 10)

# SMS sweep, runs at SWEEP_CRON_MINUTE past every matching hour
SWEEP_CRON_HOUR = os.environ.get("NUDGE_SWEEP_CRON_HOUR", "*")
SWEEP_CRON_MINUTE = os.environ.get("NUDGE_SWEEP_CRON_MINUTE", "0")
