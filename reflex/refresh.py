"""
Refresh Policy — decides, once per tick, whether the AI should ask the
decision service for a new plan.

A refresh is due when something happened this tick (wall bounce, paddle
contact, point scored, intercept drift) or the cached plan has expired,
and the cooldown since the last issued request has elapsed. Both gates
must pass. The request time is recorded the moment a refresh is granted,
before the service answers, so the round-trip can't trigger duplicates.
"""

import math
from dataclasses import dataclass, fields

from pong.config import DRIFT_THRESHOLD, REFRESH_COOLDOWN_MS


@dataclass
class TickEvents:
    wall_bounce: bool = False
    player_hit: bool = False
    ai_hit: bool = False
    score_reset: bool = False
    significant_drift: bool = False

    def any(self) -> bool:
        return any(getattr(self, f.name) for f in fields(self))


class RefreshPolicy:
    def __init__(self, cooldown_ms: float = REFRESH_COOLDOWN_MS,
                 drift_threshold: float = DRIFT_THRESHOLD):
        self.cooldown_ms = cooldown_ms
        self.drift_threshold = drift_threshold
        self.last_request_ms = -math.inf

    def drift(self, intercept_norm: float, last_intercept_norm: float,
              moving_toward_ai: bool) -> bool:
        # Ball heading away: the AI goes to centre court, intercept is moot
        if not moving_toward_ai:
            return False
        return abs(intercept_norm - last_intercept_norm) > self.drift_threshold

    def cooled_down(self, now_ms: float) -> bool:
        return now_ms - self.last_request_ms > self.cooldown_ms

    def should_refresh(self, events: TickEvents, plan_cache, now_ms: float) -> bool:
        """
        True when a new plan should be requested right now.

        `plan_cache` only needs `is_stale(now_ms)`. A True result stamps
        `last_request_ms`.
        """
        triggered = events.any() or plan_cache.is_stale(now_ms)
        if not (triggered and self.cooled_down(now_ms)):
            return False
        self.last_request_ms = now_ms
        return True

    def reset(self):
        self.last_request_ms = -math.inf
