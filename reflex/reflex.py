"""
Reflex Layer — Per-frame geometry that turns the LLM's sparse plans into
smooth, bounded AI paddle motion.

Intercept algorithm (closed form, per bounce segment):
  Starting from the ball's position, compute the time until it reaches the
  next wall line and the time until it reaches the AI paddle plane, both as
  remaining distance divided by the velocity component. Whichever comes
  first wins; a tie goes to the paddle plane. On a wall event the ball is
  moved to the wall, vy is negated and the loop continues. Time is counted
  in ticks and reported in milliseconds, so it compares directly against
  paddle reach per tick.
"""

import math
from dataclasses import dataclass

from pong.config import (
    AI_PLANE_X,
    CANVAS_HEIGHT,
    DEADBAND_PX,
    MS_PER_TICK,
    PADDLE_BOTTOM,
    PADDLE_HEIGHT,
    PADDLE_SPEED,
    PADDLE_TOP,
    PREDICT_MAX_BOUNCES,
    WALL_BOTTOM_Y,
    WALL_TOP_Y,
)


@dataclass(frozen=True)
class InterceptPrediction:
    y: float
    time_ms: float
    reliable: bool = True

    def y_normalized(self, height: float = CANVAS_HEIGHT) -> float:
        return clamp(self.y / height, 0.0, 1.0)


def clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def clamp_paddle(y: float) -> float:
    """Keep a paddle top edge inside the playable court."""
    return clamp(y, PADDLE_TOP, PADDLE_BOTTOM)


def predict_intercept(
    ball_x: float, ball_y: float, vel_x: float, vel_y: float,
    plane_x: float = AI_PLANE_X,
    top_y: float = WALL_TOP_Y,
    bottom_y: float = WALL_BOTTOM_Y,
    max_bounces: int = PREDICT_MAX_BOUNCES,
) -> InterceptPrediction:
    """
    Where and when will the ball cross `plane_x`?

    Returns the crossing y (pixels) and the time to get there in ms. If the
    ball is already at or past the plane in its direction of travel the
    current y is returned with zero time. A ball with no horizontal speed
    never arrives, and a trajectory that is still bouncing after
    `max_bounces` walls is given up on; both come back with
    `reliable=False` and zero time.
    """
    x, y, vx, vy = ball_x, ball_y, vel_x, vel_y
    ticks = 0.0

    if vx == 0:
        return InterceptPrediction(y, 0.0, reliable=False)

    for _ in range(max_bounces):
        if (vx > 0 and x >= plane_x) or (vx < 0 and x <= plane_x):
            return InterceptPrediction(y, max(0.0, ticks * MS_PER_TICK))

        dt_plane = (plane_x - x) / vx
        if vy > 0:
            dt_wall = (bottom_y - y) / vy
        elif vy < 0:
            dt_wall = (top_y - y) / vy
        else:
            dt_wall = math.inf

        if dt_wall < dt_plane:
            x += vx * dt_wall
            y = bottom_y if vy > 0 else top_y
            ticks += abs(dt_wall)
            vy = -vy
        else:
            ticks += abs(dt_plane)
            return InterceptPrediction(y + vy * dt_plane, max(0.0, ticks * MS_PER_TICK))

    return InterceptPrediction(y, 0.0, reliable=False)


def can_reach(
    intercept_norm: float, time_ms: float, ai_paddle_y: float,
    moving_toward_ai: bool,
    height: float = CANVAS_HEIGHT,
    max_speed: float = PADDLE_SPEED * 2,
) -> bool:
    """Can the AI paddle centre cover the distance to the intercept in time?"""
    if not moving_toward_ai:
        return True
    distance = abs(intercept_norm * height - (ai_paddle_y + PADDLE_HEIGHT / 2))
    return distance <= max_speed * (time_ms / MS_PER_TICK)


def steer_paddle(paddle_y: float, target_top_y: float, speed: float) -> float:
    """
    One tick of AI paddle motion toward a target top edge.

    The paddle moves `speed` px toward the target when the centres are more
    than DEADBAND_PX apart, otherwise it holds. The result is always clamped
    to the court.
    """
    center = paddle_y + PADDLE_HEIGHT / 2
    target_center = target_top_y + PADDLE_HEIGHT / 2
    if abs(center - target_center) > DEADBAND_PX:
        if center < target_center:
            paddle_y += speed
        else:
            paddle_y -= speed
    return clamp_paddle(paddle_y)
