"""
Simulation Step — one Pong match, advanced one tick per display frame.

States: idle -> running (start, if the session gate allows) -> over (first
to WIN_POINTS). stop() drops a running match back to idle without a winner;
reset() returns any state to idle.

Per tick, in order:
   1. player paddle follows the pointer
   2. predict the ball's intercept with the AI paddle plane
   3. drift check against the last intercept sent to the planner
   4. drain the plan mailbox, move the AI paddle toward its target
   5. advance the ball
   6. walls
   7. player paddle
   8. AI paddle
   9. scoring
  10. win check (session gate notified once, off-thread)
  11. refresh policy -> decision request (fire-and-forget)
"""

import random
import threading
import time
from dataclasses import dataclass
from typing import Callable

from AIsystem.ai_pipeline import PlanCache, PlanMailbox
from pong.config import (
    AI_BASELINE_X,
    AI_FACE_X,
    BALL_SPEED,
    BOUNCE_RESPONSE,
    CANVAS_HEIGHT,
    CANVAS_WIDTH,
    DEFAULT_MODEL,
    PADDLE_HEIGHT,
    PADDLE_SPEED,
    PLAYER_BASELINE_X,
    PLAYER_FACE_X,
    TARGET_OFFSET_PX,
    WALL_BOTTOM_Y,
    WALL_TOP_Y,
    WIN_POINTS,
)
from reflex.reflex import (
    InterceptPrediction,
    can_reach,
    clamp_paddle,
    predict_intercept,
    steer_paddle,
)
from reflex.refresh import RefreshPolicy, TickEvents

IDLE    = "idle"
RUNNING = "running"
OVER    = "over"

CENTER_PADDLE_Y = CANVAS_HEIGHT / 2 - PADDLE_HEIGHT / 2


@dataclass
class SimulationState:
    player_paddle_y: float = CENTER_PADDLE_Y
    ai_paddle_y: float = CENTER_PADDLE_Y
    ball_x: float = CANVAS_WIDTH / 2
    ball_y: float = CANVAS_HEIGHT / 2
    ball_vel_x: float = 0.0
    ball_vel_y: float = 0.0
    player_score: int = 0
    ai_score: int = 0
    started: bool = False
    over: bool = False
    winner: str | None = None   # "player" | "ai"


@dataclass
class RallyContext:
    rally_length: int = 0
    last_intercept_norm: float = 0.5


def build_decision_request(
    state: SimulationState, intercept_norm: float, time_to_intercept_ms: float,
    reachable: bool, moving_toward_ai: bool, rally_length: int, model: str,
) -> dict:
    """Serialise the situation for the decision service, resolution-independent."""
    return {
        "ballX":    round(state.ball_x / CANVAS_WIDTH, 4),
        "ballY":    round(state.ball_y / CANVAS_HEIGHT, 4),
        "ballVelX": round(state.ball_vel_x / BALL_SPEED, 4),
        "ballVelY": round(state.ball_vel_y / BALL_SPEED, 4),
        "paddleY":  round(state.ai_paddle_y / CANVAS_HEIGHT, 4),
        "canvasHeight": CANVAS_HEIGHT,
        "predictedInterceptYNorm": round(intercept_norm, 4),
        "timeToInterceptMs": round(time_to_intercept_ms, 1),
        "canReach": reachable,
        "ballMovingTowardAI": moving_toward_ai,
        "rallyLength": rally_length,
        "scorePlayer": state.player_score,
        "scoreAI": state.ai_score,
        "model": model,
    }


def _run_in_thread(fn: Callable[[], object]):
    threading.Thread(target=fn, daemon=True).start()


def _monotonic_ms() -> float:
    return time.monotonic() * 1000


class PongSimulation:
    """
    Owns one SimulationState and mutates it only inside start/stop/reset/tick.

    Args:
        gate:      session gate with try_start_match() / complete_match().
        dispatch:  fire-and-forget decision request, called with the payload dict.
        mailbox:   where finished plans arrive; drained at most once per tick.
        run_async: runs the match-completion notification without blocking.
        clock:     milliseconds, monotonic.
    """

    def __init__(
        self,
        gate,
        dispatch: Callable[[dict], object],
        mailbox: PlanMailbox | None = None,
        policy: RefreshPolicy | None = None,
        model: str = DEFAULT_MODEL,
        target_offset_px: float = TARGET_OFFSET_PX,
        run_async: Callable[[Callable[[], object]], object] = _run_in_thread,
        clock: Callable[[], float] = _monotonic_ms,
        rng: random.Random | None = None,
    ):
        self.gate = gate
        self.dispatch = dispatch
        self.mailbox = mailbox if mailbox is not None else PlanMailbox()
        self.policy = policy if policy is not None else RefreshPolicy()
        self.cache = PlanCache()
        self.model = model
        self.target_offset_px = target_offset_px
        self.run_async = run_async
        self.clock = clock
        self.rng = rng or random.Random()

        self.state = SimulationState()
        self.rally = RallyContext()
        self.last_prediction: InterceptPrediction | None = None
        self.last_permit = None
        self._completion_sent = False

    # ── state machine ────────────────────────────────────────────────────────

    @property
    def phase(self) -> str:
        if self.state.over:
            return OVER
        if self.state.started:
            return RUNNING
        return IDLE

    @property
    def plan(self):
        return self.cache.plan

    def set_model(self, model: str) -> bool:
        if self.phase == RUNNING:
            return False
        self.model = model
        return True

    def serve(self):
        s = self.state
        s.ball_x = CANVAS_WIDTH / 2
        s.ball_y = CANVAS_HEIGHT / 2
        s.ball_vel_x = BALL_SPEED if self.rng.random() < 0.5 else -BALL_SPEED
        s.ball_vel_y = self.rng.uniform(-BALL_SPEED / 2, BALL_SPEED / 2)

    def start(self):
        """Begin a new match if the session gate allows it. Returns the permit."""
        permit = self.gate.try_start_match()
        self.last_permit = permit
        if not permit.allowed:
            return permit

        s = self.state
        s.player_score = 0
        s.ai_score = 0
        s.player_paddle_y = CENTER_PADDLE_Y
        s.ai_paddle_y = CENTER_PADDLE_Y
        s.started = True
        s.over = False
        s.winner = None
        self.rally = RallyContext()
        self._completion_sent = False
        self.serve()
        print(f"[Game] Match started vs {self.model}")
        return permit

    def stop(self):
        if self.phase != RUNNING:
            return
        self.state.started = False
        print("[Game] Match stopped")

    def reset(self):
        self.state = SimulationState()
        self.rally = RallyContext()
        self.last_prediction = None
        self._completion_sent = False

    # ── per-tick body ────────────────────────────────────────────────────────

    def tick(self, pointer_y: float) -> TickEvents | None:
        """Advance one frame. Returns this tick's events, or None when not running."""
        if self.phase != RUNNING:
            return None

        s = self.state
        now = self.clock()
        events = TickEvents()

        s.player_paddle_y = clamp_paddle(pointer_y - PADDLE_HEIGHT / 2)

        prediction = predict_intercept(s.ball_x, s.ball_y, s.ball_vel_x, s.ball_vel_y)
        self.last_prediction = prediction
        intercept_norm = prediction.y_normalized()

        moving_toward_ai = s.ball_vel_x > 0
        events.significant_drift = self.policy.drift(
            intercept_norm, self.rally.last_intercept_norm, moving_toward_ai)

        arrived = self.mailbox.take()
        if arrived is not None:
            self.cache.adopt(arrived, now, self.rng)
        if moving_toward_ai:
            target_top = self.cache.target_top_y(self.target_offset_px)
        else:
            target_top = CENTER_PADDLE_Y
        speed = self.cache.plan.speed * PADDLE_SPEED * 2
        s.ai_paddle_y = steer_paddle(s.ai_paddle_y, target_top, speed)

        s.ball_x += s.ball_vel_x
        s.ball_y += s.ball_vel_y

        if (s.ball_y <= WALL_TOP_Y and s.ball_vel_y < 0) or \
           (s.ball_y >= WALL_BOTTOM_Y and s.ball_vel_y > 0):
            s.ball_vel_y = -s.ball_vel_y
            events.wall_bounce = True

        if s.ball_vel_x < 0 and s.ball_x <= PLAYER_FACE_X and \
           s.player_paddle_y <= s.ball_y <= s.player_paddle_y + PADDLE_HEIGHT:
            s.ball_vel_x = abs(s.ball_vel_x)
            s.ball_vel_y = self._deflect(s.player_paddle_y, s.ball_y)
            events.player_hit = True
            self.rally.rally_length += 1

        if s.ball_vel_x > 0 and s.ball_x >= AI_FACE_X and \
           s.ai_paddle_y <= s.ball_y <= s.ai_paddle_y + PADDLE_HEIGHT:
            s.ball_vel_x = -abs(s.ball_vel_x)
            s.ball_vel_y = self._deflect(s.ai_paddle_y, s.ball_y)
            events.ai_hit = True
            self.rally.rally_length += 1

        if s.ball_x < PLAYER_BASELINE_X:
            s.ai_score += 1
            events.score_reset = True
        elif s.ball_x > AI_BASELINE_X:
            s.player_score += 1
            events.score_reset = True
        if events.score_reset:
            self.serve()
            self.rally.rally_length = 0

        if s.player_score >= WIN_POINTS:
            self._finish("player")
        elif s.ai_score >= WIN_POINTS:
            self._finish("ai")

        if not s.over and self.policy.should_refresh(events, self.cache, now):
            self._request_plan(prediction, intercept_norm, moving_toward_ai)

        return events

    @staticmethod
    def _deflect(paddle_y: float, ball_y: float) -> float:
        relative = paddle_y + PADDLE_HEIGHT / 2 - ball_y
        return relative / (PADDLE_HEIGHT / 2) * BOUNCE_RESPONSE

    def _finish(self, winner: str):
        s = self.state
        s.over = True
        s.winner = winner
        print(f"[Game] Match over: {winner} wins {s.player_score}-{s.ai_score}")
        if not self._completion_sent:
            self._completion_sent = True
            self.run_async(self.gate.complete_match)

    def _request_plan(self, prediction: InterceptPrediction, intercept_norm: float,
                      moving_toward_ai: bool):
        s = self.state
        self.rally.last_intercept_norm = intercept_norm
        reachable = can_reach(intercept_norm, prediction.time_ms, s.ai_paddle_y,
                              moving_toward_ai)
        payload = build_decision_request(
            s, intercept_norm, prediction.time_ms, reachable, moving_toward_ai,
            self.rally.rally_length, self.model,
        )
        self.dispatch(payload)
