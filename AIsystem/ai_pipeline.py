"""
AI Pipeline — Claude-powered paddle planner.

The game loop never waits on Claude. `DecisionClient.dispatch()` schedules a
request on the background event loop and returns immediately; a validated
plan is posted to a single-slot mailbox which the simulation drains on a
later tick. Any failure (transport, timeout, unparseable or out-of-range
reply) is logged and counted, and the previous plan keeps driving the paddle.
"""

import anthropic
import asyncio
import json
import math
import random
import re
import threading
import time
from dataclasses import dataclass
from typing import Awaitable, Callable

from pong.config import (
    API_KEY,
    CANVAS_HEIGHT,
    DECISION_MAX_TOKENS,
    DECISION_TIMEOUT_S,
)

PROMPT_TEMPLATE = """You control the right-hand paddle in a game of Pong against a human. Decide where the paddle should go next.

COORDINATES:
- Everything is normalised: x and y in [0, 1], 0 is top/left. The court is {CANVAS_HEIGHT}px tall.
- Velocities are in units of the base ball speed. ballVelX > 0 means the ball is coming toward you.
- `predictedInterceptYNorm` is where the ball will cross your paddle plane after wall bounces, `timeToInterceptMs` is when.
- `canReach` says whether your paddle can get there at full speed in time.

STRATEGY:
- Ball coming toward you: aim `targetY` at `predictedInterceptYNorm`. If `canReach` is false, use speed 1.0.
- Ball moving away: drift back toward centre (targetY 0.5) at low speed.
- Use higher speed for urgent movements, lower for positioning. Long rallies call for precision over speed.
- Stay within 0.1 to 0.9.

OUTPUT: ONE JSON object and nothing else:
{{"targetY": 0.0-1.0, "speed": 0.0-1.0, "jitter": 0.0-0.2, "ttlMs": 200-3000, "reasoning": "one short sentence"}}

Example:
{{"targetY": 0.62, "speed": 0.8, "jitter": 0.02, "ttlMs": 900, "reasoning": "Ball banks off the top wall, meet it low."}}

Game state:
{GAME_STATE_JSON}"""


class DecisionError(ValueError):
    """The decision service replied with something that is not a usable plan."""


@dataclass(frozen=True)
class Plan:
    target_y: float
    speed: float
    jitter: float = 0.0
    ttl_ms: float = 1200.0
    reasoning: str = ""


# Used until the first successful reply arrives
FALLBACK_PLAN = Plan(target_y=0.5, speed=0.4, jitter=0.0, ttl_ms=1000.0,
                     reasoning="Holding centre court")


def _number(raw: dict, key: str, low: float, high: float, default=None) -> float:
    value = raw.get(key, default)
    if value is None:
        raise DecisionError(f"missing field {key!r}")
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise DecisionError(f"{key!r} is not a number: {value!r}")
    value = float(value)
    if not math.isfinite(value) or not low <= value <= high:
        raise DecisionError(f"{key!r}={value} outside [{low}, {high}]")
    return value


def validate_decision(raw: dict) -> Plan:
    """Turn a decoded reply into a Plan, or raise DecisionError."""
    if not isinstance(raw, dict):
        raise DecisionError(f"expected a JSON object, got {type(raw).__name__}")
    reasoning = raw.get("reasoning", "")
    if not isinstance(reasoning, str):
        raise DecisionError("'reasoning' is not a string")
    return Plan(
        target_y=_number(raw, "targetY", 0.0, 1.0),
        speed=_number(raw, "speed", 0.0, 1.0),
        jitter=_number(raw, "jitter", 0.0, 0.2, default=0.0),
        ttl_ms=_number(raw, "ttlMs", 200.0, 3000.0, default=1200.0),
        reasoning=reasoning.strip(),
    )


class PlanMailbox:
    """Single-slot hand-off from the decision thread to the game loop."""

    def __init__(self):
        self._lock = threading.Lock()
        self._pending: Plan | None = None

    def post(self, plan: Plan):
        with self._lock:
            self._pending = plan

    def take(self) -> Plan | None:
        with self._lock:
            plan, self._pending = self._pending, None
            return plan


class PlanCache:
    """
    The plan currently steering the AI paddle.

    Written only by the simulation when it drains the mailbox. A stale plan
    is still used; staleness only asks for a refresh.
    """

    def __init__(self, height: float = CANVAS_HEIGHT):
        self.height = height
        self.plan: Plan = FALLBACK_PLAN
        self.issued_at_ms: float | None = None
        self.jitter_offset_px: float = 0.0

    def adopt(self, plan: Plan, now_ms: float, rng: random.Random | None = None):
        rng = rng or random
        self.plan = plan
        self.issued_at_ms = now_ms
        self.jitter_offset_px = rng.uniform(-1.0, 1.0) * plan.jitter * self.height

    def is_stale(self, now_ms: float) -> bool:
        if self.issued_at_ms is None:
            return True
        return now_ms > self.issued_at_ms + self.plan.ttl_ms

    def target_top_y(self, offset_px: float) -> float:
        """Plan target as a paddle top edge, in pixels."""
        return self.plan.target_y * self.height + self.jitter_offset_px + offset_px

    @property
    def has_reply(self) -> bool:
        return self.issued_at_ms is not None


def _build_prompt(payload: dict) -> str:
    return PROMPT_TEMPLATE.format(
        CANVAS_HEIGHT=payload.get("canvasHeight", CANVAS_HEIGHT),
        GAME_STATE_JSON=json.dumps(payload, indent=2),
    )


def _parse_response(text: str) -> tuple[dict | None, str | None]:
    """Return (decision_dict, thinking_text) parsed from a raw response."""
    thinking = None
    thinking_match = re.search(r"<thinking>(.*?)</thinking>", text, re.DOTALL)
    if thinking_match:
        thinking = thinking_match.group(1).strip()

    json_text = re.sub(r"<thinking>.*?</thinking>", "", text, flags=re.DOTALL).strip()
    # Remove trailing commas before } or ]
    json_text = re.sub(r",\s*([}\]])", r"\1", json_text)

    # Last object carrying a target wins; models sometimes echo the example first
    for m in reversed(list(re.finditer(r"\{[^{}]*\}", json_text, re.DOTALL))):
        try:
            parsed = json.loads(m.group())
        except json.JSONDecodeError:
            continue
        if isinstance(parsed, dict) and "targetY" in parsed:
            return parsed, thinking

    return None, thinking


async def call_claude(payload: dict, max_tokens: int = DECISION_MAX_TOKENS) -> str:
    """Default transport: one Claude message per request, model picked by the payload."""
    client = anthropic.AsyncAnthropic(api_key=API_KEY, timeout=DECISION_TIMEOUT_S)
    message = await client.messages.create(
        model=payload["model"],
        max_tokens=max_tokens,
        messages=[{"role": "user", "content": _build_prompt(payload)}],
    )
    return message.content[0].text


class DecisionClient:
    """
    Async boundary to the decision service.

    Args:
        mailbox:    where validated plans are posted.
        transport:  async callable taking the request payload and returning
                    the raw reply text. Defaults to Claude.
        timeout_s:  per-request budget; a slower reply counts as a failure.
        loop:       background event loop used by `dispatch()`.
    """

    def __init__(
        self,
        mailbox: PlanMailbox,
        transport: Callable[[dict], Awaitable[str]] = call_claude,
        timeout_s: float = DECISION_TIMEOUT_S,
        loop: asyncio.AbstractEventLoop | None = None,
    ):
        self.mailbox = mailbox
        self.transport = transport
        self.timeout_s = timeout_s
        self.loop = loop
        self.requests = 0
        self.successes = 0
        self.failures = 0
        self.last_error: str | None = None
        self.latest_reasoning: str = ""

    async def request_plan(self, payload: dict) -> Plan | None:
        """One round-trip. Never raises; returns None on any failure."""
        self.requests += 1
        n = self.requests
        t_start = time.perf_counter()
        try:
            raw = await asyncio.wait_for(self.transport(payload), timeout=self.timeout_s)
            decision, thinking = _parse_response(raw)
            if decision is None:
                raise DecisionError(f"no plan in reply: {raw[:80]!r}")
            if not decision.get("reasoning") and thinking:
                decision = {**decision, "reasoning": thinking}
            plan = validate_decision(decision)
        except asyncio.CancelledError:
            raise
        except asyncio.TimeoutError:
            self._fail(n, f"timed out after {self.timeout_s:.1f}s")
            return None
        except Exception as e:
            self._fail(n, f"{type(e).__name__}: {e}")
            return None

        elapsed = time.perf_counter() - t_start
        self.successes += 1
        self.latest_reasoning = plan.reasoning
        self.mailbox.post(plan)
        print(f"[Decision {n:03d}] DONE ({elapsed:.2f}s) -> targetY={plan.target_y:.2f} "
              f"speed={plan.speed:.2f} ttl={plan.ttl_ms:.0f}ms | {plan.reasoning[:60]}")
        return plan

    def _fail(self, n: int, reason: str):
        self.failures += 1
        self.last_error = reason
        print(f"[Decision {n:03d}] FAILED -> {reason} (keeping previous plan)")

    def dispatch(self, payload: dict):
        """Fire-and-forget from the game loop's side."""
        if self.loop is None or not self.loop.is_running():
            self._fail(self.requests + 1, "decision loop is not running")
            return None
        return asyncio.run_coroutine_threadsafe(self.request_plan(payload), self.loop)
