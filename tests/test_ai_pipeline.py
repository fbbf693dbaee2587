"""Tests for plan validation, the plan cache/mailbox and the decision client."""

import asyncio
import random

import pytest

from AIsystem.ai_pipeline import (
    FALLBACK_PLAN,
    DecisionClient,
    DecisionError,
    Plan,
    PlanCache,
    PlanMailbox,
    _build_prompt,
    _parse_response,
    validate_decision,
)

PAYLOAD = {
    "ballX": 0.5, "ballY": 0.5, "ballVelX": 1.0, "ballVelY": 0.25,
    "paddleY": 0.4, "canvasHeight": 400,
    "predictedInterceptYNorm": 0.61, "timeToInterceptMs": 720.0,
    "canReach": True, "ballMovingTowardAI": True, "rallyLength": 3,
    "scorePlayer": 1, "scoreAI": 2, "model": "claude-haiku-4-5-20251001",
}


def reply_transport(text):
    async def transport(payload):
        return text
    return transport


def failing_transport(exc):
    async def transport(payload):
        raise exc
    return transport


# =============================================================================
# Test: validate_decision
# =============================================================================

class TestValidateDecision:
    def test_full_reply(self):
        plan = validate_decision({"targetY": 0.7, "speed": 0.9, "jitter": 0.05,
                                  "ttlMs": 800, "reasoning": " Meet it low. "})
        assert plan == Plan(0.7, 0.9, 0.05, 800.0, "Meet it low.")

    def test_defaults_for_optional_fields(self):
        plan = validate_decision({"targetY": 0.2, "speed": 0.5, "reasoning": "x"})
        assert plan.jitter == 0.0
        assert plan.ttl_ms == 1200.0

    def test_reasoning_optional(self):
        assert validate_decision({"targetY": 0.2, "speed": 0.5}).reasoning == ""

    @pytest.mark.parametrize("raw", [
        {"speed": 0.5},
        {"targetY": 0.5},
        {"targetY": 1.2, "speed": 0.5},
        {"targetY": -0.1, "speed": 0.5},
        {"targetY": 0.5, "speed": 1.5},
        {"targetY": 0.5, "speed": 0.5, "jitter": 0.3},
        {"targetY": 0.5, "speed": 0.5, "ttlMs": 100},
        {"targetY": 0.5, "speed": 0.5, "ttlMs": 5000},
        {"targetY": "0.5", "speed": 0.5},
        {"targetY": True, "speed": 0.5},
        {"targetY": float("nan"), "speed": 0.5},
        {"targetY": 0.5, "speed": 0.5, "reasoning": 42},
    ])
    def test_rejects_malformed_or_out_of_range(self, raw):
        with pytest.raises(DecisionError):
            validate_decision(raw)

    def test_rejects_non_object(self):
        with pytest.raises(DecisionError):
            validate_decision([0.5, 0.5])

    def test_bounds_are_inclusive(self):
        plan = validate_decision({"targetY": 1, "speed": 0, "jitter": 0.2, "ttlMs": 3000})
        assert plan.target_y == 1.0 and plan.speed == 0.0


# =============================================================================
# Test: _parse_response / _build_prompt
# =============================================================================

class TestParseResponse:
    def test_plain_json(self):
        decision, thinking = _parse_response('{"targetY": 0.4, "speed": 0.6}')
        assert decision == {"targetY": 0.4, "speed": 0.6}
        assert thinking is None

    def test_thinking_and_trailing_comma(self):
        text = '<thinking>Ball is dropping.</thinking>\n{"targetY": 0.8, "speed": 1.0,}'
        decision, thinking = _parse_response(text)
        assert decision == {"targetY": 0.8, "speed": 1.0}
        assert thinking == "Ball is dropping."

    def test_last_object_wins(self):
        text = 'Like {"targetY": 0.1, "speed": 0.1} but really:\n{"targetY": 0.9, "speed": 0.3}'
        decision, _ = _parse_response(text)
        assert decision["targetY"] == 0.9

    def test_no_json(self):
        assert _parse_response("I cannot help with that.") == (None, None)

    def test_prompt_embeds_payload(self):
        prompt = _build_prompt(PAYLOAD)
        assert '"predictedInterceptYNorm": 0.61' in prompt
        assert "400px" in prompt


# =============================================================================
# Test: PlanMailbox / PlanCache
# =============================================================================

class TestPlanMailbox:
    def test_empty(self):
        assert PlanMailbox().take() is None

    def test_take_clears_slot(self):
        box = PlanMailbox()
        box.post(Plan(0.3, 0.3))
        assert box.take() == Plan(0.3, 0.3)
        assert box.take() is None

    def test_last_arrival_wins(self):
        box = PlanMailbox()
        box.post(Plan(0.3, 0.3))
        box.post(Plan(0.9, 0.9))
        assert box.take() == Plan(0.9, 0.9)


class TestPlanCache:
    def test_starts_with_fallback_and_stale(self):
        cache = PlanCache()
        assert cache.plan == FALLBACK_PLAN
        assert cache.is_stale(0)
        assert not cache.has_reply

    def test_fallback_values(self):
        assert (FALLBACK_PLAN.target_y, FALLBACK_PLAN.speed,
                FALLBACK_PLAN.jitter, FALLBACK_PLAN.ttl_ms) == (0.5, 0.4, 0.0, 1000.0)

    def test_stale_after_ttl(self):
        cache = PlanCache()
        cache.adopt(Plan(0.5, 0.5, ttl_ms=500), now_ms=1000)
        assert not cache.is_stale(1500)
        assert cache.is_stale(1501)

    def test_target_without_jitter(self):
        cache = PlanCache()
        cache.adopt(Plan(0.25, 0.5), now_ms=0)
        assert cache.target_top_y(-40) == pytest.approx(60)

    def test_jitter_offset_bounded(self):
        cache = PlanCache()
        rng = random.Random(3)
        for _ in range(50):
            cache.adopt(Plan(0.5, 0.5, jitter=0.1), now_ms=0, rng=rng)
            assert abs(cache.jitter_offset_px) <= 0.1 * 400
        assert cache.target_top_y(0) == pytest.approx(200 + cache.jitter_offset_px)


# =============================================================================
# Test: DecisionClient
# =============================================================================

class TestDecisionClient:
    def test_success_posts_plan(self):
        box = PlanMailbox()
        client = DecisionClient(box, transport=reply_transport(
            '{"targetY": 0.61, "speed": 0.8, "ttlMs": 900, "reasoning": "Cut it off."}'))

        plan = asyncio.run(client.request_plan(PAYLOAD))

        assert plan == Plan(0.61, 0.8, 0.0, 900.0, "Cut it off.")
        assert box.take() == plan
        assert client.successes == 1 and client.failures == 0
        assert client.latest_reasoning == "Cut it off."

    def test_thinking_fills_missing_reasoning(self):
        client = DecisionClient(PlanMailbox(), transport=reply_transport(
            '<thinking>Stay central.</thinking>{"targetY": 0.5, "speed": 0.2}'))
        plan = asyncio.run(client.request_plan(PAYLOAD))
        assert plan.reasoning == "Stay central."

    def test_transport_error_keeps_mailbox_empty(self):
        box = PlanMailbox()
        client = DecisionClient(box, transport=failing_transport(ConnectionError("boom")))

        assert asyncio.run(client.request_plan(PAYLOAD)) is None
        assert box.take() is None
        assert client.failures == 1
        assert "boom" in client.last_error

    def test_out_of_range_reply_is_a_failure(self):
        box = PlanMailbox()
        client = DecisionClient(box, transport=reply_transport('{"targetY": 1.7, "speed": 0.5}'))
        assert asyncio.run(client.request_plan(PAYLOAD)) is None
        assert box.take() is None
        assert client.failures == 1

    def test_unparseable_reply_is_a_failure(self):
        client = DecisionClient(PlanMailbox(), transport=reply_transport("no idea"))
        assert asyncio.run(client.request_plan(PAYLOAD)) is None
        assert "no plan" in client.last_error

    def test_timeout_is_a_failure(self):
        async def slow(payload):
            await asyncio.sleep(1.0)
            return '{"targetY": 0.5, "speed": 0.5}'

        box = PlanMailbox()
        client = DecisionClient(box, transport=slow, timeout_s=0.01)
        assert asyncio.run(client.request_plan(PAYLOAD)) is None
        assert box.take() is None
        assert "timed out" in client.last_error

    def test_dispatch_without_loop_does_not_raise(self):
        client = DecisionClient(PlanMailbox(), transport=reply_transport("{}"))
        assert client.dispatch(PAYLOAD) is None
        assert client.failures == 1
