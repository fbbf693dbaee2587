"""Shared pytest fixtures for LLM Pong tests."""

import random

import pytest

from AIsystem.session_gate import MatchPermit, MatchReceipt
from pong.simulation import PongSimulation


class FakeClock:
    """Millisecond clock that only moves when told to."""

    def __init__(self, start: float = 10_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, ms: float):
        self.now += ms


class FakeGate:
    def __init__(self, allowed: bool = True, remaining: int = 5):
        self.allowed = allowed
        self.remaining = remaining
        self.starts = 0
        self.completes = 0

    def try_start_match(self) -> MatchPermit:
        self.starts += 1
        if not self.allowed:
            return MatchPermit(False, 0, 123_456.0, "Rate limit reached. Try again in 3 hours.")
        return MatchPermit(True, self.remaining)

    def complete_match(self) -> MatchReceipt:
        self.completes += 1
        self.remaining -= 1
        return MatchReceipt(self.remaining)


class DispatchRecorder:
    def __init__(self):
        self.payloads: list[dict] = []

    def __call__(self, payload: dict):
        self.payloads.append(payload)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def gate():
    return FakeGate()


@pytest.fixture
def dispatched():
    return DispatchRecorder()


@pytest.fixture
def sim(gate, dispatched, clock):
    """A simulation whose side effects all run inline and are recorded."""
    return PongSimulation(
        gate=gate,
        dispatch=dispatched,
        run_async=lambda fn: fn(),
        clock=clock,
        rng=random.Random(7),
    )


@pytest.fixture
def running_sim(sim):
    sim.start()
    return sim


@pytest.fixture
def gate_clock():
    """Wall-clock stand-in for the quota store."""
    return FakeClock(start=1_000_000.0)
