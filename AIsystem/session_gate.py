"""
Session Gate — per-user match quota.

Each machine/user pair gets a fingerprint. Usage records live in an
expiring key-value store: a record disappears QUOTA_WINDOW_MS after the
first match it counted. The store is kept in `match_quota.json` so the
limit survives restarts; expired records are swept whenever the file is
loaded or written.

The simulation only ever sees two verbs: `try_start_match()` before a
match begins and `complete_match()` once it ends.
"""

import base64
import getpass
import json
import math
import os
import platform
import threading
import time
from dataclasses import asdict, dataclass
from typing import Callable

from pong.config import MAX_MATCHES_PER_WINDOW, QUOTA_FILE, QUOTA_WINDOW_MS


@dataclass
class UsageRecord:
    matches_played: int
    first_match_ms: float
    last_match_ms: float


@dataclass
class MatchPermit:
    allowed: bool
    remaining_matches: int
    reset_time_ms: float | None = None
    message: str = ""


@dataclass
class MatchReceipt:
    remaining_matches: int


def generate_fingerprint(host: str | None = None, user: str | None = None) -> str:
    """Cheap identity: first 16 chars of base64("<host>-<user>")."""
    if host is None:
        host = platform.node() or "unknown"
    if user is None:
        try:
            user = getpass.getuser()
        except (KeyError, OSError):
            user = "unknown"
    combined = f"{host}-{user}".encode("utf-8")
    return base64.b64encode(combined).decode("ascii")[:16]


def _now_ms() -> float:
    return time.time() * 1000


class QuotaStore:
    """Fingerprint -> UsageRecord with TTL semantics, optionally file-backed."""

    def __init__(self, path: str | None = QUOTA_FILE, ttl_ms: float = QUOTA_WINDOW_MS,
                 clock: Callable[[], float] = _now_ms):
        self.path = path
        self.ttl_ms = ttl_ms
        self.clock = clock
        self._lock = threading.Lock()
        self._records: dict[str, UsageRecord] = {}
        self._load()

    def _expired(self, record: UsageRecord, now: float) -> bool:
        return now - record.first_match_ms > self.ttl_ms

    def _sweep(self):
        now = self.clock()
        for key in [k for k, r in self._records.items() if self._expired(r, now)]:
            del self._records[key]

    def _load(self):
        if not self.path or not os.path.exists(self.path):
            return
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                raw = json.load(f)
            self._records = {k: UsageRecord(**v) for k, v in raw.items()}
        except (OSError, ValueError, TypeError) as e:
            print(f"[Gate] Could not read quota file: {e}")
            self._records = {}
        self._sweep()

    def _save(self):
        if not self.path:
            return
        try:
            with open(self.path, "w", encoding="utf-8") as f:
                json.dump({k: asdict(r) for k, r in self._records.items()}, f, indent=2)
        except OSError as e:
            print(f"[Gate] Quota write failed: {e}")

    def get(self, key: str) -> UsageRecord | None:
        with self._lock:
            record = self._records.get(key)
            if record is not None and self._expired(record, self.clock()):
                del self._records[key]
                self._save()
                return None
            return record

    def record_match(self, key: str) -> UsageRecord:
        with self._lock:
            now = self.clock()
            record = self._records.get(key)
            if record is None or self._expired(record, now):
                record = UsageRecord(matches_played=1, first_match_ms=now, last_match_ms=now)
            else:
                record = UsageRecord(record.matches_played + 1, record.first_match_ms, now)
            self._records[key] = record
            self._sweep()
            self._save()
            return record


def format_reset_message(reset_time_ms: float | None, now_ms: float) -> str:
    if reset_time_ms is None:
        return "Rate limit reached."
    hours = max(1, math.ceil((reset_time_ms - now_ms) / (60 * 60 * 1000)))
    return f"Rate limit reached. Try again in {hours} hour{'s' if hours != 1 else ''}."


class SessionGate:
    def __init__(self, store: QuotaStore | None = None, fingerprint: str | None = None,
                 max_matches: int = MAX_MATCHES_PER_WINDOW):
        self.store = store if store is not None else QuotaStore()
        self.fingerprint = fingerprint or generate_fingerprint()
        self.max_matches = max_matches

    def check(self) -> MatchPermit:
        record = self.store.get(self.fingerprint)
        if record is None:
            return MatchPermit(True, self.max_matches - 1)
        if record.matches_played >= self.max_matches:
            reset_time = record.first_match_ms + self.store.ttl_ms
            return MatchPermit(False, 0, reset_time,
                               format_reset_message(reset_time, self.store.clock()))
        return MatchPermit(True, self.max_matches - record.matches_played - 1)

    def try_start_match(self) -> MatchPermit:
        """Ask before a match starts. Does not consume quota."""
        permit = self.check()
        if permit.allowed:
            print(f"[Gate] Match allowed, {permit.remaining_matches} remaining after this one")
        else:
            print(f"[Gate] Match refused: {permit.message}")
        return permit

    def complete_match(self) -> MatchReceipt:
        """Count a finished match against the quota."""
        record = self.store.record_match(self.fingerprint)
        remaining = max(0, self.max_matches - record.matches_played)
        print(f"[Gate] Match recorded ({record.matches_played} played, {remaining} remaining)")
        return MatchReceipt(remaining)
