"""
Court geometry, physics tuning and runtime settings for LLM Pong.

Secrets and overrides come from the environment; the project `.env`
(one level above pong/) is loaded first.
"""

import os
from dotenv import load_dotenv

load_dotenv(os.path.join(os.path.dirname(__file__), "..", ".env"))

# ── Court ────────────────────────────────────────────────────────────────────
CANVAS_WIDTH  = 800
CANVAS_HEIGHT = 400
PADDLE_WIDTH  = 10
PADDLE_HEIGHT = 80
BALL_SIZE     = 10

PADDLE_SPEED  = 6     # px/tick, base for both the AI speed factor and reach checks
BALL_SPEED    = 4     # px/tick, serve speed and normalisation base
MS_PER_TICK   = 16

COURT_TOP     = 20
COURT_BOTTOM  = CANVAS_HEIGHT - 20
PADDLE_TOP    = COURT_TOP
PADDLE_BOTTOM = COURT_BOTTOM - PADDLE_HEIGHT

WALL_TOP_Y    = 25                       # ball reflects at or beyond these lines
WALL_BOTTOM_Y = CANVAS_HEIGHT - 25
PADDLE_OFFSET = 35                       # distance from canvas edge to paddle face
PLAYER_FACE_X = PADDLE_OFFSET + BALL_SIZE
AI_FACE_X     = CANVAS_WIDTH - PADDLE_OFFSET - PADDLE_WIDTH - BALL_SIZE
AI_PLANE_X    = CANVAS_WIDTH - PADDLE_OFFSET - PADDLE_WIDTH
PLAYER_BASELINE_X = 20
AI_BASELINE_X     = CANVAS_WIDTH - 20

BOUNCE_RESPONSE = 4   # vel_y after hitting a paddle edge
WIN_POINTS      = 5

# ── AI behaviour ─────────────────────────────────────────────────────────────
DEADBAND_PX          = 5
DRIFT_THRESHOLD      = 0.03
REFRESH_COOLDOWN_MS  = 150
PREDICT_MAX_BOUNCES  = 1000
TARGET_OFFSET_PX     = float(os.environ.get("PONG_TARGET_OFFSET_PX", -PADDLE_HEIGHT / 2))

# ── Decision service ─────────────────────────────────────────────────────────
API_KEY              = os.environ.get("ANTHROPIC_API_KEY", "")
DEFAULT_MODEL        = os.environ.get("PONG_MODEL", "claude-haiku-4-5-20251001")
DECISION_TIMEOUT_S   = float(os.environ.get("PONG_DECISION_TIMEOUT_S", 4.0))
DECISION_MAX_TOKENS  = 200

AI_MODELS = [
    ("claude-haiku-4-5-20251001", "Claude Haiku 4.5"),
    ("claude-sonnet-4-5",         "Claude Sonnet 4.5"),
    ("claude-3-5-haiku-latest",   "Claude 3.5 Haiku"),
]

# ── Session gate ─────────────────────────────────────────────────────────────
MAX_MATCHES_PER_WINDOW = 10
QUOTA_WINDOW_MS        = 24 * 60 * 60 * 1000
QUOTA_FILE             = os.environ.get(
    "PONG_QUOTA_FILE",
    os.path.join(os.path.dirname(os.path.abspath(__file__)), "match_quota.json"),
)

# ── Display ──────────────────────────────────────────────────────────────────
FPS   = 60
TITLE = "LLM PONG — Human vs Claude"
HUD_H = 90   # strip under the court for controls and AI reasoning
