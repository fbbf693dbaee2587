"""
LLM Pong
========
Human (mouse) vs a Claude-planned paddle. First to 5 wins.

Run:
    llm-pong            (or: python -m pong.game)

Controls:
    SPACE start / new game   S stop   R reset   M next model   ESC quit
"""

import sys
import asyncio
import threading
import pygame

from AIsystem.ai_pipeline import DecisionClient, PlanMailbox
from AIsystem.session_gate import SessionGate
from pong.config import (
    AI_MODELS,
    AI_PLANE_X,
    BALL_SIZE,
    CANVAS_HEIGHT,
    CANVAS_WIDTH,
    COURT_BOTTOM,
    COURT_TOP,
    DEFAULT_MODEL,
    FPS,
    HUD_H,
    PADDLE_HEIGHT,
    PADDLE_OFFSET,
    PADDLE_WIDTH,
    TITLE,
)
from pong.simulation import IDLE, OVER, RUNNING, PongSimulation

SCREEN_W, SCREEN_H = CANVAS_WIDTH, CANVAS_HEIGHT + HUD_H

# ── Color palette ────────────────────────────────────────────────────────────
C_BG          = (10,  10,  20)
C_COURT       = (26,  77,  58)
C_LINE        = (255, 255, 255)
C_NET         = (200, 200, 200)
C_PADDLE      = (255, 255, 255)
C_BALL        = (255, 255,   0)
C_TEXT        = (200, 200, 200)
C_DIM         = (110, 110, 110)
C_WARN        = (255, 200,  50)
C_ERROR       = (230,  80,  80)
C_THINKING    = (180, 255, 180)
C_INTERCEPT   = (255, 120,  60)


class HudStatus:
    """What the HUD shows about quota; written from the decision thread."""

    def __init__(self):
        self._lock = threading.Lock()
        self.remaining_matches: int | None = None
        self.message: str = ""

    def set_permit(self, permit):
        with self._lock:
            self.remaining_matches = permit.remaining_matches
            self.message = "" if permit.allowed else permit.message

    def on_completed(self, future):
        try:
            receipt = future.result()
        except Exception as e:
            print(f"[Gate] complete_match failed: {e}")
            return
        with self._lock:
            self.remaining_matches = receipt.remaining_matches

    def snapshot(self) -> tuple[int | None, str]:
        with self._lock:
            return self.remaining_matches, self.message


# ═════════════════════════════════════════════════════════════════════════════
# DRAWING HELPERS
# ═════════════════════════════════════════════════════════════════════════════

_FONT_SCORE: pygame.font.Font | None = None
_FONT_HUD:   pygame.font.Font | None = None
_FONT_SMALL: pygame.font.Font | None = None
_FONT_BIG:   pygame.font.Font | None = None
_COURT_SURF: pygame.Surface   | None = None   # pre-rendered court lines

def _init_draw_caches():
    """Call once after pygame.init() to populate all caches."""
    global _FONT_SCORE, _FONT_HUD, _FONT_SMALL, _FONT_BIG, _COURT_SURF
    _FONT_SCORE = pygame.font.SysFont("monospace", 28)
    _FONT_HUD   = pygame.font.SysFont("monospace", 13, bold=True)
    _FONT_SMALL = pygame.font.SysFont("monospace", 12)
    _FONT_BIG   = pygame.font.SysFont("monospace", 32, bold=True)

    _COURT_SURF = pygame.Surface((CANVAS_WIDTH, CANVAS_HEIGHT))
    _COURT_SURF.fill(C_COURT)
    inner_w = CANVAS_WIDTH - 2 * COURT_TOP
    inner_h = COURT_BOTTOM - COURT_TOP
    pygame.draw.rect(_COURT_SURF, C_LINE, (COURT_TOP, COURT_TOP, inner_w, inner_h), 2)
    service_y1 = COURT_TOP + inner_h * 0.25
    service_y2 = COURT_TOP + inner_h * 0.75
    for y in (service_y1, service_y2):
        pygame.draw.line(_COURT_SURF, C_LINE, (COURT_TOP, y), (CANVAS_WIDTH - COURT_TOP, y), 2)
    for x in (60, CANVAS_WIDTH - 60):
        pygame.draw.line(_COURT_SURF, C_LINE, (x, COURT_TOP), (x, COURT_BOTTOM), 2)
    pygame.draw.line(_COURT_SURF, C_NET, (CANVAS_WIDTH // 2, COURT_TOP),
                     (CANVAS_WIDTH // 2, COURT_BOTTOM), 3)


def draw_court(surf: pygame.Surface, sim: PongSimulation):
    s = sim.state
    surf.blit(_COURT_SURF, (0, 0))

    if sim.phase != IDLE:
        pygame.draw.rect(surf, C_PADDLE, (25, s.player_paddle_y, PADDLE_WIDTH, PADDLE_HEIGHT))
        pygame.draw.rect(surf, C_PADDLE, (CANVAS_WIDTH - PADDLE_OFFSET, s.ai_paddle_y,
                                          PADDLE_WIDTH, PADDLE_HEIGHT))
        pygame.draw.circle(surf, C_BALL, (int(s.ball_x), int(s.ball_y)), BALL_SIZE // 2)

    # Where the AI expects the ball
    p = sim.last_prediction
    if sim.phase == RUNNING and p is not None and p.reliable and s.ball_vel_x > 0:
        pygame.draw.circle(surf, C_INTERCEPT, (int(AI_PLANE_X), int(p.y)), 3, 1)

    score_l = _FONT_SCORE.render(str(s.player_score), True, C_TEXT)
    score_r = _FONT_SCORE.render(str(s.ai_score), True, C_TEXT)
    surf.blit(score_l, score_l.get_rect(center=(CANVAS_WIDTH // 4, 45)))
    surf.blit(score_r, score_r.get_rect(center=(3 * CANVAS_WIDTH // 4, 45)))


def draw_game_over(surf: pygame.Surface, winner: str):
    overlay = pygame.Surface((CANVAS_WIDTH, CANVAS_HEIGHT), pygame.SRCALPHA)
    overlay.fill((0, 0, 0, 230))
    surf.blit(overlay, (0, 0))
    msg = "Player wins" if winner == "player" else "AI Opponent wins"
    txt = _FONT_BIG.render(msg, True, C_LINE)
    surf.blit(txt, txt.get_rect(center=(CANVAS_WIDTH // 2, CANVAS_HEIGHT // 2)))
    sub = _FONT_SMALL.render("Press SPACE for a new game  |  R to reset", True, C_DIM)
    surf.blit(sub, sub.get_rect(center=(CANVAS_WIDTH // 2, CANVAS_HEIGHT // 2 + 34)))


def draw_hud(surf: pygame.Surface, sim: PongSimulation, client: DecisionClient,
             status: HudStatus, model_name: str, fps_val: float):
    y0 = CANVAS_HEIGHT
    pygame.draw.rect(surf, C_BG, (0, y0, SCREEN_W, HUD_H))

    if sim.phase == RUNNING:
        if sim.cache.has_reply:
            line, col = f"AI: {sim.plan.reasoning}", C_THINKING
        else:
            line, col = "AI is thinking...", C_DIM
        surf.blit(_FONT_SMALL.render(line[:100], True, col), (12, y0 + 8))

    remaining, message = status.snapshot()
    if message:
        surf.blit(_FONT_HUD.render(message, True, C_ERROR), (12, y0 + 28))
    elif remaining is not None and remaining < 2:
        plural = "es" if remaining != 1 else ""
        surf.blit(_FONT_HUD.render(f"{remaining} match{plural} remaining today", True, C_WARN),
                  (12, y0 + 28))

    lock = " (locked)" if sim.phase == RUNNING else ""
    surf.blit(_FONT_HUD.render(f"Model: {model_name}{lock}", True, C_TEXT), (12, y0 + 48))
    surf.blit(_FONT_SMALL.render(
        f"plans {client.successes}  failed {client.failures}  FPS {fps_val:4.1f}",
        True, C_DIM), (SCREEN_W - 300, y0 + 48))

    start_label = "New Game" if sim.phase != IDLE else "Start"
    stop_label = "Stop" if sim.phase == RUNNING else "Reset"
    stop_key = "S" if sim.phase == RUNNING else "R"
    hint = f"SPACE {start_label}   {stop_key} {stop_label}   M Model   ESC Quit"
    surf.blit(_FONT_SMALL.render(hint, True, C_DIM), (12, y0 + 68))


# ═════════════════════════════════════════════════════════════════════════════
# MAIN GAME
# ═════════════════════════════════════════════════════════════════════════════

def run_game(sim: PongSimulation, client: DecisionClient, status: HudStatus,
             stop_event: threading.Event):
    """
    Synchronous game loop in the main thread: one simulation tick per frame.
    Decision requests run on the background loop and never block a frame.
    """
    pygame.init()
    pygame.font.init()
    _init_draw_caches()

    surf  = pygame.display.set_mode((SCREEN_W, SCREEN_H))
    pygame.display.set_caption(TITLE)
    clock = pygame.time.Clock()

    model_ids = [m for m, _ in AI_MODELS]
    model_idx = model_ids.index(sim.model) if sim.model in model_ids else 0
    model_names = dict(AI_MODELS)
    pointer_y = CANVAS_HEIGHT / 2
    fps_val = float(FPS)

    print("[Game] Loop started.")

    while not stop_event.is_set():
        clock.tick(FPS)

        for event in pygame.event.get():
            if event.type == pygame.QUIT:
                stop_event.set()
                break
            elif event.type == pygame.MOUSEMOTION:
                pointer_y = event.pos[1]
            elif event.type == pygame.KEYDOWN:
                if event.key == pygame.K_ESCAPE:
                    stop_event.set()
                    break
                if event.key == pygame.K_SPACE:
                    status.set_permit(sim.start())
                elif event.key == pygame.K_s:
                    sim.stop()
                elif event.key == pygame.K_r and sim.phase != RUNNING:
                    sim.reset()
                elif event.key == pygame.K_m:
                    next_idx = (model_idx + 1) % len(model_ids)
                    if sim.set_model(model_ids[next_idx]):
                        model_idx = next_idx
                        print(f"[Game] Model -> {sim.model}")

        if stop_event.is_set():
            break

        sim.tick(pointer_y)

        draw_court(surf, sim)
        if sim.phase == OVER:
            draw_game_over(surf, sim.state.winner)
        fps_val = clock.get_fps()
        draw_hud(surf, sim, client, status, model_names.get(sim.model, sim.model), fps_val)
        pygame.display.flip()

    pygame.quit()
    print("[Game] Exited cleanly.")


# ═════════════════════════════════════════════════════════════════════════════
# DECISION BACKGROUND THREAD
# ═════════════════════════════════════════════════════════════════════════════

class DecisionThread(threading.Thread):
    """
    Daemon thread that owns its own asyncio event loop. Decision requests and
    session-gate bookkeeping are scheduled onto it from the game loop; the
    game loop never waits on them.
    """
    def __init__(self):
        super().__init__(daemon=True)
        self.loop = asyncio.new_event_loop()
        self._ready = threading.Event()

    def run(self):
        asyncio.set_event_loop(self.loop)
        self.loop.call_soon(self._ready.set)
        try:
            self.loop.run_forever()
        finally:
            pending = asyncio.all_tasks(self.loop)
            for task in pending:
                task.cancel()
            if pending:
                self.loop.run_until_complete(asyncio.gather(*pending, return_exceptions=True))
            self.loop.run_until_complete(self.loop.shutdown_default_executor())
            self.loop.close()

    def wait_ready(self, timeout: float = 2.0) -> bool:
        return self._ready.wait(timeout)

    def submit(self, fn):
        """Run a blocking callable off the game loop; returns a concurrent Future."""
        return asyncio.run_coroutine_threadsafe(asyncio.to_thread(fn), self.loop)

    def shutdown(self):
        if self.loop.is_running():
            self.loop.call_soon_threadsafe(self.loop.stop)


# ═════════════════════════════════════════════════════════════════════════════
# ENTRY POINT
# ═════════════════════════════════════════════════════════════════════════════

def main():
    if hasattr(sys.stdout, "reconfigure"):
        sys.stdout.reconfigure(encoding="utf-8", errors="replace")

    stop_event = threading.Event()
    decision_thread = DecisionThread()
    decision_thread.start()
    decision_thread.wait_ready()
    print("[Main] Decision thread started.")

    mailbox = PlanMailbox()
    client  = DecisionClient(mailbox, loop=decision_thread.loop)
    gate    = SessionGate()
    status  = HudStatus()

    def run_async(fn):
        decision_thread.submit(fn).add_done_callback(status.on_completed)

    sim = PongSimulation(
        gate      = gate,
        dispatch  = client.dispatch,
        mailbox   = mailbox,
        model     = DEFAULT_MODEL,
        run_async = run_async,
    )

    run_game(sim, client, status, stop_event)

    decision_thread.shutdown()
    decision_thread.join(timeout=3.0)
    print("[Main] Done.")


if __name__ == "__main__":
    main()
