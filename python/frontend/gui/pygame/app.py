"""Pygame GUI frontend, self-contained.

Main menu with size selection, click-to-shift gameplay, win screen and
best results. Hovering a tile that shares a row or column with the gap
tints the tiles that would slide with it.
"""

from __future__ import annotations

import enum
from datetime import datetime
from pathlib import Path

import pygame

from backend.engine.gameplay import PuzzleEngine
from backend.models.board import MAX_SIZE, MIN_SIZE, Direction, Position
from backend.models.highscore import SOLO, HighScoreEntry, HighScoreManager

# ---------------------------------------------------------------------------
# Catppuccin Mocha palette
# ---------------------------------------------------------------------------
COL_BASE = (30, 30, 46)
COL_MANTLE = (24, 24, 37)
COL_SURFACE0 = (49, 50, 68)
COL_SURFACE1 = (69, 71, 90)
COL_OVERLAY0 = (108, 112, 134)
COL_TEXT = (205, 214, 244)
COL_SUBTEXT = (166, 173, 200)
COL_BLUE = (137, 180, 250)
COL_LAVENDER = (180, 190, 254)
COL_GREEN = (166, 227, 161)
COL_PINK = (245, 194, 231)
COL_PEACH = (250, 179, 135)
COL_RED = (243, 139, 168)

# ---------------------------------------------------------------------------
# Layout
# ---------------------------------------------------------------------------
WIN_W, WIN_H = 500, 640
TILE_GAP = 4
MARGIN = 20
BOARD_TOP = 76
BOARD_MAX = WIN_W - 2 * MARGIN


def tile_layout(size: int) -> tuple[int, int, int, int]:
    """``(tile_px, origin_x, origin_y, total_px)`` for a *size*×*size* board."""
    tile_px = (BOARD_MAX - (size + 1) * TILE_GAP) // size
    total = size * tile_px + (size + 1) * TILE_GAP
    return tile_px, (WIN_W - total) // 2 + TILE_GAP, BOARD_TOP + TILE_GAP, total


def cell_at(point: tuple[int, int], size: int) -> Position | None:
    """Board cell under a window coordinate, or ``None`` for gaps and margins."""
    tpx, ox, oy, _ = tile_layout(size)
    x, y = point[0] - ox, point[1] - oy
    if x < 0 or y < 0:
        return None
    col, dx = divmod(x, tpx + TILE_GAP)
    row, dy = divmod(y, tpx + TILE_GAP)
    if row >= size or col >= size or dx >= tpx or dy >= tpx:
        return None
    return row, col


class _Screen(enum.Enum):
    MENU = "menu"
    PLAYING = "playing"
    WIN = "win"
    SCORES = "scores"


class _Btn:
    __slots__ = ("rect", "text", "font", "bg", "hover", "fg", "_hot")

    def __init__(
        self,
        rect: tuple[int, int, int, int],
        text: str,
        font: pygame.font.Font,
        *,
        bg: tuple = COL_SURFACE0,
        hover: tuple = COL_SURFACE1,
        fg: tuple = COL_TEXT,
    ) -> None:
        self.rect = pygame.Rect(rect)
        self.text = text
        self.font = font
        self.bg = bg
        self.hover = hover
        self.fg = fg
        self._hot = False

    def draw(self, surf: pygame.Surface) -> None:
        pygame.draw.rect(surf, self.hover if self._hot else self.bg, self.rect, border_radius=8)
        lbl = self.font.render(self.text, True, self.fg)
        surf.blit(lbl, lbl.get_rect(center=self.rect.center))

    def motion(self, pos: tuple[int, int]) -> None:
        self._hot = self.rect.collidepoint(pos)

    def hit(self, pos: tuple[int, int]) -> bool:
        return self.rect.collidepoint(pos)


def _blit_center(surf: pygame.Surface, rendered: pygame.Surface, y: int) -> None:
    surf.blit(rendered, ((WIN_W - rendered.get_width()) // 2, y))


_KEY_DIRS = {
    pygame.K_UP: Direction.UP,
    pygame.K_w: Direction.UP,
    pygame.K_DOWN: Direction.DOWN,
    pygame.K_s: Direction.DOWN,
    pygame.K_LEFT: Direction.LEFT,
    pygame.K_a: Direction.LEFT,
    pygame.K_RIGHT: Direction.RIGHT,
    pygame.K_d: Direction.RIGHT,
}


class PygameApp:
    def __init__(self, default_size: int, data_dir: Path) -> None:
        self._data_dir = data_dir
        self._hs = HighScoreManager(data_dir / "highscores.json")
        self._sel_size = min(max(default_size, MIN_SIZE), MAX_SIZE)

        pygame.init()
        self._surf = pygame.display.set_mode((WIN_W, WIN_H))
        pygame.display.set_caption("Line Slide")
        self._clock = pygame.time.Clock()

        self._f_big = pygame.font.SysFont("Helvetica", 38, bold=True)
        self._f_title = pygame.font.SysFont("Helvetica", 22, bold=True)
        self._f_body = pygame.font.SysFont("Helvetica", 16)
        self._f_btn = pygame.font.SysFont("Helvetica", 17, bold=True)
        self._f_btn_sm = pygame.font.SysFont("Helvetica", 14, bold=True)
        self._f_small = pygame.font.SysFont("Helvetica", 13)

        self._screen = _Screen.MENU
        self._engine: PuzzleEngine | None = None
        self._hover: Position | None = None
        self._rank = 0
        self._build_buttons()

    # ── buttons ─────────────────────────────────────────────────────────────

    def _build_buttons(self) -> None:
        sizes = range(MIN_SIZE, MAX_SIZE + 1)
        bw, gap = 56, 6
        sx = (WIN_W - (len(sizes) * bw + (len(sizes) - 1) * gap)) // 2
        self._size_btns = {
            s: _Btn((sx + i * (bw + gap), 250, bw, 46), f"{s}×{s}", self._f_btn_sm)
            for i, s in enumerate(sizes)
        }

        wide = 220
        cx = (WIN_W - wide) // 2
        self._play_btn = _Btn(
            (cx, 330, wide, 50), "P L A Y", self._f_btn,
            bg=COL_BLUE, hover=COL_LAVENDER, fg=COL_BASE,
        )
        self._hs_btn = _Btn((cx, 394, wide, 42), "BEST RESULTS", self._f_btn_sm)
        self._quit_btn = _Btn(
            (cx, 450, wide, 42), "Q U I T", self._f_btn_sm,
            bg=COL_RED, hover=(255, 170, 185), fg=COL_BASE,
        )
        self._menu_all = [*self._size_btns.values(), self._play_btn, self._hs_btn, self._quit_btn]

        self._new_btn = _Btn(
            ((WIN_W - 140) // 2, 0, 140, 36), "NEW BOARD (R)", self._f_btn_sm,
            bg=COL_PINK, hover=(245, 210, 227), fg=COL_BASE,
        )
        self._win_again = _Btn(
            (cx, 420, wide, 50), "PLAY AGAIN", self._f_btn,
            bg=COL_GREEN, hover=(190, 240, 190), fg=COL_BASE,
        )
        self._win_menu = _Btn((cx, 488, wide, 46), "M E N U", self._f_btn_sm)
        self._score_back = _Btn(((WIN_W - 180) // 2, WIN_H - 64, 180, 46), "B A C K", self._f_btn_sm)

    @staticmethod
    def _fmt(seconds: float) -> str:
        m, s = divmod(int(seconds), 60)
        return f"{m:02d}:{s:02d}"

    # ── drawing ─────────────────────────────────────────────────────────────

    def _draw_menu(self) -> None:
        self._surf.fill(COL_BASE)
        _blit_center(self._surf, self._f_big.render("LINE  SLIDE", True, COL_TEXT), 80)
        _blit_center(self._surf, self._f_body.render("Select board size", True, COL_SUBTEXT), 210)
        for s, btn in self._size_btns.items():
            btn.bg = COL_GREEN if s == self._sel_size else COL_SURFACE0
            btn.fg = COL_BASE if s == self._sel_size else COL_TEXT
            btn.draw(self._surf)
        self._play_btn.draw(self._surf)
        self._hs_btn.draw(self._surf)
        self._quit_btn.draw(self._surf)

    def _draw_game(self) -> None:
        self._surf.fill(COL_BASE)
        engine = self._engine
        assert engine is not None
        board = engine.board
        sz = engine.dimension
        tpx, ox, oy, total = tile_layout(sz)
        f_tile = pygame.font.SysFont("Helvetica", max(14, tpx // 3), bold=True)

        _blit_center(self._surf, self._f_title.render(f"Line Slide  {sz}×{sz}", True, COL_TEXT), 14)
        _blit_center(
            self._surf,
            self._f_body.render(
                f"Moves: {engine.state.moves}    Time: {self._fmt(engine.state.elapsed_time)}",
                True,
                COL_PINK,
            ),
            44,
        )
        pygame.draw.rect(
            self._surf, COL_MANTLE, pygame.Rect((WIN_W - total) // 2, BOARD_TOP, total, total), border_radius=10
        )

        preview: set[Position] = set()
        if self._hover is not None and engine.is_legal_move(self._hover):
            preview = {self._hover, *engine.affected_cells(self._hover)}

        for r in range(sz):
            for c in range(sz):
                val = board.tiles[r][c]
                if val == 0:
                    continue
                rect = pygame.Rect(ox + c * (tpx + TILE_GAP), oy + r * (tpx + TILE_GAP), tpx, tpx)
                if (r, c) in preview:
                    colour = COL_PEACH
                elif board.is_tile_correct(r, c):
                    colour = COL_GREEN
                else:
                    colour = COL_BLUE
                pygame.draw.rect(self._surf, colour, rect, border_radius=6)
                lbl = f_tile.render(str(val), True, COL_BASE)
                self._surf.blit(lbl, lbl.get_rect(center=rect.center))

        self._new_btn.rect.y = BOARD_TOP + total + 10
        self._new_btn.draw(self._surf)
        _blit_center(
            self._surf,
            self._f_small.render(
                "Click a tile in line with the gap     Arrows / WASD  slide     M  menu",
                True,
                COL_OVERLAY0,
            ),
            self._new_btn.rect.bottom + 10,
        )

    def _draw_win(self) -> None:
        self._surf.fill(COL_BASE)
        engine = self._engine
        assert engine is not None
        _blit_center(self._surf, self._f_big.render("★  S O L V E D  ★", True, COL_GREEN), 100)
        info = [
            (f"Grid:   {engine.dimension}×{engine.dimension}", COL_SUBTEXT),
            (f"Moves:  {engine.state.moves}", COL_PINK),
            (f"Time:   {self._fmt(engine.state.elapsed_time)}", COL_PINK),
        ]
        if self._rank == 1:
            info.append(("New best!", COL_GREEN))
        y = 200
        for txt, col in info:
            _blit_center(self._surf, self._f_title.render(txt, True, col), y)
            y += 44
        self._win_again.draw(self._surf)
        self._win_menu.draw(self._surf)

    def _draw_scores(self) -> None:
        self._surf.fill(COL_BASE)
        _blit_center(self._surf, self._f_big.render("BEST  RESULTS", True, COL_TEXT), 24)
        sizes = self._hs.get_all_sizes()
        y = 90
        if not sizes:
            _blit_center(self._surf, self._f_body.render("Nothing solved yet.", True, COL_OVERLAY0), y + 30)
        for sz in sizes:
            _blit_center(self._surf, self._f_btn_sm.render(f"{sz}×{sz}", True, COL_BLUE), y)
            y += 28
            for i, e in enumerate(self._hs.get_scores(sz)[:5], 1):
                row = f"{i}.  {e.moves} moves   {e.time:.1f}s   {e.mode}   ({e.date})"
                self._surf.blit(self._f_small.render(row, True, COL_SUBTEXT), (60, y))
                y += 22
            y += 14
            if y > WIN_H - 90:
                break
        self._score_back.draw(self._surf)

    # ── event handling ──────────────────────────────────────────────────────

    def _ev_menu(self, ev: pygame.event.Event) -> bool:
        if ev.type == pygame.MOUSEMOTION:
            for b in self._menu_all:
                b.motion(ev.pos)
        elif ev.type == pygame.MOUSEBUTTONDOWN and ev.button == 1:
            for s, b in self._size_btns.items():
                if b.hit(ev.pos):
                    self._sel_size = s
                    return True
            if self._play_btn.hit(ev.pos):
                self._start_game()
            elif self._hs_btn.hit(ev.pos):
                self._hs = HighScoreManager(self._data_dir / "highscores.json")
                self._screen = _Screen.SCORES
            elif self._quit_btn.hit(ev.pos):
                return False
        elif ev.type == pygame.KEYDOWN:
            if ev.key == pygame.K_RETURN:
                self._start_game()
            elif ev.key == pygame.K_LEFT:
                self._sel_size = max(MIN_SIZE, self._sel_size - 1)
            elif ev.key == pygame.K_RIGHT:
                self._sel_size = min(MAX_SIZE, self._sel_size + 1)
            elif ev.key in (pygame.K_q, pygame.K_ESCAPE):
                return False
        return True

    def _ev_game(self, ev: pygame.event.Event) -> bool:
        engine = self._engine
        assert engine is not None
        if ev.type == pygame.MOUSEMOTION:
            self._new_btn.motion(ev.pos)
            self._hover = cell_at(ev.pos, engine.dimension)
        elif ev.type == pygame.MOUSEBUTTONDOWN and ev.button == 1:
            if self._new_btn.hit(ev.pos):
                self._start_game()
                return True
            cell = cell_at(ev.pos, engine.dimension)
            if cell is not None:
                engine.apply_move(cell)
        elif ev.type == pygame.KEYDOWN:
            if ev.key in _KEY_DIRS:
                engine.move(_KEY_DIRS[ev.key])
            elif ev.key == pygame.K_r:
                self._start_game()
            elif ev.key in (pygame.K_m, pygame.K_ESCAPE):
                self._screen = _Screen.MENU
        return True

    def _ev_win(self, ev: pygame.event.Event) -> bool:
        if ev.type == pygame.MOUSEMOTION:
            self._win_again.motion(ev.pos)
            self._win_menu.motion(ev.pos)
        elif ev.type == pygame.MOUSEBUTTONDOWN and ev.button == 1:
            if self._win_again.hit(ev.pos):
                self._start_game()
            elif self._win_menu.hit(ev.pos):
                self._screen = _Screen.MENU
        elif ev.type == pygame.KEYDOWN:
            if ev.key in (pygame.K_r, pygame.K_RETURN):
                self._start_game()
            elif ev.key in (pygame.K_m, pygame.K_ESCAPE):
                self._screen = _Screen.MENU
        return True

    def _ev_scores(self, ev: pygame.event.Event) -> bool:
        if ev.type == pygame.MOUSEMOTION:
            self._score_back.motion(ev.pos)
        elif ev.type == pygame.MOUSEBUTTONDOWN and ev.button == 1:
            if self._score_back.hit(ev.pos):
                self._screen = _Screen.MENU
        elif ev.type == pygame.KEYDOWN and ev.key in (pygame.K_ESCAPE, pygame.K_BACKSPACE, pygame.K_m):
            self._screen = _Screen.MENU
        return True

    # ── game state ──────────────────────────────────────────────────────────

    def _start_game(self) -> None:
        self._engine = PuzzleEngine(self._sel_size)
        self._engine.shuffle()
        self._hover = None
        self._screen = _Screen.PLAYING

    def _check_win(self) -> None:
        engine = self._engine
        if engine is None or not engine.is_won:
            return
        engine.state.pause()
        self._rank = self._hs.add_score(
            engine.dimension,
            HighScoreEntry(
                moves=engine.state.moves,
                time=round(engine.state.elapsed_time, 2),
                date=datetime.now().strftime("%Y-%m-%d %H:%M"),
                mode=SOLO,
            ),
        )
        self._screen = _Screen.WIN

    # ── main loop ───────────────────────────────────────────────────────────

    def run_loop(self) -> None:
        dispatch = {
            _Screen.MENU: self._ev_menu,
            _Screen.PLAYING: self._ev_game,
            _Screen.WIN: self._ev_win,
            _Screen.SCORES: self._ev_scores,
        }
        draw = {
            _Screen.MENU: self._draw_menu,
            _Screen.PLAYING: self._draw_game,
            _Screen.WIN: self._draw_win,
            _Screen.SCORES: self._draw_scores,
        }

        running = True
        while running:
            for ev in pygame.event.get():
                if ev.type == pygame.QUIT or not dispatch[self._screen](ev):
                    running = False
                    break
            if self._screen == _Screen.PLAYING:
                self._check_win()
            draw[self._screen]()
            pygame.display.flip()
            self._clock.tick(30)

        pygame.quit()


def run(size: int = 4, data_dir: Path = Path("data")) -> None:
    """Launch the Pygame GUI (opens on the menu)."""
    PygameApp(size, data_dir).run_loop()
