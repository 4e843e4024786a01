# curses_view.py
"""
Curses‑based view of the live battery monitor.  The view owns the curses
window and draws whatever ``ViewModel`` it is handed; it never samples or
queries anything itself.

Two modes: the monitor page and a scrollable log page.
"""

import curses
import time
from datetime import datetime
from typing import Dict, List, Optional, Sequence

from amptop.app_logger import log_buffer   # shared in‑memory log deque
from amptop.live_monitor import ViewModel

BLOCKS = " ▁▂▃▄▅▆▇█"
CHART_HEIGHT = 8
LABEL_WIDTH = 18
VALUE_WIDTH = 22
KEY_ESC = 27

# colour pair ids
HEADER = 1
GOOD = 2
WARN = 3
BAD = 4


def _gauge_pair(percent: float) -> int:
    if percent > 30:
        return GOOD
    if percent > 15:
        return WARN
    return BAD


def sparkline(values: Sequence[float], width: int, lo: float = 0.0, hi: float = 100.0) -> str:
    """One-row chart of the last ``width`` values scaled to ``[lo, hi]``."""
    if width <= 0:
        return ""
    values = list(values)[-width:]
    span = (hi - lo) or 1.0
    out = []
    for v in values:
        level = int(round((min(hi, max(lo, v)) - lo) / span * (len(BLOCKS) - 1)))
        out.append(BLOCKS[level])
    return "".join(out)


def block_chart(values: Sequence[float], width: int, height: int,
                lo: float = 0.0, hi: float = 100.0) -> List[str]:
    """
    Multi-row bar chart, top row first. Each column is one value; each cell
    carries eight vertical steps.
    """
    values = list(values)[-width:] if width > 0 else []
    span = (hi - lo) or 1.0
    rows = [[" "] * len(values) for _ in range(height)]
    for col, v in enumerate(values):
        eighths = int(round((min(hi, max(lo, v)) - lo) / span * height * 8))
        for r in range(height):
            fill = max(0, min(8, eighths - r * 8))
            rows[height - 1 - r][col] = BLOCKS[fill]
    return ["".join(r) for r in rows]


class CursesView:
    """
    Minimal curses UI.  ``render`` draws a view model; ``poll`` waits for
    keys until the next tick is due and reports whether the user quit.
    """

    def __init__(self, stdscr: "curses.window") -> None:
        """
        ``stdscr`` is the window object supplied by ``curses.wrapper``.
        All drawing happens inside this window.
        """
        self.stdscr = stdscr
        self.mode: str = "monitor"
        self.log_scroll: int = 0
        self._last: Optional[ViewModel] = None
        self._init_curses()

    # ------------------------------------------------------------------
    # Curses initialisation (colors, etc.)
    # ------------------------------------------------------------------
    def _init_curses(self) -> None:
        try:
            curses.curs_set(0)                     # hide cursor
        except curses.error:
            pass                                   # some terminals cannot
        self.stdscr.keypad(True)
        if curses.has_colors():
            curses.start_color()
            curses.use_default_colors()
            curses.init_pair(HEADER, curses.COLOR_WHITE, curses.COLOR_BLUE)
            curses.init_pair(GOOD, curses.COLOR_GREEN, -1)
            curses.init_pair(WARN, curses.COLOR_YELLOW, -1)
            curses.init_pair(BAD, curses.COLOR_RED, -1)
        self.header_attr = curses.color_pair(HEADER) | curses.A_BOLD

    @property
    def chart_width(self) -> int:
        """Columns available to the live chart (= rolling window capacity)."""
        _, max_x = self.stdscr.getmaxyx()
        return max(1, max_x - 2)

    # ------------------------------------------------------------------
    # Public API – called by the main loop
    # ------------------------------------------------------------------
    def render(self, vm: ViewModel) -> None:
        self._last = vm
        self._render()

    def poll(self, seconds: float) -> bool:
        """
        Handle keys for up to ``seconds``. Returns False when the user asked
        to quit (``q`` or ``Esc``).
        """
        deadline = time.monotonic() + seconds
        while True:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return True
            self.stdscr.timeout(max(1, int(remaining * 1000)))
            ch = self.stdscr.getch()
            if ch == -1:
                continue
            if ch in (ord("q"), ord("Q"), KEY_ESC):
                return False
            self._handle_key(ch)

    # ------------------------------------------------------------------
    # Key handling
    # ------------------------------------------------------------------
    def _handle_key(self, ch: int) -> None:
        """
        * `l` → switch to log view
        * `t` → switch back to monitor view
        * Arrow keys/PageUp/PageDown → scroll log view
        """
        if ch in (ord("l"), ord("L")):
            self.mode = "log"
            self.log_scroll = 0
        elif ch in (ord("t"), ord("T")):
            self.mode = "monitor"
        elif self.mode == "log":
            max_y, _ = self.stdscr.getmaxyx()
            visible_lines = max(1, max_y - 1)
            bottom = max(0, len(log_buffer) - visible_lines)
            if ch in (curses.KEY_DOWN, ord("j")):
                self.log_scroll = min(self.log_scroll + 1, bottom)
            elif ch in (curses.KEY_UP, ord("k")):
                self.log_scroll = max(self.log_scroll - 1, 0)
            elif ch == curses.KEY_NPAGE:
                self.log_scroll = min(self.log_scroll + visible_lines, bottom)
            elif ch == curses.KEY_PPAGE:
                self.log_scroll = max(self.log_scroll - visible_lines, 0)
        elif ch != curses.KEY_RESIZE:
            return
        self._render()

    # ------------------------------------------------------------------
    # Rendering helpers
    # ------------------------------------------------------------------
    def _put(self, y: int, x: int, text: str, attr: int = 0) -> None:
        max_y, max_x = self.stdscr.getmaxyx()
        if y < 0 or y >= max_y or x >= max_x - 1:
            return
        try:
            self.stdscr.addstr(y, x, text[: max_x - 1 - x], attr)
        except curses.error:
            pass                                   # clipped by a tiny terminal

    def _render(self) -> None:
        self.stdscr.erase()
        if self.mode == "log":
            self._draw_log()
        elif self._last is not None:
            self._draw_monitor(self._last)
        self._draw_footer()
        self.stdscr.refresh()

    def _draw_pairs(self, row: int, x: int, pairs: Dict[str, str]) -> int:
        """Label/value rows starting at ``row``; returns the next free row."""
        for label, value in pairs.items():
            self._put(row, x, label.ljust(LABEL_WIDTH))
            self._put(row, x + LABEL_WIDTH, value, curses.A_BOLD)
            row += 1
        return row

    def _draw_tables(self, row: int, vm: ViewModel) -> int:
        """Readings, then device details beside them or below on narrow terminals."""
        _, max_x = self.stdscr.getmaxyx()
        end = self._draw_pairs(row, 1, vm.readings)
        side_x = 1 + LABEL_WIDTH + VALUE_WIDTH
        if max_x - 1 >= side_x + LABEL_WIDTH + VALUE_WIDTH:
            return max(end, self._draw_pairs(row, side_x, vm.details))
        return self._draw_pairs(end + 1, 1, vm.details)

    def _draw_monitor(self, vm: ViewModel) -> None:
        _, max_x = self.stdscr.getmaxyx()
        width = self.chart_width
        self._put(0, 0, " amptop – battery monitor ".ljust(max_x - 1), self.header_attr)

        # ---- state of charge gauge -------------------------------------
        if vm.current is not None:
            pct = vm.current.charge_percent
            bar_w = max(1, width - 10)
            filled = int(round(pct / 100.0 * bar_w))
            bar = "█" * filled + "░" * (bar_w - filled)
            self._put(2, 1, bar, curses.color_pair(_gauge_pair(pct)))
            self._put(2, bar_w + 2, f"{pct:5.1f}%", curses.A_BOLD)
        else:
            self._put(2, 1, "Waiting for the first reading…")

        # ---- readings table ----------------------------------------------
        row = self._draw_tables(4, vm)

        # ---- live chart (rolling window) -----------------------------------
        row += 1
        self._put(row, 1, f"Charge, last {len(vm.window)} samples", curses.A_UNDERLINE)
        row += 1
        charges = [s.charge_percent for s in vm.window]
        pair = curses.color_pair(_gauge_pair(charges[-1])) if charges else 0
        for line in block_chart(charges, width, CHART_HEIGHT):
            self._put(row, 1, line, pair)
            row += 1

        # ---- stored history --------------------------------------------------
        row += 1
        if vm.history:
            first = datetime.fromtimestamp(vm.history[0].bucket_start).strftime("%H:%M")
            last = datetime.fromtimestamp(vm.history[-1].bucket_start).strftime("%H:%M")
            self._put(row, 1, f"History {first} → {last} ({len(vm.history)} buckets)",
                      curses.A_UNDERLINE)
            self._put(row + 1, 1, sparkline([b.avg_charge for b in vm.history], width))
        else:
            self._put(row, 1, "No history – start the daemon: amptop daemon start --interval 60",
                      curses.color_pair(WARN))

        if vm.error:
            max_y, _ = self.stdscr.getmaxyx()
            self._put(max_y - 2, 0, f" ! {vm.error} ".ljust(max_x - 1),
                      curses.color_pair(BAD) | curses.A_REVERSE)

    # ------------------------------------------------------------------
    # Log view – scrollable list of the most recent log lines
    # ------------------------------------------------------------------
    def _draw_log(self) -> None:
        max_y, _ = self.stdscr.getmaxyx()
        visible_lines = max(1, max_y - 1)
        logs = list(log_buffer)
        start = self.log_scroll
        for idx, line in enumerate(logs[start:start + visible_lines]):
            self._put(idx, 0, line)

    # ------------------------------------------------------------------
    # Footer – shows current mode and hint for toggling
    # ------------------------------------------------------------------
    def _draw_footer(self) -> None:
        max_y, max_x = self.stdscr.getmaxyx()
        mode_msg = f"[{'MONITOR' if self.mode == 'monitor' else 'LOG'} MODE] "
        hint = "'l' logs, 't' monitor, 'q'/Esc quit"
        self._put(max_y - 1, 0, (mode_msg + hint).ljust(max_x - 1), curses.A_REVERSE)
