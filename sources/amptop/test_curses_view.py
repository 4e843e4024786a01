from amptop.curses_view import (
    BLOCKS,
    LABEL_WIDTH,
    VALUE_WIDTH,
    CursesView,
    block_chart,
    sparkline,
)
from amptop.live_monitor import ViewModel
from amptop.models import Unit


class FakeScreen:
    def __init__(self, width, height=40):
        self.size = (height, width)
        self.cells = {}

    def getmaxyx(self):
        return self.size

    def addstr(self, y, x, text, attr=0):
        self.cells[(y, x)] = text


def view_on(screen):
    view = CursesView.__new__(CursesView)        # skips curses initialisation
    view.stdscr = screen
    return view


def test_sparkline_scales_and_keeps_newest():
    assert sparkline([0, 50, 100], 3) == BLOCKS[0] + BLOCKS[4] + BLOCKS[8]
    assert sparkline([0, 0, 100, 100], 2) == BLOCKS[8] * 2
    assert sparkline([150, -20], 5) == BLOCKS[8] + BLOCKS[0]
    assert sparkline([1, 2], 0) == ""


def test_block_chart_fills_bottom_up():
    rows = block_chart([100, 50, 0], width=3, height=2)
    assert rows == [
        BLOCKS[8] + BLOCKS[0] + BLOCKS[0],
        BLOCKS[8] + BLOCKS[8] + BLOCKS[0],
    ]


def test_block_chart_empty():
    assert block_chart([], width=10, height=3) == ["", "", ""]


VM = ViewModel(current=None, window=(), unit=Unit.Human,
               readings={"Charge": "50.0 %", "State": "Charging"},
               details={"Vendor": "ACME", "Model": "PowerCell 9", "S/N": "1234"})


def test_details_sit_beside_readings_on_wide_terminals():
    screen = FakeScreen(width=100)
    end = view_on(screen)._draw_tables(4, VM)
    side_x = 1 + LABEL_WIDTH + VALUE_WIDTH
    assert screen.cells[(4, 1 + LABEL_WIDTH)] == "50.0 %"
    assert screen.cells[(4, side_x)].strip() == "Vendor"
    assert screen.cells[(6, side_x + LABEL_WIDTH)] == "1234"
    assert end == 7


def test_details_go_below_readings_on_narrow_terminals():
    screen = FakeScreen(width=60)
    end = view_on(screen)._draw_tables(4, VM)
    assert screen.cells[(5, 1)].strip() == "State"
    assert screen.cells[(7, 1)].strip() == "Vendor"
    assert screen.cells[(9, 1 + LABEL_WIDTH)] == "1234"
    assert end == 10
