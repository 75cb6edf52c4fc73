#!/usr/bin/env python3
"""
Curses drawing surface for netusage: screen regions, the 50/50 layout
splitter and a terminal wrapper that paints one frame at a time.
"""

import curses
import logging
from collections import namedtuple

log = logging.getLogger(__name__)

HORIZONTAL = 'horizontal'
VERTICAL = 'vertical'

# Color pairs
PAIR_BODY = 1
PAIR_HEADER = 2


class TerminalError(RuntimeError):
    """Raised when a frame could not be painted"""


class Rect(namedtuple('Rect', ['x', 'y', 'width', 'height'])):
    __slots__ = ()

    @property
    def area(self):
        return self.width * self.height


def split(direction, rect):
    """Split a region in two equal halves, the first taking the odd cell"""
    if direction == HORIZONTAL:
        first = rect.width - rect.width // 2
        return [
            Rect(rect.x, rect.y, first, rect.height),
            Rect(rect.x + first, rect.y, rect.width - first, rect.height),
        ]
    if direction == VERTICAL:
        first = rect.height - rect.height // 2
        return [
            Rect(rect.x, rect.y, rect.width, first),
            Rect(rect.x, rect.y + first, rect.width, rect.height - first),
        ]
    raise ValueError(f"unknown split direction: {direction!r}")


class Frame:
    """Painting surface for a single draw call"""

    def __init__(self, stdscr):
        self.stdscr = stdscr

    def size(self):
        """Full screen region"""
        height, width = self.stdscr.getmaxyx()
        return Rect(0, 0, width, height)

    def style(self, name):
        """Curses attributes for a named style"""
        if name == 'header':
            return curses.color_pair(PAIR_HEADER) | curses.A_BOLD
        if name == 'title':
            return curses.color_pair(PAIR_BODY) | curses.A_BOLD
        return curses.color_pair(PAIR_BODY)

    def draw_box(self, rect, title):
        """Draw a border around a region with the title on its top edge"""
        # a derived window lets border() fill the bottom-right cell safely
        win = self.stdscr.derwin(rect.height, rect.width, rect.y, rect.x)
        win.attron(self.style('border'))
        win.border(0)
        win.attroff(self.style('border'))
        if title and rect.width > 4:
            win.addnstr(0, 2, title, rect.width - 4, self.style('title'))

    def draw_text(self, y, x, text, width, style='body'):
        """Write text clipped to width cells"""
        if width > 0:
            self.stdscr.addnstr(y, x, text, width, self.style(style))


class Terminal:
    """Owns the curses screen across frames"""

    def __init__(self, stdscr):
        self.stdscr = stdscr
        curses.start_color()
        curses.use_default_colors()
        curses.init_pair(PAIR_BODY, curses.COLOR_WHITE, -1)
        curses.init_pair(PAIR_HEADER, curses.COLOR_YELLOW, -1)
        try:
            curses.curs_set(0)  # Hide cursor
        except curses.error:
            # some terminals cannot hide the cursor
            pass

    def draw(self, callback):
        """Paint one full frame; any curses failure fails the whole frame"""
        try:
            self.stdscr.erase()
            callback(Frame(self.stdscr))
            self.stdscr.refresh()
        except curses.error as e:
            raise TerminalError(f"failed to paint frame: {e}") from e
