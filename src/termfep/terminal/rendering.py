"""Escape sequences for drawing the Session onto a VT100-style terminal.

Committed text is written once and stays on screen. The preedit is drawn after it,
starting at a saved cursor position (the anchor), so each render can go back to the
anchor, erase the old preedit and draw the new one.
"""

from __future__ import annotations

import typing
import unicodedata

if typing.TYPE_CHECKING:
    from ..session import Session

SAVE_CURSOR = "\x1b7"
RESTORE_CURSOR = "\x1b8"
ERASE_BELOW = "\x1b[J"
UNDERLINE_ON = "\x1b[4m"
UNDERLINE_OFF = "\x1b[24m"

ZERO_WIDTH_CATEGORIES = {"Mn", "Me", "Cf"}


def cell_width(text: str) -> int:
    width = 0
    for ch in text:
        if unicodedata.category(ch) in ZERO_WIDTH_CATEGORIES:
            continue
        width += 2 if unicodedata.east_asian_width(ch) in ("W", "F") else 1
    return width


def cursor_left(cells: int) -> str:
    if cells <= 0:
        return ""
    return f"\x1b[{cells}D"


def terminal_newlines(text: str) -> str:
    # raw mode turns off output post-processing, so LF alone won't return the carriage
    return text.replace("\r\n", "\n").replace("\n", "\r\n")


def render_session(session: Session) -> str:
    parts = [RESTORE_CURSOR, ERASE_BELOW]
    if session.pending_commit is not None:
        parts.append(terminal_newlines(session.pending_commit.text))
    parts.append(SAVE_CURSOR)
    preedit = session.preedit
    if preedit.text:
        parts.extend((UNDERLINE_ON, preedit.text, UNDERLINE_OFF))
        parts.append(cursor_left(cell_width(preedit.text[preedit.cursor :])))
    return "".join(parts)


def erase_preedit() -> str:
    return RESTORE_CURSOR + ERASE_BELOW
