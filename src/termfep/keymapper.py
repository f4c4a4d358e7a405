"""Translation of terminal key events into the IME's key vocabulary.

The IME identifies keys by a numeric symbol (an X11-style keysym) plus a modifier mask.
The hardware keycode is never known to a terminal program, so it is always sent as 0
and the IME resolves the key from the symbol and mask alone.
"""

from __future__ import annotations

import enum
import typing

import msgspec

from .keys import KeyEvent, ModifierAnnotation, NamedKey

PLACEHOLDER_KEYCODE = 0

# Legacy symbols for space, digits, ASCII letters and the punctuation ranges
# 0x21-0x2f, 0x3a-0x40, 0x5b-0x60 and 0x7b-0x7e all equal the ASCII code.
LEGACY_SYMBOL_RANGE = range(0x20, 0x7F)


class KeySym(enum.IntEnum):
    BACKSPACE = 0xFF08
    TAB = 0xFF09
    RETURN = 0xFF0D
    ESCAPE = 0xFF1B
    LEFT = 0xFF51
    UP = 0xFF52
    RIGHT = 0xFF53
    DOWN = 0xFF54
    DELETE = 0xFFFF


class ModifierMask(enum.IntFlag):
    SHIFT = 1 << 0
    CONTROL = 1 << 2
    ALT = 1 << 3


NAMED_KEYSYMS: dict[NamedKey, KeySym] = {
    NamedKey.BACKSPACE: KeySym.BACKSPACE,
    NamedKey.TAB: KeySym.TAB,
    NamedKey.ENTER: KeySym.RETURN,
    NamedKey.ESCAPE: KeySym.ESCAPE,
    NamedKey.LEFT: KeySym.LEFT,
    NamedKey.UP: KeySym.UP,
    NamedKey.RIGHT: KeySym.RIGHT,
    NamedKey.DOWN: KeySym.DOWN,
    NamedKey.DELETE: KeySym.DELETE,
}


class MappedKey(msgspec.Struct, frozen=True, kw_only=True):
    symbol: int
    modifier_mask: int
    code: int = PLACEHOLDER_KEYCODE


def legacy_symbol(character: str) -> typing.Optional[int]:
    codepoint = ord(character)
    if codepoint in LEGACY_SYMBOL_RANGE:
        return codepoint
    return None


def character_symbol(character: str) -> int:
    symbol = legacy_symbol(character)
    if symbol is not None:
        return symbol
    return ord(character)


def modifier_mask(annotation: ModifierAnnotation) -> ModifierMask:
    mask = ModifierMask(0)
    if annotation.shift:
        mask |= ModifierMask.SHIFT
    if annotation.ctrl:
        mask |= ModifierMask.CONTROL
    if annotation.alt:
        mask |= ModifierMask.ALT
    return mask


def map_key(event: KeyEvent) -> typing.Optional[MappedKey]:
    """Returns the wire representation of ``event``, or None if the key should not be forwarded."""
    if event.character is not None:
        symbol = character_symbol(event.character)
    elif event.key in NAMED_KEYSYMS:
        symbol = NAMED_KEYSYMS[event.key]
    else:
        return None
    return MappedKey(symbol=int(symbol), modifier_mask=int(modifier_mask(event.annotation)))
