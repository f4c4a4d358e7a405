# SPDX-FileCopyrightText: 2021 Rose Davidson <rose@metaclassical.com>
#
# SPDX-License-Identifier: GPL-3.0-or-later
from __future__ import annotations

import enum
import typing

import msgspec


@enum.unique
class NamedKey(enum.Enum):
    BACKSPACE = "backspace"
    ENTER = "enter"
    TAB = "tab"
    ESCAPE = "escape"
    DELETE = "delete"
    LEFT = "left"
    RIGHT = "right"
    UP = "up"
    DOWN = "down"
    HOME = "home"
    END = "end"
    PAGE_UP = "page_up"
    PAGE_DOWN = "page_down"
    INSERT = "insert"
    F1 = "f1"
    F2 = "f2"
    F3 = "f3"
    F4 = "f4"
    F5 = "f5"
    F6 = "f6"
    F7 = "f7"
    F8 = "f8"
    F9 = "f9"
    F10 = "f10"
    F11 = "f11"
    F12 = "f12"


# Super, AltGr and the lock keys are never reported by the terminal, so they are not tracked.
class ModifierAnnotation(msgspec.Struct, frozen=True):
    shift: bool = False
    ctrl: bool = False
    alt: bool = False

    def __or__(self, other):
        if not isinstance(other, ModifierAnnotation):
            return NotImplemented
        return ModifierAnnotation(
            shift=self.shift or other.shift,
            ctrl=self.ctrl or other.ctrl,
            alt=self.alt or other.alt,
        )


class KeyEvent(msgspec.Struct, frozen=True, kw_only=True):
    """A single key press as seen by the terminal.

    Exactly one of ``key`` (for named keys) or ``character`` (a single codepoint) is set.
    """

    key: typing.Optional[NamedKey] = None
    character: typing.Optional[str] = None
    annotation: ModifierAnnotation = msgspec.field(default_factory=ModifierAnnotation)

    def __post_init__(self):
        if (self.key is None) == (self.character is None):
            raise ValueError("KeyEvent needs exactly one of key or character")
        if self.character is not None and len(self.character) != 1:
            raise ValueError(f"KeyEvent character must be a single codepoint, not {self.character!r}")

    @classmethod
    def char(cls, character: str, *, shift=False, ctrl=False, alt=False):
        return cls(character=character, annotation=ModifierAnnotation(shift=shift, ctrl=ctrl, alt=alt))

    @classmethod
    def named(cls, key: NamedKey, *, shift=False, ctrl=False, alt=False):
        return cls(key=key, annotation=ModifierAnnotation(shift=shift, ctrl=ctrl, alt=alt))

    def with_annotation(self, annotation: ModifierAnnotation):
        return msgspec.structs.replace(self, annotation=self.annotation | annotation)

    @property
    def is_quit_chord(self):
        return self.character in ("c", "C") and self.annotation.ctrl
