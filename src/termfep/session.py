from __future__ import annotations

import enum
import logging
import typing

import msgspec

logger = logging.getLogger(__name__)


@enum.unique
class CursorUnit(enum.Enum):
    CODEPOINTS = "codepoints"
    UTF8_BYTES = "utf8-bytes"
    UTF16_UNITS = "utf16-units"


def normalize_cursor(text: str, offset: int, unit: CursorUnit) -> int:
    """Convert an IME-reported cursor offset into a codepoint index into ``text``.

    An offset inside a multi-unit character rounds down to the start of that character.
    Offsets outside the text are carried over unit-for-unit; the Session clamps them.
    """
    if unit is CursorUnit.CODEPOINTS or offset <= 0:
        return offset
    match unit:
        case CursorUnit.UTF8_BYTES:
            encoded = text.encode("utf-8")
            codec = "utf-8"
        case CursorUnit.UTF16_UNITS:
            encoded = text.encode("utf-16-le")
            codec = "utf-16-le"
            offset *= 2
        case _:
            typing.assert_never(unit)
    if offset >= len(encoded):
        overshoot = offset - len(encoded)
        if unit is CursorUnit.UTF16_UNITS:
            overshoot //= 2
        return len(text) + overshoot
    return len(encoded[:offset].decode(codec, errors="ignore"))


class PreeditUpdate(msgspec.Struct, frozen=True):
    text: str
    # codepoints, but not yet clamped
    cursor: int


class CommitEvent(msgspec.Struct, frozen=True):
    text: str


ImeUpdate = PreeditUpdate | CommitEvent


class PreeditState(msgspec.Struct, frozen=True):
    text: str = ""
    cursor: int = 0


EMPTY_PREEDIT = PreeditState()


class Session:
    """Preedit and pending-commit state for the single input context.

    Only the event dispatcher may call the mutating methods.
    """

    preedit: PreeditState
    pending_commit: typing.Optional[CommitEvent]

    def __init__(self):
        self.preedit = EMPTY_PREEDIT
        self.pending_commit = None

    def apply_update(self, update: ImeUpdate):
        self.pending_commit = None
        match update:
            case PreeditUpdate(text=text, cursor=cursor):
                clamped = min(max(cursor, 0), len(text))
                if clamped != cursor:
                    logger.debug("Clamped preedit cursor %d into [0, %d]", cursor, len(text))
                self.preedit = PreeditState(text=text, cursor=clamped)
            case CommitEvent():
                self.pending_commit = update
                self.preedit = EMPTY_PREEDIT
            case _:
                raise NotImplementedError(f"Don't know how to apply {type(update)}.")

    def take_commit(self) -> typing.Optional[CommitEvent]:
        commit = self.pending_commit
        self.pending_commit = None
        return commit

    def __repr__(self):
        return f"Session(preedit={self.preedit!r}, pending_commit={self.pending_commit!r})"
