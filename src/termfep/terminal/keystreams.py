# SPDX-FileCopyrightText: 2021 Rose Davidson <rose@metaclassical.com>
#
# SPDX-License-Identifier: GPL-3.0-or-later
from __future__ import annotations

import abc
import codecs
import logging
import re
import typing
from contextlib import aclosing, asynccontextmanager
from typing import Any, AsyncIterable, cast

import pygtrie
import trio

from ..keys import KeyEvent, ModifierAnnotation, NamedKey

logger = logging.getLogger(__name__)

ESC = "\x1b"
DEFAULT_ESCAPE_TIMEOUT = 0.05

# Final bytes of CSI/SS3 sequences that identify a key on their own.
LETTER_KEYS = {
    "A": NamedKey.UP,
    "B": NamedKey.DOWN,
    "C": NamedKey.RIGHT,
    "D": NamedKey.LEFT,
    "H": NamedKey.HOME,
    "F": NamedKey.END,
    "P": NamedKey.F1,
    "Q": NamedKey.F2,
    "R": NamedKey.F3,
    "S": NamedKey.F4,
}

# Numeric parameters of "CSI n ~" sequences.
TILDE_KEYS = {
    1: NamedKey.HOME,
    2: NamedKey.INSERT,
    3: NamedKey.DELETE,
    4: NamedKey.END,
    5: NamedKey.PAGE_UP,
    6: NamedKey.PAGE_DOWN,
    7: NamedKey.HOME,
    8: NamedKey.END,
    15: NamedKey.F5,
    17: NamedKey.F6,
    18: NamedKey.F7,
    19: NamedKey.F8,
    20: NamedKey.F9,
    21: NamedKey.F10,
    23: NamedKey.F11,
    24: NamedKey.F12,
}


def xterm_modifiers(param: int) -> ModifierAnnotation:
    # xterm encodes modifiers as 1 + (shift | alt << 1 | ctrl << 2); meta (8) is dropped
    bits = param - 1
    return ModifierAnnotation(shift=bool(bits & 1), alt=bool(bits & 2), ctrl=bool(bits & 4))


def build_escape_sequences() -> pygtrie.CharTrie:
    sequences = pygtrie.CharTrie()
    for letter, key in LETTER_KEYS.items():
        sequences[f"{ESC}[{letter}"] = KeyEvent.named(key)
        sequences[f"{ESC}O{letter}"] = KeyEvent.named(key)
        for param in range(2, 9):
            sequences[f"{ESC}[1;{param}{letter}"] = KeyEvent(key=key, annotation=xterm_modifiers(param))
    for number, key in TILDE_KEYS.items():
        sequences[f"{ESC}[{number}~"] = KeyEvent.named(key)
        for param in range(2, 9):
            sequences[f"{ESC}[{number};{param}~"] = KeyEvent(key=key, annotation=xterm_modifiers(param))
    # linux console function keys
    for letter, key in zip("ABCDE", (NamedKey.F1, NamedKey.F2, NamedKey.F3, NamedKey.F4, NamedKey.F5)):
        sequences[f"{ESC}[[{letter}"] = KeyEvent.named(key)
    sequences[f"{ESC}[Z"] = KeyEvent.named(NamedKey.TAB, shift=True)
    return sequences


ESCAPE_SEQUENCES = build_escape_sequences()
CSI_P = re.compile(r"\x1b\[[0-?]*[ -/]*[@-~]")
PARTIAL_CSI_P = re.compile(r"\x1b\[[0-?]*[ -/]*$")


def decode_control(character: str) -> typing.Optional[KeyEvent]:
    """Key events for C0 control characters and DEL; None for anything else."""
    codepoint = ord(character)
    match codepoint:
        case 0x7F | 0x08:
            return KeyEvent.named(NamedKey.BACKSPACE)
        case 0x0D | 0x0A:
            return KeyEvent.named(NamedKey.ENTER)
        case 0x09:
            return KeyEvent.named(NamedKey.TAB)
        case 0x1B:
            return KeyEvent.named(NamedKey.ESCAPE)
        case 0x00:
            return KeyEvent.char(" ", ctrl=True)
        case _ if codepoint < 0x1B:
            return KeyEvent.char(chr(codepoint + 0x60), ctrl=True)
        case _ if codepoint < 0x20:
            return KeyEvent.char(chr(codepoint + 0x40), ctrl=True)
    return None


def decode_character(character: str) -> KeyEvent:
    control = decode_control(character)
    if control is not None:
        return control
    return KeyEvent.char(character, shift="A" <= character <= "Z")


def parse_keys(pending: str, *, final: bool = False) -> tuple[list[KeyEvent], str]:
    """Split terminal text into key events.

    Returns the events and whatever trailing text might still be the start of an escape
    sequence. With ``final`` set, nothing is held back: a dangling ESC is the Escape key.
    """
    events: list[KeyEvent] = []
    i = 0
    while i < len(pending):
        if pending[i] != ESC:
            events.append(decode_character(pending[i]))
            i += 1
            continue
        rest = pending[i:]
        step = ESCAPE_SEQUENCES.longest_prefix(rest)
        if step:
            events.append(step.value)
            i += len(step.key)
            continue
        if not final and (ESCAPE_SEQUENCES.has_subtrie(rest) or PARTIAL_CSI_P.match(rest)):
            return events, rest
        if csi_match := CSI_P.match(rest):
            logger.debug("Dropping unrecognized escape sequence %r", csi_match.group(0))
            i += csi_match.end()
            continue
        if len(rest) == 1:
            events.append(KeyEvent.named(NamedKey.ESCAPE))
            i += 1
            continue
        # ESC followed by anything else is how terminals send Alt+key
        events.append(decode_character(rest[1]).with_annotation(ModifierAnnotation(alt=True)))
        i += 2
    return events, ""


class Section(abc.ABC):
    @abc.abstractmethod
    async def pump(self, source: trio.MemoryReceiveChannel[Any], sink: trio.MemorySendChannel[Any]): ...


# stage 1: turn raw byte chunks into text, holding back partial UTF-8 sequences
class DecodeText(Section):
    def __init__(self, encoding="utf-8"):
        self.encoding = encoding

    async def pump(self, source: trio.MemoryReceiveChannel[bytes], sink: trio.MemorySendChannel[str]):
        decoder = codecs.getincrementaldecoder(self.encoding)(errors="replace")
        async with aclosing(source), aclosing(sink):
            async for chunk in source:
                text = decoder.decode(chunk)
                if text:
                    await sink.send(text)
            text = decoder.decode(b"", final=True)
            if text:
                await sink.send(text)


# stage 2: turn text into key events
class ParseKeys(Section):
    def __init__(self, escape_timeout: float = DEFAULT_ESCAPE_TIMEOUT):
        self.escape_timeout = escape_timeout

    async def _next_chunk(self, source: trio.MemoryReceiveChannel[str], pending: str) -> typing.Optional[str]:
        """The next chunk of text; "" if an escape sequence timed out; None at end of input."""
        try:
            if not pending:
                return await source.receive()
            with trio.move_on_after(self.escape_timeout):
                return await source.receive()
            return ""
        except trio.EndOfChannel:
            return None

    async def pump(self, source: trio.MemoryReceiveChannel[str], sink: trio.MemorySendChannel[KeyEvent]):
        async with aclosing(source), aclosing(sink):
            pending = ""
            while True:
                chunk = await self._next_chunk(source, pending)
                final = not chunk
                events, pending = parse_keys(pending + (chunk or ""), final=final)
                for event in events:
                    await sink.send(event)
                if chunk is None:
                    return


async def _feed(source: typing.AsyncGenerator[Any, None], sink: trio.MemorySendChannel[Any]):
    async with aclosing(source), aclosing(sink):
        try:
            async for item in source:
                await sink.send(item)
        except trio.BrokenResourceError:
            logger.debug("First section stopped reading; no longer feeding it")


@asynccontextmanager
async def pump_all(first_source: AsyncIterable[Any], *sections: Section):
    async with trio.open_nursery() as nursery:
        section_input = first_source
        if sections and not isinstance(first_source, trio.MemoryReceiveChannel):
            # sections receive from channels; adapt a plain async iterable
            feed_send_channel, section_input = trio.open_memory_channel(0)
            nursery.start_soon(_feed, cast(typing.AsyncGenerator[Any, None], first_source), feed_send_channel)
        for section in sections:
            section_send_channel, section_receive_channel = trio.open_memory_channel(0)
            nursery.start_soon(section.pump, section_input, section_send_channel)
            section_input = section_receive_channel
        yield section_input
        nursery.cancel_scope.cancel()


@asynccontextmanager
async def make_keystream(byte_source: AsyncIterable[bytes], escape_timeout: float = DEFAULT_ESCAPE_TIMEOUT):
    sections = [
        DecodeText(),
        ParseKeys(escape_timeout),
    ]

    async with pump_all(byte_source, *sections) as keystream:
        yield cast(trio.MemoryReceiveChannel[KeyEvent], keystream)
