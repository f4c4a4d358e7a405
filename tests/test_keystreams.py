# SPDX-FileCopyrightText: 2021 Rose Davidson <rose@metaclassical.com>
#
# SPDX-License-Identifier: GPL-3.0-or-later
import collections.abc
import math
import typing
from contextlib import aclosing

import pytest
import trio
from termfep.keys import KeyEvent, NamedKey
from termfep.terminal.keystreams import DecodeText, ParseKeys, make_keystream, parse_keys, pump_all
from trio.lowlevel import checkpoint

T = typing.TypeVar("T")


async def make_async_source(
    items: collections.abc.Sequence[T],
    pause: float = 0,
):
    for item in items:
        await checkpoint()
        yield item
        if pause:
            await trio.sleep(pause)


async def collect_keys(chunks: collections.abc.Sequence[bytes], pause: float = 0, escape_timeout: float = 0.05):
    async with (
        aclosing(make_async_source(chunks, pause)) as bytesource,
        make_keystream(bytesource, escape_timeout) as keystream,
    ):
        return [event async for event in keystream]


async def test_decode_text_holds_back_partial_characters():
    async with (
        aclosing(make_async_source([b"a\xe6\x97", b"\xa5b", b"\xff"])) as bytesource,
        pump_all(bytesource, DecodeText()) as textsource,
    ):
        results = [text async for text in textsource]
    assert results == ["a", "日b", "�"]


async def test_plain_text():
    assert await collect_keys([b"hi", b" there"]) == [
        KeyEvent.char("h"),
        KeyEvent.char("i"),
        KeyEvent.char(" "),
        KeyEvent.char("t"),
        KeyEvent.char("h"),
        KeyEvent.char("e"),
        KeyEvent.char("r"),
        KeyEvent.char("e"),
    ]


async def test_split_utf8():
    assert await collect_keys([b"\xe6", b"\x97", b"\xa5"]) == [KeyEvent.char("日")]


async def test_control_characters():
    assert await collect_keys([b"\x03\r\n\t\x7f\x08\x01\x00"]) == [
        KeyEvent.char("c", ctrl=True),
        KeyEvent.named(NamedKey.ENTER),
        KeyEvent.named(NamedKey.ENTER),
        KeyEvent.named(NamedKey.TAB),
        KeyEvent.named(NamedKey.BACKSPACE),
        KeyEvent.named(NamedKey.BACKSPACE),
        KeyEvent.char("a", ctrl=True),
        KeyEvent.char(" ", ctrl=True),
    ]


async def test_ctrl_c_is_the_quit_chord():
    (event,) = await collect_keys([b"\x03"])
    assert event.is_quit_chord


async def test_uppercase_carries_shift():
    assert await collect_keys([b"aA"]) == [KeyEvent.char("a"), KeyEvent.char("A", shift=True)]


async def test_escape_sequences():
    assert await collect_keys([b"\x1b[A\x1bOB\x1b[1;5C\x1b[3~\x1b[Z\x1b[15;2~"]) == [
        KeyEvent.named(NamedKey.UP),
        KeyEvent.named(NamedKey.DOWN),
        KeyEvent.named(NamedKey.RIGHT, ctrl=True),
        KeyEvent.named(NamedKey.DELETE),
        KeyEvent.named(NamedKey.TAB, shift=True),
        KeyEvent.named(NamedKey.F5, shift=True),
    ]


async def test_escape_sequence_split_across_reads(autojump_clock):
    assert await collect_keys([b"\x1b[", b"1;3", b"D"], pause=0.01) == [KeyEvent.named(NamedKey.LEFT, alt=True)]


async def test_lone_escape_times_out(autojump_clock):
    assert await collect_keys([b"\x1b", b"[A"], pause=1) == [
        KeyEvent.named(NamedKey.ESCAPE),
        KeyEvent.char("["),
        KeyEvent.char("A", shift=True),
    ]


async def test_escape_at_end_of_input():
    assert await collect_keys([b"x\x1b"]) == [KeyEvent.char("x"), KeyEvent.named(NamedKey.ESCAPE)]


async def test_alt_keys():
    assert await collect_keys([b"\x1bx\x1bX\x1b\x7f"]) == [
        KeyEvent.char("x", alt=True),
        KeyEvent.char("X", shift=True, alt=True),
        KeyEvent.named(NamedKey.BACKSPACE, alt=True),
    ]


async def test_unknown_csi_dropped():
    assert await collect_keys([b"\x1b[99zq"]) == [KeyEvent.char("q")]


async def test_parse_keys_stage():
    async with (
        aclosing(make_async_source(["ab", "\x1b[", "B"])) as textsource,
        pump_all(textsource, ParseKeys()) as keysource,
    ):
        results = [event async for event in keysource]
    assert results == [KeyEvent.char("a"), KeyEvent.char("b"), KeyEvent.named(NamedKey.DOWN)]


@pytest.mark.parametrize(
    "pending,final,expected_events,expected_rest",
    [
        ("\x1b", False, [], "\x1b"),
        ("\x1b", True, [KeyEvent.named(NamedKey.ESCAPE)], ""),
        ("a\x1b[1;", False, [KeyEvent.char("a")], "\x1b[1;"),
        ("\x1b[12", False, [], "\x1b[12"),
        ("\x1b[12", True, [KeyEvent.char("[", alt=True), KeyEvent.char("1"), KeyEvent.char("2")], ""),
    ],
)
def test_parse_keys(pending, final, expected_events, expected_rest):
    assert parse_keys(pending, final=final) == (expected_events, expected_rest)


async def test_parse_keys_from_channel():
    send_channel, receive_channel = trio.open_memory_channel(math.inf)
    for chunk in ["x", "\x1b"]:
        send_channel.send_nowait(chunk)
    send_channel.close()
    async with pump_all(receive_channel, ParseKeys()) as keysource:
        results = [event async for event in keysource]
    assert results == [KeyEvent.char("x"), KeyEvent.named(NamedKey.ESCAPE)]
