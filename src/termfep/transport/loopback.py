from __future__ import annotations

import logging
import math

import trio

from ..commontypes import SetupError, TransportError
from ..keymapper import KeySym, ModifierMask
from ..session import CommitEvent, ImeUpdate, PreeditUpdate
from .base import ImeTransport, InputContextHandle

logger = logging.getLogger(__name__)

LOOPBACK_PATH = "/termfep/loopback/1"
NAMED_SYMBOLS = frozenset(KeySym)


class LoopbackTransport(ImeTransport):
    """A stand-in input method that runs in-process.

    Printable keys accumulate into the preedit, Enter or space commits it, Escape throws it
    away. Useful for exercising the front end without an IME daemon.
    """

    def __init__(self):
        self.handle = None
        self.focused = False
        self.composing = ""
        self.cursor = 0
        self._update_send = None
        self._update_receive = None

    async def __aenter__(self):
        self._update_send, self._update_receive = trio.open_memory_channel[ImeUpdate](math.inf)
        return self

    async def __aexit__(self, *exc_info):
        if self._update_send is not None:
            self._update_send.close()
        return None

    def _check(self, handle: InputContextHandle):
        if self._update_send is None:
            raise TransportError("Loopback transport is not open")
        if handle != self.handle:
            raise TransportError(f"Unknown input context {handle.path}")

    async def connect(self, client_name: str) -> InputContextHandle:
        if self._update_send is None:
            raise SetupError("Loopback transport is not open")
        logger.info("Loopback input context for %s", client_name)
        self.handle = InputContextHandle(path=LOOPBACK_PATH)
        return self.handle

    async def subscribe_updates(self, handle: InputContextHandle) -> trio.MemoryReceiveChannel[ImeUpdate]:
        self._check(handle)
        return self._update_receive.clone()

    def _emit(self, update: ImeUpdate):
        self._update_send.send_nowait(update)

    def _emit_preedit(self):
        self._emit(PreeditUpdate(text=self.composing, cursor=self.cursor))

    def _commit(self, extra: str = ""):
        text = self.composing + extra
        self.composing = ""
        self.cursor = 0
        self._emit(CommitEvent(text=text))

    async def forward_key(self, handle: InputContextHandle, symbol: int, code: int, modifier_mask: int, is_release: bool) -> bool:
        self._check(handle)
        await trio.lowlevel.checkpoint()
        if is_release or modifier_mask & (ModifierMask.CONTROL | ModifierMask.ALT):
            return False
        match symbol:
            case KeySym.RETURN:
                if not self.composing:
                    return False
                self._commit()
            case 0x20:
                if not self.composing:
                    return False
                self._commit(" ")
            case KeySym.ESCAPE:
                if not self.composing:
                    return False
                self.composing = ""
                self.cursor = 0
                self._emit_preedit()
            case KeySym.BACKSPACE:
                if self.cursor == 0:
                    return False
                self.composing = self.composing[: self.cursor - 1] + self.composing[self.cursor :]
                self.cursor -= 1
                self._emit_preedit()
            case KeySym.LEFT | KeySym.RIGHT:
                if not self.composing:
                    return False
                step = -1 if symbol == KeySym.LEFT else 1
                self.cursor = min(max(self.cursor + step, 0), len(self.composing))
                self._emit_preedit()
            case _ if symbol > 0x20 and symbol not in NAMED_SYMBOLS:
                self.composing = self.composing[: self.cursor] + chr(symbol) + self.composing[self.cursor :]
                self.cursor += 1
                self._emit_preedit()
            case _:
                return False
        return True

    async def focus_in(self, handle: InputContextHandle):
        self._check(handle)
        self.focused = True

    async def focus_out(self, handle: InputContextHandle):
        self._check(handle)
        self.focused = False

    async def reset(self, handle: InputContextHandle):
        self._check(handle)
        if self.composing:
            self.composing = ""
            self.cursor = 0
            self._emit_preedit()

    async def disconnect(self, handle: InputContextHandle):
        self._check(handle)
        self.handle = None
