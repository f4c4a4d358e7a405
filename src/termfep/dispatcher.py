# SPDX-FileCopyrightText: 2021 Rose Davidson <rose@metaclassical.com>
#
# SPDX-License-Identifier: GPL-3.0-or-later
"""The event loop that ties the terminal, the Session and the input method together.

Keys from the terminal and updates from the input method arrive on two independent
streams. A feeder task per stream turns each item into an Effect and sends it down a
single channel; the dispatch loop takes Effects off that channel one at a time, so it
is the only code that ever touches the Session. Arrival order is preserved within a
stream but not across the two.
"""

from __future__ import annotations

import enum
import logging
import typing

import msgspec
import outcome
import trio
import trio_util

from .commontypes import ConnectionLost, TerminalIOError, TransportError
from .keymapper import map_key
from .keys import KeyEvent
from .session import ImeUpdate, Session

if typing.TYPE_CHECKING:
    from .terminal.base import TerminalDriver
    from .transport.base import ImeTransport, InputContextHandle

logger = logging.getLogger(__name__)


@enum.unique
class DispatcherState(enum.Enum):
    RUNNING = "running"
    TERMINATING = "terminating"


@enum.unique
class StreamSource(enum.Enum):
    TERMINAL = "terminal"
    IME = "ime"


class KeyInput(msgspec.Struct, frozen=True):
    event: KeyEvent


class ImeUpdateReceived(msgspec.Struct, frozen=True):
    update: ImeUpdate


class StreamClosed(msgspec.Struct, frozen=True):
    source: StreamSource
    # None when the stream simply ran out
    error: typing.Optional[BaseException] = None


Effect = KeyInput | ImeUpdateReceived | StreamClosed


def leaf_error(exc: BaseException) -> BaseException:
    # nurseries wrap even a lone failure in an exception group
    while isinstance(exc, BaseExceptionGroup) and len(exc.exceptions) == 1:
        exc = exc.exceptions[0]
    return exc


class EventDispatcher:
    session: Session
    state: trio_util.AsyncValue[DispatcherState]

    def __init__(
        self,
        terminal: TerminalDriver,
        transport: ImeTransport,
        handle: InputContextHandle,
        updates: trio.MemoryReceiveChannel[ImeUpdate],
    ):
        self.terminal = terminal
        self.transport = transport
        self.handle = handle
        self.updates = updates
        self.session = Session()
        self.state = trio_util.AsyncValue(DispatcherState.RUNNING)
        self._loop_scope = None

    @property
    def terminating(self):
        return self.state.value is DispatcherState.TERMINATING

    def request_quit(self):
        """Stop the dispatcher from outside the loop, as if the quit chord had been typed."""
        if not self.terminating:
            logger.info("Quit requested")
        self.state.value = DispatcherState.TERMINATING
        if self._loop_scope is not None:
            self._loop_scope.cancel()

    async def run(self):
        """Dispatch effects until the user quits or something fails.

        Returns normally on quit; otherwise raises TerminalIOError or TransportError
        (ConnectionLost if the input method went away).
        """
        effect_send, effect_receive = trio.open_memory_channel[Effect](0)
        async with trio.open_nursery() as nursery:
            async with effect_send:
                nursery.start_soon(self._pump_keys, effect_send.clone())
                nursery.start_soon(self._pump_updates, effect_send.clone())
            result = await outcome.acapture(self._dispatch_loop, effect_receive)
            nursery.cancel_scope.cancel()
        logger.debug("Dispatcher finished in state %s", self.state.value)
        return result.unwrap()

    async def _pump_keys(self, sink: trio.MemorySendChannel[Effect]):
        async with sink:
            error = None
            try:
                async with self.terminal.key_events() as keys:
                    async for event in keys:
                        await sink.send(KeyInput(event))
            except Exception as exc:
                error = leaf_error(exc)
            await sink.send(StreamClosed(StreamSource.TERMINAL, error))

    async def _pump_updates(self, sink: trio.MemorySendChannel[Effect]):
        async with sink:
            error = None
            try:
                async with self.updates:
                    async for update in self.updates:
                        await sink.send(ImeUpdateReceived(update))
            except Exception as exc:
                error = leaf_error(exc)
            await sink.send(StreamClosed(StreamSource.IME, error))

    async def _dispatch_loop(self, effects: trio.MemoryReceiveChannel[Effect]):
        async with effects:
            with trio.CancelScope() as self._loop_scope:
                if self.terminating:
                    return
                await self._render()
                async for effect in effects:
                    await self.handle_effect(effect)
                    if self.terminating:
                        return

    async def handle_effect(self, effect: Effect):
        match effect:
            case KeyInput(event=event) if event.is_quit_chord:
                logger.info("Quit chord received")
                self.state.value = DispatcherState.TERMINATING
            case KeyInput(event=event):
                await self._forward(event)
            case ImeUpdateReceived(update=update):
                self.session.apply_update(update)
                await self._render()
                self.session.take_commit()
            case StreamClosed(source=StreamSource.TERMINAL, error=None):
                logger.info("Terminal input ended")
                self.state.value = DispatcherState.TERMINATING
            case StreamClosed(source=StreamSource.TERMINAL, error=TerminalIOError() as error):
                raise error
            case StreamClosed(source=StreamSource.TERMINAL, error=error):
                raise TerminalIOError(f"Terminal input failed: {error}") from error
            case StreamClosed(source=StreamSource.IME, error=None):
                raise ConnectionLost()
            case StreamClosed(source=StreamSource.IME, error=TransportError() as error):
                raise error
            case StreamClosed(source=StreamSource.IME, error=error):
                raise TransportError(f"Input method update stream failed: {error}") from error
            case _:
                raise NotImplementedError(f"Don't know how to handle {type(effect)}.")

    async def _forward(self, event: KeyEvent):
        mapped = map_key(event)
        if mapped is None:
            logger.debug("Not forwarding %r", event)
            return
        try:
            consumed = await self.transport.forward_key(
                self.handle,
                mapped.symbol,
                mapped.code,
                mapped.modifier_mask,
                False,
            )
        except (OSError, trio.BrokenResourceError, trio.ClosedResourceError) as exc:
            raise TransportError(f"Unable to forward key: {exc}") from exc
        if not consumed:
            logger.debug("Input method did not handle %r", event)

    async def _render(self):
        try:
            await self.terminal.render(self.session)
        except (OSError, trio.BrokenResourceError, trio.ClosedResourceError) as exc:
            raise TerminalIOError(f"Unable to draw to the terminal: {exc}") from exc
