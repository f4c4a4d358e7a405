# SPDX-FileCopyrightText: 2021 Rose Davidson <rose@metaclassical.com>
#
# SPDX-License-Identifier: GPL-3.0-or-later
from __future__ import annotations

import contextlib
import enum
import logging
import math
import typing

import outcome
import tricycle
import trio
from jeepney.bus_messages import MatchRule, message_bus
from jeepney.io.common import RouterClosed, check_replyable
from jeepney.io.trio import DBusConnection, open_dbus_connection
from jeepney.low_level import HeaderFields, Message, MessageFlag, MessageType
from jeepney.wrappers import DBusAddress, DBusErrorResponse, new_method_call

from ..commontypes import ProtocolError, SetupError, TransportError
from ..session import CommitEvent, CursorUnit, ImeUpdate, PreeditUpdate, normalize_cursor
from .base import ImeTransport, InputContextHandle

logger = logging.getLogger(__name__)

Signal = typing.NewType("Signal", Message)

BUS_WNK = "org.freedesktop.DBus"
FCITX5_SERVICE = "org.fcitx.Fcitx5"
INPUT_METHOD_PATH = "/org/freedesktop/portal/inputmethod"
INPUT_METHOD_INTERFACE = "org.fcitx.Fcitx.InputMethod1"
INPUT_CONTEXT_INTERFACE = "org.fcitx.Fcitx.InputContext1"


class Capability(enum.IntFlag):
    PREEDIT = 1 << 1
    FORMATTED_PREEDIT = 1 << 4


REQUESTED_CAPABILITIES = Capability.PREEDIT | Capability.FORMATTED_PREEDIT


def is_signal(msg: Message) -> typing.TypeGuard[Signal]:
    return msg.header.message_type == MessageType.signal


def message_outcome(msg: Message) -> outcome.Maybe[Message]:
    if msg.header.message_type == MessageType.error:
        return outcome.Error(DBusErrorResponse(msg))
    return outcome.Value(msg)


def _signal_member(msg: Message) -> str:
    fields = typing.cast(dict[HeaderFields, typing.Any], msg.header.fields)
    return fields.get(HeaderFields.member, "")


def decode_signal(msg: Message, cursor_unit: CursorUnit) -> typing.Optional[ImeUpdate]:
    """Turn an input context signal into a Session update.

    Returns None for signals that carry nothing the Session tracks. Raises ProtocolError
    if the signal body doesn't have the expected shape.
    """
    member = _signal_member(msg)
    try:
        match member:
            case "CommitString":
                (text,) = msg.body
                if not isinstance(text, str):
                    raise TypeError(text)
                return CommitEvent(text=text)
            case "UpdateFormattedPreedit":
                segments, cursor = msg.body
                text = "".join(segment for segment, _format in segments)
                return PreeditUpdate(text=text, cursor=normalize_cursor(text, int(cursor), cursor_unit))
            case "ForwardKey":
                keyval, state, is_release = msg.body
                logger.debug("IME handed back key %#x (state %#x, release %r); not inserting it", keyval, state, is_release)
            case "DeleteSurroundingText":
                offset, length = msg.body
                logger.debug("IME asked to delete %d characters at %d; no surrounding text to delete", length, offset)
            case "CurrentIM":
                name, unique_name, language = msg.body
                logger.info("Input method is now %s (%s, %s)", name, unique_name, language)
            case _:
                logger.debug("Ignoring input context signal %r", member)
    except (TypeError, ValueError) as exc:
        raise ProtocolError(f"Malformed {member} signal: {msg.body!r}") from exc
    return None


class Fcitx5Router(tricycle.BackgroundObject, daemon=True):
    """Owns the D-Bus connection and routes incoming messages.

    Method returns and errors go to whichever caller is waiting on that serial; signals go
    to every watcher whose match rule accepts them.
    """

    conn: DBusConnection | None
    expected_replies: dict[int, trio.MemorySendChannel[outcome.Maybe[Message]]]
    signal_watchers: list[tuple[MatchRule, trio.MemorySendChannel[Signal]]]
    failure: Exception | None

    def __init__(self, bus: str = "SESSION", service: str = FCITX5_SERVICE):
        self.bus = bus
        self.service = service
        self.conn = None
        self.expected_replies = {}
        self.signal_watchers = []
        self.failure = None
        self.closing = False
        self.receiving = False

    async def _receiver(self, *, task_status=trio.TASK_STATUS_IGNORED):
        if self.conn is None:
            raise RouterClosed("Not connected to D-Bus")
        recv_logger = logger.getChild("allmessages")
        self.receiving = True
        task_status.started()
        try:
            async for msg in self.conn:
                recv_logger.debug("received message %r", msg)
                if msg.header.message_type in (MessageType.method_return, MessageType.error):
                    reply_to = msg.header.fields.get(HeaderFields.reply_serial, -1)
                    if reply_to in self.expected_replies:
                        self._deliver_reply(self.expected_replies.pop(reply_to), message_outcome(msg))
                    else:
                        recv_logger.info("Got unexpected message of type %r with reply_serial %d", msg.header.message_type, reply_to)
                if is_signal(msg):
                    self._dispatch_signal(msg)
        except Exception as exc:
            if not self.closing:
                logger.info("D-Bus receiver failed", exc_info=True)
                self.failure = exc
        finally:
            logger.debug("D-Bus connection closed")
            self.receiving = False
            for reply_channel in self.expected_replies.values():
                self._deliver_reply(reply_channel, outcome.Error(RouterClosed("D-Bus connection closed before reply arrived")))
            self.expected_replies = {}
            self.close_watchers()

    def _deliver_reply(self, reply_channel: trio.MemorySendChannel[outcome.Maybe[Message]], maybe: outcome.Maybe[Message]):
        try:
            reply_channel.send_nowait(maybe)
        except (trio.BrokenResourceError, trio.ClosedResourceError):
            # the caller was cancelled before its reply arrived
            logger.debug("Dropping reply %r; nobody is waiting for it", maybe)

    def _dispatch_signal(self, msg: Signal):
        still_watching = []
        for rule, channel in self.signal_watchers:
            if rule.matches(msg):
                try:
                    channel.send_nowait(msg)
                except (trio.BrokenResourceError, trio.ClosedResourceError):
                    logger.debug("Dropping watcher for %r; nobody is listening", rule)
                    continue
            still_watching.append((rule, channel))
        self.signal_watchers = still_watching

    def close_watchers(self):
        watchers, self.signal_watchers = self.signal_watchers, []
        for _rule, channel in watchers:
            channel.close()

    async def _name_watcher(self, recv: trio.MemoryReceiveChannel[Signal], *, task_status=trio.TASK_STATUS_IGNORED):
        task_status.started()
        with recv:
            async for signal in recv:
                name, _old_owner, new_owner = signal.body
                if name != self.service:
                    continue
                if new_owner:
                    logger.debug("Name %r now owned by %r", name, new_owner)
                    continue
                logger.info("%s left the bus", name)
                self.close_watchers()

    async def send_no_reply(self, message: Message):
        if self.conn is None:
            raise RouterClosed("Not connected to D-Bus")
        message.header.flags |= MessageFlag.no_reply_expected
        await self.conn.send(message)

    async def send_and_get_reply(self, message: Message) -> Message:
        if self.conn is None or not self.receiving:
            raise RouterClosed("Not connected to D-Bus")
        check_replyable(message)
        serial = next(self.conn.outgoing_serial)
        send_, recv_ = trio.open_memory_channel[outcome.Maybe[Message]](1)
        self.expected_replies[serial] = send_
        try:
            await self.conn.send(message, serial=serial)
            with recv_:
                maybe = await recv_.receive()
        finally:
            self.expected_replies.pop(serial, None)
        return maybe.unwrap()

    async def watch_signals(self, rule: MatchRule) -> trio.MemoryReceiveChannel[Signal]:
        if not self.receiving:
            raise RouterClosed("D-Bus connection is closed")
        # Unbounded, so the receiver never waits on a slow consumer while a method reply is pending.
        send_, recv_ = trio.open_memory_channel[Signal](math.inf)
        self.signal_watchers.append((rule, send_))
        await self.send_no_reply(message_bus.AddMatch(rule))
        return recv_

    async def _open_connection(self) -> DBusConnection:
        try:
            return await open_dbus_connection(bus=self.bus)
        except (OSError, KeyError, ValueError) as exc:
            raise SetupError(f"Unable to connect to the {self.bus.lower()} D-Bus: {exc}") from exc

    @contextlib.asynccontextmanager
    async def __wrap__(self):
        self.expected_replies = {}
        self.signal_watchers = []
        self.closing = False
        async with contextlib.AsyncExitStack() as stack:
            self.conn = await stack.enter_async_context(await self._open_connection())
            await stack.enter_async_context(super().__wrap__())
            await self.nursery.start(self._receiver)

            rule = MatchRule(type="signal", sender=BUS_WNK, interface=BUS_WNK, member="NameOwnerChanged")
            rule.add_arg_condition(0, self.service)
            await self.nursery.start(self._name_watcher, await self.watch_signals(rule))
            try:
                yield self
            finally:
                self.closing = True


class Fcitx5Transport(ImeTransport):
    """Talks to Fcitx5's D-Bus frontend.

    The frontend reports preedit cursor positions as UTF-8 byte offsets; ``cursor_unit``
    is configurable in case a different frontend (or a future Fcitx5) disagrees.
    """

    def __init__(
        self,
        bus: str = "SESSION",
        service: str = FCITX5_SERVICE,
        cursor_unit: CursorUnit = CursorUnit.UTF8_BYTES,
    ):
        self.bus = bus
        self.service = service
        self.cursor_unit = cursor_unit
        self.router: Fcitx5Router | None = None
        self._stack = contextlib.AsyncExitStack()

    async def __aenter__(self):
        self.router = await self._stack.enter_async_context(Fcitx5Router(bus=self.bus, service=self.service))
        return self

    async def __aexit__(self, *exc_info):
        try:
            return await self._stack.__aexit__(*exc_info)
        finally:
            self.router = None

    def _live_router(self) -> Fcitx5Router:
        if self.router is None:
            raise RouterClosed("Transport is not open")
        return self.router

    def _context_address(self, handle: InputContextHandle):
        return DBusAddress(handle.path, bus_name=self.service, interface=INPUT_CONTEXT_INTERFACE)

    async def _call(self, handle: InputContextHandle, method: str, signature=None, body=()) -> Message:
        message = new_method_call(self._context_address(handle), method, signature, body)
        try:
            return await self._live_router().send_and_get_reply(message)
        except DBusErrorResponse as exc:
            raise TransportError(f"{method} failed: {exc.name} {exc.data!r}") from exc
        except (RouterClosed, trio.BrokenResourceError, trio.ClosedResourceError, OSError) as exc:
            raise TransportError(f"{method} failed: {exc}") from exc

    async def connect(self, client_name: str) -> InputContextHandle:
        address = DBusAddress(INPUT_METHOD_PATH, bus_name=self.service, interface=INPUT_METHOD_INTERFACE)
        message = new_method_call(address, "CreateInputContext", "a(ss)", ([("program", client_name), ("display", "termfep")],))
        try:
            reply = await self._live_router().send_and_get_reply(message)
            path, uuid = reply.body
            handle = InputContextHandle(path=path, uuid=bytes(uuid))
            await self._call(handle, "SetCapability", "t", (int(REQUESTED_CAPABILITIES),))
        except (DBusErrorResponse, RouterClosed, TransportError, ValueError) as exc:
            raise SetupError(f"Could not create an input context on {self.service}: {exc}") from exc
        logger.info("Created input context %s", handle.path)
        return handle

    async def forward_key(self, handle: InputContextHandle, symbol: int, code: int, modifier_mask: int, is_release: bool) -> bool:
        reply = await self._call(handle, "ProcessKeyEvent", "uuubu", (symbol, code, modifier_mask, is_release, 0))
        return bool(reply.body[0])

    async def focus_in(self, handle: InputContextHandle):
        await self._call(handle, "FocusIn")

    async def focus_out(self, handle: InputContextHandle):
        await self._call(handle, "FocusOut")

    async def reset(self, handle: InputContextHandle):
        await self._call(handle, "Reset")

    async def disconnect(self, handle: InputContextHandle):
        await self._call(handle, "DestroyIC")

    async def subscribe_updates(self, handle: InputContextHandle) -> trio.MemoryReceiveChannel[ImeUpdate]:
        rule = MatchRule(type="signal", interface=INPUT_CONTEXT_INTERFACE, path=handle.path)
        try:
            router = self._live_router()
            signals = await router.watch_signals(rule)
        except (RouterClosed, trio.BrokenResourceError, trio.ClosedResourceError, OSError) as exc:
            raise TransportError(f"Unable to subscribe to {handle.path}: {exc}") from exc
        send_, recv_ = trio.open_memory_channel[ImeUpdate](math.inf)
        router.nursery.start_soon(self._decode_updates, signals, send_)
        return recv_

    async def _decode_updates(self, signals: trio.MemoryReceiveChannel[Signal], updates: trio.MemorySendChannel[ImeUpdate]):
        with signals, updates:
            async for signal in signals:
                try:
                    update = decode_signal(signal, self.cursor_unit)
                except ProtocolError:
                    logger.info("Dropping malformed signal", exc_info=True)
                    continue
                if update is None:
                    continue
                try:
                    updates.send_nowait(update)
                except trio.BrokenResourceError:
                    logger.debug("Update subscriber went away")
                    return
