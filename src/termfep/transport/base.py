from __future__ import annotations

import abc
import contextlib
import typing

import msgspec

if typing.TYPE_CHECKING:
    import trio

    from ..session import ImeUpdate


class InputContextHandle(msgspec.Struct, frozen=True):
    path: str
    uuid: bytes = b""


class ImeTransport(contextlib.AbstractAsyncContextManager):
    """Connection to an input method engine.

    Used as an async context manager; the connection lives for the duration of the
    ``async with`` block. All calls take the handle returned by :meth:`connect`.
    """

    @abc.abstractmethod
    async def connect(self, client_name: str) -> InputContextHandle:
        """Create the input context. Raises SetupError on failure."""

    @abc.abstractmethod
    async def forward_key(self, handle: InputContextHandle, symbol: int, code: int, modifier_mask: int, is_release: bool) -> bool:
        """Send one key event; returns whether the IME consumed it."""

    @abc.abstractmethod
    async def focus_in(self, handle: InputContextHandle): ...

    @abc.abstractmethod
    async def focus_out(self, handle: InputContextHandle): ...

    @abc.abstractmethod
    async def reset(self, handle: InputContextHandle): ...

    @abc.abstractmethod
    async def disconnect(self, handle: InputContextHandle): ...

    @abc.abstractmethod
    async def subscribe_updates(self, handle: InputContextHandle) -> trio.MemoryReceiveChannel[ImeUpdate]:
        """Return a channel of preedit/commit updates.

        The channel ends when the connection drops or the transport is closed.
        """
