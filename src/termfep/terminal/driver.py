from __future__ import annotations

import contextlib
import logging
import os
import termios
import tty
import typing

import trio
import trio.lowlevel

from ..commontypes import NotInContextError, SetupError, TerminalIOError
from .base import TerminalDriver
from .keystreams import DEFAULT_ESCAPE_TIMEOUT, make_keystream
from .rendering import SAVE_CURSOR, erase_preedit, render_session

if typing.TYPE_CHECKING:
    from ..session import Session

logger = logging.getLogger(__name__)

READ_SIZE = 4096
STREAM_ERRORS = (OSError, trio.BrokenResourceError, trio.ClosedResourceError, trio.BusyResourceError)


class PosixTerminal(TerminalDriver):
    _input: trio.lowlevel.FdStream | None
    _output: trio.lowlevel.FdStream | None

    def __init__(self, fd_in: int = 0, fd_out: int = 1, escape_timeout: float = DEFAULT_ESCAPE_TIMEOUT):
        self.fd_in = fd_in
        self.fd_out = fd_out
        self.escape_timeout = escape_timeout
        self._saved_attributes = None
        self._input = None
        self._output = None

    @property
    def interactive(self):
        return self._saved_attributes is not None

    async def enter_interactive_mode(self):
        if not os.isatty(self.fd_in):
            raise SetupError("Standard input is not a terminal")
        try:
            self._saved_attributes = termios.tcgetattr(self.fd_in)
            tty.setraw(self.fd_in, termios.TCSANOW)
        except termios.error as exc:
            self._saved_attributes = None
            raise SetupError(f"Unable to put the terminal into raw mode: {exc}") from exc
        # FdStream owns (and eventually closes) whatever fd it is given, hence the dups.
        self._input = trio.lowlevel.FdStream(os.dup(self.fd_in))
        self._output = trio.lowlevel.FdStream(os.dup(self.fd_out))
        try:
            await self._output.send_all(SAVE_CURSOR.encode())
        except STREAM_ERRORS as exc:
            await self.leave_interactive_mode()
            raise SetupError(f"Unable to write to the terminal: {exc}") from exc
        logger.debug("Terminal is in raw mode")

    async def leave_interactive_mode(self):
        if self._saved_attributes is None:
            return
        attributes, self._saved_attributes = self._saved_attributes, None
        if self._output is not None:
            try:
                await self._output.send_all(erase_preedit().encode())
            except STREAM_ERRORS:
                logger.debug("Couldn't erase the preedit on the way out", exc_info=True)
        for stream in (self._input, self._output):
            if stream is not None:
                await stream.aclose()
        self._input = self._output = None
        # FdStream switched the shared file descriptions to non-blocking
        for fd in (self.fd_in, self.fd_out):
            with contextlib.suppress(OSError):
                os.set_blocking(fd, True)
        try:
            termios.tcsetattr(self.fd_in, termios.TCSADRAIN, attributes)
        except termios.error:
            logger.exception("Unable to restore terminal attributes")
            raise
        logger.debug("Terminal restored")

    async def _read_chunks(self):
        stream = self._input
        if stream is None:
            raise NotInContextError()
        try:
            while True:
                chunk = await stream.receive_some(READ_SIZE)
                if not chunk:
                    logger.debug("Terminal input closed")
                    return
                yield chunk
        except trio.ClosedResourceError:
            logger.debug("Terminal input stream was closed")
        except (OSError, trio.BrokenResourceError, trio.BusyResourceError) as exc:
            raise TerminalIOError(f"Reading from the terminal failed: {exc}") from exc

    @contextlib.asynccontextmanager
    async def key_events(self):
        async with make_keystream(self._read_chunks(), self.escape_timeout) as keystream:
            yield keystream

    async def render(self, session: Session):
        if self._output is None:
            raise NotInContextError()
        try:
            await self._output.send_all(render_session(session).encode("utf-8"))
        except STREAM_ERRORS as exc:
            raise TerminalIOError(f"Writing to the terminal failed: {exc}") from exc
