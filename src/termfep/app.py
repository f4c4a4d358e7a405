from __future__ import annotations

import argparse
import contextlib
import logging
import pathlib
import signal
import sys
from typing import Optional

import cattrs
import outcome
import trio

from .commontypes import SetupError, TermfepError, TransportError
from .dispatcher import EventDispatcher
from .settings import TRANSPORTS, Settings
from .terminal.base import TerminalDriver
from .terminal.driver import PosixTerminal
from .transport import make_transport
from .transport.base import ImeTransport, InputContextHandle

logger = logging.getLogger(__name__)

# how long teardown may spend talking to the input method
RELEASE_TIMEOUT = 2
QUIT_SIGNALS = (signal.SIGINT, signal.SIGTERM, signal.SIGHUP)


class Termfep:
    """Owns the input method connection and the terminal for the lifetime of one run.

    Resources are acquired in order (connection, input context, update subscription,
    focus, raw mode) and released in reverse by a single exit stack, whichever way the
    run ends.
    """

    dispatcher: Optional[EventDispatcher]

    def __init__(self, settings: Settings, transport: ImeTransport, terminal: TerminalDriver):
        self.settings = settings
        self.transport = transport
        self.terminal = terminal
        self.dispatcher = None

    async def run(self):
        async with contextlib.AsyncExitStack() as stack:
            await stack.enter_async_context(self.transport)
            # errors must leave the transport's context as plain exceptions, not groups
            result = await outcome.acapture(self._run_connected, stack)
        logger.debug("goodbye")
        return result.unwrap()

    async def _run_connected(self, stack: contextlib.AsyncExitStack):
        handle = await self.transport.connect(self.settings.client_name)
        stack.push_async_callback(self._release_context, handle)
        updates = await self.transport.subscribe_updates(handle)
        await self.transport.focus_in(handle)

        await self.terminal.enter_interactive_mode()
        stack.push_async_callback(self._restore_terminal)

        self.dispatcher = EventDispatcher(self.terminal, self.transport, handle, updates)
        async with trio.open_nursery() as nursery:
            await nursery.start(self._watch_signals)
            result = await outcome.acapture(self.dispatcher.run)
            nursery.cancel_scope.cancel()
        return result.unwrap()

    async def _watch_signals(self, *, task_status=trio.TASK_STATUS_IGNORED):
        with trio.open_signal_receiver(*QUIT_SIGNALS) as signals:
            task_status.started()
            async for signum in signals:
                logger.info("Received %s", signal.Signals(signum).name)
                if self.dispatcher is not None:
                    self.dispatcher.request_quit()

    async def _restore_terminal(self):
        with trio.CancelScope(shield=True):
            await self.terminal.leave_interactive_mode()

    async def _release_context(self, handle: InputContextHandle):
        with trio.move_on_after(RELEASE_TIMEOUT, shield=True) as scope:
            try:
                await self.transport.focus_out(handle)
                await self.transport.disconnect(handle)
            except TransportError:
                # the connection is often already gone by now
                logger.info("Unable to release input context %s", handle.path, exc_info=True)
        if scope.cancelled_caught:
            logger.warning("Gave up releasing input context %s", handle.path)


parser = argparse.ArgumentParser(prog="termfep", description="Compose text with an input method inside a terminal.")
parser.add_argument("settings", type=pathlib.Path, nargs="?", help="JSON settings file")
parser.add_argument("--transport", choices=TRANSPORTS)
parser.add_argument("--client-name")
parser.add_argument("--log-file", type=pathlib.Path)
parser.add_argument("--debug", action="store_true")


def load_settings(parsed: argparse.Namespace) -> Settings:
    try:
        settings = Settings.load(parsed.settings) if parsed.settings is not None else Settings.defaults()
    except (OSError, ValueError, cattrs.BaseValidationError) as exc:
        raise SetupError(f"Unable to load settings: {exc}") from exc
    if parsed.transport is not None:
        settings.transport = parsed.transport
    if parsed.client_name is not None:
        settings.client_name = parsed.client_name
    if parsed.log_file is not None:
        settings.log_file = parsed.log_file
    if parsed.debug:
        settings.log_level = "DEBUG"
    return settings


def configure_logging(settings: Settings):
    # stdout belongs to the user's text, so only warnings reach the terminal
    if settings.log_file is not None:
        logging.basicConfig(
            filename=settings.log_file,
            level=settings.log_level,
            format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        )
    else:
        logging.basicConfig(level=logging.WARNING)
    if settings.log_level != "DEBUG":
        logging.getLogger("termfep.transport.fcitx5.allmessages").setLevel(logging.INFO)


def main(argv=sys.argv):
    """
    Args:
        argv (list): List of arguments

    Returns:
        int: A return code
    """
    parsed = parser.parse_args(argv[1:])
    try:
        settings = load_settings(parsed)
    except SetupError as exc:
        print(f"termfep: {exc}", file=sys.stderr)
        return 1
    configure_logging(settings)

    app = Termfep(settings, make_transport(settings), PosixTerminal(escape_timeout=settings.escape_timeout))
    try:
        trio.run(app.run)
    except TermfepError as exc:
        logger.info("Exiting after error", exc_info=exc)
        print(f"termfep: {exc}", file=sys.stderr)
        return 1
    return 0
