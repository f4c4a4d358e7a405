from __future__ import annotations

import abc
import typing

if typing.TYPE_CHECKING:
    import collections.abc
    import contextlib

    from ..keys import KeyEvent
    from ..session import Session


class TerminalDriver(abc.ABC):
    @abc.abstractmethod
    async def enter_interactive_mode(self):
        """Switch the terminal into raw mode. Raises SetupError on failure."""

    @abc.abstractmethod
    async def leave_interactive_mode(self):
        """Restore the original terminal mode. Safe to call more than once."""

    @abc.abstractmethod
    def key_events(self) -> contextlib.AbstractAsyncContextManager[collections.abc.AsyncIterable[KeyEvent]]:
        """Live key events until the input closes.

        An async context manager yielding the stream; read failures raise TerminalIOError
        out of the context.
        """

    @abc.abstractmethod
    async def render(self, session: Session):
        """Redraw the preedit and any pending commit. Raises TerminalIOError."""
