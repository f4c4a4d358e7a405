from __future__ import annotations

import typing

from .base import ImeTransport, InputContextHandle

if typing.TYPE_CHECKING:
    from ..settings import Settings

__all__ = ["ImeTransport", "InputContextHandle", "make_transport"]


def make_transport(settings: Settings) -> ImeTransport:
    match settings.transport:
        case "fcitx5":
            from .fcitx5 import Fcitx5Transport

            return Fcitx5Transport(
                bus=settings.bus,
                service=settings.fcitx_service,
                cursor_unit=settings.cursor_unit,
            )
        case "loopback":
            from .loopback import LoopbackTransport

            return LoopbackTransport()
    raise ValueError(f"Unknown transport {settings.transport!r}")
