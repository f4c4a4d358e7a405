import dataclasses
import json
import logging
import pathlib
import typing

import cattrs

from .session import CursorUnit

TRANSPORTS = ("fcitx5", "loopback")
BUSES = ("SESSION", "SYSTEM")


def check_choice(v: str, choices: tuple[str, ...]):
    if v not in choices:
        raise ValueError(f"Unexpected value {v!r}; expected one of {', '.join(choices)}")


def normalize_log_level(v: str | int) -> str:
    if isinstance(v, int):
        return logging.getLevelName(v)
    level = v.upper()
    if not isinstance(logging.getLevelName(level), int):
        raise ValueError(f"Unknown log level {v!r}")
    return level


settings_converter = cattrs.Converter()
settings_converter.register_unstructure_hook(CursorUnit, lambda cu: cu.value)
settings_converter.register_structure_hook(CursorUnit, lambda v, _: CursorUnit(v))
settings_converter.register_unstructure_hook(pathlib.Path, str)
settings_converter.register_structure_hook(pathlib.Path, lambda v, _: pathlib.Path(v).expanduser())


@dataclasses.dataclass(kw_only=True)
class Settings:
    _path: typing.Optional[pathlib.Path] = None
    client_name: str = "termfep"
    transport: str = "fcitx5"
    bus: str = "SESSION"
    fcitx_service: str = "org.fcitx.Fcitx5"
    cursor_unit: CursorUnit = CursorUnit.UTF8_BYTES
    escape_timeout: float = 0.05
    log_file: typing.Optional[pathlib.Path] = None
    log_level: str = "INFO"

    def __post_init__(self):
        check_choice(self.transport, TRANSPORTS)
        check_choice(self.bus, BUSES)
        self.log_level = normalize_log_level(self.log_level)
        if self.escape_timeout < 0:
            raise ValueError("escape_timeout must not be negative")

    def save(self, dest: typing.Optional[pathlib.Path] = None):
        if dest is None:
            dest = self._path
        if dest is None:
            raise ValueError("No path to save settings to")
        raw = settings_converter.unstructure(self)
        del raw["_path"]
        with dest.open("w") as out:
            json.dump(raw, out, indent=2)

    @classmethod
    def load(cls, src: pathlib.Path):
        with src.open() as f:
            raw = json.load(f)
        raw["_path"] = src
        return settings_converter.structure(raw, cls)

    @classmethod
    def defaults(cls):
        return cls()

    @classmethod
    def for_test(cls):
        return settings_converter.structure(
            {
                "_path": "test.settings.json",
                "client_name": "termfep-test",
                "transport": "loopback",
                "cursor_unit": "codepoints",
                "escape_timeout": 0.01,
                "log_level": "DEBUG",
            },
            cls,
        )


settings_converter.register_structure_hook(Settings, cattrs.gen.make_dict_structure_fn(Settings, settings_converter))
