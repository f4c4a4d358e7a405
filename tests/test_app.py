import os
import signal

import pytest
import trio
from fakes import FakeTerminal, RecordingTransport
from termfep.app import Termfep, load_settings, main, parser
from termfep.commontypes import ConnectionLost, SetupError
from termfep.keys import KeyEvent
from termfep.session import CommitEvent, PreeditState
from termfep.settings import Settings
from termfep.transport.loopback import LoopbackTransport
from trio.testing import wait_all_tasks_blocked

CTRL_C = KeyEvent.char("c", ctrl=True)
RELEASE_CALLS = ["focus_out", "disconnect", "close"]


def make_app(transport=None):
    terminal = FakeTerminal()
    if transport is None:
        transport = RecordingTransport()
    return Termfep(Settings.for_test(), transport, terminal), terminal, transport


async def test_quit_chord_cleans_up_once():
    app, terminal, transport = make_app()
    await terminal.key_send.send(CTRL_C)
    await app.run()
    assert terminal.calls == ["enter", "leave"]
    assert transport.calls == ["open", "connect", "subscribe", "focus_in"] + RELEASE_CALLS
    assert not terminal.interactive


async def test_terminal_setup_failure_releases_input_context():
    app, terminal, transport = make_app()
    terminal.enter_error = SetupError("not a terminal")
    with pytest.raises(SetupError, match="not a terminal"):
        await app.run()
    assert terminal.calls == ["enter"]
    assert transport.calls == ["open", "connect", "subscribe", "focus_in"] + RELEASE_CALLS


async def test_connect_failure():
    app, terminal, transport = make_app()
    transport.connect_error = SetupError("no input method")
    with pytest.raises(SetupError):
        await app.run()
    assert terminal.calls == []
    assert transport.calls == ["open", "connect", "close"]


async def test_connection_lost_restores_terminal():
    app, terminal, transport = make_app()
    transport.update_send.close()
    with pytest.raises(ConnectionLost):
        await app.run()
    assert terminal.calls == ["enter", "leave"]
    assert transport.calls[-3:] == RELEASE_CALLS


async def test_quit_signal():
    app, terminal, transport = make_app()
    with trio.fail_after(5):
        async with trio.open_nursery() as nursery:
            nursery.start_soon(app.run)
            await wait_all_tasks_blocked()
            os.kill(os.getpid(), signal.SIGTERM)
    assert terminal.calls == ["enter", "leave"]
    assert transport.calls[-3:] == RELEASE_CALLS


async def test_composing_with_loopback():
    app, terminal, transport = make_app(LoopbackTransport())
    async with trio.open_nursery() as nursery:
        nursery.start_soon(app.run)
        for character in "ni":
            await terminal.key_send.send(KeyEvent.char(character))
        await wait_all_tasks_blocked()
        assert terminal.renders[-1] == (PreeditState(text="ni", cursor=2), None)
        await terminal.key_send.send(KeyEvent.char(" "))
        await wait_all_tasks_blocked()
        assert terminal.renders[-1] == (PreeditState(), CommitEvent(text="ni "))
        await terminal.key_send.send(CTRL_C)
    assert transport.handle is None
    assert not transport.focused


def test_command_line_overrides(tmp_path):
    settings_path = tmp_path / "settings.json"
    Settings(_path=settings_path, client_name="from-file").save()
    settings = load_settings(parser.parse_args([str(settings_path), "--transport", "loopback", "--debug"]))
    assert settings.client_name == "from-file"
    assert settings.transport == "loopback"
    assert settings.log_level == "DEBUG"


def test_main_reports_bad_settings(tmp_path, capsys):
    assert main(["termfep", str(tmp_path / "missing.json")]) == 1
    assert "Unable to load settings" in capsys.readouterr().err
