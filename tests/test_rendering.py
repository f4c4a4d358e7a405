import pytest
from termfep.session import CommitEvent, PreeditUpdate, Session
from termfep.terminal.rendering import cell_width, erase_preedit, render_session


def session_with(*updates):
    session = Session()
    for update in updates:
        session.apply_update(update)
    return session


def test_underlined_preedit_with_cursor_at_end():
    assert render_session(session_with(PreeditUpdate(text="a", cursor=1))) == "\x1b8\x1b[J\x1b7\x1b[4ma\x1b[24m"


def test_cursor_inside_preedit():
    rendered = render_session(session_with(PreeditUpdate(text="abc", cursor=1)))
    assert rendered == "\x1b8\x1b[J\x1b7\x1b[4mabc\x1b[24m\x1b[2D"


def test_wide_characters_move_by_cells():
    rendered = render_session(session_with(PreeditUpdate(text="にほん", cursor=1)))
    assert rendered.endswith("\x1b[4D")


def test_commit_written_before_new_anchor():
    rendered = render_session(session_with(PreeditUpdate(text="ab", cursor=2), CommitEvent(text="AB")))
    assert rendered == "\x1b8\x1b[JAB\x1b7"


def test_commit_newlines_become_crlf():
    rendered = render_session(session_with(CommitEvent(text="one\ntwo\r\n")))
    assert rendered == "\x1b8\x1b[Jone\r\ntwo\r\n\x1b7"


def test_empty_session():
    assert render_session(Session()) == "\x1b8\x1b[J\x1b7"
    assert erase_preedit() == "\x1b8\x1b[J"


@pytest.mark.parametrize(
    "text,width",
    [
        ("", 0),
        ("abc", 3),
        ("日本", 4),
        ("ｱ", 1),
        ("Ａ", 2),
        ("é", 1),
    ],
)
def test_cell_width(text, width):
    assert cell_width(text) == width
