import random

import pytest
from termfep.session import EMPTY_PREEDIT, CommitEvent, CursorUnit, PreeditState, PreeditUpdate, Session, normalize_cursor


def test_preedit_update():
    session = Session()
    session.apply_update(PreeditUpdate(text="a", cursor=1))
    assert session.preedit == PreeditState(text="a", cursor=1)
    assert session.pending_commit is None


def test_commit_after_preedit():
    session = Session()
    session.apply_update(PreeditUpdate(text="ab", cursor=2))
    session.apply_update(CommitEvent(text="AB"))
    assert session.preedit == EMPTY_PREEDIT
    assert session.preedit.cursor == 0
    assert session.pending_commit == CommitEvent(text="AB")


def test_preedit_update_clears_pending_commit():
    session = Session()
    session.apply_update(CommitEvent(text="AB"))
    session.apply_update(PreeditUpdate(text="c", cursor=1))
    assert session.pending_commit is None
    assert session.preedit.text == "c"


def test_second_commit_replaces_first():
    session = Session()
    session.apply_update(CommitEvent(text="one"))
    session.apply_update(CommitEvent(text="two"))
    assert session.take_commit() == CommitEvent(text="two")
    assert session.take_commit() is None


@pytest.mark.parametrize(
    "text,cursor,expected",
    [
        ("abc", 5, 3),
        ("abc", -1, 0),
        ("abc", -40, 0),
        ("", 3, 0),
        ("abc", 2, 2),
    ],
)
def test_cursor_clamped(text, cursor, expected):
    session = Session()
    session.apply_update(PreeditUpdate(text=text, cursor=cursor))
    assert session.preedit.cursor == expected


def test_cursor_always_within_preedit():
    rng = random.Random(1234)
    session = Session()
    for _ in range(500):
        if rng.random() < 0.2:
            session.apply_update(CommitEvent(text=rng.choice(["x", "", "日本"])))
        else:
            text = "".join(rng.choice("abあ́") for _ in range(rng.randint(0, 6)))
            session.apply_update(PreeditUpdate(text=text, cursor=rng.randint(-10, 10)))
        assert 0 <= session.preedit.cursor <= len(session.preedit.text)


def test_unknown_update_type():
    with pytest.raises(NotImplementedError):
        Session().apply_update("nope")


@pytest.mark.parametrize(
    "text,offset,unit,expected",
    [
        ("abc", 2, CursorUnit.CODEPOINTS, 2),
        ("abc", 2, CursorUnit.UTF8_BYTES, 2),
        ("日本語", 3, CursorUnit.UTF8_BYTES, 1),
        ("日本語", 9, CursorUnit.UTF8_BYTES, 3),
        # inside a character rounds down
        ("日本語", 4, CursorUnit.UTF8_BYTES, 1),
        ("aé", 3, CursorUnit.UTF8_BYTES, 2),
        ("a😀b", 3, CursorUnit.UTF16_UNITS, 2),
        ("a😀b", 2, CursorUnit.UTF16_UNITS, 1),
        ("日本語", -1, CursorUnit.UTF8_BYTES, -1),
        ("ab", 5, CursorUnit.UTF8_BYTES, 5),
    ],
)
def test_normalize_cursor(text, offset, unit, expected):
    assert normalize_cursor(text, offset, unit) == expected


def test_normalized_overshoot_is_still_clamped():
    session = Session()
    text = "日本"
    session.apply_update(PreeditUpdate(text=text, cursor=normalize_cursor(text, 20, CursorUnit.UTF8_BYTES)))
    assert session.preedit.cursor == 2
