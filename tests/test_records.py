import pytest

from minicsem.records import (
    CompileError,
    IdEntry,
    Scope,
    SemRec,
    merge,
    parse_escape_chars,
)


def test_id_entry_defaults():
    entry = IdEntry("x", 2)
    assert entry.defined is False
    assert entry.scope is Scope.LOCAL
    assert entry.width == 0


def test_merge_with_none():
    rec = SemRec(value="a")
    assert merge(None, rec) is rec
    assert merge(rec, None) is rec
    assert merge(None, None) is None


def test_merge_links_lists_in_order():
    a, b, c = SemRec(value="a"), SemRec(value="b"), SemRec(value="c")
    first = merge(a, b)
    combined = merge(first, c)
    assert combined is a
    assert [node.value for node in combined] == ["a", "b", "c"]


def test_merge_keeps_existing_tail():
    a, b = SemRec(value="a"), SemRec(value="b")
    a.link = b
    c = SemRec(value="c")
    merge(a, c)
    assert b.link is c
    assert c.link is None


def test_semrec_iteration_single():
    rec = SemRec(value=1)
    assert list(rec) == [rec]


@pytest.mark.parametrize(
    "literal, expected",
    [
        ('"a\\tb"', "a\tb"),
        ('"%d %3.2f\\n"', "%d %3.2f\n"),
        ('"say \\"hi\\""', 'say "hi"'),
        ('"back\\\\slash"', "back\\slash"),
    ],
)
def test_parse_escape_chars(literal, expected):
    assert parse_escape_chars(literal) == expected


@pytest.mark.parametrize("text", ["", "plain", "with spaces", "x=1;"])
def test_parse_escape_chars_round_trip(text):
    assert parse_escape_chars('"' + text + '"') == text


def test_parse_escape_chars_invalid_escape():
    with pytest.raises(CompileError):
        parse_escape_chars('"\\q"')


def test_parse_escape_chars_trailing_backslash():
    with pytest.raises(CompileError):
        parse_escape_chars("abc\\")