import pytest

from canisterkit.doc import (
    INDENT_SPACE,
    Doc,
    enclose,
    enclose_space,
    kwd,
    lines,
    sep_concat,
)


def _texts(names):
    return [Doc.text(name) for name in names]


def test_text_and_append():
    assert Doc.text("ab").append("cd").pretty(80) == "ab" + "cd"
    assert Doc.text(42).pretty(80) == str(42)


def test_nil_is_identity_for_append():
    doc = Doc.text("x")
    assert Doc.nil().append(doc) is doc
    assert doc.append(Doc.nil()) is doc
    assert Doc.nil().pretty(80) == ""


def test_hardline_breaks():
    out = Doc.text("a").append(Doc.hardline()).append("b").pretty(80)
    assert out.split("\n") == ["a", "b"]


def test_ungrouped_line_breaks():
    out = Doc.text("a").append(Doc.line()).append("b").pretty(80)
    assert out.split("\n") == ["a", "b"]


def test_grouped_line_is_flat_when_it_fits():
    out = Doc.text("a").append(Doc.line()).append("b").group().pretty(80)
    assert "\n" not in out
    assert out.split(" ") == ["a", "b"]


def test_grouped_line_breaks_when_too_wide():
    out = Doc.text("a").append(Doc.line()).append("b").group().pretty(2)
    assert out.splitlines() == ["a", "b"]


def test_space_never_breaks():
    out = Doc.text("a").append(Doc.space()).append("b").group().pretty(1)
    assert out.split(" ") == ["a", "b"]


def test_hardline_forces_group_to_break():
    doc = (
        Doc.text("a")
        .append(Doc.line())
        .append("b")
        .append(Doc.hardline())
        .append("c")
        .group()
    )
    assert doc.pretty(80).splitlines() == ["a", "b", "c"]


def test_fit_check_looks_past_the_group():
    doc = Doc.text("a").append(Doc.line()).append("b").group().append("cccc")
    assert doc.pretty(5).splitlines() == ["a", "bcccc"]
    assert len(doc.pretty(80).splitlines()) == 1


def test_nest_indents_after_newline():
    doc = Doc.text("a").append(Doc.hardline().append("b").nest(INDENT_SPACE))
    assert doc.pretty(80).splitlines() == ["a", " " * INDENT_SPACE + "b"]


def test_nest_zero_is_same_doc():
    doc = Doc.text("a")
    assert doc.nest(0) is doc


def test_concat_and_intersperse():
    names = ["x", "y", "z"]
    assert Doc.concat(_texts(names)).pretty(80) == "".join(names)
    assert Doc.concat([]).pretty(80) == ""
    assert Doc.intersperse(_texts(names), ", ").pretty(80) == ", ".join(names)


def test_group_is_idempotent():
    doc = Doc.text("a").append(Doc.line()).append("b")
    assert doc.group().group().pretty(2) == doc.group().pretty(2)


def test_kwd_adds_space():
    assert kwd("pub").append("fn").pretty(80) == "pub" + " " + "fn"


def test_enclose_flat_and_empty():
    assert enclose("(", Doc.text("x"), ")").pretty(80) == "(" + "x" + ")"
    assert enclose("(", Doc.nil(), ")").pretty(80) == "(" + ")"
    assert enclose_space("{", Doc.nil(), "}").pretty(80) == "{" + "}"


def test_enclose_broken():
    assert enclose("(", Doc.text("x"), ")").pretty(1).splitlines() == ["(", "  x", ")"]


def test_enclose_space_flat():
    assert enclose_space("{", Doc.text("a"), "}").pretty(80) == "{ a }"


def test_sep_concat_flat():
    names = ["a", "b", "c"]
    out = enclose("(", sep_concat(_texts(names), ","), ")").pretty(80)
    assert out == "(" + ", ".join(names) + ")"


def test_sep_concat_broken_has_trailing_separator():
    out = enclose("(", sep_concat(_texts(["a", "b", "c"]), ","), ")").pretty(1)
    assert out.splitlines() == ["(", "  a,", "  b,", "  c,", ")"]


def test_sep_concat_empty():
    assert enclose("(", sep_concat([], ","), ")").pretty(80) == "(" + ")"


@pytest.mark.parametrize("width", [20, 30, 40])
def test_broken_lines_respect_width(width):
    names = [f"item{n}" for n in range(30)]
    out = enclose_space("{", sep_concat(_texts(names), ";"), "}").pretty(width)
    assert all(len(line) <= width for line in out.splitlines())
    assert len(out.splitlines()) == len(names) + 2


def test_lines_puts_each_doc_on_its_line():
    names = ["one", "two"]
    assert lines(_texts(names)).pretty(80) == "".join(name + "\n" for name in names)