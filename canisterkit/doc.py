"""Pretty-printing documents that lay themselves out within a line width."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from enum import Enum

INDENT_SPACE = 2
LINE_WIDTH = 80


class _Mode(Enum):
    BREAK = "break"
    FLAT = "flat"


class Doc:
    """An immutable layout document."""

    @classmethod
    def text(cls, value: object) -> Doc:
        return _Text(str(value))

    @classmethod
    def nil(cls) -> Doc:
        return _NIL

    @classmethod
    def hardline(cls) -> Doc:
        return _HARDLINE

    @classmethod
    def line(cls) -> Doc:
        """A newline that becomes a space when its group fits on one line."""
        return _FlatAlt(_HARDLINE, _Text(" "))

    @classmethod
    def space(cls) -> Doc:
        return _Text(" ")

    @classmethod
    def concat(cls, docs: Iterable[Doc | str]) -> Doc:
        result = _NIL
        for doc in docs:
            result = result.append(doc)
        return result

    @classmethod
    def intersperse(cls, docs: Iterable[Doc | str], separator: Doc | str) -> Doc:
        sep = _coerce(separator)
        result = _NIL
        first = True
        for doc in docs:
            if not first:
                result = result.append(sep)
            result = result.append(doc)
            first = False
        return result

    def append(self, other: Doc | str) -> Doc:
        other_doc = _coerce(other)
        if isinstance(self, _Nil):
            return other_doc
        if isinstance(other_doc, _Nil):
            return self
        return _Append(self, other_doc)

    def nest(self, indent: int) -> Doc:
        if indent == 0:
            return self
        return _Nest(indent, self)

    def group(self) -> Doc:
        if isinstance(self, (_Group, _Text, _Nil)):
            return self
        return _Group(self)

    def pretty(self, width: int = LINE_WIDTH) -> str:
        """Render the document, breaking groups that do not fit in ``width``."""
        out: list[str] = []
        pos = 0
        stack: list[tuple[int, _Mode, Doc]] = [(0, _Mode.BREAK, self)]
        while stack:
            indent, mode, doc = stack.pop()
            while True:
                if isinstance(doc, _Append):
                    stack.append((indent, mode, doc.right))
                    doc = doc.left
                elif isinstance(doc, _FlatAlt):
                    doc = doc.broken if mode is _Mode.BREAK else doc.flat
                elif isinstance(doc, _Group):
                    if mode is _Mode.BREAK and _fits(doc.body, pos, width, stack):
                        mode = _Mode.FLAT
                    doc = doc.body
                elif isinstance(doc, _Nest):
                    indent += doc.indent
                    doc = doc.body
                else:
                    break
            if isinstance(doc, _Hardline):
                out.append("\n" + " " * indent)
                pos = indent
            elif isinstance(doc, _Text):
                out.append(doc.value)
                pos += len(doc.value)
        return "".join(out)


@dataclass(frozen=True, eq=False, repr=False)
class _Nil(Doc):
    pass


@dataclass(frozen=True, eq=False, repr=False)
class _Hardline(Doc):
    pass


@dataclass(frozen=True, eq=False, repr=False)
class _Text(Doc):
    value: str


@dataclass(frozen=True, eq=False, repr=False)
class _Append(Doc):
    left: Doc
    right: Doc


@dataclass(frozen=True, eq=False, repr=False)
class _FlatAlt(Doc):
    broken: Doc
    flat: Doc


@dataclass(frozen=True, eq=False, repr=False)
class _Nest(Doc):
    indent: int
    body: Doc


@dataclass(frozen=True, eq=False, repr=False)
class _Group(Doc):
    body: Doc


_NIL = _Nil()
_HARDLINE = _Hardline()


def _coerce(value: Doc | str) -> Doc:
    return value if isinstance(value, Doc) else _Text(str(value))


def _softline() -> Doc:
    """A newline that disappears when its group fits on one line."""
    return _FlatAlt(_HARDLINE, _NIL)


def _fits(doc: Doc, pos: int, width: int, stack: list[tuple[int, _Mode, Doc]]) -> bool:
    pending = [doc]
    rest = reversed(stack)
    mode = _Mode.FLAT
    while True:
        if pending:
            current = pending.pop()
        else:
            entry = next(rest, None)
            if entry is None:
                return True
            mode = _Mode.BREAK
            current = entry[2]
        while True:
            if isinstance(current, _Append):
                pending.append(current.right)
                current = current.left
            elif isinstance(current, _FlatAlt):
                current = current.broken if mode is _Mode.BREAK else current.flat
            elif isinstance(current, (_Group, _Nest)):
                current = current.body
            else:
                break
        if isinstance(current, _Hardline):
            return mode is _Mode.BREAK
        if isinstance(current, _Text):
            pos += len(current.value)
            if pos > width:
                return False


def _is_empty(doc: Doc) -> bool:
    if isinstance(doc, _Nil):
        return True
    if isinstance(doc, _FlatAlt):
        return _is_empty(doc.broken) and _is_empty(doc.flat)
    if isinstance(doc, (_Group, _Nest)):
        return _is_empty(doc.body)
    return False


def kwd(text: object) -> Doc:
    """Text followed by a single space."""
    return Doc.text(text).append(Doc.space())


def enclose(left: str, doc: Doc, right: str) -> Doc:
    """Wrap ``doc`` in delimiters, indenting it on its own lines when it does not fit."""
    if _is_empty(doc):
        return Doc.text(left).append(right)
    return (
        Doc.text(left)
        .append(_softline())
        .append(doc)
        .nest(INDENT_SPACE)
        .append(_softline())
        .append(right)
        .group()
    )


def enclose_space(left: str, doc: Doc, right: str) -> Doc:
    """Like :func:`enclose`, with spaces inside the delimiters when flat."""
    if _is_empty(doc):
        return Doc.text(left).append(right)
    return (
        Doc.text(left)
        .append(Doc.line())
        .append(doc)
        .nest(INDENT_SPACE)
        .append(Doc.line())
        .append(right)
        .group()
    )


def sep_concat(docs: Iterable[Doc], separator: str) -> Doc:
    """Join docs with a separator; a trailing separator appears when broken."""
    items = list(docs)
    if not items:
        return Doc.nil()
    joined = Doc.intersperse(items, Doc.text(separator).append(Doc.line()))
    return joined.append(_FlatAlt(Doc.text(separator), _NIL))


def lines(docs: Iterable[Doc]) -> Doc:
    """Put every doc on its own line, each followed by a newline."""
    return Doc.concat(doc.append(Doc.hardline()) for doc in docs)