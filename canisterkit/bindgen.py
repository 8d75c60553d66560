"""Generate binding files for canisters described by Candid interface files."""

from __future__ import annotations

import os
import re
from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import NamedTuple

from .candid import (
    FUNC_MODES,
    PRIMITIVES,
    ClassType,
    Field,
    Func,
    Function,
    Label,
    Opt,
    Prim,
    Principal,
    Record,
    Service,
    Type,
    TypeEnv,
    Var,
    Variant,
    Vec,
)
from .codegen import Config, Target
from .codegen import compile as compile_bindings

_LEXEME_PATTERN = re.compile(
    r"""
     (?P<ws>\s+|//[^\n]*|/\*.*?\*/)
    |(?P<text>"(?:[^"\\]|\\.)*")
    |(?P<num>0[xX][0-9a-fA-F_]+|[0-9][0-9_]*)
    |(?P<id>[A-Za-z_][A-Za-z0-9_]*)
    |(?P<sym>->|[{}();:,=])
    """,
    re.VERBOSE | re.DOTALL,
)

_ESCAPE = re.compile(r"\\(u\{[0-9a-fA-F_]+\}|[0-9a-fA-F]{2}|.)", re.DOTALL)
_SIMPLE_ESCAPES = {"n": "\n", "t": "\t", "r": "\r", "\\": "\\", '"': '"', "'": "'"}


class _Lexeme(NamedTuple):
    kind: str
    value: str
    offset: int


def _lexemes(text: str) -> Iterator[_Lexeme]:
    pos = 0
    while pos < len(text):
        match = _LEXEME_PATTERN.match(text, pos)
        if match is None:
            raise ValueError(f"unexpected character {text[pos]!r} at offset {pos}")
        kind = match.lastgroup
        if kind != "ws":
            yield _Lexeme(kind, match.group(), pos)
        pos = match.end()


def _unescape(literal: str) -> str:
    def replace(match: re.Match) -> str:
        code = match.group(1)
        if code.startswith("u{"):
            return chr(int(code[2:-1].replace("_", ""), 16))
        if len(code) == 2:
            return chr(int(code, 16))
        try:
            return _SIMPLE_ESCAPES[code]
        except KeyError:
            raise ValueError(f"unknown escape sequence \\{code}") from None

    return _ESCAPE.sub(replace, literal[1:-1])


def _number(text: str) -> int:
    digits = text.replace("_", "")
    if digits[:2].lower() == "0x":
        return int(digits[2:], 16)
    return int(digits)


class _Parser:
    def __init__(self, text: str) -> None:
        self._items = list(_lexemes(text))
        self._pos = 0
        self._end = _Lexeme(kind="eof", value="", offset=len(text))

    def _peek(self, ahead: int = 0) -> _Lexeme:
        index = self._pos + ahead
        return self._items[index] if index < len(self._items) else self._end

    def _advance(self) -> _Lexeme:
        lexeme = self._peek()
        self._pos += 1
        return lexeme

    def _is(self, value: str, ahead: int = 0) -> bool:
        lexeme = self._peek(ahead)
        return lexeme.kind in ("sym", "id") and lexeme.value == value

    def _accept(self, value: str) -> bool:
        if self._is(value):
            self._pos += 1
            return True
        return False

    def _fail(self, expected: str) -> ValueError:
        lexeme = self._peek()
        found = lexeme.value or "end of input"
        return ValueError(f"expected {expected} at offset {lexeme.offset}, found {found!r}")

    def _expect(self, value: str) -> None:
        if not self._accept(value):
            raise self._fail(repr(value))

    def _expect_id(self) -> str:
        if self._peek().kind != "id":
            raise self._fail("an identifier")
        return self._advance().value

    def _name_before_colon(self) -> bool:
        return self._peek().kind in ("id", "text") and self._is(":", 1)

    def _label_name(self) -> str:
        lexeme = self._advance()
        return _unescape(lexeme.value) if lexeme.kind == "text" else lexeme.value

    def parse(self) -> tuple[TypeEnv, Type | None]:
        env = TypeEnv()
        while True:
            if self._accept("type"):
                name = self._expect_id()
                self._expect("=")
                ty = self._datatype()
                self._expect(";")
                if name in env:
                    raise ValueError(f"duplicate type definition: {name}")
                env[name] = ty
            elif self._is("import"):
                raise ValueError("imports are not supported")
            else:
                break
        actor: Type | None = None
        if self._accept("service"):
            if self._peek().kind == "id" and self._is(":", 1):
                self._advance()
            self._expect(":")
            args = None
            if self._is("("):
                args = self._tuple()
                self._expect("->")
            service: Type = Service(self._actortype()) if self._is("{") else Var(self._expect_id())
            actor = ClassType(args, service) if args is not None else service
            self._accept(";")
        if self._peek().kind != "eof":
            raise self._fail("end of input")
        return env, actor

    def _datatype(self) -> Type:
        name = self._expect_id()
        if name in PRIMITIVES:
            return Prim(name)
        if name == "opt":
            return Opt(self._datatype())
        if name == "vec":
            return Vec(self._datatype())
        if name == "blob":
            return Vec(Prim("nat8"))
        if name == "record":
            return Record(self._fields(variant=False))
        if name == "variant":
            return Variant(self._fields(variant=True))
        if name == "func":
            return Func(self._functype())
        if name == "service":
            return Service(self._actortype())
        return Var(name)

    def _fields(self, variant: bool) -> tuple[Field, ...]:
        self._expect("{")
        fields: list[Field] = []
        next_id = 0
        while not self._is("}"):
            item = self._field(variant, next_id)
            fields.append(item)
            next_id = item.label.id + 1
            if not self._accept(";"):
                break
        self._expect("}")
        seen: set[int] = set()
        for item in fields:
            if item.label.id in seen:
                raise ValueError(f"duplicate field label: {item.label}")
            seen.add(item.label.id)
        return tuple(sorted(fields, key=lambda item: item.label.id))

    def _field(self, variant: bool, next_id: int) -> Field:
        lexeme = self._peek()
        if lexeme.kind == "num" and self._is(":", 1):
            self._advance()
            self._advance()
            return Field(self._numeric_label(lexeme.value), self._datatype())
        if self._name_before_colon():
            name = self._label_name()
            self._advance()
            return Field(Label(name=name), self._datatype())
        if variant and lexeme.kind in ("id", "text"):
            return Field(Label(name=self._label_name()), Prim("null"))
        if variant and lexeme.kind == "num":
            self._advance()
            return Field(self._numeric_label(lexeme.value), Prim("null"))
        if not variant:
            return Field(Label(number=next_id, unnamed=True), self._datatype())
        raise self._fail("a variant label")

    @staticmethod
    def _numeric_label(text: str) -> Label:
        number = _number(text)
        if number >= 1 << 32:
            raise ValueError(f"field label {text} does not fit in 32 bits")
        return Label(number=number)

    def _tuple(self) -> tuple[Type, ...]:
        self._expect("(")
        items: list[Type] = []
        while not self._is(")"):
            if self._name_before_colon():
                self._advance()
                self._advance()
            items.append(self._datatype())
            if not self._accept(","):
                break
        self._expect(")")
        return tuple(items)

    def _functype(self) -> Function:
        args = self._tuple()
        self._expect("->")
        rets = self._tuple()
        modes: list[str] = []
        while self._peek().kind == "id" and self._peek().value in FUNC_MODES:
            modes.append(self._advance().value)
        return Function(args, rets, tuple(modes))

    def _actortype(self) -> tuple[tuple[str, Type], ...]:
        self._expect("{")
        methods: dict[str, Type] = {}
        while not self._is("}"):
            if self._peek().kind not in ("id", "text"):
                raise self._fail("a method name")
            name = self._label_name()
            self._expect(":")
            ty: Type = Func(self._functype()) if self._is("(") else Var(self._expect_id())
            if name in methods:
                raise ValueError(f"duplicate method name: {name}")
            methods[name] = ty
            if not self._accept(";"):
                break
        self._expect("}")
        return tuple(sorted(methods.items()))


def _referenced_names(ty: Type) -> Iterator[str]:
    if isinstance(ty, Var):
        yield ty.name
    elif isinstance(ty, (Opt, Vec)):
        yield from _referenced_names(ty.inner)
    elif isinstance(ty, (Record, Variant)):
        for item in ty.fields:
            yield from _referenced_names(item.ty)
    elif isinstance(ty, Func):
        for part in (*ty.function.args, *ty.function.rets):
            yield from _referenced_names(part)
    elif isinstance(ty, Service):
        for _, method in ty.methods:
            yield from _referenced_names(method)
    elif isinstance(ty, ClassType):
        for part in (*ty.args, ty.service):
            yield from _referenced_names(part)


def parse_candid(text: str) -> tuple[TypeEnv, Type | None]:
    """Parse a Candid interface into its type definitions and optional actor."""
    env, actor = _Parser(text).parse()
    roots = list(env.values()) + ([actor] if actor is not None else [])
    for root in roots:
        for name in _referenced_names(root):
            if name not in env:
                raise ValueError(f"Unbound type identifier {name}")
    return env, actor


def _lookup(environ: Mapping[str, str], name: str, legacy: str) -> str:
    print(f"cargo:rerun-if-env-changed={name}")
    print(f"cargo:rerun-if-env-changed={legacy}")
    if name in environ:
        return environ[name]
    if legacy in environ:
        print(
            f"cargo:warning=The environment variable {legacy} is deprecated. "
            f"Please set {name} instead. Upgrading dfx may fix this issue."
        )
        return environ[legacy]
    raise KeyError(f"Cannot find environment variable: {name}")


def resolve_candid_path_and_canister_id(
    canister_name: str, environ: Mapping[str, str] | None = None
) -> tuple[Path, Principal]:
    """Read the Candid path and canister id of a canister from the environment.

    Upper-case variable names are preferred; the older names that keep the
    canister name's case are accepted with a deprecation warning.
    """
    environ = os.environ if environ is None else environ
    name = canister_name.replace("-", "_")
    upper = name.upper()
    candid_path = _lookup(
        environ, f"CANISTER_CANDID_PATH_{upper}", f"CANISTER_CANDID_PATH_{name}"
    )
    canister_id = _lookup(environ, f"CANISTER_ID_{upper}", f"CANISTER_ID_{name}")
    try:
        principal = Principal.from_text(canister_id)
    except ValueError as exc:
        raise ValueError(f"Invalid principal: {canister_id}") from exc
    return Path(candid_path), principal


@dataclass
class BindingConfig:
    """Where one canister's interface lives and how to render its bindings."""

    canister_name: str
    candid_path: Path
    skip_existing_files: bool = False
    binding: Config = field(default_factory=Config)

    @classmethod
    def from_env(
        cls, canister_name: str, environ: Mapping[str, str] | None = None
    ) -> BindingConfig:
        candid_path, canister_id = resolve_candid_path_and_canister_id(canister_name, environ)
        binding = Config(
            candid_crate="candid",
            canister_id=canister_id,
            service_name=canister_name,
            target=Target.CANISTER_CALL,
        )
        return cls(canister_name=canister_name, candid_path=candid_path, binding=binding)


@dataclass
class Builder:
    """Collects canister configurations and writes their binding modules."""

    configs: list[BindingConfig] = field(default_factory=list)

    def add(self, config: BindingConfig) -> Builder:
        self.configs.append(config)
        return self

    def build(self, out_path: str | os.PathLike | None = None) -> Path:
        """Write one file per canister and a ``mod.rs`` listing them; return the directory."""
        if out_path is None:
            manifest_dir = os.environ.get("CARGO_MANIFEST_DIR")
            if manifest_dir is None:
                raise KeyError("Cannot find manifest dir")
            out = Path(manifest_dir) / "src" / "declarations"
        else:
            out = Path(out_path)
        out.mkdir(parents=True, exist_ok=True)
        for conf in self.configs:
            source = Path(conf.candid_path)
            try:
                env, actor = parse_candid(source.read_text(encoding="utf-8"))
            except ValueError as exc:
                raise ValueError(f"Cannot parse candid file {source}: {exc}") from exc
            content = compile_bindings(conf.binding, env, actor)
            generated = out / f"{conf.canister_name}.rs"
            if not (conf.skip_existing_files and generated.exists()):
                generated.write_text(content, encoding="utf-8")
        module_lines = [
            "#![allow(unused_imports)]",
            "#![allow(non_upper_case_globals)]",
            "#![allow(non_snake_case)]",
        ]
        for conf in self.configs:
            module_lines.append("#[rustfmt::skip]")
            module_lines.append(f"pub mod {conf.canister_name};")
        (out / "mod.rs").write_text("\n".join(module_lines) + "\n", encoding="utf-8")
        return out