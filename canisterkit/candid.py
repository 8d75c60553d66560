"""Candid type model: principals, labels, types and type environments."""

from __future__ import annotations

import base64
import binascii
import zlib
from collections.abc import Iterable, Iterator, Mapping, MutableMapping
from dataclasses import dataclass
from typing import ClassVar, Union

PRIMITIVES = frozenset(
    {
        "null",
        "bool",
        "nat",
        "int",
        "nat8",
        "nat16",
        "nat32",
        "nat64",
        "int8",
        "int16",
        "int32",
        "int64",
        "float32",
        "float64",
        "text",
        "reserved",
        "empty",
        "principal",
    }
)

FUNC_MODES = frozenset({"query", "composite_query", "oneway"})


def idl_hash(name: str) -> int:
    """Return the 32-bit Candid hash of a field name."""
    result = 0
    for byte in name.encode("utf-8"):
        result = (result * 223 + byte) & 0xFFFFFFFF
    return result


@dataclass(frozen=True, order=True)
class Principal:
    """An opaque identifier of up to 29 bytes with a checksummed text form."""

    data: bytes = b""

    MAX_LENGTH: ClassVar[int] = 29
    _ANONYMOUS: ClassVar[bytes] = b"\x04"

    def __post_init__(self) -> None:
        data = bytes(self.data)
        if len(data) > self.MAX_LENGTH:
            raise ValueError(
                f"principal is {len(data)} bytes long, at most {self.MAX_LENGTH} allowed"
            )
        object.__setattr__(self, "data", data)

    @classmethod
    def from_slice(cls, data: bytes | Iterable[int]) -> Principal:
        return cls(bytes(data))

    @classmethod
    def anonymous(cls) -> Principal:
        return cls(cls._ANONYMOUS)

    @classmethod
    def from_text(cls, text: str) -> Principal:
        compact = text.replace("-", "").upper()
        padded = compact + "=" * (-len(compact) % 8)
        try:
            raw = base64.b32decode(padded)
        except binascii.Error as exc:
            raise ValueError(f"invalid principal text: {text!r}") from exc
        if len(raw) < 4:
            raise ValueError(f"principal text is too short: {text!r}")
        principal = cls.from_slice(raw[4:])
        if principal.to_text() != text:
            raise ValueError(f"principal text is not in canonical form: {text!r}")
        return principal

    def to_text(self) -> str:
        checksum = zlib.crc32(self.data).to_bytes(4, "big")
        encoded = base64.b32encode(checksum + self.data).decode("ascii")
        encoded = encoded.rstrip("=").lower()
        return "-".join(encoded[start : start + 5] for start in range(0, len(encoded), 5))

    def __str__(self) -> str:
        return self.to_text()


@dataclass(frozen=True)
class Label:
    """A record or variant field label: a name, a numeric id, or a tuple position."""

    name: str | None = None
    number: int | None = None
    unnamed: bool = False

    def __post_init__(self) -> None:
        if (self.name is None) == (self.number is None):
            raise ValueError("a label has either a name or a number")
        if self.unnamed and self.name is not None:
            raise ValueError("an unnamed label cannot carry a name")

    @property
    def id(self) -> int:
        if self.name is not None:
            return idl_hash(self.name)
        return self.number  # type: ignore[return-value]

    def __str__(self) -> str:
        return self.name if self.name is not None else str(self.number)


@dataclass(frozen=True)
class Field:
    label: Label
    ty: Type


@dataclass(frozen=True)
class Function:
    args: tuple = ()
    rets: tuple = ()
    modes: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "args", tuple(self.args))
        object.__setattr__(self, "rets", tuple(self.rets))
        object.__setattr__(self, "modes", tuple(self.modes))
        unknown = set(self.modes) - FUNC_MODES
        if unknown:
            raise ValueError(f"unknown function mode(s): {sorted(unknown)}")

    @property
    def is_query(self) -> bool:
        return any(mode in ("query", "composite_query") for mode in self.modes)


@dataclass(frozen=True)
class Prim:
    name: str

    def __post_init__(self) -> None:
        if self.name not in PRIMITIVES:
            raise ValueError(f"unknown primitive type: {self.name}")


@dataclass(frozen=True)
class Var:
    name: str


@dataclass(frozen=True)
class Opt:
    inner: Type


@dataclass(frozen=True)
class Vec:
    inner: Type


@dataclass(frozen=True)
class Record:
    fields: tuple[Field, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "fields", tuple(self.fields))


@dataclass(frozen=True)
class Variant:
    fields: tuple[Field, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "fields", tuple(self.fields))


@dataclass(frozen=True)
class Func:
    function: Function


@dataclass(frozen=True)
class Service:
    methods: tuple[tuple[str, Type], ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(
            self, "methods", tuple((name, ty) for name, ty in self.methods)
        )


@dataclass(frozen=True)
class ClassType:
    """A service constructor: init arguments and the service it produces."""

    args: tuple = ()
    service: Type = Service()

    def __post_init__(self) -> None:
        object.__setattr__(self, "args", tuple(self.args))


Type = Union[Prim, Var, Opt, Vec, Record, Variant, Func, Service, ClassType]


class TypeEnv(MutableMapping):
    """Named type definitions, iterated in name order."""

    def __init__(self, types: Mapping[str, Type] | None = None) -> None:
        self._types: dict[str, Type] = dict(types or {})

    def __getitem__(self, name: str) -> Type:
        return self._types[name]

    def __setitem__(self, name: str, ty: Type) -> None:
        self._types[name] = ty

    def __delitem__(self, name: str) -> None:
        if name not in self._types:
            raise KeyError(f"Unbound type identifier {name}")
        self._types.pop(name)

    def __iter__(self) -> Iterator[str]:
        return iter(sorted(self._types))

    def __len__(self) -> int:
        return len(self._types)

    def __repr__(self) -> str:
        return f"TypeEnv({dict(self.items())!r})"

    def find_type(self, name: str) -> Type:
        try:
            return self._types[name]
        except KeyError:
            raise KeyError(f"Unbound type identifier {name}") from None

    def trace(self, ty: Type) -> Type:
        """Follow type variables until a concrete type is reached."""
        visited: set[str] = set()
        while isinstance(ty, Var):
            if ty.name in visited:
                raise ValueError(f"type variable {ty.name} refers to itself")
            visited.add(ty.name)
            ty = self.find_type(ty.name)
        return ty

    def as_func(self, ty: Type) -> Function:
        traced = self.trace(ty)
        if isinstance(traced, Func):
            return traced.function
        raise ValueError(f"not a function type: {ty!r}")

    def as_service(self, ty: Type) -> tuple[tuple[str, Type], ...]:
        traced = self.trace(ty)
        if isinstance(traced, Service):
            return traced.methods
        if isinstance(traced, ClassType):
            return self.as_service(traced.service)
        raise ValueError(f"not a service type: {ty!r}")


def _children(ty: Type) -> Iterator[Type]:
    if isinstance(ty, (Opt, Vec)):
        yield ty.inner
    elif isinstance(ty, (Record, Variant)):
        yield from (field.ty for field in ty.fields)
    elif isinstance(ty, Func):
        yield from ty.function.args
        yield from ty.function.rets
    elif isinstance(ty, Service):
        yield from (method for _, method in ty.methods)
    elif isinstance(ty, ClassType):
        yield from ty.args
        yield ty.service


def chase_actor(env: TypeEnv, actor: Type) -> list[str]:
    """List the definitions reachable from the actor, dependencies first."""
    seen: set[str] = set()
    order: list[str] = []

    def chase(ty: Type) -> None:
        if isinstance(ty, Var):
            if ty.name not in seen:
                seen.add(ty.name)
                chase(env.find_type(ty.name))
                order.append(ty.name)
        else:
            for child in _children(ty):
                chase(child)

    chase(actor)
    return order


def infer_rec(env: TypeEnv, def_list: Iterable[str]) -> set[str]:
    """Return the names used before their definition in ``def_list``."""
    seen: set[str] = set()
    recursive: set[str] = set()

    def visit(ty: Type) -> None:
        if isinstance(ty, Var):
            if ty.name not in seen:
                seen.add(ty.name)
                recursive.add(ty.name)
        else:
            for child in _children(ty):
                visit(child)

    for name in def_list:
        visit(env[name])
        seen.add(name)
    return recursive