"""Generation of Rust client bindings from Candid type definitions."""

from __future__ import annotations

import re
from collections.abc import Iterable
from dataclasses import dataclass
from enum import Enum

from .candid import (
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
    chase_actor,
    idl_hash,
    infer_rec,
)
from .doc import (
    INDENT_SPACE,
    LINE_WIDTH,
    Doc,
    enclose,
    enclose_space,
    kwd,
    lines,
    sep_concat,
)


class Target(Enum):
    """The kind of code the bindings are generated for."""

    CANISTER_CALL = "canister_call"
    AGENT = "agent"
    CANISTER_STUB = "canister_stub"


@dataclass
class Config:
    """Options for :func:`compile`.

    ``type_attributes`` replaces the derive line of every generated type.
    Without ``canister_id`` only the service struct is generated.
    """

    candid_crate: str = "candid"
    type_attributes: str = ""
    canister_id: Principal | None = None
    service_name: str = "service"
    target: Target = Target.CANISTER_CALL


_KEYWORDS = frozenset(
    {
        "as", "break", "const", "continue", "crate", "else", "enum", "extern",
        "false", "fn", "for", "if", "impl", "in", "let", "loop", "match", "mod",
        "move", "mut", "pub", "ref", "return", "self", "Self", "static",
        "struct", "super", "trait", "true", "type", "unsafe", "use", "where",
        "while", "async", "await", "dyn", "abstract", "become", "box", "do",
        "final", "macro", "override", "priv", "typeof", "unsized", "virtual",
        "yield", "try",
    }
)

_RESERVED_NAMES = frozenset({"crate", "self", "super", "Self", "Result", "Principal"})

_PRIM_TYPES = {
    "null": "()",
    "bool": "bool",
    "nat": "candid::Nat",
    "int": "candid::Int",
    "nat8": "u8",
    "nat16": "u16",
    "nat32": "u32",
    "nat64": "u64",
    "int8": "i8",
    "int16": "i16",
    "int32": "i32",
    "int64": "i64",
    "float32": "f32",
    "float64": "f64",
    "text": "String",
    "reserved": "candid::Reserved",
    "empty": "candid::Empty",
    "principal": "Principal",
}

_ESCAPES = {
    "\\": "\\\\",
    '"': '\\"',
    "'": "\\'",
    "\n": "\\n",
    "\r": "\\r",
    "\t": "\\t",
    "\0": "\\0",
}

_WORD = re.compile(r"[A-Z]+(?![a-z])|[A-Z][a-z]*|[a-z]+|[0-9]+|[^A-Za-z0-9_\- ]+")


class _Case(Enum):
    PASCAL = "pascal"
    SNAKE = "snake"


def _to_case(text: str, case: _Case) -> str:
    words = _WORD.findall(text)
    if case is _Case.PASCAL:
        return "".join(word[:1].upper() + word[1:].lower() for word in words)
    return "_".join(word.lower() for word in words)


def _escape_debug(text: str) -> str:
    return "".join(
        _ESCAPES.get(ch) or (ch if ch.isprintable() else f"\\u{{{ord(ch):x}}}")
        for ch in text
    )


def is_tuple(fields: Iterable[Field]) -> bool:
    """True when the fields are numbered 0, 1, 2, ... in order."""
    fields = list(fields)
    if not fields:
        return False
    return all(field.label.id == index for index, field in enumerate(fields))


def _ident_with_rename(name: str, case: _Case | None) -> tuple[Doc, bool]:
    if (
        not name
        or not (name[0] == "_" or (name[0].isascii() and name[0].isalpha()))
        or any(not (ch.isascii() and ch.isalnum()) and ch != "_" for ch in name)
    ):
        return Doc.text(f"_{idl_hash(name)}_"), True
    if case is not None:
        new_name = _to_case(name, case)
        is_rename = new_name != name
    else:
        new_name, is_rename = name, False
    if new_name in _RESERVED_NAMES:
        return Doc.text(f"{new_name}_"), True
    if new_name in _KEYWORDS:
        return Doc.text(f"r#{new_name}"), is_rename
    return Doc.text(new_name), is_rename


def _ident(name: str, case: _Case | None) -> Doc:
    return _ident_with_rename(name, case)[0]


def _pp_ty(ty: Type, recs: set[str]) -> Doc:
    if isinstance(ty, Prim):
        return Doc.text(_PRIM_TYPES[ty.name])
    if isinstance(ty, Var):
        name = _ident(ty.name, _Case.PASCAL)
        if ty.name in recs:
            return Doc.text("Box<").append(name).append(">")
        return name
    if isinstance(ty, Opt):
        return Doc.text("Option").append(enclose("<", _pp_ty(ty.inner, recs), ">"))
    if isinstance(ty, Vec):
        if ty.inner == Prim("nat8"):
            return Doc.text("serde_bytes::ByteBuf")
        return Doc.text("Vec").append(enclose("<", _pp_ty(ty.inner, recs), ">"))
    if isinstance(ty, Record):
        return _pp_record_fields(ty.fields, recs, "")
    raise ValueError(f"type must be named before printing: {ty!r}")


def _vis_doc(vis: str) -> Doc:
    return Doc.nil() if not vis else kwd(vis)


def _pp_label(label: Label, is_variant: bool, vis: str) -> Doc:
    vis_doc = _vis_doc(vis)
    if label.name is None:
        return vis_doc.append("_").append(Doc.text(label.number)).append("_")
    case = _Case.PASCAL if is_variant else None
    doc, is_rename = _ident_with_rename(label.name, case)
    if not is_rename:
        return vis_doc.append(doc)
    return (
        Doc.text('#[serde(rename="')
        .append(_escape_debug(label.name))
        .append('")]')
        .append(Doc.line())
        .append(vis_doc)
        .append(doc)
    )


def _pp_record_field(field: Field, recs: set[str], vis: str) -> Doc:
    return _pp_label(field.label, False, vis).append(kwd(":")).append(_pp_ty(field.ty, recs))


def _pp_record_fields(fields: tuple[Field, ...], recs: set[str], vis: str) -> Doc:
    if is_tuple(fields):
        vis_doc = _vis_doc(vis)
        tuple_doc = Doc.concat(
            vis_doc.append(_pp_ty(field.ty, recs)).append(",") for field in fields
        )
        return enclose("(", tuple_doc, ")")
    docs = sep_concat((_pp_record_field(field, recs, vis) for field in fields), ",")
    return enclose_space("{", docs, "}")


def _pp_variant_field(field: Field, recs: set[str]) -> Doc:
    label = _pp_label(field.label, True, "")
    if field.ty == Prim("null"):
        return label
    if isinstance(field.ty, Record):
        return label.append(_pp_record_fields(field.ty.fields, recs, ""))
    return label.append(enclose("(", _pp_ty(field.ty, recs), ")"))


def _pp_variant_fields(fields: tuple[Field, ...], recs: set[str]) -> Doc:
    docs = sep_concat((_pp_variant_field(field, recs) for field in fields), ",")
    return enclose_space("{", docs, "}")


def _pp_args(args: Iterable[Type]) -> Doc:
    return enclose("(", sep_concat((_pp_ty(arg, set()) for arg in args), ","), ")")


def _pp_modes(modes: Iterable[str]) -> Doc:
    return Doc.concat(Doc.space().append(mode) for mode in modes)


def _pp_ty_func(function: Function) -> Doc:
    return (
        _pp_args(function.args)
        .append(" ->")
        .append(Doc.space())
        .append(_pp_args(function.rets).append(_pp_modes(function.modes)))
        .nest(INDENT_SPACE)
    )


def _pp_service_method(name: str, ty: Type) -> Doc:
    if isinstance(ty, Func):
        func_doc = enclose("candid::func!(", _pp_ty_func(ty.function), ")")
    elif isinstance(ty, Var):
        func_doc = _pp_ty(ty, set()).append("::ty()")
    else:
        raise ValueError(f"service method {name!r} is not a function: {ty!r}")
    return Doc.text('"').append(name).append(kwd('" :')).append(func_doc)


def _pp_ty_service(methods: tuple[tuple[str, Type], ...]) -> Doc:
    docs = sep_concat((_pp_service_method(name, ty) for name, ty in methods), ";")
    return enclose_space("{", docs, "}")


def _pp_def(name_id: str, ty: Type, derive: str, recs: set[str]) -> Doc:
    name = _ident(name_id, _Case.PASCAL).append(" ")
    vis = "pub "
    if isinstance(ty, Record):
        separator = Doc.text(";") if is_tuple(ty.fields) else Doc.nil()
        return (
            Doc.text(derive)
            .append(Doc.line())
            .append(vis)
            .append("struct ")
            .append(name)
            .append(_pp_record_fields(ty.fields, recs, "pub"))
            .append(separator)
            .append(Doc.hardline())
        )
    if isinstance(ty, Variant):
        return (
            Doc.text(derive)
            .append(Doc.line())
            .append(vis)
            .append("enum ")
            .append(name)
            .append(_pp_variant_fields(ty.fields, recs))
            .append(Doc.hardline())
        )
    if isinstance(ty, Func):
        return (
            Doc.text("candid::define_function!(")
            .append(vis)
            .append(name)
            .append(": ")
            .append(_pp_ty_func(ty.function))
            .append(");")
        )
    if isinstance(ty, Service):
        return (
            Doc.text("candid::define_service!(")
            .append(vis)
            .append(name)
            .append(": ")
            .append(_pp_ty_service(ty.methods))
            .append(");")
        )
    if name_id in recs:
        return (
            Doc.text(derive)
            .append(Doc.line())
            .append(vis)
            .append("struct ")
            .append(_ident(name_id, _Case.PASCAL))
            .append(enclose("(", _pp_ty(ty, recs), ")"))
            .append(";")
            .append(Doc.hardline())
        )
    return (
        Doc.text(vis)
        .append(kwd("type"))
        .append(name)
        .append("= ")
        .append(_pp_ty(ty, recs))
        .append(";")
    )


def _pp_defs(config: Config, env: TypeEnv, def_list: list[str], recs: set[str]) -> Doc:
    derive = config.type_attributes or "#[derive(CandidType, Deserialize)]"
    return lines(_pp_def(name, env.find_type(name), derive, recs) for name in def_list)


def _unsupported_stub() -> NotImplementedError:
    return NotImplementedError("the canister stub target is not supported")


def _pp_function(config: Config, method_id: str, function: Function) -> Doc:
    if config.target is Target.CANISTER_STUB:
        raise _unsupported_stub()
    empty: set[str] = set()
    name = _ident(method_id, _Case.SNAKE)
    params = [Doc.text("&self")]
    params.extend(
        Doc.text(f"arg{index}: ").append(_pp_ty(ty, empty))
        for index, ty in enumerate(function.args)
    )
    args = sep_concat(params, ",")
    if config.target is Target.CANISTER_CALL:
        rets = enclose(
            "(", Doc.concat(_pp_ty(ty, empty).append(",") for ty in function.rets), ")"
        )
    elif not function.rets:
        rets = Doc.text("()")
    elif len(function.rets) == 1:
        rets = _pp_ty(function.rets[0], empty)
    else:
        rets = enclose(
            "(",
            Doc.intersperse((_pp_ty(ty, empty) for ty in function.rets), Doc.text(", ")),
            ")",
        )
    sig = (
        kwd("pub async fn")
        .append(name)
        .append(enclose("(", args, ")"))
        .append(kwd(" ->"))
        .append(enclose("Result<", rets, "> "))
    )
    method = _escape_debug(method_id)
    arg_count = len(function.args)
    if config.target is Target.CANISTER_CALL:
        call_args = Doc.concat(Doc.text(f"arg{index},") for index in range(arg_count))
        body = (
            Doc.text('ic_cdk::call(self.0, "')
            .append(method)
            .append('", ')
            .append(enclose("(", call_args, ")"))
            .append(").await")
        )
    else:
        builder_method = "query" if function.is_query else "update"
        call = "call" if function.is_query else "call_and_wait"
        encode_args = Doc.intersperse(
            (Doc.text(f"&arg{index}") for index in range(arg_count)), Doc.text(", ")
        )
        blob = Doc.text("Encode!").append(enclose("(", encode_args, ")?;"))
        decode_rets = Doc.concat(
            Doc.text(", ").append(_pp_ty(ty, empty)) for ty in function.rets
        )
        body = (
            Doc.text("let args = ")
            .append(blob)
            .append(Doc.hardline())
            .append(
                f'let bytes = self.1.{builder_method}(&self.0, "{method}")'
                f".with_arg(args).{call}().await?;"
            )
            .append(Doc.hardline())
            .append("Ok(Decode!(&bytes")
            .append(decode_rets)
            .append(")?)")
        )
    return sig.append(enclose_space("{", body, "}"))


def _pp_actor(config: Config, env: TypeEnv, actor: Type) -> Doc:
    if config.target is Target.CANISTER_STUB:
        raise _unsupported_stub()
    methods = env.as_service(actor)
    body = Doc.intersperse(
        (_pp_function(config, name, env.as_func(ty)) for name, ty in methods),
        Doc.hardline(),
    )
    struct_name = _to_case(config.service_name, _Case.PASCAL)
    if config.target is Target.CANISTER_CALL:
        service_def = f"pub struct {struct_name}(pub Principal);"
        service_impl = f"impl {struct_name} "
    else:
        service_def = (
            f"pub struct {struct_name}<'a>(pub Principal, pub &'a ic_agent::Agent);"
        )
        service_impl = f"impl<'a> {struct_name}<'a> "
    result = (
        Doc.text(service_def)
        .append(Doc.hardline())
        .append(service_impl)
        .append(enclose_space("{", body, "}"))
        .append(Doc.hardline())
    )
    cid = config.canister_id
    if cid is None:
        return result
    byte_list = ", ".join(str(byte) for byte in cid.data)
    id_doc = Doc.text(
        f"pub const CANISTER_ID : Principal = Principal::from_slice(&[{byte_list}]); // {cid}"
    )
    if config.target is Target.CANISTER_CALL:
        instance = (
            f"pub const {config.service_name} : {struct_name} = {struct_name}(CANISTER_ID);"
        )
    else:
        instance = ""
    return result.append(id_doc).append(Doc.hardline()).append(instance)


def compile(config: Config, env: TypeEnv, actor: Type | None = None) -> str:
    """Render Rust bindings for the types in ``env`` and the optional actor."""
    header = (
        "// This is an experimental feature to generate Rust binding from Candid.\n"
        "// You may want to manually adjust some of the types.\n"
        "#![allow(dead_code, unused_imports)]\n"
        f"use {config.candid_crate}::{{self, CandidType, Deserialize, Principal, Encode, Decode}};\n"
    )
    if config.target is Target.CANISTER_CALL:
        header += "use ic_cdk::api::call::CallResult as Result;\n"
    elif config.target is Target.AGENT:
        header += "type Result<T> = std::result::Result<T, ic_agent::AgentError>;\n"
    named_env, named_actor = nominalize_all(env, actor)
    if named_actor is not None:
        def_list = chase_actor(named_env, named_actor)
    else:
        def_list = list(named_env)
    recs = infer_rec(named_env, def_list)
    doc = _pp_defs(config, named_env, def_list, recs)
    if named_actor is not None:
        doc = doc.append(_pp_actor(config, named_env, named_actor))
    return Doc.text(header).append(Doc.line()).append(doc).pretty(LINE_WIDTH)


class _Kind(Enum):
    ID = "id"
    OPT = "opt"
    VEC = "vec"
    RECORD_FIELD = "record_field"
    VARIANT_FIELD = "variant_field"
    FUNC = "func"
    INIT = "init"


_Path = tuple[tuple[_Kind, str], ...]


def path_to_var(path: Iterable[str]) -> str:
    """Name a lifted type after the path segments that lead to it."""
    return _to_case("_".join(path), _Case.PASCAL)


def _lift(env: TypeEnv, path: _Path, ty: Type) -> Type:
    name = path_to_var(segment for _, segment in path)
    env[name] = _nominalize(env, ((_Kind.ID, name),), ty)
    return Var(name)


def _nominalize_fields(
    env: TypeEnv, path: _Path, fields: tuple[Field, ...], kind: _Kind
) -> tuple[Field, ...]:
    return tuple(
        Field(field.label, _nominalize(env, path + ((kind, str(field.label)),), field.ty))
        for field in fields
    )


def _nominalize_list(env: TypeEnv, path: _Path, types: tuple, prefix: str) -> tuple:
    return tuple(
        _nominalize(env, path + ((_Kind.FUNC, f"{prefix}{index or ''}"),), ty)
        for index, ty in enumerate(types)
    )


def _nominalize(env: TypeEnv, path: _Path, ty: Type) -> Type:
    last = path[-1][0] if path else None
    at_definition = last in (None, _Kind.ID)
    if isinstance(ty, Opt):
        return Opt(_nominalize(env, path + ((_Kind.OPT, "inner"),), ty.inner))
    if isinstance(ty, Vec):
        return Vec(_nominalize(env, path + ((_Kind.VEC, "item"),), ty.inner))
    if isinstance(ty, Record):
        if at_definition or last is _Kind.VARIANT_FIELD or is_tuple(ty.fields):
            return Record(_nominalize_fields(env, path, ty.fields, _Kind.RECORD_FIELD))
        return _lift(env, path, ty)
    if isinstance(ty, Variant):
        if at_definition:
            return Variant(_nominalize_fields(env, path, ty.fields, _Kind.VARIANT_FIELD))
        return _lift(env, path, ty)
    if isinstance(ty, Func):
        if at_definition:
            function = ty.function
            return Func(
                Function(
                    args=_nominalize_list(env, path, function.args, "arg"),
                    rets=_nominalize_list(env, path, function.rets, "ret"),
                    modes=function.modes,
                )
            )
        return _lift(env, path, ty)
    if isinstance(ty, Service):
        if at_definition:
            return Service(
                tuple(
                    (name, _nominalize(env, path + ((_Kind.ID, name),), method))
                    for name, method in ty.methods
                )
            )
        return _lift(env, path, ty)
    if isinstance(ty, ClassType):
        return ClassType(
            args=tuple(
                _nominalize(env, path + ((_Kind.INIT, "init"),), arg) for arg in ty.args
            ),
            service=_nominalize(env, path, ty.service),
        )
    return ty


def nominalize_all(env: TypeEnv, actor: Type | None) -> tuple[TypeEnv, Type | None]:
    """Give every nested record, variant, function and service its own name."""
    result = TypeEnv()
    for name, ty in env.items():
        result[name] = _nominalize(result, ((_Kind.ID, name),), ty)
    named_actor = None if actor is None else _nominalize(result, (), actor)
    return result, named_actor