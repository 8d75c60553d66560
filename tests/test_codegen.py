import pytest

from canisterkit.candid import (
    Field,
    Func,
    Function,
    Label,
    Opt,
    Prim,
    Principal,
    Record,
    Service,
    TypeEnv,
    Var,
    Variant,
    Vec,
    idl_hash,
)
from canisterkit.codegen import (
    Config,
    Target,
    compile,
    is_tuple,
    nominalize_all,
    path_to_var,
)


def named(name, ty):
    return Field(Label(name=name), ty)


def unnamed(number, ty):
    return Field(Label(number=number, unnamed=True), ty)


NAT = Prim("nat")
TEXT = Prim("text")


def greet_service(modes=("query",)):
    return Service((("greet", Func(Function(args=(TEXT,), rets=(TEXT,), modes=modes))),))


def test_is_tuple_cases():
    assert is_tuple([]) is False
    assert is_tuple([unnamed(0, NAT), unnamed(1, TEXT)]) is True
    assert is_tuple([named("a", NAT)]) is False
    assert is_tuple([Field(Label(number=1), NAT), Field(Label(number=2), NAT)]) is False


def test_path_to_var_joins_segments_in_pascal_case():
    assert path_to_var(["foo", "inner", "bar"]) == "FooInnerBar"
    result = path_to_var(["some_type", "item"])
    assert "_" not in result
    assert result[0].isupper()


def test_nominalize_lifts_record_inside_option():
    record = Record((named("a", NAT),))
    env = TypeEnv({"t": Opt(record)})
    result, actor = nominalize_all(env, None)
    assert actor is None
    assert isinstance(result["t"], Opt)
    lifted = result["t"].inner
    assert isinstance(lifted, Var)
    assert lifted.name == path_to_var(["t", "inner"])
    assert result[lifted.name] == record


def test_nominalize_keeps_top_level_record_and_tuple():
    record = Record((named("a", Vec(Record((unnamed(0, NAT), unnamed(1, TEXT))))),))
    env = TypeEnv({"r": record})
    result, _ = nominalize_all(env, None)
    assert result["r"] == record
    assert len(result) == 1


def test_nominalize_lifts_function_arguments_of_actor():
    arg = Record((named("a", NAT),))
    actor = Service((("put", Func(Function(args=(arg,), rets=()))),))
    env = TypeEnv()
    result, named_actor = nominalize_all(env, actor)
    name = path_to_var(["put", "arg"])
    assert result[name] == arg
    assert isinstance(named_actor, Service)
    assert named_actor.methods[0][1].function.args == (Var(name),)
    assert len(env) == 0


def test_nominalize_lifts_nested_variant():
    variant = Variant((named("x", Prim("null")),))
    env = TypeEnv({"r": Record((named("v", variant),))})
    result, _ = nominalize_all(env, None)
    name = path_to_var(["r", "v"])
    assert result["r"].fields[0].ty == Var(name)
    assert result[name] == variant


def test_compile_header_for_canister_call():
    out = compile(Config(), TypeEnv({"t": TEXT}))
    assert out.startswith(
        "// This is an experimental feature to generate Rust binding from Candid."
    )
    assert "#![allow(dead_code, unused_imports)]" in out
    assert "use candid::{self, CandidType, Deserialize, Principal, Encode, Decode};" in out
    assert "use ic_cdk::api::call::CallResult as Result;" in out


def test_compile_header_custom_crate_and_agent():
    config = Config(candid_crate="my_candid", target=Target.AGENT)
    out = compile(config, TypeEnv())
    assert "use my_candid::{self" in out
    assert "type Result<T> = std::result::Result<T, ic_agent::AgentError>;" in out
    assert "ic_cdk::api::call::CallResult" not in out


def test_compile_blob_alias():
    out = compile(Config(), TypeEnv({"blob_t": Vec(Prim("nat8"))}))
    assert "pub type" in out
    assert "serde_bytes::ByteBuf" in out


def test_compile_record_struct_with_derive_and_keyword_field():
    env = TypeEnv({"rec": Record((named("type", NAT), named("p", Prim("principal"))))})
    out = compile(Config(), env)
    assert "#[derive(CandidType, Deserialize)]" in out
    assert "pub struct" in out
    assert "r#type" in out
    assert "candid::Nat" in out


def test_compile_custom_type_attributes_replace_derive():
    attrs = "#[derive(CandidType, Deserialize, Debug)]"
    out = compile(Config(type_attributes=attrs), TypeEnv({"rec": Record((named("a", NAT),))}))
    assert attrs in out
    assert "#[derive(CandidType, Deserialize)]" not in out


def test_compile_non_identifier_field_is_renamed():
    env = TypeEnv({"rec": Record((named("a-b", NAT), named('a"b', NAT)))})
    out = compile(Config(), env)
    assert f"_{idl_hash('a-b')}_" in out
    assert '#[serde(rename="a-b")]' in out
    assert '#[serde(rename="a\\"b")]' in out


def test_compile_variant_renames_cases():
    env = TypeEnv({"res": Variant((named("ok", Prim("null")), named("err", TEXT)))})
    out = compile(Config(), env)
    assert "enum" in out
    assert '#[serde(rename="ok")]' in out
    assert '#[serde(rename="err")]' in out


def test_compile_recursive_type_is_boxed_struct():
    env = TypeEnv({"list": Opt(Var("list"))})
    out = compile(Config(), env)
    assert "Box<List>" in out
    assert "pub type" not in out


def test_compile_reserved_name_gets_suffix():
    out = compile(Config(), TypeEnv({"result": TEXT}))
    assert "Result_" in out


def test_compile_function_and_service_definitions():
    env = TypeEnv(
        {
            "cb": Func(Function(args=(TEXT,), rets=())),
            "svc": greet_service(),
        }
    )
    out = compile(Config(), env)
    assert "candid::define_function!(pub" in out
    assert "candid::define_service!(pub" in out
    assert "candid::func!(" in out


def test_compile_canister_call_actor_with_id():
    cid = Principal.from_slice(bytes([0, 0, 0, 0, 0, 0, 0, 1, 1, 1]))
    out = compile(Config(canister_id=cid), TypeEnv(), greet_service())
    assert "pub struct Service(pub Principal);" in out
    assert "impl Service {" in out
    assert "pub async fn greet(&self, arg0: String) -> Result<(String,)>" in out
    assert 'ic_cdk::call(self.0, "greet"' in out
    assert "pub const CANISTER_ID : Principal = Principal::from_slice(&[" in out
    assert f"// {cid}" in out
    assert "pub const service : Service = Service(CANISTER_ID);" in out


def test_compile_agent_query_and_update():
    query_out = compile(Config(target=Target.AGENT), TypeEnv(), greet_service())
    assert ".query(&self.0, \"greet\")" in query_out
    assert ".call().await?;" in query_out
    assert "Ok(Decode!(&bytes, String)?)" in query_out
    update_out = compile(Config(target=Target.AGENT), TypeEnv(), greet_service(modes=()))
    assert ".update(&self.0, \"greet\")" in update_out
    assert "call_and_wait" in update_out


def test_compile_actor_through_variable():
    env = TypeEnv({"svc": greet_service()})
    out = compile(Config(), env, Var("svc"))
    assert 'ic_cdk::call(self.0, "greet"' in out


def test_compile_stub_target():
    out = compile(Config(target=Target.CANISTER_STUB), TypeEnv({"t": TEXT}))
    assert "use ic_cdk" not in out
    assert "String" in out
    with pytest.raises(NotImplementedError):
        compile(Config(target=Target.CANISTER_STUB), TypeEnv(), greet_service())


def test_compile_unbound_variable_raises():
    with pytest.raises(KeyError):
        compile(Config(), TypeEnv(), Service((("m", Var("missing")),)))