# canisterkit

Tooling for working with canisters, in two parts:

- **Binding generation**: reads a Candid interface and writes typed Rust
  client bindings for it (`canisterkit.candid`, `canisterkit.doc`,
  `canisterkit.codegen`, `canisterkit.bindgen`).
- **A cooperative executor**: runs coroutine tasks inside update, query and
  callback contexts, with wake-up and cancellation rules modelled on the
  canister runtime (`canisterkit.executor`).

The package has no dependencies outside the standard library.

## Generating bindings

Each canister is described by a `BindingConfig`. `BindingConfig.from_env`
takes the Candid file path and the canister id from the environment variables
`CANISTER_CANDID_PATH_<NAME>` and `CANISTER_ID_<NAME>`, where `<NAME>` is the
canister name upper-cased with `-` turned into `_`. The older variables that
keep the name's case are still accepted, with a deprecation warning printed.
Pass a mapping as `environ` to read from it instead of `os.environ`.

```python
from canisterkit.bindgen import BindingConfig, Builder

environ = {
    "CANISTER_CANDID_PATH_LEDGER": "candid/ledger.did",
    "CANISTER_ID_LEDGER": "2vxsx-fae",
}

builder = Builder()
builder.add(BindingConfig.from_env("ledger", environ))
builder.build("src/declarations")
```

`Builder.build` writes `<canister_name>.rs` for each configuration (left alone
when `skip_existing_files` is set and the file exists) and a `mod.rs` that
lists them, and returns the output directory. Without an argument it writes
to `$CARGO_MANIFEST_DIR/src/declarations`. A missing variable raises
`KeyError`; an invalid principal or an unparsable Candid file raises
`ValueError`.

To use the generator directly, parse Candid text with `parse_candid` and pass
the result to `compile` together with a `Config`:

```python
from canisterkit.bindgen import parse_candid
from canisterkit.codegen import Config, Target, compile

env, actor = parse_candid("""
type Account = record { owner : principal; balance : nat };
service : { get : (principal) -> (opt Account) query };
""")
print(compile(Config(), env, actor))
print(compile(Config(target=Target.AGENT), env, actor))
```

`Config` holds `candid_crate`, `type_attributes` (replaces the derive line of
every type), `canister_id` (a `Principal`; when set, a `CANISTER_ID` constant
is emitted), `service_name` and `target` (`Target.CANISTER_CALL` or
`Target.AGENT`; `Target.CANISTER_STUB` raises `NotImplementedError` once a
service is rendered).

`parse_candid` reads type definitions and a service, including a service
with init arguments. Imports are not supported.

Anonymous records, variants, functions and services nested inside other
types are given names of their own (`nominalize_all`), and types that refer
to themselves are boxed.

`canisterkit.candid` provides the type model used throughout: `Principal`
(with `from_text`, `to_text`, `from_slice` and `anonymous`), `idl_hash`, the
type classes, `TypeEnv`, `chase_actor` and `infer_rec`. `canisterkit.doc`
provides the `Doc` layout documents the generator renders with.

## Running tasks

```python
from canisterkit.executor import WakeSignal, in_callback_executor_context, in_executor_context, spawn

signal = WakeSignal()

async def work():
    reply = await signal.wait()
    print("got", reply)

in_executor_context(lambda: spawn(work()))

def callback():
    signal.value = "reply"
    signal.waker.wake()

in_callback_executor_context(callback)
```

`spawn` only works inside an executor context. A query context runs only
tasks spawned from queries. A task suspends by awaiting `WakeSignal.wait()`;
calling the signal's `waker` schedules it again, and the task receives the
signal's `value`. In `in_callback_cancellation_context` every woken task is
closed instead, and `is_recovering_from_trap` reports whether that is
happening. An exception escaping a task is raised as `Trap`.

## What this package does not do

It does not generate the exported entry points of canister methods (argument
decoding, guards and replies), and it does not compile, deploy or call
canisters: it produces source text and runs tasks in-process.