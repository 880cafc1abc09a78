"""
The core PAWX interpreter: the Evaluator and its value semantics.
"""
import inspect
import math
import os
import sys
from contextvars import ContextVar
from typing import Any, Callable, Dict, List, Optional

from pawx.pawx_ast import (
    Program, ExprStmt, VarDecl, FuncDecl, ClassDecl, FieldDef, MethodDef, GetterDef, SetterDef,
    InterfaceDecl, PrideBlock, ExportDecl, If, While, Return, Break, Continue, Throw, Try, Block,
    Literal, Identifier, This, SuperMember, Unary, Binary, Assign, Update, Call, Member, Index,
    Lambda, ArrayLit, TupleLit, ObjectLit, New, Nap, Tap,
)
from pawx.pawx_datatypes import (
    Environment, PawxObject, PawxFunction, FieldSpec, PawxClass, PawxInstance, PawxInterface,
    PawxModule, ErrorValue,
)
from pawx.pawx_errors import (
    PawxError, PawxNameError, PawxTypeError, PawxRangeError, PawxRuntimeError, ThrowSignal,
)
from pawx.pawx_future import PawxFuture
from pawx.pawx_parser import Parser
from pawx.pawx_printer import Printer, format_number
from pawx import pawx_methods

MAX_CALL_DEPTH = 400

# Call frames of the running task. Each asyncio task gets its own copy, so
# concurrently running zoom bodies do not see each other's frames.
_CALL_STACK: ContextVar[tuple] = ContextVar("pawx_call_stack", default=())
_MODULE_DIR: ContextVar[Optional[str]] = ContextVar("pawx_module_dir", default=None)

_PRINTER = Printer()


class ReturnSignal:
    __slots__ = ("value",)

    def __init__(self, value):
        self.value = value


class _LoopSignal:
    def __init__(self, name):
        self.name = name

    def __repr__(self):
        return f"<{self.name}>"


BREAK = _LoopSignal("break")
CONTINUE = _LoopSignal("continue")


# ---------------------------------------------------------------------------
# Value helpers
# ---------------------------------------------------------------------------

def is_number(v) -> bool:
    return isinstance(v, (int, float)) and not isinstance(v, bool)


def truthy(v) -> bool:
    if v is None or v is False:
        return False
    if v is True:
        return True
    if is_number(v):
        return not (v == 0 or v != v)
    if isinstance(v, str):
        return v != ""
    return True


def type_name(v) -> str:
    """The name `typeOf` reports for a value."""
    match v:
        case None:
            return "null"
        case bool():
            return "boolean"
        case int() | float():
            return "number"
        case str():
            return "string"
        case bytes():
            return "bytes"
        case list():
            return "array"
        case tuple():
            return "tuple"
        case PawxObject():
            return "object"
        case PawxClass():
            return "class"
        case PawxInstance():
            return "instance"
        case PawxInterface():
            return "instinct"
        case PawxModule():
            return "module"
        case ErrorValue():
            return "error"
        case PawxFuture():
            return "future"
        case PawxFunction():
            return "function"
    if callable(v):
        return "function"
    return type(v).__name__


def strict_equals(a, b) -> bool:
    if is_number(a) and is_number(b):
        return a == b
    if isinstance(a, tuple) and isinstance(b, tuple):
        return len(a) == len(b) and all(strict_equals(x, y) for x, y in zip(a, b))
    if a is None or isinstance(a, (bool, str, bytes)):
        return type(a) is type(b) and a == b
    return a is b


def loose_equals(a, b, _seen=None) -> bool:
    """Structural equality: arrays, tuples and plain objects compare element by element."""
    if a is b:
        return True
    if isinstance(a, list) and isinstance(b, list) or isinstance(a, tuple) and isinstance(b, tuple):
        if len(a) != len(b):
            return False
        seen = _seen or set()
        if (id(a), id(b)) in seen:
            return True
        seen = seen | {(id(a), id(b))}
        return all(loose_equals(x, y, seen) for x, y in zip(a, b))
    if isinstance(a, PawxObject) and isinstance(b, PawxObject):
        if a.props.keys() != b.props.keys():
            return False
        seen = _seen or set()
        if (id(a), id(b)) in seen:
            return True
        seen = seen | {(id(a), id(b))}
        return all(loose_equals(v, b.props[k], seen) for k, v in a.props.items())
    return strict_equals(a, b)


def _numbers(op, a, b):
    if not (is_number(a) and is_number(b)):
        raise PawxTypeError(f"cannot apply '{op}' to {type_name(a)} and {type_name(b)}")


def _add(a, b):
    if is_number(a) and is_number(b):
        return a + b
    if isinstance(a, str) or isinstance(b, str):
        return _PRINTER.display(a) + _PRINTER.display(b)
    raise PawxTypeError(f"cannot apply '+' to {type_name(a)} and {type_name(b)}")


def _sub(a, b):
    _numbers("-", a, b)
    return a - b


def _mul(a, b):
    _numbers("*", a, b)
    return a * b


def _div(a, b):
    _numbers("/", a, b)
    if b == 0:
        raise PawxRuntimeError("division by zero")
    return a / b


def _mod(a, b):
    _numbers("%", a, b)
    if b == 0:
        raise PawxRuntimeError("modulo by zero")
    return math.fmod(a, b)


def _comparison(op, test):
    def compare(a, b):
        if (is_number(a) and is_number(b)) or (isinstance(a, str) and isinstance(b, str)):
            return test(a, b)
        raise PawxTypeError(f"cannot compare {type_name(a)} and {type_name(b)} with '{op}'")
    return compare


BINARY_OPS: Dict[str, Callable[[Any, Any], Any]] = {
    "+": _add,
    "-": _sub,
    "*": _mul,
    "/": _div,
    "%": _mod,
    "<": _comparison("<", lambda a, b: a < b),
    "<=": _comparison("<=", lambda a, b: a <= b),
    ">": _comparison(">", lambda a, b: a > b),
    ">=": _comparison(">=", lambda a, b: a >= b),
    "==": loose_equals,
    "!=": lambda a, b: not loose_equals(a, b),
    "===": strict_equals,
    "!==": lambda a, b: not strict_equals(a, b),
}


def as_index(v, what="index") -> int:
    if not is_number(v) or v != v or float(v) != int(v):
        raise PawxTypeError(f"{what} must be an integer, got {_PRINTER.pformat(v)}")
    return int(v)


def native_max_args(fn) -> Optional[int]:
    """How many positional arguments a native accepts (None when unbounded or unknown)."""
    try:
        sig = inspect.signature(fn)
    except (TypeError, ValueError):
        return None
    count = 0
    for p in sig.parameters.values():
        if p.kind == p.VAR_POSITIONAL:
            return None
        if p.kind in (p.POSITIONAL_ONLY, p.POSITIONAL_OR_KEYWORD):
            count += 1
    return count


def native_name(fn) -> str:
    name = getattr(fn, "__name__", None) or getattr(getattr(fn, "func", None), "__name__", "native")
    return name.lstrip("_")


class Evaluator:
    """The PAWX execution engine."""

    def __init__(self, scheduler=None):
        self.side_effects: List[Any] = []
        self.listeners: List[Callable[[dict], None]] = []
        self.current_node = None
        self.scheduler = scheduler
        self.source_dir: Optional[str] = None
        # Modules by resolved path, and the paths currently being loaded.
        self.module_cache: Dict[str, PawxModule] = {}
        self._loading: set = set()
        # Every declared class; instances only hold weak references.
        self.class_table: List[PawxClass] = []
        # loader(path) -> source text. Installed by the runtime (the Fs bridge).
        self.loader: Optional[Callable[[str], str]] = None
        # Returns a fresh root Environment for a module.
        self.globals_factory: Optional[Callable[[], Environment]] = None
        self.printer = _PRINTER

    def _dbg(self, *parts):
        if os.environ.get("PAWX_DEBUG"):
            print("[DBG]", *parts, file=sys.stderr)

    # ------------------------------------------------------------------
    # Side effects
    # ------------------------------------------------------------------

    def emit(self, topic: str, message: str):
        event = {"topics": [topic], "message": message}
        self.side_effects.append(event)
        for listener in self.listeners:
            listener(event)

    @property
    def call_stack(self) -> List[dict]:
        return list(_CALL_STACK.get())

    # ------------------------------------------------------------------
    # Statements
    # ------------------------------------------------------------------

    async def run_program(self, program: Program, env: Environment) -> Any:
        """Runs top-level statements; returns the last expression statement's value."""
        last = None
        for stmt in program.body:
            if isinstance(stmt, ExprStmt):
                last = await self.eval(stmt.expr, env)
            else:
                await self.exec(stmt, env)
        return last

    async def exec_block(self, body, env: Environment):
        for stmt in body:
            signal = await self.exec(stmt, env)
            if signal is not None:
                return signal
        return None

    async def exec(self, stmt, env: Environment):
        self.current_node = stmt
        try:
            return await self._exec(stmt, env)
        except PawxError as e:
            if e.loc is None:
                e.loc = stmt.loc
            raise

    async def _exec(self, stmt, env: Environment):
        match stmt:
            case ExprStmt(expr=expr):
                await self.eval(expr, env)
            case VarDecl(name=name, value=value_node):
                value = await self.eval(value_node, env)
                if isinstance(value, PawxModule) and value.has_default:
                    value = value.default
                if isinstance(value, PawxFunction) and value.name == "<lambda>":
                    value.name = name
                env.declare(name, value)
            case FuncDecl(name=name, params=params, body=body, is_async=is_async, return_type=rt):
                env.declare(name, PawxFunction(name, params, body, env, is_async=is_async, return_type=rt))
            case ClassDecl():
                env.declare(stmt.name, await self.declare_class(stmt, env))
            case InterfaceDecl(name=name, methods=methods):
                env.declare(name, PawxInterface(name, {m.name: len(m.params) for m in methods}))
            case PrideBlock(name=name, body=body):
                frame = Environment(env)
                await self.exec_block(body, frame)
                env.declare(name, PawxObject(frame.vars))
            case ExportDecl(decl=decl):
                return await self.exec(decl, env)
            case If(cond=cond, then=then, orelse=orelse):
                if truthy(await self.eval(cond, env)):
                    return await self.exec_block(then.body, Environment(env))
                if isinstance(orelse, If):
                    return await self.exec(orelse, env)
                if orelse is not None:
                    return await self.exec_block(orelse.body, Environment(env))
            case While(cond=cond, body=body):
                while truthy(await self.eval(cond, env)):
                    signal = await self.exec_block(body.body, Environment(env))
                    if signal is BREAK:
                        break
                    if isinstance(signal, ReturnSignal):
                        return signal
            case Return(value=None):
                return ReturnSignal(None)
            case Return(value=value):
                return ReturnSignal(await self.eval(value, env))
            case Break():
                return BREAK
            case Continue():
                return CONTINUE
            case Throw(value=value):
                raise ThrowSignal(await self.eval(value, env), loc=stmt.loc)
            case Try():
                return await self._exec_try(stmt, env)
            case Block(body=body):
                return await self.exec_block(body, Environment(env))
            case _:
                raise PawxRuntimeError(f"cannot execute {type(stmt).__name__}")
        return None

    async def _exec_try(self, stmt: Try, env: Environment):
        try:
            try:
                signal = await self.exec_block(stmt.body.body, Environment(env))
            except PawxError as e:
                if stmt.handler is None:
                    raise
                self._dbg("catch", e.kind, e.message)
                frame = Environment(env)
                if stmt.catch_name:
                    frame.declare(stmt.catch_name, e.to_value())
                signal = await self.exec_block(stmt.handler.body, frame)
        except PawxError:
            if stmt.finalizer is not None:
                final = await self.exec_block(stmt.finalizer.body, Environment(env))
                if final is not None:
                    return final
            raise
        if stmt.finalizer is not None:
            final = await self.exec_block(stmt.finalizer.body, Environment(env))
            if final is not None:
                return final
        return signal

    # ------------------------------------------------------------------
    # Expressions
    # ------------------------------------------------------------------

    async def eval(self, node, env: Environment) -> Any:
        """Public entry point for evaluating an expression node."""
        self.current_node = node
        try:
            return await self._eval(node, env)
        except PawxError as e:
            if e.loc is None:
                e.loc = node.loc
            raise

    async def _eval(self, node, env: Environment) -> Any:
        match node:
            case Literal(value=value):
                return value
            case Identifier(name=name):
                return env.lookup(name)
            case This():
                if "this" not in env:
                    raise PawxRuntimeError("'this' used outside of a method")
                return env.lookup("this")
            case SuperMember(name=name):
                return await self._super_member(name, env)
            case Unary(op="-", operand=operand):
                value = await self.eval(operand, env)
                if not is_number(value):
                    raise PawxTypeError(f"cannot negate {type_name(value)}")
                return -value
            case Unary(op="!", operand=operand):
                return not truthy(await self.eval(operand, env))
            case Binary(op="&&", left=left, right=right):
                value = await self.eval(left, env)
                return await self.eval(right, env) if truthy(value) else value
            case Binary(op="||", left=left, right=right):
                value = await self.eval(left, env)
                return value if truthy(value) else await self.eval(right, env)
            case Binary(op=op, left=left, right=right):
                a = await self.eval(left, env)
                b = await self.eval(right, env)
                return BINARY_OPS[op](a, b)
            case Assign():
                return await self._assign(node, env)
            case Update():
                return await self._update(node, env)
            case Call(callee=callee, args=arg_nodes):
                fn = await self.eval(callee, env)
                args = [await self.eval(a, env) for a in arg_nodes]
                return await self.call(fn, args, node, name=self._callee_name(callee))
            case Member(obj=obj, name=name):
                return await self.get_member(await self.eval(obj, env), name, env)
            case Index(obj=obj, index=index):
                target = await self.eval(obj, env)
                return await self.get_index(target, await self.eval(index, env), env)
            case Lambda(params=params, body=body, is_async=is_async):
                return PawxFunction("<lambda>", params, body, env, is_async=is_async, is_lambda=True)
            case ArrayLit(items=items):
                return [await self.eval(i, env) for i in items]
            case TupleLit(items=items):
                return tuple([await self.eval(i, env) for i in items])
            case ObjectLit(entries=entries):
                obj = PawxObject()
                for key, value in entries:
                    obj.set(key, await self.eval(value, env))
                return obj
            case New(callee=callee, args=arg_nodes):
                cls = await self.eval(callee, env)
                if not isinstance(cls, PawxClass):
                    raise PawxTypeError(f"'{self._callee_name(callee)}' is not a clowder")
                args = [await self.eval(a, env) for a in arg_nodes]
                return await self.instantiate(cls, args, node)
            case Nap(expr=expr):
                value = await self.eval(expr, env)
                if isinstance(value, PawxFuture):
                    return await value.wait()
                return value
            case Tap(path=path_node):
                path = await self.eval(path_node, env)
                if not isinstance(path, str):
                    raise PawxTypeError(f"tap expects a path string, got {type_name(path)}")
                return await self.load_module(path)
        raise PawxRuntimeError(f"cannot evaluate {type(node).__name__}")

    def _callee_name(self, node) -> str:
        match node:
            case Identifier(name=name) | Member(name=name) | SuperMember(name=name):
                return name
        return "expression"

    async def _assign(self, node: Assign, env: Environment):
        target = node.target
        match target:
            case Identifier(name=name):
                if node.op == "=":
                    value = await self.eval(node.value, env)
                else:
                    value = BINARY_OPS[node.op[0]](env.lookup(name), await self.eval(node.value, env))
                env.assign(name, value)
                return value
            case Member(obj=obj_node, name=name):
                obj = await self.eval(obj_node, env)
                if node.op == "=":
                    value = await self.eval(node.value, env)
                else:
                    current = await self.get_member(obj, name, env)
                    value = BINARY_OPS[node.op[0]](current, await self.eval(node.value, env))
                await self.set_member(obj, name, value, env)
                return value
            case Index(obj=obj_node, index=index_node):
                obj = await self.eval(obj_node, env)
                key = await self.eval(index_node, env)
                if node.op == "=":
                    value = await self.eval(node.value, env)
                else:
                    current = await self.get_index(obj, key, env)
                    value = BINARY_OPS[node.op[0]](current, await self.eval(node.value, env))
                await self.set_index(obj, key, value, env)
                return value
        raise PawxRuntimeError("invalid assignment target")

    async def _update(self, node: Update, env: Environment):
        delta = 1 if node.op == "++" else -1
        target = node.target
        match target:
            case Identifier(name=name):
                old = env.lookup(name)
                new = self._step(old, delta, node.op)
                env.assign(name, new)
            case Member(obj=obj_node, name=name):
                obj = await self.eval(obj_node, env)
                old = await self.get_member(obj, name, env)
                new = self._step(old, delta, node.op)
                await self.set_member(obj, name, new, env)
            case Index(obj=obj_node, index=index_node):
                obj = await self.eval(obj_node, env)
                key = await self.eval(index_node, env)
                old = await self.get_index(obj, key, env)
                new = self._step(old, delta, node.op)
                await self.set_index(obj, key, new, env)
            case _:
                raise PawxRuntimeError(f"invalid operand for '{node.op}'")
        return new if node.prefix else old

    def _step(self, value, delta, op):
        if not is_number(value):
            raise PawxTypeError(f"'{op}' needs a number, got {type_name(value)}")
        return value + delta

    # ------------------------------------------------------------------
    # Member and index access
    # ------------------------------------------------------------------

    def _check_access(self, cls: PawxClass, name: str, env: Environment):
        declaring, access = cls.member_access(name)
        if access is None:
            return
        context = env.enclosing_class()
        if access == "den" and context is declaring:
            return
        if access == "lair" and context is not None and context.is_subclass_of(declaring):
            return
        label = "private (den)" if access == "den" else "protected (lair)"
        raise PawxRuntimeError(f"'{name}' is a {label} member of '{declaring.name}'")

    async def get_member(self, obj, name: str, env: Environment) -> Any:
        match obj:
            case PawxInstance():
                cls = obj.cls
                if name in obj.fields:
                    self._check_access(cls, name, env)
                    return obj.fields[name]
                getter = cls.find_getter(name)
                if getter is not None:
                    return await self.call(getter.bind(obj), [])
                owner, method = cls.find_method(name)
                if method is not None:
                    self._check_access(cls, name, env)
                    return method.bind(obj)
                raise PawxRuntimeError(f"'{cls.name}' has no member '{name}'")
            case PawxClass():
                owner, value = obj.find_static(name)
                if owner is None:
                    if name == "name":
                        return obj.name
                    raise PawxRuntimeError(f"clowder '{obj.name}' has no static member '{name}'")
                self._check_access(obj, name, env)
                if isinstance(value, PawxFunction):
                    return value.bind(obj)
                return value
            case PawxObject():
                return obj.get(name)
            case PawxModule():
                if name in obj.exports:
                    return obj.exports[name]
                if name == "default" and obj.has_default:
                    return obj.default
                raise PawxRuntimeError(f"module '{obj.name}' has no export '{name}'")
            case ErrorValue():
                if name == "message":
                    return obj.message
                if name in ("name", "kind"):
                    return obj.kind
                if name == "toString":
                    return lambda: f"{obj.kind}: {obj.message}"
                return None
            case PawxFunction():
                if name == "name":
                    return obj.name
                if name == "length":
                    return obj.arity
            case None:
                raise PawxTypeError(f"cannot read property '{name}' of null")
        method = pawx_methods.lookup(self, obj, name)
        if method is not None:
            return method
        raise PawxTypeError(f"{type_name(obj)} has no property '{name}'")

    async def set_member(self, obj, name: str, value, env: Environment):
        match obj:
            case PawxInstance():
                cls = obj.cls
                setter = cls.find_setter(name)
                if setter is not None and name not in obj.fields:
                    await self.call(setter.bind(obj), [value])
                    return
                self._check_access(cls, name, env)
                obj.fields[name] = value
            case PawxClass():
                owner, _ = obj.find_static(name)
                if owner is not None:
                    self._check_access(obj, name, env)
                    owner.static_fields[name] = value
                else:
                    obj.static_fields[name] = value
            case PawxObject():
                obj.set(name, value)
            case tuple():
                raise PawxRuntimeError("cannot assign to a member of a tuple: tuples are immutable")
            case PawxModule():
                raise PawxRuntimeError(f"cannot assign to export '{name}' of module '{obj.name}'")
            case None:
                raise PawxTypeError(f"cannot set property '{name}' of null")
            case _:
                raise PawxTypeError(f"cannot set property '{name}' on {type_name(obj)}")

    def _bounds(self, obj, key, kind: str) -> int:
        i = as_index(key)
        if i < 0 or i >= len(obj):
            raise PawxRangeError(f"index {i} out of bounds for {kind} of length {len(obj)}")
        return i

    async def get_index(self, obj, key, env: Environment) -> Any:
        match obj:
            case list():
                return obj[self._bounds(obj, key, "array")]
            case tuple():
                return obj[self._bounds(obj, key, "tuple")]
            case str():
                return obj[self._bounds(obj, key, "string")]
            case bytes():
                return obj[self._bounds(obj, key, "bytes")]
            case PawxObject() | PawxInstance() | PawxClass() | PawxModule():
                return await self.get_member(obj, self._key(key), env)
            case None:
                raise PawxTypeError("cannot index null")
        raise PawxTypeError(f"cannot index {type_name(obj)}")

    async def set_index(self, obj, key, value, env: Environment):
        match obj:
            case list():
                obj[self._bounds(obj, key, "array")] = value
            case tuple():
                raise PawxRuntimeError("cannot assign to a tuple element: tuples are immutable")
            case PawxObject() | PawxInstance() | PawxClass() | PawxModule():
                await self.set_member(obj, self._key(key), value, env)
            case str():
                raise PawxTypeError("strings are immutable")
            case _:
                raise PawxTypeError(f"cannot assign into {type_name(obj)}")

    def _key(self, key) -> str:
        if isinstance(key, str):
            return key
        if is_number(key):
            return format_number(key)
        raise PawxTypeError(f"property key must be a string or number, got {type_name(key)}")

    async def _super_member(self, name: str, env: Environment):
        cls = env.enclosing_class()
        if cls is None or "this" not in env:
            raise PawxRuntimeError("'super' used outside of a method")
        if cls.parent is None:
            raise PawxRuntimeError(f"'super' used in clowder '{cls.name}', which has no parent")
        parent = cls.parent
        this = env.lookup("this")
        if isinstance(this, PawxClass):
            owner, value = parent.find_static(name)
            if owner is None:
                raise PawxRuntimeError(f"clowder '{parent.name}' has no static member '{name}'")
            return value.bind(this) if isinstance(value, PawxFunction) else value
        getter = parent.find_getter(name)
        if getter is not None:
            return await self.call(getter.bind(this), [])
        owner, method = parent.find_method(name)
        if method is not None:
            return method.bind(this)
        if name == "new":
            return lambda: None
        raise PawxRuntimeError(f"'{parent.name}' has no member '{name}'")

    # ------------------------------------------------------------------
    # Calls
    # ------------------------------------------------------------------

    async def call(self, fn, args: List[Any], node=None, name: Optional[str] = None) -> Any:
        """Calls a PAWX function or a native with already-evaluated arguments."""
        if isinstance(fn, PawxFunction):
            return await self._call_function(fn, args, node)
        if isinstance(fn, PawxClass):
            raise PawxTypeError(f"clowder '{fn.name}' must be instantiated with 'new'")
        if callable(fn):
            return await self._call_native(fn, args, name)
        raise PawxTypeError(f"'{name or _PRINTER.pformat(fn)}' is not a function")

    async def call_flexible(self, fn, args) -> Any:
        """Calls a callback with at most as many arguments as it declares."""
        args = list(args)
        if isinstance(fn, PawxFunction):
            args = args[:fn.arity]
        elif callable(fn) and not isinstance(fn, PawxClass):
            limit = native_max_args(fn)
            if limit is not None:
                args = args[:limit]
        return await self.call(fn, args)

    async def _call_native(self, fn, args, name):
        label = name or native_name(fn)
        try:
            sig = inspect.signature(fn)
        except (TypeError, ValueError):
            sig = None
        if sig is not None:
            try:
                sig.bind(*args)
            except TypeError as e:
                raise PawxRangeError(f"{label}: {e}")
        self._dbg("native call", label, "argc", len(args))
        try:
            result = fn(*args)
            if inspect.isawaitable(result):
                result = await result
        except PawxError:
            raise
        except RecursionError:
            raise PawxRangeError("maximum call depth exceeded")
        except OSError as e:
            from pawx.pawx_future import describe_host_error
            raise PawxRuntimeError(describe_host_error(e))
        except (TypeError, ValueError, KeyError, AttributeError) as e:
            raise PawxTypeError(f"{label}: {e}")
        return result

    async def _call_function(self, fn: PawxFunction, args: List[Any], node=None) -> Any:
        if not (fn.required <= len(args) <= fn.arity):
            if fn.required == fn.arity:
                expected = str(fn.arity)
            else:
                expected = f"{fn.required} to {fn.arity}"
            raise PawxRangeError(f"'{fn.name}' expects {expected} argument(s), got {len(args)}")
        stack = _CALL_STACK.get()
        if len(stack) >= MAX_CALL_DEPTH:
            raise PawxRangeError("maximum call depth exceeded")
        frame = Environment(fn.closure, owner_class=fn.owner_class)
        if fn.bound_this is not None:
            frame.declare("this", fn.bound_this)
        token = _CALL_STACK.set(stack + ({
            "name": fn.name,
            "args": list(args),
            "call_site": getattr(node, "loc", None),
        },))
        try:
            for i, param in enumerate(fn.params):
                if i < len(args):
                    value = args[i]
                else:
                    value = await self.eval(param.default, frame)
                frame.declare(param.name, value)
            if fn.is_async:
                return self._start_async(fn, frame)
            return await self._run_body(fn, frame)
        except PawxError as e:
            if e.stack is None:
                e.stack = self.call_stack
            raise
        except RecursionError:
            raise PawxRangeError("maximum call depth exceeded")
        finally:
            _CALL_STACK.reset(token)

    async def _run_body(self, fn: PawxFunction, frame: Environment):
        if isinstance(fn.body, Block):
            signal = await self.exec_block(fn.body.body, frame)
            return signal.value if isinstance(signal, ReturnSignal) else None
        return await self.eval(fn.body, frame)

    def _start_async(self, fn: PawxFunction, frame: Environment) -> PawxFuture:
        """Runs a zoom body as a task; the returned Future settles with its outcome."""
        future = PawxFuture(self.scheduler, label=fn.name)

        async def run():
            try:
                value = await self._run_body(fn, frame)
            except PawxError as e:
                if e.stack is None:
                    e.stack = self.call_stack
                self._dbg("zoom rejected", fn.name, str(e))
                future.reject(e.to_value())
            except RecursionError:
                future.reject(ErrorValue("RangeError", "maximum call depth exceeded"))
            else:
                future.fulfill(value)
        self.scheduler.spawn(run())
        return future

    # ------------------------------------------------------------------
    # Classes
    # ------------------------------------------------------------------

    async def declare_class(self, node: ClassDecl, env: Environment) -> PawxClass:
        parent = None
        if node.base is not None:
            parent = env.lookup(node.base)
            if not isinstance(parent, PawxClass):
                raise PawxTypeError(f"'{node.base}' is not a clowder and cannot be inherited")
        cls = PawxClass(node.name, parent)
        class_env = Environment(env, owner_class=cls)
        cls.closure = class_env
        for member in node.members:
            match member:
                case FieldDef(name=name, value=value, access=access, is_static=True):
                    cls.static_fields[name] = await self.eval(value, class_env) if value is not None else None
                case FieldDef(name=name, value=value, access=access):
                    cls.fields[name] = FieldSpec(value, access)
                case MethodDef(name=name, params=params, body=body, access=access, is_static=is_static,
                               is_async=is_async, return_type=rt):
                    fn = PawxFunction(name, params, body, class_env, is_async=is_async,
                                      owner_class=cls, return_type=rt)
                    if is_static:
                        cls.static_methods[name] = fn
                    else:
                        cls.methods[name] = fn
                case GetterDef(name=name, body=body, return_type=rt):
                    cls.getters[name] = PawxFunction(name, [], body, class_env, owner_class=cls, return_type=rt)
                case SetterDef(name=name, param=param, body=body):
                    cls.setters[name] = PawxFunction(name, [param], body, class_env, owner_class=cls)
            access = getattr(member, "access", None)
            if access in ("den", "lair"):
                cls.access[member.name] = access
        for iname in node.interfaces:
            iface = env.lookup(iname)
            if not isinstance(iface, PawxInterface):
                raise PawxTypeError(f"'{iname}' is not an instinct")
            self._check_interface(cls, iface)
            cls.interfaces.append(iface)
        self.class_table.append(cls)
        self._dbg("clowder", cls.name, "parent", parent.name if parent else None,
                  "methods", list(cls.methods))
        return cls

    def _check_interface(self, cls: PawxClass, iface: PawxInterface):
        for mname, arity in iface.methods.items():
            _, method = cls.find_method(mname)
            if method is None:
                raise PawxTypeError(
                    f"clowder '{cls.name}' does not implement '{mname}' required by instinct '{iface.name}'")
            if method.arity != arity:
                raise PawxTypeError(
                    f"'{cls.name}.{mname}' takes {method.arity} argument(s) but instinct "
                    f"'{iface.name}' requires {arity}")

    async def instantiate(self, cls: PawxClass, args: List[Any], node=None) -> PawxInstance:
        instance = PawxInstance(cls)
        for c in reversed(list(cls.chain())):
            frame = Environment(c.closure, owner_class=c)
            frame.declare("this", instance)
            for name, spec in c.fields.items():
                instance.fields[name] = await self.eval(spec.value, frame) if spec.value is not None else None
        _, ctor = cls.find_method("new")
        if ctor is not None:
            await self.call(ctor.bind(instance), args, node, name=f"{cls.name}.new")
        elif args:
            raise PawxRangeError(f"clowder '{cls.name}' has no constructor but got {len(args)} argument(s)")
        return instance

    # ------------------------------------------------------------------
    # Modules
    # ------------------------------------------------------------------

    def resolve_module_path(self, path: str) -> str:
        if not path.endswith(".pawx"):
            path += ".pawx"
        base = _MODULE_DIR.get() or self.source_dir or os.getcwd()
        return os.path.normpath(os.path.join(base, path))

    async def load_module(self, path: str) -> PawxModule:
        resolved = self.resolve_module_path(path)
        if resolved in self.module_cache:
            return self.module_cache[resolved]
        if resolved in self._loading:
            raise PawxRuntimeError(f"circular import of module '{path}'")
        if self.loader is None or self.globals_factory is None:
            raise PawxRuntimeError("module loading is not available")
        self._dbg("tap", path, "->", resolved)
        self._loading.add(resolved)
        token = _MODULE_DIR.set(os.path.dirname(resolved))
        try:
            source = self.loader(resolved)
            try:
                program = Parser(source).parse()
            except PawxError as e:
                raise PawxRuntimeError(f"failed to load module '{path}': {e}")
            env = self.globals_factory()
            await self.run_program(program, env)
            module = self._collect_exports(resolved, program, env)
        finally:
            _MODULE_DIR.reset(token)
            self._loading.discard(resolved)
        self.module_cache[resolved] = module
        return module

    def _collect_exports(self, path: str, program: Program, env: Environment) -> PawxModule:
        name = os.path.splitext(os.path.basename(path))[0]
        module = PawxModule(name, path)
        for stmt in program.body:
            match stmt:
                case VarDecl(name=var, keyword="pride") | PrideBlock(name=var):
                    module.exports[var] = env.vars[var]
                case ExportDecl(decl=decl, is_default=is_default):
                    value = env.vars[decl.name]
                    module.exports[decl.name] = value
                    if is_default:
                        module.default = value
                        module.has_default = True
        return module
