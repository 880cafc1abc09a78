import asyncio
import datetime
import inspect
import math
import os
import random
import re
import sys
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional

import pystache

from pawx.pawx_ast import Program
from pawx.pawx_datatypes import Environment, PawxObject, PawxInstance, ErrorValue, PawxFunction
from pawx.pawx_errors import (
    PawxError, LexError, ParseError, PawxTypeError,
    ThrowSignal, PromiseRejection,
)
from pawx.pawx_fs import FsBridge
from pawx.pawx_future import PawxFuture, Scheduler, resolved, rejected, gather
from pawx.pawx_http import HttpBridge
from pawx.pawx_interpreter import Evaluator, is_number, type_name
from pawx.pawx_parser import Parser
from pawx.pawx_printer import Printer
from pawx.pawx_serialize import (
    bytes_from_array, decode_bytes, encode_text, parse_text, serialize, to_builtin,
)


def native_members(obj) -> Dict[str, Any]:
    """Collects `_name` methods of obj as PAWX natives named `name`."""
    out = {}
    for name, member in inspect.getmembers(obj):
        if name.startswith('_') and not name.startswith('__') and callable(member):
            out[name[1:]] = member
    return out


def _number(v, what):
    if not is_number(v):
        raise PawxTypeError(f"{what} expects a number, got {type_name(v)}")
    return v


def _string(v, what):
    if not isinstance(v, str):
        raise PawxTypeError(f"{what} expects a string, got {type_name(v)}")
    return v


def _regex(pattern):
    try:
        return re.compile(_string(pattern, "Regex"))
    except re.error as e:
        raise PawxTypeError(f"invalid regex '{pattern}': {e}")


# ===================================================================
# Native namespaces
# ===================================================================

class MathLib:
    def _abs(self, x): return abs(_number(x, "Math.abs"))
    def _ceil(self, x): return float(math.ceil(_number(x, "Math.ceil")))
    def _floor(self, x): return float(math.floor(_number(x, "Math.floor")))
    def _round(self, x): return float(math.floor(_number(x, "Math.round") + 0.5))
    def _random(self): return random.random()

    def _pow(self, b, e):
        try:
            return math.pow(_number(b, "Math.pow"), _number(e, "Math.pow"))
        except ValueError:
            return float("nan")
        except OverflowError:
            return float("inf")

    def _sqrt(self, x):
        x = _number(x, "Math.sqrt")
        return math.sqrt(x) if x >= 0 else float("nan")

    def _max(self, *xs):
        return max((_number(x, "Math.max") for x in xs), default=float("-inf"))

    def _min(self, *xs):
        return min((_number(x, "Math.min") for x in xs), default=float("inf"))


class StringLib:
    def __init__(self, printer):
        self.printer = printer

    def _from(self, value):
        return self.printer.display(value)

    def _render(self, template, data=None):
        """Mustache rendering of `template` with the fields of `data`."""
        context = to_builtin(data) if data is not None else {}
        renderer = pystache.Renderer(escape=lambda u: u)
        return renderer.render(_string(template, "String.render"), context)


class ArrayLib:
    def _isArray(self, value):
        return isinstance(value, list)

    def _from(self, value):
        if isinstance(value, (list, tuple, bytes)):
            return list(value)
        if isinstance(value, str):
            return list(value)
        if isinstance(value, PawxObject):
            return list(value.props.values())
        raise PawxTypeError(f"Array.from cannot convert {type_name(value)}")

    def _of(self, *items):
        return list(items)


def _own(obj, what) -> dict:
    if isinstance(obj, PawxObject):
        return obj.props
    if isinstance(obj, PawxInstance):
        return obj.fields
    raise PawxTypeError(f"Object.{what} expects an object, got {type_name(obj)}")


class ObjectLib:
    def _keys(self, obj): return list(_own(obj, "keys").keys())
    def _values(self, obj): return list(_own(obj, "values").values())
    def _entries(self, obj): return [(k, v) for k, v in _own(obj, "entries").items()]

    def _assign(self, target, *sources):
        props = _own(target, "assign")
        for source in sources:
            props.update(_own(source, "assign"))
        return target

    def _has(self, obj, key):
        if isinstance(obj, PawxObject):
            return obj.has(_string(key, "Object.has"))
        return _string(key, "Object.has") in _own(obj, "has")

    def _create(self, proto=None):
        if proto is not None and not isinstance(proto, PawxObject):
            raise PawxTypeError("Object.create expects an object or null")
        return PawxObject(proto=proto)

    def _getPrototypeOf(self, obj):
        if not isinstance(obj, PawxObject):
            raise PawxTypeError("Object.getPrototypeOf expects an object")
        return obj.proto

    def _setPrototypeOf(self, obj, proto):
        if not isinstance(obj, PawxObject) or (proto is not None and not isinstance(proto, PawxObject)):
            raise PawxTypeError("Object.setPrototypeOf expects an object and an object or null")
        obj.set_proto(proto)
        return obj


class TimeLib:
    def __init__(self, scheduler_ref):
        self.scheduler_ref = scheduler_ref

    def _now(self):
        return time.time() * 1000.0

    def _utc(self):
        return datetime.datetime.now(datetime.timezone.utc).isoformat(timespec="milliseconds")

    def _local(self):
        return datetime.datetime.now().astimezone().isoformat(timespec="milliseconds")

    def _format(self, ms, pattern="%Y-%m-%d %H:%M:%S"):
        stamp = datetime.datetime.fromtimestamp(_number(ms, "Time.format") / 1000.0)
        return stamp.strftime(_string(pattern, "Time.format"))

    def _tzOffset(self):
        """Minutes east of UTC for the local timezone."""
        offset = datetime.datetime.now().astimezone().utcoffset()
        return offset.total_seconds() / 60.0 if offset else 0.0

    def _sleep(self, ms):
        delay = max(_number(ms, "Time.sleep"), 0) / 1000.0
        scheduler = self.scheduler_ref()
        future = PawxFuture(scheduler, label="sleep")

        async def wake():
            await asyncio.sleep(delay)
            future.fulfill(None)
        scheduler.spawn(wake())
        return future


class RegexLib:
    def _test(self, pattern, text):
        return _regex(pattern).search(_string(text, "Regex.test")) is not None

    def _match(self, pattern, text):
        m = _regex(pattern).search(_string(text, "Regex.match"))
        if m is None:
            return None
        return [m.group(0)] + [g for g in m.groups()]

    def _replace(self, pattern, text, replacement):
        return _regex(pattern).sub(_string(replacement, "Regex.replace"), _string(text, "Regex.replace"))

    def _split(self, pattern, text):
        return _regex(pattern).split(_string(text, "Regex.split"))


class JsonLib:
    def _parse(self, text): return parse_text(_string(text, "Json.parse"), "json")
    def _stringify(self, value, pretty=False): return serialize(value, fmt="json", pretty=bool(pretty))


class YamlLib:
    def _parse(self, text): return parse_text(_string(text, "Yaml.parse"), "yaml")
    def _stringify(self, value): return serialize(value, fmt="yaml")


class BytesLib:
    def _from(self, value, encoding=None):
        if isinstance(value, bytes):
            return value
        if isinstance(value, str):
            return encode_text(value, encoding)
        if isinstance(value, list):
            return bytes_from_array(value)
        raise PawxTypeError(f"Bytes.from expects a string or an array, got {type_name(value)}")

    def _decode(self, data, encoding=None):
        if not isinstance(data, bytes):
            raise PawxTypeError("Bytes.decode expects bytes")
        return decode_bytes(data, encoding)


class FutureLib:
    def __init__(self, evaluator, scheduler_ref):
        self.evaluator = evaluator
        self.scheduler_ref = scheduler_ref

    async def _create(self, executor):
        """Runs executor(resolve, reject) now; the Future settles when either is called."""
        future = PawxFuture(self.scheduler_ref(), label="create")

        def resolve(value=None):
            future.fulfill(value)

        def reject(reason=None):
            future.reject(reason)
        try:
            await self.evaluator.call_flexible(executor, (resolve, reject))
        except PawxError as e:
            future.reject(e.to_value())
        return future

    def _resolve(self, value=None):
        return resolved(self.scheduler_ref(), value)

    def _reject(self, reason=None):
        return rejected(self.scheduler_ref(), reason)

    def _all(self, futures):
        if not isinstance(futures, (list, tuple)):
            raise PawxTypeError("Future.all expects an array")
        return gather(self.scheduler_ref(), futures)


class StdLib:
    """Contains Python implementations for all PAWX globals."""

    def __init__(self, evaluator: Evaluator, runner: 'ScriptRunner'):
        self.evaluator = evaluator
        self.runner = runner
        self._timers: Dict[int, asyncio.Task] = {}
        self._next_timer = 1

    def namespaces(self) -> Dict[str, PawxObject]:
        ev = self.evaluator
        scheduler_ref = self.runner.require_scheduler
        math_ns = PawxObject(native_members(MathLib()))
        math_ns.set("PI", math.pi)
        math_ns.set("E", math.e)
        time_ns = PawxObject(native_members(TimeLib(scheduler_ref)))
        return {
            "Math": math_ns,
            "String": PawxObject(native_members(StringLib(ev.printer))),
            "Array": PawxObject(native_members(ArrayLib())),
            "Object": PawxObject(native_members(ObjectLib())),
            "Time": time_ns,
            "Date": time_ns,
            "Regex": PawxObject(native_members(RegexLib())),
            "Json": PawxObject(native_members(JsonLib())),
            "Yaml": PawxObject(native_members(YamlLib())),
            "Bytes": PawxObject(native_members(BytesLib())),
            "Future": PawxObject(native_members(FutureLib(ev, scheduler_ref))),
            "Fs": self.runner.fs.namespace(scheduler_ref),
            "Http": self.runner.http.namespace(),
        }

    # --- Output ---
    def _meow(self, *args):
        display = self.evaluator.printer.display
        rest = list(args[1:])
        if args and isinstance(args[0], str) and "$" in args[0] and rest:
            pieces = args[0].split("$")
            text = pieces[0]
            for piece in pieces[1:]:
                text += (display(rest.pop(0)) if rest else "$") + piece
            text = " ".join([text] + [display(a) for a in rest])
        else:
            text = " ".join(display(a) for a in args)
        self.evaluator.emit("stdout", text)

    # --- Values ---
    def _Error(self, message=""):
        return ErrorValue("Error", message if isinstance(message, str) else self.evaluator.printer.display(message))

    def _typeOf(self, value):
        return type_name(value)

    # --- Timers ---
    def start_timer(self, fn, ms, repeat: bool) -> int:
        if not isinstance(fn, PawxFunction) and not callable(fn):
            raise PawxTypeError("timer callback must be a function")
        delay = max(_number(ms, "timer delay"), 0) / 1000.0
        timer_id = self._next_timer
        self._next_timer += 1

        async def fire():
            while True:
                await asyncio.sleep(delay)
                if not repeat:
                    self._timers.pop(timer_id, None)
                await self.evaluator.call_flexible(fn, ())
                if not repeat:
                    return
        self._timers[timer_id] = self.runner.require_scheduler().spawn(fire())
        return timer_id

    def _setTimeout(self, fn, ms=0):
        return self.start_timer(fn, ms, repeat=False)

    def _setInterval(self, fn, ms):
        return self.start_timer(fn, ms, repeat=True)

    def _clearTimeout(self, timer_id):
        task = self._timers.pop(timer_id, None)
        if task is not None:
            task.cancel()

    def _clearInterval(self, timer_id):
        self._clearTimeout(timer_id)


# ===================================================================
# Script Execution
# ===================================================================

Token = Dict[str, Any]


@dataclass
class ExecutionResult:
    """The structured result of a script execution."""
    status: Literal['success', 'error']
    value: Any = None
    error_message: Optional[str] = None
    error_token: Optional[Token] = None
    side_effects: List[Dict] = field(default_factory=list)

    def format_error(self) -> str:
        """Formats an error message with line and column if available."""
        if self.status != 'error':
            return ""
        msg = str(self.error_message or "Unknown error")
        if self.error_token and self.error_token.get('line') is not None:
            line = self.error_token.get('line')
            col = self.error_token.get('col')
            if not msg.startswith("Error on line ") and f"(line {line}" not in msg:
                col_info = f", col {col}" if col is not None else ""
                return f"Error on line {line}{col_info}: {msg}"
        return msg


class ScriptRunner:
    """Parses and executes PAWX code."""

    # root.pawx is parsed once and cached on the class
    _prelude_ast: Optional[Program] = None
    _prelude_source: Optional[str] = None

    def __init__(self, load_prelude: bool = True, max_workers: Optional[int] = None):
        self._load_prelude = load_prelude
        self._initialized = False
        self.max_workers = max_workers
        self.source_dir: Optional[str] = None  # directory of the current source file, if known
        if sys.getrecursionlimit() < 6000:
            sys.setrecursionlimit(6000)

        self.evaluator = Evaluator()
        self.scheduler: Optional[Scheduler] = None
        self.printer = Printer()
        self.fs = FsBridge(base_dir=lambda: self.source_dir)
        self.http = HttpBridge(self.require_scheduler)

        # Natives and the prelude live in `builtins`; scripts run in a child frame.
        self.builtins = Environment()
        self.stdlib = StdLib(self.evaluator, self)
        for name, member in native_members(self.stdlib).items():
            self.builtins.declare(name, member)
        for name, ns in self.stdlib.namespaces().items():
            self.builtins.declare(name, ns)
        self.root_env = Environment(self.builtins)

        self.evaluator.loader = self.fs.load_source
        self.evaluator.globals_factory = lambda: Environment(self.builtins)

    def require_scheduler(self) -> Scheduler:
        """The scheduler bound to the running event loop, created on first use."""
        loop = asyncio.get_running_loop()
        if self.scheduler is None or self.scheduler.loop is not loop:
            if self.scheduler is not None:
                self.scheduler.shutdown()
            self.scheduler = Scheduler(loop, max_workers=self.max_workers,
                                       invoke=self.evaluator.call_flexible, debug=self.evaluator._dbg)
            self.evaluator.scheduler = self.scheduler
        return self.scheduler

    async def _initialize(self):
        """Loads root.pawx into the builtins frame if not already loaded."""
        if self._initialized or not self._load_prelude:
            self._initialized = True
            return
        if ScriptRunner._prelude_ast is None:
            prelude_path = Path(__file__).parent / "root.pawx"
            source = prelude_path.read_text(encoding="utf-8")
            try:
                ScriptRunner._prelude_ast = Parser(source).parse()
            except PawxError as e:
                raise RuntimeError(f"Failed to parse root.pawx:\n{self._format_parse_error(e, source)}") from e
            ScriptRunner._prelude_source = source
        await self.evaluator.run_program(ScriptRunner._prelude_ast, self.builtins)
        self._initialized = True

    # ------------------------------------------------------------------
    # Error formatting
    # ------------------------------------------------------------------

    def _format_parse_error(self, e: PawxError, source: str) -> str:
        if e.line is not None and e.col is not None:
            return f"{e.kind}: {e.message} (line {e.line}, col {e.col})\n{self._source_context(source, e.line, e.col)}"
        return f"{e.kind}: {e.message}"

    def _format_runtime_error(self, e: BaseException, source: str) -> tuple:
        match e:
            case ThrowSignal(value=ErrorValue(kind=kind, message=message)):
                msg = f"{kind}: {message}"
            case PawxError():
                msg = str(e)
            case _:
                msg = f"InternalError: {e}" if str(e) else f"InternalError: {type(e).__name__}"

        token = None
        loc = e.loc if isinstance(e, PawxError) else None
        if loc is None:
            node = self.evaluator.current_node
            loc = getattr(node, "loc", None)
        if loc:
            line, col = loc.get('line'), loc.get('col')
            token = {'line': line, 'col': col}
            if line is not None and col is not None:
                msg = f"{msg}\n(line {line}, col {col})\n{self._source_context(source, line, col)}"

        st = self._format_stacktrace(getattr(e, "stack", None) or [])
        if st:
            msg += "\n" + st
        return msg, token

    def _source_context(self, source: str, line: int, col: Optional[int], radius: int = 2) -> str:
        lines = source.splitlines()
        if not line or line < 1 or line > len(lines):
            return ""
        start = max(1, line - radius)
        end = min(len(lines), line + radius)
        width = len(str(end))
        out = []
        for i in range(start, end + 1):
            prefix = ">" if i == line else " "
            ln = str(i).rjust(width)
            out.append(f"{prefix} {ln} | {lines[i - 1]}")
            if i == line and col is not None:
                caret = " " * max(col - 1, 0)
                out.append(f"  {' ' * width} | {caret}^")
        return "\n".join(out)

    def _format_stacktrace(self, stack: List[dict]) -> str:
        if not stack:
            return ""
        pf = self.printer.pformat

        def fmt(arg):
            match arg:
                case list():
                    return f"array[{len(arg)}]"
                case PawxObject():
                    return "{...}"
                case str():
                    return pf(arg if len(arg) <= 20 else arg[:17] + "...")
            return pf(arg)

        frames = []
        for frame in stack:
            args_s = " ".join(fmt(a) for a in frame.get('args') or [])
            frames.append(f"({frame.get('name') or '<call>'}{' ' + args_s if args_s else ''})")
        return "PAWX stacktrace: " + " ".join(frames)

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    def _check_unhandled(self):
        pending = self.scheduler.unhandled_rejections(clear=True)
        if pending:
            error = PromiseRejection(pending[0].value)
            error.message = f"unhandled rejection: {error.message}"
            raise error

    async def handle_script(self, source_code: str) -> ExecutionResult:
        """The main entry point to execute a script."""
        ev = self.evaluator
        ev.side_effects = []
        ev.source_dir = self.source_dir or os.getcwd()
        try:
            scheduler = self.require_scheduler()
            await self._initialize()
            ev.current_node = None
            try:
                program = Parser(source_code).parse()
            except (LexError, ParseError) as e:
                msg = self._format_parse_error(e, source_code)
                ev.emit("stderr", msg)
                token = {'line': e.line, 'col': e.col} if e.line is not None else None
                return ExecutionResult(status='error', error_message=msg, error_token=token,
                                       side_effects=ev.side_effects)
            value = await ev.run_program(program, self.root_env)
            await scheduler.drain()
            self._check_unhandled()
            return ExecutionResult(status='success', value=value, side_effects=ev.side_effects)
        except Exception as e:
            if self.scheduler is not None:
                self.scheduler.cancel_all()
            err_msg, err_token = self._format_runtime_error(e, source_code)
            ev.emit("stderr", err_msg)
            return ExecutionResult(status='error', error_message=err_msg, error_token=err_token,
                                   side_effects=ev.side_effects)

    def close(self):
        if self.scheduler is not None:
            self.scheduler.shutdown()
            self.scheduler = None
