"""
A pretty-printer for PAWX values and AST nodes.

`Printer().pformat(x)` renders AST nodes back into valid PAWX source and
runtime values into a source-like form. `Printer().display(x)` is what
`meow` and string concatenation use: like pformat, except that a top-level
string is shown without quotes.
"""
import json
import math
import re

from pawx.pawx_ast import (
    Node, Program, ExprStmt, VarDecl, FuncDecl, ClassDecl, FieldDef, MethodDef, GetterDef, SetterDef,
    InterfaceDecl, InterfaceMethod, PrideBlock, ExportDecl, If, While, Return, Break, Continue, Throw,
    Try, Block, Literal, Identifier, This, SuperMember, Unary, Binary, Assign, Update, Call, Member,
    Index, Param, Lambda, ArrayLit, TupleLit, ObjectLit, New, Nap, Tap,
)
from pawx.pawx_datatypes import (
    PawxObject, PawxFunction, PawxClass, PawxInstance, PawxInterface, PawxModule, ErrorValue,
)
from pawx.pawx_lexer import KEYWORDS
from pawx.pawx_parser import BINARY_PRECEDENCE

_IDENT_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")

# Printing precedence: a child is parenthesized when its level is below what
# the parent position requires.
PREC_ASSIGN = 1
PREC_UNARY = 8
PREC_POSTFIX = 9
PREC_PRIMARY = 10


def format_number(n) -> str:
    if isinstance(n, bool):
        return "true" if n else "false"
    if isinstance(n, int):
        return str(n)
    if math.isnan(n):
        return "NaN"
    if math.isinf(n):
        return "Infinity" if n > 0 else "-Infinity"
    if n.is_integer() and abs(n) < 1e16:
        return str(int(n))
    return repr(n)


def quote_string(s: str) -> str:
    return json.dumps(s, ensure_ascii=False)


class Printer:
    """Formats PAWX objects into readable, valid PAWX source strings."""

    def __init__(self, indent_width=2):
        self._indent_char = " " * indent_width
        self._handlers = self._create_handlers()

    def pformat(self, obj, level=0):
        """Public entry point to format an object."""
        handler = self._get_handler(obj)
        return handler(obj, level)

    def display(self, obj) -> str:
        if isinstance(obj, str):
            return obj
        return self.pformat(obj)

    def _get_handler(self, obj):
        handler = self._handlers.get(type(obj))
        if handler is not None:
            return handler
        if isinstance(obj, Node):
            return lambda o, l: self._expr(o, 0)
        if isinstance(obj, str):
            return self._pformat_str
        if isinstance(obj, (int, float)):
            return self._pformat_number
        if isinstance(obj, list):
            return self._pformat_list
        if isinstance(obj, tuple):
            return self._pformat_tuple
        if callable(obj):
            return self._pformat_native
        return lambda o, l: repr(o)

    def _create_handlers(self):
        return {
            type(None): lambda o, l: "null",
            bool: lambda o, l: "true" if o else "false",
            int: self._pformat_number,
            float: self._pformat_number,
            str: self._pformat_str,
            bytes: self._pformat_bytes,
            list: self._pformat_list,
            tuple: self._pformat_tuple,
            PawxObject: self._pformat_object,
            PawxFunction: lambda o, l: f"[function {o.name}]",
            PawxClass: lambda o, l: f"[clowder {o.name}]",
            PawxInstance: self._pformat_instance,
            PawxInterface: lambda o, l: f"[instinct {o.name}]",
            PawxModule: lambda o, l: f"[module {o.name}]",
            ErrorValue: lambda o, l: f"{o.kind}({o.message})",
            Program: self._pformat_program,
            Block: lambda o, l: self._block(o.body, l),
        }

    # ------------------------------------------------------------------
    # Runtime values
    # ------------------------------------------------------------------

    def _pformat_number(self, obj, level):
        return format_number(obj)

    def _pformat_str(self, obj, level):
        return quote_string(obj)

    def _pformat_bytes(self, obj, level):
        return f"<bytes {obj.hex()}>" if obj else "<bytes>"

    def _pformat_native(self, obj, level):
        name = getattr(obj, "__name__", None) or getattr(getattr(obj, "func", None), "__name__", "native")
        return f"[native {name.lstrip('_')}]"

    def _nested(self, obj, level, seen):
        if isinstance(obj, (list, tuple, PawxObject)):
            if id(obj) in seen:
                return "[...]" if isinstance(obj, list) else "{...}"
            return self._container(obj, level, seen | {id(obj)})
        return self.pformat(obj, level)

    def _container(self, obj, level, seen):
        if isinstance(obj, list):
            return "[" + ", ".join(self._nested(x, level, seen) for x in obj) + "]"
        if isinstance(obj, tuple):
            return "(" + ", ".join(self._nested(x, level, seen) for x in obj) + ")"
        if not obj.props:
            return "{}"
        parts = [f"{self._key(k)}: {self._nested(v, level, seen)}" for k, v in obj.props.items()]
        return "{ " + ", ".join(parts) + " }"

    def _pformat_list(self, obj, level):
        return self._container(obj, level, {id(obj)})

    def _pformat_tuple(self, obj, level):
        return self._container(obj, level, {id(obj)})

    def _pformat_object(self, obj, level):
        return self._container(obj, level, {id(obj)})

    def _pformat_instance(self, obj, level):
        cls = obj._cls_ref()
        return f"[instance {cls.name if cls else '?'}]"

    def _key(self, key: str) -> str:
        return key if _IDENT_RE.match(key) else quote_string(key)

    # ------------------------------------------------------------------
    # Statements
    # ------------------------------------------------------------------

    def _pformat_program(self, obj: Program, level):
        return "\n".join(self._stmt(s, level) for s in obj.body)

    def _indent(self, level):
        return self._indent_char * level

    def _block(self, body, level) -> str:
        if not body:
            return "{}"
        inner = "\n".join(self._indent(level + 1) + self._stmt(s, level + 1) for s in body)
        return "{\n" + inner + "\n" + self._indent(level) + "}"

    def _params(self, params) -> str:
        return "(" + ", ".join(self._param(p) for p in params) + ")"

    def _param(self, p: Param) -> str:
        out = p.name
        if p.type_ann:
            out += f": {p.type_ann}"
        if p.default is not None:
            out += f" = {self._expr(p.default, PREC_ASSIGN)}"
        return out

    def _rtype(self, rtype) -> str:
        return f": {rtype} -> " if rtype else ""

    def _stmt(self, node, level) -> str:
        match node:
            case ExprStmt(expr=expr):
                text = self._expr(expr, 0)
                if text.startswith("{"):
                    text = f"({text})"
                return text + ";"
            case VarDecl(name=name, value=value, keyword=kw):
                return f"{kw} {name} = {self._expr(value, PREC_ASSIGN)};"
            case FuncDecl(name=name, params=params, body=body, is_async=is_async, return_type=rt):
                prefix = "zoom purr" if is_async else "purr"
                return f"{prefix} {name} -> {self._params(params)} -> {self._rtype(rt)}{self._block(body.body, level)}"
            case ClassDecl(name=name, base=base, interfaces=interfaces, members=members):
                head = f"clowder {name}"
                if base:
                    head += f" inherits {base}"
                if interfaces:
                    head += " practices " + ", ".join(interfaces)
                if not members:
                    return head + " {}"
                inner = "\n".join(self._indent(level + 1) + self._member(m, level + 1) for m in members)
                return f"{head} {{\n{inner}\n{self._indent(level)}}}"
            case InterfaceDecl(name=name, methods=methods):
                if not methods:
                    return f"instinct {name} {{}}"
                lines = []
                for m in methods:
                    sig = f"purr {m.name} -> {self._params(m.params)}"
                    if m.return_type:
                        sig += f" -> : {m.return_type}"
                    lines.append(self._indent(level + 1) + sig + ";")
                return f"instinct {name} {{\n" + "\n".join(lines) + f"\n{self._indent(level)}}}"
            case PrideBlock(name=name, body=body):
                return f"pride {name} {self._block(body, level)}"
            case ExportDecl(decl=decl, is_default=is_default):
                return ("exports default " if is_default else "exports ") + self._stmt(decl, level)
            case If():
                return self._if(node, level)
            case While(cond=cond, body=body):
                return f"while {self._expr(cond, 0)} {self._block(body.body, level)}"
            case Return(value=None):
                return "return;"
            case Return(value=value):
                return f"return {self._expr(value, 0)};"
            case Break():
                return "break;"
            case Continue():
                return "continue;"
            case Throw(value=value):
                return f"throw {self._expr(value, 0)};"
            case Try(body=body, catch_name=name, handler=handler, finalizer=finalizer):
                out = f"try {self._block(body.body, level)}"
                if handler is not None:
                    out += " catch " + (f"({name}) " if name else "") + self._block(handler.body, level)
                if finalizer is not None:
                    out += " finally " + self._block(finalizer.body, level)
                return out
            case Block(body=body):
                return self._block(body, level)
        return self._expr(node, 0) + ";"

    def _if(self, node: If, level) -> str:
        out = f"if {self._expr(node.cond, 0)} {self._block(node.then.body, level)}"
        if isinstance(node.orelse, If):
            out += " else " + self._if(node.orelse, level)
        elif node.orelse is not None:
            out += " else " + self._block(node.orelse.body, level)
        return out

    def _member(self, m, level) -> str:
        match m:
            case FieldDef(name=name, value=value, access=access, is_static=is_static, type_ann=t):
                out = ("static " if is_static else "") + (f"{access} " if access else "") + name
                if t:
                    out += f": {t}"
                if value is not None:
                    out += f" = {self._expr(value, PREC_ASSIGN)}"
                return out + ";"
            case MethodDef(name=name, params=params, body=body, access=access, is_static=is_static,
                           is_async=is_async, return_type=rt):
                out = ("static " if is_static else "") + (f"{access} " if access else "")
                out += ("zoom purr " if is_async else "purr ") + name
                return out + f" -> {self._params(params)} -> {self._rtype(rt)}{self._block(body.body, level)}"
            case GetterDef(name=name, body=body, return_type=rt):
                return f"get {name} -> {self._rtype(rt)}{self._block(body.body, level)}"
            case SetterDef(name=name, param=param, body=body):
                return f"set {name} -> ({self._param(param)}) -> {self._block(body.body, level)}"
        raise TypeError(f"not a class member: {m!r}")

    # ------------------------------------------------------------------
    # Expressions
    # ------------------------------------------------------------------

    def _prec(self, node) -> int:
        match node:
            case Assign() | Lambda():
                return PREC_ASSIGN
            case Binary(op=op):
                return BINARY_PRECEDENCE[op] + 1
            case Unary() | Nap() | Update(prefix=True):
                return PREC_UNARY
            case Call() | Member() | Index() | Update():
                return PREC_POSTFIX
        return PREC_PRIMARY

    def _expr(self, node, min_prec: int) -> str:
        text = self._expr_text(node)
        if self._prec(node) < min_prec:
            return f"({text})"
        return text

    def _expr_text(self, node) -> str:
        match node:
            case Literal(value=value):
                if isinstance(value, str):
                    return quote_string(value)
                return self.pformat(value)
            case Identifier(name=name):
                return name
            case This():
                return "this"
            case SuperMember(name=name):
                return f"super.{name}"
            case Unary(op=op, operand=operand):
                inner = self._expr(operand, PREC_UNARY)
                if op == "-" and inner.startswith("-"):
                    return f"- {inner}"
                return op + inner
            case Nap(expr=expr):
                return "nap " + self._expr(expr, PREC_UNARY)
            case Update(op=op, prefix=True, target=target):
                return op + self._expr(target, PREC_UNARY)
            case Update(op=op, target=target):
                return self._expr(target, PREC_POSTFIX) + op
            case Binary(op=op, left=left, right=right):
                prec = BINARY_PRECEDENCE[op] + 1
                return f"{self._expr(left, prec)} {op} {self._expr(right, prec + 1)}"
            case Assign(op=op, target=target, value=value):
                return f"{self._expr(target, PREC_POSTFIX)} {op} {self._expr(value, PREC_ASSIGN)}"
            case Call(callee=callee, args=args):
                return self._expr(callee, PREC_POSTFIX) + self._args(args)
            case Member(obj=obj, name=name):
                return f"{self._expr(obj, PREC_POSTFIX)}.{name}"
            case Index(obj=obj, index=index):
                return f"{self._expr(obj, PREC_POSTFIX)}[{self._expr(index, 0)}]"
            case Lambda(params=params, body=body, is_async=is_async):
                prefix = "zoom " if is_async else ""
                if isinstance(body, Block):
                    body_text = self._block(body.body, 0)
                else:
                    body_text = self._expr(body, PREC_ASSIGN)
                    if body_text.startswith("{"):
                        body_text = f"({body_text})"
                return f"{prefix}{self._params(params)} -> {body_text}"
            case ArrayLit(items=items):
                return "[" + ", ".join(self._expr(i, PREC_ASSIGN) for i in items) + "]"
            case TupleLit(items=items):
                return "(" + ", ".join(self._expr(i, PREC_ASSIGN) for i in items) + ")"
            case ObjectLit(entries=entries):
                if not entries:
                    return "{}"
                parts = [f"{self._key(k)}: {self._expr(v, PREC_ASSIGN)}" for k, v in entries]
                return "{ " + ", ".join(parts) + " }"
            case New(callee=callee, args=args):
                return f"new {self._expr_text(callee)}{self._args(args)}"
            case Tap(path=path):
                return "tap " + self._expr(path, PREC_PRIMARY)
        raise TypeError(f"cannot print node {node!r}")

    def _args(self, args) -> str:
        return "(" + ", ".join(self._expr(a, PREC_ASSIGN) for a in args) + ")"
