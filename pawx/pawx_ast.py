"""
AST node classes produced by the parser and walked by the Evaluator.

Nodes are plain dataclasses. `loc` records where the node starts in the
source and is excluded from equality, so two parses of equivalent source
compare equal.
"""
from dataclasses import dataclass, field
from typing import Any, List, Optional, Tuple, Union


@dataclass
class Node:
    loc: Optional[dict] = field(default=None, compare=False, repr=False, kw_only=True)


# ---------------------------------------------------------------------------
# Expressions
# ---------------------------------------------------------------------------

@dataclass
class Literal(Node):
    value: Any


@dataclass
class Identifier(Node):
    name: str


@dataclass
class This(Node):
    pass


@dataclass
class SuperMember(Node):
    name: str


@dataclass
class Unary(Node):
    op: str
    operand: Node


@dataclass
class Binary(Node):
    op: str
    left: Node
    right: Node


@dataclass
class Assign(Node):
    op: str  # '=', '+=', ...
    target: Node
    value: Node


@dataclass
class Update(Node):
    op: str  # '++' or '--'
    prefix: bool
    target: Node


@dataclass
class Call(Node):
    callee: Node
    args: List[Node]


@dataclass
class Member(Node):
    obj: Node
    name: str


@dataclass
class Index(Node):
    obj: Node
    index: Node


@dataclass
class Param(Node):
    name: str
    default: Optional[Node] = None
    type_ann: Optional[str] = None


@dataclass
class Block(Node):
    body: List[Node]


@dataclass
class Lambda(Node):
    params: List[Param]
    body: Union[Block, Node]
    is_async: bool = False


@dataclass
class ArrayLit(Node):
    items: List[Node]


@dataclass
class TupleLit(Node):
    items: List[Node]


@dataclass
class ObjectLit(Node):
    entries: List[Tuple[str, Node]]


@dataclass
class New(Node):
    callee: Node
    args: List[Node]


@dataclass
class Nap(Node):
    expr: Node


@dataclass
class Tap(Node):
    path: Node


# ---------------------------------------------------------------------------
# Statements
# ---------------------------------------------------------------------------

@dataclass
class Program(Node):
    body: List[Node]


@dataclass
class ExprStmt(Node):
    expr: Node


@dataclass
class VarDecl(Node):
    name: str
    value: Node
    keyword: str = "snuggle"  # snuggle | pride | den | lair


@dataclass
class FuncDecl(Node):
    name: str
    params: List[Param]
    body: Block
    is_async: bool = False
    return_type: Optional[str] = None


@dataclass
class FieldDef(Node):
    name: str
    value: Optional[Node] = None
    access: Optional[str] = None
    is_static: bool = False
    type_ann: Optional[str] = None


@dataclass
class MethodDef(Node):
    name: str
    params: List[Param]
    body: Block
    access: Optional[str] = None
    is_static: bool = False
    is_async: bool = False
    return_type: Optional[str] = None


@dataclass
class GetterDef(Node):
    name: str
    body: Block
    return_type: Optional[str] = None


@dataclass
class SetterDef(Node):
    name: str
    param: Param
    body: Block


@dataclass
class ClassDecl(Node):
    name: str
    base: Optional[str]
    interfaces: List[str]
    members: List[Node]


@dataclass
class InterfaceMethod(Node):
    name: str
    params: List[Param]
    return_type: Optional[str] = None


@dataclass
class InterfaceDecl(Node):
    name: str
    methods: List[InterfaceMethod]


@dataclass
class PrideBlock(Node):
    name: str
    body: List[Node]


@dataclass
class ExportDecl(Node):
    decl: Node
    is_default: bool = False


@dataclass
class If(Node):
    cond: Node
    then: Block
    orelse: Optional[Node] = None  # Block or If


@dataclass
class While(Node):
    cond: Node
    body: Block


@dataclass
class Return(Node):
    value: Optional[Node] = None


@dataclass
class Break(Node):
    pass


@dataclass
class Continue(Node):
    pass


@dataclass
class Throw(Node):
    value: Node


@dataclass
class Try(Node):
    body: Block
    catch_name: Optional[str] = None
    handler: Optional[Block] = None
    finalizer: Optional[Block] = None
