import weakref
from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Optional, Union

from pawx.pawx_ast import Block, Node, Param
from pawx.pawx_errors import PawxNameError, PawxTypeError


class Environment:
    """A lexical scope frame.

    Frames form a chain through `parent`. Closures hold a reference to the
    frame that was active when they were created, so a frame lives as long as
    any closure, running call or pending continuation still refers to it.
    """
    def __init__(self, parent: Optional['Environment'] = None, owner_class: Optional['PawxClass'] = None):
        self.vars: Dict[str, Any] = {}
        self.parent = parent
        # Set on frames created for method calls; drives den/lair checks and `super`.
        self.owner_class = owner_class

    def __contains__(self, name: str) -> bool:
        return self.find_owner(name) is not None

    def __repr__(self):
        return f"<Environment names={list(self.vars)}>"

    def find_owner(self, name: str) -> Optional['Environment']:
        """Finds the nearest frame in the chain that declares `name`."""
        env = self
        while env is not None:
            if name in env.vars:
                return env
            env = env.parent
        return None

    def declare(self, name: str, value: Any):
        if name in self.vars:
            raise PawxNameError(f"'{name}' is already declared in this scope")
        self.vars[name] = value

    def assign(self, name: str, value: Any):
        owner = self.find_owner(name)
        if owner is None:
            raise PawxNameError(f"cannot assign to undeclared variable '{name}'")
        owner.vars[name] = value

    def lookup(self, name: str) -> Any:
        owner = self.find_owner(name)
        if owner is None:
            raise PawxNameError(f"'{name}' is not defined")
        return owner.vars[name]

    def enclosing_class(self) -> Optional['PawxClass']:
        env = self
        while env is not None:
            if env.owner_class is not None:
                return env.owner_class
            env = env.parent
        return None


class PawxObject:
    """A plain object: ordered properties plus an optional prototype."""

    def __init__(self, props: Optional[Dict[str, Any]] = None, proto: Optional['PawxObject'] = None):
        self.props: Dict[str, Any] = dict(props or {})
        self.proto = proto

    def __repr__(self):
        from pawx.pawx_printer import Printer
        return Printer().pformat(self)

    def find_owner(self, key: str) -> Optional['PawxObject']:
        obj = self
        while obj is not None:
            if key in obj.props:
                return obj
            obj = obj.proto
        return None

    def get(self, key: str, default: Any = None) -> Any:
        owner = self.find_owner(key)
        return owner.props[key] if owner is not None else default

    def has(self, key: str) -> bool:
        return self.find_owner(key) is not None

    def set(self, key: str, value: Any):
        self.props[key] = value

    def set_proto(self, proto: Optional['PawxObject']):
        p = proto
        while p is not None:
            if p is self:
                raise PawxTypeError("cyclic prototype chain")
            p = p.proto
        self.proto = proto


@dataclass(eq=False)
class PawxFunction:
    """A closure: parameters and body from the AST plus the captured Environment."""
    name: str
    params: List[Param]
    body: Union[Block, Node]
    closure: Environment
    is_async: bool = False
    is_lambda: bool = False
    bound_this: Any = None
    owner_class: Optional['PawxClass'] = None
    return_type: Optional[str] = None

    def bind(self, receiver: Any) -> 'PawxFunction':
        if self.is_lambda:
            return self
        return replace(self, bound_this=receiver)

    @property
    def arity(self) -> int:
        return len(self.params)

    @property
    def required(self) -> int:
        # everything up to the last parameter without a default
        n = 0
        for i, p in enumerate(self.params):
            if p.default is None:
                n = i + 1
        return n

    def __repr__(self):
        return f"<function {self.name}>"


@dataclass
class FieldSpec:
    value: Optional[Node]
    access: Optional[str] = None


class PawxClass:
    """A class: field defaults, method tables, accessors and statics."""

    def __init__(self, name: str, parent: Optional['PawxClass'] = None, closure: Optional[Environment] = None):
        self.name = name
        self.parent = parent
        self.closure = closure
        self.fields: Dict[str, FieldSpec] = {}
        self.methods: Dict[str, PawxFunction] = {}
        self.getters: Dict[str, PawxFunction] = {}
        self.setters: Dict[str, PawxFunction] = {}
        self.static_fields: Dict[str, Any] = {}
        self.static_methods: Dict[str, PawxFunction] = {}
        # member name -> 'den' | 'lair' for restricted members
        self.access: Dict[str, str] = {}
        self.interfaces: List['PawxInterface'] = []

    def __repr__(self):
        return f"<clowder {self.name}>"

    def chain(self):
        """Yields this class then each ancestor, nearest first."""
        cls = self
        while cls is not None:
            yield cls
            cls = cls.parent

    def is_subclass_of(self, other: 'PawxClass') -> bool:
        return any(c is other for c in self.chain())

    def find_method(self, name: str):
        for cls in self.chain():
            if name in cls.methods:
                return cls, cls.methods[name]
        return None, None

    def find_getter(self, name: str):
        for cls in self.chain():
            if name in cls.getters:
                return cls.getters[name]
        return None

    def find_setter(self, name: str):
        for cls in self.chain():
            if name in cls.setters:
                return cls.setters[name]
        return None

    def find_static(self, name: str):
        """Returns (declaring class, value) for a static member, nearest first."""
        for cls in self.chain():
            if name in cls.static_fields:
                return cls, cls.static_fields[name]
            if name in cls.static_methods:
                return cls, cls.static_methods[name]
        return None, None

    def member_access(self, name: str):
        """Returns (declaring class, access) for the nearest declaration of `name`."""
        for cls in self.chain():
            if name in cls.fields or name in cls.methods or name in cls.static_fields or name in cls.static_methods:
                return cls, cls.access.get(name)
        return None, None


class PawxInstance:
    """An instance: its own fields plus a non-owning reference to its class."""

    def __init__(self, cls: PawxClass):
        self._cls_ref = weakref.ref(cls)
        self.fields: Dict[str, Any] = {}

    @property
    def cls(self) -> PawxClass:
        cls = self._cls_ref()
        if cls is None:
            raise PawxTypeError("instance outlived its class")
        return cls

    def __repr__(self):
        cls = self._cls_ref()
        return f"<instance {cls.name if cls else '?'}>"


@dataclass(eq=False)
class PawxInterface:
    name: str
    methods: Dict[str, int] = field(default_factory=dict)  # name -> arity


@dataclass(eq=False)
class PawxModule:
    name: str
    path: str
    exports: Dict[str, Any] = field(default_factory=dict)
    default: Any = None
    has_default: bool = False


@dataclass
class ErrorValue:
    """The language-level value of an error (what `catch` binds)."""
    kind: str
    message: str
