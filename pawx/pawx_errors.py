"""
Error taxonomy shared by every stage of the PAWX pipeline.
"""
from typing import Any, List, Optional


class PawxError(Exception):
    """Base class for all errors a PAWX program can observe."""
    kind = "Error"

    def __init__(self, message: str = "", *, loc: Optional[dict] = None,
                 line: Optional[int] = None, col: Optional[int] = None):
        super().__init__(message)
        self.message = message
        if loc is None and line is not None:
            loc = {"line": line, "col": col}
        self.loc = loc
        # Snapshot of the PAWX call stack, attached when the error first leaves a call.
        self.stack: Optional[List[dict]] = None

    @property
    def line(self) -> Optional[int]:
        return (self.loc or {}).get("line")

    @property
    def col(self) -> Optional[int]:
        return (self.loc or {}).get("col")

    def to_value(self) -> Any:
        """The value a `catch` clause binds for this error."""
        from pawx.pawx_datatypes import ErrorValue
        return ErrorValue(self.kind, self.message)

    def __str__(self):
        return f"{self.kind}: {self.message}"


class LexError(PawxError):
    kind = "LexError"


class ParseError(PawxError):
    kind = "ParseError"

    def __init__(self, message: str, *, expected: Optional[str] = None, found=None, **kw):
        super().__init__(message, **kw)
        self.expected = expected
        self.found = found


class PawxNameError(PawxError):
    kind = "NameError"


class PawxTypeError(PawxError):
    kind = "TypeError"


class PawxRangeError(PawxError):
    kind = "RangeError"


class PawxRuntimeError(PawxError):
    kind = "RuntimeError"


class ThrowSignal(PawxError):
    """A value raised by a `throw` statement."""
    kind = "Uncaught"

    def __init__(self, value: Any, **kw):
        from pawx.pawx_printer import Printer
        super().__init__(Printer().display(value), **kw)
        self.value = value

    def to_value(self) -> Any:
        return self.value


class PromiseRejection(PawxError):
    """Raised when a rejected Future is awaited, or left unhandled."""
    kind = "PromiseRejection"

    def __init__(self, reason: Any, **kw):
        from pawx.pawx_printer import Printer
        super().__init__(Printer().display(reason), **kw)
        self.reason = reason

    def to_value(self) -> Any:
        return self.reason

