"""
Tokenizer for PAWX source text.

The lexer is a restartable, lazy token source: iterating a `Lexer` scans the
source from the beginning and yields `Token`s on demand, finishing with a
single EOF token.
"""
from dataclasses import dataclass
from typing import Any, Iterator, List

from pawx.pawx_errors import LexError

IDENTIFIER = "identifier"
KEYWORD = "keyword"
NUMBER = "number"
STRING = "string"
PUNCTUATION = "punctuation"
OPERATOR = "operator"
EOF = "eof"

DIGITS = frozenset("0123456789")

KEYWORDS = frozenset({
    "snuggle", "purr", "zoom", "nap", "return", "if", "else", "while",
    "break", "continue", "true", "false", "null", "try", "catch", "finally",
    "throw", "new", "clowder", "inherits", "practices", "instinct", "this",
    "super", "pride", "den", "lair", "exports", "tap",
})

PUNCTUATION_CHARS = "(){}[],;:.?"

# Longest first so that maximal munch works with a simple prefix scan.
OPERATORS = (
    "===", "!==",
    "==", "!=", "<=", ">=", "&&", "||", "++", "--", "->",
    "+=", "-=", "*=", "/=", "%=",
    "+", "-", "*", "/", "%", "=", "<", ">", "!",
)

ESCAPES = {
    "n": "\n", "t": "\t", "r": "\r", "0": "\0", "b": "\b", "f": "\f",
    "\\": "\\", "'": "'", '"': '"', "/": "/",
}


@dataclass(frozen=True)
class Token:
    kind: str
    text: str
    line: int
    col: int
    offset: int
    value: Any = None

    @property
    def loc(self) -> dict:
        return {"line": self.line, "col": self.col, "offset": self.offset}

    def describe(self) -> str:
        if self.kind == EOF:
            return "end of input"
        return f"{self.kind} '{self.text}'"


class Lexer:
    """Scans PAWX source into tokens."""

    def __init__(self, source: str):
        self.source = source

    def __iter__(self) -> Iterator[Token]:
        return self.tokens()

    def tokenize(self) -> List[Token]:
        return list(self.tokens())

    def tokens(self) -> Iterator[Token]:
        src = self.source
        length = len(src)
        i = 0
        line = 1
        line_start = 0

        while True:
            # Skip whitespace and comments
            while i < length:
                ch = src[i]
                if ch == "\n":
                    i += 1
                    line += 1
                    line_start = i
                elif ch in " \t\r\f\v":
                    i += 1
                elif src.startswith("//", i):
                    while i < length and src[i] != "\n":
                        i += 1
                elif src.startswith("/*", i):
                    start_line, start_col = line, i - line_start + 1
                    end = src.find("*/", i + 2)
                    if end < 0:
                        raise LexError("unterminated block comment", line=start_line, col=start_col)
                    for k in range(i, end):
                        if src[k] == "\n":
                            line += 1
                            line_start = k + 1
                    i = end + 2
                else:
                    break

            col = i - line_start + 1
            if i >= length:
                yield Token(EOF, "", line, col, i)
                return

            ch = src[i]
            start = i

            if ch in DIGITS:
                i = self._scan_number(i, line, col)
                text = src[start:i]
                yield Token(NUMBER, text, line, col, start, float(text))
                continue

            if ch.isalpha() or ch == "_":
                while i < length and (src[i].isalnum() or src[i] == "_"):
                    i += 1
                text = src[start:i]
                kind = KEYWORD if text in KEYWORDS else IDENTIFIER
                yield Token(kind, text, line, col, start)
                continue

            if ch in "\"'":
                value, i, newlines, last_nl = self._scan_string(i, line, col)
                text = src[start:i]
                yield Token(STRING, text, line, col, start, value)
                if newlines:
                    line += newlines
                    line_start = last_nl + 1
                continue

            if ch in PUNCTUATION_CHARS:
                i += 1
                yield Token(PUNCTUATION, ch, line, col, start)
                continue

            for op in OPERATORS:
                if src.startswith(op, i):
                    i += len(op)
                    yield Token(OPERATOR, op, line, col, start)
                    break
            else:
                raise LexError(f"unexpected character {ch!r}", line=line, col=col)

    def _scan_number(self, i: int, line: int, col: int) -> int:
        src = self.source
        length = len(src)
        start = i
        while i < length and src[i] in DIGITS:
            i += 1
        if i + 1 < length and src[i] == "." and src[i + 1] in DIGITS:
            i += 1
            while i < length and src[i] in DIGITS:
                i += 1
        if i < length and src[i] in "eE":
            j = i + 1
            if j < length and src[j] in "+-":
                j += 1
            if j < length and src[j] in DIGITS:
                i = j
                while i < length and src[i] in DIGITS:
                    i += 1
        if i < length and (src[i].isalpha() or src[i] == "_"):
            raise LexError(f"invalid number literal {src[start:i + 1]!r}", line=line, col=col)
        return i

    def _scan_string(self, i: int, line: int, col: int):
        """Returns (value, end, newline_count, offset_of_last_newline)."""
        src = self.source
        length = len(src)
        quote = src[i]
        i += 1
        out = []
        newlines = 0
        last_nl = -1
        while i < length:
            ch = src[i]
            if ch == quote:
                return "".join(out), i + 1, newlines, last_nl
            if ch == "\\":
                if i + 1 >= length:
                    break
                esc = src[i + 1]
                if esc in ESCAPES:
                    out.append(ESCAPES[esc])
                    i += 2
                    continue
                if esc == "u":
                    digits = src[i + 2:i + 6]
                    if len(digits) != 4 or any(c not in "0123456789abcdefABCDEF" for c in digits):
                        raise LexError("invalid \\u escape in string literal", line=line, col=col)
                    out.append(chr(int(digits, 16)))
                    i += 6
                    continue
                raise LexError(f"unknown escape sequence '\\{esc}'", line=line, col=col)
            if ch == "\n":
                newlines += 1
                last_nl = i
            out.append(ch)
            i += 1
        raise LexError("unterminated string literal", line=line, col=col)


def tokenize(source: str) -> List[Token]:
    return Lexer(source).tokenize()
