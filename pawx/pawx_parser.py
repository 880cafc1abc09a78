"""
Recursive-descent parser for PAWX.

Statements are parsed by recursive descent; binary operators are parsed by
precedence climbing over BINARY_PRECEDENCE. Parentheses never create nodes:
`(e)` yields `e` itself, while two or more comma-separated expressions in
parentheses form a TupleLit.
"""
from typing import List, Optional, Union, Iterable

from pawx.pawx_lexer import Lexer, Token, IDENTIFIER, KEYWORD, NUMBER, STRING, PUNCTUATION, OPERATOR, EOF
from pawx.pawx_errors import ParseError
from pawx.pawx_ast import (
    Node, Program, ExprStmt, VarDecl, FuncDecl, ClassDecl, FieldDef, MethodDef, GetterDef, SetterDef,
    InterfaceDecl, InterfaceMethod, PrideBlock, ExportDecl, If, While, Return, Break, Continue, Throw,
    Try, Block, Literal, Identifier, This, SuperMember, Unary, Binary, Assign, Update, Call, Member,
    Index, Param, Lambda, ArrayLit, TupleLit, ObjectLit, New, Nap, Tap,
)

ASSIGN_OPS = ("=", "+=", "-=", "*=", "/=", "%=")

BINARY_PRECEDENCE = {
    "||": 1,
    "&&": 2,
    "==": 3, "!=": 3, "===": 3, "!==": 3,
    "<": 4, "<=": 4, ">": 4, ">=": 4,
    "+": 5, "-": 5,
    "*": 6, "/": 6, "%": 6,
}

ACCESS_KEYWORDS = ("pride", "den", "lair")


class Parser:
    def __init__(self, source: Union[str, Iterable[Token]]):
        if isinstance(source, str):
            source = Lexer(source)
        self.tokens: List[Token] = list(source)
        if not self.tokens or self.tokens[-1].kind != EOF:
            last = self.tokens[-1] if self.tokens else None
            self.tokens.append(Token(EOF, "", last.line if last else 1, last.col if last else 1,
                                     last.offset if last else 0))
        self.pos = 0
        self._function_depth = 0
        self._loop_depth = 0
        self._block_depth = 0

    # ------------------------------------------------------------------
    # Token helpers
    # ------------------------------------------------------------------

    def peek(self, ahead: int = 0) -> Token:
        idx = min(self.pos + ahead, len(self.tokens) - 1)
        return self.tokens[idx]

    def advance(self) -> Token:
        tok = self.tokens[self.pos]
        if tok.kind != EOF:
            self.pos += 1
        return tok

    def previous(self) -> Token:
        return self.tokens[self.pos - 1]

    def at_end(self) -> bool:
        return self.peek().kind == EOF

    def check(self, text: str, ahead: int = 0) -> bool:
        tok = self.peek(ahead)
        return tok.text == text and tok.kind in (PUNCTUATION, OPERATOR, KEYWORD)

    def check_word(self, word: str, ahead: int = 0) -> bool:
        tok = self.peek(ahead)
        return tok.kind == IDENTIFIER and tok.text == word

    def match(self, *texts: str) -> Optional[Token]:
        for text in texts:
            if self.check(text):
                return self.advance()
        return None

    def expect(self, text: str, what: Optional[str] = None) -> Token:
        if self.check(text):
            return self.advance()
        raise self.error(what or f"'{text}'")

    def expect_ident(self, what: str = "identifier") -> Token:
        tok = self.peek()
        if tok.kind == IDENTIFIER:
            return self.advance()
        raise self.error(what)

    def error(self, expected: str, tok: Optional[Token] = None) -> ParseError:
        tok = tok or self.peek()
        return ParseError(f"expected {expected}, found {tok.describe()}",
                          expected=expected, found=tok, loc=tok.loc)

    # ------------------------------------------------------------------
    # Program & statements
    # ------------------------------------------------------------------

    def parse(self) -> Program:
        start = self.peek()
        body = []
        try:
            while not self.at_end():
                body.append(self.statement())
        except RecursionError:
            tok = self.peek()
            raise ParseError("expression nested too deeply", expected="a shallower expression",
                             found=tok, loc=tok.loc) from None
        return Program(body, loc=start.loc)

    def statement(self) -> Node:
        tok = self.peek()
        if tok.kind == KEYWORD:
            match tok.text:
                case "snuggle" | "den" | "lair":
                    return self.var_decl()
                case "pride":
                    return self.pride_statement()
                case "purr":
                    return self.func_decl()
                case "zoom" if self.check("purr", 1):
                    return self.func_decl()
                case "clowder":
                    return self.class_decl()
                case "instinct":
                    return self.interface_decl()
                case "exports":
                    return self.export_decl()
                case "if":
                    return self.if_statement()
                case "while":
                    return self.while_statement()
                case "return":
                    return self.return_statement()
                case "break" | "continue":
                    return self.loop_jump()
                case "throw":
                    self.advance()
                    value = self.expression()
                    self.match(";")
                    return Throw(value, loc=tok.loc)
                case "try":
                    return self.try_statement()
        if self.check("{"):
            return self.block()
        expr = self.expression()
        self.match(";")
        return ExprStmt(expr, loc=tok.loc)

    def block(self) -> Block:
        lbrace = self.expect("{")
        body = []
        self._block_depth += 1
        try:
            while not self.check("}"):
                if self.at_end():
                    raise self.error("'}'")
                body.append(self.statement())
        finally:
            self._block_depth -= 1
        self.expect("}")
        return Block(body, loc=lbrace.loc)

    def function_body(self) -> Block:
        saved_loop = self._loop_depth
        self._loop_depth = 0
        self._function_depth += 1
        try:
            return self.block()
        finally:
            self._function_depth -= 1
            self._loop_depth = saved_loop

    def var_decl(self) -> VarDecl:
        kw = self.advance()
        name = self.expect_ident("variable name")
        if self.match("="):
            value = self.expression()
        else:
            value = Literal(None, loc=name.loc)
        self.match(";")
        return VarDecl(name.text, value, kw.text, loc=kw.loc)

    def pride_statement(self) -> Node:
        kw = self.advance()
        name = self.expect_ident("name after 'pride'")
        if self.match("="):
            value = self.expression()
            self.match(";")
            return VarDecl(name.text, value, "pride", loc=kw.loc)
        if self.check("{"):
            block = self.block()
            return PrideBlock(name.text, block.body, loc=kw.loc)
        raise self.error(f"'=' or '{{' after pride {name.text}")

    def params(self) -> List[Param]:
        self.expect("(", "'(' to start a parameter list")
        params: List[Param] = []
        if not self.check(")"):
            while True:
                name = self.expect_ident("parameter name")
                type_ann = None
                default = None
                if self.match(":"):
                    type_ann = self.expect_ident("type name").text
                if self.match("="):
                    default = self.expression()
                params.append(Param(name.text, default, type_ann, loc=name.loc))
                if not self.match(","):
                    break
        self.expect(")")
        seen = set()
        for p in params:
            if p.name in seen:
                raise ParseError(f"duplicate parameter '{p.name}'", expected="parameter name", loc=p.loc)
            seen.add(p.name)
        return params

    def return_type(self) -> Optional[str]:
        # `-> : Type ->` after a parameter list
        if self.check(":"):
            self.advance()
            t = self.expect_ident("return type").text
            self.expect("->")
            return t
        return None

    def func_decl(self) -> FuncDecl:
        start = self.peek()
        is_async = bool(self.match("zoom"))
        self.expect("purr")
        name = self.expect_ident("function name")
        self.expect("->")
        params = self.params()
        self.expect("->")
        rtype = self.return_type()
        body = self.function_body()
        return FuncDecl(name.text, params, body, is_async, rtype, loc=start.loc)

    def class_decl(self) -> ClassDecl:
        kw = self.expect("clowder")
        name = self.expect_ident("class name").text
        base = None
        interfaces: List[str] = []
        if self.match("inherits"):
            base = self.expect_ident("base class name").text
        if self.match("practices"):
            while True:
                interfaces.append(self.expect_ident("instinct name").text)
                if not self.match(","):
                    break
        self.expect("{")
        members = []
        while not self.check("}"):
            if self.at_end():
                raise self.error("'}' to close clowder body")
            members.append(self.class_member())
        self.expect("}")
        return ClassDecl(name, base, interfaces, members, loc=kw.loc)

    def class_member(self) -> Node:
        start = self.peek()
        is_static = False
        if self.check_word("static") and not self._is_field_start(1):
            self.advance()
            is_static = True
        access = None
        if self.peek().kind == KEYWORD and self.peek().text in ACCESS_KEYWORDS:
            access = self.advance().text

        if (self.check_word("get") or self.check_word("set")) and self.peek(1).kind == IDENTIFIER and self.check("->", 2):
            kind = self.advance().text
            if is_static or access:
                raise ParseError(f"{kind}ters cannot be static or use access modifiers",
                                 expected="class member", loc=start.loc)
            name = self.advance().text
            self.expect("->")
            if kind == "get":
                rtype = self.return_type()
                return GetterDef(name, self.function_body(), rtype, loc=start.loc)
            self.expect("(")
            pname = self.expect_ident("setter parameter")
            ptype = self.expect_ident("type name").text if self.match(":") else None
            self.expect(")")
            self.expect("->")
            return SetterDef(name, Param(pname.text, None, ptype, loc=pname.loc), self.function_body(), loc=start.loc)

        if self.check("purr") or (self.check("zoom") and self.check("purr", 1)):
            is_async = bool(self.match("zoom"))
            self.expect("purr")
            if self.check("new"):
                name = self.advance().text
            else:
                name = self.expect_ident("method name").text
            self.expect("->")
            params = self.params()
            self.expect("->")
            rtype = self.return_type()
            body = self.function_body()
            return MethodDef(name, params, body, access, is_static, is_async, rtype, loc=start.loc)

        if self.peek().kind == IDENTIFIER:
            name = self.advance().text
            type_ann = self.expect_ident("type name").text if self.match(":") else None
            value = self.expression() if self.match("=") else None
            self.match(";")
            return FieldDef(name, value, access, is_static, type_ann, loc=start.loc)

        raise self.error("class member")

    def _is_field_start(self, ahead: int) -> bool:
        # `static = 1;` declares a field literally named static
        return self.check("=", ahead) or self.check(";", ahead) or self.check(":", ahead)

    def interface_decl(self) -> InterfaceDecl:
        kw = self.expect("instinct")
        name = self.expect_ident("instinct name").text
        self.expect("{")
        methods = []
        while not self.check("}"):
            if self.at_end():
                raise self.error("'}' to close instinct body")
            start = self.expect("purr", "'purr' method signature")
            mname = self.expect_ident("method name").text
            self.expect("->")
            params = self.params()
            rtype = None
            if self.match("->"):
                if self.match(":"):
                    rtype = self.expect_ident("return type").text
                    self.match("->")
            self.match(";")
            methods.append(InterfaceMethod(mname, params, rtype, loc=start.loc))
        self.expect("}")
        return InterfaceDecl(name, methods, loc=kw.loc)

    def export_decl(self) -> ExportDecl:
        kw = self.expect("exports")
        if self._block_depth or self._function_depth:
            raise ParseError("'exports' is only allowed at the top level of a module",
                             expected="statement", found=kw, loc=kw.loc)
        is_default = False
        if self.check_word("default"):
            self.advance()
            is_default = True
        tok = self.peek()
        if tok.kind == KEYWORD and tok.text in ("clowder", "instinct", "purr", "zoom", "snuggle", "den", "lair"):
            decl = self.statement()
            return ExportDecl(decl, is_default, loc=kw.loc)
        raise self.error("declaration after 'exports'")

    def if_statement(self) -> If:
        kw = self.expect("if")
        cond = self.expression()
        then = self.block()
        orelse = None
        if self.match("else"):
            if self.check("if"):
                orelse = self.if_statement()
            else:
                orelse = self.block()
        return If(cond, then, orelse, loc=kw.loc)

    def while_statement(self) -> While:
        kw = self.expect("while")
        cond = self.expression()
        self._loop_depth += 1
        try:
            body = self.block()
        finally:
            self._loop_depth -= 1
        return While(cond, body, loc=kw.loc)

    def return_statement(self) -> Return:
        kw = self.expect("return")
        if not self._function_depth:
            raise ParseError("'return' outside of a function", expected="statement", found=kw, loc=kw.loc)
        value = None
        if not (self.check(";") or self.check("}") or self.at_end()):
            value = self.expression()
        self.match(";")
        return Return(value, loc=kw.loc)

    def loop_jump(self) -> Node:
        kw = self.advance()
        if not self._loop_depth:
            raise ParseError(f"'{kw.text}' outside of a loop", expected="statement", found=kw, loc=kw.loc)
        self.match(";")
        return Break(loc=kw.loc) if kw.text == "break" else Continue(loc=kw.loc)

    def try_statement(self) -> Try:
        kw = self.expect("try")
        body = self.block()
        catch_name = None
        handler = None
        finalizer = None
        if self.match("catch"):
            if self.match("("):
                catch_name = self.expect_ident("catch parameter").text
                self.expect(")")
            elif self.peek().kind == IDENTIFIER:
                catch_name = self.advance().text
            handler = self.block()
        if self.match("finally"):
            finalizer = self.block()
        if handler is None and finalizer is None:
            raise self.error("'catch' or 'finally' after try block")
        return Try(body, catch_name, handler, finalizer, loc=kw.loc)

    # ------------------------------------------------------------------
    # Expressions
    # ------------------------------------------------------------------

    def expression(self) -> Node:
        return self.assignment()

    def assignment(self) -> Node:
        left = self.binary(1)
        tok = self.peek()
        if tok.kind == OPERATOR and tok.text in ASSIGN_OPS:
            self.advance()
            if not isinstance(left, (Identifier, Member, Index)):
                raise ParseError("invalid assignment target", expected="variable, member or index",
                                 found=tok, loc=tok.loc)
            value = self.assignment()
            return Assign(tok.text, left, value, loc=left.loc)
        return left

    def binary(self, min_prec: int) -> Node:
        left = self.unary()
        while True:
            tok = self.peek()
            prec = BINARY_PRECEDENCE.get(tok.text) if tok.kind == OPERATOR else None
            if prec is None or prec < min_prec:
                return left
            self.advance()
            right = self.binary(prec + 1)
            left = Binary(tok.text, left, right, loc=tok.loc)

    def unary(self) -> Node:
        tok = self.peek()
        if tok.kind == OPERATOR and tok.text in ("!", "-"):
            self.advance()
            return Unary(tok.text, self.unary(), loc=tok.loc)
        if tok.kind == OPERATOR and tok.text in ("++", "--"):
            self.advance()
            target = self.unary()
            self._check_update_target(target, tok)
            return Update(tok.text, True, target, loc=tok.loc)
        if self.check("nap"):
            self.advance()
            return Nap(self.unary(), loc=tok.loc)
        return self.postfix()

    def _check_update_target(self, target: Node, tok: Token):
        if not isinstance(target, (Identifier, Member, Index)):
            raise ParseError(f"invalid operand for '{tok.text}'", expected="variable, member or index",
                             found=tok, loc=tok.loc)

    def postfix(self) -> Node:
        expr = self.primary()
        while True:
            tok = self.peek()
            if self.check("("):
                self.advance()
                expr = Call(expr, self.arguments(), loc=tok.loc)
            elif self.check("."):
                self.advance()
                name = self.advance()
                if name.kind not in (IDENTIFIER, KEYWORD):
                    raise self.error("property name", name)
                expr = Member(expr, name.text, loc=tok.loc)
            elif self.check("["):
                self.advance()
                index = self.expression()
                self.expect("]")
                expr = Index(expr, index, loc=tok.loc)
            elif tok.kind == OPERATOR and tok.text in ("++", "--") and tok.line == self.previous().line:
                self.advance()
                self._check_update_target(expr, tok)
                return Update(tok.text, False, expr, loc=tok.loc)
            else:
                return expr

    def arguments(self) -> List[Node]:
        args: List[Node] = []
        if not self.check(")"):
            while True:
                args.append(self.expression())
                if not self.match(","):
                    break
        self.expect(")", "')' to close argument list")
        return args

    def primary(self) -> Node:
        tok = self.peek()
        match tok.kind:
            case "number":
                self.advance()
                return Literal(tok.value, loc=tok.loc)
            case "string":
                self.advance()
                return Literal(tok.value, loc=tok.loc)
            case "identifier":
                if self.check("->", 1):
                    return self.lambda_expr(False)
                self.advance()
                return Identifier(tok.text, loc=tok.loc)

        if tok.kind == KEYWORD:
            match tok.text:
                case "true" | "false":
                    self.advance()
                    return Literal(tok.text == "true", loc=tok.loc)
                case "null":
                    self.advance()
                    return Literal(None, loc=tok.loc)
                case "this":
                    self.advance()
                    return This(loc=tok.loc)
                case "super":
                    self.advance()
                    self.expect(".", "'.' after super")
                    name = self.advance()
                    if name.kind not in (IDENTIFIER, KEYWORD):
                        raise self.error("property name", name)
                    return SuperMember(name.text, loc=tok.loc)
                case "zoom":
                    self.advance()
                    if self._lambda_ahead():
                        return self.lambda_expr(True, loc=tok.loc)
                    raise self.error("lambda after 'zoom'")
                case "new":
                    return self.new_expr()
                case "tap":
                    self.advance()
                    return Tap(self.primary(), loc=tok.loc)

        if self.check("("):
            if self._lambda_ahead():
                return self.lambda_expr(False)
            return self.group_or_tuple()
        if self.check("["):
            return self.array_literal()
        if self.check("{"):
            return self.object_literal()
        raise self.error("expression")

    def _lambda_ahead(self) -> bool:
        """True if the tokens at the cursor start a lambda parameter list."""
        tok = self.peek()
        if tok.kind == IDENTIFIER:
            return self.check("->", 1)
        if not self.check("("):
            return False
        depth = 0
        i = self.pos
        while i < len(self.tokens):
            t = self.tokens[i]
            if t.kind == EOF:
                return False
            if t.kind == PUNCTUATION and t.text in "([{":
                depth += 1
            elif t.kind == PUNCTUATION and t.text in ")]}":
                depth -= 1
                if depth == 0:
                    nxt = self.tokens[i + 1] if i + 1 < len(self.tokens) else None
                    return nxt is not None and nxt.kind == OPERATOR and nxt.text == "->"
            i += 1
        return False

    def lambda_expr(self, is_async: bool, loc: Optional[dict] = None) -> Lambda:
        start = self.peek()
        if start.kind == IDENTIFIER:
            self.advance()
            params = [Param(start.text, loc=start.loc)]
        else:
            params = self.params()
        self.expect("->")
        if self.check("{"):
            body = self.function_body()
        else:
            saved_loop = self._loop_depth
            self._loop_depth = 0
            self._function_depth += 1
            try:
                body = self.assignment()
            finally:
                self._function_depth -= 1
                self._loop_depth = saved_loop
        return Lambda(params, body, is_async, loc=loc or start.loc)

    def group_or_tuple(self) -> Node:
        lparen = self.expect("(")
        if self.check(")"):
            raise self.error("expression ('()' is only valid before '->')")
        first = self.expression()
        if self.match(")"):
            return first
        items = [first]
        while self.match(","):
            if self.check(")"):
                raise self.error("expression after ',' (trailing commas are not allowed in tuples)")
            items.append(self.expression())
        self.expect(")", "')' or ','")
        return TupleLit(items, loc=lparen.loc)

    def array_literal(self) -> ArrayLit:
        lbrack = self.expect("[")
        items: List[Node] = []
        while not self.check("]"):
            items.append(self.expression())
            if not self.match(","):
                break
        self.expect("]", "']' or ','")
        return ArrayLit(items, loc=lbrack.loc)

    def object_literal(self) -> ObjectLit:
        lbrace = self.expect("{")
        entries = []
        while not self.check("}"):
            key_tok = self.advance()
            if key_tok.kind in (IDENTIFIER, KEYWORD):
                key = key_tok.text
            elif key_tok.kind == STRING:
                key = key_tok.value
            elif key_tok.kind == NUMBER:
                from pawx.pawx_printer import format_number
                key = format_number(key_tok.value)
            else:
                raise self.error("property key", key_tok)
            if self.match(":"):
                value = self.expression()
            elif key_tok.kind == IDENTIFIER and (self.check(",") or self.check("}")):
                value = Identifier(key, loc=key_tok.loc)
            else:
                raise self.error("':' after property key")
            entries.append((key, value))
            if not self.match(","):
                break
        self.expect("}", "'}' or ','")
        return ObjectLit(entries, loc=lbrace.loc)

    def new_expr(self) -> New:
        kw = self.expect("new")
        name = self.expect_ident("class name after 'new'")
        callee: Node = Identifier(name.text, loc=name.loc)
        while self.check("."):
            dot = self.advance()
            part = self.expect_ident("property name")
            callee = Member(callee, part.text, loc=dot.loc)
        args: List[Node] = []
        if self.check("("):
            self.advance()
            args = self.arguments()
        return New(callee, args, loc=kw.loc)


def parse(source: str) -> Program:
    """Lex and parse PAWX source into a Program."""
    return Parser(source).parse()
