import pytest

from pawx.pawx_ast import (
    Program, ExprStmt, VarDecl, FuncDecl, ClassDecl, FieldDef, MethodDef, GetterDef, If, While,
    Return, Literal, Identifier, Unary, Binary, Assign, Update, Call, Member, Index, Lambda,
    ArrayLit, TupleLit, ObjectLit, New, Nap, Tap, ExportDecl, Block,
)
from pawx.pawx_errors import ParseError, LexError
from pawx.pawx_parser import Parser, parse
from pawx.pawx_printer import Printer


def expr(src):
    program = parse(src)
    assert len(program.body) == 1
    stmt = program.body[0]
    assert isinstance(stmt, ExprStmt)
    return stmt.expr


# --- tuples and grouping ---

def test_single_parenthesized_expression_is_not_a_tuple():
    assert expr("(5)") == Literal(5.0)
    assert expr("((1 + 2))") == Binary("+", Literal(1.0), Literal(2.0))


def test_two_or_more_elements_form_a_tuple():
    assert expr("(1, 2)") == TupleLit([Literal(1.0), Literal(2.0)])
    assert expr('(1, "a", x)') == TupleLit([Literal(1.0), Literal("a"), Identifier("x")])


def test_nested_tuple_and_group():
    assert expr("((1, 2), (3))") == TupleLit([TupleLit([Literal(1.0), Literal(2.0)]), Literal(3.0)])


def test_empty_parens_are_only_a_parameter_list():
    assert isinstance(expr("() -> 1"), Lambda)
    with pytest.raises(ParseError):
        parse("()")


def test_trailing_comma_in_tuple_is_rejected():
    with pytest.raises(ParseError, match="trailing comma"):
        parse("(1, 2,)")


# --- precedence and associativity ---

def test_multiplicative_binds_tighter_than_additive():
    assert expr("1 + 2 * 3") == Binary("+", Literal(1.0), Binary("*", Literal(2.0), Literal(3.0)))


def test_binary_operators_are_left_associative():
    assert expr("10 - 4 - 3") == Binary("-", Binary("-", Literal(10.0), Literal(4.0)), Literal(3.0))


def test_assignment_is_right_associative_and_lowest():
    assert expr("a = b = 1 + 2") == Assign(
        "=", Identifier("a"), Assign("=", Identifier("b"), Binary("+", Literal(1.0), Literal(2.0))))


def test_logical_and_equality_and_relational_levels():
    tree = expr("a || b && c == d < e")
    assert tree == Binary("||", Identifier("a"), Binary("&&", Identifier("b"), Binary(
        "==", Identifier("c"), Binary("<", Identifier("d"), Identifier("e")))))


def test_unary_and_postfix():
    assert expr("-a.b") == Unary("-", Member(Identifier("a"), "b"))
    assert expr("!f(1)[0]") == Unary("!", Index(Call(Identifier("f"), [Literal(1.0)]), Literal(0.0)))
    assert expr("++i") == Update("++", True, Identifier("i"))
    assert expr("i--") == Update("--", False, Identifier("i"))


def test_postfix_update_must_be_on_the_same_line():
    program = parse("a\n++b")
    assert program.body[0] == ExprStmt(Identifier("a"))
    assert program.body[1] == ExprStmt(Update("++", True, Identifier("b")))


def test_invalid_assignment_target():
    with pytest.raises(ParseError, match="invalid assignment target"):
        parse("1 = 2")
    with pytest.raises(ParseError):
        parse("f() ++")


# --- primaries ---

def test_lambda_forms():
    single = expr("x -> x * 2")
    assert single == Lambda([single.params[0]], Binary("*", Identifier("x"), Literal(2.0)))
    assert single.params[0].name == "x"
    block = expr("(a, b = 1) -> { return a + b; }")
    assert [p.name for p in block.params] == ["a", "b"]
    assert block.params[1].default == Literal(1.0)
    assert isinstance(block.body, Block)
    assert expr("zoom () -> 1").is_async is True


def test_object_array_and_new_literals():
    assert expr('({ name: "Trouble", "age": 3 })') == ObjectLit([("name", Literal("Trouble")), ("age", Literal(3.0))])
    assert expr("[1, [2], []]") == ArrayLit([Literal(1.0), ArrayLit([Literal(2.0)]), ArrayLit([])])
    assert expr("new Cat(1)") == New(Identifier("Cat"), [Literal(1.0)])
    assert expr("new Cat") == New(Identifier("Cat"), [])


def test_object_shorthand_property():
    assert expr("({ a, b: 2 })") == ObjectLit([("a", Identifier("a")), ("b", Literal(2.0))])


def test_nap_and_tap():
    assert expr("nap f()") == Nap(Call(Identifier("f"), []))
    assert expr('tap "lib/util"') == Tap(Literal("lib/util"))


# --- statements ---

def test_declarations_and_control_flow():
    program = parse("""
        snuggle n = 0;
        purr inc -> (x) -> { return x + 1; }
        while n < 3 { n = inc(n); }
        if n == 3 { n = 0; } else if n > 3 { n = 1; } else { n = 2; }
    """)
    decl, fn, loop, cond = program.body
    assert decl == VarDecl("n", Literal(0.0), "snuggle")
    assert isinstance(fn, FuncDecl) and fn.name == "inc" and [p.name for p in fn.params] == ["x"]
    assert isinstance(fn.body.body[0], Return)
    assert isinstance(loop, While)
    assert isinstance(cond, If) and isinstance(cond.orelse, If)


def test_class_declaration_members():
    program = parse("""
        clowder Cat inherits Animal practices Speaker, Pet {
            den lives = 9;
            static count = 0;
            purr new -> (name) -> { this.name = name; }
            static purr make -> () -> { return new Cat("x"); }
            get label -> { return this.name; }
        }
    """)
    cls = program.body[0]
    assert isinstance(cls, ClassDecl)
    assert (cls.name, cls.base, cls.interfaces) == ("Cat", "Animal", ["Speaker", "Pet"])
    lives, count, ctor, make, label = cls.members
    assert isinstance(lives, FieldDef) and lives.access == "den"
    assert isinstance(count, FieldDef) and count.is_static
    assert isinstance(ctor, MethodDef) and ctor.name == "new"
    assert isinstance(make, MethodDef) and make.is_static
    assert isinstance(label, GetterDef)


def test_exports_only_at_top_level():
    assert isinstance(parse("exports purr f -> () -> { return 1; }").body[0], ExportDecl)
    with pytest.raises(ParseError, match="top level"):
        parse("purr f -> () -> { exports snuggle x = 1; }")


def test_jumps_outside_their_construct_are_rejected():
    with pytest.raises(ParseError, match="outside of a loop"):
        parse("break;")
    with pytest.raises(ParseError, match="outside of a loop"):
        parse("while true { purr f -> () -> { continue; } }")
    with pytest.raises(ParseError, match="outside of a function"):
        parse("return 1;")


def test_duplicate_parameter_names():
    with pytest.raises(ParseError, match="duplicate parameter"):
        parse("purr f -> (a, a) -> { return a; }")


# --- errors ---

def test_parse_error_carries_expected_found_and_position():
    with pytest.raises(ParseError) as exc:
        parse("snuggle a = 1;\nsnuggle = 2;")
    err = exc.value
    assert err.expected == "variable name"
    assert err.found.text == "="
    assert (err.line, err.col) == (2, 9)
    assert "found operator '='" in err.message


def test_parse_error_at_end_of_input():
    with pytest.raises(ParseError) as exc:
        parse("f(1, 2")
    assert "end of input" in exc.value.message


def test_lex_errors_surface_through_the_parser():
    with pytest.raises(LexError):
        parse('snuggle s = "open')


def test_parser_accepts_a_token_list():
    from pawx.pawx_lexer import tokenize
    assert Parser(tokenize("1 + 1")).parse() == parse("1 + 1")


# --- printing round trip ---

ROUND_TRIP_SOURCES = [
    "snuggle add = (a, b) -> { return a + b; }; add(2, 3);",
    'snuggle cat = { name: "Trouble", age: 3 }; cat.name;',
    "a = b = (1 + 2) * -(3 - 4) % 5;",
    "x = - -y; z = !!w; i++; --j; k += 2;",
    "snuggle t = (1, (2, 3), [4, 5]); t[1][0];",
    "({ a: 1 }).a; (x) -> ({ y: x });",
    "if a && (b || c) { meow(1); } else if d { meow(2); } else { meow(3); }",
    "snuggle i = 0; while i < 10 { if i == 5 { break; } i += 1; continue; }",
    "try { throw Error(\"x\"); } catch (e) { meow(e.message); } finally { meow(\"done\"); }",
    "try { f(); } catch { g(); }",
    "zoom purr fetch -> (url: string) -> : string -> { return nap Http.get(url); }",
    "snuggle f = zoom () -> nap Time.sleep(1); f().then(v -> v).catch((e) -> null);",
    "instinct Speaker { purr speak -> (); purr name -> (a, b) -> : string; }",
    """clowder Cat inherits Animal practices Speaker {
        den lives = 9;
        lair mood: string = "calm";
        static count = 0;
        purr new -> (name, age = 1) -> { super.new(name); this.age = age; }
        static purr make -> () -> { Cat.count += 1; return new Cat("x"); }
        zoom purr nap2 -> () -> { return nap Time.sleep(5); }
        get label -> { return this.name + "!"; }
        set label -> (v) -> { this.name = v; }
    }""",
    "pride util { purr f -> () -> { return 1; } }  pride VERSION = \"1.0\";",
    "exports default clowder Box {} exports snuggle n = 1;",
    "snuggle lib = tap \"lib\"; new lib.Box().open(1, 2);",
    "snuggle o = { \"with space\": 1, if: 2, 3: 4 };",
    "snuggle big = 1e+20; snuggle frac = 0.125; snuggle n = null; snuggle b = true;",
]


@pytest.mark.parametrize("src", ROUND_TRIP_SOURCES)
def test_printed_ast_reparses_to_the_same_tree(src):
    tree = parse(src)
    printed = Printer().pformat(tree)
    assert parse(printed) == tree, printed


def test_printing_is_stable():
    src = ROUND_TRIP_SOURCES[13]
    once = Printer().pformat(parse(src))
    assert Printer().pformat(parse(once)) == once


def test_program_node_is_returned():
    assert isinstance(parse(""), Program)


def test_deep_nesting_is_a_parse_error():
    src = "(" * 3000 + "1" + ")" * 3000
    with pytest.raises(ParseError) as exc:
        parse(src)
    assert "nested too deeply" in exc.value.message
    assert exc.value.line == 1
