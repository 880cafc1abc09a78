import pytest

from pawx import pawx_runtime
from pawx.pawx_datatypes import PawxObject
from pawx.pawx_runtime import ScriptRunner, ExecutionResult, native_members


async def run_pawx(src: str, **kw):
    runner = ScriptRunner(**kw)
    try:
        return await runner.handle_script(src)
    finally:
        runner.close()


def assert_ok(res, expected=None):
    assert res.status == 'success', f"expected success, got {res.status}: {res.error_message}"
    if expected is not None:
        assert res.value == expected


def stdout(res):
    return [e['message'] for e in res.side_effects if e.get('topics') == ['stdout']]


# --- prelude ---

@pytest.mark.asyncio
async def test_range_forms():
    assert_ok(await run_pawx("range(3)"), [0, 1, 2])
    assert_ok(await run_pawx("range(2, 5)"), [2, 3, 4])
    assert_ok(await run_pawx("range(5, 0, -2)"), [5, 3, 1])
    assert_ok(await run_pawx("range(0)"), [])


@pytest.mark.asyncio
async def test_range_rejects_zero_step():
    res = await run_pawx("range(1, 3, 0)")
    assert res.status == 'error'
    assert "range step must not be zero" in res.error_message


@pytest.mark.asyncio
async def test_assert():
    assert_ok(await run_pawx("assert(1 < 2)"))
    res = await run_pawx('assert(1 > 2, "math is broken")')
    assert res.status == 'error'
    assert "Error: math is broken" in res.error_message


@pytest.mark.asyncio
async def test_runner_without_prelude():
    res = await run_pawx("range(3)", load_prelude=False)
    assert res.status == 'error'
    assert "NameError" in res.error_message


# --- meow and side effects ---

@pytest.mark.asyncio
async def test_meow_joins_arguments_and_fills_placeholders():
    src = """
    meow("plain", 1, [1, 2], null);
    meow("Hello $, you are $!", "Tom", 3);
    meow("extra $", 1, 2);
    meow("cost: $5");
    """
    res = await run_pawx(src)
    assert_ok(res)
    assert stdout(res) == ["plain 1 [1, 2] null", "Hello Tom, you are 3!", "extra 1 2", "cost: $5"]


@pytest.mark.asyncio
async def test_errors_are_emitted_on_stderr():
    res = await run_pawx("1 / 0")
    assert res.status == 'error'
    stderr = [e for e in res.side_effects if e.get('topics') == ['stderr']]
    assert stderr and res.error_message in stderr[-1]['message']


# --- error formatting ---

@pytest.mark.asyncio
async def test_runtime_error_shows_location_context_and_stacktrace():
    src = """purr boom -> (x) -> { return x / 0; }
purr outer -> (y) -> { return boom(y); }
outer(5)"""
    res = await run_pawx(src)
    assert res.status == 'error'
    msg = res.error_message
    assert "RuntimeError: division by zero" in msg
    assert "(line 1, col 32)" in msg
    assert "> 1 | purr boom" in msg
    assert "^" in msg
    assert "PAWX stacktrace: (outer 5) (boom 5)" in msg
    assert res.error_token == {'line': 1, 'col': 32}


@pytest.mark.asyncio
async def test_stacktrace_abbreviates_arguments():
    src = 'purr f -> (a, o, s) -> { return a[9]; }\nf([1, 2], { k: 1 }, "a very long string indeed")'
    res = await run_pawx(src)
    assert "(f array[2] {...} \"a very long strin...\")" in res.error_message


@pytest.mark.asyncio
async def test_parse_error_formatting():
    res = await run_pawx("snuggle a = 1;\nsnuggle = 2;")
    assert res.status == 'error'
    assert res.error_message.startswith("ParseError: expected variable name, found operator '=' (line 2, col 9)")
    assert "> 2 | snuggle = 2;" in res.error_message
    assert res.error_token == {'line': 2, 'col': 9}


@pytest.mark.asyncio
async def test_lex_error_formatting():
    res = await run_pawx('snuggle s = "open')
    assert res.status == 'error'
    assert res.error_message.startswith("LexError: unterminated string literal (line 1, col 13)")


@pytest.mark.asyncio
async def test_non_ascii_digit_is_a_lex_error_at_its_position():
    res = await run_pawx("snuggle x = ²;")
    assert res.status == 'error'
    assert res.error_message.startswith("LexError: unexpected character '²' (line 1, col 13)")
    assert res.error_token == {'line': 1, 'col': 13}


@pytest.mark.asyncio
async def test_deeply_nested_source_is_a_parse_error():
    res = await run_pawx("(" * 3000 + "1" + ")" * 3000)
    assert res.status == 'error'
    assert res.error_message.startswith("ParseError: expression nested too deeply")
    assert res.error_token['line'] == 1


@pytest.mark.asyncio
async def test_parser_failures_do_not_reuse_an_earlier_location(monkeypatch):
    class ExplodingParser:
        def __init__(self, source):
            pass

        def parse(self):
            raise ValueError("parser exploded")

    runner = ScriptRunner()
    try:
        assert_ok(await runner.handle_script("snuggle a = 1;\na + 1"), 2)
        monkeypatch.setattr(pawx_runtime, "Parser", ExplodingParser)
        res = await runner.handle_script("a")
    finally:
        runner.close()
    assert res.status == 'error'
    assert res.error_message == "InternalError: parser exploded"
    assert res.error_token is None


@pytest.mark.asyncio
async def test_nothing_runs_when_parsing_fails():
    res = await run_pawx('meow("before");\nsnuggle = 1;')
    assert res.status == 'error'
    assert stdout(res) == []


def test_format_error_adds_position_only_when_missing():
    res = ExecutionResult(status='error', error_message="TypeError: bad", error_token={'line': 3, 'col': 4})
    assert res.format_error() == "Error on line 3, col 4: TypeError: bad"
    res = ExecutionResult(status='error', error_message="TypeError: bad\n(line 3, col 4)", error_token={'line': 3, 'col': 4})
    assert res.format_error() == "TypeError: bad\n(line 3, col 4)"
    assert ExecutionResult(status='success', value=1).format_error() == ""


# --- standard library ---

@pytest.mark.asyncio
async def test_math():
    src = "[Math.abs(-2), Math.floor(2.7), Math.ceil(2.1), Math.round(2.5), Math.pow(2, 10), Math.sqrt(16), Math.max(1, 9, 3), Math.min()]"
    assert_ok(await run_pawx(src), [2, 2, 3, 3, 1024, 4, 9, float("inf")])
    res = await run_pawx("[Math.PI > 3.14, Math.random() < 1, typeOf(Math.sqrt(-1))]")
    assert_ok(res, [True, True, "number"])


@pytest.mark.asyncio
async def test_string_methods():
    src = """
    snuggle s = "  Hello, Cat  ";
    snuggle t = s.trim();
    [t.upper(), t.lower(), t.length, t.contains("Cat"), t.startsWith("He"), t.endsWith("!"),
     t.indexOf("Cat"), t.slice(-3), t.split(", "), "a-b-a".replace("a", "x"), "ab".repeat(2),
     "abc".chars(), "x1y22".match("[0-9]+"), "x1".replaceRegex("[0-9]", "#")]
    """
    assert_ok(await run_pawx(src), [
        "HELLO, CAT", "hello, cat", 10, True, True, False, 7, "Cat", ["Hello", "Cat"], "x-b-x", "abab",
        ["a", "b", "c"], ["1", "22"], "x#",
    ])


@pytest.mark.asyncio
async def test_array_methods_with_callbacks():
    src = """
    snuggle a = [3, 1, 2];
    [a.map(x -> x * 2), a.filter(x -> x > 1), a.find(x -> x < 3), a.findIndex(x -> x == 2),
     a.reduce((acc, x) -> acc + x, 10), a.some(x -> x > 2), a.every(x -> x > 2),
     a.map((x, i) -> i), a.join("-"), a.slice(1), a.concat([4], 5), a.includes(2), a.indexOf(9)]
    """
    assert_ok(await run_pawx(src), [
        [6, 2, 4], [3, 2], 1, 2, 16, True, False, [0, 1, 2], "3-1-2", [1, 2], [3, 1, 2, 4, 5], True, -1,
    ])


@pytest.mark.asyncio
async def test_array_sorting():
    src = """
    snuggle nums = [3, 1, 2];
    nums.sort();
    snuggle words = ["pear", "fig", "apple"];
    words.sort((a, b) -> a.length - b.length);
    [nums, words, [1, 2, 3].reverse()]
    """
    assert_ok(await run_pawx(src), [[1, 2, 3], ["fig", "pear", "apple"], [3, 2, 1]])
    res = await run_pawx('[1, "a"].sort()')
    assert res.status == 'error' and "TypeError" in res.error_message


@pytest.mark.asyncio
async def test_reduce_of_empty_array_without_initial_value():
    res = await run_pawx("[].reduce((a, b) -> a + b)")
    assert res.status == 'error'
    assert "TypeError" in res.error_message


@pytest.mark.asyncio
async def test_object_helpers():
    src = """
    snuggle o = { a: 1, b: 2 };
    Object.assign(o, { c: 3 });
    [Object.keys(o), Object.values(o), Object.entries(o)[0], Object.has(o, "c"), Object.has(o, "z")]
    """
    assert_ok(await run_pawx(src), [["a", "b", "c"], [1, 2, 3], ("a", 1), True, False])


@pytest.mark.asyncio
async def test_type_of():
    src = """
    clowder C { }
    [typeOf(null), typeOf(true), typeOf(1), typeOf("s"), typeOf([]), typeOf((1, 2)), typeOf({}),
     typeOf(C), typeOf(new C()), typeOf(() -> 1), typeOf(meow), typeOf(Error("x"))]
    """
    assert_ok(await run_pawx(src), [
        "null", "boolean", "number", "string", "array", "tuple", "object", "class", "instance",
        "function", "function", "error",
    ])


@pytest.mark.asyncio
async def test_json_and_yaml_namespaces():
    src = """
    snuggle text = Json.stringify({ a: 1, b: [true, null] });
    snuggle back = Json.parse(text);
    [text, back.b[0], Yaml.parse("x: 2\\ny: [a]").y[0], Yaml.stringify({ k: "v" })]
    """
    assert_ok(await run_pawx(src), ['{"a": 1, "b": [true, null]}', True, "a", "k: v\n"])
    res = await run_pawx('Json.parse("{bad")')
    assert res.status == 'error' and "invalid JSON" in res.error_message
    res = await run_pawx('Json.parse("NaN")')
    assert res.status == 'error' and "invalid JSON: NaN is not a JSON value" in res.error_message


@pytest.mark.asyncio
async def test_serializing_functions_is_a_type_error():
    res = await run_pawx("Json.stringify({ f: () -> 1 })")
    assert res.status == 'error'
    assert "cannot serialize a value of type function" in res.error_message


@pytest.mark.asyncio
async def test_string_render_and_from():
    src = 'String.render("Hello {{name}}, {{count}} toys", { name: "Tom", count: 3 })'
    assert_ok(await run_pawx(src), "Hello Tom, 3 toys")
    assert_ok(await run_pawx("String.from([1, 2.5])"), "[1, 2.5]")
    assert_ok(await run_pawx('String.render("{{x}} & {{y}}", { x: "<b>", y: "\'q\'" })'), "<b> & 'q'")


@pytest.mark.asyncio
async def test_regex_namespace():
    src = """
    [Regex.test("^c", "cat"), Regex.match("(\\\\w)(\\\\d)", "a1"), Regex.replace("\\\\d", "a1b2", "#"),
     Regex.split(",\\\\s*", "a, b,c"), Regex.match("z", "cat")]
    """
    assert_ok(await run_pawx(src), [True, ["a1", "a", "1"], "a#b#", ["a", "b", "c"], None])


@pytest.mark.asyncio
async def test_bytes_namespace_and_encodings():
    src = """
    snuggle b = Bytes.from("é", "utf8");
    [b.length, Bytes.decode(b), Bytes.from([255]).toArray(), Bytes.decode(Bytes.from("é", "latin1"), "latin1")]
    """
    assert_ok(await run_pawx(src), [2, "é", [255], "é"])


@pytest.mark.asyncio
async def test_number_methods():
    assert_ok(await run_pawx("[(3.14159).toFixed(2), (2).toString(), 10.toString()]"), ["3.14", "2", "10"])


@pytest.mark.asyncio
async def test_time_namespace():
    src = """
    snuggle start = Time.now();
    nap Time.sleep(5);
    [Time.now() >= start, typeOf(Time.utc()), Time.format(0, "%Y") >= "1969", typeOf(Date.tzOffset())]
    """
    assert_ok(await run_pawx(src), [True, "string", True, "number"])


def test_native_members_maps_underscore_methods():
    class Lib:
        def _visible(self):
            return 1

        def helper(self):
            return 2

        def __dunder__(self):
            return 3

    members = native_members(Lib())
    assert list(members) == ["visible"]


@pytest.mark.asyncio
async def test_namespaces_expose_only_natives():
    runner = ScriptRunner(load_prelude=False)
    try:
        math_ns = runner.builtins.lookup("Math")
        assert isinstance(math_ns, PawxObject)
        assert "abs" in math_ns.props
        assert not any(k.startswith("_") for k in math_ns.props)
        assert "own" not in runner.builtins.lookup("Object").props
        assert "scheduler_ref" not in runner.builtins.lookup("Future").props
    finally:
        runner.close()
