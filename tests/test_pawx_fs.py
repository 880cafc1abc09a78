import json

import pytest
import yaml

from pawx.pawx_datatypes import PawxObject
from pawx.pawx_errors import PawxRuntimeError, PawxTypeError
from pawx.pawx_fs import FsBridge
from pawx.pawx_runtime import ScriptRunner


@pytest.fixture
def fs(tmp_path):
    return FsBridge(base_dir=lambda: str(tmp_path))


@pytest.fixture
def runner(tmp_path):
    r = ScriptRunner()
    r.source_dir = str(tmp_path)
    yield r
    r.close()


def stdout(res):
    return [e['message'] for e in res.side_effects if e.get('topics') == ['stdout']]


# --- bridge, called directly ---

def test_text_round_trip_and_append(fs, tmp_path):
    fs.write_text("notes.txt", "hello")
    fs.append_text("notes.txt", " world")
    assert fs.read_text("notes.txt") == "hello world"
    assert (tmp_path / "notes.txt").read_text() == "hello world"


def test_text_encodings(fs, tmp_path):
    fs.write_text("latin.txt", "café", "latin1")
    assert (tmp_path / "latin.txt").read_bytes() == "café".encode("latin-1")
    assert fs.read_text("latin.txt", "latin1") == "café"
    with pytest.raises(PawxRuntimeError, match="cannot decode"):
        fs.read_text("latin.txt", "utf8")
    with pytest.raises(PawxRuntimeError, match="cannot encode"):
        fs.write_text("ascii.txt", "café", "ascii")
    with pytest.raises(PawxTypeError, match="unsupported encoding"):
        fs.read_text("latin.txt", "klingon")


def test_bytes_are_distinct_from_text(fs, tmp_path):
    fs.write_bytes("raw.bin", [0, 255, 10])
    assert fs.read_bytes("raw.bin") == bytes([0, 255, 10])
    fs.write_bytes("raw2.bin", b"\x01\x02")
    assert (tmp_path / "raw2.bin").read_bytes() == b"\x01\x02"
    with pytest.raises(PawxTypeError):
        fs.write_bytes("bad.bin", [256])
    with pytest.raises(PawxTypeError):
        fs.write_bytes("bad.bin", "text")
    with pytest.raises(PawxTypeError):
        fs.write_text("bad.txt", b"bytes")


def test_directories(fs, tmp_path):
    fs.mkdir("a")
    fs.mkdir("b/c/d", True)
    fs.write_text("b/c/d/f.txt", "x")
    assert fs.readdir(".") == ["a", "b"]
    assert fs.exists("b/c/d/f.txt") is True
    with pytest.raises(PawxRuntimeError):
        fs.rm("b")
    fs.rm("b", True)
    fs.rm("a")
    assert fs.readdir(".") == []
    with pytest.raises(PawxTypeError, match="recursive must be a boolean"):
        fs.mkdir("x", "yes")


def test_missing_file_is_a_runtime_error(fs):
    with pytest.raises(PawxRuntimeError, match="No such file or directory"):
        fs.read_text("nope.txt")
    with pytest.raises(PawxRuntimeError):
        fs.rm("nope.txt")
    assert fs.exists("nope.txt") is False


def test_json_round_trip_through_values(fs, tmp_path):
    value = PawxObject({"name": "Trouble", "age": 3.0, "tags": ["a", True, None], "nested": PawxObject({"x": 1.5})})
    fs.write_json("cat.json", value)
    assert json.loads((tmp_path / "cat.json").read_text()) == {
        "name": "Trouble", "age": 3, "tags": ["a", True, None], "nested": {"x": 1.5},
    }
    back = fs.read_json("cat.json")
    assert isinstance(back, PawxObject)
    assert back.props["name"] == "Trouble"
    assert back.props["age"] == 3.0 and isinstance(back.props["age"], float)
    assert back.props["tags"] == ["a", True, None]
    assert back.props["nested"].props == {"x": 1.5}


def test_write_json_pretty(fs, tmp_path):
    fs.write_json("p.json", PawxObject({"a": 1.0}), True)
    assert (tmp_path / "p.json").read_text() == '{\n  "a": 1\n}'


def test_invalid_json_is_a_runtime_error(fs, tmp_path):
    (tmp_path / "broken.json").write_text("{nope")
    with pytest.raises(PawxRuntimeError, match="invalid JSON"):
        fs.read_json("broken.json")


def test_yaml_round_trip(fs, tmp_path):
    fs.write_yaml("conf.yaml", PawxObject({"name": "pawx", "workers": 4.0, "tags": ["a"]}))
    assert yaml.safe_load((tmp_path / "conf.yaml").read_text()) == {"name": "pawx", "workers": 4, "tags": ["a"]}
    back = fs.read_yaml("conf.yaml")
    assert back.props == {"name": "pawx", "workers": 4.0, "tags": ["a"]}


def test_relative_paths_resolve_against_base_dir(tmp_path):
    sub = tmp_path / "sub"
    sub.mkdir()
    fs = FsBridge(base_dir=lambda: str(sub))
    fs.write_text("here.txt", "x")
    assert (sub / "here.txt").exists()
    fs.write_text(str(tmp_path / "abs.txt"), "y")
    assert (tmp_path / "abs.txt").read_text() == "y"


def test_path_must_be_a_string(fs):
    with pytest.raises(PawxTypeError, match="path must be a string"):
        fs.read_text(42)


def test_namespace_has_async_twins(fs):
    ns = fs.namespace(lambda: None)
    for name in ("readText", "writeText", "appendText", "readBytes", "writeBytes", "exists",
                 "readdir", "mkdir", "rm", "readJson", "writeJson"):
        assert ns.has(name)
        assert ns.has(name + "Async")
    assert ns.get("readTextAsync").__name__ == "readTextAsync"


# --- from PAWX code ---

@pytest.mark.asyncio
async def test_sync_natives_from_script(runner, tmp_path):
    src = """
    Fs.writeText("a.txt", "hello");
    Fs.appendText("a.txt", "!");
    Fs.mkdir("dir/sub", true);
    [Fs.readText("a.txt"), Fs.exists("a.txt"), Fs.exists("zzz"), Fs.readdir("."), Fs.readBytes("a.txt").length]
    """
    res = await runner.handle_script(src)
    assert res.status == 'success', res.error_message
    assert res.value == ["hello!", True, False, ["a.txt", "dir"], 6]


@pytest.mark.asyncio
async def test_bytes_from_script(runner, tmp_path):
    src = """
    Fs.writeBytes("b.bin", [104, 105]);
    snuggle data = Fs.readBytes("b.bin");
    [typeOf(data), data.toArray(), data.decode(), data[0]]
    """
    res = await runner.handle_script(src)
    assert res.status == 'success', res.error_message
    assert res.value == ["bytes", [104, 105], "hi", 104]


@pytest.mark.asyncio
async def test_json_from_script(runner, tmp_path):
    src = """
    Fs.writeJson("cat.json", { name: "Trouble", age: 3, toys: ["mouse"] });
    snuggle cat = Fs.readJson("cat.json");
    [cat.name, cat.age + 1, cat.toys[0]]
    """
    res = await runner.handle_script(src)
    assert res.status == 'success', res.error_message
    assert res.value == ["Trouble", 4, "mouse"]
    assert json.loads((tmp_path / "cat.json").read_text()) == {"name": "Trouble", "age": 3, "toys": ["mouse"]}


@pytest.mark.asyncio
async def test_sync_failure_is_a_catchable_runtime_error(runner):
    src = """
    snuggle kind = null;
    try { Fs.readText("missing.txt"); } catch (e) { kind = e.name; }
    kind
    """
    res = await runner.handle_script(src)
    assert res.value == "RuntimeError"
    res = await runner.handle_script('Fs.readText("missing.txt")')
    assert res.status == 'error'
    assert "RuntimeError" in res.error_message


@pytest.mark.asyncio
async def test_async_natives_return_futures(runner, tmp_path):
    src = """
    snuggle w = Fs.writeTextAsync("async.txt", "later");
    snuggle kind = typeOf(w);
    nap w;
    [kind, nap Fs.readTextAsync("async.txt"), nap Fs.existsAsync("async.txt")]
    """
    res = await runner.handle_script(src)
    assert res.status == 'success', res.error_message
    assert res.value == ["future", "later", True]


SCENARIO = """
snuggle log = [];
purr ok -> () -> { log.push("ok"); }
purr fail -> (err) -> { log.push("fail:" + err.name); }
purr cleanup -> () -> { log.push("cleanup"); }
Fs.writeTextAsync(PATH, "x").then(() -> ok()).catch(err -> fail(err)).finally(() -> cleanup());
"""


@pytest.mark.asyncio
async def test_async_write_success_runs_ok_then_cleanup(runner, tmp_path):
    res = await runner.handle_script(SCENARIO.replace("PATH", '"out.txt"'))
    assert res.status == 'success', res.error_message
    assert (await runner.handle_script("log")).value == ["ok", "cleanup"]
    assert (tmp_path / "out.txt").read_text() == "x"


@pytest.mark.asyncio
async def test_async_write_failure_runs_fail_then_cleanup(runner, tmp_path):
    res = await runner.handle_script(SCENARIO.replace("PATH", '"no/such/dir/out.txt"'))
    assert res.status == 'success', res.error_message
    assert (await runner.handle_script("log")).value == ["fail:RuntimeError", "cleanup"]


@pytest.mark.asyncio
async def test_async_failure_message_is_human_readable(runner):
    src = """
    Fs.readTextAsync("ghost.txt").catch(e -> meow(e.message));
    """
    res = await runner.handle_script(src)
    assert res.status == 'success', res.error_message
    out = stdout(res)
    assert len(out) == 1
    assert "No such file or directory" in out[0]
    assert "ghost.txt" in out[0]


@pytest.mark.asyncio
async def test_unhandled_async_failure_fails_the_run(runner):
    res = await runner.handle_script('Fs.readTextAsync("ghost.txt");')
    assert res.status == 'error'
    assert "unhandled rejection" in res.error_message
