from __future__ import annotations

import functools
import os
import shutil
from typing import Any, Callable, Optional

from pawx.pawx_errors import PawxError, PawxRuntimeError, PawxTypeError
from pawx.pawx_serialize import bytes_from_array, decode_bytes, encode_text, parse_text, serialize
from pawx.pawx_future import describe_host_error


def host_call(fn):
    """Translates host failures (OSError and friends) into PAWX RuntimeErrors."""
    @functools.wraps(fn)
    def wrapper(*args, **kwargs):
        try:
            return fn(*args, **kwargs)
        except PawxError:
            raise
        except OSError as e:
            raise PawxRuntimeError(describe_host_error(e))
    return wrapper


def _flag(value, what) -> bool:
    if not isinstance(value, bool):
        raise PawxTypeError(f"{what} must be a boolean")
    return value


class FsBridge:
    """Filesystem natives. Relative paths resolve against `base_dir()` when it is set."""

    def __init__(self, base_dir: Optional[Callable[[], Optional[str]]] = None):
        self._base_dir = base_dir or (lambda: None)

    def resolve(self, path) -> str:
        if not isinstance(path, str):
            raise PawxTypeError("path must be a string")
        path = os.path.expanduser(path)
        base = self._base_dir()
        if os.path.isabs(path) or not base:
            return path
        return os.path.join(base, path)

    # --- text ---

    @host_call
    def read_text(self, path, encoding=None) -> str:
        with open(self.resolve(path), "rb") as f:
            data = f.read()
        return decode_bytes(data, encoding)

    @host_call
    def write_text(self, path, text, encoding=None):
        if not isinstance(text, str):
            raise PawxTypeError("writeText expects a string")
        data = encode_text(text, encoding)
        with open(self.resolve(path), "wb") as f:
            f.write(data)

    @host_call
    def append_text(self, path, text, encoding=None):
        if not isinstance(text, str):
            raise PawxTypeError("appendText expects a string")
        data = encode_text(text, encoding)
        with open(self.resolve(path), "ab") as f:
            f.write(data)

    # --- bytes ---

    @host_call
    def read_bytes(self, path) -> bytes:
        with open(self.resolve(path), "rb") as f:
            return f.read()

    @host_call
    def write_bytes(self, path, data):
        if isinstance(data, list):
            data = bytes_from_array(data)
        if not isinstance(data, bytes):
            raise PawxTypeError("writeBytes expects bytes or an array of integers 0..255")
        with open(self.resolve(path), "wb") as f:
            f.write(data)

    # --- directories ---

    @host_call
    def exists(self, path) -> bool:
        return os.path.exists(self.resolve(path))

    @host_call
    def readdir(self, path) -> list:
        return sorted(os.listdir(self.resolve(path)))

    @host_call
    def mkdir(self, path, recursive=False):
        target = self.resolve(path)
        if _flag(recursive, "recursive"):
            os.makedirs(target, exist_ok=True)
        else:
            os.mkdir(target)

    @host_call
    def rm(self, path, recursive=False):
        target = self.resolve(path)
        if os.path.isdir(target) and not os.path.islink(target):
            if _flag(recursive, "recursive"):
                shutil.rmtree(target)
            else:
                os.rmdir(target)
        else:
            os.remove(target)

    # --- structured data ---

    def read_json(self, path, encoding=None) -> Any:
        return parse_text(self.read_text(path, encoding), "json")

    def write_json(self, path, value, pretty=False, encoding=None):
        text = serialize(value, fmt="json", pretty=_flag(pretty, "pretty"))
        self.write_text(path, text, encoding)

    def read_yaml(self, path) -> Any:
        return parse_text(self.read_text(path), "yaml")

    def write_yaml(self, path, value):
        self.write_text(path, serialize(value, fmt="yaml"))

    # --- modules ---

    @host_call
    def load_source(self, path: str) -> str:
        """Reads a module's source for `tap`."""
        if not os.path.isfile(path):
            raise PawxRuntimeError(f"module not found: {path}")
        with open(path, "r", encoding="utf-8") as f:
            return f.read()

    def exports(self):
        """Name -> sync native, in the order the namespace lists them."""
        return {
            "readText": self.read_text,
            "writeText": self.write_text,
            "appendText": self.append_text,
            "readBytes": self.read_bytes,
            "writeBytes": self.write_bytes,
            "exists": self.exists,
            "readdir": self.readdir,
            "mkdir": self.mkdir,
            "rm": self.rm,
            "readJson": self.read_json,
            "writeJson": self.write_json,
            "readYaml": self.read_yaml,
            "writeYaml": self.write_yaml,
        }

    def namespace(self, scheduler_ref: Callable[[], Any]):
        """Builds the `Fs` object: every sync native plus an ...Async twin returning a Future."""
        from pawx.pawx_datatypes import PawxObject
        ns = PawxObject()
        for name, fn in self.exports().items():
            ns.set(name, fn)
            ns.set(name + "Async", _async_twin(name, fn, scheduler_ref))
        return ns


def _async_twin(name: str, fn: Callable, scheduler_ref: Callable[[], Any]):
    @functools.wraps(fn)
    def run_async(*args):
        return scheduler_ref().run_in_worker(lambda: fn(*args), label=f"Fs.{name}Async")
    run_async.__name__ = name + "Async"
    return run_async
