"""
Built-in methods of primitive values: strings, arrays, tuples, bytes,
numbers and Futures.

Each method is a plain function taking the evaluator and the receiver first;
`lookup` binds both with functools.partial so the result is an ordinary
native the evaluator can call.
"""
import functools
import re

from pawx.pawx_datatypes import PawxFunction
from pawx.pawx_errors import PawxRangeError, PawxTypeError
from pawx.pawx_future import PawxFuture
from pawx.pawx_printer import Printer, format_number

_PRINTER = Printer()


def _num(v, what):
    if isinstance(v, bool) or not isinstance(v, (int, float)):
        raise PawxTypeError(f"{what} must be a number")
    return v


def _int(v, what):
    v = _num(v, what)
    if v != v or float(v) != int(v):
        raise PawxTypeError(f"{what} must be an integer")
    return int(v)


def _str(v, what):
    if not isinstance(v, str):
        raise PawxTypeError(f"{what} must be a string")
    return v


def _slice_bounds(length, start, end):
    start = 0 if start is None else _int(start, "slice start")
    end = length if end is None else _int(end, "slice end")
    if start < 0:
        start = max(length + start, 0)
    if end < 0:
        end = max(length + end, 0)
    return min(start, length), min(end, length)


def _callable(fn, what):
    if not (isinstance(fn, PawxFunction) or callable(fn)):
        raise PawxTypeError(f"{what} expects a function, got {_PRINTER.pformat(fn)}")
    return fn


# ---------------------------------------------------------------------------
# String
# ---------------------------------------------------------------------------

def _string_len(ev, s):
    return len(s)


def _string_upper(ev, s):
    return s.upper()


def _string_lower(ev, s):
    return s.lower()


def _string_trim(ev, s):
    return s.strip()


def _string_contains(ev, s, sub):
    return _str(sub, "contains argument") in s


def _string_startsWith(ev, s, prefix):
    return s.startswith(_str(prefix, "startsWith argument"))


def _string_endsWith(ev, s, suffix):
    return s.endswith(_str(suffix, "endsWith argument"))


def _string_indexOf(ev, s, sub):
    return s.find(_str(sub, "indexOf argument"))


def _string_slice(ev, s, start=None, end=None):
    start, end = _slice_bounds(len(s), start, end)
    return s[start:end]


def _string_split(ev, s, sep=None):
    if sep is None:
        return s.split()
    if _str(sep, "split separator") == "":
        return list(s)
    return s.split(sep)


def _string_replace(ev, s, old, new):
    return s.replace(_str(old, "replace pattern"), _str(new, "replacement"))


def _string_replaceRegex(ev, s, pattern, repl):
    try:
        return re.sub(_str(pattern, "regex"), _str(repl, "replacement"), s)
    except re.error as e:
        raise PawxTypeError(f"invalid regex '{pattern}': {e}")


def _string_match(ev, s, pattern):
    try:
        found = [m.group(0) for m in re.finditer(_str(pattern, "regex"), s)]
    except re.error as e:
        raise PawxTypeError(f"invalid regex '{pattern}': {e}")
    return found or None


def _string_repeat(ev, s, count):
    n = _int(count, "repeat count")
    if n < 0:
        raise PawxRangeError("repeat count must not be negative")
    return s * n


def _string_chars(ev, s):
    return list(s)


def _string_toString(ev, s):
    return s


# ---------------------------------------------------------------------------
# Array
# ---------------------------------------------------------------------------

def _array_push(ev, arr, *items):
    arr.extend(items)
    return len(arr)


def _array_pop(ev, arr):
    return arr.pop() if arr else None


async def _array_map(ev, arr, fn):
    _callable(fn, "map")
    return [await ev.call_flexible(fn, (x, i, arr)) for i, x in enumerate(list(arr))]


async def _array_filter(ev, arr, fn):
    from pawx.pawx_interpreter import truthy
    _callable(fn, "filter")
    return [x for i, x in enumerate(list(arr)) if truthy(await ev.call_flexible(fn, (x, i, arr)))]


async def _array_find(ev, arr, fn):
    from pawx.pawx_interpreter import truthy
    _callable(fn, "find")
    for i, x in enumerate(list(arr)):
        if truthy(await ev.call_flexible(fn, (x, i, arr))):
            return x
    return None


async def _array_findIndex(ev, arr, fn):
    from pawx.pawx_interpreter import truthy
    _callable(fn, "findIndex")
    for i, x in enumerate(list(arr)):
        if truthy(await ev.call_flexible(fn, (x, i, arr))):
            return i
    return -1


async def _array_forEach(ev, arr, fn):
    _callable(fn, "forEach")
    for i, x in enumerate(list(arr)):
        await ev.call_flexible(fn, (x, i, arr))
    return None


async def _reduce(ev, arr, fn, indexed, has_init, init, name):
    _callable(fn, name)
    if not has_init:
        if not indexed:
            raise PawxTypeError(f"{name} of an empty array with no initial value")
        (_, acc), indexed = indexed[0], indexed[1:]
    else:
        acc = init
    for i, x in indexed:
        acc = await ev.call_flexible(fn, (acc, x, i, arr))
    return acc


async def _array_reduce(ev, arr, fn, *init):
    return await _reduce(ev, arr, fn, list(enumerate(arr)), bool(init), init[0] if init else None, "reduce")


async def _array_reduceRight(ev, arr, fn, *init):
    indexed = list(enumerate(arr))[::-1]
    return await _reduce(ev, arr, fn, indexed, bool(init), init[0] if init else None, "reduceRight")


async def _array_some(ev, arr, fn):
    from pawx.pawx_interpreter import truthy
    _callable(fn, "some")
    for i, x in enumerate(list(arr)):
        if truthy(await ev.call_flexible(fn, (x, i, arr))):
            return True
    return False


async def _array_every(ev, arr, fn):
    from pawx.pawx_interpreter import truthy
    _callable(fn, "every")
    for i, x in enumerate(list(arr)):
        if not truthy(await ev.call_flexible(fn, (x, i, arr))):
            return False
    return True


def _seq_includes(ev, seq, value):
    from pawx.pawx_interpreter import strict_equals
    return any(strict_equals(x, value) for x in seq)


def _seq_indexOf(ev, seq, value):
    from pawx.pawx_interpreter import strict_equals
    for i, x in enumerate(seq):
        if strict_equals(x, value):
            return i
    return -1


def _array_join(ev, arr, sep=","):
    return _str(sep, "join separator").join(_PRINTER.display(x) for x in arr)


def _array_slice(ev, arr, start=None, end=None):
    start, end = _slice_bounds(len(arr), start, end)
    return arr[start:end]


def _array_concat(ev, arr, *others):
    out = list(arr)
    for other in others:
        if isinstance(other, (list, tuple)):
            out.extend(other)
        else:
            out.append(other)
    return out


def _array_reverse(ev, arr):
    arr.reverse()
    return arr


async def _merge_sort(items, compare):
    if len(items) <= 1:
        return items
    mid = len(items) // 2
    left = await _merge_sort(items[:mid], compare)
    right = await _merge_sort(items[mid:], compare)
    out = []
    i = j = 0
    while i < len(left) and j < len(right):
        if await compare(right[j], left[i]) < 0:
            out.append(right[j])
            j += 1
        else:
            out.append(left[i])
            i += 1
    out.extend(left[i:])
    out.extend(right[j:])
    return out


async def _array_sort(ev, arr, cmp=None):
    from pawx.pawx_interpreter import is_number
    if cmp is None:
        if all(is_number(x) for x in arr) or all(isinstance(x, str) for x in arr):
            arr.sort()
            return arr
        raise PawxTypeError("sort() without a comparator needs all numbers or all strings")
    _callable(cmp, "sort")

    async def compare(a, b):
        return _num(await ev.call_flexible(cmp, (a, b)), "sort comparator result")
    arr[:] = await _merge_sort(list(arr), compare)
    return arr


def _display(ev, value):
    return _PRINTER.display(value)


# ---------------------------------------------------------------------------
# Tuple, Bytes, Number
# ---------------------------------------------------------------------------

def _tuple_toArray(ev, tup):
    return list(tup)


def _bytes_toArray(ev, data):
    return list(data)


def _bytes_decode(ev, data, encoding="utf8"):
    from pawx.pawx_serialize import decode_bytes
    return decode_bytes(data, encoding)


def _number_toFixed(ev, n, digits=0):
    d = _int(digits, "toFixed digits")
    if not 0 <= d <= 100:
        raise PawxRangeError("toFixed digits must be between 0 and 100")
    return f"{n:.{d}f}"


def _number_toString(ev, n):
    return format_number(n)


# ---------------------------------------------------------------------------
# Future
# ---------------------------------------------------------------------------

def _future_then(ev, future, on_fulfilled=None, on_rejected=None):
    if on_fulfilled is not None:
        _callable(on_fulfilled, "then")
    if on_rejected is not None:
        _callable(on_rejected, "then")
    return future.then(on_fulfilled, on_rejected)


def _future_catch(ev, future, on_rejected):
    return future.catch(_callable(on_rejected, "catch"))


def _future_finally(ev, future, on_settled):
    return future.finally_(_callable(on_settled, "finally"))


STRING_METHODS = {
    "len": _string_len,
    "upper": _string_upper,
    "lower": _string_lower,
    "trim": _string_trim,
    "contains": _string_contains,
    "startsWith": _string_startsWith,
    "endsWith": _string_endsWith,
    "indexOf": _string_indexOf,
    "slice": _string_slice,
    "split": _string_split,
    "replace": _string_replace,
    "replaceRegex": _string_replaceRegex,
    "match": _string_match,
    "repeat": _string_repeat,
    "chars": _string_chars,
    "toString": _string_toString,
}

ARRAY_METHODS = {
    "push": _array_push,
    "pop": _array_pop,
    "map": _array_map,
    "filter": _array_filter,
    "find": _array_find,
    "findIndex": _array_findIndex,
    "forEach": _array_forEach,
    "reduce": _array_reduce,
    "reduceRight": _array_reduceRight,
    "some": _array_some,
    "every": _array_every,
    "includes": _seq_includes,
    "indexOf": _seq_indexOf,
    "join": _array_join,
    "slice": _array_slice,
    "concat": _array_concat,
    "reverse": _array_reverse,
    "sort": _array_sort,
    "toString": _display,
}

TUPLE_METHODS = {
    "includes": _seq_includes,
    "indexOf": _seq_indexOf,
    "toArray": _tuple_toArray,
    "toString": _display,
}

BYTES_METHODS = {
    "toArray": _bytes_toArray,
    "decode": _bytes_decode,
}

NUMBER_METHODS = {
    "toFixed": _number_toFixed,
    "toString": _number_toString,
}

FUTURE_METHODS = {
    "then": _future_then,
    "catch": _future_catch,
    "finally": _future_finally,
}


def lookup(ev, obj, name: str):
    """Returns a primitive's property or bound method, or None if it has none."""
    if isinstance(obj, bool):
        return None
    match obj:
        case str():
            table = STRING_METHODS
        case list():
            table = ARRAY_METHODS
        case tuple():
            table = TUPLE_METHODS
        case bytes():
            table = BYTES_METHODS
        case int() | float():
            table = NUMBER_METHODS
        case PawxFuture():
            table = FUTURE_METHODS
        case _:
            return None
    if name == "length" and isinstance(obj, (str, list, tuple, bytes)):
        return len(obj)
    method = table.get(name)
    if method is None:
        return None
    return functools.partial(method, ev, obj)
