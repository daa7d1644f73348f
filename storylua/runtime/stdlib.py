"""Built-in functions resolved by name during call evaluation.

Each entry has the signature ``impl(engine, ctx, args) -> LuaValue`` where
``args`` is the list of already evaluated argument values.
"""
import functools
import logging
import math
import re
from typing import Callable, Dict, List

from storylua.errors import LuaRuntimeError
from storylua.runtime.context import Builtin
from storylua.runtime.values import (
    FUNCTION, NIL, NUMBER, STRING, TABLE, LuaValue,
    array_length, boolean, format_number, is_truthy, nil, number, raw_equals, string,
    tostring,
)

logger = logging.getLogger(__name__)

STANDARD_LIBRARY: Dict[str, Callable] = {}

# Read-only library fields, visible as `math.pi` while `math` is unset.
CONSTANTS = {
    'math.pi': math.pi,
    'math.huge': math.inf,
}


def builtin(name: str):
    def register(fn):
        STANDARD_LIBRARY[name] = fn
        return fn
    return register


def install(functions: Dict[str, object]) -> None:
    """Add every standard-library entry to a function registry."""
    for name, impl in STANDARD_LIBRARY.items():
        functions[name] = Builtin(name, impl)


# ── argument checking ────────────────────────────────────────────────────────

def _short(fname: str) -> str:
    return fname.rsplit('.', 1)[-1]


def _bad_argument(fname: str, idx: int, expected: str, args: List[LuaValue]):
    got = args[idx].type if idx < len(args) else 'no value'
    return LuaRuntimeError(
        f"bad argument #{idx + 1} to '{_short(fname)}' ({expected} expected, got {got})"
    )


def _arg(args: List[LuaValue], idx: int) -> LuaValue:
    return args[idx] if idx < len(args) else nil()


def _check_number(fname: str, args: List[LuaValue], idx: int) -> float:
    if idx < len(args):
        value = args[idx]
        if value.type == NUMBER:
            return value.value
        if value.type == STRING:
            converted = _str_to_number(value.value)
            if converted is not None:
                return converted
    raise _bad_argument(fname, idx, 'number', args)


def _check_int(fname: str, args: List[LuaValue], idx: int) -> int:
    n = _check_number(fname, args, idx)
    if not n.is_integer():
        raise LuaRuntimeError(
            f"bad argument #{idx + 1} to '{_short(fname)}' (number has no integer representation)"
        )
    return int(n)


def _opt_int(fname: str, args: List[LuaValue], idx: int, default: int) -> int:
    if idx >= len(args) or args[idx].type == NIL:
        return default
    return _check_int(fname, args, idx)


def _check_string(fname: str, args: List[LuaValue], idx: int) -> str:
    if idx < len(args):
        value = args[idx]
        if value.type == STRING:
            return value.value
        if value.type == NUMBER:
            return format_number(value.value)
    raise _bad_argument(fname, idx, 'string', args)


def _check_table(fname: str, args: List[LuaValue], idx: int) -> dict:
    if idx < len(args) and args[idx].type == TABLE:
        return args[idx].value
    raise _bad_argument(fname, idx, 'table', args)


def _str_to_number(text: str):
    text = text.strip()
    try:
        if text[:2].lower() == '0x' or text[:3].lower() == '-0x':
            return float(int(text, 16))
        value = float(text)
    except ValueError:
        return None
    except OverflowError:
        return -math.inf if text.startswith('-') else math.inf
    if text.lower() in ('inf', '-inf', '+inf', 'infinity', 'nan'):
        return None
    return value


# ── basic functions ──────────────────────────────────────────────────────────

@builtin('print')
def _print(engine, ctx, args):
    ctx.output.append('\t'.join(tostring(a) for a in args))
    return nil()


@builtin('type')
def _type(engine, ctx, args):
    if not args:
        raise _bad_argument('type', 0, 'value', args)
    return string(args[0].type)


@builtin('tostring')
def _tostring(engine, ctx, args):
    return string(tostring(_arg(args, 0)))


@builtin('tonumber')
def _tonumber(engine, ctx, args):
    value = _arg(args, 0)
    base = _opt_int('tonumber', args, 1, 10)
    if value.type == NUMBER and base == 10:
        return value
    if value.type != STRING:
        return nil()
    if base == 10:
        converted = _str_to_number(value.value)
        return nil() if converted is None else number(converted)
    try:
        return number(int(value.value.strip(), base))
    except ValueError:
        return nil()


@builtin('assert')
def _assert(engine, ctx, args):
    if not args or not is_truthy(args[0]):
        message = _arg(args, 1)
        raise LuaRuntimeError(tostring(message) if message.type != NIL else 'assertion failed!')
    return args[0]


@builtin('error')
def _error(engine, ctx, args):
    message = _arg(args, 0)
    raise LuaRuntimeError(tostring(message) if message.type != NIL else 'error')


@builtin('rawequal')
def _rawequal(engine, ctx, args):
    if len(args) < 2:
        raise _bad_argument('rawequal', len(args), 'value', args)
    return boolean(raw_equals(args[0], args[1]))


@builtin('select')
def _select(engine, ctx, args):
    # only one value comes back, so select(n, ...) yields the n-th extra argument
    rest = args[1:]
    if args and args[0].type == STRING and args[0].value == '#':
        return number(len(rest))
    n = _check_int('select', args, 0)
    if n < 0:
        n += len(rest) + 1
        if n < 1:
            raise LuaRuntimeError("bad argument #1 to 'select' (index out of range)")
    elif n == 0:
        raise LuaRuntimeError("bad argument #1 to 'select' (index out of range)")
    return rest[n - 1] if n <= len(rest) else nil()


# ── math ─────────────────────────────────────────────────────────────────────

@builtin('math.random')
def _math_random(engine, ctx, args):
    if not args:
        return number(engine.random.random())
    if len(args) == 1:
        low, high = 1, _check_int('math.random', args, 0)
    else:
        low = _check_int('math.random', args, 0)
        high = _check_int('math.random', args, 1)
    if low > high:
        raise LuaRuntimeError(
            f"bad argument #{len(args)} to 'random' (interval is empty)"
        )
    return number(engine.random.randint(low, high))


@builtin('math.randomseed')
def _math_randomseed(engine, ctx, args):
    seed = _check_number('math.randomseed', args, 0)
    logger.debug('math.randomseed(%s)', format_number(seed))
    engine.random.seed(seed)
    return nil()


@builtin('math.floor')
def _math_floor(engine, ctx, args):
    n = _check_number('math.floor', args, 0)
    return number(math.floor(n)) if math.isfinite(n) else number(n)


@builtin('math.ceil')
def _math_ceil(engine, ctx, args):
    n = _check_number('math.ceil', args, 0)
    return number(math.ceil(n)) if math.isfinite(n) else number(n)


@builtin('math.abs')
def _math_abs(engine, ctx, args):
    return number(abs(_check_number('math.abs', args, 0)))


@builtin('math.sqrt')
def _math_sqrt(engine, ctx, args):
    n = _check_number('math.sqrt', args, 0)
    return number(math.sqrt(n) if n >= 0 else math.nan)


@builtin('math.pow')
def _math_pow(engine, ctx, args):
    base = _check_number('math.pow', args, 0)
    exp = _check_number('math.pow', args, 1)
    try:
        return number(math.pow(base, exp))
    except (OverflowError, ValueError):
        return number(math.nan if base < 0 else math.inf)


@builtin('math.min')
def _math_min(engine, ctx, args):
    values = [_check_number('math.min', args, i) for i in range(max(len(args), 1))]
    return number(min(values))


@builtin('math.max')
def _math_max(engine, ctx, args):
    values = [_check_number('math.max', args, i) for i in range(max(len(args), 1))]
    return number(max(values))


def _float_op(fn, *operands) -> float:
    """Apply a math function the way C does: overflow is inf, domain errors are nan."""
    try:
        return fn(*operands)
    except (OverflowError, ZeroDivisionError):
        return math.inf
    except ValueError:
        return math.nan


def _unary_math(name: str, fn):
    def impl(engine, ctx, args):
        return number(_float_op(fn, _check_number(name, args, 0)))
    STANDARD_LIBRARY[name] = impl


_unary_math('math.sin', math.sin)
_unary_math('math.cos', math.cos)
_unary_math('math.tan', math.tan)
_unary_math('math.exp', math.exp)
_unary_math('math.deg', math.degrees)
_unary_math('math.rad', math.radians)


@builtin('math.log')
def _math_log(engine, ctx, args):
    x = _check_number('math.log', args, 0)
    if x == 0:
        return number(-math.inf)
    if len(args) > 1 and args[1].type != NIL:
        base = _check_number('math.log', args, 1)
        return number(_float_op(math.log, x, base))
    return number(_float_op(math.log, x))


@builtin('math.fmod')
def _math_fmod(engine, ctx, args):
    a = _check_number('math.fmod', args, 0)
    b = _check_number('math.fmod', args, 1)
    if b == 0:
        raise LuaRuntimeError("bad argument #2 to 'fmod' (zero)")
    return number(_float_op(math.fmod, a, b))


@builtin('math.modf')
def _math_modf(engine, ctx, args):
    # integral part only; the fractional part would need a second return value
    x = _check_number('math.modf', args, 0)
    if math.isinf(x) or math.isnan(x):
        return number(x)
    return number(math.trunc(x))


# ── string ───────────────────────────────────────────────────────────────────

@builtin('string.upper')
def _string_upper(engine, ctx, args):
    return string(_check_string('string.upper', args, 0).upper())


@builtin('string.lower')
def _string_lower(engine, ctx, args):
    return string(_check_string('string.lower', args, 0).lower())


@builtin('string.len')
def _string_len(engine, ctx, args):
    return number(len(_check_string('string.len', args, 0)))


@builtin('string.sub')
def _string_sub(engine, ctx, args):
    s = _check_string('string.sub', args, 0)
    i = _opt_int('string.sub', args, 1, 1)
    j = _opt_int('string.sub', args, 2, -1)
    length = len(s)
    if i < 0:
        i = max(length + i + 1, 1)
    elif i == 0:
        i = 1
    if j < 0:
        j = length + j + 1
    elif j > length:
        j = length
    return string(s[i - 1:j] if i <= j else '')


@builtin('string.rep')
def _string_rep(engine, ctx, args):
    s = _check_string('string.rep', args, 0)
    n = _check_int('string.rep', args, 1)
    sep = _check_string('string.rep', args, 2) if len(args) > 2 else ''
    if n <= 0:
        return string('')
    return string(sep.join([s] * n))


@builtin('string.reverse')
def _string_reverse(engine, ctx, args):
    return string(_check_string('string.reverse', args, 0)[::-1])


@builtin('string.char')
def _string_char(engine, ctx, args):
    chars = []
    for idx in range(len(args)):
        code = _check_int('string.char', args, idx)
        if not 0 <= code <= 255:
            raise LuaRuntimeError(f"bad argument #{idx + 1} to 'char' (value out of range)")
        chars.append(chr(code))
    return string(''.join(chars))


@builtin('string.byte')
def _string_byte(engine, ctx, args):
    s = _check_string('string.byte', args, 0)
    i = _opt_int('string.byte', args, 1, 1)
    if i < 0:
        i += len(s) + 1
    if i < 1 or i > len(s):
        return nil()
    return number(ord(s[i - 1]))


@builtin('string.find')
def _string_find(engine, ctx, args):
    """Plain substring search; returns the 1-based start index or nil.

    Patterns are matched literally whatever the ``plain`` argument says.
    """
    s = _check_string('string.find', args, 0)
    needle = _check_string('string.find', args, 1)
    init = _opt_int('string.find', args, 2, 1)
    if init < 0:
        init = max(len(s) + init + 1, 1)
    elif init == 0:
        init = 1
    if init > len(s) + 1:
        return nil()
    idx = s.find(needle, init - 1)
    return nil() if idx == -1 else number(idx + 1)


_FORMAT_SPEC = re.compile(r'%([-+ #0]*)(\d*)(?:\.(\d+))?([diouxXeEfgGcsq%])')


@builtin('string.format')
def _string_format(engine, ctx, args):
    fmt = _check_string('string.format', args, 0)
    argi = 1

    def convert(m):
        nonlocal argi
        flags, width, precision, conv = m.groups()
        if conv == '%':
            return '%'
        idx = argi
        argi += 1
        if idx >= len(args):
            raise LuaRuntimeError(f"bad argument #{idx + 1} to 'format' (no value)")
        spec = '%' + flags + width + ('.' + precision if precision is not None else '')
        if conv in 'diouxX':
            n = _check_number('string.format', args, idx)
            if not n.is_integer():
                raise LuaRuntimeError(
                    f"bad argument #{idx + 1} to 'format' (number has no integer representation)"
                )
            return (spec + ('d' if conv == 'i' else conv)) % int(n)
        if conv in 'eEfgG':
            return (spec + conv) % _check_number('string.format', args, idx)
        if conv == 'c':
            return chr(_check_int('string.format', args, idx))
        if conv == 'q':
            text = tostring(args[idx])
            escaped = text.replace('\\', '\\\\').replace('"', '\\"').replace('\n', '\\n')
            return f'"{escaped}"'
        return (spec + 's') % tostring(args[idx])

    return string(_FORMAT_SPEC.sub(convert, fmt))


# ── table ────────────────────────────────────────────────────────────────────

@builtin('table.insert')
def _table_insert(engine, ctx, args):
    entries = _check_table('table.insert', args, 0)
    n = array_length(entries)
    if len(args) == 2:
        entries[str(n + 1)] = args[1]
        return nil()
    if len(args) != 3:
        raise LuaRuntimeError("wrong number of arguments to 'insert'")
    pos = _check_int('table.insert', args, 1)
    if pos < 1 or pos > n + 1:
        raise LuaRuntimeError("bad argument #2 to 'insert' (position out of bounds)")
    for k in range(n, pos - 1, -1):
        entries[str(k + 1)] = entries[str(k)]
    entries[str(pos)] = args[2]
    return nil()


@builtin('table.remove')
def _table_remove(engine, ctx, args):
    entries = _check_table('table.remove', args, 0)
    n = array_length(entries)
    if n == 0 and len(args) < 2:
        return nil()
    pos = _opt_int('table.remove', args, 1, n)
    if pos < 1 or pos > n + 1:
        raise LuaRuntimeError("bad argument #2 to 'remove' (position out of bounds)")
    removed = entries.get(str(pos), nil())
    for k in range(pos, n):
        entries[str(k)] = entries[str(k + 1)]
    entries.pop(str(max(n, pos)), None)
    return removed


@builtin('table.concat')
def _table_concat(engine, ctx, args):
    entries = _check_table('table.concat', args, 0)
    sep = _check_string('table.concat', args, 1) if len(args) > 1 and args[1].type != NIL else ''
    i = _opt_int('table.concat', args, 2, 1)
    j = _opt_int('table.concat', args, 3, array_length(entries))
    parts = []
    for k in range(i, j + 1):
        value = entries.get(str(k), nil())
        if value.type not in (STRING, NUMBER):
            raise LuaRuntimeError(
                f"invalid value (at index {k}) in table for 'concat'"
            )
        parts.append(tostring(value))
    return string(sep.join(parts))


@builtin('table.sort')
def _table_sort(engine, ctx, args):
    entries = _check_table('table.sort', args, 0)
    n = array_length(entries)
    values = [entries[str(k)] for k in range(1, n + 1)]
    comparator = args[1] if len(args) > 1 and args[1].type != NIL else None

    if comparator is not None:
        if comparator.type != FUNCTION:
            raise _bad_argument('table.sort', 1, 'function', args)

        def less(a, b):
            return is_truthy(engine.call_function(ctx, comparator.value, [a, b]))
    else:
        def less(a, b):
            if a.type == b.type and a.type in (NUMBER, STRING):
                return a.value < b.value
            raise LuaRuntimeError(f'attempt to compare {a.type} with {b.type}')

    def compare(a, b):
        if less(a, b):
            return -1
        if less(b, a):
            return 1
        return 0

    values.sort(key=functools.cmp_to_key(compare))
    for k, value in enumerate(values, 1):
        entries[str(k)] = value
    return nil()


__all__ = ['STANDARD_LIBRARY', 'CONSTANTS', 'install', 'builtin']
