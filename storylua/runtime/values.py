"""Tagged value model shared by the storylua runtime and standard library.

Every script value is a ``LuaValue`` with exactly one active type:

    nil       value is None
    boolean   value is a bool
    number    value is a float
    string    value is a str
    table     value is a dict mapping *string* keys to LuaValue
    function  value is the function's name in the registry

Array-style tables keep their elements under "1", "2", ... (1-based).
"""
import math
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Dict

NIL = 'nil'
BOOLEAN = 'boolean'
NUMBER = 'number'
STRING = 'string'
TABLE = 'table'
FUNCTION = 'function'


@dataclass(eq=False)
class LuaValue:
    type: str
    value: Any = None

    def __eq__(self, other):
        if not isinstance(other, LuaValue):
            return NotImplemented
        return raw_equals(self, other)

    __hash__ = None

    def __repr__(self):
        if self.type == TABLE:
            return f'LuaValue(table, {len(self.value)} keys)'
        return f'LuaValue({self.type}, {self.value!r})'


# ── constructors ─────────────────────────────────────────────────────────────

def nil() -> LuaValue:
    return LuaValue(NIL, None)


def boolean(flag) -> LuaValue:
    return LuaValue(BOOLEAN, bool(flag))


def number(n) -> LuaValue:
    return LuaValue(NUMBER, float(n))


def string(s: str) -> LuaValue:
    return LuaValue(STRING, s)


def table(entries: Dict[str, LuaValue] = None) -> LuaValue:
    return LuaValue(TABLE, {} if entries is None else entries)


def function(name: str) -> LuaValue:
    return LuaValue(FUNCTION, name)


# ── host conversion ──────────────────────────────────────────────────────────

def to_value(host: Any) -> LuaValue:
    """Convert a host (Python) value into a LuaValue."""
    if isinstance(host, LuaValue):
        return host
    if host is None:
        return nil()
    if isinstance(host, bool):
        return boolean(host)
    if isinstance(host, (int, float)):
        return number(host)
    if isinstance(host, str):
        return string(host)
    if isinstance(host, Mapping):
        return table({table_key(to_value(k)): to_value(v) for k, v in host.items()})
    if isinstance(host, (list, tuple)):
        return table({str(i): to_value(v) for i, v in enumerate(host, 1)})
    raise TypeError(f'cannot convert {type(host).__name__} to a script value')


def from_value(value: LuaValue) -> Any:
    """Convert a LuaValue back to a host value. Tables unwrap recursively."""
    if value.type == NIL:
        return None
    if value.type == NUMBER:
        n = value.value
        if math.isfinite(n) and n.is_integer():
            return int(n)
        return n
    if value.type == TABLE:
        return {k: from_value(v) for k, v in value.value.items()}
    return value.value


# ── helpers ──────────────────────────────────────────────────────────────────

def is_truthy(value: LuaValue) -> bool:
    """Only nil and false are falsy."""
    if value.type == NIL:
        return False
    if value.type == BOOLEAN:
        return value.value
    return True


def format_number(n: float) -> str:
    if math.isnan(n):
        return 'nan'
    if math.isinf(n):
        return 'inf' if n > 0 else '-inf'
    if n.is_integer() and abs(n) < 1e16:
        return str(int(n))
    return repr(n)


def tostring(value: LuaValue) -> str:
    if value.type == NIL:
        return 'nil'
    if value.type == BOOLEAN:
        return 'true' if value.value else 'false'
    if value.type == NUMBER:
        return format_number(value.value)
    if value.type == STRING:
        return value.value
    if value.type == TABLE:
        return 'table'
    return 'function'


def type_name(value: LuaValue) -> str:
    return value.type


def raw_equals(a: LuaValue, b: LuaValue) -> bool:
    """Strict equality: same type and same value (tables by identity)."""
    if a.type != b.type:
        return False
    if a.type == TABLE:
        return a.value is b.value
    return a.value == b.value


def table_key(key: LuaValue) -> str:
    """Table keys are strings; numbers use their printed form (2 -> "2")."""
    if key.type == STRING:
        return key.value
    return tostring(key)


def array_length(entries: Dict[str, LuaValue]) -> int:
    """Border of the array part: highest n with keys "1".."n" all present."""
    n = 0
    while str(n + 1) in entries and entries[str(n + 1)].type != NIL:
        n += 1
    return n
