"""Statement and expression tree produced by storylua.parser."""
from dataclasses import dataclass, field
from typing import Any, List, Optional, Tuple


# ── expressions ──────────────────────────────────────────────────────────────

@dataclass
class Literal:
    value: Any          # None, bool, float or str


@dataclass
class Name:
    name: str


@dataclass
class Field:
    """Dotted access: ``obj.name``."""
    obj: Any
    name: str


@dataclass
class Index:
    """Bracket access: ``obj[key]``."""
    obj: Any
    key: Any


@dataclass
class Call:
    callee: Any
    args: List[Any] = field(default_factory=list)


@dataclass
class BinOp:
    op: str
    left: Any
    right: Any


@dataclass
class Logical:
    op: str             # 'and' | 'or'
    left: Any
    right: Any


@dataclass
class UnaryOp:
    op: str             # 'not' | '-' | '#'
    operand: Any


@dataclass
class TableConstructor:
    # (key expression or None for positional, value expression)
    items: List[Tuple[Optional[Any], Any]] = field(default_factory=list)


# ── statements ───────────────────────────────────────────────────────────────

@dataclass
class Block:
    statements: List[Any] = field(default_factory=list)


@dataclass
class Assign:
    target: Any         # Name | Field | Index
    value: Any


@dataclass
class CompoundAssign:
    target: Any
    op: str             # '+' | '-' | '*' | '/'
    value: Any


@dataclass
class ExprStatement:
    """A call (or any bare expression) evaluated for its side effects."""
    expr: Any


@dataclass
class If:
    # condition is None for the trailing ``else`` branch
    branches: List[Tuple[Optional[Any], Block]] = field(default_factory=list)


@dataclass
class While:
    condition: Any
    body: Block


@dataclass
class NumericFor:
    var: str
    start: Any
    stop: Any
    step: Optional[Any]
    body: Block


@dataclass
class Repeat:
    body: Block
    condition: Any


@dataclass
class FunctionDef:
    name: str
    params: List[str]
    body: Block
    source: str         # body text exactly as written


@dataclass
class Return:
    value: Optional[Any] = None


@dataclass
class Break:
    pass


def dotted_name(node) -> Optional[str]:
    """Return ``a.b.c`` for a Name/Field chain, or None for anything else."""
    if isinstance(node, Name):
        return node.name
    if isinstance(node, Field):
        base = dotted_name(node.obj)
        if base is not None:
            return f'{base}.{node.name}'
    return None
