"""Execution state: contexts, function registry entries and results."""
import copy
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Union

from storylua.nodes import Block
from storylua.runtime.values import LuaValue, nil


@dataclass
class LuaFunction:
    """A user-defined function: parameter names plus its body."""
    name: str
    params: List[str]
    source: str             # body text as written
    body: Block             # parsed once, at definition


@dataclass
class Builtin:
    """A standard-library entry implemented in Python."""
    name: str
    impl: Callable          # impl(engine, context, args) -> LuaValue


FunctionEntry = Union[LuaFunction, Builtin]


@dataclass
class ExecutionContext:
    variables: Dict[str, LuaValue] = field(default_factory=dict)
    functions: Dict[str, FunctionEntry] = field(default_factory=dict)
    output: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    call_depth: int = 0

    def working_copy(self) -> 'ExecutionContext':
        """Snapshot for one execute() call; output and errors start empty.

        Variables are deep-copied so a failed call cannot leak table
        mutations into the global context.
        """
        return ExecutionContext(
            variables=copy.deepcopy(self.variables),
            functions=dict(self.functions),
        )

    def commit(self, work: 'ExecutionContext') -> None:
        self.variables.update(work.variables)
        self.functions.update(work.functions)


# ── completions ──────────────────────────────────────────────────────────────

NORMAL = 'normal'
RETURN = 'return'
BREAK = 'break'


@dataclass
class Completion:
    """Outcome of executing a statement or block."""
    kind: str = NORMAL
    value: Optional[LuaValue] = None

    @property
    def abrupt(self) -> bool:
        return self.kind != NORMAL


NORMAL_COMPLETION = Completion()
BREAK_COMPLETION = Completion(BREAK)


def return_completion(value: Optional[LuaValue] = None) -> Completion:
    return Completion(RETURN, value if value is not None else nil())


# ── results ──────────────────────────────────────────────────────────────────

@dataclass
class ExecutionResult:
    success: bool
    output: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    return_value: Any = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'success': self.success,
            'output': list(self.output),
            'errors': list(self.errors),
            'return_value': self.return_value,
        }
