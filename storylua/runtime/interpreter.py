"""storylua engine: executes Lua-subset scripts for story previews.

Supported constructs
--------------------
- Values        : nil, booleans, numbers, strings, tables, functions
- Assignment    : x = <expr>,  t.k = <expr>,  t[k] = <expr>,  +=  -=  *=  /=
- Control flow  : if / elseif / else,  while,  numeric for,  repeat / until,  break
- Functions     : function name(params) ... end  +  return
- Operators     : or and not  == ~= != === !== < <= > >=  ..  + - * / % ^  #
- Builtins      : print, type, tostring, tonumber, assert, error,
                  math.*, string.*, table.*  (see storylua.runtime.stdlib)

The engine keeps one global context. Each ``execute`` call runs on a working
copy and commits it back only when the call succeeds. There is no lexical
scoping: function parameters are bound in the same flat variable namespace
as top-level code.
"""
import logging
import math
import random
from typing import Any, Dict, List, Optional

from storylua import nodes
from storylua.errors import (
    EvaluationError, IterationLimitError, LuaError, LuaRuntimeError,
    ParseError, UnknownFunctionError,
)
from storylua.parser import Segment, parse_chunk, parse_expression, split_statements
from storylua.runtime import stdlib
from storylua.runtime.context import (
    BREAK, BREAK_COMPLETION, NORMAL_COMPLETION, RETURN,
    Builtin, Completion, ExecutionContext, ExecutionResult, LuaFunction,
    return_completion,
)
from storylua.runtime.values import (
    FUNCTION, NIL, NUMBER, STRING, TABLE, LuaValue,
    array_length, boolean, from_value, function, is_truthy, nil, number,
    raw_equals, string, table, table_key, to_value, tostring,
)

logger = logging.getLogger(__name__)

MAX_ITERATIONS = 10_000
MAX_CALL_DEPTH = 100

_ARITH_ERRORS = {
    '-': 'Cannot subtract non-numbers',
    '*': 'Cannot multiply non-numbers',
    '/': 'Cannot divide non-numbers',
    '%': 'Cannot modulo non-numbers',
    '^': 'Cannot exponentiate non-numbers',
}


class LuaEngine:
    """Evaluate and execute storylua scripts against persistent state."""

    def __init__(self, max_iterations: int = MAX_ITERATIONS, seed: Optional[int] = None):
        self.max_iterations = max_iterations
        self.random = random.Random(seed)
        self.global_context = self._fresh_context()

    @staticmethod
    def _fresh_context() -> ExecutionContext:
        ctx = ExecutionContext()
        stdlib.install(ctx.functions)
        return ctx

    # ── public API ───────────────────────────────────────────────────────────

    def execute(self, source: str) -> ExecutionResult:
        """Run a script. Variables are committed only if no error occurred."""
        work = self.global_context.working_copy()
        return_value = None

        try:
            segments = split_statements(source)
            logger.debug('executing %d segment(s)', len(segments))
            for segment in segments:
                completion = self._run_segment(segment, work)
                if completion.kind == RETURN:
                    return_value = from_value(completion.value)
                    break
        except IterationLimitError as e:
            logger.warning('script aborted: %s', e)
            return ExecutionResult(False, work.output, [str(e)])
        except (ParseError, EvaluationError) as e:
            logger.warning('script aborted, unterminated block: %s', e)
            work.errors.append(str(e))
            return ExecutionResult(False, work.output, work.errors)

        success = not work.errors
        if success:
            self.global_context.commit(work)
        else:
            logger.debug('script failed with %d error(s); nothing committed', len(work.errors))
        return ExecutionResult(success, work.output, work.errors, return_value)

    def evaluate(self, expression: str) -> LuaValue:
        """Evaluate one expression against the global context.

        Variables and functions are shared with the global context; anything
        printed while evaluating is discarded.
        """
        ctx = ExecutionContext(
            variables=self.global_context.variables,
            functions=self.global_context.functions,
        )
        try:
            return self._eval(parse_expression(expression), ctx)
        except RecursionError:
            raise LuaRuntimeError('stack overflow') from None

    def set_variable(self, name: str, value: Any) -> None:
        self.global_context.variables[name] = to_value(value)

    def get_variable(self, name: str, default: Any = None) -> Any:
        value = self.global_context.variables.get(name)
        if value is None:
            return default
        return from_value(value)

    def has_variable(self, name: str) -> bool:
        return name in self.global_context.variables

    def get_all_variables(self) -> Dict[str, Any]:
        return {k: from_value(v) for k, v in self.global_context.variables.items()}

    def reset(self) -> None:
        """Drop all variables and user functions; keep the standard library."""
        self.global_context = self._fresh_context()

    def call_function(self, ctx: ExecutionContext, name: str, args: List[LuaValue]) -> LuaValue:
        entry = ctx.functions.get(name)
        if entry is None:
            raise UnknownFunctionError(name)
        if isinstance(entry, Builtin):
            return entry.impl(self, ctx, args)
        return self._invoke(entry, args, ctx)

    # ── statement execution ──────────────────────────────────────────────────

    def _run_segment(self, segment: Segment, ctx: ExecutionContext) -> Completion:
        """Parse and run one top-level segment, isolating its errors."""
        try:
            block = parse_chunk(segment.text)
        except (ParseError, EvaluationError) as e:
            if segment.unbounded:
                raise
            self._record(ctx, segment, str(e))
            return NORMAL_COMPLETION
        except Exception as e:
            logger.debug('unexpected parse failure in %r', segment.text, exc_info=True)
            self._record(ctx, segment, f'{type(e).__name__}: {e}')
            return NORMAL_COMPLETION

        try:
            return self._exec_block(block, ctx)
        except IterationLimitError:
            raise
        except LuaError as e:
            self._record(ctx, segment, str(e))
        except RecursionError:
            self._record(ctx, segment, 'stack overflow')
        except Exception as e:
            logger.debug('unexpected error in %r', segment.text, exc_info=True)
            self._record(ctx, segment, f'{type(e).__name__}: {e}')
        return NORMAL_COMPLETION

    @staticmethod
    def _record(ctx: ExecutionContext, segment: Segment, message: str) -> None:
        ctx.errors.append(f'Error in statement "{segment.text}": {message}')

    def _exec_block(self, block: nodes.Block, ctx: ExecutionContext) -> Completion:
        for stmt in block.statements:
            completion = self._exec(stmt, ctx)
            if completion.abrupt:
                return completion
        return NORMAL_COMPLETION

    def _exec(self, stmt, ctx: ExecutionContext) -> Completion:
        if isinstance(stmt, nodes.Assign):
            self._assign(stmt.target, self._eval(stmt.value, ctx), ctx)
            return NORMAL_COMPLETION

        if isinstance(stmt, nodes.ExprStatement):
            self._eval(stmt.expr, ctx)
            return NORMAL_COMPLETION

        if isinstance(stmt, nodes.CompoundAssign):
            current = self._eval(stmt.target, ctx)
            if current.type == NIL:
                current = number(0)
            rhs = self._eval(stmt.value, ctx)
            self._assign(stmt.target, self._binary(stmt.op, current, rhs), ctx)
            return NORMAL_COMPLETION

        if isinstance(stmt, nodes.If):
            return self._run_if(stmt, ctx)

        if isinstance(stmt, nodes.While):
            return self._run_while(stmt, ctx)

        if isinstance(stmt, nodes.NumericFor):
            return self._run_for(stmt, ctx)

        if isinstance(stmt, nodes.Repeat):
            return self._run_repeat(stmt, ctx)

        if isinstance(stmt, nodes.FunctionDef):
            ctx.functions[stmt.name] = LuaFunction(stmt.name, stmt.params, stmt.source, stmt.body)
            logger.debug('defined function %s(%s)', stmt.name, ', '.join(stmt.params))
            return NORMAL_COMPLETION

        if isinstance(stmt, nodes.Return):
            if stmt.value is None:
                return return_completion()
            return return_completion(self._eval(stmt.value, ctx))

        if isinstance(stmt, nodes.Break):
            return BREAK_COMPLETION

        raise LuaRuntimeError(f'unsupported statement: {type(stmt).__name__}')

    # ── control flow ─────────────────────────────────────────────────────────

    def _run_if(self, stmt: nodes.If, ctx: ExecutionContext) -> Completion:
        for condition, body in stmt.branches:
            if condition is None or is_truthy(self._eval(condition, ctx)):
                return self._exec_block(body, ctx)
        return NORMAL_COMPLETION

    def _run_while(self, stmt: nodes.While, ctx: ExecutionContext) -> Completion:
        iterations = 0
        while is_truthy(self._eval(stmt.condition, ctx)):
            if iterations >= self.max_iterations:
                raise IterationLimitError(
                    f'While loop exceeded maximum iterations ({self.max_iterations})'
                )
            iterations += 1
            completion = self._exec_block(stmt.body, ctx)
            if completion.kind == BREAK:
                break
            if completion.kind == RETURN:
                return completion
        return NORMAL_COMPLETION

    def _run_for(self, stmt: nodes.NumericFor, ctx: ExecutionContext) -> Completion:
        start = self._eval(stmt.start, ctx)
        stop = self._eval(stmt.stop, ctx)
        step = self._eval(stmt.step, ctx) if stmt.step is not None else number(1)
        if start.type != NUMBER or stop.type != NUMBER or step.type != NUMBER:
            raise LuaRuntimeError('For loop parameters must be numbers')
        if step.value == 0:
            raise LuaRuntimeError('For loop step cannot be zero')

        first, last, delta = start.value, stop.value, step.value
        iterations = 0
        while True:
            current = first + iterations * delta
            if (delta > 0 and current > last) or (delta < 0 and current < last):
                break
            if iterations >= self.max_iterations:
                raise IterationLimitError(
                    f'For loop exceeded maximum iterations ({self.max_iterations})'
                )
            iterations += 1
            ctx.variables[stmt.var] = number(current)
            completion = self._exec_block(stmt.body, ctx)
            if completion.kind == BREAK:
                break
            if completion.kind == RETURN:
                return completion
        return NORMAL_COMPLETION

    def _run_repeat(self, stmt: nodes.Repeat, ctx: ExecutionContext) -> Completion:
        iterations = 0
        while True:
            if iterations >= self.max_iterations:
                raise IterationLimitError(
                    f'Repeat-until loop exceeded maximum iterations ({self.max_iterations})'
                )
            iterations += 1
            completion = self._exec_block(stmt.body, ctx)
            if completion.kind == BREAK:
                break
            if completion.kind == RETURN:
                return completion
            if is_truthy(self._eval(stmt.condition, ctx)):
                break
        return NORMAL_COMPLETION

    # ── assignment ───────────────────────────────────────────────────────────

    def _assign(self, target, value: LuaValue, ctx: ExecutionContext) -> None:
        if isinstance(target, nodes.Name):
            ctx.variables[target.name] = value
            return

        entries = self._container(target.obj, ctx)
        if isinstance(target, nodes.Field):
            entries[target.name] = value
            return

        key = self._eval(target.key, ctx)
        if key.type == NIL:
            raise LuaRuntimeError('table index is nil')
        entries[table_key(key)] = value

    def _container(self, obj, ctx: ExecutionContext) -> dict:
        """Resolve the table being assigned into; an unset name becomes {}."""
        if isinstance(obj, nodes.Name):
            current = ctx.variables.get(obj.name)
            if current is None or current.type == NIL:
                current = table()
                ctx.variables[obj.name] = current
        else:
            current = self._eval(obj, ctx)
        if current.type != TABLE:
            raise LuaRuntimeError(f'attempt to index a {current.type} value')
        return current.value

    # ── expression evaluator ─────────────────────────────────────────────────

    def _eval(self, expr, ctx: ExecutionContext) -> LuaValue:
        if isinstance(expr, nodes.Literal):
            return to_value(expr.value)

        if isinstance(expr, nodes.Name):
            return self._lookup(expr.name, ctx)

        if isinstance(expr, nodes.BinOp):
            left = self._eval(expr.left, ctx)
            right = self._eval(expr.right, ctx)
            return self._binary(expr.op, left, right)

        if isinstance(expr, nodes.Logical):
            left = is_truthy(self._eval(expr.left, ctx))
            if expr.op == 'and' and not left:
                return boolean(False)
            if expr.op == 'or' and left:
                return boolean(True)
            return boolean(is_truthy(self._eval(expr.right, ctx)))

        if isinstance(expr, nodes.UnaryOp):
            return self._unary(expr.op, self._eval(expr.operand, ctx))

        if isinstance(expr, nodes.Call):
            return self._call(expr, ctx)

        if isinstance(expr, nodes.Field):
            if isinstance(expr.obj, nodes.Name) and self._is_unset(expr.obj.name, ctx):
                dotted = f'{expr.obj.name}.{expr.name}'
                if dotted in stdlib.CONSTANTS:
                    return number(stdlib.CONSTANTS[dotted])
                if dotted in ctx.functions:
                    return function(dotted)
            return self._index(self._eval(expr.obj, ctx), string(expr.name))

        if isinstance(expr, nodes.Index):
            obj = self._eval(expr.obj, ctx)
            return self._index(obj, self._eval(expr.key, ctx))

        if isinstance(expr, nodes.TableConstructor):
            return self._construct_table(expr, ctx)

        raise EvaluationError(repr(expr))

    @staticmethod
    def _is_unset(name: str, ctx: ExecutionContext) -> bool:
        value = ctx.variables.get(name)
        return value is None or value.type == NIL

    @staticmethod
    def _lookup(name: str, ctx: ExecutionContext) -> LuaValue:
        value = ctx.variables.get(name)
        if value is not None:
            return value
        if name in ctx.functions:
            return function(name)
        return nil()

    @staticmethod
    def _index(obj: LuaValue, key: LuaValue) -> LuaValue:
        if obj.type != TABLE:
            raise LuaRuntimeError(f'attempt to index a {obj.type} value')
        if key.type == NIL:
            return nil()
        return obj.value.get(table_key(key), nil())

    def _construct_table(self, expr: nodes.TableConstructor, ctx: ExecutionContext) -> LuaValue:
        entries: Dict[str, LuaValue] = {}
        position = 1
        for key_expr, value_expr in expr.items:
            if key_expr is None:
                entries[str(position)] = self._eval(value_expr, ctx)
                position += 1
                continue
            key = self._eval(key_expr, ctx)
            if key.type == NIL:
                raise LuaRuntimeError('table index is nil')
            entries[table_key(key)] = self._eval(value_expr, ctx)
        return table(entries)

    # ── operators ────────────────────────────────────────────────────────────

    def _binary(self, op: str, left: LuaValue, right: LuaValue) -> LuaValue:
        if op in ('==', '==='):
            return boolean(raw_equals(left, right))
        if op in ('~=', '!=', '!=='):
            return boolean(not raw_equals(left, right))
        if op in ('<', '<=', '>', '>='):
            return boolean(_compare(op, left, right))

        if op == '..':
            return string(tostring(left) + tostring(right))

        if op == '+':
            if left.type == NUMBER and right.type == NUMBER:
                return number(left.value + right.value)
            if left.type == STRING or right.type == STRING:
                return string(tostring(left) + tostring(right))
            raise LuaRuntimeError('Cannot add these types')

        if left.type != NUMBER or right.type != NUMBER:
            raise LuaRuntimeError(_ARITH_ERRORS[op])
        a, b = left.value, right.value

        if op == '-':
            return number(a - b)
        if op == '*':
            return number(a * b)
        if op in ('/', '%') and b == 0:
            logger.debug('%s by zero yields 0', 'division' if op == '/' else 'modulo')
            return number(0)
        if op == '/':
            return number(a / b)
        if op == '%':
            return number(math.fmod(a, b) if math.isinf(b) else a % b)
        if op == '^':
            return number(_power(a, b))
        raise EvaluationError(f'unknown operator {op}')

    @staticmethod
    def _unary(op: str, operand: LuaValue) -> LuaValue:
        if op == 'not':
            return boolean(not is_truthy(operand))
        if op == '-':
            if operand.type != NUMBER:
                raise LuaRuntimeError(f'attempt to perform arithmetic on a {operand.type} value')
            return number(-operand.value)
        if op == '#':
            if operand.type == STRING:
                return number(len(operand.value))
            if operand.type == TABLE:
                return number(array_length(operand.value))
            raise LuaRuntimeError(f'attempt to get length of a {operand.type} value')
        raise EvaluationError(f'unknown operator {op}')

    # ── function calls ───────────────────────────────────────────────────────

    def _call(self, call: nodes.Call, ctx: ExecutionContext) -> LuaValue:
        args = [self._eval(a, ctx) for a in call.args]
        name = self._resolve_callee(call.callee, ctx)
        return self.call_function(ctx, name, args)

    def _resolve_callee(self, callee, ctx: ExecutionContext) -> str:
        """Return the registry name a call expression refers to."""
        name = nodes.dotted_name(callee)

        if isinstance(callee, nodes.Name):
            value = ctx.variables.get(name)
            if value is not None and value.type != NIL:
                if value.type == FUNCTION:
                    return value.value
                raise LuaRuntimeError(f'attempt to call a {value.type} value')
            if name in ctx.functions:
                return name
            raise UnknownFunctionError(name)

        if name is not None:
            if name in ctx.functions:
                return name
            root = ctx.variables.get(name.split('.', 1)[0])
            if root is None or root.type != TABLE:
                raise UnknownFunctionError(name)

        value = self._eval(callee, ctx)
        if value.type == FUNCTION:
            return value.value
        if value.type == NIL and name is not None:
            raise UnknownFunctionError(name)
        raise LuaRuntimeError(f'attempt to call a {value.type} value')

    def _invoke(self, fn: LuaFunction, args: List[LuaValue], ctx: ExecutionContext) -> LuaValue:
        if ctx.call_depth >= MAX_CALL_DEPTH:
            raise LuaRuntimeError('stack overflow')

        # parameters share the flat global namespace
        for i, param in enumerate(fn.params):
            ctx.variables[param] = args[i] if i < len(args) else nil()

        ctx.call_depth += 1
        try:
            completion = self._exec_block(fn.body, ctx)
        finally:
            ctx.call_depth -= 1

        if completion.kind == RETURN:
            return completion.value
        return nil()


def _compare(op: str, left: LuaValue, right: LuaValue) -> bool:
    if left.type != right.type or left.type not in (NUMBER, STRING):
        raise LuaRuntimeError(f'attempt to compare {left.type} with {right.type}')
    a, b = left.value, right.value
    if op == '<':
        return a < b
    if op == '<=':
        return a <= b
    if op == '>':
        return a > b
    return a >= b


def _power(a: float, b: float) -> float:
    try:
        return math.pow(a, b)
    except OverflowError:
        return math.inf
    except ValueError:
        return math.nan


_engine: Optional[LuaEngine] = None


def get_engine() -> LuaEngine:
    """Shared engine instance, created on first use."""
    global _engine
    if _engine is None:
        _engine = LuaEngine()
    return _engine
