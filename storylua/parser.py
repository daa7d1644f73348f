"""Statement segmenter, tokenizer and recursive-descent parser for storylua.

Scripts go through three stages before they run:

1. ``split_statements`` cuts the raw text into top-level segments. Block
   constructs (``if/while/for/function/repeat ... end``) stay together no
   matter how many lines they span; plain lines are split on semicolons.
2. ``tokenize`` turns one segment into tokens. String literals are read as a
   single token, so an operator inside quotes can never split an expression.
3. ``Parser`` builds a statement/expression tree (see ``storylua.nodes``)
   once per segment. Function bodies are parsed once, at definition.
"""
import logging
import math
import re
from dataclasses import dataclass
from typing import Any, List, Optional, Tuple

from storylua import nodes
from storylua.errors import EvaluationError, ParseError

logger = logging.getLogger(__name__)

__all__ = [
    "ParseError", "Segment", "Token", "Parser",
    "strip_comments", "mask_strings", "block_depth", "split_statements",
    "tokenize", "parse_chunk", "parse_expression",
]

IF_SYNTAX = 'Invalid if statement syntax. Expected: if <condition> then <body> end'
WHILE_SYNTAX = 'Invalid while loop syntax. Expected: while <condition> do <body> end'
WHILE_MISSING_DO = 'Invalid while loop syntax. Missing do keyword'
WHILE_MISSING_END = 'Invalid while loop syntax. Missing end keyword'
FOR_SYNTAX = 'Invalid for loop syntax. Expected: for var = start, end [, step] do <body> end'
FOR_MISSING_END = 'Invalid for loop syntax. Missing end keyword'
REPEAT_MISSING_UNTIL = 'Invalid repeat-until syntax. Missing until keyword'
FUNCTION_SYNTAX = 'Invalid function syntax. Expected: function name(params) ... end'

# Statements whose body cannot be bounded when the closing keyword is missing.
UNBOUNDED_OPENERS = ('while', 'for', 'repeat', 'function')

_QUOTES = ('"', "'")
_BLOCK_START = re.compile(r'^(?:local\s+)?(if|while|for|function|repeat)\b')
_OPENERS = re.compile(r'\b(?:if|while|for|function|repeat)\b')
_CLOSERS = re.compile(r'\b(?:end|until)\b')


# ── comments and string masking ──────────────────────────────────────────────

def strip_comments(text: str) -> str:
    """Remove ``--`` line comments and ``--[[ ... ]]`` block comments.

    A ``--`` inside a quoted string is left alone. Newlines swallowed by a
    block comment are kept so line numbers do not shift.
    """
    out: List[str] = []
    qchar = None
    i = 0
    n = len(text)

    while i < n:
        c = text[i]

        if qchar:
            out.append(c)
            if c == '\\' and i + 1 < n:
                out.append(text[i + 1])
                i += 2
                continue
            if c == qchar or c == '\n':
                qchar = None
            i += 1
            continue

        if c in _QUOTES:
            qchar = c
            out.append(c)
            i += 1
            continue

        if c == '-' and text.startswith('--', i):
            if text.startswith('--[[', i):
                close = text.find(']]', i + 4)
                end = n if close == -1 else close + 2
                out.append('\n' * text.count('\n', i, end))
                i = end
                continue
            nl = text.find('\n', i)
            i = n if nl == -1 else nl
            continue

        out.append(c)
        i += 1

    return ''.join(out)


def mask_strings(text: str) -> str:
    """Blank out the contents of quoted spans (quotes and length are kept)."""
    out: List[str] = []
    qchar = None
    i = 0
    n = len(text)

    while i < n:
        c = text[i]
        if qchar:
            if c == '\n':
                qchar = None
                out.append(c)
            elif c == '\\' and i + 1 < n and text[i + 1] != '\n':
                out.append('  ')
                i += 2
                continue
            elif c == qchar:
                qchar = None
                out.append(c)
            else:
                out.append(' ')
            i += 1
            continue
        if c in _QUOTES:
            qchar = c
        out.append(c)
        i += 1

    return ''.join(out)


def block_depth(text: str) -> int:
    """Net block depth change of *text*: openers minus ``end``/``until``."""
    masked = mask_strings(text)
    return len(_OPENERS.findall(masked)) - len(_CLOSERS.findall(masked))


def _bracket_depth(text: str) -> int:
    masked = mask_strings(text)
    opens = sum(masked.count(c) for c in '({[')
    closes = sum(masked.count(c) for c in ')}]')
    return opens - closes


def _split_top_level(s: str, sep: str) -> List[str]:
    """Split *s* on *sep* outside quotes and brackets; drop empty parts."""
    parts = []
    cur: List[str] = []
    masked = mask_strings(s)
    depth = 0

    for raw, c in zip(s, masked):
        if c in '({[':
            depth += 1
        elif c in ')}]':
            depth = max(0, depth - 1)
        elif c == sep and depth == 0:
            part = ''.join(cur).strip()
            if part:
                parts.append(part)
            cur = []
            continue
        cur.append(raw)

    part = ''.join(cur).strip()
    if part:
        parts.append(part)
    return parts


# ── statement segmenter ──────────────────────────────────────────────────────

@dataclass
class Segment:
    """One top-level statement as cut out of the script text."""
    text: str
    line: int
    opener: Optional[str] = None     # block keyword that started it
    terminated: bool = True

    @property
    def unbounded(self) -> bool:
        return not self.terminated and self.opener in UNBOUNDED_OPENERS


def split_statements(text: str) -> List[Segment]:
    """Split script text into top-level statement segments."""
    if not text.strip():
        return []

    segments: List[Segment] = []
    buf: Optional[List[str]] = None
    kw_depth = br_depth = 0
    start = 0
    opener = None

    for lineno, raw in enumerate(strip_comments(text).split('\n'), 1):
        line = raw.strip()
        if not line:
            continue

        # ---------- inside a multi-line block ----------
        if buf is not None:
            buf.append(line)
            kw_depth += block_depth(line)
            br_depth += _bracket_depth(line)
            if kw_depth <= 0 and br_depth <= 0:
                segments.append(Segment('\n'.join(buf), start, opener))
                buf = None
            continue

        # ---------- plain line: split on semicolons ----------
        pieces = _split_top_level(line, ';')
        for idx, piece in enumerate(pieces):
            m = _BLOCK_START.match(piece)
            kw = block_depth(piece) if m else 0
            br = _bracket_depth(piece)
            if kw > 0 or br > 0:
                rest = '; '.join(pieces[idx:])
                kw_depth = block_depth(rest) if m else 0
                br_depth = _bracket_depth(rest)
                opener = m.group(1) if m else None
                start = lineno
                if kw_depth <= 0 and br_depth <= 0:
                    segments.append(Segment(rest, lineno, opener))
                else:
                    buf = [rest]
                break
            segments.append(Segment(piece, lineno, m.group(1) if m else None))

    if buf is not None:
        logger.debug('unterminated %s block starting on line %d', opener or 'bracket', start)
        segments.append(Segment('\n'.join(buf), start, opener, terminated=False))

    return segments


# ── tokenizer ────────────────────────────────────────────────────────────────

KEYWORDS = frozenset([
    'and', 'break', 'do', 'else', 'elseif', 'end', 'false', 'for', 'function',
    'if', 'in', 'local', 'nil', 'not', 'or', 'repeat', 'return', 'then',
    'true', 'until', 'while',
])

# longest first so '===' wins over '==' and '..' over '.'
OPERATORS = (
    '===', '!==',
    '==', '~=', '!=', '<=', '>=', '..', '+=', '-=', '*=', '/=', '&&', '||',
    '+', '-', '*', '/', '%', '^', '#', '<', '>', '=', '(', ')', '{', '}',
    '[', ']', ',', ';', '.', '!',
)

COMPARISON_OPS = ('===', '!==', '==', '~=', '!=', '<=', '>=', '<', '>')
COMPOUND_OPS = {'+=': '+', '-=': '-', '*=': '*', '/=': '/'}
BLOCK_END = ('end', 'else', 'elseif', 'until')

_ESCAPES = {'n': '\n', 't': '\t', 'r': '\r', '\\': '\\', '"': '"', "'": "'",
            'a': '\a', 'b': '\b', 'f': '\f', 'v': '\v', '0': '\0', '\n': '\n'}

_NUMBER_RE = re.compile(
    r'0[xX][0-9a-fA-F]+|(?:\d+(?:\.(?!\.)\d*)?|\.\d+)(?:[eE][+-]?\d+)?'
)
_NAME_RE = re.compile(r'[A-Za-z_][A-Za-z0-9_]*')


@dataclass
class Token:
    kind: str       # 'name' | 'keyword' | 'number' | 'string' | 'op' | 'eof'
    value: Any
    pos: int
    end: int
    line: int

    def __repr__(self):
        return f'Token({self.kind}, {self.value!r}, line={self.line})'


def tokenize(text: str) -> List[Token]:
    tokens: List[Token] = []
    i = 0
    n = len(text)
    line = 1

    while i < n:
        c = text[i]

        if c == '\n':
            line += 1
            i += 1
            continue
        if c.isspace():
            i += 1
            continue

        # ---------- strings ----------
        if c in _QUOTES:
            start = i
            i += 1
            chars: List[str] = []
            while True:
                if i >= n or text[i] == '\n':
                    snippet = text[start:i].strip()
                    raise ParseError(f'unfinished string near {snippet!r}')
                ch = text[i]
                if ch == '\\' and i + 1 < n:
                    nxt = text[i + 1]
                    chars.append(_ESCAPES.get(nxt, nxt))
                    i += 2
                    continue
                if ch == c:
                    i += 1
                    break
                chars.append(ch)
                i += 1
            tokens.append(Token('string', ''.join(chars), start, i, line))
            continue

        # ---------- numbers ----------
        if c.isdigit() or (c == '.' and i + 1 < n and text[i + 1].isdigit()):
            m = _NUMBER_RE.match(text, i)
            raw = m.group(0)
            if raw[:2].lower() == '0x':
                try:
                    value = float(int(raw, 16))
                except OverflowError:
                    value = math.inf
            else:
                value = float(raw)
            tokens.append(Token('number', value, i, m.end(), line))
            i = m.end()
            continue

        # ---------- names and keywords ----------
        if c.isalpha() or c == '_':
            m = _NAME_RE.match(text, i)
            word = m.group(0)
            kind = 'keyword' if word in KEYWORDS else 'name'
            tokens.append(Token(kind, word, i, m.end(), line))
            i = m.end()
            continue

        # ---------- operators ----------
        for op in OPERATORS:
            if text.startswith(op, i):
                tokens.append(Token('op', op, i, i + len(op), line))
                i += len(op)
                break
        else:
            raise ParseError(f"unexpected symbol near '{c}'")

    tokens.append(Token('eof', None, n, n, line))
    return tokens


# ── parser ───────────────────────────────────────────────────────────────────

class Parser:
    """Recursive-descent parser over the tokens of one segment."""

    def __init__(self, source: str):
        self.source = source
        self.tokens = tokenize(source)
        self.pos = 0
        self.loop_depth = 0

    # ── token helpers ────────────────────────────────────────────────────────

    def _peek(self, offset: int = 0) -> Token:
        idx = min(self.pos + offset, len(self.tokens) - 1)
        return self.tokens[idx]

    def _advance(self) -> Token:
        tok = self.tokens[self.pos]
        if tok.kind != 'eof':
            self.pos += 1
        return tok

    def _check_kw(self, *words: str) -> bool:
        tok = self._peek()
        return tok.kind == 'keyword' and tok.value in words

    def _check_op(self, *ops: str) -> bool:
        tok = self._peek()
        return tok.kind == 'op' and tok.value in ops

    def _accept_kw(self, word: str) -> bool:
        if self._check_kw(word):
            self._advance()
            return True
        return False

    def _accept_op(self, op: str) -> bool:
        if self._check_op(op):
            self._advance()
            return True
        return False

    def _at_eof(self) -> bool:
        return self._peek().kind == 'eof'

    def _snippet(self, tok: Token) -> str:
        text = self.source[tok.pos:].split('\n', 1)[0].strip()
        return text or self.source.strip()

    # ── entry points ─────────────────────────────────────────────────────────

    def parse_chunk(self) -> nodes.Block:
        block = self._block(())
        if not self._at_eof():
            tok = self._peek()
            raise ParseError(f"'{tok.value}' unexpected near '{self._snippet(tok)}'")
        return block

    def parse_expression(self):
        expr = self.expression()
        if not self._at_eof():
            raise EvaluationError(self.source.strip())
        return expr

    # ── statements ───────────────────────────────────────────────────────────

    def _block(self, terminators: Tuple[str, ...]) -> nodes.Block:
        stmts = []
        while True:
            tok = self._peek()
            if tok.kind == 'eof':
                break
            if tok.kind == 'keyword' and tok.value in terminators:
                break
            if self._accept_op(';'):
                continue
            stmts.append(self._statement())
        return nodes.Block(stmts)

    def _statement(self):
        tok = self._peek()

        if tok.kind == 'keyword':
            word = tok.value
            if word == 'if':
                return self._if()
            if word == 'while':
                return self._while()
            if word == 'for':
                return self._for()
            if word == 'repeat':
                return self._repeat()
            if word == 'function':
                return self._function()
            if word == 'local':
                return self._local()
            if word == 'return':
                return self._return()
            if word == 'break':
                self._advance()
                if self.loop_depth == 0:
                    raise ParseError('break outside a loop')
                return nodes.Break()
            if word in ('end', 'else', 'elseif', 'until', 'then', 'do', 'in'):
                raise ParseError(f"'{word}' unexpected near '{self._snippet(tok)}'")

        return self._expr_statement()

    def _expr_statement(self):
        start = self.pos

        if self._peek().kind == 'name' or self._check_op('('):
            target = self._suffixed()

            if self._check_op('='):
                self._advance()
                self._check_target(target)
                return nodes.Assign(target, self.expression())

            tok = self._peek()
            if tok.kind == 'op' and tok.value in COMPOUND_OPS:
                self._advance()
                self._check_target(target)
                return nodes.CompoundAssign(target, COMPOUND_OPS[tok.value], self.expression())

            if self._check_op(','):
                raise ParseError('multiple assignment is not supported')

            if isinstance(target, nodes.Call) and not self._continues_expression():
                return nodes.ExprStatement(target)

            # something like `x == 1` or `a .. b`: reparse as a full expression
            self.pos = start

        first = self._peek()
        expr = self.expression()
        nxt = self._peek()
        if nxt.kind in ('name', 'number', 'string') and nxt.line == self.tokens[self.pos - 1].line:
            raise EvaluationError(self._snippet(first))
        return nodes.ExprStatement(expr)

    def _continues_expression(self) -> bool:
        tok = self._peek()
        if tok.kind == 'keyword':
            return tok.value in ('and', 'or')
        return tok.kind == 'op' and tok.value not in (';', '(', '{')

    def _check_target(self, target):
        if not isinstance(target, (nodes.Name, nodes.Field, nodes.Index)):
            raise ParseError("syntax error near '='")

    def _if(self):
        self._advance()                                   # 'if'
        if self._check_kw('then'):
            raise ParseError(IF_SYNTAX)
        cond = self.expression()
        if not self._accept_kw('then'):
            raise ParseError(IF_SYNTAX)

        branches = [(cond, self._block(('elseif', 'else', 'end')))]
        while True:
            if self._accept_kw('elseif'):
                cond = self.expression()
                if not self._accept_kw('then'):
                    raise ParseError(IF_SYNTAX)
                branches.append((cond, self._block(('elseif', 'else', 'end'))))
            elif self._accept_kw('else'):
                branches.append((None, self._block(('end',))))
                if not self._accept_kw('end'):
                    raise ParseError(IF_SYNTAX)
                break
            elif self._accept_kw('end'):
                break
            else:
                raise ParseError(IF_SYNTAX)

        return nodes.If(branches)

    def _loop_body(self, terminators: Tuple[str, ...]) -> nodes.Block:
        self.loop_depth += 1
        try:
            return self._block(terminators)
        finally:
            self.loop_depth -= 1

    def _while(self):
        self._advance()                                   # 'while'
        if self._check_kw('do') or self._at_eof():
            raise ParseError(WHILE_SYNTAX)
        cond = self.expression()
        if not self._accept_kw('do'):
            raise ParseError(WHILE_MISSING_DO)
        body = self._loop_body(('end',))
        if not self._accept_kw('end'):
            raise ParseError(WHILE_MISSING_END)
        return nodes.While(cond, body)

    def _for(self):
        self._advance()                                   # 'for'
        name = self._peek()
        if name.kind != 'name':
            raise ParseError(FOR_SYNTAX)
        self._advance()
        if self._check_op(',') or self._check_kw('in'):
            raise ParseError('Generic for loops are not supported; use for var = start, end [, step]')
        if not self._accept_op('='):
            raise ParseError(FOR_SYNTAX)

        params = [self.expression()]
        while self._accept_op(','):
            params.append(self.expression())
        if len(params) not in (2, 3):
            raise ParseError(
                f'For loop requires 2 or 3 parameters: start, end [, step]. Got: {len(params)}'
            )
        if not self._accept_kw('do'):
            raise ParseError(FOR_SYNTAX)

        body = self._loop_body(('end',))
        if not self._accept_kw('end'):
            raise ParseError(FOR_MISSING_END)

        step = params[2] if len(params) == 3 else None
        return nodes.NumericFor(name.value, params[0], params[1], step, body)

    def _repeat(self):
        self._advance()                                   # 'repeat'
        body = self._loop_body(('until',))
        if not self._accept_kw('until'):
            raise ParseError(REPEAT_MISSING_UNTIL)
        return nodes.Repeat(body, self.expression())

    def _function(self, local: bool = False):
        self._advance()                                   # 'function'
        tok = self._peek()
        if tok.kind != 'name':
            raise ParseError(FUNCTION_SYNTAX)
        parts = [self._advance().value]
        while not local and self._accept_op('.'):
            if self._peek().kind != 'name':
                raise ParseError(FUNCTION_SYNTAX)
            parts.append(self._advance().value)

        if not self._accept_op('('):
            raise ParseError(FUNCTION_SYNTAX)
        params = []
        if not self._check_op(')'):
            while True:
                if self._peek().kind != 'name':
                    raise ParseError(FUNCTION_SYNTAX)
                params.append(self._advance().value)
                if not self._accept_op(','):
                    break
        if not self._check_op(')'):
            raise ParseError(FUNCTION_SYNTAX)
        rparen = self._advance()

        saved, self.loop_depth = self.loop_depth, 0
        try:
            body = self._block(('end',))
        finally:
            self.loop_depth = saved
        if not self._check_kw('end'):
            raise ParseError(FUNCTION_SYNTAX)
        end_tok = self._advance()

        source = self.source[rparen.end:end_tok.pos].strip()
        return nodes.FunctionDef('.'.join(parts), params, body, source)

    def _local(self):
        self._advance()                                   # 'local'
        if self._check_kw('function'):
            return self._function(local=True)
        tok = self._peek()
        if tok.kind != 'name':
            raise ParseError(f"<name> expected near '{self._snippet(tok)}'")
        self._advance()
        target = nodes.Name(tok.value)
        if self._accept_op('='):
            return nodes.Assign(target, self.expression())
        return nodes.Assign(target, nodes.Literal(None))

    def _return(self):
        self._advance()                                   # 'return'
        tok = self._peek()
        if (tok.kind == 'eof'
                or (tok.kind == 'keyword' and tok.value in BLOCK_END)
                or (tok.kind == 'op' and tok.value == ';')):
            return nodes.Return(None)
        return nodes.Return(self.expression())

    # ── expressions (lowest precedence first) ────────────────────────────────

    def expression(self):
        return self._or()

    def _or(self):
        left = self._and()
        while self._check_kw('or') or self._check_op('||'):
            self._advance()
            left = nodes.Logical('or', left, self._and())
        return left

    def _and(self):
        left = self._not()
        while self._check_kw('and') or self._check_op('&&'):
            self._advance()
            left = nodes.Logical('and', left, self._not())
        return left

    def _not(self):
        if self._check_kw('not') or self._check_op('!'):
            self._advance()
            return nodes.UnaryOp('not', self._not())
        return self._comparison()

    def _comparison(self):
        left = self._concat()
        while self._check_op(*COMPARISON_OPS):
            op = self._advance().value
            left = nodes.BinOp(op, left, self._concat())
        return left

    def _concat(self):
        left = self._additive()
        if self._accept_op('..'):
            return nodes.BinOp('..', left, self._concat())
        return left

    def _additive(self):
        left = self._multiplicative()
        while self._check_op('+', '-'):
            op = self._advance().value
            left = nodes.BinOp(op, left, self._multiplicative())
        return left

    def _multiplicative(self):
        left = self._unary()
        while self._check_op('*', '/', '%'):
            op = self._advance().value
            left = nodes.BinOp(op, left, self._unary())
        return left

    def _unary(self):
        if self._accept_op('-'):
            operand = self._unary()
            if isinstance(operand, nodes.Literal) and isinstance(operand.value, float):
                return nodes.Literal(-operand.value)
            return nodes.UnaryOp('-', operand)
        if self._accept_op('#'):
            return nodes.UnaryOp('#', self._unary())
        if self._check_kw('not') or self._check_op('!'):
            self._advance()
            return nodes.UnaryOp('not', self._unary())
        return self._power()

    def _power(self):
        base = self._primary()
        if self._accept_op('^'):
            return nodes.BinOp('^', base, self._unary())
        return base

    def _primary(self):
        tok = self._peek()

        if tok.kind == 'number' or tok.kind == 'string':
            self._advance()
            return nodes.Literal(tok.value)

        if tok.kind == 'keyword':
            if tok.value == 'nil':
                self._advance()
                return nodes.Literal(None)
            if tok.value == 'true':
                self._advance()
                return nodes.Literal(True)
            if tok.value == 'false':
                self._advance()
                return nodes.Literal(False)

        if tok.kind == 'op' and tok.value == '{':
            return self._table()

        if tok.kind == 'name' or (tok.kind == 'op' and tok.value == '('):
            return self._suffixed()

        raise EvaluationError(self._snippet(tok))

    def _suffixed(self):
        tok = self._peek()
        if tok.kind == 'name':
            self._advance()
            expr = nodes.Name(tok.value)
        elif self._accept_op('('):
            expr = self.expression()
            if not self._accept_op(')'):
                raise ParseError(f"')' expected near '{self._snippet(self._peek())}'")
        else:
            raise EvaluationError(self._snippet(tok))

        while True:
            if self._accept_op('.'):
                name = self._peek()
                if name.kind not in ('name', 'keyword'):
                    raise ParseError(f"<name> expected near '{self._snippet(name)}'")
                self._advance()
                expr = nodes.Field(expr, name.value)
            elif self._accept_op('['):
                key = self.expression()
                if not self._accept_op(']'):
                    raise ParseError(f"']' expected near '{self._snippet(self._peek())}'")
                expr = nodes.Index(expr, key)
            elif self._check_op('('):
                expr = nodes.Call(expr, self._call_args())
            else:
                return expr

    def _call_args(self) -> list:
        self._advance()                                   # '('
        args = []
        if self._accept_op(')'):
            return args
        while True:
            args.append(self.expression())
            if self._accept_op(','):
                continue
            if self._accept_op(')'):
                return args
            raise ParseError(f"')' expected near '{self._snippet(self._peek())}'")

    def _table(self):
        self._advance()                                   # '{'
        items = []
        while not self._check_op('}'):
            if self._at_eof():
                raise ParseError("'}' expected")
            tok = self._peek()
            if tok.kind == 'name' and self._peek(1).kind == 'op' and self._peek(1).value == '=':
                self._advance()
                self._advance()
                items.append((nodes.Literal(tok.value), self.expression()))
            elif self._accept_op('['):
                key = self.expression()
                if not self._accept_op(']') or not self._accept_op('='):
                    raise ParseError(f"'=' expected near '{self._snippet(self._peek())}'")
                items.append((key, self.expression()))
            else:
                items.append((None, self.expression()))
            if not (self._accept_op(',') or self._accept_op(';')):
                break
        if not self._accept_op('}'):
            raise ParseError(f"'}}' expected near '{self._snippet(self._peek())}'")
        return nodes.TableConstructor(items)


TOO_DEEP = 'chunk has too many syntax levels'


def parse_chunk(text: str) -> nodes.Block:
    """Parse a segment (or any statement sequence) into a Block."""
    try:
        return Parser(text).parse_chunk()
    except RecursionError:
        raise ParseError(TOO_DEEP) from None


def parse_expression(text: str):
    """Parse a single expression; trailing text is an EvaluationError."""
    try:
        return Parser(strip_comments(text)).parse_expression()
    except RecursionError:
        raise ParseError(TOO_DEEP) from None
