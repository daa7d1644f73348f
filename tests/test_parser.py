"""Tests for the storylua segmenter, tokenizer and parser."""
import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

import math

import pytest
from storylua import nodes
from storylua.errors import EvaluationError, ParseError
from storylua.parser import (
    FUNCTION_SYNTAX, IF_SYNTAX, REPEAT_MISSING_UNTIL, WHILE_MISSING_DO, WHILE_MISSING_END,
    block_depth, mask_strings, parse_chunk, parse_expression, split_statements,
    strip_comments, tokenize,
)


def texts(src):
    return [seg.text for seg in split_statements(src)]


class TestSplitStatements:
    def test_simple_newline(self):
        assert texts("x = 1\ny = 2") == ["x = 1", "y = 2"]

    def test_semicolons(self):
        assert texts("x = 1; y = 2") == ["x = 1", "y = 2"]

    def test_empty_source(self):
        assert split_statements("   \n  ") == []

    def test_block_kept_together(self):
        segs = split_statements('if x > 0 then\n  print("yes")\nend')
        assert len(segs) == 1
        assert segs[0].text == 'if x > 0 then\nprint("yes")\nend'
        assert segs[0].opener == 'if'
        assert segs[0].terminated

    def test_nested_blocks(self):
        src = "for i = 1, 3 do\n  if i > 1 then\n    x = i\n  end\nend\ny = 1"
        assert texts(src) == [
            "for i = 1, 3 do\nif i > 1 then\nx = i\nend\nend",
            "y = 1",
        ]

    def test_elseif_does_not_open_a_block(self):
        src = "if a then\nx = 1\nelseif b then\nx = 2\nend\nz = 3"
        assert len(split_statements(src)) == 2

    def test_one_line_block_among_semicolons(self):
        assert texts("x = 1; if x then y = 2 end; z = 3") == [
            "x = 1", "if x then y = 2 end", "z = 3",
        ]

    def test_block_started_after_semicolon(self):
        assert texts("x = 1; while true do\nbreak\nend") == [
            "x = 1", "while true do\nbreak\nend",
        ]

    def test_repeat_until_block(self):
        assert texts("repeat\nn = n + 1\nuntil n > 2\nm = 1") == [
            "repeat\nn = n + 1\nuntil n > 2", "m = 1",
        ]

    def test_local_function_block(self):
        segs = split_statements("local function f()\nreturn 1\nend")
        assert len(segs) == 1
        assert segs[0].opener == 'function'

    def test_keywords_inside_strings_ignored(self):
        src = 'print("the end")\nmsg = "while you wait"\nx = 1'
        assert len(split_statements(src)) == 3

    def test_keyword_in_string_inside_block(self):
        src = 'if a then\nprint("end")\nend\nx = 1'
        assert len(split_statements(src)) == 2

    def test_semicolon_inside_string(self):
        assert texts('print("a;b")') == ['print("a;b")']

    def test_multiline_table_literal(self):
        assert texts("t = {\n1,\n2\n}\nx = 1") == ["t = {\n1,\n2\n}", "x = 1"]

    def test_line_numbers(self):
        segs = split_statements("--[[ a\nb ]]\nx = 1")
        assert segs[0].text == "x = 1"
        assert segs[0].line == 3

    def test_unterminated_loop_is_unbounded(self):
        segs = split_statements("while true do\nx = 1")
        assert len(segs) == 1
        assert not segs[0].terminated
        assert segs[0].unbounded

    def test_unterminated_if_is_not_unbounded(self):
        seg = split_statements("if x then\ny = 1")[0]
        assert not seg.terminated
        assert not seg.unbounded


class TestCommentsAndMasking:
    def test_line_comment(self):
        assert texts("x = 1 -- this is x\ny = 2") == ["x = 1", "y = 2"]

    def test_block_comment(self):
        assert texts("--[[ note\nstill a note ]]\nx = 1") == ["x = 1"]

    def test_comment_marker_inside_string(self):
        assert strip_comments('s = "--not a comment"') == 's = "--not a comment"'

    def test_block_comment_keeps_newlines(self):
        assert strip_comments("a --[[x\ny]] b") == "a \n b"

    def test_mask_strings(self):
        assert mask_strings('a = "end"') == 'a = "   "'
        assert mask_strings("b = 'if'") == "b = '  '"

    def test_block_depth(self):
        assert block_depth("if x then") == 1
        assert block_depth('print("if")') == 0
        assert block_depth("end") == -1
        assert block_depth("while a do if b then end") == 1


class TestTokenize:
    def test_kinds(self):
        kinds = [t.kind for t in tokenize("x = 1.5")]
        assert kinds == ['name', 'op', 'number', 'eof']

    def test_keywords(self):
        tok = tokenize("while")[0]
        assert tok.kind == 'keyword'
        assert tok.value == 'while'

    def test_string_escapes(self):
        assert tokenize('"a\\nb"')[0].value == 'a\nb'
        assert tokenize("'it\\'s'")[0].value == "it's"

    def test_operator_inside_string_is_one_token(self):
        toks = tokenize('"a+b" .. "c-d"')
        assert [t.value for t in toks[:3]] == ['a+b', '..', 'c-d']

    def test_number_before_concat(self):
        toks = tokenize("1..2")
        assert [(t.kind, t.value) for t in toks[:3]] == [
            ('number', 1.0), ('op', '..'), ('number', 2.0),
        ]

    def test_hex_and_exponent(self):
        assert tokenize("0x1F")[0].value == 31.0
        assert tokenize("2e3")[0].value == 2000.0

    def test_oversized_hex_is_infinite(self):
        assert tokenize("0x" + "f" * 300)[0].value == math.inf

    def test_longest_operator_wins(self):
        assert tokenize("a === b")[1].value == '==='
        assert tokenize("a ~= b")[1].value == '~='

    def test_unfinished_string(self):
        with pytest.raises(ParseError, match='unfinished string'):
            tokenize('"abc')

    def test_unexpected_symbol(self):
        with pytest.raises(ParseError, match="unexpected symbol near '@'"):
            tokenize("x @ y")


class TestParseExpression:
    def test_precedence(self):
        expr = parse_expression("1 + 2 * 3")
        assert expr == nodes.BinOp(
            '+', nodes.Literal(1.0),
            nodes.BinOp('*', nodes.Literal(2.0), nodes.Literal(3.0)),
        )

    def test_power_is_right_associative(self):
        expr = parse_expression("2 ^ 3 ^ 2")
        assert expr == nodes.BinOp(
            '^', nodes.Literal(2.0),
            nodes.BinOp('^', nodes.Literal(3.0), nodes.Literal(2.0)),
        )

    def test_concat_is_right_associative(self):
        expr = parse_expression("a .. b .. c")
        assert expr == nodes.BinOp(
            '..', nodes.Name('a'),
            nodes.BinOp('..', nodes.Name('b'), nodes.Name('c')),
        )

    def test_not_binds_looser_than_comparison(self):
        expr = parse_expression("not a == b")
        assert expr == nodes.UnaryOp('not', nodes.BinOp('==', nodes.Name('a'), nodes.Name('b')))

    def test_negative_literal_folded(self):
        assert parse_expression("-5") == nodes.Literal(-5.0)

    def test_suffix_chain(self):
        expr = parse_expression("t.x[1]")
        assert expr == nodes.Index(nodes.Field(nodes.Name('t'), 'x'), nodes.Literal(1.0))

    def test_dotted_call(self):
        expr = parse_expression("math.floor(2.5)")
        assert isinstance(expr, nodes.Call)
        assert nodes.dotted_name(expr.callee) == 'math.floor'

    def test_logical_aliases(self):
        assert parse_expression("a && b") == nodes.Logical('and', nodes.Name('a'), nodes.Name('b'))
        assert parse_expression("a || b") == nodes.Logical('or', nodes.Name('a'), nodes.Name('b'))

    def test_table_constructor(self):
        expr = parse_expression('{1, 2, name = "a", [3] = "c"}')
        assert isinstance(expr, nodes.TableConstructor)
        assert len(expr.items) == 4
        assert expr.items[0][0] is None
        assert expr.items[2][0] == nodes.Literal('name')

    def test_trailing_text(self):
        with pytest.raises(EvaluationError, match='Cannot evaluate expression: 1 2'):
            parse_expression("1 2")


class TestParseChunk:
    def test_assignment(self):
        block = parse_chunk("x = 1")
        assert block.statements == [nodes.Assign(nodes.Name('x'), nodes.Literal(1.0))]

    def test_compound_assignment(self):
        stmt = parse_chunk("x += 2").statements[0]
        assert stmt == nodes.CompoundAssign(nodes.Name('x'), '+', nodes.Literal(2.0))

    def test_local_without_value(self):
        stmt = parse_chunk("local x").statements[0]
        assert stmt == nodes.Assign(nodes.Name('x'), nodes.Literal(None))

    def test_function_definition(self):
        stmt = parse_chunk('function greet(name) return "hi " .. name end').statements[0]
        assert isinstance(stmt, nodes.FunctionDef)
        assert stmt.name == 'greet'
        assert stmt.params == ['name']
        assert stmt.source == 'return "hi " .. name'

    def test_dotted_function_name(self):
        stmt = parse_chunk("function story.intro() end").statements[0]
        assert stmt.name == 'story.intro'

    def test_if_elseif_else(self):
        stmt = parse_chunk("if a then x = 1 elseif b then x = 2 else x = 3 end").statements[0]
        assert isinstance(stmt, nodes.If)
        assert len(stmt.branches) == 3
        assert stmt.branches[2][0] is None

    def test_return_without_value(self):
        stmt = parse_chunk("if a then return end").statements[0]
        assert stmt.branches[0][1].statements == [nodes.Return(None)]
        assert parse_chunk("return").statements == [nodes.Return(None)]
        assert parse_chunk("return; x = 1").statements[0] == nodes.Return(None)

    def test_return_value_on_next_line(self):
        block = parse_chunk("return\n  42")
        assert block.statements == [nodes.Return(nodes.Literal(42.0))]

    def test_deep_nesting_is_a_parse_error(self):
        with pytest.raises(ParseError, match='too many syntax levels'):
            parse_chunk('x = ' + '(' * 300 + '1' + ')' * 300)
        with pytest.raises(ParseError, match='too many syntax levels'):
            parse_expression('(' * 300 + '1' + ')' * 300)

    def test_break_inside_loop(self):
        stmt = parse_chunk("while true do break end").statements[0]
        assert stmt.body.statements == [nodes.Break()]

    def test_break_outside_loop(self):
        with pytest.raises(ParseError, match='break outside a loop'):
            parse_chunk("break")

    def test_break_inside_function_inside_loop(self):
        with pytest.raises(ParseError, match='break outside a loop'):
            parse_chunk("while true do function f() break end end")

    def test_if_missing_then(self):
        with pytest.raises(ParseError) as exc:
            parse_chunk("if x > 1 print(x) end")
        assert str(exc.value) == IF_SYNTAX

    def test_while_missing_do(self):
        with pytest.raises(ParseError) as exc:
            parse_chunk("while x < 3")
        assert str(exc.value) == WHILE_MISSING_DO

    def test_while_missing_end(self):
        with pytest.raises(ParseError) as exc:
            parse_chunk("while x do")
        assert str(exc.value) == WHILE_MISSING_END

    def test_for_parameter_count(self):
        with pytest.raises(ParseError) as exc:
            parse_chunk("for i = 1 do end")
        assert str(exc.value) == 'For loop requires 2 or 3 parameters: start, end [, step]. Got: 1'

    def test_generic_for_rejected(self):
        with pytest.raises(ParseError, match='Generic for'):
            parse_chunk("for k, v in pairs(t) do end")

    def test_repeat_missing_until(self):
        with pytest.raises(ParseError) as exc:
            parse_chunk("repeat x = 1")
        assert str(exc.value) == REPEAT_MISSING_UNTIL

    def test_function_without_name(self):
        with pytest.raises(ParseError) as exc:
            parse_chunk("function (x) end")
        assert str(exc.value) == FUNCTION_SYNTAX

    def test_multiple_assignment(self):
        with pytest.raises(ParseError, match='multiple assignment'):
            parse_chunk("x, y = 1, 2")
