"""Tests for the storylua command-line interface."""
import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

import pytest
from storylua import __version__
from storylua.cli import main


def feed(monkeypatch, lines):
    it = iter(lines)
    monkeypatch.setattr('builtins.input', lambda prompt='': next(it))


class TestCommand:
    def test_command(self, capsys):
        assert main(['-c', 'print("hi")']) == 0
        assert capsys.readouterr().out == "hi\n"

    def test_command_failure(self, capsys):
        assert main(['-c', 'error("oops")']) == 1
        err = capsys.readouterr().err
        assert err.startswith("[error] ")
        assert "oops" in err

    def test_return_value_is_shown(self, capsys):
        main(['-c', 'return 5'])
        assert "=> 5" in capsys.readouterr().out

    def test_vars(self, capsys):
        main(['-c', 'x = 2; name = "Ann"', '--vars'])
        out = capsys.readouterr().out
        assert "x = 2" in out
        assert "name = 'Ann'" in out

    def test_max_iterations(self, capsys):
        assert main(['-c', 'while true do end', '--max-iterations', '3']) == 1
        assert "maximum iterations (3)" in capsys.readouterr().err

    def test_seed(self, capsys):
        main(['-c', 'print(math.random(1, 1000))', '--seed', '9'])
        first = capsys.readouterr().out
        main(['-c', 'print(math.random(1, 1000))', '--seed', '9'])
        assert capsys.readouterr().out == first

    def test_version(self, capsys):
        assert main(['--version']) == 0
        assert capsys.readouterr().out.strip() == f"storylua {__version__}"


class TestFile:
    def test_run_file(self, tmp_path, capsys):
        script = tmp_path / "intro.lua"
        script.write_text('for i = 1, 3 do\n  print("line " .. i)\nend\n', encoding='utf-8')
        assert main([str(script)]) == 0
        assert capsys.readouterr().out == "line 1\nline 2\nline 3\n"

    def test_missing_file(self, tmp_path, capsys):
        assert main([str(tmp_path / "nope.lua")]) == 1
        assert "File not found" in capsys.readouterr().err


class TestRepl:
    def test_buffers_open_blocks(self, monkeypatch, capsys):
        feed(monkeypatch, ['x = 1', 'while x < 3 do', 'x = x + 1', 'end', 'print(x)', 'exit'])
        assert main(['-i']) == 0
        out = capsys.readouterr().out
        assert "interactive mode" in out
        assert "3\n" in out

    def test_state_persists_between_entries(self, monkeypatch, capsys):
        feed(monkeypatch, ['function hi(n) return "hi " .. n end', 'print(hi("Bo"))', 'quit'])
        main([])
        assert "hi Bo" in capsys.readouterr().out

    def test_eof_exits(self, monkeypatch, capsys):
        def raise_eof(prompt=''):
            raise EOFError
        monkeypatch.setattr('builtins.input', raise_eof)
        assert main(['-i']) == 0
