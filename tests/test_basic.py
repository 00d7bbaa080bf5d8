import io
import json
import sys

import pytest

from basic import PROMPT, Dispatcher, run_cli
from interpreter import BoundedLineReader, Interpreter, TracebackFormatter
from lexer import BasicIOError, BasicRuntimeError

from conftest import make_interpreter


class Session:
    def __init__(self, **kwargs):
        self.output = []
        self.errors = []
        self.interpreter = Interpreter(output_sink=self.output.append, input_provider=lambda: None)
        self.dispatcher = Dispatcher(self.interpreter, error_sink=self.errors.append, **kwargs)

    def feed(self, *lines):
        pending = iter(lines)
        return self.dispatcher.loop(lambda: next(pending, None))

    def printed(self):
        return [line for line in self.output if line != PROMPT]


def test_prompt_before_every_read():
    session = Session()
    session.feed("10 PRINT 1", "")
    assert session.output == [PROMPT, PROMPT, PROMPT]


def test_run_and_list():
    session = Session()
    session.feed("20 PRINT 2", "10 PRINT 1", "RUN", "LIST")
    assert session.printed() == ["1", "2", "10 PRINT 1", "20 PRINT 2"]


def test_number_alone_deletes_line():
    session = Session()
    session.feed("10 PRINT 1", "20 PRINT 2", "10", "LIST")
    assert session.printed() == ["20 PRINT 2"]


def test_new_clears_program():
    session = Session()
    session.feed("10 PRINT 1", "NEW", "LIST")
    assert session.printed() == []


def test_bye_stops_reading():
    session = Session()
    assert session.feed("BYE", "10 PRINT 1") == 0
    assert session.output == [PROMPT]
    assert session.interpreter.program.list() == []


def test_unknown_input_is_reported():
    session = Session()
    session.feed("HELLO")
    assert session.errors == ["?Syntax error: HELLO"]


def test_division_by_zero_returns_to_immediate_mode():
    session = Session()
    session.feed("10 PRINT 1/0", "RUN", "LIST")
    assert session.printed() == ["10 PRINT 1/0"]
    assert len(session.errors) == 1
    assert "Line 10, in <program>" in session.errors[0]
    assert session.errors[0].endswith("BasicRuntimeError: Division by zero (rule: /)")


def test_traceback_json_is_optional():
    session = Session(traceback_json=True)
    session.feed("10 RETURN", "RUN")
    data = json.loads(session.errors[1])
    assert data["error"]["message"] == "RETURN without GOSUB"
    assert data["traceback"][0]["line"] == 10


def test_save_new_load_round_trip(tmp_path):
    path = str(tmp_path / "prog.bas")
    session = Session()
    session.feed("10 A=2", "20 PRINT A*A", "LIST", f"SAVE {path}", "NEW", f"LOAD {path}", "LIST", "RUN")
    assert session.printed() == ["10 A=2", "20 PRINT A*A", "10 A=2", "20 PRINT A*A", "4"]
    assert session.errors == []


def test_old_is_an_alias_for_load(tmp_path):
    path = tmp_path / "prog.bas"
    path.write_text("10 PRINT 3\n", encoding="utf-8")
    session = Session()
    session.feed(f"OLD {path}", "RUN")
    assert session.printed() == ["3"]


def test_load_failure_keeps_program(tmp_path):
    session = Session()
    session.feed("10 END", f"LOAD {tmp_path / 'missing.bas'}", "LOAD", "LIST")
    assert session.printed() == ["10 END"]
    assert session.errors[0].startswith("?Failed to read")
    assert session.errors[1] == "?LOAD requires a file name"


def test_overlong_line_is_rejected():
    stream = io.StringIO("1" * 1200 + "\nRUN\n")
    reader = BoundedLineReader(stream)
    with pytest.raises(BasicIOError, match="Line too long"):
        reader.read_line()
    assert reader.read_line() == "RUN"
    assert reader.read_line() is None


def test_reader_limits():
    reader = BoundedLineReader(io.StringIO("x" * 998 + "\r\n" + "y" * 998))
    assert reader.read_line() == "x" * 998
    assert reader.read_line() == "y" * 998


def test_dispatcher_reports_overlong_lines_and_continues():
    session = Session()
    reader = BoundedLineReader(io.StringIO("9" * 999 + "\n10 PRINT 5\nRUN\n"))
    session.dispatcher.loop(reader.read_line)
    assert session.errors == ["?Line too long (limit 998 characters)"]
    assert session.printed() == ["5"]


def test_traceback_lists_gosub_frames():
    interpreter, _ = make_interpreter(["10 GOSUB 100", "20 END", "100 PRINT 1/0"], verbose=True)
    with pytest.raises(BasicRuntimeError) as excinfo:
        interpreter.run()
    text = TracebackFormatter(interpreter).format_text(excinfo.value, verbose=True)
    lines = text.splitlines()
    assert lines[0] == "Traceback (most recent call last):"
    assert "  Line 10, in <program>" in lines
    assert "  Line 100, in <gosub 10>" in lines
    assert "    PRINT 1/0" in lines


def test_cli_runs_program_file(tmp_path, capsys):
    path = tmp_path / "prog.bas"
    path.write_text("10 FOR I=1 TO 2\n20 PRINT I\n30 NEXT I\n", encoding="utf-8")
    assert run_cli([str(path)]) == 0
    assert capsys.readouterr().out == "1\n2\n"


def test_cli_missing_program(tmp_path, capsys):
    assert run_cli([str(tmp_path / "missing.bas")]) == 1
    assert "Failed to read" in capsys.readouterr().err


def test_cli_step_budget(tmp_path, capsys):
    path = tmp_path / "loop.bas"
    path.write_text("10 GOTO 10\n", encoding="utf-8")
    assert run_cli(["--max-steps", "25", str(path)]) == 1
    assert "Step budget of 25 exceeded" in capsys.readouterr().err


def test_cli_trace(tmp_path, capsys):
    path = tmp_path / "prog.bas"
    path.write_text("10 A=1\n20 PRINT A\n", encoding="utf-8")
    assert run_cli(["--trace", str(path)]) == 0
    assert capsys.readouterr().out == "[10]\n[20]\n1\n"


def test_cli_interactive(monkeypatch, capsys):
    monkeypatch.setattr(sys, "stdin", io.StringIO("10 PRINT 4\nRUN\nBYE\n"))
    assert run_cli([]) == 0
    assert capsys.readouterr().out == "Ok\nOk\n4\nOk\n"


def test_cli_input_statement(monkeypatch, capsys):
    monkeypatch.setattr(sys, "stdin", io.StringIO("10 INPUT N\n20 PRINT N*3\nRUN\n7\n"))
    assert run_cli([]) == 0
    assert capsys.readouterr().out == "Ok\nOk\nOk\n21\nOk\n"


def test_cli_extension(tmp_path, capsys):
    ext = tmp_path / "done_ext.py"
    ext.write_text(
        "def basic_register(ext):\n"
        "    @ext.on_event('program_end')\n"
        "    def _done(interpreter, code):\n"
        "        interpreter.output_sink('DONE %d' % code)\n",
        encoding="utf-8",
    )
    prog = tmp_path / "prog.bas"
    prog.write_text("10 PRINT 1\n", encoding="utf-8")
    assert run_cli(["--ext", str(ext), str(prog)]) == 0
    assert capsys.readouterr().out == "1\nDONE 0\n"


def test_cli_rejects_bad_extension(tmp_path, capsys):
    ext = tmp_path / "empty_ext.py"
    ext.write_text("X = 1\n", encoding="utf-8")
    assert run_cli(["--ext", str(ext)]) == 1
    assert "basic_register" in capsys.readouterr().err


def test_deeply_nested_expression_is_reported_as_parse_error():
    session = Session()
    session.feed("10 PRINT " + "(" * 200 + "1" + ")" * 200, "20 PRINT 2", "RUN", "LIST")
    assert len(session.errors) == 1
    assert "BasicParseError: Expression too deeply nested" in session.errors[0]
    assert "Internal interpreter error" not in session.errors[0]
    assert session.printed()[-1] == "20 PRINT 2"
