from __future__ import annotations
import json
import sys
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Callable, Deque, Dict, List, Optional, TextIO

from extensions import HookRegistry, RuntimeServices, StepContext, build_default_services
from lexer import LETTERS, BasicError, BasicIOError, BasicParseError, BasicRuntimeError
from parser import Parser, evaluate
from program import MAX_LINE_NUMBER, MIN_LINE_NUMBER, ProgramStore


MAX_INPUT_LENGTH = 998

# Counter value meaning "not running".
HALTED = 0

DEFAULT_HISTORY = 1000


class BoundedLineReader:
    """Reads newline-terminated lines of at most ``limit`` characters.

    An overlong line is drained up to its newline and reported as a
    BasicIOError; the next call starts on the following line.
    """

    def __init__(self, stream: TextIO, limit: int = MAX_INPUT_LENGTH) -> None:
        self.stream = stream
        self.limit = limit

    def read_line(self) -> Optional[str]:
        # Room for the limit plus a CRLF terminator.
        chunk = self.stream.readline(self.limit + 2)
        if chunk == "":
            return None
        complete = chunk.endswith("\n")
        line = chunk.rstrip("\r\n")
        if len(line) <= self.limit:
            return line
        while not complete:
            rest = self.stream.readline(self.limit + 2)
            complete = rest == "" or rest.endswith("\n")
        raise BasicIOError(f"Line too long (limit {self.limit} characters)")


class Variables:
    """The 26 integer slots A-Z."""

    def __init__(self) -> None:
        self.values: Dict[str, int] = {letter: 0 for letter in LETTERS}

    def __getitem__(self, letter: str) -> int:
        try:
            return self.values[letter]
        except KeyError:
            raise BasicParseError(f"Unknown variable '{letter}'")

    def __setitem__(self, letter: str, value: int) -> None:
        if letter not in self.values:
            raise BasicParseError(f"Unknown variable '{letter}'")
        self.values[letter] = value

    def reset(self) -> None:
        for letter in self.values:
            self.values[letter] = 0

    def snapshot(self) -> Dict[str, int]:
        return {k: v for k, v in self.values.items() if v != 0}


@dataclass
class LoopContext:
    limit: int
    resume_line: int


@dataclass
class StateEntry:
    step_index: int
    state_id: str
    line: int
    statement: str
    env_snapshot: Optional[Dict[str, int]]
    gosub_depth: int


class StateLogger:
    def __init__(self, history: int = DEFAULT_HISTORY) -> None:
        self.entries: Deque[StateEntry] = deque(maxlen=history)
        self.next_state_index = 0
        self.line_last_entry: Dict[int, StateEntry] = {}

    def record(
        self,
        *,
        line: int,
        statement: str,
        gosub_depth: int,
        env_snapshot: Optional[Dict[str, int]] = None,
    ) -> StateEntry:
        step_index = self.next_state_index
        entry = StateEntry(
            step_index=step_index,
            state_id=f"s_{step_index:06d}",
            line=line,
            statement=statement,
            env_snapshot=env_snapshot,
            gosub_depth=gosub_depth,
        )
        self.entries.append(entry)
        self.line_last_entry[line] = entry
        self.next_state_index += 1
        return entry

    def last_entry_for_line(self, line: int) -> Optional[StateEntry]:
        return self.line_last_entry.get(line)


class Interpreter:
    def __init__(
        self,
        *,
        program: Optional[ProgramStore] = None,
        verbose: bool = False,
        services: Optional[RuntimeServices] = None,
        input_provider: Optional[Callable[[], Optional[str]]] = None,
        output_sink: Optional[Callable[[str], None]] = None,
        history: int = DEFAULT_HISTORY,
    ) -> None:
        self.program = program if program is not None else ProgramStore()
        self.verbose = verbose
        self.history = history
        self.services = services or build_default_services()
        self.hook_registry: HookRegistry = self.services.hook_registry
        self.input_provider = input_provider or BoundedLineReader(sys.stdin).read_line
        self.output_sink = output_sink or (lambda text: print(text))

        self.variables = Variables()
        self.loops: Dict[str, LoopContext] = {}
        self.call_stack: List[int] = []
        self.counter = HALTED
        self.logger = StateLogger(history)
        self.io_log: Deque[Dict[str, Any]] = deque(maxlen=history)

    def reset(self) -> None:
        self.variables.reset()
        self.loops.clear()
        self.call_stack.clear()
        self.counter = HALTED
        self.logger = StateLogger(self.history)
        self.io_log = deque(maxlen=self.history)

    def run(self) -> None:
        self.reset()
        first = self.program.first()
        self.counter = HALTED if first is None else first
        try:
            self._emit_event("program_start")
            while self.counter != HALTED:
                self._step()
        except BasicError as error:
            self._fail(error)
            raise
        except Exception as exc:
            # Surface Python-level faults the same way as BASIC ones so the
            # dispatcher can report them and carry on.
            wrapped = BasicRuntimeError(f"Internal interpreter error: {exc}", rule="internal")
            self._fail(wrapped)
            raise wrapped
        else:
            self._emit_event("program_end", 0)

    def _fail(self, error: BasicError) -> None:
        if error.line is None:
            error.line = self.counter
        if self.logger.entries:
            error.step_index = self.logger.entries[-1].step_index
        self.counter = HALTED
        self._emit_event("on_error", error)

    def _step(self) -> None:
        number = self.counter
        text = self.program.get(number) or ""
        self._log_step(number, text)
        self._emit_event("before_statement", number, text)
        target = self._execute_statement(number, text)
        self._emit_event("after_statement", number, text)
        self.counter = self._resolve(number + 1 if target is None else target)

    def _resolve(self, target: int) -> int:
        """Map a requested line to the next stored one; HALTED when there is none."""
        if target < MIN_LINE_NUMBER or target > MAX_LINE_NUMBER:
            return HALTED
        found = self.program.next_defined(target)
        return HALTED if found is None else found

    def _execute_statement(self, number: int, text: str) -> Optional[int]:
        """Run one program line. Returns a jump target, or None to fall through."""
        parser = Parser.from_text(text, self.variables)
        if parser.peek_type() == "LETTER" and parser.peek_type(1) == "EQ":
            self._execute_assignment(parser)
            return None
        if parser.match_keyword("END"):
            parser.expect_end()
            return HALTED
        if parser.match_keyword("RETURN"):
            parser.expect_end()
            if not self.call_stack:
                raise BasicRuntimeError("RETURN without GOSUB", rule="RETURN")
            return self.call_stack.pop() + 1
        if parser.match_keyword("REM"):
            return None
        if parser.match_keyword("INPUT"):
            self._execute_input(parser)
            return None
        if parser.match_keyword("IF"):
            return self._execute_if(parser)
        if parser.match_keyword("PRINT"):
            self._execute_print(parser)
            return None
        if parser.match_keyword("GOSUB"):
            target = parser.expression()
            parser.expect_end()
            self.call_stack.append(number)
            return target
        if parser.match_keyword("GOTO"):
            target = parser.expression()
            parser.expect_end()
            return target
        if parser.match_keyword("FOR"):
            self._execute_for(parser, number)
            return None
        if parser.match_keyword("NEXT"):
            return self._execute_next(parser)
        # Unrecognised text is a comment-like no-op line.
        return None

    def _execute_assignment(self, parser: Parser) -> None:
        letter = parser.letter()
        parser.consume("EQ")
        value = parser.expression()
        parser.expect_end()
        self.variables[letter] = value

    def _execute_input(self, parser: Parser) -> None:
        tokens = parser.tokens
        if len(tokens) < 2 or tokens[-2].type != "LETTER" or parser.peek_type() == "EOF":
            raise BasicParseError("INPUT expects a variable name")
        letter = tokens[-2].value
        text = self.input_provider()
        if text is None:
            raise BasicRuntimeError("End of input during INPUT", rule="INPUT")
        value = evaluate(text, self.variables)
        self.io_log.append({"event": "INPUT", "text": text, "variable": letter})
        self.variables[letter] = value

    def _execute_if(self, parser: Parser) -> Optional[int]:
        condition = parser.expression()
        parser.expect_keyword("THEN")
        if condition == 0:
            return None
        target = parser.expression()
        parser.expect_end()
        return target

    def _execute_print(self, parser: Parser) -> None:
        literal = parser.match("STRING")
        if literal is not None:
            # Anything after the closing quote is dropped.
            self._emit(literal.value)
            return
        if parser.peek_type() == "EOF":
            self._emit("")
            return
        value = parser.expression()
        parser.expect_end()
        self._emit(str(value))

    def _execute_for(self, parser: Parser, number: int) -> None:
        letter = parser.letter()
        parser.consume("EQ")
        self.variables[letter] = parser.expression()
        parser.expect_keyword("TO")
        limit = parser.expression()
        parser.expect_end()
        # A second FOR on the same letter replaces the first.
        self.loops[letter] = LoopContext(limit=limit, resume_line=number)

    def _execute_next(self, parser: Parser) -> Optional[int]:
        letter = parser.letter()
        parser.expect_end()
        value = self.variables[letter] + 1
        self.variables[letter] = value
        loop = self.loops.get(letter)
        if loop is not None and value <= loop.limit:
            return loop.resume_line + 1
        return None

    def _emit(self, text: str) -> None:
        self.output_sink(text)
        self.io_log.append({"event": "PRINT", "text": text})

    def _emit_event(self, event: str, *args: Any) -> None:
        self.hook_registry.emit(event, self, *args)

    def _log_step(self, number: int, text: str) -> None:
        env_snapshot = self.variables.snapshot() if self.verbose else None
        entry = self.logger.record(
            line=number,
            statement=text,
            gosub_depth=len(self.call_stack),
            env_snapshot=env_snapshot,
        )
        self.hook_registry.after_step(
            self,
            StepContext(step_index=entry.step_index, line=number, statement=text),
        )


@dataclass
class TracebackFrame:
    name: str
    line: Optional[int]
    statement: Optional[str]
    state_entry: Optional[StateEntry] = field(default=None)


class TracebackFormatter:
    def __init__(self, interpreter: Interpreter) -> None:
        self.interpreter = interpreter

    def build_frames(self, error: BasicError) -> List[TracebackFrame]:
        interpreter = self.interpreter
        frames: List[TracebackFrame] = []
        # Each pending GOSUB is a caller frame; the failing line is innermost.
        lines = list(interpreter.call_stack)
        if error.line:
            lines.append(error.line)
        for depth, line in enumerate(lines):
            name = "<program>" if depth == 0 else f"<gosub {lines[depth - 1]}>"
            frames.append(
                TracebackFrame(
                    name=name,
                    line=line,
                    statement=interpreter.program.get(line),
                    state_entry=interpreter.logger.last_entry_for_line(line),
                )
            )
        return frames

    def format_text(self, error: BasicError, verbose: bool) -> str:
        lines = ["Traceback (most recent call last):"]
        for frame in self.build_frames(error):
            lines.append(f"  Line {frame.line}, in {frame.name}")
            if frame.statement:
                lines.append(f"    {frame.statement}")
            if frame.state_entry:
                lines.append(
                    f"    State log index: {frame.state_entry.step_index}  State id: {frame.state_entry.state_id}"
                )
                if verbose and frame.state_entry.env_snapshot is not None:
                    snapshot = ", ".join(f"{k}={v}" for k, v in frame.state_entry.env_snapshot.items())
                    lines.append(f"    Variables: {snapshot or '(all zero)'}")
        rule = error.rule or "runtime"
        lines.append(f"{error.__class__.__name__}: {error.message} (rule: {rule})")
        return "\n".join(lines)

    def to_json(self, error: BasicError) -> str:
        frames_json: List[Dict[str, Any]] = []
        for index, frame in enumerate(self.build_frames(error)):
            entry: Dict[str, Any] = {"frame_index": index, "name": frame.name, "line": frame.line}
            if frame.statement is not None:
                entry["statement"] = frame.statement
            if frame.state_entry:
                entry["state_id"] = frame.state_entry.state_id
                entry["step_index"] = frame.state_entry.step_index
                entry["gosub_depth"] = frame.state_entry.gosub_depth
                if frame.state_entry.env_snapshot is not None:
                    entry["env_snapshot"] = frame.state_entry.env_snapshot
            frames_json.append(entry)
        data = {
            "error": {
                "type": error.__class__.__name__,
                "message": error.message,
                "rule": error.rule,
                "failing_step_index": error.step_index,
            },
            "traceback": frames_json,
        }
        return json.dumps(data, indent=2)
