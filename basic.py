"""Line-numbered BASIC entry point and command dispatcher."""

from __future__ import annotations
import argparse
import sys
from typing import Callable, Dict, List, Optional

from extensions import ExtensionAPI, ExtensionError, RuntimeServices, StepContext, load_runtime_services
from interpreter import BoundedLineReader, Interpreter, TracebackFormatter
from lexer import BasicError, BasicIOError, BasicRuntimeError
from program import ProgramStore
from storage import load_program, save_program


PROMPT = "Ok"


class Dispatcher:
    """Immediate-mode loop: commands run at once, numbered lines are stored."""

    def __init__(
        self,
        interpreter: Interpreter,
        *,
        output_sink: Optional[Callable[[str], None]] = None,
        error_sink: Optional[Callable[[str], None]] = None,
        traceback_json: bool = False,
    ) -> None:
        self.interpreter = interpreter
        self.program: ProgramStore = interpreter.program
        self.output_sink = output_sink or interpreter.output_sink
        self.error_sink = error_sink or (lambda text: print(text, file=sys.stderr))
        self.traceback_json = traceback_json
        self.commands: Dict[str, Callable[[str], bool]] = {
            "RUN": self._cmd_run,
            "LIST": self._cmd_list,
            "NEW": self._cmd_new,
            "BYE": self._cmd_bye,
            "SAVE": self._cmd_save,
            "LOAD": self._cmd_load,
            "OLD": self._cmd_load,
        }

    def loop(self, read_line: Callable[[], Optional[str]]) -> int:
        while True:
            self.output_sink(PROMPT)
            try:
                line = read_line()
            except BasicIOError as error:
                self.error_sink(f"?{error.message}")
                continue
            if line is None:
                break
            if not self.handle(line):
                break
        return 0

    def handle(self, line: str) -> bool:
        """Process one input line. Returns False once BYE is seen."""
        stripped = line.strip()
        if not stripped:
            return True
        parts = stripped.split(maxsplit=1)
        command = self.commands.get(parts[0])
        if command is not None:
            return command(parts[1] if len(parts) > 1 else "")
        if not self.program.define(line.lstrip()):
            self.error_sink(f"?Syntax error: {stripped}")
        return True

    def run_program(self) -> bool:
        try:
            self.interpreter.run()
        except BasicError as error:
            self.report(error)
            return False
        return True

    def report(self, error: BasicError) -> None:
        formatter = TracebackFormatter(self.interpreter)
        self.error_sink(formatter.format_text(error, verbose=self.interpreter.verbose))
        if self.traceback_json:
            self.error_sink(formatter.to_json(error))

    def _cmd_run(self, _arg: str) -> bool:
        self.run_program()
        return True

    def _cmd_list(self, _arg: str) -> bool:
        for number, text in self.program.list():
            self.output_sink(f"{number} {text}")
        return True

    def _cmd_new(self, _arg: str) -> bool:
        self.program.clear()
        return True

    def _cmd_bye(self, _arg: str) -> bool:
        return False

    def _cmd_save(self, arg: str) -> bool:
        try:
            save_program(self.program, arg)
        except BasicIOError as error:
            self.error_sink(f"?{error.message}")
        return True

    def _cmd_load(self, arg: str) -> bool:
        try:
            load_program(self.program, arg)
        except BasicIOError as error:
            self.error_sink(f"?{error.message}")
        return True


def install_trace(services: RuntimeServices) -> None:
    ext = ExtensionAPI(services=services, ext_name="trace")

    @ext.on_event("before_statement")
    def _trace(interpreter: Interpreter, number: int, _text: str) -> None:
        interpreter.output_sink(f"[{number}]")


def install_step_budget(services: RuntimeServices, max_steps: int) -> None:
    ext = ExtensionAPI(services=services, ext_name="step-budget")

    @ext.every_n_steps(1)
    def _budget(_interpreter: Interpreter, ctx: StepContext) -> None:
        if ctx.step_index >= max_steps:
            raise BasicRuntimeError(f"Step budget of {max_steps} exceeded", rule="STEPS")


def run_cli(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Line-numbered BASIC interpreter")
    parser.add_argument("program", nargs="?", help="Program file to load and run")
    parser.add_argument("-verbose", "--verbose", dest="verbose", action="store_true", help="Show variables in tracebacks")
    parser.add_argument("--traceback-json", action="store_true", help="Also emit JSON traceback")
    parser.add_argument("--trace", action="store_true", help="Print each line number as it executes")
    parser.add_argument("--max-steps", type=int, default=None, help="Abort a RUN after this many executed lines")
    parser.add_argument("--ext", action="append", default=[], metavar="PATH", help="Load a hook extension module")
    args = parser.parse_args(argv)

    if args.max_steps is not None and args.max_steps <= 0:
        print("--max-steps must be positive", file=sys.stderr)
        return 1

    try:
        services = load_runtime_services(args.ext)
    except ExtensionError as exc:
        print(f"Extension error: {exc}", file=sys.stderr)
        return 1
    if args.trace:
        install_trace(services)
    if args.max_steps is not None:
        install_step_budget(services, args.max_steps)

    reader = BoundedLineReader(sys.stdin)
    interpreter = Interpreter(verbose=args.verbose, services=services, input_provider=reader.read_line)
    dispatcher = Dispatcher(interpreter, traceback_json=args.traceback_json)

    if args.program is None:
        return dispatcher.loop(reader.read_line)

    try:
        load_program(interpreter.program, args.program)
    except BasicIOError as error:
        print(f"?{error.message}", file=sys.stderr)
        return 1
    return 0 if dispatcher.run_program() else 1


if __name__ == "__main__":
    raise SystemExit(run_cli())
