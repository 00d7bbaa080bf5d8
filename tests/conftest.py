"""Shared helpers for building and running small programs."""

from typing import Iterable, List, Optional

import pytest

from extensions import RuntimeServices
from interpreter import Interpreter
from program import ProgramStore


def make_interpreter(
    lines: Iterable[str],
    *,
    inputs: Iterable[str] = (),
    services: Optional[RuntimeServices] = None,
    verbose: bool = False,
):
    store = ProgramStore()
    for line in lines:
        assert store.define(line), line
    output: List[str] = []
    feed = iter(inputs)
    interpreter = Interpreter(
        program=store,
        verbose=verbose,
        services=services,
        input_provider=lambda: next(feed, None),
        output_sink=output.append,
    )
    return interpreter, output


def run_lines(*lines: str, inputs: Iterable[str] = ()) -> List[str]:
    interpreter, output = make_interpreter(lines, inputs=inputs)
    interpreter.run()
    return output


@pytest.fixture
def run():
    return run_lines
