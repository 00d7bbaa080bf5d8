from __future__ import annotations

from lexer import BasicIOError
from program import ProgramStore


def save_program(store: ProgramStore, path: str) -> int:
    """Write every stored line as ``<number> <text>``. Returns the line count."""
    if not path:
        raise BasicIOError("SAVE requires a file name")
    lines = store.list()
    try:
        # Only "\n" separates records; other line-break characters are text.
        with open(path, "w", encoding="utf-8", newline="\n") as handle:
            for number, text in lines:
                handle.write(f"{number} {text}\n")
    except OSError as exc:
        raise BasicIOError(f"Failed to write '{path}': {exc}")
    return len(lines)


def load_program(store: ProgramStore, path: str) -> int:
    """Feed each file line through the line-definition path.

    Records are split on "\\n" alone, with an optional "\\r" before it
    dropped, so form feeds and Unicode separators inside a line's text
    survive a SAVE/LOAD round trip. Lines that do not parse as
    definitions are dropped. The current program is merged into, not
    replaced. Returns the number of lines that were accepted.
    """
    if not path:
        raise BasicIOError("LOAD requires a file name")
    try:
        with open(path, "r", encoding="utf-8", errors="replace", newline="\n") as handle:
            raw_lines = handle.read().split("\n")
    except OSError as exc:
        raise BasicIOError(f"Failed to read '{path}': {exc}")
    accepted = 0
    for raw in raw_lines:
        if raw.endswith("\r"):
            raw = raw[:-1]
        if store.define(raw):
            accepted += 1
    return accepted
