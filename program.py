from __future__ import annotations
import bisect
import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple


MIN_LINE_NUMBER = 1
MAX_LINE_NUMBER = 998

_DEFINITION = re.compile(r"^(\d+)(?: (.*))?$", re.DOTALL)


def parse_definition(raw: str) -> Optional[Tuple[int, str]]:
    """Split ``<number> <text>`` input. Returns None for anything malformed."""
    match = _DEFINITION.match(raw.rstrip("\r\n"))
    if match is None:
        return None
    number = int(match.group(1))
    if not MIN_LINE_NUMBER <= number <= MAX_LINE_NUMBER:
        return None
    return number, match.group(2) or ""


@dataclass
class ProgramStore:
    lines: Dict[int, str] = field(default_factory=dict)
    _order: List[int] = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self._order = sorted(self.lines)

    def set(self, number: int, text: str) -> None:
        if not text.strip():
            if number in self.lines:
                del self.lines[number]
                self._order.remove(number)
            return
        if number not in self.lines:
            bisect.insort(self._order, number)
        self.lines[number] = text

    def get(self, number: int) -> Optional[str]:
        return self.lines.get(number)

    def next_defined(self, number: int) -> Optional[int]:
        i = bisect.bisect_left(self._order, number)
        if i < len(self._order):
            return self._order[i]
        return None

    def first(self) -> Optional[int]:
        return self._order[0] if self._order else None

    def list(self) -> List[Tuple[int, str]]:
        return [(number, self.lines[number]) for number in self._order]

    def clear(self) -> None:
        self.lines.clear()
        self._order.clear()

    def define(self, raw: str) -> bool:
        parsed = parse_definition(raw)
        if parsed is None:
            return False
        self.set(*parsed)
        return True
