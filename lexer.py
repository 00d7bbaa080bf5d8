from __future__ import annotations
from dataclasses import dataclass
from typing import List, Optional


class BasicError(Exception):
    """Base class for interpreter errors."""

    def __init__(self, message: str, *, rule: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        self.rule = rule
        self.line: Optional[int] = None
        self.step_index: Optional[int] = None


class BasicParseError(BasicError):
    """Raised when a statement or expression cannot be parsed."""


class BasicIOError(BasicError):
    """Raised when program files or input lines cannot be read or written."""


class BasicRuntimeError(BasicError):
    """Raised for faults while a program is running."""


@dataclass
class Token:
    type: str
    value: str
    column: int


LETTERS = "ABCDEFGHIJKLMNOPQRSTUVWXYZ"
DIGITS = "0123456789"

SYMBOLS = {
    "(": "LPAREN",
    ")": "RPAREN",
    "+": "PLUS",
    "-": "MINUS",
    "*": "STAR",
    "/": "SLASH",
    "=": "EQ",
    "#": "NE",
    "<": "LT",
    ">": "GT",
}

# Checked before SYMBOLS so the two-character forms win.
RELATIONAL_PAIRS = {
    "<>": "NE",
    "<=": "LE",
    ">=": "GE",
}


def collapse_whitespace(text: str) -> str:
    """Drop blanks and tabs that sit outside double-quoted literals."""
    out: List[str] = []
    quoted = False
    for ch in text:
        if ch == '"':
            quoted = not quoted
        if quoted or ch not in " \t":
            out.append(ch)
    return "".join(out)


class Lexer:
    def __init__(self, text: str) -> None:
        self.text = collapse_whitespace(text)
        self.index = 0

    def tokenize(self) -> List[Token]:
        tokens: List[Token] = []
        tokens_append = tokens.append
        text = self.text
        n = len(text)

        while self.index < n:
            ch = text[self.index]
            col = self.index + 1
            if ch in "\r\n":
                self.index += 1
                continue
            pair = text[self.index:self.index + 2]
            if pair in RELATIONAL_PAIRS:
                tokens_append(Token(RELATIONAL_PAIRS[pair], pair, col))
                self.index += 2
                continue
            if ch in SYMBOLS:
                tokens_append(Token(SYMBOLS[ch], ch, col))
                self.index += 1
                continue
            if ch == '"':
                tokens_append(self._consume_string())
                continue
            if ch in DIGITS:
                tokens_append(self._consume_number())
                continue
            if ch in LETTERS:
                tokens_append(Token("LETTER", ch, col))
                self.index += 1
                continue
            # Left for the parser to reject; REM text may contain anything.
            tokens_append(Token("OTHER", ch, col))
            self.index += 1
        tokens_append(Token("EOF", "", self.index + 1))
        return tokens

    def _consume_number(self) -> Token:
        start = self.index
        text = self.text
        n = len(text)
        while self.index < n and text[self.index] in DIGITS:
            self.index += 1
        return Token("NUMBER", text[start:self.index], start + 1)

    def _consume_string(self) -> Token:
        start = self.index
        self.index += 1  # opening quote
        end = self.text.find('"', self.index)
        if end < 0:
            # Unterminated literals run to the end of the statement.
            value = self.text[self.index:]
            self.index = len(self.text)
        else:
            value = self.text[self.index:end]
            self.index = end + 1
        return Token("STRING", value, start + 1)


def tokenize(text: str) -> List[Token]:
    return Lexer(text).tokenize()
