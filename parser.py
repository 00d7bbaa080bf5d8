from __future__ import annotations
from typing import Dict, List, Mapping, Optional

from lexer import BasicParseError, BasicRuntimeError, Token, tokenize


# Binary operator tiers, loosest first. Each maps a token type to its rule name.
EQUALITY_OPS: Dict[str, str] = {"EQ": "=", "NE": "#"}
ORDER_OPS: Dict[str, str] = {"LT": "<", "GT": ">"}
ORDER_EQ_OPS: Dict[str, str] = {"LE": "<=", "GE": ">="}
ADDITIVE_OPS: Dict[str, str] = {"PLUS": "+", "MINUS": "-"}
MULTIPLICATIVE_OPS: Dict[str, str] = {"STAR": "*", "SLASH": "/"}

# Parentheses and unary minus each add a level; deeper input is rejected
# before it can exhaust the Python stack.
MAX_NESTING = 64


def truncating_div(a: int, b: int) -> int:
    if b == 0:
        raise BasicRuntimeError("Division by zero", rule="/")
    q = abs(a) // abs(b)
    return q if (a < 0) == (b < 0) else -q


def apply_operator(op: str, left: int, right: int) -> int:
    if op == "=":
        return 1 if left == right else 0
    if op == "#":
        return 1 if left != right else 0
    if op == "<":
        return 1 if left < right else 0
    if op == ">":
        return 1 if left > right else 0
    if op == "<=":
        return 1 if left <= right else 0
    if op == ">=":
        return 1 if left >= right else 0
    if op == "+":
        return left + right
    if op == "-":
        return left - right
    if op == "*":
        return left * right
    if op == "/":
        return truncating_div(left, right)
    raise BasicParseError(f"Unknown operator '{op}'")


class Parser:
    """Token cursor shared by statement dispatch and expression evaluation.

    Expressions are evaluated while they are parsed; there is no tree.
    Keywords are spelled out by runs of LETTER tokens, so the statement
    layer asks for them with ``match_keyword`` and then hands the same
    cursor to ``expression`` for the operands.
    """

    def __init__(self, tokens: List[Token], variables: Mapping[str, int]) -> None:
        self.tokens = tokens
        self.variables = variables
        self.index = 0
        self.depth = 0

    @classmethod
    def from_text(cls, text: str, variables: Mapping[str, int]) -> "Parser":
        return cls(tokenize(text), variables)

    # ---- expressions ----

    def expression(self) -> int:
        return self._parse_equality()

    def _parse_equality(self) -> int:
        return self._parse_tier(self._parse_order, EQUALITY_OPS)

    def _parse_order(self) -> int:
        return self._parse_tier(self._parse_order_eq, ORDER_OPS)

    def _parse_order_eq(self) -> int:
        return self._parse_tier(self._parse_additive, ORDER_EQ_OPS)

    def _parse_additive(self) -> int:
        return self._parse_tier(self._parse_multiplicative, ADDITIVE_OPS)

    def _parse_multiplicative(self) -> int:
        return self._parse_tier(self._parse_primary, MULTIPLICATIVE_OPS)

    def _parse_tier(self, operand, operators: Dict[str, str]) -> int:
        value = operand()
        while self._peek().type in operators:
            op = operators[self._advance().type]
            value = apply_operator(op, value, operand())
        return value

    def _parse_primary(self) -> int:
        token = self._peek()
        if token.type == "MINUS":
            self._advance()
            self._enter(token)
            value = -self._parse_primary()
            self.depth -= 1
            return value
        if token.type == "NUMBER":
            return int(self._advance().value)
        if token.type == "LPAREN":
            self._advance()
            self._enter(token)
            value = self.expression()
            self.consume("RPAREN")
            self.depth -= 1
            return value
        if token.type == "LETTER":
            return self.variables[self._advance().value]
        if token.type == "EOF":
            raise BasicParseError(f"Unexpected end of expression at column {token.column}")
        raise BasicParseError(f"Unexpected '{token.value}' in expression at column {token.column}")

    def _enter(self, token: Token) -> None:
        self.depth += 1
        if self.depth > MAX_NESTING:
            raise BasicParseError(f"Expression too deeply nested at column {token.column}")

    # ---- statement-level helpers ----

    def match_keyword(self, word: str) -> bool:
        end = self.index + len(word)
        if end > len(self.tokens):
            return False
        for offset, ch in enumerate(word):
            token = self.tokens[self.index + offset]
            if token.type != "LETTER" or token.value != ch:
                return False
        self.index = end
        return True

    def expect_keyword(self, word: str) -> None:
        if not self.match_keyword(word):
            token = self._peek()
            raise BasicParseError(f"Expected {word} at column {token.column}")

    def letter(self) -> str:
        return self.consume("LETTER").value

    def peek_type(self, offset: int = 0) -> str:
        i = min(self.index + offset, len(self.tokens) - 1)
        return self.tokens[i].type

    def match(self, token_type: str) -> Optional[Token]:
        if self._peek().type == token_type:
            return self._advance()
        return None

    def consume(self, token_type: str) -> Token:
        token = self._peek()
        if token.type != token_type:
            found = token.value or token.type
            raise BasicParseError(f"Expected {token_type} but found '{found}' at column {token.column}")
        return self._advance()

    def expect_end(self) -> None:
        token = self._peek()
        if token.type != "EOF":
            raise BasicParseError(f"Unexpected '{token.value}' after statement at column {token.column}")

    def _peek(self) -> Token:
        return self.tokens[self.index]

    def _advance(self) -> Token:
        token = self.tokens[self.index]
        if token.type != "EOF":
            self.index += 1
        return token


def evaluate(text: str, variables: Mapping[str, int]) -> int:
    """Evaluate a complete expression, rejecting trailing input."""
    parser = Parser.from_text(text, variables)
    value = parser.expression()
    parser.expect_end()
    return value
