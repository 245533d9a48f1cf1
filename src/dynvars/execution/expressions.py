"""
Restricted arithmetic expressions for calc operations.

Evaluation runs in three passes:

1. Substitution: every name (unicode letters, digits, underscores, dotted
   segments and [n] indices) is replaced by the numeric value stored at that
   path; anything missing or non-numeric becomes 0. Numeric literals pass
   through unchanged.
2. Whitelisting: the substituted text may only contain ASCII digits, the
   operators + - * / %, parentheses, dots and whitespace.
3. Parsing and evaluation: a recursive-descent parser builds a small AST
   over a closed node set, and a walker evaluates it with IEEE double
   semantics for division (x/0 is +-Infinity, 0/0 is NaN).

Any failure in any pass yields None. Nothing from the input is ever handed
to the Python interpreter.
"""

import logging
import math
import re
from dataclasses import dataclass
from enum import Enum
from typing import Union

from dynvars.core.document import DocumentStore
from dynvars.execution.conditions import is_number

logger = logging.getLogger(__name__)

Number = Union[int, float]

SUBSTITUTION_PATTERN = re.compile(
    r"(?P<number>[0-9]+(?:\.[0-9]*)?|\.[0-9]+)"
    r"|(?P<name>[^\W\d]\w*(?:\.\w+|\[\s*\d+\s*\])*)"
)
WHITELIST_PATTERN = re.compile(r"^[0-9+\-*/%().\s]*$")
NUMBER_PATTERN = re.compile(r"[0-9]+(?:\.[0-9]*)?|\.[0-9]+")


class TokenType(Enum):
    """Lexical categories of a whitelisted expression."""

    NUMBER = "number"
    OPERATOR = "operator"
    LPAREN = "("
    RPAREN = ")"
    END = "end"


@dataclass(frozen=True)
class Token:
    type: TokenType
    text: str
    position: int


@dataclass(frozen=True)
class NumberNode:
    value: Number


@dataclass(frozen=True)
class UnaryNode:
    operator: str
    operand: "ExpressionNode"


@dataclass(frozen=True)
class BinaryNode:
    operator: str
    left: "ExpressionNode"
    right: "ExpressionNode"


ExpressionNode = Union[NumberNode, UnaryNode, BinaryNode]


class ExpressionSyntaxError(ValueError):
    """Raised by the tokenizer and parser on malformed input."""

    pass


def tokenize(text: str) -> list[Token]:
    """
    Split a whitelisted expression into tokens.

    Raises:
        ExpressionSyntaxError: On any character outside the grammar
    """
    tokens: list[Token] = []
    position = 0
    while position < len(text):
        char = text[position]
        if char.isspace():
            position += 1
            continue
        number = NUMBER_PATTERN.match(text, position)
        if number:
            tokens.append(Token(TokenType.NUMBER, number.group(), position))
            position = number.end()
            continue
        if char in "+-*/%":
            tokens.append(Token(TokenType.OPERATOR, char, position))
        elif char == "(":
            tokens.append(Token(TokenType.LPAREN, char, position))
        elif char == ")":
            tokens.append(Token(TokenType.RPAREN, char, position))
        else:
            raise ExpressionSyntaxError(f"unexpected '{char}' at {position}")
        position += 1
    tokens.append(Token(TokenType.END, "", len(text)))
    return tokens


class ExpressionParser:
    """
    Recursive-descent parser for + - * / % with parentheses and unary signs.

    Grammar:
        expression := term (("+" | "-") term)*
        term       := unary (("*" | "/" | "%") unary)*
        unary      := ("+" | "-") unary | primary
        primary    := NUMBER | "(" expression ")"
    """

    def __init__(self, text: str, max_depth: int = 64):
        self.tokens = tokenize(text)
        self.position = 0
        self.max_depth = max_depth
        self.depth = 0

    def parse(self) -> ExpressionNode:
        node = self._expression()
        if self._peek().type is not TokenType.END:
            token = self._peek()
            raise ExpressionSyntaxError(f"unexpected '{token.text}' at {token.position}")
        return node

    def _peek(self) -> Token:
        return self.tokens[self.position]

    def _advance(self) -> Token:
        token = self.tokens[self.position]
        self.position += 1
        return token

    def _descend(self) -> None:
        self.depth += 1
        if self.depth > self.max_depth:
            raise ExpressionSyntaxError("expression nested too deeply")

    def _expression(self) -> ExpressionNode:
        node = self._term()
        while self._peek().type is TokenType.OPERATOR and self._peek().text in "+-":
            operator = self._advance().text
            node = BinaryNode(operator, node, self._term())
        return node

    def _term(self) -> ExpressionNode:
        node = self._unary()
        while self._peek().type is TokenType.OPERATOR and self._peek().text in "*/%":
            operator = self._advance().text
            node = BinaryNode(operator, node, self._unary())
        return node

    def _unary(self) -> ExpressionNode:
        token = self._peek()
        if token.type is TokenType.OPERATOR and token.text in "+-":
            self._advance()
            self._descend()
            operand = self._unary()
            self.depth -= 1
            return UnaryNode(token.text, operand)
        return self._primary()

    def _primary(self) -> ExpressionNode:
        token = self._advance()
        if token.type is TokenType.NUMBER:
            text = token.text
            if "." in text:
                return NumberNode(float(text))
            return NumberNode(int(text))
        if token.type is TokenType.LPAREN:
            self._descend()
            node = self._expression()
            self.depth -= 1
            if self._advance().type is not TokenType.RPAREN:
                raise ExpressionSyntaxError(f"missing ')' for '(' at {token.position}")
            return node
        raise ExpressionSyntaxError(f"unexpected '{token.text or 'end'}' at {token.position}")


def _divide(left: Number, right: Number) -> Number:
    if right == 0:
        if left == 0 or math.isnan(left):
            return math.nan
        return math.copysign(math.inf, left) * math.copysign(1.0, right)
    return left / right


def _remainder(left: Number, right: Number) -> Number:
    # Sign follows the dividend, as in IEEE fmod.
    if isinstance(left, int) and isinstance(right, int):
        if right == 0:
            return math.nan
        result = abs(left) % abs(right)
        return result if left >= 0 else -result
    if right == 0 or math.isinf(left) or math.isnan(left) or math.isnan(right):
        return math.nan
    if math.isinf(right):
        return left
    return math.fmod(left, right)


def _apply(operator: str, left: Number, right: Number) -> Number:
    if operator == "+":
        return left + right
    if operator == "-":
        return left - right
    if operator == "*":
        return left * right
    if operator == "/":
        return _divide(left, right)
    if operator == "%":
        return _remainder(left, right)
    raise ExpressionSyntaxError(f"unsupported operator '{operator}'")


def evaluate_node(node: ExpressionNode) -> Number:
    """
    Walk an expression tree and compute its value.

    Operator chains produce trees as deep as the chain is long, so the walk
    keeps its own stack instead of recursing.
    """
    values: list[Number] = []
    pending: list[tuple[ExpressionNode, bool]] = [(node, False)]
    while pending:
        current, operands_done = pending.pop()
        if isinstance(current, NumberNode):
            values.append(current.value)
        elif isinstance(current, UnaryNode):
            if not operands_done:
                pending.extend([(current, True), (current.operand, False)])
            elif current.operator == "-":
                values.append(-values.pop())
        elif isinstance(current, BinaryNode):
            if not operands_done:
                pending.extend([(current, True), (current.right, False), (current.left, False)])
            else:
                right = values.pop()
                left = values.pop()
                values.append(_apply(current.operator, left, right))
        else:
            raise ExpressionSyntaxError(f"unsupported node {type(current).__name__}")
    return values.pop()


def render_number(value: Number) -> str:
    """Render a number so that it survives the whitelist pass."""
    if isinstance(value, bool):
        return "0"
    if isinstance(value, int):
        text = str(value)
    elif math.isnan(value):
        return "(0/0)"
    elif math.isinf(value):
        return "(1/0)" if value > 0 else "(-1/0)"
    else:
        text = repr(value)
        if "e" in text or "E" in text:
            text = format(value, "f")
    return f"({text})" if text.startswith("-") else text


def normalize_result(value: Number) -> Number:
    """Store integral floats as ints."""
    if isinstance(value, float) and math.isfinite(value) and value.is_integer():
        return int(value)
    return value


class ExpressionEngine:
    """Evaluates calc expressions against a document store."""

    def __init__(self, store: DocumentStore, max_length: int = 512, max_depth: int = 64):
        """
        Initialize the engine.

        Params:
            store: Document names are resolved against
            max_length: Longest expression (before substitution) accepted
            max_depth: Deepest nesting of parentheses and unary signs accepted
        """
        self.store = store
        self.max_length = max_length
        self.max_depth = max_depth

    def resolve_name(self, name: str) -> Number:
        """Numeric value at a path, or 0."""
        value = self.store.get(name)
        return value if is_number(value) else 0

    def substitute(self, expression: str) -> str:
        """Replace every name in the expression with its numeric value."""

        def replace(match: re.Match) -> str:
            if match.group("number") is not None:
                return match.group("number")
            return f" {render_number(self.resolve_name(match.group('name')))} "

        return SUBSTITUTION_PATTERN.sub(replace, expression)

    def evaluate(self, expression: str) -> Number | None:
        """
        Evaluate an expression.

        Params:
            expression: Arithmetic over numbers and document paths

        Returns:
            The result, or None if the expression is rejected at any stage
        """
        if not isinstance(expression, str) or not expression.strip():
            return None
        if len(expression) > self.max_length:
            logger.debug("Expression rejected, longer than %d characters", self.max_length)
            return None

        substituted = self.substitute(expression)
        if not WHITELIST_PATTERN.match(substituted):
            logger.debug("Expression rejected by whitelist: %r -> %r", expression, substituted)
            return None

        try:
            tree = ExpressionParser(substituted, self.max_depth).parse()
            return normalize_result(evaluate_node(tree))
        except (ExpressionSyntaxError, OverflowError, RecursionError) as e:
            logger.debug("Expression %r could not be evaluated: %s", expression, e)
            return None
