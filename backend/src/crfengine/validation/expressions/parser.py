"""Parser for the rule expression languages.

Converts a stream of tokens into an Abstract Syntax Tree (AST).
Uses recursive descent parsing with operator precedence.

Operator Precedence (lowest to highest):
1. || (or)                    - script dialect only
2. && (and)                   - script dialect only
3. = == != <> < <= > >= in not_in
4. + -
5. * /
6. ! (not) - (unary)
7. . (member access) () (function call) [] (index)

In the formula dialect ``AND``, ``OR`` and ``NOT`` are ordinary function
calls and a bare word that is not followed by ``(`` is a string literal.
"""

import re
from dataclasses import dataclass
from typing import Any

from crfengine.errors import FormulaError
from crfengine.validation.expressions.lexer import Dialect, Lexer, Token, TokenType


@dataclass
class ASTNode:
    """Base class for AST nodes."""
    pass


@dataclass
class Literal(ASTNode):
    """A literal value (number, string, boolean, null)."""
    value: Any


@dataclass
class BareWord(ASTNode):
    """An unquoted word in a formula, compared as a case-insensitive string."""
    text: str


@dataclass
class Identifier(ASTNode):
    """A variable reference in the script dialect (``value``, ``data``, a field)."""
    name: str


@dataclass
class FieldRef(ASTNode):
    """A ``{fieldPath}`` reference in the formula dialect."""
    path: str


@dataclass
class MemberAccess(ASTNode):
    """Dot notation member access (e.g., data.age)."""
    object: ASTNode
    member: str


@dataclass
class IndexAccess(ASTNode):
    """Bracket notation index access (e.g., data["age"])."""
    object: ASTNode
    index: ASTNode


@dataclass
class BinaryOp(ASTNode):
    """Binary operation (e.g., a + b, x == y)."""
    operator: str
    left: ASTNode
    right: ASTNode


@dataclass
class UnaryOp(ASTNode):
    """Unary operation (e.g., !x, -y)."""
    operator: str
    operand: ASTNode


@dataclass
class FunctionCall(ASTNode):
    """Function call (e.g., LEN({value}), ISBLANK(x))."""
    name: str
    arguments: list[ASTNode]


@dataclass
class ArrayLiteral(ASTNode):
    """Array literal (e.g., ["M", "F"])."""
    elements: list[ASTNode]


class ParseError(FormulaError):
    """Error during parsing."""

    def __init__(self, message: str, token: Token):
        self.token = token
        super().__init__(f"{message} at position {token.position}")


# Binary operators by precedence level, loosest first; all left-associative
_BINARY_LEVELS: list[dict[TokenType, str]] = [
    {TokenType.OR: "||"},
    {TokenType.AND: "&&"},
    {
        TokenType.EQ: "==",
        TokenType.NEQ: "!=",
        TokenType.LT: "<",
        TokenType.LTE: "<=",
        TokenType.GT: ">",
        TokenType.GTE: ">=",
        TokenType.IN: "in",
        TokenType.NOT_IN: "not in",
    },
    {TokenType.PLUS: "+", TokenType.MINUS: "-"},
    {TokenType.MULTIPLY: "*", TokenType.DIVIDE: "/"},
]

_UNARY_OPS = {TokenType.NOT: "!", TokenType.MINUS: "-"}


class Parser:
    """Recursive descent parser for both expression dialects.

    Usage:
        ast = Parser('=AND({value}>=18, {value}<=120)').parse()
        ast = Parser('value >= 18 && value <= 120', Dialect.SCRIPT).parse()
    """

    def __init__(self, source: str, dialect: Dialect = Dialect.FORMULA):
        self.dialect = dialect
        self.source = strip_formula_prefix(source) if dialect == Dialect.FORMULA else source
        self.tokens = Lexer(self.source, dialect).tokenize()
        self.position = 0

    def parse(self) -> ASTNode:
        """Parse the whole source; trailing tokens are an error."""
        if not self.tokens or self.tokens[0].type == TokenType.EOF:
            raise ParseError("Empty expression", Token(TokenType.EOF, None, 0))

        try:
            ast = self._expression()
        except RecursionError as e:
            raise ParseError("Expression is nested too deeply", self._peek()) from e
        if self._peek().type != TokenType.EOF:
            raise ParseError(f"Unexpected token '{self._peek().value}'", self._peek())
        return ast

    def _peek(self) -> Token:
        if self.position >= len(self.tokens):
            return Token(TokenType.EOF, None, len(self.source))
        return self.tokens[self.position]

    def _take(self) -> Token:
        token = self._peek()
        self.position += 1
        return token

    def _expect(self, token_type: TokenType, message: str) -> Token:
        if self._peek().type != token_type:
            raise ParseError(message, self._peek())
        return self._take()

    def _expression(self) -> ASTNode:
        return self._binary(0)

    def _binary(self, level: int) -> ASTNode:
        if level == len(_BINARY_LEVELS):
            return self._unary()

        operators = _BINARY_LEVELS[level]
        left = self._binary(level + 1)
        while self._peek().type in operators:
            op = operators[self._take().type]
            left = BinaryOp(op, left, self._binary(level + 1))
        return left

    def _unary(self) -> ASTNode:
        op = _UNARY_OPS.get(self._peek().type)
        if op is None:
            return self._postfix()
        self._take()
        return UnaryOp(op, self._unary())

    def _postfix(self) -> ASTNode:
        expr = self._primary()
        # Member and index access exist only in the script dialect
        if self.dialect != Dialect.SCRIPT:
            return expr

        while True:
            kind = self._peek().type
            if kind == TokenType.DOT:
                self._take()
                member = self._expect(TokenType.IDENTIFIER, "Expected identifier after '.'")
                expr = MemberAccess(expr, str(member.value))
            elif kind == TokenType.LBRACKET:
                self._take()
                index = self._expression()
                self._expect(TokenType.RBRACKET, "Expected ']' after index")
                expr = IndexAccess(expr, index)
            else:
                return expr

    def _primary(self) -> ASTNode:
        token = self._take()

        if token.type in (TokenType.NUMBER, TokenType.STRING, TokenType.BOOLEAN):
            return Literal(token.value)
        if token.type == TokenType.NULL:
            return Literal(None)
        if token.type == TokenType.FIELD_REF:
            return FieldRef(str(token.value))

        if token.type == TokenType.IDENTIFIER:
            name = str(token.value)
            if self._peek().type == TokenType.LPAREN:
                self._take()
                return FunctionCall(name, self._items(TokenType.RPAREN, "')' after arguments"))
            return BareWord(name) if self.dialect == Dialect.FORMULA else Identifier(name)

        if token.type == TokenType.LPAREN:
            expr = self._expression()
            self._expect(TokenType.RPAREN, "Expected ')' after expression")
            return expr

        if token.type == TokenType.LBRACKET and self.dialect == Dialect.SCRIPT:
            return ArrayLiteral(self._items(TokenType.RBRACKET, "']' after array elements"))

        raise ParseError(f"Unexpected token '{token.value}'", token)

    def _items(self, closer: TokenType, what: str) -> list[ASTNode]:
        """Comma separated expressions up to and including ``closer``."""
        items: list[ASTNode] = []
        if self._peek().type != closer:
            items.append(self._expression())
            while self._peek().type == TokenType.COMMA:
                self._take()
                items.append(self._expression())
        self._expect(closer, f"Expected {what}")
        return items


FORMULA_PREFIX = "=FORMULA:"

_LEADING_CALL = re.compile(r"^\s*[A-Za-z_][A-Za-z0-9_]*\s*\(")


def strip_formula_prefix(source: str) -> str:
    """Remove an optional ``=FORMULA:`` or ``=`` marker from a formula."""
    text = source.strip()
    if text.upper().startswith(FORMULA_PREFIX):
        return text[len(FORMULA_PREFIX):]
    if text.startswith("="):
        return text[1:]
    return text


def looks_like_formula(source: str) -> bool:
    """Whether text is written in the Excel-like form.

    A formula starts with ``=``, uses ``{field}`` references, or is a
    top-level function call. Anything else is left to the script dialect.
    """
    text = source.strip()
    return text.startswith("=") or "{" in text or bool(_LEADING_CALL.match(text))


def parse(source: str, dialect: Dialect = Dialect.FORMULA) -> ASTNode:
    """Convenience function to parse an expression string."""
    return Parser(source, dialect).parse()
