"""Lexer/tokenizer for the rule expression languages.

Two dialects share one tokenizer:

- FORMULA: the Excel-like subset used by formula, format and business rules
  (``=AND({value}>=18, {value}<=120)``). ``=`` and ``<>`` are comparisons,
  ``{name}`` is a field reference, and ``AND``/``OR``/``NOT`` are functions.
- SCRIPT: the bare boolean fallback for business rules
  (``value >= 18 && data.consent == "yes"``). ``&&``/``||``/``!`` and the
  ``and``/``or``/``not``/``in`` keywords are operators.

Token types:
- Literals: NUMBER, STRING, BOOLEAN, NULL
- References: IDENTIFIER, FIELD_REF
- Operators: comparison, logical, arithmetic
- Punctuation: LPAREN, RPAREN, LBRACKET, RBRACKET, COMMA, DOT
"""

import re
from dataclasses import dataclass
from enum import Enum, auto
from typing import Iterator

from crfengine.errors import FormulaError


class Dialect(Enum):
    """Which expression grammar to tokenize and parse."""

    FORMULA = "formula"
    SCRIPT = "script"


class TokenType(Enum):
    """Types of tokens in the expression languages."""

    # Literals
    NUMBER = auto()
    STRING = auto()
    BOOLEAN = auto()
    NULL = auto()

    # References
    IDENTIFIER = auto()
    FIELD_REF = auto()   # {fieldPath}

    # Comparison operators
    EQ = auto()          # = (formula), == / === (script)
    NEQ = auto()         # <> / !=  / !==
    LT = auto()          # <
    LTE = auto()         # <=
    GT = auto()          # >
    GTE = auto()         # >=

    # Logical operators (script dialect only)
    AND = auto()         # && or and
    OR = auto()          # || or or
    NOT = auto()         # ! or not

    # Arithmetic operators
    PLUS = auto()        # +
    MINUS = auto()       # -
    MULTIPLY = auto()    # *
    DIVIDE = auto()      # /

    # Membership operators (script dialect only)
    IN = auto()          # in
    NOT_IN = auto()      # not in

    # Punctuation
    LPAREN = auto()      # (
    RPAREN = auto()      # )
    LBRACKET = auto()    # [
    RBRACKET = auto()    # ]
    COMMA = auto()       # ,
    DOT = auto()         # .

    # End of input
    EOF = auto()


@dataclass(frozen=True)
class Token:
    """A single token from the lexer.

    Attributes:
        type: The token type
        value: The token's value (number, string content, identifier name, etc.)
        position: Character position in the source string
    """

    type: TokenType
    value: str | int | float | bool | None
    position: int

    def __repr__(self) -> str:
        return f"Token({self.type.name}, {self.value!r}, pos={self.position})"


class LexerError(FormulaError):
    """Error during lexical analysis."""

    def __init__(self, message: str, position: int):
        self.position = position
        super().__init__(f"{message} at position {position}")


# Patterns shared by both dialects (order matters - longer matches first)
_COMMON_HEAD = [
    (r"\s+", None),
    (r"<=", TokenType.LTE),
    (r">=", TokenType.GTE),
]

_COMMON_TAIL = [
    (r"<", TokenType.LT),
    (r">", TokenType.GT),
    (r"\+", TokenType.PLUS),
    (r"-", TokenType.MINUS),
    (r"\*", TokenType.MULTIPLY),
    (r"/", TokenType.DIVIDE),
    (r"\(", TokenType.LPAREN),
    (r"\)", TokenType.RPAREN),
    (r"\[", TokenType.LBRACKET),
    (r"\]", TokenType.RBRACKET),
    (r",", TokenType.COMMA),

    # Numbers before the dot so ".5" never lexes as member access
    (r"\d+\.\d+", TokenType.NUMBER),
    (r"\d+", TokenType.NUMBER),
    (r"\.", TokenType.DOT),

    (r'"([^"\\]|\\.)*"', TokenType.STRING),
]

TOKEN_PATTERNS: dict[Dialect, list[tuple[str, TokenType | None]]] = {
    Dialect.FORMULA: _COMMON_HEAD + [
        (r"<>", TokenType.NEQ),
        (r"!=", TokenType.NEQ),
        (r"==", TokenType.EQ),
        (r"=", TokenType.EQ),
        (r"\{[^{}]+\}", TokenType.FIELD_REF),
    ] + _COMMON_TAIL + [
        (r"[a-zA-Z_][a-zA-Z0-9_]*", TokenType.IDENTIFIER),
    ],
    Dialect.SCRIPT: _COMMON_HEAD + [
        (r"===", TokenType.EQ),
        (r"!==", TokenType.NEQ),
        (r"==", TokenType.EQ),
        (r"!=", TokenType.NEQ),
        (r"&&", TokenType.AND),
        (r"\|\|", TokenType.OR),
        (r"!", TokenType.NOT),
    ] + _COMMON_TAIL + [
        (r"'([^'\\]|\\.)*'", TokenType.STRING),
        (r"[a-zA-Z_][a-zA-Z0-9_]*", TokenType.IDENTIFIER),
    ],
}

# Keywords that map to specific token types, matched case-insensitively
KEYWORDS: dict[Dialect, dict[str, tuple[TokenType, object]]] = {
    Dialect.FORMULA: {
        "true": (TokenType.BOOLEAN, True),
        "false": (TokenType.BOOLEAN, False),
    },
    Dialect.SCRIPT: {
        "true": (TokenType.BOOLEAN, True),
        "false": (TokenType.BOOLEAN, False),
        "null": (TokenType.NULL, None),
        "undefined": (TokenType.NULL, None),
        "and": (TokenType.AND, "and"),
        "or": (TokenType.OR, "or"),
        "not": (TokenType.NOT, "not"),
        "in": (TokenType.IN, "in"),
    },
}

_COMPILED = {
    dialect: [(re.compile(pattern), token_type) for pattern, token_type in patterns]
    for dialect, patterns in TOKEN_PATTERNS.items()
}

_NOT_IN = re.compile(r"\s+in\b", re.IGNORECASE)


class Lexer:
    """Tokenizer for the expression languages.

    Usage:
        lexer = Lexer('AND({value}>=18, {value}<=120)')
        for token in lexer:
            print(token)
    """

    def __init__(self, source: str, dialect: Dialect = Dialect.FORMULA):
        self.source = source
        self.dialect = dialect
        self.position = 0
        self._patterns = _COMPILED[dialect]
        self._keywords = KEYWORDS[dialect]

    def __iter__(self) -> Iterator[Token]:
        """Iterate over all tokens in the source."""
        while True:
            token = self.next_token()
            yield token
            if token.type == TokenType.EOF:
                break

    def next_token(self) -> Token:
        """Get the next token from the source."""
        while True:
            if self.position >= len(self.source):
                return Token(TokenType.EOF, None, self.position)

            for pattern, token_type in self._patterns:
                match = pattern.match(self.source, self.position)
                if match:
                    break
            else:
                raise LexerError(
                    f"Unexpected character '{self.source[self.position]}'",
                    self.position,
                )

            value = match.group()
            start = self.position
            self.position = match.end()

            if token_type is None:
                continue

            return self._make_token(token_type, value, start)

    def _make_token(self, token_type: TokenType, value: str, start: int) -> Token:
        if token_type == TokenType.NUMBER:
            try:
                number = float(value) if "." in value else int(value)
            except ValueError as e:
                # int() refuses literals longer than sys.get_int_max_str_digits()
                raise LexerError(f"Number literal too long: {e}", start) from e
            return Token(token_type, number, start)

        if token_type == TokenType.STRING:
            return Token(token_type, self._unescape_string(value[1:-1]), start)

        if token_type == TokenType.FIELD_REF:
            return Token(token_type, value[1:-1].strip(), start)

        if token_type == TokenType.IDENTIFIER:
            lower_value = value.lower()
            if lower_value in self._keywords:
                keyword_type, keyword_value = self._keywords[lower_value]

                # "not in" is a single membership operator
                if keyword_type == TokenType.NOT:
                    in_match = _NOT_IN.match(self.source, self.position)
                    if in_match:
                        self.position = in_match.end()
                        return Token(TokenType.NOT_IN, "not in", start)

                return Token(keyword_type, keyword_value, start)

        return Token(token_type, value, start)

    def _unescape_string(self, s: str) -> str:
        """Process escape sequences in a string."""
        result = []
        i = 0
        while i < len(s):
            if s[i] == "\\" and i + 1 < len(s):
                next_char = s[i + 1]
                if next_char == "n":
                    result.append("\n")
                elif next_char == "t":
                    result.append("\t")
                else:
                    result.append(next_char)
                i += 2
            else:
                result.append(s[i])
                i += 1
        return "".join(result)

    def tokenize(self) -> list[Token]:
        """Tokenize the entire source and return list of tokens."""
        return list(self)
