"""Expression languages for crfengine formula and business-logic rules.

This module provides:
- FunctionRegistry: Registry for formula functions (AND, OR, NOT, IF, ...)
- Lexer: Tokenizes expression strings in either dialect
- Parser: Produces AST from tokens
- Evaluator: Evaluates AST against a value and its sibling fields
"""

from crfengine.validation.expressions.evaluator import (
    EvaluationContext,
    EvaluationError,
    Evaluator,
    MissingFieldError,
    evaluate,
    evaluate_condition,
    evaluate_formula,
)
from crfengine.validation.expressions.functions import (
    FunctionCategory,
    FunctionDefinition,
    FunctionParameter,
    FunctionRegistry,
)
from crfengine.validation.expressions.lexer import Dialect, Lexer, LexerError, Token, TokenType
from crfengine.validation.expressions.parser import (
    FORMULA_PREFIX,
    ASTNode,
    ParseError,
    Parser,
    looks_like_formula,
    parse,
    strip_formula_prefix,
)

__all__ = [
    # Evaluator
    "EvaluationContext",
    "EvaluationError",
    "Evaluator",
    "MissingFieldError",
    "evaluate",
    "evaluate_condition",
    "evaluate_formula",
    # Functions
    "FunctionCategory",
    "FunctionDefinition",
    "FunctionParameter",
    "FunctionRegistry",
    # Lexer
    "Dialect",
    "Lexer",
    "LexerError",
    "Token",
    "TokenType",
    # Parser
    "FORMULA_PREFIX",
    "ASTNode",
    "ParseError",
    "Parser",
    "looks_like_formula",
    "parse",
    "strip_formula_prefix",
]
