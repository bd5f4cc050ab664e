"""Evaluator for the rule expression languages.

Walks the AST and computes the result against an evaluation context holding
the value under test and the other submitted fields of the form.

The public entry points ``evaluate_formula`` and ``evaluate_condition`` never
raise: a malformed expression, an unknown function or a reference to a field
that is not in the form reads as passing (``CheckOutcome.FAIL_OPEN``) so that
a broken rule never blocks data entry.
"""

import logging
from collections.abc import Hashable, Mapping
from dataclasses import dataclass, field
from typing import Any

from crfengine.errors import FormulaError
from crfengine.validation.expressions.builtins import register_formula_functions
from crfengine.validation.expressions.functions import FunctionRegistry
from crfengine.validation.expressions.lexer import Dialect, LexerError
from crfengine.validation.expressions.parser import (
    ASTNode,
    ArrayLiteral,
    BareWord,
    BinaryOp,
    FieldRef,
    FunctionCall,
    Identifier,
    IndexAccess,
    Literal,
    MemberAccess,
    ParseError,
    UnaryOp,
    looks_like_formula,
    parse,
)
from crfengine.validation.expressions.values import result_to_valid, to_bool, to_number, to_text
from crfengine.validation.matching import resolve_field_value
from crfengine.validation.types import RuleCheck

logger = logging.getLogger(__name__)

register_formula_functions()


class EvaluationError(FormulaError):
    """Error during expression evaluation."""
    pass


class MissingFieldError(EvaluationError):
    """An expression references a field the form does not have."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Unknown field reference: {name}")


@dataclass
class EvaluationContext:
    """Context for expression evaluation.

    Attributes:
        value: The value under test (``{value}`` / ``value``)
        fields: The other submitted fields of the form
        dialect: Which grammar the expression was parsed with
    """

    value: Any = None
    fields: Mapping[str, Any] = field(default_factory=dict)
    dialect: Dialect = Dialect.FORMULA


class Evaluator:
    """Evaluates expression AST against a context.

    Usage:
        ctx = EvaluationContext(value=25, fields={"sex": "F"})
        evaluator = Evaluator(ctx)
        result = evaluator.evaluate(parse("AND({value}>=18, {sex}=f)"))
    """

    def __init__(self, context: EvaluationContext):
        self.context = context

    def evaluate(self, node: ASTNode) -> Any:
        """Evaluate an AST and return the result.

        Raises:
            EvaluationError: Also raised for trees nested too deeply to walk
        """
        try:
            return self._visit(node)
        except RecursionError as e:
            raise EvaluationError("Expression is nested too deeply") from e

    def _visit(self, node: ASTNode) -> Any:
        method_name = f"_eval_{type(node).__name__.lower()}"
        method = getattr(self, method_name, None)

        if method is None:
            raise EvaluationError(f"Unknown node type: {type(node).__name__}")

        return method(node)

    @property
    def _ignore_case(self) -> bool:
        return self.context.dialect == Dialect.FORMULA

    # -------------------------------------------------------------------------
    # Node type evaluators
    # -------------------------------------------------------------------------

    def _eval_literal(self, node: Literal) -> Any:
        return node.value

    def _eval_bareword(self, node: BareWord) -> Any:
        return node.text

    def _eval_fieldref(self, node: FieldRef) -> Any:
        """Evaluate ``{value}`` or ``{fieldPath}``; empty fields read as ""."""
        if node.path.lower() == "value":
            value = self.context.value
        else:
            found, value = resolve_field_value(self.context.fields, node.path)
            if not found:
                raise MissingFieldError(node.path)
        return "" if value is None else value

    def _eval_identifier(self, node: Identifier) -> Any:
        """Evaluate a script identifier: ``value``, ``data`` or a field name."""
        name = node.name
        if name == "value":
            return self.context.value
        if name == "data":
            return self.context.fields

        found, value = resolve_field_value(self.context.fields, name)
        if not found:
            raise MissingFieldError(name)
        return value

    def _eval_memberaccess(self, node: MemberAccess) -> Any:
        obj = self._visit(node.object)

        if isinstance(obj, Mapping):
            return obj.get(node.member)
        if node.member == "length" and isinstance(obj, (str, list, tuple)):
            return len(obj)

        # Attribute access on anything else is not exposed to expressions
        return None

    def _eval_indexaccess(self, node: IndexAccess) -> Any:
        obj = self._visit(node.object)
        index = self._visit(node.index)

        if obj is None:
            return None
        if isinstance(obj, Mapping):
            return obj.get(index) if isinstance(index, Hashable) else None
        if isinstance(obj, (list, tuple, str)) and isinstance(index, int) and not isinstance(index, bool):
            if 0 <= index < len(obj):
                return obj[index]
        return None

    def _eval_binaryop(self, node: BinaryOp) -> Any:
        op = node.operator

        # Short-circuit evaluation for logical operators
        if op == "&&":
            if not to_bool(self._visit(node.left)):
                return False
            return to_bool(self._visit(node.right))

        if op == "||":
            if to_bool(self._visit(node.left)):
                return True
            return to_bool(self._visit(node.right))

        left = self._visit(node.left)
        right = self._visit(node.right)

        if op == "==":
            return self._equals(left, right)
        if op == "!=":
            return not self._equals(left, right)
        if op in ("<", "<=", ">", ">="):
            order = self._compare(left, right)
            if order is None:
                return False
            if op == "<":
                return order < 0
            if op == "<=":
                return order <= 0
            if op == ">":
                return order > 0
            return order >= 0

        if op == "in":
            return self._in(left, right)
        if op == "not in":
            return not self._in(left, right)

        if op in ("+", "-", "*", "/"):
            return self._arithmetic(op, left, right)

        raise EvaluationError(f"Unknown operator: {op}")

    def _eval_unaryop(self, node: UnaryOp) -> Any:
        operand = self._visit(node.operand)

        if node.operator == "!":
            return not to_bool(operand)

        if node.operator == "-":
            number = to_number(operand)
            if number is None:
                raise EvaluationError(f"Cannot negate non-numeric value: {operand!r}")
            return -number

        raise EvaluationError(f"Unknown unary operator: {node.operator}")

    def _eval_functioncall(self, node: FunctionCall) -> Any:
        if not FunctionRegistry.is_registered(node.name):
            raise EvaluationError(f"Unknown function: {node.name}")

        func_def = FunctionRegistry.get(node.name)
        args = [self._visit(arg) for arg in node.arguments]

        if len(args) < func_def.min_args or (
            func_def.max_args is not None and len(args) > func_def.max_args
        ):
            raise EvaluationError(
                f"{func_def.name} takes {func_def.min_args}"
                f"{'' if func_def.max_args == func_def.min_args else ' or more'}"
                f" arguments, got {len(args)}"
            )

        try:
            return func_def.implementation(*args)
        except (TypeError, ValueError) as e:
            raise EvaluationError(f"Error calling {func_def.name}: {e}") from e

    def _eval_arrayliteral(self, node: ArrayLiteral) -> list[Any]:
        return [self._visit(elem) for elem in node.elements]

    # -------------------------------------------------------------------------
    # Helper methods
    # -------------------------------------------------------------------------

    def _text_key(self, value: Any) -> str:
        text = to_text(value)
        return text.lower() if self._ignore_case else text

    def _equals(self, left: Any, right: Any) -> bool:
        """Equality with numeric coercion of numeric strings."""
        if left is None or right is None:
            return left is None and right is None

        if isinstance(left, bool) or isinstance(right, bool):
            if isinstance(left, bool) and isinstance(right, bool):
                return left == right
            return self._text_key(left) == self._text_key(right)

        left_num, right_num = to_number(left), to_number(right)
        if left_num is not None and right_num is not None:
            return left_num == right_num

        if isinstance(left, (list, dict)) or isinstance(right, (list, dict)):
            return left == right

        return self._text_key(left) == self._text_key(right)

    def _compare(self, left: Any, right: Any) -> int | None:
        """Order two values, or None when they have no common ordering."""
        if left is None or right is None:
            return None

        left_num, right_num = to_number(left), to_number(right)
        if left_num is not None and right_num is not None:
            return (left_num > right_num) - (left_num < right_num)

        if isinstance(left, str) and isinstance(right, str):
            left_key, right_key = self._text_key(left), self._text_key(right)
            return (left_key > right_key) - (left_key < right_key)

        return None

    def _in(self, item: Any, collection: Any) -> bool:
        if collection is None:
            return False
        if isinstance(collection, str):
            if item is None:
                return False
            return self._text_key(item) in self._text_key(collection)
        if isinstance(collection, (list, tuple)):
            return any(self._equals(item, candidate) for candidate in collection)
        if isinstance(collection, Mapping):
            # A list or dict value can never be a key
            return isinstance(item, Hashable) and item in collection
        raise EvaluationError(
            f"'in' operator requires collection, got {type(collection).__name__}"
        )

    def _arithmetic(self, op: str, left: Any, right: Any) -> Any:
        if left is None or right is None:
            return None

        left_num, right_num = to_number(left), to_number(right)
        if left_num is None or right_num is None:
            if op == "+" and isinstance(left, str) and isinstance(right, str):
                return left + right
            raise EvaluationError(
                f"Cannot apply '{op}' to {type(left).__name__} and {type(right).__name__}"
            )

        if op == "+":
            return left_num + right_num
        if op == "-":
            return left_num - right_num
        if op == "*":
            return left_num * right_num
        if right_num == 0:
            raise EvaluationError("Division by zero")
        return left_num / right_num


# -----------------------------------------------------------------------------
# Convenience functions
# -----------------------------------------------------------------------------


def evaluate(
    expression: str,
    value: Any = None,
    fields: Mapping[str, Any] | None = None,
    dialect: Dialect = Dialect.FORMULA,
) -> Any:
    """Evaluate an expression string and return the raw result.

    Raises:
        FormulaError: If the expression cannot be parsed or evaluated

    Example:
        evaluate("=AND({value}>=18, {value}<=120)", 25)
        # True
    """
    ctx = EvaluationContext(value=value, fields=fields or {}, dialect=dialect)
    return Evaluator(ctx).evaluate(parse(expression, dialect))


def evaluate_formula(
    expression: str,
    value: Any = None,
    fields: Mapping[str, Any] | None = None,
    rule_id: int | None = None,
) -> RuleCheck:
    """Evaluate an Excel-style formula as a pass/fail check.

    Never raises; configuration problems come back as a FAIL_OPEN check.
    """
    try:
        result = evaluate(expression, value, fields, Dialect.FORMULA)
    except FormulaError as e:
        return _fail_open(expression, e, rule_id)
    return RuleCheck.verdict(result_to_valid(result), f"{expression} evaluated to {result!r}")


def evaluate_condition(
    expression: str,
    value: Any = None,
    fields: Mapping[str, Any] | None = None,
    rule_id: int | None = None,
) -> RuleCheck:
    """Evaluate a business-logic expression as a pass/fail check.

    Text that looks like a formula is evaluated as one. Anything else is read
    as a sandboxed boolean expression over ``value`` and ``data``; if that
    grammar cannot parse it either, the formula grammar gets a second try.
    Never raises.
    """
    if looks_like_formula(expression):
        return evaluate_formula(expression, value, fields, rule_id)

    try:
        result = evaluate(expression, value, fields, Dialect.SCRIPT)
    except (LexerError, ParseError) as script_error:
        try:
            result = evaluate(expression, value, fields, Dialect.FORMULA)
        except FormulaError:
            return _fail_open(expression, script_error, rule_id)
    except FormulaError as e:
        return _fail_open(expression, e, rule_id)

    return RuleCheck.verdict(to_bool(result), f"{expression} evaluated to {result!r}")


def _fail_open(expression: str, error: FormulaError, rule_id: int | None) -> RuleCheck:
    logger.warning(
        "Rule %s expression %r could not be evaluated, treating as valid: %s",
        rule_id, expression, error,
    )
    return RuleCheck.fail_open(str(error))
