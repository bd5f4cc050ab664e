"""Built-in functions for the rule expression languages.

This module registers the formula functions with the FunctionRegistry.
``register_formula_functions`` is idempotent and is called when the
evaluator module is imported.

Categories:
- Logic: AND, OR, NOT, IF
- Information: ISBLANK, ISNUMBER
- Text: LEN
"""

from typing import Any

from crfengine.validation.expressions.functions import (
    FunctionCategory,
    FunctionDefinition,
    FunctionParameter,
    FunctionRegistry,
)
from crfengine.validation.expressions.values import is_blank, to_bool, to_number, to_text


def register_formula_functions() -> None:
    """Register all formula functions with the FunctionRegistry."""
    _register_logic_functions()
    _register_information_functions()
    _register_text_functions()


# -----------------------------------------------------------------------------
# Logic Functions
# -----------------------------------------------------------------------------


def _and(*args: Any) -> bool:
    return all(to_bool(arg) for arg in args)


def _or(*args: Any) -> bool:
    return any(to_bool(arg) for arg in args)


def _not(value: Any) -> bool:
    return not to_bool(value)


def _if(condition: Any, true_value: Any, false_value: Any = False) -> Any:
    """Return true_value if condition holds, else false_value (FALSE by default)."""
    return true_value if to_bool(condition) else false_value


def _register_logic_functions() -> None:
    FunctionRegistry.register(
        FunctionDefinition(
            name="AND",
            description="TRUE when every argument is true",
            category=FunctionCategory.LOGIC,
            parameters=[
                FunctionParameter("conditions", "boolean", "Conditions to test", variadic=True)
            ],
            return_type="boolean",
            examples=["=AND({value}>=18, {value}<=120)"],
            implementation=_and,
        )
    )

    FunctionRegistry.register(
        FunctionDefinition(
            name="OR",
            description="TRUE when any argument is true",
            category=FunctionCategory.LOGIC,
            parameters=[
                FunctionParameter("conditions", "boolean", "Conditions to test", variadic=True)
            ],
            return_type="boolean",
            examples=['=OR({gender}="M", {gender}="F", {gender}="O")'],
            implementation=_or,
        )
    )

    FunctionRegistry.register(
        FunctionDefinition(
            name="NOT",
            description="Logical negation",
            category=FunctionCategory.LOGIC,
            parameters=[FunctionParameter("condition", "boolean", "Condition to negate")],
            return_type="boolean",
            examples=["=NOT(ISBLANK({value}))"],
            implementation=_not,
        )
    )

    FunctionRegistry.register(
        FunctionDefinition(
            name="IF",
            description="Returns then_value if condition is true, else else_value",
            category=FunctionCategory.LOGIC,
            parameters=[
                FunctionParameter("condition", "boolean", "The condition"),
                FunctionParameter("thenValue", "any", "Value if true"),
                FunctionParameter("elseValue", "any", "Value if false", required=False),
            ],
            return_type="any",
            examples=['=IF({pregnant}="yes", {age}>=18, TRUE)'],
            implementation=_if,
        )
    )


# -----------------------------------------------------------------------------
# Information Functions
# -----------------------------------------------------------------------------


def _isnumber(value: Any) -> bool:
    """Numbers and numeric strings are numbers; booleans are not."""
    return to_number(value) is not None


def _register_information_functions() -> None:
    FunctionRegistry.register(
        FunctionDefinition(
            name="ISBLANK",
            description="TRUE when the value is empty",
            category=FunctionCategory.INFORMATION,
            parameters=[FunctionParameter("value", "any", "Value to test")],
            return_type="boolean",
            examples=["=NOT(ISBLANK({value}))"],
            implementation=is_blank,
        )
    )

    FunctionRegistry.register(
        FunctionDefinition(
            name="ISNUMBER",
            description="TRUE when the value is a number or numeric text",
            category=FunctionCategory.INFORMATION,
            parameters=[FunctionParameter("value", "any", "Value to test")],
            return_type="boolean",
            examples=["=AND(ISNUMBER({weight}), {weight}>0, {weight}<500)"],
            implementation=_isnumber,
        )
    )


# -----------------------------------------------------------------------------
# Text Functions
# -----------------------------------------------------------------------------


def _len(value: Any) -> int:
    return len(to_text(value))


def _register_text_functions() -> None:
    FunctionRegistry.register(
        FunctionDefinition(
            name="LEN",
            description="Number of characters in the text form of the value",
            category=FunctionCategory.TEXT,
            parameters=[FunctionParameter("value", "any", "Value to measure")],
            return_type="number",
            examples=["=LEN({value})>=5"],
            implementation=_len,
        )
    )
