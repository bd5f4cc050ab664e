"""Function registry for the rule expression languages.

Functions are callable from expressions (e.g., ``LEN({value})>=5``).
Names are case-insensitive: ``isblank(x)`` and ``ISBLANK(x)`` resolve to the
same registration.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable


class FunctionCategory(Enum):
    """Grouping used by the `rules functions` listing."""

    LOGIC = "logic"
    INFORMATION = "information"
    TEXT = "text"


@dataclass
class FunctionParameter:
    """One formal parameter. A variadic parameter absorbs every remaining argument."""

    name: str
    type: str
    description: str
    required: bool = True
    variadic: bool = False


@dataclass
class FunctionDefinition:
    """A registered function: its signature, help text and Python callable.

    ``implementation`` receives already evaluated arguments, so ``IF``
    evaluates both branches.
    """

    name: str
    description: str
    category: FunctionCategory
    parameters: list[FunctionParameter]
    return_type: str
    examples: list[str] = field(default_factory=list)
    implementation: Callable[..., Any] | None = None

    @property
    def min_args(self) -> int:
        return sum(1 for p in self.parameters if p.required)

    @property
    def max_args(self) -> int | None:
        if any(p.variadic for p in self.parameters):
            return None
        return len(self.parameters)

    def to_dict(self) -> dict[str, Any]:
        """Export for the CLI function listing."""
        return {
            "name": self.name,
            "description": self.description,
            "category": self.category.value,
            "parameters": [
                {
                    "name": p.name,
                    "type": p.type,
                    "required": p.required,
                    "variadic": p.variadic,
                }
                for p in self.parameters
            ],
            "returnType": self.return_type,
            "examples": self.examples,
        }


class FunctionRegistry:
    """Registry for expression functions.

    Example:
        FunctionRegistry.register(FunctionDefinition(
            name="LEN",
            description="Number of characters in the text form of a value",
            ...
        ))

        func = FunctionRegistry.get("len")
        result = func.implementation("hello")  # Returns 5
    """

    _functions: dict[str, FunctionDefinition] = {}

    @classmethod
    def register(cls, func_def: FunctionDefinition) -> None:
        """Register a function definition under its upper-cased name."""
        func_def.name = func_def.name.upper()
        cls._functions[func_def.name] = func_def

    @classmethod
    def get(cls, name: str) -> FunctionDefinition:
        """Get a function definition by name.

        Raises:
            ValueError: If function is not registered
        """
        key = name.upper()
        if key not in cls._functions:
            raise ValueError(f"Unknown function: {name}")
        return cls._functions[key]

    @classmethod
    def is_registered(cls, name: str) -> bool:
        return name.upper() in cls._functions

    @classmethod
    def list_all(cls) -> list[FunctionDefinition]:
        return list(cls._functions.values())
