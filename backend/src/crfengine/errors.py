"""Exception hierarchy for the CRF engine.

Only persistence and rule-file problems ever reach a caller as exceptions;
configuration problems inside rules are turned into fail-open outcomes by the
evaluators (see ``CheckOutcome.FAIL_OPEN``).
"""


class CrfEngineError(Exception):
    """Base class for all engine errors."""


class FormulaError(CrfEngineError):
    """A formula could not be tokenized, parsed, or evaluated."""


class RuleSourceError(CrfEngineError):
    """A rule source could not be read."""

    def __init__(self, source: str, message: str):
        self.source = source
        super().__init__(f"{source}: {message}")


class PersistenceError(CrfEngineError):
    """A write against the backing store did not happen."""


class RuleFileError(CrfEngineError):
    """A YAML rule file failed to load or failed schema validation."""

    def __init__(self, message: str, issues: list | None = None):
        self.issues = issues or []
        super().__init__(message)
