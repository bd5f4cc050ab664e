"""Database-backed stores for rules, lifecycle flags and discrepancy notes."""

from crfengine.persistence.config import DatabaseConfig, resolve_engine
from crfengine.persistence.queries import SqlDiscrepancyNoteStore
from crfengine.persistence.rules import SqlRuleStore
from crfengine.persistence.workflow import SqlWorkflowStore

__all__ = [
    "DatabaseConfig",
    "resolve_engine",
    "SqlDiscrepancyNoteStore",
    "SqlRuleStore",
    "SqlWorkflowStore",
]
