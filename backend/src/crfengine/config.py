"""Engine settings and startup wiring.

``build_engine`` is the one place the stores, repository, orchestrator,
lifecycle service and lock guard are put together. Tables are created here,
once, as each store is constructed.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field

from sqlalchemy.engine import Engine

from crfengine.audit import AuditSink, LoggingAuditSink
from crfengine.persistence.config import DatabaseConfig
from crfengine.persistence.queries import SqlDiscrepancyNoteStore
from crfengine.persistence.rules import SqlRuleStore
from crfengine.persistence.workflow import SqlWorkflowStore
from crfengine.validation.repository import RuleRepository
from crfengine.validation.services import ValidationOrchestrator
from crfengine.validation.sources import store_sources
from crfengine.workflow.lifecycle import LifecycleService
from crfengine.workflow.locks import LockGuard

_FALSE_VALUES = {"0", "false", "no", "off"}


def _env_flag(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None or value.strip() == "":
        return default
    return value.strip().lower() not in _FALSE_VALUES


@dataclass
class EngineSettings:
    """Runtime settings.

    Attributes:
        database: Where rules, lifecycle flags and notes are stored
        rule_cache_enabled: Cache merged rules per form
        create_queries_on_submit: Open queries for violations at submission
        log_level: Root log level for the CLI
    """

    database: DatabaseConfig = field(default_factory=DatabaseConfig.from_env)
    rule_cache_enabled: bool = True
    create_queries_on_submit: bool = True
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> EngineSettings:
        """Create settings from environment variables.

        CRFENGINE_RULE_CACHE, CRFENGINE_CREATE_QUERIES (default on) and
        CRFENGINE_LOG_LEVEL (default INFO), plus the database variables read
        by DatabaseConfig.from_env.
        """
        return cls(
            database=DatabaseConfig.from_env(),
            rule_cache_enabled=_env_flag("CRFENGINE_RULE_CACHE", True),
            create_queries_on_submit=_env_flag("CRFENGINE_CREATE_QUERIES", True),
            log_level=os.environ.get("CRFENGINE_LOG_LEVEL", "INFO").upper(),
        )


@dataclass
class CrfEngine:
    """The wired components of a running engine."""

    settings: EngineSettings
    db: Engine
    rule_store: SqlRuleStore
    workflow_store: SqlWorkflowStore
    note_store: SqlDiscrepancyNoteStore
    repository: RuleRepository
    orchestrator: ValidationOrchestrator
    lifecycle: LifecycleService
    lock_guard: LockGuard


def build_engine(
    settings: EngineSettings | None = None,
    audit_sink: AuditSink | None = None,
) -> CrfEngine:
    """Create the stores and services for one process."""
    settings = settings or EngineSettings.from_env()
    db = settings.database.create_engine()
    sink = audit_sink or LoggingAuditSink()

    rule_store = SqlRuleStore(db)
    workflow_store = SqlWorkflowStore(db)
    note_store = SqlDiscrepancyNoteStore(db)

    repository = RuleRepository(
        store_sources(rule_store), rule_store, cache_enabled=settings.rule_cache_enabled
    )
    lock_guard = LockGuard(workflow_store, sink)

    return CrfEngine(
        settings=settings,
        db=db,
        rule_store=rule_store,
        workflow_store=workflow_store,
        note_store=note_store,
        repository=repository,
        orchestrator=ValidationOrchestrator(repository, note_store),
        lifecycle=LifecycleService(workflow_store, lock_guard, sink),
        lock_guard=lock_guard,
    )
