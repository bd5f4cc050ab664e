"""Persistence for form instance lifecycle flags and workflow configuration.

Tables:
- form_instances: one row per filled form, holding the lifecycle flags
- form_workflow_configs: per-form (optionally per-study) requirements

Lock and unlock go through ``lock_transaction``, which reads the flags and
writes the lock inside one transaction. On PostgreSQL the row is read with
``SELECT ... FOR UPDATE``; on every dialect the write is conditional on the
flag still having its old value.
"""

from collections.abc import Iterator
from contextlib import contextmanager
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import text
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import SQLAlchemyError

from crfengine.errors import PersistenceError
from crfengine.persistence.config import id_column, resolve_engine
from crfengine.workflow.types import CompletionStatus, LifecycleFlags, Phase, WorkflowConfig

_FLAGS_QUERY = """
    SELECT id, form_id, study_id, completion_status,
           sdv_status, signature_status, lock_status
    FROM form_instances
    WHERE id = :id
"""

_CONFIG_QUERY = text("""
    SELECT requires_sdv, requires_signature, requires_dde
    FROM form_workflow_configs
    WHERE form_id = :form_id AND (study_id = :study_id OR study_id IS NULL)
    ORDER BY CASE WHEN study_id IS NULL THEN 1 ELSE 0 END
    LIMIT 1
""")

_PHASE_UPDATES = {
    Phase.COMPLETE: "completion_status = 'complete'",
    Phase.SDV_COMPLETE: "sdv_status = true",
    Phase.SIGNED: "signature_status = true",
}


def _row_to_flags(row: Any) -> LifecycleFlags:
    return LifecycleFlags(
        form_instance_id=row["id"],
        form_id=row["form_id"],
        study_id=row["study_id"],
        completion_status=CompletionStatus.parse(row["completion_status"]),
        sdv_status=bool(row["sdv_status"]),
        signature_status=bool(row["signature_status"]),
        lock_status=bool(row["lock_status"]),
    )


def _read_config(conn: Connection, form_id: int | None, study_id: int | None) -> WorkflowConfig:
    if form_id is None:
        return WorkflowConfig()
    row = conn.execute(_CONFIG_QUERY, {"form_id": form_id, "study_id": study_id}).mappings().fetchone()
    if not row:
        return WorkflowConfig()
    return WorkflowConfig(
        requires_sdv=bool(row["requires_sdv"]),
        requires_signature=bool(row["requires_signature"]),
        requires_dde=bool(row["requires_dde"]),
    )


class _SqlFlagsTransaction:
    """Flags read inside an open transaction; the lock flag is writable."""

    def __init__(self, conn: Connection, flags: LifecycleFlags, config: WorkflowConfig):
        self._conn = conn
        self.flags = flags
        self.config = config

    def set_lock(self, locked: bool) -> bool:
        result = self._conn.execute(
            text("""
                UPDATE form_instances
                SET lock_status = :locked, updated_at = :now
                WHERE id = :id AND lock_status = :previous
            """),
            {
                "id": self.flags.form_instance_id,
                "locked": locked,
                "previous": not locked,
                "now": datetime.now(UTC).isoformat(),
            },
        )
        return result.rowcount == 1


class SqlWorkflowStore:
    """Lifecycle flags and workflow configs. Dialect-neutral via SQLAlchemy Core."""

    def __init__(self, database: str | Engine):
        self._engine = resolve_engine(database)
        self._ensure_tables()

    def _ensure_tables(self) -> None:
        """Create form_instances and form_workflow_configs if they don't exist."""
        with self._engine.connect() as conn:
            conn.execute(text(f"""
                CREATE TABLE IF NOT EXISTS form_instances (
                    id                  {id_column(self._engine)},
                    form_id             INTEGER NOT NULL,
                    study_id            INTEGER,
                    completion_status   TEXT NOT NULL DEFAULT 'not_started',
                    sdv_status          BOOLEAN NOT NULL DEFAULT FALSE,
                    signature_status    BOOLEAN NOT NULL DEFAULT FALSE,
                    lock_status         BOOLEAN NOT NULL DEFAULT FALSE,
                    updated_at          TEXT
                )
            """))
            conn.execute(text(f"""
                CREATE TABLE IF NOT EXISTS form_workflow_configs (
                    id                  {id_column(self._engine)},
                    form_id             INTEGER NOT NULL,
                    study_id            INTEGER,
                    requires_sdv        BOOLEAN NOT NULL DEFAULT FALSE,
                    requires_signature  BOOLEAN NOT NULL DEFAULT FALSE,
                    requires_dde        BOOLEAN NOT NULL DEFAULT FALSE
                )
            """))
            conn.execute(text("""
                CREATE INDEX IF NOT EXISTS idx_form_workflow_configs_form
                ON form_workflow_configs(form_id, study_id)
            """))
            conn.commit()

    # ------------------------------------------------------------------
    # LifecycleStore
    # ------------------------------------------------------------------

    def read_lifecycle_flags(self, form_instance_id: int) -> LifecycleFlags | None:
        try:
            with self._engine.connect() as conn:
                row = conn.execute(text(_FLAGS_QUERY), {"id": form_instance_id}).mappings().fetchone()
        except SQLAlchemyError as e:
            raise PersistenceError(str(e)) from e
        return _row_to_flags(row) if row else None

    def read_workflow_config(self, form_id: int | None, study_id: int | None) -> WorkflowConfig:
        """The study-specific config if there is one, else the global one."""
        try:
            with self._engine.connect() as conn:
                return _read_config(conn, form_id, study_id)
        except SQLAlchemyError as e:
            raise PersistenceError(str(e)) from e

    def write_phase_flag(self, form_instance_id: int, phase: Phase) -> None:
        if phase not in _PHASE_UPDATES:
            raise ValueError(f"{phase.value} is not written as a flag")
        try:
            with self._engine.begin() as conn:
                result = conn.execute(
                    text(f"""
                        UPDATE form_instances
                        SET {_PHASE_UPDATES[phase]}, updated_at = :now
                        WHERE id = :id AND lock_status = false
                    """),
                    {"id": form_instance_id, "now": datetime.now(UTC).isoformat()},
                )
        except SQLAlchemyError as e:
            raise PersistenceError(str(e)) from e
        if result.rowcount != 1:
            raise PersistenceError(f"Form instance {form_instance_id} is missing or locked")

    @contextmanager
    def lock_transaction(self, form_instance_id: int) -> Iterator[_SqlFlagsTransaction | None]:
        query = _FLAGS_QUERY
        if self._engine.dialect.name == "postgresql":
            query += " FOR UPDATE"

        try:
            with self._engine.begin() as conn:
                row = conn.execute(text(query), {"id": form_instance_id}).mappings().fetchone()
                if row is None:
                    yield None
                    return
                flags = _row_to_flags(row)
                config = _read_config(conn, flags.form_id, flags.study_id)
                yield _SqlFlagsTransaction(conn, flags, config)
        except SQLAlchemyError as e:
            raise PersistenceError(str(e)) from e

    # ------------------------------------------------------------------
    # Setup
    # ------------------------------------------------------------------

    def create_form_instance(
        self,
        form_id: int,
        study_id: int | None = None,
        completion_status: CompletionStatus = CompletionStatus.NOT_STARTED,
        sdv_status: bool = False,
        signature_status: bool = False,
    ) -> int:
        """Insert a form instance and return its id."""
        try:
            with self._engine.begin() as conn:
                instance_id = conn.execute(
                    text("""
                        INSERT INTO form_instances
                            (form_id, study_id, completion_status, sdv_status,
                             signature_status, lock_status, updated_at)
                        VALUES
                            (:form_id, :study_id, :completion_status, :sdv_status,
                             :signature_status, false, :now)
                        RETURNING id
                    """),
                    {
                        "form_id": form_id,
                        "study_id": study_id,
                        "completion_status": completion_status.value,
                        "sdv_status": sdv_status,
                        "signature_status": signature_status,
                        "now": datetime.now(UTC).isoformat(),
                    },
                ).scalar_one()
        except SQLAlchemyError as e:
            raise PersistenceError(str(e)) from e
        return int(instance_id)

    def set_workflow_config(
        self, form_id: int, config: WorkflowConfig, study_id: int | None = None
    ) -> None:
        """Replace the config for a form (globally, or for one study)."""
        scope = "study_id = :study_id" if study_id is not None else "study_id IS NULL"
        try:
            with self._engine.begin() as conn:
                conn.execute(
                    text(f"DELETE FROM form_workflow_configs WHERE form_id = :form_id AND {scope}"),
                    {"form_id": form_id, "study_id": study_id},
                )
                conn.execute(
                    text("""
                        INSERT INTO form_workflow_configs
                            (form_id, study_id, requires_sdv, requires_signature, requires_dde)
                        VALUES
                            (:form_id, :study_id, :requires_sdv, :requires_signature, :requires_dde)
                    """),
                    {
                        "form_id": form_id,
                        "study_id": study_id,
                        "requires_sdv": config.requires_sdv,
                        "requires_signature": config.requires_signature,
                        "requires_dde": config.requires_dde,
                    },
                )
        except SQLAlchemyError as e:
            raise PersistenceError(str(e)) from e
