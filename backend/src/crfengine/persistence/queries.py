"""Persistence for discrepancy notes (queries raised against field values).

Implements the QueryService the validation orchestrator calls. A field has at
most one open note per form instance: asking again returns the open note's id.
"""

from datetime import UTC, datetime
from typing import Any

from sqlalchemy import text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from crfengine.errors import PersistenceError
from crfengine.persistence.config import id_column, resolve_engine


class SqlDiscrepancyNoteStore:
    """Discrepancy notes. Dialect-neutral via SQLAlchemy Core."""

    def __init__(self, database: str | Engine):
        self._engine = resolve_engine(database)
        self._ensure_table()

    def _ensure_table(self) -> None:
        with self._engine.connect() as conn:
            conn.execute(text(f"""
                CREATE TABLE IF NOT EXISTS discrepancy_notes (
                    id                  {id_column(self._engine)},
                    form_instance_id    INTEGER NOT NULL,
                    field_path          TEXT NOT NULL,
                    rule_id             INTEGER,
                    message             TEXT NOT NULL,
                    severity            TEXT NOT NULL,
                    status              TEXT NOT NULL DEFAULT 'open',
                    created_at          TEXT,
                    resolved_at         TEXT
                )
            """))
            conn.execute(text("""
                CREATE INDEX IF NOT EXISTS idx_discrepancy_notes_field
                ON discrepancy_notes(form_instance_id, field_path, status)
            """))
            conn.commit()

    def open_query(
        self,
        form_instance_id: int,
        field_path: str,
        message: str,
        severity: str,
        rule_id: int | None = None,
    ) -> int | None:
        """Open a note for a field.

        Returns:
            The new note id, or None when a note is already open for the field
        """
        try:
            with self._engine.begin() as conn:
                existing = conn.execute(
                    text("""
                        SELECT id FROM discrepancy_notes
                        WHERE form_instance_id = :form_instance_id
                          AND field_path = :field_path
                          AND status = 'open'
                        ORDER BY id
                        LIMIT 1
                    """),
                    {"form_instance_id": form_instance_id, "field_path": field_path},
                ).scalar_one_or_none()
                if existing is not None:
                    return None

                note_id = conn.execute(
                    text("""
                        INSERT INTO discrepancy_notes
                            (form_instance_id, field_path, rule_id, message,
                             severity, status, created_at)
                        VALUES
                            (:form_instance_id, :field_path, :rule_id, :message,
                             :severity, 'open', :now)
                        RETURNING id
                    """),
                    {
                        "form_instance_id": form_instance_id,
                        "field_path": field_path,
                        "rule_id": rule_id,
                        "message": message,
                        "severity": severity,
                        "now": datetime.now(UTC).isoformat(),
                    },
                ).scalar_one()
        except SQLAlchemyError as e:
            raise PersistenceError(str(e)) from e
        return int(note_id)

    def resolve_note(self, note_id: int) -> bool:
        """Close an open note. Returns False if it was not open."""
        try:
            with self._engine.begin() as conn:
                result = conn.execute(
                    text("""
                        UPDATE discrepancy_notes
                        SET status = 'resolved', resolved_at = :now
                        WHERE id = :id AND status = 'open'
                    """),
                    {"id": note_id, "now": datetime.now(UTC).isoformat()},
                )
        except SQLAlchemyError as e:
            raise PersistenceError(str(e)) from e
        return result.rowcount == 1

    def list_notes(self, form_instance_id: int) -> list[dict[str, Any]]:
        try:
            with self._engine.connect() as conn:
                rows = conn.execute(
                    text("""
                        SELECT * FROM discrepancy_notes
                        WHERE form_instance_id = :form_instance_id
                        ORDER BY id
                    """),
                    {"form_instance_id": form_instance_id},
                ).mappings().fetchall()
        except SQLAlchemyError as e:
            raise PersistenceError(str(e)) from e
        return [dict(row) for row in rows]
