"""Shared fixtures: SQLite-backed stores under tmp_path, and in-memory fakes."""

import pytest
from sqlalchemy import create_engine, text

from crfengine.persistence import SqlDiscrepancyNoteStore, SqlRuleStore, SqlWorkflowStore


@pytest.fixture
def db_url(tmp_path):
    return f"sqlite:///{tmp_path / 'crfengine.db'}"


@pytest.fixture
def db(db_url):
    engine = create_engine(db_url)
    yield engine
    engine.dispose()


@pytest.fixture
def rule_store(db):
    return SqlRuleStore(db)


@pytest.fixture
def workflow_store(db):
    return SqlWorkflowStore(db)


@pytest.fixture
def note_store(db):
    return SqlDiscrepancyNoteStore(db)


@pytest.fixture
def native_tables(db):
    """Create the host system's native rule tables and return a row inserter."""
    with db.begin() as conn:
        conn.execute(text("""
            CREATE TABLE rule_expression (id INTEGER PRIMARY KEY, value TEXT)
        """))
        conn.execute(text("""
            CREATE TABLE rule (
                id INTEGER PRIMARY KEY, name TEXT, description TEXT,
                enabled BOOLEAN, rule_expression_id INTEGER, study_id INTEGER
            )
        """))
        conn.execute(text("""
            CREATE TABLE rule_set (
                id INTEGER PRIMARY KEY, study_id INTEGER, crf_id INTEGER,
                item_id INTEGER, target TEXT
            )
        """))
        conn.execute(text("""
            CREATE TABLE rule_set_rule (id INTEGER PRIMARY KEY, rule_set_id INTEGER, rule_id INTEGER)
        """))
        conn.execute(text("""
            CREATE TABLE rule_action (
                id INTEGER PRIMARY KEY, rule_set_rule_id INTEGER,
                action_type TEXT, message TEXT
            )
        """))

    def add_native_rule(
        rule_id, form_id, target, expression, action_type, message, name="native", enabled=True
    ):
        with db.begin() as conn:
            params = {
                "id": rule_id, "form_id": form_id, "target": target,
                "expression": expression, "action_type": action_type,
                "message": message, "name": name, "enabled": enabled,
            }
            conn.execute(text("INSERT INTO rule_expression (id, value) VALUES (:id, :expression)"), params)
            conn.execute(text("""
                INSERT INTO rule (id, name, description, enabled, rule_expression_id, study_id)
                VALUES (:id, :name, '', :enabled, :id, 1)
            """), params)
            conn.execute(text("""
                INSERT INTO rule_set (id, study_id, crf_id, item_id, target)
                VALUES (:id, 1, :form_id, NULL, :target)
            """), params)
            conn.execute(text("INSERT INTO rule_set_rule (id, rule_set_id, rule_id) VALUES (:id, :id, :id)"), params)
            conn.execute(text("""
                INSERT INTO rule_action (id, rule_set_rule_id, action_type, message)
                VALUES (:id, :id, :action_type, :message)
            """), params)

    return add_native_rule


class RecordingQueryService:
    """QueryService fake that remembers every call."""

    def __init__(self, fail_on: set[str] | None = None):
        self.calls: list[tuple] = []
        self.fail_on = fail_on or set()

    def open_query(self, form_instance_id, field_path, message, severity, rule_id=None):
        if field_path in self.fail_on:
            raise RuntimeError(f"query service down for {field_path}")
        self.calls.append((form_instance_id, field_path, message, severity, rule_id))
        return len(self.calls)


class RecordingAuditSink:
    def __init__(self):
        self.events = []

    def record(self, event):
        self.events.append(event)


@pytest.fixture
def query_service():
    return RecordingQueryService()


@pytest.fixture
def audit_sink():
    return RecordingAuditSink()


@pytest.fixture
def make_query_service():
    return RecordingQueryService
