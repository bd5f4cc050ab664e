"""Where the engine's tables live, and how to reach them."""

from __future__ import annotations

import os
from dataclasses import dataclass

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine

DEFAULT_URL = "sqlite:///crfengine.db"

# The postgres extra installs psycopg 3, not psycopg2
_DRIVER_REWRITES = {"postgresql://": "postgresql+psycopg://"}


@dataclass
class DatabaseConfig:
    """A database URL: ``sqlite:///path`` or ``postgresql://...``."""

    url: str

    @classmethod
    def from_env(cls) -> DatabaseConfig:
        """Read the URL from the environment.

        CRFENGINE_DATABASE_URL is checked first, then DATABASE_URL, then
        CRFENGINE_DB_PATH (a bare SQLite file path). Falls back to
        ``crfengine.db`` in the working directory.
        """
        for name in ("CRFENGINE_DATABASE_URL", "DATABASE_URL"):
            url = os.environ.get(name)
            if url:
                return cls(url=url)

        db_path = os.environ.get("CRFENGINE_DB_PATH")
        if db_path:
            return cls(url=f"sqlite:///{db_path}")
        return cls(url=DEFAULT_URL)

    @property
    def is_sqlite(self) -> bool:
        return self.url.startswith("sqlite")

    @property
    def is_postgresql(self) -> bool:
        return self.url.startswith("postgresql")

    @property
    def sqlalchemy_url(self) -> str:
        for prefix, replacement in _DRIVER_REWRITES.items():
            if self.url.startswith(prefix):
                return replacement + self.url[len(prefix):]
        return self.url

    def create_engine(self) -> Engine:
        return create_engine(self.sqlalchemy_url)


def resolve_engine(database: str | Engine) -> Engine:
    """Stores take either an Engine to share or a URL to connect to."""
    if isinstance(database, Engine):
        return database
    return DatabaseConfig(url=database).create_engine()


def id_column(engine: Engine) -> str:
    """DDL for an auto-incrementing integer primary key."""
    if engine.dialect.name == "postgresql":
        return "SERIAL PRIMARY KEY"
    return "INTEGER PRIMARY KEY AUTOINCREMENT"
