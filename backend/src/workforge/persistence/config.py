"""Database configuration and engine factory."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.pool import StaticPool

logger = logging.getLogger(__name__)


@dataclass
class DatabaseConfig:
    """Database connection configuration.

    Supports sqlite:/// and postgresql:// URL schemes.
    """

    url: str
    echo: bool = False

    @classmethod
    def from_env(cls, base_path: Path | None = None) -> DatabaseConfig:
        """Create config from environment variables.

        Resolution order:
        1. DATABASE_URL env var (standard)
        2. WORKFORGE_DB_PATH env var (converted to sqlite:/// URL)
        3. Default: sqlite:///{base_path}/data/workforge.db
        """
        echo = os.environ.get("WORKFORGE_SQL_ECHO", "").lower() in ("1", "true", "yes")

        url = os.environ.get("DATABASE_URL")
        if url:
            return cls(url=url, echo=echo)

        db_path = os.environ.get("WORKFORGE_DB_PATH")
        if db_path:
            return cls(url=f"sqlite:///{db_path}", echo=echo)

        if base_path:
            return cls(url=f"sqlite:///{base_path / 'data' / 'workforge.db'}", echo=echo)

        return cls(url="sqlite:///workforge.db", echo=echo)

    @property
    def is_sqlite(self) -> bool:
        return self.url.startswith("sqlite")

    @property
    def is_postgresql(self) -> bool:
        return self.url.startswith("postgresql")

    @property
    def is_memory(self) -> bool:
        return self.is_sqlite and (self.url in ("sqlite://", "sqlite:///") or ":memory:" in self.url)

    @property
    def sqlalchemy_url(self) -> str:
        """URL suitable for SQLAlchemy engine creation.

        Ensures postgresql:// URLs use the psycopg (v3) driver since
        the project depends on psycopg[binary], not psycopg2.
        """
        if self.url.startswith("postgresql://"):
            return self.url.replace("postgresql://", "postgresql+psycopg://", 1)
        return self.url


def _enable_sqlite_savepoints(engine: Engine) -> None:
    """Let SQLAlchemy own BEGIN so SAVEPOINTs work on pysqlite.

    pysqlite otherwise starts transactions itself and breaks nested
    transactions.
    """

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN")


def create_db_engine(config: DatabaseConfig) -> Engine:
    """Create a pooled SQLAlchemy engine for the configured database.

    Raises:
        ValueError: For unsupported URL schemes.
    """
    if config.is_sqlite:
        kwargs = {}
        if config.is_memory:
            # One shared connection, or every checkout sees an empty database
            kwargs = {
                "poolclass": StaticPool,
                "connect_args": {"check_same_thread": False},
            }
        else:
            db_path = config.url.replace("sqlite:///", "", 1)
            if db_path:
                Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        engine = create_engine(config.sqlalchemy_url, echo=config.echo, **kwargs)
        _enable_sqlite_savepoints(engine)
        logger.debug("Created SQLite engine for %s", config.url)
        return engine

    if config.is_postgresql:
        engine = create_engine(
            config.sqlalchemy_url,
            echo=config.echo,
            pool_pre_ping=True,
        )
        logger.debug("Created PostgreSQL engine")
        return engine

    raise ValueError(f"Unsupported database URL scheme: {config.url}")
