"""Additive schema migrations for a live database.

Whether a migration has been applied is read from the schema itself: a
managed column either exists on its table or it does not. There is no ledger
table, so the runner can be invoked any number of times against the same
database.
"""

from __future__ import annotations

import logging
import pathlib
import re
import sys
from dataclasses import dataclass, field
from typing import Iterable, Sequence

import yaml
from dotenv import load_dotenv
from sqlalchemy import text
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import SQLAlchemyError

from storeops.db.session import check_connection, create_engine_from_env
from storeops.utils.logs import configure_logging

logger = logging.getLogger(__name__)

MIGRATIONS_PATH = pathlib.Path(__file__).with_name("migrations.yml")
IDENTIFIER_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


class MigrationError(RuntimeError):
    pass


@dataclass(frozen=True, slots=True)
class MigrationStep:
    table: str
    column: str
    definition: str

    def __post_init__(self) -> None:
        for value in (self.table, self.column):
            if not IDENTIFIER_RE.match(value):
                raise ValueError(f"Invalid identifier in migration: {value!r}")
        if not self.definition.strip():
            raise ValueError(f"Missing column definition for {self.name}")

    @property
    def name(self) -> str:
        return f"{self.table}.{self.column}"


@dataclass(slots=True)
class MigrationReport:
    added: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)


def load_steps(path: pathlib.Path = MIGRATIONS_PATH) -> list[MigrationStep]:
    data = yaml.safe_load(path.read_text()) or []
    return [MigrationStep(**item) for item in data]


def fetch_columns(conn: Connection, table: str) -> set[str]:
    """Column names of ``table``, lower-cased; empty when the table is missing."""
    if conn.dialect.name == "sqlite":
        rows = conn.execute(text(f"PRAGMA table_info({table})"))
        return {row[1].lower() for row in rows}
    rows = conn.execute(
        text(
            """
            SELECT column_name
            FROM information_schema.columns
            WHERE table_schema = current_schema() AND table_name = :table
            """
        ),
        {"table": table},
    )
    return {row[0].lower() for row in rows}


def column_exists(conn: Connection, table: str, column: str) -> bool:
    return column.lower() in fetch_columns(conn, table)


def add_column_sql(dialect_name: str, step: MigrationStep) -> str:
    if dialect_name == "postgresql":
        return f"ALTER TABLE {step.table} ADD COLUMN IF NOT EXISTS {step.column} {step.definition}"
    return f"ALTER TABLE {step.table} ADD COLUMN {step.column} {step.definition}"


def run_migrations(engine: Engine, steps: Sequence[MigrationStep] | None = None) -> MigrationReport:
    """Add every managed column that is missing, then verify the result."""
    steps = list(steps) if steps is not None else load_steps()
    report = MigrationReport()
    live = _live_columns(engine, steps)
    for step in steps:
        if step.column.lower() in live[step.table]:
            logger.info("Column %s already exists, skipping", step.name)
            report.skipped.append(step.name)
            continue
        logger.info("Adding column %s %s", step.name, step.definition)
        with engine.begin() as conn:
            conn.execute(text(add_column_sql(conn.dialect.name, step)))
        live[step.table].add(step.column.lower())
        report.added.append(step.name)
    _verify(engine, steps)
    logger.info("Migrations complete: %s added, %s already present", len(report.added), len(report.skipped))
    return report


def _live_columns(engine: Engine, steps: Iterable[MigrationStep]) -> dict[str, set[str]]:
    live: dict[str, set[str]] = {}
    with engine.connect() as conn:
        for step in steps:
            if step.table in live:
                continue
            columns = fetch_columns(conn, step.table)
            if not columns:
                raise MigrationError(f"Table {step.table} does not exist")
            live[step.table] = columns
    return live


def _verify(engine: Engine, steps: Iterable[MigrationStep]) -> None:
    with engine.connect() as conn:
        missing = [step.name for step in steps if not column_exists(conn, step.table, step.column)]
    if missing:
        raise MigrationError(f"Columns missing after migration: {', '.join(missing)}")


def main() -> None:
    load_dotenv()
    configure_logging()
    try:
        engine = create_engine_from_env()
        check_connection(engine)
    except (SQLAlchemyError, ValueError) as exc:
        print(f"Cannot connect to database: {exc}", file=sys.stderr)
        sys.exit(2)
    try:
        report = run_migrations(engine)
    except MigrationError as exc:
        print(f"Migration verification failed: {exc}", file=sys.stderr)
        sys.exit(3)
    except SQLAlchemyError as exc:
        print(f"Migration failed: {exc}", file=sys.stderr)
        sys.exit(2)
    finally:
        engine.dispose()
    print(f"Migrations complete: {len(report.added)} columns added, {len(report.skipped)} already present")


if __name__ == "__main__":
    main()
