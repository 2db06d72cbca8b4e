"""Pickup-point (convenience store) location import."""

from __future__ import annotations

import argparse
import json
import logging
import os
import pathlib
import sys
from datetime import datetime, timezone
from typing import Callable, Sequence

from dotenv import load_dotenv
from sqlalchemy import DateTime, bindparam, text
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import SQLAlchemyError

from storeops.db.session import check_connection, create_engine_from_env
from storeops.ingest import BatchImportError, load_stores, partition
from storeops.ingest.models import ImportBatch, ImportSummary, SourceFormatError, StoreRecord
from storeops.utils.logs import configure_logging

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 100

CREATE_STORES = text(
    """
    CREATE TABLE IF NOT EXISTS stores (
        id TEXT PRIMARY KEY NOT NULL,
        name TEXT NOT NULL,
        tel TEXT,
        address TEXT NOT NULL,
        lat REAL NOT NULL,
        lng REAL NOT NULL,
        city TEXT NOT NULL,
        area TEXT NOT NULL,
        service TEXT,
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    )
    """
)

UPSERT_STORE = text(
    """
    INSERT INTO stores (id, name, tel, address, lat, lng, city, area, service, updated_at)
    VALUES (:id, :name, :tel, :address, :lat, :lng, :city, :area, :service, :updated_at)
    ON CONFLICT (id) DO UPDATE SET
      name = EXCLUDED.name,
      tel = EXCLUDED.tel,
      address = EXCLUDED.address,
      lat = EXCLUDED.lat,
      lng = EXCLUDED.lng,
      city = EXCLUDED.city,
      area = EXCLUDED.area,
      service = EXCLUDED.service,
      updated_at = EXCLUDED.updated_at
    """
).bindparams(bindparam("updated_at", type_=DateTime()))


def _utc_timestamp() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


class StoreImporter:
    def __init__(
        self,
        engine: Engine,
        *,
        batch_size: int = DEFAULT_BATCH_SIZE,
        now: Callable[[], datetime] = _utc_timestamp,
    ) -> None:
        self.engine = engine
        self.batch_size = batch_size
        self.now = now

    def run(self, stores: Sequence[StoreRecord]) -> ImportSummary:
        with self.engine.begin() as conn:
            conn.execute(CREATE_STORES)
        batches = list(partition(stores, self.batch_size))
        summary = ImportSummary(expected_count=len({str(store.id) for store in stores}))
        updated_at = self.now()
        logger.info("Importing %s stores in %s batches", len(stores), len(batches))
        for batch in batches:
            try:
                with self.engine.begin() as conn:
                    self._persist_batch(conn, batch, updated_at)
            except Exception as exc:
                logger.error("Batch %s/%s rolled back: %s", batch.index + 1, len(batches), exc)
                raise BatchImportError(batch.index, summary.inserted_count, exc) from exc
            summary.inserted_count += len(batch.records)
            summary.batch_count += 1
            if summary.inserted_count % 1000 == 0:
                logger.info("Imported %s stores...", summary.inserted_count)
        with self.engine.connect() as conn:
            summary.actual_count = conn.execute(text("SELECT COUNT(*) FROM stores")).scalar_one()
        if summary.actual_count != summary.expected_count:
            logger.warning(
                "Store count mismatch: %s distinct ids imported, %s rows in table",
                summary.expected_count,
                summary.actual_count,
            )
        logger.info("Imported %s stores, table now has %s rows", summary.inserted_count, summary.actual_count)
        return summary

    def _persist_batch(self, conn: Connection, batch: ImportBatch[StoreRecord], updated_at: datetime) -> None:
        conn.execute(
            UPSERT_STORE,
            [
                {
                    "id": str(store.id),
                    "name": store.name,
                    "tel": store.tel,
                    "address": store.address,
                    "lat": store.lat,
                    "lng": store.lng,
                    "city": store.city,
                    "area": store.area,
                    "service": json.dumps(store.service, ensure_ascii=False),
                    "updated_at": updated_at,
                }
                for store in batch.records
            ],
        )


def import_stores(
    engine: Engine,
    source: pathlib.Path,
    *,
    batch_size: int = DEFAULT_BATCH_SIZE,
    now: Callable[[], datetime] = _utc_timestamp,
) -> ImportSummary:
    stores = load_stores(source)
    return StoreImporter(engine, batch_size=batch_size, now=now).run(stores)


def main(argv: Sequence[str] | None = None) -> None:
    load_dotenv()
    parser = argparse.ArgumentParser(description="Upsert pickup-point stores from a JSON or YAML export")
    parser.add_argument("source", type=pathlib.Path, help="Stores export file")
    parser.add_argument(
        "--batch-size",
        type=int,
        default=int(os.environ.get("IMPORT_STORE_BATCH_SIZE", DEFAULT_BATCH_SIZE)),
        help="Stores per transaction",
    )
    args = parser.parse_args(argv)
    configure_logging()
    try:
        stores = load_stores(args.source)
    except SourceFormatError as exc:
        print(f"Invalid import file: {exc}", file=sys.stderr)
        sys.exit(1)
    try:
        engine = create_engine_from_env()
        check_connection(engine)
    except (SQLAlchemyError, ValueError) as exc:
        print(f"Cannot connect to database: {exc}", file=sys.stderr)
        sys.exit(2)
    try:
        summary = StoreImporter(engine, batch_size=args.batch_size).run(stores)
    except (BatchImportError, SQLAlchemyError) as exc:
        print(f"Import aborted: {exc}", file=sys.stderr)
        sys.exit(2)
    finally:
        engine.dispose()
    print(f"Imported {summary.inserted_count} stores in {summary.batch_count} batches")


if __name__ == "__main__":
    main()
