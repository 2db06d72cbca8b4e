"""Bulk product catalog import.

The import replaces the whole catalog: ``flavors`` and ``products`` are
emptied and their id sequences restarted, then products are inserted in
fixed-size batches, one transaction per batch. A failing batch is rolled back
and stops the import; batches committed before it stay in place.
"""

from __future__ import annotations

import argparse
import logging
import os
import pathlib
import sys
from decimal import Decimal
from typing import Sequence

from dotenv import load_dotenv
from sqlalchemy import Numeric, bindparam, text
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import SQLAlchemyError

from storeops.db.session import check_connection, create_engine_from_env
from storeops.ingest import BatchImportError, load_products, partition
from storeops.ingest.models import ImportBatch, ImportSummary, ProductRecord, SourceFormatError, round_money
from storeops.utils.logs import configure_logging

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 5
DEFAULT_VARIANT_NAME = "Default"
CATALOG_TABLES = ("flavors", "products")

INSERT_PRODUCT = text(
    """
    INSERT INTO products (name, description, price, category)
    VALUES (:name, :description, :price, :category)
    RETURNING id
    """
).bindparams(bindparam("price", type_=Numeric(10, 2)))

INSERT_FLAVOR = text(
    """
    INSERT INTO flavors (name, product_id, stock, price)
    VALUES (:name, :product_id, :stock, :price)
    """
).bindparams(bindparam("price", type_=Numeric(10, 2)))


class CatalogImporter:
    def __init__(self, engine: Engine, *, batch_size: int = DEFAULT_BATCH_SIZE) -> None:
        self.engine = engine
        self.batch_size = batch_size

    def run(self, products: Sequence[ProductRecord]) -> ImportSummary:
        batches = list(partition(products, self.batch_size))
        summary = ImportSummary(expected_count=len(products))
        self.reset()
        logger.info("Importing %s products in %s batches", len(products), len(batches))
        for batch in batches:
            try:
                with self.engine.begin() as conn:
                    children = self._persist_batch(conn, batch)
            except Exception as exc:
                logger.error("Batch %s/%s rolled back: %s", batch.index + 1, len(batches), exc)
                raise BatchImportError(batch.index, summary.inserted_count, exc) from exc
            summary.inserted_count += len(batch.records)
            summary.child_count += children
            summary.batch_count += 1
            logger.info("Batch %s/%s committed (%s products)", batch.index + 1, len(batches), len(batch.records))
        self._verify(products, summary)
        return summary

    def reset(self) -> None:
        """Delete the current catalog, dependents first, and restart ids at 1."""
        with self.engine.begin() as conn:
            for table in CATALOG_TABLES:
                conn.execute(text(f"DELETE FROM {table}"))
            _reset_sequences(conn, CATALOG_TABLES)
        logger.info("Cleared existing products and flavors")

    def _persist_batch(self, conn: Connection, batch: ImportBatch[ProductRecord]) -> int:
        children = 0
        for product in batch.records:
            base_price = round_money(product.price)
            product_id = conn.execute(
                INSERT_PRODUCT,
                {
                    "name": product.name,
                    "description": product.description,
                    "price": base_price,
                    "category": product.category,
                },
            ).scalar_one()
            rows = [
                {
                    "name": variant.display_name,
                    "product_id": product_id,
                    "stock": variant.stock,
                    "price": round_money(base_price + Decimal(str(variant.price_modifier))),
                }
                for variant in product.variants
            ]
            if not rows:
                rows = [
                    {
                        "name": DEFAULT_VARIANT_NAME,
                        "product_id": product_id,
                        "stock": product.stock,
                        "price": base_price,
                    }
                ]
            conn.execute(INSERT_FLAVOR, rows)
            children += len(rows)
            logger.debug("Inserted product %s (%s) with %s flavors", product_id, product.name, len(rows))
        return children

    def _verify(self, products: Sequence[ProductRecord], summary: ImportSummary) -> None:
        expected_flavors = sum(product.expected_variant_rows for product in products)
        with self.engine.connect() as conn:
            summary.actual_count = conn.execute(text("SELECT COUNT(*) FROM products")).scalar_one()
            flavor_count = conn.execute(text("SELECT COUNT(*) FROM flavors")).scalar_one()
        if summary.actual_count != summary.expected_count:
            logger.warning("Expected %s products, found %s", summary.expected_count, summary.actual_count)
        if flavor_count != expected_flavors:
            logger.warning("Expected %s flavors, found %s", expected_flavors, flavor_count)
        logger.info("Catalog now has %s products and %s flavors", summary.actual_count, flavor_count)


def _reset_sequences(conn: Connection, tables: Sequence[str]) -> None:
    if conn.dialect.name == "postgresql":
        for table in tables:
            conn.execute(
                text("SELECT setval(pg_get_serial_sequence(:table, 'id'), 1, false)"),
                {"table": table},
            )
    elif conn.dialect.name == "sqlite":
        has_sequences = conn.execute(
            text("SELECT name FROM sqlite_master WHERE type = 'table' AND name = 'sqlite_sequence'")
        ).scalar_one_or_none()
        if has_sequences:
            for table in tables:
                conn.execute(text("DELETE FROM sqlite_sequence WHERE name = :table"), {"table": table})


def import_catalog(
    engine: Engine,
    source: pathlib.Path,
    *,
    batch_size: int = DEFAULT_BATCH_SIZE,
) -> ImportSummary:
    """Load ``source`` and replace the catalog with its products.

    Parsing happens before anything is deleted, so a malformed file leaves the
    database untouched.
    """
    products = load_products(source)
    return CatalogImporter(engine, batch_size=batch_size).run(products)


def main(argv: Sequence[str] | None = None) -> None:
    load_dotenv()
    parser = argparse.ArgumentParser(description="Replace the product catalog from a JSON or YAML export")
    parser.add_argument("source", type=pathlib.Path, help="Products export file")
    parser.add_argument(
        "--batch-size",
        type=int,
        default=int(os.environ.get("IMPORT_PRODUCT_BATCH_SIZE", DEFAULT_BATCH_SIZE)),
        help="Products per transaction",
    )
    args = parser.parse_args(argv)
    configure_logging()
    try:
        products = load_products(args.source)
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
        summary = CatalogImporter(engine, batch_size=args.batch_size).run(products)
    except (BatchImportError, SQLAlchemyError) as exc:
        print(f"Import aborted: {exc}", file=sys.stderr)
        sys.exit(2)
    finally:
        engine.dispose()
    print(
        f"Imported {summary.inserted_count} products with {summary.child_count} flavors "
        f"in {summary.batch_count} batches"
    )


if __name__ == "__main__":
    main()
