"""Ingestion helpers."""

from __future__ import annotations

import json
import pathlib
from typing import Any, Iterator, Mapping, Sequence, TypeVar

import yaml

from storeops.ingest.models import ImportBatch, ProductRecord, SourceFormatError, StoreRecord

T = TypeVar("T")

YAML_SUFFIXES = {".yml", ".yaml"}


class BatchImportError(RuntimeError):
    def __init__(self, batch_index: int, committed_records: int, cause: Exception) -> None:
        super().__init__(f"Batch {batch_index + 1} failed after {committed_records} committed records: {cause}")
        self.batch_index = batch_index
        self.committed_records = committed_records
        self.cause = cause


def load_document(path: pathlib.Path) -> Any:
    path = pathlib.Path(path)
    try:
        raw = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise SourceFormatError(f"Cannot read {path}: {exc}") from exc
    try:
        if path.suffix.lower() in YAML_SUFFIXES:
            return yaml.safe_load(raw)
        return json.loads(raw)
    except (json.JSONDecodeError, yaml.YAMLError) as exc:
        raise SourceFormatError(f"Cannot parse {path}: {exc}") from exc


def _record_list(document: Any, key: str) -> list[Mapping[str, Any]]:
    items = document.get(key) if isinstance(document, Mapping) else document
    if not isinstance(items, list):
        raise SourceFormatError(f"Expected a list of {key}")
    for position, item in enumerate(items, start=1):
        if not isinstance(item, Mapping):
            raise SourceFormatError(f"Entry {position} in {key} is not an object")
    return items


def load_products(path: pathlib.Path) -> list[ProductRecord]:
    return [ProductRecord.from_mapping(item) for item in _record_list(load_document(path), "products")]


def load_stores(path: pathlib.Path) -> list[StoreRecord]:
    return [StoreRecord.from_mapping(item) for item in _record_list(load_document(path), "stores")]


def partition(records: Sequence[T], size: int) -> Iterator[ImportBatch[T]]:
    if size < 1:
        raise ValueError(f"Batch size must be positive, got {size}")
    for index, start in enumerate(range(0, len(records), size)):
        yield ImportBatch(index=index, records=records[start:start + size])
