import json
from datetime import datetime

import pytest
from sqlalchemy import create_engine, func, select, text
from sqlalchemy.exc import IntegrityError

from storeops.ingest import BatchImportError
from storeops.ingest.models import SourceFormatError, StoreRecord
from storeops.ingest.stores import StoreImporter, import_stores

from conftest import stores


def store(store_id, **overrides):
    data = {
        "id": store_id,
        "name": f"Store {store_id}",
        "tel": "02-1234-5678",
        "address": "No. 1, Zhongshan Rd.",
        "lat": 25.04,
        "lng": 121.56,
        "city": "Taipei",
        "area": "Zhongzheng",
        "service": ["ATM", "Pickup"],
    }
    data.update(overrides)
    return data


def clock(value):
    return lambda: value


def test_reimport_updates_in_place(engine, write_json):
    first = write_json("stores.json", [store("100001"), store("100002")])
    import_stores(engine, first, now=clock(datetime(2025, 1, 1, 8, 0, 0)))

    second = write_json("stores-v2.json", [store("100001", address="No. 99, Xinyi Rd.")])
    summary = import_stores(engine, second, now=clock(datetime(2025, 2, 1, 8, 0, 0)))

    with engine.connect() as conn:
        rows = conn.execute(select(stores).where(stores.c.id == "100001")).all()
        total = conn.execute(select(func.count()).select_from(stores)).scalar_one()
        untouched = conn.execute(select(stores.c.updated_at).where(stores.c.id == "100002")).scalar_one()
    assert len(rows) == 1
    assert rows[0].address == "No. 99, Xinyi Rd."
    assert rows[0].updated_at == datetime(2025, 2, 1, 8, 0, 0)
    assert untouched == datetime(2025, 1, 1, 8, 0, 0)
    assert total == 2
    assert summary.inserted_count == 1


def test_service_tags_stored_as_json(engine, write_json):
    source = write_json("stores.json", {"stores": [store("200001", service=["冷凍", "ATM"])]})
    import_stores(engine, source)
    with engine.connect() as conn:
        service = conn.execute(select(stores.c.service)).scalar_one()
    assert json.loads(service) == ["冷凍", "ATM"]


def test_batches_and_duplicate_ids(engine, write_json):
    records = [store(f"{300000 + idx}") for idx in range(250)]
    records.append(store("300000", name="Renamed"))
    source = write_json("stores.json", records)
    summary = import_stores(engine, source, batch_size=100)
    assert summary.batch_count == 3
    assert summary.expected_count == 250
    assert summary.actual_count == 250
    with engine.connect() as conn:
        name = conn.execute(select(stores.c.name).where(stores.c.id == "300000")).scalar_one()
    assert name == "Renamed"


def test_failed_batch_keeps_earlier_batches(engine):
    records = [store(f"{400000 + idx}") for idx in range(6)]
    records[4]["address"] = None
    importer = StoreImporter(engine, batch_size=2)
    with pytest.raises(BatchImportError) as excinfo:
        importer.run([StoreRecord.from_mapping(item) for item in records])
    assert excinfo.value.batch_index == 2
    with engine.connect() as conn:
        ids = conn.execute(select(stores.c.id).order_by(stores.c.id)).scalars().all()
    assert ids == ["400000", "400001", "400002", "400003"]


def test_creates_table_when_missing(write_json):
    bare = create_engine("sqlite:///:memory:", future=True)
    source = write_json("stores.json", [store("500001")])
    summary = import_stores(bare, source)
    with bare.connect() as conn:
        assert conn.execute(text("SELECT name FROM stores")).scalar_one() == "Store 500001"
    assert summary.actual_count == 1
    bare.dispose()


@pytest.mark.parametrize("missing_id", [None, "", "   "])
def test_store_without_id_is_rejected_before_writing(write_json, missing_id):
    bare = create_engine("sqlite:///:memory:", future=True)
    record = store("600001")
    record["id"] = missing_id
    source = write_json("stores.json", [store("600000"), record])
    with pytest.raises(SourceFormatError):
        import_stores(bare, source)
    with bare.connect() as conn:
        assert conn.execute(text("SELECT name FROM sqlite_master WHERE name = 'stores'")).all() == []
    bare.dispose()


def test_created_table_rejects_null_ids():
    bare = create_engine("sqlite:///:memory:", future=True)
    StoreImporter(bare).run([])
    with pytest.raises(IntegrityError):
        with bare.begin() as conn:
            conn.execute(
                text(
                    "INSERT INTO stores (id, name, address, lat, lng, city, area) "
                    "VALUES (NULL, 'No Id', 'Somewhere', 0, 0, 'Taipei', 'Da-an')"
                )
            )
    bare.dispose()


def test_numeric_ids_are_stored_as_text(engine, write_json):
    source = write_json("stores.json", [store(700001), store("700001", name="Same store")])
    summary = import_stores(engine, source)
    assert summary.expected_count == summary.actual_count == 1
    with engine.connect() as conn:
        assert conn.execute(select(stores.c.name)).scalars().all() == ["Same store"]
