import json
from types import SimpleNamespace

import pytest
from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    MetaData,
    Numeric,
    Table,
    Text,
    create_engine,
    func,
    text,
)

metadata = MetaData()

products = Table(
    "products",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", Text, nullable=False),
    Column("description", Text, server_default=""),
    Column("price", Numeric(10, 2), nullable=False),
    Column("category", Text, server_default="other"),
    Column("sort_order", Integer, server_default="0"),
    Column("disable_coupon", Boolean, server_default="0"),
    sqlite_autoincrement=True,
)

flavors = Table(
    "flavors",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", Text, nullable=False),
    Column("product_id", Integer, ForeignKey("products.id")),
    Column("stock", Integer, server_default="0"),
    Column("price", Numeric(10, 2)),
    Column("image", Text),
    sqlite_autoincrement=True,
)

orders = Table(
    "orders",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("order_number", Text, nullable=False),
    Column("tracking_number", Text),
    Column("telegram_sent", Boolean, server_default="0"),
    Column("coupon_code", Text),
    Column("discount_amount", Numeric(10, 2), server_default="0"),
)

order_items = Table(
    "order_items",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("order_id", Integer, ForeignKey("orders.id")),
    Column("is_upsell", Boolean, server_default="0"),
    Column("upsell_product_id", Integer),
)

stores = Table(
    "stores",
    metadata,
    Column("id", Text, primary_key=True),
    Column("name", Text, nullable=False),
    Column("tel", Text),
    Column("address", Text, nullable=False),
    Column("lat", Float, nullable=False),
    Column("lng", Float, nullable=False),
    Column("city", Text, nullable=False),
    Column("area", Text, nullable=False),
    Column("service", Text),
    Column("created_at", DateTime, server_default=func.current_timestamp()),
    Column("updated_at", DateTime, server_default=func.current_timestamp()),
)

# Schema as deployed before any managed column was added.
LEGACY_SCHEMA = [
    "CREATE TABLE products (id INTEGER PRIMARY KEY AUTOINCREMENT, name TEXT NOT NULL, price DECIMAL(10,2) NOT NULL)",
    "CREATE TABLE flavors (id INTEGER PRIMARY KEY AUTOINCREMENT, name TEXT NOT NULL, product_id INTEGER)",
    "CREATE TABLE orders (id INTEGER PRIMARY KEY AUTOINCREMENT, order_number TEXT NOT NULL)",
    "CREATE TABLE order_items (id INTEGER PRIMARY KEY AUTOINCREMENT, order_id INTEGER)",
]


class RecordingConnection:
    """Connection stand-in for dialects the suite cannot open."""

    def __init__(self, dialect_name, rows=()):
        self.dialect = SimpleNamespace(name=dialect_name)
        self.rows = list(rows)
        self.statements = []

    def execute(self, statement, params=None):
        self.statements.append((" ".join(str(statement).split()), params))
        return iter(self.rows)


@pytest.fixture()
def engine():
    engine = create_engine("sqlite:///:memory:", future=True)
    metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture()
def legacy_engine():
    engine = create_engine("sqlite:///:memory:", future=True)
    with engine.begin() as conn:
        for statement in LEGACY_SCHEMA:
            conn.execute(text(statement))
        conn.execute(text("INSERT INTO products (name, price) VALUES ('Legacy Pod', 350)"))
        conn.execute(text("INSERT INTO orders (order_number) VALUES ('ORD-0001')"))
    yield engine
    engine.dispose()


@pytest.fixture()
def write_json(tmp_path):
    def _write(name, payload):
        path = tmp_path / name
        path.write_text(json.dumps(payload, ensure_ascii=False), encoding="utf-8")
        return path

    return _write
