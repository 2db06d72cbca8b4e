"""Database engine helpers."""

from __future__ import annotations

import os
import pathlib
from typing import Any

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine

DEFAULT_DATABASE_PATH = "data/store.db"

SSL_MODES = {
    "verify": "verify-full",
    "accept-any": "require",
}


def database_path() -> pathlib.Path:
    return pathlib.Path(os.environ.get("DATABASE_PATH", DEFAULT_DATABASE_PATH))


def database_url() -> str:
    """DATABASE_URL when set, otherwise the embedded SQLite file."""
    url = os.environ.get("DATABASE_URL")
    if url:
        # Hosted providers still hand out the deprecated scheme.
        if url.startswith("postgres://"):
            url = "postgresql://" + url[len("postgres://"):]
        return url
    return f"sqlite:///{database_path()}"


def connect_args_for(url: str) -> dict[str, Any]:
    timeout = os.environ.get("DB_CONNECT_TIMEOUT")
    if url.startswith("sqlite"):
        return {"timeout": float(timeout)} if timeout else {}
    args: dict[str, Any] = {}
    ssl_mode = os.environ.get("DB_SSL_MODE", "disable")
    if ssl_mode in SSL_MODES:
        args["sslmode"] = SSL_MODES[ssl_mode]
    elif ssl_mode != "disable":
        raise ValueError(f"Unknown DB_SSL_MODE: {ssl_mode}")
    if timeout:
        args["connect_timeout"] = int(float(timeout))
    return args


def create_engine_from_env() -> Engine:
    """Create an engine for the configured datastore."""
    url = database_url()
    return create_engine(url, pool_pre_ping=True, future=True, connect_args=connect_args_for(url))


def check_connection(engine: Engine) -> None:
    """Round-trip a trivial query so connection problems surface up front."""
    with engine.connect() as conn:
        conn.execute(text("SELECT 1"))
