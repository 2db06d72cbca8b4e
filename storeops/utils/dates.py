"""Datetime helpers."""

from __future__ import annotations

from datetime import datetime

import pendulum


def utc_now() -> pendulum.DateTime:
    return pendulum.now("UTC")


def snapshot_stamp(value: datetime) -> str:
    """Filename-safe timestamp, e.g. ``2025-08-10T12-30-45``."""
    iso = pendulum.instance(value).in_timezone("UTC").strftime("%Y-%m-%dT%H:%M:%S")
    return iso.replace(":", "-").replace(".", "-")


def from_timestamp(value: float) -> pendulum.DateTime:
    return pendulum.from_timestamp(value, tz="UTC")


def format_timestamp(value: datetime) -> str:
    return pendulum.instance(value).in_timezone("UTC").strftime("%Y-%m-%d %H:%M:%S UTC")
