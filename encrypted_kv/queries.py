"""Prefix-bounded scan queries for the partitioned KV table.

Rows are partitioned by ``(predecessor_id, current_account_id)`` and clustered
by ``key``. A prefix scan is the half-open range ``[prefix, prefix + "\\xff")``,
so the store only needs range predicates on the clustering column. U+00FF sorts
after every character allowed in a key.

These are pure builders; executing the statements is the storage layer's job.
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional, Tuple

PREFIX_SENTINEL = "\xff"
DEFAULT_TIMEOUT_SECONDS = 10.0

KV_COLUMNS = (
    "predecessor_id",
    "current_account_id",
    "key",
    "value",
    "block_height",
    "block_timestamp",
    "receipt_id",
    "tx_hash",
)

_PARTITION_FILTER = "predecessor_id = ? AND current_account_id = ?"
_RANGE_FILTER = "key >= ? AND key < ?"


class Consistency(str, Enum):
    LOCAL_ONE = "LOCAL_ONE"


@dataclass(frozen=True)
class ScanQuery:
    statement: str
    prefix_start: str
    prefix_end: str
    consistency: Consistency = Consistency.LOCAL_ONE
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS

    @property
    def has_range(self) -> bool:
        return bool(self.prefix_end)

    def bind(self, predecessor_id: str, current_account_id: str) -> Tuple[str, ...]:
        """Positional parameters for the statement's ``?`` markers."""
        if self.has_range:
            return (predecessor_id, current_account_id, self.prefix_start, self.prefix_end)
        return (predecessor_id, current_account_id)

    def contains(self, key: str) -> bool:
        if not self.has_range:
            return True
        return self.prefix_start <= key < self.prefix_end


def compute_prefix_end(prefix: str) -> str:
    return f"{prefix}{PREFIX_SENTINEL}"


def _select(columns: str, table: str, with_range: bool) -> str:
    where = _PARTITION_FILTER
    if with_range:
        where = f"{where} AND {_RANGE_FILTER}"
    return f"SELECT {columns} FROM {table} WHERE {where}"


def build_prefix_scan(prefix: str, table: str, timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS) -> ScanQuery:
    return ScanQuery(
        statement=_select(", ".join(KV_COLUMNS), table, with_range=True),
        prefix_start=prefix,
        prefix_end=compute_prefix_end(prefix),
        timeout_seconds=timeout_seconds,
    )


def build_prefix_count(
    prefix: Optional[str],
    table: str,
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
) -> ScanQuery:
    if prefix is None:
        # Whole partition: no range bounds at all.
        return ScanQuery(
            statement=_select("COUNT(*)", table, with_range=False),
            prefix_start="",
            prefix_end="",
            timeout_seconds=timeout_seconds,
        )
    return ScanQuery(
        statement=_select("COUNT(*)", table, with_range=True),
        prefix_start=prefix,
        prefix_end=compute_prefix_end(prefix),
        timeout_seconds=timeout_seconds,
    )


def build_keys_only_prefix_scan(
    prefix: str,
    table: str,
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
) -> ScanQuery:
    return ScanQuery(
        statement=_select("key", table, with_range=True),
        prefix_start=prefix,
        prefix_end=compute_prefix_end(prefix),
        timeout_seconds=timeout_seconds,
    )


class PrefixQueryBuilder:
    """Binds the three scan builders to one configured table and timeout."""

    def __init__(self, table: str, timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS) -> None:
        self.table = table
        self.timeout_seconds = timeout_seconds

    @classmethod
    def from_settings(cls, settings: Any) -> "PrefixQueryBuilder":
        return cls(table=settings.kv_table, timeout_seconds=settings.scan_timeout_seconds)

    def prefix_scan(self, prefix: str) -> ScanQuery:
        return build_prefix_scan(prefix, self.table, self.timeout_seconds)

    def prefix_count(self, prefix: Optional[str] = None) -> ScanQuery:
        return build_prefix_count(prefix, self.table, self.timeout_seconds)

    def keys_only_prefix_scan(self, prefix: str) -> ScanQuery:
        return build_keys_only_prefix_scan(prefix, self.table, self.timeout_seconds)


__all__ = [
    "Consistency",
    "PrefixQueryBuilder",
    "ScanQuery",
    "build_keys_only_prefix_scan",
    "build_prefix_count",
    "build_prefix_scan",
    "compute_prefix_end",
]
