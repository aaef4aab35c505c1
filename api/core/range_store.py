"""
Range-indexed item store on top of Postgres (asyncpg).

Items are schemaless JSON documents grouped by a logical table name. Each
table declares a key schema: a partition attribute and a numeric sort
attribute, plus optional named secondary indexes over other attribute pairs.

Call contract:
- `put_item(table, item)` / `batch_put_items(table, items)` upsert by the
  table's identity attribute. Batches are written in sequential chunks of
  `BATCH_WRITE_LIMIT` items; a failing chunk stops the run and earlier
  chunks stay written.
- `query(spec)` scans one partition in sort-key order, optionally bounded by
  a sort-key range, resuming after `spec.cursor`, reading at most
  `spec.limit` items. Filter conditions are evaluated on that page only, so
  a page may hold fewer than `limit` items while `cursor` is still set.
  `cursor is None` means the partition is exhausted for the given range.
"""

from __future__ import annotations

import base64
import binascii
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Iterable

import asyncpg

from .errors import QueryFailed, StoreWriteFailed, ValidationFailed

# Per-call item limit for batched writes.
BATCH_WRITE_LIMIT = 25

FILTER_OPERATORS = {">=", "<=", "contains"}

logger = logging.getLogger(__name__)

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS range_items (
  table_name text NOT NULL,
  item_id text NOT NULL,
  item jsonb NOT NULL,
  updated_at timestamptz NOT NULL DEFAULT now(),
  PRIMARY KEY (table_name, item_id)
)
"""

UPSERT_SQL = """
INSERT INTO range_items (table_name, item_id, item)
VALUES ($1, $2, $3::jsonb)
ON CONFLICT (table_name, item_id) DO UPDATE
SET item = EXCLUDED.item,
    updated_at = now()
"""


@dataclass(frozen=True)
class KeySchema:
    partition_key: str
    sort_key: str


@dataclass(frozen=True)
class TableSchema:
    name: str
    id_attribute: str
    key: KeySchema
    indexes: dict[str, KeySchema] = field(default_factory=dict)

    def key_for(self, index_name: str | None) -> KeySchema:
        if index_name is None:
            return self.key
        try:
            return self.indexes[index_name]
        except KeyError:
            raise QueryFailed(f"Table '{self.name}' has no index '{index_name}'.") from None


@dataclass(frozen=True)
class SortKeyRange:
    """Inclusive bounds on the sort key; either side may be open."""

    lower: int | None = None
    upper: int | None = None


@dataclass(frozen=True)
class FilterCondition:
    """
    Non-key condition on a (possibly nested) attribute path.

    `>=` / `<=` compare numerically; `contains` is a case-insensitive
    substring match. A missing attribute never matches.
    """

    path: tuple[str, ...]
    op: str
    value: float | str

    def __post_init__(self) -> None:
        if self.op not in FILTER_OPERATORS:
            raise ValueError(f"Unsupported filter operator: {self.op}")
        if not self.path:
            raise ValueError("Filter path is empty.")


@dataclass(frozen=True)
class QuerySpec:
    table: str
    partition_value: str
    sort_range: SortKeyRange | None = None
    filters: tuple[FilterCondition, ...] = ()
    limit: int | None = None
    scan_forward: bool = True
    cursor: str | None = None
    index_name: str | None = None


@dataclass(frozen=True)
class QueryPage:
    items: list[dict[str, Any]]
    cursor: str | None


def encode_cursor(sort_value: int, item_id: str) -> str:
    raw = json.dumps({"sk": sort_value, "id": item_id}, separators=(",", ":"))
    return base64.urlsafe_b64encode(raw.encode("utf-8")).decode("ascii")


def decode_cursor(cursor: str) -> tuple[int, str]:
    try:
        data = json.loads(base64.urlsafe_b64decode(cursor.encode("ascii")))
        return int(data["sk"]), str(data["id"])
    except (binascii.Error, UnicodeError, ValueError, KeyError, TypeError) as exc:
        raise ValidationFailed("Invalid pagination cursor.") from exc


def _filter_sql(condition: FilterCondition, args: list[Any]) -> str:
    args.append(list(condition.path))
    path_ref = f"${len(args)}::text[]"
    if condition.op == "contains":
        args.append(str(condition.value))
        return f"strpos(lower(item #>> {path_ref}), lower(${len(args)}::text)) > 0"

    args.append(float(condition.value))
    return f"(item #>> {path_ref})::float8 {condition.op} ${len(args)}"


def build_query_sql(schema: TableSchema, spec: QuerySpec) -> tuple[str, list[Any]]:
    """
    Translate a QuerySpec into one SQL statement.

    The inner CTE is the key-range scan (partition, sort range, cursor,
    direction, limit); the filter is only evaluated on the rows it returns.
    """
    key = schema.key_for(spec.index_name)
    args: list[Any] = [schema.name, key.partition_key, spec.partition_value, key.sort_key]
    sort_expr = "(item ->> $4::text)::bigint"
    where = ["table_name = $1", "item ->> $2::text = $3::text", "item ? $4::text"]

    rng = spec.sort_range
    if rng is not None and rng.lower is not None and rng.upper is not None:
        args.extend([rng.lower, rng.upper])
        where.append(f"{sort_expr} BETWEEN ${len(args) - 1} AND ${len(args)}")
    elif rng is not None and rng.lower is not None:
        args.append(rng.lower)
        where.append(f"{sort_expr} >= ${len(args)}")
    elif rng is not None and rng.upper is not None:
        args.append(rng.upper)
        where.append(f"{sort_expr} <= ${len(args)}")

    if spec.cursor:
        last_sort, last_id = decode_cursor(spec.cursor)
        args.extend([last_sort, last_id])
        cmp = ">" if spec.scan_forward else "<"
        where.append(f"({sort_expr}, item_id) {cmp} (${len(args) - 1}::bigint, ${len(args)}::text)")

    direction = "ASC" if spec.scan_forward else "DESC"
    limit_sql = ""
    if spec.limit is not None:
        args.append(int(spec.limit))
        limit_sql = f"LIMIT ${len(args)}"

    filters = [_filter_sql(c, args) for c in spec.filters]
    matched = " AND ".join(f"({f})" for f in filters) if filters else "true"

    sql = f"""
        WITH page AS (
          SELECT item_id, item, {sort_expr} AS sort_value
          FROM range_items
          WHERE {' AND '.join(where)}
          ORDER BY sort_value {direction}, item_id {direction}
          {limit_sql}
        )
        SELECT item_id, item, sort_value, COALESCE({matched}, false) AS matched
        FROM page
        ORDER BY sort_value {direction}, item_id {direction}
        """
    return sql, args


def _index_ddl(schema: TableSchema, suffix: str, key: KeySchema) -> str:
    # Identifiers come from configuration, not from callers.
    table_literal = schema.name.replace("'", "''")
    pk = key.partition_key.replace("'", "''")
    sk = key.sort_key.replace("'", "''")
    index_name = "range_items_" + "".join(ch if ch.isalnum() else "_" for ch in f"{schema.name}_{suffix}")
    return f"""
        CREATE INDEX IF NOT EXISTS {index_name[:63]}
        ON range_items ((item ->> '{pk}'), ((item ->> '{sk}')::bigint), item_id)
        WHERE table_name = '{table_literal}'
        """


class RangeStore:
    def __init__(self, pool: asyncpg.Pool, tables: Iterable[TableSchema]) -> None:
        self._pool = pool
        self._tables = {t.name: t for t in tables}

    def schema(self, table: str) -> TableSchema:
        try:
            return self._tables[table]
        except KeyError:
            raise RuntimeError(f"Unknown table '{table}'.") from None

    async def ensure_schema(self) -> None:
        async with self._pool.acquire() as conn:
            await conn.execute(SCHEMA_SQL)
            for schema in self._tables.values():
                await conn.execute(_index_ddl(schema, "key", schema.key))
                for name, key in schema.indexes.items():
                    await conn.execute(_index_ddl(schema, name, key))

    def _row_args(self, schema: TableSchema, item: dict[str, Any]) -> tuple[str, str, str]:
        for attr in (schema.id_attribute, schema.key.partition_key, schema.key.sort_key):
            if item.get(attr) is None:
                raise StoreWriteFailed(f"Item is missing key attribute '{attr}' for table '{schema.name}'.")
        return schema.name, str(item[schema.id_attribute]), json.dumps(item, ensure_ascii=True)

    async def put_item(self, table: str, item: dict[str, Any]) -> None:
        schema = self.schema(table)
        row = self._row_args(schema, item)
        try:
            await self._pool.execute(UPSERT_SQL, *row)
        except Exception as exc:
            raise StoreWriteFailed(
                f"Failed to insert item into table '{table}'. Reason: {exc}"
            ) from exc
        logger.debug("store_put table=%s item_id=%s", table, row[1])

    async def batch_put_items(self, table: str, items: list[dict[str, Any]]) -> int:
        """
        Upsert items in sequential chunks of BATCH_WRITE_LIMIT.

        Returns the number of items written.
        """
        schema = self.schema(table)
        rows = [self._row_args(schema, item) for item in items]

        written = 0
        for start in range(0, len(rows), BATCH_WRITE_LIMIT):
            chunk = rows[start : start + BATCH_WRITE_LIMIT]
            try:
                async with self._pool.acquire() as conn:  # type: asyncpg.Connection
                    async with conn.transaction():
                        await conn.executemany(UPSERT_SQL, chunk)
            except Exception as exc:
                raise StoreWriteFailed(
                    f"Failed to batch insert items into table '{table}'. Reason: {exc}"
                ) from exc
            written += len(chunk)
            logger.info("store_batch_put table=%s chunk_size=%s written=%s", table, len(chunk), written)

        return written

    async def query(self, spec: QuerySpec) -> QueryPage:
        schema = self.schema(spec.table)
        sql, args = build_query_sql(schema, spec)

        try:
            rows = await self._pool.fetch(sql, *args)
        except Exception as exc:
            raise QueryFailed(f"Failed to query items. Reason: {exc}") from exc

        items = [json.loads(r["item"]) for r in rows if r["matched"]]

        cursor = None
        if spec.limit is not None and rows and len(rows) >= spec.limit:
            last = rows[-1]
            cursor = encode_cursor(int(last["sort_value"]), str(last["item_id"]))

        logger.debug(
            "store_query table=%s index=%s scanned=%s matched=%s has_more=%s",
            spec.table,
            spec.index_name,
            len(rows),
            len(items),
            cursor is not None,
        )
        return QueryPage(items=items, cursor=cursor)
