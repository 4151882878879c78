"""Partition/row-key entity storage on top of SQLAlchemy.

Every logical table (``users``, ``patients``, ``visits``) shares a single
``entities`` table keyed by ``(table_name, partition_key, row_key)``.  The
remaining entity fields are kept as a JSON document so records can carry
whatever optional fields the clients send.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, List, Mapping, Optional

import sqlalchemy as sa
from sqlalchemy import Column, DateTime, MetaData, String, Table, Text, delete, insert, select, update
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError

from medscribe.db.config import DatabaseSettings, get_database_settings
from medscribe.errors import EntityExists, EntityNotFound, ValidationError
from medscribe.time_utils import ensure_utc, isoformat_z, utc_now

logger = logging.getLogger(__name__)

PARTITION_KEY = "partitionKey"
ROW_KEY = "rowKey"
TIMESTAMP_KEY = "timestamp"
DEFAULT_LIST_LIMIT = 100

_RESERVED = {PARTITION_KEY, ROW_KEY}

metadata = MetaData()

entities_table = Table(
    "entities",
    metadata,
    Column("table_name", String(64), primary_key=True),
    Column("partition_key", String(255), primary_key=True),
    Column("row_key", String(255), primary_key=True),
    Column("data", Text, nullable=False),
    Column("updated_at", DateTime(timezone=True), nullable=False),
)


def create_engine(settings: Optional[DatabaseSettings] = None) -> Engine:
    """Create an engine for ``settings`` and make sure the schema exists."""

    settings = settings or get_database_settings()
    engine = sa.create_engine(settings.url, **settings.engine_options())
    init_schema(engine)
    return engine


def init_schema(engine: Engine) -> None:
    metadata.create_all(engine)


def ping(engine: Engine) -> bool:
    """Return ``True`` when a trivial query succeeds."""

    try:
        with engine.connect() as conn:
            conn.execute(select(sa.literal(1)))
        return True
    except sa.exc.SQLAlchemyError:
        logger.warning("database_ping_failed", exc_info=True)
        return False


def _key(entity: Mapping[str, Any], name: str) -> str:
    value = entity.get(name)
    if value is None or str(value).strip() == "":
        raise ValidationError(f"{name} is required")
    return str(value)


def _payload(entity: Mapping[str, Any]) -> Dict[str, Any]:
    return {k: v for k, v in entity.items() if k not in _RESERVED}


class TableStore:
    """Entity access for one logical table."""

    def __init__(self, engine: Engine, table_name: str) -> None:
        self.engine = engine
        self.table_name = table_name

    def _where(self, partition: str, key: Optional[str] = None):
        clauses = [
            entities_table.c.table_name == self.table_name,
            entities_table.c.partition_key == partition,
        ]
        if key is not None:
            clauses.append(entities_table.c.row_key == key)
        return sa.and_(*clauses)

    @staticmethod
    def _to_entity(row: Mapping[str, Any]) -> Dict[str, Any]:
        entity: Dict[str, Any] = json.loads(row["data"])
        entity[PARTITION_KEY] = row["partition_key"]
        entity[ROW_KEY] = row["row_key"]
        entity.setdefault(TIMESTAMP_KEY, isoformat_z(ensure_utc(row["updated_at"])))
        return entity

    def get(self, partition: str, key: str) -> Dict[str, Any]:
        with self.engine.connect() as conn:
            row = conn.execute(select(entities_table).where(self._where(partition, key))).mappings().first()
        if row is None:
            raise EntityNotFound(f"{self.table_name} entity {key!r} not found")
        return self._to_entity(row)

    def list(self, partition: str, limit: Optional[int] = DEFAULT_LIST_LIMIT) -> List[Dict[str, Any]]:
        """Return entities in ``partition`` ordered by row key.

        ``limit`` caps the result; ``None`` returns everything.
        """

        stmt = (
            select(entities_table)
            .where(self._where(partition))
            .order_by(entities_table.c.row_key)
        )
        if limit is not None:
            stmt = stmt.limit(max(int(limit), 0))
        with self.engine.connect() as conn:
            rows = conn.execute(stmt).mappings().all()
        return [self._to_entity(row) for row in rows]

    def create(self, entity: Mapping[str, Any]) -> Dict[str, Any]:
        partition = _key(entity, PARTITION_KEY)
        key = _key(entity, ROW_KEY)
        now = utc_now()
        try:
            with self.engine.begin() as conn:
                conn.execute(
                    insert(entities_table).values(
                        table_name=self.table_name,
                        partition_key=partition,
                        row_key=key,
                        data=json.dumps(_payload(entity)),
                        updated_at=now,
                    )
                )
        except IntegrityError as exc:
            raise EntityExists(f"{self.table_name} entity {key!r} already exists") from exc
        return self.get(partition, key)

    def upsert(self, entity: Mapping[str, Any], merge: bool = True) -> Dict[str, Any]:
        """Insert ``entity`` or update the stored one.

        With ``merge`` the given fields are layered over the stored document,
        otherwise the stored document is replaced.
        """

        partition = _key(entity, PARTITION_KEY)
        key = _key(entity, ROW_KEY)
        now = utc_now()
        with self.engine.begin() as conn:
            row = conn.execute(
                select(entities_table.c.data).where(self._where(partition, key))
            ).mappings().first()
            if row is None:
                conn.execute(
                    insert(entities_table).values(
                        table_name=self.table_name,
                        partition_key=partition,
                        row_key=key,
                        data=json.dumps(_payload(entity)),
                        updated_at=now,
                    )
                )
            else:
                document = json.loads(row["data"]) if merge else {}
                document.update(_payload(entity))
                conn.execute(
                    update(entities_table)
                    .where(self._where(partition, key))
                    .values(data=json.dumps(document), updated_at=now)
                )
        return self.get(partition, key)

    def delete(self, partition: str, key: str) -> None:
        with self.engine.begin() as conn:
            result = conn.execute(delete(entities_table).where(self._where(partition, key)))
        if not result.rowcount:
            raise EntityNotFound(f"{self.table_name} entity {key!r} not found")

    def delete_partition(self, partition: str) -> int:
        with self.engine.begin() as conn:
            result = conn.execute(delete(entities_table).where(self._where(partition)))
        return int(result.rowcount or 0)


__all__ = [
    "TableStore",
    "PARTITION_KEY",
    "ROW_KEY",
    "DEFAULT_LIST_LIMIT",
    "create_engine",
    "init_schema",
    "ping",
]
