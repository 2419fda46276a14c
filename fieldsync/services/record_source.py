"""Record sources: the business tables a sync run reads from and writes to."""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import MetaData, Table, select, insert, update
from sqlalchemy.engine import Engine

logger = logging.getLogger(__name__)


@dataclass
class TableSpec:
    """Shape of one synchronized table."""

    name: str
    primary_key: str
    columns: List[str]
    timestamp_column: Optional[str] = None


@dataclass
class RecordChange:
    """Net pending change for one record."""

    table: str
    record_id: str
    operation: str  # upsert or delete
    data: Dict[str, Any] = field(default_factory=dict)
    updated_at: Optional[datetime] = None


class RecordSource(ABC):
    """Tables of business entities exposed to the sync engine."""

    @abstractmethod
    def tables(self) -> List[TableSpec]:
        """Return table specs in dependency order, parents first."""

    @abstractmethod
    def pending_changes(
        self,
        since: Optional[datetime],
        organization_id: Optional[int] = None,
    ) -> List[RecordChange]:
        """Return records changed after `since` (all records when None)."""

    @abstractmethod
    def fetch_records(self, table: str, organization_id: Optional[int] = None) -> List[Dict[str, Any]]:
        """Return every record of a table."""

    @abstractmethod
    def write_record(self, table: str, data: Dict[str, Any]) -> None:
        """Insert or replace one record."""

    def coerce_record(self, table: str, data: Dict[str, Any]) -> Dict[str, Any]:
        """Convert a JSON snapshot back to native column values."""
        return dict(data)

    def table_spec(self, name: str) -> TableSpec:
        for spec in self.tables():
            if spec.name == name:
                return spec
        raise KeyError(f"Unknown table '{name}'")


class SqlAlchemyRecordSource(RecordSource):
    """Record source backed by tables reflected from a SQLAlchemy engine.

    Tables are ordered with `MetaData.sorted_tables`, which follows foreign
    keys, so parent tables always come before the tables that reference them.
    Only tables with a single-column primary key take part in sync.

    Args:
        engine: Engine for the business database.
        table_names: Tables to synchronize. Defaults to every reflected table.
        exclude: Table names never synchronized (the engine's own tables).
        timestamp_column: Last-modified column used to find pending changes.
        organization_column: Column scoping rows to an organization.
        deleted_column: Soft-delete column; rows with a value are exported as deletes.
    """

    def __init__(
        self,
        engine: Engine,
        table_names: Optional[Iterable[str]] = None,
        exclude: Optional[Iterable[str]] = None,
        timestamp_column: str = "updated_at",
        organization_column: str = "organization_id",
        deleted_column: Optional[str] = "deleted_at",
    ):
        self.engine = engine
        self.table_names = list(table_names) if table_names else None
        self.exclude = set(exclude or ())
        self.timestamp_column = timestamp_column
        self.organization_column = organization_column
        self.deleted_column = deleted_column
        self._metadata: Optional[MetaData] = None

    def _reflect(self) -> MetaData:
        if self._metadata is None:
            metadata = MetaData()
            metadata.reflect(bind=self.engine, only=self.table_names)
            self._metadata = metadata
            logger.info(f"Reflected {len(metadata.tables)} tables for sync")
        return self._metadata

    def refresh(self) -> None:
        """Forget reflected schema so the next call re-reads it."""
        self._metadata = None

    def _sync_tables(self) -> List[Table]:
        tables = []
        for table in self._reflect().sorted_tables:
            if table.name in self.exclude:
                continue
            if len(table.primary_key.columns) != 1:
                logger.warning(f"Skipping table {table.name}: sync requires a single-column primary key")
                continue
            tables.append(table)
        return tables

    def _table(self, name: str) -> Table:
        table = self._reflect().tables.get(name)
        if table is None or name in self.exclude:
            raise KeyError(f"Unknown table '{name}'")
        return table

    @staticmethod
    def _pk(table: Table):
        return list(table.primary_key.columns)[0]

    def tables(self) -> List[TableSpec]:
        specs = []
        for table in self._sync_tables():
            specs.append(TableSpec(
                name=table.name,
                primary_key=self._pk(table).name,
                columns=[column.name for column in table.columns],
                timestamp_column=self.timestamp_column if self.timestamp_column in table.c else None,
            ))
        return specs

    def _scoped_select(self, table: Table, organization_id: Optional[int]):
        stmt = select(table)
        if organization_id is not None and self.organization_column in table.c:
            stmt = stmt.where(table.c[self.organization_column] == organization_id)
        return stmt.order_by(self._pk(table))

    def pending_changes(
        self,
        since: Optional[datetime],
        organization_id: Optional[int] = None,
    ) -> List[RecordChange]:
        changes = []
        with self.engine.connect() as conn:
            for table in self._sync_tables():
                pk = self._pk(table)
                stmt = self._scoped_select(table, organization_id)
                has_timestamp = self.timestamp_column in table.c
                if since is not None and has_timestamp:
                    stmt = stmt.where(table.c[self.timestamp_column] > since)

                for row in conn.execute(stmt).mappings():
                    data = dict(row)
                    deleted = self.deleted_column and data.get(self.deleted_column) is not None
                    changes.append(RecordChange(
                        table=table.name,
                        record_id=str(data[pk.name]),
                        operation="delete" if deleted else "upsert",
                        data=data,
                        updated_at=data.get(self.timestamp_column) if has_timestamp else None,
                    ))

        logger.debug(f"Found {len(changes)} pending record changes since {since}")
        return changes

    def fetch_records(self, table: str, organization_id: Optional[int] = None) -> List[Dict[str, Any]]:
        sa_table = self._table(table)
        with self.engine.connect() as conn:
            rows = conn.execute(self._scoped_select(sa_table, organization_id)).mappings()
            return [dict(row) for row in rows]

    def coerce_record(self, table: str, data: Dict[str, Any]) -> Dict[str, Any]:
        sa_table = self._table(table)
        coerced = {}
        for key, value in data.items():
            if key not in sa_table.c:
                continue
            column = sa_table.c[key]
            if isinstance(value, str):
                try:
                    python_type = column.type.python_type
                except NotImplementedError:
                    python_type = None
                if python_type is datetime:
                    value = datetime.fromisoformat(value)
                elif python_type is date:
                    value = date.fromisoformat(value)
                elif python_type is Decimal:
                    value = Decimal(value)
                elif python_type is int and value.lstrip("-").isdigit():
                    value = int(value)
            coerced[key] = value
        return coerced

    def write_record(self, table: str, data: Dict[str, Any]) -> None:
        sa_table = self._table(table)
        pk = self._pk(sa_table)
        values = self.coerce_record(table, data)
        if pk.name not in values:
            raise ValueError(f"Record for {table} is missing primary key '{pk.name}'")

        with self.engine.begin() as conn:
            result = conn.execute(
                update(sa_table).where(pk == values[pk.name]).values(**values)
            )
            if result.rowcount == 0:
                conn.execute(insert(sa_table).values(**values))

        logger.debug(f"Wrote {table} record {values[pk.name]}")
