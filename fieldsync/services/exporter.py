"""Database exporter: pending record changes as SQL statements or CSV tables."""

import csv
import io
import json
import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy.engine.default import DefaultDialect

from fieldsync.services.errors import ConfigurationError
from fieldsync.services.record_source import RecordChange, TableSpec

logger = logging.getLogger(__name__)

EXPORT_FORMATS = ("sql", "csv")

# CSV cell for NULL, distinct from an empty string (as in COPY)
CSV_NULL = "\\N"

_preparer = DefaultDialect().identifier_preparer


def quote_identifier(name: str) -> str:
    """Quote a table or column name only when it needs quoting."""
    return _preparer.quote(name)


def sql_literal(value: Any) -> str:
    """Render a Python value as a SQL literal."""
    if value is None:
        return "NULL"
    if isinstance(value, bool):
        return "TRUE" if value else "FALSE"
    if isinstance(value, (int, float, Decimal)):
        return str(value)
    if isinstance(value, datetime):
        value = value.isoformat(sep=" ")
    elif isinstance(value, date):
        value = value.isoformat()
    elif isinstance(value, (dict, list)):
        value = json.dumps(value, sort_keys=True)
    elif isinstance(value, bytes):
        return f"X'{value.hex()}'"
    text = str(value).replace("'", "''")
    return f"'{text}'"


def csv_value(value: Any) -> str:
    """Render a Python value as a CSV cell; NULL becomes `\\N`."""
    if value is None:
        return CSV_NULL
    if isinstance(value, bool):
        return "1" if value else "0"
    if isinstance(value, datetime):
        return value.isoformat(sep=" ")
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, (dict, list)):
        return json.dumps(value, sort_keys=True)
    return str(value)


def upsert_statement(spec: TableSpec, data: Dict[str, Any]) -> str:
    """Build an `INSERT ... ON CONFLICT DO UPDATE` statement for one record."""
    columns = [c for c in spec.columns if c in data] or sorted(data)
    if spec.primary_key not in columns:
        raise ConfigurationError(f"Record for {spec.name} is missing primary key '{spec.primary_key}'")

    table = quote_identifier(spec.name)
    pk = quote_identifier(spec.primary_key)
    column_sql = ", ".join(quote_identifier(c) for c in columns)
    values_sql = ", ".join(sql_literal(data[c]) for c in columns)

    assignments = [
        f"{quote_identifier(c)} = excluded.{quote_identifier(c)}"
        for c in columns
        if c != spec.primary_key
    ]
    if assignments:
        on_conflict = f"ON CONFLICT ({pk}) DO UPDATE SET {', '.join(assignments)}"
    else:
        on_conflict = f"ON CONFLICT ({pk}) DO NOTHING"

    return f"INSERT INTO {table} ({column_sql}) VALUES ({values_sql}) {on_conflict}"


def delete_statement(spec: TableSpec, key: Any) -> str:
    return f"DELETE FROM {quote_identifier(spec.name)} WHERE {quote_identifier(spec.primary_key)} = {sql_literal(key)}"


@dataclass
class DatabasePayload:
    """Outbound database payload for one run."""

    format: str
    changes: List[RecordChange] = field(default_factory=list)
    statements: List[str] = field(default_factory=list)
    tables: List[Dict[str, Any]] = field(default_factory=list)
    deletes: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def record_count(self) -> int:
        return len(self.changes)

    @property
    def is_empty(self) -> bool:
        return not self.changes

    def to_json(self, organization_id: int) -> Dict[str, Any]:
        """Body for the receiver's database endpoints."""
        body = {"organizationId": organization_id, "format": self.format}
        if self.format == "sql":
            body["statements"] = self.statements
        else:
            body["tables"] = self.tables
            body["deletes"] = self.deletes
        return body


class DatabaseExporter:
    """Serializes pending record changes in dependency order.

    Upserts are emitted parent tables first and deletes child tables first,
    so applying the output sequentially never violates a foreign key.
    """

    def export(self, export_format: str, tables: List[TableSpec], changes: List[RecordChange]) -> DatabasePayload:
        """Build a payload from pending changes.

        Args:
            export_format: "sql" or "csv".
            tables: Table specs in dependency order, parents first.
            changes: Pending record changes.

        Returns:
            DatabasePayload with statements (sql) or per-table CSV documents (csv).

        Raises:
            ConfigurationError: If the format is unknown or a change names an unknown table.
        """
        if export_format not in EXPORT_FORMATS:
            raise ConfigurationError(f"Unsupported export format '{export_format}'")

        specs = {spec.name: spec for spec in tables}
        upserts: Dict[str, List[RecordChange]] = {spec.name: [] for spec in tables}
        deletes: Dict[str, List[RecordChange]] = {spec.name: [] for spec in tables}
        for change in changes:
            if change.table not in specs:
                raise ConfigurationError(f"Change references unknown table '{change.table}'")
            target = deletes if change.operation == "delete" else upserts
            target[change.table].append(change)

        ordered_upserts = [(specs[name], upserts[name]) for name in specs if upserts[name]]
        ordered_deletes = [(specs[name], deletes[name]) for name in reversed(list(specs)) if deletes[name]]
        ordered_changes = [c for _, group in ordered_upserts for c in group]
        ordered_changes += [c for _, group in ordered_deletes for c in group]

        payload = DatabasePayload(format=export_format, changes=ordered_changes)

        if export_format == "sql":
            for spec, group in ordered_upserts:
                payload.statements.extend(upsert_statement(spec, c.data) for c in group)
            for spec, group in ordered_deletes:
                payload.statements.extend(delete_statement(spec, c.data.get(spec.primary_key, c.record_id)) for c in group)
        else:
            for spec, group in ordered_upserts:
                payload.tables.append({
                    "table": spec.name,
                    "primaryKey": spec.primary_key,
                    "columns": list(spec.columns),
                    "rowCount": len(group),
                    "csv": self.to_csv(spec.columns, [c.data for c in group]),
                })
            for spec, group in ordered_deletes:
                payload.deletes.append({
                    "table": spec.name,
                    "primaryKey": spec.primary_key,
                    "ids": [csv_value(c.data.get(spec.primary_key, c.record_id)) for c in group],
                })

        logger.info(
            f"Exported {payload.record_count} record changes as {export_format} "
            f"({len(ordered_upserts)} tables upserted, {len(ordered_deletes)} with deletes)"
        )
        return payload

    @staticmethod
    def to_csv(columns: List[str], rows: List[Dict[str, Any]], header: Optional[bool] = True) -> str:
        """Write rows as CSV with the given column order."""
        buffer = io.StringIO()
        writer = csv.writer(buffer, lineterminator="\n")
        if header:
            writer.writerow(columns)
        for row in rows:
            writer.writerow([csv_value(row.get(column)) for column in columns])
        return buffer.getvalue()
