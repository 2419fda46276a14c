"""Transactional apply of incoming database payloads."""

import csv
import io
import logging
from typing import Any, Dict, List, Optional

from sqlalchemy.engine import Engine

from fieldsync.services.errors import ApplyError, ConfigurationError
from fieldsync.services.exporter import CSV_NULL, delete_statement, upsert_statement
from fieldsync.services.record_source import TableSpec

logger = logging.getLogger(__name__)


def csv_rows(document: str, columns: List[str]) -> List[Dict[str, Optional[str]]]:
    """Parse a CSV document with a header row; `\\N` cells become NULL."""
    reader = csv.DictReader(io.StringIO(document))
    if reader.fieldnames and columns and list(reader.fieldnames) != list(columns):
        raise ConfigurationError(f"CSV header {reader.fieldnames} does not match columns {columns}")
    return [{key: (None if value == CSV_NULL else value) for key, value in row.items()} for row in reader]


def statements_from_csv(tables: List[Dict[str, Any]], deletes: List[Dict[str, Any]]) -> List[str]:
    """Turn CSV tables and delete lists into ordered statements."""
    statements = []
    for table in tables:
        spec = TableSpec(name=table["table"], primary_key=table["primaryKey"], columns=list(table["columns"]))
        for row in csv_rows(table["csv"], spec.columns):
            statements.append(upsert_statement(spec, row))
    for group in deletes:
        spec = TableSpec(name=group["table"], primary_key=group["primaryKey"], columns=[group["primaryKey"]])
        statements.extend(delete_statement(spec, key) for key in group["ids"])
    return statements


class DatabaseApplier:
    """Applies a payload's statements in a single transaction.

    Either every statement commits or none does; the index of the
    statement that failed is reported back to the sender.
    """

    def __init__(self, engine: Engine):
        self.engine = engine

    def statements_for(self, body: Dict[str, Any]) -> List[str]:
        export_format = body.get("format", "sql")
        if export_format == "sql":
            return list(body.get("statements") or [])
        if export_format == "csv":
            return statements_from_csv(body.get("tables") or [], body.get("deletes") or [])
        raise ConfigurationError(f"Unsupported payload format '{export_format}'")

    def apply(self, body: Dict[str, Any]) -> Dict[str, Any]:
        """Apply a database payload.

        Returns:
            `{recordsApplied, results}` where results holds each statement's rowcount.

        Raises:
            ConfigurationError: If the payload cannot be read.
            ApplyError: If a statement failed; nothing was committed.
        """
        statements = self.statements_for(body)
        results = []
        index = 0
        try:
            with self.engine.begin() as conn:
                for index, statement in enumerate(statements):
                    result = conn.exec_driver_sql(statement)
                    results.append({"index": index, "rowCount": result.rowcount})
        except Exception as e:
            logger.error(f"Rolled back payload for organization {body.get('organizationId')} at statement {index}: {e}")
            raise ApplyError(str(e), failed_index=index) from e

        logger.info(f"Applied {len(statements)} statements for organization {body.get('organizationId')}")
        return {"recordsApplied": len(statements), "results": results}
