"""Business schema and row helpers shared by the tests."""

from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, Integer, MetaData, String, Table

PEER_API_KEY = "peer-api-key"
PEER_USERNAME = "sync-user"
PEER_PASSWORD = "sync-password"
REMOTE_URL = "http://remote.test"

LAST_SYNC = datetime(2024, 1, 1, 0, 0, 0)
EDITED = datetime(2024, 6, 1, 12, 0, 0)


def business_metadata(unique_email: bool = False) -> MetaData:
    """Customers and jobs tables as a field management server holds them."""
    metadata = MetaData()
    Table(
        "customers", metadata,
        Column("id", Integer, primary_key=True),
        Column("organization_id", Integer, nullable=False),
        Column("name", String, nullable=False),
        Column("email", String, unique=unique_email),
        Column("updated_at", DateTime),
        Column("deleted_at", DateTime),
    )
    Table(
        "jobs", metadata,
        Column("id", Integer, primary_key=True),
        Column("organization_id", Integer, nullable=False),
        Column("customer_id", Integer, ForeignKey("customers.id"), nullable=False),
        Column("title", String, nullable=False),
        Column("status", String, nullable=False),
        Column("updated_at", DateTime),
        Column("deleted_at", DateTime),
    )
    return metadata


def insert_rows(engine, table_name, *rows):
    metadata = MetaData()
    metadata.reflect(bind=engine, only=[table_name])
    with engine.begin() as conn:
        conn.execute(metadata.tables[table_name].insert(), list(rows))


def fetch_rows(engine, table_name):
    metadata = MetaData()
    metadata.reflect(bind=engine, only=[table_name])
    table = metadata.tables[table_name]
    with engine.connect() as conn:
        return [dict(row) for row in conn.execute(table.select().order_by(table.c.id)).mappings()]
