from __future__ import annotations

from sqlalchemy import (
    Boolean,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    MetaData,
    Numeric,
    String,
    Table,
    UniqueConstraint,
    create_engine,
    event,
    func,
    insert,
    select,
)
from sqlalchemy.engine import Engine
from sqlalchemy.pool import StaticPool

from backend.config import get_settings
from backend.validation import is_valid_id

ADMIN_PROFILE_ID = 1
MEMBER_PROFILE_ID = 2
INCOME_TYPE_ID = 1
EXPENSE_TYPE_ID = 2

SEED_ROWS = {
    "profiles": [
        {"id": ADMIN_PROFILE_ID, "name": "admin"},
        {"id": MEMBER_PROFILE_ID, "name": "user"},
    ],
    "transaction_types": [
        {"id": INCOME_TYPE_ID, "name": "income"},
        {"id": EXPENSE_TYPE_ID, "name": "expense"},
    ],
    "saving_types": [
        {"id": 1, "name": "goal"},
        {"id": 2, "name": "emergency fund"},
        {"id": 3, "name": "other"},
    ],
}

metadata = MetaData()

profiles = Table(
    "profiles",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(100), unique=True, nullable=False),
)

users = Table(
    "users",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("first_name", String(100), nullable=False),
    Column("last_name", String(100), nullable=False),
    Column("email", String(255), unique=True, nullable=False),
    Column("password_hash", String(255), nullable=False),
    Column("profile_id", Integer, ForeignKey("profiles.id"), nullable=False),
    Column("base_budget", Numeric(12, 2)),
    Column("base_saving", Numeric(12, 2)),
    Column("is_active", Boolean, nullable=False, server_default="1"),
    Column("created_at", DateTime, nullable=False, server_default=func.now()),
)

categories = Table(
    "categories",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(255), unique=True, nullable=False),
)

transaction_types = Table(
    "transaction_types",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(50), unique=True, nullable=False),
)

transactions = Table(
    "transactions",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, ForeignKey("users.id"), nullable=False),
    Column("type_id", Integer, ForeignKey("transaction_types.id"), nullable=False),
    Column("category_id", Integer, ForeignKey("categories.id")),
    Column("amount", Numeric(12, 2), nullable=False),
    Column("description", String(500)),
    Column("created_at", DateTime, nullable=False, server_default=func.now()),
)

budgets = Table(
    "budgets",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, ForeignKey("users.id"), nullable=False),
    Column("category_id", Integer, ForeignKey("categories.id"), nullable=False),
    Column("budget_type", String(20), nullable=False),
    Column("year", Integer, nullable=False),
    Column("month", Integer),
    Column("amount", Numeric(12, 2), nullable=False),
    Column("notes", String(500)),
    Column("created_at", DateTime, nullable=False, server_default=func.now()),
    UniqueConstraint(
        "user_id",
        "category_id",
        "year",
        "month",
        "budget_type",
        name="uq_budgets_user_category_period",
    ),
)

saving_types = Table(
    "saving_types",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(100), unique=True, nullable=False),
)

savings = Table(
    "savings",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, ForeignKey("users.id"), nullable=False),
    Column("type_id", Integer, ForeignKey("saving_types.id"), nullable=False),
    Column("name", String(255), nullable=False),
    Column("amount", Numeric(12, 2), nullable=False),
    Column("target_amount", Numeric(12, 2)),
    Column("target_date", Date),
    Column("created_at", DateTime, nullable=False, server_default=func.now()),
)

_engine: Engine | None = None


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record) -> None:
    # SQLite leaves foreign keys unenforced unless every connection opts in.
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def build_engine(database_url: str) -> Engine:
    if database_url.startswith("sqlite"):
        connect_args = {"check_same_thread": False}
        if database_url in {"sqlite://", "sqlite:///:memory:"}:
            engine = create_engine(
                database_url, connect_args=connect_args, poolclass=StaticPool
            )
        else:
            engine = create_engine(database_url, connect_args=connect_args)
        event.listen(engine, "connect", _enable_sqlite_foreign_keys)
        return engine
    return create_engine(database_url, pool_size=10, max_overflow=0, pool_pre_ping=True)


def configure_engine(database_url: str) -> Engine:
    global _engine
    if _engine is not None:
        _engine.dispose()
    _engine = build_engine(database_url)
    init_db(_engine)
    return _engine


def get_engine() -> Engine:
    if _engine is None:
        return configure_engine(get_settings().database_url)
    return _engine


def init_db(engine: Engine) -> None:
    metadata.create_all(engine)
    with engine.begin() as conn:
        for table_name, rows in SEED_ROWS.items():
            table = metadata.tables[table_name]
            existing = set(conn.execute(select(table.c.id)).scalars())
            missing = [row for row in rows if row["id"] not in existing]
            if missing:
                conn.execute(insert(table), missing)


def row_exists(conn, table: Table, record_id) -> bool:
    if not is_valid_id(record_id):
        return False
    return (
        conn.execute(select(table.c.id).where(table.c.id == record_id)).first()
        is not None
    )
