from __future__ import annotations
from typing import Iterator

from fastapi import Request
from sqlalchemy import create_engine, event, inspect
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker, declarative_base


DEFAULT_DATABASE_URL = "sqlite:///./app.db"

Base = declarative_base()


def make_engine(database_url: str | None = None) -> Engine:
	url = database_url or DEFAULT_DATABASE_URL
	connect_args = {"check_same_thread": False, "timeout": 15} if url.startswith("sqlite") else {}
	engine = create_engine(url, connect_args=connect_args, future=True, pool_pre_ping=not url.startswith("sqlite"))
	if url.startswith("sqlite"):
		event.listen(engine, "connect", _enable_sqlite_foreign_keys)
	return engine


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record) -> None:
	# SQLite leaves foreign keys unenforced unless asked per connection
	cursor = dbapi_connection.cursor()
	cursor.execute("PRAGMA foreign_keys=ON")
	cursor.close()


def make_session_factory(engine: Engine) -> sessionmaker:
	return sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine, future=True)


def get_db(request: Request) -> Iterator[Session]:
	db = request.app.state.session_factory()
	try:
		yield db
	finally:
		db.close()


# Best-effort lightweight migrations for development (SQLite-friendly)
def ensure_schema(engine: Engine) -> None:
	inspector = inspect(engine)
	tables = set(inspector.get_table_names())
	if "schools" in tables and "settings" not in {c["name"] for c in inspector.get_columns("schools")}:
		with engine.begin() as conn:
			conn.exec_driver_sql("ALTER TABLE schools ADD COLUMN settings TEXT")
	if "submissions" not in tables:
		return
	cols = {c["name"] for c in inspector.get_columns("submissions")}
	indexes = {ix["name"] for ix in inspector.get_indexes("submissions")}
	with engine.begin() as conn:
		if "dedup_key" not in cols:
			conn.exec_driver_sql("ALTER TABLE submissions ADD COLUMN dedup_key VARCHAR(80)")
		if "status" not in cols:
			conn.exec_driver_sql("ALTER TABLE submissions ADD COLUMN status VARCHAR(16) DEFAULT 'finalized' NOT NULL")
		if "finalized_at" not in cols:
			ts_type = "TIMESTAMP" if engine.dialect.name == "postgresql" else "DATETIME"
			conn.exec_driver_sql(f"ALTER TABLE submissions ADD COLUMN finalized_at {ts_type}")
		if "uq_submissions_pending_key" not in indexes:
			conn.exec_driver_sql(
				"CREATE UNIQUE INDEX IF NOT EXISTS uq_submissions_pending_key "
				"ON submissions (dedup_key) WHERE status = 'pending'"
			)
