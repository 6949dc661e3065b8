"""Engine and session factory construction."""

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker

from productify.core.config import settings


def build_engine(url: str, **kwargs) -> Engine:
	"""Create an engine; SQLite connections start every transaction with BEGIN IMMEDIATE.

	pysqlite defers locking until the first write, so two connections that both read
	the balance and then try to write can deadlock. Taking the write lock at BEGIN
	makes concurrent writers queue on the busy timeout instead.
	"""
	if not url.startswith("sqlite"):
		return create_engine(url, pool_pre_ping=True, **kwargs)

	connect_args = kwargs.pop("connect_args", {})
	connect_args.setdefault("check_same_thread", False)
	connect_args.setdefault("timeout", 30)
	engine = create_engine(url, connect_args=connect_args, **kwargs)

	@event.listens_for(engine, "connect")
	def _disable_pysqlite_begin(dbapi_connection, connection_record):
		dbapi_connection.isolation_level = None

	@event.listens_for(engine, "begin")
	def _begin_immediate(conn):
		conn.exec_driver_sql("BEGIN IMMEDIATE")

	return engine


def build_session_factory(engine: Engine) -> sessionmaker:
	return sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)


engine = build_engine(settings.DATABASE_URL)
SessionLocal = build_session_factory(engine)
