# Engine and session factory for the metering database. Service functions
# take a Session argument; only the HTTP layer, the jobs and background
# tasks open sessions of their own.

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker

from metering.core.config import settings


def _engine_options(url: str) -> dict:
    if url.startswith("sqlite"):
        # Background quota checks run on a worker thread.
        return {"connect_args": {"check_same_thread": False}}
    return {"pool_pre_ping": True}


def _use_explicit_sqlite_transactions(engine: Engine) -> None:
    # pysqlite defers BEGIN until the first write, so a SAVEPOINT opened
    # first would become the outer transaction. Let SQLAlchemy emit BEGIN.
    @event.listens_for(engine, "connect")
    def _disable_pysqlite_begin(dbapi_connection, _record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _emit_begin(conn):
        conn.exec_driver_sql("BEGIN")


def create_db_engine(url: str, **kwargs) -> Engine:
    options = {**_engine_options(url), **kwargs}
    db_engine = create_engine(url, future=True, **options)
    if db_engine.dialect.name == "sqlite":
        _use_explicit_sqlite_transactions(db_engine)
    return db_engine


engine = create_db_engine(settings.DATABASE_URL, echo=settings.DB_ECHO)
SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)
Base = declarative_base()


def get_db():
    """Request-scoped session for FastAPI dependencies."""
    with SessionLocal() as db:
        yield db
