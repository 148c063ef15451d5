from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker

from stockledger.core.config import settings


def configure_sqlite_engine(target: Engine) -> Engine:
    """Give pysqlite real transactions.

    The driver's own BEGIN handling is disabled and every transaction opens
    with BEGIN IMMEDIATE, so SAVEPOINTs behave and concurrent writers queue on
    the busy timeout instead of failing on lock upgrade.
    """

    @event.listens_for(target, "connect")
    def _disable_pysqlite_begin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(target, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    return target


def build_engine(database_url: str, **overrides) -> Engine:
    engine_kwargs: dict[str, object] = {
        # Detect and recover from stale pooled connections.
        "pool_pre_ping": True,
    }
    is_sqlite = database_url.lower().startswith("sqlite")

    if is_sqlite:
        engine_kwargs["connect_args"] = {
            "check_same_thread": False,
            "timeout": settings.sqlite_busy_timeout_seconds,
        }
    else:
        # Tune SQLAlchemy pool for networked databases (e.g., Postgres).
        engine_kwargs.update(
            {
                "pool_size": settings.db_pool_size,
                "max_overflow": settings.db_max_overflow,
                "pool_timeout": settings.db_pool_timeout_seconds,
                "pool_recycle": settings.db_pool_recycle_seconds,
            }
        )
    engine_kwargs.update(overrides)

    built = create_engine(database_url, **engine_kwargs)
    if is_sqlite:
        configure_sqlite_engine(built)
    return built


engine = build_engine(settings.database_url)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
