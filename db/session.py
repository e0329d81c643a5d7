from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine


def enable_sqlite_transactional_ddl(engine: Engine) -> None:
    """
    Let SQLite DDL take part in the surrounding transaction.

    pysqlite only opens a transaction before DML, so a CREATE/ALTER issued
    after a metadata flush would otherwise escape a rollback. Taking over
    BEGIN ourselves keeps metadata and table changes in one unit.
    """

    @event.listens_for(engine, "connect")
    def _disable_pysqlite_begin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine, "begin")
    def _emit_begin(conn):
        conn.exec_driver_sql("BEGIN")


def create_db_engine(url: str, echo: bool = False, **kwargs) -> Engine:
    if url.startswith("sqlite"):
        connect_args = kwargs.pop("connect_args", {})
        connect_args.setdefault("check_same_thread", False)
        engine = create_engine(url, echo=echo, connect_args=connect_args, **kwargs)
        enable_sqlite_transactional_ddl(engine)
        return engine
    return create_engine(url, echo=echo, pool_pre_ping=True, **kwargs)
