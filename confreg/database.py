import os

from sqlalchemy import create_engine, event, text
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from confreg.errors import InsertFailed

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./conference.db")

connect_args = {"check_same_thread": False} if DATABASE_URL.startswith("sqlite") else {}
engine = create_engine(DATABASE_URL, connect_args=connect_args, pool_pre_ping=True)

if DATABASE_URL.startswith("sqlite"):
    @event.listens_for(engine, "connect")
    def _set_sqlite_pragma(dbapi_connection, _connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine, expire_on_commit=False)
Base = declarative_base()

LAST_INSERT_ID_SQL = {
    "sqlite": "SELECT last_insert_rowid()",
    "mysql": "SELECT LAST_INSERT_ID()",
    "mariadb": "SELECT LAST_INSERT_ID()",
    "postgresql": "SELECT lastval()",
}


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def insert_returning_id(db: Session, row) -> int:
    """Insert ``row`` inside the current transaction and return its primary key.

    The ORM normally populates ``row.id`` on flush. When a driver does not
    report it, the dialect's last-insert-id function is queried on the same
    connection so a concurrent insert elsewhere cannot leak in.
    """
    db.add(row)
    db.flush()
    if row.id:
        return row.id

    sql = LAST_INSERT_ID_SQL.get(db.get_bind().dialect.name)
    new_id = db.execute(text(sql)).scalar() if sql else None
    if not new_id:
        raise InsertFailed()
    row.id = new_id
    return new_id


def is_duplicate_key(exc: BaseException) -> bool:
    if not isinstance(exc, IntegrityError):
        return False
    orig = exc.orig
    args = getattr(orig, "args", ()) or ()
    if args and args[0] == 1062:
        return True
    if getattr(orig, "pgcode", None) == "23505":
        return True
    return "UNIQUE constraint failed" in str(orig) or "Duplicate entry" in str(orig)
