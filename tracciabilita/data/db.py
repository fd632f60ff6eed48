import os
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from tracciabilita.data.models import Base

# Resolve DB path relative to the package directory
_PACKAGE_DIR = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
_DEFAULT_DB = os.path.join(_PACKAGE_DIR, "data", "tracciabilita.db")


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def get_engine(url: str | None = None):
    db_url = url or os.environ.get("DATABASE_URL", f"sqlite:///{_DEFAULT_DB}")
    # Resolve relative sqlite paths from the package directory
    if db_url.startswith("sqlite:///") and not db_url.startswith("sqlite:////"):
        rel_path = db_url.replace("sqlite:///", "")
        if rel_path != ":memory:" and not os.path.isabs(rel_path):
            abs_path = os.path.join(_PACKAGE_DIR, rel_path)
            os.makedirs(os.path.dirname(abs_path), exist_ok=True)
            db_url = f"sqlite:///{abs_path}"
    engine = create_engine(db_url, echo=False)
    if engine.dialect.name == "sqlite":
        event.listen(engine, "connect", _enable_sqlite_foreign_keys)
    return engine


def init_db(engine=None):
    if engine is None:
        engine = get_engine()
    Base.metadata.create_all(engine)
    return engine


def get_session(engine=None):
    if engine is None:
        engine = get_engine()
    Session = sessionmaker(bind=engine)
    return Session()
