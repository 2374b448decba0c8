from pathlib import Path

from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker

from .config import load_settings
from .models import Base


def make_engine(database_url: str, **kwargs):
    connect_args = {}
    if database_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
        # make sure the sqlite file's directory exists before connecting
        if ":memory:" not in database_url and database_url.startswith("sqlite:///"):
            Path(database_url.split("sqlite:///")[-1]).expanduser().resolve().parent.mkdir(
                parents=True, exist_ok=True
            )
    engine = create_engine(database_url, connect_args=connect_args, **kwargs)
    if database_url.startswith("sqlite"):
        # order_items cascade relies on sqlite enforcing foreign keys
        @event.listens_for(engine, "connect")
        def _enable_foreign_keys(dbapi_conn, _record):
            cursor = dbapi_conn.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()
    return engine


def make_session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


engine = make_engine(load_settings().database_url)
SessionLocal = make_session_factory(engine)


def init_db(bind=None):
    Base.metadata.create_all(bind=bind or engine)
