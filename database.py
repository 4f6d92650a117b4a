from pathlib import Path
from typing import Optional

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, sessionmaker

from config import get_settings

MIGRATIONS_DIR = Path(__file__).resolve().parent / "alembic"
SQLITE_PRAGMAS = ("journal_mode=WAL", "foreign_keys=ON")


def _is_sqlite(database_url: str) -> bool:
    return database_url.startswith("sqlite")


def _apply_sqlite_pragmas(dbapi_conn, _record) -> None:
    cursor = dbapi_conn.cursor()
    for pragma in SQLITE_PRAGMAS:
        cursor.execute(f"PRAGMA {pragma};")
    cursor.close()


def create_db_engine(database_url: str) -> Engine:
    connect_args: dict[str, object] = {}
    if _is_sqlite(database_url):
        # Request handlers run in FastAPI's threadpool.
        connect_args["check_same_thread"] = False
    eng = create_engine(database_url, connect_args=connect_args)
    if _is_sqlite(database_url):
        event.listen(eng, "connect", _apply_sqlite_pragmas)
    return eng


engine = create_db_engine(get_settings().database_url)
SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


class Base(DeclarativeBase):
    pass


def init_db(database_url: Optional[str] = None) -> None:
    """Upgrade the database to the latest Alembic revision."""
    from alembic import command
    from alembic.config import Config

    # Built in code so alembic.ini logging does not replace the app's handlers.
    cfg = Config()
    cfg.set_main_option("script_location", str(MIGRATIONS_DIR))
    url = database_url or get_settings().database_url
    # ConfigParser interpolation treats "%" specially.
    cfg.set_main_option("sqlalchemy.url", url.replace("%", "%%"))
    command.upgrade(cfg, "head")
