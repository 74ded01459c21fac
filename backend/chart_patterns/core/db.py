import logging
from pathlib import Path

from sqlalchemy.engine import Engine, make_url
from sqlmodel import SQLModel, create_engine

from chart_patterns.core.config import settings

# Table models must be imported before create_all sees the metadata
from chart_patterns.models import Pattern  # noqa: F401

_log = logging.getLogger(__name__)


def make_engine(url: str) -> Engine:
    """SQLAlchemy engine for *url*; SQLite connections may cross threads."""
    connect_args: dict[str, object] = {}
    if make_url(url).get_backend_name() == "sqlite":
        connect_args["check_same_thread"] = False
    return create_engine(url, connect_args=connect_args, pool_pre_ping=True)


engine = make_engine(settings.SQLALCHEMY_DATABASE_URI)


def init_db(db_engine: Engine | None = None) -> None:
    """Create missing tables. For file-backed SQLite also create the parent directory."""
    target = db_engine or engine
    url = target.url
    if url.get_backend_name() == "sqlite" and url.database and url.database != ":memory:":
        Path(url.database).parent.mkdir(parents=True, exist_ok=True)
    SQLModel.metadata.create_all(target)
    _log.debug("Database initialised at %s", url.render_as_string(hide_password=True))
