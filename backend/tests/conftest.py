from collections.abc import Generator
from pathlib import Path

import pytest
from sqlalchemy.engine import Engine
from sqlmodel import Session

from chart_patterns.core.db import init_db, make_engine
from chart_patterns.core.pattern_store import PatternStore
from tests.utils.chart import Chart, make_chart


@pytest.fixture
def db_path(tmp_path: Path) -> Path:
    return tmp_path / "data" / "patterns.db"


@pytest.fixture
def engine(db_path: Path) -> Generator[Engine, None, None]:
    eng = make_engine(f"sqlite:///{db_path.as_posix()}")
    init_db(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def db(engine: Engine) -> Generator[Session, None, None]:
    with Session(engine) as session:
        yield session


@pytest.fixture
def store(engine: Engine) -> PatternStore:
    return PatternStore(engine)


@pytest.fixture
def chart() -> Chart:
    return make_chart()
