from typing import Iterator

import pytest
from sqlalchemy import Connection, create_engine, text

from sqlrelay.dispatcher import Dispatcher, new_dispatcher
from sqlrelay.proxy import create_proxy
from tests.score_contracts import CREATE_SCORES_SQLITE, ScoreService


@pytest.fixture()
def database_url(tmp_path) -> str:
    return f"sqlite:///{tmp_path / 'scores.db'}"


@pytest.fixture()
def dispatcher(database_url: str) -> Iterator[Dispatcher]:
    dispatcher = new_dispatcher(database_url)
    with dispatcher.engine.begin() as conn:
        conn.execute(text(CREATE_SCORES_SQLITE))
    yield dispatcher
    dispatcher.close()


@pytest.fixture()
def scores(dispatcher: Dispatcher) -> ScoreService:
    return create_proxy(ScoreService, dispatcher)


@pytest.fixture()
def sqlite_connection() -> Iterator[Connection]:
    engine = create_engine("sqlite://")
    with engine.connect() as conn:
        yield conn
    engine.dispose()
