import datetime
import uuid
from typing import Iterator

import dotenv
import psycopg
import pytest
from psycopg import Connection, sql

from sqlrelay.db_utils import ConnectionConfig
from sqlrelay.dispatcher import Dispatcher, new_dispatcher
from tests.test_environment import resolve_test_uri

CREATE_SCORES = """
create table scores (
    id bigserial primary key,
    game text not null,
    name text not null,
    score integer not null,
    date timestamp not null
)
"""


@pytest.fixture(autouse=True)
def load_dotenv():
    dotenv.load_dotenv()


@pytest.fixture()
def admin_connection() -> Iterator[Connection]:
    uri = resolve_test_uri(driver="postgresql")
    conn = psycopg.connect(uri, autocommit=True)
    yield conn
    conn.close()


@pytest.fixture()
def test_db(admin_connection: Connection) -> Iterator[str]:
    now_str = datetime.datetime.now().strftime("%Y_%m_%dT%H_%M_%S")
    db_name = f"sqlrelay_test_{now_str.lower()}_{uuid.uuid4().hex[:6]}"
    admin_connection.execute(sql.SQL("CREATE DATABASE {}").format(sql.Identifier(db_name)))
    yield db_name
    admin_connection.execute(sql.SQL("DROP DATABASE {}").format(sql.Identifier(db_name)))
    remaining = admin_connection.execute(
        "select 1 from pg_database where datname = %s", (db_name,)
    ).fetchall()
    assert len(remaining) == 0


@pytest.fixture()
def dispatcher(test_db: str) -> Iterator[Dispatcher]:
    config = ConnectionConfig(url=resolve_test_uri(database=test_db))
    dispatcher = new_dispatcher(config)
    with dispatcher.engine.begin() as conn:
        conn.exec_driver_sql(CREATE_SCORES)
    yield dispatcher
    dispatcher.close()
