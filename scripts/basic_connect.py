import logging
from dataclasses import dataclass
from typing import Protocol

from sqlrelay.commands import query, update
from sqlrelay.db_utils import ConnectionConfig
from sqlrelay.dispatcher import new_dispatcher
from sqlrelay.proxy import create_proxy

logging.basicConfig(level=logging.INFO)


@dataclass
class User:
    id: int = 0
    name: str = ""


class UserStore(Protocol):
    @update("CREATE TABLE IF NOT EXISTS user (id int, name varchar(20))")
    def create_table(self) -> None: ...

    @update("INSERT INTO user (id, name) values (@id, @name)")
    def insert_user(self, id: int, name: str) -> None: ...

    @query("select * from user order by id")
    def get_users(self) -> list[User]: ...

    @query("select name from user where id = @id")
    def get_name(self, id: int) -> str | None: ...


if __name__ == "__main__":
    dispatcher = new_dispatcher(ConnectionConfig(url="sqlite:///playground.db"))
    users = create_proxy(UserStore, dispatcher)

    users.create_table()
    users.insert_user(2, "Joel")

    print(users.get_users())
    print(users.get_name(2))

    dispatcher.close()
