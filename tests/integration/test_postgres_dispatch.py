from dataclasses import dataclass
from datetime import datetime

import pytest

from sqlrelay.commands import query, update
from sqlrelay.dispatcher import Dispatcher
from sqlrelay.errors import OperationFailed
from sqlrelay.proxy import create_proxy


@dataclass
class Score:
    id: int = 0
    name: str = ""
    score: int = 0
    date: datetime | None = None


class Leaderboard:
    @query(
        "insert into scores (game, name, score, date) "
        "values (@game, @name, @score, @date) returning id"
    )
    def add_score(self, game: str, name: str, score: int, date: datetime) -> int: ...

    @query(
        "select id, name, score, date from scores "
        "where game = @game order by score desc limit @max"
    )
    def get_scores(self, game: str, max: int) -> list[Score]: ...

    @query("select array_agg(score order by score desc) from scores where game = @game")
    def all_scores(self, game: str) -> list[int]: ...

    @query("select array_agg(score order by id) from scores where game = @game")
    def all_scores_as_float(self, game: str) -> tuple[float, ...]: ...

    @query("select count(*) from scores where game = @game and date >= @since::date")
    def count_since(self, game: str, since: str) -> int: ...

    @update("delete from scores where game = @g and id = @id", bind={"game": "@g"})
    def delete_score(self, game: str, id: int) -> None: ...


@pytest.fixture()
def board(dispatcher: Dispatcher) -> Leaderboard:
    board = create_proxy(Leaderboard, dispatcher)
    board.add_score("snake", "Ann", 1200, datetime(2024, 1, 1, 10, 0))
    board.add_score("snake", "Bo", 900, datetime(2024, 1, 2, 11, 30))
    board.add_score("snake", "Cy", 1500, datetime(2024, 1, 3, 9, 15))
    return board


def test_insert_returning_id(board: Leaderboard):
    assert board.add_score("tetris", "Di", 50, datetime(2024, 2, 1)) == 4


def test_records_in_command_order(board: Leaderboard):
    top = board.get_scores("snake", 2)
    assert [(s.id, s.name, s.score) for s in top] == [(3, "Cy", 1500), (1, "Ann", 1200)]
    assert top[0].date == datetime(2024, 1, 3, 9, 15)


def test_aggregate_array_column(board: Leaderboard):
    assert board.all_scores("snake") == [1500, 1200, 900]
    assert board.all_scores_as_float("snake") == (1200.0, 900.0, 1500.0)


def test_cast_after_placeholder(board: Leaderboard):
    assert board.count_since("snake", "2024-01-02") == 2


def test_delete_with_override(board: Leaderboard):
    board.delete_score("snake", 2)
    with pytest.raises(OperationFailed):
        board.delete_score("snake", 2)
    assert [s.name for s in board.get_scores("snake", 10)] == ["Cy", "Ann"]
