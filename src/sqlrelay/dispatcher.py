import logging
from typing import Any, Sequence

from sqlalchemy import Engine

from sqlrelay.commands import CommandKind
from sqlrelay.contract import Operation
from sqlrelay.db_utils import ConnectionConfig, make_engine, store_call
from sqlrelay.errors import OperationFailed
from sqlrelay.marshal import marshal

logger = logging.getLogger(__name__)


class Dispatcher:
    """Runs one contract operation per call against a SQLAlchemy engine.

    Every call opens its own connection scope with ``engine.begin()``, which
    commits on success, rolls back on error and always returns the
    connection to the pool. The dispatcher keeps no other state, so one
    instance can serve any number of threads.
    """

    def __init__(self, engine: Engine) -> None:
        self._engine = engine

    @property
    def engine(self) -> Engine:
        return self._engine

    @store_call()
    def execute(self, operation: Operation, arguments: Sequence[Any]) -> Any:
        command = operation.command
        parameters = operation.parameters(arguments)
        statement = command.statement
        logger.debug("%s: executing %s", operation.qualname, command.template)
        with self._engine.begin() as conn:
            result = conn.execute(statement, parameters)
            if command.kind is CommandKind.UPDATE:
                affected = result.rowcount
                if affected == 0:
                    raise OperationFailed(command.template)
                return affected if operation.result_type is not None else None
            if operation.result_type is None:
                return None
            return marshal(result, operation.result_type, command.row_to_output)

    def close(self) -> None:
        """Release pooled connections held by the engine."""
        self._engine.dispose()


def new_dispatcher(config: ConnectionConfig | str) -> Dispatcher:
    return Dispatcher(make_engine(config))
