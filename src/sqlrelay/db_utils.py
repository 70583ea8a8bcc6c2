import functools
import os
from typing import Callable, Mapping, ParamSpec, TypeVar

from pydantic import BaseModel, ConfigDict, model_validator
from sqlalchemy import Engine, create_engine
from sqlalchemy.engine import URL
from sqlalchemy.exc import DBAPIError, OperationalError, ProgrammingError, SQLAlchemyError

from sqlrelay.errors import ConnectivityError

Param = ParamSpec("Param")
RetType = TypeVar("RetType")

ENV_PREFIX = "SQLRELAY_DB_"


class BaseConfig(BaseModel):
    model_config = ConfigDict(frozen=True)


class ConnectionConfig(BaseConfig):
    url: str | None = None
    username: str | None = None
    password: str | None = None
    driver: str | None = None
    host: str | None = None
    port: str | int | None = None
    database: str | None = None
    echo: bool = False

    @model_validator(mode="after")
    def _check_target(self) -> "ConnectionConfig":
        if self.url is None and self.username is None:
            raise ValueError("either url or username must be given")
        return self

    def uri(self) -> str:
        if self.url is not None:
            return self.url
        assert self.username is not None
        return create_uri(
            username=self.username,
            password=self.password or "",
            driver=self.driver,
            host=self.host,
            port=self.port,
            database=self.database,
        )

    @classmethod
    def from_env(
        cls, environ: Mapping[str, str] | None = None, prefix: str = ENV_PREFIX
    ) -> "ConnectionConfig":
        if environ is None:
            environ = os.environ
        keys = ["url", "username", "password", "driver", "host", "port", "database", "echo"]
        values = {
            key: environ[prefix + key.upper()]
            for key in keys
            if prefix + key.upper() in environ
        }
        return cls(**values)


def create_uri(
    username: str,
    password: str,
    driver: str | None = None,
    host: str | None = None,
    port: str | int | None = None,
    database: str | None = None,
) -> str:
    if driver is None:
        driver = "postgresql+psycopg"
    if host is None:
        host = "localhost"
    if port is None:
        port = 5432
    if database is None:
        database = "postgres"
    url = URL.create(
        driver,
        username=username,
        password=password,
        host=host,
        port=int(port),
        database=database,
    )
    return url.render_as_string(hide_password=False)


def make_engine(config: ConnectionConfig | str) -> Engine:
    if isinstance(config, str):
        config = ConnectionConfig(url=config)
    return create_engine(config.uri(), echo=config.echo)


def store_call() -> Callable[[Callable[Param, RetType]], Callable[Param, RetType]]:
    """Translate SQLAlchemy failures raised by the wrapped call into ConnectivityError."""

    def decorator(func: Callable[Param, RetType]) -> Callable[Param, RetType]:
        @functools.wraps(func)
        def dec_store_call(*args: Param.args, **kwargs: Param.kwargs) -> RetType:
            try:
                return func(*args, **kwargs)
            except OperationalError as e:
                raise ConnectivityError(
                    f"Could not complete the command at the backing store: {e.orig}"
                ) from e
            except ProgrammingError as e:
                if len(e.args) > 0 and "InsufficientPrivilege" in e.args[0]:
                    raise ConnectivityError("insufficient privileges") from e
                raise ConnectivityError(f"The backing store rejected the command: {e.orig}") from e
            except DBAPIError as e:
                raise ConnectivityError(f"The backing store rejected the command: {e.orig}") from e
            except SQLAlchemyError as e:
                raise ConnectivityError(str(e)) from e

        return dec_store_call

    return decorator
