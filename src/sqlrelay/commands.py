from dataclasses import dataclass, field
from enum import StrEnum, auto
from functools import cached_property
from types import MappingProxyType
from typing import Any, Callable, Mapping, ParamSpec, TypeVar
from weakref import WeakKeyDictionary

from sqlalchemy import TextClause, text

from sqlrelay.errors import ContractError
from sqlrelay.placeholders import placeholders, render

Param = ParamSpec("Param")
RetType = TypeVar("RetType")

Row = Mapping[str, Any]


class CommandKind(StrEnum):
    QUERY = auto()
    UPDATE = auto()


@dataclass(frozen=True)
class Bind:
    """Parameter annotation naming the placeholder an argument supplies.

    Used as ``game: Annotated[str, Bind("@g")]``.
    """

    placeholder: str


@dataclass(frozen=True, eq=False)
class CommandSpec:
    kind: CommandKind
    template: str
    bind: Mapping[str, str] = field(default_factory=dict)
    row_to_output: Callable[[Row], Any] | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "bind", MappingProxyType(dict(self.bind)))

    @cached_property
    def placeholders(self) -> tuple[str, ...]:
        """Placeholders required by the template, parsed once."""
        return tuple(placeholders(self.template))

    @cached_property
    def statement(self) -> TextClause:
        return text(render(self.template))

    def __call__(self, func: Callable[Param, RetType]) -> Callable[Param, RetType]:
        register_command(func, self)
        return func


_commands: "WeakKeyDictionary[Callable[..., Any], CommandSpec]" = WeakKeyDictionary()


def register_command(func: Callable[..., Any], spec: CommandSpec) -> None:
    """Attach a command to a contract method without decorator syntax."""
    if func in _commands:
        raise ContractError(
            f"'{func.__qualname__}' already carries a {_commands[func].kind} command"
        )
    _commands[func] = spec


def command_for(func: Callable[..., Any]) -> CommandSpec | None:
    return _commands.get(func)


def query(
    template: str,
    *,
    bind: Mapping[str, str] | None = None,
    row_to_output: Callable[[Row], Any] | None = None,
) -> CommandSpec:
    return CommandSpec(
        CommandKind.QUERY, template, bind=bind or {}, row_to_output=row_to_output
    )


def update(template: str, *, bind: Mapping[str, str] | None = None) -> CommandSpec:
    return CommandSpec(CommandKind.UPDATE, template, bind=bind or {})
