import abc
import inspect
from dataclasses import dataclass
from functools import cached_property, lru_cache
from types import FunctionType, MappingProxyType
from typing import (
    Annotated,
    Any,
    Callable,
    Generic,
    Mapping,
    Protocol,
    Sequence,
    get_args,
    get_origin,
    get_type_hints,
)

from sqlrelay.binding import bind, bound_values, placeholder_name, provided_placeholders
from sqlrelay.commands import Bind, CommandKind, CommandSpec, command_for
from sqlrelay.errors import CastError, ContractError
from sqlrelay.marshal import ResultShape, ResultType, is_record_type, resolve_result_type

_CONTRACT_BASES = (object, Protocol, Generic, abc.ABC)


@dataclass(frozen=True, eq=False)
class Operation:
    """Identity of one contract method and everything needed to run it."""

    contract: type
    name: str
    function: Callable[..., Any]
    signature: inspect.Signature
    command: CommandSpec
    provided: tuple[str, ...]
    result_type: ResultType | None

    @property
    def qualname(self) -> str:
        return f"{self.contract.__qualname__}.{self.name}"

    @cached_property
    def binding(self) -> Mapping[str, int]:
        """Placeholder to argument index, resolved on first use."""
        return MappingProxyType(
            bind(self.command.placeholders, self.provided, self.command.template)
        )

    def arguments(self, args: Sequence[Any], kwargs: Mapping[str, Any]) -> tuple[Any, ...]:
        bound = self.signature.bind(*args, **kwargs)
        bound.apply_defaults()
        return tuple(bound.arguments[name] for name in self.signature.parameters)

    def parameters(self, arguments: Sequence[Any]) -> dict[str, Any]:
        return bound_values(self.binding, arguments)

    def cast_result(self, value: Any) -> Any:
        result_type = self.result_type
        if result_type is None or value is None:
            return None
        if result_type.is_sequence:
            assert result_type.container is not None
            if not isinstance(value, result_type.container):
                raise CastError(
                    f"{self.qualname} returned {type(value).__name__}, "
                    f"expected {result_type.container.__name__}"
                )
            element_class = _runtime_class(result_type.element)
            for item in value:
                if not isinstance(item, element_class):
                    raise CastError(
                        f"{self.qualname} returned an element of type "
                        f"{type(item).__name__}, expected {element_class.__name__}"
                    )
            return value
        expected = _runtime_class(result_type.element)
        if not isinstance(value, expected):
            raise CastError(
                f"{self.qualname} returned {type(value).__name__}, "
                f"expected {expected.__name__}"
            )
        return value


def _runtime_class(tp: Any) -> type:
    if tp is Any:
        return object
    origin = get_origin(tp) or tp
    if is_record_type(tp) and issubclass(origin, dict):
        # TypedDicts and dict[...] records are plain dicts at runtime
        return dict
    if isinstance(origin, type):
        return origin
    return object


def _overrides(func: Callable[..., Any], command: CommandSpec, hints: dict[str, Any]) -> dict[str, str]:
    overrides = dict(command.bind)
    for name, hint in hints.items():
        if name == "return" or get_origin(hint) is not Annotated:
            continue
        for meta in get_args(hint)[1:]:
            if not isinstance(meta, Bind):
                continue
            if name in command.bind:
                raise ContractError(
                    f"parameter '{name}' of '{func.__qualname__}' is bound twice"
                )
            overrides[name] = placeholder_name(meta.placeholder)
    return overrides


def _operation(contract: type, name: str, func: Callable[..., Any]) -> Operation:
    command = command_for(func)
    if command is None:
        raise ContractError(
            f"method '{name}' of {contract.__name__} has no query or update command"
        )
    signature = inspect.signature(func)
    parameters = list(signature.parameters.values())[1:]
    for parameter in parameters:
        if parameter.kind in (parameter.VAR_POSITIONAL, parameter.VAR_KEYWORD):
            raise ContractError(
                f"method '{name}' of {contract.__name__} cannot take *args or **kwargs"
            )
    signature = signature.replace(parameters=parameters)
    hints = get_type_hints(func, include_extras=True)
    if "return" not in hints:
        raise ContractError(
            f"method '{name}' of {contract.__name__} must declare a return type"
        )
    result_type = resolve_result_type(hints["return"])
    if command.kind is CommandKind.UPDATE and result_type is not None:
        if result_type.shape is not ResultShape.SCALAR or result_type.element is not int:
            raise ContractError(
                f"update method '{name}' of {contract.__name__} must return None or int"
            )
    overrides = _overrides(func, command, hints)
    names = [parameter.name for parameter in parameters]
    unknown = set(overrides) - set(names)
    if unknown:
        raise ContractError(
            f"bind overrides name unknown parameters of '{name}': {sorted(unknown)}"
        )
    return Operation(
        contract=contract,
        name=name,
        function=func,
        signature=signature,
        command=command,
        provided=provided_placeholders(names, overrides),
        result_type=result_type,
    )


@lru_cache(maxsize=None)
def operations(contract: type) -> Mapping[str, Operation]:
    """Build the method-name to Operation table of a contract, once."""
    if not isinstance(contract, type):
        raise ContractError(f"{contract!r} is not a class")
    if contract in _CONTRACT_BASES:
        raise ContractError(f"{contract.__name__} declares no methods")
    names: list[str] = []
    for klass in reversed(contract.__mro__):
        if klass in _CONTRACT_BASES:
            continue
        if inspect.get_annotations(klass):
            raise ContractError(f"{klass.__name__} declares attributes, not methods")
        for name, attr in vars(klass).items():
            if name.startswith("_"):
                if isinstance(attr, FunctionType) and command_for(attr) is not None:
                    raise ContractError(f"private method '{name}' cannot carry a command")
                continue
            if name not in names:
                names.append(name)

    table: dict[str, Operation] = {}
    for name in names:
        attr = inspect.getattr_static(contract, name)
        if isinstance(attr, (staticmethod, classmethod, property)):
            raise ContractError(
                f"{contract.__name__}.{name} must be a plain method, "
                f"not a {type(attr).__name__}"
            )
        if not isinstance(attr, FunctionType):
            raise ContractError(f"{contract.__name__}.{name} is not a method")
        table[name] = _operation(contract, name, attr)
    return MappingProxyType(table)
