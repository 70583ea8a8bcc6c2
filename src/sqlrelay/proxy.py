from functools import lru_cache
from typing import Any, Callable, Protocol, Sequence, TypeVar, cast

from sqlrelay.contract import Operation, operations

ContractT = TypeVar("ContractT")


class ProxyTarget(Protocol):
    def execute(self, operation: Operation, arguments: Sequence[Any]) -> Any: ...


class ContractProxy:
    """Implements a contract by forwarding every call to one ProxyTarget."""

    __slots__ = ("_target",)

    def __init__(self, target: ProxyTarget) -> None:
        object.__setattr__(self, "_target", target)

    @property
    def target(self) -> ProxyTarget:
        return self._target

    def __setattr__(self, name: str, value: Any) -> None:
        raise AttributeError(f"{type(self).__name__} is immutable")

    def __delattr__(self, name: str) -> None:
        raise AttributeError(f"{type(self).__name__} is immutable")

    def __repr__(self) -> str:
        return f"<{type(self).__name__} -> {self._target!r}>"


def _forwarding_method(operation: Operation) -> Callable[..., Any]:
    def method(self: ContractProxy, *args: Any, **kwargs: Any) -> Any:
        arguments = operation.arguments(args, kwargs)
        return operation.cast_result(self._target.execute(operation, arguments))

    method.__name__ = operation.name
    method.__qualname__ = f"{operation.contract.__qualname__}Proxy.{operation.name}"
    method.__doc__ = operation.function.__doc__
    method.__signature__ = operation.signature  # type: ignore[attr-defined]
    return method


@lru_cache(maxsize=None)
def proxy_class(contract: type) -> type[ContractProxy]:
    table = operations(contract)
    namespace: dict[str, Any] = {
        name: _forwarding_method(operation) for name, operation in table.items()
    }
    namespace["__slots__"] = ()
    namespace["__module__"] = contract.__module__
    namespace["__qualname__"] = f"{contract.__qualname__}Proxy"
    return cast(
        "type[ContractProxy]",
        type(f"{contract.__name__}Proxy", (ContractProxy, contract), namespace),
    )


def create_proxy(contract: type[ContractT], target: ProxyTarget) -> ContractT:
    """Return an object implementing ``contract`` on top of ``target``."""
    return cast(ContractT, proxy_class(contract)(target))
