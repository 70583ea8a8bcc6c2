from typing import Any


class SqlRelayError(Exception):
    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ContractError(SqlRelayError):
    """The class given for synthesis is not a pure method-only contract."""


class CastError(SqlRelayError):
    """A dispatched value does not match the method's declared return type."""


class UnsupportedPlaceholderError(SqlRelayError):
    """A '?' placeholder appears in a command template."""


class MissingParameterError(SqlRelayError):
    def __init__(self, placeholder: str, command: str) -> None:
        super().__init__(
            f"No argument found for parameter '{placeholder}' in command '{command}'"
        )
        self.placeholder = placeholder
        self.command = command


class OperationFailed(SqlRelayError):
    def __init__(self, command: str) -> None:
        super().__init__(f"operation failed: no rows affected by '{command}'")
        self.command = command


class ConversionError(SqlRelayError):
    def __init__(self, value: Any, target: Any, reason: str | None = None) -> None:
        name = getattr(target, "__name__", repr(target))
        message = f"cannot convert {value!r} to {name}"
        if reason:
            message += f": {reason}"
        super().__init__(message)
        self.value = value
        self.target = target


class ConnectivityError(SqlRelayError):
    """The backing store is unreachable or rejected the command."""
