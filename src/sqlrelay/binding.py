from typing import Any, Mapping, Sequence

from sqlrelay.errors import MissingParameterError


def placeholder_name(name: str) -> str:
    return name if name.startswith("@") else f"@{name}"


def provided_placeholders(
    parameter_names: Sequence[str], overrides: Mapping[str, str] | None = None
) -> tuple[str, ...]:
    """Placeholder supplied by each parameter, '@<name>' unless overridden."""
    if overrides is None:
        overrides = {}
    return tuple(
        placeholder_name(overrides.get(name, name)) for name in parameter_names
    )


def bind(
    required: Sequence[str], provided: Sequence[str], command: str
) -> dict[str, int]:
    binding: dict[str, int] = {}
    for placeholder in required:
        if placeholder in binding:
            continue
        try:
            binding[placeholder] = provided.index(placeholder)
        except ValueError:
            raise MissingParameterError(placeholder, command) from None
    return binding


def bound_values(binding: Mapping[str, int], arguments: Sequence[Any]) -> dict[str, Any]:
    return {name[1:]: arguments[index] for name, index in binding.items()}
