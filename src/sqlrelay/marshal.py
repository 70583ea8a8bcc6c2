import dataclasses
import inspect
import logging
from collections.abc import Mapping as MappingABC
from collections.abc import Sequence as SequenceABC
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from decimal import Decimal
from enum import Enum, StrEnum, auto
from functools import lru_cache
from types import NoneType, UnionType
from typing import (
    Annotated,
    Any,
    Callable,
    ClassVar,
    Union,
    get_args,
    get_origin,
    get_type_hints,
    is_typeddict,
)
from uuid import UUID

from pydantic import BaseModel, PydanticSchemaGenerationError, TypeAdapter
from pydantic import ValidationError
from sqlalchemy import Result

from sqlrelay.commands import Row
from sqlrelay.errors import ContractError, ConversionError

logger = logging.getLogger(__name__)

SCALAR_TYPES = (
    bool,
    int,
    float,
    str,
    bytes,
    bytearray,
    Decimal,
    datetime,
    date,
    time,
    timedelta,
    UUID,
    Enum,
)

_SEQUENCE_CONTAINERS: dict[Any, type] = {
    list: list,
    tuple: tuple,
    SequenceABC: list,
}


class ResultShape(StrEnum):
    SCALAR = auto()
    SCALAR_SEQUENCE = auto()
    RECORD = auto()
    RECORD_SEQUENCE = auto()


@dataclass(frozen=True)
class ResultType:
    shape: ResultShape
    element: Any
    container: type | None = None
    optional: bool = False

    @property
    def is_sequence(self) -> bool:
        return self.container is not None

    def empty(self) -> Any:
        """The value returned when a query yields no rows."""
        if self.container is None:
            return None
        return self.container()


def _strip_annotated(tp: Any) -> Any:
    while get_origin(tp) is Annotated:
        tp = get_args(tp)[0]
    return tp


def _strip_optional(tp: Any) -> tuple[Any, bool]:
    tp = _strip_annotated(tp)
    if get_origin(tp) in (Union, UnionType):
        members = [arg for arg in get_args(tp) if arg is not NoneType]
        if len(members) != 1:
            raise ContractError(f"ambiguous return type {tp!r}")
        return _strip_annotated(members[0]), True
    return tp, False


def is_record_type(tp: Any) -> bool:
    """True for composite types whose fields are filled from columns."""
    if tp is Any or tp is object:
        return False
    origin = get_origin(tp) or tp
    if not isinstance(origin, type):
        return False
    if issubclass(origin, SCALAR_TYPES):
        return False
    if is_typeddict(origin) or issubclass(origin, MappingABC):
        return True
    if dataclasses.is_dataclass(origin) or issubclass(origin, BaseModel):
        return True
    if issubclass(origin, tuple):
        return hasattr(origin, "_fields")
    return bool(_field_types(origin))


def resolve_result_type(annotation: Any) -> ResultType | None:
    """Derive the result shape from a method's return annotation.

    Returns None for methods declared to return None.
    """
    if annotation is None or annotation is NoneType:
        return None
    tp, optional = _strip_optional(annotation)
    origin = get_origin(tp)
    container = _SEQUENCE_CONTAINERS.get(origin if origin is not None else tp)
    if container is not None:
        args = get_args(tp)
        if origin is tuple and args and (len(args) != 2 or args[1] is not Ellipsis):
            raise ContractError(f"fixed-length tuple {tp!r} is not a sequence type")
        element = _strip_annotated(args[0]) if args else Any
        if is_record_type(element):
            shape = ResultShape.RECORD_SEQUENCE
        else:
            shape = ResultShape.SCALAR_SEQUENCE
        return ResultType(shape, element, container, optional)
    if is_record_type(tp):
        return ResultType(ResultShape.RECORD, tp, optional=optional)
    return ResultType(ResultShape.SCALAR, tp, optional=optional)


@lru_cache(maxsize=None)
def _adapter(target: Any) -> TypeAdapter[Any] | None:
    try:
        return TypeAdapter(target)
    except PydanticSchemaGenerationError:
        return None


def convert_scalar(value: Any, target: Any) -> Any:
    """Coerce a column value to ``target``, raising ConversionError."""
    if target is Any or target is object:
        return value
    if isinstance(target, type) and type(value) is target:
        return value
    if target is float and type(value) is int:
        return float(value)
    if target is str and value is not None:
        if isinstance(value, (bytes, bytearray)):
            try:
                return bytes(value).decode()
            except UnicodeDecodeError as e:
                raise ConversionError(value, target, str(e)) from e
        return str(value)
    adapter = _adapter(target)
    if adapter is None:
        if isinstance(target, type) and isinstance(value, target):
            return value
        raise ConversionError(value, target, "no converter for target type")
    try:
        return adapter.validate_python(value)
    except ValidationError as e:
        raise ConversionError(value, target, e.errors()[0]["msg"]) from e


def _field_types(tp: type) -> dict[str, Any]:
    return {
        name: hint
        for name, hint in get_type_hints(tp).items()
        if get_origin(hint) is not ClassVar
    }


@dataclass(frozen=True)
class FieldSlot:
    name: str
    type: Any
    default: Callable[[], Any]


def _none() -> None:
    return None


def _constant(value: Any) -> Callable[[], Any]:
    return lambda: value


class RecordMapper:
    """Explicit column to field table for one record type."""

    def __init__(
        self,
        record_type: Any,
        slots: list[tuple[list[str], FieldSlot]] | None,
        build: Callable[[dict[str, Any]], Any],
    ) -> None:
        self._record_type = record_type
        self._slots: dict[str, FieldSlot] | None = None
        self._fields: list[FieldSlot] = []
        if slots is not None:
            self._slots = {}
            for columns, slot in slots:
                self._fields.append(slot)
                for column in columns:
                    self._slots.setdefault(column.lower(), slot)
        self._build = build

    @property
    def fields(self) -> list[FieldSlot]:
        return list(self._fields)

    def map_row(self, row: Row) -> Any:
        if self._slots is None:
            return self._build(dict(row))
        type_name = getattr(self._record_type, "__name__", repr(self._record_type))
        values: dict[str, Any] = {}
        for column, value in row.items():
            slot = self._slots.get(column.lower())
            if slot is None:
                logger.warning(
                    "field not found for column '%s' of type '%s' on %s",
                    column,
                    type(value).__name__,
                    type_name,
                )
                continue
            try:
                values[slot.name] = convert_scalar(value, slot.type)
            except ConversionError as e:
                logger.warning(
                    "field type mismatch for column '%s' on %s - %s",
                    column,
                    type_name,
                    e.message,
                )
        return self._build(values)


def _with_defaults(fields: list[FieldSlot], values: dict[str, Any]) -> dict[str, Any]:
    return {
        slot.name: values[slot.name] if slot.name in values else slot.default()
        for slot in fields
    }


def _dataclass_mapper(tp: type) -> RecordMapper:
    hints = get_type_hints(tp)
    slots = []
    for f in dataclasses.fields(tp):
        if not f.init:
            continue
        if f.default is not dataclasses.MISSING:
            default = _constant(f.default)
        elif f.default_factory is not dataclasses.MISSING:
            default = f.default_factory
        else:
            default = _none
        slot = FieldSlot(f.name, hints.get(f.name, Any), default)
        slots.append(([f.metadata.get("column", f.name)], slot))
    fields = [slot for _, slot in slots]
    return RecordMapper(tp, slots, lambda values: tp(**_with_defaults(fields, values)))


def _model_mapper(tp: type[BaseModel]) -> RecordMapper:
    slots = []
    keys: dict[str, str] = {}
    for name, info in tp.model_fields.items():
        if info.is_required():
            default = _none
        else:
            default = _constant(info.get_default(call_default_factory=True))
        columns = [name] if info.alias is None else [info.alias, name]
        keys[name] = info.alias or name
        slots.append((columns, FieldSlot(name, info.annotation, default)))
    fields = [slot for _, slot in slots]

    def build(values: dict[str, Any]) -> BaseModel:
        # model_construct skips validation; values are already converted
        data = {keys[name]: value for name, value in _with_defaults(fields, values).items()}
        return tp.model_construct(_fields_set=set(values), **data)

    return RecordMapper(tp, slots, build)


def _namedtuple_mapper(tp: type) -> RecordMapper:
    hints = get_type_hints(tp)
    defaults = getattr(tp, "_field_defaults", {})
    slots = []
    for name in tp._fields:  # type: ignore[attr-defined]
        default = _constant(defaults[name]) if name in defaults else _none
        slots.append(([name], FieldSlot(name, hints.get(name, Any), default)))
    fields = [slot for _, slot in slots]
    return RecordMapper(tp, slots, lambda values: tp(**_with_defaults(fields, values)))


def _typeddict_mapper(tp: type) -> RecordMapper:
    slots = [
        ([name], FieldSlot(name, hint, _none))
        for name, hint in get_type_hints(tp).items()
    ]
    # missing keys stay absent
    return RecordMapper(tp, slots, dict)


def _plain_mapper(tp: type) -> RecordMapper:
    slots = []
    for name, hint in _field_types(tp).items():
        try:
            default = _constant(inspect.getattr_static(tp, name))
        except AttributeError:
            default = _none
        slots.append(([name], FieldSlot(name, hint, default)))
    fields = [slot for _, slot in slots]

    def build(values: dict[str, Any]) -> Any:
        obj = tp()
        for name, value in _with_defaults(fields, values).items():
            setattr(obj, name, value)
        return obj

    return RecordMapper(tp, slots, build)


@lru_cache(maxsize=None)
def record_mapper(record_type: Any) -> RecordMapper:
    tp = get_origin(record_type) or record_type
    if is_typeddict(tp):
        return _typeddict_mapper(tp)
    if issubclass(tp, MappingABC):
        return RecordMapper(record_type, None, dict)
    if dataclasses.is_dataclass(tp):
        return _dataclass_mapper(tp)
    if issubclass(tp, BaseModel):
        return _model_mapper(tp)
    if issubclass(tp, tuple):
        return _namedtuple_mapper(tp)
    return _plain_mapper(tp)


class ResultReader:
    def __init__(self, result: Result[Any]) -> None:
        self._result = result
        self._column_names: list[str] | None = None

    @property
    def result(self) -> Result[Any]:
        """Access the underlying SQLAlchemy result."""
        return self._result

    def columns(self) -> list[str]:
        """Extract and cache column names from the result."""
        if self._column_names is None:
            self._column_names = list(self._result.keys())
        return self._column_names

    def as_row(self, values: SequenceABC[Any]) -> Row:
        return dict(zip(self.columns(), values))

    def fetchone(self) -> tuple[Any, ...] | None:
        row = self._result.fetchone()
        if row is None:
            return None
        return tuple(row)

    def fetchall(self) -> list[tuple[Any, ...]]:
        return [tuple(row) for row in self._result.fetchall()]


def _is_aggregate(value: Any) -> bool:
    return isinstance(value, SequenceABC) and not isinstance(
        value, (str, bytes, bytearray)
    )


def marshal(
    result: Result[Any],
    result_type: ResultType,
    row_to_output: Callable[[Row], Any] | None = None,
) -> Any:
    """Build the declared return value from a query result."""
    if not result.returns_rows:
        return result_type.empty()
    reader = ResultReader(result)
    first = reader.fetchone()
    if first is None:
        return result_type.empty()

    element = result_type.element
    if result_type.shape is ResultShape.SCALAR:
        if first[0] is None and result_type.optional:
            return None
        return convert_scalar(first[0], element)

    container = result_type.container
    if result_type.shape is ResultShape.SCALAR_SEQUENCE:
        assert container is not None
        if len(reader.columns()) == 1 and _is_aggregate(first[0]):
            return container(convert_scalar(value, element) for value in first[0])
        column = [first[0]] + [row[0] for row in reader.fetchall()]
        return container(convert_scalar(value, element) for value in column)

    build = row_to_output or record_mapper(element).map_row
    if result_type.shape is ResultShape.RECORD:
        return build(reader.as_row(first))
    assert container is not None
    rows = [first] + reader.fetchall()
    return container(build(reader.as_row(row)) for row in rows)
