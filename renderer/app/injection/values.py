"""
Typed injectable values.

Every value that flows into a template is tagged with a ``ValueType``
and validated against it before it may be substituted. The set of value
types is closed: adding a new type requires a code change here.

IMPORTANT:
- Scalars are validated strictly (no str -> int coercion).
- TIME accepts ISO-8601 strings and normalizes them to ``datetime``.
- TABLE and LIST are validated into ``TableValue`` / ``ListValue``.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    StrictBool,
    StrictFloat,
    StrictInt,
    StrictStr,
    TypeAdapter,
    ValidationError,
    model_validator,
)


class ValueType(str, Enum):
    STRING = "STRING"
    NUMBER = "NUMBER"
    BOOL = "BOOL"
    TIME = "TIME"
    IMAGE = "IMAGE"
    TABLE = "TABLE"
    LIST = "LIST"


class InjectionKey(BaseModel):
    """
    Identity of a placeholder: its value type plus a name.

    Two keys with the same name but different types are distinct.
    """

    value_type: ValueType
    name: str = Field(..., min_length=1, pattern=r"^[A-Za-z_][A-Za-z0-9_]*$")

    model_config = ConfigDict(frozen=True, extra="forbid")

    @classmethod
    def parse(cls, text: str) -> "InjectionKey":
        """Parse the ``TYPE:name`` form used in configuration and logs."""
        value_type, sep, name = text.partition(":")
        if not sep:
            raise ValueError(f"Invalid injection key '{text}', expected TYPE:name")
        return cls(value_type=ValueType(value_type.upper()), name=name)

    def __str__(self) -> str:
        return f"{self.value_type.value}:{self.name}"


# ----------------------------------------------------------------------
# Structured values
# ----------------------------------------------------------------------

ScalarCell = Union[StrictBool, StrictInt, StrictFloat, StrictStr, datetime, None]


class TableColumn(BaseModel):
    key: str = Field(..., min_length=1)
    label: str
    value_type: ValueType = ValueType.STRING

    model_config = ConfigDict(frozen=True, extra="forbid")


class TableCell(BaseModel):
    value: ScalarCell = None
    colspan: int = Field(default=1, ge=1)

    model_config = ConfigDict(frozen=True, extra="forbid")


class TableValue(BaseModel):
    """
    A rectangular table.

    The sum of ``colspan`` across each row must equal the number of
    declared columns.
    """

    columns: List[TableColumn] = Field(..., min_length=1)
    rows: List[List[TableCell]] = Field(default_factory=list)

    model_config = ConfigDict(frozen=True, extra="forbid")

    @model_validator(mode="after")
    def _check_row_widths(self) -> "TableValue":
        width = len(self.columns)
        for index, row in enumerate(self.rows):
            span = sum(cell.colspan for cell in row)
            if span != width:
                raise ValueError(
                    f"Row {index} spans {span} columns, table has {width}"
                )
        return self

    @classmethod
    def from_records(
        cls,
        columns: List[TableColumn],
        records: List[Dict[str, Any]],
    ) -> "TableValue":
        """Build a table with one cell per column from plain dicts."""
        rows = [
            [TableCell(value=record.get(column.key)) for column in columns]
            for record in records
        ]
        return cls(columns=columns, rows=rows)


class ListSymbol(str, Enum):
    BULLET = "bullet"
    NUMBER = "number"
    DASH = "dash"
    ROMAN = "roman"
    LETTER = "letter"


class ListItem(BaseModel):
    text: str
    children: List["ListItem"] = Field(default_factory=list)

    model_config = ConfigDict(frozen=True, extra="forbid")


class ListValue(BaseModel):
    symbol: ListSymbol = ListSymbol.BULLET
    header: Optional[str] = None
    items: List[ListItem] = Field(default_factory=list)

    model_config = ConfigDict(frozen=True, extra="forbid")


# ----------------------------------------------------------------------
# Tagged value
# ----------------------------------------------------------------------

_ADAPTERS: Dict[ValueType, TypeAdapter] = {
    ValueType.STRING: TypeAdapter(StrictStr),
    ValueType.NUMBER: TypeAdapter(Union[StrictInt, StrictFloat]),
    ValueType.BOOL: TypeAdapter(StrictBool),
    ValueType.TIME: TypeAdapter(datetime),
    ValueType.IMAGE: TypeAdapter(StrictStr),
    ValueType.TABLE: TypeAdapter(TableValue),
    ValueType.LIST: TypeAdapter(ListValue),
}


class InjectableValue(BaseModel):
    """
    A value bound to its type tag.

    Construct through ``InjectableValue.of`` so the raw value is
    validated against ``value_type``.
    """

    value_type: ValueType
    value: Any

    model_config = ConfigDict(frozen=True, extra="forbid")

    @classmethod
    def of(cls, value_type: ValueType, raw: Any) -> "InjectableValue":
        """
        Validate ``raw`` against ``value_type``.

        Raises ``pydantic.ValidationError`` on mismatch.
        """
        if isinstance(raw, InjectableValue):
            if raw.value_type != value_type:
                raise TypeError(
                    f"Expected {value_type.value} value, got {raw.value_type.value}"
                )
            return raw
        validated = _ADAPTERS[value_type].validate_python(raw)
        return cls(value_type=value_type, value=validated)

    def matches(self, key: InjectionKey) -> bool:
        return self.value_type == key.value_type


def coerce_value(key: InjectionKey, raw: Any) -> InjectableValue:
    """
    Validate a raw injector or mapper output for ``key``.

    ``ValidationError`` and ``TypeError`` are normalized to ``TypeError``
    so callers can treat every mismatch the same way.
    """
    try:
        return InjectableValue.of(key.value_type, raw)
    except ValidationError as exc:
        raise TypeError(
            f"Value for '{key}' is not a valid {key.value_type.value}: "
            f"{exc.error_count()} validation error(s)"
        ) from exc
