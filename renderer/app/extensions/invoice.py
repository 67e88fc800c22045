"""
Invoice document type.

Reference extension showing every registration hook:

- an ``invoice`` mapper that parses and validates the request body and
  extracts header values directly from it;
- a TABLE injector building the line-item table;
- a NUMBER injector that depends on the table;
- a STRING injector reading shared init data;
- an init function providing that shared data.

Enable with ``RENDERER_EXTENSIONS=["renderer.app.extensions.invoice:register"]``.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any, Dict, List, Mapping

from pydantic import BaseModel, ConfigDict, Field

from renderer.app.injection.formatting import NUMBER_FORMATS
from renderer.app.injection.injector import FunctionInjector
from renderer.app.injection.values import (
    InjectionKey,
    TableColumn,
    TableValue,
    ValueType,
)
from renderer.app.mapping.mapper import MapperContext, SchemaMapper

if TYPE_CHECKING:
    from renderer.app.engine.builder import EngineBuilder
    from renderer.app.rendering.context import RenderContext

DOCUMENT_TYPE_CODE = "invoice"

INVOICE_LINES = InjectionKey(value_type=ValueType.TABLE, name="invoice_lines")
INVOICE_TOTAL = InjectionKey(value_type=ValueType.NUMBER, name="invoice_total")
COMPANY_NAME = InjectionKey(value_type=ValueType.STRING, name="company_name")
INVOICE_NUMBER = InjectionKey(value_type=ValueType.STRING, name="invoice_number")
CUSTOMER_NAME = InjectionKey(value_type=ValueType.STRING, name="customer_name")
ISSUED_AT = InjectionKey(value_type=ValueType.TIME, name="issued_at")

LINE_COLUMNS = [
    TableColumn(key="description", label="Description"),
    TableColumn(key="quantity", label="Qty", value_type=ValueType.NUMBER),
    TableColumn(key="unit_price", label="Unit price", value_type=ValueType.NUMBER),
    TableColumn(key="amount", label="Amount", value_type=ValueType.NUMBER),
]


# ---------------------------------------------------------------------------
# Payload schema
# ---------------------------------------------------------------------------


class InvoiceLine(BaseModel):
    description: str = Field(..., min_length=1)
    quantity: int = Field(..., ge=1)
    unit_price: float = Field(..., ge=0)

    model_config = ConfigDict(extra="forbid")

    @property
    def amount(self) -> float:
        return round(self.quantity * self.unit_price, 2)


class InvoicePayload(BaseModel):
    """
    Semantic content of an invoice.
    """

    invoice_number: str = Field(..., min_length=1)
    customer_name: str = Field(..., min_length=1)
    issued_at: datetime
    currency: str = Field(default="EUR", pattern=r"^[A-Z]{3}$")
    lines: List[InvoiceLine] = Field(..., min_length=1)

    model_config = ConfigDict(extra="forbid")


def validate_invoice(payload: InvoicePayload) -> None:
    descriptions = [line.description for line in payload.lines]
    if len(set(descriptions)) != len(descriptions):
        raise ValueError("Invoice line descriptions must be unique")


def extract_invoice(
    payload: InvoicePayload, context: MapperContext
) -> Mapping[InjectionKey, Any]:
    return {
        INVOICE_NUMBER: payload.invoice_number,
        CUSTOMER_NAME: payload.customer_name,
        ISSUED_AT: payload.issued_at,
    }


# ---------------------------------------------------------------------------
# Injectors
# ---------------------------------------------------------------------------


def invoice_lines(ctx: "RenderContext") -> TableValue:
    payload: InvoicePayload = ctx.payload
    return TableValue.from_records(
        LINE_COLUMNS,
        [
            {
                "description": line.description,
                "quantity": line.quantity,
                "unit_price": line.unit_price,
                "amount": line.amount,
            }
            for line in payload.lines
        ],
    )


def invoice_total(ctx: "RenderContext") -> float:
    table: TableValue = ctx.value_of(INVOICE_LINES)
    amount_index = [c.key for c in table.columns].index("amount")
    return round(sum(row[amount_index].value for row in table.rows), 2)


def company_name(ctx: "RenderContext") -> str:
    return ctx.init_data["company_name"]


def init_invoice_data() -> Dict[str, Any]:
    return {"company_name": "Acme Documents Ltd."}


def register(builder: "EngineBuilder") -> None:
    builder.register_mapper(
        DOCUMENT_TYPE_CODE,
        SchemaMapper(
            InvoicePayload,
            description="Customer invoice with itemized lines and total.",
            extractor=extract_invoice,
            validator=validate_invoice,
        ),
    )
    builder.register_injector(
        ValueType.TABLE, INVOICE_LINES.name, FunctionInjector(invoice_lines)
    )
    builder.register_injector(
        ValueType.NUMBER,
        INVOICE_TOTAL.name,
        FunctionInjector(
            invoice_total,
            dependencies=(INVOICE_LINES,),
            formats=NUMBER_FORMATS,
        ),
    )
    builder.register_injector(
        ValueType.STRING, COMPANY_NAME.name, FunctionInjector(company_name)
    )
    builder.set_init_func(init_invoice_data)
