"""Pydantic request models for the ledger entry points."""
from __future__ import annotations

from collections import OrderedDict
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Literal, Optional, Type, TypeVar

import pydantic
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from ...models.sku import SKU_ID_PATTERN
from ._errors import ValidationError
from ._money import quantize_quantity, quantize_unit_cost

RequestModel = TypeVar('RequestModel', bound=BaseModel)


def normalize_sku_id(value: str) -> str:
    normalized = (value or '').strip().upper()
    if not normalized:
        raise ValueError('SKU is required')
    if not SKU_ID_PATTERN.match(normalized):
        raise ValueError(f"SKU {value!r} may only contain A-Z, 0-9 and '-'")
    return normalized


def positive_quantity(value, name: str = 'quantity') -> Decimal:
    """Quantize to ledger precision; amounts that round away to nothing are rejected."""
    value = quantize_quantity(value)
    if value <= 0:
        raise ValueError(f'{name} must be at least 0.0001 (rounds to zero)')
    return value


class _LedgerRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True, extra='ignore')


class _SkuRequest(_LedgerRequest):
    sku: str

    @field_validator('sku')
    @classmethod
    def _normalize_sku(cls, value: str) -> str:
        return normalize_sku_id(value)


class DamageOutcome(_LedgerRequest):
    mode: Literal['APPROVE', 'REJECT_ALL', 'PARTIAL'] = 'APPROVE'
    accept_quantity: Optional[Decimal] = Field(default=None, ge=0)
    reject_quantity: Optional[Decimal] = Field(default=None, ge=0)
    notes: Optional[str] = None

    @field_validator('mode', mode='before')
    @classmethod
    def _upper_mode(cls, value):
        return value.strip().upper() if isinstance(value, str) else value


class ReceivingRequest(_SkuRequest):
    quantity: Decimal = Field(gt=0)
    unit_cost: Decimal = Field(ge=0)
    vendor_ref: Optional[str] = Field(default=None, max_length=128)
    received_at: Optional[datetime] = None
    expiration_date: Optional[datetime] = None
    damage_outcome: Optional[DamageOutcome] = None
    reference: Optional[str] = Field(default=None, max_length=128)
    notes: Optional[str] = None

    @field_validator('quantity')
    @classmethod
    def _quantity_places(cls, value: Decimal) -> Decimal:
        return positive_quantity(value)

    @field_validator('unit_cost')
    @classmethod
    def _unit_cost_places(cls, value: Decimal) -> Decimal:
        return quantize_unit_cost(value)

    @model_validator(mode='after')
    def _check_damage_split(self):
        outcome = self.damage_outcome
        if outcome is None or outcome.mode != 'PARTIAL':
            return self
        if outcome.accept_quantity is None or outcome.reject_quantity is None:
            raise ValueError('PARTIAL damage outcome needs accept_quantity and reject_quantity')
        positive_quantity(outcome.accept_quantity, 'accept_quantity')
        if quantize_quantity(outcome.accept_quantity + outcome.reject_quantity) != self.quantity:
            raise ValueError('accept_quantity + reject_quantity must equal the received quantity')
        return self

    @property
    def accepted_quantity(self) -> Decimal:
        outcome = self.damage_outcome
        if outcome is None or outcome.mode == 'APPROVE':
            return self.quantity
        if outcome.mode == 'REJECT_ALL':
            return Decimal('0')
        return quantize_quantity(outcome.accept_quantity)

    @property
    def rejected_quantity(self) -> Decimal:
        return quantize_quantity(self.quantity - self.accepted_quantity)


class ConsumptionRequest(_SkuRequest):
    quantity: Decimal = Field(gt=0)
    kind: Literal['ISSUE', 'WASTE'] = 'ISSUE'
    reference: Optional[str] = Field(default=None, max_length=128)
    occurred_at: Optional[datetime] = None
    notes: Optional[str] = None

    @field_validator('kind', mode='before')
    @classmethod
    def _upper_kind(cls, value):
        return value.strip().upper() if isinstance(value, str) else value

    @field_validator('quantity')
    @classmethod
    def _quantity_places(cls, value: Decimal) -> Decimal:
        return positive_quantity(value)


class WorkOrderLine(_SkuRequest):
    quantity: Decimal = Field(gt=0)

    @field_validator('quantity')
    @classmethod
    def _quantity_places(cls, value: Decimal) -> Decimal:
        return positive_quantity(value)


def _merge_lines(lines: List[WorkOrderLine]) -> 'OrderedDict[str, Decimal]':
    merged: 'OrderedDict[str, Decimal]' = OrderedDict()
    for line in lines:
        merged[line.sku] = merged.get(line.sku, Decimal('0')) + line.quantity
    return merged


class WorkOrderRequest(_LedgerRequest):
    output_name: str = Field(min_length=1, max_length=255)
    output_quantity: Decimal = Field(gt=0)
    output_unit: Optional[str] = Field(default=None, max_length=32)
    raw_lines: List[WorkOrderLine] = Field(min_length=1)
    waste_lines: List[WorkOrderLine] = Field(default_factory=list)
    reference: Optional[str] = Field(default=None, max_length=128)
    occurred_at: Optional[datetime] = None
    notes: Optional[str] = None

    @field_validator('output_quantity')
    @classmethod
    def _quantity_places(cls, value: Decimal) -> Decimal:
        return positive_quantity(value, 'output_quantity')

    @model_validator(mode='after')
    def _waste_within_raw(self):
        raw = self.merged_raw_lines()
        for sku, quantity in self.merged_waste_lines().items():
            if sku not in raw:
                raise ValueError(f'waste SKU {sku} is not among the raw lines')
            if quantity > raw[sku]:
                raise ValueError(f'waste for {sku} ({quantity}) exceeds its raw quantity ({raw[sku]})')
        return self

    def merged_raw_lines(self):
        return _merge_lines(self.raw_lines)

    def merged_waste_lines(self):
        return _merge_lines(self.waste_lines)


class AdjustmentRequest(_LedgerRequest):
    layer_id: int
    quantity_delta: Decimal
    reason: str = Field(min_length=1, max_length=255)
    reference: Optional[str] = Field(default=None, max_length=128)
    occurred_at: Optional[datetime] = None

    @field_validator('quantity_delta')
    @classmethod
    def _non_zero(cls, value: Decimal) -> Decimal:
        value = quantize_quantity(value)
        if value == 0:
            raise ValueError('quantity_delta must not be zero')
        return value


class MovementFilters(_LedgerRequest):
    date_from: Optional[datetime] = None
    date_to: Optional[datetime] = None
    movement_type: Optional[str] = None
    sku_id: Optional[str] = None
    reference: Optional[str] = None
    work_order_id: Optional[int] = None
    include_reversed: bool = False

    @field_validator('movement_type', mode='before')
    @classmethod
    def _upper_type(cls, value):
        return value.strip().upper() if isinstance(value, str) and value.strip() else None

    @field_validator('sku_id')
    @classmethod
    def _sku(cls, value):
        return normalize_sku_id(value) if value else None


def parse_request(model: Type[RequestModel], payload: Any) -> RequestModel:
    """Validate a payload, converting pydantic errors into a ledger ValidationError."""
    if isinstance(payload, model):
        return payload
    if payload is None:
        payload = {}
    try:
        return model.model_validate(payload)
    except pydantic.ValidationError as exc:
        fields: Dict[str, str] = {}
        for err in exc.errors():
            location = '.'.join(str(part) for part in err.get('loc', ())) or '__root__'
            fields[location] = err.get('msg', 'invalid value')
        first = next(iter(fields.items()))
        raise ValidationError(
            f"Invalid {model.__name__}: {first[0]}: {first[1]}",
            details={'fields': fields},
        ) from exc
