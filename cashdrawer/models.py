from datetime import datetime
from enum import Enum
from typing import Annotated, Literal, Optional, Union
from pydantic import AfterValidator, BaseModel, ConfigDict, Field, computed_field, field_validator

from .denominations import total_value, validate_counts

Cash = Annotated[dict[int, int], AfterValidator(validate_counts)]


class EntryType(str, Enum):
    SALE = "sale"
    DEPOSIT = "deposit"
    WITHDRAWAL = "withdrawal"
    REVERSAL = "reversal"


class PartyKind(str, Enum):
    SELLER = "seller"
    DEPOSITOR = "depositor"


class SalePayload(BaseModel):
    entry_type: Literal["sale"] = "sale"
    product_ids: list[int]
    total_price: int = Field(..., ge=0)
    paid_amount: Cash
    change_given: Cash = Field(default_factory=dict)

    model_config = ConfigDict(frozen=True)


class DepositPayload(BaseModel):
    entry_type: Literal["deposit"] = "deposit"
    person: str
    amount: Cash

    model_config = ConfigDict(frozen=True)


class WithdrawalPayload(BaseModel):
    entry_type: Literal["withdrawal"] = "withdrawal"
    person: str
    amount: Cash

    model_config = ConfigDict(frozen=True)


class ReversalPayload(BaseModel):
    entry_type: Literal["reversal"] = "reversal"
    original_entry_id: int

    model_config = ConfigDict(frozen=True)


EntryPayload = Annotated[
    Union[SalePayload, DepositPayload, WithdrawalPayload, ReversalPayload],
    Field(discriminator="entry_type"),
]


class LedgerEntry(BaseModel):
    """One cash-affecting event. Only ``is_reverted`` ever changes after append."""

    id: int
    pos_instance_id: str
    payload: EntryPayload
    is_reverted: bool = False
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)

    @computed_field
    @property
    def entry_type(self) -> EntryType:
        return EntryType(self.payload.entry_type)


class PosInstance(BaseModel):
    id: str
    created_at: datetime


class Product(BaseModel):
    id: int
    pos_instance_id: str
    name: str
    price: int = Field(..., ge=0)
    seller_name: Optional[str] = None
    version: int = 1
    display_order: Optional[int] = None
    is_deleted: bool = False
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class ProductRequest(BaseModel):
    name: str = Field(..., min_length=1)
    price: int = Field(..., ge=0)
    seller_name: Optional[str] = None
    display_order: Optional[int] = None

    model_config = ConfigDict(json_schema_extra={
        "example": {"name": "Handmade bookmark", "price": 300, "seller_name": "Alice"}
    })


class CashMovementRequest(BaseModel):
    person: str = Field(..., min_length=1, description="Who handed over or took the cash")
    amount: Cash

    @field_validator("amount")
    @classmethod
    def amount_not_empty(cls, value: dict[int, int]) -> dict[int, int]:
        if total_value(value) <= 0:
            raise ValueError("amount must contain at least one note or coin")
        return value

    model_config = ConfigDict(json_schema_extra={
        "example": {"person": "Bob", "amount": {"1000": 5, "100": 10}}
    })


class SaleRequest(BaseModel):
    product_ids: list[int] = Field(..., min_length=1)
    paid_amount: Cash
    total_price: Optional[int] = Field(
        default=None, ge=0, description="Final price after discounts; defaults to the sum of product prices"
    )

    model_config = ConfigDict(json_schema_extra={
        "example": {"product_ids": [1, 2], "paid_amount": {"5000": 1}}
    })


class SaleResponse(BaseModel):
    ledger_entry: LedgerEntry
    total_price: int
    change_given: dict[int, int]
    message: str


class RevertResponse(BaseModel):
    ledger_entry: LedgerEntry
    message: str


class DrawerBalance(BaseModel):
    pos_instance_id: str
    counts: dict[int, int]
    total: int


class PayoutSuggestion(BaseModel):
    pos_instance_id: str
    party_kind: PartyKind
    party_name: str
    total_amount: int
    suggested_payout: dict[int, int]
