"""Canonical payment schema shared by every provider."""
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field, field_validator, model_validator

Money = Optional[int]


class UnifiedPaymentItem(BaseModel):
    """One line item within a payment."""

    line_no: int = Field(..., ge=1, description="1-based position within the payment")
    product_id: Optional[str] = None
    brand_name: Optional[str] = None
    product_name: str
    image_url: Optional[str] = None
    info_url: Optional[str] = None
    quantity: int = Field(default=1, ge=1)
    unit_price: Money = Field(default=None, ge=0)
    line_amount: Money = Field(default=None, ge=0)
    rest_amount: Money = Field(default=None, ge=0)
    memo: Optional[str] = None


class UnifiedPayment(BaseModel):
    """One logical transaction, normalized across providers."""

    id: Optional[int] = Field(default=None, description="Internal id assigned by storage")
    provider: str
    payment_id: str = Field(..., min_length=1)
    external_id: Optional[str] = None
    status_code: Optional[str] = None
    status_text: Optional[str] = None
    status_color: Optional[str] = None
    paid_at: str = Field(..., description="ISO-8601 timestamp")
    merchant_name: str = Field(..., min_length=1)
    merchant_tel: Optional[str] = None
    merchant_url: Optional[str] = None
    merchant_image_url: Optional[str] = None
    product_name: Optional[str] = None
    product_count: Optional[int] = Field(default=None, ge=0)
    total_amount: int = Field(..., ge=0)
    discount_amount: Money = Field(default=None, ge=0)
    rest_amount: Money = Field(default=None, ge=0)
    items: list[UnifiedPaymentItem] = Field(default_factory=list)

    @field_validator("paid_at")
    @classmethod
    def _paid_at_is_iso(cls, value: str) -> str:
        # fromisoformat accepts "Z" only from 3.11 on
        datetime.fromisoformat(value.replace("Z", "+00:00"))
        return value

    @model_validator(mode="after")
    def _line_numbers_contiguous(self) -> "UnifiedPayment":
        expected = list(range(1, len(self.items) + 1))
        actual = [item.line_no for item in self.items]
        if actual != expected:
            raise ValueError(f"item line_no must be 1..{len(self.items)} in order, got {actual}")
        return self

    @property
    def thumbnail(self) -> Optional[str]:
        """First item image, used for progress display."""
        for item in self.items:
            if item.image_url:
                return item.image_url
        return self.merchant_image_url
