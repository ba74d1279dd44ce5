from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal

from pydantic import Field

from app.schemas.common import CamelModel, NonEmptyStr
from app.schemas.loan import DateRangeQuery


class PaymentCreate(CamelModel):
    loan_id: int = Field(gt=0)
    amount: Decimal = Field(gt=0, max_digits=14, decimal_places=2)
    payment_method: NonEmptyStr = Field(max_length=50)


class PaymentStatementQuery(DateRangeQuery):
    loan_id: int = Field(gt=0)


class PaymentOut(CamelModel):
    id: int
    loan_id: int
    amount: Decimal
    payment_method: str
    paid_by_user_id: int | None = None
    paid_at: datetime | None = None


class PaymentCreated(CamelModel):
    message: str = "Payment successful"
    payment_id: int


class PaymentStatement(CamelModel):
    loan_id: int
    start_date: date
    end_date: date
    payment_count: int
    total_paid: Decimal
    outstanding_balance: Decimal
    generated_at: datetime
    payments: list[PaymentOut]
