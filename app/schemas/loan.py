from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from enum import Enum

from pydantic import Field, HttpUrl, TypeAdapter, ValidationInfo, field_validator

from app.schemas.common import CamelModel, NonEmptyStr

_http_url = TypeAdapter(HttpUrl)


class LoanStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    ACTIVE = "active"
    CLOSED = "closed"


class LoanStatusUpdateValue(str, Enum):
    """Statuses an administrator may request directly."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class PaymentFrequency(str, Enum):
    WEEKLY = "weekly"
    MONTHLY = "monthly"


class LoanApplicationCreate(CamelModel):
    user_id: int = Field(gt=0)
    amount: Decimal = Field(gt=0, max_digits=14, decimal_places=2)
    purpose: NonEmptyStr
    term: int = Field(gt=0)
    payment_frequency: PaymentFrequency
    guarantor_name: NonEmptyStr
    guarantor_relationship: NonEmptyStr
    guarantor_id_url: NonEmptyStr

    @field_validator("guarantor_id_url")
    @classmethod
    def validate_guarantor_id_url(cls, v: str) -> str:
        try:
            _http_url.validate_python(v)
        except ValueError as exc:
            raise ValueError("Invalid URL for guarantor ID") from exc
        return v


class LoanTopUpRequest(CamelModel):
    loan_id: int = Field(gt=0)
    additional_amount: Decimal = Field(gt=0, max_digits=14, decimal_places=2)
    new_term: int = Field(gt=0)


class LoanStatusUpdate(CamelModel):
    status: LoanStatusUpdateValue
    comment: str | None = Field(default=None, max_length=2000)


class LoanTermsUpdate(CamelModel):
    new_amount: Decimal = Field(gt=0, max_digits=14, decimal_places=2)
    new_term: int = Field(gt=0)


class LoanIdPath(CamelModel):
    loan_id: int = Field(gt=0)


class DateRangeQuery(CamelModel):
    start_date: date
    end_date: date

    @field_validator("end_date")
    @classmethod
    def end_not_before_start(cls, v: date, info: ValidationInfo) -> date:
        start = info.data.get("start_date")
        if start is not None and v < start:
            raise ValueError("endDate must not be before startDate")
        return v


class LoanOut(CamelModel):
    id: int
    user_id: int
    amount: Decimal
    purpose: str
    term: int
    payment_frequency: PaymentFrequency
    guarantor_name: str
    guarantor_relationship: str
    guarantor_id_url: str
    status: LoanStatus
    admin_comment: str | None = None
    activated_at: datetime | None = None
    closed_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


class LoanApplyResponse(CamelModel):
    message: str = "Loan application submitted successfully"
    loan_id: int


class LoanStatusSummary(CamelModel):
    status: LoanStatus
    count: int
    total_amount: Decimal


class LoanReport(CamelModel):
    start_date: date
    end_date: date
    total_loans: int
    total_amount: Decimal
    payments_received: Decimal
    by_status: list[LoanStatusSummary]
