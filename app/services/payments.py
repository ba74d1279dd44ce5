from __future__ import annotations

import logging
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import InactiveLoanError, InvalidStateError, NotFoundError, ValidationError
from app.core.validation import validate
from app.models.loan import Loan
from app.models.payment import Payment
from app.schemas.loan import LoanStatus
from app.schemas.payments import PaymentOut, PaymentStatement
from app.services.audit import model_snapshot, record_audit_log
from app.services.loan_lifecycle import as_decimal, day_bounds

logger = logging.getLogger(__name__)


async def _get_loan(db: AsyncSession, loan_id: int, *, for_update: bool = False) -> Loan:
    stmt = select(Loan).where(Loan.id == loan_id).execution_options(populate_existing=True)
    if for_update:
        stmt = stmt.with_for_update()
    loan = (await db.execute(stmt)).scalar_one_or_none()
    if loan is None:
        raise NotFoundError("Loan not found")
    return loan


async def total_paid(db: AsyncSession, loan_id: int) -> Decimal:
    stmt = select(func.coalesce(func.sum(Payment.amount), 0)).where(Payment.loan_id == loan_id)
    return as_decimal((await db.execute(stmt)).scalar_one())


async def outstanding_balance(db: AsyncSession, loan: Loan) -> Decimal:
    """Principal minus everything paid so far."""
    return as_decimal(loan.amount) - await total_paid(db, loan.id)


async def record_payment(
    db: AsyncSession,
    loan_id: int,
    amount,
    payment_method: str,
    *,
    actor_id=None,
) -> Payment:
    value = as_decimal(amount)
    if value <= 0:
        raise ValidationError.single("amount", "Amount must be greater than 0")

    # Row lock serialises payments against the same loan.
    loan = await _get_loan(db, loan_id, for_update=True)
    if loan.status != LoanStatus.ACTIVE.value:
        raise InactiveLoanError("Payments can only be recorded for active loans")

    balance = await outstanding_balance(db, loan)
    if value > balance:
        raise InvalidStateError(
            "Payment exceeds the outstanding balance",
            code="overpayment",
            details={"outstandingBalance": str(balance)},
        )

    payment = Payment(
        loan_id=loan.id,
        amount=value,
        payment_method=payment_method,
        paid_by_user_id=actor_id,
        paid_at=datetime.now(timezone.utc),
    )
    db.add(payment)
    await db.flush()

    record_audit_log(
        db,
        actor_id=actor_id,
        action="payment.recorded",
        resource_type="payment",
        resource_id=str(payment.id),
        new_value=model_snapshot(payment),
    )
    logger.info(
        "Payment recorded",
        extra={"loan_id": loan.id, "payment_id": payment.id, "amount": str(value)},
    )
    return payment


async def history(db: AsyncSession, loan_id: int) -> list[Payment]:
    await _get_loan(db, loan_id)
    stmt = (
        select(Payment)
        .where(Payment.loan_id == loan_id)
        .order_by(Payment.paid_at.asc(), Payment.id.asc())
    )
    return list((await db.execute(stmt)).scalars().all())


async def statement(db: AsyncSession, loan_id, start_date, end_date) -> PaymentStatement:
    """Payments within the inclusive date range, plus totals; bounds may be raw strings."""
    query = validate(
        "payment_statement",
        {"loanId": loan_id, "startDate": start_date, "endDate": end_date},
    )
    loan = await _get_loan(db, query.loan_id)
    lower, upper = day_bounds(query.start_date, query.end_date)
    stmt = (
        select(Payment)
        .where(
            Payment.loan_id == loan.id,
            Payment.paid_at >= lower,
            Payment.paid_at < upper,
        )
        .order_by(Payment.paid_at.asc(), Payment.id.asc())
    )
    payments = list((await db.execute(stmt)).scalars().all())
    balance = await outstanding_balance(db, loan)
    return PaymentStatement(
        loan_id=loan.id,
        start_date=query.start_date,
        end_date=query.end_date,
        payment_count=len(payments),
        total_paid=sum((as_decimal(p.amount) for p in payments), Decimal("0")),
        outstanding_balance=balance,
        generated_at=datetime.now(timezone.utc),
        payments=[PaymentOut.model_validate(p) for p in payments],
    )
