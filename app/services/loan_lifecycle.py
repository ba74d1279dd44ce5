"""Loan state machine.

Allowed moves::

    pending  -> approved | rejected
    approved -> active
    active   -> active (top-up) | closed (liquidation)

``rejected`` and ``closed`` are terminal. Every write is a conditional
``UPDATE ... WHERE id = :id AND status = :expected RETURNING *`` so a loan is
only ever moved from the state the caller actually observed.
"""

from __future__ import annotations

import logging
from datetime import date, datetime, time, timedelta, timezone
from decimal import Decimal
from typing import Any, Callable

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import (
    ConflictError,
    InactiveLoanError,
    InvalidStateError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from app.models.loan import Loan
from app.models.payment import Payment
from app.models.user import User
from app.schemas.loan import LoanApplicationCreate, LoanReport, LoanStatus, LoanStatusSummary
from app.services.audit import model_snapshot, record_audit_log
from app.services.notifications import record_user_notification

logger = logging.getLogger(__name__)

LOAN_TRANSITIONS: dict[LoanStatus, frozenset[LoanStatus]] = {
    LoanStatus.PENDING: frozenset({LoanStatus.APPROVED, LoanStatus.REJECTED}),
    LoanStatus.APPROVED: frozenset({LoanStatus.ACTIVE}),
    LoanStatus.ACTIVE: frozenset({LoanStatus.ACTIVE, LoanStatus.CLOSED}),
    LoanStatus.REJECTED: frozenset(),
    LoanStatus.CLOSED: frozenset(),
}

TERMS_EDITABLE_STATUSES = frozenset({LoanStatus.PENDING, LoanStatus.APPROVED})

MAX_TRANSITION_ATTEMPTS = 3


def _as_status(value: LoanStatus | str) -> LoanStatus:
    return value if isinstance(value, LoanStatus) else LoanStatus(value)


def can_transition(current: LoanStatus | str, target: LoanStatus | str) -> bool:
    return _as_status(target) in LOAN_TRANSITIONS[_as_status(current)]


def ensure_transition(current: LoanStatus | str, target: LoanStatus | str) -> None:
    if not can_transition(current, target):
        current_value = _as_status(current).value
        target_value = _as_status(target).value
        raise InvalidTransitionError(
            f"Cannot change loan status from {current_value} to {target_value}",
            details={"from": current_value, "to": target_value},
        )


def as_decimal(value) -> Decimal:
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def day_bounds(start: date, end: date) -> tuple[datetime, datetime]:
    """Inclusive calendar range as a half-open UTC interval."""
    lower = datetime.combine(start, time.min, tzinfo=timezone.utc)
    upper = datetime.combine(end + timedelta(days=1), time.min, tzinfo=timezone.utc)
    return lower, upper


async def _get_loan_or_404(db: AsyncSession, loan_id: int) -> Loan:
    stmt = select(Loan).where(Loan.id == loan_id).execution_options(populate_existing=True)
    loan = (await db.execute(stmt)).scalar_one_or_none()
    if loan is None:
        raise NotFoundError("Loan not found")
    return loan


async def _compare_and_set(
    db: AsyncSession,
    loan_id: int,
    expected_status: str,
    values: dict[str, Any],
    *conditions,
) -> Loan | None:
    stmt = (
        update(Loan)
        .where(Loan.id == loan_id, Loan.status == expected_status, *conditions)
        .values(**values)
        .returning(Loan)
        .execution_options(populate_existing=True)
    )
    return (await db.execute(stmt)).scalar_one_or_none()


async def _transition(
    db: AsyncSession,
    loan_id: int,
    *,
    action: str,
    guard: Callable[[Loan], None],
    build_values: Callable[[Loan], dict[str, Any]],
    build_conditions: Callable[[Loan], tuple] = lambda loan: (),
    actor_id=None,
    notify: Callable[[Loan], tuple[str, str]] | None = None,
) -> Loan:
    """Read, check, conditionally write; re-check on a lost race."""
    for attempt in range(1, MAX_TRANSITION_ATTEMPTS + 1):
        loan = await _get_loan_or_404(db, loan_id)
        guard(loan)
        before = model_snapshot(loan)
        expected_status = loan.status
        updated = await _compare_and_set(
            db,
            loan_id,
            expected_status,
            build_values(loan),
            *build_conditions(loan),
        )
        if updated is None:
            logger.info(
                "Loan changed concurrently, re-evaluating",
                extra={"loan_id": loan_id, "attempt": attempt, "action": action},
            )
            continue

        record_audit_log(
            db,
            actor_id=actor_id,
            action=action,
            resource_type="loan",
            resource_id=str(updated.id),
            old_value=before,
            new_value=model_snapshot(updated),
        )
        if notify is not None:
            title, message = notify(updated)
            record_user_notification(db, updated.user_id, title, message)
        logger.info(
            "Loan updated",
            extra={
                "loan_id": updated.id,
                "action": action,
                "from_status": expected_status,
                "to_status": updated.status,
            },
        )
        return updated

    raise ConflictError(
        "Loan was modified concurrently; retry the request",
        code="concurrent_update",
    )


def _status_notice(loan: Loan) -> tuple[str, str]:
    return "Loan status updated", f"Your loan #{loan.id} is now {loan.status}."


async def apply(db: AsyncSession, payload: LoanApplicationCreate, *, actor_id=None) -> Loan:
    user_stmt = select(User).where(User.id == payload.user_id)
    user = (await db.execute(user_stmt)).scalar_one_or_none()
    if user is None or not user.is_active:
        raise NotFoundError("User not found")

    loan = Loan(
        user_id=payload.user_id,
        amount=payload.amount,
        purpose=payload.purpose,
        term=payload.term,
        payment_frequency=payload.payment_frequency.value,
        guarantor_name=payload.guarantor_name,
        guarantor_relationship=payload.guarantor_relationship,
        guarantor_id_url=payload.guarantor_id_url,
        status=LoanStatus.PENDING.value,
    )
    db.add(loan)
    await db.flush()

    record_audit_log(
        db,
        actor_id=actor_id,
        action="loan.applied",
        resource_type="loan",
        resource_id=str(loan.id),
        new_value=model_snapshot(loan),
    )
    record_user_notification(
        db,
        loan.user_id,
        "Loan application received",
        f"Your application for {loan.amount} has been submitted and is pending review.",
    )
    logger.info("Loan application submitted", extra={"loan_id": loan.id, "owner_id": loan.user_id})
    return loan


async def get_loan(db: AsyncSession, loan_id: int) -> Loan:
    return await _get_loan_or_404(db, loan_id)


async def list_user_loans(db: AsyncSession, user_id: int) -> list[Loan]:
    stmt = (
        select(Loan)
        .where(Loan.user_id == user_id)
        .order_by(Loan.created_at.desc(), Loan.id.desc())
    )
    return list((await db.execute(stmt)).scalars().all())


async def update_status(
    db: AsyncSession,
    loan_id: int,
    new_status: LoanStatus | str,
    comment: str | None = None,
    *,
    actor_id=None,
) -> Loan:
    target = _as_status(new_status)

    def guard(loan: Loan) -> None:
        ensure_transition(loan.status, target)

    def build_values(loan: Loan) -> dict[str, Any]:
        values: dict[str, Any] = {"status": target.value}
        if comment is not None:
            values["admin_comment"] = comment
        now = datetime.now(timezone.utc)
        if target == LoanStatus.ACTIVE and loan.status != LoanStatus.ACTIVE.value:
            values["activated_at"] = now
        if target == LoanStatus.CLOSED:
            values["closed_at"] = now
        return values

    return await _transition(
        db,
        loan_id,
        action=f"loan.status.{target.value}",
        guard=guard,
        build_values=build_values,
        actor_id=actor_id,
        notify=_status_notice,
    )


async def approve(db: AsyncSession, loan_id: int, *, actor_id=None) -> Loan:
    return await update_status(db, loan_id, LoanStatus.APPROVED, actor_id=actor_id)


async def activate(db: AsyncSession, loan_id: int, *, actor_id=None) -> Loan:
    """Disburse an approved loan; active loans are not re-activated."""

    def guard(loan: Loan) -> None:
        if loan.status != LoanStatus.APPROVED.value:
            raise InvalidTransitionError(
                f"Cannot change loan status from {loan.status} to active",
                details={"from": loan.status, "to": LoanStatus.ACTIVE.value},
            )

    return await _transition(
        db,
        loan_id,
        action="loan.activated",
        guard=guard,
        build_values=lambda loan: {
            "status": LoanStatus.ACTIVE.value,
            "activated_at": datetime.now(timezone.utc),
        },
        actor_id=actor_id,
        notify=_status_notice,
    )


async def top_up(
    db: AsyncSession,
    loan_id: int,
    additional_amount,
    new_term: int,
    *,
    actor_id=None,
) -> Loan:
    additional = as_decimal(additional_amount)
    if additional <= 0:
        raise ValidationError.single("additionalAmount", "Additional amount must be greater than 0")

    def guard(loan: Loan) -> None:
        if loan.status != LoanStatus.ACTIVE.value:
            raise InactiveLoanError("Loan is not active")
        ensure_transition(loan.status, LoanStatus.ACTIVE)
        if new_term < loan.term:
            raise ValidationError.single("newTerm", f"New term must not be shorter than the current term of {loan.term}")

    return await _transition(
        db,
        loan_id,
        action="loan.topped_up",
        guard=guard,
        # Increment in SQL so two concurrent top-ups cannot overwrite each other.
        build_values=lambda loan: {"amount": Loan.amount + additional, "term": new_term},
        build_conditions=lambda loan: (Loan.term <= new_term,),
        actor_id=actor_id,
        notify=lambda loan: (
            "Loan topped up",
            f"Your loan #{loan.id} was topped up by {additional}; new term is {loan.term}.",
        ),
    )


async def liquidate(db: AsyncSession, loan_id: int, *, actor_id=None) -> Loan:
    def guard(loan: Loan) -> None:
        if loan.status != LoanStatus.ACTIVE.value:
            raise InvalidStateError("Only active loans can be liquidated", code="inactive_loan")
        ensure_transition(loan.status, LoanStatus.CLOSED)

    return await _transition(
        db,
        loan_id,
        action="loan.liquidated",
        guard=guard,
        build_values=lambda loan: {
            "status": LoanStatus.CLOSED.value,
            "closed_at": datetime.now(timezone.utc),
        },
        actor_id=actor_id,
        notify=lambda loan: ("Loan closed", f"Your loan #{loan.id} has been liquidated and closed."),
    )


async def update_terms(
    db: AsyncSession,
    loan_id: int,
    new_amount,
    new_term: int,
    *,
    actor_id=None,
) -> Loan:
    amount = as_decimal(new_amount)

    def guard(loan: Loan) -> None:
        if _as_status(loan.status) not in TERMS_EDITABLE_STATUSES:
            raise InvalidStateError(f"Loan terms cannot be changed while the loan is {loan.status}")

    return await _transition(
        db,
        loan_id,
        action="loan.terms_updated",
        guard=guard,
        build_values=lambda loan: {"amount": amount, "term": new_term},
        actor_id=actor_id,
        notify=lambda loan: (
            "Loan terms updated",
            f"Your loan #{loan.id} now has an amount of {loan.amount} over {loan.term} periods.",
        ),
    )


async def loan_report(db: AsyncSession, start_date: date, end_date: date) -> LoanReport:
    lower, upper = day_bounds(start_date, end_date)
    by_status_stmt = (
        select(Loan.status, func.count(Loan.id), func.coalesce(func.sum(Loan.amount), 0))
        .where(Loan.created_at >= lower, Loan.created_at < upper)
        .group_by(Loan.status)
        .order_by(Loan.status)
    )
    rows = (await db.execute(by_status_stmt)).all()

    payments_stmt = select(func.coalesce(func.sum(Payment.amount), 0)).where(
        Payment.paid_at >= lower,
        Payment.paid_at < upper,
    )
    payments_received = as_decimal((await db.execute(payments_stmt)).scalar_one())

    summaries = [
        LoanStatusSummary(status=status, count=int(count), total_amount=as_decimal(total))
        for status, count, total in rows
    ]
    return LoanReport(
        start_date=start_date,
        end_date=end_date,
        total_loans=sum(item.count for item in summaries),
        total_amount=sum((item.total_amount for item in summaries), Decimal("0")),
        payments_received=payments_received,
        by_status=summaries,
    )
