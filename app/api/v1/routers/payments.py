from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.api import deps
from app.core.permissions import PermissionCode
from app.core.validation import validate
from app.db.session import get_db
from app.models.user import User
from app.schemas.payments import PaymentCreate, PaymentCreated, PaymentOut, PaymentStatement
from app.services import authz, loan_lifecycle, payments

router = APIRouter(prefix="/payments", tags=["payments"])


@router.post("", response_model=PaymentCreated, status_code=201, summary="Record a payment")
async def make_payment(
    payload: PaymentCreate,
    current_user: User = Depends(deps.require_permission(PermissionCode.PAYMENT_RECORD)),
    db: AsyncSession = Depends(get_db),
) -> PaymentCreated:
    loan = await loan_lifecycle.get_loan(db, payload.loan_id)
    authz.ensure_self_or_permission(current_user, loan.user_id, PermissionCode.LOAN_MANAGE_ALL)
    payment = await payments.record_payment(
        db,
        payload.loan_id,
        payload.amount,
        payload.payment_method,
        actor_id=current_user.id,
    )
    await db.commit()
    return PaymentCreated(payment_id=payment.id)


# Declared before "/{loan_id}" so "statement" is not read as a loan id.
@router.get("/statement", response_model=PaymentStatement, summary="Payment statement for a date range")
async def generate_statement(
    loan_id: str | None = Query(default=None, alias="loanId"),
    start_date: str | None = Query(default=None, alias="startDate"),
    end_date: str | None = Query(default=None, alias="endDate"),
    current_user: User = Depends(deps.get_current_user),
    db: AsyncSession = Depends(get_db),
) -> PaymentStatement:
    query = validate("payment_statement", {"loanId": loan_id, "startDate": start_date, "endDate": end_date})
    loan = await loan_lifecycle.get_loan(db, query.loan_id)
    authz.ensure_owner_access(
        current_user, loan.user_id, own=PermissionCode.PAYMENT_VIEW_OWN, any_=PermissionCode.PAYMENT_VIEW_ALL
    )
    return await payments.statement(db, query.loan_id, query.start_date, query.end_date)


@router.get("/{loan_id}", response_model=list[PaymentOut], summary="Payment history of a loan")
async def payment_history(
    loan_id: int,
    current_user: User = Depends(deps.get_current_user),
    db: AsyncSession = Depends(get_db),
) -> list[PaymentOut]:
    loan = await loan_lifecycle.get_loan(db, loan_id)
    authz.ensure_owner_access(
        current_user, loan.user_id, own=PermissionCode.PAYMENT_VIEW_OWN, any_=PermissionCode.PAYMENT_VIEW_ALL
    )
    return await payments.history(db, loan_id)
