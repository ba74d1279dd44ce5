from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.api import deps
from app.core.permissions import PermissionCode
from app.db.session import get_db
from app.models.user import User
from app.schemas.loan import LoanApplicationCreate, LoanApplyResponse, LoanOut, LoanTopUpRequest
from app.services import authz, loan_lifecycle

router = APIRouter(tags=["loans"])


@router.post("/loans", response_model=LoanApplyResponse, status_code=201, summary="Apply for a loan")
async def apply_for_loan(
    payload: LoanApplicationCreate,
    current_user: User = Depends(deps.require_permission(PermissionCode.LOAN_APPLY)),
    db: AsyncSession = Depends(get_db),
) -> LoanApplyResponse:
    authz.ensure_self_or_permission(current_user, payload.user_id, PermissionCode.LOAN_MANAGE_ALL)
    loan = await loan_lifecycle.apply(db, payload, actor_id=current_user.id)
    await db.commit()
    return LoanApplyResponse(loan_id=loan.id)


@router.post("/loans/topup", response_model=LoanOut, summary="Top up an active loan")
async def top_up_loan(
    payload: LoanTopUpRequest,
    current_user: User = Depends(deps.require_permission(PermissionCode.LOAN_TOP_UP)),
    db: AsyncSession = Depends(get_db),
) -> LoanOut:
    loan = await loan_lifecycle.get_loan(db, payload.loan_id)
    authz.ensure_self_or_permission(current_user, loan.user_id, PermissionCode.LOAN_MANAGE_ALL)
    loan = await loan_lifecycle.top_up(
        db,
        payload.loan_id,
        payload.additional_amount,
        payload.new_term,
        actor_id=current_user.id,
    )
    await db.commit()
    return loan


@router.get("/loans/{loan_id}", response_model=LoanOut, summary="Loan details")
async def get_loan(
    loan_id: int,
    current_user: User = Depends(deps.get_current_user),
    db: AsyncSession = Depends(get_db),
) -> LoanOut:
    loan = await loan_lifecycle.get_loan(db, loan_id)
    authz.ensure_owner_access(
        current_user, loan.user_id, own=PermissionCode.LOAN_VIEW_OWN, any_=PermissionCode.LOAN_VIEW_ALL
    )
    return loan


@router.post("/loans/{loan_id}/liquidate", response_model=LoanOut, summary="Liquidate an active loan")
async def liquidate_loan(
    loan_id: int,
    current_user: User = Depends(deps.require_permission(PermissionCode.LOAN_LIQUIDATE)),
    db: AsyncSession = Depends(get_db),
) -> LoanOut:
    loan = await loan_lifecycle.get_loan(db, loan_id)
    authz.ensure_self_or_permission(current_user, loan.user_id, PermissionCode.LOAN_MANAGE_ALL)
    loan = await loan_lifecycle.liquidate(db, loan_id, actor_id=current_user.id)
    await db.commit()
    return loan


@router.get("/users/{user_id}/loans", response_model=list[LoanOut], summary="Loans of a user")
async def list_user_loans(
    user_id: int,
    current_user: User = Depends(deps.get_current_user),
    db: AsyncSession = Depends(get_db),
) -> list[LoanOut]:
    authz.ensure_owner_access(
        current_user, user_id, own=PermissionCode.LOAN_VIEW_OWN, any_=PermissionCode.LOAN_VIEW_ALL
    )
    return await loan_lifecycle.list_user_loans(db, user_id)
