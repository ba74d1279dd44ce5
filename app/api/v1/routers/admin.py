
from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.api import deps
from app.core.permissions import PermissionCode
from app.core.validation import validate
from app.db.session import get_db
from app.models.user import User
from app.schemas.loan import LoanOut, LoanReport, LoanStatusUpdate, LoanTermsUpdate
from app.schemas.users import RoleAssignment, UserListResponse, UserOut, UserStatusUpdate
from app.services import loan_lifecycle, roles, users

router = APIRouter(prefix="/admin", tags=["admin"])


@router.get("/users", response_model=UserListResponse, summary="Paginated user list")
async def list_users(
    page: str | None = Query(default=None),
    limit: str | None = Query(default=None),
    _: User = Depends(deps.require_permission(PermissionCode.USER_VIEW_ALL)),
    db: AsyncSession = Depends(get_db),
) -> UserListResponse:
    raw = {key: value for key, value in {"page": page, "limit": limit}.items() if value is not None}
    pagination = validate("pagination", raw)
    items, total = await users.list_users(db, page=pagination.page, limit=pagination.limit)
    return UserListResponse(items=items, page=pagination.page, limit=pagination.limit, total=total)


@router.patch("/users/{user_id}/status", response_model=UserOut, summary="Activate or deactivate a user")
async def update_user_status(
    user_id: int,
    payload: UserStatusUpdate,
    current_user: User = Depends(deps.require_permission(PermissionCode.USER_MANAGE)),
    db: AsyncSession = Depends(get_db),
) -> UserOut:
    user = await users.set_active(db, user_id, payload.status, actor_id=current_user.id)
    await db.commit()
    return user


@router.put("/users/{user_id}/role", response_model=UserOut, summary="Assign a role to a user")
async def assign_user_role(
    user_id: int,
    payload: RoleAssignment,
    current_user: User = Depends(deps.require_permission(PermissionCode.ROLE_MANAGE)),
    db: AsyncSession = Depends(get_db),
) -> UserOut:
    user = await roles.assign_role(db, user_id, payload.role_id, actor_id=current_user.id)
    await db.commit()
    return user


@router.post("/loans/{loan_id}/approve", response_model=LoanOut, summary="Approve a pending loan")
async def approve_loan(
    loan_id: int,
    current_user: User = Depends(deps.require_permission(PermissionCode.LOAN_STATUS_MANAGE)),
    db: AsyncSession = Depends(get_db),
) -> LoanOut:
    loan = await loan_lifecycle.approve(db, loan_id, actor_id=current_user.id)
    await db.commit()
    return loan


@router.patch("/loans/{loan_id}/status", response_model=LoanOut, summary="Change loan status")
async def update_loan_status(
    loan_id: int,
    payload: LoanStatusUpdate,
    current_user: User = Depends(deps.require_permission(PermissionCode.LOAN_STATUS_MANAGE)),
    db: AsyncSession = Depends(get_db),
) -> LoanOut:
    loan = await loan_lifecycle.update_status(
        db, loan_id, payload.status.value, payload.comment, actor_id=current_user.id
    )
    await db.commit()
    return loan


@router.post("/loans/{loan_id}/activate", response_model=LoanOut, summary="Activate an approved loan")
async def activate_loan(
    loan_id: int,
    current_user: User = Depends(deps.require_permission(PermissionCode.LOAN_STATUS_MANAGE)),
    db: AsyncSession = Depends(get_db),
) -> LoanOut:
    loan = await loan_lifecycle.activate(db, loan_id, actor_id=current_user.id)
    await db.commit()
    return loan


@router.patch("/loans/{loan_id}/terms", response_model=LoanOut, summary="Change amount and term")
async def update_loan_terms(
    loan_id: int,
    payload: LoanTermsUpdate,
    current_user: User = Depends(deps.require_permission(PermissionCode.LOAN_TERMS_MANAGE)),
    db: AsyncSession = Depends(get_db),
) -> LoanOut:
    loan = await loan_lifecycle.update_terms(
        db, loan_id, payload.new_amount, payload.new_term, actor_id=current_user.id
    )
    await db.commit()
    return loan


@router.get("/loans/reports", response_model=LoanReport, summary="Loan report for a date range")
async def loan_reports(
    start_date: str | None = Query(default=None, alias="startDate"),
    end_date: str | None = Query(default=None, alias="endDate"),
    _: User = Depends(deps.require_permission(PermissionCode.LOAN_REPORT_VIEW)),
    db: AsyncSession = Depends(get_db),
) -> LoanReport:
    date_range = validate("date_range", {"startDate": start_date, "endDate": end_date})
    return await loan_lifecycle.loan_report(db, date_range.start_date, date_range.end_date)
